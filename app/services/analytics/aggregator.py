# ============================================================================
# Cross-School Metric Aggregator
# ============================================================================
"""
Aggregates one named metric over a set of schools and an optional time range.
Sub-queries inside a metric run concurrently; reports are cached per
(metric, school set, time range).
"""
import logging
from datetime import datetime
from typing import Callable, Dict, Optional, Sequence, Union

from app.schemas.analytics import MetricReport, TimeRange
from app.services.analytics.caching import ReportCache
from app.services.analytics.metrics import METRIC_COMPUTATIONS, Metric, MetricData, utcnow
from app.services.analytics.stores import DataSources
from app.services.analytics.tenant_catalog import TenantCatalog

logger = logging.getLogger(__name__)

DEFAULT_METRIC_TTL = 600


def tenant_key_fragment(tenant_ids: Optional[Sequence[str]], ordered: bool = False) -> str:
    """
    Key fragment for a school filter.

    Aggregation does not depend on filter order, so ids are sorted unless the
    caller's order is significant (comparison tie-breaks).
    """
    if not tenant_ids:
        return "all"
    unique = list(dict.fromkeys(tenant_ids))
    return ",".join(unique if ordered else sorted(unique))


class MetricAggregator:
    def __init__(
        self,
        sources: DataSources,
        catalog: TenantCatalog,
        cache: ReportCache,
        ttls: Optional[Dict[str, int]] = None,
        default_ttl: int = DEFAULT_METRIC_TTL,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.sources = sources
        self.catalog = catalog
        self.cache = cache
        self.ttls = ttls or {}
        self.default_ttl = default_ttl
        self.clock = clock

    @staticmethod
    def cache_key(metric: Metric, tenant_ids: Optional[Sequence[str]], time_range: TimeRange) -> str:
        return f"cross-school:{metric.value}:{tenant_key_fragment(tenant_ids)}:{time_range.cache_fragment()}"

    def ttl_for(self, metric: Metric) -> int:
        return self.ttls.get(metric.value, self.default_ttl)

    async def aggregate(
        self,
        tenant_ids: Optional[Sequence[str]],
        metric: Union[str, Metric],
        time_range: Optional[TimeRange] = None,
    ) -> MetricReport:
        """
        Aggregate a metric across schools.

        Args:
            tenant_ids: Schools to include; None or empty means all active schools
            metric: One of overview, users, students, activity, performance
            time_range: Optional inclusive bounds

        Returns:
            MetricReport, with cached=True when served from cache

        Raises:
            InvalidMetric: If the metric name is not supported
        """
        metric = Metric.parse(metric)
        time_range = time_range or TimeRange()
        key = self.cache_key(metric, tenant_ids, time_range)

        cached = await self.cache.load(key, MetricReport)
        if cached is not None:
            return cached

        tenants = await self.catalog.resolve(tenant_ids)
        data = await self.compute(metric, [t.tenant_id for t in tenants], time_range)

        report = MetricReport(
            metric=metric.value,
            time_range=time_range,
            tenants=[t.summary() for t in tenants],
            data=data,
            generated_at=self.clock(),
            cached=False,
        )

        await self.cache.store(key, report, self.ttl_for(metric))
        return report

    async def compute(
        self,
        metric: Union[str, Metric],
        tenant_ids: Sequence[str],
        time_range: Optional[TimeRange] = None,
    ) -> MetricData:
        """Uncached metric computation over already-resolved school ids"""
        metric = Metric.parse(metric)
        computation = METRIC_COMPUTATIONS[metric]
        return await computation(self.sources, tenant_ids, time_range or TimeRange(), self.clock())
