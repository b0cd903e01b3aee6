# ============================================================================
# School Comparison Engine
# ============================================================================
import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

from app.core.exceptions import NoTenantsAvailable
from app.schemas.analytics import (
    ComparedTenant,
    ComparisonResult,
    RankingEntry,
    Score,
    TenantComparison,
    TimeRange,
)
from app.services.analytics.aggregator import MetricAggregator, tenant_key_fragment
from app.services.analytics.caching import ReportCache
from app.services.analytics.metrics import SCORE_EXTRACTORS, Metric, utcnow
from app.services.analytics.stores import Tenant
from app.services.analytics.tenant_catalog import TenantCatalog

logger = logging.getLogger(__name__)

DEFAULT_CRITERIA = ("users", "students", "activity")
COMPARISON_TTL = 900


def rank_tenants(tenants: List[Tenant], scores: List[Score]) -> List[RankingEntry]:
    """
    Rank schools by score, highest first.

    The sort is stable, so schools with equal scores keep their order in
    ``tenants``. Ranks are contiguous from 1.
    """
    order = sorted(range(len(tenants)), key=lambda i: scores[i], reverse=True)
    return [
        RankingEntry(
            rank=position,
            tenant_id=tenants[i].tenant_id,
            tenant_name=tenants[i].name,
            score=scores[i],
        )
        for position, i in enumerate(order, 1)
    ]


class ComparisonEngine:
    """Compares schools on one or more criteria and ranks them per criterion"""

    def __init__(
        self,
        aggregator: MetricAggregator,
        catalog: TenantCatalog,
        cache: ReportCache,
        ttl: int = COMPARISON_TTL,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.aggregator = aggregator
        self.catalog = catalog
        self.cache = cache
        self.ttl = ttl
        self.clock = clock

    @staticmethod
    def cache_key(tenant_ids: Optional[Sequence[str]], criteria: List[Metric], time_range: TimeRange) -> str:
        # School order is the ranking tie-break, so it stays part of the key
        ids = tenant_key_fragment(tenant_ids, ordered=True)
        names = ",".join(c.value for c in criteria)
        return f"comparison:{ids}:{names}:{time_range.cache_fragment()}"

    async def compare(
        self,
        tenant_ids: Optional[Sequence[str]],
        criteria: Optional[Sequence[str]] = None,
        time_range: Optional[TimeRange] = None,
    ) -> ComparisonResult:
        """
        Compare school performance across criteria.

        Raises:
            InvalidMetric: If a criterion is not a supported metric
            NoTenantsAvailable: If no requested school is active
        """
        metrics = list(dict.fromkeys(Metric.parse(c) for c in (criteria or DEFAULT_CRITERIA)))
        time_range = time_range or TimeRange()
        key = self.cache_key(tenant_ids, metrics, time_range)

        cached = await self.cache.load(key, ComparisonResult)
        if cached is not None:
            return cached

        tenants = await self.catalog.resolve(tenant_ids)
        if not tenants:
            raise NoTenantsAvailable()

        jobs = [(metric, tenant) for metric in metrics for tenant in tenants]
        results = await asyncio.gather(*(
            self.aggregator.compute(metric, [tenant.tenant_id], time_range)
            for metric, tenant in jobs
        ))

        comparisons: Dict[str, Dict[str, TenantComparison]] = {m.value: {} for m in metrics}
        for (metric, tenant), data in zip(jobs, results):
            comparisons[metric.value][tenant.tenant_id] = TenantComparison(
                tenant_name=tenant.name,
                data=data,
            )

        rankings: Dict[str, List[RankingEntry]] = {}
        for metric in metrics:
            extract = SCORE_EXTRACTORS[metric]
            scores = [extract(comparisons[metric.value][t.tenant_id].data) for t in tenants]
            rankings[metric.value] = rank_tenants(tenants, scores)

        result = ComparisonResult(
            tenants=[
                ComparedTenant(**t.summary().model_dump(), created_at=t.created_at)
                for t in tenants
            ],
            criteria=[m.value for m in metrics],
            time_range=time_range,
            comparisons=comparisons,
            rankings=rankings,
            generated_at=self.clock(),
            cached=False,
        )

        await self.cache.store(key, result, self.ttl)
        logger.info(f"📊 Compared {len(tenants)} schools on {result.criteria}")
        return result
