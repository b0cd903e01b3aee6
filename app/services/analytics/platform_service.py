# ============================================================================
# Platform Analytics Service
# ============================================================================
"""
Entry point for cross-school analytics.

Wires the tenant catalog, metric aggregator, comparison engine, trend
analyzer and KPI calculator around one injected cache layer, and exposes the
cache maintenance operations (invalidation, warm-up, stats).
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Sequence

from app.config import Settings
from app.core.cache import CacheLayer
from app.core.exceptions import CacheFailure
from app.schemas.analytics import (
    ComparisonResult,
    KPIReport,
    MetricReport,
    TimeRange,
    TrendResult,
    WarmUpResult,
)
from app.services.analytics.aggregator import MetricAggregator
from app.services.analytics.caching import ReportCache
from app.services.analytics.comparison import ComparisonEngine
from app.services.analytics.kpi import KPICalculator
from app.services.analytics.metrics import Metric, utcnow
from app.services.analytics.stores import DataSources
from app.services.analytics.tenant_catalog import TenantCatalog
from app.services.analytics.trends import TrendAnalyzer

logger = logging.getLogger(__name__)

CROSS_SCHOOL_PATTERNS = (
    "cross-school:*",
    "comparison:*",
    "trends:*",
    "kpis:*",
)


class PlatformAnalyticsService:
    """
    Cross-school analytics facade for the system admin dashboard.

    Provides:
    - Metric aggregation across schools
    - School performance comparison and rankings
    - Trend analysis over daily, weekly or monthly windows
    - Platform KPIs
    - Cache invalidation and warm-up
    """

    def __init__(
        self,
        sources: DataSources,
        cache: CacheLayer,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.cache = cache
        self.report_cache = ReportCache(cache)
        self.catalog = TenantCatalog(sources.tenants)
        self.aggregator = MetricAggregator(
            sources,
            self.catalog,
            self.report_cache,
            ttls=settings.METRIC_CACHE_TTLS,
            default_ttl=settings.DEFAULT_METRIC_CACHE_TTL,
            clock=clock,
        )
        self.comparison = ComparisonEngine(
            self.aggregator,
            self.catalog,
            self.report_cache,
            ttl=settings.COMPARISON_CACHE_TTL,
            clock=clock,
        )
        self.trends = TrendAnalyzer(
            self.aggregator,
            self.report_cache,
            ttl=settings.TRENDS_CACHE_TTL,
            max_duration=settings.TREND_MAX_DURATION,
            clock=clock,
        )
        self.kpis = KPICalculator(
            sources,
            self.aggregator,
            self.catalog,
            self.report_cache,
            ttl=settings.KPI_CACHE_TTL,
            clock=clock,
        )

    # =========================================================================
    # Analytics
    # =========================================================================
    async def aggregate_metrics(
        self,
        school_ids: Optional[Sequence[str]] = None,
        metric: str = Metric.OVERVIEW.value,
        time_range: Optional[TimeRange] = None,
    ) -> MetricReport:
        return await self.aggregator.aggregate(school_ids, metric, time_range)

    async def compare_tenant_performance(
        self,
        school_ids: Optional[Sequence[str]],
        criteria: Optional[Sequence[str]] = None,
        time_range: Optional[TimeRange] = None,
    ) -> ComparisonResult:
        return await self.comparison.compare(school_ids, criteria, time_range)

    async def generate_trends(
        self,
        metric: str,
        period: str = "weekly",
        duration: int = 12,
    ) -> TrendResult:
        return await self.trends.analyze_trend(metric, period, duration)

    async def calculate_platform_kpis(self, time_range: Optional[TimeRange] = None) -> KPIReport:
        return await self.kpis.calculate_kpis(time_range)

    # =========================================================================
    # Cache Maintenance
    # =========================================================================
    async def invalidate_cross_tenant_caches(self) -> int:
        """Drop every cached aggregation, comparison, trend and KPI report"""
        deleted = 0
        for pattern in CROSS_SCHOOL_PATTERNS:
            deleted += await self.report_cache.delete_pattern(pattern)

        logger.info(f"Invalidated {deleted} cross-school cache keys")
        return deleted

    async def invalidate_tenant(self, school_id: str) -> int:
        """Invalidate platform caches after one school's data changed"""
        deleted = await self.invalidate_cross_tenant_caches()
        for namespace in ("school", "dashboard"):
            try:
                deleted += await self.cache.delete_pattern(namespace, f"{school_id}*")
            except CacheFailure as e:
                logger.warning(f"Cache invalidation failed for {namespace}:{school_id}: {e.detail}")

        logger.info(f"Invalidated platform caches for school {school_id}: {deleted} keys")
        return deleted

    async def warm_up(self, school_ids: Optional[Sequence[str]] = None) -> WarmUpResult:
        """
        Precompute the most requested reports.

        Each step is independent: a failing step is logged and counted, and
        the remaining steps still run.
        """
        logger.info("🔥 Starting platform cache warm-up...")
        result = WarmUpResult()

        steps = (
            ("overview_metrics", lambda: self.aggregate_metrics(school_ids, Metric.OVERVIEW.value)),
            ("user_metrics", lambda: self.aggregate_metrics(school_ids, Metric.USERS.value)),
            ("platform_kpis", lambda: self.calculate_platform_kpis()),
        )
        for name, step in steps:
            try:
                await step()
            except Exception as e:
                logger.error(f"Failed to warm up {name}: {e}")
                result.failed += 1
            else:
                result.success += 1
                result.operations.append(name)

        logger.info(f"🔥 Platform cache warm-up completed: {result.success} success, {result.failed} failed")
        return result

    def cache_stats(self) -> Dict[str, Any]:
        stats = getattr(self.cache, "stats", None)
        return {"available": stats is not None, **(stats or {})}
