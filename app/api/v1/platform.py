# ============================================================================
# Platform Analytics API Endpoints
# ============================================================================
"""
Cross-school metrics, comparisons, trends, KPIs and cache maintenance for the
system admin dashboard. Callers are authenticated by the gateway in front of
this service.
"""
from fastapi import APIRouter, Depends, Query
from typing import Optional, List
from datetime import datetime, timedelta, timezone
import logging

from app.api.deps import get_platform_service
from app.schemas.analytics import (
    CompareRequest,
    ComparisonResult,
    InvalidationResult,
    KPIReport,
    MetricReport,
    TimeRange,
    TimeRangePreset,
    TrendResult,
    WarmUpResult,
)
from app.services.analytics import PlatformAnalyticsService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/platform", tags=["platform-analytics"])

PRESET_SPANS = {
    TimeRangePreset.LAST_HOUR: timedelta(hours=1),
    TimeRangePreset.LAST_24_HOURS: timedelta(hours=24),
    TimeRangePreset.LAST_7_DAYS: timedelta(days=7),
    TimeRangePreset.LAST_30_DAYS: timedelta(days=30),
    TimeRangePreset.LAST_90_DAYS: timedelta(days=90),
    TimeRangePreset.LAST_YEAR: timedelta(days=365),
}


# ============================================================================
# Parameter Helpers
# ============================================================================
def parse_time_range(
    preset: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> TimeRange:
    """
    Parse a time range preset or explicit bounds.

    Args:
        preset: One of 1h, 24h, 7d, 30d, 90d, 1y. Unknown presets mean no bounds.
        start: Explicit start, used when no preset is given
        end: Explicit end, used when no preset is given

    Returns:
        TimeRange ending at the current minute for presets, otherwise the
        explicit bounds
    """
    if preset:
        try:
            span = PRESET_SPANS[TimeRangePreset(preset)]
        except ValueError:
            logger.debug(f"Ignoring unknown time range preset: {preset}")
            return TimeRange()
        # Presets resolve to minute precision
        now = (now or datetime.now(timezone.utc)).replace(second=0, microsecond=0)
        return TimeRange(start=now - span, end=now)

    return TimeRange(start=start, end=end)


def parse_school_ids(school_ids: Optional[str]) -> Optional[List[str]]:
    """Comma separated ids; blank means every active school"""
    if not school_ids:
        return None
    ids = [s.strip() for s in school_ids.split(",") if s.strip()]
    return ids or None


# ============================================================================
# Analytics Endpoints
# ============================================================================
@router.get("/metrics/{metric}", response_model=MetricReport)
async def get_cross_school_metrics(
    metric: str,
    school_ids: Optional[str] = Query(None, description="Comma separated school ids"),
    time_range: Optional[str] = Query(None, description="1h, 24h, 7d, 30d, 90d or 1y"),
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    service: PlatformAnalyticsService = Depends(get_platform_service)
):
    """
    Aggregate one metric across schools.

    Metrics: overview, users, students, activity, performance
    """
    return await service.aggregate_metrics(
        school_ids=parse_school_ids(school_ids),
        metric=metric,
        time_range=parse_time_range(time_range, start, end),
    )


@router.post("/compare", response_model=ComparisonResult)
async def compare_schools(
    request: CompareRequest,
    service: PlatformAnalyticsService = Depends(get_platform_service)
):
    """Compare school performance and rank schools per criterion"""
    return await service.compare_tenant_performance(
        school_ids=request.school_ids,
        criteria=request.criteria,
        time_range=TimeRange(start=request.start, end=request.end),
    )


@router.get("/trends/{metric}", response_model=TrendResult)
async def get_platform_trends(
    metric: str,
    period: str = Query("weekly", description="daily, weekly or monthly"),
    duration: int = Query(12, description="Number of periods"),
    service: PlatformAnalyticsService = Depends(get_platform_service)
):
    """Trend data and classification for a metric"""
    return await service.generate_trends(metric, period=period, duration=duration)


@router.get("/kpis", response_model=KPIReport)
async def get_platform_kpis(
    time_range: Optional[str] = Query(None, description="1h, 24h, 7d, 30d, 90d or 1y"),
    service: PlatformAnalyticsService = Depends(get_platform_service)
):
    """Platform-wide KPIs for the system admin dashboard"""
    return await service.calculate_platform_kpis(parse_time_range(time_range))


# ============================================================================
# Cache Maintenance Endpoints
# ============================================================================
@router.post("/cache/invalidate", response_model=InvalidationResult)
async def invalidate_platform_cache(
    school_id: Optional[str] = None,
    service: PlatformAnalyticsService = Depends(get_platform_service)
):
    """Invalidate cross-school caches, optionally with one school's entries"""
    if school_id:
        deleted = await service.invalidate_tenant(school_id)
    else:
        deleted = await service.invalidate_cross_tenant_caches()
    return InvalidationResult(deleted=deleted, school_id=school_id)


@router.post("/cache/warm-up", response_model=WarmUpResult)
async def warm_up_platform_cache(
    school_ids: Optional[str] = Query(None, description="Comma separated school ids"),
    service: PlatformAnalyticsService = Depends(get_platform_service)
):
    """Precompute overview, user metrics and KPIs"""
    return await service.warm_up(parse_school_ids(school_ids))


@router.get("/cache/stats")
async def get_cache_stats(
    service: PlatformAnalyticsService = Depends(get_platform_service)
):
    """Cache hit/miss counters"""
    return service.cache_stats()
