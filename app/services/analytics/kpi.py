# ============================================================================
# Platform KPI Calculator
# ============================================================================
"""
Platform-wide KPI composite.

Seven independent sub-computations (schools, users, students, activity,
system health, growth, engagement) run concurrently over the active school
set. The report is returned only when all of them succeed.
"""
import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence

from app.models.monitoring import AlertSeverity
from app.schemas.analytics import KPIReport, TimeRange
from app.services.analytics.aggregator import MetricAggregator
from app.services.analytics.caching import ReportCache
from app.services.analytics.metrics import Metric, round_half_up, utcnow
from app.services.analytics.stores import AlertFilter, DataSources, RecordFilter, Tenant
from app.services.analytics.tenant_catalog import TenantCatalog

logger = logging.getLogger(__name__)

KPI_TTL = 300
GROWTH_DAYS = 30
ENGAGEMENT_DAYS = 7


class KPICalculator:
    def __init__(
        self,
        sources: DataSources,
        aggregator: MetricAggregator,
        catalog: TenantCatalog,
        cache: ReportCache,
        ttl: int = KPI_TTL,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.sources = sources
        self.aggregator = aggregator
        self.catalog = catalog
        self.cache = cache
        self.ttl = ttl
        self.clock = clock

    @staticmethod
    def cache_key(time_range: TimeRange) -> str:
        return f"kpis:{time_range.cache_fragment()}"

    async def calculate_kpis(self, time_range: Optional[TimeRange] = None) -> KPIReport:
        time_range = time_range or TimeRange()
        key = self.cache_key(time_range)

        cached = await self.cache.load(key, KPIReport)
        if cached is not None:
            return cached

        tenants = await self.catalog.resolve(None)
        tenant_ids = [t.tenant_id for t in tenants]
        now = self.clock()

        (
            schools,
            users,
            students,
            activity,
            system_health,
            growth,
            engagement,
        ) = await asyncio.gather(
            self._school_kpis(tenants),
            self.aggregator.compute(Metric.USERS, tenant_ids, time_range),
            self.aggregator.compute(Metric.STUDENTS, tenant_ids, time_range),
            self._activity_kpis(tenant_ids, now),
            self._system_health_kpis(now),
            self._growth_kpis(tenant_ids, now),
            self._engagement_kpis(tenant_ids, now),
        )

        report = KPIReport(
            schools=schools,
            users=users,
            students=students,
            activity=activity,
            system_health=system_health,
            growth=growth,
            engagement=engagement,
            time_range=time_range,
            generated_at=now,
            cached=False,
        )

        await self.cache.store(key, report, self.ttl)
        return report

    # =========================================================================
    # KPI Sections
    # =========================================================================
    async def _school_kpis(self, tenants: List[Tenant]) -> Dict[str, Any]:
        """Active schools and active schools per tier"""
        by_tier: Dict[str, int] = defaultdict(int)
        for tenant in tenants:
            by_tier[tenant.subscription_tier or "basic"] += 1

        return {
            "total": len(tenants),
            "active": len(tenants),
            "by_tier": dict(sorted(by_tier.items())),
        }

    async def _activity_kpis(self, tenant_ids: Sequence[str], now: datetime) -> Dict[str, Any]:
        recent_activity = await self.sources.audit_logs.count(
            RecordFilter(tenant_ids=list(tenant_ids), start=now - timedelta(hours=24))
        )
        return {
            "recent_activity": recent_activity,
            "daily_active_operations": recent_activity,
        }

    async def _system_health_kpis(self, now: datetime) -> Dict[str, Any]:
        # Platform-wide: critical alerts matter whichever school they touch
        alerts = await self.sources.alerts.find(
            AlertFilter(
                severity=AlertSeverity.CRITICAL.value,
                is_resolved=False,
                start=now - timedelta(hours=24),
            )
        )
        critical_alerts = len(alerts)
        return {
            "critical_alerts": critical_alerts,
            "system_status": "healthy" if critical_alerts == 0 else "attention_required",
        }

    async def _growth_kpis(self, tenant_ids: Sequence[str], now: datetime) -> Dict[str, Any]:
        recent = RecordFilter(tenant_ids=list(tenant_ids), start=now - timedelta(days=GROWTH_DAYS))

        new_schools, new_users, new_students = await asyncio.gather(
            self.sources.tenants.count(recent),
            self.sources.users.count(recent),
            self.sources.students.count(recent),
        )
        return {
            "new_schools": new_schools,
            "new_users": new_users,
            "new_students": new_students,
            "period": f"{GROWTH_DAYS}_days",
        }

    async def _engagement_kpis(self, tenant_ids: Sequence[str], now: datetime) -> Dict[str, Any]:
        weekly_operations = await self.sources.audit_logs.count(
            RecordFilter(tenant_ids=list(tenant_ids), start=now - timedelta(days=ENGAGEMENT_DAYS))
        )
        return {
            "weekly_operations": weekly_operations,
            "average_daily_operations": round_half_up(weekly_operations / ENGAGEMENT_DAYS),
        }
