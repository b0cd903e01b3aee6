# ============================================================================
# Test Configuration & Fixtures
# ============================================================================
import pytest
from datetime import datetime, timedelta, timezone
from operator import itemgetter
from typing import Any, Dict, List, Optional, Sequence

from app.config import Settings
from app.core.cache import InMemoryCacheLayer
from app.core.exceptions import CacheFailure, CollaboratorFailure
from app.services.analytics import PlatformAnalyticsService
from app.services.analytics.aggregator import MetricAggregator
from app.services.analytics.caching import ReportCache
from app.services.analytics.stores import (
    Alert,
    AlertFilter,
    DataSources,
    GroupCount,
    RecordFilter,
    Tenant,
)
from app.services.analytics.tenant_catalog import TenantCatalog

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


# ============================================================================
# Fake Collaborators
# ============================================================================
class FakeRecordStore:
    """In-memory RecordStore over plain dict records"""

    def __init__(
        self,
        records: Optional[List[Dict[str, Any]]] = None,
        tenant_column: str = "school_id",
        time_column: str = "created_at",
    ):
        self.records = list(records or [])
        self.tenant_column = tenant_column
        self.time_column = time_column
        self.calls = 0
        self.fail = False

    def _check(self):
        self.calls += 1
        if self.fail:
            raise CollaboratorFailure("fake store", "connection refused")

    def _matches(self, record: Dict[str, Any], flt: RecordFilter) -> bool:
        if flt.tenant_ids is not None and record.get(self.tenant_column) not in flt.tenant_ids:
            return False
        timestamp = record.get(self.time_column)
        if flt.start is not None and (timestamp is None or timestamp < flt.start):
            return False
        if flt.end is not None and (timestamp is None or timestamp > flt.end):
            return False
        return all(record.get(name) == value for name, value in flt.conditions.items())

    def _group_value(self, record: Dict[str, Any], key: str) -> Any:
        if key == "date" and key not in record:
            return record[self.time_column].date().isoformat()
        return record.get(key)

    async def count(self, flt: RecordFilter) -> int:
        self._check()
        return sum(1 for r in self.records if self._matches(r, flt))

    async def group_count(self, flt: RecordFilter, group_keys: Sequence[str]) -> List[GroupCount]:
        self._check()
        counts: Dict[tuple, int] = {}
        # Reverse insertion order so callers cannot rely on store ordering
        for record in reversed(self.records):
            if self._matches(record, flt):
                key = tuple(self._group_value(record, k) for k in group_keys)
                counts[key] = counts.get(key, 0) + 1
        return [GroupCount(key=dict(zip(group_keys, key)), count=count) for key, count in counts.items()]


class FakeTenantStore(FakeRecordStore):
    async def find_active_tenants(self, id_filter: Optional[Sequence[str]] = None) -> List[Tenant]:
        self._check()
        rows = sorted((r for r in self.records if r["is_active"]), key=itemgetter("school_id"))
        if id_filter is not None:
            rows = [r for r in rows if r["school_id"] in id_filter]
        return [
            Tenant(
                tenant_id=r["school_id"],
                name=r["school_name"],
                is_active=True,
                subscription_tier=r.get("subscription_tier", "basic"),
                created_at=r.get("created_at"),
            )
            for r in rows
        ]


class FakeAlertStore:
    def __init__(self, alerts: Optional[List[Dict[str, Any]]] = None):
        self.alerts = list(alerts or [])
        self.calls = 0
        self.fail = False

    async def find(self, flt: AlertFilter) -> List[Alert]:
        self.calls += 1
        if self.fail:
            raise CollaboratorFailure("fake alert store", "connection refused")

        found = []
        for a in sorted(self.alerts, key=itemgetter("created_at")):
            if flt.tenant_ids is not None and not set(a["affected"]) & set(flt.tenant_ids):
                continue
            if flt.alert_types is not None and a["alert_type"] not in flt.alert_types:
                continue
            if flt.severity is not None and a["severity"] != flt.severity:
                continue
            if flt.is_resolved is not None and a["is_resolved"] != flt.is_resolved:
                continue
            if flt.start is not None and a["created_at"] < flt.start:
                continue
            if flt.end is not None and a["created_at"] > flt.end:
                continue
            found.append(Alert(
                alert_type=a["alert_type"],
                severity=a["severity"],
                is_resolved=a["is_resolved"],
                created_at=a["created_at"],
                resolved_at=a.get("resolved_at"),
            ))
        return found


class FailingCacheLayer:
    """Cache backend that is always down"""

    async def get(self, namespace, key):
        raise CacheFailure("get", "connection refused")

    async def set(self, namespace, key, value, ttl):
        raise CacheFailure("set", "connection refused")

    async def delete(self, namespace, key):
        raise CacheFailure("delete", "connection refused")

    async def delete_pattern(self, namespace, pattern):
        raise CacheFailure("delete_pattern", "connection refused")


class FakeTimer:
    """Monotonic clock for cache TTL tests"""

    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ============================================================================
# Record Builders
# ============================================================================
def make_school(school_id, name, is_active=True, tier="basic", created_at=NOW - timedelta(days=100)):
    return {
        "school_id": school_id,
        "school_name": name,
        "is_active": is_active,
        "subscription_tier": tier,
        "created_at": created_at,
    }

def make_users(school_id, role, n, is_active=True, is_verified=True, created_at=NOW - timedelta(days=60)):
    return [
        {
            "school_id": school_id,
            "role": role,
            "is_active": is_active,
            "is_verified": is_verified,
            "created_at": created_at,
        }
        for _ in range(n)
    ]

def make_students(school_id, grade, n, is_active=True, created_at=NOW - timedelta(days=60)):
    return [
        {"school_id": school_id, "grade": grade, "is_active": is_active, "created_at": created_at}
        for _ in range(n)
    ]

def make_log(school_id, operation_type, timestamp):
    return {"target_school_id": school_id, "operation_type": operation_type, "timestamp": timestamp}

def make_alert(alert_type, severity, created_at, affected, resolved_after=None):
    return {
        "alert_type": alert_type,
        "severity": severity,
        "is_resolved": resolved_after is not None,
        "created_at": created_at,
        "resolved_at": created_at + resolved_after if resolved_after is not None else None,
        "affected": affected,
    }

def build_sources(schools=(), users=(), students=(), audit_logs=(), alerts=()) -> DataSources:
    return DataSources(
        tenants=FakeTenantStore(list(schools)),
        users=FakeRecordStore(list(users)),
        students=FakeRecordStore(list(students)),
        audit_logs=FakeRecordStore(list(audit_logs), tenant_column="target_school_id", time_column="timestamp"),
        alerts=FakeAlertStore(list(alerts)),
    )


# ============================================================================
# Fixtures
# ============================================================================
@pytest.fixture
def clock():
    return lambda: NOW

@pytest.fixture
def timer() -> FakeTimer:
    return FakeTimer()

@pytest.fixture
def cache(timer) -> InMemoryCacheLayer:
    return InMemoryCacheLayer(prefix="test", clock=timer)

@pytest.fixture
def failing_cache() -> FailingCacheLayer:
    return FailingCacheLayer()

@pytest.fixture
def report_cache(cache) -> ReportCache:
    return ReportCache(cache)

@pytest.fixture
def settings() -> Settings:
    return Settings(CACHE_BACKEND="memory")

@pytest.fixture
def empty_sources() -> DataSources:
    return build_sources()

@pytest.fixture
def seeded_sources() -> DataSources:
    """
    Two active schools (SCH-A premium, SCH-B basic) and one inactive (SCH-C).

    Active totals: 11 users (4 teachers, 6 parents, 1 admin), 5 students
    (4 active), 4 operations in the last 30 days, 3 performance alerts in
    the last 7 days.
    """
    schools = [
        make_school("SCH-A", "Alpha Academy", tier="premium"),
        make_school("SCH-B", "Beta High", created_at=NOW - timedelta(days=10)),
        make_school("SCH-C", "Gamma College", is_active=False, tier="standard", created_at=NOW - timedelta(days=5)),
    ]
    users = (
        make_users("SCH-A", "teacher", 3)
        + make_users("SCH-A", "parent", 3)
        + make_users("SCH-A", "parent", 1, is_active=False, is_verified=False)
        + make_users("SCH-A", "admin", 1)
        + make_users("SCH-B", "teacher", 1, created_at=NOW - timedelta(days=2))
        + make_users("SCH-B", "parent", 2, is_verified=False)
        + make_users("SCH-C", "teacher", 5)
    )
    students = (
        make_students("SCH-A", "Grade 1", 2)
        + make_students("SCH-A", "Grade 2", 1)
        + make_students("SCH-A", "Grade 2", 1, is_active=False)
        + make_students("SCH-B", "Grade 1", 1, created_at=NOW - timedelta(days=3))
        + make_students("SCH-C", "Grade 3", 2)
    )
    audit_logs = [
        make_log("SCH-A", "read", NOW - timedelta(hours=1)),
        make_log("SCH-A", "update", NOW - timedelta(hours=1)),
        make_log("SCH-A", "read", NOW - timedelta(days=3)),
        make_log("SCH-A", "create", NOW - timedelta(days=40)),
        make_log("SCH-B", "read", NOW - timedelta(hours=2)),
        make_log("SCH-C", "read", NOW - timedelta(hours=1)),
    ]
    alerts = [
        make_alert("performance", "critical", NOW - timedelta(hours=2), ["SCH-A"]),
        make_alert("error", "warning", NOW - timedelta(days=2), ["SCH-A"], resolved_after=timedelta(minutes=30)),
        make_alert("system_health", "info", NOW - timedelta(days=1), ["SCH-B"], resolved_after=timedelta(minutes=61)),
        make_alert("security", "critical", NOW - timedelta(hours=1), ["SCH-B"]),
        make_alert("performance", "error", NOW - timedelta(days=20), ["SCH-A"], resolved_after=timedelta(minutes=5)),
    ]
    return build_sources(schools, users, students, audit_logs, alerts)

@pytest.fixture
def make_aggregator(report_cache, clock):
    def _make(sources: DataSources, cache: Optional[ReportCache] = None) -> MetricAggregator:
        return MetricAggregator(
            sources,
            TenantCatalog(sources.tenants),
            cache or report_cache,
            ttls={"activity": 300, "performance": 300},
            default_ttl=600,
            clock=clock,
        )
    return _make

@pytest.fixture
def make_service(cache, settings, clock):
    def _make(sources: DataSources, cache_layer=None) -> PlatformAnalyticsService:
        return PlatformAnalyticsService(sources, cache_layer or cache, settings, clock=clock)
    return _make

@pytest.fixture
async def sql_session_maker(tmp_path):
    """File-backed SQLite database so concurrent sessions get their own connections"""
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
    from app.core.database import Base

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'analytics.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()
