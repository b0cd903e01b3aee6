# ============================================================================
# SQL Store Tests
# ============================================================================
import pytest
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.exceptions import CollaboratorFailure
from app.models import (
    AlertAffectedSchool,
    AlertSeverity,
    AlertType,
    OperationType,
    PlatformAuditLog,
    School,
    Student,
    SubscriptionTier,
    SystemAlert,
    User,
    UserRole,
)
from app.services.analytics.stores import AlertFilter, RecordFilter, create_sql_sources

from conftest import NOW

def _user(n, school_id, role, is_active=True, is_verified=True, days_ago=60):
    return User(
        school_id=school_id,
        email=f"{school_id.lower()}-{role.value}-{n}@example.com",
        role=role,
        is_active=is_active,
        is_verified=is_verified,
        created_at=NOW - timedelta(days=days_ago),
    )

@pytest.fixture
async def sources(sql_session_maker):
    async with sql_session_maker() as session:
        session.add_all([
            School(school_id="SCH-B", school_name="Beta High", subscription_tier=SubscriptionTier.BASIC,
                   created_at=NOW - timedelta(days=10)),
            School(school_id="SCH-A", school_name="Alpha Academy", subscription_tier=SubscriptionTier.PREMIUM,
                   created_at=NOW - timedelta(days=100)),
            School(school_id="SCH-C", school_name="Gamma College", is_active=False,
                   created_at=NOW - timedelta(days=5)),
        ])
        await session.flush()

        session.add_all([
            _user(1, "SCH-A", UserRole.TEACHER),
            _user(2, "SCH-A", UserRole.TEACHER),
            _user(3, "SCH-A", UserRole.PARENT, is_active=False, is_verified=False),
            _user(4, "SCH-A", UserRole.ADMIN),
            _user(5, "SCH-B", UserRole.TEACHER, days_ago=2),
            _user(6, "SCH-C", UserRole.TEACHER),
            Student(school_id="SCH-A", first_name="Tariro", grade="Grade 1", created_at=NOW - timedelta(days=60)),
            Student(school_id="SCH-A", first_name="Kuda", grade="Grade 2", created_at=NOW - timedelta(days=60)),
            Student(school_id="SCH-A", first_name="Rudo", grade="Grade 2", is_active=False,
                    created_at=NOW - timedelta(days=60)),
            PlatformAuditLog(operation="view dashboard", operation_type=OperationType.READ,
                             user_email="ops@example.com", target_school_id="SCH-A",
                             timestamp=NOW - timedelta(hours=1)),
            PlatformAuditLog(operation="update profile", operation_type=OperationType.UPDATE,
                             user_email="ops@example.com", target_school_id="SCH-A",
                             timestamp=NOW - timedelta(days=3)),
            PlatformAuditLog(operation="view dashboard", operation_type=OperationType.READ,
                             user_email="ops@example.com", target_school_id="SCH-B",
                             timestamp=NOW - timedelta(hours=2)),
            SystemAlert(alert_type=AlertType.PERFORMANCE, severity=AlertSeverity.CRITICAL,
                        title="Slow queries", created_at=NOW - timedelta(hours=3),
                        affected_schools=[AlertAffectedSchool(school_id="SCH-A")]),
            SystemAlert(alert_type=AlertType.ERROR, severity=AlertSeverity.WARNING,
                        title="Import failed", is_resolved=True, created_at=NOW - timedelta(days=1),
                        resolved_at=NOW - timedelta(days=1) + timedelta(minutes=20),
                        affected_schools=[AlertAffectedSchool(school_id="SCH-B")]),
            SystemAlert(alert_type=AlertType.SECURITY, severity=AlertSeverity.CRITICAL,
                        title="Login burst", created_at=NOW - timedelta(hours=1),
                        affected_schools=[AlertAffectedSchool(school_id="SCH-A"),
                                          AlertAffectedSchool(school_id="SCH-B")]),
        ])
        await session.commit()

    return create_sql_sources(sql_session_maker)

class TestSQLTenantStore:
    async def test_find_active_tenants(self, sources):
        tenants = await sources.tenants.find_active_tenants()

        assert [t.tenant_id for t in tenants] == ["SCH-A", "SCH-B"]
        assert tenants[0].name == "Alpha Academy"
        assert tenants[0].subscription_tier == "premium"
        assert tenants[0].is_active is True

    async def test_id_filter(self, sources):
        tenants = await sources.tenants.find_active_tenants(["SCH-B", "SCH-C"])

        assert [t.tenant_id for t in tenants] == ["SCH-B"]

    async def test_count_includes_inactive_schools(self, sources):
        assert await sources.tenants.count(RecordFilter()) == 3
        assert await sources.tenants.count(RecordFilter(start=NOW - timedelta(days=30))) == 2

class TestSQLRecordStores:
    async def test_count_with_conditions(self, sources):
        scope = RecordFilter(tenant_ids=["SCH-A", "SCH-B"])

        assert await sources.users.count(scope) == 5
        assert await sources.users.count(scope.where(role=UserRole.TEACHER.value)) == 3
        assert await sources.users.count(RecordFilter()) == 6

    async def test_empty_tenant_list_matches_nothing(self, sources):
        assert await sources.users.count(RecordFilter(tenant_ids=[])) == 0

    async def test_time_bounds_are_inclusive(self, sources):
        created = NOW - timedelta(days=2)

        assert await sources.users.count(RecordFilter(start=created, end=created)) == 1

    async def test_user_group_count(self, sources):
        rows = await sources.users.group_count(
            RecordFilter(tenant_ids=["SCH-A"]),
            ["role", "is_active", "is_verified"],
        )

        groups = {(r.key["role"], r.key["is_active"], r.key["is_verified"]): r.count for r in rows}
        assert groups == {
            ("teacher", True, True): 2,
            ("parent", False, False): 1,
            ("admin", True, True): 1,
        }

    async def test_student_grade_groups(self, sources):
        rows = await sources.students.group_count(
            RecordFilter(tenant_ids=["SCH-A"]).where(is_active=True),
            ["grade"],
        )

        assert sorted((r.key["grade"], r.count) for r in rows) == [("Grade 1", 1), ("Grade 2", 1)]

    async def test_audit_log_groups_by_calendar_day(self, sources):
        rows = await sources.audit_logs.group_count(
            RecordFilter(tenant_ids=["SCH-A", "SCH-B"]),
            ["operation_type", "date"],
        )

        groups = {(r.key["operation_type"], r.key["date"]): r.count for r in rows}
        assert groups == {
            ("read", "2024-03-15"): 2,
            ("update", "2024-03-12"): 1,
        }

    async def test_unknown_column(self, sources):
        with pytest.raises(ValueError):
            await sources.users.count(RecordFilter().where(nickname="x"))

class TestSQLAlertStore:
    async def test_filters(self, sources):
        alerts = await sources.alerts.find(AlertFilter(
            tenant_ids=["SCH-A"],
            alert_types=["performance", "error", "system_health"],
        ))

        assert [(a.alert_type, a.severity) for a in alerts] == [("performance", "critical")]

    async def test_shared_alert_is_returned_once(self, sources):
        alerts = await sources.alerts.find(AlertFilter(tenant_ids=["SCH-A", "SCH-B"], severity="critical"))

        assert [a.alert_type for a in alerts] == ["performance", "security"]

    async def test_resolution_fields(self, sources):
        alerts = await sources.alerts.find(AlertFilter(is_resolved=True))

        assert len(alerts) == 1
        assert (alerts[0].resolved_at - alerts[0].created_at) == timedelta(minutes=20)

class TestSQLFailures:
    async def test_database_errors_become_collaborator_failures(self, tmp_path):
        # Tables are never created, so every query fails
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
        broken = create_sql_sources(async_sessionmaker(engine, class_=AsyncSession))

        with pytest.raises(CollaboratorFailure) as exc_info:
            await broken.users.count(RecordFilter())

        assert exc_info.value.status_code == 503
        await engine.dispose()

class TestAggregationOverSQL:
    async def test_overview_and_kpis(self, sources, make_service):
        service = make_service(sources)

        overview = await service.aggregate_metrics(None, "overview")
        kpis = await service.calculate_platform_kpis()

        assert overview.data["total_users"] == 5
        assert overview.data["breakdown"] == {"teachers": 3, "parents": 1, "admins": 1}
        assert overview.data["total_students"] == 3
        assert kpis.schools["by_tier"] == {"basic": 1, "premium": 1}
        assert kpis.system_health["critical_alerts"] == 2
        assert kpis.growth["new_users"] == 1
