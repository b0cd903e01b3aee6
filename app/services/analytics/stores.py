# ============================================================================
# Analytics Data Stores
# ============================================================================
"""
Read-side data collaborators for the analytics engine.

Each store call opens its own AsyncSession from the shared session maker,
so independent sub-queries can be awaited concurrently with asyncio.gather.
Database errors are surfaced as CollaboratorFailure and never retried here.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import CollaboratorFailure
from app.models.monitoring import AlertAffectedSchool, PlatformAuditLog, SystemAlert
from app.models.school import School
from app.models.user import Student, User
from app.schemas.analytics import TenantSummary

logger = logging.getLogger(__name__)


# ============================================================================
# Records & Filters
# ============================================================================
@dataclass(frozen=True)
class Tenant:
    tenant_id: str
    name: str
    is_active: bool
    subscription_tier: str = "basic"
    created_at: Optional[datetime] = None

    def summary(self) -> TenantSummary:
        return TenantSummary(
            tenant_id=self.tenant_id,
            name=self.name,
            is_active=self.is_active,
            subscription_tier=self.subscription_tier,
        )


@dataclass
class RecordFilter:
    """
    Filter for count/group queries.

    tenant_ids=None means platform-wide; an empty sequence matches nothing.
    start/end are inclusive bounds on the store's time column. conditions
    are column equality tests.
    """
    tenant_ids: Optional[Sequence[str]] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    conditions: Dict[str, Any] = field(default_factory=dict)

    def where(self, **conditions: Any) -> "RecordFilter":
        return replace(self, conditions={**self.conditions, **conditions})


@dataclass
class GroupCount:
    key: Dict[str, Any]
    count: int


@dataclass
class Alert:
    alert_type: str
    severity: str
    is_resolved: bool
    created_at: datetime
    resolved_at: Optional[datetime] = None


@dataclass
class AlertFilter:
    tenant_ids: Optional[Sequence[str]] = None
    alert_types: Optional[Sequence[str]] = None
    severity: Optional[str] = None
    is_resolved: Optional[bool] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None


# ============================================================================
# Store Protocols
# ============================================================================
class RecordStore(Protocol):
    """Count and group-count over one record type"""

    async def count(self, flt: RecordFilter) -> int:
        ...

    async def group_count(self, flt: RecordFilter, group_keys: Sequence[str]) -> List[GroupCount]:
        ...


class TenantStore(RecordStore, Protocol):
    async def find_active_tenants(self, id_filter: Optional[Sequence[str]] = None) -> List[Tenant]:
        ...


class AlertStore(Protocol):
    async def find(self, flt: AlertFilter) -> List[Alert]:
        ...


@dataclass
class DataSources:
    """Bundle of collaborators consumed by the analytics components"""
    tenants: TenantStore
    users: RecordStore
    students: RecordStore
    audit_logs: RecordStore
    alerts: AlertStore


# ============================================================================
# SQLAlchemy Implementations
# ============================================================================
def _plain(value: Any) -> Any:
    """Normalize enum members and dates coming back from the database"""
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()[:10]
    return value


class SQLStore:
    collaborator = "store"

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def _fetch(self, stmt) -> List[Any]:
        try:
            async with self._session_maker() as session:
                result = await session.execute(stmt)
                return list(result.all())
        except SQLAlchemyError as e:
            logger.error(f"{self.collaborator} query failed: {e}")
            raise CollaboratorFailure(self.collaborator, str(e)) from e


class SQLRecordStore(SQLStore):
    """Generic count/group-count store over one mapped model"""
    model = None
    tenant_column = "school_id"
    time_column = "created_at"

    def _column(self, name: str):
        try:
            return self.model.__table__.c[name]
        except KeyError:
            raise ValueError(f"Unknown column '{name}' for {self.model.__tablename__}") from None

    def _group_expression(self, key: str):
        return self._column(key)

    def _clauses(self, flt: RecordFilter) -> list:
        clauses = []
        if flt.tenant_ids is not None:
            clauses.append(self._column(self.tenant_column).in_(list(flt.tenant_ids)))
        if flt.start is not None:
            clauses.append(self._column(self.time_column) >= flt.start)
        if flt.end is not None:
            clauses.append(self._column(self.time_column) <= flt.end)
        for name, value in flt.conditions.items():
            clauses.append(self._column(name) == value)
        return clauses

    async def count(self, flt: RecordFilter) -> int:
        stmt = select(func.count()).select_from(self.model.__table__).where(*self._clauses(flt))
        rows = await self._fetch(stmt)
        return rows[0][0] or 0

    async def group_count(self, flt: RecordFilter, group_keys: Sequence[str]) -> List[GroupCount]:
        expressions = [self._group_expression(key) for key in group_keys]
        stmt = (
            select(*expressions, func.count().label("count"))
            .select_from(self.model.__table__)
            .where(*self._clauses(flt))
            .group_by(*expressions)
        )
        rows = await self._fetch(stmt)
        return [
            GroupCount(
                key={key: _plain(row[i]) for i, key in enumerate(group_keys)},
                count=row[-1],
            )
            for row in rows
        ]


class SQLTenantStore(SQLRecordStore):
    collaborator = "tenant store"
    model = School

    async def find_active_tenants(self, id_filter: Optional[Sequence[str]] = None) -> List[Tenant]:
        stmt = (
            select(
                School.school_id,
                School.school_name,
                School.is_active,
                School.subscription_tier,
                School.created_at,
            )
            .where(School.is_active == True)
            .order_by(School.school_id)
        )
        if id_filter is not None:
            stmt = stmt.where(School.school_id.in_(list(id_filter)))

        rows = await self._fetch(stmt)
        return [
            Tenant(
                tenant_id=row[0],
                name=row[1],
                is_active=bool(row[2]),
                subscription_tier=_plain(row[3]) or "basic",
                created_at=row[4],
            )
            for row in rows
        ]


class SQLUserStore(SQLRecordStore):
    collaborator = "user store"
    model = User


class SQLStudentStore(SQLRecordStore):
    collaborator = "student store"
    model = Student


class SQLAuditLogStore(SQLRecordStore):
    collaborator = "audit log store"
    model = PlatformAuditLog
    tenant_column = "target_school_id"
    time_column = "timestamp"

    def _group_expression(self, key: str):
        # "date" is the calendar day of the entry's timestamp
        if key == "date":
            return func.date(PlatformAuditLog.timestamp)
        return super()._group_expression(key)


class SQLAlertStore(SQLStore):
    collaborator = "alert store"

    async def find(self, flt: AlertFilter) -> List[Alert]:
        stmt = select(
            SystemAlert.alert_type,
            SystemAlert.severity,
            SystemAlert.is_resolved,
            SystemAlert.created_at,
            SystemAlert.resolved_at,
        ).order_by(SystemAlert.created_at)

        if flt.tenant_ids is not None:
            affected = select(AlertAffectedSchool.alert_id).where(
                AlertAffectedSchool.school_id.in_(list(flt.tenant_ids))
            )
            stmt = stmt.where(SystemAlert.id.in_(affected))
        if flt.alert_types is not None:
            stmt = stmt.where(SystemAlert.alert_type.in_(list(flt.alert_types)))
        if flt.severity is not None:
            stmt = stmt.where(SystemAlert.severity == flt.severity)
        if flt.is_resolved is not None:
            stmt = stmt.where(SystemAlert.is_resolved == flt.is_resolved)
        if flt.start is not None:
            stmt = stmt.where(SystemAlert.created_at >= flt.start)
        if flt.end is not None:
            stmt = stmt.where(SystemAlert.created_at <= flt.end)

        rows = await self._fetch(stmt)
        return [
            Alert(
                alert_type=_plain(row[0]),
                severity=_plain(row[1]),
                is_resolved=bool(row[2]),
                created_at=row[3],
                resolved_at=row[4],
            )
            for row in rows
        ]


def create_sql_sources(session_maker: async_sessionmaker[AsyncSession]) -> DataSources:
    return DataSources(
        tenants=SQLTenantStore(session_maker),
        users=SQLUserStore(session_maker),
        students=SQLStudentStore(session_maker),
        audit_logs=SQLAuditLogStore(session_maker),
        alerts=SQLAlertStore(session_maker),
    )
