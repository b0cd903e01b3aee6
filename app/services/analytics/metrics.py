# ============================================================================
# Cross-School Metric Computations
# ============================================================================
"""
Supported metrics and their computations.

Every metric maps to one coroutine ``(sources, tenant_ids, time_range, now)
-> data`` in METRIC_COMPUTATIONS. Scalar extraction for rankings and trend
comparison lives in SCORE_EXTRACTORS and TREND_VALUE_EXTRACTORS next to the
enum, so adding a metric means updating these tables only.
"""
import asyncio
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from operator import itemgetter
from typing import Any, Awaitable, Callable, Dict, List, Sequence, Union

from app.core.exceptions import InvalidMetric
from app.models.monitoring import AlertSeverity, AlertType
from app.models.user import UserRole
from app.schemas.analytics import TimeRange
from app.services.analytics.stores import (
    Alert,
    AlertFilter,
    DataSources,
    GroupCount,
    RecordFilter,
)

Number = Union[int, float]
MetricData = Dict[str, Any]


class Metric(str, Enum):
    OVERVIEW = "overview"
    USERS = "users"
    STUDENTS = "students"
    ACTIVITY = "activity"
    PERFORMANCE = "performance"

    @classmethod
    def parse(cls, value: Union[str, "Metric"]) -> "Metric":
        try:
            return cls(value)
        except ValueError:
            raise InvalidMetric(str(value)) from None


PERFORMANCE_ALERT_TYPES = (
    AlertType.PERFORMANCE.value,
    AlertType.ERROR.value,
    AlertType.SYSTEM_HEALTH.value,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _created_filter(tenant_ids: Sequence[str], time_range: TimeRange) -> RecordFilter:
    return RecordFilter(tenant_ids=list(tenant_ids), start=time_range.start, end=time_range.end)


# =========================================================================
# Overview
# =========================================================================
async def overview_metrics(
    sources: DataSources,
    tenant_ids: Sequence[str],
    time_range: TimeRange,
    now: datetime,
) -> MetricData:
    """Platform totals with a per-role user breakdown"""
    scope = RecordFilter(tenant_ids=list(tenant_ids))

    total_users, total_students, teachers, parents, admins = await asyncio.gather(
        sources.users.count(scope),
        sources.students.count(scope),
        sources.users.count(scope.where(role=UserRole.TEACHER.value)),
        sources.users.count(scope.where(role=UserRole.PARENT.value)),
        sources.users.count(scope.where(role=UserRole.ADMIN.value)),
    )

    return {
        "total_schools": len(tenant_ids),
        "total_users": total_users,
        "total_students": total_students,
        "breakdown": {
            "teachers": teachers,
            "parents": parents,
            "admins": admins,
        },
    }


# =========================================================================
# Users
# =========================================================================
def fold_user_groups(rows: List[GroupCount]) -> MetricData:
    """
    Fold (role, is_active, is_verified) group counts into role and status totals.

    Rows are sorted before folding so identical inputs always produce
    identical output regardless of the order the store returned them in.
    """
    stats: MetricData = {
        "by_role": {},
        "by_status": {
            "active": 0,
            "inactive": 0,
            "verified": 0,
            "unverified": 0,
        },
        "total": 0,
    }

    ordered = sorted(
        rows,
        key=lambda r: (str(r.key["role"]), bool(r.key["is_active"]), bool(r.key["is_verified"])),
    )
    for row in ordered:
        role = str(row.key["role"])
        count = row.count
        by_role = stats["by_role"].setdefault(role, {"total": 0, "active": 0, "verified": 0})

        by_role["total"] += count
        stats["total"] += count

        if row.key["is_active"]:
            by_role["active"] += count
            stats["by_status"]["active"] += count
        else:
            stats["by_status"]["inactive"] += count

        if row.key["is_verified"]:
            by_role["verified"] += count
            stats["by_status"]["verified"] += count
        else:
            stats["by_status"]["unverified"] += count

    return stats


async def user_metrics(
    sources: DataSources,
    tenant_ids: Sequence[str],
    time_range: TimeRange,
    now: datetime,
) -> MetricData:
    rows = await sources.users.group_count(
        _created_filter(tenant_ids, time_range),
        ["role", "is_active", "is_verified"],
    )
    return fold_user_groups(rows)


# =========================================================================
# Students
# =========================================================================
async def student_metrics(
    sources: DataSources,
    tenant_ids: Sequence[str],
    time_range: TimeRange,
    now: datetime,
) -> MetricData:
    scope = _created_filter(tenant_ids, time_range)
    active_scope = scope.where(is_active=True)

    total, active, grade_rows = await asyncio.gather(
        sources.students.count(scope),
        sources.students.count(active_scope),
        sources.students.group_count(active_scope, ["grade"]),
    )

    by_grade = sorted(
        ({"grade": row.key["grade"], "count": row.count} for row in grade_rows),
        key=lambda item: str(item["grade"]),
    )

    return {
        "total": total,
        "active": active,
        "inactive": total - active,
        "by_grade": by_grade,
    }


# =========================================================================
# Activity
# =========================================================================
ACTIVITY_DEFAULT_DAYS = 30


async def activity_metrics(
    sources: DataSources,
    tenant_ids: Sequence[str],
    time_range: TimeRange,
    now: datetime,
) -> MetricData:
    """Audit-log operations grouped by type and calendar day"""
    start = time_range.start or now - timedelta(days=ACTIVITY_DEFAULT_DAYS)
    end = time_range.end or now

    rows = await sources.audit_logs.group_count(
        RecordFilter(tenant_ids=list(tenant_ids), start=start, end=end),
        ["operation_type", "date"],
    )

    by_type: Dict[str, int] = defaultdict(int)
    by_date: Dict[str, int] = defaultdict(int)
    for row in sorted(rows, key=lambda r: (str(r.key["date"]), str(r.key["operation_type"]))):
        by_type[str(row.key["operation_type"])] += row.count
        by_date[str(row.key["date"])] += row.count

    return {
        "total_operations": sum(row.count for row in rows),
        "by_type": dict(sorted(by_type.items())),
        "by_date": dict(sorted(by_date.items())),
        "time_range": {
            "start": start.isoformat(),
            "end": end.isoformat(),
        },
    }


# =========================================================================
# Performance
# =========================================================================
PERFORMANCE_DEFAULT_DAYS = 7


def average_resolution_minutes(alerts: List[Alert]) -> int:
    """Mean time to resolve, over resolved alerts only"""
    resolved = [a for a in alerts if a.is_resolved and a.resolved_at is not None]
    if not resolved:
        return 0

    total_seconds = sum((a.resolved_at - a.created_at).total_seconds() for a in resolved)
    return round_half_up(total_seconds / len(resolved) / 60)


def _tally(values) -> Dict[str, int]:
    counts: Dict[str, int] = defaultdict(int)
    for value in values:
        counts[value] += 1
    return dict(sorted(counts.items()))


async def performance_metrics(
    sources: DataSources,
    tenant_ids: Sequence[str],
    time_range: TimeRange,
    now: datetime,
) -> MetricData:
    alerts = await sources.alerts.find(
        AlertFilter(
            tenant_ids=list(tenant_ids),
            alert_types=PERFORMANCE_ALERT_TYPES,
            start=time_range.start or now - timedelta(days=PERFORMANCE_DEFAULT_DAYS),
            end=time_range.end or now,
        )
    )

    return {
        "total_alerts": len(alerts),
        "critical_alerts": sum(1 for a in alerts if a.severity == AlertSeverity.CRITICAL.value),
        "resolved_alerts": sum(1 for a in alerts if a.is_resolved),
        "average_resolution_time": average_resolution_minutes(alerts),
        "alerts_by_type": _tally(a.alert_type for a in alerts),
        "alerts_by_severity": _tally(a.severity for a in alerts),
    }


# =========================================================================
# Dispatch & Extraction Tables
# =========================================================================
MetricComputation = Callable[[DataSources, Sequence[str], TimeRange, datetime], Awaitable[MetricData]]

METRIC_COMPUTATIONS: Dict[Metric, MetricComputation] = {
    Metric.OVERVIEW: overview_metrics,
    Metric.USERS: user_metrics,
    Metric.STUDENTS: student_metrics,
    Metric.ACTIVITY: activity_metrics,
    Metric.PERFORMANCE: performance_metrics,
}

# Ranking score per comparison criterion
SCORE_EXTRACTORS: Dict[Metric, Callable[[MetricData], Number]] = {
    Metric.OVERVIEW: itemgetter("total_users"),
    Metric.USERS: itemgetter("total"),
    Metric.STUDENTS: itemgetter("active"),
    Metric.ACTIVITY: itemgetter("total_operations"),
    Metric.PERFORMANCE: itemgetter("resolved_alerts"),
}

# Value compared between the two most recent trend windows
TREND_VALUE_EXTRACTORS: Dict[Metric, Callable[[MetricData], Number]] = {
    Metric.OVERVIEW: itemgetter("total_users"),
    Metric.USERS: itemgetter("total"),
    Metric.STUDENTS: itemgetter("active"),
}
