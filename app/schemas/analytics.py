# ============================================================================
# Platform Analytics Schemas
# ============================================================================
"""
Pydantic models for cross-school metric reports, comparisons, trends and KPIs.
Reports are cached as JSON (model_dump(mode="json")) and re-validated on read.
"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any, Union
from datetime import datetime, timezone
from enum import Enum


# ============================================================================
# Enums
# ============================================================================
class TrendPeriod(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

class TrendDirection(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"
    INSUFFICIENT_DATA = "insufficient_data"

class TimeRangePreset(str, Enum):
    LAST_HOUR = "1h"
    LAST_24_HOURS = "24h"
    LAST_7_DAYS = "7d"
    LAST_30_DAYS = "30d"
    LAST_90_DAYS = "90d"
    LAST_YEAR = "1y"


# ============================================================================
# Shared
# ============================================================================
class TimeRange(BaseModel):
    """Optional, inclusive bounds. Naive datetimes are taken as UTC."""
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @field_validator("start", "end")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def is_empty(self) -> bool:
        return self.start is None and self.end is None

    def cache_fragment(self) -> str:
        """Deterministic key fragment; equal ranges always render identically"""
        start = self.start.astimezone(timezone.utc).isoformat() if self.start else "-"
        end = self.end.astimezone(timezone.utc).isoformat() if self.end else "-"
        return f"{start}..{end}"

class TenantSummary(BaseModel):
    tenant_id: str
    name: str
    is_active: bool
    subscription_tier: str = "basic"

Score = Union[int, float]


# ============================================================================
# Metric Reports
# ============================================================================
class MetricReport(BaseModel):
    """Aggregated metric over a tenant set"""
    metric: str
    time_range: TimeRange
    tenants: List[TenantSummary]
    data: Dict[str, Any]
    generated_at: datetime
    cached: bool = False


# ============================================================================
# Comparisons
# ============================================================================
class RankingEntry(BaseModel):
    rank: int = Field(..., ge=1)
    tenant_id: str
    tenant_name: str
    score: Score

class ComparedTenant(TenantSummary):
    created_at: Optional[datetime] = None

class TenantComparison(BaseModel):
    tenant_name: str
    data: Dict[str, Any]

class ComparisonResult(BaseModel):
    tenants: List[ComparedTenant]
    criteria: List[str]
    time_range: TimeRange
    comparisons: Dict[str, Dict[str, TenantComparison]]
    rankings: Dict[str, List[RankingEntry]]
    generated_at: datetime
    cached: bool = False

class CompareRequest(BaseModel):
    """Body for school performance comparison"""
    school_ids: List[str] = Field(..., min_length=1)
    criteria: List[str] = Field(default_factory=lambda: ["users", "students", "activity"])
    start: Optional[datetime] = None
    end: Optional[datetime] = None


# ============================================================================
# Trends
# ============================================================================
class TrendWindow(BaseModel):
    start: datetime
    end: datetime

class TrendPoint(BaseModel):
    window: TrendWindow
    data: Dict[str, Any]
    timestamp: datetime

class TrendAnalysis(BaseModel):
    trend: TrendDirection
    change: float = 0
    current_value: Score = 0
    previous_value: Score = 0
    analysis: str

class TrendResult(BaseModel):
    metric: str
    period: TrendPeriod
    duration: int
    trends: List[TrendPoint]
    analysis: TrendAnalysis
    generated_at: datetime
    cached: bool = False


# ============================================================================
# KPIs
# ============================================================================
class KPIReport(BaseModel):
    """Platform-wide KPI composite"""
    schools: Dict[str, Any]
    users: Dict[str, Any]
    students: Dict[str, Any]
    activity: Dict[str, Any]
    system_health: Dict[str, Any]
    growth: Dict[str, Any]
    engagement: Dict[str, Any]
    time_range: TimeRange
    generated_at: datetime
    cached: bool = False


# ============================================================================
# Cache Maintenance
# ============================================================================
class WarmUpResult(BaseModel):
    success: int = 0
    failed: int = 0
    operations: List[str] = Field(default_factory=list)

class InvalidationResult(BaseModel):
    deleted: int
    school_id: Optional[str] = None
