# ============================================================================
# Platform Analytics Module
# ============================================================================
"""
Cross-school analytics engine for the system admin dashboard.

Services:
- PlatformAnalyticsService: Facade over the components below plus cache maintenance
- MetricAggregator: Overview, user, student, activity and performance metrics
- ComparisonEngine: Per-criterion school comparison and rankings
- TrendAnalyzer: Daily, weekly and monthly trends with classification
- KPICalculator: Platform KPI composite
- TenantCatalog: Active school resolution
"""

from app.services.analytics.aggregator import MetricAggregator
from app.services.analytics.comparison import ComparisonEngine, rank_tenants
from app.services.analytics.kpi import KPICalculator
from app.services.analytics.metrics import Metric
from app.services.analytics.platform_service import PlatformAnalyticsService
from app.services.analytics.stores import DataSources, create_sql_sources
from app.services.analytics.tenant_catalog import TenantCatalog
from app.services.analytics.trends import TrendAnalyzer, generate_windows

__all__ = [
    "PlatformAnalyticsService",
    "MetricAggregator",
    "ComparisonEngine",
    "TrendAnalyzer",
    "KPICalculator",
    "TenantCatalog",
    "DataSources",
    "Metric",
    "create_sql_sources",
    "generate_windows",
    "rank_tenants",
]
