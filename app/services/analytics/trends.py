# ============================================================================
# Trend Analyzer
# ============================================================================
"""
Time-series trends for platform metrics.

A trend is ``duration`` consecutive windows ending now, each aggregated over
all active schools. The two most recent windows are compared to classify
the trend:

    change = (current - previous) / previous * 100
    change >  5  -> increasing
    change < -5  -> decreasing
    otherwise    -> stable
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Union

from app.core.exceptions import InvalidTrendRequest
from app.schemas.analytics import (
    TimeRange,
    TrendAnalysis,
    TrendDirection,
    TrendPeriod,
    TrendPoint,
    TrendResult,
    TrendWindow,
)
from app.services.analytics.aggregator import MetricAggregator
from app.services.analytics.caching import ReportCache
from app.services.analytics.metrics import TREND_VALUE_EXTRACTORS, Metric, utcnow

logger = logging.getLogger(__name__)

TRENDS_TTL = 1800
MAX_DURATION = 104
TREND_THRESHOLD = 5
ONE_MICROSECOND = timedelta(microseconds=1)

FIXED_WIDTHS = {
    TrendPeriod.DAILY: timedelta(days=1),
    TrendPeriod.WEEKLY: timedelta(days=7),
}


def _month_start(month_number: int) -> datetime:
    year, month_index = divmod(month_number, 12)
    return datetime(year, month_index + 1, 1, tzinfo=timezone.utc)


def generate_windows(period: TrendPeriod, duration: int, now: datetime) -> List[TrendWindow]:
    """
    Build ``duration`` non-overlapping windows, oldest first.

    Daily and weekly windows slide back from ``now`` in fixed steps. Monthly
    windows cover whole calendar months, starting with the last complete
    month. Bounds are inclusive, so each window ends one microsecond before
    the next begins.
    """
    windows = []

    if period == TrendPeriod.MONTHLY:
        now = now.astimezone(timezone.utc)
        current_month = now.year * 12 + now.month - 1
        for i in range(duration - 1, -1, -1):
            start = _month_start(current_month - (i + 1))
            end = _month_start(current_month - i) - ONE_MICROSECOND
            windows.append(TrendWindow(start=start, end=end))
        return windows

    width = FIXED_WIDTHS[period]
    for i in range(duration - 1, -1, -1):
        start = now - width * (i + 1)
        end = now - width * i
        if i > 0:
            end -= ONE_MICROSECOND
        windows.append(TrendWindow(start=start, end=end))
    return windows


def percentage_change(previous: float, current: float) -> float:
    if previous > 0:
        return (current - previous) / previous * 100
    return 0


def describe_trend(trend: TrendDirection, change: float) -> str:
    if trend == TrendDirection.INCREASING:
        return f"Positive growth trend with {abs(change)}% increase"
    if trend == TrendDirection.DECREASING:
        return f"Declining trend with {abs(change)}% decrease"
    if trend == TrendDirection.STABLE:
        return f"Stable performance with minimal change ({abs(change)}%)"
    return "Not enough data points for trend analysis"


def classify_trend(metric: Metric, points: List[TrendPoint]) -> TrendAnalysis:
    """Classify the change between the two most recent points"""
    if len(points) < 2:
        return TrendAnalysis(
            trend=TrendDirection.INSUFFICIENT_DATA,
            change=0,
            analysis=describe_trend(TrendDirection.INSUFFICIENT_DATA, 0),
        )

    extract = TREND_VALUE_EXTRACTORS.get(metric)
    if extract is None:
        current_value = previous_value = 0
    else:
        current_value = extract(points[-1].data)
        previous_value = extract(points[-2].data)

    change = percentage_change(previous_value, current_value)
    if change > TREND_THRESHOLD:
        trend = TrendDirection.INCREASING
    elif change < -TREND_THRESHOLD:
        trend = TrendDirection.DECREASING
    else:
        trend = TrendDirection.STABLE

    change = round(change, 2)
    return TrendAnalysis(
        trend=trend,
        change=change,
        current_value=current_value,
        previous_value=previous_value,
        analysis=describe_trend(trend, change),
    )


class TrendAnalyzer:
    def __init__(
        self,
        aggregator: MetricAggregator,
        cache: ReportCache,
        ttl: int = TRENDS_TTL,
        max_duration: int = MAX_DURATION,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.aggregator = aggregator
        self.cache = cache
        self.ttl = ttl
        self.max_duration = max_duration
        self.clock = clock

    @staticmethod
    def cache_key(metric: Metric, period: TrendPeriod, duration: int) -> str:
        return f"trends:{metric.value}:{period.value}:{duration}"

    def _parse_period(self, period: Union[str, TrendPeriod]) -> TrendPeriod:
        try:
            return TrendPeriod(period)
        except ValueError:
            raise InvalidTrendRequest(
                f"Unsupported trend period: {period}. Use daily, weekly or monthly"
            ) from None

    async def analyze_trend(
        self,
        metric: Union[str, Metric],
        period: Union[str, TrendPeriod] = TrendPeriod.WEEKLY,
        duration: int = 12,
    ) -> TrendResult:
        """
        Generate trend data and classification for a metric.

        Raises:
            InvalidMetric: If the metric name is not supported
            InvalidTrendRequest: On an unknown period or out-of-range duration
        """
        metric = Metric.parse(metric)
        period = self._parse_period(period)
        if not 1 <= duration <= self.max_duration:
            raise InvalidTrendRequest(f"Trend duration must be between 1 and {self.max_duration}")

        key = self.cache_key(metric, period, duration)
        cached = await self.cache.load(key, TrendResult)
        if cached is not None:
            return cached

        windows = generate_windows(period, duration, self.clock())
        # Windows are independent; gather keeps them in chronological order
        reports = await asyncio.gather(*(
            self.aggregator.aggregate(None, metric, TimeRange(start=w.start, end=w.end))
            for w in windows
        ))
        points = [
            TrendPoint(window=window, data=report.data, timestamp=window.end)
            for window, report in zip(windows, reports)
        ]

        result = TrendResult(
            metric=metric.value,
            period=period,
            duration=duration,
            trends=points,
            analysis=classify_trend(metric, points),
            generated_at=self.clock(),
            cached=False,
        )

        await self.cache.store(key, result, self.ttl)
        logger.info(f"📊 Trend for {metric.value} ({period.value} x{duration}): {result.analysis.trend.value}")
        return result
