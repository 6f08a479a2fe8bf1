"""
Time Range Module - Resolve coarse time-range selectors into comparison windows

This module provides:
- TimeRange: the closed set of selectors accepted by the metrics endpoints
- resolve(range) -> IntervalSpec (current/previous window lengths + bucketing)
- IntervalSpec.anchor(now) -> WindowBounds for callers that need timestamps

For a range of length L the current window is [now-L, now) and the previous
window is [now-2L, now-L). Resolution never reads the clock; anchoring to
"now" is the caller's job.
"""

from datetime import datetime, timedelta
from typing import Dict, Any, Optional, Union
from enum import Enum
from dataclasses import dataclass
import structlog

logger = structlog.get_logger(__name__)


class TimeRange(str, Enum):
    """Time range selectors for period-over-period metrics"""
    HOUR_1 = "HOUR_1"
    HOUR_3 = "HOUR_3"
    HOUR_6 = "HOUR_6"
    HOUR_12 = "HOUR_12"
    DAY_1 = "DAY_1"
    DAY_3 = "DAY_3"
    WEEK_1 = "WEEK_1"
    WEEK_2 = "WEEK_2"
    MONTH_1 = "MONTH_1"
    MONTH_3 = "MONTH_3"
    MONTH_6 = "MONTH_6"
    YEAR_1 = "YEAR_1"


class Granularity(str, Enum):
    """Bucket size used to group warehouse rows"""
    HOURLY = "HOURLY"
    DAILY = "DAILY"


DEFAULT_TIME_RANGE = TimeRange.WEEK_1


@dataclass(frozen=True)
class WindowBounds:
    """Concrete timestamps for the previous and current windows"""
    previous_start: datetime
    current_start: datetime
    end: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "previousStart": self.previous_start.isoformat(),
            "currentStart": self.current_start.isoformat(),
            "end": self.end.isoformat(),
        }


@dataclass(frozen=True)
class IntervalSpec:
    """Durations and bucketing for one resolved time range"""
    current: timedelta
    previous: timedelta
    granularity: Granularity

    def anchor(self, now: datetime) -> WindowBounds:
        """Anchor the durations to ``now``."""
        return WindowBounds(
            previous_start=now - self.previous,
            current_start=now - self.current,
            end=now,
        )

    def sql_interval(self, which: str = "current") -> str:
        """
        Render one of the windows as an Athena interval literal.

        Whole days render as DAY intervals, anything else as HOUR.
        """
        duration = self.current if which == "current" else self.previous
        hours = int(duration.total_seconds() // 3600)
        if hours % 24 == 0:
            return f"INTERVAL '{hours // 24}' DAY"
        return f"INTERVAL '{hours}' HOUR"

    @property
    def bucket_unit(self) -> str:
        """``date_trunc`` unit matching the granularity"""
        return "hour" if self.granularity == Granularity.HOURLY else "day"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currentHours": self.current.total_seconds() / 3600,
            "previousHours": self.previous.total_seconds() / 3600,
            "granularity": self.granularity.value,
        }


def _spec(current: timedelta, granularity: Granularity) -> IntervalSpec:
    return IntervalSpec(current=current, previous=current * 2, granularity=granularity)


_INTERVALS: Dict[TimeRange, IntervalSpec] = {
    TimeRange.HOUR_1: _spec(timedelta(hours=1), Granularity.HOURLY),
    TimeRange.HOUR_3: _spec(timedelta(hours=3), Granularity.HOURLY),
    TimeRange.HOUR_6: _spec(timedelta(hours=6), Granularity.HOURLY),
    TimeRange.HOUR_12: _spec(timedelta(hours=12), Granularity.HOURLY),
    # 1-day still buckets hourly
    TimeRange.DAY_1: _spec(timedelta(hours=24), Granularity.HOURLY),
    TimeRange.DAY_3: _spec(timedelta(days=3), Granularity.DAILY),
    TimeRange.WEEK_1: _spec(timedelta(days=7), Granularity.DAILY),
    TimeRange.WEEK_2: _spec(timedelta(days=14), Granularity.DAILY),
    TimeRange.MONTH_1: _spec(timedelta(days=30), Granularity.DAILY),
    TimeRange.MONTH_3: _spec(timedelta(days=90), Granularity.DAILY),
    TimeRange.MONTH_6: _spec(timedelta(days=180), Granularity.DAILY),
    TimeRange.YEAR_1: _spec(timedelta(days=365), Granularity.DAILY),
}


def parse_time_range(value: Optional[Union[TimeRange, str]]) -> TimeRange:
    """
    Coerce a raw selector to a TimeRange.

    Unknown or missing values fall back to WEEK_1 instead of raising.
    """
    if isinstance(value, TimeRange):
        return value
    if isinstance(value, str):
        try:
            return TimeRange(value.strip().upper())
        except ValueError:
            logger.warning("unknown_time_range", value=value, fallback=DEFAULT_TIME_RANGE.value)
    return DEFAULT_TIME_RANGE


def resolve(time_range: Optional[Union[TimeRange, str]]) -> IntervalSpec:
    """
    Map a time-range selector to its IntervalSpec.

    Args:
        time_range: TimeRange member or its string value

    Returns:
        IntervalSpec with current/previous durations and bucket granularity
    """
    return _INTERVALS[parse_time_range(time_range)]
