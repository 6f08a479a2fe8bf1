"""
Metrics Module - Interval resolution and period-over-period comparison
"""

from blip.metrics.time_range import (
    resolve,
    parse_time_range,
    TimeRange,
    Granularity,
    IntervalSpec,
    WindowBounds,
)
from blip.metrics.comparison import (
    compare,
    round_to,
    rate,
    build,
    ComparedMetric,
    MetricKind,
)

__all__ = [
    'resolve',
    'parse_time_range',
    'TimeRange',
    'Granularity',
    'IntervalSpec',
    'WindowBounds',
    'compare',
    'round_to',
    'rate',
    'build',
    'ComparedMetric',
    'MetricKind',
]
