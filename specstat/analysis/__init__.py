"""Analysis module."""

from specstat.analysis.stats import StatsAggregator, statistics_period
from specstat.analysis.timerange import default_time_range, parse_branches, parse_datetime

__all__ = [
    "StatsAggregator",
    "statistics_period",
    "default_time_range",
    "parse_branches",
    "parse_datetime",
]
