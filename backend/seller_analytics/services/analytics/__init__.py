"""Multi-period reporting over synchronized funnel and advertising data."""

from .aggregator import MetricsAggregator, metrics_aggregator
from .period_validator import validate_period, validate_periods
