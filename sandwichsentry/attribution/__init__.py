"""Delay-compensating credit attribution and metric aggregation."""

from sandwichsentry.attribution.aggregate import (
    AggregationResult,
    ClusterAccumulator,
    MetricsAggregator,
    ValidatorAccumulator,
)
from sandwichsentry.attribution.credit import (
    CreditDistribution,
    CreditDistributor,
    LeaderCredit,
    WeightedBlock,
)

__all__ = [
    "AggregationResult",
    "ClusterAccumulator",
    "CreditDistribution",
    "CreditDistributor",
    "LeaderCredit",
    "MetricsAggregator",
    "ValidatorAccumulator",
    "WeightedBlock",
]
