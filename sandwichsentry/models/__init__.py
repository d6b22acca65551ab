"""Data models for swaps, sandwiches and validator metrics."""

from sandwichsentry.models.sandwich import SandwichInstance, SandwichRole, make_sandwich_id
from sandwichsentry.models.swap import LEADER_GROUP_SIZE, Block, Direction, SwapEvent
from sandwichsentry.models.validator import (
    REPORT_COLUMNS,
    ClusterBaseline,
    ValidatorMetadata,
    ValidatorRawCounts,
    ValidatorReportRecord,
    ValidatorWeightedCounts,
)

__all__ = [
    "Block",
    "ClusterBaseline",
    "Direction",
    "LEADER_GROUP_SIZE",
    "REPORT_COLUMNS",
    "SandwichInstance",
    "SandwichRole",
    "SwapEvent",
    "ValidatorMetadata",
    "ValidatorRawCounts",
    "ValidatorReportRecord",
    "ValidatorWeightedCounts",
    "make_sandwich_id",
]
