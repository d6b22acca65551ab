"""Detection algorithms for sandwich patterns in block swap sequences."""

from sandwichsentry.detection.sandwich import (
    AUDIT_COLUMNS,
    BlockDetection,
    check_sandwich_constraints,
    detect_blocks,
    detect_sandwiches,
    sandwiches_to_dataframe,
)

__all__ = [
    "AUDIT_COLUMNS",
    "BlockDetection",
    "check_sandwich_constraints",
    "detect_blocks",
    "detect_sandwiches",
    "sandwiches_to_dataframe",
]
