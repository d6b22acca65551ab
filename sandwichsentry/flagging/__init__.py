"""Statistical flagging of validators against the cluster baseline."""

from sandwichsentry.flagging.flagger import (
    FlaggingResult,
    StatisticalFlagger,
    ValidatorAssessment,
)
from sandwichsentry.flagging.intervals import (
    Interval,
    count_interval,
    proportion_interval,
    z_score,
)

__all__ = [
    "FlaggingResult",
    "Interval",
    "StatisticalFlagger",
    "ValidatorAssessment",
    "count_interval",
    "proportion_interval",
    "z_score",
]
