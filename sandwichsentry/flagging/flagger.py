"""Two-metric hypothesis test for sandwich-adjacent validators.

Metric A treats every observed block as a Bernoulli trial (sandwich-inclusive
or not) and flags a validator whose inclusion-proportion interval lies
entirely above the cluster proportion.

Metric B compares the validator's weighted sandwich count with the count a
cluster-average validator of the same size would show, and flags it when the
count exceeds the upper bound of that interval.

A validator is flagged only when both metrics are anomalous.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from sandwichsentry.config import AnalysisConfig, ProportionMethod
from sandwichsentry.errors import InsufficientSampleError
from sandwichsentry.flagging.intervals import Interval, count_interval, proportion_interval
from sandwichsentry.models.validator import ClusterBaseline, ValidatorWeightedCounts

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidatorAssessment:
    """Interval test outcome for one validator.

    Attributes:
        identity: Validator identity pubkey.
        slots: Observed leader slots (N).
        sc_p_raw: Weighted sandwich-inclusive blocks (k).
        sc_raw: Weighted sandwich count.
        presence: Metric A interval for the inclusion proportion.
        count: Metric B interval for the expected sandwich count.
        presence_flag: Metric A lower bound exceeds the cluster proportion.
        count_flag: Weighted sandwich count exceeds the Metric B upper bound.
    """

    identity: str
    slots: int
    sc_p_raw: float
    sc_raw: float
    presence: Interval
    count: Interval
    presence_flag: bool
    count_flag: bool

    @property
    def flagged(self) -> bool:
        return self.presence_flag and self.count_flag

    @property
    def sc_p(self) -> float:
        """Weighted inclusion proportion."""
        return min(self.sc_p_raw / self.slots, 1.0)

    @property
    def sc(self) -> float:
        """Weighted sandwiches per observed slot."""
        return self.sc_raw / self.slots

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity": self.identity,
            "slots": self.slots,
            "sc_p_raw": self.sc_p_raw,
            "sc_raw": self.sc_raw,
            "sc_p_lower": self.presence.lower,
            "sc_p_upper": self.presence.upper,
            "count_lower": self.count.lower,
            "count_upper": self.count.upper,
            "presence_flag": self.presence_flag,
            "count_flag": self.count_flag,
            "flagged": self.flagged,
        }


@dataclass(frozen=True)
class FlaggingResult:
    """Assessments for every evaluable validator plus the ones left out.

    Attributes:
        baseline: Cluster statistics the assessments were tested against.
        assessments: Assessment per validator identity.
        not_evaluable: Reason per validator identity that could not be assessed.
    """

    baseline: ClusterBaseline
    assessments: dict[str, ValidatorAssessment]
    not_evaluable: dict[str, str] = field(default_factory=dict)

    @property
    def flagged_identities(self) -> list[str]:
        return sorted(identity for identity, a in self.assessments.items() if a.flagged)

    @property
    def presence_flag_count(self) -> int:
        return sum(1 for a in self.assessments.values() if a.presence_flag)

    @property
    def count_flag_count(self) -> int:
        return sum(1 for a in self.assessments.values() if a.count_flag)

    def to_dict(self) -> dict[str, Any]:
        return {
            "evaluated": len(self.assessments),
            "not_evaluable": len(self.not_evaluable),
            "presence_flags": self.presence_flag_count,
            "count_flags": self.count_flag_count,
            "flagged": len(self.flagged_identities),
        }


class StatisticalFlagger:
    """Evaluate validators against an immutable cluster baseline.

    Example:
        >>> flagger = StatisticalFlagger(AnalysisConfig())
        >>> result = flagger.evaluate(aggregation.weighted_counts, aggregation.baseline)
        >>> result.flagged_identities
        ['Vote111...']
    """

    def __init__(self, config: AnalysisConfig | None = None) -> None:
        self.config = config or AnalysisConfig()

    @property
    def confidence_level(self) -> float:
        return self.config.confidence_level

    @property
    def method(self) -> ProportionMethod:
        return self.config.proportion_method

    def assess(self, counts: ValidatorWeightedCounts, baseline: ClusterBaseline) -> ValidatorAssessment:
        """Run both interval tests for one validator.

        Raises:
            InsufficientSampleError: If the validator has too few observed slots.
        """
        n = counts.slots_observed
        if n <= 0:
            raise InsufficientSampleError("no observed slots", n)
        if n < self.config.min_evaluable_slots:
            raise InsufficientSampleError(
                f"{n} observed slots, fewer than {self.config.min_evaluable_slots}",
                n,
            )

        presence = proportion_interval(
            counts.weighted_sandwich_inclusive_blocks,
            n,
            confidence=self.confidence_level,
            method=self.method,
        )
        count = count_interval(
            n,
            baseline.mean_sandwiches_per_block,
            baseline.std_dev_sandwiches_per_block,
            confidence=self.confidence_level,
        )

        return ValidatorAssessment(
            identity=counts.identity,
            slots=n,
            sc_p_raw=counts.weighted_sandwich_inclusive_blocks,
            sc_raw=counts.weighted_sandwich_count,
            presence=presence,
            count=count,
            presence_flag=presence.lower > baseline.proportion,
            count_flag=counts.weighted_sandwich_count > count.upper,
        )

    def evaluate(
        self,
        weighted_counts: Mapping[str, ValidatorWeightedCounts] | Iterable[ValidatorWeightedCounts],
        baseline: ClusterBaseline,
    ) -> FlaggingResult:
        """Assess every validator; the ones without enough data are recorded, not raised.

        Args:
            weighted_counts: Smeared counters per validator.
            baseline: Cluster-wide statistics for the same run.

        Returns:
            FlaggingResult keyed by validator identity.
        """
        if isinstance(weighted_counts, Mapping):
            weighted_counts = weighted_counts.values()

        assessments: dict[str, ValidatorAssessment] = {}
        not_evaluable: dict[str, str] = {}

        for counts in sorted(weighted_counts, key=lambda c: c.identity):
            try:
                assessments[counts.identity] = self.assess(counts, baseline)
            except InsufficientSampleError as e:
                not_evaluable[counts.identity] = str(e)
                logger.debug("Validator %s not evaluable: %s", counts.identity, e)

        result = FlaggingResult(baseline=baseline, assessments=assessments, not_evaluable=not_evaluable)
        logger.info(
            "Evaluated %d validators at %.4f%% confidence (%s): %d presence flags, %d count flags, %d flagged, %d not evaluable",
            len(assessments),
            self.confidence_level * 100,
            self.method.value,
            result.presence_flag_count,
            result.count_flag_count,
            len(result.flagged_identities),
            len(not_evaluable),
        )
        return result


__all__ = [
    "FlaggingResult",
    "StatisticalFlagger",
    "ValidatorAssessment",
]
