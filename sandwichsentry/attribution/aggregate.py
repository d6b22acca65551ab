"""Streaming aggregation of per-block contributions into validator metrics.

Blocks are folded in slot order. Per-validator counters take the smeared
credit; the cluster baseline only ever sees the raw per-block detection so
that the global proportion stays an unbiased per-block indicator.

All counters are sums, so partial aggregators built by independent workers
merge with plain addition.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import pandas as pd

from sandwichsentry.attribution.credit import WeightedBlock
from sandwichsentry.errors import MalformedBlockError
from sandwichsentry.models.validator import (
    ClusterBaseline,
    ValidatorRawCounts,
    ValidatorWeightedCounts,
)

logger = logging.getLogger(__name__)


@dataclass
class ValidatorAccumulator:
    """Running counters for one validator."""

    identity: str
    slots_observed: int = 0
    raw_inclusive_blocks: int = 0
    raw_sandwich_count: int = 0
    weighted_inclusive_blocks: float = 0.0
    weighted_sandwich_count: float = 0.0

    def add(self, block: WeightedBlock) -> None:
        self.slots_observed += 1
        self.raw_inclusive_blocks += block.raw_inclusive
        self.raw_sandwich_count += block.raw_count
        self.weighted_inclusive_blocks += block.weighted_inclusive
        self.weighted_sandwich_count += block.weighted_count

    def merge(self, other: ValidatorAccumulator) -> None:
        if other.identity != self.identity:
            raise ValueError(f"Cannot merge {other.identity} into {self.identity}")
        self.slots_observed += other.slots_observed
        self.raw_inclusive_blocks += other.raw_inclusive_blocks
        self.raw_sandwich_count += other.raw_sandwich_count
        self.weighted_inclusive_blocks += other.weighted_inclusive_blocks
        self.weighted_sandwich_count += other.weighted_sandwich_count

    def to_raw_counts(self) -> ValidatorRawCounts:
        return ValidatorRawCounts(
            identity=self.identity,
            slots_observed=self.slots_observed,
            raw_sandwich_inclusive_blocks=self.raw_inclusive_blocks,
            raw_sandwich_count=self.raw_sandwich_count,
        )

    def to_weighted_counts(self) -> ValidatorWeightedCounts:
        # float sums of smeared halves can land a hair outside [0, slots]
        weighted_inclusive = min(max(self.weighted_inclusive_blocks, 0.0), float(self.slots_observed))
        return ValidatorWeightedCounts(
            identity=self.identity,
            slots_observed=self.slots_observed,
            weighted_sandwich_inclusive_blocks=weighted_inclusive,
            weighted_sandwich_count=max(self.weighted_sandwich_count, 0.0),
        )


@dataclass
class ClusterAccumulator:
    """Running cluster-wide counters over raw per-block detections."""

    total_blocks: int = 0
    sandwich_inclusive_blocks: int = 0
    sandwich_sum: int = 0
    sandwich_sum_squares: int = 0

    def add(self, raw_count: int) -> None:
        self.total_blocks += 1
        if raw_count > 0:
            self.sandwich_inclusive_blocks += 1
        self.sandwich_sum += raw_count
        self.sandwich_sum_squares += raw_count * raw_count

    def merge(self, other: ClusterAccumulator) -> None:
        self.total_blocks += other.total_blocks
        self.sandwich_inclusive_blocks += other.sandwich_inclusive_blocks
        self.sandwich_sum += other.sandwich_sum
        self.sandwich_sum_squares += other.sandwich_sum_squares

    def baseline(self) -> ClusterBaseline:
        """Population statistics of sandwiches per block."""
        n = self.total_blocks
        if n == 0:
            return ClusterBaseline(
                total_blocks=0,
                sandwich_inclusive_blocks=0,
                proportion=0.0,
                mean_sandwiches_per_block=0.0,
                std_dev_sandwiches_per_block=0.0,
            )
        # exact integer numerator: n * sum(x^2) - sum(x)^2
        variance_numerator = n * self.sandwich_sum_squares - self.sandwich_sum**2
        return ClusterBaseline(
            total_blocks=n,
            sandwich_inclusive_blocks=self.sandwich_inclusive_blocks,
            proportion=self.sandwich_inclusive_blocks / n,
            mean_sandwiches_per_block=self.sandwich_sum / n,
            std_dev_sandwiches_per_block=math.sqrt(max(variance_numerator, 0)) / n,
        )


@dataclass(frozen=True)
class AggregationResult:
    """Outcome of the aggregation pass.

    Attributes:
        baseline: Cluster-wide statistics.
        raw_counts: Unsmeared counters per validator identity.
        weighted_counts: Smeared counters per validator identity.
    """

    baseline: ClusterBaseline
    raw_counts: dict[str, ValidatorRawCounts]
    weighted_counts: dict[str, ValidatorWeightedCounts]

    @property
    def validator_count(self) -> int:
        return len(self.weighted_counts)

    def to_dataframe(self) -> pd.DataFrame:
        """One row per validator with raw and weighted counters."""
        columns = [
            "identity",
            "slots_observed",
            "raw_sandwich_inclusive_blocks",
            "raw_sandwich_count",
            "weighted_sandwich_inclusive_blocks",
            "weighted_sandwich_count",
        ]
        records = []
        for identity in sorted(self.weighted_counts):
            raw = self.raw_counts[identity]
            weighted = self.weighted_counts[identity]
            records.append({
                "identity": identity,
                "slots_observed": raw.slots_observed,
                "raw_sandwich_inclusive_blocks": raw.raw_sandwich_inclusive_blocks,
                "raw_sandwich_count": raw.raw_sandwich_count,
                "weighted_sandwich_inclusive_blocks": weighted.weighted_sandwich_inclusive_blocks,
                "weighted_sandwich_count": weighted.weighted_sandwich_count,
            })
        return pd.DataFrame(records, columns=columns)

    def to_dict(self) -> dict[str, Any]:
        return {
            "baseline": self.baseline.to_dict(),
            "validators": self.validator_count,
        }


@dataclass
class MetricsAggregator:
    """Fold weighted blocks into validator and cluster metrics.

    Example:
        >>> aggregator = MetricsAggregator()
        >>> aggregator.add_many(distribution.weighted_blocks)
        >>> result = aggregator.finalize()
        >>> result.baseline.proportion
        0.018
    """

    validators: dict[str, ValidatorAccumulator] = field(default_factory=dict)
    cluster: ClusterAccumulator = field(default_factory=ClusterAccumulator)
    last_slot: int = -1

    def add(self, block: WeightedBlock) -> None:
        """Add one observed block.

        Raises:
            MalformedBlockError: If the slot does not advance past the previous one.
        """
        if not block.leader_identity:
            raise MalformedBlockError(f"Slot {block.slot} has no leader", slot=block.slot)
        if block.slot <= self.last_slot:
            raise MalformedBlockError(
                f"Slot {block.slot} received after slot {self.last_slot}",
                slot=block.slot,
            )
        self.last_slot = block.slot

        accumulator = self.validators.get(block.leader_identity)
        if accumulator is None:
            accumulator = self.validators[block.leader_identity] = ValidatorAccumulator(block.leader_identity)
        accumulator.add(block)
        self.cluster.add(block.raw_count)

    def add_many(self, blocks: Iterable[WeightedBlock]) -> None:
        for block in blocks:
            self.add(block)

    def merge(self, other: MetricsAggregator) -> None:
        """Merge a partial aggregator built over a disjoint set of slots."""
        for identity, accumulator in other.validators.items():
            self.validators.setdefault(identity, ValidatorAccumulator(identity)).merge(accumulator)
        self.cluster.merge(other.cluster)
        self.last_slot = max(self.last_slot, other.last_slot)

    def finalize(self) -> AggregationResult:
        baseline = self.cluster.baseline()
        result = AggregationResult(
            baseline=baseline,
            raw_counts={k: v.to_raw_counts() for k, v in self.validators.items()},
            weighted_counts={k: v.to_weighted_counts() for k, v in self.validators.items()},
        )
        logger.info(
            "Aggregated %d blocks for %d validators: proportion=%.5f mean=%.5f std=%.5f",
            baseline.total_blocks,
            result.validator_count,
            baseline.proportion,
            baseline.mean_sandwiches_per_block,
            baseline.std_dev_sandwiches_per_block,
        )
        return result


__all__ = [
    "AggregationResult",
    "ClusterAccumulator",
    "MetricsAggregator",
    "ValidatorAccumulator",
]
