"""Credit smearing over a leader's preceding slots.

A sandwich observed in a block may stem from an opportunity that was offered
to the leader earlier, because transactions take time to land. Each raw
detection is therefore credited partly to the detecting block and partly to
the leader's immediately preceding observed slots, according to a weight
vector (index 0 = detecting slot, index k = k-th preceding own slot).

Credit is never created or destroyed: whatever cannot be placed because the
leader has fewer than ``W`` earlier slots in the range is reported as dropped.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

from sandwichsentry.config import AnalysisConfig
from sandwichsentry.detection.sandwich import BlockDetection
from sandwichsentry.errors import ConfigurationError, MalformedBlockError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WeightedBlock:
    """Per-slot contribution after smearing.

    Attributes:
        slot: Slot of the observed block.
        leader_identity: Leader of the block.
        raw_inclusive: 1 if sandwiches were detected in this block, else 0.
        raw_count: Sandwiches detected in this block.
        weighted_inclusive: Inclusive-indicator credit attributed to this slot.
        weighted_count: Sandwich-count credit attributed to this slot.
    """

    slot: int
    leader_identity: str
    raw_inclusive: int
    raw_count: int
    weighted_inclusive: float
    weighted_count: float


@dataclass(frozen=True)
class LeaderCredit:
    """Smeared credit for one leader's slot history."""

    leader_identity: str
    blocks: tuple[WeightedBlock, ...]
    dropped_inclusive: float
    dropped_count: float

    @property
    def raw_inclusive_total(self) -> int:
        return sum(b.raw_inclusive for b in self.blocks)

    @property
    def raw_count_total(self) -> int:
        return sum(b.raw_count for b in self.blocks)

    @property
    def weighted_inclusive_total(self) -> float:
        return math.fsum(b.weighted_inclusive for b in self.blocks)

    @property
    def weighted_count_total(self) -> float:
        return math.fsum(b.weighted_count for b in self.blocks)

    def is_conserved(self, tolerance: float = 1e-9) -> bool:
        """Emitted plus dropped credit equals the raw totals."""
        inclusive_ok = math.isclose(
            self.weighted_inclusive_total + self.dropped_inclusive,
            self.raw_inclusive_total,
            abs_tol=tolerance,
        )
        count_ok = math.isclose(
            self.weighted_count_total + self.dropped_count,
            self.raw_count_total,
            abs_tol=tolerance,
        )
        return inclusive_ok and count_ok


@dataclass(frozen=True)
class CreditDistribution:
    """Smeared credit for every leader in a run."""

    leaders: dict[str, LeaderCredit]
    weights: tuple[float, ...]

    @property
    def weighted_blocks(self) -> list[WeightedBlock]:
        """All weighted blocks across leaders, in slot order."""
        blocks = [b for credit in self.leaders.values() for b in credit.blocks]
        return sorted(blocks, key=lambda b: b.slot)

    @property
    def dropped_inclusive(self) -> float:
        return math.fsum(c.dropped_inclusive for c in self.leaders.values())

    @property
    def dropped_count(self) -> float:
        return math.fsum(c.dropped_count for c in self.leaders.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "leaders": len(self.leaders),
            "weights": list(self.weights),
            "dropped_inclusive": self.dropped_inclusive,
            "dropped_count": self.dropped_count,
        }


class CreditDistributor:
    """Smear raw per-block detections over a leader's preceding slots.

    Example:
        >>> distributor = CreditDistributor((0.5, 0.5))
        >>> credit = distributor.distribute(leader_history)
        >>> credit.is_conserved()
        True
    """

    def __init__(self, weights: Sequence[float] = (0.5, 0.5)) -> None:
        weights = tuple(float(w) for w in weights)
        if not weights:
            raise ConfigurationError("Credit weights must contain at least one entry")
        if any(w < 0 or not math.isfinite(w) for w in weights):
            raise ConfigurationError(f"Credit weights must be finite and non-negative: {weights}")
        if not math.isclose(sum(weights), 1.0, abs_tol=1e-9):
            raise ConfigurationError(f"Credit weights must sum to 1.0, got {sum(weights)}")
        self.weights = weights

    @classmethod
    def from_config(cls, config: AnalysisConfig) -> CreditDistributor:
        return cls(config.weights)

    @property
    def window(self) -> int:
        """Number of preceding own-leader slots that can receive credit."""
        return len(self.weights) - 1

    def distribute(self, history: Sequence[BlockDetection]) -> LeaderCredit:
        """Smear credit over one leader's observed slots.

        Args:
            history: The leader's block detections in strictly increasing slot order.

        Returns:
            LeaderCredit with one WeightedBlock per input block plus dropped credit.

        Raises:
            MalformedBlockError: If the history mixes leaders or is not slot ordered.
        """
        if not history:
            raise ValueError("history must not be empty")

        leader = history[0].leader_identity
        previous_slot = -1
        for detection in history:
            if detection.leader_identity != leader:
                raise MalformedBlockError(
                    f"Slot {detection.slot} belongs to {detection.leader_identity}, not {leader}",
                    slot=detection.slot,
                )
            if detection.slot <= previous_slot:
                raise MalformedBlockError(
                    f"Leader {leader} history is not in slot order at slot {detection.slot}",
                    slot=detection.slot,
                )
            previous_slot = detection.slot

        inclusive_credit = [0.0] * len(history)
        count_credit = [0.0] * len(history)
        dropped_inclusive = 0.0
        dropped_count = 0.0

        for position, detection in enumerate(history):
            raw_inclusive = 1.0 if detection.is_sandwich_inclusive else 0.0
            raw_count = float(detection.sandwich_count)
            if raw_count == 0:
                continue
            for offset, weight in enumerate(self.weights):
                target = position - offset
                if target < 0:
                    dropped_inclusive += weight * raw_inclusive
                    dropped_count += weight * raw_count
                    continue
                inclusive_credit[target] += weight * raw_inclusive
                count_credit[target] += weight * raw_count

        blocks = tuple(
            WeightedBlock(
                slot=detection.slot,
                leader_identity=leader,
                raw_inclusive=int(detection.is_sandwich_inclusive),
                raw_count=detection.sandwich_count,
                weighted_inclusive=inclusive_credit[position],
                weighted_count=count_credit[position],
            )
            for position, detection in enumerate(history)
        )

        if dropped_count:
            logger.debug(
                "Leader %s: dropped %.3f sandwich credit at range start",
                leader,
                dropped_count,
            )

        return LeaderCredit(
            leader_identity=leader,
            blocks=blocks,
            dropped_inclusive=dropped_inclusive,
            dropped_count=dropped_count,
        )

    def distribute_all(self, detections: Iterable[BlockDetection], workers: int = 1) -> CreditDistribution:
        """Group detections by leader and smear each history independently.

        Args:
            detections: Block detections for the run, in any order.
            workers: Worker threads; leaders are independent units of work.

        Returns:
            CreditDistribution keyed by leader identity.
        """
        histories: dict[str, list[BlockDetection]] = defaultdict(list)
        for detection in detections:
            histories[detection.leader_identity].append(detection)
        for history in histories.values():
            history.sort(key=lambda d: d.slot)

        leaders = sorted(histories)
        if workers > 1 and len(leaders) > 1:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                credits = list(executor.map(lambda leader: self.distribute(histories[leader]), leaders))
        else:
            credits = [self.distribute(histories[leader]) for leader in leaders]

        distribution = CreditDistribution(
            leaders={credit.leader_identity: credit for credit in credits},
            weights=self.weights,
        )
        logger.info(
            "Smeared credit for %d leaders (weights %s, dropped %.3f sandwiches)",
            len(leaders),
            self.weights,
            distribution.dropped_count,
        )
        return distribution


__all__ = [
    "CreditDistribution",
    "CreditDistributor",
    "LeaderCredit",
    "WeightedBlock",
]
