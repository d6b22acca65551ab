"""Sandwich detection over the ordered swaps of a single block.

This module scans the swaps a leader included in one block and extracts
structurally valid sandwiches. A sandwich occurs when an attacker places a
trade before a victim's trade on the same pool and unwinds it right after,
profiting from the price impact the victim absorbs.

Pattern (all six must hold):
1. Ordering: frontrun, one or more victims, backrun in increasing inclusion order
2. Direction: frontrun and victims trade the same way, the backrun reverses it
3. Profitability: backrun output >= frontrun input and frontrun output >= backrun input
4. Same market: every member trades on the same pool
5. Signers: no victim is signed by the frontrun or backrun signer
6. Wrapper: frontrun and backrun go through the same (present) wrapper program

Detection is a pure function of the block; blocks can be scanned in parallel.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

import pandas as pd

from sandwichsentry.config import AnalysisConfig
from sandwichsentry.models.sandwich import SandwichInstance
from sandwichsentry.models.swap import Block, SwapEvent

logger = logging.getLogger(__name__)

AUDIT_COLUMNS: list[str] = [
    "sandwich_id",
    "slot",
    "leader_identity",
    "pool_id",
    "role",
    "signature",
    "signer",
    "wrapper_program",
    "direction",
    "input_amount",
    "output_amount",
    "inclusion_index",
    "dont_front",
    "attacker_input_token_gain",
    "attacker_output_token_gain",
    "est_profit_lamports",
]


@dataclass(frozen=True)
class BlockDetection:
    """Result of sandwich detection for one block.

    Attributes:
        slot: Slot of the analysed block.
        leader_identity: Leader that produced the block.
        instances: Sandwiches found, ordered by backrun inclusion index.
        swaps_analyzed: Number of swaps in the block.
        pools_analyzed: Number of distinct pools traded in the block.
    """

    slot: int
    leader_identity: str
    instances: tuple[SandwichInstance, ...]
    swaps_analyzed: int
    pools_analyzed: int

    @property
    def sandwich_count(self) -> int:
        """Return number of sandwiches detected in the block."""
        return len(self.instances)

    @property
    def is_sandwich_inclusive(self) -> bool:
        """Whether the block contains at least one sandwich."""
        return bool(self.instances)

    @property
    def victim_count(self) -> int:
        return sum(len(s.victims) for s in self.instances)

    def to_dict(self) -> dict[str, Any]:
        """Convert result to dictionary for reporting."""
        return {
            "slot": self.slot,
            "leader_identity": self.leader_identity,
            "sandwich_count": self.sandwich_count,
            "victim_count": self.victim_count,
            "swaps_analyzed": self.swaps_analyzed,
            "pools_analyzed": self.pools_analyzed,
        }


def check_sandwich_constraints(
    frontrun: SwapEvent,
    victims: Sequence[SwapEvent],
    backrun: SwapEvent,
    excluded_wrappers: Iterable[str] = (),
) -> list[str]:
    """List every sandwich constraint the given triple violates.

    Args:
        frontrun: Candidate frontrun swap.
        victims: Candidate victim swaps.
        backrun: Candidate backrun swap.
        excluded_wrappers: Wrapper programs that never fingerprint a sandwich.

    Returns:
        Human-readable violations; an empty list means the triple is a sandwich.
    """
    violations: list[str] = []
    excluded = set(excluded_wrappers)

    if not victims:
        violations.append("no victims")
    indexes = [frontrun.inclusion_index, *(v.inclusion_index for v in victims), backrun.inclusion_index]
    if any(later <= earlier for earlier, later in zip(indexes, indexes[1:])):
        violations.append("members not in strictly increasing inclusion order")

    if backrun.direction != frontrun.direction.opposite():
        violations.append("backrun does not reverse the frontrun direction")
    if any(v.direction != frontrun.direction for v in victims):
        violations.append("victim direction differs from frontrun")

    if backrun.output_amount < frontrun.input_amount or frontrun.output_amount < backrun.input_amount:
        violations.append("round trip is loss-making")

    if any(swap.pool_id != frontrun.pool_id for swap in (*victims, backrun)):
        violations.append("members trade on different pools")

    attacker_signers = {frontrun.signer, backrun.signer}
    if any(v.signer in attacker_signers for v in victims):
        violations.append("victim shares a signer with the attacker")

    if frontrun.wrapper_program is None or backrun.wrapper_program is None:
        violations.append("wrapper program missing")
    elif frontrun.wrapper_program != backrun.wrapper_program:
        violations.append("wrapper programs differ")
    elif frontrun.wrapper_program in excluded:
        violations.append("wrapper program is excluded")

    return violations


def _legs_match(anchor: SwapEvent, closer: SwapEvent, excluded_wrappers: frozenset[str]) -> bool:
    """Check constraints 2, 3 and 6 for a frontrun/backrun pair."""
    if anchor.direction == closer.direction:
        return False
    wrapper = anchor.wrapper_program
    if wrapper is None or wrapper != closer.wrapper_program or wrapper in excluded_wrappers:
        return False
    return closer.output_amount >= anchor.input_amount and anchor.output_amount >= closer.input_amount


def _collect_victims(
    pool_swaps: Sequence[SwapEvent],
    anchor_pos: int,
    closer_pos: int,
    consumed: set[int],
) -> list[int]:
    anchor = pool_swaps[anchor_pos]
    closer = pool_swaps[closer_pos]
    attacker_signers = (anchor.signer, closer.signer)
    return [
        pos
        for pos in range(anchor_pos + 1, closer_pos)
        if pos not in consumed
        and pool_swaps[pos].direction == anchor.direction
        and pool_swaps[pos].signer not in attacker_signers
    ]


def _find_same_signer_closer(
    pool_swaps: Sequence[SwapEvent],
    anchor_pos: int,
    start: int,
    consumed: set[int],
    excluded_wrappers: frozenset[str],
) -> int | None:
    anchor = pool_swaps[anchor_pos]
    for pos in range(start, len(pool_swaps)):
        candidate = pool_swaps[pos]
        if pos in consumed or candidate.signer != anchor.signer:
            continue
        if _legs_match(anchor, candidate, excluded_wrappers):
            return pos
    return None


def _detect_sandwiches_in_pool(
    pool_swaps: Sequence[SwapEvent],
    slot: int,
    leader_identity: str,
    excluded_wrappers: frozenset[str],
    prefer_same_signer_backrun: bool = False,
) -> list[SandwichInstance]:
    """Detect sandwiches within a single pool.

    Closing swaps are visited in inclusion order. For each one the nearest
    preceding unconsumed swap that forms a valid pair with it and leaves at
    least one victim between them becomes the frontrun. Every swap takes part
    in at most one sandwich.

    Args:
        pool_swaps: Swaps of one pool, in inclusion order.
        slot: Slot of the block.
        leader_identity: Leader of the block.
        excluded_wrappers: Wrapper programs that never fingerprint a sandwich.
        prefer_same_signer_backrun: Replace a closer signed by another wallet
            with a later closer signed by the frontrunner, when one exists.

    Returns:
        List of detected sandwiches in this pool.
    """
    instances: list[SandwichInstance] = []
    n = len(pool_swaps)

    if n < 3:
        return instances

    consumed: set[int] = set()

    for closer_pos in range(2, n):
        if closer_pos in consumed:
            continue
        closer = pool_swaps[closer_pos]
        if closer.wrapper_program is None:
            continue

        match: tuple[int, int, list[int]] | None = None
        for anchor_pos in range(closer_pos - 1, -1, -1):
            if anchor_pos in consumed:
                continue
            if not _legs_match(pool_swaps[anchor_pos], closer, excluded_wrappers):
                continue
            victims = _collect_victims(pool_swaps, anchor_pos, closer_pos, consumed)
            if victims:
                match = (anchor_pos, closer_pos, victims)
                break

        if match is None:
            continue

        anchor_pos, backrun_pos, victims = match
        if prefer_same_signer_backrun and pool_swaps[anchor_pos].signer != closer.signer:
            alternative = _find_same_signer_closer(
                pool_swaps, anchor_pos, closer_pos + 1, consumed, excluded_wrappers
            )
            if alternative is not None:
                alt_victims = _collect_victims(pool_swaps, anchor_pos, alternative, consumed)
                if alt_victims:
                    backrun_pos, victims = alternative, alt_victims

        instance = SandwichInstance.create(
            slot=slot,
            leader_identity=leader_identity,
            frontrun=pool_swaps[anchor_pos],
            victims=[pool_swaps[pos] for pos in victims],
            backrun=pool_swaps[backrun_pos],
        )
        instances.append(instance)
        consumed.update((anchor_pos, backrun_pos, *victims))

    return instances


def detect_sandwiches(block: Block, config: AnalysisConfig | None = None) -> BlockDetection:
    """Detect sandwiches in the swaps of one block.

    Args:
        block: Block with swaps in inclusion order.
        config: Run configuration; defaults apply when omitted.

    Returns:
        BlockDetection with the instances found (possibly none).

    Example:
        >>> detection = detect_sandwiches(block)
        >>> print(f"{detection.sandwich_count} sandwiches in slot {detection.slot}")
    """
    config = config or AnalysisConfig()
    excluded = frozenset(config.excluded_wrapper_programs)

    instances: list[SandwichInstance] = []
    by_pool = block.swaps_by_pool()
    for _pool, pool_swaps in by_pool.items():
        instances.extend(
            _detect_sandwiches_in_pool(
                pool_swaps,
                block.slot,
                block.leader_identity,
                excluded,
                config.prefer_same_signer_backrun,
            )
        )

    instances.sort(key=lambda s: s.backrun.inclusion_index)
    if instances:
        logger.debug(
            "Slot %s (leader %s): %d sandwiches across %d pools",
            block.slot,
            block.leader_identity,
            len(instances),
            len(by_pool),
        )

    return BlockDetection(
        slot=block.slot,
        leader_identity=block.leader_identity,
        instances=tuple(instances),
        swaps_analyzed=block.swap_count,
        pools_analyzed=len(by_pool),
    )


def detect_blocks(
    blocks: Iterable[Block],
    config: AnalysisConfig | None = None,
    workers: int | None = None,
) -> list[BlockDetection]:
    """Run :func:`detect_sandwiches` over many blocks, preserving input order.

    Args:
        blocks: Blocks to scan.
        config: Run configuration; defaults apply when omitted.
        workers: Worker threads; falls back to ``config.workers``.

    Returns:
        One BlockDetection per input block, in input order.
    """
    config = config or AnalysisConfig()
    workers = workers or config.workers
    blocks = list(blocks)

    if workers <= 1 or len(blocks) <= 1:
        return [detect_sandwiches(block, config) for block in blocks]

    with ThreadPoolExecutor(max_workers=workers) as executor:
        return list(executor.map(lambda b: detect_sandwiches(b, config), blocks))


def sandwiches_to_dataframe(instances: Iterable[SandwichInstance]) -> pd.DataFrame:
    """Convert sandwiches to audit rows, one row per member swap.

    Args:
        instances: Detected sandwiches.

    Returns:
        DataFrame with :data:`AUDIT_COLUMNS`; empty frames keep the columns.
    """
    records = [row for instance in instances for row in instance.to_audit_records()]
    if not records:
        return pd.DataFrame(columns=AUDIT_COLUMNS)
    return pd.DataFrame(records, columns=AUDIT_COLUMNS)


__all__ = [
    "AUDIT_COLUMNS",
    "BlockDetection",
    "check_sandwich_constraints",
    "detect_blocks",
    "detect_sandwiches",
    "sandwiches_to_dataframe",
]
