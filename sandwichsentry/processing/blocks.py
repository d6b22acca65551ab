"""Group decoded swap rows into per-slot :class:`Block` objects.

A block is all-or-nothing: if any of its rows fails to decode, or the slot
has no resolvable leader, the whole slot is rejected so that nothing from a
malformed block reaches aggregation.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from itertools import groupby
from typing import Any

import pandas as pd
from pydantic import ValidationError

from sandwichsentry.models.swap import Block, SwapEvent
from sandwichsentry.processing.clean_swaps import clean_swap_frame
from sandwichsentry.processing.decoding import DecoderRegistry, default_registry
from sandwichsentry.processing.schedule import leader_for_slot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlockBuild:
    """Outcome of turning a swap frame into blocks.

    Attributes:
        blocks: Valid blocks in slot order.
        total_rows: Rows in the cleaned input frame.
        skipped_rows: Rows that decoded to "not a swap".
        rejected_slots: Reason per rejected slot.
        errors: Row-level error messages.
    """

    blocks: tuple[Block, ...]
    total_rows: int
    skipped_rows: int = 0
    rejected_slots: dict[int, str] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    @property
    def swap_count(self) -> int:
        return sum(block.swap_count for block in self.blocks)

    def to_dict(self) -> dict[str, Any]:
        return {
            "blocks": len(self.blocks),
            "swaps": self.swap_count,
            "total_rows": self.total_rows,
            "skipped_rows": self.skipped_rows,
            "rejected_slots": len(self.rejected_slots),
            "errors": self.errors[:10],
        }


def _error_message(error: Exception) -> str:
    if isinstance(error, ValidationError):
        first = error.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        return f"{location}: {first['msg']}" if location else first["msg"]
    return str(error)


def _resolve_leader(
    slot: int,
    rows: list[dict[str, Any]],
    block_leaders: Mapping[int, str] | None,
    leader_schedule: Mapping[int, str] | None,
) -> tuple[str | None, str | None]:
    """Return ``(leader, rejection_reason)`` for one slot."""
    row_leaders = {row["leader_identity"] for row in rows if row.get("leader_identity")}
    if block_leaders is not None and slot in block_leaders:
        row_leaders.add(block_leaders[slot])
    if len(row_leaders) > 1:
        return None, f"conflicting leaders {sorted(row_leaders)}"
    if row_leaders:
        return row_leaders.pop(), None
    if leader_schedule is not None:
        leader = leader_for_slot(slot, leader_schedule)
        if leader is not None:
            return leader, None
    return None, "no leader identity"


def frame_to_blocks(
    frame: pd.DataFrame,
    leader_schedule: Mapping[int, str] | None = None,
    block_leaders: Mapping[int, str] | None = None,
    registry: DecoderRegistry | None = None,
) -> BlockBuild:
    """Build blocks from a frame of decoded swaps.

    Args:
        frame: Decoded swap rows (one per swap) with at least ``slot`` and
            ``inclusion_index`` columns.
        leader_schedule: ``slot -> leader`` from the leader schedule, used when
            rows carry no ``leader_identity``.
        block_leaders: ``slot -> leader`` of every observed block. Slots listed
            here become blocks even when they contain no swaps.
        registry: Decoder registry; defaults to flat record decoding.

    Returns:
        BlockBuild with the valid blocks and the rejected slots.
    """
    registry = registry or default_registry()
    cleaned = clean_swap_frame(frame)
    records = cleaned.astype(object).where(cleaned.notna(), None).to_dict("records")

    rows_by_slot: dict[int, list[dict[str, Any]]] = {
        int(slot): list(rows) for slot, rows in groupby(records, key=lambda r: r["slot"])
    }
    slots = set(rows_by_slot)
    if block_leaders is not None:
        slots.update(int(s) for s in block_leaders)

    blocks: list[Block] = []
    rejected: dict[int, str] = {}
    errors: list[str] = []
    skipped = 0

    for slot in sorted(slots):
        rows = rows_by_slot.get(slot, [])
        leader, reason = _resolve_leader(slot, rows, block_leaders, leader_schedule)
        if leader is None:
            rejected[slot] = reason or "no leader identity"
            continue

        swaps: list[SwapEvent] = []
        slot_error: str | None = None
        for row in rows:
            try:
                swap = registry.decode(row)
            except (ValidationError, ValueError) as e:
                slot_error = f"Slot {slot} index {row.get('inclusion_index')}: {_error_message(e)}"
                errors.append(slot_error)
                break
            if swap is None:
                skipped += 1
                continue
            swaps.append(swap)

        if slot_error is not None:
            rejected[slot] = slot_error
            continue

        try:
            blocks.append(Block(slot=slot, leader_identity=leader, swaps=tuple(swaps)))
        except ValidationError as e:
            message = f"Slot {slot}: {_error_message(e)}"
            errors.append(message)
            rejected[slot] = message

    if rejected:
        logger.warning("Rejected %d of %d slots while building blocks", len(rejected), len(slots))
    logger.info("Built %d blocks from %d swap rows", len(blocks), len(cleaned))

    return BlockBuild(
        blocks=tuple(blocks),
        total_rows=len(cleaned),
        skipped_rows=skipped,
        rejected_slots=rejected,
        errors=errors,
    )


__all__ = [
    "BlockBuild",
    "frame_to_blocks",
]
