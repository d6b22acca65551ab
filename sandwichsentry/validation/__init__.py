"""Validation utilities for blocks entering the analysis run."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import pandas as pd
from pydantic import ValidationError

from sandwichsentry.errors import MalformedBlockError
from sandwichsentry.models.swap import Block
from sandwichsentry.processing.blocks import frame_to_blocks
from sandwichsentry.processing.clean_swaps import DEDUP_COLUMNS
from sandwichsentry.processing.decoding import DecoderRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidationResult:
    """Result of validating a batch of blocks.

    Attributes:
        blocks: Accepted blocks in slot order.
        total_records: Number of blocks examined.
        rejected_slots: Reason per rejected slot.
        validation_errors: Error messages for rejected input.
        duplicate_count: Number of duplicate records found.
    """

    blocks: tuple[Block, ...]
    total_records: int
    rejected_slots: dict[int, str] = field(default_factory=dict)
    validation_errors: list[str] = field(default_factory=list)
    duplicate_count: int = 0

    @property
    def valid_records(self) -> int:
        return len(self.blocks)

    @property
    def invalid_records(self) -> int:
        return self.total_records - self.valid_records

    @property
    def success_rate(self) -> float:
        """Share of examined blocks that were accepted, as a percentage."""
        if self.total_records == 0:
            return 100.0
        return (self.valid_records / self.total_records) * 100

    @property
    def is_valid(self) -> bool:
        """Check if no block was rejected."""
        return not self.rejected_slots and not self.validation_errors

    def to_dict(self) -> dict[str, Any]:
        """Convert result to dictionary for reporting."""
        return {
            "total_records": self.total_records,
            "valid_blocks": self.valid_records,
            "rejected_blocks": self.invalid_records,
            "success_rate": f"{self.success_rate:.2f}%",
            "duplicate_count": self.duplicate_count,
            "validation_errors": self.validation_errors[:10],  # Limit errors in report
        }


class BlockValidator:
    """Reject malformed blocks before they reach aggregation.

    A block is rejected as a whole when it fails model validation (missing
    leader, swaps out of inclusion order) or when its slot appears more than
    once in the batch.

    Example:
        >>> validator = BlockValidator()
        >>> result = validator.validate_blocks(blocks)
        >>> print(f"Accepted: {result.success_rate:.1f}%")
    """

    REQUIRED_COLUMNS: set[str] = {
        "slot",
        "signature",
        "pool_id",
        "signer",
        "input_amount",
        "output_amount",
        "inclusion_index",
    }

    def validate_blocks(self, blocks: Iterable[Block | Mapping[str, Any]]) -> ValidationResult:
        """Validate blocks (or block mappings) and drop every duplicated slot.

        Args:
            blocks: Blocks from the ingestion collaborator, in any order.

        Returns:
            ValidationResult with the accepted blocks in slot order.
        """
        parsed: list[Block] = []
        rejected: dict[int, str] = {}
        errors: list[str] = []
        total = 0

        for idx, candidate in enumerate(blocks):
            total += 1
            try:
                parsed.append(self._parse_block(candidate))
            except MalformedBlockError as e:
                message = f"Block {idx}: {e}"
                errors.append(message)
                if e.slot is not None:
                    rejected[e.slot] = str(e)

        counts = Counter(block.slot for block in parsed)
        duplicates = {slot for slot, count in counts.items() if count > 1}
        for slot in sorted(duplicates):
            reason = f"slot {slot} appears {counts[slot]} times"
            rejected[slot] = reason
            errors.append(f"Slot {slot}: {reason}")

        accepted = sorted((b for b in parsed if b.slot not in duplicates), key=lambda b: b.slot)
        for message in errors:
            logger.warning("Rejected block: %s", message)

        return ValidationResult(
            blocks=tuple(accepted),
            total_records=total,
            rejected_slots=rejected,
            validation_errors=errors,
            duplicate_count=sum(counts[slot] - 1 for slot in duplicates),
        )

    def validate_frame(
        self,
        df: pd.DataFrame,
        leader_schedule: Mapping[int, str] | None = None,
        block_leaders: Mapping[int, str] | None = None,
        registry: DecoderRegistry | None = None,
    ) -> ValidationResult:
        """Validate a frame of decoded swaps and assemble its blocks.

        Args:
            df: DataFrame with one decoded swap per row.
            leader_schedule: ``slot -> leader`` fallback for rows without a leader.
            block_leaders: ``slot -> leader`` of every observed block.
            registry: Decoder registry for the rows.

        Returns:
            ValidationResult with detailed statistics.
        """
        missing = self.check_schema(df)
        if missing:
            raise ValueError(f"Swap frame is missing required columns: {', '.join(missing)}")

        build = frame_to_blocks(
            df,
            leader_schedule=leader_schedule,
            block_leaders=block_leaders,
            registry=registry,
        )
        return ValidationResult(
            blocks=build.blocks,
            total_records=len(build.blocks) + len(build.rejected_slots),
            rejected_slots=dict(build.rejected_slots),
            validation_errors=list(build.errors) + [
                f"Slot {slot}: {reason}"
                for slot, reason in build.rejected_slots.items()
                if not reason.startswith(f"Slot {slot}")
            ],
            duplicate_count=self._count_duplicates(df),
        )

    def _parse_block(self, candidate: Block | Mapping[str, Any]) -> Block:
        if isinstance(candidate, Block):
            return candidate
        slot = candidate.get("slot")
        try:
            return Block(**candidate)
        except ValidationError as e:
            raise MalformedBlockError(
                f"{e.errors()[0]['msg']}",
                slot=slot if isinstance(slot, int) else None,
            ) from e

    def _count_duplicates(self, df: pd.DataFrame) -> int:
        """Count duplicate swap rows based on key fields.

        Args:
            df: DataFrame to check for duplicates.

        Returns:
            Number of duplicate rows that would be removed.
        """
        available_cols = [c for c in DEDUP_COLUMNS if c in df.columns]
        if not available_cols:
            return 0
        return int(df.duplicated(subset=available_cols).sum())

    def check_schema(self, df: pd.DataFrame) -> list[str]:
        """Check DataFrame schema against required columns.

        Args:
            df: DataFrame to check.

        Returns:
            List of missing required columns.
        """
        df_columns = set(df.columns)
        missing = self.REQUIRED_COLUMNS - df_columns
        return sorted(missing)


__all__ = [
    "BlockValidator",
    "ValidationResult",
]
