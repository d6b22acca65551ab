"""Pydantic models for decoded Solana swap events and blocks.

This module provides type-safe data models for representing AMM swaps that an
external decoder extracted from a block, with built-in validation for Solana
public keys, transaction signatures and token amounts.
"""

from __future__ import annotations

import re
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Base58 public key (32 bytes encode to 32-44 characters)
SOLANA_PUBKEY_PATTERN = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")
# Base58 transaction signature (64 bytes encode to 64-88 characters)
SOLANA_SIGNATURE_PATTERN = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{64,88}$")

# Consecutive slots assigned to the same leader in the schedule
LEADER_GROUP_SIZE = 4


def validate_pubkey(v: str) -> str:
    """Validate a base58 Solana public key."""
    if not v:
        raise ValueError("Public key cannot be empty")
    if not SOLANA_PUBKEY_PATTERN.match(v):
        raise ValueError(
            f"Invalid Solana public key: {v[:20]}... "
            "Expected 32-44 base58 characters"
        )
    return v


class Direction(StrEnum):
    """Trade direction relative to the pool's canonical side."""

    BUY = "buy"
    SELL = "sell"

    def opposite(self) -> Direction:
        return Direction.SELL if self is Direction.BUY else Direction.BUY


class SwapEvent(BaseModel):
    """Represents a single decoded AMM swap inside a transaction.

    Attributes:
        signature: Signature of the transaction carrying the swap.
        pool_id: AMM market (pool) account the swap traded against.
        signer: Fee payer / signing authority of the transaction.
        wrapper_program: Outer program that invoked the AMM, if any.
        program: AMM program id, if known.
        input_mint: Mint of the token sent into the pool, if known.
        output_mint: Mint of the token received from the pool, if known.
        direction: Buy or sell relative to the pool's canonical side.
        input_amount: Tokens sent into the pool, in base units.
        output_amount: Tokens received from the pool, in base units.
        inclusion_index: Position of the transaction within its block.
        dont_front: Whether the transaction carried the "don't front" marker.

    Example:
        >>> swap = SwapEvent(
        ...     signature="5h6xBEauJ3PK6SWCZ1PGjBvj8vDdWG3KpwATGy1ARAXFSDwt8GFXM7W5Ncn16wmqokgpiKRLuS83KUxyZyv2sUYv",
        ...     pool_id="58oQChx4yWmvKdwLLZzBi4ChoCc2fqCUWBkwMihLYQo2",
        ...     signer="9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM",
        ...     wrapper_program="vpeNALD89BZ4KxNUFjdLmFXBCwtyqBDQ85ouNoax38b",
        ...     direction="buy",
        ...     input_amount=1_000_000,
        ...     output_amount=2_451_337,
        ...     inclusion_index=412,
        ... )
    """

    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
        validate_assignment=True,
        extra="forbid",
    )

    signature: str = Field(
        ...,
        min_length=64,
        max_length=88,
        description="Transaction signature (base58)",
        examples=["5h6xBEauJ3PK6SWCZ1PGjBvj8vDdWG3KpwATGy1ARAXFSDwt8GFXM7W5Ncn16wmqokgpiKRLuS83KUxyZyv2sUYv"],
    )
    pool_id: str = Field(
        ...,
        min_length=32,
        max_length=44,
        description="AMM market (pool) account",
        examples=["58oQChx4yWmvKdwLLZzBi4ChoCc2fqCUWBkwMihLYQo2"],
    )
    signer: str = Field(
        ...,
        min_length=32,
        max_length=44,
        description="Fee payer / signing authority",
        examples=["9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"],
    )
    wrapper_program: str | None = Field(
        default=None,
        description="Outer program invoking the AMM, absent for direct calls",
        examples=["vpeNALD89BZ4KxNUFjdLmFXBCwtyqBDQ85ouNoax38b", None],
    )
    program: str | None = Field(
        default=None,
        description="AMM program id",
        examples=["675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8"],
    )
    input_mint: str | None = Field(default=None, description="Mint sent into the pool")
    output_mint: str | None = Field(default=None, description="Mint received from the pool")
    direction: Direction = Field(
        ...,
        description="Trade direction relative to the pool's canonical side",
        examples=[Direction.BUY],
    )
    input_amount: int = Field(
        ...,
        ge=0,
        description="Input token amount in base units",
        examples=[1_000_000],
    )
    output_amount: int = Field(
        ...,
        ge=0,
        description="Output token amount in base units",
        examples=[2_451_337],
    )
    inclusion_index: int = Field(
        ...,
        ge=0,
        description="Position of the transaction within the block",
        examples=[412],
    )
    dont_front: bool = Field(default=False, description="Transaction asked not to be fronted")

    @field_validator("signature")
    @classmethod
    def validate_signature(cls, v: str) -> str:
        """Validate transaction signature format."""
        if not v:
            raise ValueError("Transaction signature cannot be empty")
        if not SOLANA_SIGNATURE_PATTERN.match(v):
            raise ValueError(
                f"Invalid transaction signature: {v[:20]}... "
                "Expected 64-88 base58 characters"
            )
        return v

    @field_validator("pool_id", "signer")
    @classmethod
    def validate_required_pubkey(cls, v: str) -> str:
        """Validate Solana public key format."""
        return validate_pubkey(v)

    @field_validator("wrapper_program", "program", "input_mint", "output_mint", mode="before")
    @classmethod
    def validate_optional_pubkey(cls, v: Any) -> str | None:
        """Treat blanks as absent and validate present keys."""
        if v is None:
            return None
        if isinstance(v, float) and v != v:  # NaN from a DataFrame cell
            return None
        v = str(v).strip()
        if not v:
            return None
        return validate_pubkey(v)

    def to_dict(self) -> dict[str, Any]:
        """Convert swap event to dictionary format suitable for DataFrames."""
        return {
            "signature": self.signature,
            "pool_id": self.pool_id,
            "signer": self.signer,
            "wrapper_program": self.wrapper_program,
            "program": self.program,
            "input_mint": self.input_mint,
            "output_mint": self.output_mint,
            "direction": str(self.direction),
            "input_amount": self.input_amount,
            "output_amount": self.output_amount,
            "inclusion_index": self.inclusion_index,
            "dont_front": self.dont_front,
        }

    @property
    def has_wrapper(self) -> bool:
        return self.wrapper_program is not None


class Block(BaseModel):
    """Ordered swap events of one slot together with the slot's leader.

    Attributes:
        slot: Slot number of the block.
        leader_identity: Identity pubkey of the validator that produced the block.
        swaps: Swap events in strictly increasing inclusion order.

    Example:
        >>> block = Block(slot=371237175, leader_identity="...", swaps=(swap_a, swap_b))
        >>> block.pools
        {'58oQChx4yWmvKdwLLZzBi4ChoCc2fqCUWBkwMihLYQo2'}
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    slot: int = Field(..., ge=0, description="Slot number", examples=[371237175])
    leader_identity: str = Field(
        ...,
        min_length=32,
        max_length=44,
        description="Identity pubkey of the slot leader",
        examples=["DRpbCBMxVnDK7maPM5tGv6MvB3v1sRMC86PZ8okm21hy"],
    )
    swaps: tuple[SwapEvent, ...] = Field(
        default=(),
        description="Swap events ordered by inclusion index",
    )

    @field_validator("leader_identity")
    @classmethod
    def validate_leader(cls, v: str) -> str:
        """Validate leader identity format."""
        return validate_pubkey(v)

    @model_validator(mode="after")
    def check_inclusion_order(self) -> Block:
        """Inclusion indexes must be unique and strictly increasing."""
        previous = -1
        for swap in self.swaps:
            if swap.inclusion_index <= previous:
                raise ValueError(
                    f"Swaps in slot {self.slot} are not in strictly increasing inclusion order "
                    f"({swap.inclusion_index} after {previous})"
                )
            previous = swap.inclusion_index
        return self

    @property
    def swap_count(self) -> int:
        return len(self.swaps)

    @property
    def pools(self) -> set[str]:
        """Return set of pools traded in this block."""
        return {swap.pool_id for swap in self.swaps}

    def swaps_for_pool(self, pool_id: str) -> list[SwapEvent]:
        return [swap for swap in self.swaps if swap.pool_id == pool_id]

    def swaps_by_pool(self) -> dict[str, list[SwapEvent]]:
        """Group swaps by pool, preserving inclusion order within each pool."""
        grouped: dict[str, list[SwapEvent]] = {}
        for swap in self.swaps:
            grouped.setdefault(swap.pool_id, []).append(swap)
        return grouped


def leader_group_start(slot: int) -> int:
    """Return the first slot of the leader group containing ``slot``."""
    return slot // LEADER_GROUP_SIZE * LEADER_GROUP_SIZE


__all__ = [
    "Block",
    "Direction",
    "SwapEvent",
    "LEADER_GROUP_SIZE",
    "SOLANA_PUBKEY_PATTERN",
    "SOLANA_SIGNATURE_PATTERN",
    "leader_group_start",
    "validate_pubkey",
]
