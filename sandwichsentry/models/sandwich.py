"""Pydantic model for a detected sandwich instance.

A sandwich is one frontrun swap, one or more victim swaps and one backrun swap
on the same pool inside a single block. The model enforces the structural
invariants; the matching rules live in :mod:`sandwichsentry.detection.sandwich`.
"""

from __future__ import annotations

import uuid
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from sandwichsentry.models.swap import SwapEvent, validate_pubkey

# Wrapped SOL mint; profits are only priced for pools with a WSOL side
WSOL_MINT = "So11111111111111111111111111111111111111112"


class SandwichRole(StrEnum):
    """Role of a swap inside a sandwich (audit log vocabulary)."""

    FRONTRUN = "FRONTRUN"
    VICTIM = "VICTIM"
    BACKRUN = "BACKRUN"


def make_sandwich_id(slot: int, frontrun: SwapEvent, victims: tuple[SwapEvent, ...], backrun: SwapEvent) -> str:
    """Derive a deterministic UUIDv5 for a sandwich from its member transactions."""
    parts = [str(slot), f"F:{frontrun.signature}:{frontrun.inclusion_index}"]
    parts.extend(f"V:{v.signature}:{v.inclusion_index}" for v in victims)
    parts.append(f"B:{backrun.signature}:{backrun.inclusion_index}")
    return str(uuid.uuid5(uuid.NAMESPACE_DNS, "|".join(parts)))


def _div_trunc(numerator: int, denominator: int) -> int:
    """Integer division rounding toward zero."""
    quotient = abs(numerator) // abs(denominator)
    return quotient if (numerator >= 0) == (denominator >= 0) else -quotient


class SandwichInstance(BaseModel):
    """Represents a detected sandwich pattern in one block.

    Attributes:
        sandwich_id: Deterministic identifier derived from the member swaps.
        slot: Slot of the block containing the sandwich.
        leader_identity: Validator that produced the block.
        pool_id: Pool shared by every member swap.
        frontrun: Attacker swap placed before the victims.
        victims: Victim swaps, ordered by inclusion index.
        backrun: Attacker swap placed after the victims, opposite direction.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    sandwich_id: str = Field(..., min_length=36, max_length=36)
    slot: int = Field(..., ge=0)
    leader_identity: str = Field(..., min_length=32, max_length=44)
    pool_id: str = Field(..., min_length=32, max_length=44)
    frontrun: SwapEvent
    victims: tuple[SwapEvent, ...] = Field(..., min_length=1)
    backrun: SwapEvent

    @field_validator("leader_identity", "pool_id")
    @classmethod
    def validate_keys(cls, v: str) -> str:
        return validate_pubkey(v)

    @model_validator(mode="after")
    def check_structure(self) -> SandwichInstance:
        """Enforce shared pool and frontrun < victims < backrun ordering."""
        members = (self.frontrun, *self.victims, self.backrun)
        if any(swap.pool_id != self.pool_id for swap in members):
            raise ValueError("All sandwich members must trade on the same pool")
        indexes = [swap.inclusion_index for swap in members]
        if any(later <= earlier for earlier, later in zip(indexes, indexes[1:])):
            raise ValueError(f"Sandwich members are not in strictly increasing order: {indexes}")
        return self

    @classmethod
    def create(
        cls,
        slot: int,
        leader_identity: str,
        frontrun: SwapEvent,
        victims: list[SwapEvent] | tuple[SwapEvent, ...],
        backrun: SwapEvent,
    ) -> SandwichInstance:
        """Build an instance with its deterministic id."""
        victims = tuple(victims)
        return cls(
            sandwich_id=make_sandwich_id(slot, frontrun, victims, backrun),
            slot=slot,
            leader_identity=leader_identity,
            pool_id=frontrun.pool_id,
            frontrun=frontrun,
            victims=victims,
            backrun=backrun,
        )

    @property
    def attacker_signers(self) -> set[str]:
        """Signers of the frontrun and backrun (may be one or two wallets)."""
        return {self.frontrun.signer, self.backrun.signer}

    @property
    def victim_signatures(self) -> list[str]:
        return [v.signature for v in self.victims]

    @property
    def members(self) -> tuple[SwapEvent, ...]:
        return (self.frontrun, *self.victims, self.backrun)

    def estimate_victim_loss(self) -> tuple[int, int] | None:
        """Estimate what the first victim lost to the frontrun.

        Reconstructs constant-product reserves ``(a, b)`` from the frontrun and
        the frontrun+victim trades, then prices the victim trade against the
        untouched reserves.

        Returns:
            ``(input_excess, output_shortfall)``: extra input the victim paid
            for its output, and output it missed for its input. ``None`` when
            the reserves cannot be reconstructed.
        """
        victim = self.victims[0]
        a1, a2 = self.frontrun.input_amount, victim.input_amount
        b1, b2 = self.frontrun.output_amount, victim.output_amount
        a3, b3 = a1 + a2, b1 + b2
        c1, c2 = -a1 * b1, -a3 * b3
        det = a1 * b3 - b1 * a3
        if det == 0:
            return None
        a = _div_trunc(a1 * c2 - c1 * a3, det)
        b = _div_trunc(b1 * c2 - b3 * c1, det)
        if a + a2 == 0 or b - b2 == 0:
            return None
        k = a * b
        b2_fair = b - _div_trunc(k, a + a2)
        a2_fair = _div_trunc(k, b - b2) - a
        return a2 - a2_fair, b2_fair - b2

    def attacker_profit(self) -> tuple[int, int]:
        """Attacker round-trip gain in each token of the pool.

        Returns:
            ``(input_token_gain, output_token_gain)``: backrun output minus
            frontrun input, and frontrun output minus backrun input. Either
            may be negative.
        """
        input_token_gain = self.backrun.output_amount - self.frontrun.input_amount
        output_token_gain = self.frontrun.output_amount - self.backrun.input_amount
        return input_token_gain, output_token_gain

    def _leg_mints(self) -> tuple[str | None, str | None]:
        input_mint = self.frontrun.input_mint or self.backrun.output_mint
        output_mint = self.frontrun.output_mint or self.backrun.input_mint
        return input_mint, output_mint

    def estimate_profit_lamports(self) -> int | None:
        """Estimate the attacker's profit in lamports.

        The WSOL side of the round trip counts as is; the other token's gain is
        converted at the frontrun's execution price. ``None`` unless one side of
        the pool is wrapped SOL.
        """
        input_token_gain, output_token_gain = self.attacker_profit()
        input_mint, output_mint = self._leg_mints()
        front_in, front_out = self.frontrun.input_amount, self.frontrun.output_amount
        if input_mint == WSOL_MINT:
            converted = _div_trunc(output_token_gain * front_in, front_out) if front_out else 0
            return input_token_gain + converted
        if output_mint == WSOL_MINT:
            converted = _div_trunc(input_token_gain * front_out, front_in) if front_in else 0
            return output_token_gain + converted
        return None

    def to_audit_records(self) -> list[dict[str, Any]]:
        """Flatten into one append-only audit row per member swap."""
        rows = [(SandwichRole.FRONTRUN, self.frontrun)]
        rows.extend((SandwichRole.VICTIM, v) for v in self.victims)
        rows.append((SandwichRole.BACKRUN, self.backrun))
        input_token_gain, output_token_gain = self.attacker_profit()
        est_profit = self.estimate_profit_lamports()
        return [
            {
                "sandwich_id": self.sandwich_id,
                "slot": self.slot,
                "leader_identity": self.leader_identity,
                "pool_id": self.pool_id,
                "role": str(role),
                "signature": swap.signature,
                "signer": swap.signer,
                "wrapper_program": swap.wrapper_program,
                "direction": str(swap.direction),
                "input_amount": swap.input_amount,
                "output_amount": swap.output_amount,
                "inclusion_index": swap.inclusion_index,
                "dont_front": swap.dont_front,
                "attacker_input_token_gain": input_token_gain,
                "attacker_output_token_gain": output_token_gain,
                "est_profit_lamports": est_profit,
            }
            for role, swap in rows
        ]

    def to_dict(self) -> dict[str, Any]:
        """Convert the sandwich to a one-row summary dictionary."""
        input_token_gain, output_token_gain = self.attacker_profit()
        return {
            "sandwich_id": self.sandwich_id,
            "slot": self.slot,
            "leader_identity": self.leader_identity,
            "pool_id": self.pool_id,
            "frontrun_signature": self.frontrun.signature,
            "backrun_signature": self.backrun.signature,
            "victim_signatures": self.victim_signatures,
            "victim_count": len(self.victims),
            "frontrun_input_amount": self.frontrun.input_amount,
            "frontrun_output_amount": self.frontrun.output_amount,
            "backrun_input_amount": self.backrun.input_amount,
            "backrun_output_amount": self.backrun.output_amount,
            "attacker_input_token_gain": input_token_gain,
            "attacker_output_token_gain": output_token_gain,
            "est_profit_lamports": self.estimate_profit_lamports(),
        }


__all__ = [
    "WSOL_MINT",
    "SandwichInstance",
    "SandwichRole",
    "make_sandwich_id",
]
