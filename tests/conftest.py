"""Shared factory fixtures for building swaps and blocks."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from sandwichsentry.models.swap import Block, Direction, SwapEvent

B58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


def b58(n: int) -> str:
    """Encode a non-negative integer with the base58 alphabet."""
    if n == 0:
        return B58_ALPHABET[0]
    digits = []
    while n:
        n, rem = divmod(n, 58)
        digits.append(B58_ALPHABET[rem])
    return "".join(reversed(digits))


def key(tag: str) -> str:
    """Deterministic 44-character pubkey starting with ``tag``."""
    return (tag + "1" * 44)[:44]


def signature(n: int, tag: str = "Sig") -> str:
    """Deterministic 88-character transaction signature."""
    return (tag + b58(n).rjust(16, "1") + "z" * 88)[:88]


@pytest.fixture
def pubkey() -> Callable[[str], str]:
    """Factory for deterministic pubkeys; tags must be base58 (no 0, O, I, l)."""
    return key


@pytest.fixture
def make_swap() -> Callable[..., SwapEvent]:
    """Factory fixture creating swap events."""

    def _create(
        idx: int,
        direction: Direction | str,
        signer: str = "Attacker",
        pool: str = "Market",
        wrapper: str | None = "Wrapper",
        input_amount: int = 100,
        output_amount: int = 100,
        sig: str | None = None,
        slot_tag: str = "Sig",
        input_mint: str | None = None,
        output_mint: str | None = None,
    ) -> SwapEvent:
        return SwapEvent(
            signature=sig or signature(idx, slot_tag),
            pool_id=key(pool),
            signer=key(signer),
            wrapper_program=key(wrapper) if wrapper else None,
            direction=direction,
            input_amount=input_amount,
            output_amount=output_amount,
            inclusion_index=idx,
            input_mint=input_mint,
            output_mint=output_mint,
        )

    return _create


@pytest.fixture
def make_block() -> Callable[..., Block]:
    """Factory fixture creating blocks."""

    def _create(slot: int, swaps: list[SwapEvent] | tuple[SwapEvent, ...] = (), leader: str = "Leader") -> Block:
        return Block(slot=slot, leader_identity=key(leader), swaps=tuple(swaps))

    return _create


@pytest.fixture
def scenario_one(make_swap: Callable[..., SwapEvent]) -> list[SwapEvent]:
    """Frontrun A, victim B, backrun C on one pool."""
    return [
        make_swap(1, Direction.BUY, signer="X", wrapper="W", input_amount=100, output_amount=110),
        make_swap(2, Direction.BUY, signer="Y", wrapper=None, input_amount=10, output_amount=9),
        make_swap(3, Direction.SELL, signer="X", wrapper="W", input_amount=109, output_amount=101),
    ]
