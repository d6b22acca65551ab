"""Swap decoding seam between the ingestion layer and the analysis core.

Each AMM family encodes swaps differently. A decoder turns one transaction
record into a :class:`SwapEvent` (or ``None`` when the record is not a swap
it understands), and a :class:`DecoderRegistry` picks the decoder by AMM
program id. The analysis core never looks at the AMM family itself; it only
compares ``pool_id`` values.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol

from sandwichsentry.models.swap import Direction, SwapEvent

logger = logging.getLogger(__name__)

SWAP_FIELDS: tuple[str, ...] = tuple(SwapEvent.model_fields)


class SwapDecoder(Protocol):
    """Capability interface implemented once per AMM family."""

    program_ids: frozenset[str]

    def decode(self, transaction: Mapping[str, Any]) -> SwapEvent | None:
        """Return the swap carried by ``transaction`` or ``None`` if there is none."""
        ...


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and value != value:
        return True
    return isinstance(value, str) and not value.strip()


def _to_int(value: Any) -> Any:
    """Exact integer for integral numbers and numeric strings; anything else is left for validation."""
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        return value
    if not number.is_finite() or number != number.to_integral_value():
        return value
    return int(number)


def infer_direction(input_mint: str | None, output_mint: str | None) -> Direction | None:
    """Direction relative to the pool's canonical side.

    The canonical side is the lexicographically smaller mint of the pair, so
    every swap on a two-token pool maps to the same orientation. Receiving the
    canonical mint is a buy.
    """
    if not input_mint or not output_mint or input_mint == output_mint:
        return None
    canonical = min(input_mint, output_mint)
    return Direction.BUY if output_mint == canonical else Direction.SELL


class RecordDecoder:
    """Decoder for records that an upstream indexer already flattened.

    Accepts any program id unless ``program_ids`` is given. Missing pool or
    direction information means "not a swap"; malformed values raise
    :class:`pydantic.ValidationError`.

    Example:
        >>> decoder = RecordDecoder()
        >>> swap = decoder.decode(row)
    """

    def __init__(self, program_ids: Iterable[str] = ()) -> None:
        self.program_ids = frozenset(program_ids)

    def decode(self, transaction: Mapping[str, Any]) -> SwapEvent | None:
        if _is_missing(transaction.get("pool_id")) or _is_missing(transaction.get("signature")):
            return None

        values = {key: transaction[key] for key in SWAP_FIELDS if key in transaction}
        if _is_missing(values.get("direction")):
            direction = infer_direction(
                None if _is_missing(values.get("input_mint")) else str(values["input_mint"]).strip(),
                None if _is_missing(values.get("output_mint")) else str(values["output_mint"]).strip(),
            )
            if direction is None:
                return None
            values["direction"] = direction
        else:
            values["direction"] = str(values["direction"]).strip().lower()

        for key in ("input_amount", "output_amount", "inclusion_index"):
            if key in values:
                values[key] = _to_int(values[key])
        if _is_missing(values.get("dont_front")):
            values.pop("dont_front", None)
        elif not isinstance(values["dont_front"], str):
            values["dont_front"] = bool(values["dont_front"])

        return SwapEvent(**values)


class DecoderRegistry:
    """Select a decoder per AMM program id.

    Example:
        >>> registry = DecoderRegistry(fallback=RecordDecoder())
        >>> registry.register(WhirlpoolDecoder())
        >>> swaps = registry.decode_all(transactions)
    """

    def __init__(self, fallback: SwapDecoder | None = None) -> None:
        self._decoders: dict[str, SwapDecoder] = {}
        self.fallback = fallback

    def register(self, decoder: SwapDecoder) -> SwapDecoder:
        """Register ``decoder`` for each of its program ids."""
        for program_id in decoder.program_ids:
            existing = self._decoders.get(program_id)
            if existing is not None and existing is not decoder:
                raise ValueError(f"Program {program_id} already has a decoder: {type(existing).__name__}")
            self._decoders[program_id] = decoder
        return decoder

    @property
    def program_ids(self) -> set[str]:
        return set(self._decoders)

    def decoder_for(self, program_id: str | None) -> SwapDecoder | None:
        if program_id is not None and program_id in self._decoders:
            return self._decoders[program_id]
        return self.fallback

    def decode(self, transaction: Mapping[str, Any]) -> SwapEvent | None:
        program = transaction.get("program")
        decoder = self.decoder_for(None if _is_missing(program) else str(program).strip())
        if decoder is None:
            return None
        return decoder.decode(transaction)

    def decode_all(self, transactions: Iterable[Mapping[str, Any]]) -> list[SwapEvent]:
        """Decode every transaction, keeping only swaps."""
        swaps = []
        skipped = 0
        for transaction in transactions:
            swap = self.decode(transaction)
            if swap is None:
                skipped += 1
                continue
            swaps.append(swap)
        if skipped:
            logger.debug("Skipped %d records without a decodable swap", skipped)
        return swaps


def default_registry() -> DecoderRegistry:
    """Registry that decodes pre-flattened records for every program."""
    return DecoderRegistry(fallback=RecordDecoder())


__all__ = [
    "DecoderRegistry",
    "RecordDecoder",
    "SWAP_FIELDS",
    "SwapDecoder",
    "default_registry",
    "infer_direction",
]
