"""Ingestion helpers: cleaning, decoding and block assembly."""

from sandwichsentry.processing.blocks import BlockBuild, frame_to_blocks
from sandwichsentry.processing.clean_swaps import clean_swap_frame
from sandwichsentry.processing.decoding import (
    DecoderRegistry,
    RecordDecoder,
    SwapDecoder,
    default_registry,
    infer_direction,
)
from sandwichsentry.processing.schedule import (
    SLOTS_PER_EPOCH,
    epoch_first_slot,
    expand_leader_schedule,
    leader_for_slot,
)

__all__ = [
    "BlockBuild",
    "DecoderRegistry",
    "RecordDecoder",
    "SLOTS_PER_EPOCH",
    "SwapDecoder",
    "clean_swap_frame",
    "default_registry",
    "epoch_first_slot",
    "expand_leader_schedule",
    "frame_to_blocks",
    "infer_direction",
    "leader_for_slot",
]
