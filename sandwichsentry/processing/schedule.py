"""Leader schedule helpers.

The cluster publishes, per epoch, the epoch-relative slot indexes assigned to
each validator identity. Leaders rotate in groups of ``LEADER_GROUP_SIZE``
consecutive slots.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from sandwichsentry.models.swap import leader_group_start

SLOTS_PER_EPOCH = 432_000


def epoch_first_slot(epoch: int, slots_per_epoch: int = SLOTS_PER_EPOCH) -> int:
    if epoch < 0:
        raise ValueError(f"Epoch must be non-negative, got {epoch}")
    return epoch * slots_per_epoch


def expand_leader_schedule(schedule: Mapping[str, Iterable[int]], first_slot: int = 0) -> dict[int, str]:
    """Invert ``identity -> [relative slot indexes]`` into ``slot -> identity``.

    Args:
        schedule: Leader schedule as returned by ``getLeaderSchedule``.
        first_slot: Absolute slot the relative indexes start from.

    Returns:
        Mapping of absolute slot to leader identity.

    Raises:
        ValueError: If a slot is assigned to two leaders.

    Example:
        >>> expand_leader_schedule({"Leader...": [0, 1, 2, 3]}, first_slot=432_000)[432_001]
        'Leader...'
    """
    slot_leaders: dict[int, str] = {}
    for identity, indexes in schedule.items():
        for index in indexes:
            slot = first_slot + int(index)
            existing = slot_leaders.get(slot)
            if existing is not None and existing != identity:
                raise ValueError(f"Slot {slot} assigned to both {existing} and {identity}")
            slot_leaders[slot] = identity
    return slot_leaders


def leader_for_slot(slot: int, slot_leaders: Mapping[int, str]) -> str | None:
    """Leader of ``slot``, falling back to the first slot of its leader group."""
    leader = slot_leaders.get(slot)
    if leader is None:
        leader = slot_leaders.get(leader_group_start(slot))
    return leader


__all__ = [
    "SLOTS_PER_EPOCH",
    "epoch_first_slot",
    "expand_leader_schedule",
    "leader_for_slot",
]
