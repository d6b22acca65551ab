"""Exception hierarchy for the sandwich analysis engine."""
from __future__ import annotations


class SandwichSentryError(Exception):
    """Base error for all failures raised by sandwichsentry."""


class MalformedBlockError(SandwichSentryError, ValueError):
    """Raised when a block cannot be analysed (missing slot/leader, unordered swaps).

    The block is rejected as a whole; nothing it contains is aggregated.
    """

    def __init__(self, message: str, slot: int | None = None) -> None:
        super().__init__(message)
        self.slot = slot


class ConfigurationError(SandwichSentryError, ValueError):
    """Raised for invalid run configuration. Fatal before any aggregation starts."""


class InsufficientSampleError(SandwichSentryError):
    """Raised when an interval cannot be computed for the given sample size."""

    def __init__(self, message: str, sample_size: float = 0) -> None:
        super().__init__(message)
        self.sample_size = sample_size


__all__ = [
    "SandwichSentryError",
    "MalformedBlockError",
    "ConfigurationError",
    "InsufficientSampleError",
]
