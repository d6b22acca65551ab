"""Pydantic models for per-validator and cluster-wide sandwich metrics."""

from __future__ import annotations

import math
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from sandwichsentry.models.swap import validate_pubkey

# Column order of the externally consumed validator report
REPORT_COLUMNS: list[str] = [
    "leader",
    "vote",
    "name",
    "Sc",
    "Sc_p",
    "Sc_raw",
    "Sc_p_raw",
    "slots",
    "Sc_p_lb",
    "Sc_p_ub",
    "Sc_lb",
    "Sc_ub",
    "Sc_p_flag",
    "Sc_flag",
]


class ValidatorRawCounts(BaseModel):
    """Unsmeared counters for one validator over the analysed slot range.

    Attributes:
        identity: Validator identity pubkey.
        slots_observed: Leader slots of this validator seen in the range.
        raw_sandwich_inclusive_blocks: Observed blocks with at least one sandwich.
        raw_sandwich_count: Sandwiches detected in this validator's blocks.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    identity: str = Field(..., min_length=32, max_length=44)
    slots_observed: int = Field(..., ge=0)
    raw_sandwich_inclusive_blocks: int = Field(..., ge=0)
    raw_sandwich_count: int = Field(..., ge=0)

    @field_validator("identity")
    @classmethod
    def validate_identity(cls, v: str) -> str:
        return validate_pubkey(v)

    @model_validator(mode="after")
    def check_counts(self) -> ValidatorRawCounts:
        if self.raw_sandwich_inclusive_blocks > self.slots_observed:
            raise ValueError("Sandwich-inclusive blocks cannot exceed observed slots")
        if self.raw_sandwich_count < self.raw_sandwich_inclusive_blocks:
            raise ValueError("Sandwich count cannot be below sandwich-inclusive blocks")
        return self


class ValidatorWeightedCounts(BaseModel):
    """Counters for one validator after credit smearing.

    Attributes:
        identity: Validator identity pubkey.
        slots_observed: Leader slots of this validator seen in the range.
        weighted_sandwich_inclusive_blocks: Smeared inclusive-block indicator sum.
        weighted_sandwich_count: Smeared sandwich count.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    identity: str = Field(..., min_length=32, max_length=44)
    slots_observed: int = Field(..., ge=0)
    weighted_sandwich_inclusive_blocks: float = Field(..., ge=0.0)
    weighted_sandwich_count: float = Field(..., ge=0.0)

    @field_validator("identity")
    @classmethod
    def validate_identity(cls, v: str) -> str:
        return validate_pubkey(v)

    @property
    def presence_rate(self) -> float | None:
        """Weighted share of observed blocks that included a sandwich."""
        if self.slots_observed == 0:
            return None
        return self.weighted_sandwich_inclusive_blocks / self.slots_observed

    @property
    def sandwich_rate(self) -> float | None:
        """Weighted sandwiches per observed block."""
        if self.slots_observed == 0:
            return None
        return self.weighted_sandwich_count / self.slots_observed


class ClusterBaseline(BaseModel):
    """Cluster-wide reference statistics for one run.

    Immutable value object handed to the flagger; never mutated after the
    aggregation pass that produced it.

    Attributes:
        total_blocks: Blocks observed across all leaders.
        sandwich_inclusive_blocks: Blocks with at least one (unsmeared) sandwich.
        proportion: ``sandwich_inclusive_blocks / total_blocks``.
        mean_sandwiches_per_block: Population mean of per-block sandwich counts.
        std_dev_sandwiches_per_block: Population standard deviation of the same.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    total_blocks: int = Field(..., ge=0)
    sandwich_inclusive_blocks: int = Field(..., ge=0)
    proportion: float = Field(..., ge=0.0, le=1.0)
    mean_sandwiches_per_block: float = Field(..., ge=0.0)
    std_dev_sandwiches_per_block: float = Field(..., ge=0.0)

    @model_validator(mode="after")
    def check_consistency(self) -> ClusterBaseline:
        if self.sandwich_inclusive_blocks > self.total_blocks:
            raise ValueError("Sandwich-inclusive blocks cannot exceed total blocks")
        if self.total_blocks > 0:
            expected = self.sandwich_inclusive_blocks / self.total_blocks
            if not math.isclose(expected, self.proportion, rel_tol=1e-9, abs_tol=1e-12):
                raise ValueError(f"Proportion {self.proportion} does not match counts ({expected})")
        return self

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump()


class ValidatorMetadata(BaseModel):
    """Display metadata for a validator, supplied by an external collaborator."""

    model_config = ConfigDict(frozen=True, extra="ignore", str_strip_whitespace=True)

    identity: str = Field(..., min_length=32, max_length=44)
    vote_account: str | None = None
    name: str | None = Field(default=None, max_length=200)

    @field_validator("identity")
    @classmethod
    def validate_identity(cls, v: str) -> str:
        return validate_pubkey(v)

    @field_validator("name", mode="before")
    @classmethod
    def validate_name(cls, v: Any) -> str | None:
        # read_csv yields NaN for blank cells
        if v is None or (isinstance(v, float) and v != v) or not str(v).strip():
            return None
        return str(v).strip()

    @field_validator("vote_account", mode="before")
    @classmethod
    def validate_vote_account(cls, v: Any) -> str | None:
        if v is None or (isinstance(v, float) and v != v) or not str(v).strip():
            return None
        return validate_pubkey(str(v).strip())


class ValidatorReportRecord(BaseModel):
    """One row of the validator report.

    Scores are normalised per observed slot; the ``*_raw`` values are the
    smeared totals they derive from. The ``Sc`` bounds are the count interval
    divided by the slot count so that they are comparable with ``Sc``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    identity: str = Field(..., min_length=32, max_length=44)
    vote_account: str | None = None
    name: str | None = None
    sc: float = Field(..., ge=0.0)
    sc_p: float = Field(..., ge=0.0, le=1.0)
    sc_raw: float = Field(..., ge=0.0)
    sc_p_raw: float = Field(..., ge=0.0)
    slots: int = Field(..., ge=1)
    sc_p_lower: float
    sc_p_upper: float
    sc_lower: float
    sc_upper: float
    sc_p_flag: bool
    sc_flag: bool

    @property
    def flagged(self) -> bool:
        """Both metrics anomalous: the alternative hypothesis is accepted."""
        return self.sc_p_flag and self.sc_flag

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary keyed by the external report columns."""
        return {
            "leader": self.identity,
            "vote": self.vote_account,
            "name": self.name,
            "Sc": self.sc,
            "Sc_p": self.sc_p,
            "Sc_raw": self.sc_raw,
            "Sc_p_raw": self.sc_p_raw,
            "slots": self.slots,
            "Sc_p_lb": self.sc_p_lower,
            "Sc_p_ub": self.sc_p_upper,
            "Sc_lb": self.sc_lower,
            "Sc_ub": self.sc_upper,
            "Sc_p_flag": self.sc_p_flag,
            "Sc_flag": self.sc_flag,
        }


__all__ = [
    "ClusterBaseline",
    "REPORT_COLUMNS",
    "ValidatorMetadata",
    "ValidatorRawCounts",
    "ValidatorReportRecord",
    "ValidatorWeightedCounts",
]
