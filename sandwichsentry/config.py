"""Run configuration for the sandwich analysis engine.

All tunables of a run live in one frozen :class:`AnalysisConfig`. Values can
be supplied directly or read from ``SANDWICH_*`` environment variables (a
``.env`` file is honoured through python-dotenv). Invalid values surface as
:class:`~sandwichsentry.errors.ConfigurationError` so that a run halts before
any block is aggregated.

Environment variables:
- ``SANDWICH_CONFIDENCE_LEVEL``: two-sided confidence level (default 0.9999)
- ``SANDWICH_PROPORTION_METHOD``: wilson / clopper-pearson / wald
- ``SANDWICH_SMEAR_WINDOW``: preceding own-leader slots credited (default 1)
- ``SANDWICH_SMEAR_CURVE``: uniform / geometric
- ``SANDWICH_SMEAR_DECAY``: ratio between consecutive geometric weights
- ``SANDWICH_SMEAR_WEIGHTS``: explicit comma separated weights, overrides the curve
- ``SANDWICH_MIN_EVALUABLE_SLOTS``: minimum slots before a validator is assessed
- ``SANDWICH_MIN_REPORT_SLOTS``: minimum slots for the filtered report (default 50)
- ``SANDWICH_EXCLUDED_WRAPPERS``: comma separated wrapper programs to ignore
- ``SANDWICH_PREFER_SAME_SIGNER``: prefer backruns signed by the frontrunner
- ``SANDWICH_WORKERS``: worker threads used for per-block detection
"""

from __future__ import annotations

import logging
import math
import os
from collections.abc import Mapping
from enum import StrEnum
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from sandwichsentry.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Jupiter v6 aggregator. Aggregator routes are shared by ordinary users and are
# not a fingerprint linking two legs of a sandwich.
JUPITER_V6_PROGRAM = "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4"

ENV_PREFIX = "SANDWICH_"


class ProportionMethod(StrEnum):
    """Interval estimator used for the block-inclusion proportion."""

    WILSON = "wilson"
    CLOPPER_PEARSON = "clopper-pearson"
    WALD = "wald"


class SmearCurve(StrEnum):
    """Shape of the credit weights over the smear window."""

    UNIFORM = "uniform"
    GEOMETRIC = "geometric"


def smear_weights_for(window: int, curve: SmearCurve = SmearCurve.UNIFORM, decay: float = 0.5) -> tuple[float, ...]:
    """Build normalised smear weights for ``window`` preceding slots.

    Index 0 is the slot where the sandwich was detected, index ``k`` the
    ``k``-th preceding slot of the same leader.

    Example:
        >>> smear_weights_for(1)
        (0.5, 0.5)
        >>> smear_weights_for(2, SmearCurve.GEOMETRIC, decay=0.5)
        (0.5714285714285714, 0.2857142857142857, 0.14285714285714285)
    """
    if window < 0:
        raise ValueError(f"Smear window must be non-negative, got {window}")
    if curve == SmearCurve.UNIFORM:
        raw = [1.0] * (window + 1)
    else:
        if not 0.0 < decay <= 1.0:
            raise ValueError(f"Geometric decay must be in (0, 1], got {decay}")
        raw = [decay**k for k in range(window + 1)]
    total = sum(raw)
    return tuple(w / total for w in raw)


def _describe_error(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "config"
    return f"Invalid configuration for {location}: {first['msg']}"


class AnalysisConfig(BaseModel):
    """Tunables for one analysis run.

    Attributes:
        confidence_level: Two-sided confidence level for both interval tests.
        proportion_method: Estimator for the Metric A (presence) interval.
        smear_window: Number of preceding own-leader slots that receive credit.
        smear_curve: Weight shape over the smear window.
        smear_decay: Ratio between consecutive weights for the geometric curve.
        smear_weights: Explicit weights; when set they override window and curve.
        min_evaluable_slots: Validators observed for fewer slots are not evaluated.
        min_report_slots: Validators below this slot count never reach the filtered report.
        excluded_wrapper_programs: Wrapper programs that never link frontrun and backrun.
        prefer_same_signer_backrun: Prefer a closing swap signed by the frontrunner.
        workers: Worker threads used for per-block detection and per-leader smearing.

    Raises:
        ConfigurationError: If any value is invalid, whether the config is
            built directly or through :func:`load_config`.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        validate_default=True,
    )

    confidence_level: float = Field(
        default=0.9999,
        gt=0.0,
        lt=1.0,
        description="Two-sided confidence level for both hypothesis tests",
        examples=[0.9999],
    )
    proportion_method: ProportionMethod = Field(
        default=ProportionMethod.WILSON,
        description="Binomial proportion interval estimator",
    )
    smear_window: int = Field(
        default=1,
        ge=0,
        le=64,
        description="Preceding own-leader slots credited for a detection",
    )
    smear_curve: SmearCurve = Field(default=SmearCurve.UNIFORM)
    smear_decay: float = Field(default=0.5, gt=0.0, le=1.0)
    smear_weights: tuple[float, ...] | None = Field(
        default=None,
        description="Explicit weights, index 0 = detecting slot",
        examples=[(0.5, 0.5)],
    )
    min_evaluable_slots: int = Field(default=1, ge=1)
    min_report_slots: int = Field(default=50, ge=0)
    excluded_wrapper_programs: frozenset[str] = Field(
        default=frozenset({JUPITER_V6_PROGRAM}),
    )
    prefer_same_signer_backrun: bool = False
    workers: int = Field(default=1, ge=1, le=256)

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except ValidationError as e:
            raise ConfigurationError(_describe_error(e)) from e

    @field_validator("smear_weights")
    @classmethod
    def validate_smear_weights(cls, v: tuple[float, ...] | None) -> tuple[float, ...] | None:
        """Weights must be non-negative and sum to one."""
        if v is None:
            return v
        if not v:
            raise ValueError("smear_weights must contain at least one weight")
        if any(w < 0 or not math.isfinite(w) for w in v):
            raise ValueError(f"smear_weights must be finite and non-negative: {v}")
        if not math.isclose(sum(v), 1.0, rel_tol=0.0, abs_tol=1e-9):
            raise ValueError(f"smear_weights must sum to 1.0, got {sum(v)}")
        return tuple(float(w) for w in v)

    @model_validator(mode="after")
    def check_window_matches_weights(self) -> AnalysisConfig:
        if self.smear_weights is not None and "smear_window" in self.model_fields_set:
            if len(self.smear_weights) != self.smear_window + 1:
                raise ValueError(
                    f"smear_window={self.smear_window} needs {self.smear_window + 1} weights, "
                    f"got {len(self.smear_weights)}"
                )
        return self

    @property
    def weights(self) -> tuple[float, ...]:
        """Resolved smear weights, index 0 = detecting slot."""
        if self.smear_weights is not None:
            return self.smear_weights
        return smear_weights_for(self.smear_window, self.smear_curve, self.smear_decay)

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to a plain dictionary for reporting."""
        data = self.model_dump(mode="json")
        data["weights"] = list(self.weights)
        data["excluded_wrapper_programs"] = sorted(self.excluded_wrapper_programs)
        return data


_ENV_FIELDS: dict[str, str] = {
    "CONFIDENCE_LEVEL": "confidence_level",
    "PROPORTION_METHOD": "proportion_method",
    "SMEAR_WINDOW": "smear_window",
    "SMEAR_CURVE": "smear_curve",
    "SMEAR_DECAY": "smear_decay",
    "SMEAR_WEIGHTS": "smear_weights",
    "MIN_EVALUABLE_SLOTS": "min_evaluable_slots",
    "MIN_REPORT_SLOTS": "min_report_slots",
    "EXCLUDED_WRAPPERS": "excluded_wrapper_programs",
    "PREFER_SAME_SIGNER": "prefer_same_signer_backrun",
    "WORKERS": "workers",
}

_LIST_FIELDS = {"smear_weights", "excluded_wrapper_programs"}


def _split_list(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


def _values_from_env(env: Mapping[str, str]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for suffix, field_name in _ENV_FIELDS.items():
        raw = env.get(f"{ENV_PREFIX}{suffix}")
        if raw is None or raw.strip() == "":
            continue
        if field_name in _LIST_FIELDS:
            values[field_name] = _split_list(raw)
        else:
            values[field_name] = raw.strip()
    return values


def load_config(env: Mapping[str, str] | None = None, *, use_dotenv: bool = True, **overrides: Any) -> AnalysisConfig:
    """Build a validated :class:`AnalysisConfig`.

    Args:
        env: Environment mapping to read ``SANDWICH_*`` values from. Defaults
            to ``os.environ`` (after loading a ``.env`` file when ``use_dotenv``).
        use_dotenv: Load a ``.env`` file into the process environment first.
        **overrides: Explicit field values; they win over the environment.

    Returns:
        The frozen configuration.

    Raises:
        ConfigurationError: If any value is invalid.
    """
    if env is None:
        if use_dotenv:
            load_dotenv()
        env = os.environ

    values = _values_from_env(env)
    values.update(overrides)

    config = AnalysisConfig(**values)
    logger.debug("Loaded analysis configuration: %s", config.to_dict())
    return config


__all__ = [
    "AnalysisConfig",
    "ProportionMethod",
    "SmearCurve",
    "JUPITER_V6_PROGRAM",
    "load_config",
    "smear_weights_for",
]
