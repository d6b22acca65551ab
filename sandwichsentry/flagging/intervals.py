"""Confidence intervals used by the validator flagging tests.

Quantiles come from :mod:`scipy.stats`, so the arithmetic matches the
reference statistical library exactly. Success counts may be real-valued
because smeared credit is fractional.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from scipy import stats

from sandwichsentry.config import ProportionMethod
from sandwichsentry.errors import ConfigurationError, InsufficientSampleError


@dataclass(frozen=True)
class Interval:
    """Two-sided confidence interval around a point estimate."""

    lower: float
    upper: float
    estimate: float

    @property
    def width(self) -> float:
        return self.upper - self.lower

    def contains(self, value: float) -> bool:
        return self.lower <= value <= self.upper


def z_score(confidence: float) -> float:
    """Two-sided standard normal critical value for ``confidence``.

    Example:
        >>> round(z_score(0.95), 4)
        1.96
    """
    if not 0.0 < confidence < 1.0:
        raise ConfigurationError(f"Confidence level must be in (0, 1), got {confidence}")
    return float(stats.norm.ppf(1.0 - (1.0 - confidence) / 2.0))


def _wilson(p: float, n: float, z: float) -> tuple[float, float]:
    z2 = z * z
    denominator = 1.0 + z2 / n
    center = (p + z2 / (2.0 * n)) / denominator
    half_width = z * math.sqrt(p * (1.0 - p) / n + z2 / (4.0 * n * n)) / denominator
    return center - half_width, center + half_width


def _wald(p: float, n: float, z: float) -> tuple[float, float]:
    half_width = z * math.sqrt(p * (1.0 - p) / n)
    return p - half_width, p + half_width


def _clopper_pearson(k: float, n: float, confidence: float) -> tuple[float, float]:
    alpha = 1.0 - confidence
    lower = 0.0 if k <= 0 else float(stats.beta.ppf(alpha / 2.0, k, n - k + 1.0))
    upper = 1.0 if k >= n else float(stats.beta.ppf(1.0 - alpha / 2.0, k + 1.0, n - k))
    return lower, upper


def proportion_interval(
    successes: float,
    trials: float,
    confidence: float = 0.9999,
    method: ProportionMethod | str = ProportionMethod.WILSON,
) -> Interval:
    """Confidence interval for a binomial proportion ``successes / trials``.

    Args:
        successes: Number of successes (may be fractional).
        trials: Number of Bernoulli trials.
        confidence: Two-sided confidence level.
        method: ``wilson``, ``clopper-pearson`` or ``wald``.

    Returns:
        Interval clipped to ``[0, 1]``.

    Raises:
        InsufficientSampleError: If ``trials`` is not positive.
        ValueError: If ``successes`` lies outside ``[0, trials]``.
    """
    if trials <= 0:
        raise InsufficientSampleError(f"Cannot estimate a proportion from {trials} trials", trials)
    if successes < 0 or successes > trials * (1.0 + 1e-12):
        raise ValueError(f"successes={successes} outside [0, {trials}]")

    successes = min(float(successes), float(trials))
    p = successes / trials
    method = ProportionMethod(method)

    if method == ProportionMethod.CLOPPER_PEARSON:
        if not 0.0 < confidence < 1.0:
            raise ConfigurationError(f"Confidence level must be in (0, 1), got {confidence}")
        lower, upper = _clopper_pearson(successes, float(trials), confidence)
    elif method == ProportionMethod.WALD:
        lower, upper = _wald(p, float(trials), z_score(confidence))
    else:
        lower, upper = _wilson(p, float(trials), z_score(confidence))

    return Interval(lower=max(0.0, lower), upper=min(1.0, upper), estimate=p)


def count_interval(trials: float, mean: float, std_dev: float, confidence: float = 0.9999) -> Interval:
    """Interval for the total count expected over ``trials`` cluster-average blocks.

    Centered on ``trials * mean`` with half width ``z * std_dev * sqrt(trials)``,
    i.e. ``trials`` times the interval for a mean with standard error
    ``std_dev / sqrt(trials)``.

    Raises:
        InsufficientSampleError: If ``trials`` is not positive.
    """
    if trials <= 0:
        raise InsufficientSampleError(f"Cannot build a count interval over {trials} blocks", trials)
    if mean < 0 or std_dev < 0:
        raise ValueError(f"mean and std_dev must be non-negative (got {mean}, {std_dev})")

    center = trials * mean
    half_width = z_score(confidence) * std_dev * math.sqrt(trials)
    return Interval(lower=center - half_width, upper=center + half_width, estimate=center)


__all__ = [
    "Interval",
    "count_interval",
    "proportion_interval",
    "z_score",
]
