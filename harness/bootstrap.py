"""
harness/bootstrap.py - Bootstrap/CI Engine

Seeded bootstrap of the mean and of a difference of means. Identical input
and seed always give identical bounds.
"""

from dataclasses import dataclass
from typing import List, Sequence

from .constants import (
    BOOTSTRAP_DIFF_SEED_OFFSET, BOOTSTRAP_SAMPLES, BOOTSTRAP_SEED, CI_HIGH_Q,
    CI_LOW_Q,
)
from .rng import Lcg
from .statistics import mean


@dataclass(frozen=True)
class BootstrapEstimate:
    point_estimate: float
    ci_low: float
    ci_high: float

    def to_dict(self) -> dict:
        return {"mean": self.point_estimate, "ci_low": self.ci_low, "ci_high": self.ci_high}


def bootstrap_means(values: Sequence[float], samples: int = BOOTSTRAP_SAMPLES,
                    seed: int = BOOTSTRAP_SEED) -> List[float]:
    """Means of `samples` resamples drawn with replacement; [] for no values."""
    n = len(values)
    if n == 0:
        return []
    rng = Lcg(seed)
    out = []
    for _ in range(samples):
        acc = 0.0
        for _ in range(n):
            acc += values[rng.int(n)]
        out.append(acc / n)
    return out


def ci_from_samples(draws: Sequence[float], low_q: float = CI_LOW_Q, high_q: float = CI_HIGH_Q):
    """(low, high) quantiles of the sorted draws; (0, 0) when empty."""
    if not draws:
        return 0.0, 0.0
    ordered = sorted(draws)
    last = len(ordered) - 1
    return ordered[int(low_q * last)], ordered[int(high_q * last)]


def bootstrap_mean_ci(values: Sequence[float], samples: int = BOOTSTRAP_SAMPLES,
                      seed: int = BOOTSTRAP_SEED) -> BootstrapEstimate:
    """
    95% bootstrap CI of the mean.

    Args:
        values: Sample values
        samples: Number of resamples
        seed: Generator seed

    Returns:
        BootstrapEstimate with the raw-sample mean as point estimate
    """
    values = [float(v) for v in values]
    if not values:
        return BootstrapEstimate(0.0, 0.0, 0.0)
    low, high = ci_from_samples(bootstrap_means(values, samples, seed))
    return BootstrapEstimate(mean(values), low, high)


def bootstrap_diff_ci(a: Sequence[float], b: Sequence[float], samples: int = BOOTSTRAP_SAMPLES,
                      seed: int = BOOTSTRAP_SEED) -> BootstrapEstimate:
    """
    95% bootstrap CI of mean(a) - mean(b).

    Each side is resampled with its own generator (b uses seed + 1234) and
    the draws are differenced pairwise.
    """
    a = [float(v) for v in a]
    b = [float(v) for v in b]
    if not a or not b:
        return BootstrapEstimate(0.0, 0.0, 0.0)
    draws_a = bootstrap_means(a, samples, seed)
    draws_b = bootstrap_means(b, samples, seed + BOOTSTRAP_DIFF_SEED_OFFSET)
    diffs = [x - y for x, y in zip(draws_a, draws_b)]
    low, high = ci_from_samples(diffs)
    return BootstrapEstimate(mean(a) - mean(b), low, high)
