"""
harness/fidelity.py - Goodness Predicate

Structural difference and logical bit error between the reference field and
the first meta layer, the pre-event error floor, and the goodness test that
drives event outcomes.
"""

from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from .constants import ERR_MODE_BITS, ERR_MODE_QUADRANT_MEAN, ERR_MODE_SAMPLED, N_QUADRANTS
from .regions import quadrant_grid
from .rng import bernoulli_mask
from .types_config import EventConfig

SAMPLED_TRIALS = 20
SAMPLED_SEED_STRIDE = 101


def quadrant_means(values: np.ndarray, g: int, mask: Optional[np.ndarray] = None) -> np.ndarray:
    """Mean of each quadrant over masked cells; 0 for an empty quadrant."""
    quads = quadrant_grid(g)
    values = np.asarray(values, dtype=np.float64)
    keep = np.ones(values.shape[0], dtype=bool) if mask is None else mask
    sums = np.bincount(quads[keep], weights=values[keep], minlength=N_QUADRANTS)
    counts = np.bincount(quads[keep], minlength=N_QUADRANTS)
    return np.divide(sums, counts, out=np.zeros(N_QUADRANTS), where=counts > 0)


def logical_bits(values: np.ndarray, g: int, level_max: float, mask: Optional[np.ndarray] = None) -> np.ndarray:
    """One bit per quadrant: quadrant mean >= level_max / 2."""
    return (quadrant_means(values, g, mask) >= level_max / 2.0).astype(np.int64)


def error_rate(bits_a: np.ndarray, bits_b: np.ndarray) -> float:
    return float(np.count_nonzero(bits_a != bits_b)) / len(bits_a)


def err_region_bits(base: np.ndarray, meta0: np.ndarray, g: int, level_max: float,
                    mask: np.ndarray) -> float:
    return error_rate(logical_bits(meta0, g, level_max, mask), logical_bits(base, g, level_max, mask))


def err_quadrant_mean(base: np.ndarray, meta0: np.ndarray, g: int, level_max: float,
                      mask: Optional[np.ndarray] = None) -> float:
    """Mean absolute quadrant-mean difference, scaled by level_max."""
    denom = level_max if level_max > 0 else 1
    diff = np.abs(quadrant_means(base, g, mask) - quadrant_means(meta0, g, mask))
    return float(diff.sum() / (N_QUADRANTS * denom))


def err_sampled_region(base: np.ndarray, meta0: np.ndarray, g: int, level_max: float,
                       seed: int, mask: Optional[np.ndarray] = None) -> float:
    """Bit error averaged over 20 Bernoulli(0.5) cell sub-samples."""
    acc = 0.0
    for trial in range(SAMPLED_TRIALS):
        sub = bernoulli_mask(seed + trial * SAMPLED_SEED_STRIDE, base.shape[0], 0.5)
        if mask is not None:
            sub &= mask
        acc += err_region_bits(base, meta0, g, level_max, sub)
    return acc / SAMPLED_TRIALS


def region_error(base: np.ndarray, meta0: np.ndarray, g: int, level_max: float,
                 mask: np.ndarray, mode: str = ERR_MODE_BITS, seed: int = 0) -> float:
    """Hazard-region error under the configured error mode."""
    if mode == ERR_MODE_QUADRANT_MEAN:
        return err_quadrant_mean(base, meta0, g, level_max, mask)
    if mode == ERR_MODE_SAMPLED:
        return err_sampled_region(base, meta0, g, level_max, seed, mask)
    return err_region_bits(base, meta0, g, level_max, mask)


def mean_abs_diff_region(a: np.ndarray, b: np.ndarray, mask: np.ndarray) -> float:
    if not mask.any():
        return 0.0
    return float(np.abs(np.asarray(a, dtype=np.float64)[mask] - np.asarray(b, dtype=np.float64)[mask]).mean())


@dataclass
class ErrorFloor:
    """Mean bit error of report ticks before the first event.

    Ticks with t < event_every feed the floor. The first tick at or after
    event_every freezes it (0 when no ticks were collected). Until then the
    adjusted error is 0.

    Assumes the steady-state error is stable before the first perturbation;
    a drifting baseline shows up as recovery being reported too early or late.
    """
    event_every: int
    samples: List[float] = field(default_factory=list)
    value: Optional[float] = None

    def adjust(self, t: int, err: float) -> float:
        if t < self.event_every:
            self.samples.append(err)
        elif self.value is None:
            self.value = sum(self.samples) / len(self.samples) if self.samples else 0.0
        if self.value is None:
            return 0.0
        return max(0.0, err - self.value)


def is_good(sdiff: float, err_adj: float, events: EventConfig) -> bool:
    return sdiff <= events.sdiff_good and err_adj <= events.err_good
