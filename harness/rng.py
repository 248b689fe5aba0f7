"""
harness/rng.py - Deterministic Random Sources

Small explicit PRNG objects threaded through mask building, sub-sampling and
bootstrap. No module-level random state anywhere in the harness.
"""

from typing import MutableSequence

import numpy as np

MASK32 = 0xFFFFFFFF


class XorShift32:
    """Marsaglia xorshift (13, 17, 5) over unsigned 32-bit state."""

    def __init__(self, seed: int):
        self.state = (int(seed) & MASK32) or 1

    def next(self) -> int:
        x = self.state
        x ^= (x << 13) & MASK32
        x ^= x >> 17
        x ^= (x << 5) & MASK32
        self.state = x
        return x

    def int(self, n: int) -> int:
        """Integer in [0, n)."""
        return self.next() % n

    def uniform(self) -> float:
        """Float in [0, 1) from the top 24 bits."""
        return (self.next() >> 8) / float(1 << 24)


class Lcg:
    """Numerical Recipes LCG; used for bootstrap resampling."""

    def __init__(self, seed: int):
        self.state = int(seed) & MASK32

    def next(self) -> int:
        self.state = (1664525 * self.state + 1013904223) & MASK32
        return self.state

    def random(self) -> float:
        return self.next() / float(1 << 32)

    def int(self, n: int) -> int:
        return int(self.random() * n)


def shuffle_in_place(items: MutableSequence, rng: XorShift32) -> None:
    """Fisher-Yates from the back, one draw per position."""
    for i in range(len(items) - 1, 0, -1):
        j = rng.int(i + 1)
        items[i], items[j] = items[j], items[i]


def bernoulli_mask(seed: int, size: int, frac: float) -> np.ndarray:
    """Boolean mask with each cell set with probability `frac`."""
    rng = XorShift32(seed)
    return np.array([rng.uniform() < frac for _ in range(size)], dtype=bool)
