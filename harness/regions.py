"""
harness/regions.py - Region Mask Builder

Hazard masks (quadrant or wrapped stripe of columns) and size-matched outside
control masks. Pure functions over a square grid of side g, row-major cells.
"""

from dataclasses import dataclass

import numpy as np

from .rng import XorShift32, shuffle_in_place
from .types_config import RegionConfig


@dataclass(frozen=True)
class RegionMasks:
    """Disjoint hazard mask and its equal-size outside control."""
    hazard: np.ndarray
    outside: np.ndarray

    @property
    def size(self) -> int:
        return int(self.hazard.sum())


def quadrant_grid(g: int) -> np.ndarray:
    """Quadrant index for every cell, shape (g * g,)."""
    xs = np.tile(np.arange(g), g)
    ys = np.repeat(np.arange(g), g)
    return (ys >= g / 2).astype(np.int64) * 2 + (xs >= g / 2).astype(np.int64)


def stripe_grid(g: int, bins: int) -> np.ndarray:
    xs = np.tile(np.arange(g), g)
    return np.minimum(bins - 1, (bins * xs) // g)


def build_region_mask(g: int, region_type: str, region_index: int,
                      span: int = 1, bins: int = 8) -> np.ndarray:
    """
    Hazard mask for a quadrant or a stripe of columns.

    Args:
        g: Grid side
        region_type: "quadrant" or "stripe"
        region_index: Quadrant 0..3, or first stripe bin
        span: Number of consecutive stripe bins (wrapping mod bins), min 1
        bins: Number of stripe bins

    Returns:
        Boolean array of length g * g
    """
    if region_type == "stripe":
        span = max(1, int(span))
        wanted = {(region_index + k) % bins for k in range(span)}
        return np.isin(stripe_grid(g, bins), sorted(wanted))
    return quadrant_grid(g) == region_index


def build_matched_outside_mask(hazard: np.ndarray, seed: int) -> np.ndarray:
    """
    Outside mask with the same population as the hazard mask.

    Non-hazard cells are shuffled with a seeded xorshift and the first
    min(|hazard|, |outside|) are taken.
    """
    outside = [int(i) for i in np.flatnonzero(~hazard)]
    mask = np.zeros(hazard.shape[0], dtype=bool)
    if not outside:
        return mask
    shuffle_in_place(outside, XorShift32(seed))
    target = min(int(hazard.sum()), len(outside))
    mask[outside[:target]] = True
    return mask


def build_masks(g: int, region: RegionConfig, outside_seed: int) -> RegionMasks:
    hazard = build_region_mask(g, region.region_type, region.region_index, region.span, region.bins)
    return RegionMasks(hazard=hazard, outside=build_matched_outside_mask(hazard, outside_seed))
