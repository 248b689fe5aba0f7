"""
tests/test_fidelity.py - Goodness Predicate Tests

Validates quadrant bits, error variants, the pre-event error floor and the
goodness test.
"""

import numpy as np
import pytest

from harness.fidelity import (
    ErrorFloor,
    err_quadrant_mean,
    err_region_bits,
    err_sampled_region,
    is_good,
    logical_bits,
    mean_abs_diff_region,
    quadrant_means,
    region_error,
)
from harness.regions import build_region_mask
from harness.types_config import EventConfig


@pytest.fixture
def corrupted_quadrant():
    """4x4 grid: base all 0, meta0 at level 4 inside quadrant 2."""
    g = 4
    mask = build_region_mask(g, "quadrant", 2)
    base = np.zeros(g * g)
    meta0 = np.where(mask, 4.0, 0.0)
    return g, base, meta0, mask


class TestQuadrantBits:
    """Quadrant means and logical bits."""

    def test_quadrant_means(self):
        assert quadrant_means(np.array([1.0, 2.0, 3.0, 4.0]), 2).tolist() == [1.0, 2.0, 3.0, 4.0], "One cell per quadrant"

    def test_empty_quadrant_is_zero(self):
        mask = np.array([True, False, False, False])
        assert quadrant_means(np.array([1.0, 2.0, 3.0, 4.0]), 2, mask).tolist() == [1.0, 0.0, 0.0, 0.0], "Unmasked quadrants are 0"

    def test_bits(self):
        assert logical_bits(np.array([1.0, 2.0, 3.0, 4.0]), 2, 4).tolist() == [0, 1, 1, 1], "Bit is mean >= level_max / 2"


class TestErrorVariants:
    """Bit error, quadrant-mean error and sub-sampled error."""

    def test_identical_fields(self, corrupted_quadrant):
        g, base, _, mask = corrupted_quadrant
        assert err_region_bits(base, base, g, 4, mask) == 0.0, "Identical fields have no error"
        assert err_quadrant_mean(base, base, g, 4, mask) == 0.0, "Identical fields have no error"
        assert err_sampled_region(base, base, g, 4, 1, mask) == 0.0, "Identical fields have no error"

    def test_bit_error(self, corrupted_quadrant):
        g, base, meta0, mask = corrupted_quadrant
        assert err_region_bits(base, meta0, g, 4, mask) == 0.25, "One of four quadrant bits flipped"

    def test_quadrant_mean_error(self, corrupted_quadrant):
        g, base, meta0, _ = corrupted_quadrant
        assert err_quadrant_mean(base, meta0, g, 4) == 0.25, "|4 - 0| / (4 quadrants * level 4)"

    def test_sampled_error_bounded(self, corrupted_quadrant):
        g, base, meta0, mask = corrupted_quadrant
        err = err_sampled_region(base, meta0, g, 4, 11, mask)
        assert 0.0 < err <= 0.25, f"Sub-sampled error {err} outside (0, 0.25]"

    def test_region_error_dispatch(self, corrupted_quadrant):
        g, base, meta0, mask = corrupted_quadrant
        assert region_error(base, meta0, g, 4, mask, "bits") == err_region_bits(base, meta0, g, 4, mask)
        assert region_error(base, meta0, g, 4, mask, "quadrant_mean") == err_quadrant_mean(base, meta0, g, 4, mask)
        assert region_error(base, meta0, g, 4, mask, "sampled", 3) == err_sampled_region(base, meta0, g, 4, 3, mask)

    def test_mean_abs_diff(self, corrupted_quadrant):
        g, base, meta0, mask = corrupted_quadrant
        assert mean_abs_diff_region(base, meta0, mask) == 4.0, "Every hazard cell differs by 4"
        assert mean_abs_diff_region(base, meta0, np.zeros(g * g, dtype=bool)) == 0.0, "Empty mask"


class TestErrorFloor:
    """Pre-event error floor."""

    def test_freeze_and_subtract(self):
        floor = ErrorFloor(event_every=100)
        assert floor.adjust(50, 0.2) == 0.0, "Adjusted error is 0 before the floor freezes"
        assert floor.adjust(99, 0.4) == 0.0, "Still collecting"
        assert floor.adjust(100, 0.5) == pytest.approx(0.2), "0.5 minus floor 0.3"
        assert floor.value == pytest.approx(0.3), "Floor is the mean of pre-event ticks"
        assert floor.adjust(150, 0.1) == 0.0, "Adjusted error is clamped at 0"

    def test_no_samples(self):
        floor = ErrorFloor(event_every=100)
        assert floor.adjust(100, 0.2) == pytest.approx(0.2), "No pre-event ticks gives a floor of 0"
        assert floor.value == 0.0


class TestIsGood:
    """Goodness predicate."""

    def test_inclusive_thresholds(self):
        ev = EventConfig(sdiff_good=0.5, err_good=0.1)
        assert is_good(0.5, 0.1, ev), "Thresholds are inclusive"
        assert not is_good(0.51, 0.0, ev), "sdiff above threshold"
        assert not is_good(0.0, 0.11, ev), "err above threshold"
