"""
tests/test_statistics.py - Statistics Engine Tests

Validates entropy, vocabulary, detailed-balance measures, JSD and Spearman,
including degenerate inputs that must never raise.
"""

import math
from collections import Counter

import pytest

from harness.statistics import (
    average_pairwise_jsd,
    coarse_ep_decompose,
    coarse_ep_smoothed,
    entropy_from_counts,
    js_divergence,
    mean,
    merge_counts,
    midranks,
    percentile,
    spearman,
    std,
    summarize_values,
    symmetry_gap,
    top_mass,
    total_transitions,
    vocab_stats,
)


class TestSampleStatistics:
    """mean, std, percentile and summaries."""

    def test_mean_skips_missing(self):
        assert mean([1.0, None, 3.0, float("inf")]) == 2.0, "None and inf must be ignored"
        assert mean([]) == 0.0, "Empty mean is 0"

    def test_std_population(self):
        assert std([0.0, 0.5]) == pytest.approx(0.25), "Population std"

    def test_percentile_lower_rank(self):
        values = list(range(1, 11))
        assert percentile(values, 0.95) == 9, "floor(0.95 * 9) = index 8"
        assert percentile(values, 0.5) == 5, "floor(0.5 * 9) = index 4"
        assert percentile([], 0.5) is None, "Empty percentile is None"

    def test_summarize_values(self):
        assert summarize_values([]) == {"mean": None, "std": None}, "No data is None"
        got = summarize_values([2.0, 4.0])
        assert got["mean"] == 3.0 and got["std"] == 1.0, f"Summary {got}"


class TestVocabulary:
    """Entropy, effective vocabulary and top mass."""

    def test_uniform_entropy(self):
        counts = {1: 5, 2: 5, 3: 5, 4: 5}
        assert entropy_from_counts(counts) == pytest.approx(math.log(4)), "Uniform entropy is ln 4"
        assert vocab_stats(counts).v_eff == pytest.approx(4.0), "V_eff of a uniform map is its size"

    def test_empty_entropy(self):
        assert entropy_from_counts({}) == 0.0, "Empty map has zero entropy"
        stats = vocab_stats(Counter())
        assert stats.v_eff == 1.0 and stats.top_mass == 0.0 and stats.total == 0, f"{stats}"

    def test_top_mass(self):
        counts = {"a": 5, "b": 3, "c": 2}
        assert top_mass(counts, 1) == 0.5, "Top class holds half the mass"
        assert top_mass(counts, 10) == 1.0, "All classes fit in the top 10"


class TestTransitionMeasures:
    """Symmetry gap and coarse EP."""

    def test_symmetry_gap(self):
        assert symmetry_gap({(1, 2): 3, (2, 1): 1}) == 0.5, "|3 - 1| / (3 + 1)"

    def test_balanced_is_zero(self):
        table = {(1, 2): 4, (2, 1): 4, (3, 5): 2, (5, 3): 2}
        assert symmetry_gap(table) == 0.0, "Balanced table has no gap"
        assert coarse_ep_smoothed(table) == 0.0, "Balanced table produces no EP"

    def test_empty_and_diagonal(self):
        assert symmetry_gap({}) == 0.0 and coarse_ep_smoothed({}) == 0.0, "Empty table"
        assert symmetry_gap({(1, 1): 9}) == 0.0, "Self transitions are ignored"
        assert total_transitions({(1, 1): 9, (1, 2): 2}) == 2, "Diagonal excluded from totals"

    def test_one_directional_pair(self):
        """A pair seen only one way still counts."""
        assert symmetry_gap({(4, 2): 3}) == 1.0, "Fully one-directional pair"
        assert coarse_ep_smoothed({(4, 2): 3}) > 0, "One-directional pair produces EP"

    def test_coarse_ep_value(self):
        expected = 2.0 * math.log(3.5 / 1.5)
        assert coarse_ep_smoothed({(1, 2): 3, (2, 1): 1}) == pytest.approx(expected), "Smoothed EP formula"

    def test_decomposition_sums(self):
        table = {(1, 2): 3, (2, 1): 1, (2, 3): 5}
        dec = coarse_ep_decompose(table)
        assert dec.total == pytest.approx(coarse_ep_smoothed(table)), "Decomposition total"
        assert sum(dec.per_state.values()) == pytest.approx(dec.total), "Per-state shares sum to total"
        assert dec.per_edge[(1, 2)] == pytest.approx(3 * math.log(3.5 / 1.5)), "Forward edge share"
        assert dec.per_edge[(2, 1)] == pytest.approx(math.log(1.5 / 3.5)), "Reverse edge share"


class TestDivergenceAndCorrelation:
    """JSD and Spearman."""

    def test_jsd_identical(self):
        assert js_divergence({1: 2, 2: 2}, {1: 5, 2: 5}) == pytest.approx(0.0, abs=1e-9), "Same distribution"

    def test_jsd_disjoint(self):
        assert js_divergence({1: 1}, {2: 1}) == pytest.approx(math.log(2), abs=1e-9), "Disjoint maps give ln 2"

    def test_jsd_symmetric(self):
        a, b = {1: 3, 2: 1}, {1: 1, 3: 2}
        assert js_divergence(a, b) == pytest.approx(js_divergence(b, a)), "JSD must be symmetric"

    def test_jsd_empty(self):
        assert js_divergence({}, {}) == 0.0, "Two empty maps"
        assert js_divergence({1: 1}, {}) >= 0.0, "One empty map never raises"

    def test_average_pairwise(self):
        assert average_pairwise_jsd([{1: 1}]) == 0.0, "One map has no pairs"
        got = average_pairwise_jsd([{1: 1}, {2: 1}, {1: 1}])
        assert got == pytest.approx(2 * math.log(2) / 3, abs=1e-9), f"Average over three pairs, got {got}"

    def test_midranks(self):
        assert midranks([1, 1, 2]) == [1.5, 1.5, 3.0], "Ties share their mean rank"

    def test_spearman(self):
        assert spearman([1, 2, 3], [10, 20, 30]) == pytest.approx(1.0), "Monotone increasing"
        assert spearman([1, 2, 3], [3, 2, 1]) == pytest.approx(-1.0), "Monotone decreasing"
        assert spearman([1, 2, 3], [5, 5, 5]) == 0.0, "Constant series is undefined -> 0"
        assert spearman([1, 2], [1]) == 0.0, "Length mismatch -> 0"
        assert spearman([], []) == 0.0, "Empty -> 0"

    def test_merge_counts(self):
        assert merge_counts([{1: 2}, {1: 1, 3: 4}]) == Counter({1: 3, 3: 4}), "Merged counts"
