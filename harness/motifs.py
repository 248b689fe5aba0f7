"""
harness/motifs.py - Motif Classifier

Quantizes layered fields and per-cell token distributions into integer motif
ids, and counts motifs and frame-to-frame transitions under a mask.

Classes arrays have shape (layers, cells): one row per interface, where
interface i compares meta layer i-1 (upper) with the layer below it
(the reference field for interface 1).
"""

from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .constants import (
    AXIS_THRESHOLDS, DIR9_COUNT, ENTROPY_BIN_CUTS,
)

TransitionTable = Counter  # Counter[(from_id, to_id)] -> count


# =============================================================================
# DIGIT HELPERS
# =============================================================================

def bin_by_thresholds(value, t1: float, t2: float):
    """0 if value <= t1, 1 if value <= t2, else 2. Scalars or arrays."""
    return np.where(value <= t1, 0, np.where(value <= t2, 1, 2))


def sign_bin(value, eps: float = 1e-6):
    """2 above +eps, 0 below -eps, 1 in between."""
    return np.where(value > eps, 2, np.where(value < -eps, 0, 1))


def combine_base3(digits: Sequence):
    """Sum of digit_i * 3**i. Works on ints or equally shaped arrays."""
    ident = 0
    factor = 1
    for d in digits:
        ident = ident + np.asarray(d, dtype=np.int64) * factor
        factor *= 3
    return ident


def _interfaces(base: np.ndarray, meta: np.ndarray):
    """Yield (lower, upper) field pairs per interface."""
    for iface in range(meta.shape[0]):
        lower = base if iface == 0 else meta[iface - 1]
        yield lower, meta[iface]


# =============================================================================
# BASE FAMILY
# =============================================================================

def base_motif_classes(base: np.ndarray, meta: np.ndarray, g: int, level_max: float) -> np.ndarray:
    """
    Base motif ids for every interface.

    Digits, in packing order: lower-value bin, upper-value bin, mismatch sign
    of (upper - lower), sign of the +x neighbour difference and sign of the +y
    neighbour difference of the lower field (toroidal).

    Args:
        base: Reference field, shape (cells,)
        meta: Layered fields, shape (layers, cells)
        g: Grid side
        level_max: Known maximum of the field values

    Returns:
        int64 array of shape (layers, cells), ids in [0, 243)
    """
    t1, t2 = level_max / 3.0, 2.0 * level_max / 3.0
    out = np.empty((meta.shape[0], g * g), dtype=np.int64)
    for i, (lower, upper) in enumerate(_interfaces(base, meta)):
        lower = np.asarray(lower, dtype=np.float64)
        upper = np.asarray(upper, dtype=np.float64)
        grid = lower.reshape(g, g)
        right = np.roll(grid, -1, axis=1).ravel()
        down = np.roll(grid, -1, axis=0).ravel()
        out[i] = combine_base3([
            bin_by_thresholds(lower, t1, t2),
            bin_by_thresholds(upper, t1, t2),
            sign_bin(upper - lower, 0.0),
            sign_bin(right - lower, 0.0),
            sign_bin(down - lower, 0.0),
        ])
    return out


# =============================================================================
# OPERATOR FAMILY
# =============================================================================

def axis_indicators(offsets: Sequence[Tuple[int, int]]) -> np.ndarray:
    """(R, 5) one-hot of each offset into center, +x, -x, +y, -y."""
    ind = np.zeros((len(offsets), 5))
    for r, (dx, dy) in enumerate(offsets):
        if dx == 0 and dy == 0:
            col = 0
        elif abs(dx) >= abs(dy):
            col = 1 if dx >= 0 else 2
        else:
            col = 3 if dy >= 0 else 4
        ind[r, col] = 1.0
    return ind


def dir9_index(dx: int, dy: int) -> int:
    if dx == 0 and dy == 0:
        return 0
    if dy == 0:
        return 1 if dx > 0 else 2
    if dx == 0:
        return 3 if dy < 0 else 4
    if dx > 0 and dy < 0:
        return 5
    if dx < 0 and dy < 0:
        return 6
    if dx > 0 and dy > 0:
        return 7
    return 8


def dir9_indicators(offsets: Sequence[Tuple[int, int]]) -> np.ndarray:
    ind = np.zeros((len(offsets), DIR9_COUNT))
    for r, (dx, dy) in enumerate(offsets):
        ind[r, dir9_index(dx, dy)] = 1.0
    return ind


def axis_mass_bins(tokens: np.ndarray, offsets, budget: int, axis_policy: str) -> np.ndarray:
    """
    Ternary bins of the five axis-aggregated masses.

    Args:
        tokens: Token counts, shape (cells, R)
        offsets: R (dx, dy) offsets
        budget: Token budget per cell, used by the fraction policies
        axis_policy: "fraction", "raw" or "tight"

    Returns:
        int array (cells, 5): center, +x, -x, +y, -y bins
    """
    masses = np.asarray(tokens, dtype=np.float64) @ axis_indicators(offsets)
    t1, t2 = AXIS_THRESHOLDS[axis_policy]
    if axis_policy != "raw":
        masses = masses / (budget if budget > 0 else 1)
    return bin_by_thresholds(masses, t1, t2)


def dir9_masses(tokens: np.ndarray, offsets, budget: int) -> np.ndarray:
    """(cells, 9) direction masses, each count scaled by 1 / max(1, budget)."""
    return (np.asarray(tokens, dtype=np.float64) @ dir9_indicators(offsets)) / max(1, budget)


def direction_entropy_bin(masses: np.ndarray) -> np.ndarray:
    """Normalized entropy (H / ln 9) of each row, cut into 3 bins."""
    total = masses.sum(axis=1, keepdims=True)
    p = np.divide(masses, total, out=np.zeros_like(masses), where=total > 0)
    logs = np.log(p, out=np.zeros_like(p), where=p > 0)
    h_norm = -(p * logs).sum(axis=1) / np.log(DIR9_COUNT)
    lo, hi = ENTROPY_BIN_CUTS
    return np.where(h_norm < lo, 0, np.where(h_norm < hi, 1, 2))


def op_motif_classes(base: np.ndarray, meta: np.ndarray, tokens: Optional[np.ndarray],
                     offsets: Sequence[Tuple[int, int]], budget: int,
                     op_bins_mode: int = 2, axis_policy: str = "fraction") -> np.ndarray:
    """
    Operator motif ids for every interface.

    Mode 0 packs (mismatch, center, +x, -x, +y, -y) in base 3 (729 states).
    Mode 1 is mismatch * 9 + argmax direction (27 states).
    Mode 2 is mismatch + 3 * (argmax + 9 * entropy bin) (81 states).

    Args:
        base: Reference field, shape (cells,)
        meta: Layered fields, shape (layers, cells)
        tokens: Token counts, shape (layers, cells, R), or None when absent
        offsets: R (dx, dy) offsets
        budget: Token budget per cell
        op_bins_mode: 0, 1 or 2
        axis_policy: Threshold policy for mode 0

    Returns:
        int64 array of shape (layers, cells)
    """
    layers, cells = meta.shape
    r_count = len(offsets)
    out = np.empty((layers, cells), dtype=np.int64)
    for i, (lower, upper) in enumerate(_interfaces(base, meta)):
        mismatch = sign_bin(np.asarray(upper, dtype=np.float64) - np.asarray(lower, dtype=np.float64), 0.0)
        have_tokens = tokens is not None and r_count > 0
        layer_tokens = tokens[i] if have_tokens else np.zeros((cells, max(r_count, 1)))
        if op_bins_mode == 0:
            if have_tokens:
                bins = axis_mass_bins(layer_tokens, offsets, budget, axis_policy)
            else:
                bins = np.zeros((cells, 5), dtype=np.int64)
            out[i] = combine_base3([mismatch] + [bins[:, k] for k in range(5)])
            continue
        if have_tokens:
            masses = dir9_masses(layer_tokens, offsets, budget)
        else:
            masses = np.zeros((cells, DIR9_COUNT))
        argmax = np.argmax(masses, axis=1)
        if op_bins_mode == 1:
            out[i] = mismatch * 9 + argmax
        else:
            out[i] = mismatch + 3 * (argmax + 9 * direction_entropy_bin(masses))
    return out


def edge_family(from_idx: int, to_idx: int, offsets: Sequence[Tuple[int, int]]) -> str:
    """Sign of the offset displacement of a token move, as "sx,sy"."""
    ddx = offsets[to_idx][0] - offsets[from_idx][0]
    ddy = offsets[to_idx][1] - offsets[from_idx][1]
    sx = 0 if ddx == 0 else (1 if ddx > 0 else -1)
    sy = 0 if ddy == 0 else (1 if ddy > 0 else -1)
    return f"{sx},{sy}"


# =============================================================================
# COUNTS AND TRANSITIONS
# =============================================================================

@dataclass(frozen=True)
class MotifChange:
    changed: int
    total: int
    frac: float


def count_motifs(classes: np.ndarray, mask: np.ndarray) -> Counter:
    """Occurrences of each motif id over masked cells of every interface."""
    return Counter(np.asarray(classes)[:, mask].ravel().tolist())


def count_by_interface(classes: np.ndarray, mask: np.ndarray) -> List[Counter]:
    """One count map per interface row."""
    return [Counter(row[mask].tolist()) for row in np.asarray(classes)]


def motif_change(prev: np.ndarray, cur: np.ndarray, mask: np.ndarray) -> MotifChange:
    p = prev[:, mask]
    c = cur[:, mask]
    total = int(c.size)
    changed = int(np.count_nonzero(p != c))
    return MotifChange(changed, total, changed / total if total > 0 else 0.0)


def accumulate_transitions(prev: np.ndarray, cur: np.ndarray, mask: np.ndarray,
                           table: TransitionTable) -> int:
    """
    Add every masked (from, to) pair with from != to to `table`.

    Returns:
        Number of changed cells
    """
    p = prev[:, mask].ravel()
    c = cur[:, mask].ravel()
    moved = p != c
    if not moved.any():
        return 0
    pairs, counts = np.unique(np.stack([p[moved], c[moved]], axis=1), axis=0, return_counts=True)
    for (a, b), n in zip(pairs.tolist(), counts.tolist()):
        table[(a, b)] += n
    return int(moved.sum())


def table_to_pairs(table: Counter) -> Dict[str, int]:
    """Export a count map or transition table with string keys ("from|to")."""
    out = {}
    for key, count in sorted(table.items()):
        if isinstance(key, tuple):
            key = "|".join(str(k) for k in key)
        out[str(key)] = int(count)
    return out


# =============================================================================
# SNAPSHOT
# =============================================================================

@dataclass(frozen=True)
class MotifSnapshot:
    """Both motif families classified from one oracle snapshot."""
    base: np.ndarray
    op: np.ndarray


def classify_snapshot(oracle, op_bins_mode: int, axis_policy: str) -> MotifSnapshot:
    """Classify the oracle's current fields into base and operator motifs."""
    base = oracle.base_field()
    meta = oracle.meta_fields()
    g = oracle.grid_size
    return MotifSnapshot(
        base=base_motif_classes(base, meta, g, oracle.level_max),
        op=op_motif_classes(base, meta, oracle.op_tokens(), oracle.op_offsets,
                            oracle.op_budget_k, op_bins_mode, axis_policy),
    )
