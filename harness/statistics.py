"""
harness/statistics.py - Statistics Engine

Entropy and vocabulary size of count maps, detailed-balance measures over
transition tables, Jensen-Shannon divergence and Spearman rank correlation.

Every estimator returns a finite number for degenerate input (empty maps,
zero variance, mismatched lengths). Nothing here raises.
"""

import math
from collections import Counter
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .constants import COARSE_EP_ALPHA, JSD_EPS, TOP_MASS_N


# =============================================================================
# BASIC SAMPLE STATISTICS
# =============================================================================

def _finite(values: Iterable) -> List[float]:
    out = []
    for v in values:
        if v is None:
            continue
        v = float(v)
        if math.isfinite(v):
            out.append(v)
    return out


def mean(values: Iterable) -> float:
    nums = _finite(values)
    return sum(nums) / len(nums) if nums else 0.0


def std(values: Iterable) -> float:
    """Population standard deviation."""
    nums = _finite(values)
    if not nums:
        return 0.0
    m = sum(nums) / len(nums)
    return math.sqrt(sum((v - m) ** 2 for v in nums) / len(nums))


def percentile(values: Iterable, p: float) -> Optional[float]:
    """Lower nearest-rank percentile of finite values; None when empty."""
    nums = sorted(_finite(values))
    if not nums:
        return None
    idx = min(len(nums) - 1, int(math.floor(p * (len(nums) - 1))))
    return nums[idx]


def summarize_values(values: Iterable) -> Dict[str, Optional[float]]:
    """{"mean", "std"} of finite values, both None when there are none."""
    nums = _finite(values)
    if not nums:
        return {"mean": None, "std": None}
    return {"mean": mean(nums), "std": std(nums)}


# =============================================================================
# VOCABULARY
# =============================================================================

@dataclass(frozen=True)
class VocabStats:
    entropy: float
    v_eff: float
    top_mass: float
    total: int


def entropy_from_counts(counts: Mapping) -> float:
    """Shannon entropy in nats, 0 for an empty map."""
    total = sum(counts.values())
    if total <= 0:
        return 0.0
    h = 0.0
    for c in counts.values():
        if c > 0:
            p = c / total
            h -= p * math.log(p)
    return h


def top_mass(counts: Mapping, n: int = TOP_MASS_N) -> float:
    """Fraction of total mass held by the n most frequent classes."""
    total = sum(counts.values())
    if total <= 0:
        return 0.0
    return sum(sorted(counts.values(), reverse=True)[:n]) / total


def vocab_stats(counts: Mapping, top_n: int = TOP_MASS_N) -> VocabStats:
    h = entropy_from_counts(counts)
    return VocabStats(
        entropy=h,
        v_eff=math.exp(h),
        top_mass=top_mass(counts, top_n),
        total=int(sum(counts.values())),
    )


# =============================================================================
# TRANSITION TABLE MEASURES
# =============================================================================

def _unordered_pairs(table: Mapping[Tuple[int, int], int]) -> List[Tuple[int, int]]:
    """Unordered off-diagonal pairs present in either direction, as (min, max)."""
    seen = set()
    for (a, b) in table:
        if a != b:
            seen.add((a, b) if a < b else (b, a))
    return sorted(seen)


def total_transitions(table: Mapping[Tuple[int, int], int]) -> int:
    return int(sum(c for (a, b), c in table.items() if a != b))


def symmetry_gap(table: Mapping[Tuple[int, int], int]) -> float:
    """
    Detailed-balance violation of a transition table.

    sum |n_ij - n_ji| / sum (n_ij + n_ji) over unordered pairs; 0 when every
    pair is balanced and for an empty table.
    """
    num = 0
    denom = 0
    for i, j in _unordered_pairs(table):
        fwd = table.get((i, j), 0)
        rev = table.get((j, i), 0)
        num += abs(fwd - rev)
        denom += fwd + rev
    return num / denom if denom > 0 else 0.0


def coarse_ep_smoothed(table: Mapping[Tuple[int, int], int], alpha: float = COARSE_EP_ALPHA) -> float:
    """
    Laplace-smoothed coarse-grained entropy production.

    sum over i < j of (n_ij + a - n_ji - a) * ln((n_ij + a) / (n_ji + a)).
    Each term is >= 0, and > 0 exactly when n_ij != n_ji.
    """
    acc = 0.0
    for i, j in _unordered_pairs(table):
        c1 = table.get((i, j), 0) + alpha
        c2 = table.get((j, i), 0) + alpha
        acc += (c1 - c2) * math.log(c1 / c2)
    return acc


@dataclass(frozen=True)
class EpDecomposition:
    total: float
    per_state: Dict[int, float]
    per_edge: Dict[Tuple[int, int], float]


def coarse_ep_decompose(table: Mapping[Tuple[int, int], int], alpha: float = COARSE_EP_ALPHA) -> EpDecomposition:
    """
    Split coarse EP into per-state and per-directed-edge contributions.

    Each pair's EP is shared equally by its two states; a directed edge i->j
    carries n_ij * ln((n_ij + a) / (n_ji + a)).
    """
    per_state = {}
    per_edge = {}
    total = 0.0
    for i, j in _unordered_pairs(table):
        fwd = table.get((i, j), 0)
        rev = table.get((j, i), 0)
        c1, c2 = fwd + alpha, rev + alpha
        pair = (c1 - c2) * math.log(c1 / c2)
        total += pair
        per_state[i] = per_state.get(i, 0.0) + pair / 2
        per_state[j] = per_state.get(j, 0.0) + pair / 2
        per_edge[(i, j)] = per_edge.get((i, j), 0.0) + fwd * math.log(c1 / c2)
        per_edge[(j, i)] = per_edge.get((j, i), 0.0) + rev * math.log(c2 / c1)
    return EpDecomposition(total=total, per_state=per_state, per_edge=per_edge)


# =============================================================================
# DIVERGENCE AND CORRELATION
# =============================================================================

def js_divergence(a: Mapping, b: Mapping, eps: float = JSD_EPS) -> float:
    """
    Jensen-Shannon divergence (nats) between two count maps.

    Each map is normalized by its own total (1 when empty). Two empty maps
    give 0. Symmetric in its arguments.
    """
    total_a = sum(a.values())
    total_b = sum(b.values())
    if total_a == 0 and total_b == 0:
        return 0.0
    norm_a = total_a if total_a > 0 else 1
    norm_b = total_b if total_b > 0 else 1
    kl_a = 0.0
    kl_b = 0.0
    for key in set(a) | set(b):
        p = a.get(key, 0) / norm_a
        q = b.get(key, 0) / norm_b
        m = 0.5 * (p + q)
        if p > 0:
            kl_a += p * math.log((p + eps) / (m + eps))
        if q > 0:
            kl_b += q * math.log((q + eps) / (m + eps))
    return max(0.0, 0.5 * (kl_a + kl_b))


def average_pairwise_jsd(maps: Sequence[Mapping]) -> float:
    """Mean JSD over all unordered pairs of maps; 0 with fewer than two."""
    values = []
    for i in range(len(maps)):
        for j in range(i + 1, len(maps)):
            values.append(js_divergence(maps[i], maps[j]))
    return mean(values)


def midranks(values: Sequence[float]) -> List[float]:
    """1-based ranks, ties sharing the mean of their positions."""
    order = sorted(range(len(values)), key=lambda k: values[k])
    ranks = [0.0] * len(values)
    i = 0
    while i < len(order):
        j = i
        while j + 1 < len(order) and values[order[j + 1]] == values[order[i]]:
            j += 1
        rank = (i + j) / 2.0 + 1.0
        for k in range(i, j + 1):
            ranks[order[k]] = rank
        i = j + 1
    return ranks


def spearman(xs: Sequence[float], ys: Sequence[float]) -> float:
    """Spearman rank correlation with midrank ties; 0 when undefined."""
    if len(xs) != len(ys) or not xs:
        return 0.0
    rx = midranks(xs)
    ry = midranks(ys)
    mx = sum(rx) / len(rx)
    my = sum(ry) / len(ry)
    cov = sum((a - mx) * (b - my) for a, b in zip(rx, ry))
    vx = sum((a - mx) ** 2 for a in rx)
    vy = sum((b - my) ** 2 for b in ry)
    if vx <= 0 or vy <= 0:
        return 0.0
    return cov / math.sqrt(vx * vy)


def merge_counts(maps: Iterable[Mapping]) -> Counter:
    out = Counter()
    for m in maps:
        out.update(m)
    return out
