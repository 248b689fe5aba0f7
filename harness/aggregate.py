"""
harness/aggregate.py - Cross-Run Aggregation

Reads finished, immutable run results and produces condition summaries,
bootstrap CIs, paired condition differences, event-conditioned
success-vs-miss rows, edge aggregates, context divergence and the sparse
signal verdict.
"""

from collections import Counter
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from receipts import emit_receipt

from .bootstrap import bootstrap_diff_ci, bootstrap_mean_ci
from .constants import (
    BOOTSTRAP_SAMPLES, CHANNELS, MIN_CHANGE_FRAC, MIN_UNIQUE_OP_STATES,
    SUCCESS_MAX_MISS_FRAC, SUCCESS_MAX_TAIL_ERR, SUCCESS_MIN_TAIL_UPTIME,
    VERDICT_PLAUSIBLE, VERDICT_SPARSE, WINDOW_PREFIX, Family, Scope, Window,
)
from .export import channel_key, pairs_to_counter
from .statistics import (
    average_pairwise_jsd, coarse_ep_smoothed, entropy_from_counts,
    js_divergence, mean, merge_counts, summarize_values, symmetry_gap,
    total_transitions,
)
from .types_result import RunResult

# Scalar run-summary metrics averaged per condition
SUMMARY_METRICS = [
    "miss_frac", "recovery_mean", "recovery_p95", "uptime", "uptime_tail",
    "err_tail_mean", "sdiff_tail_mean", "err_p95",
    "ep_total_rate", "ep_repair_rate", "ep_opk_rate", "ep_clock_rate", "ep_other_rate",
    "repair_rate", "opk_rate", "repair_efficiency_mean",
    "gate_samples", "recovery_window_samples_mean",
    "symmetry_gap_base", "symmetry_gap_op", "coarse_ep_base", "coarse_ep_op",
]

# Bootstrap seed bases; the sample count is added to each
CI_SEEDS = {
    "miss_frac": 101,
    "uptime_tail": 202,
    "err_tail_mean": 303,
    "ep_clock_rate": 404,
    "success": 505,
}

# Seed bases for paired condition differences
DIFF_SEEDS = {
    "miss_frac": 7001,
    "uptime_tail": 8001,
    "err_tail_mean": 9001,
    "ep_clock_rate": 10001,
}

TOP_EDGE_ROWS = 50


def _metric_value(summary: Mapping, key: str) -> Optional[float]:
    """Scalar value of a summary entry; {"mean", "std"} entries give their mean."""
    value = summary.get(key)
    if isinstance(value, Mapping):
        return value.get("mean")
    return value


def _opt_mean(values: Sequence) -> Optional[float]:
    nums = [v for v in values if v is not None]
    return mean(nums) if nums else None


# =============================================================================
# CONDITION SUMMARIES
# =============================================================================

def is_run_success(summary: Mapping) -> bool:
    """Miss fraction, tail uptime and tail error all within their limits."""
    return (summary["miss_frac"] <= SUCCESS_MAX_MISS_FRAC
            and summary["uptime_tail"] >= SUCCESS_MIN_TAIL_UPTIME
            and summary["err_tail_mean"] <= SUCCESS_MAX_TAIL_ERR)


def success_rate(summaries: Sequence[Mapping]) -> float:
    if not summaries:
        return 0.0
    return sum(1 for s in summaries if is_run_success(s)) / len(summaries)


def condition_summary(results: Sequence[RunResult]) -> dict:
    """
    Mean/std of every summary metric across the runs of one condition.

    Args:
        results: Runs sharing one condition

    Returns:
        Flat dict with "<metric>_mean" and "<metric>_std" keys
    """
    summaries = [r.summary for r in results]
    first = summaries[0] if summaries else {}
    row = {
        "condition": first.get("condition"),
        "op_bins_mode": first.get("op_bins_mode"),
        "runs": len(summaries),
        "seeds": [s["seed"] for s in summaries],
        "success_rate": success_rate(summaries),
    }
    metrics = list(SUMMARY_METRICS)
    for channel in CHANNELS:
        key = channel_key(channel)
        metrics += [f"{key}_entropy", f"{key}_v_eff", f"{key}_top_mass",
                    f"{key}_change_frac", f"unique_{key}"]
    for metric in metrics:
        stats = summarize_values(_metric_value(s, metric) for s in summaries)
        row[f"{metric}_mean"] = stats["mean"]
        row[f"{metric}_std"] = stats["std"]
    return row


def group_by_condition(results: Iterable[RunResult]) -> Dict[str, List[RunResult]]:
    groups: Dict[str, List[RunResult]] = {}
    for result in results:
        groups.setdefault(result.config.condition, []).append(result)
    return groups


# =============================================================================
# BOOTSTRAP CIs
# =============================================================================

def condition_ci(results: Sequence[RunResult], samples: int = BOOTSTRAP_SAMPLES) -> dict:
    """
    Bootstrap CIs of the headline metrics and of the success rate.

    Returns:
        {metric: {"mean", "ci_low", "ci_high"}}
    """
    summaries = [r.summary for r in results]
    out = {}
    for metric, base_seed in CI_SEEDS.items():
        if metric == "success":
            values = [1.0 if is_run_success(s) else 0.0 for s in summaries]
        else:
            values = [_metric_value(s, metric) for s in summaries]
            values = [v for v in values if v is not None]
        out[metric] = bootstrap_mean_ci(values, samples, base_seed + len(values)).to_dict()
    return out


def diff_ci(a: Sequence[RunResult], b: Sequence[RunResult], samples: int = BOOTSTRAP_SAMPLES) -> dict:
    """
    Paired difference CIs, mean(a) - mean(b), for the headline metrics.

    Tail error is differenced the other way round (b - a) so that a positive
    value always favours a.
    """
    out = {}
    for metric, seed in DIFF_SEEDS.items():
        va = [_metric_value(r.summary, metric) for r in a]
        vb = [_metric_value(r.summary, metric) for r in b]
        va = [v for v in va if v is not None]
        vb = [v for v in vb if v is not None]
        if metric == "err_tail_mean":
            va, vb = vb, va
        out[metric] = bootstrap_diff_ci(va, vb, samples, seed).to_dict()
    return out


# =============================================================================
# EVENT-CONDITIONED ROWS
# =============================================================================

def _window_event_stats(row: Mapping, prefix: str, family: Family) -> dict:
    key = channel_key((family, Scope.HAZARD))
    counts = pairs_to_counter(row.get(f"{prefix}_{key}_counts", {}))
    trans = pairs_to_counter(row.get(f"{prefix}_{key}_trans", {}))
    changed = row.get(f"{prefix}_{key}_change_count", 0)
    compared = row.get(f"{prefix}_{key}_change_total", 0)
    n_trans = total_transitions(trans)
    coarse = coarse_ep_smoothed(trans)
    ep_total = row.get(f"{prefix}_ep_total", 0.0)
    ep_repair = row.get(f"{prefix}_ep_repair", 0.0)
    ep_opk = row.get(f"{prefix}_ep_opk", 0.0)
    return {
        "counts": counts,
        "entropy": entropy_from_counts(counts),
        "coarse_ep": coarse,
        "coarse_ep_per_trans": coarse / n_trans if n_trans > 0 else 0.0,
        "asym_per_trans": symmetry_gap(trans),
        "change_frac": changed / compared if compared > 0 else 0.0,
        "unique": len(counts),
        "ep_total_per_change": ep_total / changed if changed > 0 else 0.0,
        "ep_repair_per_change": ep_repair / changed if changed > 0 else 0.0,
        "ep_opk_per_change": ep_opk / changed if changed > 0 else 0.0,
    }


def event_conditioned_rows(results: Sequence[RunResult]) -> List[dict]:
    """
    Success-vs-miss comparison per window and motif family (hazard scope).

    Events from all given runs are pooled. Entropy, coarse EP, asymmetry,
    change fraction and unique states are averaged per outcome group; the
    JSD compares the pooled count maps of the two groups.
    """
    events = [row for r in results for row in r.event_rows]
    first = results[0].summary if results else {}
    rec_samples = [row.get("rec_samples", 0) for row in events]
    rows = []
    for window in (Window.PRE, Window.RECOVERY, Window.TAIL):
        prefix = WINDOW_PREFIX[window]
        for family in (Family.BASE, Family.OP):
            succ = [_window_event_stats(e, prefix, family) for e in events if e["success"]]
            fail = [_window_event_stats(e, prefix, family) for e in events if not e["success"]]
            h_succ = _opt_mean([s["entropy"] for s in succ])
            h_fail = _opt_mean([s["entropy"] for s in fail])
            row = {
                "condition": first.get("condition"),
                "op_bins_mode": first.get("op_bins_mode"),
                "region": Scope.HAZARD.value,
                "family": family.value,
                "window": window.value,
                "events_succ": len(succ),
                "events_fail": len(fail),
                "h_succ": h_succ,
                "h_fail": h_fail,
                "h_delta": h_succ - h_fail if h_succ is not None and h_fail is not None else None,
                "js_divergence": js_divergence(merge_counts(s["counts"] for s in succ),
                                               merge_counts(s["counts"] for s in fail)),
                "recovery_samples_mean": mean(rec_samples),
            }
            for stat in ("coarse_ep", "coarse_ep_per_trans", "asym_per_trans", "change_frac", "unique"):
                row[f"{stat}_succ"] = _opt_mean([s[stat] for s in succ])
                row[f"{stat}_fail"] = _opt_mean([s[stat] for s in fail])
            ep_stats = ("ep_total_per_change", "ep_repair_per_change") if family is Family.BASE \
                else ("ep_opk_per_change",)
            for stat in ep_stats:
                row[f"{stat}_succ"] = _opt_mean([s[stat] for s in succ])
                row[f"{stat}_fail"] = _opt_mean([s[stat] for s in fail])
            rows.append(row)
    return rows


# =============================================================================
# EDGES AND CONTEXTS
# =============================================================================

def aggregate_edge_rows(rows: Iterable[Mapping], top: Optional[int] = TOP_EDGE_ROWS) -> List[dict]:
    """Sum edge rows over seeds per (condition, region, family, from, to), by count."""
    agg: Dict[tuple, dict] = {}
    for row in rows:
        key = (row["condition"], row["region"], row["family"], row["from"], row["to"])
        acc = agg.setdefault(key, {
            "condition": row["condition"], "region": row["region"], "family": row["family"],
            "from": row["from"], "to": row["to"], "count": 0, "count_rev": 0,
            "ep_repair_sum": 0.0, "ep_opk_sum": 0.0, "ep_total_sum": 0.0,
        })
        acc["count"] += int(row["count"])
        acc["count_rev"] += int(row["count_rev"])
        for cat in ("repair", "opk", "total"):
            acc[f"ep_{cat}_sum"] += float(row[f"ep_{cat}_sum"])
    out = []
    for acc in agg.values():
        for cat in ("repair", "opk", "total"):
            acc[f"ep_{cat}_per_trans"] = acc[f"ep_{cat}_sum"] / acc["count"] if acc["count"] > 0 else 0.0
        out.append(acc)
    out.sort(key=lambda r: (-r["count"], str(r["from"]), str(r["to"])))
    return out[:top] if top is not None else out


def context_counts(results: Sequence[RunResult], family: Family = Family.OP,
                   window: Window = Window.RECOVERY) -> Dict[str, Counter]:
    """Pooled hazard motif counts per hazard context ("<region_type>:<index>")."""
    prefix = WINDOW_PREFIX[window]
    key = channel_key((family, Scope.HAZARD))
    out: Dict[str, Counter] = {}
    for result in results:
        region = result.config.region
        ctx = f"{region.region_type}:{region.region_index}"
        acc = out.setdefault(ctx, Counter())
        for row in result.event_rows:
            acc.update(pairs_to_counter(row.get(f"{prefix}_{key}_counts", {})))
    return out


def context_divergence(results: Sequence[RunResult], family: Family = Family.OP,
                       window: Window = Window.RECOVERY) -> dict:
    """Average pairwise JSD between hazard contexts, plus each pair's JSD."""
    by_ctx = context_counts(results, family, window)
    names = sorted(by_ctx)
    pairs = {}
    for i in range(len(names)):
        for j in range(i + 1, len(names)):
            pairs[f"{names[i]}|{names[j]}"] = js_divergence(by_ctx[names[i]], by_ctx[names[j]])
    return {
        "family": family.value,
        "window": window.value,
        "contexts": names,
        "average_jsd": average_pairwise_jsd([by_ctx[n] for n in names]),
        "pairs": pairs,
    }


# =============================================================================
# VERDICT AND RECEIPT
# =============================================================================

def motif_verdict(rows: Sequence[Mapping], conditions: Sequence[str] = ("B", "C")) -> str:
    """
    Plausible when every checked condition has enough operator states,
    observed recovery windows and operator change.

    Only rows of the listed conditions are checked; all rows when none match.
    """
    checked = [r for r in rows if r.get("condition") in conditions] or list(rows)
    if not checked:
        return VERDICT_SPARSE
    for row in checked:
        if (row.get("unique_op_hazard_mean") or 0) < MIN_UNIQUE_OP_STATES:
            return VERDICT_SPARSE
        if (row.get("recovery_window_samples_mean_mean") or 0) < 1:
            return VERDICT_SPARSE
        if (row.get("op_hazard_change_frac_mean") or 0) < MIN_CHANGE_FRAC:
            return VERDICT_SPARSE
    return VERDICT_PLAUSIBLE


def aggregate_receipt(rows: Sequence[Mapping], verdict: Optional[str] = None) -> dict:
    return emit_receipt("aggregate_summary", {
        "conditions": [r.get("condition") for r in rows],
        "runs": sum(r.get("runs", 0) for r in rows),
        "success_rates": {r.get("condition"): r.get("success_rate") for r in rows},
        "verdict": verdict,
    })
