"""
harness/export.py - Row Building, Writers and Reports

Flattens finished runs into JSON-able rows and writes them as JSONL, JSON or
CSV. Also renders the human-readable run report.
"""

import csv
import json
import os
from collections import Counter
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from receipts import json_default, write_receipt_jsonl, write_receipts

from .constants import CHANNELS, WINDOW_PREFIX, Family, Scope, Window
from .motifs import table_to_pairs
from .oracle import ep_categories, move_categories
from .statistics import coarse_ep_decompose
from .types_config import RunConfig
from .types_state import EventSlot

EDGE_COLUMNS = [
    "condition", "seed", "region", "family", "from", "to", "count", "count_rev",
    "ep_repair_sum", "ep_opk_sum", "ep_total_sum",
    "ep_repair_per_trans", "ep_opk_per_trans", "ep_total_per_trans", "coarse_ep_edge",
]


def channel_key(channel: Tuple[Family, Scope]) -> str:
    family, scope = channel
    return f"{family.value}_{scope.value}"


# =============================================================================
# ROWS
# =============================================================================

def build_event_row(slot: EventSlot, config: RunConfig) -> dict:
    """
    Flat record of one event: outcome, move accounting and per-window motif data.

    Args:
        slot: Event slot with a resolved event
        config: Run configuration

    Returns:
        JSON-able dict
    """
    event = slot.event
    row = {
        "seed": config.seed,
        "condition": config.condition,
        "op_bins_mode": config.motif.op_bins_mode,
        "event_idx": slot.index,
        "t_event": slot.t_event,
        "outcome": event.outcome.value,
        "success": event.recovery_elapsed is not None,
        "miss": event.outcome.value == "missed",
        "recovery": event.recovery_elapsed,
        "steps_to_outcome": event.steps_to_outcome,
        "recovery_samples": slot.windows[Window.RECOVERY].samples,
    }
    if event.start_snapshot is not None and event.end_snapshot is not None:
        delta = event.end_snapshot.delta(event.start_snapshot)
        for key, value in move_categories(delta).items():
            row[f"{key}_accepted_to_outcome"] = value
        for key, value in ep_categories(delta).items():
            row[f"ep_{key}_to_outcome"] = value

    for kind in (Window.PRE, Window.RECOVERY, Window.TAIL):
        window = slot.windows[kind]
        prefix = WINDOW_PREFIX[kind]
        row[f"{prefix}_samples"] = window.samples
        for channel in CHANNELS:
            key = channel_key(channel)
            row[f"{prefix}_{key}_counts"] = table_to_pairs(window.counts[channel])
            row[f"{prefix}_{key}_trans"] = table_to_pairs(window.transitions[channel])
            row[f"{prefix}_{key}_change"] = window.change_frac[channel]
            row[f"{prefix}_{key}_change_count"] = window.changed[channel]
            row[f"{prefix}_{key}_change_total"] = window.compared[channel]
        for cat in ("total", "repair", "opk"):
            row[f"{prefix}_ep_{cat}"] = window.ep.get(cat, 0.0)
    return row


def build_edge_rows(transitions: Mapping[Family, Counter],
                    edge_ep: Mapping[Family, Mapping[Tuple[int, int], Mapping[str, float]]],
                    config: RunConfig) -> List[dict]:
    """Hazard transition edges with their attributed EP, one row per directed edge."""
    rows = []
    for family in (Family.BASE, Family.OP):
        table = transitions[family]
        per_edge = coarse_ep_decompose(table).per_edge
        for (a, b), count in sorted(table.items()):
            if a == b:
                continue
            ep = edge_ep[family].get((a, b), {})
            row = {
                "condition": config.condition,
                "seed": config.seed,
                "region": Scope.HAZARD.value,
                "family": family.value,
                "from": a,
                "to": b,
                "count": count,
                "count_rev": table.get((b, a), 0),
                "coarse_ep_edge": per_edge.get((a, b), 0.0),
            }
            for cat in ("repair", "opk", "total"):
                total = ep.get(cat, 0.0)
                row[f"ep_{cat}_sum"] = total
                row[f"ep_{cat}_per_trans"] = total / count if count > 0 else 0.0
            rows.append(row)
    return rows


def pairs_to_counter(pairs: Mapping[str, int]) -> Counter:
    """Inverse of table_to_pairs: "a|b" keys become (a, b) tuples, others ints."""
    out = Counter()
    for key, count in pairs.items():
        if "|" in key:
            a, b = key.split("|", 1)
            out[(int(a), int(b))] += count
        else:
            out[int(key)] += count
    return out


# =============================================================================
# WRITERS
# =============================================================================

def _ensure_parent(path: str) -> None:
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)


def write_jsonl(rows: Iterable[dict], path: str) -> str:
    _ensure_parent(path)
    with open(path, "w") as fh:
        for row in rows:
            write_receipt_jsonl(row, fh)
    return path


def write_json(obj, path: str) -> str:
    _ensure_parent(path)
    with open(path, "w") as fh:
        json.dump(obj, fh, indent=2, sort_keys=True, default=json_default)
    return path


def write_csv(rows: Sequence[dict], path: str, columns: Optional[List[str]] = None) -> str:
    """CSV with the given columns (default: keys of the first row)."""
    _ensure_parent(path)
    if columns is None:
        columns = list(rows[0].keys()) if rows else []
    with open(path, "w", newline="") as fh:
        writer = csv.DictWriter(fh, fieldnames=columns, extrasaction="ignore")
        writer.writeheader()
        for row in rows:
            writer.writerow({k: _csv_value(row.get(k)) for k in columns})
    return path


def _csv_value(value):
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True, default=json_default)
    return value


def flatten_summary(summary: Mapping, prefix: str = "") -> Dict[str, object]:
    """Nested {"mean", "std"} entries become "<key>_mean" / "<key>_std" columns."""
    flat = {}
    for key, value in summary.items():
        name = f"{prefix}{key}"
        if isinstance(value, Mapping):
            flat.update(flatten_summary(value, f"{name}_"))
        elif isinstance(value, (list, tuple)):
            flat[name] = ";".join(str(v) for v in value)
        else:
            flat[name] = value
    return flat


def write_run_outputs(result, out_dir: str) -> Dict[str, str]:
    """
    Write one run's events, summary, edges and receipts under out_dir.

    Returns:
        Mapping of output kind -> path
    """
    cfg = result.config
    base = os.path.join(out_dir, cfg.condition, f"seed_{cfg.seed}")
    paths = {
        "events": write_jsonl(result.event_rows, base + "_events.jsonl"),
        "summary": write_json(result.summary, base + "_run_summary.json"),
        "edges": write_csv(result.edge_rows, base + "_transition_edges.csv", EDGE_COLUMNS),
        "receipts": base + "_receipts.jsonl",
    }
    write_receipts(result.receipts, paths["receipts"])
    return paths


# =============================================================================
# REPORT
# =============================================================================

def _fmt(value) -> str:
    if value is None:
        return "n/a"
    if isinstance(value, float):
        return f"{value:.4g}"
    return str(value)


def generate_report(result) -> str:
    """
    Human-readable summary of one run.

    Args:
        result: RunResult to summarize

    Returns:
        str: Report text
    """
    s = result.summary
    lines = [
        "=== HAZARD/DEADLINE RUN REPORT ===",
        f"Seed: {s['seed']}  Condition: {s['condition']}  Motif mode: {s['op_bins_mode']}",
        f"Steps: {s['steps']}  Events: {s['events']}  Deadline: {s['deadline']}",
        f"Miss fraction: {_fmt(s['miss_frac'])}",
        f"Recovery mean / p95 / max: {_fmt(s['recovery_mean'])} / {_fmt(s['recovery_p95'])} / {_fmt(s['recovery_max'])}",
        f"Uptime: {_fmt(s['uptime'])}  Tail uptime: {_fmt(s['uptime_tail'])}",
        f"Tail err / sdiff: {_fmt(s['err_tail_mean'])} / {_fmt(s['sdiff_tail_mean'])}",
        f"EP rate total / repair / opk / clock: {_fmt(s['ep_total_rate'])} / {_fmt(s['ep_repair_rate'])}"
        f" / {_fmt(s['ep_opk_rate'])} / {_fmt(s['ep_clock_rate'])}",
        f"Gate samples: {s['gate_samples']}  Unique op states (hazard): {s['unique_op_hazard']}",
        f"Flags: {', '.join(result.flags) if result.flags else 'none'}",
        f"Merkle root: {result.merkle_root}",
        "",
        "Verdict: " + ("PASS" if s["miss_frac"] == 0 else "DEGRADED"),
    ]
    return "\n".join(lines)
