"""
harness/cycle.py - Hazard/Deadline Main Loop

run_events drives one oracle through a full run: it steps the oracle between
report, sample and event times, injects scheduled hazards, feeds gated
samples to the motif classifier and resolves events on report ticks.
Samples and events are processed in strictly increasing simulated time.
"""

from collections import Counter
from typing import Dict, List, Optional

from receipts import emit_receipt, merkle

from .constants import (
    CHANNELS, FLAG_OP_COLLAPSED, FLAG_RECOVERY_UNOBSERVED,
    FLAG_SPARSE_GATE_SAMPLES, MIN_GATE_SAMPLES, MIN_UNIQUE_OP_STATES,
    PERCENTILE_P95, Family, Scope, Window,
)
from .events import (
    finalize_pending, outcome_receipt, schedule_slots, trigger_event,
    update_on_report,
)
from .export import build_edge_rows, build_event_row, channel_key
from .fidelity import ErrorFloor, is_good, mean_abs_diff_region, region_error
from .gate import hazard_gate_active
from .motifs import (
    accumulate_transitions, classify_snapshot, count_by_interface,
    count_motifs, motif_change,
)
from .oracle import (
    MoveIndex, check_grid, ep_categories, move_categories,
    resolve_move_indices, take_snapshot,
)
from .reference_oracle import oracle_from_config
from .regions import RegionMasks, build_masks
from .statistics import (
    coarse_ep_smoothed, entropy_from_counts, mean, percentile, spearman,
    summarize_values, symmetry_gap, vocab_stats,
)
from .types_config import RunConfig, validate_config
from .types_result import RunResult
from .types_state import RunState

EP_EDGE_CATEGORIES = ("total", "repair", "opk")


# =============================================================================
# TRIGGERS
# =============================================================================

def _trigger_due(state: RunState, config: RunConfig, oracle, moves: MoveIndex) -> None:
    while state.next_slot < len(state.slots) and state.slots[state.next_slot].t_event <= state.t:
        slot = state.slots[state.next_slot]
        receipt = trigger_event(slot, config, oracle, lambda: take_snapshot(oracle, moves, state.t))
        state.receipts.append(receipt)
        state.last_event_time = slot.t_event
        state.next_slot += 1


# =============================================================================
# SAMPLING
# =============================================================================

def _reset_previous(state: RunState) -> None:
    state.prev_base = None
    state.prev_op = None
    state.prev_snapshot = None


def _attribute_edge_ep(state: RunState, family: Family, step_table: Counter,
                       ep_delta: Dict[str, float]) -> None:
    """Split one interval's EP across hazard edges by their share of transitions."""
    total = sum(step_table.values())
    if total <= 0:
        return
    edges = state.edge_ep[family]
    for edge, n in step_table.items():
        share = n / total
        acc = edges.setdefault(edge, {cat: 0.0 for cat in EP_EDGE_CATEGORIES})
        for cat in EP_EDGE_CATEGORIES:
            acc[cat] += share * ep_delta[cat]


def _sample(state: RunState, config: RunConfig, oracle, masks: RegionMasks, moves: MoveIndex) -> None:
    """
    One sampling instant: gate check, classification, counts and transitions.

    A closed conditioned gate resets the previous-sample pointers so that no
    transition spans the gap.
    """
    t = state.t
    clock = oracle.clock_state()
    if config.gate.conditioned and not hazard_gate_active(clock, config.gate, config.region.region_index):
        if state.gate_open:
            state.receipts.append(emit_receipt("gate_closed", {
                "seed": config.seed,
                "condition": config.condition,
                "t": t,
                "clock_state": int(clock),
                "gate_mode": config.gate.mode,
            }))
        state.gate_open = False
        state.gate_closed_samples += 1
        _reset_previous(state)
        return

    state.gate_open = True
    state.gate_samples += 1
    snap = classify_snapshot(oracle, config.motif.op_bins_mode, config.motif.axis_policy)
    now = take_snapshot(oracle, moves, t)
    windows = [w for slot in state.slots for w in slot.windows_at(t)]
    for window in windows:
        window.samples += 1

    ep_delta = None
    if state.prev_snapshot is not None:
        ep_delta = ep_categories(now.delta(state.prev_snapshot))
        for window in windows:
            window.add_ep(ep_delta)

    current = {Family.BASE: snap.base, Family.OP: snap.op}
    previous = {Family.BASE: state.prev_base, Family.OP: state.prev_op}
    scope_masks = {Scope.HAZARD: masks.hazard, Scope.OUTSIDE: masks.outside}

    for channel in CHANNELS:
        family, scope = channel
        classes = current[family]
        mask = scope_masks[scope]
        counts = count_motifs(classes, mask)
        stats = vocab_stats(counts, config.motif.top_n)
        series = state.series[channel]
        series.entropy.append(stats.entropy)
        series.v_eff.append(stats.v_eff)
        series.top_mass.append(stats.top_mass)
        series.unique_states.update(counts)
        for window in windows:
            window.counts[channel].update(counts)
        if scope is Scope.HAZARD:
            state.interface_entropy[family].append(
                [entropy_from_counts(c) for c in count_by_interface(classes, mask)])

        prev = previous[family]
        if prev is None:
            continue
        change = motif_change(prev, classes, mask)
        series.change_frac.append(change.frac)
        step_table = Counter()
        accumulate_transitions(prev, classes, mask, step_table)
        state.transitions[channel].update(step_table)
        for window in windows:
            window.transitions[channel].update(step_table)
            window.changed[channel] += change.changed
            window.compared[channel] += change.total
            compared = window.compared[channel]
            window.change_frac[channel] = window.changed[channel] / compared if compared > 0 else 0.0

        if scope is Scope.HAZARD and ep_delta is not None:
            _attribute_edge_ep(state, family, step_table, ep_delta)
            if change.changed > 0:
                ep_key = "total" if family is Family.BASE else "opk"
                state.ep_per_change[family].append(ep_delta[ep_key] / change.changed)

    state.prev_base = snap.base
    state.prev_op = snap.op
    state.prev_snapshot = now


# =============================================================================
# REPORT TICKS
# =============================================================================

def _fidelity(oracle, masks: RegionMasks, config: RunConfig):
    base = oracle.base_field()
    meta0 = oracle.meta_fields()[0]
    sdiff = mean_abs_diff_region(base, meta0, masks.hazard)
    err = region_error(base, meta0, config.grid_size, oracle.level_max, masks.hazard,
                       config.events.err_mode, config.seed)
    return sdiff, err


def _report(state: RunState, config: RunConfig, oracle, masks: RegionMasks,
            moves: MoveIndex, floor: ErrorFloor) -> None:
    t = state.t
    sdiff, err = _fidelity(oracle, masks, config)
    err_adj = floor.adjust(t, err)
    good = is_good(sdiff, err_adj, config.events)
    state.report_times.append(t)
    state.err.append(err)
    state.err_adj.append(err_adj)
    state.sdiff.append(sdiff)
    state.good.append(good)
    state.since_event.append(float("inf") if state.last_event_time is None else float(t - state.last_event_time))

    pending = state.pending
    if not pending:
        return
    snapshot = take_snapshot(oracle, moves, t)
    for event in pending:
        if update_on_report(event, t, good, snapshot) is not None:
            state.receipts.append(outcome_receipt(event, config))


# =============================================================================
# SUMMARY
# =============================================================================

def _opt_mean(values: List[float]) -> Optional[float]:
    return mean(values) if values else None


def summarize_run(state: RunState, config: RunConfig, start, end, floor: ErrorFloor,
                  err_end: float, sdiff_end: float) -> dict:
    """
    Per-run summary: outcomes, uptime, EP accounting and motif statistics.

    Args:
        state: Finished run state
        config: Run configuration
        start: OracleSnapshot after burn-in
        end: OracleSnapshot at run end
        floor: Frozen error floor
        err_end: Hazard bit error at run end
        sdiff_end: Hazard structural difference at run end

    Returns:
        JSON-able dict; None marks metrics without data
    """
    ev = config.events
    steps = config.steps
    events = state.events
    recoveries = [e.recovery_elapsed for e in events if e.recovery_elapsed is not None]
    misses = sum(1 for e in events if e.outcome.value == "missed")

    recovered_moves = []
    missed_moves = []
    repair_efficiency = []
    for e in events:
        if e.start_snapshot is None or e.end_snapshot is None:
            continue
        used = move_categories(e.end_snapshot.delta(e.start_snapshot))
        if e.recovery_elapsed is not None:
            recovered_moves.append(used)
            if used["repair"] > 0:
                repair_efficiency.append(e.steps_to_outcome / used["repair"])
        else:
            missed_moves.append(used)

    tail_start = max(0, steps - ev.tail_window)
    grace = ev.grace_window
    tail = [i for i, t in enumerate(state.report_times)
            if t >= tail_start and state.since_event[i] >= grace]
    ticks = len(state.report_times)

    run_delta = end.delta(start)
    ep = ep_categories(run_delta)
    moved = move_categories(run_delta)

    summary = {
        "seed": config.seed,
        "condition": config.condition,
        "op_bins_mode": config.motif.op_bins_mode,
        "op_alphabet_size": config.motif.op_alphabet_size,
        "steps": steps,
        "deadline": ev.deadline,
        "event_every": ev.event_every,
        "region_type": config.region.region_type,
        "region_index": config.region.region_index,
        "events": len(events),
        "misses": misses,
        "miss_frac": misses / len(events) if events else 0.0,
        "recovery_mean": _opt_mean(recoveries),
        "recovery_p95": percentile(recoveries, PERCENTILE_P95),
        "recovery_max": max(recoveries) if recoveries else None,
        "repair_to_recover_mean": _opt_mean([m["repair"] for m in recovered_moves]),
        "opk_to_recover_mean": _opt_mean([m["opk"] for m in recovered_moves]),
        "clock_to_recover_mean": _opt_mean([m["clock"] for m in recovered_moves]),
        "repair_before_miss_mean": _opt_mean([m["repair"] for m in missed_moves]),
        "opk_before_miss_mean": _opt_mean([m["opk"] for m in missed_moves]),
        "repair_efficiency_mean": _opt_mean(repair_efficiency),
        "repair_efficiency_median": percentile(repair_efficiency, 0.5),
        "repair_rate": moved["repair"] / steps,
        "opk_rate": moved["opk"] / steps,
        "uptime": sum(state.good) / ticks if ticks else 0.0,
        "uptime_tail": sum(1 for i in tail if state.good[i]) / len(tail) if tail else 0.0,
        "err_tail_mean": mean([state.err_adj[i] for i in tail]),
        "sdiff_tail_mean": mean([state.sdiff[i] for i in tail]),
        "err_p95": percentile(state.err_adj, PERCENTILE_P95),
        "err_end": err_end,
        "sdiff_end": sdiff_end,
        "err_floor": floor.value,
        "gate_samples": state.gate_samples,
        "gate_closed_samples": state.gate_closed_samples,
        "recovery_window_samples_mean": mean([s.windows[Window.RECOVERY].samples for s in state.slots]),
    }
    for cat, value in ep.items():
        summary[f"ep_{cat}"] = value
        summary[f"ep_{cat}_rate"] = value / steps

    for channel in CHANNELS:
        key = channel_key(channel)
        series = state.series[channel]
        summary[f"{key}_entropy"] = summarize_values(series.entropy)
        summary[f"{key}_v_eff"] = summarize_values(series.v_eff)
        summary[f"{key}_top_mass"] = summarize_values(series.top_mass)
        summary[f"{key}_change_frac"] = summarize_values(series.change_frac)
        summary[f"unique_{key}"] = len(series.unique_states)

    for family in (Family.BASE, Family.OP):
        table = state.transitions[(family, Scope.HAZARD)]
        summary[f"symmetry_gap_{family.value}"] = symmetry_gap(table)
        summary[f"coarse_ep_{family.value}"] = coarse_ep_smoothed(table)
        summary[f"ep_per_change_{family.value}"] = summarize_values(state.ep_per_change[family])
        rows = state.interface_entropy[family]
        profile = [mean(col) for col in zip(*rows)] if rows else []
        summary[f"interface_entropy_{family.value}"] = profile
        summary[f"depth_spearman_{family.value}"] = spearman(list(range(1, len(profile) + 1)), profile)
    return summary


def sparse_signal_flags(summary: dict, config: RunConfig) -> List[dict]:
    """Anomaly receipts for motif statistics too sparse to trust."""
    if not config.motif.enabled:
        return []
    checks = []
    if summary["gate_samples"] < MIN_GATE_SAMPLES:
        checks.append((FLAG_SPARSE_GATE_SAMPLES, "gate_samples", MIN_GATE_SAMPLES, summary["gate_samples"]))
    if summary["events"] > 0 and summary["recovery_window_samples_mean"] == 0:
        checks.append((FLAG_RECOVERY_UNOBSERVED, "recovery_window_samples_mean", 1, 0))
    if summary["unique_op_hazard"] < MIN_UNIQUE_OP_STATES:
        checks.append((FLAG_OP_COLLAPSED, "unique_op_hazard", MIN_UNIQUE_OP_STATES, summary["unique_op_hazard"]))
    return [
        emit_receipt("anomaly", {
            "seed": config.seed,
            "condition": config.condition,
            "flag": flag,
            "metric": metric,
            "baseline": baseline,
            "delta": observed - baseline,
            "classification": "sparse_signal",
            "action": "flag",
        })
        for flag, metric, baseline, observed in checks
    ]


# =============================================================================
# ENTRY POINT
# =============================================================================

def run_events(config: RunConfig, oracle=None) -> RunResult:
    """
    Run one hazard/deadline experiment.

    Args:
        config: RunConfig (validated here)
        oracle: SimulationOracle; a ReferenceOracle for the config when None

    Returns:
        RunResult with event rows, edge rows, summary, flags and receipts

    Raises:
        StopRule: invalid config or oracle contract violation
    """
    config = validate_config(config)
    if oracle is None:
        oracle = oracle_from_config(config)
    check_grid(oracle, config.grid_size)
    moves = resolve_move_indices(oracle.move_labels())
    masks = build_masks(config.grid_size, config.region, config.outside_seed)

    if config.burn_in > 0:
        oracle.step(config.burn_in)

    ev = config.events
    state = RunState(slots=schedule_slots(config))
    floor = ErrorFloor(ev.event_every)
    start = take_snapshot(oracle, moves, 0)

    sample_every = config.gate.check_every
    next_report = ev.report_every
    next_sample = sample_every if config.motif.enabled else None

    while state.t < config.steps:
        targets = [next_report, config.steps]
        if next_sample is not None:
            targets.append(next_sample)
        if state.next_slot < len(state.slots):
            targets.append(state.slots[state.next_slot].t_event)
        target = min(targets)
        if target > state.t:
            oracle.step(target - state.t)
            state.t = target

        _trigger_due(state, config, oracle, moves)
        if next_sample is not None and state.t == next_sample:
            _sample(state, config, oracle, masks, moves)
            next_sample += sample_every
        if state.t == next_report:
            _report(state, config, oracle, masks, moves, floor)
            next_report += ev.report_every

    end = take_snapshot(oracle, moves, state.t)
    for event in finalize_pending(state.events, end):
        state.receipts.append(outcome_receipt(event, config))

    sdiff_end, err_end = _fidelity(oracle, masks, config)
    summary = summarize_run(state, config, start, end, floor, err_end, sdiff_end)
    anomalies = sparse_signal_flags(summary, config)
    flags = [r["flag"] for r in anomalies]
    summary["flags"] = flags
    state.receipts.extend(anomalies)

    event_rows = [build_event_row(slot, config) for slot in state.slots if slot.event is not None]
    edge_rows = build_edge_rows(
        {family: state.transitions[(family, Scope.HAZARD)] for family in (Family.BASE, Family.OP)},
        state.edge_ep,
        config,
    )
    root = merkle(event_rows)
    state.receipts.append(emit_receipt("run_summary", {
        "seed": config.seed,
        "condition": config.condition,
        "events": summary["events"],
        "miss_frac": summary["miss_frac"],
        "uptime_tail": summary["uptime_tail"],
        "flags": flags,
        "merkle_root": root,
    }))

    return RunResult(
        config=config,
        slots=tuple(state.slots),
        event_rows=event_rows,
        edge_rows=edge_rows,
        summary=summary,
        flags=flags,
        receipts=state.receipts,
        merkle_root=root,
    )
