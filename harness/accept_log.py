"""
harness/accept_log.py - Accept-Log Driven Runs

Two runs that read individual accepted moves from the oracle's accept log
instead of sampling snapshots:

  run_move_edges      operator token moves as from -> to offset edges
  run_repair_actions  repair moves classified into action motifs

Both step the oracle in fixed chunks, inject hazards on schedule, drain the
log after every chunk and keep only entries inside the recovery window of
their period. Overflow of the log is fatal.
"""

from collections import Counter
from typing import Callable, Dict, List, Optional

from receipts import emit_receipt

from .constants import ACCEPT_LOG_CAP, CHUNK_STEPS, MOVE_OPK, Scope
from .events import make_perturb_spec
from .motifs import edge_family
from .oracle import (
    AcceptLogRow, check_grid, check_move_id, decode_meta, drain_accept_log,
    resolve_move_indices,
)
from .reference_oracle import MOVE_LABELS, oracle_from_config
from .regions import RegionMasks, build_masks
from .types_config import RunConfig, validate_config
from .types_result import MoveEdgeResult, RepairActionResult

TOP_EDGES = 20
SCOPES = (Scope.HAZARD.value, Scope.OUTSIDE.value)


# =============================================================================
# SHARED DRIVER
# =============================================================================

def recovery_period_start(t: int, event_every: int, deadline: int, max_event_start: int) -> Optional[int]:
    """
    Start of the event period whose recovery window holds time t.

    Returns:
        t0 = floor(t / event_every) * event_every when event_every <= t0 <=
        max_event_start and t - t0 < deadline, else None
    """
    t0 = (t // event_every) * event_every
    if t0 < event_every or t0 > max_event_start:
        return None
    if t - t0 >= deadline:
        return None
    return t0


def entry_scope(cell: int, masks: RegionMasks) -> Optional[str]:
    if masks.hazard[cell]:
        return Scope.HAZARD.value
    if masks.outside[cell]:
        return Scope.OUTSIDE.value
    return None


def drive_with_accept_log(config: RunConfig, oracle, move_mask: int, max_event_start: int,
                          handle: Callable[[List[AcceptLogRow]], None],
                          chunk_steps: int = CHUNK_STEPS, log_cap: int = ACCEPT_LOG_CAP) -> None:
    """
    Step the oracle to config.steps in chunks, draining the accept log after each.

    Events fire at multiples of event_every up to max_event_start. Log times
    are shifted by burn_in so that they are relative to the run start.

    Raises:
        StopRule: on accept-log overflow
    """
    ev = config.events
    if config.burn_in > 0:
        oracle.step(config.burn_in)
    oracle.set_accept_log(True, move_mask, log_cap)
    drain_accept_log(oracle)

    t = 0
    event_idx = 0
    while t < config.steps:
        next_event = (event_idx + 1) * ev.event_every
        target = min(t + chunk_steps, next_event, config.steps)
        if target > t:
            oracle.step(target - t)
            t = target
        # slots past max_event_start are skipped, not retried
        if t >= next_event:
            if next_event <= max_event_start:
                oracle.perturb(make_perturb_spec(config, next_event))
            event_idx += 1
        rows = drain_accept_log(oracle)
        if rows:
            shift = config.burn_in
            handle([AcceptLogRow(r.time - shift, r.cell, r.meta, r.ep) for r in rows])


def _prepare(config: RunConfig, oracle):
    config = validate_config(config)
    if oracle is None:
        oracle = oracle_from_config(config)
    check_grid(oracle, config.grid_size)
    moves = resolve_move_indices(oracle.move_labels())
    masks = build_masks(config.grid_size, config.region, config.outside_seed)
    return config, oracle, moves, masks


# =============================================================================
# OPERATOR MOVE EDGES
# =============================================================================

def top_edges(counts: Counter, ep_sum: Dict, limit: int = TOP_EDGES) -> List[dict]:
    ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[:limit]
    return [
        {"from": a, "to": b, "count": n, "ep_sum": ep_sum.get((a, b), 0.0)}
        for (a, b), n in ranked
    ]


def run_move_edges(config: RunConfig, oracle=None, chunk_steps: int = CHUNK_STEPS,
                   log_cap: int = ACCEPT_LOG_CAP) -> MoveEdgeResult:
    """
    Count operator token moves inside recovery windows as offset edges.

    Args:
        config: RunConfig
        oracle: SimulationOracle; a ReferenceOracle for the config when None
        chunk_steps: Steps between accept-log drains
        log_cap: Accept-log capacity

    Returns:
        MoveEdgeResult with per-scope edge counts, EP sums and edge families

    Raises:
        StopRule: missing move labels or accept-log overflow
    """
    config, oracle, moves, masks = _prepare(config, oracle)
    check_move_id(MOVE_OPK, moves.opk, MOVE_LABELS.index(MOVE_OPK))
    ev = config.events
    offsets = list(oracle.op_offsets)
    r_count = len(offsets)
    max_event_start = config.steps - ev.deadline

    counts = {s: Counter() for s in SCOPES}
    ep_sum = {s: {} for s in SCOPES}
    ep_abs = {s: {} for s in SCOPES}
    families = {s: Counter() for s in SCOPES}
    totals = {s: {"moves": 0, "ep": 0.0} for s in SCOPES}

    def handle(rows: List[AcceptLogRow]) -> None:
        for row in rows:
            move_id, _layer, src, dst = decode_meta(row.meta)
            if move_id != moves.opk:
                continue
            if recovery_period_start(row.time, ev.event_every, ev.deadline, max_event_start) is None:
                continue
            scope = entry_scope(row.cell, masks)
            if scope is None or src >= r_count or dst >= r_count:
                continue
            edge = (src, dst)
            counts[scope][edge] += 1
            ep_sum[scope][edge] = ep_sum[scope].get(edge, 0.0) + row.ep
            ep_abs[scope][edge] = ep_abs[scope].get(edge, 0.0) + abs(row.ep)
            families[scope][edge_family(src, dst, offsets)] += 1
            totals[scope]["moves"] += 1
            totals[scope]["ep"] += row.ep

    drive_with_accept_log(config, oracle, moves.mask(moves.opk), max_event_start, handle,
                          chunk_steps, log_cap)

    summary = {
        "seed": config.seed,
        "condition": config.condition,
        "steps": config.steps,
        "event_every": ev.event_every,
        "deadline": ev.deadline,
        "grid_size": config.grid_size,
        "r_count": r_count,
        "op_budget_k": oracle.op_budget_k,
    }
    for scope in SCOPES:
        summary[f"total_moves_{scope}"] = totals[scope]["moves"]
        summary[f"total_ep_{scope}"] = totals[scope]["ep"]
        summary[f"unique_edges_{scope}"] = len(counts[scope])
        summary[f"top_edges_{scope}"] = top_edges(counts[scope], ep_sum[scope])
        summary[f"edge_families_{scope}"] = dict(sorted(families[scope].items()))

    receipt = emit_receipt("run_summary", {
        "seed": config.seed,
        "condition": config.condition,
        "kind": "move_edges",
        "total_moves_hazard": summary["total_moves_hazard"],
        "total_moves_outside": summary["total_moves_outside"],
    })
    return MoveEdgeResult(
        config=config,
        summary=summary,
        edge_counts=counts,
        edge_ep_sum=ep_sum,
        edge_ep_abs_sum=ep_abs,
        family_counts=families,
        receipts=[receipt],
    )


# =============================================================================
# REPAIR ACTION MOTIFS
# =============================================================================

def repair_action_motif(move_id: int, layer: int, mismatch: int, kdir: int,
                        p5_base: int, r_count: int, meta_layers: int) -> Optional[int]:
    """
    Action motif id of one repair move.

    Base repairs map to (kdir mod R) * 3 + mismatch. Meta repairs are offset
    past the base block by R * 3 * (1 + layer). Meta layers outside the
    oracle's range give None.
    """
    eff_r = max(1, r_count)
    local = (kdir % eff_r) * 3 + mismatch
    if move_id == p5_base:
        return local
    if layer >= meta_layers:
        return None
    return eff_r * 3 + layer * eff_r * 3 + local


def run_repair_actions(config: RunConfig, oracle=None, chunk_steps: int = CHUNK_STEPS,
                       log_cap: int = ACCEPT_LOG_CAP) -> RepairActionResult:
    """
    Classify repair moves inside recovery windows into action motifs.

    Consecutive actions in the same scope form a transition, in log order.

    Args:
        config: RunConfig
        oracle: SimulationOracle; a ReferenceOracle for the config when None
        chunk_steps: Steps between accept-log drains
        log_cap: Accept-log capacity

    Returns:
        RepairActionResult with per-scope motif counts, EP sums and transitions

    Raises:
        StopRule: missing move labels or accept-log overflow
    """
    config, oracle, moves, masks = _prepare(config, oracle)
    ev = config.events
    r_count = len(oracle.op_offsets)
    meta_layers = oracle.meta_layers
    max_event_start = config.steps - ev.event_every

    counts = {s: Counter() for s in SCOPES}
    ep_sum = {s: {} for s in SCOPES}
    ep_abs = {s: {} for s in SCOPES}
    transitions = {s: Counter() for s in SCOPES}
    totals = {s: {"moves": 0, "ep": 0.0} for s in SCOPES}
    previous: Dict[str, Optional[int]] = {s: None for s in SCOPES}

    def handle(rows: List[AcceptLogRow]) -> None:
        for row in rows:
            move_id, layer, mismatch, kdir = decode_meta(row.meta)
            if move_id not in moves.repair:
                continue
            if recovery_period_start(row.time, ev.event_every, ev.deadline, max_event_start) is None:
                continue
            scope = entry_scope(row.cell, masks)
            if scope is None:
                continue
            motif = repair_action_motif(move_id, layer, mismatch, kdir, moves.p5_base, r_count, meta_layers)
            if motif is None:
                continue
            if previous[scope] is not None:
                transitions[scope][(previous[scope], motif)] += 1
            previous[scope] = motif
            counts[scope][motif] += 1
            ep_sum[scope][motif] = ep_sum[scope].get(motif, 0.0) + row.ep
            ep_abs[scope][motif] = ep_abs[scope].get(motif, 0.0) + abs(row.ep)
            totals[scope]["moves"] += 1
            totals[scope]["ep"] += row.ep

    drive_with_accept_log(config, oracle, moves.mask(*moves.repair), max_event_start, handle,
                          chunk_steps, log_cap)

    summary = {
        "seed": config.seed,
        "condition": config.condition,
        "steps": config.steps,
        "event_every": ev.event_every,
        "deadline": ev.deadline,
        "r_count": r_count,
        "meta_layers": meta_layers,
    }
    for scope in SCOPES:
        summary[f"total_moves_{scope}"] = totals[scope]["moves"]
        summary[f"total_ep_{scope}"] = totals[scope]["ep"]
        summary[f"unique_motifs_{scope}"] = len(counts[scope])

    receipt = emit_receipt("run_summary", {
        "seed": config.seed,
        "condition": config.condition,
        "kind": "repair_actions",
        "total_moves_hazard": summary["total_moves_hazard"],
        "total_moves_outside": summary["total_moves_outside"],
    })
    return RepairActionResult(
        config=config,
        summary=summary,
        motif_counts=counts,
        motif_ep_sum=ep_sum,
        motif_ep_abs_sum=ep_abs,
        transitions=transitions,
        receipts=[receipt],
    )
