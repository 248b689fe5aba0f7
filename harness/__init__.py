"""
harness - Hazard/Deadline Repair Harness

Public API for event-driven hazard injection, deadline tracking, motif
statistics and cross-run aggregation. Flat, focused files. One file = one
responsibility.
"""

# =============================================================================
# TYPES (Dataclasses)
# =============================================================================
from .types_config import (
    RunConfig,
    RegionConfig,
    GateConfig,
    EventConfig,
    MotifConfig,
    CONDITIONS,
    SCENARIO_QUADRANT_DEADLINE,
    SCENARIO_STRIPE_GATED,
    merge_overrides,
    parse_set_items,
    validate_config,
)
from .types_state import HazardEvent, SampleWindow, EventSlot, OracleSnapshot, RunState
from .types_result import RunResult, MoveEdgeResult, RepairActionResult

# =============================================================================
# CONSTANTS
# =============================================================================
from .constants import (
    Outcome,
    Window,
    Scope,
    Family,
    RECEIPT_SCHEMA,
    OP_STATE_COUNTS,
)

# =============================================================================
# ORACLE
# =============================================================================
from .oracle import PerturbSpec, SimulationOracle, resolve_move_indices
from .reference_oracle import ReferenceOracle, oracle_from_config

# =============================================================================
# COMPONENTS
# =============================================================================
from .regions import build_region_mask, build_matched_outside_mask, build_masks
from .gate import hazard_gate_active, calibrate_gate_gaps
from .motifs import base_motif_classes, op_motif_classes, accumulate_transitions
from .statistics import (
    entropy_from_counts,
    vocab_stats,
    symmetry_gap,
    coarse_ep_smoothed,
    coarse_ep_decompose,
    js_divergence,
    spearman,
)
from .bootstrap import BootstrapEstimate, bootstrap_mean_ci, bootstrap_diff_ci

# =============================================================================
# RUNS
# =============================================================================
from .cycle import run_events
from .accept_log import run_move_edges, run_repair_actions
from .parallel import run_seeds, run_configs

# =============================================================================
# AGGREGATION AND EXPORT
# =============================================================================
from .aggregate import (
    condition_summary,
    condition_ci,
    diff_ci,
    event_conditioned_rows,
    context_divergence,
    motif_verdict,
)
from .export import generate_report, write_run_outputs

# =============================================================================
# PUBLIC API
# =============================================================================
__all__ = [
    # Types
    "RunConfig",
    "RegionConfig",
    "GateConfig",
    "EventConfig",
    "MotifConfig",
    "HazardEvent",
    "SampleWindow",
    "EventSlot",
    "OracleSnapshot",
    "RunState",
    "RunResult",
    "MoveEdgeResult",
    "RepairActionResult",
    # Presets and config
    "CONDITIONS",
    "SCENARIO_QUADRANT_DEADLINE",
    "SCENARIO_STRIPE_GATED",
    "merge_overrides",
    "parse_set_items",
    "validate_config",
    # Constants
    "Outcome",
    "Window",
    "Scope",
    "Family",
    "RECEIPT_SCHEMA",
    "OP_STATE_COUNTS",
    # Oracle
    "PerturbSpec",
    "SimulationOracle",
    "resolve_move_indices",
    "ReferenceOracle",
    "oracle_from_config",
    # Components
    "build_region_mask",
    "build_matched_outside_mask",
    "build_masks",
    "hazard_gate_active",
    "calibrate_gate_gaps",
    "base_motif_classes",
    "op_motif_classes",
    "accumulate_transitions",
    "entropy_from_counts",
    "vocab_stats",
    "symmetry_gap",
    "coarse_ep_smoothed",
    "coarse_ep_decompose",
    "js_divergence",
    "spearman",
    "BootstrapEstimate",
    "bootstrap_mean_ci",
    "bootstrap_diff_ci",
    # Runs
    "run_events",
    "run_move_edges",
    "run_repair_actions",
    "run_seeds",
    "run_configs",
    # Aggregation and export
    "condition_summary",
    "condition_ci",
    "diff_ci",
    "event_conditioned_rows",
    "context_divergence",
    "motif_verdict",
    "generate_report",
    "write_run_outputs",
]
