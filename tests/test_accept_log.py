"""
tests/test_accept_log.py - Accept-Log Run Tests

Validates recovery-window filtering, repair action motifs and the two
accept-log driven runs.
"""

from collections import Counter

import numpy as np
import pytest

from receipts import StopRule

from harness.accept_log import (
    drive_with_accept_log,
    entry_scope,
    recovery_period_start,
    repair_action_motif,
    run_move_edges,
    run_repair_actions,
    top_edges,
)
from harness.reference_oracle import OPK, ReferenceOracle
from harness.regions import RegionMasks
from harness.types_config import SCENARIO_QUADRANT_DEADLINE, condition_params, merge_overrides

SHORT = merge_overrides(SCENARIO_QUADRANT_DEADLINE, {
    "steps": 20_000,
    "events.event_every": 10_000,
    "events.deadline": 5_000,
})


class RecordingOracle(ReferenceOracle):
    """Reference oracle that records the oracle time of every perturbation."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.perturbed_at = []

    def perturb(self, spec):
        self.perturbed_at.append(self.time)
        super().perturb(spec)


class TestRecoveryPeriod:
    """Mapping log times to event periods."""

    def test_inside_window(self):
        assert recovery_period_start(60_000, 50_000, 25_000, 75_000) == 50_000, "10000 into the window"

    def test_after_window(self):
        assert recovery_period_start(76_000, 50_000, 25_000, 75_000) is None, "Past the deadline"

    def test_before_first_event(self):
        assert recovery_period_start(40_000, 50_000, 25_000, 75_000) is None, "No period before the first event"

    def test_past_last_event(self):
        assert recovery_period_start(100_000, 50_000, 25_000, 75_000) is None, "Period start beyond the last event"

    def test_window_is_half_open(self):
        assert recovery_period_start(74_999, 50_000, 25_000, 75_000) == 50_000
        assert recovery_period_start(75_000, 50_000, 25_000, 75_000) is None, "t - t0 == deadline is excluded"


class TestRepairActionMotif:
    """Action motif ids."""

    def test_base_repair(self):
        assert repair_action_motif(0, 0, 2, 3, 0, 9, 2) == 11, "kdir 3 * 3 + mismatch 2"

    def test_meta_repair(self):
        assert repair_action_motif(1, 0, 2, 3, 0, 9, 2) == 38, "27 + 0 * 27 + 11"
        assert repair_action_motif(1, 1, 0, 0, 0, 9, 2) == 54, "27 + 1 * 27 + 0"

    def test_meta_layer_out_of_range(self):
        assert repair_action_motif(1, 2, 0, 0, 0, 9, 2) is None, "Layer beyond meta_layers"

    def test_kdir_wraps(self):
        assert repair_action_motif(0, 0, 1, 10, 0, 9, 2) == 4, "kdir taken mod R"


class TestHelpers:
    """Scope lookup and edge ranking."""

    def test_entry_scope(self):
        masks = RegionMasks(hazard=np.array([True, False, False]), outside=np.array([False, True, False]))
        assert [entry_scope(i, masks) for i in range(3)] == ["hazard", "outside", None]

    def test_top_edges(self):
        ranked = top_edges(Counter({(0, 1): 2, (1, 0): 5, (2, 0): 2}), {(1, 0): 1.5}, limit=2)
        assert [(r["from"], r["to"]) for r in ranked] == [(1, 0), (0, 1)], "By count, then edge"
        assert ranked[0]["ep_sum"] == 1.5 and ranked[1]["ep_sum"] == 0.0, "EP sums attached"


class TestDriver:
    """Chunked stepping with hazard injection."""

    def test_events_and_time_shift(self):
        config = merge_overrides(SHORT, {"burn_in": 3_000})
        oracle = RecordingOracle(condition_params(config), seed=config.seed)
        times = []
        drive_with_accept_log(config, oracle, 1 << OPK, 15_000,
                              lambda rows: times.extend(r.time for r in rows), chunk_steps=4_000)
        assert oracle.perturbed_at == [13_000], "One event at 10000 after a 3000 step burn-in"
        assert times and min(times) >= 1 and max(times) <= 20_000, "Log times are relative to the run start"
        assert times == sorted(times), "Rows are delivered in log order"

    def test_steps_off_the_event_grid(self):
        """Event slots past max_event_start are skipped and stepping continues to the end."""
        config = merge_overrides(SHORT, {"steps": 23_000, "burn_in": 0})
        oracle = RecordingOracle(condition_params(config), seed=config.seed)
        drive_with_accept_log(config, oracle, 1 << OPK, 18_000, lambda rows: None, chunk_steps=4_000)
        assert oracle.perturbed_at == [10_000], "The 20000 slot lies past max_event_start"
        assert oracle.time == 23_000, f"Stopped at {oracle.time}"

    @pytest.mark.parametrize("runner", [run_move_edges, run_repair_actions])
    def test_runs_finish_off_the_event_grid(self, runner):
        result = runner(merge_overrides(SHORT, {"steps": 23_000}))
        assert result.summary["steps"] == 23_000, f"{result.summary}"

    def test_overflow(self):
        with pytest.raises(StopRule, match="ACCEPT_LOG_OVERFLOW"):
            run_move_edges(SHORT, log_cap=10)


class TestMoveEdges:
    """Operator token move edges."""

    @pytest.fixture(scope="class")
    def result(self):
        return run_move_edges(merge_overrides(SHORT, {"condition": "C"}))

    def test_counts(self, result):
        s = result.summary
        assert s["total_moves_hazard"] > 0 and s["total_moves_outside"] > 0, f"Moves expected: {s}"
        assert s["total_moves_hazard"] == sum(result.edge_counts["hazard"].values()), "Totals match edges"
        assert s["r_count"] == 9 and s["unique_edges_hazard"] <= 72, "At most 9 * 8 directed edges"

    def test_no_self_edges(self, result):
        for scope in ("hazard", "outside"):
            assert all(a != b for a, b in result.edge_counts[scope]), "Token moves change offset"

    def test_families(self, result):
        fam = result.family_counts["hazard"]
        assert sum(fam.values()) == result.summary["total_moves_hazard"], "Every move has a family"

    def test_receipt(self, result):
        assert result.receipts[0]["kind"] == "move_edges", f"{result.receipts}"


class TestRepairActions:
    """Repair action motifs."""

    @pytest.fixture(scope="class")
    def result(self):
        return run_repair_actions(SCENARIO_QUADRANT_DEADLINE)

    def test_hazard_only(self, result):
        """Without noise only corrupted hazard cells need repair."""
        s = result.summary
        assert s["total_moves_hazard"] > 0, "Repairs expected after the event"
        assert s["total_moves_outside"] == 0, "Outside cells never diverge"

    def test_motif_range(self, result):
        r = result.summary["r_count"]
        limit = r * 3 * (1 + result.summary["meta_layers"])
        assert all(0 <= m < limit for m in result.motif_counts["hazard"]), "Motif ids in range"

    def test_transitions(self, result):
        n = sum(result.motif_counts["hazard"].values())
        assert sum(result.transitions["hazard"].values()) == n - 1, "Consecutive actions form n - 1 transitions"
