"""
tests/test_export.py - Row Building and Writer Tests

Validates event and edge rows, the JSONL/JSON/CSV writers, summary flattening
and the per-run output layout.
"""

import csv
import json
import os
from collections import Counter

from harness.constants import Family, Outcome, Window
from harness.events import build_windows
from harness.export import (
    EDGE_COLUMNS,
    build_edge_rows,
    build_event_row,
    flatten_summary,
    pairs_to_counter,
    write_csv,
    write_json,
    write_jsonl,
    write_run_outputs,
)
from harness.motifs import table_to_pairs
from harness.types_config import RunConfig
from harness.types_result import RunResult
from harness.types_state import EventSlot, HazardEvent, OracleSnapshot


def resolved_slot() -> EventSlot:
    config = RunConfig()
    slot = EventSlot(index=0, t_event=100, windows=build_windows(100, config.events))
    slot.event = HazardEvent(
        event_id=0, trigger_time=100, region_index=2, deadline=config.events.deadline,
        start_snapshot=OracleSnapshot(100, {"P5Base": 1, "OpK": 2}, 1.0, {"P5Base": 0.5, "OpK": 0.5}),
    )
    end = OracleSnapshot(140, {"P5Base": 5, "OpK": 3}, 4.0, {"P5Base": 2.5, "OpK": 1.5})
    slot.event.resolve(Outcome.RECOVERED, 140, end)
    slot.windows[Window.RECOVERY].samples = 2
    return slot


class TestEventRow:
    """Flat event records."""

    def test_outcome_fields(self):
        row = build_event_row(resolved_slot(), RunConfig(seed=4, condition="B"))
        assert (row["seed"], row["condition"], row["outcome"]) == (4, "B", "recovered"), f"{row}"
        assert row["success"] is True and row["miss"] is False and row["recovery"] == 40, "Outcome flags"
        assert row["rec_samples"] == 2 and row["recovery_samples"] == 2, "Recovery samples"

    def test_move_accounting(self):
        row = build_event_row(resolved_slot(), RunConfig())
        assert row["repair_accepted_to_outcome"] == 4, "P5Base 5 - 1"
        assert row["opk_accepted_to_outcome"] == 1, "OpK 3 - 2"
        assert row["ep_repair_to_outcome"] == 2.0 and row["ep_total_to_outcome"] == 3.0, "EP deltas"

    def test_window_keys(self):
        row = build_event_row(resolved_slot(), RunConfig())
        for prefix in ("pre", "rec", "tail"):
            assert f"{prefix}_op_hazard_counts" in row and f"{prefix}_base_outside_trans" in row, prefix
            assert row[f"{prefix}_ep_total"] == 0.0, "No EP accumulated"
        json.dumps(row)


class TestEdgeRows:
    """Hazard transition edges."""

    def test_rows(self):
        transitions = {Family.BASE: Counter({(1, 2): 3, (2, 1): 1}), Family.OP: Counter()}
        edge_ep = {Family.BASE: {(1, 2): {"total": 3.0, "repair": 1.5, "opk": 0.0}}, Family.OP: {}}
        rows = build_edge_rows(transitions, edge_ep, RunConfig(seed=2))
        assert [(r["from"], r["to"]) for r in rows] == [(1, 2), (2, 1)], "Sorted edges"
        first = rows[0]
        assert first["count"] == 3 and first["count_rev"] == 1, "Forward and reverse counts"
        assert first["ep_total_per_trans"] == 1.0 and first["ep_repair_sum"] == 1.5, "EP attribution"
        assert rows[1]["ep_total_sum"] == 0.0, "Edges without EP get 0"
        assert first["coarse_ep_edge"] > 0 > rows[1]["coarse_ep_edge"], "Dominant direction carries EP"
        assert set(first) == set(EDGE_COLUMNS), "Rows match the CSV columns"


class TestPairs:
    """Count-map key encoding."""

    def test_inverse(self):
        table = Counter({(1, 2): 3, (4, 0): 1})
        assert pairs_to_counter(table_to_pairs(table)) == table, "Transition keys"
        assert pairs_to_counter({"7": 2}) == Counter({7: 2}), "Scalar keys"


class TestWriters:
    """File writers."""

    def test_jsonl(self, tmp_path):
        path = write_jsonl([{"a": 1}, {"b": [1, 2]}], str(tmp_path / "x" / "rows.jsonl"))
        with open(path) as fh:
            assert [json.loads(line) for line in fh] == [{"a": 1}, {"b": [1, 2]}], "Round trip"

    def test_json(self, tmp_path):
        path = write_json({"b": 1, "a": None}, str(tmp_path / "s.json"))
        with open(path) as fh:
            assert json.load(fh) == {"a": None, "b": 1}

    def test_csv(self, tmp_path):
        rows = [{"a": 1, "b": None, "c": {"k": 1}}, {"a": 2, "b": 0.5, "c": []}]
        path = write_csv(rows, str(tmp_path / "t.csv"))
        with open(path, newline="") as fh:
            got = list(csv.DictReader(fh))
        assert got[0] == {"a": "1", "b": "", "c": '{"k": 1}'}, f"None is blank, dicts are JSON: {got[0]}"
        assert got[1]["b"] == "0.5"

    def test_csv_empty(self, tmp_path):
        path = write_csv([], str(tmp_path / "empty.csv"), ["x", "y"])
        with open(path) as fh:
            assert fh.read().strip() == "x,y", "Header only"

    def test_flatten_summary(self):
        flat = flatten_summary({"a": {"mean": 1, "std": 0}, "b": [1, 2], "c": 3})
        assert flat == {"a_mean": 1, "a_std": 0, "b": "1;2", "c": 3}, f"{flat}"


class TestRunOutputs:
    """Per-run file layout."""

    def test_layout(self, tmp_path):
        result = RunResult(
            config=RunConfig(seed=3, condition="C"),
            slots=(),
            event_rows=[{"event_idx": 0}],
            edge_rows=[],
            summary={"seed": 3},
            flags=[],
            receipts=[{"receipt_type": "run_summary"}],
            merkle_root="",
        )
        paths = write_run_outputs(result, str(tmp_path))
        assert set(paths) == {"events", "summary", "edges", "receipts"}, f"{paths}"
        for path in paths.values():
            assert os.path.isfile(path), f"Missing {path}"
        assert paths["events"].endswith(os.path.join("C", "seed_3_events.jsonl")), paths["events"]
