"""
tests/test_events.py - Event Lifecycle Tests

Validates scheduling, window intervals, hazard triggering and the
pending -> recovered | missed state machine.
"""

import numpy as np
import pytest

from receipts import StopRule

from harness.constants import Outcome, Window
from harness.events import (
    build_windows,
    finalize_pending,
    outcome_receipt,
    perturb_seed,
    schedule_event_times,
    schedule_slots,
    trigger_event,
    update_on_report,
)
from harness.oracle import resolve_move_indices, take_snapshot
from harness.reference_oracle import oracle_from_config
from harness.types_config import SCENARIO_QUADRANT_DEADLINE, EventConfig
from harness.types_state import HazardEvent, SampleWindow


def make_event(trigger=100, deadline=20) -> HazardEvent:
    return HazardEvent(event_id=0, trigger_time=trigger, region_index=2, deadline=deadline)


class TestScheduling:
    """Event times and windows."""

    def test_full_deadline_required(self):
        assert schedule_event_times(100, 30, 10) == [30, 60, 90], "90 + 10 still fits in 100 steps"
        assert schedule_event_times(100, 30, 11) == [30, 60], "90 + 11 overruns the run"

    def test_no_events(self):
        assert schedule_event_times(40, 50, 10) == [], "First event after the run end"

    def test_preset_has_one_event(self):
        slots = schedule_slots(SCENARIO_QUADRANT_DEADLINE)
        assert [s.t_event for s in slots] == [50_000], f"Expected one event at 50000, got {slots}"
        assert all(s.event is None for s in slots), "Events appear only when triggered"

    def test_window_bounds(self):
        windows = build_windows(100, EventConfig(deadline=20, tail_window=50))
        pre, rec, tail = windows[Window.PRE], windows[Window.RECOVERY], windows[Window.TAIL]
        assert (pre.start, pre.end) == (80, 100), "Pre window is min(50000, deadline) long"
        assert (rec.start, rec.end) == (100, 120), "Recovery spans the deadline"
        assert (tail.start, tail.end) == (120, 170), "Tail follows the recovery window"

    def test_explicit_pre_window(self):
        windows = build_windows(100, EventConfig(deadline=20, w_pre=5))
        assert windows[Window.PRE].start == 95, "w_pre overrides the default"


class TestWindowMembership:
    """Interval conventions."""

    def test_pre_half_open(self):
        w = SampleWindow(Window.PRE, 80, 100)
        assert w.contains(80) and w.contains(99) and not w.contains(100), "pre = [start, end)"

    def test_recovery_closed(self):
        w = SampleWindow(Window.RECOVERY, 100, 120)
        assert w.contains(100) and w.contains(120) and not w.contains(121), "recovery = [start, end]"

    def test_tail_left_open(self):
        w = SampleWindow(Window.TAIL, 120, 170)
        assert not w.contains(120) and w.contains(121) and w.contains(170), "tail = (start, end]"

    def test_add_ep(self):
        w = SampleWindow(Window.TAIL, 0, 1)
        w.add_ep({"total": 1.5})
        w.add_ep({"total": 0.5, "opk": 1.0})
        assert w.ep == {"total": 2.0, "opk": 1.0}, f"EP not accumulated: {w.ep}"


class TestUpdateOnReport:
    """Outcome state machine."""

    def test_before_trigger_ignored(self):
        event = make_event()
        assert update_on_report(event, 90, True) is None and event.is_pending, "Tick before trigger"

    def test_recovered_at_deadline(self):
        """Elapsed equal to the deadline may still recover."""
        event = make_event()
        assert update_on_report(event, 110, False) is None, "Bad tick leaves event pending"
        assert update_on_report(event, 120, True) is Outcome.RECOVERED, "Good tick at deadline"
        assert event.recovery_elapsed == 20 and event.steps_to_outcome == 20, f"{event}"

    def test_missed_after_deadline(self):
        event = make_event()
        assert update_on_report(event, 125, True) is Outcome.MISSED, "Past the deadline is a miss even if good"
        assert event.recovery_elapsed is None and event.steps_to_outcome == 25, f"{event}"

    def test_terminal(self):
        event = make_event()
        update_on_report(event, 105, True)
        assert update_on_report(event, 110, False) is None, "Resolved events ignore later ticks"
        with pytest.raises(StopRule):
            event.resolve(Outcome.MISSED, 130)

    def test_cannot_resolve_pending(self):
        with pytest.raises(StopRule):
            make_event().resolve(Outcome.PENDING, 110)

    def test_finalize_pending(self):
        done = make_event()
        update_on_report(done, 100, True)
        open_event = make_event(trigger=200, deadline=30)
        forced = finalize_pending([done, open_event])
        assert forced == [open_event], "Only pending events are forced"
        assert open_event.outcome is Outcome.MISSED and open_event.steps_to_outcome == 30, "Forced at deadline"


class TestTriggerEvent:
    """Hazard injection against the reference oracle."""

    def test_trigger(self):
        config = SCENARIO_QUADRANT_DEADLINE
        oracle = oracle_from_config(config)
        moves = resolve_move_indices(oracle.move_labels())
        slot = schedule_slots(config)[0]
        before = oracle.meta_fields()[0]

        receipt = trigger_event(slot, config, oracle, lambda: take_snapshot(oracle, moves, slot.t_event))

        assert receipt["receipt_type"] == "hazard_injected", f"Wrong receipt {receipt['receipt_type']}"
        assert receipt["perturb"]["seed"] == perturb_seed(1, 50_000) == 51_000, "Perturb seed is seed * 1000 + t"
        assert slot.event is not None and slot.event.is_pending, "Slot must hold a pending event"
        assert slot.event.start_snapshot.time == 50_000, "Start snapshot taken at trigger"
        assert np.count_nonzero(oracle.meta_fields()[0] != before) > 0, "Trigger must corrupt meta layer 0"

    def test_outcome_receipt(self):
        event = make_event()
        update_on_report(event, 110, True)
        r = outcome_receipt(event, SCENARIO_QUADRANT_DEADLINE)
        assert r["receipt_type"] == "event_outcome" and r["outcome"] == "recovered", f"{r}"
        assert r["recovery_elapsed"] == 10, "Recovery elapsed in receipt"
