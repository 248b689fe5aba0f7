"""
harness/types_state.py - Mutable Per-Run State

Hazard events, their sample windows, oracle snapshots and the run state that
the main loop mutates. Everything here is owned by exactly one run.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

import numpy as np

from receipts import StopRule

from .constants import CHANNELS, Family, Outcome, Scope, Window

Channel = Tuple[Family, Scope]


# =============================================================================
# ORACLE SNAPSHOT
# =============================================================================

@dataclass(frozen=True)
class OracleSnapshot:
    """Cumulative oracle counters at one simulated time."""
    time: int
    accept_counts: Dict[str, int]
    ep_total: float
    ep_by_move: Dict[str, float]

    def delta(self, earlier: "OracleSnapshot") -> "OracleSnapshot":
        """Counters accumulated between `earlier` and this snapshot."""
        return OracleSnapshot(
            time=self.time - earlier.time,
            accept_counts={k: v - earlier.accept_counts.get(k, 0) for k, v in self.accept_counts.items()},
            ep_total=self.ep_total - earlier.ep_total,
            ep_by_move={k: v - earlier.ep_by_move.get(k, 0.0) for k, v in self.ep_by_move.items()},
        )


# =============================================================================
# SAMPLE WINDOW
# =============================================================================

def _channel_counters() -> Dict[Channel, Counter]:
    return {ch: Counter() for ch in CHANNELS}


@dataclass
class SampleWindow:
    """Motif counts, transitions and EP deltas for one window of one event.

    Interval conventions relative to the event's trigger time t:
    pre = [t - w_pre, t), recovery = [t, t + deadline],
    tail = (t + deadline, t + deadline + tail_window].
    """
    kind: Window
    start: int
    end: int
    counts: Dict[Channel, Counter] = field(default_factory=_channel_counters)
    transitions: Dict[Channel, Counter] = field(default_factory=_channel_counters)
    changed: Dict[Channel, int] = field(default_factory=lambda: {ch: 0 for ch in CHANNELS})
    compared: Dict[Channel, int] = field(default_factory=lambda: {ch: 0 for ch in CHANNELS})
    change_frac: Dict[Channel, float] = field(default_factory=lambda: {ch: 0.0 for ch in CHANNELS})
    ep: Dict[str, float] = field(default_factory=dict)
    samples: int = 0

    def contains(self, time: int) -> bool:
        if self.kind is Window.PRE:
            return self.start <= time < self.end
        if self.kind is Window.RECOVERY:
            return self.start <= time <= self.end
        return self.start < time <= self.end

    def add_ep(self, deltas: Dict[str, float]) -> None:
        for key, value in deltas.items():
            self.ep[key] = self.ep.get(key, 0.0) + value


# =============================================================================
# HAZARD EVENT
# =============================================================================

@dataclass
class HazardEvent:
    """One injected corruption. Terminal once outcome leaves PENDING."""
    event_id: int
    trigger_time: int
    region_index: int
    deadline: int
    outcome: Outcome = Outcome.PENDING
    recovery_elapsed: Optional[int] = None
    steps_to_outcome: Optional[int] = None
    start_snapshot: Optional[OracleSnapshot] = None
    end_snapshot: Optional[OracleSnapshot] = None

    @property
    def is_pending(self) -> bool:
        return self.outcome is Outcome.PENDING

    def resolve(self, outcome: Outcome, time: int, snapshot: Optional[OracleSnapshot] = None) -> None:
        """
        Move the event to a terminal outcome.

        Args:
            outcome: RECOVERED or MISSED
            time: Simulated time at which the outcome was decided
            snapshot: Oracle counters at that time

        Raises:
            StopRule: if the event is already resolved or outcome is PENDING
        """
        if not self.is_pending:
            raise StopRule(f"Event {self.event_id} already resolved as {self.outcome.value}")
        if outcome is Outcome.PENDING:
            raise StopRule(f"Event {self.event_id}: cannot resolve to pending")
        elapsed = time - self.trigger_time
        self.outcome = outcome
        self.steps_to_outcome = elapsed
        if outcome is Outcome.RECOVERED:
            self.recovery_elapsed = elapsed
        self.end_snapshot = snapshot


@dataclass
class EventSlot:
    """A scheduled trigger time with its windows; the event appears at trigger."""
    index: int
    t_event: int
    windows: Dict[Window, SampleWindow]
    event: Optional[HazardEvent] = None

    def windows_at(self, time: int) -> List[SampleWindow]:
        return [w for w in self.windows.values() if w.contains(time)]


# =============================================================================
# RUN STATE
# =============================================================================

@dataclass
class ChannelSeries:
    """Per-sample vocab statistics for one channel across the whole run."""
    entropy: List[float] = field(default_factory=list)
    v_eff: List[float] = field(default_factory=list)
    top_mass: List[float] = field(default_factory=list)
    change_frac: List[float] = field(default_factory=list)
    unique_states: Set[int] = field(default_factory=set)


@dataclass
class RunState:
    """Mutable state of one run. Created by the main loop, discarded at end."""
    t: int = 0
    slots: List[EventSlot] = field(default_factory=list)
    next_slot: int = 0

    # Previous gated sample; None after a gate-closed gap
    prev_base: Optional[np.ndarray] = None
    prev_op: Optional[np.ndarray] = None
    prev_snapshot: Optional[OracleSnapshot] = None
    gate_open: bool = True
    gate_samples: int = 0
    gate_closed_samples: int = 0

    # Report tick series
    report_times: List[int] = field(default_factory=list)
    err: List[float] = field(default_factory=list)
    err_adj: List[float] = field(default_factory=list)
    sdiff: List[float] = field(default_factory=list)
    good: List[bool] = field(default_factory=list)

    # Run-level motif accumulators
    series: Dict[Channel, ChannelSeries] = field(default_factory=lambda: {ch: ChannelSeries() for ch in CHANNELS})
    transitions: Dict[Channel, Counter] = field(default_factory=_channel_counters)
    edge_ep: Dict[Family, Dict[Tuple[int, int], Dict[str, float]]] = field(
        default_factory=lambda: {Family.BASE: {}, Family.OP: {}})
    ep_per_change: Dict[Family, List[float]] = field(
        default_factory=lambda: {Family.BASE: [], Family.OP: []})
    # Hazard entropy per interface, one row per open sample
    interface_entropy: Dict[Family, List[List[float]]] = field(
        default_factory=lambda: {Family.BASE: [], Family.OP: []})
    since_event: List[float] = field(default_factory=list)
    last_event_time: Optional[int] = None

    receipts: List[dict] = field(default_factory=list)

    @property
    def events(self) -> List[HazardEvent]:
        return [s.event for s in self.slots if s.event is not None]

    @property
    def pending(self) -> List[HazardEvent]:
        return [e for e in self.events if e.is_pending]
