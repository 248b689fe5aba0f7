"""
harness/events.py - Event Lifecycle Tracker

Schedules hazard events, builds their pre/recovery/tail windows, triggers
them against the oracle and applies the pending -> recovered | missed state
machine on report ticks.
"""

from typing import List, Optional

from receipts import emit_receipt

from .constants import PERTURB_SEED_STRIDE, Outcome, Window
from .oracle import PerturbSpec
from .types_config import EventConfig, RunConfig
from .types_state import EventSlot, HazardEvent, OracleSnapshot, SampleWindow


def schedule_event_times(steps: int, event_every: int, deadline: int) -> List[int]:
    """Multiples of event_every that leave a full deadline before the run ends."""
    times = []
    t = event_every
    while t + deadline <= steps:
        times.append(t)
        t += event_every
    return times


def build_windows(t_event: int, events: EventConfig) -> dict:
    deadline = events.deadline
    return {
        Window.PRE: SampleWindow(Window.PRE, t_event - events.pre_window, t_event),
        Window.RECOVERY: SampleWindow(Window.RECOVERY, t_event, t_event + deadline),
        Window.TAIL: SampleWindow(Window.TAIL, t_event + deadline, t_event + deadline + events.tail_window),
    }


def schedule_slots(config: RunConfig) -> List[EventSlot]:
    ev = config.events
    return [
        EventSlot(index=i, t_event=t, windows=build_windows(t, ev))
        for i, t in enumerate(schedule_event_times(config.steps, ev.event_every, ev.deadline))
    ]


def perturb_seed(run_seed: int, t_event: int) -> int:
    return run_seed * PERTURB_SEED_STRIDE + t_event


def make_perturb_spec(config: RunConfig, t_event: int) -> PerturbSpec:
    return PerturbSpec.for_region(
        config.region,
        frac=config.events.corrupt_frac,
        mode=config.events.perturb_mode,
        seed=perturb_seed(config.seed, t_event),
    )


def trigger_event(slot: EventSlot, config: RunConfig, oracle, snapshot_fn) -> dict:
    """
    Perturb the oracle and create the slot's HazardEvent.

    Args:
        slot: Scheduled slot whose time has been reached
        config: Run configuration
        oracle: SimulationOracle
        snapshot_fn: Callable returning the post-perturbation OracleSnapshot

    Returns:
        hazard_injected receipt
    """
    spec = make_perturb_spec(config, slot.t_event)
    oracle.perturb(spec)
    slot.event = HazardEvent(
        event_id=slot.index,
        trigger_time=slot.t_event,
        region_index=config.region.region_index,
        deadline=config.events.deadline,
        start_snapshot=snapshot_fn(),
    )
    return emit_receipt("hazard_injected", {
        "seed": config.seed,
        "condition": config.condition,
        "event_id": slot.index,
        "t_event": slot.t_event,
        "perturb": spec.to_dict(),
    })


def update_on_report(event: HazardEvent, time: int, good: bool,
                     snapshot: Optional[OracleSnapshot] = None) -> Optional[Outcome]:
    """
    Apply one report tick to a pending event.

    Missed when elapsed exceeds the deadline; otherwise recovered on the
    first good tick. Ticks before the trigger are ignored.

    Returns:
        The new outcome if the event was resolved by this tick, else None
    """
    if not event.is_pending or time < event.trigger_time:
        return None
    elapsed = time - event.trigger_time
    if elapsed > event.deadline:
        event.resolve(Outcome.MISSED, time, snapshot)
        return Outcome.MISSED
    if good:
        event.resolve(Outcome.RECOVERED, time, snapshot)
        return Outcome.RECOVERED
    return None


def finalize_pending(events: List[HazardEvent], snapshot: Optional[OracleSnapshot] = None) -> List[HazardEvent]:
    """Force every still-pending event to missed at its deadline."""
    forced = []
    for event in events:
        if event.is_pending:
            event.resolve(Outcome.MISSED, event.trigger_time + event.deadline, snapshot)
            forced.append(event)
    return forced


def outcome_receipt(event: HazardEvent, config: RunConfig) -> dict:
    return emit_receipt("event_outcome", {
        "seed": config.seed,
        "condition": config.condition,
        "event_id": event.event_id,
        "t_event": event.trigger_time,
        "outcome": event.outcome.value,
        "recovery_elapsed": event.recovery_elapsed,
        "steps_to_outcome": event.steps_to_outcome,
    })
