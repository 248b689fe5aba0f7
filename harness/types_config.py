"""
harness/types_config.py - Run Configuration Dataclasses and Presets

Immutable configuration value objects for hazard/deadline runs, plus the
override merge that is the only way string-valued parameters enter a config.
Frozen dataclasses; validation happens at the boundary (merge/validate).
"""

from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Iterable, Mapping, Optional

from receipts import StopRule

from .constants import (
    AXIS_POLICIES, AXIS_POLICY_FRACTION, DEFAULT_BURN_IN, DEFAULT_CLOCK_K,
    DEFAULT_CORRUPT_FRAC, DEFAULT_DEADLINE, DEFAULT_ERR_GOOD,
    DEFAULT_EVENT_EVERY, DEFAULT_GATE_CHECK_EVERY, DEFAULT_GRID_SIZE,
    DEFAULT_OP_BINS_MODE, DEFAULT_PERTURB_MODE, DEFAULT_REGION_INDEX,
    DEFAULT_REGION_TYPE, DEFAULT_REPORT_EVERY, DEFAULT_SDIFF_GOOD,
    DEFAULT_STEPS, DEFAULT_TAIL_WINDOW, ERR_MODE_BITS, ERR_MODES, GATE_MODE_CLOCK_K, GATE_MODES, GRACE_FRACTION,
    N_QUADRANTS, OP_STATE_COUNTS, OUTSIDE_SEED_OFFSET, PERTURB_MODES, REGION_TYPES, TOP_MASS_N,
    W_PRE_MAX,
)


@dataclass(frozen=True)
class RegionConfig:
    """Which part of the grid is hit by hazard events."""
    region_type: str = DEFAULT_REGION_TYPE
    region_index: int = DEFAULT_REGION_INDEX
    span: int = 1
    bins: int = DEFAULT_CLOCK_K  # stripe count; must equal gate.clock_k for clock-gated stripes


@dataclass(frozen=True)
class GateConfig:
    """Gate conditioning of motif sampling on the oracle clock."""
    mode: int = 0
    conditioned: bool = True
    clock_k: int = DEFAULT_CLOCK_K
    span: int = 1
    check_every: int = DEFAULT_GATE_CHECK_EVERY


@dataclass(frozen=True)
class EventConfig:
    """Hazard schedule, deadline and goodness thresholds."""
    event_every: int = DEFAULT_EVENT_EVERY
    deadline: int = DEFAULT_DEADLINE
    report_every: int = DEFAULT_REPORT_EVERY
    corrupt_frac: float = DEFAULT_CORRUPT_FRAC
    perturb_mode: str = DEFAULT_PERTURB_MODE
    err_good: float = DEFAULT_ERR_GOOD
    sdiff_good: float = DEFAULT_SDIFF_GOOD
    err_mode: str = ERR_MODE_BITS
    tail_window: int = DEFAULT_TAIL_WINDOW
    w_pre: Optional[int] = None
    grace_fraction: float = GRACE_FRACTION

    @property
    def pre_window(self) -> int:
        if self.w_pre is not None:
            return self.w_pre
        return min(W_PRE_MAX, self.deadline)

    @property
    def grace_window(self) -> int:
        return max(0, int(self.grace_fraction * self.deadline))


@dataclass(frozen=True)
class MotifConfig:
    """Motif encoding choices. Changing them never changes event outcomes."""
    enabled: bool = True
    op_bins_mode: int = DEFAULT_OP_BINS_MODE
    axis_policy: str = AXIS_POLICY_FRACTION
    top_n: int = TOP_MASS_N

    @property
    def op_alphabet_size(self) -> int:
        return OP_STATE_COUNTS[self.op_bins_mode]


@dataclass(frozen=True)
class RunConfig:
    """One seed, one condition, one oracle instance."""
    seed: int = 1
    steps: int = DEFAULT_STEPS
    grid_size: int = DEFAULT_GRID_SIZE
    burn_in: int = DEFAULT_BURN_IN
    condition: str = "A"
    region: RegionConfig = field(default_factory=RegionConfig)
    gate: GateConfig = field(default_factory=GateConfig)
    events: EventConfig = field(default_factory=EventConfig)
    motif: MotifConfig = field(default_factory=MotifConfig)
    oracle_params: Mapping[str, Any] = field(default_factory=dict)

    @property
    def outside_seed(self) -> int:
        return self.seed + OUTSIDE_SEED_OFFSET


# =============================================================================
# CONDITIONS (oracle parameter overrides)
# =============================================================================

CONDITION_A = {"op_coupling_on": 0, "op_drive_on_k": 0}  # legacy repair only
CONDITION_B = {"op_coupling_on": 1, "op_drive_on_k": 0}  # coupling, no operator drive
CONDITION_C = {"op_coupling_on": 1, "op_drive_on_k": 1}  # coupling with operator drive

CONDITIONS = {
    "A": CONDITION_A,
    "B": CONDITION_B,
    "C": CONDITION_C,
}


def condition_params(config: RunConfig) -> Dict[str, Any]:
    """Oracle parameters for a run: condition overrides, then explicit params."""
    if config.condition not in CONDITIONS:
        raise StopRule(f"Unknown condition {config.condition!r}; expected one of {sorted(CONDITIONS)}")
    params = {"grid_size": config.grid_size, "clock_k": config.gate.clock_k}
    params.update(CONDITIONS[config.condition])
    params.update(config.oracle_params)
    return params


# =============================================================================
# SCENARIO PRESETS
# =============================================================================

# Reference oracle levels run 0..level_max per cell, so a 0.2 corruption of a
# region moves sdiff by 0.2 or more; the threshold sits below that.
SCENARIO_SDIFF_GOOD = 0.05

SCENARIO_QUADRANT_DEADLINE = RunConfig(
    seed=1,
    steps=100_000,
    grid_size=16,
    region=RegionConfig(region_type="quadrant", region_index=2),
    events=EventConfig(event_every=50_000, deadline=25_000, corrupt_frac=0.2,
                       sdiff_good=SCENARIO_SDIFF_GOOD),
)

SCENARIO_STRIPE_GATED = RunConfig(
    seed=1,
    steps=400_000,
    grid_size=32,
    region=RegionConfig(region_type="stripe", region_index=4, span=1, bins=8),
    gate=GateConfig(mode=1, conditioned=True, clock_k=8, span=1),
    events=EventConfig(event_every=50_000, deadline=25_000, corrupt_frac=0.2,
                       sdiff_good=SCENARIO_SDIFF_GOOD),
)


# =============================================================================
# VALIDATION
# =============================================================================

def validate_config(config: RunConfig) -> RunConfig:
    """
    Check ranges of every config value.

    Args:
        config: RunConfig to check

    Returns:
        The same config, for chaining

    Raises:
        StopRule: on the first invalid value
    """
    if config.steps <= 0:
        raise StopRule(f"Invalid steps {config.steps}: must be > 0")
    if config.grid_size <= 1:
        raise StopRule(f"Invalid grid_size {config.grid_size}: must be > 1")
    if config.burn_in < 0:
        raise StopRule(f"Invalid burn_in {config.burn_in}: must be >= 0")

    region = config.region
    if region.region_type not in REGION_TYPES:
        raise StopRule(f"Invalid region_type {region.region_type!r}: expected {REGION_TYPES}")
    if region.bins <= 0:
        raise StopRule(f"Invalid stripe bins {region.bins}: must be > 0")
    limit = N_QUADRANTS if region.region_type == "quadrant" else region.bins
    if not 0 <= region.region_index < limit:
        raise StopRule(f"Invalid region_index {region.region_index} for {region.region_type} (0..{limit - 1})")

    gate = config.gate
    if gate.mode not in GATE_MODES:
        raise StopRule(f"Invalid gate mode {gate.mode}: expected {GATE_MODES}")
    if gate.clock_k <= 0 or gate.check_every <= 0 or gate.span < 0:
        raise StopRule(f"Invalid gate parameters: {gate}")
    if region.region_type == "stripe" and gate.mode == GATE_MODE_CLOCK_K and region.bins != gate.clock_k:
        raise StopRule(f"Stripe bins {region.bins} must equal gate clock_k {gate.clock_k} when gating on the clock")

    ev = config.events
    if ev.event_every <= 0 or ev.deadline <= 0 or ev.report_every <= 0:
        raise StopRule(f"Invalid event schedule: {ev}")
    if not 0.0 <= ev.corrupt_frac <= 1.0:
        raise StopRule(f"Invalid corrupt_frac {ev.corrupt_frac}: must be in [0, 1]")
    if ev.perturb_mode not in PERTURB_MODES:
        raise StopRule(f"Invalid perturb_mode {ev.perturb_mode!r}: expected {PERTURB_MODES}")
    if ev.err_mode not in ERR_MODES:
        raise StopRule(f"Invalid err_mode {ev.err_mode!r}: expected {ERR_MODES}")
    if ev.tail_window < 0 or (ev.w_pre is not None and ev.w_pre < 0):
        raise StopRule(f"Invalid window lengths: {ev}")

    motif = config.motif
    if motif.op_bins_mode not in OP_STATE_COUNTS:
        raise StopRule(f"Invalid op_bins_mode {motif.op_bins_mode}: expected {sorted(OP_STATE_COUNTS)}")
    if motif.axis_policy not in AXIS_POLICIES:
        raise StopRule(f"Invalid axis_policy {motif.axis_policy!r}: expected {AXIS_POLICIES}")

    if config.condition not in CONDITIONS:
        raise StopRule(f"Unknown condition {config.condition!r}")
    return config


# =============================================================================
# OVERRIDES
# =============================================================================

_SECTIONS = ("region", "gate", "events", "motif")


def _coerce(current: Any, raw: Any, key: str) -> Any:
    """Coerce an override to the type of the value it replaces."""
    if not isinstance(raw, str):
        return raw
    text = raw.strip()
    try:
        if isinstance(current, bool):
            if text.lower() in ("1", "true", "yes", "on"):
                return True
            if text.lower() in ("0", "false", "no", "off"):
                return False
            raise ValueError(text)
        if isinstance(current, int):
            value = float(text)
            if not value.is_integer():
                raise ValueError(text)
            return int(value)
        if isinstance(current, float):
            return float(text)
        if isinstance(current, str):
            return text
        # Optional fields and free-form oracle params: numbers first
        value = float(text)
        return int(value) if value.is_integer() else value
    except ValueError:
        raise StopRule(f"Override {key}={raw!r} cannot be coerced to {type(current).__name__}")


def _field_names(obj: Any) -> Iterable[str]:
    return [f.name for f in fields(obj)]


def _apply_override(config: RunConfig, key: str, raw: Any) -> RunConfig:
    if key.startswith("oracle."):
        name = key[len("oracle."):]
        params = dict(config.oracle_params)
        params[name] = _coerce(params.get(name), raw, key)
        return replace(config, oracle_params=params)

    if "." in key:
        section, name = key.split(".", 1)
        if section not in _SECTIONS:
            raise StopRule(f"Unknown override section {section!r} in {key!r}")
        sub = getattr(config, section)
        if name not in _field_names(sub):
            raise StopRule(f"Unknown override key {key!r}")
        value = _coerce(getattr(sub, name), raw, key)
        return replace(config, **{section: replace(sub, **{name: value})})

    top_level = [n for n in _field_names(config) if n not in _SECTIONS and n != "oracle_params"]
    if key in top_level:
        return replace(config, **{key: _coerce(getattr(config, key), raw, key)})

    owners = [s for s in _SECTIONS if key in _field_names(getattr(config, s))]
    if not owners:
        raise StopRule(f"Unknown override key {key!r}")
    if len(owners) > 1:
        raise StopRule(f"Ambiguous override key {key!r}: present in {owners}; use a dotted key")
    return _apply_override(config, f"{owners[0]}.{key}", raw)


def merge_overrides(config: RunConfig, overrides: Mapping[str, Any]) -> RunConfig:
    """
    Apply key/value overrides to a config and validate the result.

    Keys are either dotted ("events.deadline", "oracle.repair_rate") or bare
    field names that exist in exactly one place. String values are coerced to
    the type of the field they replace.

    Args:
        config: Base RunConfig
        overrides: Mapping of key -> value (strings allowed)

    Returns:
        New validated RunConfig

    Raises:
        StopRule: unknown/ambiguous key, uncoercible value, or invalid result
    """
    for key, raw in overrides.items():
        config = _apply_override(config, key, raw)
    return validate_config(config)


def parse_set_items(items: Iterable[str]) -> Dict[str, str]:
    """Parse repeated "key=value" strings into an override mapping."""
    overrides = {}
    for item in items:
        if not item:
            continue
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise StopRule(f"Malformed override {item!r}: expected key=value")
        overrides[key.strip()] = value
    return overrides
