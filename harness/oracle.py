"""
harness/oracle.py - Simulation Oracle Contract

The harness drives an external simulation through this interface only:
stepping, perturbation, snapshot accessors, per-move counters and an
accept-log buffer. Contract violations are fatal (StopRule).
"""

import warnings
from dataclasses import dataclass
from typing import Dict, List, NamedTuple, Optional, Protocol, Sequence, Tuple

import numpy as np

from receipts import StopRule

from .constants import (
    ACCEPT_LOG_MASK_BITS, MOVE_CLOCK, MOVE_OPK, MOVE_P5_BASE, MOVE_P5_META, PERTURB_LAYER,
    PERTURB_TARGET, REQUIRED_MOVE_LABELS,
)
from .types_config import RegionConfig
from .types_state import OracleSnapshot


# =============================================================================
# PERTURBATION SPEC
# =============================================================================

@dataclass(frozen=True)
class PerturbSpec:
    """Corruption of one region of one field layer."""
    region: str
    index: int
    span: int
    bins: int
    frac: float
    mode: str
    seed: int
    target: str = PERTURB_TARGET
    layer: int = PERTURB_LAYER

    @classmethod
    def for_region(cls, region: RegionConfig, frac: float, mode: str, seed: int) -> "PerturbSpec":
        return cls(region=region.region_type, index=region.region_index, span=region.span,
                   bins=region.bins, frac=frac, mode=mode, seed=seed)

    def to_dict(self) -> dict:
        return {
            "region": self.region, "index": self.index, "span": self.span, "bins": self.bins,
            "frac": self.frac, "mode": self.mode, "seed": self.seed,
            "target": self.target, "layer": self.layer,
        }


# =============================================================================
# PROTOCOLS
# =============================================================================

class AcceptLogRow(NamedTuple):
    time: int
    cell: int
    meta: int
    ep: float


class AcceptLog(Protocol):
    def length(self) -> int: ...

    def read(self) -> List[AcceptLogRow]: ...

    def clear(self) -> None: ...

    def overflowed(self) -> bool: ...


class SimulationOracle(Protocol):
    grid_size: int
    meta_layers: int
    level_max: int
    op_budget_k: int
    op_offsets: Sequence[Tuple[int, int]]

    def step(self, n: int) -> None: ...

    def perturb(self, spec: PerturbSpec) -> None: ...

    def base_field(self) -> np.ndarray: ...

    def meta_fields(self) -> np.ndarray: ...

    def op_tokens(self) -> Optional[np.ndarray]: ...

    def clock_state(self) -> int: ...

    def move_labels(self) -> List[str]: ...

    def accept_counts(self) -> np.ndarray: ...

    def ep_total(self) -> float: ...

    def ep_by_move(self) -> np.ndarray: ...

    def accept_log(self) -> AcceptLog: ...

    def set_accept_log(self, enabled: bool, move_mask: int, cap: int) -> None: ...


# =============================================================================
# MOVE LABELS
# =============================================================================

@dataclass(frozen=True)
class MoveIndex:
    """Positions of the required move categories in the oracle's label list."""
    labels: Tuple[str, ...]
    p5_base: int
    p5_meta: int
    opk: int
    clock: int

    @property
    def repair(self) -> Tuple[int, int]:
        return self.p5_base, self.p5_meta

    def mask(self, *indices: int) -> int:
        """Accept-log bit mask for the given move ids."""
        bits = 0
        for idx in indices:
            if not 0 <= idx < ACCEPT_LOG_MASK_BITS:
                raise StopRule(f"ACCEPT_LOG_MASK_OVERFLOW: move id {idx} does not fit a {ACCEPT_LOG_MASK_BITS}-bit mask")
            bits |= 1 << idx
        return bits


def resolve_move_indices(labels: Sequence[str], required: Sequence[str] = REQUIRED_MOVE_LABELS) -> MoveIndex:
    """
    Map required move labels to indices.

    Raises:
        StopRule: if any required label is missing
    """
    labels = tuple(labels)
    missing = [name for name in required if name not in labels]
    if missing:
        raise StopRule(f"MISSING_MOVE_LABEL: {missing} not in oracle move labels {list(labels)}")
    return MoveIndex(
        labels=labels,
        p5_base=labels.index(MOVE_P5_BASE),
        p5_meta=labels.index(MOVE_P5_META),
        opk=labels.index(MOVE_OPK),
        clock=labels.index(MOVE_CLOCK),
    )


def check_move_id(name: str, actual: int, expected: int) -> int:
    """Warn when a label sits at a different index than the conventional one."""
    if actual != expected:
        warnings.warn(f"{name} move label index {actual} != {expected}; using {actual}")
    return actual


# =============================================================================
# SNAPSHOTS
# =============================================================================

def take_snapshot(oracle: SimulationOracle, moves: MoveIndex, time: int) -> OracleSnapshot:
    """Copy the oracle's cumulative counters into an immutable snapshot."""
    counts = oracle.accept_counts()
    ep = oracle.ep_by_move()
    return OracleSnapshot(
        time=time,
        accept_counts={label: int(counts[i]) for i, label in enumerate(moves.labels)},
        ep_total=float(oracle.ep_total()),
        ep_by_move={label: float(ep[i]) for i, label in enumerate(moves.labels)},
    )


def ep_categories(snapshot: OracleSnapshot) -> Dict[str, float]:
    """EP split into total, repair (P5Base + P5Meta), opk, clock and other."""
    by = snapshot.ep_by_move
    repair = by.get(MOVE_P5_BASE, 0.0) + by.get(MOVE_P5_META, 0.0)
    opk = by.get(MOVE_OPK, 0.0)
    clock = by.get(MOVE_CLOCK, 0.0)
    return {
        "total": snapshot.ep_total,
        "repair": repair,
        "opk": opk,
        "clock": clock,
        "other": snapshot.ep_total - repair - opk - clock,
    }


def move_categories(snapshot: OracleSnapshot) -> Dict[str, int]:
    """Accepted move counts: repair, opk, clock and total."""
    c = snapshot.accept_counts
    return {
        "repair": c.get(MOVE_P5_BASE, 0) + c.get(MOVE_P5_META, 0),
        "p5_meta": c.get(MOVE_P5_META, 0),
        "opk": c.get(MOVE_OPK, 0),
        "clock": c.get(MOVE_CLOCK, 0),
        "total": sum(c.values()),
    }


# =============================================================================
# ACCEPT LOG
# =============================================================================

def decode_meta(meta: int) -> Tuple[int, int, int, int]:
    """(move_id, layer, byte2, byte3) of a packed accept-log metadata word.

    byte2/byte3 are (from, to) offsets for operator moves and
    (mismatch, direction) for repair moves.
    """
    return meta & 0xFF, (meta >> 8) & 0xFF, (meta >> 16) & 0xFF, (meta >> 24) & 0xFF


def encode_meta(move_id: int, layer: int, b2: int, b3: int) -> int:
    return (move_id & 0xFF) | ((layer & 0xFF) << 8) | ((b2 & 0xFF) << 16) | ((b3 & 0xFF) << 24)


def drain_accept_log(oracle: SimulationOracle) -> List[AcceptLogRow]:
    """
    Read and clear the accept log.

    Raises:
        StopRule: if the buffer overflowed since the last drain
    """
    log = oracle.accept_log()
    rows = log.read() if log.length() > 0 else []
    overflowed = log.overflowed()
    log.clear()
    if overflowed:
        raise StopRule("ACCEPT_LOG_OVERFLOW: reduce chunk_steps or raise accept_log_cap")
    return rows


def check_grid(oracle: SimulationOracle, grid_size: int) -> None:
    if oracle.grid_size != grid_size:
        raise StopRule(f"Oracle grid size {oracle.grid_size} != configured grid size {grid_size}")
