"""
harness/reference_oracle.py - Reference Lattice Oracle

A small stochastic lattice implementing the SimulationOracle contract, used by
the tests, the CLI and demos. It is not a physics model: it only has to
corrupt, repair and produce token/clock dynamics with the right shapes.

State:
  base   - fixed integer levels 0..level_max, one per cell
  meta   - layers that copy the layer below (layer 0 copies base)
  tokens - per layer and cell, op_budget_k tokens spread over 9 offsets
  clock  - integer random walk with forward bias

Moves (one per step): P5Base repairs layer 0 toward base, P5Meta repairs
layer l >= 1 toward layer l - 1, OpK moves one token between offsets, Clock
ticks the clock. Noise, when enabled, overwrites a random cell.
"""

import math
from dataclasses import dataclass, fields
from typing import Any, List, Mapping, Optional

import numpy as np

from receipts import StopRule

from .constants import ACCEPT_LOG_CAP, PERTURB_MODES, PERTURB_TARGET
from .oracle import AcceptLogRow, PerturbSpec, encode_meta
from .regions import build_region_mask
from .types_config import RunConfig, condition_params

MOVE_LABELS = ("P5Base", "P5Meta", "OpK", "Clock", "Noise")
P5_BASE, P5_META, OPK, CLOCK, NOISE = range(len(MOVE_LABELS))

STENCIL9 = ((0, 0), (1, 0), (-1, 0), (0, -1), (0, 1), (1, -1), (-1, -1), (1, 1), (-1, 1))
RATE_FLOOR = 1e-3
BLOCK_STEPS = 4096


@dataclass(frozen=True)
class ReferenceParams:
    """Tunable parameters; every oracle param override must name one of these."""
    grid_size: int = 16
    meta_layers: int = 2
    level_max: int = 4
    op_budget_k: int = 8
    clock_k: int = 8
    repair_on: int = 1
    repair_rate: float = 1.0
    op_coupling_on: int = 0
    op_drive_on_k: int = 0
    noise_rate: float = 0.0
    clock_forward: float = 0.75
    w_base: float = 0.4
    w_meta: float = 0.3
    w_opk: float = 0.2
    w_clock: float = 0.1

    @classmethod
    def from_mapping(cls, params: Mapping[str, Any]) -> "ReferenceParams":
        """
        Build params from a plain mapping.

        Raises:
            StopRule: unknown key or out-of-range value
        """
        names = [f.name for f in fields(cls)]
        unknown = sorted(set(params) - set(names))
        if unknown:
            raise StopRule(f"Unknown oracle params {unknown}; expected a subset of {names}")
        values = {}
        for key, value in params.items():
            default = getattr(cls, key)
            try:
                values[key] = type(default)(value)
            except (TypeError, ValueError):
                raise StopRule(f"Oracle param {key}={value!r} is not a {type(default).__name__}")
        return cls(**values).validate()

    def validate(self) -> "ReferenceParams":
        if self.grid_size < 2 or self.meta_layers < 1 or self.level_max < 1 or self.op_budget_k < 1:
            raise StopRule(f"Invalid reference oracle shape: {self}")
        weights = (self.w_base, self.w_meta, self.w_opk, self.w_clock)
        if min(weights) < 0 or sum(weights) <= 0:
            raise StopRule(f"Invalid move weights {weights}")
        for name in ("repair_rate", "noise_rate", "clock_forward"):
            if not 0.0 <= getattr(self, name) <= 1.0:
                raise StopRule(f"Invalid {name} {getattr(self, name)}: must be in [0, 1]")
        return self


class _AcceptLogBuffer:
    """Bounded accept log. Entries past the cap are dropped and flag overflow."""

    def __init__(self, cap: int):
        self.cap = cap
        self._rows: List[AcceptLogRow] = []
        self._overflowed = False

    def push(self, row: AcceptLogRow) -> None:
        if len(self._rows) >= self.cap:
            self._overflowed = True
            return
        self._rows.append(row)

    def length(self) -> int:
        return len(self._rows)

    def read(self) -> List[AcceptLogRow]:
        return list(self._rows)

    def clear(self) -> None:
        self._rows = []
        self._overflowed = False

    def overflowed(self) -> bool:
        return self._overflowed


class ReferenceOracle:
    """Deterministic for a given (params, seed) and independent of step chunking."""

    def __init__(self, params: Optional[Mapping[str, Any]] = None, seed: int = 1):
        p = ReferenceParams.from_mapping(params or {})
        self.params = p
        self.grid_size = p.grid_size
        self.meta_layers = p.meta_layers
        self.level_max = p.level_max
        self.op_budget_k = p.op_budget_k
        self.op_offsets = STENCIL9
        self.clock_k = p.clock_k
        self.time = 0

        cells = p.grid_size * p.grid_size
        r_count = len(self.op_offsets)
        self._rng = np.random.default_rng(seed)
        self._base = self._rng.integers(0, p.level_max + 1, size=cells).tolist()
        self._meta = [list(self._base) for _ in range(p.meta_layers)]
        self._tokens = self._rng.multinomial(
            p.op_budget_k, [1.0 / r_count] * r_count, size=(p.meta_layers, cells)).tolist()
        self._clock = 0
        self._counts = [0] * len(MOVE_LABELS)
        self._ep = [0.0] * len(MOVE_LABELS)

        self._log = _AcceptLogBuffer(ACCEPT_LOG_CAP)
        self._log_on = False
        self._log_mask = 0

        weights = np.array([p.w_base, p.w_meta, p.w_opk, p.w_clock], dtype=np.float64)
        self._cum_weights = np.cumsum(weights / weights.sum())
        fwd = min(1.0 - RATE_FLOOR, max(RATE_FLOOR, p.clock_forward))
        self._clock_ep = math.log(fwd / (1.0 - fwd))
        self._drive_ep = math.log(1.0 + r_count)
        self._block: List[tuple] = []
        self._cursor = 0

    # -------------------------------------------------------------------------
    # dynamics
    # -------------------------------------------------------------------------

    def _refill(self) -> None:
        p = self.params
        n = BLOCK_STEPS
        cells = p.grid_size * p.grid_size
        rng = self._rng
        moves = np.minimum(np.searchsorted(self._cum_weights, rng.random(n), side="right"), CLOCK)
        columns = (
            moves,
            rng.integers(0, p.meta_layers, size=n),
            rng.integers(0, cells, size=n),
            rng.random(n),
            rng.random(n),
            rng.integers(0, len(self.op_offsets), size=n),
            rng.random(n),
            rng.integers(0, p.meta_layers, size=n),
            rng.integers(0, cells, size=n),
            rng.integers(1, p.level_max + 1, size=n),
        )
        self._block = list(zip(*(c.tolist() for c in columns)))
        self._cursor = 0

    def step(self, n: int) -> None:
        p = self.params
        for _ in range(int(n)):
            if self._cursor >= len(self._block):
                self._refill()
            move, layer, q, u1, u2, r, noise_u, noise_layer, noise_q, shift = self._block[self._cursor]
            self._cursor += 1
            self.time += 1
            if move == P5_BASE:
                self._repair(0, q, u1, P5_BASE)
            elif move == P5_META:
                if p.meta_layers > 1:
                    self._repair(1 + layer % (p.meta_layers - 1), q, u1, P5_META)
            elif move == OPK:
                self._move_token(layer, q, u1, u2, r)
            else:
                self._tick_clock(u1)
            if noise_u < p.noise_rate:
                self._noise(noise_layer, noise_q, shift)

    def _repair_prob(self, layer: int, q: int) -> float:
        p = self.params
        if p.op_coupling_on:
            m0 = self._tokens[layer][q][0] / p.op_budget_k
            return min(1.0, p.repair_rate * (0.5 + 0.5 * m0))
        return min(1.0, p.repair_rate * 0.5)

    def _repair(self, layer: int, q: int, u: float, move: int) -> None:
        if not self.params.repair_on:
            return
        lower = self._base if layer == 0 else self._meta[layer - 1]
        cur = self._meta[layer][q]
        target = lower[q]
        if cur == target:
            return
        p_acc = self._repair_prob(layer, q)
        if u >= p_acc:
            return
        mismatch = 2 if cur > target else 0
        self._meta[layer][q] = cur + (1 if target > cur else -1)
        toks = self._tokens[layer][q]
        kdir = toks.index(max(toks))
        ep = math.log((p_acc + RATE_FLOOR) / (self.params.noise_rate + RATE_FLOOR))
        self._accept(move, q, encode_meta(move, layer, mismatch, kdir), ep)

    def _move_token(self, layer: int, q: int, u1: float, u2: float, r_to: int) -> None:
        toks = self._tokens[layer][q]
        pick = u1 * sum(toks)
        acc = 0
        src = len(toks) - 1
        for i, c in enumerate(toks):
            acc += c
            if pick < acc:
                src = i
                break
        driven = bool(self.params.op_drive_on_k) and u2 < 0.5
        dst = 0 if driven else r_to
        if dst == src or toks[src] == 0:
            return
        toks[src] -= 1
        toks[dst] += 1
        self._accept(OPK, q, encode_meta(OPK, layer, src, dst), self._drive_ep if driven else 0.0)

    def _tick_clock(self, u: float) -> None:
        if u < self.params.clock_forward:
            self._clock += 1
            ep = self._clock_ep
        else:
            self._clock -= 1
            ep = -self._clock_ep
        self._accept(CLOCK, 0, encode_meta(CLOCK, 0, 0, 0), ep)

    def _noise(self, layer: int, q: int, shift: int) -> None:
        self._meta[layer][q] = (self._meta[layer][q] + shift) % (self.level_max + 1)
        self._accept(NOISE, q, encode_meta(NOISE, layer, 0, 0), 0.0)

    def _accept(self, move: int, q: int, meta: int, ep: float) -> None:
        self._counts[move] += 1
        self._ep[move] += ep
        if self._log_on and (self._log_mask >> move) & 1:
            self._log.push(AcceptLogRow(self.time, q, meta, ep))

    # -------------------------------------------------------------------------
    # contract
    # -------------------------------------------------------------------------

    def perturb(self, spec: PerturbSpec) -> None:
        """
        Corrupt a fraction of the region's cells in one meta layer.

        "randomize" shifts each chosen cell to a different random level,
        "flip" mirrors it around level_max / 2.

        Raises:
            StopRule: unknown target, layer or mode
        """
        if spec.target != PERTURB_TARGET:
            raise StopRule(f"Unsupported perturb target {spec.target!r}")
        if not 0 <= spec.layer < self.meta_layers:
            raise StopRule(f"Perturb layer {spec.layer} out of range 0..{self.meta_layers - 1}")
        if spec.mode not in PERTURB_MODES:
            raise StopRule(f"Unsupported perturb mode {spec.mode!r}")
        region = np.flatnonzero(build_region_mask(self.grid_size, spec.region, spec.index, spec.span, spec.bins))
        if region.size == 0 or spec.frac <= 0:
            return
        k = min(region.size, max(1, int(round(spec.frac * region.size))))
        rng = np.random.default_rng(spec.seed)
        levels = self.level_max + 1
        field_layer = self._meta[spec.layer]
        for q in rng.choice(region, size=k, replace=False).tolist():
            v = field_layer[q]
            if spec.mode == "flip":
                new = self.level_max - v
                field_layer[q] = new if new != v else (v + 1) % levels
            else:
                field_layer[q] = (v + int(rng.integers(1, levels))) % levels

    def base_field(self) -> np.ndarray:
        return np.array(self._base, dtype=np.int64)

    def meta_fields(self) -> np.ndarray:
        return np.array(self._meta, dtype=np.int64)

    def op_tokens(self) -> np.ndarray:
        return np.array(self._tokens, dtype=np.int64)

    def clock_state(self) -> int:
        return self._clock

    def move_labels(self) -> List[str]:
        return list(MOVE_LABELS)

    def accept_counts(self) -> np.ndarray:
        return np.array(self._counts, dtype=np.int64)

    def ep_total(self) -> float:
        return float(sum(self._ep))

    def ep_by_move(self) -> np.ndarray:
        return np.array(self._ep, dtype=np.float64)

    def accept_log(self) -> _AcceptLogBuffer:
        return self._log

    def set_accept_log(self, enabled: bool, move_mask: int, cap: int = ACCEPT_LOG_CAP) -> None:
        self._log_on = bool(enabled)
        self._log_mask = int(move_mask)
        self._log = _AcceptLogBuffer(int(cap))


def oracle_from_config(config: RunConfig) -> ReferenceOracle:
    """Reference oracle for a run: condition overrides plus explicit params."""
    return ReferenceOracle(condition_params(config), seed=config.seed)
