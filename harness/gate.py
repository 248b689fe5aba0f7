"""
harness/gate.py - Gate Conditioner

Decides from the oracle clock whether a sampling instant is valid for motif
accumulation, and calibrates the typical gap between gate-open instants.
"""

import math
from dataclasses import dataclass
from typing import List, Optional

from .constants import GATE_MODE2_WIDTH, GATE_MODE_CLOCK_4, GATE_MODE_CLOCK_K, GATE_MODE_OPEN
from .statistics import percentile
from .types_config import GateConfig, RegionConfig


def in_wrap_span(active: int, center: int, span: int, mod: int) -> bool:
    """True when `active` lies within `span` of `center` on a ring of size mod."""
    s = max(0, span)
    for offset in range(-s, s + 1):
        if (center + offset) % mod == active:
            return True
    return False


def hazard_gate_active(clock_state: int, gate: GateConfig, region_index: int) -> bool:
    """
    Gate test for one sampling instant.

    Mode 0 is always open. Mode 1 compares the clock modulo clock_k with the
    region index, mode 2 does the same over a fixed width-4 clock.

    Args:
        clock_state: Oracle clock value (any integer, negatives wrap)
        gate: Gate configuration
        region_index: Index of the hazard region

    Returns:
        True if the sample may be used
    """
    if gate.mode == GATE_MODE_OPEN:
        return True
    if gate.mode == GATE_MODE_CLOCK_K:
        k = gate.clock_k
    elif gate.mode == GATE_MODE_CLOCK_4:
        k = GATE_MODE2_WIDTH
    else:
        return True
    return in_wrap_span(clock_state % k, region_index, gate.span, k)


def gate_allows_region(active: int, region: RegionConfig, span: int, clock_gated: bool = True) -> bool:
    """Forward-only variant used by repair gating: stripes cover span bins from the clock."""
    if not clock_gated:
        return True
    if region.region_type == "stripe":
        bins = region.bins
        width = min(bins, max(1, span))
        active_bin = active % bins
        return any((active_bin + i) % bins == region.region_index for i in range(width))
    return active % 4 == region.region_index


@dataclass(frozen=True)
class GateGaps:
    gaps: List[int]
    p50: Optional[int]
    p95: Optional[int]
    max: Optional[int]

    def recommended_deadline(self, scale: float = 1.2) -> int:
        return math.ceil(scale * (self.p95 or 0))


def calibrate_gate_gaps(oracle, steps: int, report_every: int,
                        region: RegionConfig, span: int = 1) -> GateGaps:
    """
    Step an oracle and measure gaps between gate-open report ticks.

    Args:
        oracle: SimulationOracle
        steps: Total steps to run
        report_every: Tick spacing
        region: Region whose gate is measured
        span: Gate span

    Returns:
        GateGaps with p50, p95 and max (None when fewer than two open ticks)
    """
    gaps = []
    last_allowed = None
    for t in range(report_every, steps + 1, report_every):
        oracle.step(report_every)
        if gate_allows_region(oracle.clock_state(), region, span):
            if last_allowed is not None:
                gaps.append(t - last_allowed)
            last_allowed = t
    return GateGaps(
        gaps=gaps,
        p50=percentile(gaps, 0.5),
        p95=percentile(gaps, 0.95),
        max=max(gaps) if gaps else None,
    )
