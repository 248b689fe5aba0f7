"""
harness/types_result.py - Run Result Dataclasses

Immutable containers handed from a finished run to export and aggregation.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from .types_config import RunConfig
from .types_state import EventSlot, HazardEvent


@dataclass(frozen=True)
class RunResult:
    """Immutable result of one hazard/deadline run."""
    config: RunConfig
    slots: Tuple[EventSlot, ...]
    event_rows: List[dict]
    edge_rows: List[dict]
    summary: dict
    flags: List[str]
    receipts: List[dict]
    merkle_root: str

    @property
    def events(self) -> List[HazardEvent]:
        return [s.event for s in self.slots if s.event is not None]

    @property
    def op_alphabet_size(self) -> int:
        return self.config.motif.op_alphabet_size


@dataclass(frozen=True)
class MoveEdgeResult:
    """Operator token moves inside recovery windows, from the accept log."""
    config: RunConfig
    summary: dict
    edge_counts: Dict[str, Counter]  # scope -> Counter[(from, to)]
    edge_ep_sum: Dict[str, Dict[Tuple[int, int], float]]
    edge_ep_abs_sum: Dict[str, Dict[Tuple[int, int], float]]
    family_counts: Dict[str, Counter]  # scope -> Counter["sx,sy"]
    receipts: List[dict] = field(default_factory=list)


@dataclass(frozen=True)
class RepairActionResult:
    """Repair moves classified as action motifs, from the accept log."""
    config: RunConfig
    summary: dict
    motif_counts: Dict[str, Counter]  # scope -> Counter[motif_id]
    motif_ep_sum: Dict[str, Dict[int, float]]
    motif_ep_abs_sum: Dict[str, Dict[int, float]]
    transitions: Dict[str, Counter]  # scope -> Counter[(from, to)]
    receipts: List[dict] = field(default_factory=list)
