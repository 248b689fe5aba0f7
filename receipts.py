"""
receipts.py - Receipt Ledger

Every observable state change in a run (hazard injected, event outcome, gate
closed, sparse-signal anomaly, run summary) is recorded as a receipt built
here. There is no other logging path.

Payloads routinely carry numpy scalars and enum members; canonical_json()
turns them into plain JSON so that hashes and Merkle roots depend only on
values, never on the Python types that produced them.

Never single hash. Always dual_hash (SHA256:BLAKE3).
"""

import hashlib
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Union

import blake3
import numpy as np

__all__ = [
    "TENANT_ID",
    "StopRule",
    "canonical_json",
    "dual_hash",
    "emit_receipt",
    "json_default",
    "merkle",
    "write_receipt_jsonl",
    "write_receipts",
]

TENANT_ID = "harness"


# =============================================================================
# JSON
# =============================================================================

def json_default(value: Any) -> Any:
    """json.dumps hook for numpy values, enums and sets; anything else becomes str."""
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    return str(value)


def canonical_json(obj: Any) -> str:
    """Sorted keys, compact separators; the form that gets hashed."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=json_default)


# =============================================================================
# HASHING
# =============================================================================

def dual_hash(data: Union[bytes, str]) -> str:
    """
    SHA256:BLAKE3 of the given bytes (strings are UTF-8 encoded).

    Returns:
        str: "sha256_hex:blake3_hex"
    """
    if isinstance(data, str):
        data = data.encode()
    return f"{hashlib.sha256(data).hexdigest()}:{blake3.blake3(data).hexdigest()}"


def merkle(items: List[Any]) -> str:
    """
    Merkle root over JSON rows, pairing the last hash with itself on odd levels.

    Identical runs give identical event rows and therefore identical roots.
    """
    if not items:
        return dual_hash(b"empty")
    level = [dual_hash(canonical_json(item)) for item in items]
    while len(level) > 1:
        if len(level) % 2:
            level.append(level[-1])
        level = [dual_hash(level[i] + level[i + 1]) for i in range(0, len(level), 2)]
    return level[0]


# =============================================================================
# RECEIPTS
# =============================================================================

def emit_receipt(receipt_type: str, data: Dict[str, Any], tenant_id: str = TENANT_ID) -> Dict[str, Any]:
    """
    Build a receipt for one observable event.

    The payload hash covers the payload only, so two receipts with the same
    data hash alike regardless of when they were emitted.

    Args:
        receipt_type: One of harness.constants.RECEIPT_SCHEMA
        data: Receipt payload, merged into the receipt
        tenant_id: Ledger owner

    Returns:
        dict: receipt_type, ts, tenant_id, payload_hash plus the payload fields
    """
    return {
        "receipt_type": receipt_type,
        "ts": datetime.now(timezone.utc).isoformat(),
        "tenant_id": tenant_id,
        "payload_hash": dual_hash(canonical_json(data)),
        **data,
    }


def write_receipt_jsonl(receipt: Dict[str, Any], fh) -> None:
    """Append one receipt (or any JSON-able row) as a single JSON line."""
    fh.write(json.dumps(receipt, separators=(",", ":"), default=json_default) + "\n")


def write_receipts(receipts: Iterable[Dict[str, Any]], path: str) -> int:
    """Write a whole ledger to a JSONL file; returns the number of receipts."""
    n = 0
    with open(path, "w") as fh:
        for receipt in receipts:
            write_receipt_jsonl(receipt, fh)
            n += 1
    return n


class StopRule(Exception):
    """Raised when a stop rule triggers. Never catch silently."""
    pass
