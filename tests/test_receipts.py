"""
tests/test_receipts.py - Receipt Ledger Tests

Validates dual hashing, receipt construction, JSONL writing and Merkle roots.
"""

import io
import json

import numpy as np
import pytest

from harness.constants import Outcome
from receipts import (
    StopRule,
    canonical_json,
    dual_hash,
    emit_receipt,
    merkle,
    write_receipt_jsonl,
    write_receipts,
)


class TestDualHash:
    """Test dual_hash format and determinism."""

    def test_two_hex_parts(self):
        """dual_hash returns sha256:blake3, both 64 hex chars."""
        h = dual_hash("hazard")
        sha, b3 = h.split(":")
        assert len(sha) == 64 and len(b3) == 64, f"Unexpected hash format {h}"
        int(sha, 16)
        int(b3, 16)

    def test_str_and_bytes_agree(self):
        """Strings are hashed as their UTF-8 bytes."""
        assert dual_hash("abc") == dual_hash(b"abc"), "str and bytes hashes differ"

    def test_different_inputs_differ(self):
        assert dual_hash("a") != dual_hash("b"), "Distinct inputs collided"


class TestEmitReceipt:
    """Test emit_receipt fields."""

    def test_standard_fields(self):
        """Receipts carry type, timestamp, tenant and payload hash plus data."""
        r = emit_receipt("event_outcome", {"event_id": 3, "outcome": "missed"})
        assert r["receipt_type"] == "event_outcome", f"Wrong type {r['receipt_type']}"
        assert r["tenant_id"] == "harness", f"Wrong tenant {r['tenant_id']}"
        assert "ts" in r and r["ts"].endswith("+00:00"), f"Timestamp not UTC: {r.get('ts')}"
        assert r["event_id"] == 3 and r["outcome"] == "missed", "Payload fields missing"

    def test_payload_hash_ignores_timestamp(self):
        """Same payload gives the same payload_hash."""
        a = emit_receipt("anomaly", {"metric": "gate_samples", "delta": -4})
        b = emit_receipt("anomaly", {"metric": "gate_samples", "delta": -4})
        assert a["payload_hash"] == b["payload_hash"], "Payload hash not deterministic"

    def test_tenant(self):
        assert emit_receipt("anomaly", {}, tenant_id="lab")["tenant_id"] == "lab", "Tenant override ignored"


class TestCanonicalJson:
    """numpy and enum values serialize by value."""

    def test_numpy_and_enum(self):
        text = canonical_json({"b": np.int64(3), "a": np.array([0.5, 1.0]), "o": Outcome.MISSED, "s": {2, 1}})
        assert text == '{"a":[0.5,1.0],"b":3,"o":"missed","s":[1,2]}', text

    def test_hash_ignores_numpy_types(self):
        assert merkle([{"x": np.int32(4)}]) == merkle([{"x": 4}]), "numpy scalar changed the root"


class TestWriteReceiptJsonl:
    """Test JSONL writing."""

    def test_one_line_per_receipt(self):
        fh = io.StringIO()
        write_receipt_jsonl({"a": 1}, fh)
        write_receipt_jsonl({"b": None}, fh)
        lines = fh.getvalue().splitlines()
        assert len(lines) == 2, f"Expected 2 lines, got {len(lines)}"
        assert json.loads(lines[1]) == {"b": None}, "Row did not round trip"

    def test_write_ledger(self, tmp_path):
        path = str(tmp_path / "ledger.jsonl")
        n = write_receipts([emit_receipt("gate_closed", {"time": np.int64(5)})], path)
        with open(path) as fh:
            rows = [json.loads(line) for line in fh]
        assert n == 1 and rows[0]["time"] == 5, f"{rows}"


class TestMerkle:
    """Test Merkle root computation."""

    def test_empty(self):
        assert merkle([]) == dual_hash(b"empty"), "Empty Merkle root changed"

    def test_deterministic(self):
        rows = [{"event_idx": 0, "outcome": "recovered"}, {"event_idx": 1, "outcome": "missed"}]
        assert merkle(rows) == merkle([dict(r) for r in rows]), "Merkle root not deterministic"

    def test_order_sensitive(self):
        rows = [{"x": 1}, {"x": 2}, {"x": 3}]
        assert merkle(rows) != merkle(list(reversed(rows))), "Merkle root ignores order"


class TestStopRule:
    """StopRule is an ordinary exception type."""

    def test_raise_and_catch(self):
        with pytest.raises(StopRule, match="overflow"):
            raise StopRule("ACCEPT_LOG_OVERFLOW: overflow")
