"""
tests/test_config.py - Configuration Tests

Validates config defaults, override merging, coercion and validation.
"""

import dataclasses

import pytest

from receipts import StopRule
from harness.types_config import (
    CONDITIONS,
    SCENARIO_QUADRANT_DEADLINE,
    SCENARIO_STRIPE_GATED,
    EventConfig,
    MotifConfig,
    RunConfig,
    condition_params,
    merge_overrides,
    parse_set_items,
    validate_config,
)


class TestDefaults:
    """Derived values of the default configuration."""

    def test_pre_window_follows_deadline(self):
        """Pre window is min(50000, deadline) unless set."""
        assert EventConfig().pre_window == 25_000, "Default pre window should equal the deadline"
        assert EventConfig(deadline=80_000).pre_window == 50_000, "Pre window should cap at 50000"
        assert EventConfig(w_pre=1000).pre_window == 1000, "Explicit w_pre ignored"

    def test_grace_window(self):
        assert EventConfig(deadline=25_000).grace_window == 5_000, "Grace window should be 0.2 * deadline"

    def test_alphabet_sizes(self):
        sizes = {m: MotifConfig(op_bins_mode=m).op_alphabet_size for m in (0, 1, 2)}
        assert sizes == {0: 729, 1: 27, 2: 81}, f"Wrong alphabet sizes {sizes}"

    def test_frozen(self):
        """Configs are immutable value objects."""
        with pytest.raises(dataclasses.FrozenInstanceError):
            RunConfig().seed = 5

    def test_outside_seed(self):
        assert RunConfig(seed=4).outside_seed == 1003, "Outside seed should be seed + 999"

    def test_presets_validate(self):
        assert validate_config(SCENARIO_QUADRANT_DEADLINE) is SCENARIO_QUADRANT_DEADLINE


class TestMergeOverrides:
    """Test merge_overrides key routing and coercion."""

    def test_dotted_key(self):
        cfg = merge_overrides(RunConfig(), {"events.deadline": "30000"})
        assert cfg.events.deadline == 30_000, f"Expected 30000, got {cfg.events.deadline!r}"
        assert isinstance(cfg.events.deadline, int), "Deadline not coerced to int"

    def test_bare_unique_key(self):
        cfg = merge_overrides(RunConfig(), {"deadline": "12000", "seed": "4"})
        assert cfg.events.deadline == 12_000 and cfg.seed == 4, "Bare keys not routed"

    def test_ambiguous_key(self):
        """'span' exists in region and gate."""
        with pytest.raises(StopRule, match="Ambiguous"):
            merge_overrides(RunConfig(), {"span": "2"})

    def test_unknown_key(self):
        with pytest.raises(StopRule, match="Unknown"):
            merge_overrides(RunConfig(), {"no_such_field": "1"})

    def test_unknown_section(self):
        with pytest.raises(StopRule, match="section"):
            merge_overrides(RunConfig(), {"physics.mass": "1"})

    def test_uncoercible_values(self):
        with pytest.raises(StopRule):
            merge_overrides(RunConfig(), {"steps": "abc"})
        with pytest.raises(StopRule):
            merge_overrides(RunConfig(), {"steps": "1.5"})

    def test_bool_coercion(self):
        cfg = merge_overrides(RunConfig(), {"motif.enabled": "false", "gate.conditioned": "on"})
        assert cfg.motif.enabled is False and cfg.gate.conditioned is True, "Bool coercion failed"

    def test_float_coercion(self):
        cfg = merge_overrides(RunConfig(), {"events.corrupt_frac": "0.35"})
        assert cfg.events.corrupt_frac == pytest.approx(0.35), "Float not coerced"

    def test_oracle_params(self):
        """oracle.* keys land in oracle_params as numbers."""
        cfg = merge_overrides(RunConfig(), {"oracle.repair_rate": "0.5", "oracle.repair_on": "0"})
        assert cfg.oracle_params == {"repair_rate": 0.5, "repair_on": 0}, f"Got {cfg.oracle_params}"

    def test_original_untouched(self):
        base = RunConfig()
        merge_overrides(base, {"seed": "9"})
        assert base.seed == 1, "merge_overrides mutated its input"

    def test_result_is_validated(self):
        with pytest.raises(StopRule, match="corrupt_frac"):
            merge_overrides(RunConfig(), {"events.corrupt_frac": "1.5"})


class TestValidateConfig:
    """Range checks."""

    @pytest.mark.parametrize("overrides", [
        {"steps": 0},
        {"grid_size": 1},
        {"region": dataclasses.replace(RunConfig().region, region_index=4)},
        {"condition": "Z"},
    ])
    def test_invalid_top_level(self, overrides):
        with pytest.raises(StopRule):
            validate_config(dataclasses.replace(RunConfig(), **overrides))

    def test_invalid_stripe_index(self):
        with pytest.raises(StopRule, match="region_index"):
            merge_overrides(RunConfig(), {"region_type": "stripe", "region_index": "8", "bins": "8"})

    def test_invalid_motif_mode(self):
        with pytest.raises(StopRule, match="op_bins_mode"):
            merge_overrides(RunConfig(), {"op_bins_mode": "3"})

    def test_invalid_err_mode(self):
        with pytest.raises(StopRule, match="err_mode"):
            merge_overrides(RunConfig(), {"err_mode": "median"})

    def test_invalid_gate_mode(self):
        with pytest.raises(StopRule, match="gate mode"):
            merge_overrides(RunConfig(), {"gate.mode": "5"})

    def test_stripe_bins_follow_clock(self):
        """Clock-gated stripes need one stripe per clock state."""
        with pytest.raises(StopRule, match="clock_k"):
            merge_overrides(SCENARIO_STRIPE_GATED, {"gate.clock_k": "6"})
        both = merge_overrides(SCENARIO_STRIPE_GATED, {"gate.clock_k": "6", "region.bins": "6", "region_index": "2"})
        assert (both.region.bins, both.gate.clock_k) == (6, 6), "Matching widths are accepted"

    def test_stripe_bins_free_without_clock_gate(self):
        config = merge_overrides(SCENARIO_STRIPE_GATED, {"gate.mode": "0", "region.bins": "4", "region_index": "1"})
        assert config.region.bins == 4 and config.gate.clock_k == 8, "Mode 0 ignores the clock width"


class TestParseSetItems:
    """Test key=value parsing."""

    def test_pairs(self):
        got = parse_set_items(["a=1", "b=x=y", ""])
        assert got == {"a": "1", "b": "x=y"}, f"Unexpected parse {got}"

    def test_malformed(self):
        with pytest.raises(StopRule, match="Malformed"):
            parse_set_items(["deadline"])


class TestConditions:
    """Condition presets as oracle overrides."""

    def test_three_conditions(self):
        assert sorted(CONDITIONS) == ["A", "B", "C"], "Expected conditions A, B, C"

    def test_params_merge_order(self):
        """Condition overrides come first, explicit oracle params win."""
        cfg = dataclasses.replace(RunConfig(grid_size=16), condition="C",
                                  oracle_params={"op_drive_on_k": 0})
        params = condition_params(cfg)
        assert params["grid_size"] == 16, "Grid size not passed to oracle"
        assert params["op_coupling_on"] == 1, "Condition override missing"
        assert params["op_drive_on_k"] == 0, "Explicit oracle param should win"
