"""
Stat formulas, stage arithmetic and passive multipliers.
"""

import pytest

from Mechanics.stat_effects import (
    apply_stage_deltas,
    calculate_stat_from_ev,
    compute_actual_stats,
    compute_passive_multipliers,
    nature_multiplier,
)


class TestStatFormula:
    def test_hp(self):
        # Garchomp-like base 108 HP with full investment at level 50
        assert calculate_stat_from_ev("hp", 108, 31, 252, 50) == 215

    def test_shedinja_hp(self):
        assert calculate_stat_from_ev("hp", 1, 31, 252, 100) == 1

    @pytest.mark.parametrize("nature,expected", [("Adamant", 167), ("Modest", 136), ("Hardy", 152)])
    def test_nature_applies_to_attack(self, nature, expected):
        assert calculate_stat_from_ev("atk", 100, 31, 252, 50, nature) == expected

    def test_nature_multiplier(self):
        assert nature_multiplier("spe", "Timid") == 1.1
        assert nature_multiplier("atk", "Timid") == 0.9
        assert nature_multiplier("def", "Timid") == 1.0
        assert nature_multiplier("atk", None) == 1.0

    def test_override_base_stats(self):
        stats = compute_actual_stats("Anything", {"hp": 252}, {}, 50, "Hardy",
                                     base_stats={k: 100 for k in ("hp", "atk", "def", "spa", "spd", "spe")})
        assert stats["hp"] == 207
        assert stats["atk"] == 120

    def test_no_base_stats(self):
        with pytest.raises(ValueError):
            compute_actual_stats("Anything", {}, {}, 50, None)


class TestStages:
    """Deltas clamp to [-6, 6] and a stage back at 0 is dropped."""

    def test_clamps(self):
        assert apply_stage_deltas({"atk": 5}, {"atk": 4}) == {"atk": 6}
        assert apply_stage_deltas({"def": -5}, {"def": -3}) == {"def": -6}

    def test_zero_removed(self):
        assert apply_stage_deltas({"atk": 2, "spe": 1}, {"atk": -2}) == {"spe": 1}
        assert apply_stage_deltas({"atk": 0}, {}) == {}

    def test_none_delta_ignored(self):
        assert apply_stage_deltas({"spa": 1}, {"spa": None}) == {"spa": 1}

    def test_input_untouched(self):
        boosts = {"atk": 1}
        apply_stage_deltas(boosts, {"atk": 1})
        assert boosts == {"atk": 1}


class TestPassiveMultipliers:
    def test_huge_power_and_band(self):
        m = compute_passive_multipliers("Huge Power", "Choice Band", None)
        assert m["atk"] == pytest.approx(3.0)

    def test_guts_needs_status(self):
        assert compute_passive_multipliers("Guts", None, None)["atk"] == 1.0
        assert compute_passive_multipliers("Guts", None, "brn")["atk"] == 1.5

    def test_eviolite_needs_evolution(self):
        assert compute_passive_multipliers(None, "Eviolite", None, can_evolve=False)["def"] == 1.0
        m = compute_passive_multipliers(None, "Eviolite", None, can_evolve=True)
        assert (m["def"], m["spd"]) == (1.5, 1.5)

    def test_assault_vest(self):
        assert compute_passive_multipliers(None, "Assault Vest", None)["spd"] == 1.5
