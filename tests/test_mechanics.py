"""
Damage pipeline and modifier helpers.

These run without game data: type charts are passed in directly.
"""

import pytest

from Mechanics.battle_helper import (
    STELLAR,
    STELLAR_NON_STAB_MULT,
    SideState,
    defensive_types,
    screen_modifier,
    stab_multiplier,
    terrain_modifier,
    type_effectiveness,
    weather_modifier,
)
from Mechanics.damage_helper import ROLL_COUNT, CombatantState, FieldContext, MoveContext, calc_damage_range
from Mechanics.dex_info import build_static_chart


def combatant(**kw):
    stats = dict(level=50, types=["Normal"], atk=100, def_=100, spa=100, spd=100)
    stats.update(kw)
    return CombatantState(**stats)


def tackle(**kw):
    return MoveContext(move_id="tackle", name="Tackle", type="Normal", category="Physical", base_power=40, **kw)


def no_chart():
    return {}


# =============================================================================
# Damage range
# =============================================================================


class TestCalcDamageRange:
    """Sixteen rolls, fixed-point modifiers, hit multiplication."""

    def test_plain_rolls(self):
        result = calc_damage_range(combatant(), combatant(), tackle(), FieldContext(), no_chart)
        assert len(result.rolls) == ROLL_COUNT
        assert result.rolls == sorted(result.rolls)
        assert (result.min_damage, result.max_damage) == (16, 19)

    def test_status_move_deals_nothing(self):
        move = MoveContext(move_id="protect", name="Protect", type="Normal", category="Status", base_power=0)
        result = calc_damage_range(combatant(), combatant(), move, FieldContext(), no_chart)
        assert result.rolls == [0] * ROLL_COUNT

    def test_hits_multiply(self):
        single = calc_damage_range(combatant(), combatant(), tackle(), FieldContext(), no_chart)
        double = calc_damage_range(combatant(), combatant(), tackle(hits=2), FieldContext(), no_chart)
        assert double.rolls == [r * 2 for r in single.rolls]

    def test_crit_is_stronger(self):
        normal = calc_damage_range(combatant(), combatant(), tackle(), FieldContext(), no_chart)
        crit = calc_damage_range(combatant(), combatant(), tackle(), FieldContext(), no_chart, is_critical=True)
        assert crit.max_damage == 28
        assert crit.max_damage > normal.max_damage

    def test_immunity(self):
        result = calc_damage_range(
            combatant(), combatant(types=["Ghost"]), tackle(), FieldContext(), build_static_chart,
            type_effectiveness_fn=type_effectiveness,
        )
        assert result.effectiveness == 0.0
        assert result.max_damage == 0

    def test_weather_failure(self):
        ember = MoveContext(move_id="ember", name="Ember", type="Fire", category="Special", base_power=40)
        result = calc_damage_range(
            combatant(), combatant(), ember, FieldContext(weather="Primordial Sea"), no_chart,
            weather_fn=weather_modifier,
        )
        assert result.max_damage == 0

    def test_reflect_halves(self):
        field = FieldContext(defender_side=SideState(reflect=True))
        result = calc_damage_range(combatant(), combatant(), tackle(), field, no_chart, screen_fn=screen_modifier)
        assert result.max_damage == 9


# =============================================================================
# Modifier helpers
# =============================================================================


class TestTypeEffectiveness:
    def test_freeze_dry_vs_water(self):
        chart = build_static_chart()
        assert type_effectiveness("Ice", ["Water"], chart, "freezedry") == 2.0
        assert type_effectiveness("Ice", ["Water", "Ground"], chart, "freezedry") == 4.0

    def test_flying_press(self):
        chart = build_static_chart()
        assert type_effectiveness("Fighting", ["Grass"], chart, "flyingpress") == 2.0

    def test_stellar_neutral(self):
        assert type_effectiveness(STELLAR, ["Steel"], build_static_chart()) == 1.0

    def test_defensive_tera(self):
        assert defensive_types(["Water", "Ground"], "Fire", True) == ["Fire"]
        assert defensive_types(["Water", "Ground"], STELLAR, True) == ["Water", "Ground"]
        assert defensive_types(["Water"], "Fire", False) == ["Water"]


class TestStab:
    def test_original_type(self):
        assert stab_multiplier("Water", ["Water"]) == 1.5
        assert stab_multiplier("Water", ["Water"], ability="Adaptability") == 2.0
        assert stab_multiplier("Fire", ["Water"]) == 1.0

    def test_tera(self):
        assert stab_multiplier("Water", ["Water"], tera_type="Water") == 2.0
        assert stab_multiplier("Fire", ["Water"], tera_type="Fire") == 1.5
        assert stab_multiplier("Water", ["Water"], tera_type="Water", ability="Adaptability") == 2.25

    def test_stellar_first_use(self):
        assert stab_multiplier("Water", ["Water"], STELLAR, stellar_first_use=True) == 2.0
        assert stab_multiplier("Fire", ["Water"], STELLAR, stellar_first_use=True) == pytest.approx(STELLAR_NON_STAB_MULT)
        assert stab_multiplier("Water", ["Water"], STELLAR, stellar_first_use=False) == 1.5
        assert stab_multiplier("Fire", ["Water"], STELLAR, stellar_first_use=False) == 1.0


class TestFieldModifiers:
    def test_weather(self):
        assert weather_modifier("Fire", "Sun") == (1.5, False)
        assert weather_modifier("Water", "Sun") == (0.5, False)
        assert weather_modifier("Water", "Sun", "hydrosteam") == (1.5, False)
        assert weather_modifier("Fire", "Primordial Sea") == (0.0, True)
        assert weather_modifier("Rock", "Sand") == (1.0, False)

    def test_screens(self):
        side = SideState(reflect=True)
        assert screen_modifier("Physical", side, False, False) == 0.5
        assert screen_modifier("Special", side, False, False) == 1.0
        assert screen_modifier("Physical", side, True, False) == 1.0
        assert screen_modifier("Physical", side, False, True, 2) == pytest.approx(2 / 3)

    def test_terrain(self):
        assert terrain_modifier("Electric", True, True, "Electric Terrain") == pytest.approx(5325 / 4096)
        assert terrain_modifier("Electric", False, True, "Electric") == 1.0
        assert terrain_modifier("Dragon", True, True, "Misty Terrain") == 0.5
