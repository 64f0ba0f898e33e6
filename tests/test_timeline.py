"""
Branch state machine tests.

Every scenario uses a scripted damage function, so expected HP values are
hand-computable.
"""

import random

import pytest

from Simulation.errors import ComputationError
from Simulation.timeline import (
    Branch,
    TimelineSimulator,
    apply_leftovers,
    merge_branches,
    order_actions,
    simulate_timeline,
)
from Simulation.types import FieldState, SimulationOptions, TimelineTurn, parse_action

from conftest import (
    ScriptedDamage,
    fixed_move_type,
    make_mon,
    move_action,
    pass_action,
    scenario,
    turn,
)


def run(scn, pokemon, cache, damage, **kwargs):
    options = kwargs.pop("options", SimulationOptions())
    return simulate_timeline(
        scn, pokemon, FieldState(), cache, options,
        damage_fn=damage, move_type_fn=fixed_move_type, **kwargs,
    )


def dist(points):
    return {p.hp: pytest.approx(p.probability) for p in points}


# =========================================================================
# Attacks and branching
# =========================================================================


class TestAttackBranching:
    """Each damage roll spawns one equally likely child branch."""

    def test_one_hit_ko(self, pair, cache):
        damage = ScriptedDamage({"Crush": [150]})
        scn = scenario(turn(1, [move_action("a1", "opponent", "Crush")], order="opponent"))
        result = run(scn, pair, cache, damage)
        assert result.survival == pytest.approx(0.0)
        assert result.opponent_survival == pytest.approx(1.0)
        assert dist(result.hp_distribution) == {0: 1.0}

    def test_two_rolls_split_evenly(self, pair, cache):
        damage = ScriptedDamage({"Slash": [60, 120]})
        scn = scenario(turn(1, [move_action("a1", "opponent", "Slash")]))
        result = run(scn, pair, cache, damage)
        assert result.survival == pytest.approx(0.5)
        assert dist(result.hp_distribution) == {0: 0.5, 40: 0.5}

    def test_identical_rolls_merge(self, pair, cache):
        damage = ScriptedDamage({"Tackle": [30, 30, 40, 40]})
        scn = scenario(turn(1, [move_action("a1", "player", "Tackle")]))
        result = run(scn, pair, cache, damage)
        snap = result.snapshots[0]
        assert dist(snap.opponent_hp_distribution) == {60: 0.5, 70: 0.5}
        assert snap.damage_rolls == [30, 30, 40, 40]

    def test_terminated_branch_skips_later_attacks(self, pair, cache):
        damage = ScriptedDamage({"Crush": [150], "Tackle": [10]})
        scn = scenario(turn(1, [
            move_action("a1", "opponent", "Crush"),
            move_action("a2", "player", "Tackle"),
        ], order="opponent"))
        result = run(scn, pair, cache, damage)
        assert [c.move.name for c in damage.calls] == ["Crush"]
        assert result.opponent_survival == pytest.approx(1.0)

    def test_drain_and_recoil(self, cache):
        pokemon = {"player": make_mon(hp=50), "opponent": make_mon("Foe")}
        damage = ScriptedDamage({"Drain Punch": [41], "Brave Bird": [30]})
        scn = scenario(
            turn(1, [move_action("a1", "player", "Drain Punch", drainPercent=0.5)]),
            turn(2, [move_action("a2", "player", "Brave Bird", recoilPercent=0.33)]),
        )
        result = run(scn, pokemon, cache, damage)
        # 50 + ceil(41 * 0.5) = 71, then 71 - floor(30 * 0.33) = 62
        assert result.snapshots[0].hp["player"] == 71
        assert dist(result.hp_distribution) == {62: 1.0}

    def test_probability_mass_conserved(self, pair, cache):
        damage = ScriptedDamage({"Hit": [11, 13, 17, 19], "Jab": [7, 9, 23]})
        scn = scenario(
            turn(1, [move_action("a1", "player", "Hit"), move_action("b1", "opponent", "Jab")]),
            turn(2, [move_action("a2", "player", "Hit"), move_action("b2", "opponent", "Jab")]),
            turn(3, [move_action("a3", "player", "Hit"), move_action("b3", "opponent", "Jab")]),
        )
        result = run(scn, pair, cache, damage)
        assert len(result.snapshots) == 6
        for snap in result.snapshots:
            assert snap.probability == pytest.approx(1.0, abs=1e-6)
            assert sum(p.probability for p in snap.hp_distribution) == pytest.approx(1.0, abs=1e-6)

    def test_damage_failure_is_computation_error(self, pair, cache):
        def broken(*args):
            raise ValueError("no such move")

        scn = scenario(turn(1, [move_action("a1", "player", "Nope")]))
        with pytest.raises(ComputationError, match="no such move"):
            run(scn, pair, cache, broken)

    def test_repeated_attack_hits_cache(self, pair, cache):
        damage = ScriptedDamage({"Tackle": [5]})
        scn = scenario(
            turn(1, [move_action("a1", "player", "Tackle")]),
            turn(2, [move_action("a2", "player", "Tackle")]),
        )
        run(scn, pair, cache, damage)
        assert len(damage.calls) == 1
        assert cache.hits == 1


# =========================================================================
# Observation likelihood
# =========================================================================


class TestObservation:
    """Mass of rolls whose damage share of max HP lands in the observed range."""

    def test_likelihood_counts_matching_rolls(self, pair, cache):
        damage = ScriptedDamage({"Hit": [10, 20, 30, 40]})
        scn = scenario(turn(1, [move_action("obs", "player", "Hit")]))
        result = run(scn, pair, cache, damage, observation_event_id="obs", observation_range=(0.15, 0.35))
        assert result.observation_likelihood == pytest.approx(0.5)

    def test_no_observation_event(self, pair, cache):
        damage = ScriptedDamage({"Hit": [10]})
        scn = scenario(turn(1, [move_action("a1", "player", "Hit")]))
        result = run(scn, pair, cache, damage, observation_event_id="missing", observation_range=(0.0, 1.0))
        assert result.observation_likelihood == 0.0


# =========================================================================
# Auxiliary events
# =========================================================================


class TestEvents:
    """Scripted non-attack events."""

    def test_percent_max_damage(self, pair, cache):
        scn = scenario(turn(1, events=[
            {"type": "hp-adjustment", "id": "e1", "actor": "player", "amount": 25, "mode": "percent-max"},
        ]))
        result = run(scn, pair, cache, ScriptedDamage({}))
        assert dist(result.hp_distribution) == {75: 1.0}

    def test_fraction_of_last_damage_heal(self, pair, cache):
        damage = ScriptedDamage({"Hit": [40]})
        scn = scenario(turn(1, [move_action("a1", "opponent", "Hit")], events=[
            {"type": "hp-adjustment", "id": "e1", "actor": "player", "relatedActionId": "a1",
             "isDamage": False, "mode": "fraction-last-damage", "fractionDenominator": 2},
        ]))
        result = run(scn, pair, cache, damage)
        assert dist(result.hp_distribution) == {80: 1.0}

    def test_healing_fraction_minimum_one(self, cache):
        pokemon = {"player": make_mon(hp=5, max_hp=10), "opponent": make_mon("Foe")}
        scn = scenario(turn(1, events=[
            {"type": "healing", "id": "h1", "actor": "player", "amount": "fraction", "fraction": 0.01},
        ]))
        result = run(scn, pokemon, cache, ScriptedDamage({}))
        assert dist(result.hp_distribution) == {6: 1.0}

    def test_healing_range_uses_minimum_and_caps(self, cache):
        pokemon = {"player": make_mon(hp=90), "opponent": make_mon("Foe")}
        scn = scenario(turn(1, events=[
            {"type": "healing", "id": "h1", "actor": "player", "amount": {"min": 20, "max": 40}},
        ]))
        result = run(scn, pokemon, cache, ScriptedDamage({}))
        assert dist(result.hp_distribution) == {100: 1.0}

    def test_stat_change_round_trip_drops_zero(self, pair, cache):
        damage = ScriptedDamage({"Hit": [10]})
        scn = scenario(
            turn(1, events=[
                {"type": "stat-change", "id": "s1", "actor": "player", "stages": {"atk": 2}},
                {"type": "stat-change", "id": "s2", "actor": "player", "stages": {"atk": -2}},
            ]),
            turn(2, [move_action("a1", "player", "Hit")]),
        )
        run(scn, pair, cache, damage)
        assert damage.calls[0].attacker.boosts == {}

    def test_switch_resets_and_sets_hp(self, pair, cache):
        scn = scenario(turn(1, events=[
            {"type": "status", "id": "st", "actor": "player", "status": "brn"},
            {"type": "switch", "id": "sw", "actor": "player", "targetSpecies": "Other", "setHpPercent": 50},
        ]))
        result = run(scn, pair, cache, ScriptedDamage({}))
        assert dist(result.hp_distribution) == {50: 1.0}

    def test_field_toggle_reaches_damage_calc(self, pair, cache):
        damage = ScriptedDamage({"Hit": [1]})
        scn = scenario(turn(1, [move_action("a1", "player", "Hit")], events=[
            {"type": "field-toggle", "id": "f1", "timing": "turn-start", "field": {"weather": "Rain"}},
        ]))
        run(scn, pair, cache, damage)
        assert damage.calls[0].field.weather == "Rain"

    def test_status_and_field_skip_terminated_branches(self, pair, cache):
        scn = scenario(turn(1, [move_action("a1", "opponent", "Hit")], events=[
            {"type": "status", "id": "st", "timing": "turn-end", "actor": "opponent", "status": "par"},
            {"type": "field-toggle", "id": "f1", "timing": "turn-end", "field": {"weather": "Rain"}},
        ]))
        sim = TimelineSimulator(
            scn, pair, FieldState(), cache,
            damage_fn=ScriptedDamage({"Hit": [50, 100]}), move_type_fn=fixed_move_type,
        )
        sim.run()

        by_hp = {b.hp["player"]: b for b in sim.branches}
        assert set(by_hp) == {0, 50}
        dead, alive = by_hp[0], by_hp[50]
        assert dead.terminated and not alive.terminated
        assert (alive.pokemon["opponent"].status, alive.field.weather) == ("par", "Rain")
        assert (dead.pokemon["opponent"].status, dead.field.weather) == (None, None)

    def test_ability_activation_only_records_snapshot(self, pair, cache):
        scn = scenario(turn(1, events=[{"type": "ability-activation", "id": "ab", "actor": "opponent"}]))
        result = run(scn, pair, cache, ScriptedDamage({}))
        assert [s.event_id for s in result.snapshots] == ["ab"]
        assert result.snapshots[0].hp == {"player": 100, "opponent": 100}

    def test_turns_beyond_limit_ignored(self, pair, cache):
        turns = [
            turn(n, events=[{"type": "hp-adjustment", "id": f"e{n}", "actor": "player", "amount": 1}])
            for n in range(1, 8)
        ]
        result = run(scenario(*turns), pair, cache, ScriptedDamage({}))
        assert dist(result.hp_distribution) == {95: 1.0}


# =========================================================================
# End-of-turn recovery
# =========================================================================


class TestLeftovers:
    """Leftovers heal max(1, floor(max/16)) at end of turn."""

    def test_heals_from_ten(self, cache):
        pokemon = {"player": make_mon(hp=10, item="Leftovers"), "opponent": make_mon("Foe")}
        result = run(scenario(turn(1, [pass_action("p1", "player")])), pokemon, cache, ScriptedDamage({}))
        assert dist(result.hp_distribution) == {16: 1.0}

    def test_caps_at_max(self, cache):
        pokemon = {"player": make_mon(hp=97, item="Leftovers"), "opponent": make_mon("Foe")}
        result = run(scenario(turn(1, [pass_action("p1", "player")])), pokemon, cache, ScriptedDamage({}))
        assert dist(result.hp_distribution) == {100: 1.0}

    def test_skips_terminated(self, cache):
        pokemon = {"player": make_mon(hp=10, item="Leftovers"), "opponent": make_mon("Foe")}
        damage = ScriptedDamage({"Hit": [10]})
        scn = scenario(turn(1, [move_action("a1", "opponent", "Hit")]))
        result = run(scn, pokemon, cache, damage)
        assert dist(result.hp_distribution) == {0: 1.0}

    def test_apply_leftovers_ignores_terminated_branch(self):
        branch = Branch.initial(
            {"player": make_mon(hp=10, item="Leftovers"), "opponent": make_mon("Foe")}, FieldState(),
        )
        branch.terminated = True
        assert apply_leftovers([branch])[0].hp["player"] == 10


# =========================================================================
# Merging and ordering
# =========================================================================


class TestMerge:
    """Canonical-key merging."""

    def _branches(self):
        base = Branch.initial({"player": make_mon(), "opponent": make_mon("Foe")}, FieldState())
        out = []
        for hp, p in [(40, 0.1), (40, 0.2), (60, 0.3), (40, 0.15), (60, 0.25)]:
            b = base.clone()
            b.hp["player"] = hp
            b.probability = p
            out.append(b)
        return out

    def test_merge_is_order_independent(self):
        forward = merge_branches(self._branches())
        shuffled = self._branches()
        random.Random(7).shuffle(shuffled)
        backward = merge_branches(shuffled)
        as_map = lambda bs: {b.hp["player"]: b.probability for b in bs}
        assert as_map(forward) == pytest.approx(as_map(backward))
        assert as_map(forward) == pytest.approx({40: 0.45, 60: 0.55})

    def test_zero_boost_equals_absent(self):
        base = Branch.initial({"player": make_mon(), "opponent": make_mon("Foe")}, FieldState())
        other = base.clone()
        other.pokemon["player"].boosts = {"atk": 0}
        assert base.key() == other.key()


class TestOrdering:
    """Singles puts the turn's lead side first; doubles keeps declared order."""

    def _turn(self):
        return TimelineTurn(turn=1, order="opponent", actions=[
            parse_action(pass_action("p1", "player")),
            parse_action(pass_action("o1", "opponent")),
            parse_action(pass_action("p2", "player")),
        ])

    def test_singles(self):
        assert [a.id for a in order_actions(self._turn(), "singles")] == ["o1", "p1", "p2"]

    def test_doubles(self):
        assert [a.id for a in order_actions(self._turn(), "doubles")] == ["p1", "o1", "p2"]


# =========================================================================
# Tera / Stellar
# =========================================================================


class TestStellar:
    """Once-per-type Stellar boost tracking."""

    def _scenario(self, allow):
        return scenario(
            turn(1, [move_action("a1", "player", "Hit", teraMode="stellar")]),
            turn(2, [move_action("a2", "player", "Hit", teraMode="stellar")]),
            allow_raid_stellar=allow,
        )

    def test_first_use_only_once(self, pair, cache):
        damage = ScriptedDamage({"Hit": [1]})
        run(self._scenario(False), pair, cache, damage)
        assert [c.move.stellar_first_use for c in damage.calls] == [True, False]

    def test_raid_always_first_use(self, pair, cache):
        damage = ScriptedDamage({"Hit": [1]})
        run(self._scenario(True), pair, cache, damage)
        assert [c.move.stellar_first_use for c in damage.calls] == [True, True]

    def test_tera_mode_sticks_to_branch(self, pair, cache):
        damage = ScriptedDamage({"Hit": [1], "Jab": [1]})
        scn = scenario(
            turn(1, [move_action("a1", "player", "Hit", teraMode="tera", teraType="Fire")]),
            turn(2, [move_action("a2", "player", "Jab")]),
        )
        run(scn, pair, cache, damage)
        second = damage.calls[1].move
        assert second.tera_mode == "tera"
        assert second.tera_type == "Fire"
