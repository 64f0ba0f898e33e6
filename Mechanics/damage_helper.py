"""
Damage calculation module (Gen 9 order & fixed-point modifiers)
---------------------------------------------------------------

Implements the damage pipeline with fixed-point (1/4096) modifiers similar
to Pokémon Showdown's "chainModify" approach. Modifier order:

  1) Targets (spread)
  2) Weather
  3) Critical
  4) Random (0.85 .. 1.00, uniform discrete)
  5) STAB
  6) Type effectiveness
  7) Burn (physical only)
  8) Other (items/abilities/field)
  9) Screens (Reflect/Light Screen/Aurora Veil)
  10) Terrain

Helpers for steps 2, 5, 6, 9 and 10 are injected so this module stays free of
dex data; Simulation.engine wires in Mechanics.battle_helper.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .battle_helper import SideState, spread_modifier

# ---------------------------- Fixed-point helpers --------------------------------

FP_BASE = 4096  # Showdown-style fixed point
ROLL_COUNT = 16


def to_fp(x: float) -> int:
    """Convert a float multiplier to fixed-point (rounded)."""
    return int(round(float(x) * FP_BASE))


def chain_mul(base_fp: int, mods_fp: Iterable[int]) -> int:
    """Chain fixed-point multipliers with rounding down each step."""
    out = base_fp
    for m in mods_fp:
        out = (out * m) // FP_BASE
    return out


def apply_fp(damage: int, mods_fp: Iterable[int]) -> int:
    """Apply fixed-point modifiers to integer damage (never below 1)."""
    mult = chain_mul(FP_BASE, mods_fp)
    return max(1, (damage * mult) // FP_BASE)


# ---------------------------- Dataclasses ----------------------------------------

@dataclass
class CombatantState:
    level: int
    types: Sequence[str]
    atk: int
    def_: int
    spa: int
    spd: int
    spe: int = 0

    tera_type: Optional[str] = None
    terastallized: bool = False
    grounded: bool = True
    is_burned: bool = False

    ability: Optional[str] = None
    item: Optional[str] = None

    # Stat stages (-6..+6)
    atk_stage: int = 0
    def_stage: int = 0
    spa_stage: int = 0
    spd_stage: int = 0
    spe_stage: int = 0


@dataclass
class MoveContext:
    move_id: str
    name: str
    type: str
    category: str         # 'Physical' | 'Special' | 'Status'
    base_power: int
    is_spread: bool = False
    hits_multiple_targets_on_execution: bool = False

    makes_contact: bool = False

    # Fixed hit count; every hit uses the same roll index
    hits: int = 1
    stellar_first_use: bool = False


@dataclass
class FieldContext:
    weather: Optional[str] = None
    terrain: Optional[str] = None
    gravity: bool = False
    trick_room: bool = False
    is_doubles: bool = False
    targets_on_target_side: int = 1

    # Screens on the *defender's* side
    defender_side: SideState = field(default_factory=SideState)


@dataclass
class DamageResult:
    min_damage: int
    max_damage: int
    rolls: List[int]
    effectiveness: float
    is_crit: bool
    applied_modifiers: Dict[str, float] = field(default_factory=dict)


# ---------------------------- Utility: stat stages --------------------------------

_STAGE_NUM = [2, 2, 2, 2, 2, 2, 2, 3, 4, 5, 6, 7, 8]  # index by stage + 6
_STAGE_DEN = [8, 7, 6, 5, 4, 3, 2, 2, 2, 2, 2, 2, 2]


def apply_stage(stat: int, stage: int, ignore_positive: bool = False, ignore_negative: bool = False) -> int:
    """Apply a standard stage multiplier to a stat."""
    if stage == 0:
        return stat
    s = max(-6, min(6, stage))
    if (s > 0 and ignore_positive) or (s < 0 and ignore_negative):
        return stat
    return (stat * _STAGE_NUM[s + 6]) // _STAGE_DEN[s + 6]


# ---------------------------- Core damage ----------------------------------------

def _base_damage(level: int, base_power: int, atk: int, deff: int) -> int:
    """floor(floor(floor(2L/5+2)*BP*A/D)/50)+2"""
    if base_power <= 0:
        return 0
    t1 = (2 * level) // 5 + 2
    t2 = (t1 * base_power * atk) // max(1, deff)
    return t2 // 50 + 2


def _zero_result(is_critical: bool, reason: str) -> DamageResult:
    return DamageResult(0, 0, [0] * ROLL_COUNT, 0.0, is_critical, applied_modifiers={reason: 0.0})


def calc_damage_range(
    attacker: CombatantState,
    defender: CombatantState,
    move: MoveContext,
    field: FieldContext,
    get_type_chart: Callable[[], Dict[str, Dict[str, float]]],
    is_critical: bool = False,
    extra_modifiers: Optional[List[float]] = None,
    type_effectiveness_fn: Optional[Callable[[str, Sequence[str], Dict[str, Dict[str, float]], Optional[str]], float]] = None,
    defender_types_fn: Optional[Callable[[Sequence[str], Optional[str], bool], Sequence[str]]] = None,
    stab_fn: Optional[Callable[[str, Sequence[str], Optional[str], Optional[str], bool], float]] = None,
    weather_fn: Optional[Callable[[str, Optional[str], Optional[str]], Tuple[float, bool]]] = None,
    terrain_fn: Optional[Callable[[str, bool, bool, Optional[str]], float]] = None,
    screen_fn: Optional[Callable[[str, SideState, bool, bool, int], float]] = None,
) -> DamageResult:
    """
    Calculate the 16 damage rolls using realistic order and fixed-point modifiers.

    The helpers are injectable and default to no-op if not provided. Multi-hit
    moves report the total over ``move.hits`` hits for each roll index.
    """
    category = move.category.capitalize()
    if category == "Status" or move.base_power <= 0:
        return _zero_result(is_critical, "status")
    is_physical = category == "Physical"

    # Crit ignores attacker's negative and defender's positive stages
    if (move.move_id or "") == "bodypress":
        eff_atk = apply_stage(attacker.def_, attacker.def_stage, ignore_negative=is_critical)
    elif is_physical:
        eff_atk = apply_stage(attacker.atk, attacker.atk_stage, ignore_negative=is_critical)
    else:
        eff_atk = apply_stage(attacker.spa, attacker.spa_stage, ignore_negative=is_critical)
    if is_physical:
        eff_def = apply_stage(defender.def_, defender.def_stage, ignore_positive=is_critical)
    else:
        eff_def = apply_stage(defender.spd, defender.spd_stage, ignore_positive=is_critical)

    base = _base_damage(attacker.level, move.base_power, eff_atk, max(1, eff_def))

    mods_fp: List[int] = []
    applied: Dict[str, float] = {}

    # 1) Targets (spread)
    spread = spread_modifier(field.is_doubles, move.is_spread and move.hits_multiple_targets_on_execution)
    applied["spread"] = spread
    if spread != 1.0:
        mods_fp.append(to_fp(spread))

    # 2) Weather
    if weather_fn:
        wmult, move_fails = weather_fn(move.type, field.weather, move.move_id)
        if move_fails:
            return _zero_result(is_critical, "weather")
        applied["weather"] = wmult
        mods_fp.append(to_fp(wmult))

    # 3) Critical
    if is_critical:
        applied["crit"] = 1.5
        mods_fp.append(to_fp(1.5))

    # 5) STAB
    stab = 1.0
    if stab_fn:
        stab = stab_fn(
            move.type,
            attacker.types,
            attacker.tera_type if attacker.terastallized else None,
            attacker.ability,
            move.stellar_first_use,
        )
    applied["stab"] = stab

    # 6) Type effectiveness
    eff = 1.0
    type_chart = get_type_chart() if get_type_chart else {}
    if type_effectiveness_fn and type_chart:
        def_types = defender.types
        if defender_types_fn:
            def_types = defender_types_fn(defender.types, defender.tera_type, defender.terastallized)
        eff = type_effectiveness_fn(move.type, def_types, type_chart, move.move_id)
    applied["effectiveness"] = eff
    if eff == 0.0:
        return DamageResult(0, 0, [0] * ROLL_COUNT, 0.0, is_critical, applied_modifiers=applied)

    # 7) Burn (physical only, ignored by Guts)
    burn_mult = 1.0
    if is_physical and attacker.is_burned and (attacker.ability or "").lower() != "guts":
        burn_mult = 0.5
    applied["burn"] = burn_mult

    # 8) Other (items/abilities/field) -> provided by caller
    other_fp = [to_fp(m) for m in (extra_modifiers or [])]

    # 9) Screens
    screen = 1.0
    if screen_fn:
        screen = screen_fn(move.category, field.defender_side, is_critical, field.is_doubles, field.targets_on_target_side)
    applied["screen"] = screen

    # 10) Terrain
    terrain = 1.0
    if terrain_fn:
        terrain = terrain_fn(move.type, attacker.grounded, defender.grounded, field.terrain)
    applied["terrain"] = terrain

    post_random: List[int] = [to_fp(stab)]
    if burn_mult != 1.0:
        post_random.append(to_fp(burn_mult))
    post_random.extend(other_fp)
    if screen != 1.0:
        post_random.append(to_fp(screen))
    if terrain != 1.0:
        post_random.append(to_fp(terrain))

    hits = max(1, int(move.hits or 1))
    rolls: List[int] = []
    for r in range(85, 101):
        dmg = apply_fp(base, mods_fp)
        dmg = (dmg * r) // 100
        dmg = apply_fp(dmg, post_random[:1])
        # Type effectiveness is the only float step
        dmg = int(dmg * eff)
        dmg = apply_fp(dmg, post_random[1:]) if post_random[1:] else max(1, dmg)
        rolls.append(dmg * hits)

    return DamageResult(min(rolls), max(rolls), rolls, eff, is_critical, applied_modifiers=applied)
