"""
Damage computation adapter
--------------------------
Turns combatant snapshots + a move config into the roll set the timeline
branches on. Wires Mechanics.damage_helper to the helpers in
Mechanics.battle_helper and the poke-env backed catalog.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from poke_env.data.normalize import to_id_str

from Mechanics.battle_helper import (
    STELLAR,
    defensive_types,
    screen_modifier,
    stab_multiplier,
    terrain_modifier,
    type_effectiveness,
    weather_modifier,
)
from Mechanics.damage_helper import CombatantState, FieldContext, MoveContext, calc_damage_range
from Mechanics.dex_info import DexInfo, default_dex
from Mechanics.stat_effects import compute_actual_stats, compute_passive_multipliers

from . import settings
from .types import FieldState, MoveConfig, PokemonState, other_side

LIFE_ORB = 5324 / 4096


@dataclass
class DamageRollOutcome:
    roll: int
    damage: int
    percent: float
    defender_hp: int
    drain: Optional[int] = None
    recoil: Optional[int] = None


@dataclass
class DamageComputation:
    rolls: List[DamageRollOutcome]
    move_type: str = "Normal"
    effectiveness: float = 1.0


DamageFn = Callable[[str, PokemonState, PokemonState, MoveConfig, FieldState], DamageComputation]


def derive_drain(damage: int, fraction: Optional[float]) -> Optional[int]:
    if not fraction or fraction <= 0:
        return None
    return int(math.ceil(damage * fraction))


def derive_recoil(damage: int, fraction: Optional[float]) -> Optional[int]:
    if not fraction or fraction <= 0:
        return None
    return int(math.floor(damage * fraction))


def build_roll_outcomes(
    damages: List[int],
    defender_max_hp: int,
    drain_fraction: Optional[float] = None,
    recoil_fraction: Optional[float] = None,
) -> List[DamageRollOutcome]:
    return [
        DamageRollOutcome(
            roll=i,
            damage=int(dmg),
            percent=(dmg / defender_max_hp) if defender_max_hp else 0.0,
            defender_hp=defender_max_hp,
            drain=derive_drain(dmg, drain_fraction),
            recoil=derive_recoil(dmg, recoil_fraction),
        )
        for i, dmg in enumerate(damages)
    ]


# ---------------------------- Stat / type resolution -----------------------------

def resolve_stats(pokemon: PokemonState, dex: Optional[DexInfo] = None) -> Dict[str, int]:
    dex = dex or default_dex(settings.GEN)
    if pokemon.base_stats_override:
        return compute_actual_stats(
            pokemon.species, pokemon.evs, pokemon.ivs, pokemon.level, pokemon.nature,
            base_stats=pokemon.base_stats_override,
        )
    return compute_actual_stats(pokemon.species, pokemon.evs, pokemon.ivs, pokemon.level, pokemon.nature, dex=dex)


def resolve_move_type(move: MoveConfig, attacker: PokemonState, dex: Optional[DexInfo] = None) -> str:
    """Override type, else the Tera type for Tera Blast, else the catalog type."""
    if move.overrides.type:
        return move.overrides.type
    tera = move.tera_type or attacker.tera_type
    if to_id_str(move.name) == "terablast" and tera:
        return tera
    dex = dex or default_dex(settings.GEN)
    return dex.move_type(move.name) or "Normal"


def _grounded(types: List[str], ability: Optional[str], item: Optional[str], gravity: bool) -> bool:
    if gravity:
        return True
    if "Flying" in types or to_id_str(ability or "") == "levitate" or to_id_str(item or "") == "airballoon":
        return False
    return True


def _combatant(
    pokemon: PokemonState,
    stats: Dict[str, int],
    types: List[str],
    tera_type: Optional[str],
    terastallized: bool,
    can_evolve: bool,
    gravity: bool,
) -> CombatantState:
    mults = compute_passive_multipliers(pokemon.ability, pokemon.item, pokemon.status, can_evolve)
    b = pokemon.boosts
    return CombatantState(
        level=pokemon.level,
        types=types,
        atk=int(stats["atk"] * mults["atk"]),
        def_=int(stats["def"] * mults["def"]),
        spa=int(stats["spa"] * mults["spa"]),
        spd=int(stats["spd"] * mults["spd"]),
        spe=int(stats["spe"] * mults["spe"]),
        tera_type=tera_type,
        terastallized=terastallized,
        grounded=_grounded(types, pokemon.ability, pokemon.item, gravity),
        is_burned=(pokemon.status or "").lower() == "brn",
        ability=pokemon.ability,
        item=pokemon.item,
        atk_stage=b.get("atk", 0),
        def_stage=b.get("def", 0),
        spa_stage=b.get("spa", 0),
        spd_stage=b.get("spd", 0),
        spe_stage=b.get("spe", 0),
    )


# ---------------------------- Public entry point ---------------------------------

def compute_damage(
    actor_side: str,
    attacker: PokemonState,
    defender: PokemonState,
    move: MoveConfig,
    field: FieldState,
    dex: Optional[DexInfo] = None,
) -> DamageComputation:
    """Possible damage values of ``move`` from ``attacker`` into ``defender``.

    The attacker's tera state comes from the move config (already resolved
    against the branch by the timeline); the defender's from its snapshot.
    """
    dex = dex or default_dex(settings.GEN)
    info = dex.move(move.name)
    a_species = dex.species(attacker.species)
    d_species = dex.species(defender.species)

    a_stats = resolve_stats(attacker, dex)
    d_stats = resolve_stats(defender, dex)

    a_mode = move.tera_mode or attacker.tera_mode
    a_tera = STELLAR if a_mode == "stellar" else (move.tera_type or attacker.tera_type)
    a_terastallized = a_mode != "none" and bool(a_tera)

    a_types = list(attacker.types or a_species.types)
    d_types = list(defender.types or d_species.types)

    a_state = _combatant(attacker, a_stats, a_types, a_tera, a_terastallized, bool(a_species.evos), field.gravity)
    d_state = _combatant(defender, d_stats, d_types, defender.effective_tera_type, defender.terastallized,
                         bool(d_species.evos), field.gravity)

    move_type = resolve_move_type(move, attacker, dex)
    category = move.overrides.category or info.category or "Physical"
    base_power = move.overrides.power if move.overrides.power is not None else (info.base_power or 0)
    if info.id == "terablast" and a_terastallized and category != "Status":
        category = "Physical" if a_state.atk > a_state.spa else "Special"

    hits = move.hits
    if hits <= 1 and isinstance(info.multihit, int):
        hits = info.multihit

    ctx = MoveContext(
        move_id=info.id,
        name=info.name,
        type=move_type,
        category=category,
        base_power=int(base_power),
        is_spread=info.is_spread,
        makes_contact=info.makes_contact,
        hits=hits,
        stellar_first_use=bool(move.stellar_first_use),
    )
    field_ctx = FieldContext(
        weather=field.weather,
        terrain=field.terrain,
        gravity=field.gravity,
        trick_room=field.trick_room,
        defender_side=field.side(other_side(actor_side)),
    )
    extra = [LIFE_ORB] if to_id_str(attacker.item or "") == "lifeorb" else None

    result = calc_damage_range(
        a_state,
        d_state,
        ctx,
        field_ctx,
        get_type_chart=dex.get_type_chart,
        is_critical=move.is_crit,
        extra_modifiers=extra,
        type_effectiveness_fn=type_effectiveness,
        defender_types_fn=defensive_types,
        stab_fn=stab_multiplier,
        weather_fn=weather_modifier,
        terrain_fn=terrain_modifier,
        screen_fn=screen_modifier,
    )

    defender_max = int(defender.max_hp or d_stats["hp"])
    drain = move.drain_percent if move.drain_percent is not None else info.drain_fraction
    recoil = move.recoil_percent if move.recoil_percent is not None else info.recoil_fraction
    return DamageComputation(
        rolls=build_roll_outcomes(result.rolls, defender_max, drain, recoil),
        move_type=move_type,
        effectiveness=result.effectiveness,
    )
