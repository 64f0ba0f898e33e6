# stat_effects.py
"""
Stat arithmetic and stage handling.

- Stage clamping and canonical boost tables (a stage back at 0 is dropped).
- Final stat values from base / IV / EV / level / nature, delegating to
  poke_env.stats.compute_raw_stats when the species comes straight from the dex.
- Passive item/ability stat multipliers.
"""

from __future__ import annotations

from typing import Dict, Mapping, Optional

from poke_env.data.normalize import to_id_str
from poke_env.stats import compute_raw_stats

from .dex_info import STATS, DexInfo

MIN_STAGE, MAX_STAGE = -6, 6

_NATURE_PLUS = {
    "lonely": "atk", "brave": "atk", "adamant": "atk", "naughty": "atk",
    "bold": "def", "relaxed": "def", "impish": "def", "lax": "def",
    "modest": "spa", "mild": "spa", "quiet": "spa", "rash": "spa",
    "calm": "spd", "gentle": "spd", "sassy": "spd", "careful": "spd",
    "timid": "spe", "hasty": "spe", "jolly": "spe", "naive": "spe",
}
_NATURE_MINUS = {
    "bold": "atk", "modest": "atk", "calm": "atk", "timid": "atk",
    "lonely": "def", "mild": "def", "gentle": "def", "hasty": "def",
    "adamant": "spa", "impish": "spa", "careful": "spa", "jolly": "spa",
    "naughty": "spd", "lax": "spd", "rash": "spd", "naive": "spd",
    "brave": "spe", "relaxed": "spe", "quiet": "spe", "sassy": "spe",
}

_STATUSES = {"brn", "psn", "tox", "par", "slp", "frz"}


# ------------------------- Stages ------------------------------------------------

def clamp_stage(v: int) -> int:
    return max(MIN_STAGE, min(MAX_STAGE, int(v)))


def apply_stage_deltas(boosts: Mapping[str, int], deltas: Mapping[str, Optional[int]]) -> Dict[str, int]:
    """Return a new boost table with ``deltas`` added and clamped.

    Stages that land on 0 are removed so "0" and "absent" compare equal.
    """
    out = {k: int(v) for k, v in boosts.items() if v}
    for stat, delta in deltas.items():
        if delta is None:
            continue
        nxt = clamp_stage(out.get(stat, 0) + int(delta))
        if nxt == 0:
            out.pop(stat, None)
        else:
            out[stat] = nxt
    return out


# ------------------------- Stat formulas -----------------------------------------

def nature_multiplier(stat: str, nature: Optional[str]) -> float:
    nat = to_id_str(nature or "")
    if _NATURE_PLUS.get(nat) == stat:
        return 1.1
    if _NATURE_MINUS.get(nat) == stat:
        return 0.9
    return 1.0


def calculate_stat_from_ev(
    stat: str,
    base: int,
    iv: int,
    ev: int,
    level: int,
    nature: Optional[str] = None,
) -> int:
    """In-game formula for a single stat."""
    if stat == "hp":
        if base == 1:  # Shedinja
            return 1
        return ((2 * base + iv + ev // 4) * level) // 100 + level + 10
    pre = ((2 * base + iv + ev // 4) * level) // 100 + 5
    return int(pre * nature_multiplier(stat, nature))


def compute_actual_stats(
    species: str,
    evs: Mapping[str, int],
    ivs: Mapping[str, int],
    level: int,
    nature: Optional[str],
    dex: Optional[DexInfo] = None,
    base_stats: Optional[Mapping[str, int]] = None,
) -> Dict[str, int]:
    """All six stats. Uses poke-env's compute_raw_stats unless base stats are overridden."""
    ev_list = [int(evs.get(k, 0)) for k in STATS]
    iv_list = [int(ivs.get(k, 31)) for k in STATS]
    if base_stats is None and dex is not None:
        raw = compute_raw_stats(
            to_id_str(species), ev_list, iv_list, int(level),
            to_id_str(nature or "serious"), dex.data,
        )
        return {k: int(v) for k, v in zip(STATS, raw)}
    if base_stats is None:
        raise ValueError(f"No base stats available for {species}")
    return {
        k: calculate_stat_from_ev(k, int(base_stats.get(k, 0)), iv, ev, int(level), nature)
        for k, iv, ev in zip(STATS, iv_list, ev_list)
    }


# ------------------------- Passive multiplicative modifiers ----------------------

def compute_passive_multipliers(
    ability: Optional[str],
    item: Optional[str],
    status: Optional[str],
    can_evolve: bool = False,
) -> Dict[str, float]:
    """Per-stat multipliers from abilities/items that are not stage based.

    Examples:
        - Huge Power/Pure Power: x2 Attack
        - Guts: x1.5 Attack when statused
        - Marvel Scale: x1.5 Defense when statused
        - Choice Band / Choice Specs: x1.5 Attack / Sp. Atk
        - Assault Vest: x1.5 Sp. Def
        - Eviolite: x1.5 Def and Sp. Def on a holder that can still evolve
    """
    abil = to_id_str(ability or "")
    it = to_id_str(item or "")
    statused = (status or "").lower() in _STATUSES

    mults = {"atk": 1.0, "def": 1.0, "spa": 1.0, "spd": 1.0, "spe": 1.0}

    if abil in {"hugepower", "purepower"}:
        mults["atk"] *= 2.0
    if abil == "guts" and statused:
        mults["atk"] *= 1.5
    if abil == "marvelscale" and statused:
        mults["def"] *= 1.5

    if it == "choiceband":
        mults["atk"] *= 1.5
    elif it == "choicespecs":
        mults["spa"] *= 1.5
    elif it == "choicescarf":
        mults["spe"] *= 1.5
    elif it == "assaultvest":
        mults["spd"] *= 1.5
    elif it == "eviolite" and can_evolve:
        mults["def"] *= 1.5
        mults["spd"] *= 1.5

    return mults
