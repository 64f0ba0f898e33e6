"""
Battle helper module for damage modifiers (Gen 9 helpers)
----------------------------------------------------------
This module provides:
- Type effectiveness helpers (Freeze-Dry / Flying Press exceptions, defensive Tera)
- Weather / Terrain / Screen / Spread modifiers
- STAB calculation including Terastallization, Adaptability and Stellar rules
- Side-condition container handed to the damage calculator

Nothing here imports poke-env; type charts are passed in by the caller
(see Mechanics.dex_info.DexInfo.get_type_chart).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

STELLAR = "Stellar"

# Stellar Tera: one-time 1.2x boost for types outside the user's own types
STELLAR_NON_STAB_MULT = 4915.0 / 4096.0


# ----------------------------- Data containers ---------------------------------

@dataclass
class SideState:
    # Screens / team-wide effects
    reflect: bool = False
    light_screen: bool = False
    aurora_veil: bool = False

    # Hazards are carried for reporting only; they never touch direct damage.
    spikes: int = 0               # 0..3
    stealth_rock: bool = False

    def signature(self) -> Dict[str, object]:
        return {
            "reflect": self.reflect,
            "lightScreen": self.light_screen,
            "auroraVeil": self.aurora_veil,
            "spikes": self.spikes,
            "stealthRock": self.stealth_rock,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, object]]) -> "SideState":
        data = data or {}
        return cls(
            reflect=bool(data.get("reflect", data.get("isReflect", False))),
            light_screen=bool(data.get("lightScreen", data.get("isLightScreen", False))),
            aurora_veil=bool(data.get("auroraVeil", data.get("isAuroraVeil", False))),
            spikes=int(data.get("spikes", 0) or 0),
            stealth_rock=bool(data.get("stealthRock", data.get("isSR", False))),
        )


# --------------------------- Type effectiveness --------------------------------

def defensive_types(types: Sequence[str], tera_type: Optional[str], terastallized: bool) -> Sequence[str]:
    """Types used when a combatant is hit.

    A terastallized defender takes hits as its Tera type, except Stellar, which
    keeps the original typing.
    """
    if terastallized and tera_type and tera_type.capitalize() != STELLAR:
        return [tera_type.capitalize()]
    return [t for t in types if t]


def type_effectiveness(
    move_type: str,
    defender_types: Sequence[str],
    type_chart: Dict[str, Dict[str, float]],
    move_id: Optional[str] = None,
) -> float:
    """Return the Gen 9 effectiveness multiplier for a move against defender types.

    Special cases:
      - Freeze-Dry (move_id == 'freezedry'): always super-effective vs Water (x2).
      - Flying Press (move_id == 'flyingpress'): combine Fighting *and* Flying.
      - Stellar-typed attacks are neutral against everything.

    Args:
        move_type: Canonical type name, e.g., 'Water', 'Fire'. Case-insensitive.
        defender_types: Defender's types (1 or 2). Type names, case-insensitive.
        type_chart: Mapping Type -> vsType -> multiplier.
        move_id: Showdown id for certain special-case moves.
    """
    if not defender_types:
        return 1.0

    mtype = move_type.capitalize()
    if mtype == STELLAR:
        return 1.0

    def mult_for(att_type: str) -> float:
        mult = 1.0
        for d in defender_types:
            mult *= type_chart.get(att_type, {}).get(d.capitalize(), 1.0)
        return mult

    if move_id == "freezedry":
        base = mult_for("Ice")
        if "Water" in [t.capitalize() for t in defender_types]:
            # Ice vs Water is 0.5, Freeze-Dry flips it to 2
            base *= 4.0
        return base

    if move_id == "flyingpress":
        return mult_for("Fighting") * mult_for("Flying")

    return mult_for(mtype)


# --------------------------- Modifiers (weather/terrain/screens/spread) ---------

def spread_modifier(is_doubles: bool, hits_multiple_targets: bool) -> float:
    """Return spread modifier: 0.75 for doubles when a move actually hits multiple targets."""
    return 0.75 if (is_doubles and hits_multiple_targets) else 1.0


def weather_modifier(move_type: str, weather: Optional[str], move_id: Optional[str] = None) -> Tuple[float, bool]:
    """Return (modifier, move_fails) for weather.

    - Sun: Fire x1.5, Water x0.5 except Hydro Steam (x1.5).
    - Rain: Water x1.5, Fire x0.5.
    - Primordial Sea: Fire moves fail.
    - Desolate Land: Water moves fail.
    - Sand / Snow: no direct power mod.
    """
    if not weather:
        return 1.0, False

    w = weather.lower().replace(" ", "")
    t = move_type.capitalize()

    if w in ("primordialsea", "heavyrain"):
        if t == "Fire":
            return 0.0, True
        if t == "Water":
            return 1.5, False
        return 1.0, False
    if w in ("desolateland", "harshsunshine"):
        if t == "Water":
            return 0.0, True
        if t == "Fire":
            return 1.5, False
        return 1.0, False

    if w in ("sun", "sunnyday"):
        if t == "Fire":
            return 1.5, False
        if t == "Water":
            if move_id == "hydrosteam":
                return 1.5, False
            return 0.5, False
        return 1.0, False

    if w in ("rain", "raindance"):
        if t == "Water":
            return 1.5, False
        if t == "Fire":
            return 0.5, False
        return 1.0, False

    return 1.0, False


def screen_modifier(
    category: str,
    defender_side: Optional[SideState],
    is_critical: bool,
    is_doubles: bool,
    targets_on_target_side: int = 1,
) -> float:
    """Reflect / Light Screen / Aurora Veil reduction.

    - 0.5 in singles, 2/3 in doubles when the move has several targets on that side.
    - Ignored by critical hits.
    """
    if is_critical or defender_side is None:
        return 1.0

    cat = (category or "").lower()
    has_screen = defender_side.aurora_veil or (cat == "physical" and defender_side.reflect) or (
        cat == "special" and defender_side.light_screen
    )
    if not has_screen:
        return 1.0

    if is_doubles and targets_on_target_side > 1:
        return 2.0 / 3.0
    return 0.5


def terrain_modifier(
    move_type: str,
    attacker_grounded: bool,
    target_grounded: bool,
    terrain: Optional[str],
) -> float:
    """Return terrain multiplier (exact Gen 8/9 factors).

    - Electric/Grassy/Psychic: 5325/4096 for a grounded attacker using the matching type.
    - Misty: halves Dragon vs grounded targets.
    """
    if not terrain:
        return 1.0

    t = terrain.lower().replace(" terrain", "").replace("terrain", "")
    mtype = move_type.capitalize()

    if t in ("electric", "grassy", "psychic"):
        if attacker_grounded and mtype == t.capitalize():
            return 5325.0 / 4096.0
        return 1.0

    if t == "misty":
        if target_grounded and mtype == "Dragon":
            return 0.5
        return 1.0

    return 1.0


# --------------------------- STAB (with Tera + Adaptability + Stellar) ----------

def stab_multiplier(
    move_type: str,
    user_types: Sequence[str],
    tera_type: Optional[str] = None,
    ability: Optional[str] = None,
    stellar_first_use: bool = False,
) -> float:
    """Compute STAB for move_type with Tera, Adaptability and Stellar rules (Gen 9).

    Rules:
      - Normal STAB is 1.5 if move matches any of user's original types.
      - Terastallizing grants STAB for the Tera type; Tera type equal to an
        original type gives 2.0 for matching moves.
      - Adaptability raises matching STAB to 2.0 (2.25 for Tera matching an original type).
      - Stellar: the first use of each type gets 2.0 (original types) or ~1.2
        (other types); later uses fall back to plain original-type STAB.
    """
    mtype = move_type.capitalize()
    orig = {t.capitalize() for t in user_types if t}
    ter = tera_type.capitalize() if tera_type else None
    abil = (ability or "").lower().replace(" ", "")

    if ter == STELLAR:
        if stellar_first_use:
            return 2.0 if mtype in orig else STELLAR_NON_STAB_MULT
        return 1.5 if mtype in orig else 1.0

    if ter is None or mtype != ter:
        if mtype in orig:
            return 2.0 if abil == "adaptability" else 1.5
        return 1.0

    tera_matches_original = ter in orig
    if abil == "adaptability":
        return 2.25 if tera_matches_original else 2.0

    return 2.0 if tera_matches_original else 1.5
