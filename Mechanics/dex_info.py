"""
Species and move catalog
------------------------
Lightweight wrapper around poke_env.data.GenData for species base stats,
move metadata and the type chart.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple, Union

from poke_env.data import GenData
from poke_env.data.normalize import to_id_str

log = logging.getLogger("typecalc")

STATS = ("hp", "atk", "def", "spa", "spd", "spe")


@dataclass
class SpeciesInfo:
    id: str
    name: str
    types: List[str]
    base_stats: Dict[str, int]
    evos: List[str] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class MoveInfo:
    id: str
    name: str
    type: Optional[str] = None
    category: Optional[str] = None
    base_power: Optional[int] = None
    priority: int = 0
    target: Optional[str] = None
    flags: Dict[str, Any] = field(default_factory=dict)
    multihit: Optional[Union[int, List[int]]] = None
    drain: Optional[List[int]] = None
    recoil: Optional[List[int]] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def makes_contact(self) -> bool:
        return bool(self.flags.get("contact"))

    @property
    def is_spread(self) -> bool:
        return self.target in ("allAdjacentFoes", "allAdjacent")

    @property
    def drain_fraction(self) -> float:
        if not self.drain or len(self.drain) != 2 or not self.drain[1]:
            return 0.0
        return self.drain[0] / self.drain[1]

    @property
    def recoil_fraction(self) -> float:
        if not self.recoil or len(self.recoil) != 2 or not self.recoil[1]:
            return 0.0
        return self.recoil[0] / self.recoil[1]


class DexInfo:
    """Species + moves view over one generation of poke-env data."""

    def __init__(self, gen: int = 9):
        self._data = GenData.from_gen(gen)
        self._type_chart_cache: Optional[Dict[str, Dict[str, float]]] = None

    @property
    def gen(self) -> int:
        return getattr(self._data, "gen", 9)

    @property
    def data(self) -> GenData:
        return self._data

    # ----------- Species ---------------------------------------------------------

    def has_species(self, name_or_id: str) -> bool:
        return to_id_str(name_or_id or "") in self._data.pokedex

    def species_raw(self, name_or_id: str) -> Dict[str, Any]:
        sid = to_id_str(name_or_id or "")
        entry = self._data.pokedex.get(sid)
        if entry is None:
            raise KeyError(f"Unknown species: {name_or_id} (normalized: {sid})")
        return entry

    def species(self, name_or_id: str) -> SpeciesInfo:
        entry = self.species_raw(name_or_id)
        bs = entry.get("baseStats", {})
        return SpeciesInfo(
            id=to_id_str(name_or_id),
            name=entry.get("name", name_or_id),
            types=list(entry.get("types", [])),
            base_stats={k: int(bs.get(k, 0)) for k in STATS},
            evos=list(entry.get("evos", []) or []),
            raw=entry,
        )

    # ----------- Moves -----------------------------------------------------------

    def move_raw(self, name_or_id: str) -> Dict[str, Any]:
        mid = to_id_str(name_or_id or "")
        m = self._data.moves.get(mid)
        if m is None:
            raise KeyError(f"Unknown move: {name_or_id} (normalized: {mid})")
        return m

    def move(self, name_or_id: str) -> MoveInfo:
        m = self.move_raw(name_or_id)
        mid = to_id_str(name_or_id)
        return MoveInfo(
            id=mid,
            name=m.get("name", mid),
            type=m.get("type"),
            category=m.get("category"),
            base_power=m.get("basePower"),
            priority=m.get("priority", 0),
            target=m.get("target"),
            flags=m.get("flags", {}),
            multihit=m.get("multihit"),
            drain=m.get("drain"),
            recoil=m.get("recoil"),
            raw=m,
        )

    def move_type(self, name_or_id: str) -> Optional[str]:
        try:
            return self.move(name_or_id).type
        except KeyError:
            return None

    # ----------- Type chart ------------------------------------------------------

    def get_type_chart(self) -> Dict[str, Dict[str, float]]:
        """Title-case attack -> defense multiplier chart.

        The static canonical Gen 9 chart is used; poke-env's raw chart is
        defense-centric and only consulted to log disagreements once.
        """
        if self._type_chart_cache is None:
            tc = build_static_chart()
            mismatches = _count_chart_mismatches(tc, getattr(self._data, "type_chart", None) or {})
            if mismatches:
                log.warning("poke-env type chart disagrees with static chart on %d entries; using static", mismatches)
            self._type_chart_cache = tc
        return self._type_chart_cache


def _count_chart_mismatches(static: Dict[str, Dict[str, float]], raw: Dict[str, Any]) -> int:
    # poke-env layout: {DEFENDER: {ATTACKER: multiplier}}
    mismatches = 0
    for dfd, row in raw.items():
        if not isinstance(row, dict):
            continue
        d = dfd[:1].upper() + dfd[1:].lower()
        for atk, mult in row.items():
            a = atk[:1].upper() + atk[1:].lower()
            if a in static and d in static[a] and isinstance(mult, (int, float)):
                if float(mult) != static[a][d]:
                    mismatches += 1
    return mismatches


@lru_cache(maxsize=4)
def default_dex(gen: int = 9) -> DexInfo:
    return DexInfo(gen)


_STATIC_CHART: Optional[Dict[str, Dict[str, float]]] = None

TYPES: Tuple[str, ...] = (
    "Normal", "Fire", "Water", "Electric", "Grass", "Ice", "Fighting", "Poison", "Ground",
    "Flying", "Psychic", "Bug", "Rock", "Ghost", "Dragon", "Dark", "Steel", "Fairy",
)


def build_static_chart() -> Dict[str, Dict[str, float]]:
    global _STATIC_CHART
    if _STATIC_CHART is not None:
        return _STATIC_CHART
    n = 1.0; h = 0.5; s = 2.0; z = 0.0
    eff = {t: {u: n for u in TYPES} for t in TYPES}
    eff["Normal"]["Rock"] = h; eff["Normal"]["Ghost"] = z; eff["Normal"]["Steel"] = h
    for u in ["Fire", "Water", "Rock", "Dragon"]: eff["Fire"][u] = h
    for u in ["Grass", "Ice", "Bug", "Steel"]: eff["Fire"][u] = s
    for u in ["Fire", "Ground", "Rock"]: eff["Water"][u] = s
    for u in ["Water", "Grass", "Dragon"]: eff["Water"][u] = h
    for u in ["Water", "Flying"]: eff["Electric"][u] = s
    for u in ["Electric", "Grass", "Dragon"]: eff["Electric"][u] = h
    eff["Electric"]["Ground"] = z
    for u in ["Water", "Ground", "Rock"]: eff["Grass"][u] = s
    for u in ["Fire", "Grass", "Poison", "Flying", "Bug", "Dragon", "Steel"]: eff["Grass"][u] = h
    for u in ["Grass", "Ground", "Flying", "Dragon"]: eff["Ice"][u] = s
    for u in ["Fire", "Water", "Ice", "Steel"]: eff["Ice"][u] = h
    for u in ["Normal", "Ice", "Rock", "Dark", "Steel"]: eff["Fighting"][u] = s
    for u in ["Poison", "Flying", "Psychic", "Bug", "Fairy"]: eff["Fighting"][u] = h
    eff["Fighting"]["Ghost"] = z
    eff["Poison"]["Grass"] = s
    for u in ["Poison", "Ground", "Rock", "Ghost"]: eff["Poison"][u] = h
    eff["Poison"]["Steel"] = z
    eff["Poison"]["Fairy"] = s
    for u in ["Fire", "Electric", "Poison", "Rock", "Steel"]: eff["Ground"][u] = s
    for u in ["Grass", "Bug"]: eff["Ground"][u] = h
    eff["Ground"]["Flying"] = z
    for u in ["Grass", "Fighting", "Bug"]: eff["Flying"][u] = s
    for u in ["Electric", "Rock", "Steel"]: eff["Flying"][u] = h
    for u in ["Fighting", "Poison"]: eff["Psychic"][u] = s
    for u in ["Psychic", "Steel"]: eff["Psychic"][u] = h
    eff["Psychic"]["Dark"] = z
    for u in ["Grass", "Psychic", "Dark"]: eff["Bug"][u] = s
    for u in ["Fire", "Fighting", "Poison", "Flying", "Ghost", "Steel", "Fairy"]: eff["Bug"][u] = h
    for u in ["Fire", "Ice", "Flying", "Bug"]: eff["Rock"][u] = s
    for u in ["Fighting", "Ground", "Steel"]: eff["Rock"][u] = h
    eff["Ghost"]["Ghost"] = s; eff["Ghost"]["Psychic"] = s
    eff["Ghost"]["Dark"] = h; eff["Ghost"]["Normal"] = z
    eff["Dragon"]["Dragon"] = s; eff["Dragon"]["Steel"] = h; eff["Dragon"]["Fairy"] = z
    eff["Dark"]["Psychic"] = s; eff["Dark"]["Ghost"] = s
    for u in ["Fighting", "Dark", "Fairy"]: eff["Dark"][u] = h
    for u in ["Rock", "Ice", "Fairy"]: eff["Steel"][u] = s
    for u in ["Fire", "Water", "Electric", "Steel"]: eff["Steel"][u] = h
    for u in ["Fighting", "Dragon", "Dark"]: eff["Fairy"][u] = s
    for u in ["Fire", "Poison", "Steel"]: eff["Fairy"][u] = h
    _STATIC_CHART = eff
    return eff
