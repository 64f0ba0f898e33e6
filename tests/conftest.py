"""
Shared pytest fixtures for the outcome engine test suite.

This module provides:
- A scripted damage function (fixed roll lists per move name, no game data)
- A fake species catalog for the worker's species checks
- Combatant / scenario / request builders
- A response collector for worker messages
"""

from typing import Any, Dict, List, NamedTuple, Optional

import pytest

from Mechanics.dex_info import STATS, SpeciesInfo
from Simulation.cache import DamageCache
from Simulation.engine import DamageComputation, build_roll_outcomes
from Simulation.types import FieldState, PokemonState, SimulationOptions, TimelineScenario


# =============================================================================
# Scripted collaborators
# =============================================================================


class Call(NamedTuple):
    actor: str
    attacker: PokemonState
    defender: PokemonState
    move: Any
    field: FieldState


class ScriptedDamage:
    """Damage function returning a fixed roll list per move name.

    Records every call as a ``Call`` so tests can inspect what the
    timeline asked for. ``on_call`` runs before each computation.
    """

    def __init__(self, rolls: Dict[str, List[int]], on_call=None):
        self.rolls = rolls
        self.calls: List[Call] = []
        self.on_call = on_call

    def __call__(self, actor_side, attacker, defender, move, field):
        self.calls.append(Call(actor_side, attacker, defender, move, field))
        if self.on_call is not None:
            self.on_call(len(self.calls))
        damages = self.rolls[move.name]
        return DamageComputation(
            rolls=build_roll_outcomes(damages, defender.max_hp or 1, move.drain_percent, move.recoil_percent),
            move_type="Normal",
        )


class FakeDex:
    """Species catalog with every base stat set to ``base``."""

    def __init__(self, species=("Testmon", "Foe"), base: int = 100):
        self.known = {s.lower() for s in species}
        self.base = base

    def has_species(self, name: str) -> bool:
        return (name or "").lower() in self.known

    def species(self, name: str) -> SpeciesInfo:
        if not self.has_species(name):
            raise KeyError(f"Unknown species: {name}")
        return SpeciesInfo(id=name.lower(), name=name, types=["Normal"], base_stats={k: self.base for k in STATS})


def fixed_move_type(move, attacker):
    return move.overrides.type or "Fire"


# =============================================================================
# Builders
# =============================================================================


def make_mon(species="Testmon", hp=100, max_hp=100, **kwargs) -> PokemonState:
    return PokemonState(species=species, current_hp=hp, max_hp=max_hp, **kwargs)


def move_action(action_id: str, actor: str, name: str, **extra) -> Dict[str, Any]:
    return {"type": "move", "id": action_id, "actor": actor, "move": {"name": name, **extra}}


def pass_action(action_id: str, actor: str) -> Dict[str, Any]:
    return {"type": "pass", "id": action_id, "actor": actor}


def turn(n: int, actions=None, events=None, order: str = "player") -> Dict[str, Any]:
    return {"turn": n, "order": order, "actions": actions or [], "events": events or []}


def scenario(*turns, allow_raid_stellar: bool = False) -> TimelineScenario:
    return TimelineScenario.from_dict({"turns": list(turns), "allowRaidStellar": allow_raid_stellar})


def request_dict(
    turns: List[Dict[str, Any]],
    ev_config: Optional[Dict[str, Any]] = None,
    options: Optional[Dict[str, Any]] = None,
    player: Optional[Dict[str, Any]] = None,
    opponent: Optional[Dict[str, Any]] = None,
    request_id: str = "req-1",
) -> Dict[str, Any]:
    return {
        "requestId": request_id,
        "scenario": {"turns": turns},
        "pokemon": {
            "player": player or {"species": "Testmon", "level": 50},
            "opponent": opponent or {"species": "Foe", "level": 50, "maxHP": 300, "currentHP": 300},
        },
        "field": {},
        "options": options or {},
        "evConfig": ev_config,
    }


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def pair():
    """Player and opponent at 100/100 HP."""
    return {"player": make_mon("Testmon"), "opponent": make_mon("Foe")}


@pytest.fixture
def field_state():
    return FieldState()


@pytest.fixture
def cache():
    return DamageCache(64)


@pytest.fixture
def singles():
    return SimulationOptions()


@pytest.fixture
def fake_dex():
    return FakeDex()


@pytest.fixture
def collector():
    """List that doubles as a worker ``post_message`` callback."""
    messages: List[Dict[str, Any]] = []

    class Collector(list):
        def __call__(self, message):
            self.append(message)

        def types(self):
            return [m["type"] for m in self]

        def phases(self):
            return [m["payload"]["progress"]["phase"] for m in self if m["type"] == "progress"]

    return Collector(messages)
