"""LRU memo for damage computations, one instance per job."""

from __future__ import annotations

import json
import logging
from collections import OrderedDict
from typing import Any, Dict, Generic, Optional, TypeVar

from . import settings
from .types import FieldState, MoveConfig, PokemonState

log = logging.getLogger("Simulation.cache")

T = TypeVar("T")


def build_cache_key(
    actor_side: str,
    attacker: PokemonState,
    defender: PokemonState,
    move: MoveConfig,
    field: FieldState,
) -> str:
    """Serialize the inputs that change the damage calculator's output.

    Current HP is not part of the key; the calculator only reads max HP,
    which follows from species, level, IVs and EVs.
    """
    payload: Dict[str, Any] = {
        "actorSide": actor_side,
        "attacker": attacker.signature(),
        "defender": defender.signature(),
        "move": move.signature(),
        "field": field.signature(),
    }
    return json.dumps(payload, sort_keys=True, separators=(",", ":"))


class DamageCache(Generic[T]):
    """Strict LRU with a fixed capacity. ``get`` refreshes recency."""

    def __init__(self, limit: int = settings.DAMAGE_CACHE_SIZE):
        if limit < 1:
            raise ValueError(f"cache limit must be positive, got {limit}")
        self.limit = limit
        self._entries: "OrderedDict[str, T]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> Optional[T]:
        value = self._entries.get(key)
        if value is None:
            self.misses += 1
            return None
        self._entries.move_to_end(key)
        self.hits += 1
        return value

    def put(self, key: str, value: T) -> None:
        if key in self._entries:
            del self._entries[key]
        self._entries[key] = value
        if len(self._entries) > self.limit:
            evicted, _ = self._entries.popitem(last=False)
            log.debug("damage cache evicted %s", evicted[:80])

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0
