# types.py
"""
Data model for the outcome engine and its JSON message schema.

Python attributes are snake_case; the wire format (requests, responses, CLI
files) is camelCase. Every dataclass that crosses the boundary has a
``from_dict`` and/or ``to_dict``. Events and actions form a tagged union keyed
by their ``type`` string.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type, Union

from Mechanics.battle_helper import STELLAR, SideState
from Mechanics.dex_info import STATS

from . import settings
from .errors import ConfigurationError

SIDES = ("player", "opponent")
TERA_MODES = ("none", "tera", "stellar", "normal")
TIMINGS = ("turn-start", "action", "turn-end")
HP_MODES = ("absolute", "percent-max", "percent-last-damage", "fraction-max", "fraction-last-damage")
PHASES = ("initializing", "processing", "evaluating", "finalizing")


def other_side(side: str) -> str:
    return "opponent" if side == "player" else "player"


def _side(value: Any, what: str, default: Optional[str] = None) -> Optional[str]:
    if value is None:
        return default
    if value not in SIDES:
        raise ConfigurationError(f"Invalid side for {what}: {value!r}")
    return value


def _tera_mode(value: Any, what: str) -> Optional[str]:
    if value is None:
        return None
    if value not in TERA_MODES:
        raise ConfigurationError(f"Invalid tera mode for {what}: {value!r}")
    return value


def _stats_table(data: Optional[Dict[str, Any]], default: int) -> Dict[str, int]:
    data = data or {}
    return {k: int(data[k]) if data.get(k) is not None else default for k in STATS}


def _range(value: Any, what: str) -> Optional[Tuple[float, float]]:
    if value is None:
        return None
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        raise ConfigurationError(f"{what} must be a [min, max] pair, got {value!r}")
    lo, hi = value
    try:
        lo, hi = float(lo), float(hi)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{what} must be numeric, got {value!r}") from exc
    if lo > hi:
        raise ConfigurationError(f"{what} has min > max: {value!r}")
    return lo, hi


def _int_range(value: Any, what: str, default: Tuple[int, int]) -> Tuple[int, int]:
    rng = _range(value, what)
    if rng is None:
        return default
    return int(rng[0]), int(rng[1])


def _drop_none(d: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None}


# ----------------------------- Combatants & field -------------------------------

@dataclass
class PokemonState:
    species: str
    level: int = 50
    nature: str = "Hardy"
    ability: Optional[str] = None
    item: Optional[str] = None
    tera_type: Optional[str] = None
    tera_mode: str = "none"
    ivs: Dict[str, int] = field(default_factory=lambda: {k: 31 for k in STATS})
    evs: Dict[str, int] = field(default_factory=lambda: {k: 0 for k in STATS})
    boosts: Dict[str, int] = field(default_factory=dict)
    current_hp: Optional[int] = None
    max_hp: Optional[int] = None
    types: Optional[List[str]] = None
    status: Optional[str] = None
    base_stats_override: Optional[Dict[str, int]] = None

    def clone(self) -> "PokemonState":
        return replace(
            self,
            ivs=dict(self.ivs),
            evs=dict(self.evs),
            boosts=dict(self.boosts),
            types=list(self.types) if self.types is not None else None,
            base_stats_override=dict(self.base_stats_override) if self.base_stats_override else None,
        )

    @property
    def terastallized(self) -> bool:
        return self.tera_mode != "none" and self.effective_tera_type is not None

    @property
    def effective_tera_type(self) -> Optional[str]:
        if self.tera_mode == "stellar":
            return STELLAR
        return self.tera_type

    def signature(self) -> Dict[str, Any]:
        """Fields that change the damage calculator's output."""
        return {
            "species": self.species,
            "level": self.level,
            "ability": self.ability,
            "item": self.item,
            "nature": self.nature,
            "status": self.status,
            "teraMode": self.tera_mode,
            "teraType": self.tera_type,
            "ivs": self.ivs,
            "evs": self.evs,
            "boosts": {k: v for k, v in self.boosts.items() if v},
            "types": self.types,
            "overrides": self.base_stats_override,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PokemonState":
        if not isinstance(data, dict) or not data.get("species"):
            raise ConfigurationError("Combatant requires a species")
        overrides = data.get("overrides") or {}
        base_override = overrides.get("baseStats")
        return cls(
            species=str(data["species"]),
            level=int(data.get("level", 50)),
            nature=data.get("nature") or "Hardy",
            ability=data.get("ability"),
            item=data.get("item"),
            tera_type=data.get("teraType"),
            tera_mode=_tera_mode(data.get("teraMode"), "combatant") or "none",
            ivs=_stats_table(data.get("ivs"), 31),
            evs=_stats_table(data.get("evs"), 0),
            boosts={k: int(v) for k, v in (data.get("boosts") or {}).items() if v},
            current_hp=data.get("currentHP"),
            max_hp=data.get("maxHP"),
            types=list(data["types"]) if data.get("types") else None,
            status=data.get("status"),
            base_stats_override=_stats_table(base_override, 0) if base_override else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "species": self.species,
            "level": self.level,
            "nature": self.nature,
            "ability": self.ability,
            "item": self.item,
            "teraType": self.tera_type,
            "teraMode": self.tera_mode,
            "ivs": dict(self.ivs),
            "evs": dict(self.evs),
            "boosts": dict(self.boosts),
            "currentHP": self.current_hp,
            "maxHP": self.max_hp,
            "types": self.types,
            "status": self.status,
            "overrides": {"baseStats": self.base_stats_override} if self.base_stats_override else None,
        })


@dataclass
class FieldState:
    weather: Optional[str] = None
    terrain: Optional[str] = None
    trick_room: bool = False
    gravity: bool = False
    sides: Dict[str, SideState] = field(default_factory=lambda: {s: SideState() for s in SIDES})

    def clone(self) -> "FieldState":
        return replace(self, sides={k: replace(v) for k, v in self.sides.items()})

    def side(self, side: str) -> SideState:
        return self.sides.get(side) or SideState()

    def signature(self) -> Dict[str, Any]:
        return {"weather": self.weather, "terrain": self.terrain, "trickRoom": self.trick_room}

    def key(self) -> Dict[str, Any]:
        sig = self.signature()
        sig["sides"] = {s: self.side(s).signature() for s in SIDES}
        return sig

    def merged(self, updates: Dict[str, Any]) -> "FieldState":
        """Copy with the weather/terrain/trick-room keys present in ``updates`` applied."""
        out = self.clone()
        if "weather" in updates:
            out.weather = updates["weather"]
        if "terrain" in updates:
            out.terrain = updates["terrain"]
        if "trickRoom" in updates:
            out.trick_room = bool(updates["trickRoom"])
        return out

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "FieldState":
        data = data or {}
        return cls(
            weather=data.get("weather"),
            terrain=data.get("terrain"),
            trick_room=bool(data.get("trickRoom", False)),
            gravity=bool(data.get("gravity", False)),
            sides={
                "player": SideState.from_dict(data.get("playerSide", data.get("attackerSide"))),
                "opponent": SideState.from_dict(data.get("opponentSide", data.get("defenderSide"))),
            },
        )


# ----------------------------- Moves --------------------------------------------

@dataclass
class MoveOverrides:
    type: Optional[str] = None
    power: Optional[int] = None
    category: Optional[str] = None

    def signature(self) -> Dict[str, Any]:
        return {"type": self.type, "power": self.power, "category": self.category}


@dataclass
class MoveConfig:
    name: str
    tera_mode: Optional[str] = None
    tera_type: Optional[str] = None
    is_crit: bool = False
    hits: int = 1
    priority: int = 0
    # Fractions of damage dealt (0.5 == half)
    drain_percent: Optional[float] = None
    recoil_percent: Optional[float] = None
    stellar_first_use: Optional[bool] = None
    overrides: MoveOverrides = field(default_factory=MoveOverrides)

    def copy(self) -> "MoveConfig":
        return replace(self, overrides=replace(self.overrides))

    def signature(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "isCrit": self.is_crit,
            "hits": self.hits,
            "priority": self.priority,
            "drainPercent": self.drain_percent,
            "recoilPercent": self.recoil_percent,
            "overrides": self.overrides.signature(),
            "teraMode": self.tera_mode,
            "teraType": self.tera_type,
            "stellarFirstUse": self.stellar_first_use,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MoveConfig":
        if not isinstance(data, dict) or not data.get("name"):
            raise ConfigurationError("Move requires a name")
        ov = data.get("overrides") or {}
        return cls(
            name=str(data["name"]),
            tera_mode=_tera_mode(data.get("teraMode"), f"move {data['name']}"),
            tera_type=data.get("teraType"),
            is_crit=bool(data.get("isCrit", False)),
            hits=max(1, int(data.get("hits") or 1)),
            priority=int(data.get("priority") or 0),
            drain_percent=data.get("drainPercent"),
            recoil_percent=data.get("recoilPercent"),
            stellar_first_use=data.get("stellarFirstUse"),
            overrides=MoveOverrides(type=ov.get("type"), power=ov.get("power"), category=ov.get("category")),
        )


# ----------------------------- Events (tagged union) ----------------------------

@dataclass
class BattleEvent:
    id: Optional[str] = None
    actor: Optional[str] = None
    label: Optional[str] = None
    timing: str = "action"
    related_action_id: Optional[str] = None
    notes: Optional[str] = None

    type: ClassVar[str] = ""

    @classmethod
    def _common(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        timing = data.get("timing") or "action"
        if timing not in TIMINGS:
            raise ConfigurationError(f"Invalid event timing: {timing!r}")
        return {
            "id": data.get("id"),
            "actor": _side(data.get("actor"), f"{cls.type} event"),
            "label": data.get("label"),
            "timing": timing,
            "related_action_id": data.get("relatedActionId"),
            "notes": data.get("notes"),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BattleEvent":
        return cls(**cls._common(data))


@dataclass
class AttackEvent(BattleEvent):
    target: Optional[str] = None
    move: Optional[MoveConfig] = None

    type: ClassVar[str] = "attack"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AttackEvent":
        common = cls._common(data)
        if common["actor"] is None:
            raise ConfigurationError("Attack event requires an actor")
        return cls(
            target=_side(data.get("target"), "attack target"),
            move=MoveConfig.from_dict(data.get("move") or {}),
            **common,
        )


@dataclass
class HealRange:
    min: int
    max: int


@dataclass
class HealingEvent(BattleEvent):
    # number, "fraction" or HealRange
    amount: Union[int, float, str, HealRange] = 0
    fraction: Optional[float] = None
    fraction_numerator: Optional[float] = None
    fraction_denominator: Optional[float] = None

    type: ClassVar[str] = "healing"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HealingEvent":
        raw = data.get("amount", 0)
        if isinstance(raw, dict):
            amount: Union[int, float, str, HealRange] = HealRange(int(raw.get("min", 0)), int(raw.get("max", raw.get("min", 0))))
        elif raw == "fraction":
            amount = "fraction"
        else:
            amount = float(raw or 0)
        return cls(
            amount=amount,
            fraction=data.get("fraction"),
            fraction_numerator=data.get("fractionNumerator"),
            fraction_denominator=data.get("fractionDenominator"),
            **cls._common(data),
        )


@dataclass
class HpAdjustmentEvent(BattleEvent):
    target: Optional[str] = None
    amount: float = 0
    is_damage: bool = True
    mode: str = "absolute"
    fraction_numerator: Optional[float] = None
    fraction_denominator: Optional[float] = None

    type: ClassVar[str] = "hp-adjustment"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HpAdjustmentEvent":
        mode = data.get("mode") or "absolute"
        if mode not in HP_MODES:
            raise ConfigurationError(f"Invalid hp-adjustment mode: {mode!r}")
        return cls(
            target=_side(data.get("target"), "hp-adjustment target"),
            amount=float(data.get("amount") or 0),
            is_damage=bool(data.get("isDamage", True)),
            mode=mode,
            fraction_numerator=data.get("fractionNumerator"),
            fraction_denominator=data.get("fractionDenominator"),
            **cls._common(data),
        )


@dataclass
class StatChangeEvent(BattleEvent):
    stages: Dict[str, int] = field(default_factory=dict)

    type: ClassVar[str] = "stat-change"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StatChangeEvent":
        return cls(
            stages={k: int(v) for k, v in (data.get("stages") or {}).items() if v is not None},
            **cls._common(data),
        )


@dataclass
class StatusEvent(BattleEvent):
    status: Optional[str] = None
    clears: bool = False

    type: ClassVar[str] = "status"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StatusEvent":
        return cls(status=data.get("status"), clears=bool(data.get("clears", False)), **cls._common(data))


@dataclass
class FieldToggleEvent(BattleEvent):
    # Only the keys present are applied: weather, terrain, trickRoom
    updates: Dict[str, Any] = field(default_factory=dict)

    type: ClassVar[str] = "field-toggle"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldToggleEvent":
        updates = data.get("field") or {}
        return cls(
            updates={k: updates[k] for k in ("weather", "terrain", "trickRoom") if k in updates},
            **cls._common(data),
        )


@dataclass
class SwitchEvent(BattleEvent):
    target_species: Optional[str] = None
    set_hp_percent: Optional[float] = None
    ability: Optional[str] = None
    item: Optional[str] = None
    max_hp: Optional[int] = None

    type: ClassVar[str] = "switch"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SwitchEvent":
        incoming = data.get("pokemon") or {}
        return cls(
            target_species=data.get("targetSpecies") or incoming.get("species"),
            set_hp_percent=data.get("setHpPercent"),
            ability=data.get("ability"),
            item=data.get("item"),
            max_hp=incoming.get("maxHP"),
            **cls._common(data),
        )


@dataclass
class AbilityActivationEvent(BattleEvent):
    count: int = 1

    type: ClassVar[str] = "ability-activation"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AbilityActivationEvent":
        return cls(count=int(data.get("count") or 1), **cls._common(data))


EVENT_TYPES: Dict[str, Type[BattleEvent]] = {
    c.type: c
    for c in (
        AttackEvent, HealingEvent, HpAdjustmentEvent, StatChangeEvent,
        StatusEvent, FieldToggleEvent, SwitchEvent, AbilityActivationEvent,
    )
}


def parse_event(data: Dict[str, Any]) -> BattleEvent:
    kind = data.get("type") if isinstance(data, dict) else None
    cls = EVENT_TYPES.get(kind)
    if cls is None:
        raise ConfigurationError(f"Unknown event type: {kind!r}")
    return cls.from_dict(data)


# ----------------------------- Actions (tagged union) ---------------------------

@dataclass
class BattleAction:
    id: str
    actor: str

    type: ClassVar[str] = ""


@dataclass
class MoveAction(BattleAction):
    move: Optional[MoveConfig] = None
    target: Optional[str] = None
    tera_mode: Optional[str] = None
    tera_type: Optional[str] = None

    type: ClassVar[str] = "move"


@dataclass
class SwitchAction(BattleAction):
    target_species: Optional[str] = None
    set_hp_percent: Optional[float] = None
    ability: Optional[str] = None
    item: Optional[str] = None

    type: ClassVar[str] = "switch"


@dataclass
class PassAction(BattleAction):
    type: ClassVar[str] = "pass"


def parse_action(data: Dict[str, Any]) -> BattleAction:
    if not isinstance(data, dict):
        raise ConfigurationError(f"Action must be an object, got {data!r}")
    kind = data.get("type")
    action_id = data.get("id")
    if not action_id:
        raise ConfigurationError(f"{kind or 'unknown'} action requires an id")
    actor = _side(data.get("actor"), f"action {action_id}")
    if actor is None:
        raise ConfigurationError(f"Action {action_id} requires an actor")
    if kind == "move":
        return MoveAction(
            id=str(action_id),
            actor=actor,
            move=MoveConfig.from_dict(data.get("move") or {}),
            target=_side(data.get("target"), f"action {action_id} target"),
            tera_mode=_tera_mode(data.get("teraMode"), f"action {action_id}"),
            tera_type=data.get("teraType"),
        )
    if kind == "switch":
        return SwitchAction(
            id=str(action_id),
            actor=actor,
            target_species=data.get("targetSpecies"),
            set_hp_percent=data.get("setHpPercent"),
            ability=data.get("ability"),
            item=data.get("item"),
        )
    if kind == "pass":
        return PassAction(id=str(action_id), actor=actor)
    raise ConfigurationError(f"Unknown action type: {kind!r}")


# ----------------------------- Scenario -----------------------------------------

@dataclass
class TimelineTurn:
    turn: int
    order: str = "player"
    id: Optional[str] = None
    label: Optional[str] = None
    events: List[BattleEvent] = field(default_factory=list)
    actions: List[BattleAction] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], index: int) -> "TimelineTurn":
        return cls(
            turn=int(data.get("turn", index + 1)),
            order=_side(data.get("order"), "turn order", "player"),
            id=data.get("id"),
            label=data.get("label"),
            events=[parse_event(e) for e in data.get("events") or []],
            actions=[parse_action(a) for a in data.get("actions") or []],
        )


@dataclass
class TimelineScenario:
    turns: List[TimelineTurn] = field(default_factory=list)
    allow_raid_stellar: bool = False

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TimelineScenario":
        data = data or {}
        return cls(
            turns=[TimelineTurn.from_dict(t, i) for i, t in enumerate(data.get("turns") or [])],
            allow_raid_stellar=bool(data.get("allowRaidStellar", False)),
        )


# ----------------------------- Timeline results ---------------------------------

@dataclass
class DistributionPoint:
    hp: int
    probability: float

    def to_dict(self) -> Dict[str, Any]:
        return {"hp": self.hp, "probability": self.probability}


@dataclass
class TimelineSnapshot:
    turn: int
    event_id: str
    sequence: int
    hp: Dict[str, int]
    max_hp: Dict[str, int]
    probability: float
    description: str
    hp_distribution: List[DistributionPoint]
    opponent_hp_distribution: List[DistributionPoint]
    damage_rolls: Optional[List[int]] = None
    delta_hp: Optional[Dict[str, float]] = None
    max_hp_before: Optional[Dict[str, float]] = None
    actor: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "turn": self.turn,
            "eventId": self.event_id,
            "sequence": self.sequence,
            "hp": dict(self.hp),
            "maxHP": dict(self.max_hp),
            "probability": self.probability,
            "description": self.description,
            "hpDistribution": [p.to_dict() for p in self.hp_distribution],
            "opponentHpDistribution": [p.to_dict() for p in self.opponent_hp_distribution],
            "damageRolls": list(self.damage_rolls) if self.damage_rolls is not None else None,
            "deltaHP": self.delta_hp,
            "maxHPBefore": self.max_hp_before,
            "actor": self.actor,
        })


@dataclass
class TimelineResult:
    survival: float
    opponent_survival: float
    hp_distribution: List[DistributionPoint]
    snapshots: List[TimelineSnapshot]
    observation_likelihood: float = 0.0


# ----------------------------- Options & grid config ----------------------------

@dataclass
class SimulationOptions:
    batch_size: int = settings.DEFAULT_BATCH_SIZE
    timeout_ms: int = settings.DEFAULT_TIMEOUT_MS
    battle_style: str = "singles"
    allow_raid_stellar: bool = False

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SimulationOptions":
        data = data or {}
        style = data.get("battleStyle") or "singles"
        if style not in ("singles", "doubles"):
            raise ConfigurationError(f"Invalid battle style: {style!r}")
        return cls(
            batch_size=max(1, int(data.get("batchSize") or settings.DEFAULT_BATCH_SIZE)),
            timeout_ms=int(data.get("timeoutMs") or settings.DEFAULT_TIMEOUT_MS),
            battle_style=style,
            allow_raid_stellar=bool(data.get("allowRaidStellar", False)),
        )


@dataclass
class CustomPriorWeight:
    hp_ev: int
    def_ev: int
    weight: float


@dataclass
class PriorConfig:
    type: str = "uniform"   # uniform | meta | custom | <meta profile name>
    custom_weights: List[CustomPriorWeight] = field(default_factory=list)
    meta_profile: Optional[str] = None

    @classmethod
    def from_value(cls, value: Any) -> "PriorConfig":
        if value is None:
            return cls()
        if isinstance(value, str):
            return cls(type=value)
        if not isinstance(value, dict):
            raise ConfigurationError(f"Invalid prior: {value!r}")
        return cls(
            type=value.get("type") or "uniform",
            custom_weights=[
                CustomPriorWeight(int(w["hpEV"]), int(w["defEV"]), float(w.get("weight", 0)))
                for w in value.get("customWeights") or []
            ],
            meta_profile=value.get("metaProfile"),
        )


@dataclass
class EVGridConfig:
    enabled: bool = False
    target_side: str = "player"
    hp_range: Tuple[int, int] = (0, settings.MAX_EV)
    def_range: Tuple[int, int] = (0, settings.MAX_EV)
    axis_step: int = settings.DEFAULT_AXIS_STEP
    atk_range: Optional[Tuple[int, int]] = None
    spa_range: Optional[Tuple[int, int]] = None
    offense_step: Optional[int] = None
    max_combined_ev: Optional[int] = None
    offense_max_combined_ev: Optional[int] = None
    prior: PriorConfig = field(default_factory=PriorConfig)
    observation_event_id: Optional[str] = None
    observation_percent: Optional[Tuple[float, float]] = None
    target_survival: Optional[float] = None
    target_ko: Optional[float] = None
    enable_survival: bool = True
    enable_ko: bool = False
    enable_opponent_atk_range: bool = False
    enable_opponent_bulk_range: bool = False
    opponent_damage_fixed: Optional[float] = None
    opponent_damage_range: Optional[Tuple[float, float]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EVGridConfig":
        if not isinstance(data, dict):
            raise ConfigurationError("EV grid config must be an object")
        atk = _range(data.get("atkRange"), "atkRange")
        spa = _range(data.get("spaRange"), "spaRange")
        step = int(data.get("axisStep") or settings.DEFAULT_AXIS_STEP)
        if step <= 0:
            raise ConfigurationError(f"axisStep must be positive, got {step}")
        return cls(
            enabled=bool(data.get("enabled", False)),
            target_side=_side(data.get("targetSide"), "EV grid target", "player"),
            hp_range=_int_range(data.get("hpRange"), "hpRange", (0, settings.MAX_EV)),
            def_range=_int_range(data.get("defRange"), "defRange", (0, settings.MAX_EV)),
            axis_step=step,
            atk_range=(int(atk[0]), int(atk[1])) if atk else None,
            spa_range=(int(spa[0]), int(spa[1])) if spa else None,
            offense_step=data.get("offenseStep"),
            max_combined_ev=data.get("maxCombinedEV"),
            offense_max_combined_ev=data.get("offenseMaxCombinedEV"),
            prior=PriorConfig.from_value(data.get("prior")),
            observation_event_id=data.get("observationEventId"),
            observation_percent=_range(data.get("observationPercent"), "observationPercent"),
            target_survival=data.get("targetSurvival"),
            target_ko=data.get("targetKO"),
            enable_survival=bool(data.get("enableSurvival", True)),
            enable_ko=bool(data.get("enableKO", False)),
            enable_opponent_atk_range=bool(data.get("enableOpponentAtkRange", False)),
            enable_opponent_bulk_range=bool(data.get("enableOpponentBulkRange", False)),
            opponent_damage_fixed=data.get("opponentDamageFixed"),
            opponent_damage_range=_range(data.get("opponentDamageRange"), "opponentDamageRange"),
        )


# ----------------------------- Grid points & results ----------------------------

@dataclass
class EVGridPoint:
    hp_ev: int
    def_ev: int
    prior_weight: float
    weight: float
    kind: str = "defense"
    atk_ev: Optional[int] = None
    spa_ev: Optional[int] = None
    survival: Optional[float] = None
    ko_chance: Optional[float] = None
    observation_likelihood: Optional[float] = None
    damage_range_likelihood: Optional[float] = None

    @property
    def defense_total(self) -> int:
        return self.hp_ev + self.def_ev

    @property
    def offense_total(self) -> int:
        return (self.atk_ev or 0) + (self.spa_ev or 0)


@dataclass
class EVHeatmapCell:
    hp_ev: int
    def_ev: int
    survival: float
    weight: float
    metric: str = "survival"

    def to_dict(self) -> Dict[str, Any]:
        return {"hpEV": self.hp_ev, "defEV": self.def_ev, "survival": self.survival,
                "weight": self.weight, "metric": self.metric}


@dataclass
class EVPlan:
    hp_ev: int
    def_ev: int
    survival: float
    investment: int
    total_ev: int
    meets_target: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"hpEV": self.hp_ev, "defEV": self.def_ev, "survival": self.survival,
                "investment": self.investment, "totalEV": self.total_ev, "meetsTarget": self.meets_target}


@dataclass
class EVOffensePlan:
    atk_ev: int
    spa_ev: int
    ko_chance: float
    total_ev: int
    meets_target: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"atkEV": self.atk_ev, "spaEV": self.spa_ev, "koChance": self.ko_chance,
                "totalEV": self.total_ev, "meetsTarget": self.meets_target}


@dataclass
class SensitivityMetrics:
    hp_sensitivity: float = 0.0
    def_sensitivity: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {"hpSensitivity": self.hp_sensitivity, "defSensitivity": self.def_sensitivity}


@dataclass
class SimulationSummary:
    survival: float
    hp_distribution: List[DistributionPoint]
    snapshots: List[TimelineSnapshot]
    heatmap: Optional[List[EVHeatmapCell]] = None
    top_plans: Optional[List[EVPlan]] = None
    ko_chance: Optional[float] = None
    ko_plans: Optional[List[EVOffensePlan]] = None
    sensitivity: Optional[SensitivityMetrics] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "survival": self.survival,
            "hpDistribution": [p.to_dict() for p in self.hp_distribution],
            "heatmap": [c.to_dict() for c in self.heatmap] if self.heatmap is not None else None,
            "topPlans": [p.to_dict() for p in self.top_plans] if self.top_plans is not None else None,
            "koChance": self.ko_chance,
            "koPlans": [p.to_dict() for p in self.ko_plans] if self.ko_plans is not None else None,
            "sensitivity": self.sensitivity.to_dict() if self.sensitivity is not None else None,
            "snapshots": [s.to_dict() for s in self.snapshots],
        })


# ----------------------------- Job request & progress ---------------------------

@dataclass
class SimulationRequest:
    request_id: str
    scenario: TimelineScenario
    pokemon: Dict[str, PokemonState]
    field_state: FieldState = field(default_factory=FieldState)
    options: SimulationOptions = field(default_factory=SimulationOptions)
    ev_config: Optional[EVGridConfig] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SimulationRequest":
        if not isinstance(data, dict) or not data.get("requestId"):
            raise ConfigurationError("Simulation request requires a requestId")
        pokemon = data.get("pokemon") or {}
        missing = [s for s in SIDES if s not in pokemon]
        if missing:
            raise ConfigurationError(f"Missing combatant(s): {', '.join(missing)}")
        ev = data.get("evConfig") or data.get("evGridConfig")
        try:
            return cls(
                request_id=str(data["requestId"]),
                scenario=TimelineScenario.from_dict(data.get("scenario")),
                pokemon={s: PokemonState.from_dict(pokemon[s]) for s in SIDES},
                field_state=FieldState.from_dict(data.get("field")),
                options=SimulationOptions.from_dict(data.get("options")),
                ev_config=EVGridConfig.from_dict(ev) if ev is not None else None,
            )
        except (ValueError, TypeError, AttributeError) as exc:
            # Non-numeric or wrongly shaped fields deep inside the payload
            raise ConfigurationError(f"Invalid simulation request: {exc}") from exc


@dataclass
class SimulationProgress:
    request_id: str
    processed: int
    total: int
    elapsed_ms: float
    phase: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requestId": self.request_id,
            "processed": self.processed,
            "total": self.total,
            "elapsedMs": self.elapsed_ms,
            "phase": self.phase,
        }
