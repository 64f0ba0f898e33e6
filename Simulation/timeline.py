# timeline.py
"""
Branching timeline simulator.

Expands a scripted scenario into a weighted population of branches. Each
branch is one hypothesized world state with a probability mass; attacks split
a branch once per damage roll (all rolls equally likely) and after every
processing step branches with the same canonical key are merged, so the
population stays bounded by the number of distinct reachable states.

Turn order (at most MAX_TIMELINE_TURNS turns):
  1. turn-start events not tied to an action
  2. actions in order; after each: merge, snapshot, events tied to that action
  3. action-timed events not tied to an action
  4. end-of-turn Leftovers recovery
  5. turn-end events
The run stops as soon as every branch is terminated.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from poke_env.data.normalize import to_id_str

from Mechanics.stat_effects import apply_stage_deltas

from . import settings
from .cache import DamageCache, build_cache_key
from .engine import DamageComputation, DamageFn, compute_damage, resolve_move_type
from .errors import ComputationError, SimulationError
from .types import (
    SIDES,
    AbilityActivationEvent,
    AttackEvent,
    BattleAction,
    BattleEvent,
    DistributionPoint,
    FieldState,
    FieldToggleEvent,
    HealingEvent,
    HealRange,
    HpAdjustmentEvent,
    MoveAction,
    MoveConfig,
    PassAction,
    PokemonState,
    SimulationOptions,
    StatChangeEvent,
    StatusEvent,
    SwitchAction,
    SwitchEvent,
    TimelineResult,
    TimelineScenario,
    TimelineSnapshot,
    TimelineTurn,
    other_side,
)

log = logging.getLogger("Simulation.timeline")

MoveTypeFn = Callable[[MoveConfig, PokemonState], str]


def js_round(x: float) -> int:
    """Round half up (not banker's rounding)."""
    return int(math.floor(x + 0.5))


# ---------------------------- Branch --------------------------------------------

@dataclass
class Branch:
    pokemon: Dict[str, PokemonState]
    hp: Dict[str, int]
    max_hp: Dict[str, int]
    tera_mode: Dict[str, str]
    tera_type: Dict[str, Optional[str]]
    stellar_usage: Dict[str, Set[str]]
    last_damage: Dict[str, int]
    field: FieldState
    probability: float = 1.0
    terminated: bool = False

    @classmethod
    def initial(cls, pokemon: Dict[str, PokemonState], field_state: FieldState) -> "Branch":
        mons = {s: pokemon[s].clone() for s in SIDES}
        max_hp = {s: int(mons[s].max_hp or mons[s].current_hp or 1) for s in SIDES}
        hp = {s: int(mons[s].current_hp if mons[s].current_hp is not None else max_hp[s]) for s in SIDES}
        for s in SIDES:
            mons[s].current_hp = hp[s]
            mons[s].max_hp = max_hp[s]
        return cls(
            pokemon=mons,
            hp=hp,
            max_hp=max_hp,
            tera_mode={s: mons[s].tera_mode or "none" for s in SIDES},
            tera_type={s: mons[s].tera_type for s in SIDES},
            stellar_usage={s: set() for s in SIDES},
            last_damage={s: 0 for s in SIDES},
            field=field_state.clone(),
        )

    def clone(self) -> "Branch":
        return Branch(
            pokemon={s: p.clone() for s, p in self.pokemon.items()},
            hp=dict(self.hp),
            max_hp=dict(self.max_hp),
            tera_mode=dict(self.tera_mode),
            tera_type=dict(self.tera_type),
            stellar_usage={s: set(u) for s, u in self.stellar_usage.items()},
            last_damage=dict(self.last_damage),
            field=self.field.clone(),
            probability=self.probability,
            terminated=self.terminated,
        )

    def key(self) -> Tuple:
        """Canonical state key; branches with equal keys are merged."""
        parts: List = []
        for s in SIDES:
            mon = self.pokemon[s]
            parts.extend([
                js_round(self.hp[s]),
                self.tera_mode[s],
                self.tera_type[s] or "",
                mon.species,
                mon.ability or "",
                mon.item or "",
                mon.status or "",
                tuple(sorted((k, v) for k, v in mon.boosts.items() if v)),
                tuple(sorted(self.stellar_usage[s])),
                self.last_damage[s],
            ])
        f = self.field
        parts.append((f.weather or "", f.terrain or "", f.trick_room,
                      tuple(tuple(sorted(f.side(s).signature().items())) for s in SIDES)))
        parts.append(self.terminated)
        return tuple(parts)


def merge_branches(branches: Sequence[Branch]) -> List[Branch]:
    """Collapse branches with identical keys, summing their probability."""
    merged: Dict[Tuple, Branch] = {}
    for branch in branches:
        k = branch.key()
        existing = merged.get(k)
        if existing is None:
            merged[k] = branch
        else:
            existing.probability += branch.probability
    return list(merged.values())


def all_terminated(branches: Sequence[Branch]) -> bool:
    return all(b.terminated for b in branches)


def to_distribution(branches: Sequence[Branch], side: str) -> List[DistributionPoint]:
    buckets: Dict[int, float] = {}
    for b in branches:
        hp = max(0, js_round(b.hp[side]))
        buckets[hp] = buckets.get(hp, 0.0) + b.probability
    total = sum(buckets.values())
    if total <= 0:
        return []
    return [DistributionPoint(hp, p / total) for hp, p in sorted(buckets.items())]


def weighted_average(distribution: Sequence[DistributionPoint]) -> float:
    return sum(d.hp * d.probability for d in distribution)


# ---------------------------- Snapshots -----------------------------------------

@dataclass
class _PreState:
    hp: Dict[str, int]
    max_hp: Dict[str, int]
    probability: float


def capture(branches: Sequence[Branch]) -> List[_PreState]:
    return [_PreState(dict(b.hp), dict(b.max_hp), b.probability) for b in branches]


def build_snapshot(
    branches: Sequence[Branch],
    before: Sequence[_PreState],
    turn: int,
    event_id: str,
    description: str,
    sequence: int,
    damage_rolls: Optional[List[int]] = None,
    actor: Optional[str] = None,
) -> Optional[TimelineSnapshot]:
    if not branches:
        return None
    player_dist = to_distribution(branches, "player")
    opponent_dist = to_distribution(branches, "opponent")
    first = branches[0]
    avg = {
        "player": weighted_average(player_dist) if player_dist else first.hp["player"],
        "opponent": weighted_average(opponent_dist) if opponent_dist else first.hp["opponent"],
    }

    delta_hp = None
    max_hp_before = None
    if before:
        total = sum(b.probability for b in before) or 1.0
        delta_hp = {}
        max_hp_before = {}
        for s in SIDES:
            prev_hp = sum(b.hp[s] * b.probability for b in before) / total
            delta_hp[s] = prev_hp - avg[s]
            max_hp_before[s] = sum(b.max_hp[s] * b.probability for b in before) / total

    return TimelineSnapshot(
        turn=turn,
        event_id=event_id,
        sequence=sequence,
        hp={s: js_round(avg[s]) for s in SIDES},
        max_hp=dict(first.max_hp),
        probability=sum(b.probability for b in branches),
        description=description,
        hp_distribution=player_dist,
        opponent_hp_distribution=opponent_dist,
        damage_rolls=damage_rolls,
        delta_hp=delta_hp,
        max_hp_before=max_hp_before,
        actor=actor,
    )


# ---------------------------- Ordering / description ----------------------------

def order_actions(turn: TimelineTurn, battle_style: str) -> List[BattleAction]:
    """Doubles keeps declared order; singles runs ``turn.order``'s side first."""
    actions = list(turn.actions)
    if battle_style == "doubles":
        return actions
    first = turn.order
    second = other_side(first)
    return (
        [a for a in actions if a.actor == first]
        + [a for a in actions if a.actor == second]
        + [a for a in actions if a.actor not in (first, second)]
    )


def describe_action(action: BattleAction) -> str:
    if isinstance(action, MoveAction) and action.move is not None:
        return f"{action.actor}: {action.move.name}"
    if isinstance(action, SwitchAction):
        return f"{action.actor} switches to {action.target_species or '?'}"
    return f"{action.actor}: no action"


def _resolve_fraction(
    numerator: Optional[float],
    denominator: Optional[float],
    explicit: Optional[float] = None,
) -> Optional[float]:
    if explicit is not None:
        return float(explicit)
    if denominator is None or float(denominator) == 0:
        return None
    num = 1.0 if numerator is None else float(numerator)
    return num / float(denominator)


# ---------------------------- Event results -------------------------------------

@dataclass
class EventResult:
    branches: List[Branch]
    observation_contribution: float = 0.0
    damage_rolls: Optional[List[int]] = None


# ---------------------------- Simulator -----------------------------------------

class TimelineSimulator:
    """One run over one scenario; owns the branch population and snapshot stream."""

    def __init__(
        self,
        scenario: TimelineScenario,
        pokemon: Dict[str, PokemonState],
        field_state: FieldState,
        cache: DamageCache,
        options: Optional[SimulationOptions] = None,
        observation_event_id: Optional[str] = None,
        observation_range: Optional[Tuple[float, float]] = None,
        damage_fn: Optional[DamageFn] = None,
        move_type_fn: Optional[MoveTypeFn] = None,
    ):
        self.scenario = scenario
        self.cache = cache
        self.options = options or SimulationOptions()
        self.observation_event_id = observation_event_id
        self.observation_range = observation_range
        self.allow_raid_stellar = bool(scenario.allow_raid_stellar or self.options.allow_raid_stellar)
        self.damage_fn: DamageFn = damage_fn or compute_damage
        self.move_type_fn: MoveTypeFn = move_type_fn or resolve_move_type

        self.branches: List[Branch] = [Branch.initial(pokemon, field_state)]
        self.snapshots: List[TimelineSnapshot] = []
        self.observation_likelihood = 0.0
        self._sequence = 0

    # ----- driver -----

    def run(self) -> TimelineResult:
        for turn in self.scenario.turns[: settings.MAX_TIMELINE_TURNS]:
            if self._run_turn(turn):
                break

        return TimelineResult(
            survival=sum(b.probability for b in self.branches if b.hp["player"] > 0),
            opponent_survival=sum(b.probability for b in self.branches if b.hp["opponent"] > 0),
            hp_distribution=to_distribution(self.branches, "player"),
            snapshots=self.snapshots,
            observation_likelihood=self.observation_likelihood,
        )

    def _run_turn(self, turn: TimelineTurn) -> bool:
        """Process one turn; True when the simulation should stop."""
        events = list(turn.events)
        indexed = list(enumerate(events))

        if self._run_events(turn, [(i, e) for i, e in indexed if e.timing == "turn-start" and not e.related_action_id]):
            return True

        for action in order_actions(turn, self.options.battle_style):
            before = capture(self.branches)
            result = self._process_action(action)
            self.branches = merge_branches(result.branches)
            if action.id == self.observation_event_id:
                self.observation_likelihood = result.observation_contribution
            self._record(turn.turn, action.id, describe_action(action), before, result.damage_rolls, action.actor)

            related = [(i, e) for i, e in indexed if e.timing == "action" and e.related_action_id == action.id]
            if self._run_events(turn, related) or all_terminated(self.branches):
                return True

        if all_terminated(self.branches):
            return True

        if self._run_events(turn, [(i, e) for i, e in indexed if e.timing == "action" and not e.related_action_id]):
            return True

        self.branches = apply_leftovers(self.branches)

        if self._run_events(turn, [(i, e) for i, e in indexed if e.timing == "turn-end"]):
            return True

        return all_terminated(self.branches)

    def _run_events(self, turn: TimelineTurn, events: List[Tuple[int, BattleEvent]]) -> bool:
        for index, event in events:
            before = capture(self.branches)
            result = self._process_event(event)
            self.branches = merge_branches(result.branches)
            if event.id is not None and event.id == self.observation_event_id:
                self.observation_likelihood = result.observation_contribution
            event_id = event.id or f"turn{turn.turn}-{event.type}-{index}"
            self._record(turn.turn, event_id, event.label or event.id or event.type, before,
                         result.damage_rolls, event.actor)
            if all_terminated(self.branches):
                return True
        return False

    def _record(self, turn: int, event_id: str, description: str, before: List[_PreState],
                damage_rolls: Optional[List[int]], actor: Optional[str]) -> None:
        snap = build_snapshot(self.branches, before, turn, event_id, description, self._sequence,
                              damage_rolls, actor)
        self._sequence += 1
        if snap is not None:
            self.snapshots.append(snap)

    # ----- dispatch -----

    def _process_action(self, action: BattleAction) -> EventResult:
        if isinstance(action, MoveAction):
            move = action.move.copy()
            if action.tera_mode is not None:
                move.tera_mode = action.tera_mode
                move.tera_type = action.tera_type or move.tera_type
            event = AttackEvent(
                id=action.id,
                actor=action.actor,
                label=describe_action(action),
                target=action.target or other_side(action.actor),
                move=move,
            )
            return self._attack(event)
        if isinstance(action, SwitchAction):
            event = SwitchEvent(
                id=action.id,
                actor=action.actor,
                target_species=action.target_species,
                set_hp_percent=action.set_hp_percent,
                ability=action.ability,
                item=action.item,
            )
            return EventResult(self._switch(event))
        if isinstance(action, PassAction):
            return EventResult(list(self.branches))
        raise TypeError(f"Unhandled action type: {type(action).__name__}")

    def _process_event(self, event: BattleEvent) -> EventResult:
        if isinstance(event, AttackEvent):
            return self._attack(event)
        if isinstance(event, StatChangeEvent):
            return EventResult(self._stat_change(event))
        if isinstance(event, HpAdjustmentEvent):
            return EventResult(self._hp_adjustment(event))
        if isinstance(event, HealingEvent):
            return EventResult(self._healing(event))
        if isinstance(event, SwitchEvent):
            return EventResult(self._switch(event))
        if isinstance(event, FieldToggleEvent):
            return EventResult(self._field_toggle(event))
        if isinstance(event, StatusEvent):
            return EventResult(self._status(event))
        if isinstance(event, AbilityActivationEvent):
            return EventResult(list(self.branches))
        raise TypeError(f"Unhandled event type: {type(event).__name__}")

    # ----- attack -----

    def _prepare_move(self, move: MoveConfig, attacker: PokemonState, branch: Branch, side: str) -> MoveConfig:
        m = move.copy()
        m.tera_mode = m.tera_mode or branch.tera_mode[side]
        m.tera_type = m.tera_type or branch.tera_type[side] or attacker.tera_type
        if m.tera_mode == "stellar":
            if self.allow_raid_stellar:
                m.stellar_first_use = True
            else:
                m.stellar_first_use = self.move_type_fn(m, attacker) not in branch.stellar_usage[side]
        return m

    def _compute(self, actor: str, attacker: PokemonState, defender: PokemonState,
                 move: MoveConfig, field_state: FieldState) -> DamageComputation:
        try:
            computation = self.damage_fn(actor, attacker, defender, move, field_state)
        except SimulationError:
            raise
        except Exception as exc:
            raise ComputationError(
                f"Damage calculation failed for {move.name} ({attacker.species} -> {defender.species}): {exc}"
            ) from exc
        if not computation.rolls:
            raise ComputationError(f"Damage calculation returned no rolls for {move.name}")
        return computation

    def _attack(self, event: AttackEvent) -> EventResult:
        actor = event.actor
        target = event.target or other_side(actor)
        is_observation = event.id is not None and event.id == self.observation_event_id
        out: List[Branch] = []
        contribution = 0.0
        damage_rolls: Optional[List[int]] = None

        for branch in self.branches:
            if branch.terminated:
                out.append(branch)
                continue
            if branch.hp[actor] <= 0 or branch.hp[target] <= 0:
                dead = branch.clone()
                dead.terminated = True
                out.append(dead)
                continue

            attacker = branch.pokemon[actor].clone()
            defender = branch.pokemon[target].clone()
            attacker.current_hp, attacker.max_hp = branch.hp[actor], branch.max_hp[actor]
            defender.current_hp, defender.max_hp = branch.hp[target], branch.max_hp[target]

            move = self._prepare_move(event.move, attacker, branch, actor)
            key = build_cache_key(actor, attacker, defender, move, branch.field)
            computation = self.cache.get(key)
            if computation is None:
                computation = self._compute(actor, attacker, defender, move, branch.field)
                self.cache.put(key, computation)

            rolls = computation.rolls
            roll_probability = branch.probability / len(rolls)
            if damage_rolls is None:
                damage_rolls = [r.damage for r in rolls]
            track_stellar = move.tera_mode == "stellar" and not self.allow_raid_stellar
            move_type = self.move_type_fn(move, attacker) if track_stellar else None

            for roll in rolls:
                child = branch.clone()
                child.probability = roll_probability

                damage = min(roll.damage, child.hp[target])
                child.hp[target] = max(0, child.hp[target] - damage)
                child.last_damage[target] = damage

                if roll.drain:
                    child.hp[actor] = min(child.max_hp[actor], child.hp[actor] + roll.drain)
                if roll.recoil:
                    child.hp[actor] = max(0, child.hp[actor] - roll.recoil)

                if is_observation and self.observation_range is not None and child.max_hp[target]:
                    lo, hi = self.observation_range
                    if lo <= damage / child.max_hp[target] <= hi:
                        contribution += roll_probability

                if move.tera_mode and move.tera_mode != branch.tera_mode[actor]:
                    tera_type = move.tera_type or attacker.tera_type
                    child.tera_mode[actor] = move.tera_mode
                    child.tera_type[actor] = tera_type
                    child.pokemon[actor].tera_mode = move.tera_mode
                    child.pokemon[actor].tera_type = tera_type

                if track_stellar:
                    child.stellar_usage[actor].add(move_type)

                if child.hp[target] <= 0 or child.hp[actor] <= 0:
                    child.terminated = True
                out.append(child)

        return EventResult(out, contribution, damage_rolls)

    # ----- auxiliary events -----

    def _stat_change(self, event: StatChangeEvent) -> List[Branch]:
        if event.actor is None:
            return list(self.branches)
        out = []
        for branch in self.branches:
            if branch.terminated:
                out.append(branch)
                continue
            child = branch.clone()
            mon = child.pokemon[event.actor]
            mon.boosts = apply_stage_deltas(mon.boosts, event.stages)
            out.append(child)
        return out

    def _hp_adjustment(self, event: HpAdjustmentEvent) -> List[Branch]:
        side = event.target or event.actor
        if side is None:
            return list(self.branches)
        out = []
        for branch in self.branches:
            if branch.terminated:
                out.append(branch)
                continue
            child = branch.clone()
            max_hp = child.max_hp[side]
            last = child.last_damage[side] or 0
            amount = event.amount
            fraction = _resolve_fraction(event.fraction_numerator, event.fraction_denominator)

            if event.mode == "percent-max":
                amount = math.floor(max_hp * amount / 100)
            elif event.mode == "percent-last-damage":
                amount = math.floor(last * amount / 100)
            elif event.mode == "fraction-max" and fraction is not None:
                amount = math.floor(max_hp * max(0.0, fraction))
            elif event.mode == "fraction-last-damage" and fraction is not None:
                amount = math.floor(last * max(0.0, fraction))

            if event.is_damage:
                damage = int(max(0, min(amount, child.hp[side])))
                child.hp[side] -= damage
                child.last_damage[side] = damage
                if child.hp[side] <= 0:
                    child.terminated = True
            else:
                child.hp[side] = int(min(max_hp, child.hp[side] + abs(amount)))
            out.append(child)
        return out

    def _healing(self, event: HealingEvent) -> List[Branch]:
        if event.actor is None:
            return list(self.branches)
        side = event.actor
        out = []
        for branch in self.branches:
            if branch.terminated:
                out.append(branch)
                continue
            child = branch.clone()
            amount = healing_amount(event, child.max_hp[side])
            child.hp[side] = min(child.max_hp[side], child.hp[side] + amount)
            out.append(child)
        return out

    def _status(self, event: StatusEvent) -> List[Branch]:
        if event.actor is None:
            return list(self.branches)
        out = []
        for branch in self.branches:
            if branch.terminated:
                out.append(branch)
                continue
            child = branch.clone()
            child.pokemon[event.actor].status = None if event.clears else event.status
            out.append(child)
        return out

    def _switch(self, event: SwitchEvent) -> List[Branch]:
        if event.actor is None:
            return list(self.branches)
        side = event.actor
        out = []
        for branch in self.branches:
            if branch.terminated:
                out.append(branch)
                continue
            child = branch.clone()
            base = child.pokemon[side]
            species = event.target_species or base.species
            changed = to_id_str(species) != to_id_str(base.species)
            child.pokemon[side] = replace(
                base,
                species=species,
                ability=event.ability or base.ability,
                item=event.item or base.item,
                status=None,
                boosts={},
                tera_mode="none",
                tera_type=None,
                types=None if changed else base.types,
                base_stats_override=None if changed else base.base_stats_override,
            )
            if event.max_hp:
                child.max_hp[side] = int(event.max_hp)
            max_hp = child.max_hp[side]
            if event.set_hp_percent is not None:
                pct = max(0.0, min(100.0, float(event.set_hp_percent)))
                child.hp[side] = max(0, min(max_hp, js_round(max_hp * pct / 100)))
            else:
                child.hp[side] = max_hp
            child.pokemon[side].current_hp = child.hp[side]
            child.pokemon[side].max_hp = max_hp
            child.tera_mode[side] = "none"
            child.tera_type[side] = None
            child.last_damage[side] = 0
            out.append(child)
        return out

    def _field_toggle(self, event: FieldToggleEvent) -> List[Branch]:
        out = []
        for branch in self.branches:
            if branch.terminated:
                out.append(branch)
                continue
            child = branch.clone()
            child.field = child.field.merged(event.updates)
            out.append(child)
        return out


def healing_amount(event: HealingEvent, max_hp: int) -> int:
    amount = event.amount
    if amount == "fraction":
        ratio = _resolve_fraction(event.fraction_numerator, event.fraction_denominator, event.fraction) or 0.0
        return max(math.floor(max_hp * max(0.0, ratio)), 1)
    if isinstance(amount, HealRange):
        return max(0, int(amount.min))
    return max(0, int(amount))


def apply_leftovers(branches: Sequence[Branch]) -> List[Branch]:
    """End-of-turn Leftovers: +max(1, floor(max/16)) for live, damaged holders."""
    out = []
    for branch in branches:
        if branch.terminated:
            out.append(branch)
            continue
        child = branch.clone()
        for s in SIDES:
            if to_id_str(child.pokemon[s].item or "") != "leftovers":
                continue
            hp, max_hp = child.hp[s], child.max_hp[s]
            if 0 < hp < max_hp:
                child.hp[s] = min(max_hp, hp + max(1, max_hp // 16))
        out.append(child)
    return out


def simulate_timeline(
    scenario: TimelineScenario,
    pokemon: Dict[str, PokemonState],
    field_state: FieldState,
    cache: DamageCache,
    options: Optional[SimulationOptions] = None,
    observation_event_id: Optional[str] = None,
    observation_range: Optional[Tuple[float, float]] = None,
    damage_fn: Optional[DamageFn] = None,
    move_type_fn: Optional[MoveTypeFn] = None,
) -> TimelineResult:
    """Run ``scenario`` from the starting combatants and return the outcome distribution."""
    sim = TimelineSimulator(
        scenario,
        pokemon,
        field_state,
        cache,
        options=options,
        observation_event_id=observation_event_id,
        observation_range=observation_range,
        damage_fn=damage_fn,
        move_type_fn=move_type_fn,
    )
    result = sim.run()
    log.debug(
        "timeline done: %d branches, survival=%.4f, opponent_survival=%.4f, %d snapshots",
        len(sim.branches), result.survival, result.opponent_survival, len(result.snapshots),
    )
    return result
