# summary.py
"""
Cross-point aggregation: turns per-point timeline results plus grid weights
into the SimulationSummary returned to callers.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence

from . import settings
from .ev_grid import (
    aggregate_ko_chance,
    aggregate_survival,
    build_heatmap,
    compute_sensitivity,
    rank_offense_plans,
    rank_top_plans,
)
from .timeline import js_round
from .types import (
    SIDES,
    DistributionPoint,
    EVGridConfig,
    EVGridPoint,
    PokemonState,
    SimulationSummary,
    TimelineResult,
    TimelineSnapshot,
    other_side,
)


@dataclass
class PointResult:
    """What the summary needs from one grid point's timeline run."""
    hp_distribution: List[DistributionPoint]
    snapshots: List[TimelineSnapshot]

    @classmethod
    def from_timeline(cls, result: TimelineResult) -> "PointResult":
        return cls(result.hp_distribution, result.snapshots)


@dataclass
class GridEvaluation:
    points: List[EVGridPoint]
    results: List[PointResult]


def _sorted_distribution(bucket: Dict[int, float], total: float) -> List[DistributionPoint]:
    if not bucket or total <= 0:
        return []
    return [DistributionPoint(hp, p / total) for hp, p in sorted(bucket.items())]


def _average(bucket: Dict[int, float], total: float) -> float:
    if not bucket or total <= 0:
        return 0.0
    return sum(value * (p / total) for value, p in bucket.items())


def combine_distributions(points: Sequence[EVGridPoint], results: Sequence[PointResult]) -> List[DistributionPoint]:
    bucket: Dict[int, float] = {}
    for point, result in zip(points, results):
        for dp in result.hp_distribution:
            bucket[dp.hp] = bucket.get(dp.hp, 0.0) + dp.probability * point.weight
    return [DistributionPoint(hp, p) for hp, p in sorted(bucket.items())]


@dataclass
class _SnapshotAccumulator:
    description: str
    turn: int
    sequence: int
    actor: Optional[str]
    damage_rolls: Optional[List[int]]
    total: float = 0.0
    dist: Dict[str, Dict[int, float]] = field(default_factory=lambda: {s: {} for s in SIDES})
    max_hp: Dict[str, Dict[int, float]] = field(default_factory=lambda: {s: {} for s in SIDES})
    delta_sum: Dict[str, float] = field(default_factory=lambda: {s: 0.0 for s in SIDES})
    max_before_sum: Dict[str, float] = field(default_factory=lambda: {s: 0.0 for s in SIDES})

    def add(self, snap: TimelineSnapshot, contribution: float) -> None:
        self.sequence = min(self.sequence, snap.sequence)
        self.total += contribution
        per_side = {"player": snap.hp_distribution, "opponent": snap.opponent_hp_distribution}
        for s in SIDES:
            bucket = self.dist[s]
            if per_side[s]:
                for dp in per_side[s]:
                    bucket[dp.hp] = bucket.get(dp.hp, 0.0) + dp.probability * contribution
            else:
                hp = max(0, js_round(snap.hp[s]))
                bucket[hp] = bucket.get(hp, 0.0) + contribution
            mh = self.max_hp[s]
            mh[snap.max_hp[s]] = mh.get(snap.max_hp[s], 0.0) + contribution
            if snap.delta_hp:
                self.delta_sum[s] += snap.delta_hp.get(s, 0.0) * contribution
            if snap.max_hp_before:
                self.max_before_sum[s] += snap.max_hp_before.get(s, 0.0) * contribution

    def build(self, event_id: str) -> TimelineSnapshot:
        total = self.total or 1.0
        dists = {s: _sorted_distribution(self.dist[s], total) for s in SIDES}
        delta = None
        if any(self.delta_sum[s] != 0 for s in SIDES):
            delta = {s: self.delta_sum[s] / total for s in SIDES}
        before = None
        if any(self.max_before_sum[s] != 0 for s in SIDES):
            before = {s: self.max_before_sum[s] / total for s in SIDES}
        return TimelineSnapshot(
            turn=self.turn,
            event_id=event_id,
            sequence=self.sequence,
            hp={s: js_round(sum(d.hp * d.probability for d in dists[s])) for s in SIDES},
            max_hp={s: js_round(_average(self.max_hp[s], total)) for s in SIDES},
            probability=self.total,
            description=self.description,
            hp_distribution=dists["player"],
            opponent_hp_distribution=dists["opponent"],
            damage_rolls=self.damage_rolls,
            delta_hp=delta,
            max_hp_before=before,
            actor=self.actor,
        )


def combine_snapshots(points: Sequence[EVGridPoint], results: Sequence[PointResult]) -> List[TimelineSnapshot]:
    """Merge per-point snapshot streams by event id, weighted by point weight x snapshot mass."""
    acc: Dict[str, _SnapshotAccumulator] = {}
    for point, result in zip(points, results):
        for snap in result.snapshots:
            if not snap.event_id:
                continue
            entry = acc.get(snap.event_id)
            if entry is None:
                entry = _SnapshotAccumulator(
                    description=snap.description,
                    turn=snap.turn,
                    sequence=snap.sequence,
                    actor=snap.actor,
                    damage_rolls=list(snap.damage_rolls) if snap.damage_rolls is not None else None,
                )
                acc[snap.event_id] = entry
            entry.add(snap, snap.probability * point.weight)

    combined = [entry.build(event_id) for event_id, entry in acc.items()]
    combined.sort(key=lambda s: (s.sequence, s.turn))
    return combined


def uses_damage_range(config: Optional[EVGridConfig]) -> bool:
    return bool(
        config is not None
        and config.target_side == "opponent"
        and config.enable_opponent_bulk_range
        and config.opponent_damage_range
    )


def compute_damage_range_likelihood(
    result: TimelineResult,
    config: Optional[EVGridConfig],
    target_side: str,
) -> Optional[float]:
    """Share of the reference attack's rolls landing inside the observed damage range."""
    if target_side != "opponent" or not uses_damage_range(config):
        return None

    with_rolls = [s for s in result.snapshots if s.damage_rolls]
    if not with_rolls:
        return None

    chosen = None
    if config.observation_event_id:
        chosen = next((s for s in with_rolls if s.event_id == config.observation_event_id), None)
    if chosen is None:
        chosen = next((s for s in with_rolls if s.actor == "player"), with_rolls[0])

    if chosen.actor not in SIDES:
        return None
    max_hp = chosen.max_hp.get(other_side(chosen.actor))
    rolls = chosen.damage_rolls or []
    if not max_hp or not rolls:
        return None

    lo, hi = config.opponent_damage_range
    lo, hi = lo / 100.0, hi / 100.0
    matches = sum(1 for r in rolls if lo <= r / max_hp <= hi)
    return matches / len(rolls)


def adjust_opponent_bulk_config(
    config: EVGridConfig,
    base: PokemonState,
    use_damage_range: bool,
) -> EVGridConfig:
    """Coarsen and narrow the defensive grid for opponent bulk-range reads.

    Only applies when the requested step is finer than 8: the step becomes 8
    and both axes are clipped to +/- max(6 * step, 48) EVs around the
    opponent's current investment, with the combined cap held to 252.
    """
    if not use_damage_range or config.target_side != "opponent" or not config.enable_opponent_bulk_range:
        return config
    step = max(config.axis_step or settings.MIN_AXIS_STEP, settings.DEFAULT_AXIS_STEP)
    if step <= config.axis_step:
        return config
    half = max(step * 6, 48)

    def clamp_around(rng, center):
        lo, hi = rng
        new_lo, new_hi = max(lo, center - half), min(hi, center + half)
        if new_hi - new_lo < step * 3:
            return lo, hi
        return new_lo, new_hi

    cap = settings.MAX_EV if config.max_combined_ev is None else min(config.max_combined_ev, settings.MAX_EV)
    return replace(
        config,
        axis_step=step,
        hp_range=clamp_around(config.hp_range, base.evs.get("hp", 0)),
        def_range=clamp_around(config.def_range, base.evs.get("def", 0)),
        max_combined_ev=cap,
    )


def build_summary(
    evaluation: GridEvaluation,
    base: PokemonState,
    config: EVGridConfig,
    use_damage_range: bool,
) -> SimulationSummary:
    points = evaluation.points
    grid_enabled = bool(config.enabled)
    offense_only = bool(config.enable_ko and not config.enable_survival)
    defense_insights = grid_enabled and not offense_only

    heatmap = None
    sensitivity = None
    if defense_insights:
        heatmap = build_heatmap(points, "damageRange" if use_damage_range else "survival")
        sensitivity = compute_sensitivity(
            points, base.evs.get("hp", 0), base.evs.get("def", 0), config.axis_step or settings.DEFAULT_AXIS_STEP,
        )

    top_plans = None
    if grid_enabled and config.enable_survival and not offense_only:
        top_plans = rank_top_plans(points, config.target_survival)

    return SimulationSummary(
        survival=aggregate_survival(points),
        hp_distribution=combine_distributions(points, evaluation.results),
        snapshots=combine_snapshots(points, evaluation.results),
        heatmap=heatmap,
        top_plans=top_plans,
        ko_chance=aggregate_ko_chance(points) if offense_only else None,
        ko_plans=rank_offense_plans(points, config.target_ko) if offense_only else None,
        sensitivity=sensitivity,
    )


def attach_offense(summary: SimulationSummary, offense: GridEvaluation, config: EVGridConfig) -> SimulationSummary:
    summary.ko_chance = aggregate_ko_chance(offense.points)
    summary.ko_plans = rank_offense_plans(offense.points, config.target_ko)
    return summary


def build_deterministic_summary(result: TimelineResult) -> SimulationSummary:
    return SimulationSummary(
        survival=result.survival,
        hp_distribution=result.hp_distribution,
        snapshots=result.snapshots,
    )
