# ev_grid.py
"""
EV grid construction, Bayesian weighting and plan ranking.

A defensive grid enumerates (HP EV, Def EV) pairs; an offensive grid
enumerates (Atk EV, SpA EV) pairs. Each point carries a prior weight and a
normalized posterior weight; aggregation is sum(weight * metric).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np

from . import settings
from .types import (
    EVGridConfig,
    EVGridPoint,
    EVHeatmapCell,
    EVOffensePlan,
    EVPlan,
    SensitivityMetrics,
)

log = logging.getLogger("Simulation.ev_grid")


@dataclass(frozen=True)
class MetaProfile:
    hp_mean: float
    def_mean: float
    hp_sigma: float
    def_sigma: float
    correlation: float = 0.0


META_PROFILES: Dict[str, MetaProfile] = {
    "bulky": MetaProfile(244, 108, 42, 36, 0.35),
    "balanced": MetaProfile(196, 92, 48, 40, 0.2),
    "agile": MetaProfile(164, 68, 50, 34, 0.1),
}


def _axis(lo: int, hi: int, step: int) -> range:
    return range(int(lo), int(hi) + 1, step)


def bivariate_gaussian(hp_ev: float, def_ev: float, profile: MetaProfile) -> float:
    """Unnormalized 2-D Gaussian density (peak 1.0 at the profile mean)."""
    x = (hp_ev - profile.hp_mean) / profile.hp_sigma
    y = (def_ev - profile.def_mean) / profile.def_sigma
    rho = profile.correlation
    exponent = -1.0 / (2.0 * (1.0 - rho * rho)) * (x * x - 2.0 * rho * x * y + y * y)
    return float(np.exp(exponent))


def compute_prior_weight(config: EVGridConfig, hp_ev: int, def_ev: int) -> float:
    prior = config.prior
    if prior.type == "uniform":
        return 1.0

    if prior.type == "custom" and prior.custom_weights:
        for entry in prior.custom_weights:
            if entry.hp_ev == hp_ev and entry.def_ev == def_ev:
                return max(entry.weight, 0.0)
        return settings.CUSTOM_PRIOR_EPS

    # "meta", a bare profile name, or "custom" with no weights listed
    key = prior.type if prior.type in META_PROFILES else (prior.meta_profile or "balanced")
    profile = META_PROFILES.get(key, META_PROFILES["balanced"])
    return bivariate_gaussian(hp_ev, def_ev, profile)


def build_ev_grid(config: EVGridConfig) -> List[EVGridPoint]:
    step = max(settings.MIN_AXIS_STEP, config.axis_step)
    points: List[EVGridPoint] = []
    for hp_ev in _axis(*config.hp_range, step):
        for def_ev in _axis(*config.def_range, step):
            if config.max_combined_ev is not None and hp_ev + def_ev > config.max_combined_ev:
                continue
            prior = compute_prior_weight(config, hp_ev, def_ev)
            points.append(EVGridPoint(hp_ev=hp_ev, def_ev=def_ev, prior_weight=prior, weight=prior, kind="defense"))
    normalize_weights(points)
    log.debug("defense grid: %d points (step %d, prior %s)", len(points), step, config.prior.type)
    return points


def build_offense_ev_grid(config: EVGridConfig) -> List[EVGridPoint]:
    atk_range = config.atk_range or (0, settings.MAX_EV)
    spa_range = config.spa_range or (0, settings.MAX_EV)
    step = max(settings.MIN_AXIS_STEP, config.offense_step or config.axis_step)
    limit = config.offense_max_combined_ev if config.offense_max_combined_ev is not None else config.max_combined_ev

    points: List[EVGridPoint] = []
    for atk_ev in _axis(*atk_range, step):
        for spa_ev in _axis(*spa_range, step):
            if limit is not None and atk_ev + spa_ev > limit:
                continue
            points.append(EVGridPoint(
                hp_ev=0, def_ev=0, atk_ev=atk_ev, spa_ev=spa_ev,
                kind="offense", prior_weight=1.0, weight=1.0,
            ))
    normalize_weights(points)
    log.debug("offense grid: %d points (step %d)", len(points), step)
    return points


def normalize_weights(points: Sequence[EVGridPoint]) -> None:
    """Rescale weights in place to sum to 1; uniform when the sum is not positive."""
    if not points:
        return
    weights = np.array([p.weight for p in points], dtype=float)
    total = weights.sum()
    if total <= 0:
        weights = np.full(len(points), 1.0 / len(points))
    else:
        weights = weights / total
    for point, w in zip(points, weights):
        point.weight = float(w)


def apply_observation_likelihoods(
    points: Sequence[EVGridPoint],
    likelihoods: Optional[Sequence[float]],
) -> None:
    """Posterior update: weight = prior * likelihood, renormalized."""
    if likelihoods is None:
        normalize_weights(points)
        return
    for i, point in enumerate(points):
        likelihood = max(float(likelihoods[i]) if i < len(likelihoods) else 0.0, 0.0)
        point.observation_likelihood = likelihood
        point.weight = point.prior_weight * likelihood
    normalize_weights(points)


def build_heatmap(points: Sequence[EVGridPoint], mode: str = "survival") -> List[EVHeatmapCell]:
    cells = []
    for p in points:
        value = p.damage_range_likelihood if mode == "damageRange" else p.survival
        cells.append(EVHeatmapCell(p.hp_ev, p.def_ev, value or 0.0, p.weight, mode))
    return cells


def _plan(point: EVGridPoint, meets_target: bool) -> EVPlan:
    return EVPlan(
        hp_ev=point.hp_ev,
        def_ev=point.def_ev,
        survival=point.survival or 0.0,
        investment=point.defense_total,
        total_ev=point.defense_total,
        meets_target=meets_target,
    )


def rank_top_plans(points: Sequence[EVGridPoint], target: Optional[float]) -> List[EVPlan]:
    """Cheapest plans reaching ``target`` survival; top 3 by survival without a target.

    Every point tied at the minimal qualifying investment is returned.
    """
    if not target or target <= 0:
        ranked = sorted(points, key=lambda p: -(p.survival or 0.0))
        return [_plan(p, False) for p in ranked[:3]]

    candidates = [p for p in points if (p.survival or 0.0) >= target - settings.TARGET_EPS]
    if not candidates:
        return []
    candidates.sort(key=lambda p: (p.defense_total, -(p.survival or 0.0)))
    min_total = candidates[0].defense_total
    return [_plan(p, True) for p in candidates if abs(p.defense_total - min_total) <= settings.EV_EPS]


def find_nearest_point(points: Sequence[EVGridPoint], hp_ev: float, def_ev: float) -> Optional[EVGridPoint]:
    best = None
    best_distance = float("inf")
    for point in points:
        distance = abs(point.hp_ev - hp_ev) + abs(point.def_ev - def_ev)
        if distance < best_distance:
            best, best_distance = point, distance
    return best


def compute_sensitivity(points: Sequence[EVGridPoint], hp_ev: int, def_ev: int, step: int) -> SensitivityMetrics:
    """Finite-difference survival slope per EV around the point nearest (hp_ev, def_ev)."""
    nearest = find_nearest_point(points, hp_ev, def_ev)
    if nearest is None:
        return SensitivityMetrics()

    hp_up = find_nearest_point(points, nearest.hp_ev + step, nearest.def_ev)
    def_up = find_nearest_point(points, nearest.hp_ev, nearest.def_ev + step)

    base = nearest.survival or 0.0
    hp_val = hp_up.survival if hp_up is not None and hp_up.survival is not None else base
    def_val = def_up.survival if def_up is not None and def_up.survival is not None else base
    denom = max(step, 1)
    return SensitivityMetrics(hp_sensitivity=(hp_val - base) / denom, def_sensitivity=(def_val - base) / denom)


def aggregate_survival(points: Sequence[EVGridPoint]) -> float:
    return float(sum(p.weight * (p.survival or 0.0) for p in points))


def aggregate_ko_chance(points: Sequence[EVGridPoint]) -> float:
    return float(sum(p.weight * (p.ko_chance or 0.0) for p in points))


def rank_offense_plans(points: Sequence[EVGridPoint], target: Optional[float]) -> List[EVOffensePlan]:
    """Up to 3 offense plans, best KO chance first.

    Candidates are grouped into tiers of near-equal KO chance; within a tier
    only the minimal-investment entries are kept. With a target, only points
    meeting it are considered unless none do.
    """
    entries = [
        EVOffensePlan(
            atk_ev=p.atk_ev or 0,
            spa_ev=p.spa_ev or 0,
            ko_chance=p.ko_chance,
            total_ev=p.offense_total,
            meets_target=False,
        )
        for p in points
        if p.kind == "offense" and p.ko_chance is not None
    ]
    if not entries:
        return []

    has_target = bool(target) and target > 0
    entries.sort(key=lambda e: (-e.ko_chance, e.total_ev, e.atk_ev, e.spa_ev))
    for e in entries:
        e.meets_target = has_target and e.ko_chance >= target - settings.TARGET_EPS

    pool = [e for e in entries if e.meets_target] if has_target else entries
    if not pool:
        pool = entries

    selected: List[EVOffensePlan] = []
    i = 0
    while i < len(pool) and len(selected) < 3:
        tier_chance = pool[i].ko_chance
        tier = []
        while i < len(pool) and abs(pool[i].ko_chance - tier_chance) <= settings.TARGET_EPS:
            tier.append(pool[i])
            i += 1
        min_ev = min(e.total_ev for e in tier)
        for e in tier:
            if abs(e.total_ev - min_ev) <= settings.EV_EPS:
                selected.append(e)
                if len(selected) >= 3:
                    break
    return selected
