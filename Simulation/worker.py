# worker.py
"""
Job orchestrator.

Runs one simulation job at a time: validates the request, evaluates the
defensive and/or offensive EV grid point by point (yielding to the event loop
at batch boundaries), and reports progress plus exactly one terminal response
(complete / error / cancelled) through a ``post_message`` callback.

Responses are plain dicts ready for ``json.dumps``:
  {"type": "progress",  "payload": {"requestId", "progress": {...}}}
  {"type": "complete",  "payload": {"requestId", "summary": {...}}}
  {"type": "error",     "payload": {"requestId", "error": "..."}}
  {"type": "cancelled", "payload": {"requestId"}}

``SimulationHost`` runs a worker's event loop on a daemon thread so callers on
any thread can submit jobs and cancel them.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import functools
import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from Mechanics.dex_info import DexInfo, default_dex
from Mechanics.stat_effects import calculate_stat_from_ev

from . import settings
from .cache import DamageCache
from .engine import DamageFn, compute_damage, resolve_move_type
from .errors import CancellationError, ConfigurationError, SimulationError, SimulationTimeoutError
from .ev_grid import apply_observation_likelihoods, build_ev_grid, build_offense_ev_grid
from .summary import (
    GridEvaluation,
    PointResult,
    adjust_opponent_bulk_config,
    attach_offense,
    build_deterministic_summary,
    build_summary,
    compute_damage_range_likelihood,
    uses_damage_range,
)
from .timeline import MoveTypeFn, simulate_timeline
from .types import (
    SIDES,
    EVGridConfig,
    EVGridPoint,
    PokemonState,
    SimulationProgress,
    SimulationRequest,
    SimulationSummary,
    TimelineResult,
)

log = logging.getLogger("Simulation.worker")

Message = Dict[str, Any]
PostMessage = Callable[[Message], None]


# --------------------------- Small helpers --------------------------------

class QueueLogHandler(logging.Handler):
    def __init__(self, q: "queue.Queue[str]"):
        super().__init__()
        self.q = q

    def emit(self, record: logging.LogRecord):
        try:
            self.q.put_nowait(self.format(record))
        except Exception:
            self.handleError(record)


@dataclass
class JobHandle:
    """The one active job. ``cancelled`` may be set from any thread."""
    request_id: str
    cancelled: threading.Event = field(default_factory=threading.Event)

    def cancel(self) -> None:
        self.cancelled.set()

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled.is_set()


def normalize_observation(percent: Optional[Tuple[float, float]]) -> Optional[Tuple[float, float]]:
    """Observed damage percent range -> clamped [0, 1] ratio range."""
    if percent is None:
        return None
    return max(0.0, percent[0] / 100.0), min(1.0, percent[1] / 100.0)


def apply_ev_point(base: PokemonState, point: EVGridPoint, base_hp: int, mode: str) -> PokemonState:
    """Copy of ``base`` carrying the point's investment.

    Defense points also reset max/current HP from the new HP EVs.
    """
    pokemon = base.clone()
    if mode == "offense":
        if point.atk_ev is not None:
            pokemon.evs["atk"] = point.atk_ev
        if point.spa_ev is not None:
            pokemon.evs["spa"] = point.spa_ev
        return pokemon

    pokemon.evs["hp"] = point.hp_ev
    pokemon.evs["def"] = point.def_ev
    hp = calculate_stat_from_ev("hp", base_hp, pokemon.ivs.get("hp", 31), point.hp_ev, pokemon.level, pokemon.nature)
    pokemon.max_hp = hp
    pokemon.current_hp = hp
    return pokemon


def _response(kind: str, payload: Dict[str, Any]) -> Message:
    return {"type": kind, "payload": payload}


# --------------------------------- Worker ---------------------------------

class SimulationWorker:
    """Single-slot job runner. Not thread-safe except for ``cancel``."""

    def __init__(
        self,
        post_message: PostMessage,
        dex: Optional[DexInfo] = None,
        damage_fn: Optional[DamageFn] = None,
        move_type_fn: Optional[MoveTypeFn] = None,
        cache_size: int = settings.DAMAGE_CACHE_SIZE,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self.post_message = post_message
        self.dex = dex or default_dex(settings.GEN)
        self.damage_fn: DamageFn = damage_fn or functools.partial(compute_damage, dex=self.dex)
        self.move_type_fn: MoveTypeFn = move_type_fn or functools.partial(resolve_move_type, dex=self.dex)
        self.cache_size = cache_size
        self._clock = clock
        self._lock = threading.Lock()
        self._active: Optional[JobHandle] = None

    # ---- job slot ----

    @property
    def active_request_id(self) -> Optional[str]:
        with self._lock:
            return self._active.request_id if self._active else None

    def start(self, request_id: str) -> JobHandle:
        """Claim the job slot; a still-running previous job is cancelled."""
        handle = JobHandle(request_id)
        with self._lock:
            if self._active is not None:
                log.info("Job %s superseded by %s", self._active.request_id, request_id)
                self._active.cancel()
            self._active = handle
        return handle

    def cancel(self, request_id: str) -> bool:
        with self._lock:
            if self._active is None or self._active.request_id != request_id:
                log.debug("Ignoring cancel for inactive job %s", request_id)
                return False
            self._active.cancel()
        log.info("Cancellation requested for %s", request_id)
        return True

    def _release(self, handle: JobHandle) -> None:
        with self._lock:
            if self._active is handle:
                self._active = None

    # ---- messaging ----

    def _post(self, kind: str, payload: Dict[str, Any]) -> None:
        self.post_message(_response(kind, payload))

    def _progress(self, request_id: str, processed: int, total: int, start: float, phase: str) -> None:
        progress = SimulationProgress(request_id, processed, total, (self._clock() - start) * 1000.0, phase)
        self._post("progress", {"requestId": request_id, "progress": progress.to_dict()})

    async def handle_message(self, message: Message) -> None:
        """Dispatch a ``run`` or ``cancel`` message."""
        kind = message.get("type")
        payload = message.get("payload") or {}
        if kind == "run":
            await self.run(payload)
        elif kind == "cancel":
            self.cancel(str(payload.get("requestId", "")))
        else:
            log.warning("Unknown message type: %r", kind)

    # ---- job ----

    async def run(self, request: Any) -> None:
        """Run one job to its terminal response. Accepts a request or its JSON dict."""
        if isinstance(request, SimulationRequest):
            request_id = request.request_id
        else:
            request_id = str((request or {}).get("requestId", "")) if isinstance(request, dict) else ""
            try:
                request = SimulationRequest.from_dict(request)
            except (ConfigurationError, ValueError, TypeError) as exc:
                log.error("Rejected request %s: %s", request_id or "<no id>", exc)
                self._post("error", {"requestId": request_id, "error": str(exc)})
                return

        handle = self.start(request_id)
        start = self._clock()
        log.info(
            "Starting simulation %s: %s vs %s, %d turn(s)",
            request_id, request.pokemon["player"].species, request.pokemon["opponent"].species,
            len(request.scenario.turns),
        )
        try:
            summary = await self._simulate(handle, request, start)
        except CancellationError:
            log.info("Simulation %s cancelled", request_id)
            self._post("cancelled", {"requestId": request_id})
        except SimulationTimeoutError as exc:
            log.warning("%s", exc)
            self._post("error", {"requestId": request_id, "error": str(exc)})
        except SimulationError as exc:
            log.error("Simulation %s failed: %s", request_id, exc)
            self._post("error", {"requestId": request_id, "error": str(exc)})
        except Exception as exc:
            log.exception("Simulation %s crashed", request_id)
            self._post("error", {"requestId": request_id, "error": str(exc) or type(exc).__name__})
        else:
            log.info("Simulation %s complete in %.2fs (survival %.4f)",
                     request_id, self._clock() - start, summary.survival)
            self._post("complete", {"requestId": request_id, "summary": summary.to_dict()})
        finally:
            self._release(handle)

    def _base_hp(self, pokemon: PokemonState) -> int:
        if pokemon.base_stats_override and pokemon.base_stats_override.get("hp"):
            return int(pokemon.base_stats_override["hp"])
        return int(self.dex.species(pokemon.species).base_stats["hp"])

    def _prepare(self, pokemon: PokemonState) -> PokemonState:
        mon = pokemon.clone()
        if mon.max_hp is None:
            mon.max_hp = calculate_stat_from_ev(
                "hp", self._base_hp(mon), mon.ivs.get("hp", 31), mon.evs.get("hp", 0), mon.level, mon.nature,
            )
        if mon.current_hp is None:
            mon.current_hp = mon.max_hp
        return mon

    def _timeline(
        self,
        request: SimulationRequest,
        pokemon: Dict[str, PokemonState],
        cache: DamageCache,
        config: EVGridConfig,
    ) -> TimelineResult:
        return simulate_timeline(
            request.scenario,
            pokemon,
            request.field_state,
            cache,
            request.options,
            observation_event_id=config.observation_event_id,
            observation_range=normalize_observation(config.observation_percent),
            damage_fn=self.damage_fn,
            move_type_fn=self.move_type_fn,
        )

    async def _simulate(self, handle: JobHandle, request: SimulationRequest, start: float) -> SimulationSummary:
        config = request.ev_config
        if config is None:
            raise ConfigurationError("EV grid config is required")

        self._progress(request.request_id, 0, 0, start, "initializing")

        for side in SIDES:
            species = request.pokemon[side].species
            if not self.dex.has_species(species):
                raise ConfigurationError(f"Unknown species: {species}")

        target_side = config.target_side
        cache: DamageCache = DamageCache(self.cache_size)
        base = {s: self._prepare(request.pokemon[s]) for s in SIDES}

        need_defense = config.enabled and (not config.enable_ko or config.enable_survival)
        need_offense = config.enabled and config.enable_ko
        use_range = config.enabled and uses_damage_range(config)

        if not config.enabled:
            log.debug("EV grid disabled; running a single deterministic timeline")
            return build_deterministic_summary(self._timeline(request, base, cache, config))

        base_hp = self._base_hp(base[target_side])
        defense: Optional[GridEvaluation] = None
        defense_config = config
        if need_defense:
            defense_config = adjust_opponent_bulk_config(config, base[target_side], use_range)
            points = build_ev_grid(defense_config)
            log.info("Evaluating %d defensive grid points for %s", len(points), target_side)
            defense = await self.evaluate_grid_points(
                handle, request, points, "defense", base, base_hp, cache, defense_config, start,
            )

        offense: Optional[GridEvaluation] = None
        if need_offense:
            points = build_offense_ev_grid(config)
            log.info("Evaluating %d offensive grid points for %s", len(points), target_side)
            offense = await self.evaluate_grid_points(
                handle, request, points, "offense", base, base_hp, cache, config, start,
            )

        if defense is not None:
            summary = build_summary(defense, base[target_side], defense_config, use_range)
            if offense is not None:
                attach_offense(summary, offense, config)
            return summary
        if offense is not None:
            return build_summary(offense, base[target_side], config, use_range)
        raise SimulationError("Failed to build simulation summary")

    async def evaluate_grid_points(
        self,
        handle: JobHandle,
        request: SimulationRequest,
        points: List[EVGridPoint],
        mode: str,
        base: Dict[str, PokemonState],
        base_hp: int,
        cache: DamageCache,
        config: EVGridConfig,
        start: float,
    ) -> GridEvaluation:
        """Run the timeline once per point, in order.

        Cancellation is checked before every point and the deadline after
        every point; control returns to the event loop after each batch.
        """
        request_id = request.request_id
        total = len(points)
        batch_size = max(1, request.options.batch_size)
        timeout_s = request.options.timeout_ms / 1000.0
        target_side = config.target_side
        offense = mode == "offense"
        need_range = uses_damage_range(config)
        results: List[PointResult] = []
        likelihoods: List[float] = []

        self._progress(request_id, 0, total, start, "processing")

        for index, point in enumerate(points):
            if handle.is_cancelled:
                raise CancellationError(request_id)

            pokemon = {
                s: apply_ev_point(base[s], point, base_hp, mode) if s == target_side else base[s].clone()
                for s in SIDES
            }
            result = self._timeline(request, pokemon, cache, config)

            point.survival = result.survival
            if offense:
                point.ko_chance = 1.0 - result.opponent_survival
            if need_range:
                point.damage_range_likelihood = compute_damage_range_likelihood(result, config, target_side)
            results.append(PointResult.from_timeline(result))
            likelihoods.append(result.observation_likelihood)
            log.debug("point %d/%d %s -> survival %.4f", index + 1, total, point, result.survival)

            processed = index + 1
            if processed % batch_size == 0 or processed == total:
                self._progress(request_id, processed, total, start,
                               "finalizing" if processed == total else "evaluating")
                await asyncio.sleep(0)

            elapsed = self._clock() - start
            if elapsed > timeout_s:
                raise SimulationTimeoutError(processed, total, elapsed)

        if not offense:
            observed = config.observation_event_id is not None and config.observation_percent is not None
            apply_observation_likelihoods(points, likelihoods if observed else None)

        return GridEvaluation(points, results)


# ---------------------------------- Host ----------------------------------

class SimulationHost:
    """Runs a SimulationWorker on its own event-loop thread.

    Responses land on ``responses``; log records from the ``Simulation``
    loggers can be mirrored to ``log_queue``.
    """

    def __init__(
        self,
        worker_factory: Optional[Callable[[PostMessage], SimulationWorker]] = None,
        capture_logs: bool = False,
    ):
        self.responses: "queue.Queue[Message]" = queue.Queue()
        factory = worker_factory or (lambda post: SimulationWorker(post))
        self.worker = factory(self.responses.put)

        self.log_queue: "queue.Queue[str]" = queue.Queue()
        self.log_handler: Optional[QueueLogHandler] = None
        if capture_logs:
            self.log_handler = QueueLogHandler(self.log_queue)
            self.log_handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
            logging.getLogger("Simulation").addHandler(self.log_handler)

        self.loop = asyncio.new_event_loop()
        self._loop_thread = threading.Thread(target=self.loop.run_forever, daemon=True)
        self._loop_thread.start()

    def submit(self, request: Any) -> concurrent.futures.Future:
        """Queue a job; returns a concurrent future resolved when it finishes."""
        return asyncio.run_coroutine_threadsafe(self.worker.run(request), self.loop)

    def cancel(self, request_id: str) -> bool:
        return self.worker.cancel(request_id)

    def post(self, message: Message) -> concurrent.futures.Future:
        return asyncio.run_coroutine_threadsafe(self.worker.handle_message(message), self.loop)

    def drain(self, timeout: Optional[float] = None) -> Sequence[Message]:
        """Collect responses until a terminal one arrives."""
        out: List[Message] = []
        while True:
            msg = self.responses.get(timeout=timeout)
            out.append(msg)
            if msg["type"] != "progress":
                return out

    def close(self) -> None:
        if self.log_handler is not None:
            logging.getLogger("Simulation").removeHandler(self.log_handler)
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._loop_thread.join(timeout=5)
        if not self.loop.is_running():
            self.loop.close()
