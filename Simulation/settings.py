"""Engine constants with environment overrides (EVSIM_*)."""

from __future__ import annotations

import logging
import os

log = logging.getLogger("Simulation.settings")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        log.warning("Ignoring non-integer %s=%r; using %d", name, raw, default)
        return default


GEN = _env_int("EVSIM_GEN", 9)

DAMAGE_CACHE_SIZE = _env_int("EVSIM_CACHE_SIZE", 512)
MAX_TIMELINE_TURNS = 5

DEFAULT_BATCH_SIZE = _env_int("EVSIM_BATCH_SIZE", 100)
DEFAULT_TIMEOUT_MS = _env_int("EVSIM_TIMEOUT_MS", 30000)

DEFAULT_AXIS_STEP = 8
MIN_AXIS_STEP = 4
MAX_EV = 252

# Ranking tolerances
TARGET_EPS = 1e-4
EV_EPS = 1e-6
CUSTOM_PRIOR_EPS = 1e-6
