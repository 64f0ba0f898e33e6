"""Error kinds raised by the outcome engine and job orchestrator."""

from __future__ import annotations


class SimulationError(Exception):
    """Base class for every engine failure."""


class ConfigurationError(SimulationError):
    """Missing/invalid request or grid configuration, or an unknown species."""


class SimulationTimeoutError(SimulationError):
    def __init__(self, processed: int, total: int, elapsed_s: float):
        self.processed = processed
        self.total = total
        self.elapsed_s = elapsed_s
        super().__init__(
            f"Simulation timeout after {round(elapsed_s)}s (processed {processed}/{total} points)"
        )


class CancellationError(SimulationError):
    """Job was cancelled by request. Reported as a ``cancelled`` response, not an error."""

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Simulation {request_id} cancelled")


class ComputationError(SimulationError):
    """Damage calculation or stat resolution failed while evaluating a point."""
