#!/usr/bin/env python3
# tools/run_simulation.py
"""Run one EV simulation request from a JSON file and print every response as a JSON line."""
from __future__ import annotations
import argparse, asyncio, json, logging, sys
from pathlib import Path
from typing import Any, Dict, List

from Simulation.errors import ConfigurationError
from Simulation.worker import SimulationWorker

log = logging.getLogger("Simulation.cli")


def load_request(path: Path, batch_size: int | None = None, timeout_ms: int | None = None) -> Dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"{path}: invalid JSON ({exc})") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path}: request must be a JSON object")
    # Accept a bare request or a {"type": "run", "payload": {...}} message
    if data.get("type") == "run" and isinstance(data.get("payload"), dict):
        data = data["payload"]
    options = dict(data.get("options") or {})
    if batch_size is not None:
        options["batchSize"] = batch_size
    if timeout_ms is not None:
        options["timeoutMs"] = timeout_ms
    data["options"] = options
    return data


def main(argv: List[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Simulate a scripted battle timeline over an EV grid.")
    ap.add_argument("request", help="path to a simulation request JSON file")
    ap.add_argument("--out", default=None, help="also write the final response to this file")
    ap.add_argument("--batch-size", type=int, default=None, help="override options.batchSize")
    ap.add_argument("--timeout-ms", type=int, default=None, help="override options.timeoutMs")
    ap.add_argument("--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    try:
        request = load_request(Path(args.request), args.batch_size, args.timeout_ms)
    except (OSError, ConfigurationError) as exc:
        log.error("%s", exc)
        print(json.dumps({"type": "error", "payload": {"requestId": "", "error": str(exc)}}))
        return 2

    responses: List[Dict[str, Any]] = []

    def post(message: Dict[str, Any]) -> None:
        responses.append(message)
        print(json.dumps(message), flush=True)

    worker = SimulationWorker(post)
    asyncio.run(worker.run(request))

    final = responses[-1] if responses else {"type": "error", "payload": {"requestId": "", "error": "no response"}}
    if args.out:
        out = Path(args.out)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(json.dumps(final, indent=2), encoding="utf-8")
        log.info("wrote %s", out)
    return 0 if final["type"] == "complete" else 1


if __name__ == "__main__":
    sys.exit(main())
