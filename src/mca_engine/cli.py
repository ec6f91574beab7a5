"""
Operator CLI.

  mca calibrate            probe every connector and persist a new snapshot
  mca verify               re-check identities against the stored snapshot
  mca health               print the last stored health snapshot
  mca monitor              run health checks on the configured interval until interrupted
  mca enforce TOOL [--params JSON]
  mca status               calibration age and refresh need

Exit codes: 0 ok, 2 no prior snapshot, 3 connector failure, 4 bad config, 5 persistence failure.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Callable, Optional, Sequence

from mca_common.errors import ConfigurationError, PersistenceError
from mca_config.settings import init_runtime
from mca_engine.models import ToolCall
from mca_engine.runtime import Engine, build_engine

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_NO_SNAPSHOT = 2
EXIT_CONNECTOR_FAILED = 3
EXIT_CONFIG = 4
EXIT_PERSISTENCE = 5


def _print(obj: Any) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


async def cmd_calibrate(eng: Engine, args: argparse.Namespace) -> int:
    snapshot = await eng.calibrator.calibrate()
    _print(snapshot.model_dump(mode="json"))
    return EXIT_CONNECTOR_FAILED if snapshot.failed_connectors() else EXIT_OK


async def cmd_verify(eng: Engine, args: argparse.Namespace) -> int:
    if await eng.store.load() is None:
        print("No calibration snapshot; run `mca calibrate` first.", file=sys.stderr)
        return EXIT_NO_SNAPSHOT
    return EXIT_OK if await eng.calibrator.verify() else EXIT_CONNECTOR_FAILED


async def cmd_health(eng: Engine, args: argparse.Namespace) -> int:
    health = await eng.monitor.status()
    if health is None:
        print("No health snapshot recorded yet.", file=sys.stderr)
        return EXIT_NO_SNAPSHOT
    _print(health.model_dump(mode="json"))
    return EXIT_CONNECTOR_FAILED if health.failed_connectors() else EXIT_OK


async def cmd_monitor(eng: Engine, args: argparse.Namespace) -> int:
    await eng.ensure_calibrated()
    eng.verifier.start()
    eng.monitor.start()
    try:
        await eng.monitor.join()
    finally:
        eng.monitor.stop()
        eng.verifier.stop()
        await eng.monitor.drain_alerts()
    return EXIT_OK


async def cmd_enforce(eng: Engine, args: argparse.Namespace) -> int:
    try:
        params = json.loads(args.params) if args.params else {}
    except ValueError as e:
        raise ConfigurationError(f"--params is not valid JSON: {e}") from e
    if not isinstance(params, dict):
        raise ConfigurationError("--params must be a JSON object")
    result = await eng.enforcer.enforce(ToolCall(tool=args.tool, params=params))
    _print(result.as_payload())
    return EXIT_OK


async def cmd_status(eng: Engine, args: argparse.Namespace) -> int:
    age = await eng.store.calibration_age_hours()
    if age is None:
        print("No calibration snapshot.", file=sys.stderr)
        return EXIT_NO_SNAPSHOT
    ttl = eng.config.calibration.cache_ttl_hours
    _print({"age_hours": round(age, 3), "needs_refresh": age > ttl, "cache_ttl_hours": ttl})
    return EXIT_OK


COMMANDS: dict[str, Callable[[Engine, argparse.Namespace], Any]] = {
    "calibrate": cmd_calibrate,
    "verify": cmd_verify,
    "health": cmd_health,
    "monitor": cmd_monitor,
    "enforce": cmd_enforce,
    "status": cmd_status,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mca", description="MCP connector awareness")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("calibrate", help="run calibration now")
    sub.add_parser("verify", help="run verification now")
    sub.add_parser("health", help="print the current health snapshot")
    sub.add_parser("monitor", help="start health monitoring until interrupted")
    enforce = sub.add_parser("enforce", help="show how a tool call would be rewritten")
    enforce.add_argument("tool")
    enforce.add_argument("--params", default=None, help="JSON object of tool params")
    sub.add_parser("status", help="calibration age")
    return parser


def main(argv: Optional[Sequence[str]] = None, *, engine_factory: Callable[[], Engine] = build_engine) -> int:
    args = build_parser().parse_args(argv)
    init_runtime()
    try:
        eng = engine_factory()
        return asyncio.run(COMMANDS[args.command](eng, args))
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG
    except PersistenceError as e:
        print(f"Persistence error: {e}", file=sys.stderr)
        return EXIT_PERSISTENCE
    except KeyboardInterrupt:
        return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
