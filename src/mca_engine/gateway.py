import asyncio
import logging
import os
from typing import Any, Callable, Optional

from mcp.server.fastmcp import FastMCP

from mca_common.errors import typed_error
from mca_common.telemetry import telemetry_recent
from mca_common.tooling import InstrumentConfig, instrument_async_tool
from mca_config.settings import init_runtime
from mca_engine.models import ToolCall
from mca_engine.runtime import Engine, build_engine

logger = logging.getLogger(__name__)

mcp = FastMCP(
    name="MCP-Connector-Awareness",
    instructions=(
        "Operator surface for connector calibration, tool-call enforcement and health monitoring "
        "across Asana, Linear, GitHub and Notion."
    ),
)

_ENGINE: Optional[Engine] = None


def engine() -> Engine:
    global _ENGINE
    if _ENGINE is None:
        _ENGINE = build_engine()
    return _ENGINE


def set_engine(value: Optional[Engine]) -> None:
    """Swap the process engine (tests, embedding)."""
    global _ENGINE
    _ENGINE = value


def awareness_tool(name: str):
    """Registers an MCP tool wrapped with telemetry + typed error envelope."""

    def decorator(fn: Callable[..., Any]):
        wrapped = instrument_async_tool(InstrumentConfig(kind="tool", name=name))(fn)
        return mcp.tool(name=name)(wrapped)

    return decorator


@awareness_tool("awareness.healthz.v1")
async def awareness_healthz() -> dict:
    return {"ok": True}


@awareness_tool("awareness.calibrate.v1")
async def awareness_calibrate() -> dict:
    snapshot = await engine().calibrator.calibrate()
    return {"snapshot": snapshot.model_dump(mode="json"), "failed": snapshot.failed_connectors()}


@awareness_tool("awareness.verify.v1")
async def awareness_verify() -> dict:
    eng = engine()
    if await eng.store.load() is None:
        return typed_error("no_snapshot", "No calibration snapshot; run awareness.calibrate.v1 first")
    return {"verified": await eng.calibrator.verify()}


@awareness_tool("awareness.snapshot.v1")
async def awareness_snapshot() -> dict:
    eng = engine()
    snapshot = await eng.store.load()
    if snapshot is None:
        return typed_error("no_snapshot", "No calibration snapshot")
    return {
        "snapshot": snapshot.model_dump(mode="json"),
        "age_hours": round(eng.store.age_of(snapshot).total_seconds() / 3600.0, 3),
    }


@awareness_tool("awareness.enforce.v1")
async def awareness_enforce(tool: str, params: dict | None = None) -> dict:
    result = await engine().enforcer.enforce(ToolCall(tool=tool, params=params or {}))
    return result.as_payload()


@awareness_tool("awareness.health.status.v1")
async def awareness_health_status() -> dict:
    health = await engine().monitor.status()
    if health is None:
        return typed_error("no_health", "No health snapshot recorded yet")
    return {"health": health.model_dump(mode="json")}


@awareness_tool("awareness.health.start.v1")
async def awareness_health_start() -> dict:
    started = engine().monitor.start()
    return {"monitoring": True, "started": started}


@awareness_tool("awareness.health.stop.v1")
async def awareness_health_stop() -> dict:
    engine().monitor.stop()
    return {"monitoring": False}


@awareness_tool("awareness.telemetry.recent.v1")
async def awareness_telemetry_recent(n: int = 50) -> dict:
    return telemetry_recent(n=n)


def main() -> None:
    # Entry points call main() directly, so runtime initialization happens here.
    init_runtime()
    eng = engine()  # ConfigurationError surfaces here, before any probe
    asyncio.run(eng.ensure_calibrated())
    transport = os.environ.get("MCP_TRANSPORT", "stdio")
    mcp.run(transport=transport)


if __name__ == "__main__":
    main()
