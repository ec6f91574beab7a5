from __future__ import annotations

import functools
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from mca_common.context import correlation, get_corr_id
from mca_common.errors import AwarenessError, error_code, typed_error
from mca_common.telemetry import log_event

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Shared helpers for operator (MCP) tool handlers
# ---------------------------------------------------------------------------


_REDACTION_KEYS = {"authorization", "token", "access_token", "api_key", "apikey"}


def sanitize_args_for_log(args: dict | None) -> dict:
    """Remove obvious secrets from args (telemetry layer also redacts)."""
    out: dict[str, Any] = {}
    for k, v in (args or {}).items():
        out[str(k)] = "***redacted***" if str(k).lower() in _REDACTION_KEYS else v
    return out


@dataclass(frozen=True)
class InstrumentConfig:
    kind: str
    name: str

    # correlation id behavior
    new_corr_id_per_call: bool = True

    # attach corr_id to returned dict for debugging
    attach_corr_id: bool = True


def instrument_async_tool(cfg: InstrumentConfig):
    """Decorator for async operator tools: telemetry + typed error envelope."""

    def decorator(fn: Callable[..., Awaitable[Any]]):
        fn_sig = inspect.signature(fn)

        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any):
            with correlation(None if cfg.new_corr_id_per_call else get_corr_id()) as corr_id:
                t0 = time.perf_counter()

                bound = fn_sig.bind_partial(*args, **kwargs)
                bound.apply_defaults()
                args_for_log: dict[str, Any] = {"args": sanitize_args_for_log(dict(bound.arguments))}

                try:
                    payload = await fn(*args, **kwargs)
                except AwarenessError as e:
                    payload = typed_error(error_code(e), str(e))
                except Exception as e:
                    logger.exception("Tool %s failed", cfg.name)
                    payload = typed_error("internal", str(e))

                ms = int((time.perf_counter() - t0) * 1000)
                ok = not (isinstance(payload, dict) and "error" in payload)
                if isinstance(payload, dict) and payload.get("error"):
                    args_for_log["error"] = payload.get("error")

                log_event(cfg.kind, cfg.name, args_for_log, ok=ok, ms=ms, corr_id=corr_id)

                if cfg.attach_corr_id and isinstance(payload, dict):
                    payload.setdefault("corr_id", corr_id)
                return payload

        # Preserve signature for schema generation
        wrapper.__signature__ = fn_sig  # type: ignore[attr-defined]
        return wrapper

    return decorator
