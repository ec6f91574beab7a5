from __future__ import annotations

import datetime as _dt
import json
import os
from typing import Any

from mca_config.settings import telemetry_dir
from mca_common.context import get_corr_id
from mca_common.errors import REDACT_TOKEN

TELEMETRY_FILE = "awareness-telemetry.jsonl"

_SECRET_KEYS = {
    "authorization",
    "access_token",
    "token",
    "api_key",
    "apikey",
    "asana_access_token",
    "linear_api_key",
    "github_token",
    "notion_token",
}

_PII_KEYS = {"email", "owner_email"}


def _disabled() -> bool:
    return os.getenv("MCA_DISABLE_TELEMETRY", "0").strip().lower() in {"1", "true", "yes"}


def _redact_secrets(obj: Any) -> Any:
    if isinstance(obj, dict):
        out = {}
        for k, v in obj.items():
            if isinstance(k, str) and k.strip().lower() in _SECRET_KEYS:
                if isinstance(v, str) and v.strip().lower().startswith("bearer "):
                    out[k] = "Bearer " + REDACT_TOKEN
                else:
                    out[k] = REDACT_TOKEN
            else:
                out[k] = _redact_secrets(v)
        return out
    if isinstance(obj, list):
        return [_redact_secrets(x) for x in obj]
    return obj


def _redact_pii(obj: Any) -> Any:
    if isinstance(obj, dict):
        out = {}
        for k, v in obj.items():
            if isinstance(k, str) and k.strip().lower() in _PII_KEYS:
                out[k] = REDACT_TOKEN
            else:
                out[k] = _redact_pii(v)
        return out
    if isinstance(obj, list):
        return [_redact_pii(x) for x in obj]
    return obj


def redact(obj: Any) -> Any:
    return _redact_pii(_redact_secrets(obj))


def log_event(
    kind: str,
    name: str,
    args: dict | None = None,
    ok: bool = True,
    ms: int = 0,
    *,
    corr_id: str | None = None,
    telemetry_file: str = TELEMETRY_FILE,
) -> None:
    """
    Append one JSONL telemetry record (operator tools, enforcement passes, health cycles).
    """
    if _disabled():
        return

    rec = {
        "ts": _dt.datetime.now(_dt.timezone.utc).isoformat().replace("+00:00", "Z"),
        "kind": kind,
        "name": name,
        "corr_id": corr_id or get_corr_id(),
        "args": {} if args is None else dict(args),
        "ok": bool(ok),
        "ms": int(ms),
    }

    d = telemetry_dir()
    d.mkdir(parents=True, exist_ok=True)
    with (d / telemetry_file).open("a", encoding="utf-8") as f:
        f.write(json.dumps(redact(rec), ensure_ascii=False, default=str) + "\n")


def telemetry_recent(n: int = 50, telemetry_file: str = TELEMETRY_FILE) -> dict:
    """
    Return last N telemetry records (bounded), redacted again on read.
    """
    p = telemetry_dir() / telemetry_file
    if not p.exists():
        return {"records": []}

    try:
        n_int = int(n)
    except (TypeError, ValueError):
        n_int = 50
    n_int = max(1, min(n_int, 200))

    lines = p.read_text(encoding="utf-8").splitlines()[-n_int:]

    out = []
    for line in lines:
        try:
            rec = json.loads(line)
        except json.JSONDecodeError:
            continue
        out.append(redact(rec))

    return {"records": out}
