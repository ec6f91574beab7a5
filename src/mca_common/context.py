from __future__ import annotations

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

# Correlates telemetry lines of one operator request (calibration run, enforce call, health cycle).
_corr_id_ctx: ContextVar[str | None] = ContextVar("corr_id", default=None)


def new_corr_id() -> str:
    return uuid.uuid4().hex


def get_corr_id() -> str:
    cid = _corr_id_ctx.get()
    if not cid:
        cid = new_corr_id()
        _corr_id_ctx.set(cid)
    return cid


def set_corr_id(cid: str | None) -> None:
    if cid:
        _corr_id_ctx.set(cid)


@contextmanager
def correlation(cid: str | None = None) -> Iterator[str]:
    """Bind a fresh (or given) correlation id for the duration of the block."""
    value = cid or new_corr_id()
    token = _corr_id_ctx.set(value)
    try:
        yield value
    finally:
        _corr_id_ctx.reset(token)
