from __future__ import annotations

from typing import Any

REDACT_TOKEN = "***redacted***"


class AwarenessError(Exception):
    """Base class for every error raised by this package."""


class ConnectorError(AwarenessError):
    """A connector call failed. Recovered by the owning probe, never propagated past it."""

    def __init__(self, message: str, *, connector: str | None = None, status: int | None = None) -> None:
        super().__init__(message)
        self.connector = connector
        self.status = status


class TransportError(ConnectorError):
    """Network/HTTP failure or malformed response."""


class AuthError(ConnectorError):
    """Invalid or expired credential; the message is kept verbatim for operators."""


class RateLimitError(ConnectorError):
    def __init__(
        self,
        message: str,
        *,
        connector: str | None = None,
        status: int | None = 429,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, connector=connector, status=status)
        self.retry_after = retry_after


class NotFoundError(AwarenessError):
    """A name could not be resolved to an id. Callers treat it as a no-op."""


class PersistenceError(AwarenessError):
    """The primary snapshot store could not be written or read."""


class ConfigurationError(AwarenessError):
    """Missing or invalid startup configuration. Fatal."""


def typed_error(code: str, message: str, *, details: dict | None = None, **extra: Any) -> dict:
    """
    Standard error envelope:
      {"error": {"code": code, "message": message, "details": {...}}, ...extra}
    """
    err: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        err["error"]["details"] = details
    if extra:
        err.update(extra)
    return err


def error_code(exc: BaseException) -> str:
    """Stable envelope code for an exception of the taxonomy above."""
    if isinstance(exc, AuthError):
        return "auth_failed"
    if isinstance(exc, RateLimitError):
        return "rate_limited"
    if isinstance(exc, TransportError):
        return "transport_failed"
    if isinstance(exc, NotFoundError):
        return "not_found"
    if isinstance(exc, PersistenceError):
        return "persistence_failed"
    if isinstance(exc, ConfigurationError):
        return "bad_config"
    return "internal"
