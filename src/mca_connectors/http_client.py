"""
Lightweight shared HTTP client for the connector clients.

Goals:
- Centralize timeouts, retries, and error logging.
- Translate `requests` failures into the connector error taxonomy
  (AuthError / RateLimitError / TransportError) so probes only need to
  distinguish "succeeded" from "failed".
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Mapping

import requests
from requests import Response
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from mca_common.errors import AuthError, ConnectorError, RateLimitError, TransportError

logger = logging.getLogger(__name__)


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


DEFAULT_CONNECT_TIMEOUT_S = _env_float("MCA_HTTP_CONNECT_TIMEOUT", 3.05)
DEFAULT_READ_TIMEOUT_S = _env_float("MCA_HTTP_READ_TIMEOUT", 20.0)
DEFAULT_TIMEOUT = (DEFAULT_CONNECT_TIMEOUT_S, DEFAULT_READ_TIMEOUT_S)

DEFAULT_RETRIES = _env_int("MCA_HTTP_RETRIES", 2)
DEFAULT_BACKOFF = _env_float("MCA_HTTP_BACKOFF", 0.4)

# Retries are only applied to idempotent methods.
DEFAULT_RETRY_STATUS = (500, 502, 503, 504)


@dataclass(frozen=True)
class HttpClientConfig:
    timeout: tuple[float, float] = DEFAULT_TIMEOUT
    retries: int = DEFAULT_RETRIES
    backoff: float = DEFAULT_BACKOFF
    retry_statuses: tuple[int, ...] = DEFAULT_RETRY_STATUS
    user_agent: str = os.getenv("MCA_HTTP_USER_AGENT", "mcp-connector-awareness/1.0")


def _retry_after(resp: Response | None) -> float | None:
    if resp is None:
        return None
    value = resp.headers.get("Retry-After")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


def translate_error(exc: requests.RequestException, *, connector: str | None = None) -> ConnectorError:
    """Map a requests failure to the connector error taxonomy."""
    resp = getattr(exc, "response", None)
    status = getattr(resp, "status_code", None)
    if status in (401, 403):
        return AuthError(str(exc), connector=connector, status=status)
    if status == 429:
        return RateLimitError(str(exc), connector=connector, retry_after=_retry_after(resp))
    return TransportError(str(exc), connector=connector, status=status)


class HttpClient:
    """A small wrapper around `requests.Session` with sane defaults."""

    def __init__(
        self,
        *,
        connector: str | None = None,
        config: HttpClientConfig | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.connector = connector
        self.config = config or HttpClientConfig()
        self.session = session or requests.Session()
        self._configure_session(self.session, self.config)

    @staticmethod
    def _configure_session(session: requests.Session, config: HttpClientConfig) -> None:
        session.headers.setdefault("User-Agent", config.user_agent)

        if config.retries <= 0:
            return

        retry = Retry(
            total=config.retries,
            connect=config.retries,
            read=config.retries,
            status=config.retries,
            backoff_factor=config.backoff,
            status_forcelist=config.retry_statuses,
            allowed_methods=frozenset(["HEAD", "GET", "OPTIONS"]),
            respect_retry_after_header=True,
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=10)
        session.mount("https://", adapter)
        session.mount("http://", adapter)

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        params: Mapping[str, Any] | None = None,
        json: Any | None = None,
        timeout: tuple[float, float] | float | None = None,
    ) -> Response:
        """Perform an HTTP request; non-2xx responses raise a ConnectorError."""
        t0 = time.perf_counter()
        try:
            resp = self.session.request(
                method=method,
                url=url,
                headers=dict(headers) if headers else None,
                params=dict(params) if params else None,
                json=json,
                timeout=timeout or self.config.timeout,
            )
            resp.raise_for_status()
            return resp
        except requests.RequestException as e:
            ms = int((time.perf_counter() - t0) * 1000)
            status = getattr(getattr(e, "response", None), "status_code", None)
            logger.warning(
                "HTTP %s %s failed (connector=%s, status=%s, ms=%s): %s",
                method.upper(),
                url,
                self.connector,
                status,
                ms,
                str(e),
            )
            raise translate_error(e, connector=self.connector) from e

    @staticmethod
    def _json(resp: Response, connector: str | None) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise TransportError(f"Malformed JSON from {resp.url}", connector=connector) from e

    def get_json(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        return self._json(self.request("GET", url, headers=headers, params=params), self.connector)

    def post_json(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        json: Any | None = None,
    ) -> Any:
        return self._json(self.request("POST", url, headers=headers, json=json), self.connector)
