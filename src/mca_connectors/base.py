from __future__ import annotations

import asyncio
from typing import Any, Mapping, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from mca_common.errors import ConnectorError, TransportError
from mca_connectors.http_client import HttpClient


class Identity(BaseModel):
    """Who the credential belongs to, as reported by the provider."""

    id: str
    display_name: str
    email: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)


class Container(BaseModel):
    """A top-level workspace/team/org/repo. The first one listed is the default."""

    id: str
    display_name: str
    raw: dict[str, Any] = Field(default_factory=dict)


class Page(BaseModel):
    """Normalized page of a list/search result."""

    items: list[Any] = Field(default_factory=list)
    next_cursor: Optional[str] = None

    @property
    def has_more(self) -> bool:
        return bool(self.next_cursor)


@runtime_checkable
class ConnectorClient(Protocol):
    """
    Capability set every provider client exposes to the calibration core.
    Failures are raised as ConnectorError subclasses (auth / transport / rate limit).
    """

    name: str

    async def get_identity(self) -> Identity:
        ...

    async def list_containers(self) -> list[Container]:
        ...

    async def ping_identity(self) -> None:
        ...
        # Cheap liveness check shared by Calibrator.verify() and the Health Monitor.

    def describe(self, identity: Identity, containers: list[Container]) -> dict[str, Any]:
        ...
        # Maps provider fields into ConnectorStatus identity fields
        # (user / workspace / team / stats / bot).

    async def find_by_name(self, kind: str, name: str, scope: Mapping[str, Any]) -> Optional[dict[str, Any]]:
        ...
        # kind is one of "item", "team", "project"; returns the id fields to merge, or None.

    def normalize_page(self, raw: Any, params: Optional[Mapping[str, Any]] = None) -> Page:
        ...
        # params are the ones the page was requested with (page-number providers need them).


def normalize_page(raw: Any, params: Optional[Mapping[str, Any]] = None) -> Page:
    """
    Normalize the provider page shapes seen in practice:
      - plain list (single page)
      - GraphQL connection {nodes, pageInfo{hasNextPage, endCursor}}
      - {data, next_page}
      - {results, has_more, next_cursor}
    Unknown shapes raise instead of silently ending pagination after one page.
    """
    if isinstance(raw, Page):
        return raw
    if isinstance(raw, list):
        return Page(items=raw)
    if isinstance(raw, dict):
        if "nodes" in raw:
            info = raw.get("pageInfo") or {}
            cursor = info.get("endCursor") if info.get("hasNextPage") else None
            return Page(items=list(raw.get("nodes") or []), next_cursor=cursor)
        if "results" in raw and "has_more" in raw:
            cursor = raw.get("next_cursor") if raw.get("has_more") else None
            return Page(items=list(raw.get("results") or []), next_cursor=cursor)
        if "data" in raw and isinstance(raw.get("data"), list):
            nxt = raw.get("next_page")
            if isinstance(nxt, dict):
                nxt = nxt.get("offset")
            return Page(items=list(raw["data"]), next_cursor=str(nxt) if nxt else None)
    raise TransportError(f"Unrecognized page shape: {type(raw).__name__}")


def match_by_name(items: list[dict[str, Any]], name: str, *, key: str = "name") -> Optional[dict[str, Any]]:
    """First item whose name equals `name` (case-insensitive), in provider order."""
    wanted = (name or "").strip().lower()
    for item in items or []:
        if isinstance(item, dict) and str(item.get(key) or "").strip().lower() == wanted:
            return item
    return None


class HttpConnector:
    """Shared plumbing for the requests-based provider clients."""

    name: str = ""
    base_url: str = ""

    def __init__(self, token: str, *, http: HttpClient | None = None) -> None:
        self.token = token
        self.http = http or HttpClient(connector=self.name)

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}", "Accept": "application/json"}

    async def _get(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        return await asyncio.to_thread(
            self.http.get_json, self.base_url + path, headers=self._headers(), params=params
        )

    async def _post(self, path: str, body: Any) -> Any:
        return await asyncio.to_thread(
            self.http.post_json, self.base_url + path, headers=self._headers(), json=body
        )

    async def ping_identity(self) -> None:
        await self.get_identity()

    async def get_identity(self) -> Identity:  # pragma: no cover - overridden
        raise NotImplementedError

    async def find_by_name(self, kind: str, name: str, scope: Mapping[str, Any]) -> Optional[dict[str, Any]]:
        return None

    def normalize_page(self, raw: Any, params: Optional[Mapping[str, Any]] = None) -> Page:
        return normalize_page(raw, params)


def is_not_found(exc: ConnectorError) -> bool:
    return exc.status == 404
