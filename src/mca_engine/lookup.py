from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, Union, runtime_checkable

from mca_common.errors import ConnectorError, NotFoundError
from mca_connectors.base import ConnectorClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Resolved:
    fields: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NotFound:
    reason: str


Resolution = Union[Resolved, NotFound]


@runtime_checkable
class NameLookup(Protocol):
    async def resolve_id_by_name(
        self, connector: str, scope: Mapping[str, Any], kind: str, name: str
    ) -> Resolution:
        ...


class ConnectorLookup:
    """Resolves names through the connector clients' own search/list endpoints."""

    def __init__(self, clients: Mapping[str, ConnectorClient]) -> None:
        self.clients = dict(clients)

    async def resolve_id_by_name(
        self, connector: str, scope: Mapping[str, Any], kind: str, name: str
    ) -> Resolution:
        client = self.clients.get(connector)
        if client is None:
            return NotFound(f"no client configured for {connector}")

        try:
            fields = await client.find_by_name(kind, name, scope)
        except NotFoundError as e:
            return NotFound(str(e))
        except ConnectorError as e:
            logger.debug("Lookup of %s %r via %s unavailable: %s", kind, name, connector, e)
            return NotFound(f"lookup unavailable: {e}")

        if not fields:
            return NotFound(f"no {kind} named {name!r} in {connector}")
        return Resolved(dict(fields))


class NullLookup:
    """Used when no connector clients are available (e.g. enforcement from a cached snapshot only)."""

    async def resolve_id_by_name(
        self, connector: str, scope: Mapping[str, Any], kind: str, name: str
    ) -> Resolution:
        return NotFound("lookup unavailable")
