from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from mca_common.errors import AuthError, TransportError
from mca_connectors.base import Container, HttpConnector, Identity, Page, normalize_page

logger = logging.getLogger(__name__)

_VIEWER = "query { viewer { id name email admin } }"
_TEAMS = "query { teams { nodes { id name key } } }"
_TEAM_BY_NAME = (
    "query($name: String!) { teams(filter: {name: {eqIgnoreCase: $name}}) { nodes { id name } } }"
)
_PROJECT_BY_NAME = (
    "query($name: String!) { projects(filter: {name: {eqIgnoreCase: $name}}) { nodes { id name } } }"
)
_ISSUE_CREATE = (
    "mutation($input: IssueCreateInput!) { issueCreate(input: $input) { success issue { id identifier url } } }"
)


class LinearClient(HttpConnector):
    """GraphQL client; Linear personal API keys are sent without a Bearer prefix."""

    name = "linear"
    base_url = "https://api.linear.app/graphql"

    def _headers(self) -> dict[str, str]:
        return {"Authorization": self.token, "Content-Type": "application/json"}

    async def _query(self, query: str, variables: Mapping[str, Any] | None = None) -> dict[str, Any]:
        body: dict[str, Any] = {"query": query}
        if variables:
            body["variables"] = dict(variables)
        payload = await self._post("", body)
        if not isinstance(payload, dict):
            raise TransportError("Linear returned a non-object response", connector=self.name)

        errors = payload.get("errors") or []
        if errors:
            message = "; ".join(str(e.get("message")) for e in errors if isinstance(e, dict))
            codes = {((e.get("extensions") or {}).get("code") or "") for e in errors if isinstance(e, dict)}
            if "AUTHENTICATION_ERROR" in codes:
                raise AuthError(message, connector=self.name)
            raise TransportError(message, connector=self.name)

        data = payload.get("data")
        if not isinstance(data, dict):
            raise TransportError("Linear response has no 'data'", connector=self.name)
        return data

    async def get_identity(self) -> Identity:
        viewer = (await self._query(_VIEWER))["viewer"]
        return Identity(id=str(viewer["id"]), display_name=viewer.get("name") or "", email=viewer.get("email"), raw=viewer)

    async def list_containers(self) -> list[Container]:
        nodes = ((await self._query(_TEAMS)).get("teams") or {}).get("nodes") or []
        return [Container(id=str(t["id"]), display_name=t.get("name") or "", raw=t) for t in nodes]

    def describe(self, identity: Identity, containers: list[Container]) -> dict[str, Any]:
        team = containers[0] if containers else None
        return {
            "user": {
                "name": identity.display_name,
                "email": identity.email,
                "id": identity.id,
                "admin": identity.raw.get("admin"),
            },
            "team": {"name": team.display_name, "key": team.raw.get("key"), "id": team.id} if team else None,
        }

    async def find_by_name(self, kind: str, name: str, scope: Mapping[str, Any]) -> Optional[dict[str, Any]]:
        if kind == "team":
            nodes = ((await self._query(_TEAM_BY_NAME, {"name": name})).get("teams") or {}).get("nodes") or []
            return {"teamId": str(nodes[0]["id"])} if nodes else None

        nodes = ((await self._query(_PROJECT_BY_NAME, {"name": name})).get("projects") or {}).get("nodes") or []
        if not nodes:
            return None
        if kind == "project":
            return {"projectId": str(nodes[0]["id"])}
        return {"id": str(nodes[0]["id"])}

    def normalize_page(self, raw: Any, params: Optional[Mapping[str, Any]] = None) -> Page:
        # Tool results usually wrap the connection: {"issues": {"nodes": [...], "pageInfo": {...}}}
        if isinstance(raw, dict) and "nodes" not in raw and len(raw) == 1:
            (inner,) = raw.values()
            if isinstance(inner, dict) and "nodes" in inner:
                raw = inner
        return normalize_page(raw, params)

    async def create_issue(self, team_id: str, title: str, description: str) -> dict[str, Any]:
        data = await self._query(
            _ISSUE_CREATE,
            {"input": {"teamId": team_id, "title": title, "description": description}},
        )
        result = data.get("issueCreate") or {}
        if not result.get("success"):
            raise TransportError("Linear issueCreate reported failure", connector=self.name)
        return result.get("issue") or {}
