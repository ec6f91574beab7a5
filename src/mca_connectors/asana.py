from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from mca_common.errors import TransportError
from mca_connectors.base import Container, HttpConnector, Identity, match_by_name

logger = logging.getLogger(__name__)


def _data(payload: Any) -> Any:
    if not isinstance(payload, dict) or "data" not in payload:
        raise TransportError("Asana response has no 'data' envelope", connector="asana")
    return payload["data"]


class AsanaClient(HttpConnector):
    name = "asana"
    base_url = "https://app.asana.com/api/1.0"

    async def get_identity(self) -> Identity:
        user = _data(await self._get("/users/me", {"opt_fields": "gid,name,email"}))
        return Identity(id=str(user["gid"]), display_name=user.get("name") or "", email=user.get("email"), raw=user)

    async def list_containers(self) -> list[Container]:
        rows = _data(await self._get("/workspaces", {"opt_fields": "gid,name,is_organization"}))
        return [Container(id=str(w["gid"]), display_name=w.get("name") or "", raw=w) for w in rows]

    def describe(self, identity: Identity, containers: list[Container]) -> dict[str, Any]:
        default = containers[0] if containers else None
        return {
            "user": {"name": identity.display_name, "email": identity.email, "gid": identity.id},
            "workspace": {
                "name": default.display_name,
                "gid": default.id,
                "is_organization": default.raw.get("is_organization"),
            }
            if default
            else None,
        }

    async def find_by_name(self, kind: str, name: str, scope: Mapping[str, Any]) -> Optional[dict[str, Any]]:
        workspace = scope.get("workspace")
        if not workspace:
            return None

        if kind == "team":
            teams = _data(await self._get(f"/organizations/{workspace}/teams"))
            hit = match_by_name(teams, name)
            return {"teamId": str(hit["gid"])} if hit else None

        projects = _data(await self._get("/projects", {"workspace": workspace, "archived": "false"}))
        hit = match_by_name(projects, name)
        if not hit:
            return None
        if kind == "project":
            return {"projectId": str(hit["gid"])}
        return {"gid": str(hit["gid"])}
