from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from mca_common.errors import TransportError
from mca_connectors.base import Container, HttpConnector, Identity

logger = logging.getLogger(__name__)

NOTION_VERSION = "2022-06-28"


def _plain_text(rich: Any) -> str:
    if not isinstance(rich, list):
        return ""
    return "".join(str(part.get("plain_text") or "") for part in rich if isinstance(part, dict))


def _title_of(obj: dict[str, Any]) -> str:
    """Title of a search hit: databases carry `title`, pages carry a title-typed property."""
    if "title" in obj:
        return _plain_text(obj.get("title"))
    for prop in (obj.get("properties") or {}).values():
        if isinstance(prop, dict) and prop.get("type") == "title":
            return _plain_text(prop.get("title"))
    return ""


class NotionClient(HttpConnector):
    """The integration's own bot user carries the workspace facts."""

    name = "notion"
    base_url = "https://api.notion.com/v1"
    _identity: Optional[Identity] = None

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Notion-Version": NOTION_VERSION,
            "Content-Type": "application/json",
        }

    async def get_identity(self) -> Identity:
        bot = await self._get("/users/me")
        if not isinstance(bot, dict) or "bot" not in bot:
            raise TransportError("Notion /users/me is not a bot user", connector=self.name)
        self._identity = Identity(id=str(bot["id"]), display_name=bot.get("name") or "", raw=bot)
        return self._identity

    async def list_containers(self) -> list[Container]:
        # workspace facts ride on the bot user fetched by get_identity()
        identity = self._identity or await self.get_identity()
        info = identity.raw.get("bot") or {}
        if not info.get("workspace_name") and not info.get("workspace_id"):
            return []
        return [
            Container(
                id=str(info.get("workspace_id") or ""),
                display_name=info.get("workspace_name") or "",
                raw=info,
            )
        ]

    def describe(self, identity: Identity, containers: list[Container]) -> dict[str, Any]:
        info = identity.raw.get("bot") or {}
        owner = (((info.get("owner") or {}).get("user") or {}).get("person") or {}).get("email")
        workspace = containers[0] if containers else None
        return {
            "workspace": {
                "name": workspace.display_name,
                "id": workspace.id,
                "owner": owner,
                "plan": "Plus+AI" if info.get("workspace_limits") else "Basic",
            }
            if workspace
            else None,
            "bot": {"id": identity.id, "name": identity.display_name},
        }

    async def find_by_name(self, kind: str, name: str, scope: Mapping[str, Any]) -> Optional[dict[str, Any]]:
        if kind == "team":
            return None
        payload = await self._post("/search", {"query": name, "page_size": 25})
        wanted = name.strip().lower()
        for hit in (payload or {}).get("results") or []:
            if isinstance(hit, dict) and _title_of(hit).strip().lower() == wanted:
                return {"projectId": str(hit["id"])} if kind == "project" else {"id": str(hit["id"])}
        return None
