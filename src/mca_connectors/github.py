from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from mca_common.errors import ConnectorError, NotFoundError, TransportError
from mca_connectors.base import Container, HttpConnector, Identity, Page, is_not_found, normalize_page

logger = logging.getLogger(__name__)


class GitHubClient(HttpConnector):
    name = "github"
    base_url = "https://api.github.com"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    async def get_identity(self) -> Identity:
        user = await self._get("/user")
        if not isinstance(user, dict) or "login" not in user:
            raise TransportError("GitHub /user response has no login", connector=self.name)
        return Identity(id=str(user["id"]), display_name=user["login"], email=user.get("email"), raw=user)

    async def list_containers(self) -> list[Container]:
        repos = await self._get("/user/repos", {"per_page": 100, "sort": "updated"})
        if not isinstance(repos, list):
            raise TransportError("GitHub /user/repos did not return a list", connector=self.name)
        return [Container(id=str(r["id"]), display_name=r.get("full_name") or r.get("name") or "", raw=r) for r in repos]

    def describe(self, identity: Identity, containers: list[Container]) -> dict[str, Any]:
        public = int(identity.raw.get("public_repos") or 0)
        private = int(identity.raw.get("total_private_repos") or 0)
        return {
            "user": {
                "login": identity.display_name,
                "email": identity.email,
                "id": identity.id,
                "repos": public + private,
            },
            "stats": {"public_repos": public, "private_repos": private},
        }

    async def find_by_name(self, kind: str, name: str, scope: Mapping[str, Any]) -> Optional[dict[str, Any]]:
        owner = scope.get("owner")
        if kind != "item" or not owner:
            return None
        try:
            repo = await self._get(f"/repos/{owner}/{name}")
        except ConnectorError as e:
            if is_not_found(e):
                raise NotFoundError(f"repository {owner}/{name} not found") from e
            raise
        return {"id": str(repo["id"])} if isinstance(repo, dict) and "id" in repo else None

    def normalize_page(self, raw: Any, params: Optional[Mapping[str, Any]] = None) -> Page:
        """
        GitHub list endpoints return a bare array and paginate by page number.
        A full page (len == per_page) means there may be another one.
        """
        items = raw.get("items") if isinstance(raw, dict) and isinstance(raw.get("items"), list) else raw
        if not isinstance(items, list):
            return normalize_page(raw, params)
        params = params or {}
        per_page = int(params.get("per_page") or 30)
        page = int(params.get("page") or 1)
        more = bool(items) and len(items) >= per_page
        return Page(items=list(items), next_cursor=str(page + 1) if more else None)
