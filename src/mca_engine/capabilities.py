"""
Capability tables for the enforcement rules.

Tool names encode connector and action (`asana.list_tasks`, `linear_create_issue`).
Each rule family below is a closed table keyed by connector or by action
fragment; anything not listed passes through with its params untouched.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from mca_config.settings import KNOWN_CONNECTORS
from mca_engine.models import ConnectorStatus


def connector_for_tool(tool: str) -> Optional[str]:
    for name in KNOWN_CONNECTORS:
        if tool.startswith(name):
            return name
    return None


# ---- rule 1: identifier injection ---------------------------------------


@dataclass(frozen=True)
class IdentifierRule:
    connector: str
    param: str
    section: str
    key: str
    description: str

    def value_from(self, status: ConnectorStatus) -> Optional[str]:
        section = getattr(status, self.section, None)
        if not isinstance(section, dict):
            return None
        value = section.get(self.key)
        return str(value) if value not in (None, "") else None


IDENTIFIER_RULES: tuple[IdentifierRule, ...] = (
    IdentifierRule("asana", "workspace", "workspace", "gid", "Injected Asana workspace ID"),
    IdentifierRule("linear", "teamId", "team", "id", "Injected Linear team ID"),
    IdentifierRule("notion", "workspace_id", "workspace", "id", "Injected Notion workspace ID"),
    IdentifierRule("github", "owner", "user", "login", "Injected GitHub owner"),
)


# ---- rule 2: name-to-id resolution --------------------------------------


@dataclass(frozen=True)
class NameRule:
    name_field: str
    id_fields: tuple[str, ...]
    kind: str

    def pending(self, params: dict) -> Optional[str]:
        """The name to resolve, if the call carries the name but none of the id fields."""
        name = params.get(self.name_field)
        if not name or not isinstance(name, str):
            return None
        if any(params.get(f) for f in self.id_fields):
            return None
        return name


NAME_RULES: tuple[NameRule, ...] = (
    NameRule("name", ("id", "gid", "teamId"), "item"),
    NameRule("teamName", ("teamId",), "team"),
    NameRule("projectName", ("projectId",), "project"),
)


# ---- rule 3: pagination --------------------------------------------------

PAGINATION_FRAGMENTS: tuple[str, ...] = (
    "list_",
    "list_tasks",
    "list_projects",
    "list_issues",
    "get_issues",
    "list_pull_requests",
    "list_commits",
    "search_",
    "get_comments",
    "list_cycles",
)


def requires_pagination(tool: str, fragments: Iterable[str] = PAGINATION_FRAGMENTS) -> bool:
    return any(fragment in tool for fragment in fragments)


# ---- rule 4: operation chaining ------------------------------------------

CHAINING_FRAGMENTS: tuple[str, ...] = ("create_issue", "create_task", "create_project")


@dataclass(frozen=True)
class ChainRule:
    fragment: str
    trigger: str
    followup_tool: str


CHAIN_RULES: tuple[ChainRule, ...] = (
    ChainRule("create_issue", "labels", "add_labels"),
    ChainRule("create_issue", "assignees", "add_assignees"),
    ChainRule("create_task", "followers", "add_followers"),
)


def requires_chaining(tool: str) -> bool:
    return any(fragment in tool for fragment in CHAINING_FRAGMENTS)


def chain_rules_for(tool: str, params: dict) -> list[ChainRule]:
    """Rules whose create fragment matches and whose dependent param is present, in table order."""
    if not requires_chaining(tool):
        return []
    return [r for r in CHAIN_RULES if r.fragment in tool and params.get(r.trigger)]
