from __future__ import annotations

import copy
import logging
import time
from typing import Any, Mapping, Optional, Union

from mca_common.telemetry import log_event
from mca_config.settings import EnforcementConfig
from mca_connectors.base import ConnectorClient, normalize_page
from mca_engine.capabilities import (
    IDENTIFIER_RULES,
    NAME_RULES,
    chain_rules_for,
    connector_for_tool,
    requires_pagination,
)
from mca_engine.lookup import NameLookup, NullLookup, Resolved
from mca_engine.models import CalibrationSnapshot, EnforcementResult, ToolCall
from mca_engine.pagination import CURSOR_PARAMS, ToolExecutor, execute_with_pagination
from mca_engine.store import SnapshotStore

logger = logging.getLogger(__name__)


class EnforcementPipeline:
    """
    Rewrites an outbound tool call using the latest calibration snapshot.

    Rules run in a fixed order, each only adding params that are absent:
      1. inject workspace/team/owner identifiers
      2. resolve human-readable names to ids (the only step that may do I/O)
      3. flag list/search calls for full pagination
      4. chain dependent follow-up calls after creates
    The pipeline never executes the call itself.
    """

    def __init__(
        self,
        store: SnapshotStore,
        *,
        lookup: Optional[NameLookup] = None,
        config: Optional[EnforcementConfig] = None,
        clients: Optional[Mapping[str, ConnectorClient]] = None,
    ) -> None:
        self.store = store
        self.lookup = lookup or NullLookup()
        self.config = config or EnforcementConfig()
        self.clients = dict(clients or {})

    async def enforce(
        self,
        call: Union[ToolCall, Mapping[str, Any]],
        *,
        snapshot: Optional[CalibrationSnapshot] = None,
    ) -> EnforcementResult:
        call = call if isinstance(call, ToolCall) else ToolCall.model_validate(call)
        t0 = time.perf_counter()

        if snapshot is None:
            snapshot = await self.store.load()

        original = ToolCall(tool=call.tool, params=copy.deepcopy(call.params))
        enhanced = ToolCall(tool=call.tool, params=dict(call.params))
        result = EnforcementResult(original=original, enhanced=enhanced)

        self._inject_identifiers(result, snapshot)

        if self.config.auto_resolve_ids:
            await self._resolve_names(result)

        if self.config.require_pagination_completion and requires_pagination(call.tool):
            result.enforce_pagination = True
            result.modifications.append("Pagination enforcement enabled")

        chain = self._build_chain(result.enhanced)
        if chain:
            result.chain_operations = chain
            result.modifications.append("Operation chaining configured")

        ms = int((time.perf_counter() - t0) * 1000)
        log_event(
            "enforcement",
            call.tool,
            {
                "modifications": list(result.modifications),
                "enforce_pagination": bool(result.enforce_pagination),
                "chain_length": len(result.chain_operations or []),
            },
            ms=ms,
        )
        logger.debug("Enforced %s: %s", call.tool, result.modifications or "no changes")
        return result

    # ---- rule 1 -------------------------------------------------------------

    @staticmethod
    def _inject_identifiers(result: EnforcementResult, snapshot: Optional[CalibrationSnapshot]) -> None:
        if snapshot is None:
            return
        params = result.enhanced.params
        for rule in IDENTIFIER_RULES:
            if not result.enhanced.tool.startswith(rule.connector) or rule.param in params:
                continue
            status = snapshot.authenticated(rule.connector)
            value = rule.value_from(status) if status is not None else None
            if value is None:
                continue
            params[rule.param] = value
            result.modifications.append(rule.description)

    # ---- rule 2 -------------------------------------------------------------

    async def _resolve_names(self, result: EnforcementResult) -> None:
        connector = connector_for_tool(result.enhanced.tool)
        if connector is None:
            return
        params = result.enhanced.params

        for rule in NAME_RULES:
            name = rule.pending(params)
            if name is None:
                continue
            try:
                outcome = await self.lookup.resolve_id_by_name(connector, dict(params), rule.kind, name)
            except Exception as e:
                logger.warning("Name lookup for %s %r raised: %s", rule.kind, name, e)
                continue

            if not isinstance(outcome, Resolved):
                logger.debug("No id for %s %r: %s", rule.kind, name, outcome.reason)
                continue

            added = {k: v for k, v in outcome.fields.items() if k not in params}
            if not added:
                continue
            params.update(added)
            result.modifications.append(f"Resolved {rule.name_field} '{name}' to {', '.join(sorted(added))}")

    # ---- rule 4 -------------------------------------------------------------

    def _build_chain(self, enhanced: ToolCall) -> Optional[list[ToolCall]]:
        rules = chain_rules_for(enhanced.tool, enhanced.params)
        if not rules:
            return None
        chain = [enhanced.model_copy(deep=True)]
        for rule in rules:
            chain.append(ToolCall(tool=rule.followup_tool, params={rule.trigger: enhanced.params[rule.trigger]}))
        depth = self.config.max_chain_depth
        if len(chain) > depth:
            logger.warning("Chain for %s truncated to %d operations", enhanced.tool, depth)
            chain = chain[:depth]
        return chain

    # ---- execution helper -----------------------------------------------------

    async def collect_all_pages(self, call: ToolCall, execute: ToolExecutor) -> list[Any]:
        """Drive a flagged list/search call to completion with the connector's page convention."""
        connector = connector_for_tool(call.tool)
        client = self.clients.get(connector) if connector else None
        return await execute_with_pagination(
            call,
            execute,
            normalize=client.normalize_page if client is not None else normalize_page,
            cursor_param=CURSOR_PARAMS.get(connector or "", "cursor"),
            max_pages=self.config.max_pagination_pages,
        )
