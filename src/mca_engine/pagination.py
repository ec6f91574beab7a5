from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Mapping

from mca_connectors.base import Page, normalize_page
from mca_engine.models import ToolCall

logger = logging.getLogger(__name__)

ToolExecutor = Callable[[ToolCall], Awaitable[Any]]
PageNormalizer = Callable[[Any, Mapping[str, Any]], Page]

# Where each provider expects the continuation cursor.
CURSOR_PARAMS = {
    "asana": "offset",
    "linear": "after",
    "github": "page",
    "notion": "start_cursor",
}


async def execute_with_pagination(
    call: ToolCall,
    execute: ToolExecutor,
    *,
    normalize: PageNormalizer = normalize_page,
    cursor_param: str = "cursor",
    max_pages: int = 100,
) -> list[Any]:
    """
    Run `call` page by page until the normalized page reports no next cursor.

    Stops after `max_pages` pages even if more remain (logged). An unrecognized
    page shape raises from `normalize` rather than ending the loop early.
    """
    items: list[Any] = []
    cursor: str | None = None

    for page_no in range(1, max_pages + 1):
        params = dict(call.params)
        if cursor:
            params[cursor_param] = cursor

        page = normalize(await execute(ToolCall(tool=call.tool, params=params)), params)
        items.extend(page.items)
        logger.debug("%s page %d: %d items", call.tool, page_no, len(page.items))

        if not page.has_more:
            break
        cursor = page.next_cursor
    else:
        logger.warning("%s: stopped after %d pages with more results pending", call.tool, max_pages)

    logger.info("Pagination complete for %s: %d items", call.tool, len(items))
    return items
