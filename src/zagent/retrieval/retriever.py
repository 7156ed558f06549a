"""API-first retrieval with a page-extraction fallback.

A non-empty API result is authoritative. An empty or failing API call falls
through to the DOM tier; when both come back empty the outcome is ``Empty``.
"""

from __future__ import annotations

import re
from typing import Callable, Optional

from loguru import logger

from ..errors import QueueNotFoundError, ZagentError
from ..logs import log_event
from ..schemas import QueueMatch
from ..utils import agent_url, clean, parse_ticket_id_from_url, parse_view_id_from_url
from .api import ApiTier
from .context import RetrievalContext
from .dom import DomTier
from .outcome import Api, Dom, Empty, Outcome


_NUMERIC = re.compile(r"^\d+$")


class DualSourceRetriever:
    def __init__(self, api: Optional[ApiTier] = None, dom: Optional[DomTier] = None) -> None:
        self.api = api or ApiTier()
        self.dom = dom or DomTier()

    def _two_tier(self, kind: str, from_api: Callable, from_dom: Callable) -> Outcome:
        try:
            entity = from_api()
        except Exception as e:
            logger.warning(f"API tier failed for {kind}, falling back to page: {e}")
            entity = None
        if entity is not None and not entity.is_empty():
            log_event("retrieval", kind=kind, source="api")
            return Api(entity)

        entity = from_dom()
        if entity is not None and not entity.is_empty():
            log_event("retrieval", kind=kind, source="dom")
            return Dom(entity)
        log_event("retrieval", kind=kind, source=None)
        return Empty(kind)

    # ----------------------- Tickets -----------------------

    def read_ticket(self, ctx: RetrievalContext, ticket_id: str, count: int = 10) -> Outcome:
        self.dom.open_ticket(ctx, ticket_id)
        tid = parse_ticket_id_from_url(ctx.page.url)
        return self._two_tier(
            "ticket",
            lambda: self.api.read_ticket(ctx, tid, count) if tid else None,
            lambda: self.dom.read_ticket(ctx, count),
        )

    # ----------------------- Queues -----------------------

    def open_queue(self, ctx: RetrievalContext, queue_name: str, queue_path: str = "") -> QueueMatch:
        """Navigate to a queue, by configured path, numeric id, or fuzzy name."""
        requested = clean(queue_name)
        path = clean(queue_path)
        if not requested and not path:
            raise ZagentError("Queue name or queue path is required.")
        if path:
            return self.dom.open_path(ctx, path)

        if _NUMERIC.match(requested):
            match = QueueMatch(
                id=requested,
                score=100,
                name=requested,
                href=agent_url(ctx.base_url, f"/agent/filters/{requested}"),
                source="id",
            )
            self.dom.navigate(ctx, match.href)
            return match

        self.dom.wait_ready(ctx)
        try:
            match = self.api.find_queue(ctx, requested)
        except Exception as e:
            logger.warning(f"API view lookup failed, falling back to page: {e}")
            match = None
        if match is None:
            match = self.dom.find_queue(ctx, requested)
        if match is None:
            raise QueueNotFoundError(f"Could not find queue: {requested}")
        self.dom.navigate(ctx, match.href)
        return match

    def read_queue(self, ctx: RetrievalContext, count: Optional[int] = None) -> Outcome:
        view_id = parse_view_id_from_url(ctx.page.url)
        return self._two_tier(
            "queue",
            lambda: self.api.read_queue(ctx, view_id, count) if view_id else None,
            lambda: self.dom.read_queue(ctx, count),
        )

    # ----------------------- Search / identity -----------------------

    def search(self, ctx: RetrievalContext, query: str, count: int = 20) -> Outcome:
        q = clean(query)
        if not q:
            raise ZagentError("Search query is required.")
        self.dom.wait_ready(ctx)
        return self._two_tier(
            "search",
            lambda: self.api.search(ctx, q, count),
            lambda: self.dom.search(ctx, q, count),
        )

    def read_identity(self, ctx: RetrievalContext) -> Outcome:
        return self._two_tier(
            "identity",
            lambda: self.api.read_identity(ctx),
            lambda: self.dom.read_identity(ctx),
        )
