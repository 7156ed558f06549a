"""Structured retrieval through the Zendesk REST API.

Requests run inside the bound page via ``fetch`` so the agent's session
cookies apply. Every method returns ``None`` when the API has nothing to
offer (non-2xx, malformed body, no rows); callers fall back to the DOM.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import quote, urlsplit

from loguru import logger
from playwright.sync_api import Error as PlaywrightError

from ..schemas import Identity, Queue, QueueMatch, QueueTicket, SearchHit, SearchResult, Ticket, TicketComment
from ..utils import agent_url, clean, digits
from .context import RetrievalContext


_FETCH_JSON = """async (endpoint) => {
  try {
    const res = await fetch(endpoint, { credentials: 'include', headers: { Accept: 'application/json' } });
    const text = await res.text();
    let data = null;
    try { data = text ? JSON.parse(text) : null; } catch (_) { data = null; }
    return { ok: res.ok, status: res.status, data };
  } catch (error) {
    return { ok: false, status: 0, error: String(error && error.message ? error.message : error), data: null };
  }
}"""

DEFAULT_MAX_ITEMS = 100
DEFAULT_MAX_PAGES = 20
FULL_SYNC_MAX_PAGES = 500
SEARCH_MAX_PAGES = 50
PER_PAGE_LIMIT = 100


@dataclass(frozen=True)
class ApiResponse:
    ok: bool
    status: int
    data: Any = None
    error: Optional[str] = None


def score_name_match(name: str, target: str) -> int:
    low = clean(name).lower()
    query = clean(target).lower()
    if not low or not query:
        return -1
    if low == query:
        return 100
    if query in low:
        return 80
    if low in query:
        return 60
    return -1


def next_page_path(next_page: Any) -> Optional[str]:
    if not next_page or not isinstance(next_page, str):
        return None
    parts = urlsplit(next_page)
    if not parts.scheme or not parts.path:
        return None
    return f"{parts.path}?{parts.query}" if parts.query else parts.path


def _id_or_none(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


class ApiTier:
    def get(self, page, path: str) -> ApiResponse:
        try:
            raw = page.evaluate(_FETCH_JSON, path)
        except PlaywrightError as e:
            logger.debug(f"API GET {path} failed in page: {e}")
            return ApiResponse(ok=False, status=0, error=str(e))
        if not isinstance(raw, dict):
            return ApiResponse(ok=False, status=0, error="unexpected evaluate result")
        resp = ApiResponse(
            ok=bool(raw.get("ok")),
            status=int(raw.get("status") or 0),
            data=raw.get("data"),
            error=raw.get("error"),
        )
        logger.debug(f"API GET {path} -> {resp.status}")
        return resp

    def get_all_pages(
        self,
        page,
        path: str,
        max_items: Optional[int] = DEFAULT_MAX_ITEMS,
        max_pages: int = DEFAULT_MAX_PAGES,
        item_key: str = "results",
    ) -> List[Dict[str, Any]]:
        """Follow ``next_page`` until the item cap, the page cap or the last page.

        ``max_items=None`` means no item cap; ``max_pages`` always applies.
        """
        max_pages = max(1, int(max_pages))
        out: List[Dict[str, Any]] = []
        next_path: Optional[str] = path
        pages = 0
        while next_path and pages < max_pages and (max_items is None or len(out) < max_items):
            resp = self.get(page, next_path)
            if not resp.ok or not isinstance(resp.data, dict):
                break
            rows = resp.data.get(item_key)
            rows = rows if isinstance(rows, list) else []
            if max_items is not None:
                rows = rows[: max_items - len(out)]
            out.extend(rows)
            pages += 1
            next_path = next_page_path(resp.data.get("next_page"))
        return out

    def fetch_users_map(self, page, ids: Iterable[Any]) -> Dict[str, str]:
        """Resolve user ids to display names with one ``show_many`` request."""
        uniq: List[str] = []
        for raw in ids:
            text = str(raw if raw is not None else "").strip()
            if text and text not in uniq:
                uniq.append(text)
        if not uniq:
            return {}
        resp = self.get(page, f"/api/v2/users/show_many.json?ids={quote(','.join(uniq))}")
        users = resp.data.get("users") if resp.ok and isinstance(resp.data, dict) else None
        if not isinstance(users, list):
            return {}
        out: Dict[str, str] = {}
        for user in users:
            if not isinstance(user, dict) or user.get("id") is None:
                continue
            out[str(user["id"])] = clean(user.get("name") or user.get("email")) or str(user["id"])
        return out

    # ----------------------- Entities -----------------------

    def read_ticket(self, ctx: RetrievalContext, ticket_id: str, count: int = 10) -> Optional[Ticket]:
        tid = digits(ticket_id)
        if not tid:
            return None
        count = max(1, int(count or 10))
        resp = self.get(ctx.page, f"/api/v2/tickets/{tid}.json")
        ticket = resp.data.get("ticket") if resp.ok and isinstance(resp.data, dict) else None
        if not isinstance(ticket, dict):
            return None

        comments_resp = self.get(ctx.page, f"/api/v2/tickets/{tid}/comments.json?sort_order=desc")
        raw_comments = comments_resp.data.get("comments") if comments_resp.ok and isinstance(comments_resp.data, dict) else None
        raw_comments = [c for c in (raw_comments or []) if isinstance(c, dict)]

        actor_ids = [ticket.get("requester_id"), ticket.get("assignee_id")]
        actor_ids += [c.get("author_id") for c in raw_comments]
        users = self.fetch_users_map(ctx.page, [i for i in actor_ids if i])

        def _person(user_id: Any) -> Optional[str]:
            if not user_id:
                return None
            return users.get(str(user_id)) or str(user_id)

        # Newest first from the API; keep the latest ``count`` in chronological order
        comments = []
        for c in reversed(raw_comments[:count]):
            text = clean(c.get("plain_body") or c.get("body"))
            if not text:
                continue
            comments.append(TicketComment(author=_person(c.get("author_id")), time=c.get("created_at"), text=text))

        tags = ticket.get("tags")
        return Ticket(
            source="api",
            page_url=ctx.page.url or agent_url(ctx.base_url, f"/agent/tickets/{tid}"),
            page_title=ctx.title(),
            ticket_id=str(ticket.get("id") or tid),
            subject=ticket.get("subject"),
            status=ticket.get("status"),
            priority=ticket.get("priority"),
            assignee=_person(ticket.get("assignee_id")),
            requester=_person(ticket.get("requester_id")),
            tags=[str(t) for t in tags] if isinstance(tags, list) else [],
            comments=comments,
        )

    def find_queue(self, ctx: RetrievalContext, queue_name: str) -> Optional[QueueMatch]:
        requested = clean(queue_name)
        if not requested:
            return None
        views: List[Dict[str, Any]] = []
        for path in ("/api/v2/views.json?page[size]=100", "/api/v2/views/active.json?page[size]=100"):
            resp = self.get(ctx.page, path)
            rows = resp.data.get("views") if resp.ok and isinstance(resp.data, dict) else None
            if isinstance(rows, list):
                views.extend(v for v in rows if isinstance(v, dict))

        best: Optional[QueueMatch] = None
        for view in views:
            name = clean(view.get("title"))
            if not view.get("id") or not name:
                continue
            score = score_name_match(name, requested)
            if score < 0:
                continue
            if best is None or score > best.score:
                best = QueueMatch(
                    id=str(view["id"]),
                    score=score,
                    name=name,
                    href=agent_url(ctx.base_url, f"/agent/filters/{view['id']}"),
                    source="api",
                )
        return best

    def read_queue(self, ctx: RetrievalContext, view_id: str, count: Optional[int] = None) -> Optional[Queue]:
        vid = digits(view_id)
        if not vid:
            return None
        full_sync = not count or count <= 0
        per_page = PER_PAGE_LIMIT if full_sync else min(int(count), PER_PAGE_LIMIT)
        view_resp = self.get(ctx.page, f"/api/v2/views/{vid}.json")
        raw = self.get_all_pages(
            ctx.page,
            f"/api/v2/views/{vid}/tickets.json?per_page={per_page}",
            max_items=None if full_sync else int(count),
            max_pages=FULL_SYNC_MAX_PAGES,
            item_key="tickets",
        )
        raw = [t for t in raw if isinstance(t, dict)]
        if not raw:
            return None

        ids = []
        for t in raw:
            ids += [t.get("requester_id"), t.get("assignee_id")]
        users = self.fetch_users_map(ctx.page, [i for i in ids if i is not None])

        tickets = []
        for t in raw:
            assignee_id = _id_or_none(t.get("assignee_id"))
            requester_id = _id_or_none(t.get("requester_id"))
            tickets.append(
                QueueTicket(
                    ticket_id=_id_or_none(t.get("id")),
                    subject=clean(t.get("subject")) or None,
                    status=clean(t.get("status")) or None,
                    assignee_id=assignee_id,
                    assignee=(users.get(assignee_id) or assignee_id) if assignee_id else None,
                    requester_id=requester_id,
                    requester=(users.get(requester_id) or requester_id) if requester_id else None,
                    url=agent_url(ctx.base_url, f"/agent/tickets/{t['id']}") if t.get("id") else None,
                )
            )

        view = view_resp.data.get("view") if view_resp.ok and isinstance(view_resp.data, dict) else None
        return Queue(
            source="api",
            page_url=ctx.page.url or agent_url(ctx.base_url, f"/agent/filters/{vid}"),
            page_title=ctx.title(),
            queue_name=(clean(view.get("title")) or None) if isinstance(view, dict) else None,
            full_sync=full_sync,
            tickets=tickets,
        )

    def search(self, ctx: RetrievalContext, query: str, count: int = 20) -> Optional[SearchResult]:
        q = clean(query)
        if not q:
            return None
        count = max(1, int(count or 20))
        rows = self.get_all_pages(
            ctx.page,
            f"/api/v2/search.json?query={quote(f'type:ticket {q}', safe='')}&per_page={min(count, PER_PAGE_LIMIT)}",
            max_items=count,
            max_pages=SEARCH_MAX_PAGES,
            item_key="results",
        )
        if not rows:
            return None
        hits = [
            SearchHit(
                ticket_id=_id_or_none(row.get("id")),
                title=clean(row.get("subject")),
                snippet=clean(row.get("description"))[:500],
                url=agent_url(ctx.base_url, f"/agent/tickets/{row['id']}") if row.get("id") else None,
            )
            for row in rows
            if isinstance(row, dict) and row.get("result_type") == "ticket"
        ][:count]
        return SearchResult(
            source="api",
            page_url=agent_url(ctx.base_url, f"/agent/search/1?query={quote(q, safe='')}"),
            page_title=ctx.title(),
            query=q,
            results=hits,
        )

    def read_identity(self, ctx: RetrievalContext) -> Optional[Identity]:
        resp = self.get(ctx.page, "/api/v2/users/me.json")
        user = resp.data.get("user") if resp.ok and isinstance(resp.data, dict) else None
        if not isinstance(user, dict):
            return None
        return Identity(
            source="api",
            id=_id_or_none(user.get("id")),
            name=clean(user.get("name")) or None,
            email=clean(user.get("email")) or None,
            role=clean(user.get("role")) or None,
        )
