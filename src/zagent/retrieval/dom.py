"""Page-extraction fallback.

The rendered agent UI is read as HTML and parsed with BeautifulSoup. Parsing
is best-effort: each field is located through several structural hints and
missing fields come back as ``None``. The hints follow the current agent
workspace markup and will need upkeep when it changes.
"""

from __future__ import annotations

import re
from typing import List, Optional
from urllib.parse import quote, urljoin

from bs4 import BeautifulSoup, Tag
from loguru import logger
from playwright.sync_api import Error as PlaywrightError

from ..browser import NAV_TIMEOUT_MS, prepare_interaction_context, wait_for_agent_ready
from ..errors import NavigationError
from ..schemas import Identity, Queue, QueueMatch, QueueTicket, SearchHit, SearchResult, Ticket, TicketComment
from ..utils import agent_url, clean, digits, parse_ticket_id_from_url, sleep_ms
from .api import score_name_match
from .context import RetrievalContext


_TICKET_HREF = re.compile(r"/agent/tickets/(\d+)", re.I)

SUBJECT = '[data-test-id="ticket-pane-subject"], [data-garden-id="forms.input"], h1, [title]'
FIELD_VALUE = 'button, [data-garden-id="dropdowns.menu_wrapper"], [aria-haspopup="listbox"], dd, [title]'
TAGS = 'a[href*="tags"], [data-test-id="ticket-tags"] span, [data-garden-id="tags.item"]'
COMMENT_ITEM = (
    '[data-test-id="omni-log-comment-item"], article, [role="article"], [data-test-id="ticket-pane-comment"]'
)
COMMENT_BODY = '[data-test-id="rich-text"], [data-test-id="comment-body"], .zd-comment, p, div'
COMMENT_AUTHOR = '[data-test-id="omni-log-comment-author"], [data-test-id="author"], h4, strong'
COMMENT_TIME = 'time, [data-test-id="omni-log-comment-time"]'
QUEUE_TITLE = 'h1, [data-test-id="views_table_header"]'
ROW_STATUS = '[data-test-id*="status"], [title*="status" i], [aria-label*="status" i]'
ROW_REQUESTER = '[data-test-id*="requester"], [title*="requester" i]'
SNIPPET = 'p, [data-test-id*="snippet"], [data-test-id*="description"]'

SEARCH_TRIGGERS = [
    'button[aria-label*="Search" i]',
    '[data-test-id*="search-launcher"]',
    '[data-test-id*="search"] button',
]
SEARCH_INPUTS = [
    'input[type="search"]',
    'input[role="combobox"]',
    'input[placeholder*="Search" i]',
    'input[aria-label*="Search" i]',
    'textarea[aria-label*="Search" i]',
    '[role="searchbox"]',
    '[role="combobox"][contenteditable="true"]',
    '[contenteditable="true"][aria-label*="Search" i]',
    '[data-test-id*="search"] input',
    '[data-test-id*="search"] [contenteditable="true"]',
]

_FOCUS_FIRST_VISIBLE = """(selectors) => {
  function isVisible(el) {
    if (!el || !(el instanceof HTMLElement)) return false;
    const rect = el.getBoundingClientRect();
    const style = window.getComputedStyle(el);
    return rect.width > 0 && rect.height > 0 && style.visibility !== 'hidden' && style.display !== 'none';
  }
  for (const selector of selectors) {
    const target = Array.from(document.querySelectorAll(selector)).find(isVisible);
    if (target) {
      target.focus();
      target.dispatchEvent(new MouseEvent('click', { bubbles: true, cancelable: true }));
      return true;
    }
  }
  return false;
}"""


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def _text(node: Optional[Tag]) -> Optional[str]:
    if node is None:
        return None
    text = clean(node.get_text(" "))
    if not text and node.name in ("input", "textarea"):
        text = clean(node.get("value"))
    return text or None


def _row_of(anchor: Tag, names: List[str]) -> Tag:
    return anchor.find_parent(names) or anchor


def _cap(count: Optional[int]) -> Optional[int]:
    if count is None or count <= 0:
        return None
    return int(count)


def _title(html: str) -> Optional[str]:
    soup = _soup(html)
    return clean(soup.title.get_text()) if soup.title else None


# ----------------------- Parsers -----------------------

def read_field(soup: BeautifulSoup, label: str) -> Optional[str]:
    needle = label.lower()
    for node in soup.select("label, dt, div, span"):
        if clean(node.get_text(" ")).lower() != needle:
            continue
        holder = node if node.name in ("div", "dl") else node.find_parent(["div", "dl"])
        if holder is None:
            return None
        return _text(holder.select_one(FIELD_VALUE))
    return None


def parse_ticket(html: str, page_url: str, count: int = 10, page_title: Optional[str] = None) -> Ticket:
    soup = _soup(html)
    count = max(1, int(count or 10))

    comments: List[TicketComment] = []
    for node in soup.select(COMMENT_ITEM):
        text = _text(node.select_one(COMMENT_BODY)) or _text(node)
        if not text:
            continue
        comments.append(
            TicketComment(
                author=_text(node.select_one(COMMENT_AUTHOR)),
                time=_text(node.select_one(COMMENT_TIME)),
                text=text,
            )
        )
        if len(comments) >= count:
            break

    tags = [t for t in (_text(n) for n in soup.select(TAGS)) if t][:40]
    return Ticket(
        source="dom",
        page_url=page_url,
        page_title=page_title if page_title is not None else _title(html),
        ticket_id=parse_ticket_id_from_url(page_url),
        subject=_text(soup.select_one(SUBJECT)),
        status=read_field(soup, "Status"),
        priority=read_field(soup, "Priority"),
        assignee=read_field(soup, "Assignee"),
        requester=read_field(soup, "Requester"),
        tags=tags,
        comments=comments,
    )


def parse_queue(html: str, page_url: str, count: Optional[int] = None, page_title: Optional[str] = None) -> Queue:
    soup = _soup(html)
    limit = _cap(count)
    seen = set()
    tickets: List[QueueTicket] = []
    for a in soup.select('a[href*="/agent/tickets/"]'):
        href = a.get("href") or ""
        m = _TICKET_HREF.search(href)
        if not m or m.group(1) in seen:
            continue
        seen.add(m.group(1))
        row = _row_of(a, ["tr", "li", "article", "div"])
        tickets.append(
            QueueTicket(
                ticket_id=m.group(1),
                subject=_text(a),
                status=_text(row.select_one(ROW_STATUS)),
                requester=_text(row.select_one(ROW_REQUESTER)),
                url=urljoin(page_url, href),
            )
        )
        if limit is not None and len(tickets) >= limit:
            break
    return Queue(
        source="dom",
        page_url=page_url,
        page_title=page_title if page_title is not None else _title(html),
        queue_name=_text(soup.select_one(QUEUE_TITLE)),
        full_sync=limit is None,
        tickets=tickets,
    )


def parse_search(html: str, page_url: str, query: str, count: int = 20, page_title: Optional[str] = None) -> SearchResult:
    soup = _soup(html)
    limit = max(1, int(count or 20))
    seen = set()
    hits: List[SearchHit] = []
    for a in soup.select('a[href*="/agent/tickets/"]'):
        href = a.get("href") or ""
        m = _TICKET_HREF.search(href)
        if not m or m.group(1) in seen:
            continue
        seen.add(m.group(1))
        container = _row_of(a, ["article", "li", "tr", "div"])
        hits.append(
            SearchHit(
                ticket_id=m.group(1),
                title=_text(a),
                snippet=_text(container.select_one(SNIPPET)),
                url=urljoin(page_url, href),
            )
        )
        if len(hits) >= limit:
            break
    return SearchResult(
        source="dom",
        page_url=page_url,
        page_title=page_title if page_title is not None else _title(html),
        query=clean(query),
        results=hits,
    )


def parse_identity(html: str) -> Optional[Identity]:
    """Read the signed-in agent from the profile menu, when the page renders one."""
    soup = _soup(html)
    holder = soup.select_one('[data-user-id], [data-test-id*="profile"], [data-test-id*="user-menu"]')
    if holder is None:
        return None
    owner = holder if holder.has_attr("data-user-id") else holder.find_parent(attrs={"data-user-id": True})
    if owner is None:
        owner = holder.select_one("[data-user-id]")
    user_id = owner.get("data-user-id") if owner is not None else None
    avatar = holder.select_one("img[alt]")
    name = _text(holder.select_one('[data-test-id*="name"]')) or (clean(avatar.get("alt")) if avatar else None)
    email = _text(holder.select_one('[data-test-id*="email"]'))
    identity = Identity(source="dom", id=clean(user_id) or None, name=name or None, email=email)
    return None if identity.is_empty() else identity


def find_queue_link(html: str, base_url: str, queue_name: str) -> Optional[QueueMatch]:
    target = clean(queue_name)
    best: Optional[QueueMatch] = None
    for link in _soup(html).select('a[href*="/agent/filters/"]'):
        name = _text(link)
        if not name:
            continue
        score = score_name_match(name, target)
        if score < 0:
            continue
        if best is None or score > best.score:
            href = urljoin(f"{base_url}/", link.get("href") or "")
            m = re.search(r"/agent/filters/(\d+)", href)
            best = QueueMatch(id=m.group(1) if m else None, score=score, name=name, href=href, source="dom")
    return best


# ----------------------- Tier -----------------------

class DomTier:
    def _snapshot(self, ctx: RetrievalContext):
        return ctx.page.content(), ctx.page.url, ctx.title()

    def wait_ready(self, ctx: RetrievalContext) -> None:
        wait_for_agent_ready(ctx.page, ctx.ui_wait_ms)

    def navigate(self, ctx: RetrievalContext, url: str) -> None:
        logger.debug(f"Navigating to {url}")
        ctx.page.goto(url, wait_until="domcontentloaded", timeout=NAV_TIMEOUT_MS)
        wait_for_agent_ready(ctx.page, ctx.ui_wait_ms)

    def open_ticket(self, ctx: RetrievalContext, ticket_id: str) -> None:
        tid = digits(ticket_id)
        if not tid:
            raise NavigationError("Ticket id is required.")
        self.navigate(ctx, agent_url(ctx.base_url, f"/agent/tickets/{tid}"))
        if not re.search(rf"/agent/tickets/{tid}(?:$|[/?#])", ctx.page.url or "", re.I):
            raise NavigationError(f"Ticket {tid} was not opened. Current URL: {ctx.page.url}")

    def open_path(self, ctx: RetrievalContext, path: str) -> QueueMatch:
        target_path = clean(path)
        if not re.match(r"^/agent/", target_path, re.I):
            raise NavigationError(f'Invalid queue path "{target_path}". Queue paths must begin with "/agent/".')
        href = agent_url(ctx.base_url, target_path)
        self.navigate(ctx, href)
        m = re.search(r"/agent/filters/(\d+)", target_path)
        return QueueMatch(id=m.group(1) if m else None, score=100, name=None, href=href, source="config")

    def read_ticket(self, ctx: RetrievalContext, count: int = 10) -> Ticket:
        html, url, title = self._snapshot(ctx)
        return parse_ticket(html, url, count, title)

    def find_queue(self, ctx: RetrievalContext, queue_name: str) -> Optional[QueueMatch]:
        self.wait_ready(ctx)
        return find_queue_link(ctx.page.content(), ctx.base_url, queue_name)

    def read_queue(self, ctx: RetrievalContext, count: Optional[int] = None) -> Queue:
        html, url, title = self._snapshot(ctx)
        return parse_queue(html, url, count, title)

    def submit_search_from_ui(self, ctx: RetrievalContext, query: str) -> bool:
        page, ui = ctx.page, ctx.ui_wait_ms
        wait_for_agent_ready(page, ui)
        prepare_interaction_context(page, ui)
        for selector in SEARCH_TRIGGERS:
            trigger = page.locator(selector).first
            if not trigger.count():
                continue
            try:
                trigger.click(timeout=2000)
            except PlaywrightError:
                pass
            sleep_ms(max(200, ui // 3))
        try:
            page.keyboard.press("ControlOrMeta+K")
        except PlaywrightError:
            pass
        sleep_ms(max(200, ui // 3))

        if not page.evaluate(_FOCUS_FIRST_VISIBLE, SEARCH_INPUTS):
            logger.debug("No visible search input; using the search URL")
            return False
        try:
            page.keyboard.press("ControlOrMeta+A")
            page.keyboard.press("Backspace")
        except PlaywrightError:
            pass
        page.keyboard.type(query, delay=25)
        page.keyboard.press("Enter")
        try:
            page.wait_for_load_state("domcontentloaded", timeout=15000)
        except PlaywrightError:
            pass
        sleep_ms(max(700, ui // 2))
        return True

    def search(self, ctx: RetrievalContext, query: str, count: int = 20) -> SearchResult:
        q = clean(query)
        if not self.submit_search_from_ui(ctx, q):
            self.navigate(ctx, agent_url(ctx.base_url, f"/agent/search/1?query={quote(q, safe='')}"))
        html, url, title = self._snapshot(ctx)
        return parse_search(html, url, q, count, title)

    def read_identity(self, ctx: RetrievalContext) -> Optional[Identity]:
        return parse_identity(ctx.page.content())
