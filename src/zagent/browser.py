"""Bind the single agent tab used by an invocation and keep it interactable."""

from __future__ import annotations

import re
from typing import Optional
from urllib.parse import urlsplit

from loguru import logger
from playwright.sync_api import BrowserContext, Error as PlaywrightError, Page

from .errors import BindError
from .utils import sleep_ms


NAV_TIMEOUT_MS = 45000
_AGENT_AREA = re.compile(r"/agent/", re.I)
_BLUR_ACTIVE = """() => {
  const active = document.activeElement;
  if (active && typeof active.blur === 'function') active.blur();
}"""


def target_pattern(start_url: str) -> re.Pattern:
    host = urlsplit(start_url or "").hostname if start_url else None
    if host:
        return re.compile(rf"https?://{re.escape(host)}/agent", re.I)
    return re.compile(r"zendesk\.com/agent", re.I)


def find_agent_tab(context: BrowserContext, pattern: re.Pattern) -> Optional[Page]:
    for page in context.pages:
        if pattern.search(page.url or ""):
            return page
    return None


def bind_page(context: BrowserContext, start_url: str, background: bool = True, settle_ms: int = 500) -> Page:
    """Find or open the agent tab; navigate it to ``start_url`` when outside the agent area."""
    page = find_agent_tab(context, target_pattern(start_url))
    if page is None:
        if not start_url:
            raise BindError(
                "No Zendesk agent tab found. Provide --start-path or set domain/startPath in zendesk config."
            )
        page = context.new_page()
        logger.debug(f"Opening new agent tab at {start_url}")
        page.goto(start_url, wait_until="domcontentloaded", timeout=NAV_TIMEOUT_MS)
    elif not _AGENT_AREA.search(page.url or ""):
        if not start_url:
            raise BindError(
                "Found Zendesk tab but not an agent page. Provide --start-path or set domain/startPath in zendesk config."
            )
        logger.debug(f"Moving tab {page.url} to {start_url}")
        page.goto(start_url, wait_until="domcontentloaded", timeout=NAV_TIMEOUT_MS)

    if not background:
        try:
            page.bring_to_front()
        except PlaywrightError as e:
            logger.debug(f"bring_to_front failed: {e}")
    sleep_ms(settle_ms)
    return page


def prepare_interaction_context(page: Page, ui_wait_ms: int = 1000, x: int = 40, y: int = 40) -> None:
    """Drop focus from whatever input holds it and click a neutral spot."""
    try:
        page.evaluate(_BLUR_ACTIVE)
    except PlaywrightError:
        pass
    try:
        page.click("body", position={"x": x, "y": y})
    except PlaywrightError:
        pass
    sleep_ms(max(120, ui_wait_ms // 4))


def wait_for_agent_ready(page: Page, ui_wait_ms: int) -> None:
    prepare_interaction_context(page, ui_wait_ms)
    try:
        page.wait_for_load_state("domcontentloaded", timeout=30000)
    except PlaywrightError:
        pass
    try:
        page.locator('a[href*="/agent/filters/"], a[href*="/agent/tickets/"], main').first.wait_for(timeout=15000)
    except PlaywrightError as e:
        logger.debug(f"Agent anchors not found: {e}")
    sleep_ms(max(500, ui_wait_ms // 2))
