from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from loguru import logger
from playwright.sync_api import Error as PlaywrightError, Page, sync_playwright

from .browser import bind_page, prepare_interaction_context
from .cdp.launcher import ChromeLauncher
from .cdp.session import Session, SessionAcquirer, SessionPolicy
from .config import Settings
from .errors import BindError, ConfigError
from .retrieval.context import RetrievalContext


@dataclass
class BrowserRun:
    page: Page
    settings: Settings
    session: Session

    def retrieval_context(self) -> RetrievalContext:
        return RetrievalContext.for_page(self.page, self.settings.ui_wait_ms)


@contextmanager
def open_zendesk_browser(settings: Settings, acquirer: Optional[SessionAcquirer] = None) -> Iterator[BrowserRun]:
    """Acquire the CDP session, bind the agent tab and always disconnect on exit.

    A Chrome launched along the way keeps running for later invocations.
    """
    if not settings.domain:
        raise ConfigError(
            "Zendesk domain is required. Set `domain` in zendesk config, `ZENDESK_DOMAIN`, or pass `--domain`."
        )
    acquirer = acquirer or SessionAcquirer(launcher=ChromeLauncher(settings.browser_executable_path))
    session = acquirer.acquire(settings.cdp_url, settings.profile_dir, SessionPolicy.from_settings(settings))

    with sync_playwright() as p:
        browser = p.chromium.connect_over_cdp(session.endpoint.control_channel_address or session.cdp_url)
        try:
            if not browser.contexts:
                raise BindError("No browser context available from CDP connection.")
            page = bind_page(browser.contexts[0], settings.start_url, settings.background)
            prepare_interaction_context(page, settings.ui_wait_ms)
            yield BrowserRun(page=page, settings=settings, session=session)
        finally:
            try:
                browser.close()
            except PlaywrightError as e:
                logger.debug(f"CDP disconnect failed: {e}")
