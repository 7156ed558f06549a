"""Command implementations behind the CLI.

Each function takes the per-invocation ``Settings`` and returns the record to
emit. The browser opener and retriever are parameters so the commands can run
against fakes.
"""

from __future__ import annotations

import time
from typing import Any, Callable, ContextManager, Dict, List, Optional

from loguru import logger
from playwright.sync_api import Error as PlaywrightError
from tenacity import Retrying, retry_if_exception_type, retry_if_result, stop_after_delay, wait_fixed

from .assemble import (
    assemble_auth_check,
    assemble_auth_login,
    assemble_doctor,
    assemble_queue,
    assemble_queue_list,
    assemble_search,
    assemble_ticket,
    auth_status,
    is_authenticated,
)
from .browser import NAV_TIMEOUT_MS
from .cdp.endpoint import EndpointLocator
from .cdp.ownership import OwnershipArbiter
from .config import Settings, resolve_queue_input, validate_config_contract
from .errors import CacheMissError, ConfigError, ZagentError
from .retrieval.outcome import Empty, Outcome
from .retrieval.retriever import DualSourceRetriever
from .runtime import BrowserRun, open_zendesk_browser
from .storage import read_cached_ticket
from .utils import clean, digits


Opener = Callable[[Settings], ContextManager[BrowserRun]]

LOGIN_POLL_INTERVAL_S = 2.0


def ticket_read(
    settings: Settings,
    ticket_id: str,
    comments: int = 10,
    cache_ttl: Optional[int] = None,
    *,
    opener: Opener = open_zendesk_browser,
    retriever: Optional[DualSourceRetriever] = None,
) -> Dict[str, Any]:
    tid = digits(ticket_id)
    if not tid:
        raise ZagentError("Ticket id is required.")
    comments = max(1, int(comments or 10))
    ttl = settings.cache_ttl if cache_ttl is None else max(0, int(cache_ttl))

    if settings.cache or settings.cache_only:
        cached = read_cached_ticket(settings.store_root, tid, ttl)
        if cached:
            return {
                **cached,
                "ok": True,
                "command": "read-ticket",
                "requestedTicketId": tid,
                "launchedChrome": False,
                "cdpUrl": cached.get("cdpUrl") or settings.cdp_url,
            }
    if settings.cache_only:
        raise CacheMissError(f"No cached ticket found for {tid} within ttl={ttl}s.")

    retriever = retriever or DualSourceRetriever()
    with opener(settings) as run:
        outcome = retriever.read_ticket(run.retrieval_context(), tid, comments)
        return assemble_ticket(outcome, tid, run.session.meta)


def queue_list(settings: Settings, team: Optional[str] = None) -> Dict[str, Any]:
    return assemble_queue_list(settings.queues, settings.default_queue, settings.domain, team)


def queue_read(
    settings: Settings,
    name: Optional[str] = None,
    count: Optional[int] = None,
    *,
    opener: Opener = open_zendesk_browser,
    retriever: Optional[DualSourceRetriever] = None,
) -> Dict[str, Any]:
    selection = resolve_queue_input(name, settings.default_queue, settings.queues)
    if not selection["queueName"] and not selection["queuePath"]:
        raise ConfigError(
            'Queue name is required. Pass `queue read "<queue>"`, set `defaultQueue` in zendesk.config.json, '
            "or set ZENDESK_DEFAULT_QUEUE."
        )
    limit = int(count) if count and count > 0 else None
    retriever = retriever or DualSourceRetriever()
    with opener(settings) as run:
        matched = retriever.open_queue(run.retrieval_context(), selection["queueName"], selection["queuePath"])
        outcome = retriever.read_queue(run.retrieval_context(), limit)
        return assemble_queue(outcome, selection, matched, run.session.meta)


def search_tickets(
    settings: Settings,
    query: str,
    count: int = 20,
    *,
    opener: Opener = open_zendesk_browser,
    retriever: Optional[DualSourceRetriever] = None,
) -> Dict[str, Any]:
    q = clean(query)
    if not q:
        raise ZagentError("Search query is required.")
    count = max(1, int(count or 20))
    retriever = retriever or DualSourceRetriever()
    with opener(settings) as run:
        outcome = retriever.search(run.retrieval_context(), q, count)
        return assemble_search(outcome, q, run.session.meta)


def _read_identity(settings: Settings, opener: Opener, retriever: DualSourceRetriever) -> Outcome:
    with opener(settings) as run:
        return retriever.read_identity(run.retrieval_context())


def auth_check(
    settings: Settings,
    *,
    locator: Optional[EndpointLocator] = None,
    opener: Opener = open_zendesk_browser,
    retriever: Optional[DualSourceRetriever] = None,
) -> Dict[str, Any]:
    reachable = (locator or EndpointLocator()).reachable(settings.cdp_url)
    validation = validate_config_contract(settings.file_config(), settings.queues)

    if not settings.domain:
        auth = auth_status(error="Missing domain. Set domain in config or pass --domain.")
    elif not reachable:
        auth = auth_status(error="CDP endpoint is unreachable.")
    else:
        try:
            auth = auth_status(_read_identity(settings, opener, retriever or DualSourceRetriever()))
        except (ZagentError, PlaywrightError) as e:
            logger.warning(f"Auth check failed: {e}")
            auth = auth_status(error=str(e), checked=True)
    return assemble_auth_check(settings.cdp_url, reachable, settings.config_path, validation, auth)


def wait_for_login(
    read_identity: Callable[[], Outcome],
    timeout_s: float,
    interval_s: float = LOGIN_POLL_INTERVAL_S,
    sleep: Callable[[float], None] = time.sleep,
) -> Outcome:
    """Poll the signed-in identity until it is authenticated or time runs out."""

    def _last(state) -> Outcome:
        if state.outcome.failed:
            return Empty("identity")
        return state.outcome.result()

    retrying = Retrying(
        stop=stop_after_delay(timeout_s),
        wait=wait_fixed(interval_s),
        retry=retry_if_result(lambda outcome: not is_authenticated(outcome))
        | retry_if_exception_type(PlaywrightError),
        retry_error_callback=_last,
        sleep=sleep,
    )
    return retrying(read_identity)


def auth_login(
    settings: Settings,
    timeout: int = 300,
    *,
    opener: Opener = open_zendesk_browser,
    retriever: Optional[DualSourceRetriever] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    timeout_s = max(5, int(timeout or 300))
    retriever = retriever or DualSourceRetriever()
    with opener(settings) as run:
        run.page.goto(settings.start_url, wait_until="domcontentloaded", timeout=NAV_TIMEOUT_MS)
        outcome = wait_for_login(
            lambda: retriever.read_identity(run.retrieval_context()), timeout_s, sleep=sleep
        )
        return assemble_auth_login(outcome, run.session.meta, settings.start_url, run.page.url, timeout_s)


def doctor(
    settings: Settings,
    *,
    locator: Optional[EndpointLocator] = None,
    arbiter: Optional[OwnershipArbiter] = None,
    opener: Opener = open_zendesk_browser,
    retriever: Optional[DualSourceRetriever] = None,
) -> Dict[str, Any]:
    checks: List[Dict[str, Any]] = []
    validation = validate_config_contract(settings.file_config(), settings.queues)

    checks.append({
        "name": "config-file",
        "ok": bool(settings.config_path),
        "detail": settings.config_path or "No zendesk.config.json or zendesk.json found",
    })
    checks.append({
        "name": "config-contract",
        "ok": validation["ok"],
        "detail": "valid" if validation["ok"] else "; ".join(validation["issues"]),
    })
    checks.append({
        "name": "profile-dir",
        "ok": bool(settings.profile_dir),
        "detail": settings.profile_dir or "No profileDir resolved",
    })

    reachable = (locator or EndpointLocator()).reachable(settings.cdp_url)
    checks.append({"name": "cdp", "ok": reachable, "detail": settings.cdp_url})

    if reachable and not settings.allow_shared_cdp:
        claim = (arbiter or OwnershipArbiter()).check(settings.cdp_url, settings.profile_dir)
        checks.append({
            "name": "cdp-profile-ownership",
            "ok": claim.matches,
            "detail": f"pid={claim.listening_pid or 'unknown'}"
            if claim.matches
            else f"expected={claim.expected_profile_dir or 'unknown'} actual={claim.actual_profile_dir or 'unknown'}",
        })

    authenticated = False
    if reachable and settings.domain:
        try:
            outcome = _read_identity(settings, opener, retriever or DualSourceRetriever())
            authenticated = is_authenticated(outcome)
            user = outcome.entity
            detail = (user.email or user.name or user.id) if authenticated else "Not logged into Zendesk"
        except (ZagentError, PlaywrightError) as e:
            detail = str(e)
    elif not settings.domain:
        detail = "Missing domain"
    else:
        detail = "Skipped because CDP is unreachable"
    checks.append({"name": "zendesk-auth", "ok": authenticated, "detail": detail})

    return assemble_doctor(checks)
