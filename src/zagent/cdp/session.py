"""Acquire exactly one trusted CDP endpoint per invocation.

Order of preference: the configured endpoint when we own it (or sharing is
allowed), then another owned endpoint in the fallback port range, then a
freshly launched Chrome bound to our profile directory.
"""

from __future__ import annotations

import socket
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from loguru import logger
from tenacity import RetryError, Retrying, retry_if_result, stop_after_delay, wait_fixed

from ..errors import CdpConnectionError, SessionError
from ..logs import log_event
from ..schemas import SessionMeta
from .endpoint import Endpoint, EndpointLocator, parse_host, parse_port, with_port
from .launcher import ChromeLauncher, LaunchedBrowser
from .ownership import OwnershipArbiter, OwnershipClaim


PortFinder = Callable[[str, Iterable[int]], Optional[int]]


@dataclass(frozen=True)
class SessionPolicy:
    allow_shared: bool = False
    auto_port_fallback: bool = True
    port_fallback_span: int = 10
    launch_if_absent: bool = True
    launch_timeout_s: float = 20.0
    poll_interval_s: float = 0.5

    @classmethod
    def from_settings(cls, settings) -> "SessionPolicy":
        return cls(
            allow_shared=settings.allow_shared_cdp,
            auto_port_fallback=settings.auto_port,
            port_fallback_span=settings.cdp_port_span,
            launch_if_absent=not settings.no_launch,
            launch_timeout_s=settings.launch_timeout_s,
            poll_interval_s=settings.poll_interval_s,
        )


@dataclass(frozen=True)
class Session:
    endpoint: Endpoint
    launched_by_us: bool
    cdp_url: str
    launched: Optional[LaunchedBrowser] = None

    @property
    def meta(self) -> SessionMeta:
        return SessionMeta(launched_chrome=self.launched_by_us, cdp_url=self.cdp_url)


def port_is_free(host: str, port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        try:
            s.bind((host, port))
        except OSError:
            return False
    return True


def find_free_port(host: str, ports: Iterable[int]) -> Optional[int]:
    for port in ports:
        if port_is_free(host, port):
            return port
    return None


class SessionAcquirer:
    def __init__(
        self,
        locator: Optional[EndpointLocator] = None,
        arbiter: Optional[OwnershipArbiter] = None,
        launcher: Optional[ChromeLauncher] = None,
        port_finder: PortFinder = find_free_port,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.locator = locator or EndpointLocator()
        self.arbiter = arbiter or OwnershipArbiter()
        self.launcher = launcher or ChromeLauncher()
        self.port_finder = port_finder
        self.sleep = sleep

    # ----------------------- Entry point -----------------------

    def acquire(self, cdp_url: str, expected_profile_dir: str, policy: SessionPolicy) -> Session:
        if self.locator.reachable(cdp_url):
            claim = None if policy.allow_shared else self.arbiter.check(cdp_url, expected_profile_dir)
            if claim is None or claim.matches:
                endpoint = self._try_resolve(cdp_url)
                if endpoint is not None:
                    return self._reused(endpoint, cdp_url, "shared" if claim is None else "owned")
                # Went away between the check and resolve; continue as unreachable
            else:
                return self._around_untrusted(cdp_url, expected_profile_dir, policy, claim)
        return self._when_unreachable(cdp_url, expected_profile_dir, policy)

    # ----------------------- Branches -----------------------

    def _around_untrusted(
        self, cdp_url: str, expected: str, policy: SessionPolicy, claim: OwnershipClaim
    ) -> Session:
        preferred = parse_port(cdp_url)
        if policy.auto_port_fallback:
            found = self._scan_owned(cdp_url, expected, policy.port_fallback_span, skip=preferred)
            if found is not None:
                return found
            if policy.launch_if_absent:
                port = self._pick_free_port(cdp_url, self._range(preferred, policy.port_fallback_span, skip=preferred))
                return self._launch(cdp_url, expected, port, policy)
        raise SessionError(
            f"CDP endpoint {cdp_url} is in use by an untrusted process "
            f"(pid={claim.listening_pid or 'unknown'}, profile={claim.actual_profile_dir or 'unknown'}); "
            f"expected profile {expected}. Close that browser, pick another --cdp-url, "
            "or pass --allow-shared-cdp.",
            cdp_url=cdp_url,
            pid=claim.listening_pid,
            expected_profile_dir=expected,
            actual_profile_dir=claim.actual_profile_dir,
        )

    def _when_unreachable(self, cdp_url: str, expected: str, policy: SessionPolicy) -> Session:
        preferred = parse_port(cdp_url)
        if not policy.launch_if_absent:
            if policy.auto_port_fallback:
                found = self._scan_owned(cdp_url, expected, policy.port_fallback_span, skip=preferred)
                if found is not None:
                    return found
            raise SessionError(
                f"CDP endpoint {cdp_url} is unreachable and launch is disabled (--no-launch). "
                "Start Chrome with --remote-debugging-port or allow launching.",
                cdp_url=cdp_url,
                expected_profile_dir=expected,
            )
        if policy.auto_port_fallback:
            port = self._pick_free_port(cdp_url, self._range(preferred, policy.port_fallback_span))
        else:
            port = preferred
        return self._launch(cdp_url, expected, port, policy)

    # ----------------------- Helpers -----------------------

    @staticmethod
    def _range(base: int, span: int, skip: Optional[int] = None):
        return [p for p in range(base, base + max(0, span) + 1) if p != skip]

    def _scan_owned(self, cdp_url: str, expected: str, span: int, skip: int) -> Optional[Session]:
        for port in self._range(parse_port(cdp_url), span, skip=skip):
            url = with_port(cdp_url, port)
            if not self.locator.reachable(url):
                continue
            if not self.arbiter.check(url, expected).matches:
                continue
            endpoint = self._try_resolve(url)
            if endpoint is not None:
                return self._reused(endpoint, url, "owned-other-port")
        return None

    def _pick_free_port(self, cdp_url: str, ports) -> int:
        port = self.port_finder(parse_host(cdp_url), ports)
        if port is None:
            raise SessionError(
                f"No free port available near {cdp_url} to launch Chrome.",
                cdp_url=cdp_url,
            )
        return port

    def _try_resolve(self, url: str) -> Optional[Endpoint]:
        try:
            return self.locator.resolve(url)
        except CdpConnectionError as e:
            logger.debug(f"Skipping {url}: {e}")
            return None

    def _reused(self, endpoint: Endpoint, url: str, mode: str) -> Session:
        log_event("cdp_session", cdp_url=url, launched=False, mode=mode)
        return Session(endpoint=endpoint, launched_by_us=False, cdp_url=url)

    def _launch(self, cdp_url: str, expected: str, port: int, policy: SessionPolicy) -> Session:
        url = with_port(cdp_url, port)
        launched = self.launcher.launch(expected, port)
        log_event("chrome_launched", cdp_url=url, pid=launched.pid, profile_dir=expected)
        endpoint = self.wait_until_reachable(url, policy)
        if endpoint is None:
            raise SessionError(
                f"Chrome was launched (pid={launched.pid}) but the CDP endpoint at {url} did not come up "
                f"within {policy.launch_timeout_s:g}s.",
                cdp_url=url,
                pid=launched.pid,
                expected_profile_dir=expected,
            )
        log_event("cdp_session", cdp_url=url, launched=True, mode="launched")
        return Session(endpoint=endpoint, launched_by_us=True, cdp_url=url, launched=launched)

    def wait_until_reachable(self, url: str, policy: SessionPolicy) -> Optional[Endpoint]:
        """Poll at a fixed interval until ``url`` resolves or the deadline passes."""
        retrying = Retrying(
            stop=stop_after_delay(policy.launch_timeout_s),
            wait=wait_fixed(policy.poll_interval_s),
            retry=retry_if_result(lambda endpoint: endpoint is None),
            sleep=self.sleep,
        )
        try:
            return retrying(self._try_resolve, url)
        except RetryError:
            return None
