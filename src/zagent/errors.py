"""Exception types raised by the zagent core.

Retrieval-tier failures are not represented here: an API or DOM miss is an
expected outcome handled by falling through to the next tier.
"""

from __future__ import annotations

from typing import Optional


class ZagentError(RuntimeError):
    """Base class for errors surfaced to the CLI boundary."""


class ConfigError(ZagentError):
    """Missing or invalid configuration."""


class CdpConnectionError(ZagentError, ConnectionError):
    """The CDP discovery endpoint is unreachable, non-2xx or malformed."""

    def __init__(self, message: str, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.url = url


class SessionError(ZagentError):
    """No usable, owned or launchable CDP endpoint for this invocation."""

    def __init__(
        self,
        message: str,
        *,
        cdp_url: Optional[str] = None,
        pid: Optional[int] = None,
        expected_profile_dir: Optional[str] = None,
        actual_profile_dir: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.cdp_url = cdp_url
        self.pid = pid
        self.expected_profile_dir = expected_profile_dir
        self.actual_profile_dir = actual_profile_dir


class BindError(ZagentError):
    """No agent tab could be found or opened."""


class NavigationError(ZagentError):
    """A page did not end up where navigation was supposed to take it."""


class CacheMissError(ZagentError):
    """--cache-only was requested and nothing fresh is stored."""


class QueueNotFoundError(ZagentError, LookupError):
    """No view matched the requested queue name."""


__all__ = [
    "ZagentError",
    "ConfigError",
    "CdpConnectionError",
    "SessionError",
    "BindError",
    "NavigationError",
    "CacheMissError",
    "QueueNotFoundError",
]
