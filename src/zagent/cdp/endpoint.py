"""CDP endpoint discovery over the ``/json/version`` HTTP route."""

from __future__ import annotations

import http.client
import json
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit

from loguru import logger

from ..errors import CdpConnectionError


DEFAULT_CDP_PORT = 9222


@dataclass(frozen=True)
class Endpoint:
    host: str
    port: int
    control_channel_address: Optional[str] = None

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"


def normalize_http_url(cdp_url: str) -> str:
    text = str(cdp_url or "").strip()
    if text.startswith(("http://", "https://")):
        return text
    return f"http://{text}"


def parse_port(cdp_url: str) -> int:
    parts = urlsplit(normalize_http_url(cdp_url))
    try:
        port = parts.port or DEFAULT_CDP_PORT
    except ValueError as e:
        raise ValueError(f"Invalid CDP URL: {cdp_url}") from e
    if port <= 0:
        raise ValueError(f"Invalid CDP URL: {cdp_url}")
    return port


def parse_host(cdp_url: str) -> str:
    return urlsplit(normalize_http_url(cdp_url)).hostname or "127.0.0.1"


def with_port(cdp_url: str, port: int) -> str:
    parts = urlsplit(normalize_http_url(cdp_url))
    return f"{parts.scheme}://{parts.hostname}:{port}"


def endpoint_for(cdp_url: str, control_channel_address: Optional[str] = None) -> Endpoint:
    return Endpoint(parse_host(cdp_url), parse_port(cdp_url), control_channel_address)


class EndpointLocator:
    """Check CDP endpoints and resolve their browser websocket address."""

    def __init__(self, timeout_s: float = 1.5) -> None:
        self.timeout_s = timeout_s

    def resolve_control_channel(self, cdp_url: str) -> str:
        version_url = f"{normalize_http_url(cdp_url).rstrip('/')}/json/version"
        try:
            with urllib.request.urlopen(version_url, timeout=self.timeout_s) as resp:
                status = getattr(resp, "status", 200)
                body = resp.read()
        except urllib.error.HTTPError as e:
            raise CdpConnectionError(f"CDP endpoint returned {e.code} at {version_url}", url=cdp_url) from e
        except (urllib.error.URLError, http.client.HTTPException, OSError, ValueError) as e:
            raise CdpConnectionError(f"CDP endpoint unreachable at {version_url}: {e}", url=cdp_url) from e
        if not 200 <= status < 300:
            raise CdpConnectionError(f"CDP endpoint returned {status} at {version_url}", url=cdp_url)
        try:
            payload = json.loads(body.decode("utf-8", errors="replace") or "null")
        except ValueError as e:
            raise CdpConnectionError(f"Malformed discovery payload at {version_url}", url=cdp_url) from e
        address = payload.get("webSocketDebuggerUrl") if isinstance(payload, dict) else None
        if not address:
            raise CdpConnectionError(f"No webSocketDebuggerUrl at {version_url}", url=cdp_url)
        return str(address)

    def reachable(self, cdp_url: str) -> bool:
        try:
            self.resolve_control_channel(cdp_url)
        except CdpConnectionError as e:
            logger.debug(f"CDP not reachable: {e}")
            return False
        return True

    def resolve(self, cdp_url: str) -> Endpoint:
        return endpoint_for(cdp_url, self.resolve_control_channel(cdp_url))
