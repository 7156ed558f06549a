from __future__ import annotations

import json
import re
import time
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlsplit


_WS = re.compile(r"\s+")
_TICKET_URL = re.compile(r"/agent/tickets/(\d+)", re.I)
_VIEW_URL = re.compile(r"/agent/filters/(\d+)", re.I)


def clean(text: Any) -> str:
    """Collapse whitespace runs and trim; ``None`` becomes ``""``."""
    if text is None:
        return ""
    return _WS.sub(" ", str(text)).strip()


def digits(value: Any) -> str:
    return re.sub(r"\D+", "", str(value or ""))


def slugify(value: Any) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", clean(value).lower()).strip("-")
    return slug or "unknown"


def origin_of(url: Any) -> str:
    """``scheme://host[:port]`` of a URL, or ``""`` when it has none."""
    try:
        parts = urlsplit(str(url or "").strip())
    except ValueError:
        return ""
    if not parts.scheme or not parts.netloc:
        return ""
    return f"{parts.scheme}://{parts.netloc}"


def agent_url(base_url: str, suffix: str) -> str:
    path = suffix if suffix.startswith("/") else f"/{suffix}"
    return f"{base_url}{path}" if base_url else path


def parse_ticket_id_from_url(url: Any) -> Optional[str]:
    m = _TICKET_URL.search(str(url or ""))
    return m.group(1) if m else None


def parse_view_id_from_url(url: Any) -> Optional[str]:
    m = _VIEW_URL.search(str(url or ""))
    return m.group(1) if m else None


def sleep_ms(ms: float) -> None:
    time.sleep(max(0.0, ms) / 1000.0)


def read_json(path: Path, default: Any = None) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return default


def write_json(data: Any, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp.json")
    with tmp.open("w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)
        f.write("\n")
    tmp.replace(path)
