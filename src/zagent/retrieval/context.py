from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from playwright.sync_api import Error as PlaywrightError

from ..utils import origin_of


@dataclass(frozen=True)
class RetrievalContext:
    """Page, origin and UI pacing threaded through a single retrieval call."""

    page: Any
    base_url: str = ""
    ui_wait_ms: int = 1200

    @classmethod
    def for_page(cls, page: Any, ui_wait_ms: int = 1200, base_url: Optional[str] = None) -> "RetrievalContext":
        return cls(page=page, base_url=origin_of(base_url) or origin_of(page.url), ui_wait_ms=ui_wait_ms)

    def title(self) -> Optional[str]:
        try:
            return self.page.title() or None
        except PlaywrightError:
            return None
