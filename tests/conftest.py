from typing import Any, Dict, List, Optional

import pytest

from src.zagent import utils


class FakeKeyboard:
    def __init__(self):
        self.pressed: List[str] = []
        self.typed: List[str] = []

    def press(self, key: str):
        self.pressed.append(key)

    def type(self, text: str, delay: int = 0):
        self.typed.append(text)


class FakeLocator:
    def __init__(self, page, selector: str):
        self.page = page
        self.selector = selector

    @property
    def first(self):
        return self

    def count(self) -> int:
        return 0

    def click(self, **kwargs):
        self.page.clicked.append(self.selector)

    def wait_for(self, **kwargs):
        return None


class FakePage:
    """Stands in for a Playwright page: API paths map to canned fetch results."""

    def __init__(self, url: str = "https://acme.zendesk.com/agent/filters", html: str = "",
                 api: Optional[Dict[str, Any]] = None, title: str = "Zendesk"):
        self.url = url
        self.html = html
        self.api = api or {}
        self._title = title
        self.fetched: List[str] = []
        self.gotos: List[str] = []
        self.clicked: List[str] = []
        self.keyboard = FakeKeyboard()
        self.brought_to_front = False

    def evaluate(self, script: str, arg: Any = None):
        if isinstance(arg, str):
            self.fetched.append(arg)
            resp = self.api.get(arg)
            if callable(resp):
                return resp()
            if resp is None:
                return {"ok": False, "status": 404, "data": None}
            return {"ok": True, "status": 200, "data": resp}
        return None

    def content(self) -> str:
        return self.html

    def title(self) -> str:
        return self._title

    def goto(self, url: str, **kwargs):
        self.gotos.append(url)
        self.url = url

    def click(self, selector: str, **kwargs):
        self.clicked.append(selector)

    def locator(self, selector: str):
        return FakeLocator(self, selector)

    def wait_for_load_state(self, *args, **kwargs):
        return None

    def bring_to_front(self):
        self.brought_to_front = True


@pytest.fixture
def no_sleep(monkeypatch):
    monkeypatch.setattr(utils.time, "sleep", lambda s: None)


@pytest.fixture
def fake_page():
    return FakePage
