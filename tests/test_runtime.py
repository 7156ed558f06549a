import os
import subprocess

import psutil
import pytest

from src.zagent import runtime
from src.zagent.cdp.endpoint import endpoint_for
from src.zagent.cdp.launcher import LaunchedBrowser
from src.zagent.cdp.session import Session
from src.zagent.config import load_settings
from src.zagent.errors import BindError, ConfigError
from src.zagent.runtime import BrowserRun, open_zendesk_browser


CDP = "http://127.0.0.1:9223"
WS = "ws://127.0.0.1:9223/devtools/browser/abc"


class FakeBrowser:
    def __init__(self, contexts):
        self.contexts = contexts
        self.closed = 0

    def close(self):
        self.closed += 1


class FakePlaywright:
    def __init__(self, browser):
        self.browser = browser
        self.connected = []
        self.chromium = self

    def connect_over_cdp(self, address):
        self.connected.append(address)
        return self.browser

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeAcquirer:
    def __init__(self):
        self.calls = []

    def acquire(self, cdp_url, profile_dir, policy):
        self.calls.append((cdp_url, profile_dir, policy))
        launched = LaunchedBrowser(pid=4242, port=9223, profile_dir=profile_dir, command=["chrome"])
        return Session(endpoint=endpoint_for(CDP, WS), launched_by_us=True, cdp_url=CDP, launched=launched)


@pytest.fixture(autouse=True)
def _isolated(monkeypatch, tmp_path):
    for key in ("ZENDESK_CONFIG", "ZENDESK_DOMAIN", "ZENDESK_CDP_URL"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def killed(monkeypatch):
    calls = []
    monkeypatch.setattr(os, "kill", lambda *a: calls.append(("os.kill", a)))
    monkeypatch.setattr(psutil.Process, "terminate", lambda self: calls.append(("terminate", self)))
    monkeypatch.setattr(psutil.Process, "kill", lambda self: calls.append(("kill", self)))
    monkeypatch.setattr(subprocess.Popen, "terminate", lambda self: calls.append(("popen", self)))
    return calls


@pytest.fixture
def wired(monkeypatch, fake_page):
    """Patch playwright and page binding; returns (playwright, bound pages)."""
    def _wire(contexts=("ctx",), bind=None):
        pw = FakePlaywright(FakeBrowser(list(contexts)))
        bound = []

        def default_bind(context, start_url, background):
            page = fake_page(url=start_url)
            bound.append(page)
            return page

        monkeypatch.setattr(runtime, "sync_playwright", lambda: pw)
        monkeypatch.setattr(runtime, "bind_page", bind or default_bind)
        monkeypatch.setattr(runtime, "prepare_interaction_context", lambda page, wait_ms: None)
        return pw, bound

    return _wire


def _settings(tmp_path, **extra):
    return load_settings(cwd=str(tmp_path), domain="acme.zendesk.com", **extra)


def test_yields_run_and_disconnects_once(tmp_path, wired, killed):
    pw, bound = wired()
    acquirer = FakeAcquirer()
    with open_zendesk_browser(_settings(tmp_path), acquirer=acquirer) as run:
        assert isinstance(run, BrowserRun)
        assert run.page is bound[0]
        assert run.session.launched_by_us is True
        assert pw.browser.closed == 0
    assert pw.connected == [WS]
    assert pw.browser.closed == 1
    assert len(acquirer.calls) == 1
    assert killed == []


def test_empty_contexts_disconnect(tmp_path, wired, killed):
    pw, _ = wired(contexts=())
    with pytest.raises(BindError, match="No browser context"):
        with open_zendesk_browser(_settings(tmp_path), acquirer=FakeAcquirer()):
            pytest.fail("body must not run")
    assert pw.browser.closed == 1
    assert killed == []


def test_bind_failure_disconnects(tmp_path, wired, killed):
    def refuse(context, start_url, background):
        raise BindError("No Zendesk agent tab found")

    pw, _ = wired(bind=refuse)
    with pytest.raises(BindError, match="No Zendesk agent tab found"):
        with open_zendesk_browser(_settings(tmp_path), acquirer=FakeAcquirer()):
            pytest.fail("body must not run")
    assert pw.browser.closed == 1
    assert killed == []


def test_body_error_disconnects(tmp_path, wired, killed):
    pw, _ = wired()
    with pytest.raises(RuntimeError, match="boom"):
        with open_zendesk_browser(_settings(tmp_path), acquirer=FakeAcquirer()):
            raise RuntimeError("boom")
    assert pw.browser.closed == 1
    assert killed == []


def test_missing_domain_never_acquires(tmp_path, wired):
    pw, _ = wired()
    acquirer = FakeAcquirer()
    with pytest.raises(ConfigError, match="Zendesk domain is required"):
        with open_zendesk_browser(load_settings(cwd=str(tmp_path)), acquirer=acquirer):
            pytest.fail("body must not run")
    assert acquirer.calls == []
    assert pw.connected == []
