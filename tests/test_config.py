import json
from pathlib import Path

import pytest

from src.zagent.config import (
    load_settings,
    normalize_queues,
    resolve_config_path,
    resolve_queue_input,
    validate_config_contract,
)
from src.zagent.errors import ConfigError


def _write_config(tmp_path: Path, data: dict, name: str = "zendesk.config.json") -> Path:
    path = tmp_path / name
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    for key in ("ZENDESK_CONFIG", "ZENDESK_DOMAIN", "ZENDESK_CDP_URL", "ZENDESK_CACHE_TTL", "ZENDESK_JSON"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


def test_file_values_and_relative_paths(tmp_path: Path):
    _write_config(tmp_path, {
        "domain": "https://acme.zendesk.com/agent/",
        "startPath": "agent/filters/1",
        "cdpPortSpan": -3,
        "queues": {"support-open": {"path": "agent/filters/123", "team": "Support"}},
        "defaultQueue": "support-open",
    })
    s = load_settings(cwd=str(tmp_path))
    assert s.domain == "acme.zendesk.com"
    assert s.start_path == "/agent/filters/1"
    assert s.start_url == "https://acme.zendesk.com/agent/filters/1"
    assert s.cdp_port_span == 0
    assert s.queues["support-open"].path == "/agent/filters/123"
    assert Path(s.profile_dir) == (tmp_path / "output" / "zendesk" / "chrome-profile").resolve()
    assert s.config_path == str((tmp_path / "zendesk.config.json").resolve())


def test_precedence_cli_over_env_over_file(tmp_path: Path, monkeypatch):
    _write_config(tmp_path, {"domain": "file.zendesk.com", "cdpUrl": "http://127.0.0.1:9300"})
    monkeypatch.setenv("ZENDESK_DOMAIN", "env.zendesk.com")
    s = load_settings(cwd=str(tmp_path))
    assert s.domain == "env.zendesk.com"
    assert s.cdp_url == "http://127.0.0.1:9300"

    s = load_settings(cwd=str(tmp_path), domain="cli.zendesk.com", cdp_url=None)
    assert s.domain == "cli.zendesk.com"
    assert s.cdp_url == "http://127.0.0.1:9300"


def test_defaults_without_config(tmp_path: Path):
    s = load_settings(cwd=str(tmp_path))
    assert s.cdp_url == "http://127.0.0.1:9223"
    assert s.start_path == "/agent/filters"
    assert s.start_url == ""
    assert s.cache_ttl == 120
    assert s.background and s.auto_port and s.store and s.cache


def test_start_path_outside_agent_is_config_error(tmp_path: Path):
    with pytest.raises(ConfigError):
        load_settings(cwd=str(tmp_path), start_path="/admin/home")


def test_explicit_missing_config_file_is_error(tmp_path: Path):
    with pytest.raises(ConfigError):
        load_settings(config_path="nope.json", cwd=str(tmp_path))


def test_config_discovery_walks_up(tmp_path: Path):
    cfg = _write_config(tmp_path, {"domain": "acme.zendesk.com"}, name="zendesk.json")
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    assert resolve_config_path(None, nested) == cfg


def test_resolve_queue_input_aliases():
    queues = normalize_queues({
        "support-open": {"path": "/agent/filters/123", "team": "Support", "name": "Support Open"},
        "billing": {"path": "/agent/filters/77", "displayName": "Billing Queue"},
        "broken": {"team": "x"},
    })
    assert "broken" not in queues

    row = resolve_queue_input(None, "support-open", queues)
    assert row["alias"] == "support-open"
    assert row["queuePath"] == "/agent/filters/123"
    assert row["team"] == "Support"

    assert resolve_queue_input("BILLING", "", queues)["alias"] == "billing"
    assert resolve_queue_input("billing queue", "", queues)["queuePath"] == "/agent/filters/77"

    passthrough = resolve_queue_input("Escalations", "", queues)
    assert passthrough["queueName"] == "Escalations"
    assert passthrough["queuePath"] == ""


def test_validate_config_contract_reports_issues():
    result = validate_config_contract({
        "domain": "acme.zendesk.com",
        "startPath": "/admin",
        "defaultQueue": "missing",
        "queues": {"a": {"path": "/views/1"}, "b": {}},
    })
    assert not result["ok"]
    joined = " | ".join(result["issues"])
    assert "startPath" in joined
    assert "queues.b.path is required" in joined
    assert 'queues.a.path must begin with "/agent/"' in joined
    assert 'defaultQueue "missing"' in joined

    ok = validate_config_contract({
        "domain": "acme.zendesk.com",
        "startPath": "/agent/filters",
        "defaultQueue": "a",
        "queues": {"a": {"path": "/agent/filters/1"}},
    })
    assert ok == {"ok": True, "issues": []}


def test_json_flag_sources(monkeypatch, tmp_path: Path):
    monkeypatch.setenv("JSON_OUTPUT", "1")
    assert load_settings(cwd=str(tmp_path)).json_output is False
    assert load_settings(cwd=str(tmp_path), json_output=True).json_output is True

    monkeypatch.setenv("ZENDESK_JSON", "1")
    assert load_settings(cwd=str(tmp_path)).json_output is True

    monkeypatch.delenv("ZENDESK_JSON")
    _write_config(tmp_path, {"domain": "acme.zendesk.com", "json": True})
    assert load_settings(cwd=str(tmp_path)).json_output is True
