import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from cli import app, queue_epilog


runner = CliRunner()


@pytest.fixture(autouse=True)
def _project(monkeypatch, tmp_path: Path):
    for key in ("ZENDESK_CONFIG", "ZENDESK_DOMAIN", "ZENDESK_DEFAULT_QUEUE", "ZENDESK_JSON"):
        monkeypatch.delenv(key, raising=False)
    (tmp_path / "zendesk.config.json").write_text(json.dumps({
        "domain": "acme.zendesk.com",
        "startPath": "/agent/filters",
        "defaultQueue": "support-open",
        "queues": {
            "support-open": {"path": "/agent/filters/123", "team": "Support", "name": "Support Open"},
            "billing": {"path": "agent/filters/9", "team": "Billing"},
        },
    }), encoding="utf-8")
    monkeypatch.chdir(tmp_path)


def test_queue_list_json(tmp_path: Path):
    result = runner.invoke(app, ["--no-store", "--json", "--out", "out/queues.json", "queue", "list"])
    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["command"] == "list-queues"
    assert payload["domain"] == "acme.zendesk.com"
    assert [q["alias"] for q in payload["queues"]] == ["billing", "support-open"]
    assert payload["queues"][0]["path"] == "/agent/filters/9"
    assert json.loads((tmp_path / "out" / "queues.json").read_text()) == payload
    assert not (tmp_path / "output").exists()


def test_queue_list_human_summary():
    result = runner.invoke(app, ["--no-store", "queue", "list", "--team", "support"])
    assert result.exit_code == 0, result.output
    assert "support-open" in result.stdout
    assert "billing" not in result.stdout


def test_errors_exit_nonzero_with_json_error(tmp_path: Path):
    (tmp_path / "zendesk.config.json").write_text(json.dumps({"domain": "acme.zendesk.com"}), encoding="utf-8")
    result = runner.invoke(app, ["--no-store", "queue", "read"])
    assert result.exit_code == 1
    assert '"ok": false' in result.output
    assert "Queue name is required" in result.output


def test_invalid_start_path_is_reported(tmp_path: Path):
    result = runner.invoke(app, ["--no-store", "--start-path", "/home", "queue", "list"])
    assert result.exit_code == 1
    assert "startPath must begin with" in result.output


def test_queue_epilog_lists_aliases(tmp_path: Path):
    epilog = queue_epilog([], str(tmp_path))
    assert epilog.split("\n\n") == [
        "Configured queue aliases:",
        "Default queue: support-open",
        "- billing",
        "- support-open",
    ]


def test_queue_epilog_follows_config_flag(tmp_path: Path):
    other = tmp_path / "other.json"
    other.write_text(json.dumps({"domain": "acme.zendesk.com", "queues": {"vip": {"path": "/agent/filters/7"}}}), encoding="utf-8")
    assert queue_epilog(["--config", str(other), "queue", "--help"], str(tmp_path)).split("\n\n") == [
        "Configured queue aliases:",
        "- vip",
    ]
    assert queue_epilog([f"--config={other}"], str(tmp_path)).endswith("- vip")


def test_queue_epilog_is_empty_without_aliases(tmp_path: Path):
    (tmp_path / "zendesk.config.json").write_text(json.dumps({"domain": "acme.zendesk.com"}), encoding="utf-8")
    assert queue_epilog([], str(tmp_path)) == ""
    assert queue_epilog(["--config", str(tmp_path / "missing.json")], str(tmp_path)) == ""
