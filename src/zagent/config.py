from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel, Field, field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from .errors import ConfigError
from .utils import clean


CONFIG_BASENAMES = ("zendesk.config.json", "zendesk.json")
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# camelCase keys accepted in zendesk.config.json -> Settings field names
FILE_KEYS = {
    "cdpUrl": "cdp_url",
    "domain": "domain",
    "startPath": "start_path",
    "profileDir": "profile_dir",
    "storeRoot": "store_root",
    "uiWaitMs": "ui_wait_ms",
    "noLaunch": "no_launch",
    "allowSharedCdp": "allow_shared_cdp",
    "noAutoPort": "no_auto_port",
    "cdpPortSpan": "cdp_port_span",
    "foreground": "foreground",
    "noStore": "no_store",
    "noCache": "no_cache",
    "cacheOnly": "cache_only",
    "cacheTtl": "cache_ttl",
    "json": "json_output",
    "defaultQueue": "default_queue",
    "queues": "queues",
    "launchTimeoutS": "launch_timeout_s",
    "pollIntervalS": "poll_interval_s",
    "browserExecutablePath": "browser_executable_path",
}

_AGENT_PATH = re.compile(r"^/agent/", re.I)


def normalize_agent_path(raw: Any, fallback: str = "") -> str:
    selected = str(raw or "").strip() or str(fallback or "").strip()
    if not selected:
        return ""
    if selected.startswith("/"):
        return selected
    return f"/{selected}"


def is_agent_path(path: str) -> bool:
    return bool(_AGENT_PATH.match(path or ""))


def _resolve_up(start: Path, name: str) -> Optional[Path]:
    for directory in (start, *start.parents):
        candidate = directory / name
        if candidate.exists():
            return candidate
    return None


def find_repo_root(start: Path) -> Path:
    start = start.resolve()
    for directory in (start, *start.parents):
        if (directory / ".git").exists():
            return directory
    return start


def resolve_config_path(explicit: Optional[str], cwd: Optional[Path] = None) -> Optional[Path]:
    """Locate the JSON config file.

    An explicit path wins (resolved against ``cwd``). Otherwise walk up from
    ``cwd`` for each known basename, then fall back to the project root so a
    development checkout keeps working from any directory.
    """
    base = Path(cwd or os.getcwd()).resolve()
    if explicit:
        return (base / explicit).resolve()
    for name in CONFIG_BASENAMES:
        found = _resolve_up(base, name)
        if found:
            return found
    for name in CONFIG_BASENAMES:
        candidate = PROJECT_ROOT / name
        if candidate.exists():
            return candidate
    return None


def read_config_file(path: Optional[Path]) -> Dict[str, Any]:
    if path is None:
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Config file {path} is not valid JSON: {e}") from e
    return data if isinstance(data, dict) else {}


class QueueAlias(BaseModel):
    path: str
    team: str = ""
    name: str = ""
    display_name: str = ""


def normalize_queues(raw: Any) -> Dict[str, QueueAlias]:
    out: Dict[str, QueueAlias] = {}
    if isinstance(raw, dict):
        items = raw.items()
    else:
        items = []
    for alias, value in items:
        if isinstance(value, QueueAlias):
            out[alias] = value
            continue
        row = value if isinstance(value, dict) else {}
        path = normalize_agent_path(row.get("path"))
        if not path:
            continue
        out[alias] = QueueAlias(
            path=path,
            team=clean(row.get("team")),
            name=clean(row.get("name") or row.get("displayName") or row.get("display_name")),
            display_name=clean(row.get("displayName") or row.get("display_name") or row.get("name")),
        )
    return out


class ConfigFileSource(PydanticBaseSettingsSource):
    """Settings layer fed by zendesk.config.json (below env, above defaults)."""

    def __init__(self, settings_cls: Type[BaseSettings], config_path: Optional[str], cwd: Optional[str]):
        super().__init__(settings_cls)
        self.path = resolve_config_path(config_path, Path(cwd) if cwd else None)
        self.raw = read_config_file(self.path)

    def get_field_value(self, field: FieldInfo, field_name: str) -> Tuple[Any, str, bool]:
        return None, field_name, False

    def __call__(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for key, value in self.raw.items():
            name = FILE_KEYS.get(key)
            if name is None or value is None:
                continue
            if isinstance(value, str) and not value.strip():
                continue
            data[name] = value
        if self.path is not None:
            data["config_path"] = str(self.path)
        return data


class Settings(BaseSettings):
    # Config discovery
    config_path: Optional[str] = None
    cwd: Optional[str] = None

    # Target application
    domain: str = ""
    start_path: str = "/agent/filters"
    ui_wait_ms: int = 1200

    # CDP / Chrome
    cdp_url: str = "http://127.0.0.1:9223"
    profile_dir: str = str(Path(".") / "output" / "zendesk" / "chrome-profile")
    browser_executable_path: Optional[str] = None
    no_launch: bool = False
    allow_shared_cdp: bool = False
    no_auto_port: bool = False
    cdp_port_span: int = 10
    launch_timeout_s: float = 20.0
    poll_interval_s: float = 0.5
    foreground: bool = False

    # Persistence / cache
    store_root: str = str(Path(".") / "output" / "zendesk")
    no_store: bool = False
    no_cache: bool = False
    cache_only: bool = False
    cache_ttl: int = 120

    # Output
    json_output: bool = Field(False, validation_alias="zendesk_json")

    # Queues
    default_queue: str = ""
    queues: Dict[str, QueueAlias] = Field(default_factory=dict)

    model_config = SettingsConfigDict(
        env_prefix="ZENDESK_", env_file=".env", extra="ignore", populate_by_name=True
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        init_kwargs = getattr(init_settings, "init_kwargs", {}) or {}
        explicit = init_kwargs.get("config_path") or os.environ.get("ZENDESK_CONFIG")
        file_source = ConfigFileSource(settings_cls, explicit, init_kwargs.get("cwd"))
        return (init_settings, env_settings, dotenv_settings, file_source)

    @field_validator("domain", mode="before")
    @classmethod
    def _host_only(cls, v):
        host = re.sub(r"^https?://", "", str(v or "").strip(), flags=re.I).rstrip("/")
        return host.split("/", 1)[0]

    @field_validator("start_path", mode="before")
    @classmethod
    def _agent_start_path(cls, v):
        path = normalize_agent_path(v, "/agent/filters")
        if not is_agent_path(path):
            raise ValueError(f'Invalid startPath "{path}". startPath must begin with "/agent/".')
        return path

    @field_validator("queues", mode="before")
    @classmethod
    def _queues(cls, v):
        return normalize_queues(v)

    @field_validator("default_queue", mode="before")
    @classmethod
    def _default_queue(cls, v):
        return clean(v)

    def model_post_init(self, __context) -> None:  # pydantic v2 hook
        self.cdp_port_span = max(0, int(self.cdp_port_span))
        self.cache_ttl = max(0, int(self.cache_ttl))
        # Relative paths are anchored at the repository holding the config file
        self.profile_dir = self._abs(self.profile_dir)
        self.store_root = self._abs(self.store_root)

    def _abs(self, raw: str) -> str:
        text = str(raw or "").strip()
        if not text:
            return ""
        p = Path(text).expanduser()
        if p.is_absolute():
            return str(p)
        return str((self.repo_root / p).resolve())

    # ----------------------- Derived values -----------------------

    @property
    def repo_root(self) -> Path:
        if self.config_path:
            return find_repo_root(Path(self.config_path).parent)
        return find_repo_root(Path(self.cwd or os.getcwd()))

    @property
    def start_url(self) -> str:
        return f"https://{self.domain}{self.start_path}" if self.domain else ""

    @property
    def background(self) -> bool:
        return not self.foreground

    @property
    def auto_port(self) -> bool:
        return not self.no_auto_port

    @property
    def store(self) -> bool:
        return not self.no_store

    @property
    def cache(self) -> bool:
        return not self.no_cache

    def file_config(self) -> Dict[str, Any]:
        return read_config_file(Path(self.config_path)) if self.config_path else {}


def load_settings(config_path: Optional[str] = None, cwd: Optional[str] = None, **overrides: Any) -> Settings:
    """Build the per-invocation settings (CLI > env > config file > defaults).

    ``overrides`` are CLI values; ``None`` means "not given on the command line".
    """
    given = {k: v for k, v in overrides.items() if v is not None}
    if config_path:
        given["config_path"] = str(resolve_config_path(config_path, Path(cwd) if cwd else None))
    if cwd:
        given["cwd"] = cwd
    try:
        return Settings(**given)
    except ValueError as e:
        raise ConfigError(str(e)) from e


# ----------------------- Queue aliases -----------------------

def resolve_queue_input(raw: Optional[str], default_queue: str, queues: Dict[str, QueueAlias]) -> Dict[str, str]:
    requested = clean(raw) or clean(default_queue)
    if not requested:
        return {"queueName": "", "queueDisplayName": "", "queuePath": "", "alias": "", "team": ""}

    def _row(alias: str, q: QueueAlias) -> Dict[str, str]:
        return {
            "queueName": q.name or q.display_name or alias,
            "queueDisplayName": q.display_name or q.name or "",
            "queuePath": q.path,
            "alias": alias,
            "team": q.team,
        }

    if requested in queues:
        return _row(requested, queues[requested])

    low = requested.lower()
    for alias, q in queues.items():
        if alias.lower() == low:
            return _row(alias, q)
    for alias, q in queues.items():
        if q.name.lower() == low or q.display_name.lower() == low:
            return _row(alias, q)

    return {"queueName": requested, "queueDisplayName": requested, "queuePath": "", "alias": "", "team": ""}


def validate_config_contract(config: Dict[str, Any], queues: Optional[Dict[str, QueueAlias]] = None) -> Dict[str, Any]:
    """Check a raw config file against the fields the CLI expects.

    Returns ``{"ok": bool, "issues": [...]}``; never raises.
    """
    issues: List[str] = []
    cfg = config if isinstance(config, dict) else {}
    raw_queues = cfg.get("queues") if isinstance(cfg.get("queues"), dict) else {}

    if not clean(cfg.get("domain")):
        issues.append("Missing required field: domain")
    start_path = normalize_agent_path(cfg.get("startPath"))
    if not start_path:
        issues.append("Missing required field: startPath")
    elif not is_agent_path(start_path):
        issues.append(f'Invalid startPath "{start_path}". startPath must begin with "/agent/".')
    if not clean(cfg.get("defaultQueue")):
        issues.append("Missing required field: defaultQueue")
    if not raw_queues:
        issues.append("Missing required field: queues (object with at least one alias)")
    for alias, row in raw_queues.items():
        path = normalize_agent_path((row or {}).get("path") if isinstance(row, dict) else "")
        if not path:
            issues.append(f"queues.{alias}.path is required")
            continue
        if not is_agent_path(path):
            issues.append(f'queues.{alias}.path must begin with "/agent/" (got "{path}")')

    resolved = queues if queues is not None else normalize_queues(raw_queues)
    default_queue = clean(cfg.get("defaultQueue"))
    if default_queue and default_queue not in resolved:
        issues.append(f'defaultQueue "{default_queue}" is not defined in queues')

    return {"ok": not issues, "issues": issues}
