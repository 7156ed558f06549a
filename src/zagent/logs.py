from __future__ import annotations

import sys
import time
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger


_JSON_SINK_CONFIGURED = False
_JSON_LOG_PATH: Optional[Path] = None


def configure_console_logging(verbose: bool = False) -> None:
    """Replace loguru's default stderr handler; stdout stays reserved for results."""
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else "WARNING",
        backtrace=False,
        diagnose=False,
    )


def configure_json_logging(store_root: str) -> Path:
    global _JSON_SINK_CONFIGURED, _JSON_LOG_PATH
    if _JSON_SINK_CONFIGURED and _JSON_LOG_PATH:
        return _JSON_LOG_PATH
    logs_dir = Path(store_root) / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    target = logs_dir / "events.jsonl"
    logger.add(
        target,
        level="INFO",
        enqueue=True,
        backtrace=False,
        diagnose=False,
        serialize=True,  # JSON lines
        rotation="50 MB",
        retention=10,
        filter=lambda record: "event" in record["extra"],
    )
    _JSON_SINK_CONFIGURED = True
    _JSON_LOG_PATH = target
    return target


def log_event(event: str, **fields: Any) -> None:
    """Emit a structured event; lands in the JSONL sink when one is configured."""
    payload: Dict[str, Any] = {"event": event, "ts": int(time.time())}
    payload.update(fields)
    logger.bind(**payload).info(event)
