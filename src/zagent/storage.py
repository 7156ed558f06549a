"""Snapshot persistence and the ticket read cache under ``store_root``."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger

from .logs import log_event
from .utils import digits, parse_ticket_id_from_url, read_json, slugify, write_json


def _stamp(now: datetime):
    return now.strftime("%Y"), now.strftime("%m"), now.strftime("%d"), now.strftime("%H%M%S")


def _parse_iso(text: Any) -> Optional[datetime]:
    if not text or not isinstance(text, str):
        return None
    try:
        dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _write_pair(root: Path, snapshot_rel: Path, record: Dict[str, Any]):
    snapshot_path = root / snapshot_rel
    latest_path = root / "latest.json"
    write_json(record, snapshot_path)
    write_json(record, latest_path)
    return str(latest_path), str(snapshot_path)


def persist_output(result: Dict[str, Any], store_root: str, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
    """Write ``latest.json`` plus a timestamped snapshot for retrieval commands.

    Returns a description of what was written, or ``None`` for commands that
    are not persisted.
    """
    if not result or not result.get("command") or not store_root:
        return None
    now = now or datetime.now(timezone.utc)
    yyyy, mm, dd, hms = _stamp(now.astimezone())
    record = {"capturedAt": now.astimezone(timezone.utc).isoformat().replace("+00:00", "Z"), **result}
    root = Path(store_root)
    command = result["command"]

    if command == "read-ticket":
        ticket_id = str(result.get("ticketId") or parse_ticket_id_from_url(result.get("pageUrl")) or "unknown")
        entity_root = root / "tickets" / ticket_id
        latest, snapshot = _write_pair(entity_root, Path("snapshots", yyyy, mm, dd, f"{hms}.json"), record)
        out = {"entity": "ticket", "ticketId": ticket_id, "ticketRoot": str(entity_root)}
    elif command == "read-queue":
        slug = slugify(result.get("queueName") or "queue")
        entity_root = root / "queues" / slug
        latest, snapshot = _write_pair(entity_root, Path("snapshots", yyyy, mm, dd, f"{hms}.json"), record)
        out = {"entity": "queue", "queue": slug, "queueRoot": str(entity_root)}
    elif command == "search-tickets":
        slug = slugify(result.get("query") or "query")
        entity_root = root / "searches" / slug
        latest, snapshot = _write_pair(entity_root, Path(yyyy, mm, dd, f"{hms}.json"), record)
        out = {"entity": "search", "query": slug, "searchRoot": str(entity_root)}
    else:
        return None

    out.update({"latestPath": latest, "snapshotPath": snapshot})
    log_event("persisted", command=command, latest=latest, snapshot=snapshot)
    return out


def read_cached_ticket(
    store_root: str,
    ticket_id: str,
    ttl_seconds: int = 120,
    now: Optional[datetime] = None,
) -> Optional[Dict[str, Any]]:
    """Return the stored ``read-ticket`` record when it is younger than the ttl.

    A ttl of 0 disables expiry.
    """
    tid = digits(ticket_id)
    if not store_root or not tid:
        return None
    latest_path = Path(store_root) / "tickets" / tid / "latest.json"
    if not latest_path.exists():
        return None
    payload = read_json(latest_path, None)
    if not isinstance(payload, dict) or payload.get("command") != "read-ticket":
        logger.debug(f"Ignoring unusable cache entry {latest_path}")
        return None
    captured = _parse_iso(payload.get("capturedAt"))
    if captured is None:
        return None

    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    age = max(0, int((now - captured).total_seconds()))
    ttl = max(0, int(ttl_seconds or 0))
    if ttl > 0 and age > ttl:
        return None

    log_event("cache_hit", ticket_id=tid, age_seconds=age)
    return {**payload, "cacheHit": True, "cacheAgeSeconds": age, "cachePath": str(latest_path)}
