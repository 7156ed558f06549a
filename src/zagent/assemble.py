"""Build the command records printed and persisted for each command.

All functions are pure: the same outcome and request metadata always give the
same record.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Type

from pydantic import BaseModel
from pydantic.alias_generators import to_camel

from .config import QueueAlias
from .retrieval.outcome import Outcome, found
from .schemas import Identity, Queue, QueueMatch, SearchResult, SessionMeta, Ticket


def _blank(model: Type[BaseModel]) -> Dict[str, Any]:
    """Entity fields with their defaults, used when neither tier found anything."""
    out: Dict[str, Any] = {}
    for name, field in model.model_fields.items():
        if name == "source":
            continue
        out[field.alias or to_camel(name)] = field.get_default(call_default_factory=True)
    return out


def _entity_fields(outcome: Outcome, model: Type[BaseModel]) -> Dict[str, Any]:
    if found(outcome):
        return outcome.entity.to_record()
    out = _blank(model)
    out["source"] = None
    return out


def _base(command: str, outcome: Outcome, session: SessionMeta) -> Dict[str, Any]:
    return {
        "ok": True,
        "command": command,
        "found": found(outcome),
        "source": outcome.source,
        **session.to_record(),
    }


def assemble_ticket(outcome: Outcome, requested_ticket_id: str, session: SessionMeta) -> Dict[str, Any]:
    record = _base("read-ticket", outcome, session)
    record["requestedTicketId"] = requested_ticket_id
    record.update(_entity_fields(outcome, Ticket))
    if not found(outcome):
        record["ticketId"] = requested_ticket_id or None
    return record


def assemble_queue(
    outcome: Outcome,
    selection: Dict[str, str],
    matched: QueueMatch,
    session: SessionMeta,
) -> Dict[str, Any]:
    record = _base("read-queue", outcome, session)
    record.update(
        {
            "requestedQueueName": selection.get("queueName") or None,
            "requestedQueueDisplayName": selection.get("queueDisplayName") or None,
            "requestedQueuePath": selection.get("queuePath") or None,
            "requestedQueueAlias": selection.get("alias") or None,
            "requestedQueueTeam": selection.get("team") or None,
            "matchedQueue": matched.to_record(),
        }
    )
    fields = _entity_fields(outcome, Queue)
    fields.setdefault("resultCount", len(fields.get("tickets") or []))
    record.update(fields)
    record["queueName"] = fields.get("queueName") or matched.name or selection.get("queueName") or None
    return record


def assemble_search(outcome: Outcome, query: str, session: SessionMeta) -> Dict[str, Any]:
    record = _base("search-tickets", outcome, session)
    fields = _entity_fields(outcome, SearchResult)
    fields.setdefault("resultCount", len(fields.get("results") or []))
    if not found(outcome):
        fields["query"] = query
    record.update(fields)
    return record


def identity_record(outcome: Outcome) -> Optional[Dict[str, Any]]:
    if not found(outcome):
        return None
    entity: Identity = outcome.entity
    return entity.to_record()


def is_authenticated(outcome: Outcome) -> bool:
    return found(outcome) and outcome.entity.authenticated


def assemble_auth_login(
    outcome: Outcome,
    session: SessionMeta,
    start_url: str,
    page_url: Optional[str],
    timeout_s: int,
) -> Dict[str, Any]:
    authenticated = is_authenticated(outcome)
    return {
        "ok": authenticated,
        "command": "auth-login",
        **session.to_record(),
        "startUrl": start_url,
        "pageUrl": page_url,
        "authenticated": authenticated,
        "source": outcome.source,
        "user": identity_record(outcome),
        "timeoutSeconds": timeout_s,
    }


def auth_status(outcome: Optional[Outcome] = None, error: Optional[str] = None, checked: bool = False) -> Dict[str, Any]:
    if outcome is None:
        return {"checked": checked, "authenticated": False, "source": None, "user": None, "error": error}
    return {
        "checked": True,
        "authenticated": is_authenticated(outcome),
        "source": outcome.source,
        "user": identity_record(outcome),
        "error": None,
    }


def assemble_auth_check(
    cdp_url: str,
    cdp_reachable: bool,
    config_path: Optional[str],
    validation: Dict[str, Any],
    auth: Dict[str, Any],
) -> Dict[str, Any]:
    config_ok = bool(config_path) and bool(validation.get("ok"))
    return {
        "ok": cdp_reachable and config_ok and bool(auth.get("authenticated")),
        "command": "auth-check",
        "cdp": {"url": cdp_url, "reachable": cdp_reachable},
        "config": {"path": config_path, "ok": config_ok, "issues": list(validation.get("issues") or [])},
        "auth": auth,
    }


def assemble_queue_list(
    queues: Dict[str, QueueAlias],
    default_queue: str,
    domain: str,
    team: Optional[str] = None,
) -> Dict[str, Any]:
    team_filter = (team or "").strip().lower()
    rows: List[Dict[str, Any]] = []
    for alias in sorted(queues):
        q = queues[alias]
        if team_filter and (q.team or "").lower() != team_filter:
            continue
        rows.append(
            {
                "alias": alias,
                "path": q.path,
                "team": q.team or None,
                "name": q.name or None,
                "isDefault": alias == default_queue,
            }
        )
    return {
        "ok": True,
        "command": "list-queues",
        "domain": domain or None,
        "defaultQueue": default_queue or None,
        "count": len(rows),
        "queues": rows,
    }


def assemble_doctor(checks: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    rows = list(checks)
    return {"ok": all(c["ok"] for c in rows), "command": "doctor", "checks": rows}
