from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .storage import persist_output


def _v(value: Any, fallback: str = "unknown") -> str:
    return escape(str(value)) if value not in (None, "") else fallback


def _stored(console: Console, output: Dict[str, Any]) -> None:
    if output.get("persisted"):
        console.print(f"Stored: {_v(output['persisted'].get('latestPath'))}")


def _source(output: Dict[str, Any]) -> str:
    return output.get("source") or "none"


def render_ticket(console: Console, o: Dict[str, Any]) -> None:
    console.print(f"[bold]Ticket[/]: {_v(o.get('ticketId'))}  [dim]({_source(o)})[/]")
    for label, key in (("Subject", "subject"), ("Status", "status"), ("Priority", "priority"),
                       ("Assignee", "assignee"), ("Requester", "requester"), ("URL", "pageUrl")):
        console.print(f"{label}: {_v(o.get(key))}")
    if o.get("cacheHit"):
        console.print(f"Cache: hit ({o.get('cacheAgeSeconds')}s old)")
    _stored(console, o)
    console.print()
    for i, row in enumerate(o.get("comments") or [], 1):
        author = row.get("author") or "Unknown"
        when = row.get("time") or "time-unknown"
        console.print(f"{i}. [{author} @ {when}] {row.get('text') or ''}", markup=False)


def render_queue(console: Console, o: Dict[str, Any]) -> None:
    console.print(f"[bold]Queue[/]: {_v(o.get('queueName'))}  [dim]({_source(o)})[/]")
    console.print(f"URL: {_v(o.get('pageUrl'))}")
    console.print(f"Tickets: {o.get('resultCount', 0)}")
    _stored(console, o)
    tbl = Table(show_lines=False)
    for col in ("#", "Ticket", "Subject", "Status", "Requester"):
        tbl.add_column(col)
    for i, row in enumerate(o.get("tickets") or [], 1):
        tbl.add_row(str(i), _v(row.get("ticketId"), "?"), _v(row.get("subject"), "(no subject)"),
                    _v(row.get("status")), _v(row.get("requester"), ""))
    console.print(tbl)


def render_search(console: Console, o: Dict[str, Any]) -> None:
    console.print(f"[bold]Query[/]: {_v(o.get('query'))}  [dim]({_source(o)})[/]")
    console.print(f"URL: {_v(o.get('pageUrl'))}")
    console.print(f"Hits: {o.get('resultCount', 0)}")
    _stored(console, o)
    console.print()
    for i, row in enumerate(o.get("results") or [], 1):
        console.print(f"{i}. #{_v(row.get('ticketId'), '?')} {_v(row.get('title'), '(no title)')}")
        if row.get("snippet"):
            console.print(f"   {_v(row['snippet'])}")
        if row.get("url"):
            console.print(f"   {_v(row['url'])}")


def render_queue_list(console: Console, o: Dict[str, Any]) -> None:
    console.print(f"Domain: {_v(o.get('domain'))}")
    console.print(f"Default queue: {_v(o.get('defaultQueue'), 'none')}")
    console.print(f"Configured queues: {o.get('count', 0)}")
    tbl = Table(title="Queues")
    for col in ("Alias", "Team", "Path", "Default"):
        tbl.add_column(col)
    for row in o.get("queues") or []:
        tbl.add_row(_v(row.get("alias")), _v(row.get("team"), ""), _v(row.get("path"), "(no path configured)"),
                    "yes" if row.get("isDefault") else "")
    console.print(tbl)


def _user_label(user: Optional[Dict[str, Any]]) -> str:
    if not user:
        return "unknown"
    return _v(user.get("name") or user.get("email") or user.get("id"))


def render_auth_check(console: Console, o: Dict[str, Any]) -> None:
    console.print(f"CDP: {'[green]reachable[/]' if o['cdp']['reachable'] else '[red]unreachable[/]'}")
    console.print(f"Config: {'[green]valid[/]' if o['config']['ok'] else '[red]invalid[/]'}")
    auth = o.get("auth") or {}
    console.print(f"Auth: {'[green]authenticated[/]' if auth.get('authenticated') else '[yellow]not authenticated[/]'}")
    if auth.get("user"):
        console.print(f"User: {_user_label(auth['user'])}")
    if auth.get("error"):
        console.print(f"[yellow]WARN[/]: {_v(auth['error'])}")
    for issue in o["config"].get("issues") or []:
        console.print(f"- {_v(issue)}")


def render_auth_login(console: Console, o: Dict[str, Any]) -> None:
    if o.get("authenticated"):
        console.print("[green]OK[/]: Zendesk login confirmed.")
    else:
        console.print("[red]Error[/]: Zendesk login not confirmed.")
    console.print(f"URL: {_v(o.get('pageUrl') or o.get('startUrl'))}")
    if o.get("user"):
        console.print(f"User: {_user_label(o['user'])}")


def render_doctor(console: Console, o: Dict[str, Any]) -> None:
    console.print(f"Status: {'[green]ok[/]' if o.get('ok') else '[yellow]needs attention[/]'}")
    for check in o.get("checks") or []:
        mark = "[green]ok[/]" if check.get("ok") else "[red]fail[/]"
        detail = f" ({_v(check['detail'])})" if check.get("detail") else ""
        console.print(f"- {_v(check.get('name'))}: {mark}{detail}")


RENDERERS = {
    "read-ticket": render_ticket,
    "read-queue": render_queue,
    "search-tickets": render_search,
    "list-queues": render_queue_list,
    "auth-check": render_auth_check,
    "auth-login": render_auth_login,
    "doctor": render_doctor,
}


def emit_result(
    result: Dict[str, Any],
    *,
    json_output: bool = False,
    store_root: Optional[str] = None,
    out: Optional[str] = None,
    console: Optional[Console] = None,
) -> Dict[str, Any]:
    """Persist, optionally write ``--out``, then print JSON or a human summary."""
    persisted = None
    if store_root and not result.get("cacheHit"):
        persisted = persist_output(result, store_root)
    output = {**result, "persisted": persisted} if persisted else result

    if out:
        out_path = Path(out).resolve()
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(json.dumps(output, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")

    if json_output:
        typer.echo(json.dumps(output, ensure_ascii=False, indent=2))
        return output

    renderer = RENDERERS.get(output.get("command"))
    if renderer is None:
        typer.echo(json.dumps(output, ensure_ascii=False, indent=2))
    else:
        renderer(console or Console(), output)
    return output
