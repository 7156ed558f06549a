import json
import os
import sys
from typing import Any, Callable, Dict, List, Optional

import typer
from loguru import logger
from rich.console import Console

from src.zagent import commands
from src.zagent.config import Settings, load_settings
from src.zagent.errors import ZagentError
from src.zagent.logs import configure_console_logging, configure_json_logging
from src.zagent.printer import emit_result


def queue_epilog(argv: List[str], cwd: Optional[str] = None) -> str:
    """List configured queue aliases under `queue --help`; empty when none load."""
    config_path = None
    for i, arg in enumerate(argv):
        if arg == "--config" and i + 1 < len(argv):
            config_path = argv[i + 1]
        elif arg.startswith("--config="):
            config_path = arg.split("=", 1)[1]
    try:
        settings = load_settings(config_path=config_path, cwd=cwd)
    except (ZagentError, OSError, ValueError) as e:
        logger.debug(f"queue help: config not loaded: {e}")
        return ""
    if not settings.queues:
        return ""
    lines = ["Configured queue aliases:"]
    if settings.default_queue:
        lines.append(f"Default queue: {settings.default_queue}")
    lines.extend(f"- {alias}" for alias in sorted(settings.queues))
    return "\n\n".join(lines)


app = typer.Typer(help="Zendesk agent CLI over Chrome DevTools (CDP)", no_args_is_help=True)
ticket_app = typer.Typer(help="Read tickets")
app.add_typer(ticket_app, name="ticket")
queue_app = typer.Typer(help="Configured queues (views)", epilog=queue_epilog(sys.argv[1:], os.getcwd()))
app.add_typer(queue_app, name="queue")
search_app = typer.Typer(help="Search")
app.add_typer(search_app, name="search")
auth_app = typer.Typer(help="Zendesk session in the CDP browser")
app.add_typer(auth_app, name="auth")
console = Console()


def _negate(value: Optional[bool]) -> Optional[bool]:
    return None if value is None else not value


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(None, "--config", help="Path to zendesk.config.json"),
    domain: Optional[str] = typer.Option(None, "--domain", help="Zendesk host, e.g. acme.zendesk.com"),
    cdp_url: Optional[str] = typer.Option(None, "--cdp-url", help="Chrome DevTools URL (default http://127.0.0.1:9223)"),
    profile_dir: Optional[str] = typer.Option(None, "--profile-dir", help="Chrome user-data-dir owned by this tool"),
    start_path: Optional[str] = typer.Option(None, "--start-path", help="Agent path to open, must start with /agent/"),
    ui_wait_ms: Optional[int] = typer.Option(None, "--ui-wait-ms", help="Base UI settle delay (ms)"),
    launch: Optional[bool] = typer.Option(None, "--launch/--no-launch", help="Launch Chrome when no usable CDP endpoint"),
    allow_shared_cdp: Optional[bool] = typer.Option(
        None, "--allow-shared-cdp/--no-allow-shared-cdp", help="Use a CDP endpoint without checking its profile"
    ),
    auto_port: Optional[bool] = typer.Option(None, "--auto-port/--no-auto-port", help="Scan nearby ports on conflict"),
    cdp_port_span: Optional[int] = typer.Option(None, "--cdp-port-span", help="How many ports above --cdp-url to scan"),
    foreground: Optional[bool] = typer.Option(None, "--foreground/--background", help="Bring the agent tab to front"),
    store_root: Optional[str] = typer.Option(None, "--store-root", help="Directory for snapshots, cache and logs"),
    store: Optional[bool] = typer.Option(None, "--store/--no-store", help="Persist results under --store-root"),
    cache: Optional[bool] = typer.Option(None, "--cache/--no-cache", help="Serve ticket reads from the local cache"),
    cache_only: Optional[bool] = typer.Option(None, "--cache-only/--no-cache-only", help="Never open the browser"),
    cache_ttl: Optional[int] = typer.Option(None, "--cache-ttl", help="Ticket cache TTL in seconds (0 = no expiry)"),
    json_: Optional[bool] = typer.Option(None, "--json/--no-json", help="Print JSON instead of a summary"),
    out: Optional[str] = typer.Option(None, "--out", help="Also write the JSON result to this file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logs on stderr"),
):
    configure_console_logging(verbose)
    ctx.obj = {
        "config": config,
        "out": out,
        "overrides": {
            "domain": domain,
            "cdp_url": cdp_url,
            "profile_dir": profile_dir,
            "start_path": start_path,
            "ui_wait_ms": ui_wait_ms,
            "no_launch": _negate(launch),
            "allow_shared_cdp": allow_shared_cdp,
            "no_auto_port": _negate(auto_port),
            "cdp_port_span": cdp_port_span,
            "foreground": foreground,
            "store_root": store_root,
            "no_store": _negate(store),
            "no_cache": _negate(cache),
            "cache_only": cache_only,
            "cache_ttl": cache_ttl,
            "json_output": json_,
        },
    }


def _settings(ctx: typer.Context) -> Settings:
    obj: Dict[str, Any] = ctx.obj or {}
    settings = load_settings(config_path=obj.get("config"), cwd=os.getcwd(), **obj.get("overrides", {}))
    if settings.store:
        configure_json_logging(settings.store_root)
    return settings


def _run(ctx: typer.Context, produce: Callable[[Settings], Dict[str, Any]]) -> None:
    """Single error boundary: any failure becomes ``{"ok": false, "error": ...}`` on stderr."""
    try:
        settings = _settings(ctx)
        result = produce(settings)
        emit_result(
            result,
            json_output=settings.json_output,
            store_root=settings.store_root if settings.store else None,
            out=(ctx.obj or {}).get("out"),
            console=console,
        )
    except Exception as e:
        logger.opt(exception=e).debug("Command failed")
        typer.echo(json.dumps({"ok": False, "error": str(e)}, ensure_ascii=False), err=True)
        raise typer.Exit(code=1)


# ------------------------------ Tickets ------------------------------

@ticket_app.command("read")
def ticket_read(
    ctx: typer.Context,
    ticket_id: str = typer.Argument(..., help="Ticket id"),
    comments: int = typer.Option(10, "--comments", help="Max number of comments to return"),
    cache_ttl: Optional[int] = typer.Option(None, "--cache-ttl", help="Override cache TTL for this read (s)"),
):
    """Read a ticket by id (cache first, then API, then page)."""
    _run(ctx, lambda s: commands.ticket_read(s, ticket_id, comments=comments, cache_ttl=cache_ttl))


# ------------------------------ Queues ------------------------------

@queue_app.command("list")
def queue_list(
    ctx: typer.Context,
    team: Optional[str] = typer.Option(None, "--team", help="Only queues of this team"),
):
    """List configured queue aliases."""
    _run(ctx, lambda s: commands.queue_list(s, team=team))


@queue_app.command("read")
def queue_read(
    ctx: typer.Context,
    name: Optional[str] = typer.Argument(None, help="Alias, view name or numeric view id (default: defaultQueue)"),
    count: Optional[int] = typer.Option(None, "--count", help="Max tickets (omit for a full queue sync)"),
):
    """Read the tickets of a queue/view."""
    _run(ctx, lambda s: commands.queue_read(s, name, count=count))


# ------------------------------ Search ------------------------------

@search_app.command("tickets")
def search_tickets(
    ctx: typer.Context,
    query: str = typer.Argument(..., help="Search phrase"),
    count: int = typer.Option(20, "--count", help="Max number of hits"),
):
    """Search tickets by phrase."""
    _run(ctx, lambda s: commands.search_tickets(s, query, count=count))


# ------------------------------ Auth / doctor ------------------------------

@auth_app.command("check")
def auth_check(ctx: typer.Context):
    """Check CDP reachability, config validity and Zendesk login."""
    _run(ctx, commands.auth_check)


@auth_app.command("login")
def auth_login(
    ctx: typer.Context,
    timeout: int = typer.Option(300, "--timeout", help="Max seconds to wait for the login"),
):
    """Open Zendesk in the CDP browser and wait until the agent is signed in."""

    def _login(settings: Settings) -> Dict[str, Any]:
        if not settings.json_output:
            console.print(f"Waiting up to {max(5, timeout)}s for Zendesk login at {settings.start_url or '(no domain)'}")
        return commands.auth_login(settings, timeout=timeout)

    _run(ctx, _login)


@app.command()
def doctor(ctx: typer.Context):
    """Diagnose config, CDP endpoint ownership and Zendesk login."""
    _run(ctx, commands.doctor)


if __name__ == "__main__":
    app()
