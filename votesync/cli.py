from __future__ import annotations

import asyncio
import json
import logging
from datetime import UTC, datetime
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from votesync import services
from votesync.chain import EventFetcher
from votesync.config import Settings, get_settings, load_settings
from votesync.db import Database
from votesync.registry import RegistryCache
from votesync.scheduler import SyncScheduler

app = typer.Typer(help="Sync governor proposals and votes into a local store and query them")
console = Console()


def _configure_logging(*, verbose: int, json_output: bool) -> None:
    if verbose <= 0:
        level = logging.WARNING
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    handlers: list[logging.Handler]
    if json_output:
        handlers = [logging.StreamHandler()]
        fmt = "%(levelname)s: %(message)s"
    else:
        handlers = [RichHandler(console=console, show_time=True, show_path=False, markup=False)]
        fmt = "%(message)s"

    logging.basicConfig(level=level, format=fmt, handlers=handlers, force=True)


def _settings(ctx: typer.Context) -> Settings:
    return ctx.obj["settings"]


def _open_db(settings: Settings) -> Database:
    return Database.for_path(settings.database_path).open()


@app.callback()
def app_callback(
    ctx: typer.Context,
    config: str | None = typer.Option(None, "--config", help="YAML file with settings overrides."),
    db_path: str | None = typer.Option(None, "--db", help="SQLite database path."),
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON for scripting."),
    verbose: int = typer.Option(0, "-v", "--verbose", count=True, help="Increase log verbosity."),
) -> None:
    settings = load_settings(config) if config else get_settings()
    if db_path:
        settings = settings.model_copy(update={"database_path": Path(db_path).expanduser()})
    ctx.obj = {"settings": settings, "json_output": json_output}
    _configure_logging(verbose=verbose, json_output=json_output)


@app.command()
def serve(
    ctx: typer.Context,
    host: str | None = typer.Option(None, help="Bind address (defaults to settings.host)."),
    port: int | None = typer.Option(None, help="Port (defaults to settings.port)."),
    no_sync: bool = typer.Option(False, "--no-sync", help="Serve the store without running the scheduler."),
) -> None:
    """Run the read API with the periodic sync scheduler."""
    import uvicorn

    from votesync.app import create_app

    settings = _settings(ctx)
    api = create_app(settings, run_scheduler=not no_sync)
    uvicorn.run(api, host=host or settings.host, port=port or settings.port)


@app.command()
def sync(ctx: typer.Context) -> None:
    """Run one sync cycle and exit."""
    settings = _settings(ctx)

    async def _run():
        with _open_db(settings) as db:
            fetcher = EventFetcher(
                settings.rpc_url, settings.governor_address,
                max_block_span=settings.max_block_span, timeout=settings.request_timeout_seconds,
            )
            registry = RegistryCache(db, settings.registry_url, timeout=settings.request_timeout_seconds)
            return await SyncScheduler(db, fetcher, registry, settings).run_once("manual")

    result = asyncio.run(_run())
    if result is None:
        console.print("[red]Sync cycle failed; see log output.[/red]")
        raise typer.Exit(code=1)
    if ctx.obj["json_output"]:
        typer.echo(json.dumps({
            "head_block": result.head_block,
            "registry_records": result.registry_records,
            "proposals_added": result.proposals.added,
            "votes_added": result.votes.added,
            "votes_skipped": result.votes.skipped,
        }))
        return
    console.print(
        f"Synced to block {result.head_block}: "
        f"{result.proposals.added} new proposals, {result.votes.added} new votes"
    )


@app.command()
def proposals(ctx: typer.Context, limit: int = typer.Option(20, help="Rows to show.")) -> None:
    """Print synchronized proposals, newest first."""
    settings = _settings(ctx)
    with _open_db(settings) as db, db.session_scope() as session:
        items = services.list_proposals(session)
    if ctx.obj["json_output"]:
        typer.echo(json.dumps(items, indent=2))
        return

    table = Table(title=f"Proposals ({len(items)})")
    table.add_column("Created")
    table.add_column("Title")
    table.add_column("Proposer")
    table.add_column("Votes", justify="right")
    for name in services.SUPPORT_VALUES:
        table.add_column(name, justify="right")
    for item in items[:limit]:
        created = datetime.fromtimestamp(item["createdAt"], UTC).strftime("%Y-%m-%d")
        proposer = item["proposerName"] or item["proposerAddress"]
        table.add_row(
            created, item["title"], proposer, str(len(item["votes"])),
            *(f"{item['tally'][name]:,.2f}" for name in services.SUPPORT_VALUES),
        )
    console.print(table)


@app.command()
def status(ctx: typer.Context) -> None:
    """Show watermarks, row counts and the latest sync run."""
    settings = _settings(ctx)
    with _open_db(settings) as db, db.session_scope() as session:
        payload = services.sync_status(session, settings.start_block)
    if ctx.obj["json_output"]:
        typer.echo(json.dumps(payload, indent=2))
        return
    for stream, block in payload["watermarks"].items():
        console.print(f"{stream:<10} next block {block}")
    console.print(
        f"{payload['proposals']} proposals, {payload['votes']} votes, "
        f"{payload['orchestrators']} orchestrators"
    )
    run = payload["last_run"]
    if run:
        console.print(f"last run #{run['id']} ({run['trigger']}): {run['status']} {run['error_message']}".rstrip())


def main() -> None:
    app()


if __name__ == "__main__":
    main()
