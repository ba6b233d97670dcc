"""
CLI for the mechanics cache.
"""
import asyncio
import functools
import json
from datetime import timedelta
from pathlib import Path
from typing import Optional

import click
import structlog
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
)
from rich.table import Table

from mechanics_sync.catalog import catalog_ids, load_catalog, unique_mechanics
from mechanics_sync.clients import BGGClient
from mechanics_sync.config import get_settings
from mechanics_sync.exceptions import MechanicsSyncError
from mechanics_sync.ingestion import (
    EnrichmentOrchestrator,
    MigrationMerger,
    needs_refresh,
    snapshot_mechanics,
)
from mechanics_sync.models import EnrichmentResult
from mechanics_sync.storage import FileCacheStore
from mechanics_sync.utils import setup_logging

console = Console()
logger = structlog.get_logger()


def async_command(f):
    """Decorator to run async functions in click commands."""
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        return asyncio.run(f(*args, **kwargs))
    return wrapper


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option(
    "--cache-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Mechanics cache file (defaults to MECHANICS_CACHE_FILE)",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, cache_file: Optional[Path]):
    """Board game cafe mechanics cache CLI."""
    settings = get_settings()
    setup_logging(
        level="DEBUG" if verbose else settings.log_level,
        format_type="console" if verbose else settings.log_format,
    )
    ctx.ensure_object(dict)
    ctx.obj["store"] = FileCacheStore(cache_file or settings.mechanics_cache_file)


@cli.command()
@click.option("--game", "game_id", default=None, help="Show mechanics for one game id")
@click.pass_context
@async_command
async def status(ctx: click.Context, game_id: Optional[str]):
    """Show cache freshness and contents."""
    store: FileCacheStore = ctx.obj["store"]
    cache = await store.load()

    if game_id:
        names = cache.mechanics.get(game_id)
        if names:
            console.print(f"[bold]{game_id}[/bold]: {', '.join(names)}")
        else:
            console.print(f"[dim]{game_id}: no mechanics data[/dim]")
        return

    table = Table(title="Mechanics Cache")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("File", str(store.path))
    table.add_row("Last updated", cache.last_updated or "Never")
    table.add_row("Games in cache", str(len(cache.mechanics)))
    table.add_row("Distinct mechanics", str(len(unique_mechanics(cache.mechanics))))
    threshold = timedelta(hours=get_settings().cache_staleness_hours)
    stale = needs_refresh(cache.last_updated, threshold=threshold)
    table.add_row("Needs update", "yes" if stale else "no")
    console.print(table)


@cli.command()
@click.argument("game_ids", nargs=-1)
@click.option("--csv", "csv_path", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              default=None, help="Collection CSV export to read game ids from")
@click.option("--username", default=None, help="BGG user whose collection to enrich")
@click.option("--force", is_flag=True, help="Refresh even if the cache is still fresh")
@click.option("--missing-only", is_flag=True, help="Only fetch games with no cached mechanics")
@click.pass_context
@async_command
async def refresh(
    ctx: click.Context,
    game_ids: tuple[str, ...],
    csv_path: Optional[Path],
    username: Optional[str],
    force: bool,
    missing_only: bool,
):
    """Fetch mechanics from BGG for GAME_IDS (or the whole catalog)."""
    store: FileCacheStore = ctx.obj["store"]

    async with BGGClient() as client:
        ids = list(game_ids)
        if not ids:
            try:
                items = await load_catalog(client, csv_path=csv_path, username=username)
            except (OSError, ValueError, MechanicsSyncError) as e:
                console.print(f"[red]✗ Could not load catalog: {e}[/red]")
                raise SystemExit(1)
            ids = catalog_ids(items)

        console.print(Panel(f"Refreshing mechanics for {len(ids)} games", style="bold blue"))

        orchestrator = EnrichmentOrchestrator(store, client)
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TaskProgressColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Fetching from BoardGameGeek...", total=None)

            def on_progress(position: int, total: int, game_id: str) -> None:
                progress.update(
                    task,
                    total=total,
                    completed=position - 1,
                    description=f"Fetching {game_id}",
                )

            try:
                result = await orchestrator.refresh(
                    ids,
                    force=force,
                    only_missing=missing_only,
                    on_progress=on_progress,
                )
            except MechanicsSyncError as e:
                progress.update(task, description=f"[red]Refresh failed: {e}")
                console.print(f"[red]✗ Refresh failed: {e}[/red]")
                raise SystemExit(1)
            progress.update(
                task,
                total=result.total,
                completed=result.total,
                description="[green]✓ Refresh finished",
            )

    _display_result(result)


@cli.command()
@click.argument("snapshot", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
@async_command
async def migrate(ctx: click.Context, snapshot: Path):
    """Merge a client mechanics SNAPSHOT (JSON) into the cache."""
    store: FileCacheStore = ctx.obj["store"]

    try:
        payload = json.loads(snapshot.read_text(encoding="utf-8"))
        incoming = snapshot_mechanics(payload)
    except (json.JSONDecodeError, ValueError, AttributeError) as e:
        console.print(f"[red]✗ Invalid snapshot: {e}[/red]")
        raise SystemExit(1)

    try:
        result = await MigrationMerger(store).merge(incoming)
    except MechanicsSyncError as e:
        console.print(f"[red]✗ Migration failed: {e}[/red]")
        raise SystemExit(1)

    console.print(f"[green]✓ Migrated {result.merged} games ({result.total} in cache)[/green]")


@cli.command()
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
@async_command
async def clear(ctx: click.Context, yes: bool):
    """Delete the mechanics cache file."""
    store: FileCacheStore = ctx.obj["store"]
    if not yes and not click.confirm(
        "Clear the mechanics cache? All BGG data will have to be fetched again.",
        default=False,
    ):
        console.print("[yellow]Cancelled[/yellow]")
        return
    await store.clear()
    console.print("[green]✓ Cache cleared[/green]")


@cli.command()
@click.argument("game_id")
@async_command
async def thumbnail(game_id: str):
    """Print the BGG thumbnail URL for GAME_ID."""
    async with BGGClient() as client:
        url = await client.fetch_thumbnail(game_id)
    if url:
        console.print(url)
    else:
        console.print(f"[dim]No thumbnail for {game_id}[/dim]")


@cli.command()
@click.option("--host", default="0.0.0.0", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
def serve(host: str, port: int):
    """Run the HTTP API."""
    import uvicorn

    uvicorn.run("mechanics_sync.main:app", host=host, port=port)


def _display_result(result: EnrichmentResult) -> None:
    if result.skipped:
        console.print(
            f"[yellow]Cache is still fresh (last updated {result.last_updated}); "
            f"use --force to refresh anyway[/yellow]"
        )
        return

    table = Table(title="Refresh Results")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green", justify="right")
    table.add_row("Updated", str(result.updated))
    table.add_row("Failed", str(result.failed))
    table.add_row("Total", str(result.total))
    table.add_row("Last updated", result.last_updated or "-")
    console.print(table)


if __name__ == "__main__":
    cli()
