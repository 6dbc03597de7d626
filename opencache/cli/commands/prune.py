"""``opencache prune`` — garbage-collect unreferenced NAR release assets."""

from __future__ import annotations

import asyncio

import typer
from rich.markup import escape
from rich.table import Table

from opencache.cli._common import console, load_config, require_github, setup_logging
from opencache.config import CacheConfig
from opencache.errors import CacheError
from opencache.models.release import PruneReport
from opencache.storage.github_releases import GitHubReleasesStorage


async def _prune(config: CacheConfig, retention_days: int, fetch: bool) -> PruneReport:
    async with GitHubReleasesStorage.from_config(config) as storage:
        if fetch:
            await storage.fetch_all_narinfo()
        return await storage.prune_assets(retention_days=retention_days)


def prune_cmd(
    retention_days: int = typer.Option(
        None,
        "--retention-days",
        "-r",
        min=0,
        help="Keep orphans younger than this many days (default: GITHUB_PRUNE_RETENTION_DAYS).",
    ),
    fetch: bool = typer.Option(
        True,
        "--fetch/--no-fetch",
        help="Aggregate narinfo from the release first so other jobs' NARs count as referenced.",
    ),
) -> None:
    """Delete release assets no local narinfo references."""
    config = load_config()
    setup_logging(config.log_level)
    require_github(config)

    days = config.github_prune_retention_days if retention_days is None else retention_days
    try:
        report = asyncio.run(_prune(config, days, fetch))
    except CacheError as exc:
        console.print(f"[bold red]Pruning failed:[/bold red] {escape(str(exc))}")
        raise typer.Exit(code=1)

    table = Table(title=f"Pruning {config.github_owner}/{config.github_repo} @ {config.github_release_tag}")
    table.add_column("Outcome", style="cyan")
    table.add_column("Assets", justify="right")
    table.add_row("[red]Deleted[/red]", str(len(report.deleted)))
    table.add_row("[yellow]Kept (orphaned)[/yellow]", str(len(report.kept)))
    table.add_row("[green]Referenced[/green]", str(len(report.referenced)))
    console.print(table)

    for name in report.deleted:
        console.print(f"  [red]- {name}[/red]")
    for name in report.kept:
        console.print(f"  [yellow]~ {name}[/yellow]")
