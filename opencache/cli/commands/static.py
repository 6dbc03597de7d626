"""``opencache generate-static`` and ``opencache fetch-narinfo``.

With the ``github-releases`` backend and a token configured, every
``.narinfo`` asset on the release is pulled into the local narinfo
directory first, so the snapshot includes paths pushed by other matrix jobs
and earlier runs.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer
from rich.markup import escape
from rich.panel import Panel

from opencache.cli._common import console, load_config, require_github, setup_logging
from opencache.config import CacheConfig
from opencache.errors import CacheError
from opencache.static_site import generate_static_site
from opencache.storage.github_releases import GitHubReleasesStorage, release_download_base


async def _fetch_all(config: CacheConfig) -> int:
    async with GitHubReleasesStorage.from_config(config) as storage:
        return await storage.fetch_all_narinfo()


def fetch_narinfo_cmd() -> None:
    """Download every narinfo published on the release that is missing locally."""
    config = load_config()
    setup_logging(config.log_level)
    require_github(config)
    try:
        fetched = asyncio.run(_fetch_all(config))
    except CacheError as exc:
        console.print(f"[bold red]Fetch failed:[/bold red] {escape(str(exc))}")
        raise typer.Exit(code=1)
    console.print(f"[green]Fetched {fetched} narinfo file(s).[/green]")


def generate_static_cmd(
    output_dir: Path = typer.Option(
        None, "--output", "-o", help="Output directory (default: OUTPUT_DIR or ./static-cache)."
    ),
    fetch: bool = typer.Option(
        True,
        "--fetch/--no-fetch",
        help="Aggregate narinfo from the release before generating.",
    ),
) -> None:
    """Generate a static, CDN-deployable snapshot of the cache."""
    config = load_config(output_dir=output_dir)
    setup_logging(config.log_level)
    require_github(config, token=False)

    if fetch and config.storage_backend == "github-releases" and config.github_token:
        try:
            asyncio.run(_fetch_all(config))
        except CacheError as exc:
            console.print(f"[bold red]Fetching narinfo failed:[/bold red] {escape(str(exc))}")
            raise typer.Exit(code=1)

    narinfo_dir = config.local_storage_path / "narinfo"
    console.print("[bold cyan]Generating static Nix binary cache site...[/bold cyan]")
    console.print(f"  Source narinfo dir: {narinfo_dir}")
    console.print(f"  Output dir:         {config.output_dir}")
    console.print(
        f"  GitHub:             {config.github_owner}/{config.github_repo} "
        f"@ {config.github_release_tag}"
    )

    result = generate_static_site(
        narinfo_dir,
        config.output_dir,
        release_download_base(
            config.github_web_url,
            config.github_owner,
            config.github_repo,
            config.github_release_tag,
        ),
        store_dir=config.store_dir,
        priority=config.cache_priority,
    )

    console.print()
    console.print(
        Panel(
            "\n".join([
                f"[bold green]Generated {result.narinfo_count} narinfo file(s)[/bold green]",
                "",
                f"[bold]NAR redirects:[/bold] {result.nar_base_url}",
                f"[bold]Static site:[/bold]   {result.output_dir}",
                "",
                "[dim]Deploy this directory to your static hosting provider.[/dim]",
            ]),
            title="[bold]Static Cache[/bold]",
            border_style="green",
            padding=(1, 2),
        )
    )
