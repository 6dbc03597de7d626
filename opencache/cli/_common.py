"""Helpers shared by the CLI commands."""

from __future__ import annotations

import logging

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape

from opencache.config import CacheConfig

console = Console()


def load_config(**overrides: object) -> CacheConfig:
    """Build ``CacheConfig`` from the environment, exiting 1 if invalid."""
    try:
        config = CacheConfig()
    except ValidationError as exc:
        console.print(f"[bold red]Invalid configuration:[/bold red] {escape(str(exc))}")
        raise typer.Exit(code=1)
    updates = {k: v for k, v in overrides.items() if v is not None}
    return config.model_copy(update=updates) if updates else config


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def require_github(config: CacheConfig, *, token: bool = True) -> None:
    """Exit with usage help unless the GitHub settings are present."""
    missing = []
    if not config.github_owner:
        missing.append("GITHUB_OWNER")
    if not config.github_repo:
        missing.append("GITHUB_REPO")
    if token and not config.github_token:
        missing.append("GITHUB_TOKEN")
    if not missing:
        return
    console.print(f"[bold red]Missing settings:[/bold red] {', '.join(missing)}")
    console.print(
        "[dim]GITHUB_OWNER / GITHUB_REPO name the repository holding the release; "
        "GITHUB_RELEASE_TAG selects the release (default: nix-cache).[/dim]"
    )
    raise typer.Exit(code=1)
