"""Main Typer application — imports and registers all CLI commands.

Entry point: ``opencache`` (configured via pyproject.toml ``[project.scripts]``).
All settings come from the environment; see ``opencache.config.CacheConfig``.
"""

from __future__ import annotations

import typer

from opencache.cli.commands.keys import keygen_cmd, verify_cmd
from opencache.cli.commands.prune import prune_cmd
from opencache.cli.commands.serve import serve_cmd
from opencache.cli.commands.static import fetch_narinfo_cmd, generate_static_cmd

app = typer.Typer(
    name="opencache",
    help="opencache: Nix binary cache on local disk, S3 or GitHub Releases.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="serve", help="Serve the binary cache over HTTP.")(serve_cmd)
app.command(name="generate-static", help="Write a static snapshot of the cache.")(generate_static_cmd)
app.command(name="fetch-narinfo", help="Pull narinfo published by other jobs.")(fetch_narinfo_cmd)
app.command(name="prune", help="Delete unreferenced NAR release assets.")(prune_cmd)
app.command(name="keygen", help="Generate a signing key pair.")(keygen_cmd)
app.command(name="verify", help="Verify a narinfo signature.")(verify_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
