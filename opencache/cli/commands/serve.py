"""``opencache serve`` — run the binary cache HTTP endpoint."""

from __future__ import annotations

import logging

import typer

from opencache.cli._common import console, load_config, setup_logging

logger = logging.getLogger(__name__)


def serve_cmd(
    host: str = typer.Option(None, "--host", help="Bind address (default: HOST or 0.0.0.0)."),
    port: int = typer.Option(None, "--port", "-p", help="Listen port (default: PORT or 8080)."),
) -> None:
    """Serve the cache over HTTP with uvicorn."""
    import uvicorn

    from opencache.server import create_app

    config = load_config(host=host, port=port)
    setup_logging(config.log_level)

    console.print(f"[bold cyan]opencache listening on port {config.port}[/bold cyan]")
    console.print(f"  Storage backend: {config.storage_backend}")
    console.print(f"  Store dir:       {config.store_dir}")
    console.print(f"  Priority:        {config.cache_priority}")
    if config.signing_key:
        console.print(f"  Signing key:     {config.signing_key_name}")

    uvicorn.run(
        create_app(config),
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
    )
