"""``opencache keygen`` and ``opencache verify`` — signing key utilities."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.markup import escape

from opencache.cli._common import console
from opencache.core.signing import generate_keypair, parse_public_key, verify_narinfo
from opencache.errors import InvalidKeyFormat
from opencache.models.narinfo import NarinfoRecord


def keygen_cmd(
    name: str = typer.Argument(..., help="Key name, e.g. cache.example.org-1."),
    secret_file: Path = typer.Option(None, "--secret-file", help="Write the secret key here."),
    public_file: Path = typer.Option(None, "--public-file", help="Write the public key here."),
) -> None:
    """Generate an Ed25519 key pair in Nix's ``<name>:<base64>`` format."""
    try:
        secret, public = generate_keypair(name)
    except InvalidKeyFormat as exc:
        console.print(f"[bold red]{escape(str(exc))}[/bold red]")
        raise typer.Exit(code=1)

    if secret_file is not None:
        secret_file.write_text(secret, encoding="utf-8")
        secret_file.chmod(0o600)
        console.print(f"Secret key written to {secret_file}")
    else:
        typer.echo(f"SIGNING_KEY={secret}")

    if public_file is not None:
        public_file.write_text(public, encoding="utf-8")
        console.print(f"Public key written to {public_file}")
    else:
        typer.echo(f"trusted-public-keys = {public}")


def verify_cmd(
    narinfo_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="narinfo to check."),
    public_key: str = typer.Option(..., "--public-key", "-k", help="<name>:<base64> public key."),
) -> None:
    """Check whether a narinfo carries a valid signature for PUBLIC_KEY."""
    try:
        parse_public_key(public_key)
    except InvalidKeyFormat as exc:
        console.print(f"[bold red]Invalid public key:[/bold red] {escape(str(exc))}")
        raise typer.Exit(code=1)

    try:
        record = NarinfoRecord.parse(narinfo_file.read_text(encoding="utf-8"))
    except ValueError as exc:
        console.print(f"[bold red]Malformed narinfo:[/bold red] {escape(str(exc))}")
        raise typer.Exit(code=1)

    valid = any(verify_narinfo(record, sig, public_key) for sig in record.signatures)
    if not valid:
        console.print(f"[bold red]No valid signature[/bold red] for {record.store_path}")
        raise typer.Exit(code=1)
    console.print(f"[bold green]Signature valid[/bold green] for {record.store_path}")
