"""Verify and info commands for treeprint CLI."""

from pathlib import Path
from typing import Optional

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from treeprint.cli.app import app
from treeprint.codec import FingerprintReader
from treeprint.exceptions import FormatError, IntegrityError
from treeprint.models import FingerprintHeader
from treeprint.utils import format_size

console = Console()


def display_header(
    path: Path, header: FingerprintHeader, records: Optional[int] = None, out: Optional[Console] = None
):
    """Show artifact metadata as a table."""
    out = out or console
    table = Table(title=str(path), show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")

    table.add_row("Format version", str(header.format_version))
    table.add_row("Root", header.root)
    table.add_row("Created", header.created_at.isoformat())
    table.add_row("Algorithm", f"{header.algorithm} ({header.digest_size} bytes)")
    table.add_row("Block size", format_size(header.block_size))
    table.add_row("Block digests", "yes" if header.block_digests else "no")
    table.add_row("Integrity", header.integrity or "none")
    if records is not None:
        table.add_row("Records", str(records))
    out.print(table)


@app.command()
def verify(
    artifact: Path = typer.Argument(..., exists=True, dir_okay=False, help="Artifact to check"),
):
    """Check an artifact's structure, order and trailer digest."""
    reader = FingerprintReader(artifact)
    try:
        count = reader.verify()
    except IntegrityError as e:
        logger.error(f"Integrity check failed: {e}")
        console.print(f"[red]FAILED[/red] {artifact}: {e}")
        raise typer.Exit(1)
    except (FormatError, OSError) as e:
        logger.error(f"Cannot read fingerprint: {e}")
        console.print(f"[red]INVALID[/red] {artifact}: {e}")
        raise typer.Exit(1)

    console.print(f"[green]OK[/green] {artifact}: {count} records")


@app.command()
def info(
    artifact: Path = typer.Argument(..., exists=True, dir_okay=False, help="Artifact to describe"),
    count: bool = typer.Option(True, "--count/--no-count", help="Count records (reads the whole file)"),
):
    """Show an artifact's header and record count."""
    reader = FingerprintReader(artifact)
    try:
        header = reader.header
        records = reader.verify() if count else None
    except (FormatError, OSError) as e:
        logger.error(f"Cannot read fingerprint: {e}")
        typer.echo(f"Cannot read fingerprint: {e}", err=True)
        raise typer.Exit(1)

    display_header(artifact, header, records)
