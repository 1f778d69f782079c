"""Scan command for treeprint CLI."""

import glob
from pathlib import Path
from typing import List, Optional

import typer
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.tree import Tree

from treeprint.builder import build_to_file
from treeprint.cli.app import app
from treeprint.config import DriveType, LinkPolicy, SpecialPolicy, TrustPolicy, load_config
from treeprint.exceptions import ConfigError, FormatError, ScanCancelled
from treeprint.models import BuildResult, WarningCategory
from treeprint.utils import format_size, normalize_path

console = Console()


def output_ignore_patterns(root: Path, output: Path) -> List[str]:
    """Keep the artifact being written out of its own scan."""
    try:
        relative = output.resolve().relative_to(root.resolve())
    except ValueError:
        return []
    rel = glob.escape(normalize_path(relative.as_posix()))
    parent, _, name = rel.rpartition("/")
    partial = f".{name}.partial"
    return [f"/{rel}", f"/{parent}/{partial}" if parent else f"/{partial}"]


def display_result(result: BuildResult, output: Path, verbose: bool = False, out: Optional[Console] = None):
    """Summarize a finished scan."""
    out = out or console
    stats = result.stats
    tree = Tree(f"[bold]{result.fingerprint.header.root}[/bold] -> {output}")

    tree.add(f"{stats.total_records} entries ({format_size(stats.bytes_hashed)} hashed)")
    parts = [f"[green]{stats.hashed} hashed[/green]"]
    if stats.reused:
        parts.append(f"[blue]{stats.reused} reused[/blue]")
    if stats.recorded:
        parts.append(f"{stats.recorded} recorded without content")
    if stats.unreadable:
        parts.append(f"[red]{stats.unreadable} unreadable[/red]")
    if stats.skipped:
        parts.append(f"[dim]{stats.skipped} skipped[/dim]")
    tree.add(", ".join(parts))

    if result.warnings:
        by_category = {}
        for warning in result.warnings:
            by_category.setdefault(warning.category, []).append(warning)

        for category in WarningCategory:
            warnings = by_category.get(category)
            if not warnings:
                continue
            branch = tree.add(f"[yellow]{len(warnings)} {category.value} warnings[/yellow]")
            if not verbose:
                continue
            for warning in warnings:
                branch.add(f"[yellow]{warning.path or '.'}[/yellow]: {warning.message}")

    out.print(Panel(tree, title="Fingerprint", expand=False))


@app.command()
def scan(
    root: Path = typer.Argument(
        ..., exists=True, file_okay=False, dir_okay=True, help="Directory to fingerprint"
    ),
    output: Path = typer.Option(
        ..., "--output", "-o", help="Artifact to write (gzip compressed when it ends in .gz)"
    ),
    previous: Optional[Path] = typer.Option(
        None, "--previous", "-p", exists=True, dir_okay=False, help="Earlier artifact to reuse digests from"
    ),
    trust: Optional[bool] = typer.Option(
        None, "--trust/--rehash", help="Reuse digests when size and mtime match, or hash every file"
    ),
    algorithm: Optional[str] = typer.Option(None, "--algorithm", "-a", help="Digest algorithm"),
    block_size: Optional[int] = typer.Option(None, "--block-size", help="Read size in bytes"),
    block_digests: Optional[bool] = typer.Option(
        None, "--block-digests/--no-block-digests", help="Store one digest per block"
    ),
    links: Optional[LinkPolicy] = typer.Option(None, "--links", help="Symlink policy"),
    special: Optional[SpecialPolicy] = typer.Option(None, "--special", help="Special file policy"),
    follow_symlinks: Optional[bool] = typer.Option(
        None, "--follow-symlinks/--no-follow-symlinks", help="Descend into linked directories"
    ),
    ignore: Optional[List[str]] = typer.Option(
        None, "--ignore", "-i", help="Gitignore-style pattern to skip (repeatable)"
    ),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", help="Concurrent hashing workers"),
    drive: Optional[DriveType] = typer.Option(None, "--drive", help="Storage type of the tree"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="List every warning"),
):
    """Fingerprint a directory tree into an artifact."""
    policy = None
    if trust is not None:
        policy = TrustPolicy.METADATA if trust else TrustPolicy.ALWAYS_REHASH

    try:
        config = load_config(
            algorithm=algorithm,
            block_size=block_size,
            block_digests=block_digests,
            trust=policy,
            links=links,
            special=special,
            follow_symlinks=follow_symlinks,
            workers=workers,
            drive=drive,
        )
    except ConfigError as e:
        logger.error(str(e))
        typer.echo(str(e), err=True)
        raise typer.Exit(1)

    config.ignore_patterns = [
        *config.ignore_patterns,
        *(ignore or []),
        *output_ignore_patterns(root, output),
    ]

    try:
        result = build_to_file(root, output, config, previous_path=previous)
    except (ScanCancelled, KeyboardInterrupt):
        typer.echo("Scan cancelled, no artifact written", err=True)
        raise typer.Exit(130)
    except FormatError as e:
        logger.error(f"Previous fingerprint is unusable: {e}")
        typer.echo(f"Previous fingerprint is unusable: {e}", err=True)
        raise typer.Exit(1)
    except OSError as e:
        logger.error(f"Error writing fingerprint: {e}")
        typer.echo(f"Error writing fingerprint: {e}", err=True)
        raise typer.Exit(1)

    display_result(result, output, verbose)
