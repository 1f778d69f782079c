"""Diff command for treeprint CLI."""

from pathlib import Path
from typing import Dict, Optional, Set

import typer
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.tree import Tree

from treeprint.cli.app import app
from treeprint.diff import diff_fingerprints
from treeprint.exceptions import FormatError
from treeprint.report import DiffSummary, MovedFile

console = Console()


def _split(path: str):
    parts = path.split("/", 1)
    dir_name = parts[0] if len(parts) > 1 else ""
    file_name = parts[1] if len(parts) > 1 else parts[0]
    return dir_name, file_name


def add_files_to_tree(
    tree: Tree, paths: Set[str], style: str, digests: Optional[Dict[str, str]] = None
):
    """Add files to tree, grouped by top-level directory."""
    by_dir = {}
    for path in paths:
        dir_name, file_name = _split(path)
        by_dir.setdefault(dir_name, []).append((file_name, path))

    for dir_name, files in sorted(by_dir.items()):
        branch = tree.add(f"[bold]{dir_name}/[/bold]") if dir_name else tree
        for file_name, full_path in sorted(files):
            if digests and full_path in digests:
                branch.add(f"[{style}]{file_name}[/{style}] ({digests[full_path][:8]})")
            else:
                branch.add(f"[{style}]{file_name}[/{style}]")


def add_moves_to_tree(tree: Tree, moves: Dict[str, MovedFile]):
    """Add moved files to tree, grouped by top-level directory."""
    by_dir = {}
    for new_path, moved in moves.items():
        dir_name, file_name = _split(new_path)
        by_dir.setdefault(dir_name, []).append((file_name, moved))

    for dir_name, entries in sorted(by_dir.items()):
        branch = tree.add(f"[bold]{dir_name}/[/bold]") if dir_name else tree
        for file_name, moved in sorted(entries, key=lambda e: e[0]):
            digest = f" ({moved.digest[:8]})" if moved.digest else ""
            branch.add(f"[blue]{file_name}[/blue]{digest} (from {moved.moved_from})")


def display_changes(
    title: str,
    changes: DiffSummary,
    verbose: bool = False,
    show_unchanged: bool = False,
    out: Optional[Console] = None,
):
    """Display a diff summary as a rich tree."""
    out = out or console
    tree = Tree(title)

    if changes.total_changes == 0:
        tree.add(f"No changes ({changes.unchanged_count} unchanged)")
        out.print(Panel(tree, expand=False))
        return

    if not verbose:
        # Compact display: counts per top-level directory
        by_dir = {}
        for change_type, paths in [
            ("added", changes.added),
            ("modified", changes.modified),
            ("removed", changes.removed),
            ("moved", set(changes.moved.keys())),
        ]:
            for path in paths:
                dir_name = path.split("/", 1)[0] if "/" in path else "."
                by_dir.setdefault(dir_name, {"added": 0, "modified": 0, "removed": 0, "moved": 0})
                by_dir[dir_name][change_type] += 1

        for dir_name, counts in sorted(by_dir.items()):
            summary_parts = []
            if counts["added"]:
                summary_parts.append(f"[green]+{counts['added']} added[/green]")
            if counts["modified"]:
                summary_parts.append(f"[yellow]~{counts['modified']} modified[/yellow]")
            if counts["removed"]:
                summary_parts.append(f"[red]-{counts['removed']} removed[/red]")
            if counts["moved"]:
                summary_parts.append(f"[blue]->{counts['moved']} moved[/blue]")
            label = dir_name if dir_name == "." else f"{dir_name}/"
            tree.add(f"[bold]{label}[/bold] {' '.join(summary_parts)}")
    else:
        summary = []
        if changes.added:
            summary.append(f"[green]{len(changes.added)} added[/green]")
        if changes.modified:
            summary.append(f"[yellow]{len(changes.modified)} modified[/yellow]")
        if changes.removed:
            summary.append(f"[red]{len(changes.removed)} removed[/red]")
        if changes.moved:
            summary.append(f"[blue]{len(changes.moved)} moved[/blue]")
        tree.add(f"Found {', '.join(summary)}")

        if changes.added:
            branch = tree.add("[green]Added[/green]")
            add_files_to_tree(branch, changes.added, "green", changes.digests)

        if changes.modified:
            branch = tree.add("[yellow]Modified[/yellow]")
            add_files_to_tree(branch, changes.modified - changes.unknown, "yellow", changes.digests)
            if changes.unknown:
                unknown = branch.add("[magenta]Unreadable on one side[/magenta]")
                add_files_to_tree(unknown, changes.unknown, "magenta")

        if changes.removed:
            branch = tree.add("[red]Removed[/red]")
            add_files_to_tree(branch, changes.removed, "red")

        if changes.moved:
            branch = tree.add("[blue]Moved[/blue]")
            add_moves_to_tree(branch, changes.moved)

    if show_unchanged and changes.unchanged:
        branch = tree.add(f"[dim]Unchanged ({len(changes.unchanged)})[/dim]")
        add_files_to_tree(branch, changes.unchanged, "dim")
    elif changes.unchanged_count:
        tree.add(f"[dim]{changes.unchanged_count} unchanged[/dim]")

    out.print(Panel(tree, expand=False))


@app.command()
def diff(
    old: Path = typer.Argument(..., exists=True, dir_okay=False, help="Earlier artifact"),
    new: Path = typer.Argument(..., exists=True, dir_okay=False, help="Later artifact"),
    moves: bool = typer.Option(True, "--moves/--no-moves", help="Pair removed and added files by digest"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show every changed path"),
    show_unchanged: bool = typer.Option(False, "--show-unchanged", help="List unchanged paths too"),
    exit_code: bool = typer.Option(
        False, "--exit-code", help="Exit with status 1 when the fingerprints differ"
    ),
):
    """Compare two fingerprint artifacts."""
    try:
        entries = diff_fingerprints(old, new, detect_moves=moves)
        changes = DiffSummary.collect(entries, keep_unchanged=show_unchanged)
    except FormatError as e:
        logger.error(f"Cannot compare fingerprints: {e}")
        typer.echo(f"Cannot compare fingerprints: {e}", err=True)
        raise typer.Exit(2)
    except OSError as e:
        logger.error(f"Error reading fingerprint: {e}")
        typer.echo(f"Error reading fingerprint: {e}", err=True)
        raise typer.Exit(2)

    display_changes(f"{old} -> {new}", changes, verbose=verbose, show_unchanged=show_unchanged)

    if exit_code and changes.total_changes:
        raise typer.Exit(1)
