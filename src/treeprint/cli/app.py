from pathlib import Path
from typing import Optional

import logfire
import typer

from treeprint.utils import setup_logging


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:  # pragma: no cover
        import treeprint

        typer.echo(f"treeprint version: {treeprint.__version__}")
        raise typer.Exit()


app = typer.Typer(name="treeprint", no_args_is_help=True)


@app.callback()
def app_callback(
    ctx: typer.Context,
    log_level: str = typer.Option(
        "WARNING",
        "--log-level",
        help="Console log level (DEBUG, INFO, WARNING, ERROR)",
        envvar="TREEPRINT_LOG_LEVEL",
    ),
    log_file: Optional[Path] = typer.Option(
        None,
        "--log-file",
        help="Also write a debug log to this file",
        envvar="TREEPRINT_LOG_FILE",
    ),
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """treeprint - fingerprint file trees and compare them later."""
    if ctx.invoked_subcommand is None:  # pragma: no cover
        return

    setup_logging(level=log_level.upper(), log_file=log_file)
    # local spans only, nothing is sent anywhere
    logfire.configure(send_to_logfire=False, console=False)
