"""Utility functions for treeprint."""

import os
import sys
import unicodedata
from pathlib import Path, PurePath
from typing import List, Optional, Union

from loguru import logger


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Union[str, Path]] = None,
    console: bool = True,
) -> None:  # pragma: no cover
    """
    Configure loguru sinks for the application.

    Args:
        level: Minimum level for the console sink
        log_file: Optional file (relative paths are placed under the home directory)
        console: Whether to log to stderr at all
    """
    logger.remove()

    if console:
        logger.add(sys.stderr, level=level, backtrace=False, diagnose=False)

    if log_file:
        path = Path(log_file)
        if not path.is_absolute():
            path = Path.home() / path
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(path),
            level="DEBUG",
            rotation="10 MB",
            retention="10 days",
            enqueue=True,
            backtrace=True,
            diagnose=False,
        )


def normalize_path(path: Union[str, PurePath]) -> str:
    """
    Normalize a relative path to its canonical form:
    - Use "/" as separator regardless of platform
    - Compose unicode (NFC) so the same name from different filesystems compares equal
    - Drop empty and "." components
    """
    if isinstance(path, PurePath):
        parts = path.parts
    else:
        parts = path.replace(os.sep, "/").split("/")
    parts = [unicodedata.normalize("NFC", p) for p in parts if p not in ("", ".")]
    return "/".join(parts)


def path_key(path: str) -> List[str]:
    """Sort key for canonical order: lexicographic by path component.

    Examples:
        "a/b" sorts before "a.txt" because "a" < "a.txt"
        "a/z" sorts before "ab" because "a" < "ab"
    """
    return path.split("/")


def format_size(size: int) -> str:
    """Human readable byte count."""
    value = float(size)
    for unit in ("B", "KiB", "MiB", "GiB", "TiB"):
        if value < 1024 or unit == "TiB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{size} B"
