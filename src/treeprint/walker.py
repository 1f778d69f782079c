"""Directory walking for fingerprint scans.

The walker yields one item per non-directory entry:
- WalkEntry with relative path, size, mtime and kind
- WalkError for entries that could not be enumerated

Errors are yielded instead of raised so one unreadable directory does not end
the walk. Linked directories are only entered when follow_symlinks is set, and
each directory identity (st_dev, st_ino) is visited at most once.
"""

import fnmatch
import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Optional, Set, Tuple, Union

from loguru import logger

from treeprint.exceptions import WalkError
from treeprint.models import EntryKind
from treeprint.utils import normalize_path


# Common directories and patterns to ignore by default
DEFAULT_IGNORE_PATTERNS = {
    ".DS_Store",
    "Thumbs.db",
}


@dataclass(frozen=True)
class WalkEntry:
    """Metadata of one entry as seen by the walker."""

    path: str  # canonical relative path
    size: int
    modified: int  # st_mtime_ns
    kind: EntryKind
    location: Optional[str] = None  # path on disk


WalkItem = Union[WalkEntry, WalkError]


def should_ignore_path(relative_path: str, ignore_patterns: Iterable[str]) -> bool:
    """Check if a relative path should be ignored based on gitignore-like patterns.

    Args:
        relative_path: Canonical relative path ("/" separated)
        ignore_patterns: Patterns to match against

    Returns:
        True if the path should be ignored, False otherwise
    """
    parts = relative_path.split("/")
    for pattern in ignore_patterns:
        # Handle patterns starting with / (root relative)
        if pattern.startswith("/"):
            root_pattern = pattern[1:]
            if root_pattern.endswith("/"):
                if parts and parts[0] == root_pattern[:-1]:
                    return True
            elif fnmatch.fnmatch(relative_path, root_pattern):
                return True
            continue

        # Directory patterns (ending with /)
        if pattern.endswith("/"):
            if pattern[:-1] in parts[:-1]:
                return True
            continue

        # Direct name match (e.g., ".git", "node_modules")
        if pattern in parts:
            return True

        if fnmatch.fnmatch(relative_path, pattern) or fnmatch.fnmatch(parts[-1], pattern):
            return True

    return False


def _is_encodable(name: str) -> bool:
    try:
        name.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def printable_path(path: str) -> str:
    """Path with undecodable bytes shown as backslash escapes, e.g. caf\\xe9.txt."""
    return os.fsencode(path).decode("utf-8", "backslashreplace")


def _kind_of(mode: int) -> Optional[EntryKind]:
    if stat.S_ISREG(mode):
        return EntryKind.FILE
    if stat.S_ISLNK(mode):
        return EntryKind.SYMLINK
    if stat.S_ISDIR(mode):
        return None
    return EntryKind.SPECIAL


def walk_tree(
    root: Union[str, Path],
    *,
    follow_symlinks: bool = False,
    ignore_patterns: Optional[Iterable[str]] = None,
) -> Iterator[WalkItem]:
    """
    Lazily walk a directory tree depth-first.

    Args:
        root: Directory to scan
        follow_symlinks: Descend into symlinked directories
        ignore_patterns: Extra patterns on top of DEFAULT_IGNORE_PATTERNS

    Yields:
        WalkEntry for files, symlinks and special files; WalkError on failures
    """
    root = Path(root)
    patterns = set(DEFAULT_IGNORE_PATTERNS) | set(ignore_patterns or ())
    visited: Set[Tuple[int, int]] = set()

    try:
        root_stat = root.stat()
    except OSError as e:
        yield WalkError("", f"cannot stat scan root {root}: {e}")
        return
    visited.add((root_stat.st_dev, root_stat.st_ino))

    # stack of (absolute dir, relative dir)
    stack = [(str(root), "")]
    while stack:
        directory, relative_dir = stack.pop()
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            logger.debug(f"Cannot list {directory}: {e}")
            yield WalkError(relative_dir, f"cannot list directory: {e}")
            continue

        subdirs = []
        for entry in entries:
            rel = normalize_path(f"{relative_dir}/{entry.name}" if relative_dir else entry.name)
            if not _is_encodable(entry.name):
                # bytes that are not UTF-8 arrive as lone surrogates
                yield WalkError(printable_path(rel), "name is not valid UTF-8, skipped")
                continue

            if should_ignore_path(rel, patterns):
                logger.debug(f"Ignoring {rel}")
                continue

            try:
                st = entry.stat(follow_symlinks=False)
            except OSError as e:
                yield WalkError(rel, f"cannot stat: {e}")
                continue

            kind = _kind_of(st.st_mode)
            if kind is None:
                subdirs.append((entry.path, rel, st))
                continue

            if kind == EntryKind.SYMLINK and follow_symlinks:
                try:
                    target = os.stat(entry.path)
                except OSError:
                    # dangling link, keep it as a link
                    target = None
                if target is not None and stat.S_ISDIR(target.st_mode):
                    subdirs.append((entry.path, rel, target))
                    continue

            yield WalkEntry(
                path=rel,
                size=st.st_size,
                modified=st.st_mtime_ns,
                kind=kind,
                location=entry.path,
            )

        # the first name to reach a directory claims it
        pending = []
        for path, rel, st in subdirs:
            identity = (st.st_dev, st.st_ino)
            if identity in visited:
                logger.debug(f"Skipping already visited directory {rel}")
                continue
            visited.add(identity)
            pending.append((path, rel))

        # reversed so the stack pops directories in name order
        stack.extend(reversed(pending))
