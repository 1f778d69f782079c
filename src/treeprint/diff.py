"""Streaming comparison of two fingerprints."""

from pathlib import Path
from typing import Iterable, Iterator, Optional, Union

from loguru import logger

from treeprint.codec import FingerprintReader
from treeprint.exceptions import FormatError
from treeprint.models import ChangeKind, DiffEntry, Record
from treeprint.renames import classify_moves
from treeprint.utils import path_key

_END = object()


def compare_records(old: Record, new: Record) -> DiffEntry:
    """Classify one path present on both sides."""
    path = new.path
    if old.unreadable or new.unreadable:
        return DiffEntry(ChangeKind.MODIFIED, path, old=old, new=new, unknown=True)
    if old.kind != new.kind:
        return DiffEntry(ChangeKind.MODIFIED, path, old=old, new=new)

    if old.digest is not None and new.digest is not None:
        same = old.digest == new.digest
    elif old.digest is None and new.digest is None:
        # recorded links and special files carry no content
        same = old.size == new.size and old.modified == new.modified
    else:
        # one side recorded without content, e.g. link policy changed between scans
        return DiffEntry(ChangeKind.MODIFIED, path, old=old, new=new, unknown=True)

    change = ChangeKind.UNCHANGED if same else ChangeKind.MODIFIED
    return DiffEntry(change, path, old=old, new=new)


class _Cursor:
    """Single-record lookahead over a record stream that checks canonical order."""

    def __init__(self, records: Iterable[Record], side: str):
        self._it = iter(records)
        self.side = side
        self.record: Optional[Record] = None
        self.key = None
        self.advance()

    @property
    def done(self) -> bool:
        return self.record is None

    def advance(self) -> None:
        nxt = next(self._it, _END)
        if nxt is _END:
            self.record = None
            self.key = None
            return
        key = path_key(nxt.path)
        if self.key is not None and key <= self.key:
            raise FormatError(f"{self.side} records are not in canonical order at {nxt.path}")
        self.record = nxt
        self.key = key


def diff_records(old: Iterable[Record], new: Iterable[Record]) -> Iterator[DiffEntry]:
    """
    Merge-join two record streams in canonical order.

    Classification:
    - only in old: removed
    - only in new: added
    - in both: unchanged or modified (unknown when either side is unreadable)

    Runs in O(n + m) time and holds only the current record of each side.

    Raises:
        FormatError: If either stream is out of canonical order
    """
    left = _Cursor(old, "old")
    right = _Cursor(new, "new")

    while not left.done or not right.done:
        if right.done or (not left.done and left.key < right.key):
            yield DiffEntry(ChangeKind.REMOVED, left.record.path, old=left.record)
            left.advance()
        elif left.done or right.key < left.key:
            yield DiffEntry(ChangeKind.ADDED, right.record.path, new=right.record)
            right.advance()
        else:
            yield compare_records(left.record, right.record)
            left.advance()
            right.advance()


def diff_fingerprints(
    old_path: Union[str, Path],
    new_path: Union[str, Path],
    detect_moves: bool = True,
) -> Iterator[DiffEntry]:
    """
    Compare two stored artifacts.

    Both artifacts are verified before the first entry is produced.

    Raises:
        FormatError: If either artifact is corrupt or they use different digests
    """
    old_reader = FingerprintReader(old_path)
    new_reader = FingerprintReader(new_path)
    old_header, new_header = old_reader.header, new_reader.header
    if old_header.algorithm != new_header.algorithm:
        raise FormatError(
            f"Cannot compare fingerprints made with {old_header.algorithm} and {new_header.algorithm}"
        )

    logger.debug(f"Comparing {old_path} ({old_header.root}) with {new_path} ({new_header.root})")
    entries = diff_records(old_reader.records(), new_reader.records())
    if detect_moves:
        entries = classify_moves(entries)
    return entries
