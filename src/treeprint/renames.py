"""Move detection over a diff stream."""

from collections import defaultdict
from typing import Dict, Iterable, Iterator, List

from loguru import logger

from treeprint.models import ChangeKind, DiffEntry
from treeprint.utils import path_key


def _pairable(entry: DiffEntry) -> bool:
    record = entry.old if entry.change == ChangeKind.REMOVED else entry.new
    return record is not None and record.has_content


def classify_moves(entries: Iterable[DiffEntry]) -> Iterator[DiffEntry]:
    """
    Reclassify removed/added pairs with identical content as moves.

    Modified and unchanged entries pass straight through. Only removed and
    added entries are buffered, so memory follows the size of the change set
    rather than the tree.

    When several removed or added paths share a digest, they are paired in
    canonical path order and any excess stays plain removed/added.

    Yields:
        Pass-through entries as they arrive, then moves, then the remaining
        removed and added entries, each group in canonical order
    """
    removed: Dict[bytes, List[DiffEntry]] = defaultdict(list)
    added: Dict[bytes, List[DiffEntry]] = defaultdict(list)
    leftovers: List[DiffEntry] = []

    for entry in entries:
        if entry.change == ChangeKind.REMOVED and _pairable(entry):
            removed[entry.old.digest].append(entry)
        elif entry.change == ChangeKind.ADDED and _pairable(entry):
            added[entry.new.digest].append(entry)
        elif entry.change in (ChangeKind.REMOVED, ChangeKind.ADDED):
            leftovers.append(entry)
        else:
            yield entry

    moves: List[DiffEntry] = []
    for digest, old_entries in removed.items():
        new_entries = added.get(digest)
        if not new_entries:
            leftovers.extend(old_entries)
            continue

        old_entries.sort(key=lambda e: path_key(e.path))
        new_entries.sort(key=lambda e: path_key(e.path))
        pairs = min(len(old_entries), len(new_entries))
        for old_entry, new_entry in zip(old_entries[:pairs], new_entries[:pairs]):
            moves.append(
                DiffEntry(
                    ChangeKind.MOVED,
                    new_entry.path,
                    old=old_entry.old,
                    new=new_entry.new,
                    old_path=old_entry.path,
                )
            )
        leftovers.extend(old_entries[pairs:])
        leftovers.extend(new_entries[pairs:])
        del added[digest]

    for new_entries in added.values():
        leftovers.extend(new_entries)

    if moves:
        logger.debug(f"Detected {len(moves)} moved files")

    moves.sort(key=lambda e: path_key(e.old_path))
    yield from moves
    leftovers.sort(key=lambda e: (path_key(e.path), e.change != ChangeKind.REMOVED))
    yield from leftovers
