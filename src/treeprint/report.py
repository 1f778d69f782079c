"""Aggregation of a diff stream into a change report."""

from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Set

from treeprint.models import ChangeKind, DiffEntry


@dataclass
class MovedFile:
    """A file whose content reappeared under another path."""

    path: str
    moved_from: str
    digest: Optional[str] = None


@dataclass
class DiffSummary:
    """Report of changes between two fingerprints.

    Attributes:
        added: Paths only in the new fingerprint
        removed: Paths only in the old fingerprint
        modified: Paths in both whose content differs
        unknown: Subset of modified where one side was unreadable
        unchanged: Paths in both with identical content
        moved: new_path -> MovedFile
        digests: Current digests (hex) for added, modified and moved paths
    """

    added: Set[str] = field(default_factory=set)
    removed: Set[str] = field(default_factory=set)
    modified: Set[str] = field(default_factory=set)
    unknown: Set[str] = field(default_factory=set)
    unchanged: Set[str] = field(default_factory=set)
    moved: Dict[str, MovedFile] = field(default_factory=dict)
    digests: Dict[str, str] = field(default_factory=dict)
    unchanged_count: int = 0

    @property
    def total_changes(self) -> int:
        """Total number of paths that changed."""
        return len(self.added) + len(self.removed) + len(self.modified) + len(self.moved)

    @property
    def total(self) -> int:
        return self.total_changes + self.unchanged_count

    def add(self, entry: DiffEntry, keep_unchanged: bool = True) -> None:
        digest = entry.new.hexdigest if entry.new is not None else None
        if entry.change == ChangeKind.ADDED:
            self.added.add(entry.path)
        elif entry.change == ChangeKind.REMOVED:
            self.removed.add(entry.path)
        elif entry.change == ChangeKind.MODIFIED:
            self.modified.add(entry.path)
            if entry.unknown:
                self.unknown.add(entry.path)
        elif entry.change == ChangeKind.MOVED:
            self.moved[entry.path] = MovedFile(
                path=entry.path, moved_from=entry.old_path, digest=digest
            )
        else:
            self.unchanged_count += 1
            if keep_unchanged:
                self.unchanged.add(entry.path)
            return

        if digest:
            self.digests[entry.path] = digest

    @classmethod
    def collect(cls, entries: Iterable[DiffEntry], keep_unchanged: bool = True) -> "DiffSummary":
        """Consume a diff stream once.

        keep_unchanged=False keeps memory proportional to the change set.
        """
        summary = cls()
        for entry in entries:
            summary.add(entry, keep_unchanged=keep_unchanged)
        return summary
