"""Data model for fingerprints and their comparison.

A Fingerprint is an ordered, immutable snapshot of a file tree:
1. One Record per file, in canonical path order (see utils.path_key)
2. A header describing how the records were produced
3. Records are created once by the builder and never mutated afterwards
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

FORMAT_VERSION = 1


class EntryKind(str, Enum):
    """Kind of filesystem entry a record describes."""

    FILE = "file"
    SYMLINK = "symlink"
    SPECIAL = "special"


@dataclass(frozen=True)
class Record:
    """One file's identity at scan time."""

    path: str
    size: int
    modified: int  # nanoseconds since the epoch
    kind: EntryKind = EntryKind.FILE
    digest: Optional[bytes] = None
    unreadable: bool = False
    blocks: Optional[Tuple[bytes, ...]] = None

    def __post_init__(self):
        if self.unreadable and self.digest is not None:
            raise ValueError(f"Unreadable record {self.path} cannot carry a digest")

    @property
    def hexdigest(self) -> Optional[str]:
        return self.digest.hex() if self.digest is not None else None

    @property
    def has_content(self) -> bool:
        """True when the record carries a usable content digest."""
        return self.digest is not None and not self.unreadable


class FingerprintHeader(BaseModel):
    """Header metadata of a fingerprint artifact."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    format_version: int = FORMAT_VERSION
    algorithm: str
    digest_size: int = Field(gt=0)
    root: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    block_size: int = Field(gt=0)
    block_digests: bool = False
    integrity: Optional[str] = "sha256"


@dataclass(frozen=True)
class Fingerprint:
    """A header plus its records in canonical order."""

    header: FingerprintHeader
    records: Tuple[Record, ...] = ()

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self):
        return iter(self.records)


class WarningCategory(str, Enum):
    READ = "read"
    WALK = "walk"


@dataclass(frozen=True)
class ScanWarning:
    """A per-entry problem recovered during a scan."""

    path: str
    category: WarningCategory
    message: str


class ChangeKind(str, Enum):
    """Classification of one path in a diff."""

    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"
    UNCHANGED = "unchanged"
    MOVED = "moved"


@dataclass(frozen=True)
class DiffEntry:
    """One classified path of a diff.

    For moves, `old_path` is the path in the old fingerprint and `path` the path
    in the new one. `unknown` marks a modification that could not be confirmed
    because one side was unreadable.
    """

    change: ChangeKind
    path: str
    old: Optional[Record] = None
    new: Optional[Record] = None
    unknown: bool = False
    old_path: Optional[str] = None

    @property
    def digest(self) -> Optional[bytes]:
        record = self.new if self.new is not None else self.old
        return record.digest if record is not None else None


@dataclass
class BuildStats:
    """Counters collected while building a fingerprint."""

    hashed: int = 0
    reused: int = 0
    recorded: int = 0  # entries kept without content digest
    unreadable: int = 0
    skipped: int = 0
    walk_errors: int = 0
    bytes_hashed: int = 0

    @property
    def total_records(self) -> int:
        return self.hashed + self.reused + self.recorded + self.unreadable


@dataclass
class BuildResult:
    """Fingerprint plus the warnings and stats of the scan that produced it."""

    fingerprint: Fingerprint
    warnings: list = field(default_factory=list)
    stats: BuildStats = field(default_factory=BuildStats)
