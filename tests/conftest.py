"""Common test fixtures."""

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, Union

import pytest

from treeprint.config import ScanConfig
from treeprint.models import EntryKind, FingerprintHeader, Record

# 2023-11-14T22:13:20Z, in nanoseconds
FIXED_MTIME = 1_700_000_000_000_000_000


def write_file(path: Path, content: Union[str, bytes] = "test content", mtime: int = FIXED_MTIME) -> Path:
    """Create a file with given content and a fixed modification time."""
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, str):
        content = content.encode("utf-8")
    path.write_bytes(content)
    os.utime(path, ns=(mtime, mtime))
    return path


def make_tree(root: Path, files: Dict[str, Union[str, bytes]]) -> Path:
    """Create files relative to root."""
    root.mkdir(parents=True, exist_ok=True)
    for rel, content in files.items():
        write_file(root / rel, content)
    return root


def make_record(
    path: str,
    digest: Optional[bytes] = None,
    size: int = 10,
    kind: EntryKind = EntryKind.FILE,
    **kwargs,
) -> Record:
    """Record with a sha256-sized digest padded from a short label."""
    if digest is not None:
        digest = digest.ljust(32, b"\0")
    return Record(path=path, size=size, modified=FIXED_MTIME, kind=kind, digest=digest, **kwargs)


@pytest.fixture
def header() -> FingerprintHeader:
    return FingerprintHeader(
        algorithm="sha256",
        digest_size=32,
        root="/data",
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        block_size=1024 * 1024,
    )


@pytest.fixture
def config() -> ScanConfig:
    """Scan config independent of the environment."""
    return ScanConfig(workers=2, _env_file=None)


@pytest.fixture
def tree(tmp_path: Path) -> Path:
    """Small tree with nested directories."""
    return make_tree(
        tmp_path / "tree",
        {
            "a.txt": "alpha",
            "b.txt": "bravo",
            "docs/readme.md": "# readme",
            "docs/guide/intro.md": "intro",
            "empty.bin": b"",
        },
    )


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep TREEPRINT_* variables of the developer's shell out of tests."""
    for key in list(os.environ):
        if key.startswith("TREEPRINT_"):
            monkeypatch.delenv(key)
