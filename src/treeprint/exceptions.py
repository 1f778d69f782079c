"""Error taxonomy for fingerprint construction and comparison."""

from pathlib import Path
from typing import Optional, Union


class TreeprintError(Exception):
    """Base exception for treeprint."""

    pass


class ReadError(TreeprintError):
    """Raised when a file cannot be read while hashing.

    The partial digest is discarded; the builder records the file as unreadable
    and continues with the next file.
    """

    def __init__(self, path: Union[str, Path], cause: Optional[BaseException] = None):
        self.path = str(path)
        self.cause = cause
        reason = f": {cause}" if cause else ""
        super().__init__(f"Failed to read {self.path}{reason}")


class WalkError(TreeprintError):
    """An entry the walker could not enumerate.

    The walker yields these as values instead of raising them, so a single
    unreadable directory does not end the walk.
    """

    def __init__(self, path: str, message: str):
        self.path = path
        self.message = message
        super().__init__(f"{path}: {message}")


class FormatError(TreeprintError):
    """Raised when a fingerprint artifact is corrupt or incompatible."""

    pass


class IntegrityError(FormatError):
    """Raised when the trailer of an artifact is missing, truncated or does not match."""

    pass


class ConfigError(TreeprintError):
    """Raised when scan configuration is invalid."""

    pass


class ScanCancelled(TreeprintError):
    """Raised when a scan was cancelled before it completed."""

    pass
