"""Content hashing for fingerprint records."""

import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Optional, Tuple, Union

from loguru import logger

from treeprint.config import DEFAULT_ALGORITHM, DEFAULT_BLOCK_SIZE, ScanConfig
from treeprint.exceptions import ReadError


@dataclass(frozen=True)
class HashResult:
    """Digest of one byte stream."""

    digest: bytes
    size: int
    blocks: Optional[Tuple[bytes, ...]] = None


class ContentHasher:
    """
    Streams bytes in fixed-size blocks and produces a content digest.

    Features:
    - Memory bounded by block_size regardless of file size
    - Optional per-block digests alongside the file digest
    - Identical content always yields an identical digest
    """

    def __init__(
        self,
        algorithm: str = DEFAULT_ALGORITHM,
        block_size: int = DEFAULT_BLOCK_SIZE,
        block_digests: bool = False,
    ):
        self.algorithm = algorithm
        self.block_size = block_size
        self.block_digests = block_digests
        # fail early on unknown names
        self.digest_size = hashlib.new(algorithm).digest_size

    @classmethod
    def from_config(cls, config: ScanConfig) -> "ContentHasher":
        return cls(
            algorithm=config.algorithm,
            block_size=config.block_size,
            block_digests=config.block_digests,
        )

    def hash_bytes(self, data: bytes) -> bytes:
        """Digest of in-memory content."""
        return hashlib.new(self.algorithm, data).digest()

    def hash_stream(self, stream: BinaryIO) -> HashResult:
        """
        Hash a readable binary stream until EOF.

        Args:
            stream: Binary stream positioned at the start of the content

        Returns:
            HashResult with the file digest and, if enabled, the block digests

        Raises:
            OSError: Propagated from the stream; callers turn it into ReadError
        """
        file_hash = hashlib.new(self.algorithm)
        blocks = [] if self.block_digests else None
        size = 0

        while chunk := stream.read(self.block_size):
            file_hash.update(chunk)
            size += len(chunk)
            if blocks is not None:
                blocks.append(hashlib.new(self.algorithm, chunk).digest())

        return HashResult(
            digest=file_hash.digest(),
            size=size,
            blocks=tuple(blocks) if blocks is not None else None,
        )

    def hash_file(self, path: Union[str, Path], expected_size: Optional[int] = None) -> HashResult:
        """
        Hash a file's content.

        Args:
            path: File to read
            expected_size: Size reported by the walker; a mismatch means the file
                changed while it was being read

        Raises:
            ReadError: If the file cannot be opened or read completely
        """
        try:
            with open(path, "rb") as f:
                result = self.hash_stream(f)
        except OSError as e:
            logger.debug(f"Read failed for {path}: {e}")
            raise ReadError(path, e) from e

        if expected_size is not None and result.size != expected_size:
            logger.debug(f"{path} changed size during read: {expected_size} -> {result.size}")
            raise ReadError(path, OSError(f"size changed during read ({expected_size} -> {result.size})"))

        return result
