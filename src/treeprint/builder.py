"""Service for building fingerprints from a directory walk."""

import asyncio
import os
import stat
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

import logfire
from loguru import logger

from treeprint.codec import FingerprintReader, write_fingerprint
from treeprint.config import LinkPolicy, ScanConfig, SpecialPolicy, TrustPolicy
from treeprint.exceptions import ReadError, ScanCancelled, WalkError
from treeprint.hasher import ContentHasher
from treeprint.models import (
    BuildResult,
    BuildStats,
    EntryKind,
    Fingerprint,
    FingerprintHeader,
    Record,
    ScanWarning,
    WarningCategory,
)
from treeprint.utils import path_key
from treeprint.walker import WalkEntry, WalkItem, walk_tree

PreviousFingerprint = Union[Fingerprint, FingerprintReader, Iterable[Record]]


class FingerprintBuilder:
    """
    Builds a Fingerprint from a stream of walker entries.

    Features:
    - Bounded work queue between the walker and a pool of hashing workers
    - Optional reuse of digests from a previous fingerprint (trust policy)
    - Explicit policies for symlinks and special files
    - Single sorting step so records always come out in canonical order

    The previous fingerprint is only read. Per-file failures become warnings,
    they never fail the build.
    """

    def __init__(
        self,
        root: Union[str, Path],
        config: ScanConfig,
        previous: Optional[PreviousFingerprint] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ):
        self.root = Path(root)
        self.config = config
        self.previous = previous
        self.hasher = ContentHasher.from_config(config)
        self.stats = BuildStats()
        self.warnings: List[ScanWarning] = []
        self._cancel = cancel_event or asyncio.Event()
        self._reuse_index: Dict[str, Record] = {}

    def cancel(self) -> None:
        """Stop enqueuing files; in-flight hashes finish, then build() raises ScanCancelled."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def _warn(self, path: str, category: WarningCategory, message: str) -> None:
        logger.warning(f"{category.value} error: {path}: {message}")
        self.warnings.append(ScanWarning(path=path, category=category, message=message))

    # -------- Reuse cache --------

    def _previous_compatible(self, header: Optional[FingerprintHeader]) -> bool:
        if header is None:
            return True
        if header.algorithm != self.config.algorithm:
            logger.warning(
                f"Previous fingerprint uses {header.algorithm}, not {self.config.algorithm}; "
                "every file will be hashed"
            )
            return False
        if self.config.block_digests and (
            not header.block_digests or header.block_size != self.config.block_size
        ):
            logger.warning("Previous fingerprint has no matching block digests; every file will be hashed")
            return False
        return True

    def _load_previous(self) -> None:
        if self.previous is None or self.config.trust == TrustPolicy.ALWAYS_REHASH:
            return

        header = None
        records: Iterable[Record] = self.previous
        if isinstance(self.previous, Fingerprint):
            header = self.previous.header
        elif isinstance(self.previous, FingerprintReader):
            header = self.previous.header
            records = self.previous.records()

        if not self._previous_compatible(header):
            return

        digest_size = self.hasher.digest_size
        for record in records:
            if record.kind == EntryKind.FILE and record.has_content and len(record.digest) == digest_size:
                self._reuse_index[record.path] = record
        logger.debug(f"Loaded {len(self._reuse_index)} reusable records")

    def _reuse(self, entry: WalkEntry) -> Optional[Record]:
        """Copy the previous digest when size and mtime are unchanged."""
        previous = self._reuse_index.get(entry.path)
        if previous is None:
            return None
        if previous.size != entry.size or previous.modified != entry.modified:
            return None
        if self.config.block_digests and previous.blocks is None:
            return None
        return Record(
            path=entry.path,
            size=entry.size,
            modified=entry.modified,
            kind=EntryKind.FILE,
            digest=previous.digest,
            blocks=previous.blocks if self.config.block_digests else None,
        )

    # -------- Hashing --------

    def _location(self, entry: WalkEntry) -> str:
        return entry.location or str(self.root / entry.path)

    def _hash_entry(self, entry: WalkEntry) -> Tuple[Record, Optional[ReadError]]:
        """Hash one entry; runs in a worker thread.

        A link whose target is a directory, device, pipe or socket is kept as a
        link without content; the target is never opened.
        """
        location = self._location(entry)
        size, modified = entry.size, entry.modified
        try:
            if entry.kind == EntryKind.SYMLINK:
                # hash what the link points to
                try:
                    target = os.stat(location)
                except OSError as e:
                    raise ReadError(entry.path, e) from e
                if not stat.S_ISREG(target.st_mode):
                    record = Record(path=entry.path, size=size, modified=modified, kind=entry.kind)
                    return record, None
                size, modified = target.st_size, target.st_mtime_ns
            result = self.hasher.hash_file(location, expected_size=size)
        except ReadError as e:
            record = Record(
                path=entry.path, size=size, modified=modified, kind=entry.kind, unreadable=True
            )
            return record, e

        record = Record(
            path=entry.path,
            size=size,
            modified=modified,
            kind=entry.kind,
            digest=result.digest,
            blocks=result.blocks,
        )
        return record, None

    async def _worker(self, queue: asyncio.Queue, records: List[Record]) -> None:
        while True:
            entry = await queue.get()
            try:
                if entry is None:
                    return
                record, error = await asyncio.to_thread(self._hash_entry, entry)
                records.append(record)
                if error is not None:
                    self.stats.unreadable += 1
                    self._warn(entry.path, WarningCategory.READ, str(error.cause or error))
                elif record.digest is None:
                    self.stats.recorded += 1
                    logger.debug(f"Recorded {entry.path} without content, target is not a file")
                else:
                    self.stats.hashed += 1
                    self.stats.bytes_hashed += record.size
                    logger.debug(f"Hashed {entry.path} ({record.hexdigest[:8]})")
            finally:
                queue.task_done()

    # -------- Producer --------

    def _record_without_content(self, entry: WalkEntry) -> Record:
        self.stats.recorded += 1
        return Record(path=entry.path, size=entry.size, modified=entry.modified, kind=entry.kind)

    async def _produce(
        self, entries: Iterable[WalkItem], queue: asyncio.Queue, records: List[Record]
    ) -> bool:
        """Feed the work queue. Returns True when stopped by cancellation."""
        for item in entries:
            if self.cancelled:
                return True

            if isinstance(item, WalkError):
                self.stats.walk_errors += 1
                self._warn(item.path, WarningCategory.WALK, item.message)
                continue

            if item.kind == EntryKind.SPECIAL:
                if self.config.special == SpecialPolicy.SKIP:
                    self.stats.skipped += 1
                else:
                    records.append(self._record_without_content(item))
                continue

            if item.kind == EntryKind.SYMLINK:
                if self.config.links == LinkPolicy.SKIP:
                    self.stats.skipped += 1
                    continue
                if self.config.links == LinkPolicy.RECORD:
                    records.append(self._record_without_content(item))
                    continue
            else:
                reused = self._reuse(item)
                if reused is not None:
                    self.stats.reused += 1
                    records.append(reused)
                    continue

            # blocks when the queue is full, so the walker cannot outrun hashing
            await queue.put(item)

        return self.cancelled

    @staticmethod
    def _drain(queue: asyncio.Queue) -> int:
        dropped = 0
        while True:
            try:
                queue.get_nowait()
            except asyncio.QueueEmpty:
                return dropped
            queue.task_done()
            dropped += 1

    # -------- Finalization --------

    def _finalize(self, records: List[Record]) -> Fingerprint:
        records.sort(key=lambda r: path_key(r.path))

        unique: List[Record] = []
        for record in records:
            if unique and unique[-1].path == record.path:
                self._warn(record.path, WarningCategory.WALK, "duplicate path from walker, keeping first")
                continue
            unique.append(record)

        header = FingerprintHeader(
            algorithm=self.config.algorithm,
            digest_size=self.hasher.digest_size,
            root=str(self.root),
            block_size=self.config.block_size,
            block_digests=self.config.block_digests,
        )
        return Fingerprint(header=header, records=tuple(unique))

    async def build(self, entries: Iterable[WalkItem]) -> BuildResult:
        """
        Hash every entry and return the finished fingerprint.

        Args:
            entries: Walker output, in any order

        Raises:
            ScanCancelled: If cancel() was called before the walk finished
        """
        with logfire.span("build fingerprint", root=str(self.root)):
            self._load_previous()

            queue: asyncio.Queue = asyncio.Queue(maxsize=self.config.queue_size)
            records: List[Record] = []
            workers = [
                asyncio.create_task(self._worker(queue, records)) for _ in range(self.config.workers)
            ]
            try:
                cancelled = await self._produce(entries, queue, records)
                if cancelled:
                    dropped = self._drain(queue)
                    logger.warning(f"Scan cancelled, {dropped} queued files were not hashed")
                for _ in workers:
                    await queue.put(None)
                await asyncio.gather(*workers)
            except BaseException:
                for worker in workers:
                    worker.cancel()
                await asyncio.gather(*workers, return_exceptions=True)
                raise

            if cancelled:
                raise ScanCancelled(f"Scan of {self.root} was cancelled")

            fingerprint = self._finalize(records)
            logger.info(
                f"Fingerprinted {len(fingerprint)} entries under {self.root}: "
                f"{self.stats.hashed} hashed, {self.stats.reused} reused, "
                f"{self.stats.unreadable} unreadable, {self.stats.skipped} skipped"
            )
            return BuildResult(fingerprint=fingerprint, warnings=list(self.warnings), stats=self.stats)


def build_fingerprint(
    root: Union[str, Path],
    config: ScanConfig,
    previous: Optional[PreviousFingerprint] = None,
    entries: Optional[Iterable[WalkItem]] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> BuildResult:
    """
    Synchronous wrapper around FingerprintBuilder.build.

    Walks root with the configured walker options unless entries are given.
    """
    if entries is None:
        entries = walk_tree(
            root,
            follow_symlinks=config.follow_symlinks,
            ignore_patterns=config.ignore_patterns,
        )
    builder = FingerprintBuilder(root, config, previous=previous, cancel_event=cancel_event)
    return asyncio.run(builder.build(entries))


def build_to_file(
    root: Union[str, Path],
    output: Union[str, Path],
    config: ScanConfig,
    previous_path: Optional[Union[str, Path]] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> BuildResult:
    """
    Scan root and write the fingerprint artifact to output.

    The artifact only appears under its final name once it is complete, so a
    cancelled or failed scan leaves nothing behind.
    """
    previous = FingerprintReader(previous_path) if previous_path else None
    result = build_fingerprint(root, config, previous=previous, cancel_event=cancel_event)
    count = write_fingerprint(output, result.fingerprint)
    logger.info(f"Wrote {count} records to {output}")
    return result
