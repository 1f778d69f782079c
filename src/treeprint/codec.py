"""
Reading and writing fingerprint artifacts.

An artifact is UTF-8 JSON Lines, gzip compressed when the file name ends in ".gz":

    {"treeprint": {...header...}}
    {"path": "a.txt", "size": 10, "modified": 1700000000000000000, "kind": "file", "digest": "ab12..."}
    {"path": "b.bin", "size": 5, "modified": 1700000000000000000, "kind": "file", "unreadable": true}
    {"trailer": {"records": 2, "sha256": "..."}}

The trailer digest covers every uncompressed byte before it. Both directions
stream one record at a time.
"""

import gzip
import hashlib
import json
import zlib
from pathlib import Path
from typing import IO, Iterable, Iterator, List, Optional, Union

from loguru import logger
from pydantic import ValidationError

from treeprint.config import supported_algorithms
from treeprint.exceptions import FormatError, IntegrityError
from treeprint.models import (
    FORMAT_VERSION,
    EntryKind,
    Fingerprint,
    FingerprintHeader,
    Record,
)
from treeprint.utils import path_key

HEADER_KEY = "treeprint"
TRAILER_KEY = "trailer"
RECORD_KEYS = {"path", "size", "modified", "kind", "digest", "unreadable", "blocks"}


def _is_compressed(path: Path) -> bool:
    return path.name.endswith(".gz")


def _dump_line(obj: dict) -> bytes:
    return (json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False) + "\n").encode(
        "utf-8"
    )


def encode_header(header: FingerprintHeader) -> bytes:
    return _dump_line({HEADER_KEY: header.model_dump(mode="json")})


def encode_record(record: Record) -> bytes:
    obj = {
        "path": record.path,
        "size": record.size,
        "modified": record.modified,
        "kind": record.kind.value,
    }
    if record.unreadable:
        obj["unreadable"] = True
    elif record.digest is not None:
        obj["digest"] = record.digest.hex()
    if record.blocks is not None:
        obj["blocks"] = [b.hex() for b in record.blocks]
    return _dump_line(obj)


def decode_header(line: bytes) -> FingerprintHeader:
    """
    Parse the first line of an artifact.

    Raises:
        FormatError: If the line is not a header or has an unsupported version
    """
    if not line:
        raise FormatError("Missing fingerprint header")
    if not line.endswith(b"\n"):
        raise FormatError("Truncated fingerprint header")
    try:
        obj = json.loads(line)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise FormatError(f"Unrecognized fingerprint header: {e}") from e

    if not isinstance(obj, dict) or not isinstance(obj.get(HEADER_KEY), dict):
        raise FormatError("Not a treeprint fingerprint (header missing)")

    fields = obj[HEADER_KEY]
    version = fields.get("format_version")
    if version != FORMAT_VERSION:
        raise FormatError(f"Unsupported format version: {version!r}")

    try:
        header = FingerprintHeader.model_validate(fields)
    except ValidationError as e:
        raise FormatError(f"Invalid fingerprint header: {e}") from e

    algorithms = supported_algorithms()
    if header.algorithm not in algorithms:
        raise FormatError(f"Unsupported digest algorithm in header: {header.algorithm}")
    if header.digest_size != hashlib.new(header.algorithm).digest_size:
        raise FormatError(
            f"Header digest size {header.digest_size} does not match {header.algorithm}"
        )
    if header.integrity is not None and header.integrity not in algorithms:
        raise FormatError(f"Unsupported integrity algorithm in header: {header.integrity}")
    return header


def _decode_hex(value, digest_size: int, what: str) -> bytes:
    if not isinstance(value, str):
        raise FormatError(f"{what} must be a hex string")
    try:
        raw = bytes.fromhex(value)
    except ValueError as e:
        raise FormatError(f"{what} is not valid hex") from e
    if len(raw) != digest_size:
        raise FormatError(f"{what} has {len(raw)} bytes, expected {digest_size}")
    return raw


def decode_record(obj: dict, header: FingerprintHeader) -> Record:
    """
    Build a Record from one parsed artifact line.

    Raises:
        FormatError: If the entry is malformed
    """
    unknown = set(obj) - RECORD_KEYS
    if unknown:
        raise FormatError(f"Unexpected record fields: {', '.join(sorted(unknown))}")

    path = obj.get("path")
    size = obj.get("size")
    modified = obj.get("modified")
    if not isinstance(path, str) or not path:
        raise FormatError("Record path must be a non-empty string")
    # bool is an int subclass
    for name, value in (("size", size), ("modified", modified)):
        if not isinstance(value, int) or isinstance(value, bool):
            raise FormatError(f"Record {path}: {name} must be an integer")
    if size < 0:
        raise FormatError(f"Record {path}: negative size")

    try:
        kind = EntryKind(obj.get("kind", EntryKind.FILE.value))
    except ValueError as e:
        raise FormatError(f"Record {path}: unknown kind {obj.get('kind')!r}") from e

    unreadable = obj.get("unreadable", False)
    if unreadable is not True and unreadable is not False:
        raise FormatError(f"Record {path}: unreadable must be a boolean")
    if unreadable and "digest" in obj:
        raise FormatError(f"Record {path}: unreadable record carries a digest")

    digest = None
    if "digest" in obj:
        digest = _decode_hex(obj["digest"], header.digest_size, f"Record {path}: digest")

    blocks = None
    if "blocks" in obj:
        if not isinstance(obj["blocks"], list):
            raise FormatError(f"Record {path}: blocks must be a list")
        blocks = tuple(
            _decode_hex(b, header.digest_size, f"Record {path}: block digest") for b in obj["blocks"]
        )

    return Record(
        path=path,
        size=size,
        modified=modified,
        kind=kind,
        digest=digest,
        unreadable=unreadable,
        blocks=blocks,
    )


class FingerprintWriter:
    """
    Streams records into an artifact.

    Records go to a temporary sibling file which only replaces the target once
    the trailer is written, so an interrupted write never leaves an artifact
    that looks complete. Use as a context manager; an exception inside the
    block discards the temporary file.
    """

    def __init__(self, path: Union[str, Path], header: FingerprintHeader):
        self.path = Path(path)
        self.header = header
        self.temp_path = self.path.with_name(f".{self.path.name}.partial")
        self.count = 0
        self._fh: Optional[IO[bytes]] = None
        self._raw: Optional[IO[bytes]] = None
        self._body_hash = None
        self._last_key: Optional[List[str]] = None

    def open(self) -> "FingerprintWriter":
        if self._fh is not None:
            raise RuntimeError("Writer already open")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if _is_compressed(self.path):
            self._raw = open(self.temp_path, "wb")
            # no name and mtime=0 keep identical content byte-identical
            self._fh = gzip.GzipFile(filename="", mode="wb", fileobj=self._raw, mtime=0)
        else:
            self._fh = open(self.temp_path, "wb")
        if self.header.integrity is not None:
            self._body_hash = hashlib.new(self.header.integrity)
        self._emit(encode_header(self.header))
        logger.debug(f"Writing fingerprint to {self.path}")
        return self

    def _emit(self, line: bytes) -> None:
        self._fh.write(line)
        if self._body_hash is not None:
            self._body_hash.update(line)

    def write(self, record: Record) -> None:
        """Append one record; records must arrive in canonical order."""
        if self._fh is None:
            raise RuntimeError("Writer is not open")
        key = path_key(record.path)
        if self._last_key is not None and key <= self._last_key:
            raise FormatError(
                f"Records must be written in canonical order without duplicates: {record.path}"
            )
        self._last_key = key
        self._emit(encode_record(record))
        self.count += 1

    def write_all(self, records: Iterable[Record]) -> int:
        for record in records:
            self.write(record)
        return self.count

    def _close_files(self) -> None:
        self._fh.close()
        self._fh = None
        # GzipFile does not close a file object it was handed
        if self._raw is not None:
            self._raw.close()
            self._raw = None

    def close(self) -> None:
        """Write the trailer and move the artifact into place."""
        if self._fh is None:
            return
        if self._body_hash is not None:
            trailer = {TRAILER_KEY: {"records": self.count, self.header.integrity: self._body_hash.hexdigest()}}
            self._fh.write(_dump_line(trailer))
        self._close_files()
        self.temp_path.replace(self.path)
        logger.debug(f"Wrote {self.count} records to {self.path}")

    def abort(self) -> None:
        """Discard everything written so far."""
        if self._fh is not None:
            self._close_files()
        self.temp_path.unlink(missing_ok=True)
        logger.debug(f"Discarded incomplete fingerprint {self.temp_path}")

    def __enter__(self) -> "FingerprintWriter":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.abort()
        else:
            self.close()


def write_fingerprint(
    path: Union[str, Path],
    fingerprint: Union[Fingerprint, FingerprintHeader],
    records: Optional[Iterable[Record]] = None,
) -> int:
    """
    Write a complete artifact.

    Args:
        path: Target file
        fingerprint: A Fingerprint, or just a header when records are given separately
        records: Records in canonical order; defaults to the Fingerprint's own

    Returns:
        Number of records written
    """
    if isinstance(fingerprint, Fingerprint):
        header = fingerprint.header
        if records is None:
            records = fingerprint.records
    else:
        header = fingerprint

    with FingerprintWriter(path, header) as writer:
        return writer.write_all(records or ())


class FingerprintReader:
    """
    Streams records back from an artifact.

    `records()` verifies the whole artifact before yielding anything (a second
    streaming pass, constant memory), so callers never act on a corrupt
    fingerprint. The trailer is checked again at the end of the yielding pass
    in case the file changed in between.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._header: Optional[FingerprintHeader] = None

    def _open(self) -> IO[bytes]:
        if _is_compressed(self.path):
            return gzip.open(self.path, "rb")
        return open(self.path, "rb")

    @property
    def header(self) -> FingerprintHeader:
        if self._header is None:
            try:
                with self._open() as fh:
                    self._header = decode_header(fh.readline())
            except (gzip.BadGzipFile, zlib.error, EOFError) as e:
                raise FormatError(f"Cannot decompress {self.path}: {e}") from e
        return self._header

    def _scan(self) -> Iterator[Record]:
        try:
            yield from self._scan_lines()
        except (gzip.BadGzipFile, zlib.error) as e:
            raise FormatError(f"Cannot decompress {self.path}: {e}") from e
        except EOFError as e:
            raise IntegrityError(f"Compressed fingerprint is truncated: {self.path}") from e

    def _scan_lines(self) -> Iterator[Record]:
        with self._open() as fh:
            first = fh.readline()
            header = decode_header(first)
            self._header = header
            body_hash = hashlib.new(header.integrity) if header.integrity else None
            if body_hash is not None:
                body_hash.update(first)

            trailer = None
            last_key = None
            count = 0
            for line in fh:
                if trailer is not None:
                    raise FormatError(f"Data after trailer in {self.path}")
                if not line.endswith(b"\n"):
                    raise IntegrityError(f"Fingerprint is truncated: {self.path}")
                try:
                    obj = json.loads(line)
                except (UnicodeDecodeError, json.JSONDecodeError) as e:
                    raise FormatError(f"Malformed entry {count + 1} in {self.path}: {e}") from e
                if not isinstance(obj, dict):
                    raise FormatError(f"Malformed entry {count + 1} in {self.path}")

                if TRAILER_KEY in obj:
                    trailer = obj[TRAILER_KEY]
                    continue

                record = decode_record(obj, header)
                key = path_key(record.path)
                if last_key is not None and key <= last_key:
                    raise FormatError(f"Record out of canonical order: {record.path}")
                last_key = key

                if body_hash is not None:
                    body_hash.update(line)
                count += 1
                yield record

            if header.integrity is None:
                if trailer is not None:
                    raise FormatError("Trailer present but header declares no integrity digest")
                return
            if trailer is None:
                raise IntegrityError(f"Fingerprint trailer missing: {self.path}")
            if not isinstance(trailer, dict) or trailer.get("records") != count:
                raise IntegrityError(f"Record count does not match trailer in {self.path}")
            if trailer.get(header.integrity) != body_hash.hexdigest():
                raise IntegrityError(f"Integrity digest mismatch in {self.path}")

    def verify(self) -> int:
        """
        Check structure, order and trailer without keeping records.

        Returns:
            Number of records

        Raises:
            FormatError: On malformed content
            IntegrityError: On trailer mismatch or truncation
        """
        count = 0
        for _ in self._scan():
            count += 1
        logger.debug(f"Verified {count} records in {self.path}")
        return count

    def records(self, verify: bool = True) -> Iterator[Record]:
        """Yield records lazily in canonical order."""
        if verify:
            self.verify()
        yield from self._scan()

    def __iter__(self) -> Iterator[Record]:
        return self.records()


def read_fingerprint(path: Union[str, Path]) -> Fingerprint:
    """
    Load a whole artifact into memory.

    The single pass still validates the trailer before returning, so a corrupt
    artifact raises instead of producing a partial Fingerprint.
    """
    reader = FingerprintReader(path)
    records = tuple(reader.records(verify=False))
    return Fingerprint(header=reader.header, records=records)
