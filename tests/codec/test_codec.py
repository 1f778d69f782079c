"""Tests for reading and writing fingerprint artifacts."""

import gzip
import json
from pathlib import Path

import pytest

from conftest import make_record
from treeprint.codec import (
    FingerprintReader,
    FingerprintWriter,
    decode_header,
    read_fingerprint,
    write_fingerprint,
)
from treeprint.exceptions import FormatError, IntegrityError
from treeprint.models import EntryKind, Fingerprint


@pytest.fixture
def records():
    return [
        make_record("a.txt", b"H1", size=10),
        make_record("a/b.txt", b"H2", size=20, blocks=(b"B".ljust(32, b"\0"),)),
        make_record("link", size=4, kind=EntryKind.SYMLINK),
        make_record("locked.bin", size=7, unreadable=True),
    ]


@pytest.fixture
def sorted_records(records):
    # "a/b.txt" sorts before "a.txt" because "a" < "a.txt"
    return [records[1], records[0], records[2], records[3]]


def test_round_trip(tmp_path: Path, header, sorted_records):
    path = tmp_path / "tree.fp"
    count = write_fingerprint(path, header, sorted_records)
    assert count == 4

    fingerprint = read_fingerprint(path)
    assert fingerprint == Fingerprint(header=header, records=tuple(sorted_records))
    assert fingerprint.records[3].unreadable
    assert fingerprint.records[3].digest is None
    assert fingerprint.records[0].blocks == sorted_records[0].blocks


def test_gzip_round_trip(tmp_path: Path, header, sorted_records):
    path = tmp_path / "tree.fp.gz"
    write_fingerprint(path, header, sorted_records)

    with gzip.open(path, "rb") as fh:
        first = json.loads(fh.readline())
    assert first["treeprint"]["algorithm"] == "sha256"
    assert list(FingerprintReader(path)) == sorted_records


def test_output_is_deterministic(tmp_path: Path, header, sorted_records):
    first = tmp_path / "one.fp.gz"
    second = tmp_path / "two.fp.gz"
    write_fingerprint(first, header, sorted_records)
    write_fingerprint(second, header, sorted_records)
    assert first.read_bytes() == second.read_bytes()


def test_empty_fingerprint(tmp_path: Path, header):
    path = tmp_path / "empty.fp"
    assert write_fingerprint(path, header, []) == 0
    reader = FingerprintReader(path)
    assert reader.verify() == 0
    assert list(reader.records()) == []


def test_writer_enforces_canonical_order(tmp_path: Path, header, records):
    path = tmp_path / "bad.fp"
    with pytest.raises(FormatError, match="canonical order"):
        write_fingerprint(path, header, records)

    # nothing is left behind, neither the artifact nor its temporary file
    assert list(tmp_path.iterdir()) == []


def test_writer_rejects_duplicates(tmp_path: Path, header):
    with pytest.raises(FormatError):
        write_fingerprint(tmp_path / "dup.fp", header, [make_record("a", b"1"), make_record("a", b"2")])


def test_artifact_appears_only_on_close(tmp_path: Path, header):
    path = tmp_path / "tree.fp"
    writer = FingerprintWriter(path, header).open()
    writer.write(make_record("a.txt", b"H1"))
    assert not path.exists()
    assert writer.temp_path.exists()

    writer.close()
    assert path.exists()
    assert not writer.temp_path.exists()


def test_abort_discards_partial_output(tmp_path: Path, header):
    path = tmp_path / "tree.fp"
    writer = FingerprintWriter(path, header).open()
    writer.write(make_record("a.txt", b"H1"))
    writer.abort()
    assert list(tmp_path.iterdir()) == []


def test_missing_trailer_is_integrity_error(tmp_path: Path, header, sorted_records):
    path = tmp_path / "tree.fp"
    write_fingerprint(path, header, sorted_records)
    lines = path.read_bytes().splitlines(keepends=True)
    path.write_bytes(b"".join(lines[:-1]))

    with pytest.raises(IntegrityError, match="trailer missing"):
        FingerprintReader(path).verify()
    with pytest.raises(IntegrityError):
        read_fingerprint(path)


def test_truncated_line_is_integrity_error(tmp_path: Path, header, sorted_records):
    path = tmp_path / "tree.fp"
    write_fingerprint(path, header, sorted_records)
    data = path.read_bytes()
    path.write_bytes(data[:-5])

    with pytest.raises(IntegrityError):
        FingerprintReader(path).verify()


def test_truncated_gzip_is_integrity_error(tmp_path: Path, header, sorted_records):
    path = tmp_path / "tree.fp.gz"
    write_fingerprint(path, header, sorted_records)
    path.write_bytes(path.read_bytes()[:-4])

    with pytest.raises(IntegrityError):
        FingerprintReader(path).verify()


def test_records_yield_nothing_from_corrupt_artifact(tmp_path: Path, header, sorted_records):
    """Verification runs before the first record is handed out."""
    path = tmp_path / "tree.fp"
    write_fingerprint(path, header, sorted_records)
    lines = path.read_bytes().splitlines(keepends=True)
    path.write_bytes(b"".join(lines[:-1]))

    seen = []
    with pytest.raises(IntegrityError):
        for record in FingerprintReader(path).records():
            seen.append(record)
    assert seen == []


def test_tampered_record_fails_digest(tmp_path: Path, header, sorted_records):
    path = tmp_path / "tree.fp"
    write_fingerprint(path, header, sorted_records)
    text = path.read_text().replace('"size":10', '"size":11')
    path.write_text(text)

    with pytest.raises(IntegrityError, match="digest mismatch"):
        FingerprintReader(path).verify()


def test_malformed_record(tmp_path: Path, header, sorted_records):
    path = tmp_path / "tree.fp"
    write_fingerprint(path, header, sorted_records)
    lines = path.read_bytes().splitlines(keepends=True)
    lines.insert(2, b"{not json\n")
    path.write_bytes(b"".join(lines))

    with pytest.raises(FormatError, match="Malformed entry"):
        FingerprintReader(path).verify()


def test_out_of_order_artifact(tmp_path: Path, header, sorted_records):
    path = tmp_path / "tree.fp"
    write_fingerprint(path, header, sorted_records)
    lines = path.read_bytes().splitlines(keepends=True)
    lines[1], lines[2] = lines[2], lines[1]
    path.write_bytes(b"".join(lines))

    with pytest.raises(FormatError, match="canonical order"):
        FingerprintReader(path).verify()


def test_wrong_digest_length(tmp_path: Path, header):
    path = tmp_path / "tree.fp"
    write_fingerprint(path, header, [make_record("a.txt", b"H1")])
    text = path.read_text()
    digest = json.loads(text.splitlines()[1])["digest"]
    path.write_text(text.replace(digest, digest[:20]))

    with pytest.raises(FormatError, match="expected 32"):
        FingerprintReader(path).verify()


@pytest.mark.parametrize(
    "line",
    [
        b"",
        b"not json\n",
        b'{"something": "else"}\n',
        b'{"treeprint": {"format_version": 99, "algorithm": "sha256"}}\n',
        b'{"treeprint": {"format_version": 1, "algorithm": "sha256"}}\n',
        b'{"treeprint": {"format_version": 1, "algorithm": "nohash", "digest_size": 4, "block_size": 4096}}\n',
        b'{"treeprint": {"format_version": 1, "algorithm": "shake_128", "digest_size": 16, "block_size": 4096}}\n',
        b'{"treeprint": {"format_version": 1, "algorithm": "sha256", "digest_size": 16, "block_size": 4096}}\n',
        b'{"treeprint": {"format_version": 1, "algorithm": "sha256", "digest_size": 32, "block_size": 4096, '
        b'"integrity": "shake_256"}}\n',
    ],
)
def test_bad_header(line):
    with pytest.raises(FormatError):
        decode_header(line)


def test_variable_length_integrity_is_rejected(tmp_path: Path):
    path = tmp_path / "tree.fp"
    path.write_bytes(
        b'{"treeprint": {"format_version": 1, "algorithm": "sha256", "digest_size": 32, '
        b'"block_size": 4096, "integrity": "shake_256"}}\n'
        b'{"trailer": {"records": 0, "shake_256": "00"}}\n'
    )

    with pytest.raises(FormatError, match="integrity algorithm"):
        FingerprintReader(path).verify()


def test_unsupported_version_message(tmp_path: Path):
    path = tmp_path / "future.fp"
    path.write_bytes(b'{"treeprint": {"format_version": 2}}\n')
    with pytest.raises(FormatError, match="Unsupported format version"):
        FingerprintReader(path).header


def test_not_gzip(tmp_path: Path):
    path = tmp_path / "plain.fp.gz"
    path.write_bytes(b"plain text\n")
    with pytest.raises(FormatError):
        FingerprintReader(path).verify()


def test_header_without_integrity(tmp_path: Path, header):
    """Artifacts may opt out of the trailer."""
    plain = header.model_copy(update={"integrity": None})
    path = tmp_path / "plain.fp"
    write_fingerprint(path, plain, [make_record("a.txt", b"H1")])

    assert "trailer" not in path.read_text()
    assert len(read_fingerprint(path)) == 1


def test_write_whole_fingerprint(tmp_path: Path, header, sorted_records):
    fingerprint = Fingerprint(header=header, records=tuple(sorted_records))
    path = tmp_path / "tree.fp"
    assert write_fingerprint(path, fingerprint) == 4
    assert read_fingerprint(path) == fingerprint
