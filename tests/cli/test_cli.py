"""Tests for the treeprint command line."""

import sys
from pathlib import Path

import pytest
from loguru import logger
from rich.console import Console
from typer.testing import CliRunner

from conftest import write_file
from treeprint.cli.commands import diff as diff_command
from treeprint.cli.commands import scan as scan_command
from treeprint.cli.commands import verify as verify_command
from treeprint.cli.main import app
from treeprint.codec import read_fingerprint

runner = CliRunner()


@pytest.fixture(autouse=True)
def wide_console(monkeypatch):
    """Avoid line wrapping of long temporary paths."""
    for module in (scan_command, diff_command, verify_command):
        monkeypatch.setattr(module, "console", Console(width=300))


@pytest.fixture(autouse=True)
def restore_logging():
    yield
    # the CLI points loguru at the runner's stderr, which is closed afterwards
    logger.remove()
    logger.add(sys.stderr)


def scan(root: Path, output: Path, *args: str):
    return runner.invoke(app, ["scan", str(root), "-o", str(output), "--workers", "2", *args])


def test_scan(tree: Path, tmp_path: Path):
    output = tmp_path / "tree.fp.gz"
    result = scan(tree, output)
    assert result.exit_code == 0, result.output
    assert "Fingerprint" in result.output
    assert "5 entries" in result.output
    assert len(read_fingerprint(output)) == 5


def test_scan_skips_its_own_output(tree: Path):
    output = tree / "snapshots" / "tree.fp"
    assert scan(tree, output).exit_code == 0

    # the second scan finds the first artifact inside the tree
    result = scan(tree, output)
    assert result.exit_code == 0, result.output
    paths = [r.path for r in read_fingerprint(output).records]
    assert "snapshots/tree.fp" not in paths
    assert len(paths) == 5


def test_scan_with_previous(tree: Path, tmp_path: Path):
    first = tmp_path / "first.fp"
    assert scan(tree, first).exit_code == 0

    result = scan(tree, tmp_path / "second.fp", "--previous", str(first))
    assert result.exit_code == 0, result.output
    assert "5 reused" in result.output

    result = scan(tree, tmp_path / "third.fp", "--previous", str(first), "--rehash")
    assert result.exit_code == 0, result.output
    assert "reused" not in result.output


def test_scan_options(tree: Path, tmp_path: Path):
    output = tmp_path / "tree.fp"
    result = scan(
        tree,
        output,
        "--algorithm",
        "sha512",
        "--block-size",
        "4096",
        "--block-digests",
        "--ignore",
        "docs/",
        "--links",
        "skip",
        "--drive",
        "hdd",
    )
    assert result.exit_code == 0, result.output
    fingerprint = read_fingerprint(output)
    assert fingerprint.header.algorithm == "sha512"
    assert fingerprint.header.block_digests
    assert [r.path for r in fingerprint.records] == ["a.txt", "b.txt", "empty.bin"]


def test_scan_invalid_config(tree: Path, tmp_path: Path):
    output = tmp_path / "tree.fp"
    result = scan(tree, output, "--block-size", "1000")
    assert result.exit_code == 1
    assert "Invalid configuration" in result.output
    assert not output.exists()


def test_scan_corrupt_previous(tree: Path, tmp_path: Path):
    previous = tmp_path / "previous.fp"
    previous.write_text("garbage\n")
    result = scan(tree, tmp_path / "tree.fp", "--previous", str(previous))
    assert result.exit_code == 1
    assert "Previous fingerprint is unusable" in result.output


def test_diff(tree: Path, tmp_path: Path):
    before = tmp_path / "before.fp"
    after = tmp_path / "after.fp"
    assert scan(tree, before).exit_code == 0

    (tree / "b.txt").rename(tree / "docs" / "b.txt")
    write_file(tree / "a.txt", "changed")
    write_file(tree / "new.txt", "brand new")
    assert scan(tree, after).exit_code == 0

    result = runner.invoke(app, ["diff", str(before), str(after), "--verbose"])
    assert result.exit_code == 0, result.output
    assert "Added" in result.output
    assert "new.txt" in result.output
    assert "Modified" in result.output
    assert "Moved" in result.output
    assert "from b.txt" in result.output

    result = runner.invoke(app, ["diff", str(before), str(after), "--no-moves", "--exit-code"])
    assert result.exit_code == 1
    assert "moved" not in result.output


def test_diff_no_changes(tree: Path, tmp_path: Path):
    before = tmp_path / "before.fp"
    after = tmp_path / "after.fp.gz"
    assert scan(tree, before).exit_code == 0
    assert scan(tree, after).exit_code == 0

    result = runner.invoke(app, ["diff", str(before), str(after), "--exit-code"])
    assert result.exit_code == 0, result.output
    assert "No changes (5 unchanged)" in result.output


def test_diff_corrupt_artifact(tree: Path, tmp_path: Path):
    good = tmp_path / "good.fp"
    assert scan(tree, good).exit_code == 0
    bad = tmp_path / "bad.fp"
    bad.write_bytes(good.read_bytes()[:-3])

    result = runner.invoke(app, ["diff", str(good), str(bad)])
    assert result.exit_code == 2
    assert "Cannot compare fingerprints" in result.output


def test_verify(tree: Path, tmp_path: Path):
    artifact = tmp_path / "tree.fp"
    assert scan(tree, artifact).exit_code == 0

    result = runner.invoke(app, ["verify", str(artifact)])
    assert result.exit_code == 0, result.output
    assert "OK" in result.output
    assert "5 records" in result.output

    lines = artifact.read_bytes().splitlines(keepends=True)
    artifact.write_bytes(b"".join(lines[:-1]))
    result = runner.invoke(app, ["verify", str(artifact)])
    assert result.exit_code == 1
    assert "FAILED" in result.output


def test_verify_invalid(tmp_path: Path):
    artifact = tmp_path / "junk.fp"
    artifact.write_text("junk\n")
    result = runner.invoke(app, ["verify", str(artifact)])
    assert result.exit_code == 1
    assert "INVALID" in result.output


def test_info(tree: Path, tmp_path: Path):
    artifact = tmp_path / "tree.fp.gz"
    assert scan(tree, artifact, "--algorithm", "blake2b").exit_code == 0

    result = runner.invoke(app, ["info", str(artifact)])
    assert result.exit_code == 0, result.output
    assert "blake2b (64 bytes)" in result.output
    assert "Records" in result.output
    assert str(tree) in result.output


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert "treeprint version" in result.output
