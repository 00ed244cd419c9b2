"""Tests for StagedWriter: build output aside, then swap it into place."""

from pathlib import Path

import pytest

from hypothesis_archive.errors import BuildError
from hypothesis_archive.writer import StagedWriter


def _write(output: Path, files: dict[str, str], *, dry_run: bool = False) -> dict[str, int]:
    writer = StagedWriter(output, dry_run=dry_run)
    writer.open()
    for rel, contents in files.items():
        writer.make_file(rel, contents)
    return writer.commit()


def _leftovers(parent: Path, name: str) -> list[str]:
    return sorted(p.name for p in parent.iterdir() if p.name.startswith(f".{name}."))


def test_first_commit_creates_output(tmp_path: Path) -> None:
    """Files appear only in the output directory, with nothing left behind."""
    output = tmp_path / "kb"

    stats = _write(output, {"a.md": "A", "sub/b.md": "B"})

    assert stats == {"created": 2, "changed": 0, "unchanged": 0, "removed": 0}
    assert (output / "a.md").read_text() == "A"
    assert (output / "sub" / "b.md").read_text() == "B"
    assert _leftovers(tmp_path, "kb") == []


def test_second_commit_reports_changes_and_removes_stale(tmp_path: Path) -> None:
    output = tmp_path / "kb"
    _write(output, {"a.md": "A", "b.md": "B", "old/c.md": "C"})

    stats = _write(output, {"a.md": "A", "b.md": "B2", "d.md": "D"})

    assert stats == {"created": 1, "changed": 1, "unchanged": 1, "removed": 1}
    assert sorted(p.name for p in output.rglob("*")) == ["a.md", "b.md", "d.md"]


def test_nothing_changes_before_commit(tmp_path: Path) -> None:
    output = tmp_path / "kb"
    _write(output, {"a.md": "A"})

    writer = StagedWriter(output)
    writer.open()
    writer.make_file("a.md", "changed")
    writer.make_file("b.md", "B")

    assert (output / "a.md").read_text() == "A"
    assert not (output / "b.md").exists()

    writer.abort()
    assert (output / "a.md").read_text() == "A"
    assert _leftovers(tmp_path, "kb") == []


def test_dry_run_leaves_output_untouched(tmp_path: Path) -> None:
    output = tmp_path / "kb"
    _write(output, {"a.md": "A"})

    stats = _write(output, {"a.md": "A2", "b.md": "B"}, dry_run=True)

    assert stats == {"created": 1, "changed": 1, "unchanged": 0, "removed": 0}
    assert (output / "a.md").read_text() == "A"
    assert not (output / "b.md").exists()
    assert _leftovers(tmp_path, "kb") == []


def test_refuses_to_replace_directory_with_foreign_files(tmp_path: Path) -> None:
    output = tmp_path / "kb"
    output.mkdir()
    (output / "notes.txt").write_text("mine")

    with pytest.raises(BuildError, match="unexpected file"):
        _write(output, {"a.md": "A"})

    assert (output / "notes.txt").read_text() == "mine"
    assert not (output / "a.md").exists()
    assert _leftovers(tmp_path, "kb") == []


def test_git_directory_is_carried_over(tmp_path: Path) -> None:
    output = tmp_path / "kb"
    _write(output, {"a.md": "A"})
    (output / ".git").mkdir()
    (output / ".git" / "HEAD").write_text("ref: refs/heads/main\n")

    _write(output, {"a.md": "A2"})

    assert (output / ".git" / "HEAD").read_text() == "ref: refs/heads/main\n"
    assert (output / "a.md").read_text() == "A2"


@pytest.mark.parametrize("rel", ["../escape.md", "/abs/path.md"])
def test_make_file_rejects_paths_outside_output(tmp_path: Path, rel: str) -> None:
    writer = StagedWriter(tmp_path / "kb")
    writer.open()
    with pytest.raises(ValueError):
        writer.make_file(rel, "x")
    writer.abort()


def test_make_file_rejects_wrong_extension_and_duplicates(tmp_path: Path) -> None:
    writer = StagedWriter(tmp_path / "kb", extension=".md")
    writer.open()
    with pytest.raises(ValueError, match="is_possible_output"):
        writer.make_file("a.txt", "x")
    writer.make_file("a.md", "x")
    with pytest.raises(ValueError, match="twice"):
        writer.make_file("a.md", "y")
    writer.abort()


def test_make_file_requires_open(tmp_path: Path) -> None:
    with pytest.raises(RuntimeError, match="not open"):
        StagedWriter(tmp_path / "kb").make_file("a.md", "x")
