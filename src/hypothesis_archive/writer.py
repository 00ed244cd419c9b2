"""Staged output writer: build a whole tree aside, then swap it into place."""

import os
import shutil
import tempfile
import uuid
from pathlib import Path

from loguru import logger

from hypothesis_archive.errors import BuildError


class StagedWriter:
    """Write output files into a staging directory next to the output directory.

    Nothing under ``output_dir`` changes until ``commit()``, which moves the
    current tree aside, renames the staging directory into place and then
    removes the old tree. ``abort()`` discards the staging directory.

    Files are compared against the current output to report how many were
    created, changed or left the same, and which old files disappear.
    A ``.git`` directory in the output is carried over to the new tree.
    """

    def __init__(self, output_dir: str | Path, *, extension: str = ".md", dry_run: bool = False) -> None:
        self.output_dir = Path(output_dir).expanduser().resolve()
        self.extension = extension
        self.dry_run = dry_run
        self.staging_dir: Path | None = None

        # Relative paths written this session.
        self._files_made: set[str] = set()
        # (action, relative path), action in create/update/delete.
        self._updates: list[tuple[str, str]] = []
        self._num_same = 0
        self._num_changed = 0
        self._num_created = 0

    def is_possible_output(self, fname: str) -> bool:
        """Check if a file is something this writer could have produced.

        If the current output holds a file for which this returns False, the
        swap would destroy it, so commit() refuses to run.
        """
        return fname.endswith(self.extension)

    def open(self) -> None:
        if self.staging_dir is not None:
            msg = "writer already open"
            raise RuntimeError(msg)
        parent = self.output_dir.parent
        parent.mkdir(parents=True, exist_ok=True)
        self.staging_dir = Path(
            tempfile.mkdtemp(prefix=f".{self.output_dir.name}.staging-", dir=parent)
        )
        logger.debug("Staging output in {}", self.staging_dir)

    def make_file(self, fname_rel: str, contents: str) -> None:
        """Write one output file into the staging tree."""
        if self.staging_dir is None:
            msg = "writer is not open"
            raise RuntimeError(msg)
        if Path(fname_rel).is_absolute():
            msg = f"must be relative: {fname_rel!r}"
            raise ValueError(msg)
        target = (self.staging_dir / fname_rel).resolve()
        if not str(target).startswith(str(self.staging_dir.resolve()) + os.sep):
            msg = f"Path escapes output dir: {fname_rel!r}"
            raise ValueError(msg)
        if not self.is_possible_output(fname_rel):
            msg = f"Wanted to write {fname_rel!r} but is_possible_output() returns False"
            raise ValueError(msg)
        if fname_rel in self._files_made:
            msg = f"{fname_rel!r} written twice in one build"
            raise ValueError(msg)

        self._files_made.add(fname_rel)
        try:
            existing = (self.output_dir / fname_rel).read_text(encoding="utf-8")
        except (FileNotFoundError, NotADirectoryError, UnicodeDecodeError):
            self._num_created += 1
            self._updates.append(("create", fname_rel))
        else:
            if existing == contents:
                self._num_same += 1
            else:
                self._num_changed += 1
                self._updates.append(("update", fname_rel))

        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w", encoding="utf-8", newline="") as f:
            f.write(contents)

    def _scan_existing(self) -> tuple[list[str], list[str]]:
        """Return (stale outputs, suspicious files) in the current output dir."""
        stale: list[str] = []
        suspicious: list[str] = []
        if not self.output_dir.is_dir():
            return stale, suspicious
        for dirpath, dirnames, filenames in os.walk(self.output_dir):
            if ".git" in dirnames:
                dirnames.remove(".git")
            for name in filenames:
                rel = str((Path(dirpath) / name).relative_to(self.output_dir))
                if not self.is_possible_output(rel):
                    suspicious.append(rel)
                elif rel not in self._files_made:
                    stale.append(rel)
        return sorted(stale), sorted(suspicious)

    def commit(self) -> dict[str, int]:
        """Swap the staged tree into place and return per-action counts."""
        if self.staging_dir is None:
            msg = "writer is not open"
            raise RuntimeError(msg)

        stale, suspicious = self._scan_existing()
        if suspicious:
            self.abort()
            msg = (
                f"Found {len(suspicious)} unexpected file(s) in {self.output_dir}, "
                f"refusing to replace it: {suspicious[:5]!r}"
            )
            raise BuildError(msg)
        self._updates.extend(("delete", rel) for rel in stale)

        stats = {
            "created": self._num_created,
            "changed": self._num_changed,
            "unchanged": self._num_same,
            "removed": len(stale),
        }
        log_msg = (
            f"Outputs: {self._num_same} same, {self._num_changed} changed, "
            f"{self._num_created} new, {len(stale)} removed"
        )
        if self._updates:
            logger.info(log_msg)
        else:
            logger.debug(log_msg)

        if self.dry_run:
            for action, rel in sorted(self._updates):
                logger.info("dry-run: would {} {!r}", action, rel)
            self.abort()
            return stats

        old_dir: Path | None = None
        if self.output_dir.exists():
            git_dir = self.output_dir / ".git"
            if git_dir.is_dir():
                git_dir.rename(self.staging_dir / ".git")
            old_dir = self.output_dir.with_name(f".{self.output_dir.name}.old-{uuid.uuid4().hex[:8]}")
            self.output_dir.rename(old_dir)
        self.staging_dir.rename(self.output_dir)
        self.staging_dir = None
        if old_dir is not None:
            shutil.rmtree(old_dir)
        logger.debug("Output swapped into {}", self.output_dir)
        return stats

    def abort(self) -> None:
        """Throw away the staging tree; the current output is left as it was."""
        if self.staging_dir is not None:
            shutil.rmtree(self.staging_dir, ignore_errors=True)
            logger.debug("Discarded staging dir {}", self.staging_dir)
            self.staging_dir = None
