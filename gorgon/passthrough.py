"""Passthrough asset copying for Gorgon.

Passthrough assets are copied verbatim from the project into the output
directory, preserving their relative directory structure. A pattern can be
a file, a directory (copied recursively), a glob, or a `{source:
destination}` mapping that remaps the output location.

Key classes:
- PassthroughEntry: One planned copy.
- PassthroughCopier: Resolves patterns and performs the copies.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from .artifacts import copy_atomic
from .utils import glob_base

logger = logging.getLogger(__name__)

Pattern = str | dict[str, str]


@dataclass(frozen=True)
class PassthroughEntry:
    """A source file and its destination relative to the output root."""

    source: Path
    destination: str


class PassthroughCopier:
    """Copies passthrough assets into the output directory.

    Attributes:
        project_root: Directory patterns are resolved against.
        patterns: Configured passthrough patterns.
        excluded: Directories whose files are never copied (the output dir).
    """

    def __init__(
        self,
        project_root: Path,
        patterns: Iterable[Pattern] = (),
        excluded: Iterable[Path] = (),
    ):
        self.project_root = project_root
        self.patterns = list(patterns)
        self.excluded = tuple(p.resolve() for p in excluded)

    def plan(self) -> list[PassthroughEntry]:
        """Resolve every pattern into concrete copies.

        A pattern matching nothing is logged as a warning and skipped.
        """
        entries: list[PassthroughEntry] = []
        for pattern in self.patterns:
            if isinstance(pattern, dict):
                pairs = list(pattern.items())
            else:
                pairs = [(pattern, None)]
            for source, destination in pairs:
                matched = self._resolve(str(source), destination)
                if not matched:
                    logger.warning("Passthrough pattern '%s' matched no files", source)
                entries.extend(matched)
        return entries

    def _resolve(self, pattern: str, destination: str | None) -> list[PassthroughEntry]:
        root = self.project_root
        target = root / pattern
        if not any(ch in pattern for ch in "*?["):
            if target.is_file():
                dest = destination or pattern
                return [PassthroughEntry(target, _posix(dest))]
            if target.is_dir():
                return [
                    PassthroughEntry(path, _posix(Path(destination or pattern) / path.relative_to(target)))
                    for path in sorted(target.rglob("*"))
                    if path.is_file() and not self._is_excluded(path)
                ]
            return []

        base = root / glob_base(pattern)
        entries = []
        for path in sorted(root.glob(pattern)):
            if not path.is_file() or self._is_excluded(path):
                continue
            if destination is None:
                dest = path.relative_to(root)
            else:
                dest = Path(destination) / path.relative_to(base)
            entries.append(PassthroughEntry(path, _posix(dest)))
        return entries

    def _is_excluded(self, path: Path) -> bool:
        resolved = path.resolve()
        return any(resolved.is_relative_to(ex) for ex in self.excluded)

    def copy(self, output_dir: Path, entries: Iterable[PassthroughEntry] | None = None) -> int:
        """Copy planned entries into `output_dir`.

        Files whose destination already has the same size and modification
        time are left alone; copying is idempotent either way.

        Returns:
            Number of files copied.
        """
        copied = 0
        for entry in self.plan() if entries is None else entries:
            dest = output_dir / entry.destination
            if _unchanged(entry.source, dest):
                continue
            copy_atomic(entry.source, dest)
            copied += 1
        logger.debug("Copied %d passthrough files", copied)
        return copied


def _posix(path: Path | str) -> str:
    return PurePosixPath(path).as_posix().lstrip("/")


def _unchanged(source: Path, dest: Path) -> bool:
    try:
        src_stat = source.stat()
        dest_stat = dest.stat()
    except OSError:
        return False
    return src_stat.st_size == dest_stat.st_size and src_stat.st_mtime_ns == dest_stat.st_mtime_ns
