"""Output artifacts for Gorgon.

An OutputArtifact is the terminal product of the pipeline: a destination
path relative to the output root plus the bytes to write there. Every
artifact of a pass is collected into an ArtifactSet before anything touches
the disk, so two outputs claiming one path abort the pass instead of
silently overwriting each other.

Key classes:
- OutputArtifact: Frozen path + content pair.
- ArtifactSet: Ordered, collision-checked collection of a pass's outputs.

Functions:
    write_atomic: Write bytes via a temporary file and rename.
    copy_atomic: Copy a file via a temporary file and rename.
"""

from __future__ import annotations

import contextlib
import logging
import os
import shutil
import tempfile
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, replace
from pathlib import Path, PurePosixPath

from .errors import ArtifactCollisionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutputArtifact:
    """Destination path plus byte content.

    Attributes:
        path: POSIX path relative to the output root.
        content: Bytes to write.
        source: Path of the content item or file this artifact came from.
        media_type: MIME type of the content.
    """

    path: str
    content: bytes
    source: Path | None = None
    media_type: str = "text/html"

    def __post_init__(self) -> None:
        normalized = normalize_output_path(self.path)
        object.__setattr__(self, "path", normalized)

    @property
    def is_html(self) -> bool:
        return self.media_type == "text/html"

    def with_content(self, content: bytes) -> OutputArtifact:
        return replace(self, content=content)


def normalize_output_path(path: str) -> str:
    """Normalize an output path and reject paths escaping the output root.

    Raises:
        ValueError: If the path is absolute after stripping or contains `..`.
    """
    cleaned = PurePosixPath(str(path).replace("\\", "/").lstrip("/"))
    if not cleaned.parts or ".." in cleaned.parts:
        raise ValueError(f"Invalid output path: {path!r}")
    return cleaned.as_posix()


class ArtifactSet:
    """Collection of the outputs produced by one build pass.

    Paths are unique: adding a second artifact (or reserving a passthrough
    destination) for a path already present raises ArtifactCollisionError.
    """

    def __init__(self) -> None:
        self._artifacts: dict[str, OutputArtifact] = {}
        self._reserved: dict[str, Path | None] = {}

    def add(self, artifact: OutputArtifact) -> None:
        self._check(artifact.path, artifact.source)
        self._artifacts[artifact.path] = artifact

    def extend(self, artifacts: Iterable[OutputArtifact]) -> None:
        for artifact in artifacts:
            self.add(artifact)

    def reserve(self, path: str, source: Path | None) -> str:
        """Claim an output path written outside the set (e.g. a passthrough copy)."""
        normalized = normalize_output_path(path)
        self._check(normalized, source)
        self._reserved[normalized] = source
        return normalized

    def replace(self, artifact: OutputArtifact) -> None:
        """Swap the content of an existing artifact in place."""
        if artifact.path not in self._artifacts:
            raise KeyError(artifact.path)
        self._artifacts[artifact.path] = artifact

    def _check(self, path: str, source: Path | None) -> None:
        if path in self._artifacts:
            raise ArtifactCollisionError(path, (self._artifacts[path].source, source))
        if path in self._reserved:
            raise ArtifactCollisionError(path, (self._reserved[path], source))

    def get(self, path: str) -> OutputArtifact | None:
        return self._artifacts.get(normalize_output_path(path))

    def paths(self) -> set[str]:
        return set(self._artifacts) | set(self._reserved)

    def __iter__(self) -> Iterator[OutputArtifact]:
        return iter(list(self._artifacts.values()))

    def __len__(self) -> int:
        return len(self._artifacts)

    def __contains__(self, path: object) -> bool:
        return path in self._artifacts or path in self._reserved

    def write(self, output_dir: Path) -> list[Path]:
        """Write every artifact atomically under `output_dir`.

        Returns:
            The written file paths, in insertion order.
        """
        written = []
        for artifact in self._artifacts.values():
            target = output_dir / artifact.path
            write_atomic(target, artifact.content)
            written.append(target)
        logger.debug("Wrote %d artifacts to %s", len(written), output_dir)
        return written


def write_atomic(target: Path, content: bytes) -> None:
    """Write `content` to `target` so readers never observe a partial file.

    The bytes go to a temporary file in the same directory, which is then
    renamed over the target.
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
        # mkstemp creates files readable by the owner only.
        os.chmod(tmp_name, 0o644)
        os.replace(tmp_name, target)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_name)
        raise


def copy_atomic(source: Path, target: Path) -> None:
    """Copy `source` to `target` through a temporary file and rename."""
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
    os.close(fd)
    try:
        shutil.copy2(source, tmp_name)
        os.replace(tmp_name, target)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_name)
        raise

