"""Content discovery for Gorgon.

This module walks the input directory, reads every content file, splits off
its YAML front matter and builds immutable ContentItem objects. Output paths
and URLs are resolved here so that later stages can detect collisions before
anything is rendered.

Key classes:
- ContentItem: Frozen dataclass describing one discovered content source.
- FileContentLoader: Discovers content files under the input directory.
- OutputPathResolver: Derives the output path and URL of an item.
- ContentDiscovery: Builds ContentItems, collecting DiscoveryErrors.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from types import MappingProxyType
from typing import Any

import yaml

from .artifacts import normalize_output_path
from .errors import ConfigurationError, DiscoveryError
from .utils import (
    coerce_datetime,
    extract_date_from_name,
    first_paragraph,
    is_content_file,
    is_markdown,
    is_template,
    slugify,
    titleize,
)

logger = logging.getLogger(__name__)

FRONTMATTER_RE = re.compile(r"^---\s*\n(.*?)\n---\s*(?:\n|$)", re.DOTALL)


@dataclass(frozen=True, eq=False)
class ContentItem:
    """One discovered content source plus its metadata and resolved template.

    Attributes:
        source_path: Absolute path to the source file.
        rel_path: POSIX path of the source relative to the input directory.
        metadata: Read-only front matter mapping.
        body: Raw body text with the front matter removed.
        output_path: Output path relative to the output root, or None when
            the item produces no page (`permalink: false`).
        url: Public URL path, or None when the item produces no page.
        template: Layout template identifier, or None to emit the body as is.
        title: Human-readable title.
        date: Publication timestamp (timezone-aware).
        tags: Tags from front matter, in declaration order.
        description: Short plain-text summary.
        source_type: "markdown", "html" or "jinja".
    """

    source_path: Path
    rel_path: str
    metadata: Mapping[str, Any]
    body: str
    output_path: str | None
    url: str | None
    template: str | None
    title: str
    date: datetime
    tags: tuple[str, ...] = ()
    description: str = ""
    source_type: str = "markdown"
    draft: bool = False

    def page_data(self) -> dict[str, Any]:
        """Return the `page` variable exposed to templates."""
        return {
            "url": self.url,
            "output_path": self.output_path,
            "input_path": self.rel_path,
            "date": self.date,
            "file_slug": slugify(self.source_path.stem),
        }


def extract_frontmatter(text: str, path: Path) -> tuple[dict[str, Any], str]:
    """Extract YAML front matter from content.

    Args:
        text: Raw file content.
        path: Source path, used in error messages.

    Returns:
        Tuple of (front matter dict, remaining content).

    Raises:
        ConfigurationError: If the front matter is not a valid YAML mapping.
    """
    match = FRONTMATTER_RE.match(text)
    if not match:
        return {}, text
    try:
        data = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"{path}: malformed front matter: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path}: front matter must be a mapping")
    return data, text[match.end() :]


class FileContentLoader:
    """Discovers content files in the input directory.

    Directories and files starting with `_` or `.` are internal and skipped,
    except that `_`-prefixed files are drafts and are returned when
    requested. Files are returned sorted by relative path so discovery order
    is stable across runs.

    Attributes:
        input_dir: Directory containing content.
        excluded: Directories never scanned (includes, data, output).
    """

    def __init__(self, input_dir: Path, excluded: tuple[Path, ...] = ()):
        self.input_dir = input_dir
        self.excluded = tuple(p.resolve() for p in excluded)

    def iter_files(self, include_drafts: bool = False) -> list[Path]:
        files: list[Path] = []
        for path in sorted(self.input_dir.rglob("*")):
            if path.is_dir() or self._is_excluded(path):
                continue
            rel = path.relative_to(self.input_dir)
            if any(part.startswith(("_", ".")) for part in rel.parts[:-1]):
                continue
            if rel.name.startswith("."):
                continue
            if rel.name.startswith("_") and not include_drafts:
                continue
            if is_content_file(path):
                files.append(path)
        return files

    def _is_excluded(self, path: Path) -> bool:
        resolved = path.resolve()
        return any(resolved.is_relative_to(ex) for ex in self.excluded)


class OutputPathResolver:
    """Derives output paths and URLs for content items.

    Without a permalink, `posts/2024-01-15-hello.md` becomes
    `posts/hello/index.html` served at `/posts/hello/`, and any `index`
    file maps onto its directory. A string permalink is used verbatim; one
    ending in `/` gets an `index.html` appended.
    """

    def resolve(self, rel: PurePosixPath, permalink: Any) -> tuple[str | None, str | None]:
        """Resolve the (output_path, url) pair for an item.

        Raises:
            ConfigurationError: If the permalink is neither a string nor false,
                or points outside the output directory.
        """
        if permalink is False:
            return None, None
        if permalink is not None:
            if not isinstance(permalink, str):
                raise ConfigurationError(f"{rel}: invalid permalink {permalink!r}")
            output_path, url = self._from_permalink(permalink)
            try:
                output_path = normalize_output_path(output_path)
            except ValueError as exc:
                raise ConfigurationError(f"{rel}: invalid permalink {permalink!r}: {exc}") from exc
            return output_path, url
        slug = slugify(rel.stem)
        segments = [p for p in rel.parent.parts if p not in ("", ".")]
        if slug != "index":
            segments.append(slug)
        url_path = "/".join(segments)
        if not url_path:
            return "index.html", "/"
        return f"{url_path}/index.html", f"/{url_path}/"

    def _from_permalink(self, permalink: str) -> tuple[str, str]:
        cleaned = permalink.lstrip("/")
        if not cleaned or cleaned.endswith("/"):
            return f"{cleaned}index.html", f"/{cleaned}"
        if cleaned.endswith("/index.html"):
            return cleaned, "/" + cleaned[: -len("index.html")]
        if cleaned == "index.html":
            return cleaned, "/"
        return cleaned, f"/{cleaned}"


class ContentDiscovery:
    """Builds ContentItems from the files under the input directory.

    Unreadable files become DiscoveryErrors and are skipped; malformed front
    matter raises ConfigurationError.

    Attributes:
        input_dir: Directory containing content.
        default_layout: Layout for items whose front matter names none.
    """

    def __init__(
        self,
        input_dir: Path,
        default_layout: str | None = None,
        loader: FileContentLoader | None = None,
        resolver: OutputPathResolver | None = None,
    ):
        self.input_dir = input_dir
        self.default_layout = default_layout
        self.loader = loader or FileContentLoader(input_dir)
        self.resolver = resolver or OutputPathResolver()

    def discover(
        self, include_drafts: bool = False
    ) -> tuple[list[ContentItem], list[DiscoveryError]]:
        """Discover all content items.

        Returns:
            Tuple of (items in discovery order, discovery errors).
        """
        items: list[ContentItem] = []
        errors: list[DiscoveryError] = []
        if not self.input_dir.exists():
            logger.warning("Input directory %s does not exist", self.input_dir)
            return items, errors
        for path in self.loader.iter_files(include_drafts):
            try:
                item = self.build_item(path)
            except DiscoveryError as exc:
                logger.warning("Skipping %s", exc)
                errors.append(exc)
                continue
            if item.draft and not include_drafts:
                logger.debug("Skipping draft %s", item.rel_path)
                continue
            items.append(item)
        return items, errors

    def build_item(self, path: Path) -> ContentItem:
        """Build a ContentItem from a source file.

        Raises:
            DiscoveryError: If the file cannot be read or decoded.
            ConfigurationError: If its front matter is malformed.
        """
        try:
            raw = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise DiscoveryError(path, str(exc)) from exc

        metadata, body = extract_frontmatter(raw, path)
        rel = PurePosixPath(path.relative_to(self.input_dir).as_posix())
        output_path, url = self.resolver.resolve(rel, metadata.get("permalink"))

        return ContentItem(
            source_path=path,
            rel_path=rel.as_posix(),
            metadata=MappingProxyType(metadata),
            body=body,
            output_path=output_path,
            url=url,
            template=self._template(metadata),
            title=self._title(metadata, body, path),
            date=self._date(metadata, path),
            tags=self._tags(metadata, path),
            description=str(metadata.get("description") or first_paragraph(body)),
            source_type=_source_type(path),
            draft=bool(metadata.get("draft", False)) or path.name.startswith("_"),
        )

    def _template(self, metadata: Mapping[str, Any]) -> str | None:
        layout = metadata.get("layout", self.default_layout)
        if layout in (None, False, "none", ""):
            return None
        return str(layout)

    @staticmethod
    def _title(metadata: Mapping[str, Any], body: str, path: Path) -> str:
        if metadata.get("title"):
            return str(metadata["title"])
        if is_markdown(path):
            for line in body.splitlines():
                stripped = line.strip()
                if stripped.startswith("# "):
                    return stripped[2:].strip()
        return titleize(path.name)

    @staticmethod
    def _date(metadata: Mapping[str, Any], path: Path) -> datetime:
        if "date" in metadata:
            parsed = coerce_datetime(metadata["date"])
            if parsed is None:
                raise ConfigurationError(f"{path}: invalid date {metadata['date']!r}")
            return parsed
        from_name = extract_date_from_name(path.stem)
        if from_name is not None:
            return from_name
        return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)

    @staticmethod
    def _tags(metadata: Mapping[str, Any], path: Path) -> tuple[str, ...]:
        raw = metadata.get("tags")
        if raw is None:
            return ()
        if isinstance(raw, str):
            return (raw,)
        if isinstance(raw, list) and all(isinstance(t, (str, int)) for t in raw):
            return tuple(dict.fromkeys(str(t) for t in raw))
        raise ConfigurationError(f"{path}: tags must be a string or a list of strings")


def _source_type(path: Path) -> str:
    if is_markdown(path):
        return "markdown"
    if is_template(path):
        return "jinja"
    return "html"
