"""Configuration loading for Gorgon.

The project configuration lives in `gorgon.yaml` at the project root. It is
parsed with PyYAML into a SiteConfig dataclass; missing keys fall back to
defaults and wrongly typed values raise ConfigurationError before any build
pass starts.

Key functions:
- load_config: Load and validate gorgon.yaml.
- load_data: Load global template data from the data directory.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "gorgon.yaml"

DEFAULT_DIRS = {
    "input": "content",
    "includes": "_includes",
    "data": "_data",
    "output": "_site",
}


@dataclass
class CollectionConfig:
    """Declarative definition of a named collection.

    Attributes:
        name: Collection name exposed to templates.
        tag: Items carrying this tag are members.
        sort: Optional sort key ("date", "title" or any front matter key).
        reverse: Sort descending when True.
    """

    name: str
    tag: str
    sort: str | None = None
    reverse: bool = False


@dataclass
class FeedConfig:
    """Settings for the feed plugin."""

    title: str
    base_url: str
    collection_name: str = "posts"
    description: str = ""
    author_name: str = ""
    limit: int = 0
    format: str = "atom"
    output: str = "feed.xml"


@dataclass
class ImageConfig:
    """Settings for the image transform plugin.

    Attributes:
        formats: Default output format for transformed images (first entry wins).
        width: Default maximum width, or None to keep the source width.
        output: Output subdirectory for derived images.
    """

    formats: list[str] = field(default_factory=lambda: ["webp"])
    width: int | None = None
    output: str = "img"


@dataclass
class SiteConfig:
    """Resolved project configuration.

    Attributes:
        project_root: Root directory of the project.
        input_dir: Directory containing content files.
        includes_dir: Directory containing layouts and partials.
        data_dir: Directory containing global data files.
        output_dir: Directory where the site is written.
        passthrough: Passthrough copy patterns.
        watch: Extra watch target globs.
        workers: Number of render worker threads.
        default_layout: Layout applied to items that do not name one.
        collections: Named collection definitions.
        feed: Feed plugin settings, or None when disabled.
        images: Image plugin settings, or None when disabled.
        navigation: Whether the navigation plugin is enabled.
    """

    project_root: Path
    input_dir: Path
    includes_dir: Path
    data_dir: Path
    output_dir: Path
    passthrough: list[str | dict[str, str]] = field(default_factory=list)
    watch: list[str] = field(default_factory=list)
    workers: int = 4
    default_layout: str | None = None
    collections: list[CollectionConfig] = field(default_factory=list)
    feed: FeedConfig | None = None
    images: ImageConfig | None = None
    navigation: bool = False

    @classmethod
    def from_mapping(cls, project_root: Path, raw: dict[str, Any]) -> SiteConfig:
        """Build a SiteConfig from a parsed YAML mapping.

        Raises:
            ConfigurationError: If a value has the wrong type.
        """
        dirs = dict(DEFAULT_DIRS)
        dirs.update(_expect(raw, "dir", dict, {}))
        for key, value in dirs.items():
            if not isinstance(value, str):
                raise ConfigurationError(f"dir.{key} must be a string, got {value!r}")

        passthrough = _expect(raw, "passthrough", list, [])
        for entry in passthrough:
            if not isinstance(entry, (str, dict)):
                raise ConfigurationError(f"Invalid passthrough entry: {entry!r}")

        watch = _expect(raw, "watch", list, [])
        if not all(isinstance(w, str) for w in watch):
            raise ConfigurationError("watch entries must be glob strings")

        workers = _expect(raw, "workers", int, 4)
        if workers < 1:
            raise ConfigurationError("workers must be at least 1")

        collections = [
            _collection_config(name, spec)
            for name, spec in _expect(raw, "collections", dict, {}).items()
        ]

        feed_raw = _expect(raw, "feed", dict, None)
        images_raw = raw.get("images")
        return cls(
            project_root=project_root,
            input_dir=project_root / dirs["input"],
            includes_dir=project_root / dirs["includes"],
            data_dir=project_root / dirs["data"],
            output_dir=project_root / dirs["output"],
            passthrough=passthrough,
            watch=watch,
            workers=workers,
            default_layout=_expect(raw, "default_layout", str, None),
            collections=collections,
            feed=parse_feed_config(feed_raw) if feed_raw is not None else None,
            images=parse_image_config(images_raw) if images_raw not in (None, False) else None,
            navigation=bool(raw.get("navigation", False)),
        )


def _expect(raw: dict[str, Any], key: str, kind: type, default: Any) -> Any:
    value = raw.get(key, default)
    if value is None:
        return default
    # bool is an int subclass; reject it where an int is expected.
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise ConfigurationError(
            f"'{key}' must be of type {kind.__name__}, got {type(value).__name__}"
        )
    return value


def _collection_config(name: str, spec: Any) -> CollectionConfig:
    if isinstance(spec, str):
        return CollectionConfig(name=name, tag=spec)
    if not isinstance(spec, dict) or "tag" not in spec:
        raise ConfigurationError(f"Collection '{name}' needs a 'tag'")
    return CollectionConfig(
        name=name,
        tag=str(spec["tag"]),
        sort=spec.get("sort"),
        reverse=bool(spec.get("reverse", False)),
    )


def parse_feed_config(raw: dict[str, Any]) -> FeedConfig:
    missing = [key for key in ("title", "base_url") if not raw.get(key)]
    if missing:
        raise ConfigurationError(f"feed is missing required keys: {', '.join(missing)}")
    limit = _expect(raw, "limit", int, 0)
    if limit < 0:
        raise ConfigurationError("feed.limit must be 0 (unlimited) or positive")
    fmt = str(raw.get("format", "atom")).lower()
    if fmt not in ("atom", "rss"):
        raise ConfigurationError(f"Unknown feed format '{fmt}'")
    return FeedConfig(
        title=str(raw["title"]),
        base_url=str(raw["base_url"]),
        collection_name=str(raw.get("collection", raw.get("collection_name", "posts"))),
        description=str(raw.get("description", "")),
        author_name=str(raw.get("author_name", "")),
        limit=limit,
        format=fmt,
        output=str(raw.get("output", "feed.xml" if fmt == "atom" else "rss.xml")),
    )


def parse_image_config(raw: Any) -> ImageConfig:
    if raw is True:
        return ImageConfig()
    if not isinstance(raw, dict):
        raise ConfigurationError("images must be a mapping or true")
    formats = raw.get("formats", ["webp"])
    if isinstance(formats, str):
        formats = [formats]
    width = _expect(raw, "width", int, None)
    return ImageConfig(
        formats=[str(f).lower() for f in formats],
        width=width,
        output=str(raw.get("output", "img")),
    )


def load_config(project_root: Path) -> SiteConfig:
    """Load site configuration from gorgon.yaml.

    Args:
        project_root: Root directory of the project.

    Returns:
        SiteConfig with defaults applied.

    Raises:
        ConfigurationError: If the file is not valid YAML or has invalid values.
    """
    config_path = project_root / CONFIG_FILENAME
    loaded: Any = {}
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            try:
                loaded = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise ConfigurationError(f"{config_path}: {exc}") from exc
        if not isinstance(loaded, dict):
            raise ConfigurationError(f"{config_path}: top level must be a mapping")
    else:
        logger.debug("No %s found in %s; using defaults", CONFIG_FILENAME, project_root)
    return SiteConfig.from_mapping(project_root, loaded)


def load_data(data_dir: Path) -> dict[str, Any]:
    """Load global data from YAML and JSON files in the data directory.

    `site.yaml` is merged at the top level; every other file is exposed under
    its stem.

    Args:
        data_dir: Directory holding the data files.

    Returns:
        Dictionary containing merged data from all files.
    """
    data: dict[str, Any] = {}
    if not data_dir.exists():
        return data
    for path in sorted(data_dir.iterdir()):
        suffix = path.suffix.lower()
        if not path.is_file() or suffix not in (".yaml", ".yml", ".json"):
            continue
        with open(path, encoding="utf-8") as f:
            try:
                payload = json.load(f) if suffix == ".json" else yaml.safe_load(f)
            except (yaml.YAMLError, json.JSONDecodeError) as exc:
                raise ConfigurationError(f"{path}: {exc}") from exc
        if path.stem == "site":
            if not isinstance(payload, dict):
                raise ConfigurationError(f"{path}: site data must be a mapping")
            data.update(payload)
        else:
            data[path.stem] = payload
    return data
