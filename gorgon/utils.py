"""Utility functions for Gorgon.

This module contains small helpers used throughout the pipeline: string
processing, path handling, date extraction and glob matching.

Key functions:
    slugify: Convert filenames to URL slugs.
    titleize: Convert filenames to human-readable titles.
    extract_date_from_name: Extract date from filename prefix.
    coerce_datetime: Normalize front matter dates to timezone-aware datetimes.
    first_paragraph: Plain-text summary of a body.
    join_root_url: Join a base URL with a path.
    glob_match: Match a POSIX path against a glob with `**` support.
    glob_base: Static directory prefix of a glob pattern.
    ensure_clean_dir: Empty or create a directory.
"""

from __future__ import annotations

import re
import shutil
from datetime import date, datetime, timezone
from fnmatch import fnmatchcase
from pathlib import Path, PurePosixPath

_GLOB_CHARS = re.compile(r"[*?\[]")


def slugify(name: str) -> str:
    """Convert filename (without extension) to slug, dropping date prefix.

    Args:
        name: Filename stem.

    Returns:
        URL-friendly slug.
    """
    cleaned = str(name)
    if "-" in cleaned:
        parts = cleaned.split("-")
        if len(parts) >= 4 and all(p.isdigit() for p in parts[:3]):
            cleaned = "-".join(parts[3:])
    cleaned = re.sub(r"[^a-zA-Z0-9]+", "-", cleaned)
    cleaned = cleaned.strip("-").lower()
    return cleaned or "index"


def titleize(filename: str) -> str:
    """Convert a filename to a human-readable title.

    Examples:
        >>> titleize("2024-01-15-hello-world.md")
        'Hello World'
    """
    base = Path(filename).stem
    if "-" in base:
        parts = base.split("-")
        if len(parts) >= 4 and all(p.isdigit() for p in parts[:3]):
            base = "-".join(parts[3:])
    words = re.split(r"[\s\-_]+", base)
    return " ".join(word.capitalize() for word in words if word) or "Untitled"


def extract_date_from_name(name: str) -> datetime | None:
    """Extract a date from a filename with YYYY-MM-DD prefix.

    Args:
        name: Filename stem (without extension).

    Returns:
        UTC datetime if a valid date prefix is found, None otherwise.
    """
    parts = name.split("-")
    if len(parts) >= 3 and all(p.isdigit() for p in parts[:3]):
        try:
            return datetime(int(parts[0]), int(parts[1]), int(parts[2]), tzinfo=timezone.utc)
        except ValueError:
            return None
    return None


def coerce_datetime(value: object) -> datetime | None:
    """Normalize a front matter date value.

    YAML yields `date` or `datetime` objects for unquoted values and plain
    strings for quoted ones. Naive values are taken to be UTC.

    Returns:
        A timezone-aware datetime, or None when the value is not a date.
    """
    if isinstance(value, datetime):
        result = value
    elif isinstance(value, date):
        result = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        try:
            result = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if result.tzinfo is None:
        result = result.replace(tzinfo=timezone.utc)
    return result


def first_paragraph(text: str, limit: int = 160) -> str:
    """Extract and clean the first paragraph from text.

    Strips leading # (headers), HTML tags, and Jinja syntax.
    Collapses whitespace and truncates to the specified limit.
    """
    paragraphs = [p.strip() for p in text.split("\n\n") if p.strip()]
    for para in paragraphs:
        if para.startswith("#") or para.startswith(("![", "```")):
            continue
        para = re.sub(r"<[^>]+>", "", para)
        para = re.sub(r"\{[%#{].*?[%#}]\}", "", para)
        collapsed = " ".join(para.split())
        if collapsed:
            return collapsed[:limit]
    return ""


def join_root_url(root_url: str, path: str) -> str:
    """Safely join a root URL and a path, avoiding double slashes.

    Examples:
        >>> join_root_url('https://example.com/', 'about')
        'https://example.com/about'
    """
    if path.startswith(("http://", "https://", "//")):
        return path
    if not root_url:
        return path
    base = root_url.rstrip("/")
    suffix = path if path.startswith("/") else f"/{path}"
    return f"{base}{suffix}"


def is_markdown(path: Path) -> bool:
    """Check if a path is a Markdown file."""
    return path.suffix.lower() == ".md"


def is_template(path: Path) -> bool:
    """Check if a path is a Jinja template file (.jinja, .j2 or .njk)."""
    return path.suffix.lower() in {".jinja", ".j2", ".njk"}


def is_html(path: Path) -> bool:
    """Check if a path is a plain HTML file."""
    return path.suffix.lower() == ".html"


def is_content_file(path: Path) -> bool:
    return is_markdown(path) or is_template(path) or is_html(path)


def glob_match(path: str, pattern: str) -> bool:
    """Match a relative POSIX path against a glob pattern.

    Wildcards match within one path segment, so `css/*.css` matches
    `css/site.css` but not `css/vendor/reset.css`. A `**` segment matches
    zero or more directories, so `css/**/*.css` matches both. A pattern
    without glob characters matches the path itself and anything beneath it.

    Examples:
        >>> glob_match("css/site.css", "css/**/*.css")
        True
        >>> glob_match("css/vendor/reset.css", "css/*.css")
        False
    """
    path = PurePosixPath(path).as_posix()
    pattern = PurePosixPath(pattern).as_posix()
    if not _GLOB_CHARS.search(pattern):
        return path == pattern or path.startswith(pattern.rstrip("/") + "/")
    return _match_segments(path.split("/"), pattern.split("/"))


def _match_segments(parts: list[str], patterns: list[str]) -> bool:
    if not patterns:
        return not parts
    head, rest = patterns[0], patterns[1:]
    if head == "**":
        return any(_match_segments(parts[i:], rest) for i in range(len(parts) + 1))
    return bool(parts) and fnmatchcase(parts[0], head) and _match_segments(parts[1:], rest)


def glob_base(pattern: str) -> str:
    """Return the leading directory of a glob that contains no wildcards.

    Examples:
        >>> glob_base("css/**/*.css")
        'css'
        >>> glob_base("*.css")
        '.'
    """
    parts = PurePosixPath(pattern).parts
    static: list[str] = []
    for part in parts:
        if _GLOB_CHARS.search(part):
            break
        static.append(part)
    else:
        # No wildcard at all: the pattern names a file or directory itself.
        static = static[:-1] if static else static
    return "/".join(static) or "."


def ensure_clean_dir(path: Path) -> None:
    """Ensure a directory exists and is empty.

    Args:
        path: Directory path to clean or create.
    """
    if path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True, exist_ok=True)


def remove_empty_parents(path: Path, stop: Path) -> None:
    """Remove empty directories from `path` upwards, stopping below `stop`."""
    current = path
    while current != stop and stop in current.parents:
        try:
            current.rmdir()
        except OSError:
            return
        current = current.parent
