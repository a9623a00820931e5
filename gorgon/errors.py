"""Error taxonomy for Gorgon.

Every error raised by the pipeline derives from GorgonError so callers can
catch the whole family at once. The hierarchy mirrors how each failure is
handled during a build:

- ConfigurationError: fatal at startup, before any build pass.
- DiscoveryError: reported, the content file is skipped.
- RenderError: reported per item, the pass continues.
- ArtifactCollisionError: fatal for the pass, nothing is written.
- WatchIOError: logged, watching continues on remaining targets.
"""

from __future__ import annotations

from pathlib import Path


class GorgonError(Exception):
    """Base class for all Gorgon errors."""


class ConfigurationError(GorgonError):
    """Invalid configuration detected while setting up the pipeline."""


class DuplicateFilterError(ConfigurationError):
    """A filter name was registered twice.

    Attributes:
        name: The filter name that was already registered.
    """

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Filter '{name}' is already registered")


class DuplicatePluginError(ConfigurationError):
    """A plugin name was registered twice."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Plugin '{name}' is already registered")


class UnknownFilterError(GorgonError, KeyError):
    """A filter was invoked that has not been registered."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(name)

    def __str__(self) -> str:
        return f"Unknown filter '{self.name}'"


class DiscoveryError(GorgonError):
    """A content file could not be read or parsed.

    Attributes:
        source_path: Path of the content file.
        message: Human-readable reason.
    """

    def __init__(self, source_path: Path, message: str):
        self.source_path = source_path
        self.message = message
        super().__init__(f"{source_path}: {message}")


class TemplateNotFoundError(GorgonError):
    """The template capability could not resolve a template identifier."""

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Template not found: {template_id}")


class TemplateRenderError(GorgonError):
    """A template failed to render.

    Attributes:
        template_id: Identifier of the failing template.
        lineno: Line number inside the template, when known.
        message: Human-readable error message.
    """

    def __init__(self, template_id: str, message: str, lineno: int | None = None):
        self.template_id = template_id
        self.lineno = lineno
        self.message = message
        location = f"{template_id}:{lineno}" if lineno else template_id
        super().__init__(f"{location}: {message}")


class RenderError(GorgonError):
    """Error while rendering a content item, with file context.

    Attributes:
        source_path: Path to the source file that caused the error.
        message: Human-readable error message.
        original_error: The original exception that was caught.
    """

    def __init__(
        self,
        source_path: Path | None,
        message: str,
        original_error: Exception | None = None,
    ):
        self.source_path = source_path
        self.message = message
        self.original_error = original_error
        super().__init__(f"{source_path}: {message}")


class ArtifactCollisionError(GorgonError):
    """Two outputs of the same build pass resolved to one path.

    Attributes:
        path: The contested output path.
        sources: Sources of the existing and the new artifact.
    """

    def __init__(self, path: str, sources: tuple[Path | None, Path | None]):
        self.path = path
        self.sources = sources
        first, second = (str(s) if s else "<generated>" for s in sources)
        super().__init__(f"Output path '{path}' produced by both {first} and {second}")


DuplicateOutputPathError = ArtifactCollisionError


class WatchIOError(GorgonError):
    """A watch target could not be monitored."""

    def __init__(self, target: str, message: str):
        self.target = target
        self.message = message
        super().__init__(f"Cannot watch '{target}': {message}")


class UnsupportedFormatError(GorgonError):
    """The image capability cannot read or produce the requested format."""

    def __init__(self, fmt: str, message: str | None = None):
        self.format = fmt
        super().__init__(message or f"Unsupported image format: {fmt}")
