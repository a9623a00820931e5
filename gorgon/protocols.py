"""Protocol definitions for Gorgon.

The pipeline consumes its external collaborators (template engine, markdown
converter, image transformer, CSS minifier) only through these narrow
interfaces, so tests can substitute fakes and alternative engines can be
plugged in without touching the pipeline.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class TemplateRenderer(Protocol):
    """Protocol for the template capability."""

    @abstractmethod
    def render(self, template_id: str, context: dict[str, Any]) -> bytes:
        """Render a named template.

        Args:
            template_id: Template identifier (e.g. 'post.html').
            context: Variables to make available in the template.

        Returns:
            Rendered bytes.

        Raises:
            TemplateNotFoundError: If the template cannot be resolved.
            TemplateRenderError: If rendering fails.
        """
        ...

    @abstractmethod
    def render_string(self, source: str, context: dict[str, Any], name: str = "<string>") -> str:
        """Render a template given as source text.

        Raises:
            TemplateRenderError: If the source fails to parse or render.
        """
        ...


@runtime_checkable
class MarkdownConverter(Protocol):
    """Protocol for converting markdown text to HTML."""

    @abstractmethod
    def convert(self, text: str) -> str:
        ...


@runtime_checkable
class ImageTransformer(Protocol):
    """Protocol for the image transform capability."""

    @abstractmethod
    def transform(self, data: bytes, fmt: str, width: int | None = None) -> bytes:
        """Derive an image.

        Args:
            data: Source image bytes.
            fmt: Target format name (e.g. 'webp', 'jpeg').
            width: Maximum width in pixels, or None to keep the source width.

        Returns:
            Encoded bytes of the derived image.

        Raises:
            UnsupportedFormatError: If the source or target format is not supported.
        """
        ...


@runtime_checkable
class CssMinifier(Protocol):
    """Protocol for the CSS minify capability: pure and total."""

    @abstractmethod
    def __call__(self, code: str) -> str:
        ...
