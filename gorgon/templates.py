"""Template rendering engine for Gorgon.

This module uses Jinja2 to render layouts and content bodies. Layouts and
partials are loaded from the includes directory; content bodies are
rendered from source strings. Filters from the FilterRegistry are installed
into the environment so templates can call them by name.

Key class:
- TemplateEngine: Jinja2 implementation of the TemplateRenderer protocol.
"""

from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import Any

from jinja2 import (
    Environment,
    FileSystemLoader,
    TemplateNotFound,
    TemplateSyntaxError,
    select_autoescape,
)

from .errors import TemplateNotFoundError, TemplateRenderError
from .filters import FilterRegistry


def _format_error_message(exc: Exception) -> str:
    """Format an exception into a user-friendly error message."""
    error_type = type(exc).__name__
    error_msg = str(exc)

    if error_type == "UndefinedError":
        return f"Undefined variable: {error_msg}"
    if error_type == "TypeError":
        return f"Type error: {error_msg}"
    if error_type == "AttributeError":
        return f"Attribute error: {error_msg}"

    return f"{error_type}: {error_msg}"


class TemplateEngine:
    """Template rendering engine using Jinja2.

    Attributes:
        includes_dir: Directory containing layouts and partials.
        filters: Registry whose filters are exposed to templates.
        env: Jinja2 environment.
    """

    def __init__(
        self,
        includes_dir: Path,
        filters: FilterRegistry | None = None,
        globals: dict[str, Any] | None = None,
    ):
        """Initialize the template engine.

        Args:
            includes_dir: Directory with layouts and partials.
            filters: Optional filter registry to install.
            globals: Optional extra template globals.
        """
        self.includes_dir = includes_dir
        self.filters = filters or FilterRegistry()
        self.env = Environment(
            loader=FileSystemLoader([includes_dir]),
            autoescape=select_autoescape(["html", "xml"]),
            enable_async=False,
        )
        self.env.filters.update(self.filters.as_mapping())
        if globals:
            self.env.globals.update(globals)

    def render(self, template_id: str, context: dict[str, Any]) -> bytes:
        """Render a layout template to UTF-8 bytes.

        Raises:
            TemplateNotFoundError: If the layout does not exist.
            TemplateRenderError: If the layout fails to parse or render.
        """
        try:
            template = self.env.select_template(layout_candidates(template_id))
        except TemplateNotFound as exc:
            raise TemplateNotFoundError(template_id) from exc
        except TemplateSyntaxError as exc:
            raise TemplateRenderError(
                exc.name or template_id, f"Template syntax error: {exc.message}", exc.lineno
            ) from exc
        return self._render(template, template_id, context).encode("utf-8")

    def render_string(self, source: str, context: dict[str, Any], name: str = "<string>") -> str:
        """Render a template given as source text.

        Raises:
            TemplateNotFoundError: If the source includes a missing partial.
            TemplateRenderError: If the source fails to parse or render.
        """
        try:
            template = self.env.from_string(source)
        except TemplateSyntaxError as exc:
            raise TemplateRenderError(name, f"Template syntax error: {exc.message}", exc.lineno) from exc
        return self._render(template, name, context)

    def _render(self, template, name: str, context: dict[str, Any]) -> str:
        try:
            return template.render(**context)
        except TemplateNotFound as exc:
            raise TemplateNotFoundError(str(exc.name)) from exc
        except TemplateSyntaxError as exc:
            raise TemplateRenderError(
                exc.name or name, f"Template syntax error: {exc.message}", exc.lineno
            ) from exc
        except Exception as exc:
            raise TemplateRenderError(name, _format_error_message(exc), _lineno(exc)) from exc


def layout_candidates(layout: str) -> list[str]:
    """Names tried, in order, when resolving a layout identifier.

    Examples:
        >>> layout_candidates("post")
        ['post', 'post.html', 'post.jinja', 'post.html.jinja', 'post.njk']
    """
    if PurePosixPath(layout).suffix:
        return [layout]
    return [layout, f"{layout}.html", f"{layout}.jinja", f"{layout}.html.jinja", f"{layout}.njk"]


def _lineno(exc: Exception) -> int | None:
    """Best-effort template line number from a Jinja traceback."""
    tb = exc.__traceback__
    lineno = None
    while tb is not None:
        if "__jinja_template__" in tb.tb_frame.f_globals:
            lineno = tb.tb_lineno
        tb = tb.tb_next
    return lineno
