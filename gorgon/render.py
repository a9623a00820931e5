"""Render pipeline for Gorgon.

Every content item is rendered independently:

1. The body is rendered as a template string with the item context (global
   data, front matter at the top level, `page` and `collections`).
2. Markdown bodies are converted to HTML.
3. When the item names a layout, the layout is rendered with the body as
   `content`.

An item yields zero or more artifacts: none with `permalink: false`, one per
page when it paginates over a collection, one otherwise. Template failures
are collected as RenderErrors carrying the source path; the other items of
the pass still render.

Key class:
- RenderPipeline: Renders items to OutputArtifacts, optionally in parallel.
"""

from __future__ import annotations

import logging
import mimetypes
from collections.abc import Iterator, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any

from markupsafe import Markup

from .artifacts import OutputArtifact
from .collections import Collection
from .content import ContentItem
from .errors import ConfigurationError, RenderError, TemplateNotFoundError, TemplateRenderError
from .protocols import MarkdownConverter, TemplateRenderer
from .renderers import MarkdownRenderer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Pagination:
    """The `pagination` variable of one page of a paginated item.

    Attributes:
        items: Collection members shown on this page.
        page_number: 1-based number of this page.
        total_pages: Number of pages the item renders to.
        size: Maximum members per page.
        urls: URL of every page, in order.
        previous: URL of the previous page, or None on the first.
        next: URL of the next page, or None on the last.
    """

    items: list[ContentItem]
    page_number: int
    total_pages: int
    size: int
    urls: list[str]
    previous: str | None = None
    next: str | None = None


@dataclass(frozen=True)
class PageSlot:
    """Where one rendered page of an item goes.

    Attributes:
        output_path: Output path relative to the output root.
        url: Public URL of the page.
        pagination: Pagination context, or None for unpaginated items.
    """

    output_path: str
    url: str
    pagination: Pagination | None = None


class RenderPipeline:
    """Renders content items through the template and markdown capabilities.

    Attributes:
        engine: Template capability.
        markdown: Markdown capability.
        workers: Worker threads used for a pass; 1 renders sequentially.
    """

    def __init__(
        self,
        engine: TemplateRenderer,
        markdown: MarkdownConverter | None = None,
        workers: int = 1,
    ):
        self.engine = engine
        self.markdown = markdown or MarkdownRenderer()
        self.workers = max(1, workers)

    def render(
        self,
        items: Sequence[ContentItem],
        global_data: Mapping[str, Any],
        collections: Mapping[str, Collection] | None = None,
    ) -> tuple[list[OutputArtifact], list[RenderError]]:
        """Render every item.

        Returns:
            Tuple of (artifacts, errors), both in item order.
        """
        collections = collections or {}
        if self.workers > 1 and len(items) > 1:
            with ThreadPoolExecutor(max_workers=self.workers) as pool:
                results = list(pool.map(lambda i: self.render_item(i, global_data, collections), items))
        else:
            results = [self.render_item(item, global_data, collections) for item in items]

        artifacts: list[OutputArtifact] = []
        errors: list[RenderError] = []
        for produced, error in results:
            artifacts.extend(produced)
            if error is not None:
                logger.error("Failed to render %s", error)
                errors.append(error)
        return artifacts, errors

    def render_item(
        self,
        item: ContentItem,
        global_data: Mapping[str, Any],
        collections: Mapping[str, Collection],
    ) -> tuple[list[OutputArtifact], RenderError | None]:
        """Render one item, turning template failures into a RenderError."""
        try:
            return list(self.iter_artifacts(item, global_data, collections)), None
        except RenderError as exc:
            return [], exc
        except (TemplateNotFoundError, TemplateRenderError) as exc:
            return [], RenderError(item.source_path, str(exc), exc)

    def iter_artifacts(
        self,
        item: ContentItem,
        global_data: Mapping[str, Any],
        collections: Mapping[str, Collection],
    ) -> Iterator[OutputArtifact]:
        for slot in self.page_slots(item, collections):
            context = self.build_context(item, global_data, collections, slot)
            html = self.render_body(item, context)
            if item.template:
                content = self.engine.render(item.template, {**context, "content": Markup(html)})
            else:
                content = html.encode("utf-8")
            yield OutputArtifact(
                path=slot.output_path,
                content=content,
                source=item.source_path,
                media_type=_media_type(slot.output_path),
            )

    def build_context(
        self,
        item: ContentItem,
        global_data: Mapping[str, Any],
        collections: Mapping[str, Collection],
        slot: PageSlot,
    ) -> dict[str, Any]:
        """Assemble the template context of one page.

        Front matter overrides global data; `page`, `collections` and
        `title` are always set by the pipeline.
        """
        context: dict[str, Any] = dict(global_data)
        context.update(item.metadata)
        page = item.page_data()
        page.update(url=slot.url, output_path=slot.output_path)
        context.update(
            page=page,
            collections=collections,
            title=item.title,
            item=item,
        )
        if slot.pagination is not None:
            context["pagination"] = slot.pagination
        return context

    def render_body(self, item: ContentItem, context: dict[str, Any]) -> str:
        body = item.body
        if item.metadata.get("template_engine", True) is not False:
            body = self.engine.render_string(body, context, item.rel_path)
        if item.source_type == "markdown":
            body = self.markdown.convert(body)
        return body

    def page_slots(
        self, item: ContentItem, collections: Mapping[str, Collection]
    ) -> list[PageSlot]:
        """Return the pages an item renders to.

        Raises:
            ConfigurationError: If the pagination settings are malformed.
            RenderError: If the paginated collection does not exist.
        """
        if item.output_path is None or item.url is None:
            return []
        raw = item.metadata.get("pagination")
        if not raw:
            return [PageSlot(item.output_path, item.url)]
        if not isinstance(raw, Mapping) or "collection" not in raw:
            raise ConfigurationError(f"{item.source_path}: pagination needs a 'collection'")
        size = raw.get("size", 10)
        if isinstance(size, bool) or not isinstance(size, int) or size < 1:
            raise ConfigurationError(f"{item.source_path}: pagination.size must be a positive integer")
        name = str(raw["collection"])
        if name not in collections:
            raise RenderError(item.source_path, f"Unknown pagination collection '{name}'")

        members = list(collections[name])
        chunks = [members[i : i + size] for i in range(0, len(members), size)] or [[]]
        locations = [_page_location(item.output_path, item.url, n) for n in range(1, len(chunks) + 1)]
        urls = [url for _, url in locations]
        slots = []
        for index, (chunk, (output_path, url)) in enumerate(zip(chunks, locations)):
            pagination = Pagination(
                items=chunk,
                page_number=index + 1,
                total_pages=len(chunks),
                size=size,
                urls=urls,
                previous=urls[index - 1] if index > 0 else None,
                next=urls[index + 1] if index + 1 < len(urls) else None,
            )
            slots.append(PageSlot(output_path, url, pagination))
        return slots


def _page_location(output_path: str, url: str, number: int) -> tuple[str, str]:
    """Output path and URL of page `number` (1-based) of a paginated item.

    Examples:
        >>> _page_location("blog/index.html", "/blog/", 2)
        ('blog/2/index.html', '/blog/2/')
    """
    if number == 1:
        return output_path, url
    path = PurePosixPath(output_path)
    if path.name == "index.html":
        prefix = "" if str(path.parent) == "." else f"{path.parent}/"
        base_url = url if url.endswith("/") else url.rsplit("/", 1)[0] + "/"
        return f"{prefix}{number}/index.html", f"{base_url}{number}/"
    paged = path.with_name(f"{path.stem}-{number}{path.suffix}")
    return paged.as_posix(), "/" + paged.as_posix()


def _media_type(path: str) -> str:
    guessed, _ = mimetypes.guess_type(path)
    return guessed or "text/html"
