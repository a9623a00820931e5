"""Feed generation for Gorgon.

This module provides the feed plugin, which turns a named collection into a
syndication document (Atom by default, RSS 2.0 on request). Generators are
pure functions of the collection, the feed settings and the build time, so
the same inputs always produce the same bytes apart from the feed-level
"updated" timestamp.

Classes:
    FeedGenerator: Base class for feed formats.
    AtomGenerator: Generates Atom 1.0 documents.
    RSSGenerator: Generates RSS 2.0 documents.
    FeedPlugin: POST_RENDER plugin emitting the feed artifact.

Functions:
    select_entries: Apply the item limit while keeping collection order.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import TYPE_CHECKING, Any
from xml.sax.saxutils import escape, quoteattr

from .artifacts import OutputArtifact
from .config import FeedConfig, parse_feed_config
from .errors import ConfigurationError
from .plugins import BuildContext, Phase, Plugin
from .utils import join_root_url

if TYPE_CHECKING:
    from .content import ContentItem

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def select_entries(items: Sequence[ContentItem], limit: int) -> list[ContentItem]:
    """Keep the `limit` most recent items, preserving collection order.

    Args:
        items: Items in collection order.
        limit: Maximum number of entries; 0 means unlimited.

    Returns:
        The selected items in their original order.
    """
    published = [item for item in items if item.url is not None]
    if limit <= 0 or len(published) <= limit:
        return published
    newest = sorted(range(len(published)), key=lambda i: published[i].date, reverse=True)
    keep = sorted(newest[:limit])
    return [published[i] for i in keep]


class FeedGenerator(ABC):
    """Base class for feed formats."""

    media_type = "application/xml"

    @abstractmethod
    def generate(
        self,
        items: Sequence[ContentItem],
        config: FeedConfig,
        updated: datetime,
    ) -> str:
        """Generate the feed document.

        Args:
            items: Entries, already limited, in output order.
            config: Feed settings.
            updated: Feed-level build timestamp.

        Returns:
            The XML document.
        """
        ...


class AtomGenerator(FeedGenerator):
    """Generates Atom 1.0 feeds."""

    media_type = "application/atom+xml"

    def generate(
        self,
        items: Sequence[ContentItem],
        config: FeedConfig,
        updated: datetime,
    ) -> str:
        base_url = config.base_url.rstrip("/") + "/"
        self_url = join_root_url(config.base_url, config.output)
        lines = [
            '<?xml version="1.0" encoding="utf-8"?>',
            '<feed xmlns="http://www.w3.org/2005/Atom">',
            f"  <title>{escape(config.title)}</title>",
        ]
        if config.description:
            lines.append(f"  <subtitle>{escape(config.description)}</subtitle>")
        lines.extend(
            [
                f"  <link href={quoteattr(self_url)} rel=\"self\"/>",
                f"  <link href={quoteattr(base_url)}/>",
                f"  <updated>{_iso(updated)}</updated>",
                f"  <id>{escape(base_url)}</id>",
            ]
        )
        if config.author_name:
            lines.append(f"  <author><name>{escape(config.author_name)}</name></author>")
        for item in items:
            link = join_root_url(config.base_url, item.url or "/")
            timestamp = _iso(item.date)
            lines.extend(
                [
                    "  <entry>",
                    f"    <title>{escape(item.title)}</title>",
                    f"    <link href={quoteattr(link)}/>",
                    f"    <id>{escape(link)}</id>",
                    f"    <published>{timestamp}</published>",
                    f"    <updated>{timestamp}</updated>",
                    f"    <summary>{escape(item.description or item.title)}</summary>",
                    "  </entry>",
                ]
            )
        lines.append("</feed>")
        return "\n".join(lines) + "\n"


class RSSGenerator(FeedGenerator):
    """Generates RSS 2.0 feeds."""

    media_type = "application/rss+xml"

    def generate(
        self,
        items: Sequence[ContentItem],
        config: FeedConfig,
        updated: datetime,
    ) -> str:
        base_url = config.base_url.rstrip("/") + "/"
        rss = [
            '<?xml version="1.0" encoding="utf-8"?>',
            '<rss version="2.0"><channel>',
            f"<title>{escape(config.title)}</title>",
            f"<link>{escape(base_url)}</link>",
            f"<description>{escape(config.description or config.title)}</description>",
            f"<lastBuildDate>{format_datetime(updated.astimezone(timezone.utc), usegmt=True)}</lastBuildDate>",
        ]
        for item in items:
            link = escape(join_root_url(config.base_url, item.url or "/"))
            pub_date = format_datetime(item.date.astimezone(timezone.utc), usegmt=True)
            description = escape(item.description or item.title)
            author = f"<author>{escape(config.author_name)}</author>" if config.author_name else ""
            rss.append(
                f"<item><title>{escape(item.title)}</title><link>{link}</link>"
                f"<guid>{link}</guid><description>{description}</description>"
                f"{author}<pubDate>{pub_date}</pubDate></item>"
            )
        rss.append("</channel></rss>")
        return "\n".join(rss) + "\n"


GENERATORS: dict[str, type[FeedGenerator]] = {
    "atom": AtomGenerator,
    "rss": RSSGenerator,
}


class FeedPlugin(Plugin):
    """Emits a syndication feed for one collection.

    Attributes:
        config: Feed settings (FeedConfig).
        clock: Returns the feed-level "updated" timestamp.
    """

    name = "feed"
    phases = frozenset({Phase.POST_RENDER})
    reads = frozenset({"collections"})

    def __init__(self, config: FeedConfig | None = None, clock: Clock | None = None):
        self.config = config
        self.clock = clock or _utc_now

    def configure(self, config: Any) -> None:
        if isinstance(config, dict):
            config = parse_feed_config(config)
        if not isinstance(config, FeedConfig):
            raise ConfigurationError("feed plugin expects a FeedConfig")
        self.config = config

    def build_artifact(self, context: BuildContext) -> OutputArtifact:
        """Generate the feed artifact for the configured collection."""
        config = self.config
        if config is None:
            raise ConfigurationError("feed plugin registered without configuration")
        collection = context.collections.get(config.collection_name)
        if collection is None:
            logger.warning("Feed collection '%s' does not exist; feed is empty", config.collection_name)
            collection = ()
        entries = select_entries(list(collection), config.limit)
        generator = GENERATORS[config.format]()
        document = generator.generate(entries, config, self.clock())
        return OutputArtifact(
            path=config.output,
            content=document.encode("utf-8"),
            media_type=generator.media_type,
        )

    def post_render(self, context: BuildContext) -> None:
        artifact = self.build_artifact(context)
        context.artifacts.add(artifact)
        logger.info("Generated feed %s", artifact.path)
