"""Navigation plugin for Gorgon.

Items opt into site navigation with a `nav` front matter mapping:

    nav:
      key: Guides
      parent: Docs
      order: 2

The plugin turns those entries into an ordered tree and publishes it to
templates as `navigation`. It also contributes a `breadcrumbs` filter that
returns the chain of entries leading to a key.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .errors import ConfigurationError
from .filters import Filter
from .plugins import BuildContext, Phase, Plugin

if TYPE_CHECKING:
    from .content import ContentItem

logger = logging.getLogger(__name__)


@dataclass
class NavEntry:
    """One node of the navigation tree.

    Attributes:
        key: Unique identifier other entries use as `parent`.
        title: Label shown in menus.
        url: URL of the item, or None when it produces no page.
        order: Sort weight among siblings; ties keep discovery order.
        parent: Key of the parent entry, or None for top-level entries.
        children: Child entries in display order.
    """

    key: str
    title: str
    url: str | None
    order: float = 0
    parent: str | None = None
    children: list[NavEntry] = field(default_factory=list)


def _entry_from_item(item: ContentItem) -> NavEntry | None:
    raw = item.metadata.get("nav")
    if raw in (None, False):
        return None
    if raw is True:
        raw = {}
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"{item.source_path}: 'nav' must be a mapping")
    key = str(raw.get("key") or item.title)
    order = raw.get("order", 0)
    if isinstance(order, bool) or not isinstance(order, (int, float)):
        raise ConfigurationError(f"{item.source_path}: nav.order must be a number")
    parent = raw.get("parent")
    return NavEntry(
        key=key,
        title=str(raw.get("title") or key),
        url=item.url,
        order=order,
        parent=str(parent) if parent else None,
    )


def build_navigation(items: Sequence[ContentItem]) -> list[NavEntry]:
    """Build the navigation tree from item front matter.

    An entry whose parent is unknown, or whose parent chain loops back to
    itself, is logged and placed at the top level. A repeated key keeps the
    first entry.

    Returns:
        Top-level entries in display order.
    """
    entries: dict[str, NavEntry] = {}
    for item in items:
        entry = _entry_from_item(item)
        if entry is None:
            continue
        if entry.key in entries:
            logger.warning("Duplicate navigation key '%s' in %s; keeping the first", entry.key, item.rel_path)
            continue
        entries[entry.key] = entry

    ordered = sorted(entries.values(), key=lambda e: e.order)
    roots: list[NavEntry] = []
    for entry in ordered:
        if entry.parent is None:
            roots.append(entry)
        elif entry.parent not in entries:
            logger.warning("Navigation parent '%s' of '%s' not found", entry.parent, entry.key)
            roots.append(entry)
        elif _has_cycle(entry, entries):
            logger.warning("Navigation entry '%s' is its own ancestor", entry.key)
            roots.append(entry)
        else:
            entries[entry.parent].children.append(entry)
    return roots


def _has_cycle(entry: NavEntry, entries: Mapping[str, NavEntry]) -> bool:
    seen = set()
    current = entry.parent
    while current is not None and current in entries:
        if current == entry.key:
            return True
        if current in seen:
            return False
        seen.add(current)
        current = entries[current].parent
    return False


def breadcrumbs(tree: Sequence[NavEntry], key: str) -> list[NavEntry]:
    """Return the entries from the top level down to `key`, inclusive.

    Returns an empty list when `key` is not in the tree.
    """
    for entry in tree or ():
        if entry.key == key:
            return [entry]
        trail = breadcrumbs(entry.children, key)
        if trail:
            return [entry, *trail]
    return []


class NavigationPlugin(Plugin):
    """Publishes the navigation tree as the `navigation` global."""

    name = "navigation"
    phases = frozenset({Phase.POST_COLLECTION})
    reads = frozenset({"items"})
    writes = frozenset({"navigation"})

    def filters(self) -> Mapping[str, Filter]:
        return {"breadcrumbs": breadcrumbs}

    def post_collection(self, context: BuildContext) -> None:
        tree = build_navigation(context.items)
        context.publish(self, "navigation", tree)
        logger.debug("Built navigation with %d top-level entries", len(tree))

    def configure(self, config: Any) -> None:
        if config not in (None, True) and not isinstance(config, Mapping):
            raise ConfigurationError("navigation plugin takes no options")
        self.config = config
