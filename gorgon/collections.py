from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from .config import CollectionConfig
from .content import ContentItem
from .errors import ConfigurationError

Predicate = Callable[[ContentItem], bool]
SortKey = Callable[[ContentItem], Any]


class Collection(Sequence[ContentItem]):
    """Named, ordered, read-only view over ContentItems."""

    def __init__(self, name: str, items: Iterable[ContentItem]):
        self.name = name
        self._items = tuple(items)

    def __iter__(self) -> Iterator[ContentItem]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __getitem__(self, item):
        return self._items[item]

    def with_tag(self, tag: str) -> Collection:
        return Collection(f"{self.name}[{tag}]", (i for i in self._items if tag in i.tags))

    def latest(self, count: int = 5) -> Collection:
        """Return the `count` most recent items, newest first."""
        ordered = sorted(self._items, key=lambda i: i.date, reverse=True)
        return Collection(self.name, ordered[:count])

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"Collection({self.name!r}, {len(self._items)} items)"


def has_tag(tag: str) -> Predicate:
    def predicate(item: ContentItem) -> bool:
        return tag in item.tags

    predicate.__name__ = f"has_tag_{tag}"
    return predicate


def metadata_key(name: str) -> SortKey:
    """Return a sort key reading `name` from an item.

    `date` and `title` read the resolved item attributes; any other name
    reads front matter. Items missing the key sort before items that have it.
    """
    if name in ("date", "title"):
        def attribute(item: ContentItem) -> Any:
            return getattr(item, name)

        attribute.__name__ = name
        return attribute

    def key(item: ContentItem) -> tuple[bool, Any]:
        value = item.metadata.get(name)
        return (value is not None, value if value is not None else 0)

    key.__name__ = name
    return key


def build_collection(
    name: str,
    items: Iterable[ContentItem],
    predicate: Predicate,
    sort_key: SortKey | None = None,
    reverse: bool = False,
) -> Collection:
    """Select the items satisfying `predicate`, in discovery order.

    With a sort key the order is a stable sort: items with equal keys keep
    their relative discovery order, also when `reverse` is True.

    Raises:
        ConfigurationError: If the sort values of two members cannot be
            compared, such as a number and a string.
    """
    members = [item for item in items if predicate(item)]
    if sort_key is not None:
        # sorted() keeps ties in input order even with reverse=True.
        try:
            members = sorted(members, key=sort_key, reverse=reverse)
        except TypeError as exc:
            key_name = getattr(sort_key, "__name__", repr(sort_key))
            sources = ", ".join(item.rel_path for item in members)
            raise ConfigurationError(
                f"Collection {name!r}: cannot sort by {key_name!r} ({exc}); items: {sources}"
            ) from exc
    return Collection(name, members)


@dataclass(frozen=True)
class CollectionSpec:
    name: str
    predicate: Predicate
    sort_key: SortKey | None = None
    reverse: bool = False

    @classmethod
    def from_config(cls, config: CollectionConfig) -> CollectionSpec:
        return cls(
            name=config.name,
            predicate=has_tag(config.tag),
            sort_key=metadata_key(config.sort) if config.sort else None,
            reverse=config.reverse,
        )


class CollectionBuilder:
    """Rebuilds every named collection from the current set of items.

    Besides the declared specs, `all` holds every item and each tag gets a
    collection of the same name unless a spec already claims that name.
    """

    def __init__(self, specs: Iterable[CollectionSpec] = ()):
        self._specs: dict[str, CollectionSpec] = {}
        for spec in specs:
            self.add(spec)

    def add(self, spec: CollectionSpec) -> None:
        if spec.name in self._specs or spec.name == "all":
            raise ConfigurationError(f"Collection '{spec.name}' is already defined")
        self._specs[spec.name] = spec

    def build(self, items: Sequence[ContentItem]) -> Mapping[str, Collection]:
        collections: dict[str, Collection] = {"all": Collection("all", items)}
        for spec in self._specs.values():
            collections[spec.name] = build_collection(
                spec.name, items, spec.predicate, spec.sort_key, spec.reverse
            )
        for item in items:
            for tag in item.tags:
                if tag not in collections:
                    collections[tag] = build_collection(tag, items, has_tag(tag))
        return collections

    def __contains__(self, name: object) -> bool:
        return name in self._specs
