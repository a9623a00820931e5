"""Template filters for Gorgon.

A filter is a named, pure function `(value, *args) -> value` that templates
can apply while rendering a single content item. Filters are registered once
at configuration time into a FilterRegistry; registering the same name twice
is an error rather than a silent override.

Built-in filters:
- cssmin: Minify a CSS string (csscompressor).
- jsmin: Minify a JavaScript string (rjsmin).
- slugify: Turn a string into a URL slug.
- date: Format a date with strftime.
- absolute_url: Join a base URL and a path.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping
from datetime import date as _date
from types import MappingProxyType
from typing import Any

import csscompressor
from rjsmin import jsmin as _jsmin

from .errors import DuplicateFilterError, UnknownFilterError
from .protocols import CssMinifier
from .utils import coerce_datetime, join_root_url, slugify

logger = logging.getLogger(__name__)

Filter = Callable[..., Any]


class FilterRegistry:
    """Holds named template filters.

    Filters must not keep state between invocations: each call is a pure
    function of its explicit arguments so that items can be rendered in
    parallel and re-rendered on every pass.
    """

    def __init__(self) -> None:
        self._filters: dict[str, Filter] = {}

    def register(self, name: str, fn: Filter) -> None:
        """Register a filter.

        Raises:
            DuplicateFilterError: If `name` is already registered.
        """
        if name in self._filters:
            raise DuplicateFilterError(name)
        if not callable(fn):
            raise TypeError(f"Filter '{name}' must be callable")
        self._filters[name] = fn
        logger.debug("Registered filter %s", name)

    def invoke(self, name: str, value: Any, *args: Any, **kwargs: Any) -> Any:
        """Apply the filter `name` to `value`.

        Raises:
            UnknownFilterError: If no filter is registered under `name`.
        """
        try:
            fn = self._filters[name]
        except KeyError:
            raise UnknownFilterError(name) from None
        return fn(value, *args, **kwargs)

    def names(self) -> list[str]:
        return list(self._filters)

    def as_mapping(self) -> Mapping[str, Filter]:
        return MappingProxyType(self._filters)

    def __contains__(self, name: object) -> bool:
        return name in self._filters

    def __iter__(self) -> Iterator[str]:
        return iter(self._filters)

    def __len__(self) -> int:
        return len(self._filters)


def cssmin(code: str) -> str:
    """Minify a CSS string. Malformed input is passed through compressed as far as possible."""
    if not code:
        return ""
    return csscompressor.compress(str(code))


def jsmin(code: str) -> str:
    if not code:
        return ""
    return _jsmin(str(code))


def format_date(value: Any, fmt: str = "%Y-%m-%d") -> str:
    """Format a date, datetime or ISO string with strftime.

    Values that are not dates are returned as strings unchanged.
    """
    if isinstance(value, _date):
        return value.strftime(fmt)
    parsed = coerce_datetime(value)
    if parsed is None:
        return str(value)
    return parsed.strftime(fmt)


def absolute_url(path: str, base: str = "") -> str:
    return join_root_url(base, str(path))


def create_default_filter_registry(css_minifier: CssMinifier | None = None) -> FilterRegistry:
    """Create a registry holding the built-in filters.

    Args:
        css_minifier: Replacement for the csscompressor-backed `cssmin`.
    """
    registry = FilterRegistry()
    registry.register("cssmin", css_minifier or cssmin)
    registry.register("jsmin", jsmin)
    registry.register("slugify", slugify)
    registry.register("date", format_date)
    registry.register("absolute_url", absolute_url)
    return registry
