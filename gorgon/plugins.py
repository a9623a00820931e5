"""Plugin registry for Gorgon.

Plugins are optional capability modules applied in registration order during
designated pipeline phases. Each plugin declares up front which phases it
takes part in and which global data keys it reads and writes; the registry
checks those declarations when the plugin is registered instead of relying
on call order by convention.

A plugin can contribute:
- template-available global data (published through BuildContext.publish),
- additional output artifacts (added to BuildContext.artifacts),
- rewrites of rendered artifacts (BuildContext.artifacts.replace),
- template filters (returned from Plugin.filters()).

Classes:
    Phase: Pipeline phases plugins can take part in.
    BuildContext: State of one build pass shared with plugins.
    Plugin: Base class for plugins.
    PluginRegistry: Ordered list of registered plugins.
"""

from __future__ import annotations

import logging
from abc import ABC
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from .artifacts import ArtifactSet
from .errors import ConfigurationError, DuplicateFilterError, DuplicatePluginError, RenderError
from .filters import Filter, FilterRegistry

if TYPE_CHECKING:
    from .collections import Collection
    from .config import SiteConfig
    from .content import ContentItem

logger = logging.getLogger(__name__)


class Phase(Enum):
    PRE_DISCOVERY = "pre_discovery"
    POST_COLLECTION = "post_collection"
    POST_RENDER = "post_render"


PHASE_ORDER = (Phase.PRE_DISCOVERY, Phase.POST_COLLECTION, Phase.POST_RENDER)

# Data every plugin may read without another plugin declaring it.
BUILTIN_KEYS = frozenset({"site", "collections", "items", "artifacts"})


@dataclass
class BuildContext:
    """State of one build pass, shared with plugins.

    Attributes:
        config: Project configuration.
        global_data: Data exposed to every template. Plugins publish into it.
        items: Discovered content items (empty before discovery).
        collections: Named collections (empty before collection build).
        artifacts: Outputs of the pass.
        errors: Per-item errors reported during the pass.
    """

    config: SiteConfig
    global_data: dict[str, Any] = field(default_factory=dict)
    items: list[ContentItem] = field(default_factory=list)
    collections: Mapping[str, Collection] = field(default_factory=dict)
    artifacts: ArtifactSet = field(default_factory=ArtifactSet)
    errors: list[RenderError] = field(default_factory=list)

    def publish(self, plugin: Plugin, key: str, value: Any) -> None:
        """Expose `value` to templates under `key`.

        Raises:
            ConfigurationError: If the plugin did not declare `key` in its writes.
        """
        if key not in plugin.writes:
            raise ConfigurationError(
                f"Plugin '{plugin.name}' published undeclared data key '{key}'"
            )
        self.global_data[key] = value


class Plugin(ABC):
    """Base class for pipeline plugins.

    Subclasses set `name` and `phases`, declare the data keys they read and
    write, and override the hook for each phase they take part in.
    """

    name: str = ""
    phases: frozenset[Phase] = frozenset()
    reads: frozenset[str] = frozenset()
    writes: frozenset[str] = frozenset()
    config: Any = None

    def configure(self, config: Any) -> None:
        """Receive the configuration payload passed at registration."""
        self.config = config

    def filters(self) -> Mapping[str, Filter]:
        """Template filters contributed by this plugin."""
        return {}

    def run(self, phase: Phase, context: BuildContext) -> None:
        getattr(self, phase.value)(context)

    def pre_discovery(self, context: BuildContext) -> None:
        pass

    def post_collection(self, context: BuildContext) -> None:
        pass

    def post_render(self, context: BuildContext) -> None:
        pass


class PluginRegistry:
    """Ordered list of plugins, passed explicitly into the pipeline.

    Attributes:
        filters: Filter registry receiving plugin-contributed filters.
    """

    def __init__(self, filters: FilterRegistry | None = None) -> None:
        self.filters = filters
        self._plugins: list[Plugin] = []
        self._writers: dict[str, Plugin] = {}

    def register(self, plugin: Plugin, config: Any = None) -> None:
        """Append a plugin after validating its declarations.

        Raises:
            DuplicatePluginError: If a plugin with the same name exists.
            ConfigurationError: If its phases or data keys are inconsistent.
            DuplicateFilterError: If one of its filters clashes with an existing one.
        """
        if not plugin.name:
            raise ConfigurationError(f"{type(plugin).__name__} has no name")
        if any(p.name == plugin.name for p in self._plugins):
            raise DuplicatePluginError(plugin.name)
        if not plugin.phases:
            raise ConfigurationError(f"Plugin '{plugin.name}' declares no phases")
        for phase in plugin.phases:
            if phase not in PHASE_ORDER:
                raise ConfigurationError(f"Plugin '{plugin.name}' has unknown phase {phase!r}")

        for key in plugin.writes:
            if key in BUILTIN_KEYS:
                raise ConfigurationError(f"Plugin '{plugin.name}' cannot write built-in key '{key}'")
            if key in self._writers:
                raise ConfigurationError(
                    f"Plugins '{self._writers[key].name}' and '{plugin.name}' both write '{key}'"
                )
        for key in plugin.reads:
            if key in BUILTIN_KEYS or key in plugin.writes:
                continue
            writer = self._writers.get(key)
            if writer is None:
                raise ConfigurationError(
                    f"Plugin '{plugin.name}' reads '{key}', which no earlier plugin writes"
                )
            if _first_phase(writer) > _last_phase(plugin):
                raise ConfigurationError(
                    f"Plugin '{plugin.name}' reads '{key}' before '{writer.name}' produces it"
                )

        contributed = plugin.filters() if self.filters is not None else {}
        for name in contributed:
            if name in self.filters:
                raise DuplicateFilterError(name)

        if config is not None:
            plugin.configure(config)
        for name, fn in contributed.items():
            self.filters.register(name, fn)
        for key in plugin.writes:
            self._writers[key] = plugin
        self._plugins.append(plugin)
        logger.debug("Registered plugin %s (%s)", plugin.name, sorted(p.value for p in plugin.phases))

    def run(self, phase: Phase, context: BuildContext) -> None:
        """Run every plugin taking part in `phase`, in registration order."""
        for plugin in self._plugins:
            if phase in plugin.phases:
                logger.debug("Running plugin %s (%s)", plugin.name, phase.value)
                plugin.run(phase, context)

    def names(self) -> list[str]:
        return [p.name for p in self._plugins]

    def get(self, name: str) -> Plugin | None:
        return next((p for p in self._plugins if p.name == name), None)

    def __iter__(self) -> Iterator[Plugin]:
        return iter(self._plugins)

    def __len__(self) -> int:
        return len(self._plugins)


def _first_phase(plugin: Plugin) -> int:
    return min(PHASE_ORDER.index(p) for p in plugin.phases)


def _last_phase(plugin: Plugin) -> int:
    return max(PHASE_ORDER.index(p) for p in plugin.phases)
