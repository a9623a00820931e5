"""Site building functionality for Gorgon.

This module wires the pipeline together. A Site holds everything registered
at configuration time (filters, plugins, collections, passthrough patterns
and watch targets); `Site.build()` runs one build pass:

    PRE_DISCOVERY plugins -> discovery -> collections -> POST_COLLECTION
    plugins -> render -> passthrough plan -> POST_RENDER plugins -> write

All outputs are collected and checked for path collisions before anything
is written, so a colliding pass leaves the output directory untouched.

Key classes:
- Site: Configuration-time registrations plus the build pass.
- BuildResult: Outcome of one pass.

Key functions:
- build_site: Load gorgon.yaml and run a single pass.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .artifacts import ArtifactSet
from .collections import Collection, CollectionBuilder, CollectionSpec, Predicate, has_tag, metadata_key
from .config import SiteConfig, load_config, load_data
from .content import ContentDiscovery, ContentItem, FileContentLoader
from .errors import ConfigurationError, DiscoveryError, RenderError
from .feeds import FeedPlugin
from .filters import Filter, FilterRegistry, create_default_filter_registry
from .images import ImageTransformPlugin
from .navigation import NavigationPlugin
from .passthrough import Pattern, PassthroughCopier
from .plugins import BuildContext, Phase, Plugin, PluginRegistry
from .protocols import MarkdownConverter
from .render import RenderPipeline
from .templates import TemplateEngine
from .utils import ensure_clean_dir, remove_empty_parents

logger = logging.getLogger(__name__)


@dataclass
class BuildResult:
    """Result of a build pass.

    Attributes:
        items: Content items of the pass, in discovery order.
        collections: Named collections.
        artifacts: Every output of the pass.
        errors: Per-item render errors; the pass failed if non-empty.
        discovery_errors: Content files skipped during discovery.
        output_dir: Directory the site was written to.
        written: Paths written for rendered and generated artifacts.
        copied: Number of passthrough files copied.
    """

    items: list[ContentItem]
    collections: Mapping[str, Collection]
    artifacts: ArtifactSet
    errors: list[RenderError]
    output_dir: Path
    discovery_errors: list[DiscoveryError] = field(default_factory=list)
    written: list[Path] = field(default_factory=list)
    copied: int = 0

    @property
    def ok(self) -> bool:
        return not self.errors


class Site:
    """A configured site: registrations made once, build passes run many times.

    Attributes:
        config: Resolved project configuration.
        filters: Template filters.
        plugins: Plugins, in registration order.
        collections: Named collection definitions.
        passthrough: Passthrough copy patterns.
        watch_targets: Extra watch globs, without duplicates.
    """

    def __init__(
        self,
        config: SiteConfig,
        filters: FilterRegistry | None = None,
        markdown: MarkdownConverter | None = None,
    ):
        self.config = config
        self.filters = filters or create_default_filter_registry()
        self.plugins = PluginRegistry(self.filters)
        self.collections = CollectionBuilder(CollectionSpec.from_config(c) for c in config.collections)
        self.passthrough: list[Pattern] = []
        self.watch_targets: list[str] = []
        self.markdown = markdown
        self._previous_outputs: set[str] = set()
        for pattern in config.passthrough:
            self.add_passthrough_copy(pattern)
        for target in config.watch:
            self.add_watch_target(target)

    @classmethod
    def from_config(cls, project_root: Path) -> Site:
        """Create a Site from gorgon.yaml, registering the configured plugins.

        Raises:
            ConfigurationError: If the configuration is invalid.
        """
        config = load_config(project_root)
        site = cls(config)
        if config.navigation:
            site.add_plugin(NavigationPlugin())
        if config.images is not None:
            site.add_plugin(ImageTransformPlugin(config.images))
        if config.feed is not None:
            site.add_plugin(FeedPlugin(config.feed))
        return site

    def add_filter(self, name: str, fn: Filter) -> None:
        self.filters.register(name, fn)

    def add_plugin(self, plugin: Plugin, config: Any = None) -> None:
        self.plugins.register(plugin, config)

    def add_passthrough_copy(self, pattern: Pattern) -> None:
        self.passthrough.append(pattern)

    def add_watch_target(self, pattern: str) -> None:
        if pattern in self.watch_targets:
            logger.debug("Watch target %s already registered", pattern)
            return
        self.watch_targets.append(pattern)

    def add_collection(
        self,
        name: str,
        tag: str | None = None,
        predicate: Predicate | None = None,
        sort: str | None = None,
        reverse: bool = False,
    ) -> None:
        """Define a named collection by tag or by an arbitrary predicate.

        Raises:
            ConfigurationError: If neither or both of `tag` and `predicate`
                are given, or the name is taken.
        """
        if (tag is None) == (predicate is None):
            raise ConfigurationError(f"Collection '{name}' needs exactly one of tag or predicate")
        self.collections.add(
            CollectionSpec(
                name=name,
                predicate=predicate or has_tag(tag),
                sort_key=metadata_key(sort) if sort else None,
                reverse=reverse,
            )
        )

    def build(self, include_drafts: bool = False, clean_output: bool = False) -> BuildResult:
        """Run one build pass.

        Args:
            include_drafts: Whether to include draft items.
            clean_output: Empty the output directory before writing.

        Returns:
            BuildResult of the pass.

        Raises:
            ArtifactCollisionError: If two outputs share a path; nothing is written.
            ConfigurationError: If data files or front matter are malformed.
        """
        config = self.config
        context = BuildContext(config=config, global_data=load_data(config.data_dir))
        self.plugins.run(Phase.PRE_DISCOVERY, context)

        loader = FileContentLoader(
            config.input_dir,
            excluded=(config.includes_dir, config.data_dir, config.output_dir),
        )
        discovery = ContentDiscovery(config.input_dir, config.default_layout, loader)
        items, discovery_errors = discovery.discover(include_drafts)
        context.items = items
        context.collections = self.collections.build(items)
        self.plugins.run(Phase.POST_COLLECTION, context)

        engine = TemplateEngine(config.includes_dir, self.filters)
        pipeline = RenderPipeline(engine, self.markdown, config.workers)
        artifacts, errors = pipeline.render(items, context.global_data, context.collections)
        context.errors.extend(errors)
        context.artifacts.extend(artifacts)

        copier = PassthroughCopier(config.project_root, self.passthrough, excluded=(config.output_dir,))
        plan = copier.plan()
        for entry in plan:
            context.artifacts.reserve(entry.destination, entry.source)

        self.plugins.run(Phase.POST_RENDER, context)

        if clean_output:
            self._check_output_dir()
            ensure_clean_dir(config.output_dir)
        written = context.artifacts.write(config.output_dir)
        copied = copier.copy(config.output_dir, plan)
        self._prune(context.artifacts.paths())

        result = BuildResult(
            items=items,
            collections=context.collections,
            artifacts=context.artifacts,
            errors=context.errors,
            output_dir=config.output_dir,
            discovery_errors=discovery_errors,
            written=written,
            copied=copied,
        )
        logger.info(
            "Built %d items into %d files (%d copied, %d errors)",
            len(items),
            len(written),
            copied,
            len(result.errors),
        )
        return result

    def _check_output_dir(self) -> None:
        output = self.config.output_dir.resolve()
        root = self.config.project_root.resolve()
        if output == root or output in root.parents:
            raise ConfigurationError(f"Refusing to clean {output}: it contains the project")

    def _prune(self, current: set[str]) -> None:
        """Delete outputs the previous pass wrote that this pass did not."""
        output_dir = self.config.output_dir
        for rel in sorted(self._previous_outputs - current):
            target = output_dir / rel
            with contextlib.suppress(FileNotFoundError):
                target.unlink()
                logger.debug("Removed stale output %s", rel)
            remove_empty_parents(target.parent, output_dir)
        self._previous_outputs = set(current)


def build_site(
    project_root: Path,
    include_drafts: bool = False,
    clean_output: bool = False,
) -> BuildResult:
    """Build the site at `project_root` in a single pass.

    Args:
        project_root: Root directory of the project.
        include_drafts: Whether to include draft items.
        clean_output: Empty the output directory before writing.

    Returns:
        BuildResult of the pass.
    """
    return Site.from_config(project_root).build(include_drafts=include_drafts, clean_output=clean_output)
