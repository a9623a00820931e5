"""Gorgon static site build pipeline.

This package turns a directory of content files plus configuration into
rendered pages, verbatim asset copies, derived images and a syndication feed.
It can also watch the project and rebuild whenever a watched file changes.

The main entry point is the build module, which wires the filter registry,
the plugin registry, content discovery, collections and the render pipeline
together. The CLI module wraps it with `build` and `watch` commands.
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
