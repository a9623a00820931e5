"""Command-line interface for Gorgon.

This module defines the CLI commands using the Click framework.

Commands:
- build: Build the site into the output directory.
- watch: Build, then rebuild whenever watched files change.
"""

from __future__ import annotations

import logging
from pathlib import Path

import click

from . import __version__
from .errors import ArtifactCollisionError, ConfigurationError, RenderError


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _display_path(path: Path | None, project_root: Path) -> str:
    if path is None:
        return "<generated>"
    try:
        return str(path.relative_to(project_root))
    except ValueError:
        return str(path)


def _report_errors(errors: list[RenderError], project_root: Path) -> None:
    click.echo(click.style(f"Build finished with {len(errors)} error(s):", fg="red", bold=True), err=True)
    for error in errors:
        click.echo(click.style(f"  File: {_display_path(error.source_path, project_root)}", fg="yellow"), err=True)
        click.echo(click.style(f"  Error: {error.message}", fg="white"), err=True)


@click.group()
@click.version_option(version=__version__, prog_name="gorgon")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option(
    "--root",
    type=click.Path(file_okay=False, path_type=Path),
    default=".",
    help="Project root containing gorgon.yaml",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, root: Path):
    """Gorgon static site content pipeline."""
    _configure_logging(verbose)
    ctx.obj = root.resolve()


@cli.command()
@click.option("--drafts", is_flag=True, help="Include draft content")
@click.option("--clean", is_flag=True, help="Empty the output directory first")
@click.pass_obj
def build(project_root: Path, drafts: bool, clean: bool):
    """Build the site into the output directory."""
    from .build import build_site

    try:
        result = build_site(project_root, include_drafts=drafts, clean_output=clean)
    except ConfigurationError as exc:
        raise click.ClickException(f"Configuration error: {exc}") from None
    except ArtifactCollisionError as exc:
        click.echo(click.style("Build failed:", fg="red", bold=True), err=True)
        click.echo(click.style(f"  Error: {exc}", fg="white"), err=True)
        raise SystemExit(1) from None
    if not result.ok:
        _report_errors(result.errors, project_root)
        raise SystemExit(1)
    click.echo(f"Built {len(result.written)} files into {result.output_dir}")


@cli.command()
@click.option("--drafts", is_flag=True, help="Include draft content")
@click.pass_obj
def watch(project_root: Path, drafts: bool):
    """Build the site, then rebuild on every change."""
    from .build import Site
    from .watch import WatchController

    try:
        site = Site.from_config(project_root)
        result = site.build(include_drafts=drafts)
    except (ConfigurationError, ArtifactCollisionError) as exc:
        raise click.ClickException(str(exc)) from None
    if not result.ok:
        _report_errors(result.errors, project_root)
    click.echo(f"Built {len(result.written)} files into {result.output_dir}; watching for changes")
    WatchController.for_site(site, include_drafts=drafts).run_forever()


def main() -> None:
    cli()


if __name__ == "__main__":  # pragma: no cover
    main()
