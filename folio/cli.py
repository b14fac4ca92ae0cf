"""Command-line interface for Folio.

This module defines the CLI commands using Click framework.

Commands:
- build: Build the site into the output directory.
- watch: Rebuild the site whenever its sources change.
"""

from __future__ import annotations

import logging
from pathlib import Path

import click

from . import __version__
from .build import BuildCoordinator, BuildOutcome, Failed
from .config import load_config
from .exceptions import ConfigError

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        force=True,
    )


def _overrides(drafts: bool, full: bool, workers: int | None, serial: bool) -> dict:
    return {
        "include_drafts": True if drafts else None,
        "incremental": False if full else None,
        "max_workers": workers,
        "parallel": False if serial else None,
    }


def _report(outcome: BuildOutcome) -> None:
    if isinstance(outcome, Failed):
        error = outcome.error
        click.echo(click.style(f"Build failed: {error}", fg="red", bold=True), err=True)
        for path, reason in error.failures:
            click.echo(click.style(f"  File: {path}", fg="yellow"), err=True)
            click.echo(click.style(f"  Error: {reason}", fg="white"), err=True)
        return
    stats = outcome.stats
    click.echo(
        f"Built {stats.rendered_items} of {stats.total_items} items "
        f"({stats.files_written} files) into {stats.output_dir}"
    )


@click.group()
@click.version_option(version=__version__, prog_name="folio")
def cli():
    """Folio incremental static site generator."""


@cli.command()
@click.option("--drafts", is_flag=True, help="Include draft content")
@click.option("--full", is_flag=True, help="Ignore the build cache and render every item")
@click.option("--clean", is_flag=True, help="Empty the output directory before building")
@click.option("--workers", type=int, default=None, help="Number of render workers")
@click.option("--serial", is_flag=True, help="Render items one at a time")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
def build(drafts: bool, full: bool, clean: bool, workers: int | None, serial: bool, verbose: bool):
    """Build the site into the output directory."""
    _configure_logging(verbose)
    project_root = Path.cwd()
    try:
        config = load_config(project_root).with_overrides(**_overrides(drafts, full, workers, serial))
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from None

    outcome = BuildCoordinator(project_root, config, clean=clean).run()
    _report(outcome)
    if isinstance(outcome, Failed):
        raise SystemExit(1) from None


@cli.command()
@click.option("--drafts", is_flag=True, help="Include draft content")
@click.option("--workers", type=int, default=None, help="Number of render workers")
@click.option("--serial", is_flag=True, help="Render items one at a time")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
def watch(drafts: bool, workers: int | None, serial: bool, verbose: bool):
    """Rebuild the site whenever its sources change."""
    _configure_logging(verbose)
    project_root = Path.cwd()
    from .watcher import SiteWatcher

    try:
        load_config(project_root)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from None

    watcher = SiteWatcher(
        project_root,
        overrides=_overrides(drafts, False, workers, serial),
        on_build=_report,
    )
    click.echo(f"Watching {project_root} (Ctrl+C to stop)")
    watcher.serve_forever()


def main():
    """Entry point for the CLI application."""
    cli()
