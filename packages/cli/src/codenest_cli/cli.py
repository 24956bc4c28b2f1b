"""CLI entry point for codenest.

Commands:
  review   run an AI review of staged changes, a commit or a branch
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from codenest_cli.commands.review import review_cmd

console = Console()


def _build_store(config: dict):
    """Instantiate the configured review store.

    Only the in-memory store ships today; ``store`` in .codenest.yml is
    validated so a typo fails loudly instead of silently dropping results.
    """
    from codenest_store.memory import MemoryStore

    store_type = config.get("store", "memory")
    if store_type != "memory":
        raise click.UsageError(f"Unknown store: {store_type!r}. Only 'memory' is supported.")
    return MemoryStore()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=verbose, show_path=False)],
        force=True,
    )


def _version() -> str:
    try:
        return importlib.metadata.version("codenest")
    except importlib.metadata.PackageNotFoundError:
        return "0.0.0"


@click.group()
@click.version_option(version=_version(), prog_name="codenest")
@click.option(
    "--config",
    "config_path",
    default=".codenest.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="CODENEST_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """AI-assisted code review for local git changes."""
    from codenest_core.config import load_config

    _configure_logging(verbose)
    ctx.ensure_object(dict)

    config = load_config(config_path)
    ctx.obj["config_path"] = config_path
    ctx.obj["config"] = config
    ctx.obj["store"] = _build_store(config)


main.add_command(review_cmd)
