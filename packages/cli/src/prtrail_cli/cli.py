"""CLI entry point for prtrail.

Commands:
  run   : detect outstanding work on a pull request and execute it
  state : rebuild and print the review state held in a PR's comments
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from prtrail_cli.commands.run import run_cmd
from prtrail_cli.commands.state import state_cmd


@click.group()
@click.version_option(
    version=importlib.metadata.version("prtrail"),
    prog_name="prtrail",
)
@click.option(
    "--config",
    "config_path",
    default=".prtrail.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="PRTRAIL_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Log debug output.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """Comment-backed AI review coordinator for GitHub pull requests."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=verbose)],
        force=True,
    )
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


main.add_command(run_cmd)
main.add_command(state_cmd)
