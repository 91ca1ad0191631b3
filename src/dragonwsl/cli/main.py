"""Main CLI entry point for dragonwsl.

This module defines the main CLI group and global options that are
shared across all commands.
"""

from __future__ import annotations

import os
import sys
import traceback

import click
from rich.console import Console

from dragonwsl import __version__
from dragonwsl.cli.commands import drift, list_records, new, remove, update, upgrade
from dragonwsl.cli.config_cmd import config
from dragonwsl.cli.context import Context, pass_context
from dragonwsl.core.config import get_default_config_path
from dragonwsl.core.exceptions import DragonError
from dragonwsl.utils.logging import configure_logging
from dragonwsl.utils.output import error_console, print_error


def version_callback(ctx: click.Context, _param: click.Parameter, value: bool) -> None:
    """Print version and exit."""
    if not value or ctx.resilient_parsing:
        return
    console = Console()
    console.print(f"dragon version [cyan]{__version__}[/cyan]")
    ctx.exit()


@click.group()
@click.option(
    "-v",
    "--verbose",
    count=True,
    help="Increase verbosity (-v, -vv, -vvv for more).",
)
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="Show what would change without changing anything.",
)
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Show full error tracebacks.",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    envvar="DRAGON_CONFIG",
    help=f"Path to config file (default: {get_default_config_path()}).",
)
@click.option(
    "--state-file",
    "-c",
    "state_file",
    type=click.Path(dir_okay=False),
    default=None,
    help="Path to the .dockerwsl record file (overrides config).",
)
@click.option(
    "--terminal-settings",
    "-t",
    "terminal_settings",
    type=click.Path(dir_okay=False),
    default=None,
    help="Windows Terminal settings.json to register profiles in.",
)
@click.option(
    "--version",
    is_flag=True,
    callback=version_callback,
    expose_value=False,
    is_eager=True,
    help="Show version and exit.",
)
@pass_context
def cli(
    ctx: Context,
    verbose: int,
    dry_run: bool,
    debug: bool,
    config_path: str | None,
    state_file: str | None,
    terminal_settings: str | None,
) -> None:
    """dragon - Keep Docker-image-based WSL VMs up to date.

    Tracks named WSL VMs built from container images, checks the
    registry for newer tags, and upgrades VMs without losing the
    working one when something fails.

    Use -v, -vv, or -vvv for increasing levels of verbosity.

    Examples:

        # Create a VM from the newest tag of an image

        $ dragon new devbox myregistry.azurecr.io/tools/dev

        # Check the registry for newer tags

        $ dragon update

        # Move every VM to its latest tag

        $ dragon upgrade

        # Show records and their VMs

        $ dragon list
    """
    ctx.verbose = verbose
    ctx.dry_run = dry_run
    ctx.debug = debug
    ctx.state_file = state_file
    ctx.terminal_settings = terminal_settings
    ctx.config_path = config_path

    configure_logging(verbosity=verbose)


cli.add_command(new)
cli.add_command(update)
cli.add_command(update, name="pull")
cli.add_command(upgrade)
cli.add_command(remove)
cli.add_command(list_records)
cli.add_command(drift)
cli.add_command(config)


def main() -> None:
    """Main entry point with error handling."""
    try:
        cli(standalone_mode=False)
    except click.Abort:
        error_console.print("[dim]Aborted[/dim]")
        sys.exit(1)
    except click.ClickException as e:
        e.show()
        sys.exit(e.exit_code)
    except DragonError as e:
        print_error(str(e))
        if os.environ.get("DRAGON_DEBUG") or "--debug" in sys.argv:
            traceback.print_exc()
        sys.exit(1)
    except KeyboardInterrupt:
        error_console.print("\n[dim]Interrupted[/dim]")
        sys.exit(130)
    except Exception as e:
        if os.environ.get("DRAGON_DEBUG") or "--debug" in sys.argv:
            traceback.print_exc()
        else:
            print_error(f"Unexpected error: {e}")
            error_console.print("[dim]Use --debug for full traceback[/dim]")
        sys.exit(1)


if __name__ == "__main__":
    main()
