"""Configuration management commands for dragonwsl.

This module provides CLI commands for viewing and managing
the dragonwsl configuration file.
"""

from __future__ import annotations

import json
from pathlib import Path

import click
import yaml

from dragonwsl.cli.context import Context, pass_context
from dragonwsl.core.config import ConfigManager, get_default_config_path
from dragonwsl.core.exceptions import ConfigurationError
from dragonwsl.utils.output import console, print_error, print_info, print_success


def _config_file(ctx: Context) -> Path:
    if ctx.config_path:
        return Path(ctx.config_path).expanduser()
    return get_default_config_path()


@click.group()
def config() -> None:
    """Manage dragon configuration.

    Commands for viewing, validating, and initializing the
    configuration file.
    """


@config.command("show")
@click.option(
    "--format",
    "-f",
    "fmt",
    type=click.Choice(["yaml", "json"]),
    default="yaml",
    help="Output format.",
)
@pass_context
def config_show(ctx: Context, fmt: str) -> None:
    """Show the effective configuration.

    Displays the configuration with defaults filled in.

    Examples:

        $ dragon config show

        $ dragon config show --format json
    """
    try:
        config_manager = ctx.init_config()
    except ConfigurationError as e:
        print_error(str(e))
        raise SystemExit(1) from e

    data = config_manager.to_dict()
    if data.get("registry", {}).get("password"):
        data["registry"]["password"] = "***"
    data["state_file"] = str(ctx.effective_config().state_path)

    if fmt == "json":
        console.print_json(json.dumps(data, indent=2, default=str))
    else:
        console.print(yaml.safe_dump(data, default_flow_style=False, sort_keys=False))

    exists = "" if config_manager.path.exists() else " (not found, using defaults)"
    console.print(f"\n[dim]Config file: {config_manager.path}{exists}[/dim]")


@config.command("validate")
@pass_context
def config_validate(ctx: Context) -> None:
    """Validate the configuration file.

    Checks that the configuration file exists and contains
    valid YAML with correct structure.

    Examples:

        $ dragon config validate
    """
    config_path = _config_file(ctx)

    if not config_path.exists():
        print_error(f"Configuration file not found: {config_path}")
        print_info("Run 'dragon config init' to create a default config.")
        raise SystemExit(1)

    try:
        config_manager = ConfigManager(config_path)
    except ConfigurationError as e:
        print_error(f"Invalid configuration: {e}")
        raise SystemExit(1) from e

    cfg = config_manager.config
    print_success(f"Configuration is valid: {config_path}")
    console.print(f"  State file: {cfg.state_path}")
    console.print(f"  Registry credentials: {'yes' if cfg.registry.has_credentials else 'no'}")
    console.print(f"  WSL install dir: {cfg.wsl.install_path}")
    console.print(f"  Terminal settings: {cfg.terminal.settings_file or '-'}")
    console.print(f"  Log Level: {cfg.logging.level}")


@config.command("init")
@click.option(
    "--force",
    "-f",
    is_flag=True,
    help="Overwrite existing configuration.",
)
@pass_context
def config_init(ctx: Context, force: bool) -> None:
    """Create a default configuration file.

    Examples:

        $ dragon config init

        $ dragon config init --force
    """
    config_path = _config_file(ctx)

    if config_path.exists() and not force:
        print_error(f"Configuration already exists: {config_path}")
        print_info("Use --force to overwrite.")
        raise SystemExit(1)

    try:
        path = ConfigManager.create_example_config(config_path)
    except OSError as e:
        print_error(f"Failed to create configuration: {e}")
        raise SystemExit(1) from e

    print_success(f"Created configuration at: {path}")
    print_info("Edit this file to add registry credentials and the terminal settings path.")


@config.command("path")
@pass_context
def config_path(ctx: Context) -> None:
    """Show the configuration file path.

    Examples:

        $ dragon config path
    """
    path = _config_file(ctx)
    console.print(str(path))

    if path.exists():
        console.print("[dim](file exists)[/dim]")
    else:
        console.print("[dim](file does not exist)[/dim]")
