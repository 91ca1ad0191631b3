"""CLI module for dragonwsl.

This package contains all Click command definitions for the dragon CLI.
"""

from dragonwsl.cli.main import cli

__all__ = ["cli"]
