"""CLI context for dragonwsl.

This module defines the shared context object passed to all CLI commands,
extracted to avoid circular imports.
"""

from __future__ import annotations

from pathlib import Path

import click

from dragonwsl.core.config import Config, ConfigManager
from dragonwsl.core.engine import ReconciliationEngine
from dragonwsl.terminal import TerminalProfileWriter
from dragonwsl.utils.logging import configure_logging


class Context:
    """CLI context object passed to all commands.

    Holds shared state including configuration, the reconciliation
    engine, and CLI options like verbosity and dry-run mode.

    Attributes:
        config_path: Config file path from --config or DRAGON_CONFIG.
        config: ConfigManager instance, loaded on first use.
        engine: ReconciliationEngine instance.
        verbose: Verbosity level (0-3).
        dry_run: Whether to run in dry-run mode.
        debug: Whether to show debug tracebacks.
        state_file: State file path overriding the configuration.
        terminal_settings: Windows Terminal settings path overriding the configuration.
    """

    def __init__(self) -> None:
        self.config_path: str | None = None
        self.config: ConfigManager | None = None
        self.engine: ReconciliationEngine | None = None
        self.verbose: int = 0
        self.dry_run: bool = False
        self.debug: bool = False
        self.state_file: str | None = None
        self.terminal_settings: str | None = None

    def init_config(self) -> ConfigManager:
        """Initialize configuration manager.

        Returns:
            ConfigManager instance.
        """
        if self.config is None:
            self.config = ConfigManager(self.config_path)
        return self.config

    def effective_config(self) -> Config:
        """Configuration with command-line overrides applied."""
        config = self.init_config().config
        if self.state_file:
            config = config.model_copy(update={"state_file": self.state_file})
        return config

    def init_engine(self) -> ReconciliationEngine:
        """Initialize the reconciliation engine.

        Also reapplies logging with the configured level and log file.

        Returns:
            ReconciliationEngine instance.
        """
        if self.engine is None:
            config = self.effective_config()
            configure_logging(
                verbosity=self.verbose,
                log_file=config.logging.file,
                log_level=config.logging.level,
            )
            self.engine = ReconciliationEngine.from_config(config, show_progress=True)
        return self.engine

    def init_terminal_writer(self) -> TerminalProfileWriter | None:
        """Create a terminal profile writer if a settings file is configured.

        Returns:
            TerminalProfileWriter, or None when no settings file is set.
        """
        settings = self.terminal_settings or self.init_config().config.terminal.settings_file
        if not settings:
            return None
        return TerminalProfileWriter(Path(settings))


pass_context = click.make_pass_decorator(Context, ensure=True)
