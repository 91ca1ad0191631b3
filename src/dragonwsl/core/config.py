"""Configuration management for dragonwsl.

This module provides a Pydantic-based configuration system that supports:
- YAML configuration files
- Environment variable overrides
- Default values with validation

The default config location is ~/.dragon/config.yaml, which can be
overridden with the DRAGON_CONFIG environment variable. The state file
defaults to ~/.dockerwsl and can be overridden with DRAGON_STATE_FILE.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Annotated, Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from dragonwsl.core.exceptions import ConfigNotFoundError, ConfigurationError

DEFAULT_COMMAND_TEMPLATE = "wsl.exe -d {vm_identifier}"


def get_default_config_path() -> Path:
    """Get the default configuration file path.

    The path can be overridden by setting the DRAGON_CONFIG
    environment variable.

    Returns:
        Path to the configuration file.
    """
    env_path = os.environ.get("DRAGON_CONFIG")
    if env_path:
        return Path(env_path).expanduser()
    return Path.home() / ".dragon" / "config.yaml"


def get_default_state_path() -> Path:
    """Get the default state file path.

    Returns:
        Path from DRAGON_STATE_FILE, or ~/.dockerwsl.
    """
    env_path = os.environ.get("DRAGON_STATE_FILE")
    if env_path:
        return Path(env_path).expanduser()
    return Path.home() / ".dockerwsl"


def get_default_log_path() -> Path:
    """Get the default log file path."""
    return Path.home() / ".dragon" / "logs" / "dragon.log"


class LoggingConfig(BaseModel):
    """Logging configuration.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        file: Path to log file (optional).
    """

    level: str = Field(default="WARNING", description="Console log level without -v")
    file: str | None = Field(default=None, description="Log file path")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper


class ToolsConfig(BaseModel):
    """Paths of the external command-line tools."""

    docker: Annotated[str, Field(min_length=1)] = "docker"
    wsl: Annotated[str, Field(min_length=1)] = "wsl.exe"
    az: Annotated[str, Field(min_length=1)] = "az"


class RegistryConfig(BaseModel):
    """Registry access settings.

    When username, password and tenant are all set, a service principal
    login is performed before talking to the registry. Otherwise the
    existing az/docker sessions are used.

    Args:
        username: Service principal application id.
        password: Service principal secret.
        tenant: Azure tenant id.
        retries: Attempts for registry tag lookups.
    """

    username: str | None = None
    password: str | None = None
    tenant: str | None = None
    retries: Annotated[int, Field(ge=1, le=10)] = 3

    @property
    def has_credentials(self) -> bool:
        """True when a service principal login can be performed."""
        return bool(self.username and self.password and self.tenant)


class TimeoutsConfig(BaseModel):
    """Timeouts in seconds for each kind of external call."""

    registry: Annotated[int, Field(ge=1, le=3600)] = 60
    pull: Annotated[int, Field(ge=1, le=86400)] = 1800
    export: Annotated[int, Field(ge=1, le=86400)] = 900
    import_: Annotated[int, Field(ge=1, le=86400, alias="import")] = 900
    wsl: Annotated[int, Field(ge=1, le=3600)] = 60

    model_config = {"populate_by_name": True}


class WSLConfig(BaseModel):
    """Where and how VMs are imported.

    Args:
        install_dir: Directory holding one sub-directory per imported VM.
        version: WSL version passed to ``wsl --import``.
    """

    install_dir: str = Field(default="~/.dragon/wsl")
    version: Annotated[int, Field(ge=1, le=2)] = 2

    @property
    def install_path(self) -> Path:
        """Expanded install directory."""
        return Path(self.install_dir).expanduser()


class TerminalConfig(BaseModel):
    """Windows Terminal profile registration.

    Args:
        settings_file: Path to the Windows Terminal settings.json (optional).
        command_template: Command line of the profile, formatted with
            ``name`` and ``vm_identifier``.
    """

    settings_file: str | None = None
    command_template: str = DEFAULT_COMMAND_TEMPLATE

    @field_validator("command_template")
    @classmethod
    def validate_template(cls, v: str) -> str:
        """Template may only reference known fields."""
        try:
            v.format(name="x", vm_identifier="x")
        except (KeyError, IndexError, ValueError) as e:
            raise ValueError(f"Invalid command template {v!r}: {e}") from e
        return v


class Config(BaseModel):
    """Main configuration model for dragonwsl.

    Example config.yaml:
        ```yaml
        state_file: ~/.dockerwsl
        tools:
          docker: docker
          wsl: wsl.exe
          az: az
        registry:
          retries: 3
        timeouts:
          registry: 60
          pull: 1800
        wsl:
          install_dir: ~/.dragon/wsl
          version: 2
        terminal:
          settings_file: ~/AppData/Local/Packages/.../settings.json
        logging:
          level: WARNING
        ```
    """

    state_file: str | None = Field(default=None, description="Path to the record file")
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    timeouts: TimeoutsConfig = Field(default_factory=TimeoutsConfig)
    wsl: WSLConfig = Field(default_factory=WSLConfig)
    terminal: TerminalConfig = Field(default_factory=TerminalConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def state_path(self) -> Path:
        """Resolved record file path."""
        if self.state_file:
            return Path(self.state_file).expanduser()
        return get_default_state_path()


class ConfigManager:
    """Manages reading and writing dragonwsl configuration.

    A missing configuration file is not an error: defaults are used.

    Args:
        path: Optional path to config file. Uses default if not specified.

    Attributes:
        path: Path to the configuration file.
        config: The loaded and validated Config object.
    """

    def __init__(self, path: Path | str | None = None) -> None:
        if path is None:
            self.path = get_default_config_path()
        else:
            self.path = Path(path).expanduser()

        self.config = self._load_or_create()

    def _load_or_create(self) -> Config:
        if self.path.exists():
            return self._load()
        return Config()

    def _load(self) -> Config:
        """Load and validate configuration from file.

        Raises:
            ConfigurationError: If the config file is invalid.
            ConfigNotFoundError: If the config file doesn't exist.
        """
        if not self.path.exists():
            raise ConfigNotFoundError(str(self.path))

        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in config file: {e}",
                details={"path": str(self.path)},
            ) from e
        except OSError as e:
            raise ConfigurationError(
                f"Failed to read config: {e}",
                details={"path": str(self.path)},
            ) from e

        if not isinstance(data, dict):
            raise ConfigurationError(
                "Config file must contain a mapping",
                details={"path": str(self.path)},
            )

        try:
            return Config.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid configuration: {e}",
                details={"path": str(self.path)},
            ) from e

    def reload(self) -> None:
        """Reload configuration from disk."""
        self.config = self._load_or_create()

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary."""
        return self.config.model_dump(exclude_none=True, by_alias=True)

    @classmethod
    def create_example_config(cls, path: Path | None = None) -> Path:
        """Create an example configuration file.

        Args:
            path: Optional path for the config. Uses default if not specified.

        Returns:
            Path to the created config file.
        """
        path = get_default_config_path() if path is None else Path(path).expanduser()

        path.parent.mkdir(parents=True, exist_ok=True)

        example_config = {
            "state_file": str(get_default_state_path()),
            "tools": {"docker": "docker", "wsl": "wsl.exe", "az": "az"},
            "registry": {"retries": 3},
            "timeouts": {
                "registry": 60,
                "pull": 1800,
                "export": 900,
                "import": 900,
                "wsl": 60,
            },
            "wsl": {"install_dir": "~/.dragon/wsl", "version": 2},
            "terminal": {"command_template": DEFAULT_COMMAND_TEMPLATE},
            "logging": {
                "level": "WARNING",
                "file": str(get_default_log_path()),
            },
        }

        with path.open("w", encoding="utf-8") as f:
            yaml.safe_dump(example_config, f, default_flow_style=False, sort_keys=False)

        return path
