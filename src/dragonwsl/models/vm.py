"""VM models for dragonwsl.

This module defines the data models for WSL distributions as reported
by ``wsl --list --verbose``.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated

from pydantic import BaseModel, Field


class VMState(str, Enum):
    """Possible states for a WSL distribution."""

    RUNNING = "running"
    STOPPED = "stopped"
    INSTALLING = "installing"
    CONVERTING = "converting"
    UNINSTALLING = "uninstalling"
    UNKNOWN = "unknown"

    @property
    def color(self) -> str:
        """Rich color for this state.

        Returns:
            Color name for Rich console output.
        """
        colors = {
            VMState.RUNNING: "green",
            VMState.STOPPED: "red",
            VMState.INSTALLING: "yellow",
            VMState.CONVERTING: "yellow",
            VMState.UNINSTALLING: "yellow",
            VMState.UNKNOWN: "dim",
        }
        return colors.get(self, "white")

    @property
    def symbol(self) -> str:
        """Status symbol for this state.

        Returns:
            Unicode symbol representing the state.
        """
        symbols = {
            VMState.RUNNING: "●",
            VMState.STOPPED: "○",
            VMState.INSTALLING: "◐",
            VMState.CONVERTING: "◐",
            VMState.UNINSTALLING: "◑",
            VMState.UNKNOWN: "?",
        }
        return symbols.get(self, "?")

    @property
    def busy(self) -> bool:
        """True when the distribution cannot be unregistered safely."""
        return self not in (VMState.STOPPED, VMState.UNKNOWN)


class VM(BaseModel):
    """Represents a WSL distribution in the local inventory.

    Args:
        name: Distribution name.
        state: Current state of the distribution.
        version: WSL version (1 or 2).
        default: Whether this is the default distribution.

    Example:
        >>> vm = VM.from_wsl_line("* devbox-v1    Running    2")
        >>> vm.name, vm.state, vm.default
        ('devbox-v1', <VMState.RUNNING: 'running'>, True)
    """

    name: Annotated[str, Field(min_length=1, description="Distribution name")]
    state: VMState = Field(default=VMState.UNKNOWN, description="Current state")
    version: int | None = Field(default=None, description="WSL version")
    default: bool = Field(default=False, description="Default distribution")

    @classmethod
    def from_wsl_line(cls, line: str) -> VM | None:
        """Create a VM from one row of ``wsl --list --verbose``.

        Args:
            line: A row such as ``* Ubuntu    Running    2``.

        Returns:
            VM instance, or None for blank and header rows.
        """
        stripped = line.strip()
        if not stripped:
            return None

        default = stripped.startswith("*")
        parts = stripped.lstrip("*").split()
        if not parts or parts[0].upper() == "NAME":
            return None

        name = parts[0]
        state = VMState.UNKNOWN
        version = None
        if len(parts) >= 2:
            try:
                state = VMState(parts[1].lower())
            except ValueError:
                state = VMState.UNKNOWN
        if len(parts) >= 3 and parts[2].isdigit():
            version = int(parts[2])

        return cls(name=name, state=state, version=version, default=default)
