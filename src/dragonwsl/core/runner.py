"""External command execution.

This module provides the CommandRunner used by the tool adapter to run
docker, wsl and az. Each call is synchronous, bounded by a timeout, and
returns a CommandResult. Nothing here retries.
"""

from __future__ import annotations

import shlex
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass

from dragonwsl.core.exceptions import ExternalToolError, ToolTimeoutError
from dragonwsl.utils.logging import COMMAND_OUTPUT_LOGGER, get_logger

logger = get_logger("runner")
output_logger = get_logger(COMMAND_OUTPUT_LOGGER)


def decode_output(data: bytes | None) -> str:
    """Decode raw process output.

    ``wsl.exe`` writes UTF-16LE, everything else writes UTF-8. NUL bytes
    are the tell-tale of UTF-16.

    Args:
        data: Raw bytes from the process.

    Returns:
        Decoded text with BOMs and NULs removed.
    """
    if not data:
        return ""
    if b"\x00" in data:
        text = data.decode("utf-16-le", errors="replace")
    else:
        text = data.decode("utf-8", errors="replace")
    return text.replace("\ufeff", "").replace("\x00", "")


@dataclass
class CommandResult:
    """Result from an external command execution.

    Args:
        stdout: Standard output from the command.
        stderr: Standard error from the command.
        exit_code: Exit code of the command.
        command: The command line that was executed.

    Attributes:
        success: True if exit code is 0.
    """

    stdout: str
    stderr: str
    exit_code: int
    command: str

    @property
    def success(self) -> bool:
        """Check if command succeeded (exit code 0)."""
        return self.exit_code == 0

    @property
    def output(self) -> str:
        """Combined stdout and stderr output."""
        parts = []
        if self.stdout:
            parts.append(self.stdout)
        if self.stderr:
            parts.append(self.stderr)
        return "\n".join(parts)


class CommandRunner:
    """Runs external commands with a bounded timeout.

    Args:
        default_timeout: Timeout in seconds used when a call passes none.

    Example:
        >>> runner = CommandRunner()
        >>> result = runner.run(["docker", "version"], timeout=10)
        >>> if result.success:
        ...     print(result.stdout)
    """

    def __init__(self, default_timeout: float = 60) -> None:
        self.default_timeout = default_timeout

    def run(
        self,
        args: Sequence[str],
        timeout: float | None = None,
        secret_args: Sequence[str] = (),
    ) -> CommandResult:
        """Execute a command and capture its output.

        Args:
            args: Program and arguments.
            timeout: Timeout in seconds (default_timeout if None).
            secret_args: Argument values masked in logs and errors.

        Returns:
            CommandResult with decoded output and exit code.

        Raises:
            ToolTimeoutError: If the command exceeds its timeout.
            ExternalToolError: If the program cannot be started.
        """
        command = self.format_command(args, secret_args)
        exec_timeout = timeout or self.default_timeout

        logger.debug(f"Executing: {command} (timeout {exec_timeout:g}s)")

        try:
            proc = subprocess.run(
                list(args),
                capture_output=True,
                stdin=subprocess.DEVNULL,
                timeout=exec_timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise ToolTimeoutError(command, exec_timeout) from e
        except FileNotFoundError as e:
            raise ExternalToolError(command, f"command not found: {args[0]}") from e
        except OSError as e:
            raise ExternalToolError(command, str(e)) from e

        result = CommandResult(
            stdout=decode_output(proc.stdout).strip(),
            stderr=decode_output(proc.stderr).strip(),
            exit_code=proc.returncode,
            command=command,
        )

        if result.success:
            logger.debug(f"Command succeeded: {command}")
        else:
            logger.info(f"Command failed with exit code {result.exit_code}: {command}")
        if result.output:
            output_logger.debug(f"{command}\n{result.output}")

        return result

    @staticmethod
    def format_command(args: Sequence[str], secret_args: Sequence[str] = ()) -> str:
        """Render a command line for logs, masking secrets."""
        return " ".join(shlex.quote("***" if a in secret_args else a) for a in args)
