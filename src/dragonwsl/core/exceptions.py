"""Custom exceptions for dragonwsl.

This module defines a hierarchy of exceptions used throughout dragonwsl
so that every failure names the record, tool or step it belongs to.

Exception Hierarchy:
    DragonError (base)
    ├── ConfigurationError
    │   └── ConfigNotFoundError
    ├── InvalidImageReferenceError
    ├── StoreError
    │   ├── StoreCorruptError
    │   └── StoreWriteError
    ├── RecordError
    │   ├── RecordNotFoundError
    │   └── DuplicateRecordError
    ├── ExternalToolError
    │   └── ToolTimeoutError
    ├── RegistryError
    │   ├── RegistryUnavailableError
    │   └── ImageNotFoundError
    ├── MaterializeError
    │   ├── PullFailedError
    │   ├── ExportFailedError
    │   └── ImportFailedError
    ├── VMOperationError
    │   ├── VMNotFoundError
    │   └── VMBusyError
    ├── TerminalSettingsError
    └── BatchOperationError
"""

from __future__ import annotations

from typing import Any


class DragonError(Exception):
    """Base exception for all dragonwsl errors.

    Args:
        message: Human-readable error message.
        details: Optional dictionary with additional error context.

    Attributes:
        message: The error message.
        details: Additional context about the error.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({detail_str})"
        return self.message


class ConfigurationError(DragonError):
    """Raised when there is a configuration-related error.

    Examples:
        - Invalid YAML syntax in config file
        - Invalid configuration values
    """


class ConfigNotFoundError(ConfigurationError):
    """Raised when the configuration file cannot be found.

    Args:
        path: The path where the config was expected.
    """

    def __init__(self, path: str) -> None:
        super().__init__(
            f"Configuration file not found: {path}",
            details={"path": path},
        )
        self.path = path


class InvalidImageReferenceError(DragonError):
    """Raised when an image reference is not ``registry/repository[:tag]``."""

    def __init__(self, reference: str) -> None:
        super().__init__(
            f"Invalid image reference '{reference}', expected registry/repository[:tag]",
            details={"reference": reference},
        )
        self.reference = reference


class StoreError(DragonError):
    """Base class for record store failures."""

    def __init__(self, message: str, path: str) -> None:
        super().__init__(message, details={"path": path})
        self.path = path


class StoreCorruptError(StoreError):
    """Raised when the state file exists but cannot be parsed."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"State file is corrupt: {reason}", path)
        self.reason = reason


class StoreWriteError(StoreError):
    """Raised when the state file cannot be written.

    The previously persisted file is left untouched.
    """

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Could not write state file: {reason}", path)
        self.reason = reason


class RecordError(DragonError):
    """Base class for errors about a single VM record."""

    def __init__(self, message: str, name: str) -> None:
        super().__init__(message, details={"name": name})
        self.name = name


class RecordNotFoundError(RecordError):
    """Raised when an operation targets a record that does not exist."""

    def __init__(self, name: str) -> None:
        super().__init__(f"No VM record named '{name}'", name)


class DuplicateRecordError(RecordError):
    """Raised when ``new`` targets a name that already has a record."""

    def __init__(self, name: str) -> None:
        super().__init__(f"A VM record named '{name}' already exists", name)


class ExternalToolError(DragonError):
    """Raised when an external command cannot be run at all.

    Args:
        command: The command line that was attempted.
        message: Description of the failure.
    """

    def __init__(self, command: str, message: str) -> None:
        super().__init__(f"Could not run '{command}': {message}", details={"command": command})
        self.command = command


class ToolTimeoutError(ExternalToolError):
    """Raised when an external command exceeds its timeout."""

    def __init__(self, command: str, timeout: float) -> None:
        super().__init__(command, f"timed out after {timeout:g}s")
        self.timeout = timeout
        self.details["timeout"] = timeout


class RegistryError(DragonError):
    """Base class for registry tag lookup failures."""

    def __init__(self, image: str, message: str) -> None:
        super().__init__(f"Registry lookup for '{image}' failed: {message}", details={"image": image})
        self.image = image


class RegistryUnavailableError(RegistryError):
    """Raised on network, authentication or timeout failures talking to the registry.

    These are the only failures the engine considers safe to retry.
    """


class ImageNotFoundError(RegistryError):
    """Raised when the repository does not exist or has no tags."""

    def __init__(self, image: str) -> None:
        super().__init__(image, "repository not found or has no tags")


class MaterializeError(DragonError):
    """Raised when turning an image into a VM fails.

    Args:
        step: The materialization step that failed (pull, export, import).
        vm_identifier: The VM that was being created.
        image: The image reference including tag.
        message: Description of the failure.
    """

    step = "materialize"

    def __init__(self, vm_identifier: str, image: str, message: str) -> None:
        super().__init__(
            f"Step '{self.step}' failed while creating VM '{vm_identifier}' from '{image}': {message}",
            details={"step": self.step, "vm": vm_identifier, "image": image},
        )
        self.vm_identifier = vm_identifier
        self.image = image


class PullFailedError(MaterializeError):
    """Raised when ``docker pull`` fails."""

    step = "pull"


class ExportFailedError(MaterializeError):
    """Raised when creating or exporting the container filesystem fails."""

    step = "export"


class ImportFailedError(MaterializeError):
    """Raised when ``wsl --import`` fails."""

    step = "import"


class VMOperationError(DragonError):
    """Raised when a VM operation fails.

    Args:
        vm_name: The name of the VM.
        operation: The operation that failed (e.g., 'delete', 'list').
        message: Description of the failure.
    """

    def __init__(self, vm_name: str, operation: str, message: str) -> None:
        super().__init__(
            f"Failed to {operation} VM '{vm_name}': {message}",
            details={"vm_name": vm_name, "operation": operation},
        )
        self.vm_name = vm_name
        self.operation = operation


class VMNotFoundError(VMOperationError):
    """Raised when a VM does not exist in the WSL inventory."""

    def __init__(self, vm_name: str) -> None:
        super().__init__(vm_name, "find", "VM does not exist")


class VMBusyError(VMOperationError):
    """Raised when a VM is running and cannot be removed without terminating it."""

    def __init__(self, vm_name: str, operation: str = "delete") -> None:
        super().__init__(vm_name, operation, "VM is running, stop it first")


class TerminalSettingsError(DragonError):
    """Raised when the Windows Terminal settings file cannot be read or updated.

    Args:
        path: Path of the settings file.
        message: Description of the failure.
    """

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"Windows Terminal settings: {message}", details={"path": path})
        self.path = path


class BatchOperationError(DragonError):
    """Raised when an operation over all records failed for some of them.

    Records that completed keep their changes; their results are carried
    here so callers can still act on them.

    Args:
        operation: Operation name, e.g. 'upgrade'.
        completed: Results of the records that succeeded, in order.
        failures: Error per failed record name.
    """

    def __init__(self, operation: str, completed: list[Any], failures: dict[str, DragonError]) -> None:
        super().__init__(f"{operation} failed for {len(failures)} record(s): {', '.join(failures)}")
        self.operation = operation
        self.completed = completed
        self.failures = failures
