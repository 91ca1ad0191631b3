"""Core functionality for dragonwsl.

This package contains the record store, the external tool adapter and the
reconciliation engine. Only the exceptions are re-exported here; import
the engine from ``dragonwsl.core.engine``.
"""

from dragonwsl.core.exceptions import (
    DragonError,
    ExternalToolError,
    MaterializeError,
    RecordError,
    RegistryError,
    StoreError,
    TerminalSettingsError,
    VMOperationError,
)

__all__ = [
    "DragonError",
    "ExternalToolError",
    "MaterializeError",
    "RecordError",
    "RegistryError",
    "StoreError",
    "TerminalSettingsError",
    "VMOperationError",
]
