"""dragonwsl - keep Docker-image-based WSL VMs up to date.

This package tracks named WSL VMs built from container images in an Azure
Container Registry, checks the registry for newer tags, and upgrades each
VM without losing the previously working one on failure.

Example:
    $ dragon new devbox myregistry.azurecr.io/tools/dev
    $ dragon update
    $ dragon upgrade devbox
"""

__version__ = "0.1.0"

from dragonwsl.core.exceptions import (
    ConfigurationError,
    DragonError,
    MaterializeError,
    RecordNotFoundError,
    RegistryError,
    StoreError,
    VMBusyError,
    VMNotFoundError,
    VMOperationError,
)

__all__ = [
    "ConfigurationError",
    "DragonError",
    "MaterializeError",
    "RecordNotFoundError",
    "RegistryError",
    "StoreError",
    "VMBusyError",
    "VMNotFoundError",
    "VMOperationError",
    "__version__",
]
