"""Data models for dragonwsl.

This module contains Pydantic models for VM records, image references
and WSL distributions.
"""

from dragonwsl.models.record import (
    ImageReference,
    RecordState,
    TagInfo,
    VMRecord,
    derive_vm_identifier,
)
from dragonwsl.models.vm import VM, VMState

__all__ = [
    "VM",
    "ImageReference",
    "RecordState",
    "TagInfo",
    "VMRecord",
    "VMState",
    "derive_vm_identifier",
]
