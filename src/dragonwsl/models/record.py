"""Record models for dragonwsl.

This module defines the persisted VM record, the image reference it is
built from, and the tag metadata reported by the registry.
"""

from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from dragonwsl.core.exceptions import InvalidImageReferenceError

_IDENTIFIER_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")


def derive_vm_identifier(name: str, tag: str) -> str:
    """Build the WSL distribution name for a record at a given tag.

    Args:
        name: Record name.
        tag: Image tag.

    Returns:
        ``<name>-<tag>`` with characters WSL rejects replaced by ``-``.

    Example:
        >>> derive_vm_identifier("devbox", "v1")
        'devbox-v1'
        >>> derive_vm_identifier("devbox", "1.2+build")
        'devbox-1.2-build'
    """
    return _IDENTIFIER_UNSAFE.sub("-", f"{name}-{tag}")


class RecordState(str, Enum):
    """Lifecycle state of a VM record."""

    ABSENT = "absent"
    PULLED = "pulled"
    UPDATE_CHECKED = "update_checked"
    UPGRADING = "upgrading"
    UPGRADED = "upgraded"


class ImageReference(BaseModel):
    """A container image reference of the form ``registry/repository[:tag]``.

    Args:
        registry: Registry host, e.g. ``myregistry.azurecr.io``.
        repository: Repository path inside the registry.
        tag: Optional tag.

    Example:
        >>> ref = ImageReference.parse("myregistry.azurecr.io/tools/dev:v2")
        >>> ref.registry_name, ref.repository, ref.tag
        ('myregistry', 'tools/dev', 'v2')
    """

    model_config = ConfigDict(frozen=True)

    registry: Annotated[str, Field(min_length=1)]
    repository: Annotated[str, Field(min_length=1)]
    tag: str | None = None

    @classmethod
    def parse(cls, reference: str) -> ImageReference:
        """Parse an image reference string.

        Raises:
            InvalidImageReferenceError: If the reference has no registry or repository.
        """
        registry, sep, remainder = reference.strip().partition("/")
        if not sep or not registry or not remainder:
            raise InvalidImageReferenceError(reference)

        tag = None
        # A colon after the last slash separates the tag; earlier ones belong to a port
        last_segment = remainder.rsplit("/", 1)[-1]
        if ":" in last_segment:
            remainder, _, tag = remainder.rpartition(":")
            if not tag:
                raise InvalidImageReferenceError(reference)

        if not remainder or remainder.endswith("/"):
            raise InvalidImageReferenceError(reference)

        return cls(registry=registry, repository=remainder, tag=tag)

    @property
    def registry_name(self) -> str:
        """Registry name as the az CLI expects it (first label of the host)."""
        return self.registry.split(".", 1)[0].split(":", 1)[0]

    @property
    def base(self) -> str:
        """Reference without tag."""
        return f"{self.registry}/{self.repository}"

    def with_tag(self, tag: str) -> str:
        """Full pullable reference for ``tag``."""
        return f"{self.base}:{tag}"

    def __str__(self) -> str:
        return self.with_tag(self.tag) if self.tag else self.base


class TagInfo(BaseModel):
    """A tag reported by the registry.

    Args:
        name: Tag name.
        last_update: When the tag was last pushed, if reported.
    """

    name: Annotated[str, Field(min_length=1)]
    last_update: datetime | None = None


class VMRecord(BaseModel):
    """Persisted metadata for one managed WSL VM.

    Field aliases keep the on-disk keys of the ``.dockerwsl`` file. Keys
    this model does not know are kept and written back as they were.

    Args:
        name: Unique record name, stable across upgrades.
        image_reference: Source image ``registry/repository`` without tag.
        current_tag: Tag the local VM was built from.
        latest_tag: Tag observed from the registry at the last update.
        terminal_profile_id: GUID of the Windows Terminal profile, if any.

    Example:
        >>> record = VMRecord(
        ...     name="devbox",
        ...     image_reference="myregistry.azurecr.io/app",
        ...     current_tag="v1",
        ...     latest_tag="v1",
        ... )
        >>> record.vm_identifier
        'devbox-v1'
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: Annotated[str, Field(min_length=1, pattern=r"^[A-Za-z0-9._-]+$")]
    image_reference: Annotated[str, Field(min_length=1, alias="image")]
    current_tag: Annotated[str, Field(min_length=1, alias="current")]
    latest_tag: Annotated[str, Field(min_length=1, alias="latest")]
    terminal_profile_id: str | None = Field(default=None, alias="windowsTerminalProfileId")

    @field_validator("image_reference")
    @classmethod
    def validate_image_reference(cls, v: str) -> str:
        """Image reference must parse and carry no tag."""
        ref = ImageReference.parse(v)
        if ref.tag is not None:
            raise ValueError(f"image reference must not include a tag: {v}")
        return ref.base

    @property
    def image(self) -> ImageReference:
        """Parsed image reference."""
        return ImageReference.parse(self.image_reference)

    @property
    def vm_identifier(self) -> str:
        """WSL distribution name of the current VM."""
        return derive_vm_identifier(self.name, self.current_tag)

    @property
    def target_identifier(self) -> str:
        """WSL distribution name the next upgrade will produce."""
        return derive_vm_identifier(self.name, self.latest_tag)

    @property
    def state(self) -> RecordState:
        """Persisted lifecycle state."""
        if self.latest_tag == self.current_tag:
            return RecordState.PULLED
        return RecordState.UPDATE_CHECKED

    @property
    def update_available(self) -> bool:
        """True when the registry reported a tag newer than the current one."""
        return self.latest_tag != self.current_tag

    def to_dict(self) -> dict[str, Any]:
        """Convert to the on-disk dictionary layout."""
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_display_dict(self) -> dict[str, Any]:
        """Convert to a dictionary for JSON/YAML output."""
        data = self.model_dump(exclude_none=True)
        data["vm_identifier"] = self.vm_identifier
        data["state"] = self.state.value
        return data
