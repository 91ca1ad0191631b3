"""Pytest configuration and fixtures for dragonwsl tests.

This module provides shared fixtures for testing dragonwsl components
including a fake tool adapter with an in-memory WSL inventory, record
stores in temporary directories, and sample configurations.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

import pytest
import yaml

from dragonwsl.core.config import Config, ConfigManager
from dragonwsl.core.engine import ReconciliationEngine
from dragonwsl.core.exceptions import (
    ImageNotFoundError,
    VMBusyError,
    VMNotFoundError,
)
from dragonwsl.core.store import RecordStore
from dragonwsl.models.record import ImageReference, TagInfo, VMRecord
from dragonwsl.models.vm import VM, VMState

if TYPE_CHECKING:
    from click.testing import CliRunner

IMAGE = "myregistry.azurecr.io/tools/dev"


class FakeAdapter:
    """In-memory stand-in for ToolAdapter.

    Attributes:
        inventory: Registered VMs by name.
        tags: Registry tags by image base.
        registry_failures: Exceptions raised by the next lookups, in order.
        materialize_failure: Exception raised by the next materialize call.
        failing_vms: Exceptions raised by every materialize call for a VM name.
        calls: Log of (operation, argument) tuples.
    """

    def __init__(self) -> None:
        self.inventory: dict[str, VM] = {}
        self.tags: dict[str, list[TagInfo]] = {}
        self.registry_failures: list[Exception] = []
        self.materialize_failure: Exception | None = None
        self.failing_vms: dict[str, Exception] = {}
        self.calls: list[tuple[str, str]] = []

    def push(self, tag: str, when: datetime | None = None, image: str = IMAGE) -> None:
        """Simulate pushing a tag; newest tags are reported first."""
        self.tags.setdefault(image, []).insert(0, TagInfo(name=tag, last_update=when))

    def add_vm(self, name: str, state: VMState = VMState.STOPPED) -> VM:
        vm = VM(name=name, state=state, version=2)
        self.inventory[name] = vm
        return vm

    def list_registry_tags(self, image: ImageReference | str) -> list[TagInfo]:
        ref = image if isinstance(image, ImageReference) else ImageReference.parse(image)
        self.calls.append(("list_registry_tags", ref.base))
        if self.registry_failures:
            raise self.registry_failures.pop(0)
        tags = self.tags.get(ref.base)
        if not tags:
            raise ImageNotFoundError(ref.base)
        return list(tags)

    def materialize_vm(self, image: ImageReference | str, tag: str, vm_identifier: str) -> VM:
        self.calls.append(("materialize_vm", vm_identifier))
        if self.materialize_failure is not None:
            failure, self.materialize_failure = self.materialize_failure, None
            raise failure
        if vm_identifier in self.failing_vms:
            raise self.failing_vms[vm_identifier]
        return self.add_vm(vm_identifier)

    def list_vms(self) -> list[VM]:
        self.calls.append(("list_vms", "*"))
        return list(self.inventory.values())

    def get_vm(self, vm_identifier: str) -> VM | None:
        return self.inventory.get(vm_identifier)

    def vm_exists(self, vm_identifier: str) -> bool:
        return vm_identifier in self.inventory

    def terminate_vm(self, vm_identifier: str) -> None:
        self.calls.append(("terminate_vm", vm_identifier))
        vm = self.inventory.get(vm_identifier)
        if vm is None:
            raise VMNotFoundError(vm_identifier)
        self.inventory[vm_identifier] = vm.model_copy(update={"state": VMState.STOPPED})

    def delete_vm(self, vm_identifier: str) -> None:
        self.calls.append(("delete_vm", vm_identifier))
        vm = self.inventory.get(vm_identifier)
        if vm is None:
            raise VMNotFoundError(vm_identifier)
        if vm.state.busy:
            raise VMBusyError(vm_identifier)
        del self.inventory[vm_identifier]

    def operations(self, name: str) -> list[str]:
        """Arguments of every recorded call to one operation."""
        return [arg for op, arg in self.calls if op == name]


@pytest.fixture
def fake_adapter() -> FakeAdapter:
    """Create a fake adapter with ``v1`` pushed to the sample image."""
    adapter = FakeAdapter()
    adapter.push("v1", datetime(2024, 1, 1, tzinfo=timezone.utc))
    return adapter


@pytest.fixture
def state_file(tmp_path: Path) -> Path:
    """Path of a not yet existing state file."""
    return tmp_path / ".dockerwsl"


@pytest.fixture
def store(state_file: Path) -> RecordStore:
    """Create a record store in a temporary directory."""
    return RecordStore(state_file)


@pytest.fixture
def engine(store: RecordStore, fake_adapter: FakeAdapter) -> ReconciliationEngine:
    """Create an engine over the fake adapter without retry delays."""
    return ReconciliationEngine(
        store,
        fake_adapter,  # type: ignore[arg-type]
        registry_retries=3,
        retry_base_delay=0,
    )


@pytest.fixture
def sample_record() -> VMRecord:
    """Create a sample record at tag v1."""
    return VMRecord(
        name="devbox",
        image_reference=IMAGE,
        current_tag="v1",
        latest_tag="v1",
        terminal_profile_id="2f0b1c4e-0000-4000-8000-000000000001",
    )


@pytest.fixture
def sample_config_data(tmp_path: Path) -> dict:
    """Create sample configuration data."""
    return {
        "state_file": str(tmp_path / ".dockerwsl"),
        "tools": {"docker": "docker", "wsl": "wsl.exe", "az": "az"},
        "registry": {
            "username": "sp-app-id",
            "password": "sp-secret",
            "tenant": "tenant-id",
            "retries": 2,
        },
        "timeouts": {"registry": 30, "pull": 600, "export": 300, "import": 300, "wsl": 20},
        "wsl": {"install_dir": str(tmp_path / "wsl"), "version": 2},
        "logging": {"level": "INFO", "file": None},
    }


@pytest.fixture
def temp_config_file(tmp_path: Path, sample_config_data: dict) -> Path:
    """Create a temporary config file with sample data."""
    config_path = tmp_path / "config.yaml"
    with config_path.open("w") as f:
        yaml.safe_dump(sample_config_data, f)
    return config_path


@pytest.fixture
def config_manager(temp_config_file: Path) -> ConfigManager:
    """Create a ConfigManager with a temporary config file."""
    return ConfigManager(temp_config_file)


@pytest.fixture
def config(config_manager: ConfigManager) -> Config:
    """Loaded sample configuration."""
    return config_manager.config


@pytest.fixture
def cli_runner() -> CliRunner:
    """Create a Click test runner."""
    from click.testing import CliRunner

    return CliRunner()
