"""Reconciliation engine.

This module converges the local WSL fleet to the tags recorded in the
record store. The ordering of external steps is what keeps upgrades safe:

- ``new`` writes a record only after the VM was imported.
- ``update`` refreshes ``latest_tag`` and never touches WSL.
- ``upgrade`` with a new tag imports the new VM first, then unregisters
  the old one, then moves ``current_tag``. With an unchanged tag it
  recreates the VM under the same name.

Any failure before the final record write leaves the record pointing at
the previously working VM. An interrupted upgrade leaves two VMs behind,
which ``check_drift`` reports and the next ``upgrade`` resumes from.
"""

from __future__ import annotations

import contextlib
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TypeVar

from pydantic import ValidationError

from dragonwsl.core.adapter import ToolAdapter
from dragonwsl.core.config import DEFAULT_COMMAND_TEMPLATE, Config
from dragonwsl.core.exceptions import (
    BatchOperationError,
    DragonError,
    DuplicateRecordError,
    RecordError,
    RegistryUnavailableError,
    VMNotFoundError,
    VMOperationError,
)
from dragonwsl.core.store import RecordStore
from dragonwsl.models.record import (
    ImageReference,
    RecordState,
    TagInfo,
    VMRecord,
    derive_vm_identifier,
)
from dragonwsl.models.vm import VM
from dragonwsl.utils.logging import get_logger
from dragonwsl.utils.output import create_spinner_progress
from dragonwsl.utils.retry import retry_with_backoff

logger = get_logger("engine")

T = TypeVar("T")


class UpgradePolicy(str, Enum):
    """How an upgrade turns the current VM into the target VM."""

    REPLACE = "replace"
    CREATE_NEW = "create_new"


@dataclass
class ProfileNotification:
    """What a terminal profile writer needs after a VM was (re)created.

    Args:
        name: Record name, used as the profile title.
        vm_identifier: WSL distribution to connect to.
        profile_id: Stable profile GUID stored on the record.
        command_line: Command that opens a shell in the VM.
    """

    name: str
    vm_identifier: str
    profile_id: str
    command_line: str


@dataclass
class UpgradePlan:
    """The steps an upgrade of one record will take.

    Attributes:
        skip_materialize: True when the target VM already exists, i.e. an
            earlier create-new upgrade was interrupted after the import.
    """

    name: str
    policy: UpgradePolicy
    current_tag: str
    target_tag: str
    old_identifier: str
    new_identifier: str
    skip_materialize: bool = False

    def describe(self) -> str:
        """One-line human readable summary."""
        if self.policy == UpgradePolicy.REPLACE:
            return f"recreate {self.old_identifier} from tag {self.target_tag}"
        if self.skip_materialize:
            return f"reuse existing {self.new_identifier}, then remove {self.old_identifier}"
        return f"create {self.new_identifier}, then remove {self.old_identifier}"


@dataclass
class NewResult:
    """Outcome of ``new``."""

    record: VMRecord
    notification: ProfileNotification
    state: RecordState = RecordState.PULLED


@dataclass
class UpdateResult:
    """Outcome of ``update`` for one record."""

    name: str
    previous_tag: str
    latest_tag: str
    current_tag: str

    @property
    def changed(self) -> bool:
        """True when the registry reported a different latest tag."""
        return self.previous_tag != self.latest_tag

    @property
    def upgrade_available(self) -> bool:
        """True when an upgrade would switch tags."""
        return self.latest_tag != self.current_tag


@dataclass
class UpgradeResult:
    """Outcome of ``upgrade`` for one record."""

    plan: UpgradePlan
    record: VMRecord
    notification: ProfileNotification
    state: RecordState = RecordState.UPGRADED


@dataclass
class StrayVM:
    """A VM named like a record's VM that the record does not point at.

    Attributes:
        pending_upgrade: The VM is the record's upgrade target, left over
            from an interrupted upgrade.
    """

    record_name: str
    vm: VM
    pending_upgrade: bool = False


@dataclass
class DriftReport:
    """Differences between the record store and the WSL inventory."""

    missing: list[VMRecord] = field(default_factory=list)
    stray: list[StrayVM] = field(default_factory=list)

    @property
    def has_drift(self) -> bool:
        return bool(self.missing or self.stray)


@dataclass
class RecordStatus:
    """A record paired with its inventory entry, if any."""

    record: VMRecord
    vm: VM | None

    @property
    def present(self) -> bool:
        return self.vm is not None


def select_latest_tag(tags: Sequence[TagInfo]) -> str:
    """Pick the most recently pushed tag.

    Tags are ordered by ``last_update`` descending. Ties and tags without
    a timestamp keep the order the registry reported them in, and untimed
    tags come after timed ones.

    Args:
        tags: Tags as reported by the registry.

    Returns:
        Name of the most recent tag.

    Raises:
        ValueError: If ``tags`` is empty.
    """
    if not tags:
        raise ValueError("no tags to choose from")

    def recency(indexed: tuple[int, TagInfo]) -> tuple[bool, float, int]:
        index, tag = indexed
        if tag.last_update is None:
            return (True, 0.0, index)
        return (False, -tag.last_update.timestamp(), index)

    return min(enumerate(tags), key=recency)[1].name


class ReconciliationEngine:
    """Drives new/update/upgrade/remove for VM records.

    Each public operation holds the store lock from start to finish, so
    two CLI invocations never interleave.

    Args:
        store: Record store handle.
        adapter: External tool adapter.
        registry_retries: Attempts for registry lookups (the only retried call).
        retry_base_delay: Initial backoff delay in seconds.
        command_template: Profile command line, formatted with ``name`` and
            ``vm_identifier``.
        show_progress: Show spinners around long external steps.

    Example:
        >>> engine = ReconciliationEngine.from_config(Config())
        >>> engine.new("devbox", "myregistry.azurecr.io/app", "v1")
        >>> engine.update("devbox")
        >>> engine.upgrade("devbox")
    """

    def __init__(
        self,
        store: RecordStore,
        adapter: ToolAdapter,
        registry_retries: int = 3,
        retry_base_delay: float = 1.0,
        command_template: str = DEFAULT_COMMAND_TEMPLATE,
        show_progress: bool = False,
    ) -> None:
        self.store = store
        self.adapter = adapter
        self.registry_retries = registry_retries
        self.retry_base_delay = retry_base_delay
        self.command_template = command_template
        self.show_progress = show_progress

    @classmethod
    def from_config(cls, config: Config, show_progress: bool = False) -> ReconciliationEngine:
        """Build an engine with a store and adapter from configuration."""
        return cls(
            RecordStore(config.state_path),
            ToolAdapter(config),
            registry_retries=config.registry.retries,
            command_template=config.terminal.command_template,
            show_progress=show_progress,
        )

    # Helpers

    def _progress(self, description: str, func: Callable[..., T], *args: object) -> T:
        if not self.show_progress:
            return func(*args)
        progress = create_spinner_progress()
        with progress:
            task = progress.add_task(description, total=None)
            result = func(*args)
            progress.update(task, completed=True)
        return result

    def _latest_tag(self, image: ImageReference) -> str:
        lookup = retry_with_backoff(
            max_attempts=self.registry_retries,
            base_delay=self.retry_base_delay,
            exceptions=(RegistryUnavailableError,),
        )(self.adapter.list_registry_tags)
        tags = self._progress(f"Checking tags of {image.base}...", lookup, image)
        return select_latest_tag(tags)

    def _materialize(self, image: ImageReference, tag: str, vm_identifier: str) -> None:
        self._progress(
            f"Creating {vm_identifier} from {image.with_tag(tag)}...",
            self.adapter.materialize_vm,
            image,
            tag,
            vm_identifier,
        )

    def _delete_if_present(self, vm_identifier: str) -> bool:
        """Unregister a VM, treating an already absent VM as success."""
        try:
            self.adapter.delete_vm(vm_identifier)
        except VMNotFoundError:
            logger.info(f"VM {vm_identifier} already absent")
            return False
        return True

    def _notification(self, record: VMRecord) -> ProfileNotification:
        return ProfileNotification(
            name=record.name,
            vm_identifier=record.vm_identifier,
            profile_id=record.terminal_profile_id or "",
            command_line=self.command_template.format(
                name=record.name,
                vm_identifier=record.vm_identifier,
            ),
        )

    def _targets(self, name: str | None) -> list[VMRecord]:
        records = self.store.load()
        if name is None:
            return [records[key] for key in sorted(records)]
        return [self.store.get(name)]

    def _each(self, operation: str, name: str | None, step: Callable[[VMRecord], T]) -> list[T]:
        """Apply ``step`` to the named record, or to every record.

        A named record's failure propagates unchanged. Across all records a
        failure does not stop the rest; completed results travel on the
        raised BatchOperationError.
        """
        targets = self._targets(name)
        if name is not None:
            return [step(record) for record in targets]

        results: list[T] = []
        failures: dict[str, DragonError] = {}
        for record in targets:
            try:
                results.append(step(record))
            except DragonError as e:
                logger.error(f"{record.name}: {operation} failed: {e}")
                failures[record.name] = e

        if failures:
            raise BatchOperationError(operation, results, failures)
        return results

    # Operations

    def new(self, name: str, image_reference: str, tag: str | None = None) -> NewResult:
        """Create a VM from ``image_reference:tag`` and record it.

        Args:
            name: New record name.
            image_reference: ``registry/repository``, optionally with a tag.
            tag: Tag to use; defaults to the reference's tag, then to the
                most recent registry tag.

        Returns:
            The stored record and its profile notification.

        Raises:
            DuplicateRecordError: If the name is taken.
            VMOperationError: If a VM with the derived name already exists.
            RecordError: If the name is invalid.
            MaterializeError: If pulling, exporting or importing fails.
        """
        image = ImageReference.parse(image_reference)

        with self.store.locked():
            if name in self.store.load():
                raise DuplicateRecordError(name)

            tag = tag or image.tag or self._latest_tag(image)
            try:
                record = VMRecord(
                    name=name,
                    image_reference=image.base,
                    current_tag=tag,
                    latest_tag=tag,
                    terminal_profile_id=str(uuid.uuid4()),
                )
            except ValidationError as e:
                raise RecordError(f"Invalid record: {e}", name) from e

            if self.adapter.vm_exists(record.vm_identifier):
                raise VMOperationError(
                    record.vm_identifier,
                    "create",
                    "a VM with this name exists but no record points at it",
                )

            logger.info(f"Creating {name} from {image.with_tag(tag)}")
            self._materialize(image, tag, record.vm_identifier)
            stored = self.store.upsert(name, lambda _: record, create=True)

        logger.info(f"Created {name} as {stored.vm_identifier}")
        return NewResult(record=stored, notification=self._notification(stored))

    def update(self, name: str | None = None) -> list[UpdateResult]:
        """Refresh ``latest_tag`` from the registry.

        Args:
            name: Record to update, or None for every record.

        Raises:
            RecordNotFoundError: If ``name`` has no record.
            RegistryError: If the lookup for ``name`` fails; ``latest_tag`` is unchanged.
            BatchOperationError: If some records failed while updating all of them;
                the others are updated and their results attached.
        """
        with self.store.locked():
            return self._each("update", name, self._update_one)

    def _update_one(self, record: VMRecord) -> UpdateResult:
        latest = self._latest_tag(record.image)
        if latest != record.latest_tag:
            self.store.upsert(
                record.name,
                lambda current: current.model_copy(update={"latest_tag": latest}),
            )
            logger.info(f"{record.name}: latest tag is now {latest} (was {record.latest_tag})")
        else:
            logger.info(f"{record.name}: latest tag {latest} unchanged")
        return UpdateResult(
            name=record.name,
            previous_tag=record.latest_tag,
            latest_tag=latest,
            current_tag=record.current_tag,
        )

    def _plan(self, record: VMRecord) -> UpgradePlan:
        if record.latest_tag == record.current_tag:
            return UpgradePlan(
                name=record.name,
                policy=UpgradePolicy.REPLACE,
                current_tag=record.current_tag,
                target_tag=record.latest_tag,
                old_identifier=record.vm_identifier,
                new_identifier=record.vm_identifier,
            )

        new_identifier = derive_vm_identifier(record.name, record.latest_tag)
        return UpgradePlan(
            name=record.name,
            policy=UpgradePolicy.CREATE_NEW,
            current_tag=record.current_tag,
            target_tag=record.latest_tag,
            old_identifier=record.vm_identifier,
            new_identifier=new_identifier,
            skip_materialize=self.adapter.vm_exists(new_identifier),
        )

    def plan_upgrade(self, name: str | None = None) -> list[UpgradePlan]:
        """Compute upgrade plans without changing anything."""
        with self.store.locked():
            return [self._plan(record) for record in self._targets(name)]

    def upgrade(self, name: str | None = None) -> list[UpgradeResult]:
        """Move records to their ``latest_tag``.

        Args:
            name: Record to upgrade, or None for every record.

        Raises:
            RecordNotFoundError: If ``name`` has no record.
            MaterializeError: If creating the target VM fails; nothing changed.
            VMBusyError: If a VM to be removed is running; the record is unchanged
                and a re-run resumes once it is stopped.
            BatchOperationError: If some records failed while upgrading all of them;
                the others are upgraded and their results attached.
        """
        with self.store.locked():
            return self._each("upgrade", name, self._upgrade_one)

    def _upgrade_one(self, record: VMRecord) -> UpgradeResult:
        plan = self._plan(record)
        image = record.image
        logger.info(f"{record.name}: {RecordState.UPGRADING.value}, {plan.describe()}")

        if plan.policy == UpgradePolicy.REPLACE:
            self._delete_if_present(plan.old_identifier)
            self._materialize(image, plan.target_tag, plan.new_identifier)
        else:
            if plan.skip_materialize:
                logger.info(f"{plan.new_identifier} already exists, resuming interrupted upgrade")
            else:
                self._materialize(image, plan.target_tag, plan.new_identifier)
            self._delete_if_present(plan.old_identifier)

        stored = self.store.upsert(
            record.name,
            lambda current: current.model_copy(
                update={
                    "current_tag": plan.target_tag,
                    "terminal_profile_id": current.terminal_profile_id or str(uuid.uuid4()),
                }
            ),
        )
        logger.info(f"{record.name}: {RecordState.UPGRADED.value} to {plan.target_tag}")
        return UpgradeResult(plan=plan, record=stored, notification=self._notification(stored))

    def remove(self, name: str, keep_vm: bool = False, force: bool = False) -> VMRecord:
        """Delete a record and, unless ``keep_vm``, its VM.

        Args:
            name: Record to remove.
            keep_vm: Leave the VM registered in WSL.
            force: Terminate the VM first if it is running.

        Raises:
            RecordNotFoundError: If ``name`` has no record.
            VMBusyError: If the VM is running and ``force`` is False.
        """
        with self.store.locked():
            record = self.store.get(name)
            if not keep_vm:
                if force:
                    with contextlib.suppress(VMNotFoundError):
                        self.adapter.terminate_vm(record.vm_identifier)
                self._delete_if_present(record.vm_identifier)
            self.store.delete(name)

        logger.info(f"Removed record {name}")
        return record

    def status(self) -> list[RecordStatus]:
        """Pair every record with its inventory entry."""
        records = self.store.load()
        inventory = {vm.name: vm for vm in self.adapter.list_vms()}
        return [
            RecordStatus(record=records[key], vm=inventory.get(records[key].vm_identifier))
            for key in sorted(records)
        ]

    def check_drift(self) -> DriftReport:
        """Compare records with the WSL inventory.

        Missing VMs and stray VMs named ``<record>-<tag>`` are reported;
        nothing is changed.
        """
        records = self.store.load()
        vms = self.adapter.list_vms()
        present = {vm.name for vm in vms}
        managed = {record.vm_identifier for record in records.values()}

        report = DriftReport()
        for key in sorted(records):
            if records[key].vm_identifier not in present:
                report.missing.append(records[key])

        for vm in vms:
            if vm.name in managed:
                continue
            owners = [record for record in records.values() if vm.name.startswith(f"{record.name}-")]
            if not owners:
                continue
            owner = max(owners, key=lambda record: len(record.name))
            report.stray.append(
                StrayVM(
                    record_name=owner.name,
                    vm=vm,
                    pending_upgrade=vm.name == owner.target_identifier,
                )
            )

        if report.has_drift:
            logger.warning(f"Drift detected: {len(report.missing)} missing, {len(report.stray)} stray")
        return report
