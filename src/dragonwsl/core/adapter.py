"""External tool adapter.

This module wraps the three external tools dragonwsl orchestrates:

- ``az`` for registry tag lookups
- ``docker`` to pull an image and export its root filesystem
- ``wsl`` to import, list, terminate and unregister distributions

Every method performs one bounded, synchronous operation and turns the
outcome into a typed result or a typed error naming the failing step.
Nothing here retries; that decision belongs to the engine.
"""

from __future__ import annotations

import contextlib
import json
import re
import shutil
import tempfile
import uuid
from datetime import datetime
from pathlib import Path

from dragonwsl.core.config import Config, TimeoutsConfig, ToolsConfig
from dragonwsl.core.exceptions import (
    DragonError,
    ExportFailedError,
    ExternalToolError,
    ImageNotFoundError,
    ImportFailedError,
    MaterializeError,
    PullFailedError,
    RegistryUnavailableError,
    VMBusyError,
    VMNotFoundError,
    VMOperationError,
)
from dragonwsl.core.runner import CommandResult, CommandRunner
from dragonwsl.models.record import ImageReference, TagInfo
from dragonwsl.models.vm import VM
from dragonwsl.utils.logging import get_logger

logger = get_logger("adapter")

_MISSING_REPOSITORY_MARKERS = (
    "not found",
    "does not exist",
    "name_unknown",
    "resourcenotfound",
    "repository_unknown",
)
_MISSING_VM_MARKERS = (
    "no distribution",
    "not found",
    "does not exist",
    "wsl_e_distro_not_found",
)
_NO_DISTRIBUTIONS_MARKERS = ("no installed distributions",)
_FRACTION = re.compile(r"\.(\d{6})\d+")


def _contains_any(text: str, markers: tuple[str, ...]) -> bool:
    lowered = text.lower()
    return any(marker in lowered for marker in markers)


def _parse_timestamp(value: object) -> datetime | None:
    """Parse the timestamps az reports (7 fractional digits, trailing Z)."""
    if not isinstance(value, str) or not value:
        return None
    normalized = _FRACTION.sub(r".\1", value.strip())
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(normalized)
    except ValueError:
        logger.debug(f"Ignoring unparseable timestamp {value!r}")
        return None


def _as_image(image: ImageReference | str) -> ImageReference:
    return image if isinstance(image, ImageReference) else ImageReference.parse(image)


class ToolAdapter:
    """Thin synchronous wrapper around az, docker and wsl.

    Args:
        config: Loaded configuration (tool paths, timeouts, credentials).
        runner: Command runner; a default one is created if omitted.

    Example:
        >>> adapter = ToolAdapter(Config())
        >>> tags = adapter.list_registry_tags("myregistry.azurecr.io/app")
        >>> adapter.materialize_vm("myregistry.azurecr.io/app", tags[0].name, "devbox-v2")
    """

    def __init__(self, config: Config, runner: CommandRunner | None = None) -> None:
        self.config = config
        self.runner = runner or CommandRunner(default_timeout=config.timeouts.wsl)
        self._az_logged_in = False
        self._docker_logged_in: set[str] = set()

    @property
    def tools(self) -> ToolsConfig:
        return self.config.tools

    @property
    def timeouts(self) -> TimeoutsConfig:
        return self.config.timeouts

    # Registry

    def _az_login(self, image: ImageReference) -> None:
        registry = self.config.registry
        if not registry.has_credentials or self._az_logged_in:
            return

        args = [
            self.tools.az,
            "login",
            "--service-principal",
            "--username",
            registry.username or "",
            "--password",
            registry.password or "",
            "--tenant",
            registry.tenant or "",
        ]
        try:
            result = self.runner.run(
                args,
                timeout=self.timeouts.registry,
                secret_args=[registry.password or ""],
            )
        except ExternalToolError as e:
            raise RegistryUnavailableError(image.base, f"az login failed: {e.message}") from e
        if not result.success:
            raise RegistryUnavailableError(
                image.base,
                f"az login failed, check the service principal settings: {result.stderr}",
            )
        self._az_logged_in = True
        logger.info("Logged in to Azure with service principal")

    def list_registry_tags(self, image: ImageReference | str) -> list[TagInfo]:
        """List tags of a repository, most recently pushed first.

        Args:
            image: Image reference (a tag, if present, is ignored).

        Returns:
            Tags in the order the registry reports them (time descending).

        Raises:
            RegistryUnavailableError: On network, auth, timeout or output errors.
            ImageNotFoundError: If the repository is unknown or has no tags.
        """
        ref = _as_image(image)
        self._az_login(ref)

        args = [
            self.tools.az,
            "acr",
            "repository",
            "show-tags",
            "--name",
            ref.registry_name,
            "--repository",
            ref.repository,
            "--orderby",
            "time_desc",
            "--detail",
            "--output",
            "json",
        ]
        try:
            result = self.runner.run(args, timeout=self.timeouts.registry)
        except ExternalToolError as e:
            raise RegistryUnavailableError(ref.base, e.message) from e

        if not result.success:
            if _contains_any(result.output, _MISSING_REPOSITORY_MARKERS):
                raise ImageNotFoundError(ref.base)
            raise RegistryUnavailableError(ref.base, result.stderr or f"exit code {result.exit_code}")

        tags = self._parse_tags(result, ref)
        if not tags:
            raise ImageNotFoundError(ref.base)

        logger.debug(f"Registry reported {len(tags)} tag(s) for {ref.base}")
        return tags

    def _parse_tags(self, result: CommandResult, ref: ImageReference) -> list[TagInfo]:
        try:
            data = json.loads(result.stdout or "[]")
        except json.JSONDecodeError as e:
            raise RegistryUnavailableError(ref.base, f"unparseable az output: {e}") from e

        if not isinstance(data, list):
            raise RegistryUnavailableError(ref.base, "unexpected az output: expected a JSON list")

        tags: list[TagInfo] = []
        for item in data:
            if isinstance(item, str):
                tags.append(TagInfo(name=item))
            elif isinstance(item, dict) and item.get("name"):
                tags.append(
                    TagInfo(
                        name=item["name"],
                        last_update=_parse_timestamp(item.get("lastUpdateTime") or item.get("createdTime")),
                    )
                )
            else:
                logger.debug(f"Skipping unexpected tag entry {item!r}")
        return tags

    # Materialization

    def _docker_login(self, ref: ImageReference, vm_identifier: str) -> None:
        registry = self.config.registry
        if not registry.has_credentials or ref.registry in self._docker_logged_in:
            return

        args = [
            self.tools.docker,
            "login",
            ref.registry,
            "--username",
            registry.username or "",
            "--password",
            registry.password or "",
        ]
        try:
            result = self.runner.run(
                args,
                timeout=self.timeouts.registry,
                secret_args=[registry.password or ""],
            )
        except ExternalToolError as e:
            raise PullFailedError(vm_identifier, ref.base, f"docker login failed: {e.message}") from e
        if not result.success:
            raise PullFailedError(vm_identifier, ref.base, f"docker login failed: {result.stderr}")
        self._docker_logged_in.add(ref.registry)

    def _step(
        self,
        error_cls: type[MaterializeError],
        args: list[str],
        timeout: int,
        vm_identifier: str,
        image: str,
    ) -> CommandResult:
        try:
            result = self.runner.run(args, timeout=timeout)
        except ExternalToolError as e:
            raise error_cls(vm_identifier, image, e.message) from e
        if not result.success:
            message = result.stderr or result.stdout or f"exit code {result.exit_code}"
            raise error_cls(vm_identifier, image, message)
        return result

    def materialize_vm(self, image: ImageReference | str, tag: str, vm_identifier: str) -> VM:
        """Pull ``image:tag``, export its filesystem and import it as a WSL VM.

        Temporary artifacts (the export container and the tar archive) are
        removed in every case. A failed import also removes the install
        directory this call created.

        Args:
            image: Image reference without tag.
            tag: Tag to materialize.
            vm_identifier: Name of the WSL distribution to create.

        Returns:
            The imported VM.

        Raises:
            PullFailedError: If login or ``docker pull`` fails.
            ExportFailedError: If ``docker create`` or ``docker export`` fails.
            ImportFailedError: If ``wsl --import`` fails.
        """
        ref = _as_image(image)
        full_ref = ref.with_tag(tag)
        install_dir = self.config.wsl.install_path / vm_identifier
        container = f"dragon-export-{vm_identifier}-{uuid.uuid4().hex[:8]}"
        work_dir = Path(tempfile.mkdtemp(prefix="dragon-"))
        archive = work_dir / f"{vm_identifier}.tar"
        container_created = False

        logger.info(f"Materializing {full_ref} as {vm_identifier}")
        try:
            self._docker_login(ref, vm_identifier)
            pull_args = [self.tools.docker, "pull", full_ref]
            self._step(PullFailedError, pull_args, self.timeouts.pull, vm_identifier, full_ref)

            create_args = [self.tools.docker, "create", "--name", container, full_ref]
            self._step(ExportFailedError, create_args, self.timeouts.export, vm_identifier, full_ref)
            container_created = True
            export_args = [self.tools.docker, "export", "--output", str(archive), container]
            self._step(ExportFailedError, export_args, self.timeouts.export, vm_identifier, full_ref)

            if install_dir.exists() and any(install_dir.iterdir()):
                message = f"install directory {install_dir} is not empty"
                raise ImportFailedError(vm_identifier, full_ref, message)
            try:
                install_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise ImportFailedError(vm_identifier, full_ref, f"cannot create {install_dir}: {e}") from e

            import_args = [
                self.tools.wsl,
                "--import",
                vm_identifier,
                str(install_dir),
                str(archive),
                "--version",
                str(self.config.wsl.version),
            ]
            try:
                self._step(ImportFailedError, import_args, self.timeouts.import_, vm_identifier, full_ref)
            except ImportFailedError:
                shutil.rmtree(install_dir, ignore_errors=True)
                raise
        finally:
            if container_created:
                self._cleanup_container(container)
            shutil.rmtree(work_dir, ignore_errors=True)

        logger.info(f"Imported {vm_identifier} from {full_ref}")
        return VM(name=vm_identifier, version=self.config.wsl.version)

    def _cleanup_container(self, container: str) -> None:
        try:
            args = [self.tools.docker, "rm", "--force", container]
            result = self.runner.run(args, timeout=self.timeouts.wsl)
        except DragonError as e:
            logger.warning(f"Could not remove temporary container {container}: {e}")
            return
        if not result.success:
            logger.warning(f"Could not remove temporary container {container}: {result.stderr}")

    # Inventory

    def list_vms(self) -> list[VM]:
        """List WSL distributions.

        Returns:
            Inventory entries; empty when WSL has no distributions.

        Raises:
            VMOperationError: If the listing fails.
            ExternalToolError: If wsl cannot be run or times out.
        """
        result = self.runner.run([self.tools.wsl, "--list", "--verbose"], timeout=self.timeouts.wsl)

        if not result.success:
            if _contains_any(result.output, _NO_DISTRIBUTIONS_MARKERS):
                return []
            raise VMOperationError("*", "list", result.output or f"exit code {result.exit_code}")

        vms = []
        for line in result.stdout.splitlines():
            vm = VM.from_wsl_line(line)
            if vm is not None:
                vms.append(vm)
        return vms

    def get_vm(self, vm_identifier: str) -> VM | None:
        """Inventory entry for one distribution, or None."""
        for vm in self.list_vms():
            if vm.name == vm_identifier:
                return vm
        return None

    def vm_exists(self, vm_identifier: str) -> bool:
        """True if a distribution with this name is registered."""
        return self.get_vm(vm_identifier) is not None

    def terminate_vm(self, vm_identifier: str) -> None:
        """Stop a running distribution.

        Raises:
            VMNotFoundError: If the distribution does not exist.
            VMOperationError: If termination fails.
        """
        result = self.runner.run([self.tools.wsl, "--terminate", vm_identifier], timeout=self.timeouts.wsl)
        if not result.success:
            if _contains_any(result.output, _MISSING_VM_MARKERS):
                raise VMNotFoundError(vm_identifier)
            raise VMOperationError(vm_identifier, "terminate", result.output)
        logger.info(f"Terminated {vm_identifier}")

    def delete_vm(self, vm_identifier: str) -> None:
        """Unregister a distribution and remove its install directory.

        Running distributions are never terminated here.

        Raises:
            VMNotFoundError: If the distribution does not exist.
            VMBusyError: If the distribution is running.
            VMOperationError: If unregistering fails.
        """
        vm = self.get_vm(vm_identifier)
        if vm is None:
            raise VMNotFoundError(vm_identifier)
        if vm.state.busy:
            raise VMBusyError(vm_identifier)

        result = self.runner.run([self.tools.wsl, "--unregister", vm_identifier], timeout=self.timeouts.wsl)
        if not result.success:
            if _contains_any(result.output, _MISSING_VM_MARKERS):
                raise VMNotFoundError(vm_identifier)
            raise VMOperationError(vm_identifier, "delete", result.output)

        install_dir = self.config.wsl.install_path / vm_identifier
        if install_dir.is_dir():
            with contextlib.suppress(OSError):
                shutil.rmtree(install_dir)
        logger.info(f"Unregistered {vm_identifier}")
