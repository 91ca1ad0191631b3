"""Tests for the external tool adapter."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from dragonwsl.core.adapter import ToolAdapter
from dragonwsl.core.config import Config, WSLConfig
from dragonwsl.core.exceptions import (
    ExportFailedError,
    ImageNotFoundError,
    ImportFailedError,
    PullFailedError,
    RegistryUnavailableError,
    ToolTimeoutError,
    VMBusyError,
    VMNotFoundError,
    VMOperationError,
)
from dragonwsl.core.runner import CommandResult, CommandRunner
from dragonwsl.models.vm import VMState

IMAGE = "myregistry.azurecr.io/tools/dev"

WSL_LIST = """  NAME          STATE           VERSION
* devbox-v1     Running         2
  Ubuntu        Stopped         2
  old-v0        Stopped         2
"""

TAGS_JSON = """[
    {"name": "v2", "lastUpdateTime": "2024-01-02T10:00:00.1234567Z"},
    {"name": "v1", "lastUpdateTime": "2024-01-01T10:00:00Z"}
]"""


def _result(stdout: str = "", stderr: str = "", exit_code: int = 0) -> CommandResult:
    return CommandResult(stdout=stdout, stderr=stderr, exit_code=exit_code, command="test")


class ScriptedRunner:
    """Answers commands by matching their leading arguments."""

    def __init__(self) -> None:
        self.responses: list[tuple[tuple[str, ...], CommandResult | Exception]] = []
        self.mock = MagicMock(spec=CommandRunner)
        self.mock.run.side_effect = self._run

    def on(self, *prefix: str, result: CommandResult | Exception) -> None:
        self.responses.insert(0, (prefix, result))

    def _run(
        self,
        args: Sequence[str],
        timeout: float | None = None,
        secret_args: Sequence[str] = (),
    ) -> CommandResult:
        for prefix, response in self.responses:
            if tuple(args[: len(prefix)]) == prefix:
                if isinstance(response, Exception):
                    raise response
                return response
        return _result()

    @property
    def commands(self) -> list[list[str]]:
        return [list(c.args[0]) for c in self.mock.run.call_args_list]


@pytest.fixture
def runner() -> ScriptedRunner:
    return ScriptedRunner()


@pytest.fixture
def plain_config(tmp_path: Path) -> Config:
    """Configuration without registry credentials."""
    return Config(wsl=WSLConfig(install_dir=str(tmp_path / "wsl")))


@pytest.fixture
def adapter(plain_config: Config, runner: ScriptedRunner) -> ToolAdapter:
    return ToolAdapter(plain_config, runner.mock)


class TestRegistryTags:
    """Tests for ToolAdapter.list_registry_tags."""

    def test_lists_tags_in_registry_order(self, adapter: ToolAdapter, runner: ScriptedRunner) -> None:
        runner.on("az", "acr", result=_result(stdout=TAGS_JSON))

        tags = adapter.list_registry_tags(IMAGE)

        assert [t.name for t in tags] == ["v2", "v1"]
        assert tags[0].last_update == datetime(2024, 1, 2, 10, 0, 0, 123456, tzinfo=timezone.utc)
        assert runner.commands == [
            [
                "az",
                "acr",
                "repository",
                "show-tags",
                "--name",
                "myregistry",
                "--repository",
                "tools/dev",
                "--orderby",
                "time_desc",
                "--detail",
                "--output",
                "json",
            ]
        ]

    def test_accepts_plain_tag_names(self, adapter: ToolAdapter, runner: ScriptedRunner) -> None:
        runner.on("az", "acr", result=_result(stdout='["v3", "v2"]'))

        tags = adapter.list_registry_tags(IMAGE)

        assert [(t.name, t.last_update) for t in tags] == [("v3", None), ("v2", None)]

    def test_service_principal_login_once(
        self,
        config: Config,
        runner: ScriptedRunner,
    ) -> None:
        adapter = ToolAdapter(config, runner.mock)
        runner.on("az", "acr", result=_result(stdout=TAGS_JSON))

        adapter.list_registry_tags(IMAGE)
        adapter.list_registry_tags(IMAGE)

        logins = [c for c in runner.commands if c[:2] == ["az", "login"]]
        assert logins == [
            [
                "az",
                "login",
                "--service-principal",
                "--username",
                "sp-app-id",
                "--password",
                "sp-secret",
                "--tenant",
                "tenant-id",
            ]
        ]
        login_call = runner.mock.run.call_args_list[0]
        assert login_call.kwargs["secret_args"] == ["sp-secret"]

    def test_failed_login_is_unavailable(self, config: Config, runner: ScriptedRunner) -> None:
        adapter = ToolAdapter(config, runner.mock)
        runner.on("az", "login", result=_result(stderr="AADSTS7000215: Invalid client secret", exit_code=1))

        with pytest.raises(RegistryUnavailableError, match="az login failed"):
            adapter.list_registry_tags(IMAGE)

    def test_missing_repository(self, adapter: ToolAdapter, runner: ScriptedRunner) -> None:
        runner.on(
            "az",
            "acr",
            result=_result(stderr="ERROR: (ResourceNotFound) repository tools/dev is not found", exit_code=3),
        )

        with pytest.raises(ImageNotFoundError):
            adapter.list_registry_tags(IMAGE)

    def test_empty_tag_list(self, adapter: ToolAdapter, runner: ScriptedRunner) -> None:
        runner.on("az", "acr", result=_result(stdout="[]"))

        with pytest.raises(ImageNotFoundError):
            adapter.list_registry_tags(IMAGE)

    @pytest.mark.parametrize(
        "response",
        [
            _result(stderr="Max retries exceeded with url", exit_code=1),
            _result(stdout="<html>proxy error</html>"),
            _result(stdout='{"name": "v1"}'),
            ToolTimeoutError("az acr repository show-tags", 60),
        ],
        ids=["network", "not-json", "not-a-list", "timeout"],
    )
    def test_unavailable(
        self,
        adapter: ToolAdapter,
        runner: ScriptedRunner,
        response: CommandResult | Exception,
    ) -> None:
        runner.on("az", "acr", result=response)

        with pytest.raises(RegistryUnavailableError):
            adapter.list_registry_tags(IMAGE)


class TestMaterialize:
    """Tests for ToolAdapter.materialize_vm."""

    def test_pull_export_import(
        self,
        config: Config,
        runner: ScriptedRunner,
        tmp_path: Path,
    ) -> None:
        adapter = ToolAdapter(config, runner.mock)

        vm = adapter.materialize_vm(IMAGE, "v1", "devbox-v1")

        assert vm.name == "devbox-v1"
        steps = [c[:2] for c in runner.commands]
        assert steps == [
            ["docker", "login"],
            ["docker", "pull"],
            ["docker", "create"],
            ["docker", "export"],
            ["wsl.exe", "--import"],
            ["docker", "rm"],
        ]
        pull, create, export, wsl_import, cleanup = runner.commands[1:]
        assert pull == ["docker", "pull", f"{IMAGE}:v1"]
        container = create[3]
        assert container.startswith("dragon-export-devbox-v1-")
        assert export[-1] == container
        archive = export[3]
        assert wsl_import == [
            "wsl.exe",
            "--import",
            "devbox-v1",
            str(tmp_path / "wsl" / "devbox-v1"),
            archive,
            "--version",
            "2",
        ]
        assert cleanup == ["docker", "rm", "--force", container]
        assert not Path(archive).parent.exists()

    def test_pull_failure(self, adapter: ToolAdapter, runner: ScriptedRunner) -> None:
        runner.on("docker", "pull", result=_result(stderr="manifest unknown", exit_code=1))

        with pytest.raises(PullFailedError) as exc_info:
            adapter.materialize_vm(IMAGE, "v9", "devbox-v9")

        assert exc_info.value.step == "pull"
        assert "manifest unknown" in str(exc_info.value)
        assert [c[:2] for c in runner.commands] == [["docker", "pull"]]

    def test_export_failure_removes_container(self, adapter: ToolAdapter, runner: ScriptedRunner) -> None:
        runner.on("docker", "export", result=_result(stderr="no space left on device", exit_code=1))

        with pytest.raises(ExportFailedError):
            adapter.materialize_vm(IMAGE, "v1", "devbox-v1")

        assert runner.commands[-1][:3] == ["docker", "rm", "--force"]

    def test_import_failure_cleans_install_dir(
        self,
        adapter: ToolAdapter,
        runner: ScriptedRunner,
        tmp_path: Path,
    ) -> None:
        runner.on("wsl.exe", "--import", result=_result(stderr="WSL_E_IMPORT_FAILED", exit_code=1))

        with pytest.raises(ImportFailedError):
            adapter.materialize_vm(IMAGE, "v1", "devbox-v1")

        assert not (tmp_path / "wsl" / "devbox-v1").exists()
        assert runner.commands[-1][:2] == ["docker", "rm"]

    def test_refuses_non_empty_install_dir(
        self,
        adapter: ToolAdapter,
        runner: ScriptedRunner,
        tmp_path: Path,
    ) -> None:
        install_dir = tmp_path / "wsl" / "devbox-v1"
        install_dir.mkdir(parents=True)
        (install_dir / "ext4.vhdx").write_text("disk")

        with pytest.raises(ImportFailedError, match="not empty"):
            adapter.materialize_vm(IMAGE, "v1", "devbox-v1")

        assert ["wsl.exe", "--import"] not in [c[:2] for c in runner.commands]
        assert (install_dir / "ext4.vhdx").exists()

    def test_cleanup_failure_does_not_mask_result(self, adapter: ToolAdapter, runner: ScriptedRunner) -> None:
        runner.on("docker", "rm", result=ToolTimeoutError("docker rm", 60))

        vm = adapter.materialize_vm(IMAGE, "v1", "devbox-v1")

        assert vm.name == "devbox-v1"


class TestInventory:
    """Tests for listing, terminating and deleting VMs."""

    def test_list_vms(self, adapter: ToolAdapter, runner: ScriptedRunner) -> None:
        runner.on("wsl.exe", "--list", result=_result(stdout=WSL_LIST))

        vms = adapter.list_vms()

        assert [(v.name, v.state, v.default) for v in vms] == [
            ("devbox-v1", VMState.RUNNING, True),
            ("Ubuntu", VMState.STOPPED, False),
            ("old-v0", VMState.STOPPED, False),
        ]
        assert adapter.vm_exists("Ubuntu")
        assert not adapter.vm_exists("ghost")

    def test_list_vms_empty(self, adapter: ToolAdapter, runner: ScriptedRunner) -> None:
        runner.on(
            "wsl.exe",
            "--list",
            result=_result(stdout="Windows Subsystem for Linux has no installed distributions.", exit_code=1),
        )

        assert adapter.list_vms() == []

    def test_list_vms_failure(self, adapter: ToolAdapter, runner: ScriptedRunner) -> None:
        runner.on("wsl.exe", "--list", result=_result(stderr="The service cannot be started", exit_code=1))

        with pytest.raises(VMOperationError):
            adapter.list_vms()

    def test_delete_absent_vm(self, adapter: ToolAdapter, runner: ScriptedRunner) -> None:
        runner.on("wsl.exe", "--list", result=_result(stdout=WSL_LIST))

        with pytest.raises(VMNotFoundError):
            adapter.delete_vm("ghost")

    def test_delete_running_vm(self, adapter: ToolAdapter, runner: ScriptedRunner) -> None:
        runner.on("wsl.exe", "--list", result=_result(stdout=WSL_LIST))

        with pytest.raises(VMBusyError):
            adapter.delete_vm("devbox-v1")

        assert ["wsl.exe", "--unregister", "devbox-v1"] not in runner.commands

    def test_delete_stopped_vm(
        self,
        adapter: ToolAdapter,
        runner: ScriptedRunner,
        tmp_path: Path,
    ) -> None:
        runner.on("wsl.exe", "--list", result=_result(stdout=WSL_LIST))
        install_dir = tmp_path / "wsl" / "old-v0"
        install_dir.mkdir(parents=True)

        adapter.delete_vm("old-v0")

        assert runner.commands[-1] == ["wsl.exe", "--unregister", "old-v0"]
        assert not install_dir.exists()

    def test_delete_race_reports_not_found(self, adapter: ToolAdapter, runner: ScriptedRunner) -> None:
        runner.on("wsl.exe", "--list", result=_result(stdout=WSL_LIST))
        runner.on(
            "wsl.exe",
            "--unregister",
            result=_result(stderr="There is no distribution with the supplied name.", exit_code=1),
        )

        with pytest.raises(VMNotFoundError):
            adapter.delete_vm("old-v0")

    def test_terminate(self, adapter: ToolAdapter, runner: ScriptedRunner) -> None:
        adapter.terminate_vm("devbox-v1")

        assert runner.commands == [["wsl.exe", "--terminate", "devbox-v1"]]

    def test_terminate_missing(self, adapter: ToolAdapter, runner: ScriptedRunner) -> None:
        runner.on(
            "wsl.exe",
            "--terminate",
            result=_result(stderr="There is no distribution with the supplied name.", exit_code=1),
        )

        with pytest.raises(VMNotFoundError):
            adapter.terminate_vm("ghost")
