"""Tests for Windows Terminal profile registration."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from dragonwsl.core.engine import ProfileNotification
from dragonwsl.core.exceptions import TerminalSettingsError
from dragonwsl.terminal import TerminalProfileWriter, strip_json_comments

PROFILE_ID = "2f0b1c4e-0000-4000-8000-000000000001"

SETTINGS = """\
// This file was initially generated by Windows Terminal
{
    "$schema": "https://aka.ms/terminal-profiles-schema",
    /* default profile */
    "defaultProfile": "{61c54bbd-c2c6-5271-96e7-009a87ff44bf}",
    "profiles": {
        "defaults": {},
        "list": [
            // PowerShell
            {
                "guid": "{61c54bbd-c2c6-5271-96e7-009a87ff44bf}",
                "name": "Windows PowerShell"
            }
        ]
    }
}
"""


@pytest.fixture
def settings_file(tmp_path: Path) -> Path:
    path = tmp_path / "settings.json"
    path.write_text(SETTINGS, encoding="utf-8")
    return path


@pytest.fixture
def notification() -> ProfileNotification:
    return ProfileNotification(
        name="devbox",
        vm_identifier="devbox-v2",
        profile_id=PROFILE_ID,
        command_line="wsl.exe -d devbox-v2",
    )


class TestStripJsonComments:
    """Tests for strip_json_comments."""

    def test_line_and_block_comments(self) -> None:
        text = '{\n  // note\n  "a": 1, /* inline */ "b": 2\n}'
        assert json.loads(strip_json_comments(text)) == {"a": 1, "b": 2}

    def test_comment_markers_inside_strings(self) -> None:
        text = '{"url": "https://example.com", "glob": "/* not a comment */"}'
        assert strip_json_comments(text) == text

    def test_escaped_quote_in_string(self) -> None:
        text = '{"a": "say \\"hi\\" // still string"} // gone'
        assert json.loads(strip_json_comments(text)) == {"a": 'say "hi" // still string'}

    def test_block_comment_keeps_line_count(self) -> None:
        text = "/* one\ntwo\nthree */{}"
        assert strip_json_comments(text) == "\n\n{}"


class TestTerminalProfileWriter:
    """Tests for TerminalProfileWriter.register."""

    def test_creates_profile_at_head(self, settings_file: Path, notification: ProfileNotification) -> None:
        created = TerminalProfileWriter(settings_file).register(notification)

        assert created
        data = json.loads(settings_file.read_text())
        entries = data["profiles"]["list"]
        assert len(entries) == 2
        assert entries[0] == {
            "guid": f"{{{PROFILE_ID}}}",
            "hidden": False,
            "name": "devbox",
            "commandLine": "wsl.exe -d devbox-v2",
        }
        assert entries[1]["name"] == "Windows PowerShell"
        assert data["defaultProfile"] == "{61c54bbd-c2c6-5271-96e7-009a87ff44bf}"

    def test_updates_existing_profile_in_place(
        self,
        settings_file: Path,
        notification: ProfileNotification,
    ) -> None:
        data = json.loads(strip_json_comments(SETTINGS))
        data["profiles"]["list"].append(
            {
                "guid": f"{{{PROFILE_ID.upper()}}}",
                "name": "devbox",
                "commandLine": "wsl.exe -d devbox-v1",
                "hidden": True,
                "colorScheme": "Campbell",
            }
        )
        settings_file.write_text(json.dumps(data))

        created = TerminalProfileWriter(settings_file).register(notification)

        assert not created
        entries = json.loads(settings_file.read_text())["profiles"]["list"]
        assert len(entries) == 2
        assert entries[1]["commandLine"] == "wsl.exe -d devbox-v2"
        assert entries[1]["hidden"] is False
        assert entries[1]["colorScheme"] == "Campbell"

    def test_second_registration_updates(
        self,
        settings_file: Path,
        notification: ProfileNotification,
    ) -> None:
        writer = TerminalProfileWriter(settings_file)

        assert writer.register(notification)
        assert not writer.register(notification)
        assert len(json.loads(settings_file.read_text())["profiles"]["list"]) == 2

    def test_accepts_byte_order_mark(self, settings_file: Path, notification: ProfileNotification) -> None:
        settings_file.write_text("\ufeff" + SETTINGS, encoding="utf-8")
        assert TerminalProfileWriter(settings_file).register(notification)

    @pytest.mark.parametrize(
        ("content", "message"),
        [
            ("{ not json", "invalid JSON"),
            ("[]", "top level"),
            ('{"profiles": []}', "'profiles' object"),
            ('{"profiles": {"defaults": {}}}', "profiles.list"),
        ],
        ids=["invalid-json", "not-an-object", "profiles-not-object", "missing-list"],
    )
    def test_invalid_settings(
        self,
        settings_file: Path,
        notification: ProfileNotification,
        content: str,
        message: str,
    ) -> None:
        settings_file.write_text(content)

        with pytest.raises(TerminalSettingsError, match=message):
            TerminalProfileWriter(settings_file).register(notification)

        assert settings_file.read_text() == content

    def test_missing_file(self, tmp_path: Path, notification: ProfileNotification) -> None:
        with pytest.raises(TerminalSettingsError, match="cannot read file"):
            TerminalProfileWriter(tmp_path / "absent.json").register(notification)

    def test_missing_profile_id(self, settings_file: Path, notification: ProfileNotification) -> None:
        notification.profile_id = ""

        with pytest.raises(TerminalSettingsError, match="no profile id"):
            TerminalProfileWriter(settings_file).register(notification)
