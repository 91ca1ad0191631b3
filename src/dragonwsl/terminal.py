"""Windows Terminal profile registration.

After a VM is created or upgraded the engine hands out a
``ProfileNotification``; this module turns it into an entry in the
Windows Terminal ``settings.json``. The settings file allows ``//`` and
``/* */`` comments, which are stripped before parsing and not written back.
"""

from __future__ import annotations

import contextlib
import json
import os
import tempfile
from pathlib import Path
from typing import Any

from dragonwsl.core.engine import ProfileNotification
from dragonwsl.core.exceptions import TerminalSettingsError
from dragonwsl.utils.logging import get_logger

logger = get_logger("terminal")


def strip_json_comments(text: str) -> str:
    """Remove ``//`` and ``/* */`` comments outside of JSON strings.

    Newlines inside removed comments are kept so parse errors still
    report the right line.

    Args:
        text: JSON text with comments.

    Returns:
        Plain JSON text.

    Example:
        >>> strip_json_comments('{"a": "http://x" // url\\n}')
        '{"a": "http://x" \\n}'
    """
    out: list[str] = []
    i = 0
    length = len(text)
    in_string = False

    while i < length:
        char = text[i]
        if in_string:
            out.append(char)
            if char == "\\" and i + 1 < length:
                out.append(text[i + 1])
                i += 2
                continue
            if char == '"':
                in_string = False
            i += 1
        elif char == '"':
            in_string = True
            out.append(char)
            i += 1
        elif text.startswith("//", i):
            end = text.find("\n", i)
            i = length if end == -1 else end
        elif text.startswith("/*", i):
            end = text.find("*/", i + 2)
            comment = text[i:] if end == -1 else text[i : end + 2]
            out.append("\n" * comment.count("\n"))
            i = length if end == -1 else end + 2
        else:
            out.append(char)
            i += 1

    return "".join(out)


def _normalize_guid(value: str) -> str:
    return value.strip().strip("{}").lower()


class TerminalProfileWriter:
    """Creates or updates Windows Terminal profiles for managed VMs.

    Profiles are keyed by the record's ``terminal_profile_id``. A new
    profile goes to the head of ``profiles.list``; an existing one keeps
    its position and any keys the user added, with ``name`` and
    ``commandLine`` refreshed.

    Args:
        settings_path: Path to Windows Terminal ``settings.json``.

    Example:
        >>> writer = TerminalProfileWriter(Path("settings.json"))
        >>> writer.register(result.notification)
        True
    """

    def __init__(self, settings_path: Path | str) -> None:
        self.settings_path = Path(settings_path).expanduser()

    def _load(self) -> dict[str, Any]:
        try:
            text = self.settings_path.read_text(encoding="utf-8-sig")
        except OSError as e:
            raise TerminalSettingsError(str(self.settings_path), f"cannot read file: {e}") from e

        try:
            data = json.loads(strip_json_comments(text))
        except json.JSONDecodeError as e:
            raise TerminalSettingsError(str(self.settings_path), f"invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise TerminalSettingsError(str(self.settings_path), "top level must be an object")
        return data

    def _profiles(self, data: dict[str, Any]) -> list[Any]:
        profiles = data.get("profiles")
        if not isinstance(profiles, dict):
            raise TerminalSettingsError(str(self.settings_path), "missing 'profiles' object")
        entries = profiles.get("list")
        if not isinstance(entries, list):
            raise TerminalSettingsError(str(self.settings_path), "missing 'profiles.list' array")
        return entries

    def _save(self, data: dict[str, Any]) -> None:
        content = json.dumps(data, indent=4, ensure_ascii=False) + "\n"
        tmp_name: str | None = None
        try:
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.settings_path.name}.tmp-",
                dir=str(self.settings_path.parent),
            )
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.settings_path)
            tmp_name = None
        except OSError as e:
            raise TerminalSettingsError(str(self.settings_path), f"cannot write file: {e}") from e
        finally:
            if tmp_name is not None:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_name)

    def register(self, notification: ProfileNotification) -> bool:
        """Create or update the profile for a VM.

        Args:
            notification: Profile details from the engine.

        Returns:
            True if a profile was created, False if an existing one was updated.

        Raises:
            TerminalSettingsError: If the settings file cannot be read, parsed or written.
        """
        if not notification.profile_id:
            raise TerminalSettingsError(
                str(self.settings_path), f"record '{notification.name}' has no profile id"
            )

        data = self._load()
        entries = self._profiles(data)
        guid = _normalize_guid(notification.profile_id)

        for entry in entries:
            if isinstance(entry, dict) and _normalize_guid(str(entry.get("guid", ""))) == guid:
                entry["name"] = notification.name
                entry["commandLine"] = notification.command_line
                entry["hidden"] = False
                created = False
                break
        else:
            entries.insert(
                0,
                {
                    "guid": f"{{{guid}}}",
                    "hidden": False,
                    "name": notification.name,
                    "commandLine": notification.command_line,
                },
            )
            created = True

        self._save(data)
        action = "Created" if created else "Updated"
        logger.info(f"{action} terminal profile {notification.name} -> {notification.vm_identifier}")
        return created
