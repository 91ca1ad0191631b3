"""Persistent record store.

Records live in a YAML file (``~/.dockerwsl`` by default)::

    wsls:
      - name: devbox
        image: myregistry.azurecr.io/app
        current: v1
        latest: v2

Top-level keys other than ``wsls`` (such as the ``acr`` credentials block)
and unknown keys inside an entry are written back unchanged.

Every mutation rewrites the whole file atomically (temporary file in the
same directory, fsync, ``os.replace``) while holding an exclusive lock on
``<file>.lock``, so concurrent CLI invocations never interleave writes.
"""

from __future__ import annotations

import contextlib
import errno
import os
import tempfile
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import IO, Any

import yaml
from pydantic import ValidationError

from dragonwsl.core.exceptions import (
    DuplicateRecordError,
    RecordNotFoundError,
    StoreCorruptError,
    StoreWriteError,
)
from dragonwsl.models.record import VMRecord
from dragonwsl.utils.logging import get_logger

if os.name == "nt":
    import msvcrt
else:
    import fcntl

logger = get_logger("store")

RECORDS_KEY = "wsls"

Mutation = Callable[[VMRecord | None], VMRecord]


def _lock_file(handle: IO[bytes]) -> None:
    if os.name == "nt":
        handle.seek(0)
        # LK_LOCK gives up with EDEADLOCK after ~10s; keep waiting
        while True:
            try:
                msvcrt.locking(handle.fileno(), msvcrt.LK_LOCK, 1)
                return
            except OSError as e:
                if e.errno != errno.EDEADLOCK:
                    raise
    else:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)


def _unlock_file(handle: IO[bytes]) -> None:
    if os.name == "nt":
        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
    else:
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


class RecordStore:
    """Loads and saves VM records.

    The store is an explicitly passed handle; nothing about it is global.
    ``locked()`` is re-entrant within one instance so an engine operation
    can hold the lock end to end while nested ``upsert`` calls reuse it.

    Args:
        path: Path to the state file.

    Example:
        >>> store = RecordStore(Path("~/.dockerwsl").expanduser())
        >>> with store.locked():
        ...     records = store.load()
        ...     store.upsert("devbox", lambda r: r.model_copy(update={"latest_tag": "v2"}))
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path).expanduser()
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self._lock_handle: IO[bytes] | None = None
        self._lock_depth = 0

    @contextlib.contextmanager
    def locked(self) -> Iterator[RecordStore]:
        """Hold the exclusive store lock for the duration of the block."""
        if self._lock_depth == 0:
            try:
                self.lock_path.parent.mkdir(parents=True, exist_ok=True)
                handle = self.lock_path.open("a+b")
            except OSError as e:
                raise StoreWriteError(str(self.lock_path), f"cannot open lock file: {e}") from e
            try:
                logger.debug(f"Waiting for lock {self.lock_path}")
                _lock_file(handle)
            except OSError as e:
                handle.close()
                raise StoreWriteError(str(self.lock_path), f"cannot acquire lock: {e}") from e
            self._lock_handle = handle
            logger.debug(f"Acquired lock {self.lock_path}")

        self._lock_depth += 1
        try:
            yield self
        finally:
            self._lock_depth -= 1
            if self._lock_depth == 0 and self._lock_handle is not None:
                handle, self._lock_handle = self._lock_handle, None
                try:
                    _unlock_file(handle)
                finally:
                    handle.close()
                logger.debug(f"Released lock {self.lock_path}")

    def _read_document(self) -> dict[str, Any]:
        """Parse the state file into its top-level mapping; empty if absent."""
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug(f"State file {self.path} does not exist yet")
            return {}
        except (OSError, UnicodeDecodeError) as e:
            raise StoreCorruptError(str(self.path), f"cannot read file: {e}") from e

        if not text.strip():
            return {}

        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise StoreCorruptError(str(self.path), f"invalid YAML: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise StoreCorruptError(str(self.path), "top level must be a mapping")
        return data

    def load(self) -> dict[str, VMRecord]:
        """Load all records.

        Returns:
            Mapping from record name to record; empty if the file does not exist.

        Raises:
            StoreCorruptError: If the file exists but cannot be parsed or validated.
        """
        entries = self._read_document().get(RECORDS_KEY) or []
        if not isinstance(entries, list):
            raise StoreCorruptError(str(self.path), f"'{RECORDS_KEY}' must be a list")

        records: dict[str, VMRecord] = {}
        for index, entry in enumerate(entries):
            try:
                record = VMRecord.model_validate(entry)
            except ValidationError as e:
                raise StoreCorruptError(str(self.path), f"entry #{index} is invalid: {e}") from e
            if record.name in records:
                raise StoreCorruptError(str(self.path), f"duplicate record name '{record.name}'")
            records[record.name] = record

        logger.debug(f"Loaded {len(records)} record(s) from {self.path}")
        return records

    def save(self, records: dict[str, VMRecord]) -> None:
        """Atomically persist all records.

        Other top-level keys of the existing file are kept in place.

        Raises:
            StoreCorruptError: If the existing file cannot be parsed.
            StoreWriteError: On any I/O failure; the previous file is left intact.
        """
        document = self._read_document()
        document[RECORDS_KEY] = [records[name].to_dict() for name in sorted(records)]
        content = yaml.safe_dump(document, default_flow_style=False, sort_keys=False)

        tmp_name: str | None = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.tmp-", dir=str(self.path.parent))
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as e:
            raise StoreWriteError(str(self.path), str(e)) from e
        finally:
            if tmp_name is not None:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_name)

        logger.debug(f"Saved {len(records)} record(s) to {self.path}")

    def get(self, name: str) -> VMRecord:
        """Get one record.

        Raises:
            RecordNotFoundError: If no record has this name.
        """
        record = self.load().get(name)
        if record is None:
            raise RecordNotFoundError(name)
        return record

    def upsert(self, name: str, mutation: Mutation, *, create: bool = False) -> VMRecord:
        """Load, mutate and save one record under the store lock.

        Args:
            name: Record name.
            mutation: Receives the current record (None when creating) and
                returns the record to store.
            create: True for a new record, False to modify an existing one.

        Returns:
            The stored record.

        Raises:
            RecordNotFoundError: If ``create`` is False and the record is missing.
            DuplicateRecordError: If ``create`` is True and the record exists.
        """
        with self.locked():
            records = self.load()
            existing = records.get(name)

            if create and existing is not None:
                raise DuplicateRecordError(name)
            if not create and existing is None:
                raise RecordNotFoundError(name)

            record = mutation(existing)
            if record.name != name:
                raise ValueError(f"mutation renamed record '{name}' to '{record.name}'")

            records[name] = record
            self.save(records)
            return record

    def delete(self, name: str) -> VMRecord:
        """Remove one record under the store lock.

        Raises:
            RecordNotFoundError: If no record has this name.
        """
        with self.locked():
            records = self.load()
            record = records.pop(name, None)
            if record is None:
                raise RecordNotFoundError(name)
            self.save(records)
            return record
