"""Append-only JSON-lines journal used as the store's write-ahead record."""

from __future__ import annotations

import fcntl
import json
import os
import threading
from collections.abc import Iterator
from pathlib import Path
from typing import Any, TextIO

import structlog

from src.core.exceptions import StorageFailureError

logger = structlog.stdlib.get_logger()


class Journal:
    """Appends one JSON object per line and replays them on startup.

    Each entry looks like::

        {"op": "put", "kind": "queue_item", "records": [{...}, ...]}
        {"op": "delete", "kind": "metric", "ids": ["...", ...]}

    A batch of records is written as a single line so it is either fully
    present or (after a torn write) dropped on replay.
    """

    def __init__(self, path: str | Path, fsync: bool = False) -> None:
        self._path = Path(path)
        self._fsync = fsync
        self._lock = threading.Lock()
        self._fh: TextIO | None = None

    @property
    def path(self) -> Path:
        return self._path

    def open(self) -> None:
        """Open the journal for appending and take its exclusive lock.

        Only one writer may own a journal.  A second open, from this or any
        other process, raises StorageFailureError until the owner closes it.
        """
        if self._fh is not None:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fh = open(self._path, "a", encoding="utf-8")  # noqa: SIM115
        except OSError as exc:
            raise StorageFailureError(f"Cannot open journal {self._path}: {exc}") from exc
        try:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as exc:
            fh.close()
            raise StorageFailureError(
                f"Journal {self._path} is locked by another writer"
            ) from exc
        self._fh = fh
        logger.debug("journal_opened", path=str(self._path))

    def close(self) -> None:
        with self._lock:
            if self._fh is not None:
                # Closing the descriptor releases the flock.
                self._fh.close()
                self._fh = None

    def append(self, entry: dict[str, Any]) -> None:
        """Durably append *entry*. Raises StorageFailureError on I/O errors."""
        line = json.dumps(entry, separators=(",", ":"), default=str)
        with self._lock:
            if self._fh is None:
                self.open()
            assert self._fh is not None
            try:
                self._fh.write(line + "\n")
                self._fh.flush()
                if self._fsync:
                    os.fsync(self._fh.fileno())
            except OSError as exc:
                raise StorageFailureError(
                    f"Journal write failed for {self._path}: {exc}"
                ) from exc

    def replay(self) -> Iterator[dict[str, Any]]:
        """Yield journal entries in write order.

        A malformed final line (interrupted write) ends the replay with a
        warning; malformed lines elsewhere are reported as storage failures.
        When this journal is open for appending the torn line is also cut
        off, so the next append starts on a clean line.
        """
        if not self._path.exists():
            return
        try:
            with open(self._path, "rb") as f:
                lines = f.readlines()
        except OSError as exc:
            raise StorageFailureError(f"Cannot read journal {self._path}: {exc}") from exc

        offset = 0
        for lineno, raw in enumerate(lines, start=1):
            start, offset = offset, offset + len(raw)
            line = raw.strip()
            if not line:
                continue
            try:
                entry = json.loads(line)
            except (json.JSONDecodeError, UnicodeDecodeError) as exc:
                if lineno == len(lines):
                    logger.warning(
                        "journal_torn_tail",
                        path=str(self._path),
                        line=lineno,
                        truncated=self._fh is not None,
                    )
                    if self._fh is not None:
                        self._truncate(start)
                    return
                raise StorageFailureError(
                    f"Corrupt journal {self._path} at line {lineno}"
                ) from exc
            yield entry

    def _truncate(self, size: int) -> None:
        with self._lock:
            try:
                os.truncate(self._path, size)
            except OSError as exc:
                raise StorageFailureError(
                    f"Cannot truncate journal {self._path}: {exc}"
                ) from exc
