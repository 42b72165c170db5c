"""
Rotating append-only JSONL writer.

Every append is flushed and fsynced before rotation is considered, so the
record that pushes a file past its threshold always lands in the archive.
Rotation renames the live file to ``<path>.<timestamp>`` and reopens an
empty file at the original path. A threshold of 0 disables rotation.
"""

from __future__ import annotations

import os
import threading
from datetime import datetime
from pathlib import Path
from typing import IO, Optional

from shared.chat.events import Event
from shared.config.hub import DEFAULT_ARCHIVE_TIMEFMT
from shared.logging.logger import get_logger

log = get_logger("shared.event_log.writer")


class LogOpenError(RuntimeError):
    """Raised when a log file cannot be opened for appending."""


class RotatingLogWriter:
    def __init__(
        self,
        path: Path | str,
        *,
        threshold: int = 0,
        timefmt: str = DEFAULT_ARCHIVE_TIMEFMT,
    ) -> None:
        self._path = Path(path)
        self._threshold = max(0, int(threshold or 0))
        self._timefmt = timefmt or DEFAULT_ARCHIVE_TIMEFMT
        self._lock = threading.Lock()
        self._handle: Optional[IO[str]] = None

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._handle = self._open()
        except OSError as e:
            raise LogOpenError(f"cannot open log {self._path}: {e}") from e

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def path(self) -> Path:
        return self._path

    @property
    def threshold(self) -> int:
        return self._threshold

    # ------------------------------------------------------------------
    # File handling (callers hold the lock)
    # ------------------------------------------------------------------

    def _open(self) -> IO[str]:
        return self._path.open("a", encoding="utf-8")

    def _size(self) -> int:
        try:
            return self._path.stat().st_size
        except OSError:
            return 0

    def _archive_path(self) -> Path:
        stamp = datetime.now().strftime(self._timefmt)
        candidate = self._path.with_name(f"{self._path.name}.{stamp}")
        counter = 1
        while candidate.exists():
            candidate = self._path.with_name(f"{self._path.name}.{stamp}.{counter}")
            counter += 1
        return candidate

    def _rotate_if_needed(self) -> Optional[Path]:
        if self._threshold == 0:
            return None
        if self._size() < self._threshold:
            return None

        archive = self._archive_path()
        if self._handle is not None:
            self._handle.close()
            self._handle = None

        rotated: Optional[Path] = None
        try:
            self._path.rename(archive)
            rotated = archive
            log.info(f"Rotated {self._path} -> {archive.name}")
        except OSError as e:
            log.warning(f"Rotation of {self._path} failed; continuing on current file: {e}")

        self._handle = self._open()
        return rotated

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def append_line(self, line: str) -> Optional[Path]:
        """
        Append one pre-serialized line.

        Returns the archive path when this append triggered a rotation.
        """
        with self._lock:
            if self._handle is None:
                self._handle = self._open()
            self._handle.write(line.rstrip("\n") + "\n")
            self._handle.flush()
            os.fsync(self._handle.fileno())
            return self._rotate_if_needed()

    def append(self, event: Event) -> Optional[Path]:
        return self.append_line(event.to_line())

    def close(self) -> None:
        with self._lock:
            if self._handle is not None:
                self._handle.close()
                self._handle = None


__all__ = ["LogOpenError", "RotatingLogWriter"]
