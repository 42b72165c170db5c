"""
Rotation-aware tailing of a single JSONL event log.

The session tracks a tail cursor of (file identity, byte offset) and polls
the target cooperatively:

    1. bounded modes stop at their deadline
    2. a missing target is waited for
    3. identity change or size < offset resets the offset to 0
       (covers rotation and truncation alike)
    4. new bytes are drained line by line; a partial trailing line is left
       for the next poll
    5. otherwise sleep a short interval

Termination modes:
    follow  run until cancelled; always success
    once    first match -> success, deadline with no match -> timeout
    window  fixed duration collecting every match; always success
"""

from __future__ import annotations

import hashlib
import os
import sys
import threading
import time
from dataclasses import dataclass
from enum import Enum, IntEnum
from pathlib import Path
from typing import Callable, List, Optional, TextIO, Tuple

from services.tail.filters import EventFilter
from shared.logging.logger import get_logger

log = get_logger("tail.engine", runtime="sub")

DEFAULT_POLL_SECONDS = 0.2
HEAD_READ_BYTES = 4096

FileIdentity = Tuple[object, ...]


class TailMode(str, Enum):
    FOLLOW = "follow"
    ONCE = "once"
    WINDOW = "window"


class TailOutcome(IntEnum):
    SUCCESS = 0
    TIMEOUT = 1
    USAGE = 2


# ----------------------------------------------------------------------
# File identity
# ----------------------------------------------------------------------

def _head_signature(path: Path) -> FileIdentity:
    """
    Content fallback for filesystems without stable inode numbers.

    Uses the first complete line; an empty or still-partial first line
    yields an empty signature.
    """
    try:
        with path.open("rb") as handle:
            head = handle.read(HEAD_READ_BYTES)
    except OSError:
        return ("head", "")
    newline = head.find(b"\n")
    first = head[: newline + 1] if newline >= 0 else b""
    return ("head", hashlib.sha1(first).hexdigest() if first else "")


def file_identity(path: Path, st: Optional[os.stat_result] = None) -> Optional[FileIdentity]:
    if st is None:
        try:
            st = path.stat()
        except OSError:
            return None
    if st.st_ino:
        return ("inode", st.st_dev, st.st_ino)
    return _head_signature(path)


@dataclass
class TailCursor:
    identity: Optional[FileIdentity] = None
    offset: int = 0


# ----------------------------------------------------------------------
# Session
# ----------------------------------------------------------------------

class TailSession:
    def __init__(
        self,
        target: Path | str,
        event_filter: EventFilter,
        mode: TailMode,
        *,
        duration: Optional[float] = None,
        json_array: bool = False,
        out: Optional[TextIO] = None,
        poll_interval: float = DEFAULT_POLL_SECONDS,
        stop_event: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if mode in (TailMode.ONCE, TailMode.WINDOW) and duration is None:
            raise ValueError(f"{mode.value} mode requires a duration")

        self.target = Path(target)
        self.filter = event_filter
        self.mode = mode
        self.duration = duration
        self.json_array = json_array
        self.out = out if out is not None else sys.stdout
        self.poll_interval = poll_interval
        self.stop_event = stop_event or threading.Event()
        self.clock = clock

        self.cursor = TailCursor()
        self.match_count = 0
        self.buffered: List[str] = []
        self._deadline: Optional[float] = None

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def _emit(self, line: str) -> None:
        self.match_count += 1
        if self.json_array:
            self.buffered.append(line)
            return
        self.out.write(line + "\n")
        self.out.flush()

    def _flush_array(self) -> None:
        if not self.json_array:
            return
        self.out.write("[" + ",".join(self.buffered) + "]\n")
        self.out.flush()

    def _finish(self, outcome: TailOutcome) -> TailOutcome:
        self._flush_array()
        log.debug(f"Tail of {self.target} finished: {outcome.name} ({self.match_count} match(es))")
        return outcome

    # ------------------------------------------------------------------
    # Polling helpers
    # ------------------------------------------------------------------

    def _expired(self) -> bool:
        return self._deadline is not None and self.clock() >= self._deadline

    def _sleep(self) -> None:
        self.stop_event.wait(self.poll_interval)

    def _stop_outcome(self) -> TailOutcome:
        if self.mode == TailMode.ONCE and not self.match_count:
            return TailOutcome.TIMEOUT
        return TailOutcome.SUCCESS

    def _drain(self) -> Tuple[int, bool]:
        """
        Read every complete line from the current offset.

        Returns (lines consumed, stop-now). In ``once`` mode reading stops
        right after the first match.
        """
        consumed = 0
        try:
            handle = self.target.open("rb")
        except OSError:
            return 0, False

        with handle:
            st = os.fstat(handle.fileno())
            if st.st_ino:
                identity = ("inode", st.st_dev, st.st_ino)
                if identity != self.cursor.identity:
                    self.cursor = TailCursor(identity=identity, offset=0)
            if st.st_size < self.cursor.offset:
                self.cursor.offset = 0

            handle.seek(self.cursor.offset)
            while True:
                raw = handle.readline()
                if not raw or not raw.endswith(b"\n"):
                    break
                self.cursor.offset += len(raw)
                consumed += 1

                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                if self.filter.matches(line):
                    self._emit(line)
                    if self.mode == TailMode.ONCE:
                        return consumed, True
        return consumed, False

    def _wait_for_target(self) -> bool:
        while not self.target.exists():
            if self.stop_event.is_set() or self._expired():
                return False
            self._sleep()
        return True

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def _start_position(self, created: bool) -> bool:
        """
        Position the cursor; returns True if the start-up scan already matched in once mode.

        A target that only appeared after the session started is read from
        byte 0, as is any target when a since-timestamp filter is set.
        """
        self.cursor = TailCursor(identity=file_identity(self.target), offset=0)

        if self.filter.since_ts is None and not created:
            try:
                self.cursor.offset = self.target.stat().st_size
            except OSError:
                self.cursor.offset = 0
            return False

        _, done = self._drain()
        return done

    def run(self) -> TailOutcome:
        if self.duration is not None and self.mode != TailMode.FOLLOW:
            self._deadline = self.clock() + float(self.duration)

        log.debug(f"Tailing {self.target} mode={self.mode.value}")

        created = not self.target.exists()
        if not self._wait_for_target():
            return self._finish(self._stop_outcome())

        if self._start_position(created):
            return self._finish(TailOutcome.SUCCESS)

        while True:
            if self.stop_event.is_set():
                return self._finish(self._stop_outcome())

            if self._expired():
                return self._finish(self._stop_outcome())

            if not self.target.exists():
                self._sleep()
                continue

            identity = file_identity(self.target)
            try:
                size = self.target.stat().st_size
            except OSError:
                self._sleep()
                continue

            if identity != self.cursor.identity or size < self.cursor.offset:
                self.cursor = TailCursor(identity=identity, offset=0)

            if size > self.cursor.offset:
                consumed, done = self._drain()
                if done:
                    return self._finish(TailOutcome.SUCCESS)
                if consumed:
                    continue

            self._sleep()


__all__ = [
    "TailCursor",
    "TailMode",
    "TailOutcome",
    "TailSession",
    "file_identity",
]
