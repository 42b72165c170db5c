"""
Local named pipe (FIFO) carrying newline-delimited send requests.

The hub holds its own write handle on the FIFO for its whole lifetime, so
the read side never sees end-of-stream when an external writer closes.
Reads go through ``select`` with a short timeout so the stop flag is
checked regularly.
"""

from __future__ import annotations

import os
import select
import stat
import threading
from pathlib import Path
from typing import Iterator, Optional

from shared.logging.logger import get_logger

log = get_logger("hub.pipe")

DEFAULT_POLL_SECONDS = 0.25
READ_CHUNK = 64 * 1024


class PipeError(RuntimeError):
    """The outbound FIFO could not be created or opened."""


class OutboundPipe:
    def __init__(self, path: Path | str, *, poll_interval: float = DEFAULT_POLL_SECONDS) -> None:
        self.path = Path(path)
        self.poll_interval = poll_interval
        self._read_fd: Optional[int] = None
        self._keepalive_fd: Optional[int] = None

    def open(self) -> "OutboundPipe":
        try:
            if not self.path.exists():
                self.path.parent.mkdir(parents=True, exist_ok=True)
                os.mkfifo(self.path, 0o600)
                log.info(f"Created FIFO {self.path}")
            elif not stat.S_ISFIFO(self.path.stat().st_mode):
                raise PipeError(f"{self.path} exists and is not a FIFO")

            # non-blocking open so we never wait for a writer to appear
            self._read_fd = os.open(self.path, os.O_RDONLY | os.O_NONBLOCK)
            self._keepalive_fd = os.open(self.path, os.O_WRONLY)
        except OSError as e:
            self.close()
            raise PipeError(f"cannot open FIFO {self.path}: {e}") from e
        return self

    def lines(self, stop_event: threading.Event) -> Iterator[str]:
        """Yield complete lines until ``stop_event`` is set."""
        if self._read_fd is None:
            raise PipeError("pipe is not open")

        buffer = b""
        while not stop_event.is_set():
            ready, _, _ = select.select([self._read_fd], [], [], self.poll_interval)
            if not ready:
                continue
            try:
                chunk = os.read(self._read_fd, READ_CHUNK)
            except BlockingIOError:
                continue
            if not chunk:
                stop_event.wait(self.poll_interval)
                continue

            buffer += chunk
            while b"\n" in buffer:
                raw, buffer = buffer.split(b"\n", 1)
                yield raw.decode("utf-8", errors="replace")

    def close(self) -> None:
        for attr in ("_keepalive_fd", "_read_fd"):
            fd = getattr(self, attr)
            if fd is not None:
                try:
                    os.close(fd)
                except OSError:
                    pass
                setattr(self, attr, None)

    def __enter__(self) -> "OutboundPipe":
        return self.open()

    def __exit__(self, *exc) -> None:
        self.close()


__all__ = ["OutboundPipe", "PipeError"]
