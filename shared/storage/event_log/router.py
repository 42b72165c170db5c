"""Per-peer log routing: one rotating writer per peer key, created lazily."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Dict, List, Optional

from shared.chat.events import Event
from shared.config.hub import DEFAULT_ARCHIVE_TIMEFMT, safe_key
from shared.storage.event_log.writer import RotatingLogWriter


class PerPeerLogRouter:
    """
    Owns ``dir / (prefix + key + suffix)`` writers for the life of the process.

    The router lock only guards lookup and creation; appends serialize on
    each writer's own lock so peers never block one another.
    """

    def __init__(
        self,
        directory: Path | str,
        *,
        prefix: str = "events.",
        suffix: str = ".jsonl",
        threshold: int = 0,
        timefmt: str = DEFAULT_ARCHIVE_TIMEFMT,
    ) -> None:
        self._dir = Path(directory)
        self._prefix = prefix
        self._suffix = suffix
        self._threshold = threshold
        self._timefmt = timefmt
        self._lock = threading.Lock()
        self._writers: Dict[str, RotatingLogWriter] = {}
        self._dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        return self._dir / f"{self._prefix}{safe_key(key)}{self._suffix}"

    def writer_for(self, key: str) -> RotatingLogWriter:
        with self._lock:
            writer = self._writers.get(key)
            if writer is None:
                writer = RotatingLogWriter(
                    self.path_for(key),
                    threshold=self._threshold,
                    timefmt=self._timefmt,
                )
                self._writers[key] = writer
            return writer

    def append(self, key: str, event: Event) -> Optional[Path]:
        return self.writer_for(key).append(event)

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._writers)

    def close(self) -> None:
        with self._lock:
            writers = list(self._writers.values())
        for writer in writers:
            writer.close()


__all__ = ["PerPeerLogRouter"]
