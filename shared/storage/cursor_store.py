"""
Durable transport cursor.

The cursor file is replaced atomically: the new state is written to a temp
file in the same directory, fsynced, then renamed over the canonical path.
A crash mid-write leaves the previous valid state in place.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path

from shared.chat.events import now_ms
from shared.logging.logger import get_logger

log = get_logger("shared.cursor_store")

UNKNOWN_CURSOR = -1


class CursorStore:
    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # Atomic writer
    # ------------------------------------------------------------------

    def _write_atomic(self, payload: dict) -> None:
        serialized = json.dumps(payload)
        self._path.parent.mkdir(parents=True, exist_ok=True)

        with tempfile.NamedTemporaryFile(
            "w",
            dir=self._path.parent,
            prefix=f".{self._path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        ) as tmp:
            tmp.write(serialized)
            tmp.flush()
            os.fsync(tmp.fileno())
            temp_path = Path(tmp.name)

        try:
            temp_path.replace(self._path)
        except OSError:
            temp_path.unlink(missing_ok=True)
            raise

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def save(self, since: int) -> None:
        self._write_atomic({"since": int(since), "updated": now_ms()})

    def load(self) -> int:
        """Return the saved cursor, or UNKNOWN_CURSOR when absent or unreadable."""
        if not self._path.exists():
            return UNKNOWN_CURSOR
        try:
            state = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            log.warning(f"Failed to load cursor state {self._path}: {e}")
            return UNKNOWN_CURSOR
        if not isinstance(state, dict):
            return UNKNOWN_CURSOR
        since = state.get("since", UNKNOWN_CURSOR)
        if isinstance(since, bool) or not isinstance(since, int):
            return UNKNOWN_CURSOR
        return since


__all__ = ["CursorStore", "UNKNOWN_CURSOR"]
