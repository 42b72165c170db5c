"""Send metadata log: one JSON line per outbound send attempt."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

from shared.storage.event_log.writer import RotatingLogWriter


class MetaLog:
    """Fixed-path (non-rotating) log of send operations."""

    def __init__(self, path: Path | str) -> None:
        self._writer = RotatingLogWriter(path, threshold=0)

    @property
    def path(self) -> Path:
        return self._writer.path

    def record_send(
        self,
        *,
        ts: int,
        http_status: int,
        to: str,
        text: str,
        phone_number_id: str,
        meta: Optional[Dict[str, Any]] = None,
        error: Optional[Dict[str, Any]] = None,
    ) -> None:
        line: Dict[str, Any] = {
            "ts": ts,
            "op": "send",
            "http": http_status,
            "to": to,
            "text": text,
            "phone_number_id": phone_number_id,
        }
        if error is not None:
            line["error"] = error
        else:
            line["meta"] = meta or {}
        self._writer.append_line(json.dumps(line, ensure_ascii=False, separators=(",", ":")))

    def close(self) -> None:
        self._writer.close()


__all__ = ["MetaLog"]
