"""Canonical event record schema for the hub's JSONL logs."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

KIND_RECEIVED = "received"
KIND_SENT = "sent"
KIND_STATUS = "status"

SUPPORTED_KINDS = {
    KIND_RECEIVED,
    KIND_SENT,
    KIND_STATUS,
}

STATUS_FAILED = "failed"


def now_ms() -> int:
    return int(time.time() * 1000)


def normalize_kind(value: str) -> str:
    kind = (value or "").lower().strip()
    if kind not in SUPPORTED_KINDS:
        raise ValueError(f"Unsupported event kind: {value}")
    return kind


@dataclass(frozen=True)
class Event:
    """
    One immutable log record.

    ``text`` is set for received/sent records, ``status`` for status
    records. Absent fields are omitted from the serialized line.
    """

    ts: int
    kind: str
    peer: str
    text: Optional[str] = None
    status: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "ts": self.ts,
            "kind": self.kind,
            "peer": self.peer,
        }
        if self.text is not None:
            payload["text"] = self.text
        if self.status is not None:
            payload["status"] = self.status
        return payload

    def to_line(self) -> str:
        """Serialize to a single JSON line (no trailing newline)."""
        return json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":"))


def received_event(peer: str, text: str, ts: Optional[int] = None) -> Event:
    return Event(ts=now_ms() if ts is None else ts, kind=KIND_RECEIVED, peer=peer, text=text)


def sent_event(peer: str, text: str, ts: Optional[int] = None) -> Event:
    return Event(ts=now_ms() if ts is None else ts, kind=KIND_SENT, peer=peer, text=text)


def status_event(peer: str, status: str, ts: Optional[int] = None) -> Event:
    return Event(ts=now_ms() if ts is None else ts, kind=KIND_STATUS, peer=peer, status=status)


def parse_event_line(line: str) -> Optional[Dict[str, Any]]:
    """
    Decode one log line into its JSON object.

    Returns None for blank lines, invalid JSON and non-object payloads so
    callers can skip them without special casing.
    """
    if not line or not line.strip():
        return None
    try:
        loaded = json.loads(line)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if not isinstance(loaded, dict):
        return None
    return loaded


__all__ = [
    "Event",
    "KIND_RECEIVED",
    "KIND_SENT",
    "KIND_STATUS",
    "STATUS_FAILED",
    "SUPPORTED_KINDS",
    "normalize_kind",
    "now_ms",
    "parse_event_line",
    "received_event",
    "sent_event",
    "status_event",
]
