"""Append-only JSONL event logs (global + per-peer) with size-based rotation."""

from shared.storage.event_log.router import PerPeerLogRouter
from shared.storage.event_log.sinks import EventSinks
from shared.storage.event_log.writer import LogOpenError, RotatingLogWriter

__all__ = [
    "EventSinks",
    "LogOpenError",
    "PerPeerLogRouter",
    "RotatingLogWriter",
]
