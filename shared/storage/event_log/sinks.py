"""Global + per-peer fan-out shared by ingestion and dispatch."""

from __future__ import annotations

from shared.chat.events import Event
from shared.config.hub import HubConfig
from shared.logging.logger import get_logger
from shared.storage.event_log.router import PerPeerLogRouter
from shared.storage.event_log.writer import LogOpenError, RotatingLogWriter

log = get_logger("shared.event_log.sinks")


class EventSinks:
    """
    Append each record to the global log, then to its peer's log.

    The two appends take independent locks. A failure on one file, including
    a peer log that cannot be opened, is logged and does not stop the other.
    """

    def __init__(self, global_writer: RotatingLogWriter, peers: PerPeerLogRouter) -> None:
        self.global_writer = global_writer
        self.peers = peers

    @classmethod
    def from_config(cls, cfg: HubConfig) -> "EventSinks":
        """Open the global log eagerly; raises LogOpenError if it cannot be opened."""
        global_writer = RotatingLogWriter(
            cfg.global_log_path,
            threshold=cfg.rotate_global_bytes,
            timefmt=cfg.archive_timefmt,
        )
        peers = PerPeerLogRouter(
            cfg.per_dir,
            prefix=cfg.per_prefix,
            suffix=cfg.per_suffix,
            threshold=cfg.rotate_peer_bytes,
            timefmt=cfg.archive_timefmt,
        )
        return cls(global_writer, peers)

    def record(self, event: Event) -> bool:
        ok = True
        try:
            self.global_writer.append(event)
        except (OSError, LogOpenError) as e:
            ok = False
            log.error(f"Global log append failed ({event.kind} peer={event.peer}): {e}")
        try:
            self.peers.append(event.peer, event)
        except (OSError, LogOpenError) as e:
            ok = False
            log.error(f"Peer log append failed ({event.kind} peer={event.peer}): {e}")
        return ok

    def close(self) -> None:
        self.global_writer.close()
        self.peers.close()


__all__ = ["EventSinks"]
