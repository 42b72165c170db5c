"""
Inbound ingestion loop.

States:
  CATCH_UP  bulk-pull history page by page until a page reports zero events
  LIVE      long-poll indefinitely, retrying transport errors after a backoff

Events are appended to the sinks before the cursor is persisted, so a crash
between the two, or a failed cursor save, re-delivers a few events on
restart (at-least-once). A failed save is logged and ingestion continues.
"""

from __future__ import annotations

import threading
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

from services.transport.client import PullPage, TransportClient, TransportError
from services.transport.envelope import decode_envelopes
from shared.config.aliases import load_aliases
from shared.logging.logger import get_logger
from shared.storage.cursor_store import UNKNOWN_CURSOR, CursorStore
from shared.storage.event_log.sinks import EventSinks

log = get_logger("hub.ingest")

DEFAULT_BACKOFF_SECONDS = 0.25


class IngestState(str, Enum):
    CATCH_UP = "catch_up"
    LIVE = "live"


class CatchUpAborted(RuntimeError):
    """History replay hit a transport failure; the saved cursor is still valid."""


class IngestionLoop:
    def __init__(
        self,
        transport: TransportClient,
        sinks: EventSinks,
        cursor_store: CursorStore,
        *,
        aliases_path: Optional[Path | str] = None,
        pull_limit: int = 200,
        lp_timeout_sec: int = 25,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        self.transport = transport
        self.sinks = sinks
        self.cursor_store = cursor_store
        self.aliases_path = aliases_path
        self.pull_limit = pull_limit
        self.lp_timeout_sec = lp_timeout_sec
        self.backoff_seconds = backoff_seconds
        self.stop_event = stop_event or threading.Event()

        saved = cursor_store.load()
        if saved == UNKNOWN_CURSOR:
            self.state = IngestState.CATCH_UP
            self.cursor = 0
        else:
            self.state = IngestState.LIVE
            self.cursor = saved

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _route(self, envelopes: Iterable[dict]) -> int:
        aliases = load_aliases(self.aliases_path)
        events = decode_envelopes(envelopes, aliases)
        for event in events:
            self.sinks.record(event)
        return len(events)

    def _advance(self, page: PullPage) -> None:
        if page.next_since < self.cursor:
            log.warning(
                f"Transport returned next_since={page.next_since} behind cursor={self.cursor}; keeping cursor"
            )
        else:
            self.cursor = page.next_since
        try:
            self.cursor_store.save(self.cursor)
        except OSError as e:
            log.error(f"Failed to persist cursor={self.cursor}: {e}")

    # ------------------------------------------------------------------
    # CATCH_UP
    # ------------------------------------------------------------------

    def catch_up(self) -> int:
        """
        Replay all history from the current cursor.

        Returns the cursor reached. Raises CatchUpAborted on the first
        transport failure, leaving the last persisted cursor in place.
        """
        log.info(f"Catch-up starting from since={self.cursor} (limit={self.pull_limit})")
        pages = 0
        while not self.stop_event.is_set():
            try:
                page = self.transport.pull(self.cursor, self.pull_limit)
            except TransportError as e:
                raise CatchUpAborted(f"catch-up aborted at since={self.cursor}: {e}") from e

            pages += 1
            routed = self._route(page.envelopes)
            self._advance(page)
            log.debug(
                f"Catch-up page {pages}: count={page.count} events={routed} next_since={self.cursor}"
            )

            if page.count == 0:
                self.state = IngestState.LIVE
                log.info(f"Catch-up complete after {pages} page(s); cursor={self.cursor}")
                break
        return self.cursor

    # ------------------------------------------------------------------
    # LIVE
    # ------------------------------------------------------------------

    def poll_once(self) -> bool:
        """One long-poll round. Returns False when the round failed."""
        try:
            page = self.transport.longpoll(self.cursor, self.lp_timeout_sec, self.pull_limit)
        except TransportError as e:
            log.warning(f"Long-poll error (since={self.cursor}): {e}")
            self.stop_event.wait(self.backoff_seconds)
            return False

        routed = self._route(page.envelopes)
        self._advance(page)
        if routed:
            log.debug(f"Long-poll routed {routed} event(s); cursor={self.cursor}")
        return True

    def run(self) -> None:
        if self.state == IngestState.CATCH_UP:
            self.catch_up()

        log.info(f"Live long-poll started (since={self.cursor}, timeout={self.lp_timeout_sec}s)")
        while not self.stop_event.is_set():
            self.poll_once()
        log.info(f"Ingestion stopped at since={self.cursor}")


__all__ = ["CatchUpAborted", "IngestState", "IngestionLoop"]
