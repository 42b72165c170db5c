"""Outbound dispatcher: FIFO send requests -> transport send -> event logs."""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from services.hub.pipe import OutboundPipe
from services.transport.client import TransportClient
from shared.chat.events import STATUS_FAILED, Event, now_ms, sent_event, status_event
from shared.config.aliases import load_aliases
from shared.logging.logger import get_logger
from shared.storage.event_log.sinks import EventSinks
from shared.storage.meta_log import MetaLog

log = get_logger("hub.dispatcher")


@dataclass(frozen=True)
class SendRequest:
    to: str
    text: str


def parse_send_request(line: str) -> Optional[SendRequest]:
    """
    Parse ``{"to"|"alias": str, "text": str}``.

    Returns None for blank lines, invalid JSON, or requests missing a
    destination or text.
    """
    if not line.strip():
        return None
    try:
        payload = json.loads(line)
    except json.JSONDecodeError:
        log.warning(f"Bad send JSON: {line!r}")
        return None
    if not isinstance(payload, dict):
        log.warning(f"Send request is not an object: {line!r}")
        return None

    to = payload.get("to") or payload.get("alias") or ""
    text = payload.get("text") or ""
    if not isinstance(to, str) or not isinstance(text, str) or not to or not text:
        log.warning("Send request needs {to|alias, text}")
        return None
    return SendRequest(to=to, text=text)


class OutboundDispatcher:
    def __init__(
        self,
        transport: TransportClient,
        sinks: EventSinks,
        *,
        aliases_path: Optional[Path | str] = None,
        meta_log: Optional[MetaLog] = None,
    ) -> None:
        self.transport = transport
        self.sinks = sinks
        self.aliases_path = aliases_path
        self.meta_log = meta_log

    def dispatch(self, request: SendRequest) -> Event:
        aliases = load_aliases(self.aliases_path)
        destination = aliases.resolve_destination(request.to)

        result = self.transport.send(destination, request.text)
        ts = now_ms()
        peer = aliases.peer_key(destination)

        if self.meta_log is not None:
            try:
                self.meta_log.record_send(
                    ts=ts,
                    http_status=result.status_code,
                    to=destination,
                    text=request.text,
                    phone_number_id=self.transport.phone_id,
                    meta=result.provider_ids,
                    error=None if result.ok else result.error,
                )
            except OSError as e:
                log.warning(f"Meta log append failed: {e}")

        if result.ok:
            event = sent_event(peer, request.text, ts=ts)
            log.info(f"Sent to {peer} (http {result.status_code})")
        else:
            event = status_event(peer, STATUS_FAILED, ts=ts)
            log.warning(f"Send to {peer} failed (http {result.status_code})")

        self.sinks.record(event)
        return event

    def handle_line(self, line: str) -> Optional[Event]:
        request = parse_send_request(line)
        if request is None:
            return None
        return self.dispatch(request)

    def run(self, pipe: OutboundPipe, stop_event: threading.Event) -> None:
        log.info(f"Dispatcher reading {pipe.path}")
        for line in pipe.lines(stop_event):
            try:
                self.handle_line(line)
            except Exception as e:
                log.error(f"Dispatch failed for {line!r}: {e}")
        log.info("Dispatcher stopped")

    def start(self, pipe: OutboundPipe, stop_event: threading.Event) -> threading.Thread:
        thread = threading.Thread(
            target=self.run,
            args=(pipe, stop_event),
            name="chatbridge-dispatcher",
            daemon=True,
        )
        thread.start()
        return thread


__all__ = ["OutboundDispatcher", "SendRequest", "parse_send_request"]
