"""
Envelope decoding.

Transport pages carry webhook envelopes shaped like:

    {"entry": [{"changes": [{"value": {"messages": [...], "statuses": [...]}}]}]}

Inbound text messages become ``received`` events, delivery updates become
``status`` events. Anything malformed is skipped without failing the page.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Iterator, List, Optional

from shared.chat.events import Event, now_ms, received_event, status_event
from shared.config.aliases import AliasTable


def _dicts(value: Any) -> Iterator[Dict[str, Any]]:
    if not isinstance(value, list):
        return
    for item in value:
        if isinstance(item, dict):
            yield item


def _change_values(envelope: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
    for entry in _dicts(envelope.get("entry")):
        for change in _dicts(entry.get("changes")):
            value = change.get("value")
            if isinstance(value, dict):
                yield value


def _text_body(message: Dict[str, Any]) -> str:
    text = message.get("text")
    if isinstance(text, dict):
        body = text.get("body")
        return body if isinstance(body, str) else ""
    return ""


def decode_envelope(
    envelope: Dict[str, Any],
    aliases: AliasTable,
    *,
    ts: Optional[int] = None,
) -> List[Event]:
    events: List[Event] = []
    for value in _change_values(envelope):
        for message in _dicts(value.get("messages")):
            if message.get("type") != "text":
                continue
            sender = str(message.get("from", ""))
            events.append(
                received_event(
                    aliases.peer_key(sender),
                    _text_body(message),
                    ts=now_ms() if ts is None else ts,
                )
            )

        for status in _dicts(value.get("statuses")):
            recipient = str(status.get("recipient_id", ""))
            events.append(
                status_event(
                    aliases.peer_key(recipient),
                    str(status.get("status", "")),
                    ts=now_ms() if ts is None else ts,
                )
            )
    return events


def decode_envelopes(
    envelopes: Iterable[Dict[str, Any]],
    aliases: AliasTable,
    *,
    ts: Optional[int] = None,
) -> List[Event]:
    events: List[Event] = []
    for envelope in envelopes:
        if isinstance(envelope, dict):
            events.extend(decode_envelope(envelope, aliases, ts=ts))
    return events


__all__ = ["decode_envelope", "decode_envelopes"]
