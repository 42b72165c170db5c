"""Tail filter predicate over JSONL event lines."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from shared.chat.events import SUPPORTED_KINDS, parse_event_line

CASE_INSENSITIVE_PREFIX = "(?i)"


class FilterError(ValueError):
    """Invalid filter input (unknown kind, bad regex)."""


@dataclass(frozen=True)
class EventFilter:
    """
    A record matches iff every configured criterion holds:
      kind      equals the record's kind
      since_ts  is <= the record's ts (missing ts counts as 0)
      pattern   is found anywhere in the record's text
    """

    kind: Optional[str] = None
    since_ts: Optional[int] = None
    pattern: Optional[re.Pattern] = None

    @classmethod
    def build(
        cls,
        *,
        kind: Optional[str] = None,
        since_ts: Optional[int] = None,
        grep: Optional[str] = None,
        ignore_case: bool = False,
    ) -> "EventFilter":
        if kind is not None and kind not in SUPPORTED_KINDS:
            raise FilterError(f"invalid kind {kind!r} (use {'|'.join(sorted(SUPPORTED_KINDS))})")

        pattern = None
        if grep is not None:
            flags = 0
            if ignore_case:
                flags |= re.IGNORECASE
            if grep.startswith(CASE_INSENSITIVE_PREFIX):
                flags |= re.IGNORECASE
                grep = grep[len(CASE_INSENSITIVE_PREFIX):]
            try:
                pattern = re.compile(grep, flags)
            except re.error as e:
                raise FilterError(f"bad regex: {e}") from e

        return cls(kind=kind, since_ts=since_ts, pattern=pattern)

    def matches_record(self, record: Dict[str, Any]) -> bool:
        if self.kind is not None and record.get("kind") != self.kind:
            return False

        if self.since_ts is not None:
            ts = record.get("ts", 0)
            if isinstance(ts, bool) or not isinstance(ts, (int, float)):
                return False
            if ts < self.since_ts:
                return False

        if self.pattern is not None:
            text = record.get("text", "")
            if not isinstance(text, str):
                return False
            if not self.pattern.search(text):
                return False

        return True

    def matches(self, line: str) -> bool:
        record = parse_event_line(line)
        if record is None:
            return False
        return self.matches_record(record)


__all__ = ["EventFilter", "FilterError"]
