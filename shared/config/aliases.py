"""Alias table: bidirectional name <-> transport identifier mapping.

The table is live external state. Every call re-reads the file so edits
take effect without restarting the hub or a subscriber.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from shared.logging.logger import get_logger

log = get_logger("shared.config.aliases")


@dataclass
class AliasTable:
    alias_to_number: Dict[str, str] = field(default_factory=dict)
    number_to_alias: Dict[str, str] = field(default_factory=dict)

    def add(self, alias: str, number: str) -> None:
        self.alias_to_number[alias] = number
        self.number_to_alias[number] = alias

    def peer_key(self, number: str) -> str:
        """Display key for a raw identifier: its alias when known."""
        return self.number_to_alias.get(number, number)

    def resolve_destination(self, target: str) -> str:
        """Map an alias to its identifier; anything else is used verbatim."""
        return self.alias_to_number.get(target, target)

    def __len__(self) -> int:
        return len(self.alias_to_number)


def _entries(payload: Any) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        return {}
    nested = payload.get("aliases")
    if isinstance(nested, dict):
        return nested
    return payload


def load_aliases(path: Optional[Path | str]) -> AliasTable:
    """
    Load the alias file fresh from disk.

    Accepted shapes:
        {"aliases": {"max": "447700900000"}}
        {"max": "447700900000"}

    Missing or unreadable files yield an empty table; non-string values
    are ignored.
    """
    table = AliasTable()
    if not path:
        return table

    alias_path = Path(path)
    if not alias_path.exists():
        return table

    try:
        payload = json.loads(alias_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        log.warning(f"Failed to load aliases from {alias_path}: {e}")
        return table

    for alias, number in _entries(payload).items():
        if isinstance(number, str):
            table.add(alias, number)
    return table


def peer_key(path: Optional[Path | str], number: str) -> str:
    return load_aliases(path).peer_key(number)


__all__ = ["AliasTable", "load_aliases", "peer_key"]
