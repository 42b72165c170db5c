"""Shared test fixtures for ChatBridge."""

from __future__ import annotations

import os

os.environ.setdefault("CHATBRIDGE_LOG_FILE", "0")

import json  # noqa: E402
from pathlib import Path  # noqa: E402
from typing import Any, Callable, Dict, List  # noqa: E402

import pytest  # noqa: E402

from shared.chat.events import Event  # noqa: E402
from shared.storage.event_log import EventSinks, PerPeerLogRouter, RotatingLogWriter  # noqa: E402


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep tests away from the developer's real config and environment."""
    for key in list(os.environ):
        if key.startswith("CHATBRIDGE_") and key not in {"CHATBRIDGE_LOG_FILE"}:
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))


@pytest.fixture
def sinks(tmp_path: Path) -> EventSinks:
    """Global log + per-peer router under a temp data dir, rotation disabled."""
    global_writer = RotatingLogWriter(tmp_path / "data" / "events.jsonl")
    peers = PerPeerLogRouter(tmp_path / "data")
    built = EventSinks(global_writer, peers)
    yield built
    built.close()


@pytest.fixture
def aliases_file(tmp_path: Path) -> Path:
    path = tmp_path / "aliases.json"
    path.write_text(json.dumps({"aliases": {"max": "447700900001"}}), encoding="utf-8")
    return path


@pytest.fixture
def read_lines() -> Callable[[Path], List[Dict[str, Any]]]:
    def _read(path: Path) -> List[Dict[str, Any]]:
        if not path.exists():
            return []
        return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]

    return _read


def write_events(path: Path, events: List[Event]) -> None:
    """Append serialized events to a file without going through a writer."""
    with path.open("a", encoding="utf-8") as f:
        for event in events:
            f.write(event.to_line() + "\n")
