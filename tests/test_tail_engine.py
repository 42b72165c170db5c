"""Tests for the rotation-aware tail session."""

from __future__ import annotations

import io
import json
import os
import threading
import time
from pathlib import Path
from typing import Callable, List

import pytest

from conftest import write_events
from services.tail.engine import TailCursor, TailMode, TailOutcome, TailSession, file_identity
from services.tail.filters import EventFilter
from shared.chat.events import Event, received_event

POLL = 0.02


def _wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def _events(*pairs) -> List[Event]:
    return [received_event("max", text, ts=ts) for ts, text in pairs]


class _Runner:
    """Runs a session on a background thread."""

    def __init__(self, session: TailSession) -> None:
        self.session = session
        self.outcome = None
        self.thread = threading.Thread(target=self._run, daemon=True)

    def _run(self) -> None:
        self.outcome = self.session.run()

    def start(self) -> "_Runner":
        self.thread.start()
        return self

    def stop(self) -> TailOutcome:
        self.session.stop_event.set()
        self.thread.join(timeout=5)
        assert not self.thread.is_alive()
        return self.outcome

    def texts(self) -> List[str]:
        return [json.loads(line)["text"] for line in self.lines()]

    def lines(self) -> List[str]:
        return self.session.out.getvalue().splitlines()


def _follow(path: Path, **kwargs) -> _Runner:
    session = TailSession(
        path, EventFilter(), TailMode.FOLLOW, out=io.StringIO(), poll_interval=POLL, **kwargs
    )
    return _Runner(session).start()


class TestStartup:
    def test_window_replays_since_timestamp(self, tmp_path: Path):
        path = tmp_path / "events.max.jsonl"
        write_events(path, _events((100, "a"), (200, "b"), (300, "c")))
        out = io.StringIO()
        session = TailSession(
            path,
            EventFilter.build(since_ts=200),
            TailMode.WINDOW,
            duration=0.5,
            out=out,
            poll_interval=POLL,
        )

        started = time.monotonic()
        outcome = session.run()
        elapsed = time.monotonic() - started

        assert outcome == TailOutcome.SUCCESS
        assert elapsed >= 0.45
        assert [json.loads(line)["ts"] for line in out.getvalue().splitlines()] == [200, 300]

    def test_without_since_starts_at_end_of_file(self, tmp_path: Path):
        path = tmp_path / "events.jsonl"
        write_events(path, _events((1, "old")))
        runner = _follow(path)
        time.sleep(0.1)
        write_events(path, _events((2, "new")))

        assert _wait_until(lambda: runner.session.match_count)
        assert runner.stop() == TailOutcome.SUCCESS
        assert runner.texts() == ["new"]

    def test_waits_for_missing_target(self, tmp_path: Path):
        path = tmp_path / "later.jsonl"
        runner = _follow(path)
        time.sleep(0.1)
        write_events(path, _events((1, "first")))

        assert _wait_until(lambda: runner.session.match_count)
        runner.stop()
        assert runner.texts() == ["first"]

    def test_bounded_mode_requires_duration(self, tmp_path: Path):
        with pytest.raises(ValueError):
            TailSession(tmp_path / "x.jsonl", EventFilter(), TailMode.ONCE)


class TestOnce:
    def test_times_out_without_match(self, tmp_path: Path):
        path = tmp_path / "events.jsonl"
        path.touch()
        out = io.StringIO()
        session = TailSession(
            path, EventFilter(), TailMode.ONCE, duration=0.2, json_array=True, out=out, poll_interval=POLL
        )

        assert session.run() == TailOutcome.TIMEOUT
        assert out.getvalue() == "[]\n"

    def test_missing_target_times_out(self, tmp_path: Path):
        session = TailSession(
            tmp_path / "never.jsonl", EventFilter(), TailMode.ONCE, duration=0.1, out=io.StringIO(), poll_interval=POLL
        )
        assert session.run() == TailOutcome.TIMEOUT

    def test_first_match_wins(self, tmp_path: Path):
        path = tmp_path / "events.jsonl"
        path.touch()
        out = io.StringIO()
        session = TailSession(
            path,
            EventFilter.build(grep="ping"),
            TailMode.ONCE,
            duration=5,
            out=out,
            poll_interval=POLL,
        )
        runner = _Runner(session).start()
        time.sleep(0.1)
        write_events(path, _events((1, "nope"), (2, "ping one"), (3, "ping two")))

        runner.thread.join(timeout=5)
        assert runner.outcome == TailOutcome.SUCCESS
        assert runner.texts() == ["ping one"]
        assert len(out.getvalue().splitlines()) == 1

    def test_since_scan_can_satisfy_once(self, tmp_path: Path):
        path = tmp_path / "events.jsonl"
        write_events(path, _events((10, "hit")))
        session = TailSession(
            path, EventFilter.build(since_ts=0), TailMode.ONCE, duration=5, out=io.StringIO(), poll_interval=POLL
        )
        assert session.run() == TailOutcome.SUCCESS


class TestRotationAndTruncation:
    def test_rotation_reads_new_generation_from_start(self, tmp_path: Path):
        path = tmp_path / "events.max.jsonl"
        path.touch()
        runner = _follow(path)
        time.sleep(0.1)
        write_events(path, _events((1, "before")))
        assert _wait_until(lambda: runner.session.match_count == 1)

        os.rename(path, tmp_path / "events.max.jsonl.20260101-000000")
        write_events(path, _events((2, "after-1"), (3, "after-2")))

        assert _wait_until(lambda: runner.session.match_count == 3)
        time.sleep(0.1)
        runner.stop()
        assert runner.texts() == ["before", "after-1", "after-2"]

    def test_truncation_resets_offset(self, tmp_path: Path):
        path = tmp_path / "events.jsonl"
        path.touch()
        runner = _follow(path)
        time.sleep(0.1)
        write_events(path, _events((1, "a" * 50), (2, "b" * 50)))
        assert _wait_until(lambda: runner.session.match_count == 2)

        with path.open("w", encoding="utf-8") as f:
            f.write(received_event("max", "c", ts=3).to_line() + "\n")

        assert _wait_until(lambda: runner.session.match_count == 3)
        runner.stop()
        assert runner.texts()[-1] == "c"

    def test_partial_line_waits_for_newline(self, tmp_path: Path):
        path = tmp_path / "events.jsonl"
        path.touch()
        runner = _follow(path)
        time.sleep(0.1)
        line = received_event("max", "slow", ts=1).to_line()

        with path.open("a", encoding="utf-8") as f:
            f.write(line[:10])
        time.sleep(0.15)
        assert runner.session.match_count == 0

        with path.open("a", encoding="utf-8") as f:
            f.write(line[10:] + "\n")
        assert _wait_until(lambda: runner.session.match_count)
        runner.stop()
        assert runner.lines() == [line]


class TestOutput:
    def test_json_array_collects_matches(self, tmp_path: Path):
        path = tmp_path / "events.jsonl"
        write_events(path, _events((1, "x"), (2, "y")))
        out = io.StringIO()
        session = TailSession(
            path,
            EventFilter.build(since_ts=0),
            TailMode.WINDOW,
            duration=0.1,
            json_array=True,
            out=out,
            poll_interval=POLL,
        )

        assert session.run() == TailOutcome.SUCCESS
        assert [r["text"] for r in json.loads(out.getvalue())] == ["x", "y"]

    def test_follow_cancellation_is_success(self, tmp_path: Path):
        path = tmp_path / "events.jsonl"
        path.touch()
        runner = _follow(path)
        time.sleep(0.05)
        assert runner.stop() == TailOutcome.SUCCESS

    def test_stream_mode_keeps_no_backlog(self, tmp_path: Path):
        path = tmp_path / "events.jsonl"
        path.touch()
        runner = _follow(path)
        time.sleep(0.05)
        write_events(path, [received_event("max", f"m{i}", ts=i) for i in range(500)])

        assert _wait_until(lambda: runner.session.match_count == 500)
        runner.stop()
        assert runner.session.buffered == []
        assert len(runner.lines()) == 500


def test_file_identity_tracks_inode(tmp_path: Path):
    path = tmp_path / "a.jsonl"
    path.write_text("one\n", encoding="utf-8")
    first = file_identity(path)
    os.rename(path, tmp_path / "a.jsonl.1")
    path.write_text("two\n", encoding="utf-8")
    assert file_identity(path) != first
    assert file_identity(tmp_path / "missing") is None
    assert TailCursor().offset == 0


class TestHeadSignatureIdentity:
    """Filesystems that report st_ino == 0 fall back to a first-line hash."""

    @staticmethod
    def _without_inodes(monkeypatch) -> None:
        def _zero_ino(st: os.stat_result) -> os.stat_result:
            fields = list(st[:10])
            fields[1] = 0
            return os.stat_result(fields)

        real_path_stat = Path.stat
        real_fstat = os.fstat

        def _path_stat(self, *args, **kwargs):
            return _zero_ino(real_path_stat(self, *args, **kwargs))

        monkeypatch.setattr(Path, "stat", _path_stat)
        monkeypatch.setattr(os, "fstat", lambda fd: _zero_ino(real_fstat(fd)))

    def test_identity_follows_first_line(self, tmp_path: Path, monkeypatch):
        self._without_inodes(monkeypatch)
        path = tmp_path / "events.jsonl"
        path.write_text("first\n", encoding="utf-8")
        original = file_identity(path)

        with path.open("a", encoding="utf-8") as f:
            f.write("second\n")
        assert file_identity(path) == original

        replacement = tmp_path / "incoming.jsonl"
        replacement.write_text("other\n", encoding="utf-8")
        os.replace(replacement, path)
        assert file_identity(path) != original
        assert original[0] == "head"

    def test_replacement_resets_offset(self, tmp_path: Path, monkeypatch):
        self._without_inodes(monkeypatch)
        path = tmp_path / "events.jsonl"
        write_events(path, _events((1, "old generation")))
        runner = _follow(path)
        time.sleep(0.1)

        replacement = tmp_path / "incoming.jsonl"
        write_events(replacement, _events((2, "new-1"), (3, "new-2"), (4, "new-3")))
        os.replace(replacement, path)

        assert _wait_until(lambda: runner.session.match_count == 3)
        time.sleep(0.1)
        runner.stop()
        assert runner.texts() == ["new-1", "new-2", "new-3"]
