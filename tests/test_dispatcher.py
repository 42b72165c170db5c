"""Tests for outbound send requests, the dispatcher and the FIFO."""

from __future__ import annotations

import os
import threading
import time
from pathlib import Path
from typing import List, Optional, Tuple

import pytest

from services.hub.dispatcher import OutboundDispatcher, SendRequest, parse_send_request
from services.hub.pipe import OutboundPipe, PipeError
from services.transport.client import SendResult
from shared.storage.meta_log import MetaLog

requires_fifo = pytest.mark.skipif(not hasattr(os, "mkfifo"), reason="named pipes unavailable")


class FakeSender:
    phone_id = "phone-1"

    def __init__(self, result: Optional[SendResult] = None) -> None:
        self.result = result or SendResult(
            ok=True,
            status_code=200,
            provider_ids={"wa_id": "447700900001", "message_id": "wamid.1"},
        )
        self.calls: List[Tuple[str, str]] = []

    def send(self, to: str, text: str) -> SendResult:
        self.calls.append((to, text))
        return self.result


class TestParseSendRequest:
    def test_to_field(self):
        assert parse_send_request('{"to": "111", "text": "hi"}') == SendRequest("111", "hi")

    def test_alias_field(self):
        assert parse_send_request('{"alias": "max", "text": "hi"}') == SendRequest("max", "hi")

    @pytest.mark.parametrize(
        "line",
        [
            "",
            "not json",
            "[1]",
            '{"text": "no destination"}',
            '{"to": "111"}',
            '{"to": "111", "text": ""}',
            '{"to": 5, "text": "hi"}',
        ],
    )
    def test_invalid_requests_are_ignored(self, line: str):
        assert parse_send_request(line) is None


class TestDispatch:
    def test_success_records_sent_event(self, tmp_path: Path, sinks, read_lines, aliases_file):
        sender = FakeSender()
        dispatcher = OutboundDispatcher(sender, sinks, aliases_path=aliases_file)

        event = dispatcher.dispatch(SendRequest("max", "hello"))

        assert sender.calls == [("447700900001", "hello")]
        assert event.kind == "sent"
        assert event.peer == "max"
        data = tmp_path / "data"
        assert [(r["kind"], r["text"]) for r in read_lines(data / "events.jsonl")] == [("sent", "hello")]
        assert [r["kind"] for r in read_lines(data / "events.max.jsonl")] == ["sent"]

    def test_failure_records_failed_status(self, tmp_path: Path, sinks, read_lines):
        sender = FakeSender(SendResult(ok=False, status_code=400, error={"message": "nope"}))
        dispatcher = OutboundDispatcher(sender, sinks)

        event = dispatcher.dispatch(SendRequest("555", "hello"))

        assert event.kind == "status"
        assert event.status == "failed"
        records = read_lines(tmp_path / "data" / "events.555.jsonl")
        assert records == [{"ts": event.ts, "kind": "status", "peer": "555", "status": "failed"}]

    def test_meta_log_records_each_attempt(self, tmp_path: Path, sinks, read_lines):
        meta = MetaLog(tmp_path / "meta.jsonl")
        ok = OutboundDispatcher(FakeSender(), sinks, meta_log=meta)
        failed = OutboundDispatcher(
            FakeSender(SendResult(ok=False, status_code=400, error={"message": "nope"})),
            sinks,
            meta_log=meta,
        )

        ok.dispatch(SendRequest("447700900001", "one"))
        failed.dispatch(SendRequest("555", "two"))
        meta.close()

        first, second = read_lines(tmp_path / "meta.jsonl")
        assert first["op"] == "send"
        assert first["http"] == 200
        assert first["phone_number_id"] == "phone-1"
        assert first["meta"] == {"wa_id": "447700900001", "message_id": "wamid.1"}
        assert "error" not in first
        assert second["http"] == 400
        assert second["error"] == {"message": "nope"}
        assert "meta" not in second

    def test_handle_line_skips_invalid(self, sinks):
        sender = FakeSender()
        dispatcher = OutboundDispatcher(sender, sinks)
        assert dispatcher.handle_line("garbage") is None
        assert sender.calls == []


class TestOutboundPipe:
    def test_regular_file_is_rejected(self, tmp_path: Path):
        path = tmp_path / "send.fifo"
        path.write_text("", encoding="utf-8")
        with pytest.raises(PipeError):
            OutboundPipe(path).open()

    @requires_fifo
    def test_lines_survive_writer_close(self, tmp_path: Path):
        path = tmp_path / "run" / "send.fifo"
        stop = threading.Event()
        received: List[str] = []

        with OutboundPipe(path, poll_interval=0.05) as pipe:
            def _consume():
                for line in pipe.lines(stop):
                    received.append(line)
                    if len(received) == 3:
                        stop.set()

            reader = threading.Thread(target=_consume, daemon=True)
            reader.start()

            for payload in (b'{"to":"1","text":"a"}\n', b'{"to":"2",', b'"text":"b"}\nlast\n'):
                fd = os.open(path, os.O_WRONLY)
                os.write(fd, payload)
                os.close(fd)
                time.sleep(0.05)

            reader.join(timeout=5)
            stop.set()

        assert received == ['{"to":"1","text":"a"}', '{"to":"2","text":"b"}', "last"]

    @requires_fifo
    def test_dispatcher_thread_sends_from_fifo(self, tmp_path: Path, sinks, read_lines):
        path = tmp_path / "send.fifo"
        sender = FakeSender()
        stop = threading.Event()

        with OutboundPipe(path, poll_interval=0.05) as pipe:
            thread = OutboundDispatcher(sender, sinks).start(pipe, stop)
            fd = os.open(path, os.O_WRONLY)
            os.write(fd, b'{"to":"777","text":"via fifo"}\n')
            os.close(fd)

            deadline = time.monotonic() + 5
            while not sender.calls and time.monotonic() < deadline:
                time.sleep(0.02)
            stop.set()
            thread.join(timeout=5)

        assert sender.calls == [("777", "via fifo")]
        assert [r["text"] for r in read_lines(tmp_path / "data" / "events.777.jsonl")] == ["via fifo"]
