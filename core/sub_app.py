"""
ChatBridge subscriber: tail and filter hub JSONL event logs.

Exit codes:
  0  success (match found, window elapsed, or follow stopped)
  1  --once timeout elapsed without a match
  2  bad usage or fatal error
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading
from pathlib import Path
from typing import List, Optional, TextIO

from dotenv import load_dotenv

from runtime.version import as_string
from services.tail.engine import TailMode, TailOutcome, TailSession
from services.tail.filters import EventFilter, FilterError
from shared.chat.events import SUPPORTED_KINDS
from shared.config.aliases import load_aliases
from shared.config.hub import load_hub_config
from shared.logging.logger import get_logger

log = get_logger("core.sub_app", runtime="sub")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chatbridge-sub",
        description="Tail and filter ChatBridge JSONL event logs",
    )

    source = parser.add_argument_group("sources")
    target = source.add_mutually_exclusive_group()
    target.add_argument("--file", type=Path, help="Read this JSONL file directly")
    target.add_argument(
        "--peer",
        help="Tail the per-peer log for NAME|NUMBER (resolved through the hub config and alias table)",
    )
    source.add_argument("--config", type=Path, help="Hub config used to resolve --peer")

    filters = parser.add_argument_group("filters")
    filters.add_argument("--kind", choices=sorted(SUPPORTED_KINDS), help="Only events of this kind")
    filters.add_argument("--grep", help="Regex searched in .text; prefix (?i) for case-insensitive")
    filters.add_argument("--ignore-case", action="store_true", help="Case-insensitive --grep")
    filters.add_argument("--since-ts", type=int, help="Only events with ts >= MS (epoch ms); scans history")

    modes = parser.add_argument_group("modes (choose exactly one)")
    modes.add_argument("--follow", action="store_true", help="Stream matching lines until interrupted")
    modes.add_argument("--once", action="store_true", help="Exit on first match, or after --timeout")
    modes.add_argument("--timeout", type=float, help="Seconds to wait in --once mode")
    modes.add_argument("--window", type=float, help="Collect matches for S seconds, then exit")

    parser.add_argument("--json-array", action="store_true", help="Buffer matches and print one JSON array")
    parser.add_argument("--debug", action="store_true", help="Print the resolved file path to stderr")
    parser.add_argument("--version", action="version", version=as_string())
    return parser


def _select_mode(parser: argparse.ArgumentParser, args: argparse.Namespace) -> TailMode:
    chosen = [
        mode
        for mode, flag in (
            (TailMode.FOLLOW, args.follow),
            (TailMode.ONCE, args.once),
            (TailMode.WINDOW, args.window is not None),
        )
        if flag
    ]
    if len(chosen) != 1:
        parser.error("choose exactly one mode: --follow OR --once --timeout S OR --window S")

    mode = chosen[0]
    if mode != TailMode.ONCE and args.timeout is not None:
        parser.error("--timeout only applies to --once")
    if mode == TailMode.ONCE and args.timeout is None:
        parser.error("--once requires --timeout <sec>")
    if mode == TailMode.WINDOW and args.window < 0:
        parser.error("--window must be >= 0")
    if mode == TailMode.ONCE and args.timeout < 0:
        parser.error("--timeout must be >= 0")
    return mode


def resolve_target(args: argparse.Namespace) -> Path:
    if args.file:
        return args.file
    cfg = load_hub_config(args.config)
    key = load_aliases(cfg.aliases_path).peer_key(args.peer)
    return cfg.per_peer_path(key)


def _install_signal_handlers(stop_event: threading.Event) -> None:
    def _handler(signum, frame):
        stop_event.set()

    try:
        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
    except ValueError:
        # not the main thread
        pass


def main(
    argv: Optional[List[str]] = None,
    *,
    out: Optional[TextIO] = None,
    stop_event: Optional[threading.Event] = None,
) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    mode = _select_mode(parser, args)
    if not args.file and not args.peer:
        parser.error("specify --file PATH or --peer NAME")

    try:
        event_filter = EventFilter.build(
            kind=args.kind,
            since_ts=args.since_ts,
            grep=args.grep,
            ignore_case=args.ignore_case,
        )
    except FilterError as e:
        parser.error(str(e))

    target = resolve_target(args)
    if args.debug:
        print(f'tailing: "{target}"', file=sys.stderr)

    duration = {TailMode.ONCE: args.timeout, TailMode.WINDOW: args.window}.get(mode)

    if stop_event is None:
        stop_event = threading.Event()
        _install_signal_handlers(stop_event)

    session = TailSession(
        target,
        event_filter,
        mode,
        duration=duration,
        json_array=args.json_array,
        out=out,
        stop_event=stop_event,
    )
    try:
        outcome = session.run()
    except OSError as e:
        log.error(f"Tail of {target} failed: {e}")
        return int(TailOutcome.USAGE)
    return int(outcome)


def run() -> None:
    load_dotenv()
    sys.exit(main())


if __name__ == "__main__":
    run()
