"""
======================================================================
 ChatBridge Hub: store-and-forward bridge for the chat transport
======================================================================
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from runtime.version import as_string
from services.hub.dispatcher import OutboundDispatcher
from services.hub.ingest import CatchUpAborted, IngestionLoop
from services.hub.pipe import OutboundPipe, PipeError
from services.transport.client import TransportClient
from shared.config.hub import HubConfig, load_hub_config
from shared.logging.logger import get_logger
from shared.storage.cursor_store import CursorStore
from shared.storage.event_log import EventSinks, LogOpenError
from shared.storage.meta_log import MetaLog

log = get_logger("core.hub_app")

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_PIPE = 2
EXIT_LOG_OPEN = 4


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chatbridge-hub",
        description="Ingest transport events into rotating JSONL logs and dispatch queued sends",
    )
    parser.add_argument("--config", type=Path, help="Path to chatbridge.json")
    parser.add_argument("--base", type=Path, dest="base_dir", help="Runtime directory (FIFO default)")
    parser.add_argument("--data", type=Path, dest="data_dir", help="Directory for logs and state")
    parser.add_argument("--aliases", type=Path, dest="aliases_path", help="Alias table JSON")
    parser.add_argument("--fifo", type=Path, dest="fifo_path", help="Outbound send FIFO")
    parser.add_argument("--worker", help="Transport worker base URL")
    parser.add_argument("--phone", dest="phone_id", help="Sender phone number id")
    parser.add_argument("--timeout", type=int, dest="lp_timeout_sec", help="Long-poll server wait (seconds)")
    parser.add_argument("--limit", type=int, dest="pull_limit", help="Events per pull page")
    parser.add_argument("--version", action="version", version=as_string())
    return parser


def load_config(argv: Optional[List[str]] = None) -> HubConfig:
    args = build_parser().parse_args(argv)
    overrides = {k: v for k, v in vars(args).items() if k != "config"}
    return load_hub_config(args.config, overrides)


def main(cfg: HubConfig, stop_event: threading.Event) -> int:
    log.info(f"{as_string()} booting")

    if not cfg.worker or not cfg.phone_id:
        log.error("Set worker and phone_id via config/env/CLI")
        return EXIT_CONFIG

    cfg.ensure_dirs()

    # --------------------------------------------------
    # OUTBOUND PIPE
    # --------------------------------------------------
    pipe = OutboundPipe(cfg.fifo)
    try:
        pipe.open()
    except PipeError as e:
        log.error(str(e))
        return EXIT_PIPE

    # --------------------------------------------------
    # EVENT LOGS
    # --------------------------------------------------
    try:
        sinks = EventSinks.from_config(cfg)
    except LogOpenError as e:
        log.error(str(e))
        pipe.close()
        return EXIT_LOG_OPEN

    try:
        meta_log = MetaLog(cfg.meta_log_path)
    except LogOpenError as e:
        log.error(str(e))
        sinks.close()
        pipe.close()
        return EXIT_LOG_OPEN

    log.info(f"Global log: {cfg.global_log_path} (rotate at {cfg.rotate_global_bytes} bytes)")
    log.info(f"Peer logs: {cfg.per_dir} (rotate at {cfg.rotate_peer_bytes} bytes)")

    transport = TransportClient(cfg.worker, cfg.phone_id)
    cursor_store = CursorStore(cfg.state_path)

    dispatcher = OutboundDispatcher(
        transport,
        sinks,
        aliases_path=cfg.aliases_path,
        meta_log=meta_log,
    )
    ingest = IngestionLoop(
        transport,
        sinks,
        cursor_store,
        aliases_path=cfg.aliases_path,
        pull_limit=cfg.pull_limit,
        lp_timeout_sec=cfg.lp_timeout_sec,
        stop_event=stop_event,
    )

    sender = dispatcher.start(pipe, stop_event)
    exit_code = EXIT_OK
    try:
        ingest.run()
    except CatchUpAborted as e:
        log.error(str(e))
        exit_code = EXIT_CONFIG
    finally:
        # --------------------------------------------------
        # ORDERLY SHUTDOWN
        # --------------------------------------------------
        stop_event.set()
        sender.join(timeout=2.0)
        pipe.close()
        transport.close()
        sinks.close()
        meta_log.close()
        log.info("ChatBridge hub stopped")

    return exit_code


# ----------------------------------------------------------------------
# SIGNAL HANDLING
# ----------------------------------------------------------------------

def _install_signal_handlers(stop_event: threading.Event) -> None:
    def _handler(signum, frame):
        log.info(f"Signal {signum} received; shutting down")
        stop_event.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def run() -> None:
    load_dotenv()
    cfg = load_config()
    stop_event = threading.Event()
    _install_signal_handlers(stop_event)
    sys.exit(main(cfg, stop_event))


if __name__ == "__main__":
    run()
