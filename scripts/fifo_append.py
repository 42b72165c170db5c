"""
======================================================================
 ChatBridge: FIFO append helper
======================================================================

Queue send requests for a running hub.

Reads newline-delimited JSON send requests from stdin, e.g.

    echo '{"alias": "max", "text": "hello"}' | python scripts/fifo_append.py

and writes them to the hub's outbound FIFO in a single write, adding a
trailing newline when missing.

Exit codes:
  0  written (or nothing to write)
  2  the given config file does not exist, so no FIFO path can be resolved
  3  FIFO does not exist or is not a FIFO
"""

from __future__ import annotations

import argparse
import stat
import sys
from pathlib import Path
from typing import List, Optional

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from shared.config.hub import load_hub_config  # noqa: E402


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Append send requests to the ChatBridge FIFO")
    parser.add_argument("config", nargs="?", type=Path, help="Hub config (default: resolved like the hub)")
    parser.add_argument("--fifo", type=Path, help="FIFO path (overrides config)")
    return parser.parse_args(argv)


def resolve_fifo(args: argparse.Namespace) -> Optional[Path]:
    """Explicit --fifo, else the hub's FIFO; None when --config names a missing file."""
    if args.fifo:
        return args.fifo
    if args.config is not None and not args.config.exists():
        return None
    return load_hub_config(args.config).fifo


def _is_fifo(path: Path) -> bool:
    try:
        return stat.S_ISFIFO(path.stat().st_mode)
    except OSError:
        return False


def main(argv: Optional[List[str]] = None, data: Optional[str] = None) -> int:
    args = parse_args(argv)

    fifo = resolve_fifo(args)
    if not fifo:
        print(f"Config file not found: {args.config}", file=sys.stderr)
        return 2
    if not _is_fifo(fifo):
        print(f"FIFO not found: {fifo}", file=sys.stderr)
        return 3

    payload = sys.stdin.read() if data is None else data
    if not payload:
        return 0
    if not payload.endswith("\n"):
        payload += "\n"

    with fifo.open("w", encoding="utf-8") as f:
        f.write(payload)
    return 0


if __name__ == "__main__":
    sys.exit(main())
