"""
======================================================================
 ChatBridge: configuration validation
======================================================================

Configuration validation script.

Validates a hub config file (chatbridge.json) and its alias table against
minimal runtime expectations.

Design rules:
- No side effects on import
- No runtime startup
- Validation only (no mutation)
- Forward-compatible: unknown fields are ignored
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from shared.config.hub import (  # noqa: E402
    INT_KEYS,
    PATH_KEYS,
    STRING_KEYS,
    default_config_path,
    load_hub_config,
)


# ------------------------------------------------------------
# Helpers
# ------------------------------------------------------------

def _load_json(path: Path) -> Any:
    try:
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)
    except Exception as e:
        raise ValueError(f"{path.name}: invalid JSON ({e})") from e


def _error(msg: str):
    print(f"[CONFIG ERROR] {msg}", file=sys.stderr)


# ------------------------------------------------------------
# Validators
# ------------------------------------------------------------

def validate_hub_config(path: Path) -> bool:
    """
    Validate chatbridge.json.

    Missing keys are allowed.
    Invalid types are rejected.
    """

    try:
        data = _load_json(path)
    except ValueError as e:
        _error(str(e))
        return False

    if not isinstance(data, dict):
        _error(f"{path.name}: root must be an object")
        return False

    ok = True
    for key in PATH_KEYS + STRING_KEYS:
        if key in data and not isinstance(data[key], str):
            _error(f"{path.name}: '{key}' must be a string")
            ok = False

    for key in INT_KEYS:
        if key not in data:
            continue
        value = data[key]
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            _error(f"{path.name}: '{key}' must be a non-negative integer")
            ok = False

    return ok


def validate_aliases(path: Path) -> bool:
    """
    Validate the alias table.

    Expected shape:
    {"aliases": {"name": "number"}}  or  {"name": "number"}
    """

    if not path.exists():
        return True

    try:
        data = _load_json(path)
    except ValueError as e:
        _error(str(e))
        return False

    if not isinstance(data, dict):
        _error(f"{path.name}: root must be an object")
        return False

    entries = data.get("aliases", data)
    if not isinstance(entries, dict):
        _error(f"{path.name}: 'aliases' must be an object")
        return False

    ok = True
    for alias, number in entries.items():
        if not isinstance(number, str):
            _error(f"{path.name}: alias '{alias}' must map to a string")
            ok = False
    return ok


# ------------------------------------------------------------
# Entry point
# ------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    path: Optional[Path] = Path(argv[0]) if argv else default_config_path()
    if path is None or not path.exists():
        _error("no config file found (pass a path or set CHATBRIDGE_CONFIG)")
        return 1

    ok = validate_hub_config(path)
    if ok:
        cfg = load_hub_config(path)
        if not validate_aliases(Path(cfg.aliases_path)):
            ok = False

    if not ok:
        print("Configuration validation failed.", file=sys.stderr)
        return 1

    print("Configuration validation passed.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
