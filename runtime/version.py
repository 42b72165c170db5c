"""Runtime version metadata for ChatBridge.

This module is import-safe and exposes authoritative version identifiers for
the hub, the subscriber CLI and helper scripts without side effects on import.
"""

from __future__ import annotations

PROJECT_NAME = "ChatBridge"
VERSION = "v1.4.0"
BUILD = "2026.10"
LICENSE = "Proprietary"

__all__ = [
    "PROJECT_NAME",
    "VERSION",
    "BUILD",
    "LICENSE",
    "as_string",
]


def as_string() -> str:
    """Return a concise version string."""

    return f"{PROJECT_NAME} {VERSION} (Build {BUILD})"
