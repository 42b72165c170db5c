"""
Hub configuration.

Resolution order (later wins):
  defaults -> JSON config file -> environment -> CLI overrides

Relative paths inside the config file are resolved against the directory
holding that file. An unreadable config file is logged and ignored so the
hub can still boot from environment + CLI values.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from shared.logging.logger import get_logger

log = get_logger("shared.config.hub")

CONFIG_FILENAME = "chatbridge.json"
DEFAULT_ARCHIVE_TIMEFMT = "%Y%m%d-%H%M%S"

PATH_KEYS = ("base_dir", "data_dir", "aliases_path", "global_dir", "per_dir", "fifo_path")
STRING_KEYS = (
    "global_name",
    "per_prefix",
    "per_suffix",
    "archive_timefmt",
    "meta_log",
    "state_file",
    "worker",
    "phone_id",
    "fifo_name",
    "global_log",
)
INT_KEYS = ("rotate_global_bytes", "rotate_peer_bytes", "lp_timeout_sec", "pull_limit")

ENV_PATHS = {
    "CHATBRIDGE_BASE": "base_dir",
    "CHATBRIDGE_DATA": "data_dir",
    "CHATBRIDGE_ALIASES": "aliases_path",
    "CHATBRIDGE_FIFO": "fifo_path",
}
ENV_STRINGS = {
    "CHATBRIDGE_WORKER": "worker",
    "CHATBRIDGE_PHONE_ID": "phone_id",
}


def _home() -> Path:
    home = os.getenv("HOME")
    return Path(home) if home else Path(".")


@dataclass
class HubConfig:
    base_dir: Path = field(default_factory=lambda: _home() / ".chatbridge")
    data_dir: Optional[Path] = None
    aliases_path: Optional[Path] = None

    # Event logs
    global_dir: Optional[Path] = None
    per_dir: Optional[Path] = None
    global_name: str = "events.jsonl"
    per_prefix: str = "events."
    per_suffix: str = ".jsonl"

    # Rotation (0 = disabled)
    rotate_global_bytes: int = 0
    rotate_peer_bytes: int = 0
    archive_timefmt: str = DEFAULT_ARCHIVE_TIMEFMT

    # Meta / state
    meta_log: str = "meta.jsonl"
    state_file: str = "state.json"

    # Transport worker
    worker: str = ""
    phone_id: str = ""
    lp_timeout_sec: int = 25
    pull_limit: int = 200

    # Outbound pipe
    fifo_name: str = "send.fifo"
    fifo_path: Optional[Path] = None

    # Legacy single-key global log location (bare name or full path)
    global_log: str = ""

    config_path: Optional[Path] = None

    # ------------------------------------------------------------------
    # Derived paths
    # ------------------------------------------------------------------

    @property
    def global_log_path(self) -> Path:
        return Path(self.global_dir) / self.global_name

    @property
    def state_path(self) -> Path:
        return _resolve(Path(self.data_dir), self.state_file)

    @property
    def meta_log_path(self) -> Path:
        return _resolve(Path(self.data_dir), self.meta_log)

    @property
    def fifo(self) -> Path:
        if self.fifo_path:
            return Path(self.fifo_path)
        return Path(self.base_dir) / self.fifo_name

    def per_peer_path(self, key: str) -> Path:
        return Path(self.per_dir) / f"{self.per_prefix}{safe_key(key)}{self.per_suffix}"

    def ensure_dirs(self) -> None:
        for directory in (self.base_dir, self.data_dir, self.global_dir, self.per_dir):
            Path(directory).mkdir(parents=True, exist_ok=True)
        if self.aliases_path:
            Path(self.aliases_path).parent.mkdir(parents=True, exist_ok=True)


def safe_key(key: str) -> str:
    """Peer keys become file name fragments; never let one escape its dir."""
    return key.replace("/", "_").replace("\\", "_").replace("\x00", "_")


def _resolve(base: Path, value: str | Path) -> Path:
    candidate = Path(value)
    return candidate if candidate.is_absolute() else base / candidate


# ----------------------------------------------------------------------
# Loading
# ----------------------------------------------------------------------

def default_config_path() -> Optional[Path]:
    env_path = os.getenv("CHATBRIDGE_CONFIG")
    if env_path:
        return Path(env_path)
    candidates = [
        _home() / ".chatbridge" / CONFIG_FILENAME,
        Path.cwd() / CONFIG_FILENAME,
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def _load_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        log.warning(f"{path.name} not found at {path}; using defaults")
        return {}

    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
            if isinstance(data, dict):
                return data
            log.warning(f"{path.name} root is not an object; ignoring")
    except Exception as e:
        log.warning(f"Failed to load {path.name} ({e}); using defaults")

    return {}


def _merge_file(cfg: HubConfig, data: Dict[str, Any], cfg_dir: Path) -> None:
    for key in PATH_KEYS:
        value = data.get(key)
        if isinstance(value, str) and value:
            setattr(cfg, key, _resolve(cfg_dir, value))
    for key in STRING_KEYS:
        value = data.get(key)
        if isinstance(value, str):
            setattr(cfg, key, value)
    for key in INT_KEYS:
        value = data.get(key)
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            setattr(cfg, key, value)
        elif value is not None:
            log.warning(f"Config key '{key}' must be an integer; keeping {getattr(cfg, key)}")


def _merge_env(cfg: HubConfig, cfg_dir: Path) -> None:
    for env_key, attr in ENV_PATHS.items():
        value = os.getenv(env_key)
        if value:
            setattr(cfg, attr, _resolve(cfg_dir, value))
    for env_key, attr in ENV_STRINGS.items():
        value = os.getenv(env_key)
        if value:
            setattr(cfg, attr, value)


def _merge_overrides(cfg: HubConfig, overrides: Dict[str, Any]) -> None:
    for key, value in overrides.items():
        if value is None:
            continue
        if not hasattr(cfg, key):
            raise KeyError(f"Unknown config override: {key}")
        if key in PATH_KEYS:
            value = Path(value)
        setattr(cfg, key, value)


def _apply_defaults(cfg: HubConfig) -> None:
    cfg.worker = cfg.worker.rstrip("/")
    cfg.base_dir = Path(cfg.base_dir)
    if not cfg.data_dir:
        cfg.data_dir = cfg.base_dir
    if not cfg.aliases_path:
        cfg.aliases_path = cfg.base_dir / "aliases.json"
    if not cfg.global_dir:
        cfg.global_dir = cfg.data_dir
    if not cfg.per_dir:
        cfg.per_dir = cfg.data_dir

    if cfg.global_log:
        legacy = Path(cfg.global_log)
        if legacy.parent != Path("."):
            cfg.global_dir = legacy.parent
        cfg.global_name = legacy.name


def load_hub_config(
    config_path: Optional[Path | str] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> HubConfig:
    """
    Build a HubConfig from file, environment and explicit overrides.

    Does not create directories; call ``ensure_dirs()`` for that.
    """
    cfg = HubConfig()
    path = Path(config_path) if config_path else default_config_path()
    cfg_dir = path.parent if path else Path.cwd()

    if path:
        cfg.config_path = path
        _merge_file(cfg, _load_json(path), cfg_dir)

    _merge_env(cfg, cfg_dir)
    _merge_overrides(cfg, overrides or {})
    _apply_defaults(cfg)
    return cfg


__all__ = [
    "HubConfig",
    "default_config_path",
    "load_hub_config",
    "safe_key",
]
