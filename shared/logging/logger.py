import logging
import os
from datetime import datetime
from pathlib import Path

DEFAULT_LOG_DIR = Path("logs")

_LOGGERS = {}


def _log_dir() -> Path:
    override = os.getenv("CHATBRIDGE_LOG_DIR")
    return Path(override) if override else DEFAULT_LOG_DIR


def _file_logging_enabled() -> bool:
    return os.getenv("CHATBRIDGE_LOG_FILE", "1").strip().lower() not in {"0", "false", "no", "off"}


def get_logger(
    name: str,
    *,
    runtime: str = "hub",
) -> logging.Logger:
    """
    Create or retrieve a named logger.

    Parameters:
    - name: logger namespace (e.g. hub.ingest, tail.engine)
    - runtime: log file prefix (hub | sub | scripts)

    Console output goes to stderr so the subscriber CLI keeps stdout
    for matched event lines only.
    """
    cache_key = f"{runtime}:{name}"
    if cache_key in _LOGGERS:
        return _LOGGERS[cache_key]

    logger = logging.getLogger(cache_key)
    logger.setLevel(logging.DEBUG)

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
    )

    # ------------------------------
    # Console handler
    # ------------------------------
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    console.setLevel(logging.INFO)
    logger.addHandler(console)

    # ------------------------------
    # File handler (one per run)
    # ------------------------------
    if _file_logging_enabled():
        log_dir = _log_dir()
        log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        logfile = log_dir / f"{runtime}-{timestamp}.log"

        file_handler = logging.FileHandler(logfile, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False
    _LOGGERS[cache_key] = logger

    return logger
