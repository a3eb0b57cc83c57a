"""Runtime logging configuration with bounded retention."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

DEFAULT_LOG_PATH = "work/logs/story_play.log"

_CONFIGURED = False


def _int_env(name: str, default: int, *, minimum: int, maximum: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, min(maximum, value))


def _level_env(name: str, default: int) -> int:
    level_name = os.environ.get(name, "").strip().upper()
    if not level_name:
        return default
    level = logging.getLevelName(level_name)
    return level if isinstance(level, int) else default


def configure_runtime_logging(*, force: bool = False) -> bool:
    """Configure console + rotating file logs once per process.

    Returns False when logging was already configured and `force` is not set.
    """
    global _CONFIGURED
    if _CONFIGURED and not force:
        return False

    level = _level_env("STORY_PLAY_LOG_LEVEL", logging.INFO)
    log_path = Path(os.environ.get("STORY_PLAY_LOG_PATH", "").strip() or DEFAULT_LOG_PATH)
    max_bytes = _int_env(
        "STORY_PLAY_LOG_MAX_BYTES", 5 * 1024 * 1024, minimum=64 * 1024, maximum=100 * 1024 * 1024
    )
    backup_count = _int_env("STORY_PLAY_LOG_BACKUP_COUNT", 10, minimum=1, maximum=120)

    log_path.parent.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(
        fmt="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)

    file_handler = RotatingFileHandler(
        filename=log_path,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(level)
    root.addHandler(stream_handler)
    root.addHandler(file_handler)

    logging.getLogger("uvicorn.access").setLevel(
        _level_env("STORY_PLAY_ACCESS_LOG_LEVEL", logging.WARNING)
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)

    _CONFIGURED = True
    return True
