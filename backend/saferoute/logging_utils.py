from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from pythonjsonlogger import jsonlogger

from .settings import settings

LOG_FILE_NAME = "engine.log.jsonl"


def _parse_level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def _file_handler(out_dir: str, formatter: logging.Formatter) -> logging.Handler | None:
    """JSONL file under `<out_dir>/logs`, or None when that directory is not writable."""
    log_dir = Path(out_dir) / "logs"
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_dir / LOG_FILE_NAME, encoding="utf-8")
    except OSError:
        return None
    handler.setFormatter(formatter)
    return handler


def get_logger() -> logging.Logger:
    logger = logging.getLogger("saferoute")

    # Reloaders import the app twice; keep one set of handlers.
    if getattr(logger, "_configured", False):
        return logger

    logger.setLevel(_parse_level(settings.log_level))
    logger.propagate = False

    formatter = jsonlogger.JsonFormatter()

    sh = logging.StreamHandler()
    sh.setFormatter(formatter)
    logger.addHandler(sh)

    fh = _file_handler(settings.out_dir, formatter)
    if fh is None:
        logger.warning("log file handler unavailable", extra={"out_dir": settings.out_dir})
    else:
        logger.addHandler(fh)

    logger._configured = True  # type: ignore[attr-defined]
    return logger


LOGGER: logging.Logger | None = None


def log_event(event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    global LOGGER
    if LOGGER is None:
        LOGGER = get_logger()
    # Structured: event is message + a top-level key
    LOGGER.log(level, event, extra={"event": event, **fields})
