"""Logging setup for the tracker CLI and embedding hosts."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from triage_tracker.config import load_settings

_logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

# Transport loggers that report every request at INFO.
_TRANSPORT_LOGGERS = ("httpx", "httpcore")


def _resolve_level(name: str) -> int:
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def _with_format(handler: logging.Handler) -> logging.Handler:
    handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_DATE_FORMAT))
    return handler


def configure_logging(level: str | None = None) -> int:
    """Install stderr (and optional file) handlers on the root logger.

    ``level`` overrides ``TRACKER_LOG_LEVEL``. Returns the effective level.
    Transport loggers stay at WARNING unless the tracker itself runs at DEBUG,
    so request URLs are only written when explicitly asked for.
    """
    settings = load_settings()
    effective = _resolve_level(level or settings.logging.level)

    handlers = [_with_format(logging.StreamHandler(sys.stderr))]
    log_file = settings.logging.file
    if log_file:
        try:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            handlers.append(_with_format(logging.FileHandler(log_file)))
        except OSError as exc:
            _logger.warning("Failed to open log file %s: %s", log_file, exc)

    logging.basicConfig(level=effective, handlers=handlers, force=True)

    transport_level = logging.DEBUG if effective <= logging.DEBUG else logging.WARNING
    for name in _TRANSPORT_LOGGERS:
        logging.getLogger(name).setLevel(transport_level)
    return effective
