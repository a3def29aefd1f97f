"""
Logging setup for the ``mirrortube.*`` loggers.

Modules log through plain ``logging.getLogger``; structlog is only used as the
formatter, so records come out as key/value console lines or JSON objects.
"""
from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional

import structlog

from settings import Settings

ROOT_LOGGER = "mirrortube"
LOG_FILE_NAME = "mirrortube.log"

_PRE_CHAIN = [
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
]


def _formatter(*renderers) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_PRE_CHAIN,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *renderers],
    )


def _json_formatter() -> structlog.stdlib.ProcessorFormatter:
    return _formatter(structlog.processors.format_exc_info, structlog.processors.JSONRenderer(sort_keys=True))


def _level(name: Optional[str]) -> int:
    level = logging.getLevelName((name or "INFO").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(settings: Settings) -> Optional[Path]:
    """Install console (and optional rotating JSON file) handlers; returns the log file path."""
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    while logger.handlers:
        old = logger.handlers[0]
        logger.removeHandler(old)
        old.close()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.DEBUG if settings.DEBUG_UPSTREAM else _level(settings.LOG_LEVEL))
    if (settings.LOG_FORMAT or "").lower() == "json":
        console.setFormatter(_json_formatter())
    else:
        colors = hasattr(sys.stdout, "isatty") and sys.stdout.isatty()
        console.setFormatter(_formatter(structlog.dev.ConsoleRenderer(colors=colors)))
    logger.addHandler(console)

    # upstream request/response traces only with DEBUG_UPSTREAM
    logging.getLogger(f"{ROOT_LOGGER}.upstream").setLevel(
        logging.DEBUG if settings.DEBUG_UPSTREAM else logging.NOTSET
    )

    log_file: Optional[Path] = None
    if settings.LOG_DIR is not None:
        settings.LOG_DIR.mkdir(parents=True, exist_ok=True)
        log_file = settings.LOG_DIR / LOG_FILE_NAME
        file_handler = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(_json_formatter())
        logger.addHandler(file_handler)

    logger.info(
        "logging configured level=%s format=%s path=%s debug_upstream=%s",
        logging.getLevelName(console.level), settings.LOG_FORMAT, log_file, settings.DEBUG_UPSTREAM,
    )
    return log_file
