from __future__ import annotations

import json
import logging
from collections.abc import Iterator

import pytest
import structlog

from logging_config import ROOT_LOGGER, configure_logging
from settings import Settings


@pytest.fixture
def restore_logger() -> Iterator[logging.Logger]:
    logger = logging.getLogger(ROOT_LOGGER)
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield logger
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    for handler in handlers:
        logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = propagate
    logging.getLogger(f"{ROOT_LOGGER}.upstream").setLevel(logging.NOTSET)


def test_file_logging_writes_json_lines(tmp_path, monkeypatch, restore_logger) -> None:
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("LOG_LEVEL", "warning")

    log_file = configure_logging(Settings())
    logging.getLogger("mirrortube.cache").info("cache warmed entries=%d", 3)
    for handler in restore_logger.handlers:
        handler.flush()

    assert log_file == tmp_path / "logs" / "mirrortube.log"
    lines = [json.loads(line) for line in log_file.read_text(encoding="utf-8").splitlines()]
    events = [line["event"] for line in lines]
    assert "cache warmed entries=3" in events
    record = next(line for line in lines if line["event"] == "cache warmed entries=3")
    assert record["logger"] == "mirrortube.cache"
    assert record["level"] == "info"
    assert "timestamp" in record


def test_console_only_by_default(monkeypatch, restore_logger) -> None:
    monkeypatch.delenv("LOG_DIR", raising=False)
    monkeypatch.setenv("DEBUG_UPSTREAM", "1")

    assert configure_logging(Settings()) is None
    assert len(restore_logger.handlers) == 1
    assert restore_logger.propagate is False
    assert logging.getLogger("mirrortube.upstream").level == logging.DEBUG


def test_unknown_level_falls_back_to_info_and_json_console(monkeypatch, restore_logger) -> None:
    monkeypatch.delenv("LOG_DIR", raising=False)
    monkeypatch.delenv("DEBUG_UPSTREAM", raising=False)
    monkeypatch.setenv("LOG_LEVEL", "chatty")
    monkeypatch.setenv("LOG_FORMAT", "json")

    configure_logging(Settings())

    (console,) = restore_logger.handlers
    assert console.level == logging.INFO
    assert isinstance(console.formatter, structlog.stdlib.ProcessorFormatter)
    assert logging.getLogger("mirrortube.upstream").level == logging.NOTSET
