from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest

from vaultingest.logging_utils import LOGGER_NAME, ConsoleFormatter, JsonFormatter, configure_logging, task_logger


@pytest.fixture(autouse=True)
def restore_logger():
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True


def _record(message: str = "uploaded %s", args=("a.png",)) -> logging.LogRecord:
    return logging.LogRecord(LOGGER_NAME, logging.INFO, __file__, 1, message, args, None)


def test_configure_logging_installs_console_and_file_handlers(tmp_path: Path) -> None:
    logger = configure_logging({"log_dir": str(tmp_path), "console_level": "WARNING"}, level="DEBUG")

    handlers = logger.handlers
    assert len(handlers) == 2
    assert handlers[0].level == logging.DEBUG
    assert isinstance(handlers[1], RotatingFileHandler)
    assert (tmp_path / "vaultingest.log").exists()
    assert logging.getLogger("httpx").level == logging.DEBUG

    again = configure_logging({"console_level": "INFO"})
    assert len(again.handlers) == 1
    assert logging.getLogger("httpx").level == logging.WARNING


def test_json_formatter_includes_task_id() -> None:
    record = _record()
    record.task_id = "abc123"

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "uploaded a.png"
    assert payload["task_id"] == "abc123"
    assert payload["level"] == "INFO"


def test_console_formatter_appends_short_task_id() -> None:
    record = _record()
    record.task_id = "0123456789abcdef"

    line = ConsoleFormatter(use_color=False).format(record)

    assert line.endswith("INFO uploaded a.png [task 01234567]")


def test_task_logger_tags_records() -> None:
    records = []

    class Collect(logging.Handler):
        def emit(self, record: logging.LogRecord) -> None:
            records.append(record)

    logger = logging.getLogger(f"{LOGGER_NAME}.adapter-test")
    handler = Collect()
    logger.addHandler(handler)
    try:
        task_logger(logger, "task-1").warning("retrying")
    finally:
        logger.removeHandler(handler)

    assert records[0].task_id == "task-1"
