"""Logging setup for ingestion runs."""

from __future__ import annotations

import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Mapping, MutableMapping, Tuple

LOGGER_NAME = "vaultingest"
LOG_FILENAME = "vaultingest.log"
# Loggers of the HTTP stack; they log every request at INFO.
NOISY_LOGGERS = ("httpx", "httpcore")

_LEVEL_COLOURS = {
    logging.DEBUG: "36",
    logging.INFO: "32",
    logging.WARNING: "33",
    logging.ERROR: "31",
    logging.CRITICAL: "35",
}


class TaskAdapter(logging.LoggerAdapter):
    """Tags every record with the id of the upload task it concerns."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("task_id", self.extra.get("task_id"))
        kwargs["extra"] = extra
        return msg, kwargs


def task_logger(logger: logging.Logger, task_id: str) -> TaskAdapter:
    return TaskAdapter(logger, {"task_id": task_id})


class ConsoleFormatter(logging.Formatter):
    """Short console lines; the level name is coloured on a terminal."""

    def __init__(self, *, use_color: bool) -> None:
        super().__init__("%(asctime)s %(levelname)s %(message)s", datefmt="%H:%M:%S")
        self.use_color = use_color and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        task_id = getattr(record, "task_id", None)
        if task_id:
            message = f"{message} [task {task_id[:8]}]"
        colour = _LEVEL_COLOURS.get(record.levelno)
        if self.use_color and colour:  # pragma: no cover - needs a tty
            message = message.replace(record.levelname, f"\033[{colour}m{record.levelname}\033[0m", 1)
        return message


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        task_id = getattr(record, "task_id", None)
        if task_id:
            payload["task_id"] = task_id
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(config: Mapping[str, object], *, level: str | None = None) -> logging.Logger:
    """Attach a console handler and, when ``log_dir`` is set, a rotating file handler.

    ``level`` overrides ``console_level`` (the ``--log-level`` flag). Calling it
    again replaces the handlers installed by the previous call.
    """

    console_level = _coerce_level(level or config.get("console_level"))
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler()
    console.setLevel(console_level)
    console.setFormatter(ConsoleFormatter(use_color=bool(config.get("color", True))))
    logger.addHandler(console)

    log_dir = config.get("log_dir") or config.get("logs")
    if log_dir:
        directory = Path(str(log_dir))
        directory.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            directory / LOG_FILENAME,
            maxBytes=int(config.get("max_bytes", 10 * 1024 * 1024)),
            backupCount=int(config.get("backup_count", 5)),
            encoding="utf-8",
        )
        file_handler.setLevel(_coerce_level(config.get("file_level")))
        if config.get("json_logs"):
            file_handler.setFormatter(JsonFormatter())
        else:
            file_handler.setFormatter(
                logging.Formatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s")
            )
        logger.addHandler(file_handler)

    http_level = logging.DEBUG if console_level <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(http_level)
    return logger


def _coerce_level(level: object) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        value = logging.getLevelName(level.upper())
        if isinstance(value, int):
            return value
    return logging.INFO


__all__ = [
    "ConsoleFormatter",
    "JsonFormatter",
    "LOGGER_NAME",
    "TaskAdapter",
    "configure_logging",
    "task_logger",
]
