"""dictConfig setup for the OCR node.

File output is one JSON object per line, rotated by size. Structured details
passed as ``extra={"context": {...}}`` are kept under ``context``; the thread
name is recorded because recognitions run in worker threads. Console output is
short plain text on stderr so it never mixes with CLI results on stdout.
"""
from __future__ import annotations

import json
import logging
import logging.config
from pathlib import Path
from typing import Any, Dict

LOG_MAX_BYTES = 5_000_000
LOG_BACKUP_COUNT = 3

# Libraries that log every decoded chunk or request at DEBUG.
QUIET_LOGGERS = ("PIL", "asyncio", "multipart", "python_multipart")


class JsonFormatter(logging.Formatter):
    """Render a record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        context = getattr(record, "context", None)
        if context:
            payload["context"] = context
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def build_logging_config(log_file: Path, level: str = "INFO") -> Dict[str, Any]:
    """Return the dictConfig mapping for ``log_file`` at ``level``."""

    log_file.parent.mkdir(parents=True, exist_ok=True)
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": JsonFormatter, "datefmt": "%Y-%m-%dT%H:%M:%S%z"},
            "console": {"format": "%(levelname)s %(name)s: %(message)s"},
        },
        "handlers": {
            "file": {
                "class": "logging.handlers.RotatingFileHandler",
                "formatter": "json",
                "filename": str(log_file),
                "maxBytes": LOG_MAX_BYTES,
                "backupCount": LOG_BACKUP_COUNT,
                "encoding": "utf-8",
            },
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "console",
                "level": level,
                "stream": "ext://sys.stderr",
            },
        },
        "loggers": {name: {"level": "WARNING"} for name in QUIET_LOGGERS},
        "root": {"handlers": ["file", "console"], "level": level},
    }


def configure_logging(log_file: Path, level: str = "INFO") -> None:
    logging.config.dictConfig(build_logging_config(log_file, level))
