"""Logging configuration for device-session.

Standard library logging with two formatters: a human-readable one that
appends ``extra`` fields as ``key=value`` pairs, and a JSON one for machine
consumption. Connection, channel and command events are emitted through
:mod:`device_session.audit` with structured ``extra`` fields.
"""

import json
import logging
import logging.handlers

from pathlib import Path

from device_session.config import CONFIG


TEXT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Attributes every LogRecord carries; anything else was passed through `extra`
RECORD_ATTRIBUTES = frozenset(logging.LogRecord("", logging.NOTSET, "", 0, "", (), None).__dict__) | {
    "message",
    "asctime",
}


def get_log_directory() -> Path:
    """Get the log directory path, creating it if necessary."""
    log_dir = CONFIG.log_dir or Path.home() / ".local" / "state" / "device-session" / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def get_log_level() -> int:
    return getattr(logging, CONFIG.log_level, logging.INFO)


def extra_fields(record: logging.LogRecord) -> dict[str, object]:
    """Return the fields added to a record through ``extra``."""
    return {key: value for key, value in record.__dict__.items() if key not in RECORD_ATTRIBUTES}


class StructuredFormatter(logging.Formatter):
    """
    Structured log formatter supporting extra fields.

    Format: TIMESTAMP | LEVEL | LOGGER | MESSAGE | key=value ...
    """

    def format(self, record: logging.LogRecord) -> str:
        base_msg = super().format(record)
        fields = [f"{key}={value}" for key, value in extra_fields(record).items()]

        return f"{base_msg} | {' | '.join(fields)}" if fields else base_msg


class JSONFormatter(logging.Formatter):
    """JSON log formatter for machine-readable logs."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in extra_fields(record).items():
            log_data.setdefault(key, value)

        return json.dumps(log_data, default=str)


def _rotating_handler(path: Path, formatter: logging.Formatter, level: int) -> logging.Handler:
    handler = logging.handlers.TimedRotatingFileHandler(
        filename=path,
        when="midnight",
        interval=1,
        backupCount=CONFIG.log_retention_days,
        encoding="utf-8",
    )
    handler.suffix = "%Y-%m-%d"
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging():
    """Set up logging with structured formatters and daily rotation."""
    log_dir = get_log_directory()
    log_level = get_log_level()
    text_formatter = StructuredFormatter(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    root_logger.addHandler(_rotating_handler(log_dir / "session.log", text_formatter, log_level))
    root_logger.addHandler(
        _rotating_handler(log_dir / "session.json", JSONFormatter(datefmt="%Y-%m-%dT%H:%M:%S"), log_level)
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(text_formatter)
    root_logger.addHandler(console_handler)

    root_logger.info(f"Logging initialized: {log_dir}")
