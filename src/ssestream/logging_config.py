"""Structured logging via structlog, optionally tee'd to an hourly rotating file."""

from __future__ import annotations

import logging
import os
from logging.handlers import TimedRotatingFileHandler

import structlog

from .config import StreamConfig

# Handlers owned by the current setup; replaced on every setup_logging call.
_handlers: list[logging.Handler] = []


class _HandlerWriter:
    """File-like sink that passes each rendered log line to stdlib handlers.

    Writing through the handlers (rather than a separately opened file) keeps
    output on the live file across hourly rotations.
    """

    def __init__(self, handlers: list[logging.Handler]) -> None:
        self._handlers = handlers

    def write(self, message: str) -> None:
        message = message.rstrip("\n")
        if not message:
            return
        record = logging.makeLogRecord({"msg": message, "levelno": logging.INFO})
        for handler in self._handlers:
            handler.handle(record)

    def flush(self) -> None:
        for handler in self._handlers:
            handler.flush()


def _close_handlers() -> None:
    for handler in _handlers:
        handler.close()
    _handlers.clear()


def setup_logging(config: StreamConfig | None = None) -> str | None:
    """Configure structlog with JSON output to stderr, plus hourly rotating files.

    Level and log directory come from ``config`` (SSESTREAM_LOG_LEVEL,
    SSESTREAM_LOG_DIR). Calling it again replaces the previous setup.

    Returns the log file path, or None when logging to stderr only.
    """
    if config is None:
        config = StreamConfig()

    log_level = config.log_level.upper()
    log_path: str | None = None

    _close_handlers()
    formatter = logging.Formatter("%(message)s")

    stderr_handler = logging.StreamHandler()
    stderr_handler.setFormatter(formatter)
    _handlers.append(stderr_handler)

    if config.log_dir is not None:
        os.makedirs(config.log_dir, exist_ok=True)
        log_path = os.path.join(config.log_dir, "ssestream.jsonl")

        file_handler = TimedRotatingFileHandler(
            filename=log_path,
            when="H",
            interval=1,
            backupCount=168,  # 7 days of hourly logs
            utc=True,
        )
        file_handler.setFormatter(formatter)
        _handlers.append(file_handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(log_level)
        ),
        context_class=dict,
        logger_factory=structlog.WriteLoggerFactory(file=_HandlerWriter(list(_handlers))),
        # setup_logging may run again; cached loggers would keep the old sink.
        cache_logger_on_first_use=False,
    )
    return log_path
