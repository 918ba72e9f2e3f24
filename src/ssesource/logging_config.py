"""Structured logging via structlog with hourly rotating file output."""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import TimedRotatingFileHandler

import structlog


def setup_logging(log_dir: str = "logs", log_level: str = "INFO", console: bool = True) -> None:
    """Configure structlog with JSON lines to an hourly rotating file, plus stderr.

    stdout is left alone so callers can stream event output on it. Standard
    library loggers (httpx, httpcore) go through the same file and stderr.
    """
    os.makedirs(log_dir, exist_ok=True)

    log_path = os.path.join(log_dir, "ssesource.jsonl")

    file_handler = TimedRotatingFileHandler(
        filename=log_path,
        when="H",
        interval=1,
        backupCount=48,
        utc=True,
    )
    file_handler.setLevel(log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.addHandler(file_handler)
    if console:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setLevel(log_level)
        root_logger.addHandler(stderr_handler)

    log_file = open(log_path, "a")  # noqa: SIM115

    class _TeeWriter:
        """Write structured log lines to the log file and, optionally, stderr."""

        def write(self, message: str) -> None:
            log_file.write(message)
            log_file.flush()
            if console:
                sys.stderr.write(message)

        def flush(self) -> None:
            log_file.flush()
            if console:
                sys.stderr.flush()

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
        logger_factory=structlog.WriteLoggerFactory(file=_TeeWriter()),
        cache_logger_on_first_use=True,
    )
