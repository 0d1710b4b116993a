"""
Structured JSON logging for nounish-ingest

Every record is emitted as one JSON object on stdout via python-json-logger.
Records logged while a scheduler job runs carry that job's name, so the
interleaved output of concurrent discovery passes can be told apart.
"""
import logging
import os
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar

from pythonjsonlogger import jsonlogger

LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

SERVICE_NAME = "nounish-ingest"

JSON_FIELDS = "%(timestamp)s %(level)s %(logger)s %(function)s %(message)s"
TEXT_FORMAT = "%(asctime)s [%(threadName)s] %(levelname)-8s %(name)s: %(message)s"

_current_job: ContextVar[str | None] = ContextVar("current_job", default=None)
_configured_loggers: set[str] = set()


def _resolve_level(level: str | None) -> int:
    return LOG_LEVELS.get((level or os.getenv("LOG_LEVEL", "INFO")).upper(), logging.INFO)


@contextmanager
def job_context(job_name: str):
    """Tag every record logged inside the block with the job name."""
    token = _current_job.set(job_name)
    try:
        yield
    finally:
        _current_job.reset(token)


class PipelineJsonFormatter(jsonlogger.JsonFormatter):
    """Adds service, level, source location, thread and running job to each record"""

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)

        if not log_record.get("timestamp"):
            log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["level"] = record.levelname
        log_record["service"] = SERVICE_NAME
        log_record["logger"] = record.name
        log_record["function"] = record.funcName
        log_record["thread_name"] = record.threadName

        job = _current_job.get()
        if job is not None and "job" not in log_record:
            log_record["job"] = job


def setup_logger(name: str = SERVICE_NAME, level: str | None = None, format_type: str | None = None) -> logging.Logger:
    """
    Attach a stdout handler to a logger, replacing any it already has

    Args:
        name: Logger name
        level: Level name (defaults to env var LOG_LEVEL, then INFO)
        format_type: "json" or "text" (defaults to env var LOG_FORMAT, then json)

    Returns:
        The configured logger
    """
    log_level = _resolve_level(level)
    if (format_type or os.getenv("LOG_FORMAT", "json")) == "json":
        formatter: logging.Formatter = PipelineJsonFormatter(fmt=JSON_FIELDS, datefmt="%Y-%m-%dT%H:%M:%S")
    else:
        formatter = logging.Formatter(fmt=TEXT_FORMAT)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(formatter)

    logger = logging.getLogger(name)
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(log_level)
    logger.propagate = False

    _configured_loggers.add(name)
    return logger


def set_log_level(level: str) -> None:
    """Apply a level to every logger configured so far."""
    log_level = _resolve_level(level)
    for name in _configured_loggers:
        logger = logging.getLogger(name)
        logger.setLevel(log_level)
        for handler in logger.handlers:
            handler.setLevel(log_level)


def get_logger(name: str = SERVICE_NAME) -> logging.Logger:
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    return setup_logger(name)


class log_operation:
    """
    Log the start, outcome and duration of a block

    Usage:
        with log_operation("Processing source file", logger=logger, key=key):
            loader.load(key, ingestion_type)

    Exceptions are logged and re-raised.
    """

    def __init__(self, operation_name: str, logger: logging.Logger | None = None, **fields):
        self.operation_name = operation_name
        self.logger = logger or get_logger()
        self.fields = {"operation": operation_name, **fields}
        self.started = 0.0

    def __enter__(self):
        self.started = time.monotonic()
        self.logger.info(f"Starting: {self.operation_name}", extra=self.fields)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        extra = {**self.fields, "duration_seconds": round(time.monotonic() - self.started, 3)}
        if exc_type is None:
            self.logger.info(f"Completed: {self.operation_name}", extra={**extra, "status": "success"})
        else:
            self.logger.error(
                f"Failed: {self.operation_name}: {exc_val}",
                extra={**extra, "status": "error", "error_type": exc_type.__name__},
                exc_info=(exc_type, exc_val, exc_tb),
            )
        return False
