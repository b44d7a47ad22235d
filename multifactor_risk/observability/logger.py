"""
Structured JSON logging for the multi-factor risk service

Every module obtains its logger through get_logger(__name__) so refresh
cycles, HTTP requests and cron runs all emit the same JSON shape.
"""
import logging
import os
import sys
import time

from pythonjsonlogger import jsonlogger

SERVICE_LOGGER_NAME = "multifactor-risk"

JSON_FIELDS = "%(timestamp)s %(level)s %(logger)s %(module)s %(function)s %(message)s"
TEXT_FIELDS = "%(asctime)s - %(name)s - %(levelname)s - %(threadName)s - %(message)s"


class ServiceJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter that stamps every entry with service context

    Adds: timestamp, level, logger, module, function and thread name
    (refreshes may run on a Flask worker or a scheduler thread).
    """

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = log_record.get("timestamp") or self.formatTime(record, self.datefmt)
        log_record["level"] = (log_record.get("level") or record.levelname).upper()
        log_record.update(
            logger=record.name,
            service=SERVICE_LOGGER_NAME,
            module=record.module,
            function=record.funcName,
            thread=record.threadName,
        )


def _resolve_level(level: str | None) -> int:
    name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO


def _build_formatter(format_type: str) -> logging.Formatter:
    if format_type == "json":
        return ServiceJsonFormatter(fmt=JSON_FIELDS, datefmt="%Y-%m-%dT%H:%M:%S")
    return logging.Formatter(fmt=TEXT_FIELDS, datefmt="%Y-%m-%d %H:%M:%S")


def setup_logger(
    name: str = SERVICE_LOGGER_NAME,
    level: str | None = None,
    format_type: str | None = None,
) -> logging.Logger:
    """
    Configure a logger with a single stdout handler

    Args:
        name: Logger name
        level: Log level name (falls back to LOG_LEVEL, then INFO)
        format_type: "json" or "text" (falls back to LOG_FORMAT, then json)

    Returns:
        The configured logger; it does not propagate to the root logger
    """
    log_level = _resolve_level(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(_build_formatter(format_type or os.getenv("LOG_FORMAT", "json")))

    logger = logging.getLogger(name)
    logger.setLevel(log_level)
    logger.handlers = [handler]
    logger.propagate = False
    return logger


def get_logger(name: str = SERVICE_LOGGER_NAME) -> logging.Logger:
    """Get a logger, configuring it on first use"""
    logger = logging.getLogger(name)
    return logger if logger.handlers else setup_logger(name)


class log_operation:
    """
    Context manager that logs the start, end and duration of an operation

    Usage:
        with log_operation("Refreshing risk assessments", logger=logger, trigger="cron"):
            orchestrator.refresh()
    """

    def __init__(self, operation_name: str, logger: logging.Logger | None = None, **extra_fields):
        self.operation_name = operation_name
        self.logger = logger or get_logger()
        self.fields = {"operation": operation_name, **extra_fields}
        self.started: float | None = None

    def __enter__(self):
        self.started = time.monotonic()
        self.logger.info(f"Starting: {self.operation_name}", extra=self.fields)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        fields = {**self.fields, "duration_seconds": round(time.monotonic() - self.started, 3)}

        if exc_type is None:
            self.logger.info(f"Completed: {self.operation_name}", extra={**fields, "status": "success"})
        else:
            fields.update(status="error", error_type=exc_type.__name__, error_message=str(exc_val))
            self.logger.error(f"Failed: {self.operation_name}", extra=fields)
        return False
