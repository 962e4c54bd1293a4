"""JSON logging for the API process, the scheduler and the operator scripts."""
from __future__ import annotations

import logging
from typing import Any, Optional

from pythonjsonlogger import jsonlogger

SERVICE_NAME = "lockerpay-reconciliation"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

# Libraries that log every request at INFO.
_CHATTY_LOGGERS = ("httpx", "httpcore", "apscheduler.executors.default")


class ServiceJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter stamping every record with the service name and environment."""

    def __init__(self, *args: Any, static_fields: dict[str, Any] | None = None, **kwargs: Any) -> None:
        kwargs.setdefault("rename_fields", {"levelname": "level", "asctime": "timestamp"})
        super().__init__(*args, **kwargs)
        self._static_fields = dict(static_fields or {})

    def add_fields(self, log_record: dict[str, Any], record: logging.LogRecord, message_dict: dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        for key, value in self._static_fields.items():
            log_record.setdefault(key, value)


def setup_logging(level: str = "INFO", *, env: str | None = None) -> None:
    """Route the root logger to a single JSON stream handler."""

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    root_logger.setLevel(level.upper())

    static_fields: dict[str, Any] = {"service": SERVICE_NAME}
    if env:
        static_fields["env"] = env
    handler = logging.StreamHandler()
    handler.setFormatter(ServiceJsonFormatter(LOG_FORMAT, static_fields=static_fields))
    root_logger.addHandler(handler)

    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(level.upper())
    return logger


__all__ = ["ServiceJsonFormatter", "get_logger", "setup_logging"]
