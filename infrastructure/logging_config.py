from __future__ import annotations

import logging
import sys
from typing import Any, Dict

from pythonjsonlogger import jsonlogger

SERVICE_NAME = "poker-ledger"
TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class ServiceJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that stamps every record with level, logger and service."""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["service"] = SERVICE_NAME


def configure_logging(level: str = "INFO", fmt: str = "text") -> logging.Handler:
    """
    Install a single stream handler on the root logger.

    Calling this again replaces the previously installed handler rather than
    stacking a second one. Returns the handler so callers can detach it.
    """

    handler = logging.StreamHandler(sys.stdout)
    if fmt == "json":
        handler.setFormatter(ServiceJsonFormatter("%(asctime)s %(message)s"))
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    root_logger = logging.getLogger()
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    # psycopg2 is quiet, but the pool logs connection churn at DEBUG.
    logging.getLogger("psycopg2").setLevel(logging.WARNING)
    return handler
