"""Logging setup shared by the CLI and the web app.

Engine modules log through ``get_logger(__name__)`` and never install
handlers themselves. Records about one loan pass ``extra={"loan_id": ...}``;
the JSON formatter lifts such context into top-level fields so a log stream
can be filtered per loan.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

STANDARD_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
CONTEXT_FIELDS = ("loan_id",)
QUIET_LIBRARIES = ("sqlalchemy", "werkzeug")


def setup_logging(
    level: str = "INFO",
    format_type: str = "standard",
) -> None:
    """Send log records to stderr as text lines or JSON objects.

    Parameters
    ----------
    level : str
        Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL). Unknown names
        fall back to INFO.
    format_type : str
        "standard" or "json".
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if format_type == "json":
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(fmt=STANDARD_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    # stdout carries schedules and exports
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(log_level)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    for name in ("loan_engine", "loan_engine_web"):
        logging.getLogger(name).setLevel(log_level)
    for name in QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)


class JsonFormatter(logging.Formatter):
    """One JSON object per record, with loan context as top-level fields."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_data[name] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
