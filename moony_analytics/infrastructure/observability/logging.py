"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

from moony_analytics.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_pipeline_outcome(
    user_id: str,
    succeeded: bool,
    attempts: int,
    trigger: str,
    final_error: Optional[str] = None,
    error_class: Optional[str] = None,
) -> None:
    """Log the terminal record of a statistics run for alerting"""
    extra = {
        "user_id": user_id,
        "step": "statistics_complete",
        "outcome": "succeeded" if succeeded else "failed",
        "attempts": attempts,
        "trigger": trigger,
    }
    if succeeded:
        logging.info("Statistics run completed", extra=extra)
    else:
        extra.update({"final_error": final_error, "error_class": error_class})
        logging.error("Statistics run failed permanently", extra=extra)
