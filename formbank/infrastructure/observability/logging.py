"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict
from pythonjsonlogger import jsonlogger

from formbank.config import settings


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

    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_transfer(
    request_id: str,
    from_id: int,
    to_id: int,
    amount: int,
    outcome: str,
    duration_ms: float,
    message: str = "",
) -> None:
    """Log a wallet rail call; the secret is never included"""
    level = logging.INFO if outcome == "success" else logging.WARNING
    logging.log(
        level,
        "Transfer completed" if outcome == "success" else "Transfer not completed",
        extra={
            "request_id": request_id,
            "step": "transfer",
            "from_id": from_id,
            "to_id": to_id,
            "amount": amount,
            "outcome": outcome,
            "gateway_message": message,
            "duration_ms": duration_ms,
        },
    )


def log_compensation(workflow: str, step: str, outcome: str, error: str = "") -> None:
    """Log a local corrective write after a failed step"""
    logging.log(
        logging.WARNING if outcome == "applied" else logging.ERROR,
        "Compensation applied" if outcome == "applied" else "Compensation failed",
        extra={"workflow": workflow, "step": step, "outcome": outcome, "error": error},
    )


def log_reconciliation_required(workflow: str, detail: str, **context: Any) -> None:
    """Local and external state may disagree; an operator has to check by hand"""
    logging.error(
        "Manual reconciliation required",
        extra={"workflow": workflow, "detail": detail, "step": "reconciliation", **context},
    )
