"""
Structured Logging Configuration

Provides JSON-formatted logging with:
- Request ID tracking
- Sync context (property, listing, direction)
- Duration metrics for sync passes
"""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Optional, Any, Dict
from contextlib import contextmanager
from contextvars import ContextVar

# Context variables for request tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')
organization_id_var: ContextVar[str] = ContextVar('organization_id', default='')


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for log aggregators.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        organization_id = organization_id_var.get()
        if organization_id:
            log_data["organization_id"] = organization_id

        log_data["module"] = record.module
        log_data["function"] = record.funcName
        log_data["line"] = record.lineno

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_data'):
            log_data["data"] = record.extra_data

        if hasattr(record, 'duration_ms'):
            log_data["duration_ms"] = record.duration_ms

        if hasattr(record, 'property_id'):
            log_data["property_id"] = record.property_id
        if hasattr(record, 'direction'):
            log_data["direction"] = record.direction

        return json.dumps(log_data, ensure_ascii=False, default=str)


class StructuredLogger(logging.LoggerAdapter):
    """
    Logger adapter that adds structured sync context to log messages.
    """

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = kwargs.get('extra', {})
        extra.update(self.extra)
        kwargs['extra'] = extra
        return msg, kwargs

    def log_with_context(
        self,
        level: int,
        msg: str,
        property_id: Optional[str] = None,
        direction: Optional[str] = None,
        duration_ms: Optional[float] = None,
        **extra_data
    ):
        extra = {}
        if property_id:
            extra['property_id'] = property_id
        if direction:
            extra['direction'] = direction
        if duration_ms is not None:
            extra['duration_ms'] = duration_ms
        if extra_data:
            extra['extra_data'] = extra_data

        self.log(level, msg, extra=extra)

    def sync_completed(
        self,
        property_id: str,
        days_processed: int,
        days_blocked: int,
        days_freed: int,
        error_count: int,
        duration_ms: float = None,
    ):
        """Log the tallies of one reconciliation pass."""
        level = logging.WARNING if error_count else logging.INFO
        self.log_with_context(
            level,
            f"Sync completed: {days_processed} processed, {days_blocked} blocked, "
            f"{days_freed} freed, {error_count} errors",
            property_id=property_id,
            direction="inbound",
            duration_ms=duration_ms,
            days_processed=days_processed,
            days_blocked=days_blocked,
            days_freed=days_freed,
            error_count=error_count,
        )

    def reservation_published(self, reservation_id: str, property_id: str, external_reservation_id: str):
        """Log a successful outbound publish."""
        self.log_with_context(
            logging.INFO,
            f"Reservation {reservation_id} published as {external_reservation_id}",
            property_id=property_id,
            direction="outbound",
            reservation_id=reservation_id,
            external_reservation_id=external_reservation_id,
        )

    def api_request(self, method: str, path: str, status_code: int, duration_ms: float):
        self.log_with_context(
            logging.INFO,
            f"{method} {path} - {status_code}",
            duration_ms=duration_ms,
            method=method,
            path=path,
            status_code=status_code
        )


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    include_uvicorn: bool = True
) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: Use JSON format (True for production)
        include_uvicorn: Also configure uvicorn loggers
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)

    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    logging.getLogger("staysync").setLevel(log_level)

    if include_uvicorn:
        for logger_name in ["uvicorn", "uvicorn.access", "uvicorn.error"]:
            uvicorn_logger = logging.getLogger(logger_name)
            uvicorn_logger.handlers = [handler]

    # Reduce noise from third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger for the given module."""
    return StructuredLogger(logging.getLogger(name), {})


def set_request_context(request_id: str, organization_id: Optional[str] = None):
    request_id_var.set(request_id)
    if organization_id:
        organization_id_var.set(organization_id)


def clear_request_context():
    request_id_var.set('')
    organization_id_var.set('')


@contextmanager
def organization_context(organization_id: Optional[str]):
    """Tag log records emitted inside the block with organization_id."""
    token = organization_id_var.set(organization_id or '')
    try:
        yield
    finally:
        organization_id_var.reset(token)
