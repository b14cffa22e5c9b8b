"""
Logging configuration for STP.

Provides structured JSON logging for protocol audit trails and debugging.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Optional

# Context variable for exchange ID tracking
exchange_id_var: ContextVar[str] = ContextVar('exchange_id', default='')


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs logs in a consistent JSON format suitable for
    log aggregation systems.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        exchange_id = exchange_id_var.get()
        if exchange_id:
            log_data["exchange_id"] = exchange_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_fields'):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class ProtocolAuditLogger:
    """
    Specialized logger for protocol events.

    One method per event so that every party logs negotiations,
    revisions and rejections with the same field names.
    """

    def __init__(self, party: str, name: str = "stp.audit"):
        self.party = party
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, **kwargs) -> None:
        """Internal logging method with extra fields."""
        if not self._logger.isEnabledFor(level):
            return
        extra = {
            "event_type": event_type,
            "party": self.party,
            "exchange_id": exchange_id_var.get(),
            **kwargs
        }

        record = self._logger.makeRecord(
            self._logger.name,
            level,
            "",
            0,
            f"{event_type}: {kwargs.get('message', '')}",
            (),
            None
        )
        record.extra_fields = extra
        self._logger.handle(record)

    def message_received(self, message_type: str, url_id: str = "", transaction_id: str = "") -> None:
        self._log(
            logging.INFO,
            "MESSAGE_RECEIVED",
            message_type=message_type,
            url_id=url_id,
            transaction_id=transaction_id,
            message=f"{message_type} received"
        )

    def message_sent(self, message_type: str, url: str, transaction_id: str = "") -> None:
        self._log(
            logging.INFO,
            "MESSAGE_SENT",
            message_type=message_type,
            url=url,
            transaction_id=transaction_id,
            message=f"{message_type} sent to {url}"
        )

    def token_issued(self, transaction_id: str, token_hash: str, recurring: bool) -> None:
        self._log(
            logging.INFO,
            "TOKEN_ISSUED",
            transaction_id=transaction_id,
            token_hash=token_hash,
            recurring=recurring,
            message=f"Token issued for {transaction_id}"
        )

    def revision_applied(self, transaction_id: str, verb: str, status: Optional[str] = None) -> None:
        self._log(
            logging.INFO,
            "REVISION_APPLIED",
            transaction_id=transaction_id,
            revision_verb=verb,
            modification_status=status,
            message=f"{verb} applied to {transaction_id}"
        )

    def protocol_rejection(self, step: str, error_code: str, error_message: str) -> None:
        self._log(
            logging.WARNING,
            "PROTOCOL_REJECTION",
            step=step,
            error_code=error_code,
            error_message=error_message,
            message=f"{step} rejected: {error_code}"
        )

    def transport_failure(self, url: str, status: str, detail: str) -> None:
        self._log(
            logging.ERROR,
            "TRANSPORT_FAILURE",
            url=url,
            status=status,
            detail=detail,
            message=f"Transport failure talking to {url}: {status}"
        )

    def security_event(
        self,
        event: str,
        severity: str = "medium",
        **details
    ) -> None:
        """Log a security-relevant event (bad signature, failed challenge, replay)."""
        level = {
            "low": logging.INFO,
            "medium": logging.WARNING,
            "high": logging.ERROR,
            "critical": logging.CRITICAL
        }.get(severity, logging.WARNING)

        self._log(
            level,
            "SECURITY_EVENT",
            security_event=event,
            severity=severity,
            **details,
            message=f"Security event: {event}"
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting (recommended for production)
        log_file: Optional file path for log output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def set_exchange_id(exchange_id: Optional[str] = None) -> str:
    """
    Set the exchange ID for the current context.

    Args:
        exchange_id: Exchange ID to set, or None to generate one

    Returns:
        The exchange ID that was set
    """
    if exchange_id is None:
        exchange_id = str(uuid.uuid4())
    exchange_id_var.set(exchange_id)
    return exchange_id


def get_exchange_id() -> str:
    """Get the current exchange ID."""
    return exchange_id_var.get()
