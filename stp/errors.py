"""
STP error taxonomy.

Three categories reach callers:

- transport errors: the counterparty could not be reached, timed out or
  answered with a non-2xx status (``TransportError``)
- protocol rejections: an explicit ``success: false`` with a machine
  readable code (``ProtocolRejection``)
- local validation failures: malformed or unknown inbound requests,
  answered with a generic bad-request (``MalformedMessage``)

Nothing in this package retries. Every failure ends the current exchange.
"""

import functools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Protocol-level error codes carried in ``error_code``."""
    USER_DECLINED = "USER_DECLINED"
    INCORRECT_PIN = "INCORRECT_PIN"
    INCORRECT_SIGNATURE = "INCORRECT_SIGNATURE"
    ID_NOT_FOUND = "ID_NOT_FOUND"
    INCORRECT_TOKEN = "INCORRECT_TOKEN"
    INCORRECT_TOKEN_SIGN = "INCORRECT_TOKEN_SIGN"
    AUTH_FAILED = "AUTH_FAILED"
    UNKNOWN_REVISION_VERB = "UNKNOWN_REVISION_VERB"
    NON_RECURRING = "NON_RECURRING"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    TOKEN_NOT_FOUND = "TOKEN_NOT_FOUND"
    REVISION_IN_PROGRESS = "REVISION_IN_PROGRESS"
    MALFORMED_MESSAGE = "MALFORMED_MESSAGE"


class TransportFailure(str, Enum):
    """Transport error codes used when there is no HTTP status to report."""
    TIMEOUT = "TIMEOUT"
    CONNECTION_FAILED = "CONNECTION_FAILED"


class StpError(Exception):
    """Base class for all STP errors."""


class ProtocolRejection(StpError):
    """An explicit, terminal protocol-level rejection."""

    def __init__(self, code: Union[ErrorCode, str], message: str):
        self.code = code.value if isinstance(code, ErrorCode) else code
        self.message = message
        super().__init__(f"{self.code}: {message}")

    def to_reply(self) -> Dict[str, Any]:
        return {"success": False, "error_code": self.code, "error_message": self.message}


class TransportError(StpError):
    """The counterparty was unreachable or answered with a non-2xx status."""

    def __init__(self, status: Union[int, str], message: str):
        self.status = status.value if isinstance(status, TransportFailure) else status
        self.message = message
        super().__init__(f"HTTP {self.status}: {message}")

    def is_timeout(self) -> bool:
        return self.status == TransportFailure.TIMEOUT.value


class MalformedMessage(StpError):
    """An inbound message is missing fields or has the wrong shape."""


class UnknownExchange(MalformedMessage):
    """An inbound message refers to a URL id with no ongoing exchange."""


class TokenError(StpError):
    """A token operation violated builder policy (e.g. double counter-signing)."""


class RevisionCipherError(StpError):
    """Revision payload could not be decrypted into a token."""


class TransactionBusy(StpError):
    """Another exchange for the same transaction id is in flight."""

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Exchange already in progress for {transaction_id}")


@dataclass
class ExchangeResult:
    """
    Outcome of an exchange initiated by this party.

    ``error_code`` is None on success. Transport failures keep the HTTP
    status (or a ``TransportFailure`` code) in ``error_code`` and set
    ``transport`` so callers can tell them from protocol rejections.
    """
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    transport: bool = False
    transaction_id: Optional[str] = None
    payload: Any = None

    def ok(self) -> bool:
        return self.error_code is None

    def is_transport_error(self) -> bool:
        return self.transport

    @classmethod
    def success(cls, transaction_id: Optional[str] = None, payload: Any = None) -> 'ExchangeResult':
        return cls(transaction_id=transaction_id, payload=payload)

    @classmethod
    def failure(cls, code: Union[ErrorCode, str], message: str,
                transaction_id: Optional[str] = None) -> 'ExchangeResult':
        code = code.value if isinstance(code, ErrorCode) else code
        return cls(error_code=code, error_message=message, transaction_id=transaction_id)

    @classmethod
    def from_rejection(cls, rejection: ProtocolRejection,
                       transaction_id: Optional[str] = None) -> 'ExchangeResult':
        return cls.failure(rejection.code, rejection.message, transaction_id)

    @classmethod
    def from_transport_error(cls, err: TransportError,
                             transaction_id: Optional[str] = None) -> 'ExchangeResult':
        return cls(error_code=str(err.status), error_message=err.message,
                   transport=True, transaction_id=transaction_id)

    def to_dict(self) -> Dict[str, Any]:
        if self.ok():
            d: Dict[str, Any] = {"success": True}
            if self.transaction_id:
                d["transaction_id"] = self.transaction_id
            return d
        if self.transport:
            return {"success": False, "HTTP_error_code": self.error_code, "HTTP_error_msg": self.error_message}
        return {"success": False, "error_code": self.error_code, "error_message": self.error_message}


def replies_on_rejection(handler):
    """
    Turn a ``ProtocolRejection`` raised by an inbound handler into the
    ``success: false`` reply body. Other exceptions propagate.
    """
    @functools.wraps(handler)
    def wrapper(self, *args, **kwargs):
        try:
            return handler(self, *args, **kwargs)
        except ProtocolRejection as rejection:
            self.audit.protocol_rejection(handler.__name__, rejection.code, rejection.message)
            return rejection.to_reply()
    return wrapper
