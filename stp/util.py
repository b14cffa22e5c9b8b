"""
Utility functions for STP.

Encoding, time, URL and amount helpers shared by both parties.
"""

import base64
import hmac
import re
import secrets
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Union

RFC3339_FORMAT = '%Y-%m-%dT%H:%M:%SZ'

CURRENCY_PATTERN = re.compile(r'^[A-Z]{3}$')


def b64e(b: bytes) -> str:
    """Base64 encode bytes to string."""
    return base64.b64encode(b).decode('ascii')


def b64d(s: str) -> bytes:
    """Base64 decode string to bytes (strict)."""
    return base64.b64decode(s.encode('ascii'), validate=True)


def now_utc() -> datetime:
    """Current UTC time truncated to whole seconds."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def utc_rfc3339(moment: datetime) -> str:
    """Format an aware datetime as an RFC3339 UTC string."""
    return moment.astimezone(timezone.utc).strftime(RFC3339_FORMAT)


def parse_rfc3339(s: str) -> datetime:
    """Parse an RFC3339 UTC string produced by ``utc_rfc3339``."""
    return datetime.strptime(s, RFC3339_FORMAT).replace(tzinfo=timezone.utc)


def format_amount(value: Any) -> str:
    """
    Normalize a monetary amount to its canonical decimal string.

    ``1``, ``"1.00"`` and ``Decimal("1.0")`` all become ``"1"``;
    ``"2.50"`` becomes ``"2.5"``. Negative, non-finite and non-numeric
    amounts are rejected.
    """
    if isinstance(value, bool):
        raise ValueError("amount must be a number")
    if isinstance(value, float):
        value = repr(value)
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValueError(f"invalid amount: {value!r}")
    if not amount.is_finite() or amount < 0:
        raise ValueError(f"invalid amount: {value!r}")
    normalized = format(amount.normalize(), 'f')
    if '.' in normalized:
        normalized = normalized.rstrip('0').rstrip('.')
    return normalized or "0"


def is_canonical_amount(value: str) -> bool:
    """True if ``value`` is already in the form ``format_amount`` returns."""
    try:
        return format_amount(value) == value
    except ValueError:
        return False


def validate_currency(code: str) -> str:
    """Validate an ISO 4217 style currency code."""
    if not isinstance(code, str) or not CURRENCY_PATTERN.match(code):
        raise ValueError(f"invalid currency code: {code!r}")
    return code


def cut_id_from_url(url: str) -> str:
    """Return the trailing identifier of an STP URL (after the last ``/``)."""
    return url[url.rfind('/') + 1:]


def stp_to_http(url: str) -> str:
    """Map the ``stp://`` scheme onto plain HTTP."""
    if url.startswith('stp://'):
        return 'http://' + url[len('stp://'):]
    return url


def generate_pin() -> int:
    """Four-digit verification PIN shown to the end user."""
    return 1000 + secrets.randbelow(9000)


def random_b64(length: int = 30) -> str:
    """Random bytes as base64, used for opaque customer references and Hello randomness."""
    return b64e(secrets.token_bytes(length))


def constant_time_compare(a: Union[str, bytes], b: Union[str, bytes]) -> bool:
    """
    Compare two strings/bytes in constant time to prevent timing attacks.
    """
    if isinstance(a, str):
        a = a.encode('utf-8')
    if isinstance(b, str):
        b = b.encode('utf-8')
    return hmac.compare_digest(a, b)

