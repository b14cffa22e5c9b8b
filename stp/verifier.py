"""
STP Token Verification

Signature checks for both token layers and the equivalence rules a
counterparty applies to a proposed refresh or modification.

Verification never raises on bad input: any malformed signature, key or
token shape is reported as ``False``.
"""

from dataclasses import replace
from typing import Any, Optional

from .canonicalization import canonicalize
from .recurrence import RecurrenceScheduler
from .signing import verify_signature
from .token import Token
from .util import format_amount

_scheduler = RecurrenceScheduler()


def verify_vendor_signature(token: Token) -> bool:
    """Check ``signatures.vendor`` over ``{metadata, transaction}``."""
    sig = token.signatures
    return verify_signature(sig.vendor, canonicalize(token.vendor_payload()), sig.vendor_key)


def verify_provider_signature(token: Token) -> bool:
    """Check ``signatures.provider`` over everything but the provider fields."""
    sig = token.signatures
    if sig.provider is None or sig.provider_key is None:
        return False
    return verify_signature(sig.provider, canonicalize(token.provider_payload()), sig.provider_key)


def is_fully_issued(token: Token) -> bool:
    return verify_vendor_signature(token) and verify_provider_signature(token)


def is_valid_refresh(old: Token, new: Token) -> bool:
    """
    ``new`` is exactly one recurrence cycle after ``old``.

    Both must be recurring with the same period, ``cycle_index`` must grow
    by exactly one, ``expiry`` and ``next_occurrence`` must equal one
    period applied to the old values, and every other field must be
    identical.
    """
    old_rec, new_rec = old.transaction.recurring, new.transaction.recurring
    if old_rec is None or new_rec is None:
        return False
    if old_rec.period != new_rec.period:
        return False
    if new_rec.cycle_index != old_rec.cycle_index + 1:
        return False
    if old.metadata != new.metadata:
        return False
    try:
        expected = _scheduler.advance(old.transaction)
    except ValueError:
        return False
    return new.transaction == expected


def is_valid_modification(old: Token, new: Token, amount: Any, currency: Optional[str] = None) -> bool:
    """``new`` equals ``old`` with only amount (and optionally currency) substituted."""
    try:
        proposed_amount = format_amount(amount)
    except ValueError:
        return False
    if old.metadata != new.metadata:
        return False
    expected = replace(
        old.transaction,
        amount=proposed_amount,
        currency=currency or old.transaction.currency,
    )
    return new.transaction == expected
