"""
STP Token Builder

Creates transaction records and the two signature layers of a token.
A builder belongs to one party and signs with that party's key pair.
"""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Optional

from .canonicalization import canonicalize
from .errors import TokenError
from .recurrence import RecurrenceScheduler
from .signing import KeyPair
from .token import Signatures, Token, TransactionRecord
from .util import format_amount, now_utc, utc_rfc3339, validate_currency

logger = logging.getLogger(__name__)


class TokenBuilder:
    """
    Token construction for one party.

    Example:
        builder = TokenBuilder(vendor_keys)
        record = builder.new_transaction("tx-1", "STPEXPROV", "1", "USD", customer_ref="c")
        token = builder.issue_vendor_token(record)
    """

    def __init__(self, keypair: KeyPair, scheduler: Optional[RecurrenceScheduler] = None):
        self.keypair = keypair
        self.scheduler = scheduler or RecurrenceScheduler()

    def new_transaction(
        self,
        transaction_id: str,
        provider_bic: str,
        amount: Any,
        currency: str,
        customer_ref: str = "",
        period: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TransactionRecord:
        """Draft a transaction record created at ``now``."""
        created = now or now_utc()
        expiry, recurring = self.scheduler.initial(created, period)
        return TransactionRecord(
            id=transaction_id,
            provider_bic=provider_bic,
            amount=format_amount(amount),
            currency=validate_currency(currency),
            created_at=utc_rfc3339(created),
            expiry=expiry,
            customer_ref=customer_ref,
            recurring=recurring,
        )

    def issue_vendor_token(self, transaction: TransactionRecord) -> Token:
        """Sign ``{metadata, transaction}`` and return a vendor-only token."""
        unsigned = Token(transaction=transaction, signatures=Signatures(vendor="", vendor_key=""))
        signature = self.keypair.sign(canonicalize(unsigned.vendor_payload()))
        return replace(unsigned, signatures=Signatures(
            vendor=signature,
            vendor_key=self.keypair.public_key,
        ))

    def counter_sign(self, token: Token, signed_at: Optional[datetime] = None) -> Token:
        """
        Add the provider layer.

        Raises:
            TokenError: if the token already carries a provider signature
        """
        if token.has_provider_signature():
            raise TokenError(f"token {token.transaction_id} is already counter-signed")
        stamped = replace(token, signatures=Signatures(
            vendor=token.signatures.vendor,
            vendor_key=token.signatures.vendor_key,
            signed_at=utc_rfc3339(signed_at or now_utc()),
        ))
        signature = self.keypair.sign(canonicalize(stamped.provider_payload()))
        return replace(stamped, signatures=replace(
            stamped.signatures,
            provider=signature,
            provider_key=self.keypair.public_key,
        ))

    def refresh(self, token: Token) -> Token:
        """Next cycle of a recurring token, re-signed as a fresh vendor token."""
        if not token.is_recurring:
            raise TokenError(f"token {token.transaction_id} is not recurring")
        return self.issue_vendor_token(self.scheduler.advance(token.transaction))

    def modify(self, token: Token, amount: Any, currency: Optional[str] = None) -> Token:
        """Same transaction with new amount (and optionally currency), re-signed."""
        transaction = replace(
            token.transaction,
            amount=format_amount(amount),
            currency=validate_currency(currency) if currency else token.transaction.currency,
        )
        logger.debug("Modified %s: amount=%s currency=%s", token.transaction_id,
                     transaction.amount, transaction.currency)
        return self.issue_vendor_token(transaction)
