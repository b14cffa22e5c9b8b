"""
STP (Secure Transaction Protocol) Reference Implementation

Version: 0.1.0

A Vendor (merchant) and a Provider (the customer's bank) negotiate a
dual-signed payment authorization token, then revoke, refresh or modify
it through authenticated revision exchanges.

Lifecycle per transaction id:
    REQUESTED -> OFFERED -> ISSUED -> {REVISION_PENDING -> ISSUED | REVOKED}

Usage:
    from stp import (
        KeyPair,
        ProviderProtocol,
        TransactionDraft,
        VendorProtocol,
    )

    vendor = VendorProtocol(vendor_keys, bank_public_key=provider_keys.public_key)
    provider = ProviderProtocol(provider_keys, trusted_vendor_key=vendor_keys.public_key)

    # Vendor drafts a transaction and hands the URL to the customer
    url = vendor.create_request(TransactionDraft(amount="10", currency="USD", recurring="monthly"))

    # Provider starts the negotiation; the customer approves with the PIN
    started = provider.start(url)
    pin = vendor.wait_for_pin(url.rsplit("/", 1)[1])
    provider.confirm(started.transaction_id, True, pin)

    # Later revisions
    vendor.revise(started.transaction_id, "REFRESH")
    provider.revise(started.transaction_id, "REVOKE")
"""

__version__ = "0.1.0"

# Canonicalization and hashing
from .canonicalization import canonicalize, canonicalize_str, decode_canonical
from .hashing import sha512_hash, content_hash, purpose_digest, verify_hash

# Keys and signatures
from .signing import KeyPair, sign_data, verify_signature
from .keys import load_party_keys, write_party_keys, load_trust_store, trusted_public_key, build_trust_store

# Token model
from .token import (
    Metadata,
    Recurrence,
    Signatures,
    Token,
    TransactionRecord,
    PERIODS,
)
from .recurrence import RecurrenceScheduler, add_months, apply_period
from .builder import TokenBuilder
from .verifier import (
    verify_vendor_signature,
    verify_provider_signature,
    is_fully_issued,
    is_valid_refresh,
    is_valid_modification,
)

# Revision security
from .challenge import ChallengeAuthenticator
from .cipher import KeyMaterial, encrypt, decrypt, encrypt_token, decrypt_token, revision_key_digest

# Errors
from .errors import (
    ErrorCode,
    TransportFailure,
    StpError,
    ProtocolRejection,
    TransportError,
    MalformedMessage,
    UnknownExchange,
    TokenError,
    RevisionCipherError,
    TransactionBusy,
    ExchangeResult,
)

# Messages
from .models import (
    Hello,
    Offer,
    Confirm,
    Ack,
    Revise,
    Response,
    ErrorReply,
    RevisionVerb,
    ModificationStatus,
    TransactionDraft,
)

# State and parties
from .state import (
    NegotiationStateStore,
    VendorStateStore,
    ProviderStateStore,
    Negotiation,
    PendingModification,
)
from .transport import StpTransport
from .vendor import VendorProtocol
from .provider import ProviderProtocol

__all__ = [
    # Version
    "__version__",

    # Canonicalization and hashing
    "canonicalize",
    "canonicalize_str",
    "decode_canonical",
    "sha512_hash",
    "content_hash",
    "purpose_digest",
    "verify_hash",

    # Keys and signatures
    "KeyPair",
    "sign_data",
    "verify_signature",
    "load_party_keys",
    "write_party_keys",
    "load_trust_store",
    "trusted_public_key",
    "build_trust_store",

    # Token model
    "Metadata",
    "Recurrence",
    "Signatures",
    "Token",
    "TransactionRecord",
    "PERIODS",
    "RecurrenceScheduler",
    "add_months",
    "apply_period",
    "TokenBuilder",
    "verify_vendor_signature",
    "verify_provider_signature",
    "is_fully_issued",
    "is_valid_refresh",
    "is_valid_modification",

    # Revision security
    "ChallengeAuthenticator",
    "KeyMaterial",
    "encrypt",
    "decrypt",
    "encrypt_token",
    "decrypt_token",
    "revision_key_digest",

    # Errors
    "ErrorCode",
    "TransportFailure",
    "StpError",
    "ProtocolRejection",
    "TransportError",
    "MalformedMessage",
    "UnknownExchange",
    "TokenError",
    "RevisionCipherError",
    "TransactionBusy",
    "ExchangeResult",

    # Messages
    "Hello",
    "Offer",
    "Confirm",
    "Ack",
    "Revise",
    "Response",
    "ErrorReply",
    "RevisionVerb",
    "ModificationStatus",
    "TransactionDraft",

    # State and parties
    "NegotiationStateStore",
    "VendorStateStore",
    "ProviderStateStore",
    "Negotiation",
    "PendingModification",
    "StpTransport",
    "VendorProtocol",
    "ProviderProtocol",
]
