"""
STP Token model.

A token is ``{metadata, transaction, signatures}``. The vendor signature
covers the canonical form of ``{metadata, transaction}``; the provider
signature covers ``{metadata, transaction, signatures: {vendor,
vendor_key, signed_at}}``. All classes are immutable; revisions always
build new instances.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Union

from .canonicalization import canonicalize, decode_canonical
from .hashing import content_hash
from .util import is_canonical_amount, parse_rfc3339, validate_currency

TOKEN_VERSION = 1

PERIODS = ("monthly", "quarterly", "annual")


def _require(d: Dict[str, Any], key: str, expected_type, nullable: bool = False) -> Any:
    if not isinstance(d, dict):
        raise ValueError(f"expected object holding '{key}'")
    if key not in d:
        raise ValueError(f"missing field: {key}")
    value = d[key]
    if value is None and nullable:
        return None
    if isinstance(value, bool) and expected_type is not bool:
        raise ValueError(f"field {key} has wrong type")
    if not isinstance(value, expected_type):
        raise ValueError(f"field {key} has wrong type")
    return value


def _check_timestamp(name: str, value: str) -> None:
    try:
        parse_rfc3339(value)
    except ValueError:
        raise ValueError(f"{name} is not an RFC3339 UTC timestamp: {value!r}")


@dataclass(frozen=True)
class Metadata:
    """Version and algorithm identifiers."""
    version: int = TOKEN_VERSION
    alg: str = "sha512"
    enc: str = "sha512,aes256-cbc"
    sig: str = "ed25519"

    def to_dict(self) -> Dict[str, Any]:
        return {"version": self.version, "alg": self.alg, "enc": self.enc, "sig": self.sig}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'Metadata':
        return cls(
            version=_require(d, "version", int),
            alg=_require(d, "alg", str),
            enc=_require(d, "enc", str),
            sig=_require(d, "sig", str),
        )


@dataclass(frozen=True)
class Recurrence:
    """Recurring schedule of a transaction."""
    period: str
    next_occurrence: str
    cycle_index: int = 0

    def __post_init__(self):
        if self.period not in PERIODS:
            raise ValueError(f"unknown recurrence period: {self.period!r}")
        _check_timestamp("next_occurrence", self.next_occurrence)
        if isinstance(self.cycle_index, bool) or not isinstance(self.cycle_index, int) or self.cycle_index < 0:
            raise ValueError("cycle_index must be a non-negative integer")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period": self.period,
            "next_occurrence": self.next_occurrence,
            "cycle_index": self.cycle_index,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'Recurrence':
        return cls(
            period=_require(d, "period", str),
            next_occurrence=_require(d, "next_occurrence", str),
            cycle_index=_require(d, "cycle_index", int),
        )


@dataclass(frozen=True)
class TransactionRecord:
    """
    The payment authorization terms.

    ``amount`` is kept as its canonical decimal string so that the signed
    bytes never depend on float formatting.
    """
    id: str
    provider_bic: str
    amount: str
    currency: str
    created_at: str
    expiry: str
    customer_ref: str
    recurring: Optional[Recurrence] = None

    def __post_init__(self):
        if not self.id:
            raise ValueError("transaction id is required")
        if not is_canonical_amount(self.amount):
            raise ValueError(f"amount is not a canonical decimal string: {self.amount!r}")
        validate_currency(self.currency)
        _check_timestamp("created_at", self.created_at)
        _check_timestamp("expiry", self.expiry)

    @property
    def is_recurring(self) -> bool:
        return self.recurring is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "provider_bic": self.provider_bic,
            "amount": self.amount,
            "currency": self.currency,
            "created_at": self.created_at,
            "expiry": self.expiry,
            "customer_ref": self.customer_ref,
            "recurring": self.recurring.to_dict() if self.recurring else None,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'TransactionRecord':
        recurring = _require(d, "recurring", dict, nullable=True)
        return cls(
            id=_require(d, "id", str),
            provider_bic=_require(d, "provider_bic", str),
            amount=_require(d, "amount", str),
            currency=_require(d, "currency", str),
            created_at=_require(d, "created_at", str),
            expiry=_require(d, "expiry", str),
            customer_ref=_require(d, "customer_ref", str),
            recurring=Recurrence.from_dict(recurring) if recurring is not None else None,
        )


@dataclass(frozen=True)
class Signatures:
    """Vendor layer (always present) and provider layer (once counter-signed)."""
    vendor: str
    vendor_key: str
    provider: Optional[str] = None
    provider_key: Optional[str] = None
    signed_at: Optional[str] = None

    def vendor_layer(self) -> Dict[str, Any]:
        """The signature fields covered by the provider signature."""
        return {"vendor": self.vendor, "vendor_key": self.vendor_key, "signed_at": self.signed_at}

    def to_dict(self) -> Dict[str, Any]:
        d = {"vendor": self.vendor, "vendor_key": self.vendor_key}
        for name in ("provider", "provider_key", "signed_at"):
            value = getattr(self, name)
            if value is not None:
                d[name] = value
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'Signatures':
        optional = {}
        for name in ("provider", "provider_key", "signed_at"):
            if name in d:
                optional[name] = _require(d, name, str, nullable=True)
        return cls(
            vendor=_require(d, "vendor", str),
            vendor_key=_require(d, "vendor_key", str),
            **optional,
        )


@dataclass(frozen=True)
class Token:
    """A transaction token with its signature layers."""
    transaction: TransactionRecord
    signatures: Signatures
    metadata: Metadata = field(default_factory=Metadata)

    @property
    def transaction_id(self) -> str:
        return self.transaction.id

    @property
    def is_recurring(self) -> bool:
        return self.transaction.is_recurring

    def has_provider_signature(self) -> bool:
        return self.signatures.provider is not None or self.signatures.provider_key is not None

    def vendor_payload(self) -> Dict[str, Any]:
        """What the vendor signs."""
        return {"metadata": self.metadata.to_dict(), "transaction": self.transaction.to_dict()}

    def provider_payload(self) -> Dict[str, Any]:
        """What the provider signs: everything but its own signature fields."""
        payload = self.vendor_payload()
        payload["signatures"] = self.signatures.vendor_layer()
        return payload

    def without_provider_signature(self) -> 'Token':
        return replace(self, signatures=Signatures(
            vendor=self.signatures.vendor,
            vendor_key=self.signatures.vendor_key,
        ))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metadata": self.metadata.to_dict(),
            "transaction": self.transaction.to_dict(),
            "signatures": self.signatures.to_dict(),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'Token':
        """
        Build a token from its dict form.

        Raises:
            ValueError: on missing fields, wrong types or invalid values
        """
        return cls(
            metadata=Metadata.from_dict(_require(d, "metadata", dict)),
            transaction=TransactionRecord.from_dict(_require(d, "transaction", dict)),
            signatures=Signatures.from_dict(_require(d, "signatures", dict)),
        )

    def encode(self) -> bytes:
        """Canonical bytes of the whole token."""
        return canonicalize(self.to_dict())

    @classmethod
    def decode(cls, data: Union[bytes, str]) -> 'Token':
        try:
            return cls.from_dict(decode_canonical(data))
        except (TypeError, UnicodeDecodeError) as e:
            raise ValueError(f"undecodable token: {e}")

    def fingerprint(self) -> str:
        """Content hash used in logs."""
        return content_hash(self.to_dict())
