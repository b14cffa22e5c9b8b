"""
Wire and operator models.

One pydantic model per message variant. Required and optional fields are
explicit, so malformed bodies are rejected when parsed, before any
protocol logic runs.
"""

from enum import Enum
from typing import Any, Dict, Literal, Optional, Type, TypeVar, Union

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .errors import MalformedMessage, ProtocolRejection
from .util import format_amount, validate_currency

PROTOCOL_VERSION = "v1"


class RevisionVerb(str, Enum):
    REVOKE = "REVOKE"
    REFRESH = "REFRESH"
    MODIFY = "MODIFY"
    FINISH_MODIFICATION = "FINISH_MODIFICATION"


class ModificationStatus(str, Enum):
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    PENDING = "PENDING"


# ============================================================
# Protocol messages
# ============================================================

class Hello(BaseModel):
    """Provider -> Vendor: starts a negotiation on a request URL."""
    version: Literal["v1"] = PROTOCOL_VERSION
    bank_name: str
    bic: str
    random: str
    transaction_id: str = Field(min_length=1)
    customer: str = ""
    url_signature: str
    verification_pin: int


class VendorInfo(BaseModel):
    name: str
    logo_url: str = ""
    address: str = ""


class TransactionSummary(BaseModel):
    amount: str
    currency_code: str
    recurrance: Optional[str] = None


class Offer(BaseModel):
    """Vendor -> Provider: the vendor-signed token and where to confirm it."""
    success: Literal[True] = True
    confirmation_id: str
    response_url: str
    vendor: VendorInfo
    transaction: TransactionSummary
    token: Dict[str, Any]


class Confirm(BaseModel):
    """Provider -> Vendor: accept with the counter-signed token, or decline."""
    allowed: bool
    token: Optional[Dict[str, Any]] = None
    remediation_url: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    @model_validator(mode="after")
    def _accepted_needs_token(self):
        if self.allowed and (self.token is None or not self.remediation_url):
            raise ValueError("an allowed Confirm must carry token and remediation_url")
        return self


class Ack(BaseModel):
    """Vendor -> Provider: token stored, revisions go to ``revision_url``."""
    success: Literal[True] = True
    revision_url: str


class Revise(BaseModel):
    """
    Either direction: request a revision of an issued token.

    ``revision_verb`` is kept as a plain string so that unknown verbs
    reach the handler and are answered with UNKNOWN_REVISION_VERB instead
    of a bad request.
    """
    transaction_id: str = Field(min_length=1)
    challenge: str
    url_signature: str
    revision_verb: str
    modified_amount: Optional[str] = None
    modified_currency: Optional[str] = None
    modification_status: Optional[ModificationStatus] = None
    token: Optional[str] = None

    @field_validator("modified_amount", mode="before")
    @classmethod
    def _normalize_amount(cls, v):
        if v is None:
            return v
        return format_amount(v)

    @field_validator("modified_currency")
    @classmethod
    def _check_currency(cls, v):
        if v is None:
            return v
        return validate_currency(v)

    @model_validator(mode="after")
    def _verb_fields(self):
        verb = self.revision_verb
        if verb == RevisionVerb.MODIFY.value and (self.modified_amount is None or self.token is None):
            raise ValueError("MODIFY requires modified_amount and token")
        if verb == RevisionVerb.REFRESH.value and self.token is None:
            raise ValueError("REFRESH requires token")
        if verb == RevisionVerb.FINISH_MODIFICATION.value:
            if self.modification_status not in (ModificationStatus.ACCEPTED, ModificationStatus.REJECTED):
                raise ValueError("FINISH_MODIFICATION requires modification_status ACCEPTED or REJECTED")
            if self.modification_status == ModificationStatus.ACCEPTED and self.token is None:
                raise ValueError("accepted FINISH_MODIFICATION requires token")
        return self


class Response(BaseModel):
    """Reply to ``Revise``: the signed challenge plus verb-specific payload."""
    success: Literal[True] = True
    response: str
    token: Optional[str] = None
    modification_status: Optional[ModificationStatus] = None


class ErrorReply(BaseModel):
    success: Literal[False] = False
    error_code: str
    error_message: str = ""


# ============================================================
# Operator inputs
# ============================================================

RECURRING_OPTIONS = {
    "one_time": None,
    "monthly": "monthly",
    "quarterly": "quarterly",
    "annual": "annual",
}


class TransactionDraft(BaseModel):
    amount: str
    currency: str
    recurring: Literal["one_time", "monthly", "quarterly", "annual"] = "one_time"

    @field_validator("amount", mode="before")
    @classmethod
    def _normalize_amount(cls, v):
        return format_amount(v)

    @field_validator("currency")
    @classmethod
    def _check_currency(cls, v):
        return validate_currency(v)

    @property
    def period(self) -> Optional[str]:
        return RECURRING_OPTIONS[self.recurring]


class StartRequest(BaseModel):
    url: str


class UserDecision(BaseModel):
    t_id: str
    decision: bool
    pin: int = Field(default=0)


class ModifyRequest(BaseModel):
    amount: str
    currency: Optional[str] = None

    @field_validator("amount", mode="before")
    @classmethod
    def _normalize_amount(cls, v):
        return format_amount(v)

    @field_validator("currency")
    @classmethod
    def _check_currency(cls, v):
        if v is None:
            return v
        return validate_currency(v)


class ModificationDecision(BaseModel):
    accept: bool


class AutoAcceptSetting(BaseModel):
    value: bool


# ============================================================
# Parsing helpers
# ============================================================

M = TypeVar("M", bound=BaseModel)


def parse_message(model: Type[M], body: Any) -> M:
    """
    Validate an inbound body.

    Raises:
        MalformedMessage: if the body does not fit ``model``
    """
    try:
        return model.model_validate(body)
    except ValidationError as e:
        raise MalformedMessage(f"malformed {model.__name__}: {e.error_count()} error(s)") from e


def parse_reply(model: Type[M], body: Any) -> M:
    """
    Validate a counterparty reply.

    Raises:
        ProtocolRejection: if the reply is ``success: false``
        MalformedMessage: if the reply fits neither shape
    """
    if isinstance(body, dict) and body.get("success") is False:
        error = parse_message(ErrorReply, body)
        raise ProtocolRejection(error.error_code, error.error_message)
    return parse_message(model, body)


def dump(message: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    """JSON-ready dict of a message."""
    if isinstance(message, BaseModel):
        return message.model_dump(mode="json")
    return message
