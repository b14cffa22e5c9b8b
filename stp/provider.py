"""
Provider side of the STP protocol.

Negotiation: the provider (the customer's bank) starts from a vendor
request URL with a signed Hello, receives the vendor-signed token, and
after the end user approves with the correct PIN counter-signs it and
confirms it to the vendor.

Revision: the provider answers REVOKE, REFRESH and MODIFY sent by the
vendor, initiates REVOKE, and settles deferred modifications with
FINISH_MODIFICATION once its operator decides.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from . import config
from .cipher import KeyMaterial, encrypt_token, revision_key_digest
from .errors import (
    ErrorCode,
    ExchangeResult,
    MalformedMessage,
    ProtocolRejection,
    TokenError,
    TransactionBusy,
    TransportError,
    replies_on_rejection,
)
from .logging_config import set_exchange_id
from .models import Ack, Confirm, Hello, ModificationStatus, Offer, Revise, RevisionVerb
from .protocol import ProtocolParty
from .signing import KeyPair
from .state import Negotiation, PendingModification, ProviderStateStore
from .token import Token
from .transport import StpTransport
from .util import constant_time_compare, cut_id_from_url, generate_pin, random_b64
from .verifier import is_valid_modification, is_valid_refresh, verify_vendor_signature

logger = logging.getLogger(__name__)

PROVIDER_INITIATED_VERBS = (RevisionVerb.REVOKE.value,)


class ProviderProtocol(ProtocolParty):
    """
    The bank party.

    Args:
        keypair: provider signing keys
        host: ``host:port`` this provider is reachable at
        bank_name, bic: identity sent in every Hello
        trusted_vendor_key: if set, only tokens signed with this vendor
            key are counter-signed
        auto_accept_modify: accept MODIFY revisions without operator review
    """

    party = "provider"

    def __init__(
        self,
        keypair: KeyPair,
        host: str = None,
        store: Optional[ProviderStateStore] = None,
        transport: Optional[StpTransport] = None,
        bank_name: str = None,
        bic: str = None,
        trusted_vendor_key: Optional[str] = None,
        auto_accept_modify: bool = None,
        challenge_bytes: int = None,
    ):
        super().__init__(keypair, store or ProviderStateStore(), host or config.PROVIDER_HOST,
                         transport, challenge_bytes)
        self.bank_name = bank_name or config.BANK_NAME
        self.bic = bic or config.BIC
        self.trusted_vendor_key = trusted_vendor_key
        self.auto_accept_modify = config.AUTO_ACCEPT_MODIFY if auto_accept_modify is None else auto_accept_modify

    # ============================================================
    # Negotiation
    # ============================================================

    def start(self, url: str) -> ExchangeResult:
        """
        Send a Hello to a vendor request URL and keep the offered token.

        On success the payload is the Offer (vendor info and transaction
        summary for the end user) and ``transaction_id`` identifies the
        negotiation for ``confirm``.
        """
        set_exchange_id()
        transaction_id = str(uuid.uuid4())
        pin = generate_pin()
        hello = Hello(
            bank_name=self.bank_name,
            bic=self.bic,
            random=random_b64(),
            transaction_id=transaction_id,
            customer=random_b64(),
            url_signature=self.authenticator.sign_url(url),
            verification_pin=pin,
        )
        try:
            offer = self._exchange(url, hello, Offer, transaction_id)
            token = self._check_offer(offer, transaction_id)
        except ProtocolRejection as rejection:
            self.audit.protocol_rejection("start", rejection.code, rejection.message)
            return ExchangeResult.from_rejection(rejection, transaction_id)
        except TransportError as err:
            self.audit.transport_failure(url, str(err.status), err.message)
            return ExchangeResult.from_transport_error(err, transaction_id)
        except MalformedMessage as e:
            return ExchangeResult.failure(ErrorCode.MALFORMED_MESSAGE, str(e), transaction_id)

        self.store.add_negotiation(transaction_id, Negotiation(
            token=token, response_url=offer.response_url, pin=pin, request_url=url,
        ))
        logger.info("Negotiation %s started with %s", transaction_id, offer.vendor.name)
        return ExchangeResult.success(transaction_id, offer.model_dump(mode="json", exclude={"token"}))

    def _check_offer(self, offer: Offer, transaction_id: str) -> Token:
        try:
            token = Token.from_dict(offer.token)
        except ValueError as e:
            raise ProtocolRejection(ErrorCode.INCORRECT_TOKEN, f"The offered token is malformed: {e}")
        if token.transaction_id != transaction_id or token.transaction.provider_bic != self.bic:
            raise ProtocolRejection(ErrorCode.INCORRECT_TOKEN, "The offered token is not for this negotiation")
        if token.has_provider_signature():
            raise ProtocolRejection(ErrorCode.INCORRECT_TOKEN, "The offered token is already counter-signed")
        return token

    def confirm(self, transaction_id: str, decision: bool, pin: Any) -> ExchangeResult:
        """
        Apply the end user's decision to a started negotiation.

        Declines, wrong PINs and bad vendor signatures are reported to the
        vendor with ``Confirm{allowed: false}`` and returned as failures.
        """
        set_exchange_id()
        negotiation = self.store.pop_negotiation(transaction_id)
        if negotiation is None:
            return ExchangeResult.failure(ErrorCode.ID_NOT_FOUND,
                                          "No ongoing negotiation with this id", transaction_id)
        token = negotiation.token

        if not decision:
            return self._decline(negotiation, ErrorCode.USER_DECLINED, "The transaction was declined by the user")
        if not constant_time_compare(str(pin), str(negotiation.pin)):
            self.audit.security_event("incorrect_pin", transaction_id=transaction_id)
            return self._decline(negotiation, ErrorCode.INCORRECT_PIN, "The PIN was incorrect")
        if not verify_vendor_signature(token) or (
                self.trusted_vendor_key and token.signatures.vendor_key != self.trusted_vendor_key):
            self.audit.security_event("vendor_signature_invalid", severity="high", transaction_id=transaction_id)
            return self._decline(negotiation, ErrorCode.INCORRECT_SIGNATURE,
                                 "The vendor signature of the token is invalid")

        full = self.builder.counter_sign(token)
        remediation_url = self.url_for("remediation")
        try:
            ack = self._exchange(negotiation.response_url, Confirm(
                allowed=True, token=full.to_dict(), remediation_url=remediation_url,
            ), Ack, transaction_id)
        except ProtocolRejection as rejection:
            self.audit.protocol_rejection("confirm", rejection.code, rejection.message)
            return ExchangeResult.from_rejection(rejection, transaction_id)
        except TransportError as err:
            self.audit.transport_failure(negotiation.response_url, str(err.status), err.message)
            return ExchangeResult.from_transport_error(err, transaction_id)
        except MalformedMessage as e:
            return ExchangeResult.failure(ErrorCode.MALFORMED_MESSAGE, str(e), transaction_id)

        self.store.put_token(full, ack.revision_url)
        self.store.bind_url(cut_id_from_url(remediation_url), transaction_id)
        self.store.set_key_digest(transaction_id, revision_key_digest(full))
        self.audit.token_issued(transaction_id, full.fingerprint(), full.is_recurring)
        return ExchangeResult.success(transaction_id)

    def _decline(self, negotiation: Negotiation, code: ErrorCode, message: str) -> ExchangeResult:
        transaction_id = negotiation.token.transaction_id
        try:
            self._exchange(negotiation.response_url, Confirm(
                allowed=False, error_code=code.value, error_message=message,
            ), Ack, transaction_id)
        except ProtocolRejection:
            pass  # the vendor answers a decline with a rejection
        except (TransportError, MalformedMessage) as e:
            self.audit.transport_failure(negotiation.response_url, type(e).__name__, str(e))
        self.audit.protocol_rejection("confirm", code.value, message)
        return ExchangeResult.failure(code, message, transaction_id)

    # ============================================================
    # Revisions initiated by the vendor
    # ============================================================

    @replies_on_rejection
    def handle_remediation(self, url_id: str, revise: Revise) -> Dict[str, Any]:
        """Answer a vendor Revise received on remediation URL ``url_id``."""
        set_exchange_id()
        self.audit.message_received("Revise", url_id, revise.transaction_id)
        cached = self._cached_revision_reply(revise)
        if cached is not None:
            return cached
        self._authenticate_revise(url_id, revise, lambda t: t.signatures.vendor_key)

        handlers = {
            RevisionVerb.REVOKE.value: self._apply_revoke,
            RevisionVerb.REFRESH.value: self._apply_refresh,
            RevisionVerb.MODIFY.value: self._apply_modify,
        }
        handler = handlers.get(revise.revision_verb)
        if handler is None:
            raise ProtocolRejection(ErrorCode.UNKNOWN_REVISION_VERB,
                                    f"Unsupported revision_verb {revise.revision_verb}")
        return self._answer_revise(revise, lambda: handler(revise))

    def _current(self, transaction_id: str) -> Token:
        token = self.store.get_token(transaction_id)
        if token is None:
            raise ProtocolRejection(ErrorCode.ID_NOT_FOUND, "The given transaction_id has no associated tokens")
        return token

    def _material(self, transaction_id: str) -> KeyMaterial:
        return KeyMaterial.from_digest(self.store.key_digest(transaction_id))

    def _apply_revoke(self, revise: Revise) -> None:
        self.store.remove_token(revise.transaction_id)
        self.audit.revision_applied(revise.transaction_id, revise.revision_verb)

    def _apply_refresh(self, revise: Revise) -> Dict[str, Any]:
        current = self._current(revise.transaction_id)
        self._refuse_while_pending(revise.transaction_id)
        if not current.is_recurring:
            raise ProtocolRejection(ErrorCode.NON_RECURRING, "Cannot refresh non-recurring transaction token")
        material = self._material(revise.transaction_id)
        candidate = self._open_token(material, revise.token)
        if not is_valid_refresh(current, candidate):
            raise ProtocolRejection(ErrorCode.INCORRECT_TOKEN, "The refreshed token contains incorrect data")
        full = self._counter_sign_candidate(current, candidate)
        self._store_revised(full)
        self.audit.revision_applied(revise.transaction_id, revise.revision_verb)
        return {"token": encrypt_token(material, full)}

    def _apply_modify(self, revise: Revise) -> Dict[str, Any]:
        current = self._current(revise.transaction_id)
        self._refuse_while_pending(revise.transaction_id)
        material = self._material(revise.transaction_id)
        candidate = self._open_token(material, revise.token)
        if not is_valid_modification(current, candidate, revise.modified_amount, revise.modified_currency):
            raise ProtocolRejection(ErrorCode.INCORRECT_TOKEN, "The modified token contains incorrect data")
        if not self._vendor_signed(current, candidate):
            raise ProtocolRejection(ErrorCode.INCORRECT_TOKEN_SIGN, "The modified token is not signed properly")

        if self.auto_accept_modify:
            full = self._counter_sign_candidate(current, candidate)
            self._store_revised(full)
            self.audit.revision_applied(revise.transaction_id, revise.revision_verb, "ACCEPTED")
            return {"modification_status": ModificationStatus.ACCEPTED, "token": encrypt_token(material, full)}

        self.store.queue_modification(PendingModification(
            transaction_id=revise.transaction_id,
            amount=candidate.transaction.amount,
            currency=candidate.transaction.currency,
            candidate=candidate,
        ))
        self.audit.revision_applied(revise.transaction_id, revise.revision_verb, "PENDING")
        return {"modification_status": ModificationStatus.PENDING}

    def _refuse_while_pending(self, transaction_id: str) -> None:
        if self.store.has_pending_modification(transaction_id):
            raise ProtocolRejection(ErrorCode.REVISION_IN_PROGRESS,
                                    "A modification of this transaction awaits the user's decision")

    @staticmethod
    def _vendor_signed(current: Token, candidate: Token) -> bool:
        """Candidate carries a valid vendor signature by the vendor of the current token."""
        return (candidate.signatures.vendor_key == current.signatures.vendor_key
                and verify_vendor_signature(candidate))

    def _counter_sign_candidate(self, current: Token, candidate: Token) -> Token:
        if not self._vendor_signed(current, candidate):
            raise ProtocolRejection(ErrorCode.INCORRECT_TOKEN_SIGN, "The proposed token is not signed properly")
        try:
            return self.builder.counter_sign(candidate)
        except TokenError as e:
            raise ProtocolRejection(ErrorCode.INCORRECT_TOKEN, str(e))

    def _store_revised(self, token: Token) -> None:
        self.store.replace_token(token)
        self.store.set_key_digest(token.transaction_id, revision_key_digest(token))

    # ============================================================
    # Revisions initiated by the provider
    # ============================================================

    def revise(self, transaction_id: str, verb: str) -> ExchangeResult:
        """Run a provider initiated revision (REVOKE) with the vendor."""
        verb = verb.value if isinstance(verb, RevisionVerb) else verb
        if self.store.get_token(transaction_id) is None:
            return ExchangeResult.failure(ErrorCode.ID_NOT_FOUND,
                                          "The given transaction_id has no associated tokens", transaction_id)
        if verb not in PROVIDER_INITIATED_VERBS:
            return ExchangeResult.failure(ErrorCode.UNKNOWN_REVISION_VERB,
                                          f"Unsupported revision_verb {verb}", transaction_id)

        def exchange():
            token = self._current(transaction_id)
            self._send_revise(token, self._new_revise(token, verb), token.signatures.vendor_key)
            self.store.remove_token(transaction_id)
            self.audit.revision_applied(transaction_id, verb)

        return self._run_exchange(transaction_id, verb, exchange)

    def decide_modification(self, transaction_id: str, accept: bool) -> ExchangeResult:
        """
        Settle a pending modification with FINISH_MODIFICATION.

        If the exchange with the vendor fails the modification is queued
        again so the operator can retry.
        """
        pending = self.store.pop_modification(transaction_id)
        if pending is None:
            return ExchangeResult.failure(ErrorCode.ID_NOT_FOUND,
                                          "No pending modification for this transaction", transaction_id)
        verb = RevisionVerb.FINISH_MODIFICATION.value

        def exchange():
            current = self._current(transaction_id)
            if not accept:
                revise = self._new_revise(current, verb, modification_status=ModificationStatus.REJECTED)
                self._send_revise(current, revise, current.signatures.vendor_key)
                self.audit.revision_applied(transaction_id, verb, "REJECTED")
                return
            candidate = pending.candidate
            if not is_valid_modification(current, candidate, pending.amount, pending.currency):
                raise ProtocolRejection(ErrorCode.INCORRECT_TOKEN,
                                        "The pending modification no longer matches the current token")
            full = self._counter_sign_candidate(current, candidate)
            material = self._material(transaction_id)
            revise = self._new_revise(current, verb, modification_status=ModificationStatus.ACCEPTED,
                                      token=encrypt_token(material, full))
            self._send_revise(current, revise, current.signatures.vendor_key)
            self._store_revised(full)
            self.audit.revision_applied(transaction_id, verb, "ACCEPTED")

        result = self._run_exchange(transaction_id, verb, exchange)
        if not result.ok() and result.error_code != ErrorCode.ID_NOT_FOUND.value:
            self.store.queue_modification(pending)
        return result

    def _run_exchange(self, transaction_id: str, verb: str, exchange) -> ExchangeResult:
        try:
            with self.store.exclusive(transaction_id):
                exchange()
        except TransactionBusy:
            return ExchangeResult.failure(ErrorCode.REVISION_IN_PROGRESS,
                                          "Another revision of this transaction is in progress", transaction_id)
        except ProtocolRejection as rejection:
            self.audit.protocol_rejection(f"revise:{verb}", rejection.code, rejection.message)
            return ExchangeResult.from_rejection(rejection, transaction_id)
        except TransportError as err:
            self.audit.transport_failure(self.store.revision_url(transaction_id) or "", str(err.status), err.message)
            return ExchangeResult.from_transport_error(err, transaction_id)
        except MalformedMessage as e:
            return ExchangeResult.failure(ErrorCode.MALFORMED_MESSAGE, str(e), transaction_id)
        return ExchangeResult.success(transaction_id)

    # ============================================================
    # Operator settings and views
    # ============================================================

    def set_auto_accept_modify(self, value: bool) -> None:
        self.auto_accept_modify = value
        logger.info("Auto-accept of modifications set to %s", value)

    def latest_pending_modification(self) -> Optional[PendingModification]:
        return self.store.latest_modification()

    def list_tokens(self) -> List[Dict[str, Any]]:
        return [t.to_dict() for t in self.store.list_tokens()]

    def get_token(self, transaction_id: str) -> Optional[Token]:
        return self.store.get_token(transaction_id)
