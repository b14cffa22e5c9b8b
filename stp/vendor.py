"""
Vendor side of the STP protocol.

Negotiation: the vendor publishes a request URL for a drafted
transaction, answers the provider's Hello with a vendor-signed token
(Offer) and stores the counter-signed token the provider confirms.

Revision: the vendor initiates REVOKE, REFRESH and MODIFY, and answers
REVOKE and FINISH_MODIFICATION sent by the provider.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from . import config
from .cipher import KeyMaterial, encrypt_token
from .errors import (
    ErrorCode,
    ExchangeResult,
    MalformedMessage,
    ProtocolRejection,
    TransactionBusy,
    TransportError,
    UnknownExchange,
    replies_on_rejection,
)
from .logging_config import set_exchange_id
from .models import (
    Ack,
    Confirm,
    Hello,
    ModificationStatus,
    Offer,
    Revise,
    RevisionVerb,
    TransactionDraft,
    TransactionSummary,
    VendorInfo,
    dump,
)
from .protocol import ProtocolParty
from .signing import KeyPair
from .state import VendorStateStore
from .token import Token
from .transport import StpTransport
from .util import cut_id_from_url
from .verifier import verify_provider_signature, verify_vendor_signature

logger = logging.getLogger(__name__)

VENDOR_INITIATED_VERBS = (RevisionVerb.REVOKE.value, RevisionVerb.REFRESH.value, RevisionVerb.MODIFY.value)


class VendorProtocol(ProtocolParty):
    """
    The merchant party.

    Args:
        keypair: vendor signing keys
        bank_public_key: trusted provider public key (base64)
        host: ``host:port`` this vendor is reachable at
        store: state store, a fresh one by default
        transport: outbound transport, a requests based one by default
        vendor_info: display info sent in every Offer
    """

    party = "vendor"

    def __init__(
        self,
        keypair: KeyPair,
        bank_public_key: str,
        host: str = None,
        store: Optional[VendorStateStore] = None,
        transport: Optional[StpTransport] = None,
        vendor_info: Optional[VendorInfo] = None,
        pin_wait_timeout: float = None,
        challenge_bytes: int = None,
    ):
        super().__init__(keypair, store or VendorStateStore(), host or config.VENDOR_HOST,
                         transport, challenge_bytes)
        self.bank_public_key = bank_public_key
        self.vendor_info = vendor_info or VendorInfo(
            name=config.VENDOR_NAME,
            logo_url=config.VENDOR_LOGO_URL,
            address=config.VENDOR_ADDRESS,
        )
        self.pin_wait_timeout = config.PIN_WAIT_TIMEOUT if pin_wait_timeout is None else pin_wait_timeout

    # ============================================================
    # Negotiation
    # ============================================================

    def create_request(self, draft: TransactionDraft) -> str:
        """Register a drafted transaction; returns its request URL."""
        request_id = str(uuid.uuid4())
        self.store.add_request(request_id, draft)
        url = self.url_for("request", request_id)
        logger.info("Transaction request %s created: %s %s (%s)", request_id, draft.amount,
                    draft.currency, draft.recurring)
        return url

    @replies_on_rejection
    def handle_hello(self, request_id: str, hello: Hello) -> Dict[str, Any]:
        """
        Answer a Hello on ``request_id`` with an Offer.

        Raises:
            UnknownExchange: if no transaction request has this id
        """
        set_exchange_id()
        self.audit.message_received("Hello", request_id, hello.transaction_id)
        draft = self.store.get_request(request_id)
        if draft is None:
            raise UnknownExchange(f"no transaction request {request_id}")
        if not self.authenticator.verify_url_signature(request_id, hello.url_signature, self.bank_public_key):
            self.audit.security_event("hello_signature_invalid", severity="high", url_id=request_id)
            raise ProtocolRejection(ErrorCode.INVALID_SIGNATURE,
                                    "url_signature is not a valid signature of the provider")

        # The request stays open until a token could be issued for it.
        try:
            record = self.builder.new_transaction(
                transaction_id=hello.transaction_id,
                provider_bic=hello.bic,
                amount=draft.amount,
                currency=draft.currency,
                customer_ref=hello.customer,
                period=draft.period,
            )
            token = self.builder.issue_vendor_token(record)
        except ValueError as e:
            raise MalformedMessage(f"cannot issue a token for this hello: {e}") from e
        if self.store.claim_request(request_id, hello.verification_pin) is None:
            raise UnknownExchange(f"transaction request {request_id} was already answered")

        confirmation_id = str(uuid.uuid4())
        self.store.add_offer(confirmation_id, token)
        self.audit.token_issued(token.transaction_id, token.fingerprint(), token.is_recurring)

        return dump(Offer(
            confirmation_id=confirmation_id,
            response_url=self.url_for("response", confirmation_id),
            vendor=self.vendor_info,
            transaction=TransactionSummary(
                amount=draft.amount,
                currency_code=draft.currency,
                recurrance=draft.period,
            ),
            token=token.to_dict(),
        ))

    def wait_for_pin(self, request_id: str, timeout: float = None) -> Optional[int]:
        """
        Block until the provider's Hello reveals the PIN for ``request_id``.

        Returns None on timeout.

        Raises:
            UnknownExchange: if ``request_id`` is neither pending nor answered
        """
        try:
            return self.store.wait_for_pin(request_id, self.pin_wait_timeout if timeout is None else timeout)
        except KeyError:
            raise UnknownExchange(f"no transaction request {request_id}")

    @replies_on_rejection
    def handle_confirm(self, confirmation_id: str, confirm: Confirm) -> Dict[str, Any]:
        """Store the counter-signed token and answer with an Ack."""
        self.audit.message_received("Confirm", confirmation_id)
        offered = self.store.pop_offer(confirmation_id)
        if offered is None:
            raise UnknownExchange(f"no offer {confirmation_id}")
        if not confirm.allowed:
            raise ProtocolRejection(confirm.error_code or ErrorCode.USER_DECLINED,
                                    confirm.error_message or "The transaction was declined by the user")
        try:
            token = Token.from_dict(confirm.token)
        except ValueError as e:
            raise ProtocolRejection(ErrorCode.INCORRECT_TOKEN, f"The transaction token is malformed: {e}")
        if token.vendor_payload() != offered.vendor_payload() \
                or token.signatures.vendor != offered.signatures.vendor \
                or token.signatures.vendor_key != offered.signatures.vendor_key:
            raise ProtocolRejection(ErrorCode.INCORRECT_TOKEN, "The token differs from the offered one")
        if (token.signatures.provider_key != self.bank_public_key
                or not verify_vendor_signature(token)
                or not verify_provider_signature(token)):
            self.audit.security_event("token_signature_invalid", severity="high",
                                      transaction_id=token.transaction_id)
            raise ProtocolRejection(ErrorCode.INCORRECT_TOKEN_SIGN,
                                    "The transaction token has an invalid provider signature")

        revision_url = self.url_for("revision")
        self.store.put_token(token, confirm.remediation_url)
        self.store.bind_url(cut_id_from_url(revision_url), token.transaction_id)
        logger.info("Token %s stored", token.transaction_id)
        return dump(Ack(revision_url=revision_url))

    # ============================================================
    # Revisions initiated by the vendor
    # ============================================================

    def revise(self, transaction_id: str, verb: str, amount: Any = None,
               currency: Optional[str] = None) -> ExchangeResult:
        """
        Run one revision exchange with the provider.

        Never raises for protocol or transport failures; the outcome is in
        the returned ``ExchangeResult``. For MODIFY the payload holds the
        provider's ``modification_status``.
        """
        verb = verb.value if isinstance(verb, RevisionVerb) else verb
        token = self.store.get_token(transaction_id)
        if token is None:
            return ExchangeResult.failure(ErrorCode.ID_NOT_FOUND,
                                          "The given transaction_id has no associated tokens", transaction_id)
        if verb not in VENDOR_INITIATED_VERBS:
            return ExchangeResult.failure(ErrorCode.UNKNOWN_REVISION_VERB,
                                          f"Unsupported revision_verb {verb}", transaction_id)
        if verb == RevisionVerb.REFRESH.value and not token.is_recurring:
            return ExchangeResult.failure(ErrorCode.NON_RECURRING,
                                          "Cannot refresh non-recurring transaction token", transaction_id)
        if verb == RevisionVerb.MODIFY.value and amount is None:
            return ExchangeResult.failure(ErrorCode.MALFORMED_MESSAGE,
                                          "MODIFY needs an amount", transaction_id)

        try:
            with self.store.exclusive(transaction_id):
                payload = self._revise_locked(transaction_id, verb, amount, currency)
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
        return ExchangeResult.success(transaction_id, payload)

    def _revise_locked(self, transaction_id: str, verb: str, amount: Any,
                       currency: Optional[str]) -> Optional[Dict[str, Any]]:
        token = self.store.get_token(transaction_id)
        if token is None:
            raise ProtocolRejection(ErrorCode.ID_NOT_FOUND, "The token was removed meanwhile")
        material = KeyMaterial.derive(token)
        provider_key = token.signatures.provider_key

        if verb == RevisionVerb.REVOKE.value:
            self._send_revise(token, self._new_revise(token, verb), provider_key)
            self.store.remove_token(transaction_id)
            self.audit.revision_applied(transaction_id, verb)
            return None

        if self.store.get_proposal(transaction_id) is not None:
            raise ProtocolRejection(ErrorCode.REVISION_IN_PROGRESS,
                                    "A modification of this transaction awaits the provider's decision")

        if verb == RevisionVerb.REFRESH.value:
            candidate = self.builder.refresh(token)
            revise = self._new_revise(token, verb, token=encrypt_token(material, candidate))
            reply = self._send_revise(token, revise, provider_key)
            returned = self._open_token(material, reply.token)
            self._check_countersigned(candidate, returned, provider_key)
            self.store.replace_token(returned)
            self.audit.revision_applied(transaction_id, verb)
            return None

        try:
            candidate = self.builder.modify(token, amount, currency)
        except ValueError as e:
            raise MalformedMessage(f"invalid modification: {e}") from e
        revise = self._new_revise(
            token, verb,
            token=encrypt_token(material, candidate),
            modified_amount=candidate.transaction.amount,
            modified_currency=currency,
        )
        reply = self._send_revise(token, revise, provider_key)
        status = reply.modification_status
        if status == ModificationStatus.ACCEPTED:
            returned = self._open_token(material, reply.token)
            self._check_countersigned(candidate, returned, provider_key)
            self.store.replace_token(returned)
        elif status == ModificationStatus.PENDING:
            self.store.put_proposal(candidate)
        else:
            raise MalformedMessage(f"unexpected modification_status {status}")
        self.audit.revision_applied(transaction_id, verb, status.value)
        return {"modification_status": status.value}

    # ============================================================
    # Revisions initiated by the provider
    # ============================================================

    @replies_on_rejection
    def handle_revision(self, url_id: str, revise: Revise) -> Dict[str, Any]:
        """Answer a provider Revise received on revision URL ``url_id``."""
        set_exchange_id()
        self.audit.message_received("Revise", url_id, revise.transaction_id)
        cached = self._cached_revision_reply(revise)
        if cached is not None:
            return cached
        self._authenticate_revise(url_id, revise, lambda t: t.signatures.provider_key)

        if revise.revision_verb == RevisionVerb.REVOKE.value:
            def apply():
                self.store.remove_token(revise.transaction_id)
                self.audit.revision_applied(revise.transaction_id, revise.revision_verb)
        elif revise.revision_verb == RevisionVerb.FINISH_MODIFICATION.value:
            def apply():
                self._finish_modification(revise)
        else:
            raise ProtocolRejection(ErrorCode.UNKNOWN_REVISION_VERB,
                                    f"Unsupported revision_verb {revise.revision_verb}")
        return self._answer_revise(revise, apply)

    def _finish_modification(self, revise: Revise) -> None:
        transaction_id = revise.transaction_id
        if revise.modification_status == ModificationStatus.REJECTED:
            self.store.pop_proposal(transaction_id)
            self.audit.revision_applied(transaction_id, revise.revision_verb, "REJECTED")
            return
        proposal = self.store.get_proposal(transaction_id)
        if proposal is None:
            raise ProtocolRejection(ErrorCode.INCORRECT_TOKEN, "No modification was proposed for this token")
        # re-read under the exchange lock
        current = self.store.get_token(transaction_id)
        if current is None:
            raise ProtocolRejection(ErrorCode.ID_NOT_FOUND, "The token was removed meanwhile")
        returned = self._open_token(KeyMaterial.derive(current), revise.token)
        self._check_countersigned(proposal, returned, current.signatures.provider_key)
        self.store.replace_token(returned)
        self.store.pop_proposal(transaction_id)
        self.audit.revision_applied(transaction_id, revise.revision_verb, "ACCEPTED")

    # ============================================================
    # Operator views
    # ============================================================

    def list_tokens(self) -> List[Dict[str, Any]]:
        return [t.to_dict() for t in self.store.list_tokens()]

    def get_token(self, transaction_id: str) -> Optional[Token]:
        return self.store.get_token(transaction_id)
