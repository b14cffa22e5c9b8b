"""
Shared machinery of the two protocol parties.

A party owns its key pair, the counterparty public key it trusts, a
state store, a transport and the token/challenge helpers. Outbound
exchanges and the authentication of inbound revisions work the same way
on both sides and live here.
"""

import logging
import uuid
from typing import Any, Dict, Optional, Type, TypeVar

from pydantic import BaseModel

from .builder import TokenBuilder
from .challenge import ChallengeAuthenticator
from .cipher import KeyMaterial, decrypt_token
from .errors import ErrorCode, MalformedMessage, ProtocolRejection, RevisionCipherError, TransactionBusy
from .logging_config import ProtocolAuditLogger, set_exchange_id
from .models import Response, Revise, dump, parse_reply
from .signing import KeyPair
from .state import NegotiationStateStore
from .token import Token
from .transport import StpTransport
from .verifier import verify_provider_signature, verify_vendor_signature

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class ProtocolParty:
    """Base for ``VendorProtocol`` and ``ProviderProtocol``."""

    party = "party"

    def __init__(
        self,
        keypair: KeyPair,
        store: NegotiationStateStore,
        host: str,
        transport: Optional[StpTransport] = None,
        challenge_bytes: int = None,
    ):
        self.keypair = keypair
        self.store = store
        self.host = host
        self.transport = transport or StpTransport()
        self.builder = TokenBuilder(keypair)
        self.authenticator = ChallengeAuthenticator(keypair, challenge_bytes)
        self.audit = ProtocolAuditLogger(self.party)

    # ---------------- URLs ----------------

    def url_for(self, kind: str, url_id: Optional[str] = None) -> str:
        """``stp://host/api/stp/<kind>/<id>`` with a fresh id unless one is given."""
        return f"stp://{self.host}/api/stp/{kind}/{url_id or uuid.uuid4()}"

    # ---------------- outbound ----------------

    def _exchange(self, url: str, message: BaseModel, reply_model: Type[M], transaction_id: str = "") -> M:
        """
        Send ``message`` and parse the reply.

        Raises:
            TransportError, ProtocolRejection, MalformedMessage
        """
        self.audit.message_sent(type(message).__name__, url, transaction_id)
        body = self.transport.post(url, dump(message))
        return parse_reply(reply_model, body)

    def _new_revise(self, current: Token, verb: str, **fields: Any) -> Revise:
        """Revise message addressed to the counterparty's revision URL of ``current``."""
        target = self.store.revision_url(current.transaction_id)
        return Revise(
            transaction_id=current.transaction_id,
            challenge=self.authenticator.issue_challenge(),
            url_signature=self.authenticator.sign_url(target),
            revision_verb=verb,
            **fields,
        )

    def _send_revise(self, token: Token, revise: Revise, counterparty_key: str) -> Response:
        """
        Deliver a Revise and authenticate the counterparty's challenge response.

        Raises:
            ProtocolRejection: AUTH_FAILED if the response does not verify
        """
        set_exchange_id()
        reply = self._exchange(self.store.revision_url(token.transaction_id), revise, Response,
                               token.transaction_id)
        if not self.authenticator.verify_response(revise.challenge, reply.response, counterparty_key):
            self.audit.security_event("challenge_response_invalid", severity="high",
                                      transaction_id=token.transaction_id)
            raise ProtocolRejection(ErrorCode.AUTH_FAILED,
                                    "The response to the challenge was not appropriate")
        return reply

    # ---------------- inbound revisions ----------------

    def _cached_revision_reply(self, revise: Revise) -> Optional[Dict[str, Any]]:
        cached = self.store.cached_reply(revise.transaction_id, revise.challenge)
        if cached is not None:
            self.audit.security_event("duplicate_revise", severity="low",
                                      transaction_id=revise.transaction_id)
        return cached

    def _authenticate_revise(self, url_id: str, revise: Revise, counterparty_key_of) -> Token:
        """
        Check that ``revise`` targets a stored token through the URL issued
        for it, signed by the counterparty.

        ``counterparty_key_of`` picks the signer key from the stored token.
        """
        token = self.store.get_token(revise.transaction_id)
        if token is None or self.store.bound_transaction(url_id) != revise.transaction_id:
            raise ProtocolRejection(ErrorCode.ID_NOT_FOUND,
                                    "The given transaction_id has no associated tokens")
        if not self.authenticator.verify_url_signature(url_id, revise.url_signature,
                                                       counterparty_key_of(token)):
            self.audit.security_event("url_signature_invalid", severity="high",
                                      transaction_id=revise.transaction_id)
            raise ProtocolRejection(ErrorCode.INVALID_SIGNATURE,
                                    "url_signature is not a valid signature of the counterparty")
        return token

    def _answer_revise(self, revise: Revise, handler) -> Dict[str, Any]:
        """
        Run ``handler`` under the transaction's exchange lock and build the
        Response around the signed challenge. Successful replies are cached.
        """
        try:
            signed_challenge = self.authenticator.respond(revise.challenge)
        except ValueError as e:
            raise MalformedMessage(str(e))
        try:
            with self.store.exclusive(revise.transaction_id, blocking=False):
                extra = handler() or {}
        except TransactionBusy:
            raise ProtocolRejection(ErrorCode.REVISION_IN_PROGRESS,
                                    "Another revision of this transaction is in progress")
        reply = dump(Response(response=signed_challenge, **extra))
        self.store.remember_reply(revise.transaction_id, revise.challenge, reply)
        return reply

    # ---------------- token checks ----------------

    @staticmethod
    def _open_token(material: KeyMaterial, ciphertext: Optional[str]) -> Token:
        if not ciphertext:
            raise ProtocolRejection(ErrorCode.INCORRECT_TOKEN, "The transaction token is not found")
        try:
            return decrypt_token(material, ciphertext)
        except RevisionCipherError as e:
            raise ProtocolRejection(ErrorCode.INCORRECT_TOKEN, f"The token could not be decrypted: {e}")

    def _check_countersigned(self, proposed: Token, returned: Token, provider_key: str) -> None:
        """
        ``returned`` must be ``proposed`` plus a valid provider layer made
        with ``provider_key``.
        """
        if (returned.metadata != proposed.metadata
                or returned.transaction != proposed.transaction
                or returned.signatures.vendor != proposed.signatures.vendor
                or returned.signatures.vendor_key != proposed.signatures.vendor_key):
            raise ProtocolRejection(ErrorCode.INCORRECT_TOKEN,
                                    "The returned token differs from the proposed one")
        if (returned.signatures.provider_key != provider_key
                or not verify_vendor_signature(returned)
                or not verify_provider_signature(returned)):
            raise ProtocolRejection(ErrorCode.INCORRECT_TOKEN_SIGN,
                                    "The returned token is not signed properly")
