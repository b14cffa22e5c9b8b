"""
Negotiation state stores.

Each party owns one store for the lifetime of its process. All maps are
guarded by a single re-entrant lock; operations are atomic get/pop/put.
``exclusive(transaction_id)`` additionally serializes whole exchanges per
transaction id so that, for example, a REFRESH reply and a REVOKE for the
same id can never interleave.
"""

import logging
import threading
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Tuple

from . import config
from .errors import TransactionBusy
from .models import TransactionDraft
from .token import Token

logger = logging.getLogger(__name__)


class NegotiationStateStore:
    """Tokens, revision URLs and replay cache shared by both parties."""

    def __init__(self, replay_cache_size: int = None):
        self._lock = threading.RLock()
        self._tokens: Dict[str, Token] = {}
        self._revision_urls: Dict[str, str] = {}
        self._url_bindings: Dict[str, str] = {}
        self._tx_locks: Dict[str, threading.Lock] = {}
        self._replies: "OrderedDict[Tuple[str, str], Dict[str, Any]]" = OrderedDict()
        self.replay_cache_size = config.REPLAY_CACHE_SIZE if replay_cache_size is None else replay_cache_size

    # ---------------- per-transaction exclusion ----------------

    @contextmanager
    def exclusive(self, transaction_id: str, blocking: bool = True, timeout: float = None) -> Iterator[None]:
        """
        Hold the exchange lock of ``transaction_id``.

        Raises:
            TransactionBusy: if the lock could not be taken (immediately
                when ``blocking`` is False, or within ``timeout``)
        """
        with self._lock:
            tx_lock = self._tx_locks.setdefault(transaction_id, threading.Lock())
        if timeout is None:
            timeout = config.EXCHANGE_LOCK_TIMEOUT
        acquired = tx_lock.acquire(timeout=timeout) if blocking else tx_lock.acquire(blocking=False)
        if not acquired:
            raise TransactionBusy(transaction_id)
        try:
            yield
        finally:
            tx_lock.release()
            with self._lock:
                self._discard_tx_lock(transaction_id)

    def _discard_tx_lock(self, transaction_id: str) -> None:
        # Only tokens have exchanges to serialize; callers that hold the
        # lock of a removed token fail the token lookup and never mutate it.
        tx_lock = self._tx_locks.get(transaction_id)
        if tx_lock is not None and transaction_id not in self._tokens and not tx_lock.locked():
            del self._tx_locks[transaction_id]

    # ---------------- tokens ----------------

    def put_token(self, token: Token, revision_url: str) -> None:
        with self._lock:
            self._tokens[token.transaction_id] = token
            self._revision_urls[token.transaction_id] = revision_url

    def replace_token(self, token: Token) -> None:
        """Swap in a revised token, keeping the revision URL."""
        with self._lock:
            if token.transaction_id not in self._tokens:
                raise KeyError(token.transaction_id)
            self._tokens[token.transaction_id] = token

    def get_token(self, transaction_id: str) -> Optional[Token]:
        with self._lock:
            return self._tokens.get(transaction_id)

    def has_token(self, transaction_id: str) -> bool:
        with self._lock:
            return transaction_id in self._tokens

    def revision_url(self, transaction_id: str) -> Optional[str]:
        """The counterparty URL that revisions for ``transaction_id`` are sent to."""
        with self._lock:
            return self._revision_urls.get(transaction_id)

    def list_tokens(self) -> List[Token]:
        with self._lock:
            return list(self._tokens.values())

    def remove_token(self, transaction_id: str) -> Optional[Token]:
        """
        Forget ``transaction_id``; returns the dropped token.

        Cached replies are kept so that a resent REVOKE is still answered
        with the original reply.
        """
        with self._lock:
            self._revision_urls.pop(transaction_id, None)
            for url_id in [u for u, t in self._url_bindings.items() if t == transaction_id]:
                del self._url_bindings[url_id]
            token = self._tokens.pop(transaction_id, None)
            self._discard_tx_lock(transaction_id)
            return token

    # ---------------- local URL bindings ----------------

    def bind_url(self, url_id: str, transaction_id: str) -> None:
        """Record that our own revision URL ``url_id`` belongs to ``transaction_id``."""
        with self._lock:
            self._url_bindings[url_id] = transaction_id

    def bound_transaction(self, url_id: str) -> Optional[str]:
        with self._lock:
            return self._url_bindings.get(url_id)

    # ---------------- replay cache ----------------

    def remember_reply(self, transaction_id: str, challenge: str, reply: Dict[str, Any]) -> None:
        with self._lock:
            self._replies[(transaction_id, challenge)] = reply
            self._replies.move_to_end((transaction_id, challenge))
            while len(self._replies) > self.replay_cache_size:
                self._replies.popitem(last=False)

    def cached_reply(self, transaction_id: str, challenge: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._replies.get((transaction_id, challenge))


class VendorStateStore(NegotiationStateStore):
    """Adds ongoing requests, PIN hand-off, offers and deferred proposals."""

    def __init__(self, replay_cache_size: int = None):
        super().__init__(replay_cache_size)
        self._requests: Dict[str, TransactionDraft] = {}
        self._pins: Dict[str, int] = {}
        self._pin_ready = threading.Condition(self._lock)
        self._offers: Dict[str, Token] = {}
        self._proposals: Dict[str, Token] = {}

    def add_request(self, request_id: str, draft: TransactionDraft) -> None:
        with self._lock:
            self._requests[request_id] = draft

    def has_request(self, request_id: str) -> bool:
        with self._lock:
            return request_id in self._requests

    def get_request(self, request_id: str) -> Optional[TransactionDraft]:
        with self._lock:
            return self._requests.get(request_id)

    def claim_request(self, request_id: str, pin: int) -> Optional[TransactionDraft]:
        """
        Consume the request and hand its PIN to whoever waits for it.

        Returns None if the request was already claimed or never existed.
        """
        with self._pin_ready:
            draft = self._requests.pop(request_id, None)
            if draft is not None:
                self._pins[request_id] = pin
                self._pin_ready.notify_all()
            return draft

    def wait_for_pin(self, request_id: str, timeout: float) -> Optional[int]:
        """
        Block until the PIN for ``request_id`` arrives.

        Returns the PIN (consuming it), or None after ``timeout`` seconds.
        Only the calling thread waits; other exchanges keep running.

        Raises:
            KeyError: if ``request_id`` is neither pending nor claimed
        """
        with self._pin_ready:
            if request_id not in self._requests and request_id not in self._pins:
                raise KeyError(request_id)
            if not self._pin_ready.wait_for(lambda: request_id in self._pins, timeout=timeout):
                return None
            return self._pins.pop(request_id)

    def add_offer(self, confirmation_id: str, token: Token) -> None:
        with self._lock:
            self._offers[confirmation_id] = token

    def pop_offer(self, confirmation_id: str) -> Optional[Token]:
        with self._lock:
            return self._offers.pop(confirmation_id, None)

    def put_proposal(self, token: Token) -> None:
        """Remember the vendor-signed candidate of a deferred MODIFY."""
        with self._lock:
            self._proposals[token.transaction_id] = token

    def get_proposal(self, transaction_id: str) -> Optional[Token]:
        with self._lock:
            return self._proposals.get(transaction_id)

    def pop_proposal(self, transaction_id: str) -> Optional[Token]:
        with self._lock:
            return self._proposals.pop(transaction_id, None)

    def remove_token(self, transaction_id: str) -> Optional[Token]:
        with self._lock:
            self._proposals.pop(transaction_id, None)
            return super().remove_token(transaction_id)


@dataclass
class Negotiation:
    """Provider side of an offered but not yet confirmed token."""
    token: Token
    response_url: str
    pin: int
    request_url: str


@dataclass
class PendingModification:
    """A MODIFY waiting for the provider operator's decision."""
    transaction_id: str
    amount: str
    currency: str
    candidate: Token

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "modification": {"amount": self.amount, "currency": self.currency},
            "token": self.candidate.to_dict(),
        }


class ProviderStateStore(NegotiationStateStore):
    """Adds negotiations, signature digests and pending modifications."""

    def __init__(self, replay_cache_size: int = None):
        super().__init__(replay_cache_size)
        self._negotiations: Dict[str, Negotiation] = {}
        self._key_digests: Dict[str, bytes] = {}
        self._pending: "OrderedDict[str, PendingModification]" = OrderedDict()

    def add_negotiation(self, transaction_id: str, negotiation: Negotiation) -> None:
        with self._lock:
            self._negotiations[transaction_id] = negotiation

    def pop_negotiation(self, transaction_id: str) -> Optional[Negotiation]:
        with self._lock:
            return self._negotiations.pop(transaction_id, None)

    def set_key_digest(self, transaction_id: str, digest: bytes) -> None:
        with self._lock:
            self._key_digests[transaction_id] = digest

    def key_digest(self, transaction_id: str) -> Optional[bytes]:
        """Revision-cipher digest of the last token this provider counter-signed."""
        with self._lock:
            return self._key_digests.get(transaction_id)

    def queue_modification(self, pending: PendingModification) -> None:
        with self._lock:
            self._pending[pending.transaction_id] = pending

    def pop_modification(self, transaction_id: str) -> Optional[PendingModification]:
        with self._lock:
            return self._pending.pop(transaction_id, None)

    def has_pending_modification(self, transaction_id: str) -> bool:
        with self._lock:
            return transaction_id in self._pending

    def pending_modifications(self) -> List[PendingModification]:
        with self._lock:
            return list(self._pending.values())

    def latest_modification(self) -> Optional[PendingModification]:
        with self._lock:
            if not self._pending:
                return None
            return next(reversed(self._pending.values()))

    def remove_token(self, transaction_id: str) -> Optional[Token]:
        with self._lock:
            self._key_digests.pop(transaction_id, None)
            self._pending.pop(transaction_id, None)
            return super().remove_token(transaction_id)
