"""
State stores, wire models and error values.
"""

import threading
import time
import unittest

from stp import (
    ErrorCode,
    ExchangeResult,
    KeyPair,
    MalformedMessage,
    ProtocolRejection,
    ProviderStateStore,
    TokenBuilder,
    TransactionBusy,
    TransactionDraft,
    VendorStateStore,
)
from stp.errors import TransportError, TransportFailure
from stp.models import Confirm, Response, Revise, parse_message, parse_reply
from stp.state import PendingModification


def make_token(transaction_id="tx-1"):
    builder = TokenBuilder(KeyPair.generate("v"))
    return builder.issue_vendor_token(builder.new_transaction(transaction_id, "BIC", "1", "USD"))


class TestNegotiationStateStore(unittest.TestCase):

    def setUp(self):
        self.store = VendorStateStore(replay_cache_size=2)

    def test_put_get_remove(self):
        token = make_token()
        self.store.put_token(token, "stp://p/api/stp/remediation/r1")
        self.store.bind_url("rev-1", "tx-1")
        self.assertEqual(self.store.get_token("tx-1"), token)
        self.assertTrue(self.store.has_token("tx-1"))
        self.assertEqual(self.store.revision_url("tx-1"), "stp://p/api/stp/remediation/r1")
        self.assertEqual(self.store.bound_transaction("rev-1"), "tx-1")

        self.assertEqual(self.store.remove_token("tx-1"), token)
        self.assertIsNone(self.store.get_token("tx-1"))
        self.assertFalse(self.store.has_token("tx-1"))
        self.assertIsNone(self.store.revision_url("tx-1"))
        self.assertIsNone(self.store.bound_transaction("rev-1"))

    def test_replace_unknown_token(self):
        with self.assertRaises(KeyError):
            self.store.replace_token(make_token("nope"))

    def test_replay_cache_is_bounded(self):
        for i in range(3):
            self.store.remember_reply("tx", f"c{i}", {"i": i})
        self.assertIsNone(self.store.cached_reply("tx", "c0"))
        self.assertEqual(self.store.cached_reply("tx", "c2"), {"i": 2})

    def test_replay_cache_survives_token_removal(self):
        self.store.put_token(make_token(), "url")
        self.store.remember_reply("tx-1", "c", {"success": True})
        self.store.remove_token("tx-1")
        self.assertEqual(self.store.cached_reply("tx-1", "c"), {"success": True})

    def test_exclusive_is_per_transaction(self):
        with self.store.exclusive("tx-1"):
            with self.assertRaises(TransactionBusy):
                with self.store.exclusive("tx-1", blocking=False):
                    pass
            with self.assertRaises(TransactionBusy):
                with self.store.exclusive("tx-1", timeout=0.05):
                    pass
            with self.store.exclusive("tx-2", blocking=False):
                pass
        with self.store.exclusive("tx-1", blocking=False):
            pass

    def test_exclusive_locks_are_dropped_with_their_token(self):
        self.store.put_token(make_token(), "url")
        with self.store.exclusive("tx-1"):
            self.store.remove_token("tx-1")
            # still held, so still known
            self.assertIn("tx-1", self.store._tx_locks)
        self.assertNotIn("tx-1", self.store._tx_locks)

        for i in range(5):
            with self.store.exclusive(f"gone-{i}"):
                pass
        self.assertEqual(self.store._tx_locks, {})

    def test_exclusive_locks_kept_for_live_tokens(self):
        self.store.put_token(make_token(), "url")
        with self.store.exclusive("tx-1"):
            pass
        self.assertIn("tx-1", self.store._tx_locks)
        self.store.remove_token("tx-1")
        self.assertNotIn("tx-1", self.store._tx_locks)


class TestPinHandOff(unittest.TestCase):

    def setUp(self):
        self.store = VendorStateStore()
        self.store.add_request("req", TransactionDraft(amount="1", currency="USD"))

    def test_pin_delivered_to_waiter(self):
        got = []
        waiter = threading.Thread(target=lambda: got.append(self.store.wait_for_pin("req", timeout=5)))
        waiter.start()
        time.sleep(0.05)
        draft = self.store.claim_request("req", 4321)
        waiter.join(timeout=5)
        self.assertEqual(draft.amount, "1")
        self.assertEqual(got, [4321])

    def test_pin_available_before_wait(self):
        self.store.claim_request("req", 1234)
        self.assertEqual(self.store.wait_for_pin("req", timeout=0.1), 1234)

    def test_wait_times_out(self):
        self.assertIsNone(self.store.wait_for_pin("req", timeout=0.05))

    def test_unknown_request(self):
        with self.assertRaises(KeyError):
            self.store.wait_for_pin("other", timeout=0.05)

    def test_request_claimed_once(self):
        self.assertIsNotNone(self.store.claim_request("req", 1111))
        self.assertIsNone(self.store.claim_request("req", 2222))

    def test_get_request_does_not_claim(self):
        self.assertEqual(self.store.get_request("req").amount, "1")
        self.assertTrue(self.store.has_request("req"))
        self.assertIsNone(self.store.wait_for_pin("req", timeout=0.05))
        self.assertIsNone(self.store.get_request("other"))


class TestProviderStateStore(unittest.TestCase):

    def test_pending_modifications(self):
        store = ProviderStateStore()
        store.put_token(make_token("a"), "url-a")
        store.put_token(make_token("b"), "url-b")
        for tx in ("a", "b"):
            store.queue_modification(PendingModification(tx, "2", "EUR", make_token(tx)))
        self.assertEqual([p.transaction_id for p in store.pending_modifications()], ["a", "b"])
        self.assertEqual(store.latest_modification().transaction_id, "b")
        self.assertEqual(store.pop_modification("b").currency, "EUR")
        self.assertFalse(store.has_pending_modification("b"))
        self.assertTrue(store.has_pending_modification("a"))
        self.assertEqual(store.latest_modification().transaction_id, "a")

        store.set_key_digest("a", b"digest")
        store.remove_token("a")
        self.assertIsNone(store.latest_modification())
        self.assertIsNone(store.key_digest("a"))

    def test_pending_modification_dict(self):
        pending = PendingModification("a", "2", "EUR", make_token("a"))
        d = pending.to_dict()
        self.assertEqual(d["modification"], {"amount": "2", "currency": "EUR"})
        self.assertEqual(d["token"]["transaction"]["id"], "a")


class TestModels(unittest.TestCase):

    def revise(self, **fields):
        body = {"transaction_id": "tx", "challenge": "Yw==", "url_signature": "s"}
        body.update(fields)
        return parse_message(Revise, body)

    def test_modify_amount_normalized(self):
        msg = self.revise(revision_verb="MODIFY", modified_amount=2, token="ct")
        self.assertEqual(msg.modified_amount, "2")
        self.assertEqual(self.revise(revision_verb="MODIFY", modified_amount="2.50", token="ct").modified_amount,
                         "2.5")

    def test_verb_specific_fields_required(self):
        with self.assertRaises(MalformedMessage):
            self.revise(revision_verb="MODIFY", token="ct")
        with self.assertRaises(MalformedMessage):
            self.revise(revision_verb="REFRESH")
        with self.assertRaises(MalformedMessage):
            self.revise(revision_verb="FINISH_MODIFICATION", modification_status="PENDING")
        with self.assertRaises(MalformedMessage):
            self.revise(revision_verb="FINISH_MODIFICATION", modification_status="ACCEPTED")

    def test_unknown_verb_passes_validation(self):
        self.assertEqual(self.revise(revision_verb="EXTEND").revision_verb, "EXTEND")

    def test_missing_required_field(self):
        with self.assertRaises(MalformedMessage):
            parse_message(Revise, {"transaction_id": "tx", "revision_verb": "REVOKE"})
        with self.assertRaises(MalformedMessage):
            self.revise(revision_verb="REVOKE", transaction_id="")

    def test_allowed_confirm_needs_token(self):
        with self.assertRaises(MalformedMessage):
            parse_message(Confirm, {"allowed": True})
        self.assertFalse(parse_message(Confirm, {"allowed": False}).allowed)

    def test_draft_options(self):
        self.assertIsNone(TransactionDraft(amount="1", currency="USD").period)
        self.assertEqual(TransactionDraft(amount=1, currency="USD", recurring="monthly").period, "monthly")
        with self.assertRaises(ValueError):
            TransactionDraft(amount="1", currency="USD", recurring="weekly")

    def test_parse_reply_dispatches_on_success(self):
        with self.assertRaises(ProtocolRejection) as ctx:
            parse_reply(Response, {"success": False, "error_code": "AUTH_FAILED", "error_message": "no"})
        self.assertEqual(ctx.exception.code, "AUTH_FAILED")
        self.assertEqual(parse_reply(Response, {"success": True, "response": "sig"}).response, "sig")
        with self.assertRaises(MalformedMessage):
            parse_reply(Response, {"success": True})


class TestExchangeResult(unittest.TestCase):

    def test_protocol_failure(self):
        result = ExchangeResult.failure(ErrorCode.NON_RECURRING, "nope", "tx")
        self.assertFalse(result.ok())
        self.assertEqual(result.to_dict(), {"success": False, "error_code": "NON_RECURRING", "error_message": "nope"})

    def test_transport_failure_is_distinct(self):
        result = ExchangeResult.from_transport_error(TransportError(502, "bad gateway"))
        self.assertTrue(result.is_transport_error())
        self.assertEqual(result.to_dict(), {"success": False, "HTTP_error_code": "502", "HTTP_error_msg": "bad gateway"})

    def test_timeout_status(self):
        err = TransportError(TransportFailure.TIMEOUT, "slow")
        self.assertTrue(err.is_timeout())
        self.assertEqual(ExchangeResult.from_transport_error(err).error_code, "TIMEOUT")

    def test_rejection_reply(self):
        self.assertEqual(ProtocolRejection(ErrorCode.ID_NOT_FOUND, "x").to_reply(),
                         {"success": False, "error_code": "ID_NOT_FOUND", "error_message": "x"})


if __name__ == '__main__':
    unittest.main()
