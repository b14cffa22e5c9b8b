"""
HTTP binding: status codes and operator endpoints.
"""

import pytest

from stp import ChallengeAuthenticator, MalformedMessage, TransactionDraft
from stp.models import Hello
from stp.util import cut_id_from_url


# ============================================================
# Vendor app
# ============================================================

def test_gen_url(parties):
    r = parties.vendor_client.post("/gen_url", json={"amount": "10.50", "currency": "EUR", "recurring": "monthly"})
    assert r.status_code == 200
    url = r.json()["url"]
    assert url.startswith("stp://vendor.test:3000/api/stp/request/")
    assert parties.vendor.store.has_request(cut_id_from_url(url))


def test_gen_url_rejects_bad_draft(parties):
    for body in ({"amount": "1", "currency": "USD", "recurring": "weekly"},
                 {"amount": "-1", "currency": "USD"},
                 {"amount": "1", "currency": "dollars"},
                 {"currency": "USD"}):
        assert parties.vendor_client.post("/gen_url", json=body).status_code == 400, body


def test_pin_endpoint(parties):
    url, _ = parties.start()
    r = parties.vendor_client.get(f"/api/stp/request/{cut_id_from_url(url)}/pin")
    assert r.status_code == 200
    assert r.text.isdigit()


def test_pin_endpoint_times_out(parties):
    url = parties.vendor_client.post("/gen_url", json={"amount": "1", "currency": "USD"}).json()["url"]
    r = parties.vendor_client.get(f"/api/stp/request/{cut_id_from_url(url)}/pin")
    assert r.status_code == 504
    assert r.json()["detail"] == "PIN_TIMEOUT"


def test_pin_endpoint_unknown_request(parties):
    assert parties.vendor_client.get("/api/stp/request/unknown/pin").status_code == 400


def test_malformed_protocol_bodies(parties):
    assert parties.vendor_client.post("/api/stp/request/x", json={"bic": 1}).status_code == 400
    assert parties.vendor_client.post("/api/stp/response/x", json={"allowed": True}).status_code == 400
    assert parties.vendor_client.post("/api/stp/revision/x", json={"transaction_id": "t"}).status_code == 400
    assert parties.provider_client.post("/api/stp/remediation/x", json=[]).status_code == 400


def signed_hello(parties, url, **fields):
    body = {
        "bank_name": "STP_Example_Provider",
        "bic": "STPEXPROV",
        "random": "cmFuZG9t",
        "transaction_id": "tx-1",
        "url_signature": ChallengeAuthenticator(parties.provider_keys).sign_url(url),
        "verification_pin": 4321,
    }
    body.update(fields)
    return body


def test_hello_without_transaction_id_keeps_request_open(parties):
    url = parties.vendor_client.post("/gen_url", json={"amount": "1", "currency": "USD"}).json()["url"]
    request_id = cut_id_from_url(url)
    r = parties.vendor_client.post(f"/api/stp/request/{request_id}", json=signed_hello(parties, url, transaction_id=""))
    assert r.status_code == 400
    assert parties.vendor.store.has_request(request_id)
    assert parties.vendor.wait_for_pin(request_id, timeout=0.05) is None

    r = parties.vendor_client.post(f"/api/stp/request/{request_id}", json=signed_hello(parties, url))
    assert r.status_code == 200
    assert r.json()["token"]["transaction"]["id"] == "tx-1"
    assert parties.vendor.wait_for_pin(request_id) == 4321


def test_hello_that_cannot_be_issued_is_malformed(parties):
    url = parties.vendor.create_request(TransactionDraft(amount="1", currency="USD"))
    request_id = cut_id_from_url(url)
    hello = Hello.model_construct(**signed_hello(parties, url, transaction_id="", customer=""))
    with pytest.raises(MalformedMessage):
        parties.vendor.handle_hello(request_id, hello)
    assert parties.vendor.store.has_request(request_id)


def test_unknown_offer_is_bad_request(parties):
    r = parties.vendor_client.post("/api/stp/response/unknown", json={"allowed": False})
    assert r.status_code == 400


def test_revision_on_unknown_url_is_rejected(parties):
    body = {
        "transaction_id": "nope",
        "challenge": "Yw==",
        "url_signature": "c2ln",
        "revision_verb": "REVOKE",
    }
    r = parties.provider_client.post("/api/stp/remediation/unknown", json=body)
    assert r.status_code == 200
    assert r.json() == {
        "success": False,
        "error_code": "ID_NOT_FOUND",
        "error_message": "The given transaction_id has no associated tokens",
    }


def test_vendor_token_views(parties):
    assert parties.vendor_client.get("/tokens").json() == []
    tx = parties.issue()
    tokens = parties.vendor_client.get("/tokens").json()
    assert [t["transaction"]["id"] for t in tokens] == [tx]
    assert parties.vendor_client.get(f"/token/{tx}").json() == parties.vendor.get_token(tx).to_dict()

    r = parties.vendor_client.get("/token/unknown")
    assert r.status_code == 404
    assert r.json()["detail"] == "TOKEN_NOT_FOUND"


def test_vendor_revision_endpoints_report_failures(parties):
    tx = parties.issue()
    assert parties.vendor_client.post("/revoke/unknown").json()["error_code"] == "ID_NOT_FOUND"
    assert parties.vendor_client.post(f"/refresh/{tx}").json() == {
        "success": False,
        "error_code": "NON_RECURRING",
        "error_message": "Cannot refresh non-recurring transaction token",
    }
    assert parties.vendor_client.post(f"/modify/{tx}", json={"amount": "abc"}).status_code == 400


# ============================================================
# Provider app
# ============================================================

def test_start_unreachable_vendor(parties):
    r = parties.provider_client.post("/start", json={"url": "stp://nowhere.test/api/stp/request/abc"})
    body = r.json()
    assert body["success"] is False
    assert body["HTTP_error_code"] == "CONNECTION_FAILED"
    assert "offer" not in body


def test_verify_unknown_negotiation(parties):
    r = parties.provider_client.post("/verify", json={"t_id": "unknown", "decision": True, "pin": 1234})
    assert r.json()["error_code"] == "ID_NOT_FOUND"


def test_verify_through_http(parties):
    url, started = parties.start()
    pin = parties.vendor.wait_for_pin(cut_id_from_url(url))
    r = parties.provider_client.post("/verify", json={"t_id": started.transaction_id, "decision": True, "pin": pin})
    assert r.json() == {"success": True, "transaction_id": started.transaction_id}
    assert parties.provider_client.get(f"/token/{started.transaction_id}").status_code == 200


def test_set_accept_modify(parties):
    r = parties.provider_client.post("/set_accept_modify", json={"value": False})
    assert r.json() == {"success": True, "auto_accept_modify": False}
    assert parties.provider.auto_accept_modify is False
    assert parties.provider_client.post("/set_accept_modify", json={"value": "maybe"}).status_code == 400


def test_ongoing_modification(manual_parties):
    parties = manual_parties
    assert parties.provider_client.get("/ongoing_modification").json() == {}

    tx = parties.issue("1", "USD")
    parties.vendor.revise(tx, "MODIFY", "2.00", "EUR")
    body = parties.provider_client.get("/ongoing_modification").json()
    assert body["transaction_id"] == tx
    assert body["modification"] == {"amount": "2", "currency": "EUR"}
    assert body["token"]["transaction"]["amount"] == "2"


def test_handle_unknown_modification(parties):
    r = parties.provider_client.post("/handle_modification/unknown", json={"accept": True})
    assert r.json()["error_code"] == "ID_NOT_FOUND"


def test_provider_revoke_unknown(parties):
    assert parties.provider_client.post("/revoke/unknown").json()["error_code"] == "ID_NOT_FOUND"
    assert parties.provider_client.get("/tokens").json() == []
