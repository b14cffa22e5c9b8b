"""
Key files, trust store, CLI commands and structured logging.
"""

import json
import logging
from argparse import Namespace

import pytest

from stp import cli
from stp.hashing import content_hash, verify_hash
from stp.keys import (
    build_trust_store,
    load_party_keys,
    load_trust_store,
    trusted_public_key,
    write_party_keys,
)
from stp.logging_config import ProtocolAuditLogger, StructuredFormatter, get_exchange_id, set_exchange_id
from stp.signing import KeyPair
from stp.token import Token
from stp.builder import TokenBuilder


def test_party_keys_round_trip(tmp_path):
    keys = KeyPair.generate("stp-vendor-01")
    path = tmp_path / "secrets" / "vendor_signing_key.json"
    write_party_keys(keys, str(path))
    loaded = load_party_keys(str(path))
    assert loaded.key_id == "stp-vendor-01"
    assert loaded.public_key == keys.public_key


def test_trust_store_lookup(tmp_path):
    vendor, provider = KeyPair.generate("v"), KeyPair.generate("p")
    path = tmp_path / "trust_store.json"
    path.write_text(json.dumps(build_trust_store(vendor, provider)))
    store = load_trust_store(str(path))
    assert trusted_public_key(store, "p") == provider.public_key
    with pytest.raises(KeyError):
        trusted_public_key(store, "missing")


def test_keygen_command(tmp_path, capsys):
    trust = tmp_path / "trust" / "trust_store.json"
    cli.cmd_keygen(Namespace(secrets_dir=str(tmp_path / "secrets"), trust_store=str(trust)))
    store = load_trust_store(str(trust))
    vendor = load_party_keys(str(tmp_path / "secrets" / "vendor_signing_key.json"))
    assert trusted_public_key(store, vendor.key_id) == vendor.public_key
    assert "Vendor key" in capsys.readouterr().out


def write_token(tmp_path, token):
    path = tmp_path / "token.json"
    path.write_text(json.dumps(token.to_dict()))
    return str(path)


def test_verify_command(tmp_path, capsys):
    vendor, provider = TokenBuilder(KeyPair.generate("v")), TokenBuilder(KeyPair.generate("p"))
    token = vendor.issue_vendor_token(vendor.new_transaction("tx", "BIC", "1", "USD"))

    assert cli.cmd_verify(Namespace(token=write_token(tmp_path, token))) == 1
    assert "provider signature missing" in capsys.readouterr().out

    full = provider.counter_sign(token)
    assert cli.cmd_verify(Namespace(token=write_token(tmp_path, full))) == 0

    d = full.to_dict()
    d["transaction"]["amount"] = "2"
    assert cli.cmd_verify(Namespace(token=write_token(tmp_path, Token.from_dict(d)))) == 1


def test_verify_command_malformed(tmp_path, capsys):
    path = tmp_path / "token.json"
    path.write_text(json.dumps({"metadata": {}}))
    assert cli.cmd_verify(Namespace(token=str(path))) == 1
    assert "MALFORMED" in capsys.readouterr().out


def test_hash_command(tmp_path, capsys):
    path = tmp_path / "doc.json"
    path.write_text(json.dumps({"b": 1, "a": "x"}))
    cli.cmd_hash(Namespace(file=str(path)))
    assert capsys.readouterr().out.strip() == content_hash({"a": "x", "b": 1})


def test_audit_events_are_structured(caplog):
    audit = ProtocolAuditLogger("vendor")
    exchange_id = set_exchange_id()
    assert get_exchange_id() == exchange_id
    with caplog.at_level(logging.INFO, logger="stp.audit"):
        audit.revision_applied("tx-1", "REFRESH")
    record = caplog.records[-1]
    assert record.extra_fields["event_type"] == "REVISION_APPLIED"
    assert record.extra_fields["party"] == "vendor"

    out = json.loads(StructuredFormatter().format(record))
    assert out["exchange_id"] == exchange_id
    assert out["transaction_id"] == "tx-1"
    assert out["revision_verb"] == "REFRESH"


def test_serve_refuses_missing_key_files(tmp_path, monkeypatch, capsys):
    from stp import config
    monkeypatch.setattr(config, "PROVIDER_KEY_PATH", str(tmp_path / "missing.json"))
    monkeypatch.setattr(config, "TRUST_STORE_PATH", str(tmp_path / "trust.json"))
    assert cli.cmd_serve(Namespace(party="provider", port=None, bind="127.0.0.1")) == 1
    assert "provider_key" in capsys.readouterr().err


def test_verify_hash():
    doc = {"b": 1, "a": "x"}
    assert verify_hash(content_hash(doc), {"a": "x", "b": 1})
    assert not verify_hash(content_hash(doc), {"a": "y", "b": 1})
    assert not verify_hash("sha256:" + content_hash(doc).split(":", 1)[1], doc)
