"""
Key management module for STP.

Loads and writes the file-based Ed25519 keys of a party and the trust
store holding the counterparty's public key.
"""

import json
import os
from typing import Any, Dict

from .signing import KeyPair
from .util import b64d, b64e


def load_party_keys(path: str) -> KeyPair:
    """
    Load a party key pair from a JSON file.

    The file holds ``{"kid": ..., "private_key_b64": ...}``.
    """
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    return KeyPair.from_signing_key(raw["kid"], b64d(raw["private_key_b64"]))


def write_party_keys(keypair: KeyPair, path: str) -> None:
    """Write a party key pair in the format ``load_party_keys`` reads."""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump({"kid": keypair.key_id, "private_key_b64": b64e(keypair.signing_key)}, f, indent=2)


def load_trust_store(path: str) -> Dict[str, Any]:
    """Load the trust store JSON."""
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def trusted_public_key(trust_store: Dict[str, Any], kid: str) -> str:
    """
    Look up a trusted counterparty public key by key id.

    Raises:
        KeyError: if the key id is not in the trust store
    """
    for entry in trust_store.get("keys", []):
        if entry.get("key_id") == kid:
            return entry["public_key"]
    raise KeyError(f"Key not found in trust store: {kid}")


def build_trust_store(*keypairs: KeyPair) -> Dict[str, Any]:
    """Trust store listing the public halves of the given key pairs."""
    return {
        "trust_store_id": "stp-trust-store",
        "keys": [kp.to_trust_store_entry() for kp in keypairs],
    }
