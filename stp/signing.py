"""
STP Cryptographic Signing

The signature oracle used for both token layers and for challenge
responses. Ed25519 (RFC 8032) via PyNaCl; public keys travel inside
tokens as raw base64.
"""

import binascii
from dataclasses import dataclass
from typing import Any, Dict

from nacl.exceptions import BadSignatureError, CryptoError
from nacl.signing import SigningKey, VerifyKey

from .util import b64d, b64e

ALGORITHM = "ed25519"


@dataclass(frozen=True)
class KeyPair:
    """Ed25519 key pair of one protocol party."""
    key_id: str
    signing_key: bytes
    verify_key: bytes
    algorithm: str = ALGORITHM

    @classmethod
    def generate(cls, key_id: str) -> 'KeyPair':
        """Generate a fresh Ed25519 key pair."""
        signing_key = SigningKey.generate()
        return cls(
            key_id=key_id,
            signing_key=bytes(signing_key),
            verify_key=bytes(signing_key.verify_key),
        )

    @classmethod
    def from_signing_key(cls, key_id: str, signing_key: bytes) -> 'KeyPair':
        """Rebuild a key pair from the 32-byte private seed."""
        sk = SigningKey(signing_key)
        return cls(key_id=key_id, signing_key=bytes(sk), verify_key=bytes(sk.verify_key))

    @property
    def public_key(self) -> str:
        """Token-portable encoding of the public key."""
        return b64e(self.verify_key)

    def sign(self, data: bytes) -> str:
        """Detached signature over ``data`` as base64."""
        return sign_data(data, self.signing_key)

    def to_trust_store_entry(self) -> Dict[str, Any]:
        """Convert to trust store entry format."""
        return {
            "key_id": self.key_id,
            "algorithm": self.algorithm,
            "public_key": self.public_key,
        }

    def __repr__(self) -> str:
        return f"KeyPair(key_id={self.key_id!r}, public_key={self.public_key!r})"


def sign_data(data: bytes, signing_key: bytes) -> str:
    """Sign data with an Ed25519 signing key, returning a base64 signature."""
    return b64e(SigningKey(signing_key).sign(data).signature)


def verify_signature(signature_b64: str, data: bytes, public_key_b64: str) -> bool:
    """
    Verify an Ed25519 signature.

    Args:
        signature_b64: Base64-encoded signature
        data: The signed data
        public_key_b64: Base64-encoded public key

    Returns:
        True if signature is valid, False otherwise (including malformed
        signature or key encodings)
    """
    if not signature_b64 or not public_key_b64:
        return False
    try:
        key = VerifyKey(b64d(public_key_b64))
        key.verify(data, b64d(signature_b64))
        return True
    except (BadSignatureError, CryptoError, binascii.Error, ValueError, TypeError):
        return False
