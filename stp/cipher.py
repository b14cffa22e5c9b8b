"""
Revision cipher.

Tokens travelling inside a revision exchange are encrypted under key
material derived from the token both parties last agreed on, so only a
holder of that token can read or produce the next version.

Key material is the SHA-512 digest of the canonical token tagged with a
purpose label: the first 32 bytes are the AES-256 key, the next 16 the
CBC IV. Payloads are PKCS7 padded.
"""

import binascii
import json
from dataclasses import dataclass

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .errors import RevisionCipherError
from .hashing import purpose_digest
from .token import Token
from .util import b64d, b64e

REVISION_KEY_PURPOSE = "stp-revision-key"

KEY_SIZE = 32
IV_SIZE = 16


def revision_key_digest(token: Token) -> bytes:
    """Digest of the agreed token that key material is cut from."""
    return purpose_digest(REVISION_KEY_PURPOSE, token.to_dict())


@dataclass(frozen=True)
class KeyMaterial:
    key: bytes
    iv: bytes

    @classmethod
    def from_digest(cls, digest: bytes) -> 'KeyMaterial':
        if len(digest) < KEY_SIZE + IV_SIZE:
            raise ValueError("digest too short for key material")
        return cls(key=digest[:KEY_SIZE], iv=digest[KEY_SIZE:KEY_SIZE + IV_SIZE])

    @classmethod
    def derive(cls, token: Token) -> 'KeyMaterial':
        return cls.from_digest(revision_key_digest(token))

    def __repr__(self) -> str:
        return "KeyMaterial(<redacted>)"


def encrypt(material: KeyMaterial, plaintext: bytes) -> str:
    """AES-256-CBC encrypt, returning base64 ciphertext."""
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(plaintext) + padder.finalize()
    encryptor = Cipher(algorithms.AES(material.key), modes.CBC(material.iv)).encryptor()
    return b64e(encryptor.update(padded) + encryptor.finalize())


def decrypt(material: KeyMaterial, ciphertext: str) -> bytes:
    """
    Reverse of ``encrypt``.

    Raises:
        RevisionCipherError: on bad encoding, bad length or bad padding
    """
    try:
        raw = b64d(ciphertext)
    except (binascii.Error, ValueError, AttributeError):
        raise RevisionCipherError("ciphertext is not valid base64")
    if not raw or len(raw) % IV_SIZE:
        raise RevisionCipherError("ciphertext length is not a multiple of the block size")
    decryptor = Cipher(algorithms.AES(material.key), modes.CBC(material.iv)).decryptor()
    padded = decryptor.update(raw) + decryptor.finalize()
    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    try:
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError:
        raise RevisionCipherError("invalid padding")


def encrypt_token(material: KeyMaterial, token: Token) -> str:
    return encrypt(material, token.encode())


def decrypt_token(material: KeyMaterial, ciphertext: str) -> Token:
    """
    Decrypt and parse a token.

    Raises:
        RevisionCipherError: if decryption fails or the plaintext is not a token
    """
    plaintext = decrypt(material, ciphertext)
    try:
        return Token.decode(plaintext)
    except (ValueError, json.JSONDecodeError) as e:
        raise RevisionCipherError(f"decrypted payload is not a token: {e}")
