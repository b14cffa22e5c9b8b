"""
Challenge-response authentication.

A challenge is fresh random data; the response is a detached signature
over the raw challenge bytes. The trailing id of a negotiation or
revision URL is used the same way: whoever was handed the URL proves it
by signing that id.
"""

import binascii
import secrets

from . import config
from .signing import KeyPair, verify_signature
from .util import b64d, b64e, cut_id_from_url


class ChallengeAuthenticator:

    def __init__(self, keypair: KeyPair, challenge_bytes: int = None):
        self.keypair = keypair
        self.challenge_bytes = config.CHALLENGE_BYTES if challenge_bytes is None else challenge_bytes

    def issue_challenge(self) -> str:
        """Random challenge as base64."""
        return b64e(secrets.token_bytes(self.challenge_bytes))

    def respond(self, challenge: str) -> str:
        """
        Sign a counterparty's challenge.

        Raises:
            ValueError: if the challenge is not valid base64
        """
        try:
            raw = b64d(challenge)
        except (binascii.Error, ValueError):
            raise ValueError("challenge is not valid base64")
        return self.keypair.sign(raw)

    @staticmethod
    def verify_response(challenge: str, response: str, public_key: str) -> bool:
        try:
            raw = b64d(challenge)
        except (binascii.Error, ValueError, AttributeError):
            return False
        return verify_signature(response, raw, public_key)

    def sign_url(self, url: str) -> str:
        """Signature over the trailing id of ``url``."""
        return self.keypair.sign(cut_id_from_url(url).encode('utf-8'))

    @staticmethod
    def verify_url_signature(url_id: str, signature: str, public_key: str) -> bool:
        return verify_signature(signature, url_id.encode('utf-8'), public_key)
