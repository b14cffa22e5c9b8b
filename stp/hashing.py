"""
STP Hashing

SHA-512 is the token hash (metadata ``alg``). Digests over structured
data are always taken over the canonical encoding.
"""

import hashlib
from typing import Any, Union

from .canonicalization import canonicalize


def sha512_digest(data: Union[bytes, str]) -> bytes:
    """Raw SHA-512 digest."""
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha512(data).digest()


def sha512_hash(data: Union[bytes, str]) -> str:
    """
    SHA-512 hash in prefixed lowercase hex form.

    Returns:
        Hash string in format "sha512:abcdef..."
    """
    return f"sha512:{sha512_digest(data).hex()}"


def content_hash(obj: Any) -> str:
    """Hash of the canonical encoding of ``obj``."""
    return sha512_hash(canonicalize(obj))


def purpose_digest(purpose: str, obj: Any) -> bytes:
    """
    Domain-separated digest.

    The purpose label is part of the hashed object, so the same content
    hashed for two different uses never yields the same digest.
    """
    return sha512_digest(canonicalize({"purpose": purpose, "content": obj}))


def verify_hash(declared_hash: str, obj: Any) -> bool:
    """Recompute the content hash of ``obj`` and compare."""
    if not declared_hash.startswith("sha512:"):
        return False
    return content_hash(obj) == declared_hash
