"""
STP Canonical JSON Encoding

The exact byte sequence that gets signed, verified, hashed and encrypted.
Semantically identical tokens and messages produce identical bytes.
"""

import json
from decimal import Decimal
from typing import Any, Dict, List, Union


def canonicalize(obj: Any) -> bytes:
    """
    Convert an object to its canonical JSON bytes.

    Rules:
    - Object keys sorted lexicographically (Unicode code point order)
    - No whitespace between tokens (compact form)
    - UTF-8 encoding, no BOM, minimal escaping
    - Integers as-is; floats are refused (amounts travel as decimal strings)
    - Arrays preserve order

    Returns:
        UTF-8 encoded bytes of canonical JSON
    """
    canonical = _canonicalize_value(obj)
    return json.dumps(canonical, separators=(',', ':'), ensure_ascii=False).encode('utf-8')


def canonicalize_str(obj: Any) -> str:
    """Return canonical JSON as string."""
    return canonicalize(obj).decode('utf-8')


def decode_canonical(data: Union[bytes, str]) -> Any:
    """
    Parse canonical JSON back into Python objects.

    Floats are parsed as Decimal so that a stray float never silently
    round-trips into a different textual form.
    """
    if isinstance(data, bytes):
        data = data.decode('utf-8')
    return json.loads(data, parse_float=Decimal)


def _canonicalize_value(value: Any) -> Any:
    """Recursively canonicalize a value."""
    if value is None:
        return None
    elif isinstance(value, bool):
        return value
    elif isinstance(value, int):
        return value
    elif isinstance(value, (float, Decimal)):
        raise ValueError(
            f"Cannot canonicalize non-integer number {value!r}: encode it as a decimal string"
        )
    elif isinstance(value, str):
        return value
    elif isinstance(value, dict):
        return _canonicalize_object(value)
    elif isinstance(value, (list, tuple)):
        return _canonicalize_array(value)
    else:
        raise ValueError(f"Cannot canonicalize type: {type(value)}")


def _canonicalize_object(obj: Dict[str, Any]) -> Dict[str, Any]:
    """Canonicalize an object by sorting keys lexicographically."""
    for key in obj:
        if not isinstance(key, str):
            raise ValueError(f"Object keys must be strings, got {type(key)}")
    return {k: _canonicalize_value(obj[k]) for k in sorted(obj.keys())}


def _canonicalize_array(arr: Union[List, tuple]) -> List:
    """Canonicalize an array, preserving order."""
    return [_canonicalize_value(item) for item in arr]
