"""
Canonical JSON serialization for deterministic hashing.
Nostr event ids are computed over this exact form.
"""

import json
from typing import Any

from ..config import JSON_SEPARATORS, JSON_ENSURE_ASCII


def canonicalize(obj: Any) -> str:
    """
    Serialize an object to canonical JSON.

    Canonical properties:
    - No whitespace
    - UTF-8 characters kept unescaped
    - Caller-defined ordering (arrays keep their order)

    Args:
        obj: Python object to serialize

    Returns:
        Canonical JSON string

    Raises:
        TypeError: If object is not JSON-serializable
    """
    try:
        return json.dumps(
            obj,
            separators=JSON_SEPARATORS,
            ensure_ascii=JSON_ENSURE_ASCII,
            allow_nan=False,  # Reject NaN/Infinity for determinism
        )
    except (TypeError, ValueError) as e:
        raise TypeError(f"Object not JSON-serializable: {e}")


def canonicalize_bytes(obj: Any) -> bytes:
    """
    Serialize an object to canonical JSON bytes.

    Args:
        obj: Python object to serialize

    Returns:
        Canonical JSON as UTF-8 bytes
    """
    canonical_str = canonicalize(obj)
    return canonical_str.encode('utf-8')


def parse(json_str) -> Any:
    """
    Parse a JSON string (or UTF-8 bytes) into a Python object.

    Args:
        json_str: JSON text to parse

    Returns:
        Parsed Python object

    Raises:
        ValueError: If JSON is invalid
    """
    try:
        if isinstance(json_str, (bytes, bytearray)):
            json_str = bytes(json_str).decode('utf-8')
        return json.loads(json_str)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValueError(f"Invalid JSON: {e}")
