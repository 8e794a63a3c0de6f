"""
Hashing utilities.
All hashing is deterministic and uses SHA-256.
"""

import hashlib


def sha256(data: bytes) -> bytes:
    """
    Hash bytes using SHA-256.

    Args:
        data: Raw bytes to hash

    Returns:
        32-byte digest
    """
    if not isinstance(data, (bytes, bytearray)):
        raise TypeError(f"Expected bytes, got {type(data)}")
    return hashlib.sha256(data).digest()


def sha256_hex(data: bytes) -> str:
    """Hex-encoded SHA-256 digest (64 characters)."""
    return sha256(data).hex()


def hash_string(data: str) -> bytes:
    """
    Hash a string using SHA-256.

    Args:
        data: String to hash (will be UTF-8 encoded)

    Returns:
        32-byte digest
    """
    if not isinstance(data, str):
        raise TypeError(f"Expected str, got {type(data)}")

    return sha256(data.encode('utf-8'))
