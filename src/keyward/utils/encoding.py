"""
Key encodings: raw bytes, hex and NIP-19 bech32 (npub / nsec).
"""

import base64
from typing import Optional, Union

import bech32

from ..config import KEY_SIZE_BYTES


def b64e(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64d(text: str) -> bytes:
    return base64.b64decode(text.encode("ascii"), validate=True)


def bech32_encode(hrp: str, data: bytes) -> str:
    """
    Encode bytes as a bech32 string with the given human-readable part.

    Args:
        hrp: Human-readable prefix, e.g. "npub"
        data: Raw bytes

    Returns:
        bech32 string
    """
    words = bech32.convertbits(data, 8, 5, True)
    return bech32.bech32_encode(hrp, words)


def bech32_decode(text: str, expected_hrp: str) -> bytes:
    """
    Decode a bech32 string and check its prefix.

    Args:
        text: bech32 string
        expected_hrp: Required human-readable prefix

    Returns:
        Decoded bytes

    Raises:
        ValueError: If the string is not valid bech32 or has the wrong prefix
    """
    hrp, words = bech32.bech32_decode(text.strip().lower())
    if hrp is None or words is None:
        raise ValueError("Invalid bech32 string")
    if hrp != expected_hrp:
        raise ValueError(f"Expected '{expected_hrp}' prefix, got '{hrp}'")
    data = bech32.convertbits(words, 5, 8, False)
    if data is None:
        raise ValueError("Invalid bech32 payload padding")
    return bytes(data)


def key_bytes_from(value: Union[bytes, bytearray, str], bech32_hrp: str) -> bytes:
    """
    Normalize a key given as raw bytes, hex or bech32 to 32 raw bytes.

    Args:
        value: Key material in any supported encoding
        bech32_hrp: Prefix accepted for the bech32 form ("nsec" or "npub")

    Returns:
        32 key bytes

    Raises:
        ValueError: If the value cannot be decoded or has the wrong length
    """
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
    elif isinstance(value, str):
        text = value.strip()
        if text.lower().startswith(bech32_hrp + "1"):
            raw = bech32_decode(text, bech32_hrp)
        else:
            raw = parse_hex(text)
    else:
        raise ValueError(f"Unsupported key type: {type(value).__name__}")

    if len(raw) != KEY_SIZE_BYTES:
        raise ValueError(f"Key must be {KEY_SIZE_BYTES} bytes, got {len(raw)}")
    return raw


def parse_hex(text: str, length: Optional[int] = None) -> bytes:
    """Decode a hex string, optionally checking the decoded length."""
    try:
        raw = bytes.fromhex(text)
    except ValueError as e:
        raise ValueError(f"Invalid hex: {e}")
    if length is not None and len(raw) != length:
        raise ValueError(f"Expected {length} bytes, got {len(raw)}")
    return raw
