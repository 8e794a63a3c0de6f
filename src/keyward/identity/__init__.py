"""Identity management for keyward."""

from .keys import SecretKey, derive_public_key, validate_public_key, schnorr_sign, schnorr_verify
from .identity import Identity, LockState
from .event import NostrEvent, parse_event, sign_event, verify_event

__all__ = [
    'SecretKey',
    'derive_public_key',
    'validate_public_key',
    'schnorr_sign',
    'schnorr_verify',
    'Identity',
    'LockState',
    'NostrEvent',
    'parse_event',
    'sign_event',
    'verify_event',
]
