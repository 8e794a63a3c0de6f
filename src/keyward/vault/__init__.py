"""Encrypted key storage for keyward."""

from .record import KdfParams, VaultRecord
from .vault import EncryptedVault, StoreResult

__all__ = [
    'KdfParams',
    'VaultRecord',
    'EncryptedVault',
    'StoreResult',
]
