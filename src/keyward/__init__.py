"""
Keyward - Local Nostr Key Custody & Remote Signer

Holds a Nostr identity locally, stores its secret key encrypted at rest,
issues NIP-26 delegations and answers NIP-46 remote signing requests,
each one confirmed by the user.

Main exports:
- KeywardEngine: Main engine class
- Identity: Keypair or public-key-only identity
- EncryptedVault: Encrypted key storage
- build_delegation: NIP-26 certificate builder
- RemoteSigner: NIP-46 signer service
"""

from .engine import KeywardEngine, StatusMessages
from .config import SecuritySetting, VaultConfig
from .identity import Identity, LockState
from .vault import EncryptedVault
from .delegation import DelegationCertificate, DelegationConditions, build_delegation
from .signer import RemoteSigner, parse_pairing_uri
from .errors import *

__version__ = "0.1.0"

__all__ = [
    'KeywardEngine',
    'StatusMessages',
    'SecuritySetting',
    'VaultConfig',
    'Identity',
    'LockState',
    'EncryptedVault',
    'DelegationCertificate',
    'DelegationConditions',
    'build_delegation',
    'RemoteSigner',
    'parse_pairing_uri',
]
