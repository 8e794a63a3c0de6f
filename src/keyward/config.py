"""
Configuration for keyward.
Module-level values are immutable system constants; VaultConfig is the only
runtime configuration and is always passed explicitly.
"""

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

# Key constants
KEY_SIZE_BYTES = 32
PUBLIC_KEY_LENGTH = 32  # x-only secp256k1 public key bytes
SIGNATURE_LENGTH = 64  # BIP-340 Schnorr signature bytes
NSEC_PREFIX = "nsec"
NPUB_PREFIX = "npub"

# Canonical JSON settings (Nostr event serialization)
JSON_SEPARATORS = (',', ':')  # No whitespace
JSON_ENSURE_ASCII = False

# Vault constants
VAULT_VERSION = 1
VAULT_FILENAME = "keys.json"
VAULT_HOME_ENV = "KEYWARD_HOME"
VAULT_DEFAULT_DIRNAME = ".keyward"
VAULT_CIPHER = "aes-256-gcm"
VAULT_KDF = "scrypt"
VAULT_SALT_BYTES = 16
VAULT_NONCE_BYTES = 12
VAULT_TAG_BYTES = 16
SCRYPT_N = 2 ** 16
SCRYPT_R = 8
SCRYPT_P = 1
# Upper bounds accepted when reading a vault file
SCRYPT_MAX_N = 2 ** 20
SCRYPT_MAX_R = 32
SCRYPT_MAX_P = 16
SCRYPT_MAX_MEMORY_BYTES = 2 ** 30
VAULT_MIN_SALT_BYTES = 8
# Used in place of a password when the setting lets the user skip one
DEFAULT_FALLBACK_SECRET = "keyward-storage-v1"

# Delegation (NIP-26)
DELEGATION_PREFIX = "nostr:delegation"
DELEGATION_TAG = "delegation"

# Remote signer (NIP-46)
NOSTR_CONNECT_SCHEME = "nostrconnect"
NOSTR_CONNECT_KIND = 24133
HANDSHAKE_TIMEOUT_SECONDS = 30.0
STALE_EVENT_WINDOW_SECONDS = 10
PREVIEW_CONTENT_LENGTH = 100
# Answered request ids kept per session and queue to recognise retransmissions
MAX_RESOLVED_HISTORY = 1000

METHOD_CONNECT = "connect"
METHOD_DESCRIBE = "describe"
METHOD_GET_PUBLIC_KEY = "get_public_key"
METHOD_SIGN_EVENT = "sign_event"
METHOD_DELEGATE = "nip26_delegate"
METHOD_DELEGATE_LEGACY = "delegate"

# Answered straight away from an active session
IMMEDIATE_METHODS = frozenset([METHOD_DESCRIBE, METHOD_GET_PUBLIC_KEY])
# Always routed through user approval
APPROVAL_METHODS = frozenset([METHOD_SIGN_EVENT, METHOD_DELEGATE, METHOD_DELEGATE_LEGACY])
SUPPORTED_METHODS = (
    METHOD_DESCRIBE,
    METHOD_GET_PUBLIC_KEY,
    METHOD_SIGN_EVENT,
    METHOD_DELEGATE,
)

# Logging
LOGGER_NAME = "keyward"


class SecuritySetting(Enum):
    """
    How the secret key may be kept at rest.
    """

    NEVER_PERSIST = "never"
    PASSWORD_REQUIRED = "password"
    PERSIST_OPTIONAL_PASSWORD = "optional"

    def allows_persist(self) -> bool:
        return self is not SecuritySetting.NEVER_PERSIST

    def requires_password(self) -> bool:
        return self is SecuritySetting.PASSWORD_REQUIRED


@dataclass(frozen=True)
class VaultConfig:
    """
    Location and cost parameters for the encrypted vault.
    """

    path: Path
    scrypt_n: int = SCRYPT_N
    scrypt_r: int = SCRYPT_R
    scrypt_p: int = SCRYPT_P
    fallback_secret: str = DEFAULT_FALLBACK_SECRET

    @classmethod
    def default(cls) -> 'VaultConfig':
        """
        Build the per-user configuration.

        The vault lives in $KEYWARD_HOME, or ~/.keyward when unset.

        Returns:
            VaultConfig instance
        """
        home = os.environ.get(VAULT_HOME_ENV)
        base = Path(home) if home else Path.home() / VAULT_DEFAULT_DIRNAME
        return cls(path=base / VAULT_FILENAME)

    @classmethod
    def in_directory(cls, directory, **kwargs) -> 'VaultConfig':
        """Configuration for a vault stored in the given directory."""
        return cls(path=Path(directory) / VAULT_FILENAME, **kwargs)
