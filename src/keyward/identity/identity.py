"""
In-memory identity: a keypair or public-key-only reference and its lock state.
The decrypted secret key is owned here and nowhere else.
"""

from enum import Enum
from typing import Optional, Union, TYPE_CHECKING

from ..config import NPUB_PREFIX, NSEC_PREFIX
from ..errors import InvalidKeyFormat, SigningUnavailable
from ..utils.encoding import bech32_encode, key_bytes_from
from .keys import SecretKey, validate_public_key

if TYPE_CHECKING:
    from ..vault.record import VaultRecord


class LockState(Enum):
    ABSENT = "absent"
    PUBLIC_ONLY = "public_only"
    LOCKED_ENCRYPTED = "locked_encrypted"
    UNLOCKED = "unlocked"


class Identity:
    """
    A Nostr identity held by this application.

    Lock states:
    - ABSENT: nothing loaded
    - PUBLIC_ONLY: public key known, no secret anywhere
    - LOCKED_ENCRYPTED: public key plus encrypted vault record
    - UNLOCKED: decrypted secret key in memory
    """

    def __init__(self):
        self._secret: Optional[SecretKey] = None
        self._public_key: Optional[bytes] = None
        self._record: Optional['VaultRecord'] = None
        self._state = LockState.ABSENT

    # ==================== Construction ====================

    @classmethod
    def generate(cls) -> 'Identity':
        """
        Generate a new random keypair.

        Returns:
            Identity in UNLOCKED state
        """
        identity = cls()
        identity.regenerate()
        return identity

    @classmethod
    def from_secret(cls, secret: Union[bytes, str]) -> 'Identity':
        """
        Create an identity from a secret key.

        Args:
            secret: 32 raw bytes, 64-char hex, or nsec bech32

        Returns:
            Identity in UNLOCKED state

        Raises:
            InvalidKeyFormat: If the secret is malformed
        """
        identity = cls()
        identity.import_secret(secret)
        return identity

    @classmethod
    def from_public(cls, public_key: Union[bytes, str]) -> 'Identity':
        """
        Create a public-key-only identity.

        Args:
            public_key: 32 raw bytes, 64-char hex, or npub bech32

        Returns:
            Identity in PUBLIC_ONLY state

        Raises:
            InvalidKeyFormat: If the key is malformed
        """
        identity = cls()
        identity.import_public(public_key)
        return identity

    @classmethod
    def from_record(cls, record: 'VaultRecord') -> 'Identity':
        """
        Create an identity from a loaded vault record, without decrypting.

        Args:
            record: Vault record read from disk

        Returns:
            Identity in LOCKED_ENCRYPTED (or PUBLIC_ONLY for a public-only record)
        """
        identity = cls()
        identity.attach_record(record)
        return identity

    # ==================== Transitions ====================

    def regenerate(self):
        """Replace the current key with a fresh random keypair."""
        self._install_secret(SecretKey.generate())

    def import_secret(self, secret: Union[bytes, str]):
        """
        Replace the current key with an imported secret key.

        Args:
            secret: 32 raw bytes, 64-char hex, or nsec bech32

        Raises:
            InvalidKeyFormat: If the secret is malformed; state is unchanged
        """
        try:
            raw = key_bytes_from(secret, NSEC_PREFIX)
        except ValueError as e:
            raise InvalidKeyFormat(f"Invalid secret key: {e}")
        self._install_secret(SecretKey(raw))

    def import_public(self, public_key: Union[bytes, str]):
        """
        Replace the current key with a public key only.

        Args:
            public_key: 32 raw bytes, 64-char hex, or npub bech32

        Raises:
            InvalidKeyFormat: If the key is malformed; state is unchanged
        """
        try:
            raw = key_bytes_from(public_key, NPUB_PREFIX)
        except ValueError as e:
            raise InvalidKeyFormat(f"Invalid public key: {e}")
        validate_public_key(raw)

        self._wipe_secret()
        self._record = None
        self._public_key = raw
        self._state = LockState.PUBLIC_ONLY

    def attach_record(self, record: 'VaultRecord'):
        """
        Replace the current key with an encrypted vault record.

        Args:
            record: Vault record; public-only records give PUBLIC_ONLY
        """
        self._wipe_secret()
        self._public_key = record.public_key
        if record.is_encrypted:
            self._record = record
            self._state = LockState.LOCKED_ENCRYPTED
        else:
            self._record = None
            self._state = LockState.PUBLIC_ONLY

    def unlock_with(self, secret: SecretKey):
        """
        Move from LOCKED_ENCRYPTED to UNLOCKED with a decrypted key.
        Called by the vault after tag and public key verification.
        """
        record = self._record
        self._install_secret(secret)
        self._record = record

    def remember_record(self, record: 'VaultRecord'):
        """Keep a reference to the record this unlocked key was just saved as."""
        if record.public_key != self._public_key:
            raise InvalidKeyFormat("Vault record belongs to another public key")
        self._record = record

    def lock(self) -> bool:
        """
        Drop the decrypted key, keeping the encrypted record.

        Returns:
            True if the identity is now LOCKED_ENCRYPTED
        """
        if self._state is LockState.UNLOCKED and self._record is not None:
            self._wipe_secret()
            self._state = LockState.LOCKED_ENCRYPTED
            return True
        return False

    def clear(self):
        """Zero any secret bytes and forget the identity."""
        self._wipe_secret()
        self._public_key = None
        self._record = None
        self._state = LockState.ABSENT

    def _install_secret(self, secret: SecretKey):
        public_key = secret.public_key()
        self._wipe_secret()
        self._secret = secret
        self._public_key = public_key
        self._record = None
        self._state = LockState.UNLOCKED

    def _wipe_secret(self):
        if self._secret is not None:
            self._secret.wipe()
            self._secret = None

    # ==================== Queries ====================

    def can_sign(self) -> bool:
        """True iff a decrypted secret key is present."""
        return self._state is LockState.UNLOCKED

    def is_set(self) -> bool:
        """True if any key (public or secret) is loaded."""
        return self._state is not LockState.ABSENT

    def has_secret(self) -> bool:
        """True if a secret key exists, decrypted or not."""
        return self._state in (LockState.UNLOCKED, LockState.LOCKED_ENCRYPTED)

    @property
    def state(self) -> LockState:
        return self._state

    @property
    def public_key(self) -> Optional[bytes]:
        return self._public_key

    @property
    def public_key_hex(self) -> Optional[str]:
        return self._public_key.hex() if self._public_key else None

    @property
    def npub(self) -> Optional[str]:
        if self._public_key is None:
            return None
        return bech32_encode(NPUB_PREFIX, self._public_key)

    @property
    def record(self) -> Optional['VaultRecord']:
        return self._record

    # ==================== Borrowing the secret ====================

    def sign(self, digest: bytes) -> bytes:
        """
        Schnorr-sign a 32-byte digest with the unlocked key.

        Args:
            digest: 32-byte hash to sign

        Returns:
            64-byte signature

        Raises:
            SigningUnavailable: If the identity is not UNLOCKED
        """
        if not self.can_sign():
            raise SigningUnavailable(f"Secret key not available (state: {self._state.value})")
        return self._secret.sign(digest)

    def shared_x(self, peer_public_key: bytes) -> bytes:
        """
        ECDH shared x-coordinate with a peer public key.

        Raises:
            SigningUnavailable: If the identity is not UNLOCKED
        """
        if not self.can_sign():
            raise SigningUnavailable(f"Secret key not available (state: {self._state.value})")
        return self._secret.shared_x(peer_public_key)

    def seal(self, seal_fn):
        """
        Hand the raw secret to an encryption callable for one call.
        Used by the vault to encrypt; the callable must not keep the bytes.

        Args:
            seal_fn: Callable taking the secret bytes, returning ciphertext

        Returns:
            Whatever seal_fn returns
        """
        if not self.can_sign():
            raise SigningUnavailable(f"Secret key not available (state: {self._state.value})")
        plaintext = bytearray(self._secret.export())
        try:
            return seal_fn(bytes(plaintext))
        finally:
            for i in range(len(plaintext)):
                plaintext[i] = 0

    def export_nsec(self) -> str:
        """
        Copy out the secret key as nsec bech32, for manual backup.
        WARNING: Handle with extreme care.

        Raises:
            SigningUnavailable: If the identity is not UNLOCKED
        """
        if not self.can_sign():
            raise SigningUnavailable(f"Secret key not available (state: {self._state.value})")
        return bech32_encode(NSEC_PREFIX, self._secret.export())

    def to_dict(self) -> dict:
        """Convert identity to a dictionary of public information."""
        return {
            'state': self._state.value,
            'public_key': self.public_key_hex,
            'npub': self.npub,
        }

    def __repr__(self) -> str:
        return f"Identity(state={self._state.value}, public_key={self.public_key_hex})"
