"""
Encrypted vault: password-derived AES-GCM storage of the secret key.
"""

import json
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from ..config import (
    SecuritySetting,
    VaultConfig,
    VAULT_SALT_BYTES,
    VAULT_NONCE_BYTES,
    VAULT_TAG_BYTES,
)
from ..errors import (
    CorruptRecord,
    KeyNotSet,
    LoadNotAllowed,
    NoStoredKey,
    NotFound,
    PasswordRequired,
    VaultError,
    WrongPassword,
    InvalidKeyFormat,
)
from ..identity.identity import Identity, LockState
from ..identity.keys import SecretKey
from ..logger import get_logger
from .record import KdfParams, VaultRecord

log = get_logger(__name__)


@dataclass(frozen=True)
class StoreResult:
    """Outcome of a save request."""

    persisted: bool
    encrypted: bool = False
    path: Optional[Path] = None


class EncryptedVault:
    """
    Reads and writes the vault record at a fixed location.
    """

    def __init__(self, config: Optional[VaultConfig] = None):
        """
        Initialize vault.

        Args:
            config: Vault location and cost parameters (per-user default if omitted)
        """
        self.config = config or VaultConfig.default()

    @property
    def path(self) -> Path:
        return self.config.path

    def exists(self) -> bool:
        """Check whether a vault file is present."""
        return self.path.is_file()

    # ==================== Save ====================

    def encrypt_and_store(
        self,
        identity: Identity,
        setting: SecuritySetting,
        password: Optional[str] = None,
    ) -> StoreResult:
        """
        Persist an identity under the given security setting.

        Args:
            identity: Identity to save
            setting: Security setting in force
            password: Optional user password

        Returns:
            StoreResult describing what was written

        Raises:
            PasswordRequired: If the setting demands a password and none is given
            KeyNotSet: If the identity is ABSENT
        """
        if not setting.allows_persist():
            log.info("Save skipped: security setting forbids persisting keys")
            return StoreResult(persisted=False)

        state = identity.state
        if state is LockState.ABSENT:
            raise KeyNotSet("No key to save")

        if state is LockState.PUBLIC_ONLY:
            record = VaultRecord(public_key=identity.public_key)
        elif state is LockState.LOCKED_ENCRYPTED:
            # Nothing decrypted to re-encrypt; keep the stored ciphertext
            record = identity.record
            if setting.requires_password() and not record.password_required:
                raise PasswordRequired("Stored key has no password; unlock it and save with one")
        else:
            if setting.requires_password() and not password:
                raise PasswordRequired("Password required by security setting")
            record = self._seal(identity, password)

        self._write_atomic(record)
        if record.is_encrypted and state is LockState.UNLOCKED:
            identity.remember_record(record)
        log.info(f"Vault saved (encrypted={record.is_encrypted}, path={self.path})")
        return StoreResult(persisted=True, encrypted=record.is_encrypted, path=self.path)

    def _seal(self, identity: Identity, password: Optional[str]) -> VaultRecord:
        salt = os.urandom(VAULT_SALT_BYTES)
        nonce = os.urandom(VAULT_NONCE_BYTES)
        kdf = KdfParams(
            salt=salt,
            n=self.config.scrypt_n,
            r=self.config.scrypt_r,
            p=self.config.scrypt_p,
        )
        header = VaultRecord(public_key=identity.public_key, password_required=bool(password))
        key = self._derive_key(kdf, password)

        sealed = identity.seal(
            lambda secret: AESGCM(key).encrypt(nonce, secret, header.associated_data())
        )
        return VaultRecord(
            public_key=header.public_key,
            password_required=header.password_required,
            kdf=kdf,
            nonce=nonce,
            ciphertext=sealed[:-VAULT_TAG_BYTES],
            tag=sealed[-VAULT_TAG_BYTES:],
        )

    def _write_atomic(self, record: VaultRecord):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = json.dumps(record.to_dict(), indent=2, sort_keys=True).encode('utf-8')

        fd, tmp_name = tempfile.mkstemp(prefix=".keys-", suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            # Set restrictive permissions (owner read/write only)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except OSError as e:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise VaultError(f"Cannot write vault file: {e}")

    # ==================== Load ====================

    def load_record(self, setting: Optional[SecuritySetting] = None) -> Identity:
        """
        Read the vault record without decrypting it.

        Args:
            setting: Security setting in force; loading is refused under NEVER_PERSIST

        Returns:
            Identity in LOCKED_ENCRYPTED (or PUBLIC_ONLY) state

        Raises:
            LoadNotAllowed: If the setting forbids persistence
            NotFound: If there is no vault file
            CorruptRecord: If the file is structurally invalid
        """
        if setting is not None and not setting.allows_persist():
            raise LoadNotAllowed("Loading not allowed by security setting")

        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            raise NotFound(f"No vault at {self.path}")
        except OSError as e:
            raise VaultError(f"Cannot read vault file: {e}")

        try:
            data = json.loads(raw.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise CorruptRecord(f"Vault file is not valid JSON: {e}")

        record = VaultRecord.from_dict(data)
        log.info(f"Vault loaded (encrypted={record.is_encrypted})")
        return Identity.from_record(record)

    # ==================== Unlock ====================

    def unlock(self, identity: Identity, password: Optional[str] = None):
        """
        Decrypt the identity's stored key and move it to UNLOCKED.

        Args:
            identity: Identity in LOCKED_ENCRYPTED state
            password: User password, if the record was saved with one

        Raises:
            NoStoredKey: If the identity has no encrypted key
            PasswordRequired: If the record needs a password and none is given
            WrongPassword: If decryption fails for any reason
        """
        if identity.state is not LockState.LOCKED_ENCRYPTED or identity.record is None:
            raise NoStoredKey("Identity has no encrypted key to unlock")

        record = identity.record
        if record.password_required and not password:
            raise PasswordRequired("This key was saved with a password")

        key = self._derive_key(record.kdf, password if record.password_required else None)
        try:
            plaintext = bytearray(AESGCM(key).decrypt(
                record.nonce,
                record.ciphertext + record.tag,
                record.associated_data(),
            ))
        except (InvalidTag, ValueError):
            log.warning("Vault unlock failed")
            raise WrongPassword("Could not unlock key: wrong password or damaged vault")

        try:
            secret = SecretKey(bytes(plaintext))
        except InvalidKeyFormat:
            raise WrongPassword("Could not unlock key: wrong password or damaged vault")
        finally:
            for i in range(len(plaintext)):
                plaintext[i] = 0

        if secret.public_key() != record.public_key:
            secret.wipe()
            raise WrongPassword("Could not unlock key: wrong password or damaged vault")

        identity.unlock_with(secret)
        log.info("Vault unlocked")

    def _derive_key(self, kdf: KdfParams, password: Optional[str]) -> bytes:
        secret = password if password else self.config.fallback_secret
        return Scrypt(salt=kdf.salt, length=32, n=kdf.n, r=kdf.r, p=kdf.p).derive(
            secret.encode('utf-8')
        )

    # ==================== Delete ====================

    def delete(self) -> bool:
        """
        Remove the vault file.

        Returns:
            True if a file was removed
        """
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        log.info("Vault file deleted")
        return True
