"""
Vault record model and file format.
The record is a small JSON document; secret bytes only ever appear in it
as AES-GCM ciphertext.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..config import (
    PUBLIC_KEY_LENGTH,
    SCRYPT_MAX_MEMORY_BYTES,
    SCRYPT_MAX_N,
    SCRYPT_MAX_P,
    SCRYPT_MAX_R,
    VAULT_CIPHER,
    VAULT_KDF,
    VAULT_MIN_SALT_BYTES,
    VAULT_NONCE_BYTES,
    VAULT_TAG_BYTES,
    VAULT_VERSION,
)
from ..errors import CorruptRecord
from ..utils.canonical_json import canonicalize_bytes
from ..utils.encoding import b64e, b64d, parse_hex


@dataclass(frozen=True)
class KdfParams:
    """Scrypt parameters stored beside the ciphertext."""

    salt: bytes
    n: int
    r: int
    p: int
    name: str = VAULT_KDF

    def to_dict(self) -> Dict[str, Any]:
        return {'name': self.name, 'salt': b64e(self.salt), 'n': self.n, 'r': self.r, 'p': self.p}


@dataclass(frozen=True)
class VaultRecord:
    """
    One stored identity.

    Encrypted records carry kdf/nonce/ciphertext/tag; public-only records
    carry only the public key.
    """

    public_key: bytes
    password_required: bool = False
    kdf: Optional[KdfParams] = None
    nonce: Optional[bytes] = None
    ciphertext: Optional[bytes] = None
    tag: Optional[bytes] = None
    cipher: str = VAULT_CIPHER
    version: int = VAULT_VERSION
    extra: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def is_encrypted(self) -> bool:
        return self.ciphertext is not None

    def associated_data(self) -> bytes:
        """
        Header bytes authenticated together with the ciphertext.
        Editing version, public key or the password flag breaks the tag.
        """
        return canonicalize_bytes([
            self.version,
            self.public_key.hex(),
            self.password_required,
        ])

    def to_dict(self) -> Dict[str, Any]:
        """Convert record to its JSON dictionary."""
        data: Dict[str, Any] = {
            'version': self.version,
            'pubkey': self.public_key.hex(),
        }
        if self.is_encrypted:
            data.update({
                'password_required': self.password_required,
                'kdf': self.kdf.to_dict(),
                'cipher': self.cipher,
                'nonce': b64e(self.nonce),
                'ciphertext': b64e(self.ciphertext),
                'tag': b64e(self.tag),
            })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VaultRecord':
        """
        Rebuild a record from its JSON dictionary.

        Args:
            data: Parsed vault file

        Returns:
            VaultRecord object

        Raises:
            CorruptRecord: If any field is missing or malformed
        """
        if not isinstance(data, dict):
            raise CorruptRecord("Vault record must be a JSON object")

        version = data.get('version')
        if version != VAULT_VERSION:
            raise CorruptRecord(f"Unsupported vault version: {version!r}")

        try:
            public_key = parse_hex(data['pubkey'], PUBLIC_KEY_LENGTH)
        except (KeyError, TypeError, ValueError) as e:
            raise CorruptRecord(f"Invalid public key field: {e}")

        if 'ciphertext' not in data:
            return cls(public_key=public_key)

        try:
            kdf_data = data['kdf']
            if kdf_data['name'] != VAULT_KDF:
                raise CorruptRecord(f"Unsupported key derivation: {kdf_data['name']!r}")
            if data['cipher'] != VAULT_CIPHER:
                raise CorruptRecord(f"Unsupported cipher: {data['cipher']!r}")
            kdf = KdfParams(
                salt=b64d(kdf_data['salt']),
                n=int(kdf_data['n']),
                r=int(kdf_data['r']),
                p=int(kdf_data['p']),
            )
            password_required = data['password_required']
            if not isinstance(password_required, bool):
                raise CorruptRecord("Field password_required must be a boolean")
            record = cls(
                public_key=public_key,
                password_required=password_required,
                kdf=kdf,
                nonce=b64d(data['nonce']),
                ciphertext=b64d(data['ciphertext']),
                tag=b64d(data['tag']),
            )
        except CorruptRecord:
            raise
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise CorruptRecord(f"Malformed vault record: {e}")

        if len(record.tag) != VAULT_TAG_BYTES:
            raise CorruptRecord("Invalid authentication tag length")
        if len(record.nonce) != VAULT_NONCE_BYTES:
            raise CorruptRecord("Invalid nonce length")
        if kdf.n < 2 or kdf.n & (kdf.n - 1):
            raise CorruptRecord("Scrypt cost must be a power of two")
        if not 1 <= kdf.r <= SCRYPT_MAX_R or not 1 <= kdf.p <= SCRYPT_MAX_P:
            raise CorruptRecord("Scrypt block size and parallelism must be positive and bounded")
        if kdf.n > SCRYPT_MAX_N or 128 * kdf.n * kdf.r > SCRYPT_MAX_MEMORY_BYTES:
            raise CorruptRecord(f"Scrypt cost n={kdf.n} r={kdf.r} exceeds the memory limit")
        if len(kdf.salt) < VAULT_MIN_SALT_BYTES:
            raise CorruptRecord("Scrypt salt is too short")
        return record
