"""
secp256k1 key primitives (BIP-340 Schnorr, x-only public keys).
Secret keys are passed in per call and never kept by this module.
"""

import os

from coincurve import PrivateKey, PublicKey, PublicKeyXOnly

from ..config import KEY_SIZE_BYTES, PUBLIC_KEY_LENGTH, SIGNATURE_LENGTH
from ..errors import InvalidKeyFormat, IdentityError


class SecretKey:
    """
    Owning, wipeable buffer for 32 secret-key bytes.
    """

    __slots__ = ('_buf',)

    def __init__(self, secret: bytes):
        """
        Take ownership of secret bytes.

        Args:
            secret: 32-byte secret key

        Raises:
            InvalidKeyFormat: If the bytes are not a valid secp256k1 scalar
        """
        if len(secret) != KEY_SIZE_BYTES:
            raise InvalidKeyFormat(f"Secret key must be {KEY_SIZE_BYTES} bytes, got {len(secret)}")
        self._buf = bytearray(secret)
        try:
            PrivateKey(bytes(self._buf))
        except ValueError as e:
            self.wipe()
            raise InvalidKeyFormat(f"Invalid secret key: {e}")

    @classmethod
    def generate(cls) -> 'SecretKey':
        """
        Generate a fresh random secret key.

        Returns:
            New SecretKey instance
        """
        return cls(PrivateKey().secret)

    def public_key(self) -> bytes:
        """Derive the 32-byte x-only public key."""
        return derive_public_key(bytes(self._buf))

    def sign(self, digest: bytes) -> bytes:
        """Schnorr-sign a 32-byte digest."""
        if not self._buf:
            raise IdentityError("Secret key has been wiped")
        return schnorr_sign(bytes(self._buf), digest)

    def shared_x(self, peer_public_key: bytes) -> bytes:
        """ECDH shared point x-coordinate with an x-only public key."""
        if not self._buf:
            raise IdentityError("Secret key has been wiped")
        return ecdh_shared_x(bytes(self._buf), peer_public_key)

    def export(self) -> bytes:
        """
        Copy out the raw secret bytes.
        WARNING: Handle with extreme care.
        """
        return bytes(self._buf)

    def wipe(self):
        """Overwrite the secret bytes with zeros and release the buffer."""
        for i in range(len(self._buf)):
            self._buf[i] = 0
        self._buf = bytearray()

    @property
    def wiped(self) -> bool:
        return len(self._buf) == 0

    def __repr__(self) -> str:
        return "SecretKey(<redacted>)" if self._buf else "SecretKey(<wiped>)"


def derive_public_key(secret: bytes) -> bytes:
    """
    Derive the x-only public key of a secret key.

    Args:
        secret: 32-byte secret key

    Returns:
        32-byte x-only public key

    Raises:
        InvalidKeyFormat: If the secret is not a valid scalar
    """
    try:
        return PrivateKey(secret).public_key.format(compressed=True)[1:]
    except ValueError as e:
        raise InvalidKeyFormat(f"Invalid secret key: {e}")


def validate_public_key(public_key: bytes) -> bytes:
    """
    Check that bytes are a valid x-only public key on the curve.

    Args:
        public_key: 32-byte candidate public key

    Returns:
        The same bytes

    Raises:
        InvalidKeyFormat: If the bytes are not a point on secp256k1
    """
    if len(public_key) != PUBLIC_KEY_LENGTH:
        raise InvalidKeyFormat(f"Public key must be {PUBLIC_KEY_LENGTH} bytes, got {len(public_key)}")
    try:
        PublicKeyXOnly(public_key)
    except ValueError as e:
        raise InvalidKeyFormat(f"Invalid public key: {e}")
    return public_key


def schnorr_sign(secret: bytes, digest: bytes) -> bytes:
    """
    BIP-340 Schnorr signature over a 32-byte digest.

    Args:
        secret: 32-byte secret key
        digest: 32-byte message hash

    Returns:
        64-byte signature
    """
    if len(digest) != 32:
        raise ValueError(f"Digest must be 32 bytes, got {len(digest)}")
    return PrivateKey(secret).sign_schnorr(digest, os.urandom(32))


def schnorr_verify(public_key: bytes, signature: bytes, digest: bytes) -> bool:
    """
    Verify a BIP-340 Schnorr signature.

    Args:
        public_key: 32-byte x-only public key
        signature: 64-byte signature
        digest: 32-byte message hash

    Returns:
        True if the signature is valid
    """
    if len(signature) != SIGNATURE_LENGTH or len(digest) != 32:
        return False
    try:
        return PublicKeyXOnly(public_key).verify(signature, digest)
    except ValueError:
        return False


def ecdh_shared_x(secret: bytes, peer_public_key: bytes) -> bytes:
    """
    Unhashed ECDH: x-coordinate of secret * peer point (as used by NIP-04).

    Args:
        secret: 32-byte secret key
        peer_public_key: 32-byte x-only public key of the peer

    Returns:
        32-byte shared x-coordinate
    """
    try:
        point = PublicKey(b'\x02' + peer_public_key)
    except ValueError as e:
        raise InvalidKeyFormat(f"Invalid peer public key: {e}")
    return point.multiply(secret).format(compressed=True)[1:]
