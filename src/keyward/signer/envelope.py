"""
Transport envelope for signer messages.

Each message travels as a kind-24133 Nostr event addressed with a `p` tag
and NIP-04 encrypted content (AES-256-CBC keyed by the unhashed ECDH
x-coordinate). The envelope is authenticated by the event signature.
"""

import os
from typing import Optional, Tuple, Union

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from ..config import NOSTR_CONNECT_KIND
from ..errors import MessageError, MisroutedMessage
from ..identity.event import NostrEvent, parse_event, sign_event, verify_event
from ..identity.identity import Identity
from ..utils.canonical_json import canonicalize_bytes, parse
from ..utils.encoding import b64d, b64e
from ..utils.time import unix_now
from .messages import SignerRequest, SignerResponse, encode_message, parse_message

IV_SEPARATOR = "?iv="


class EnvelopeCipher:
    """
    Shared-key context between our transport key and one remote pubkey.
    """

    def __init__(self, local: Identity, remote_pubkey: bytes):
        """
        Derive the shared key.

        Args:
            local: Our transport identity (UNLOCKED)
            remote_pubkey: Remote x-only public key
        """
        self._key = bytearray(local.shared_x(remote_pubkey))

    def encrypt(self, plaintext: str) -> str:
        """
        NIP-04 encrypt.

        Args:
            plaintext: Message text

        Returns:
            "<base64 ciphertext>?iv=<base64 iv>"
        """
        if not self._key:
            raise MessageError("Envelope key has been wiped")
        iv = os.urandom(16)
        padder = padding.PKCS7(128).padder()
        padded = padder.update(plaintext.encode('utf-8')) + padder.finalize()
        encryptor = Cipher(algorithms.AES(bytes(self._key)), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return f"{b64e(ciphertext)}{IV_SEPARATOR}{b64e(iv)}"

    def decrypt(self, content: str) -> str:
        """
        NIP-04 decrypt.

        Args:
            content: "<base64 ciphertext>?iv=<base64 iv>"

        Returns:
            Message text

        Raises:
            MessageError: If the content cannot be decrypted
        """
        if not self._key:
            raise MessageError("Envelope key has been wiped")
        try:
            ct_b64, iv_b64 = content.split(IV_SEPARATOR, 1)
            ciphertext = b64d(ct_b64)
            iv = b64d(iv_b64)
            decryptor = Cipher(algorithms.AES(bytes(self._key)), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(128).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode('utf-8')
        except (ValueError, UnicodeDecodeError) as e:
            raise MessageError(f"Cannot decrypt envelope: {e}")

    def wipe(self):
        for i in range(len(self._key)):
            self._key[i] = 0
        self._key = bytearray()


def wrap(
    message: Union[SignerRequest, SignerResponse],
    sender: Identity,
    recipient_hex: str,
    cipher: EnvelopeCipher,
    created_at: Optional[int] = None,
) -> bytes:
    """
    Encrypt and sign a message as a kind-24133 event.

    Args:
        message: Request or response to send
        sender: Our transport identity
        recipient_hex: Remote public key (hex)
        cipher: Shared-key context with the recipient
        created_at: Event timestamp (now if omitted)

    Returns:
        Event JSON bytes for the transport
    """
    event = sign_event(sender, {
        'kind': NOSTR_CONNECT_KIND,
        'created_at': created_at if created_at is not None else unix_now(),
        'tags': [['p', recipient_hex]],
        'content': cipher.encrypt(encode_message(message)),
    })
    return canonicalize_bytes(event.to_dict())


def unwrap(
    data: bytes,
    local_hex: str,
    remote_hex: str,
    cipher: EnvelopeCipher,
) -> Tuple[NostrEvent, Union[SignerRequest, SignerResponse]]:
    """
    Authenticate and decrypt an inbound event.

    Checks, in order: JSON shape, kind, author is the paired remote key,
    addressed to us, id and signature, decryption, message shape.

    Args:
        data: Event JSON bytes from the transport
        local_hex: Our transport public key (hex)
        remote_hex: Paired remote public key (hex)
        cipher: Shared-key context with the remote

    Returns:
        (event, message)

    Raises:
        MessageError: If any check fails
    """
    try:
        event = parse_event(parse(data))
    except ValueError as e:
        raise MessageError(f"Invalid event: {e}")

    if event.kind != NOSTR_CONNECT_KIND:
        raise MessageError(f"Unexpected event kind {event.kind}")
    if event.pubkey != remote_hex:
        raise MisroutedMessage("Event author is not the paired client")
    if local_hex not in event.tag_values('p'):
        raise MisroutedMessage("Event not addressed to this signer")
    if not verify_event(event):
        raise MessageError("Invalid event signature")

    message = parse_message(cipher.decrypt(event.content))
    return event, message
