"""
Nostr event construction, signing and verification (NIP-01).
"""

from typing import Any, Dict, List, Optional

from ..errors import MessageError, InvalidKeyFormat
from ..utils.canonical_json import canonicalize_bytes
from ..utils.encoding import parse_hex
from ..utils.hashing import sha256
from ..utils.time import unix_now
from .keys import schnorr_verify


class NostrEvent:
    """
    Represents a Nostr event, signed or not.
    """

    def __init__(
        self,
        pubkey: str,
        created_at: int,
        kind: int,
        tags: List[List[str]],
        content: str,
        id: Optional[str] = None,
        sig: Optional[str] = None,
    ):
        """
        Initialize event.

        Args:
            pubkey: Author x-only public key (hex)
            created_at: Unix timestamp in seconds
            kind: Event kind
            tags: List of tag arrays
            content: Event content
            id: Event id (hex), computed when absent
            sig: Schnorr signature (hex), None for unsigned events
        """
        self.pubkey = pubkey
        self.created_at = created_at
        self.kind = kind
        self.tags = tags
        self.content = content
        self.id = id if id is not None else self.compute_id()
        self.sig = sig

    def get_payload(self) -> List[Any]:
        """
        Get the array the event id commits to.

        Returns:
            [0, pubkey, created_at, kind, tags, content]
        """
        return [0, self.pubkey, self.created_at, self.kind, self.tags, self.content]

    def compute_id(self) -> str:
        """
        Compute the event id from the canonical payload.

        Returns:
            Hex-encoded SHA-256 of the serialized payload
        """
        return sha256(canonicalize_bytes(self.get_payload())).hex()

    def tag_values(self, name: str) -> List[str]:
        """Values of all tags with the given name."""
        return [t[1] for t in self.tags if len(t) >= 2 and t[0] == name]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        data = {
            'id': self.id,
            'pubkey': self.pubkey,
            'created_at': self.created_at,
            'kind': self.kind,
            'tags': self.tags,
            'content': self.content,
        }
        if self.sig is not None:
            data['sig'] = self.sig
        return data


def parse_event(data: Dict[str, Any], require_signature: bool = True) -> NostrEvent:
    """
    Parse an event from its JSON dictionary.

    Args:
        data: Event dictionary
        require_signature: Whether 'id' and 'sig' must be present

    Returns:
        NostrEvent object

    Raises:
        MessageError: If required fields are missing or mistyped
    """
    if not isinstance(data, dict):
        raise MessageError("Event must be a JSON object")

    required = ['pubkey', 'created_at', 'kind', 'tags', 'content']
    if require_signature:
        required += ['id', 'sig']
    for field in required:
        if field not in data:
            raise MessageError(f"Missing required field: {field}")

    if not isinstance(data['created_at'], int) or isinstance(data['created_at'], bool):
        raise MessageError("Field created_at must be an integer")
    if not isinstance(data['kind'], int) or isinstance(data['kind'], bool):
        raise MessageError("Field kind must be an integer")
    if not isinstance(data['content'], str):
        raise MessageError("Field content must be a string")
    tags = data['tags']
    if not isinstance(tags, list) or not all(
        isinstance(t, list) and all(isinstance(v, str) for v in t) for t in tags
    ):
        raise MessageError("Field tags must be a list of string arrays")
    for field, length in (('pubkey', 32), ('id', 32), ('sig', 64)):
        if field in data:
            _check_hex_field(field, data[field], length)

    return NostrEvent(
        pubkey=data['pubkey'],
        created_at=data['created_at'],
        kind=data['kind'],
        tags=tags,
        content=data['content'],
        id=data.get('id'),
        sig=data.get('sig'),
    )


def _check_hex_field(field: str, value: Any, length: int):
    if not isinstance(value, str):
        raise MessageError(f"Field {field} must be a hex string")
    try:
        parse_hex(value, length)
    except (ValueError, InvalidKeyFormat):
        raise MessageError(f"Field {field} must be {length} bytes of hex")


def sign_event(identity, unsigned: Dict[str, Any]) -> NostrEvent:
    """
    Sign an unsigned event with an unlocked identity.

    Missing pubkey and created_at are filled in; the id is always recomputed.

    Args:
        identity: Identity in UNLOCKED state
        unsigned: Event fields (kind, content, tags, optionally pubkey/created_at)

    Returns:
        Signed NostrEvent

    Raises:
        MessageError: If the event is malformed or names another author
        SigningUnavailable: If the identity cannot sign
    """
    if not isinstance(unsigned, dict):
        raise MessageError("Event must be a JSON object")

    author = identity.public_key_hex
    fields = {
        'pubkey': unsigned.get('pubkey') or author,
        'created_at': unsigned.get('created_at', unix_now()),
        'kind': unsigned.get('kind'),
        'tags': unsigned.get('tags', []),
        'content': unsigned.get('content', ''),
    }
    if fields['pubkey'] != author:
        raise MessageError("Event pubkey does not match the signing identity")

    event = parse_event(fields, require_signature=False)
    signature = identity.sign(bytes.fromhex(event.id))
    event.sig = signature.hex()
    return event


def verify_event(event: NostrEvent) -> bool:
    """
    Verify event id and signature.

    Args:
        event: Event to verify

    Returns:
        True if the id matches the content and the signature is valid
    """
    if event.sig is None:
        return False
    if event.id != event.compute_id():
        return False
    try:
        pubkey = parse_hex(event.pubkey, 32)
        sig = parse_hex(event.sig, 64)
        digest = parse_hex(event.id, 32)
    except (TypeError, ValueError, InvalidKeyFormat):
        return False
    return schnorr_verify(pubkey, sig, digest)
