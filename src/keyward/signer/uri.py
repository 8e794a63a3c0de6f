"""
Pairing URI parsing (NIP-46 nostrconnect://).
Malformed URIs are rejected before any network activity.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlsplit

from ..config import NOSTR_CONNECT_SCHEME, NPUB_PREFIX
from ..errors import InvalidPairingURI, InvalidKeyFormat
from ..identity.keys import validate_public_key
from ..utils.encoding import key_bytes_from

RELAY_SCHEMES = ("ws", "wss")


@dataclass(frozen=True)
class PairingURI:
    """
    Parsed pairing URI.

    Attributes:
        remote_pubkey: Client application's x-only public key
        relays: Relay endpoints, in URI order
        secret: Optional pairing secret to echo in the handshake
        metadata: Optional client metadata (name, url, description)
    """

    remote_pubkey: bytes
    relays: List[str]
    secret: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def relay(self) -> str:
        """Primary relay endpoint."""
        return self.relays[0]

    @property
    def remote_pubkey_hex(self) -> str:
        return self.remote_pubkey.hex()

    @property
    def client_name(self) -> Optional[str]:
        name = self.metadata.get('name')
        return name if isinstance(name, str) else None


def parse_pairing_uri(text: str) -> PairingURI:
    """
    Parse a nostrconnect:// URI.

    Format: nostrconnect://<pubkey>?relay=<ws url>[&relay=..][&secret=..][&metadata=<json>]

    Args:
        text: URI string

    Returns:
        PairingURI object

    Raises:
        InvalidPairingURI: If the URI is malformed
    """
    if not isinstance(text, str) or not text.strip():
        raise InvalidPairingURI("Pairing URI is empty")

    try:
        parts = urlsplit(text.strip())
    except ValueError as e:
        raise InvalidPairingURI(f"Cannot parse pairing URI: {e}")

    if parts.scheme.lower() != NOSTR_CONNECT_SCHEME:
        raise InvalidPairingURI(f"Expected '{NOSTR_CONNECT_SCHEME}://' URI, got scheme {parts.scheme!r}")

    # Some clients put the key in the path (nostrconnect:<key>)
    key_text = parts.netloc or parts.path.lstrip("/")
    try:
        remote_pubkey = validate_public_key(key_bytes_from(key_text, NPUB_PREFIX))
    except (ValueError, InvalidKeyFormat) as e:
        raise InvalidPairingURI(f"Invalid remote public key: {e}")

    query = parse_qs(parts.query, keep_blank_values=True)

    relays = [r.strip() for r in query.get('relay', []) if r.strip()]
    if not relays:
        raise InvalidPairingURI("Pairing URI names no relay")
    for relay in relays:
        relay_parts = urlsplit(relay)
        if relay_parts.scheme.lower() not in RELAY_SCHEMES or not relay_parts.netloc:
            raise InvalidPairingURI(f"Invalid relay URL: {relay!r}")

    secret_values = query.get('secret', [])
    secret = secret_values[0] if secret_values and secret_values[0] else None

    metadata: Dict[str, Any] = {}
    metadata_values = query.get('metadata', [])
    if metadata_values and metadata_values[0]:
        try:
            metadata = json.loads(metadata_values[0])
        except json.JSONDecodeError as e:
            raise InvalidPairingURI(f"Invalid metadata JSON: {e}")
        if not isinstance(metadata, dict):
            raise InvalidPairingURI("Metadata must be a JSON object")

    return PairingURI(
        remote_pubkey=remote_pubkey,
        relays=relays,
        secret=secret,
        metadata=metadata,
    )
