"""Remote signer (NIP-46) for keyward."""

from .uri import PairingURI, parse_pairing_uri
from .messages import SignerRequest, SignerResponse, encode_message, parse_message
from .envelope import EnvelopeCipher, wrap, unwrap
from .queue import ApprovalQueue, Decision, Disposition, QueueEntry
from .session import PairingSession, SessionState
from .service import RemoteSigner

__all__ = [
    'PairingURI',
    'parse_pairing_uri',
    'SignerRequest',
    'SignerResponse',
    'encode_message',
    'parse_message',
    'EnvelopeCipher',
    'wrap',
    'unwrap',
    'ApprovalQueue',
    'Decision',
    'Disposition',
    'QueueEntry',
    'PairingSession',
    'SessionState',
    'RemoteSigner',
]
