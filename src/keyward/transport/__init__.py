from keyward.transport.base import BaseTransport, TransportListener
from keyward.transport.memory import LocalTransport
from keyward.transport.relay import RelayTransport


def transport_factory(mode: str = "relay") -> BaseTransport:
    """
    mode:
      - "relay" -> WebSocket connection to a Nostr relay
      - "local" -> in-process transport
    """
    if mode == "local":
        return LocalTransport()
    return RelayTransport()


__all__ = [
    "BaseTransport",
    "TransportListener",
    "LocalTransport",
    "RelayTransport",
    "transport_factory",
]
