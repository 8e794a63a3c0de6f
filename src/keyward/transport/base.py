"""
Transport boundary between the signer core and a message relay.

Canonical payload at the transport boundary is bytes (one Nostr event as
JSON). Transports run their I/O on their own schedule and report back only
through the bound TransportListener.
"""

from typing import Any, Dict, Optional

from ..errors import TransportError


class TransportListener:
    """
    Receives transport events. Implementations must be safe to call from
    the transport's I/O thread.
    """

    def on_connected(self, session_id: str) -> None:
        raise NotImplementedError

    def on_message(self, session_id: str, data: bytes) -> None:
        raise NotImplementedError

    def on_error(self, session_id: str, reason: str) -> None:
        raise NotImplementedError


class BaseTransport:
    """
    Relay transport contract.
    """
    name: str = "base"

    def __init__(self):
        self._listener: Optional[TransportListener] = None

    def bind(self, listener: TransportListener) -> None:
        """Register the single listener for all sessions."""
        self._listener = listener

    @property
    def listener(self) -> TransportListener:
        if self._listener is None:
            raise TransportError(f"{self.name} transport has no listener bound")
        return self._listener

    def connect(self, session_id: str, endpoint: str, subscription: Optional[Dict[str, Any]] = None) -> None:
        """
        Start connecting a session to a relay; completion is reported
        through on_connected / on_error.
        """
        raise NotImplementedError

    def send(self, session_id: str, data: bytes) -> None:
        raise NotImplementedError

    def close(self, session_id: str) -> None:
        """Cancel the session's I/O. Other sessions are unaffected."""
        raise NotImplementedError

    def close_all(self) -> None:
        return

    def healthz(self) -> dict:
        return {"status": "ok", "transport": self.name}
