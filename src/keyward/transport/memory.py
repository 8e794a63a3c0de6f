"""
In-process transport.
Nothing leaves the process: sent payloads are recorded and inbound traffic
is injected by the caller. Used for local pairing and in tests.
"""

from typing import Any, Dict, List, Optional, Tuple

from ..errors import TransportError
from ..logger import get_logger
from .base import BaseTransport

log = get_logger(__name__)


class LocalTransport(BaseTransport):
    name = "local"

    def __init__(self, auto_connect: bool = False):
        """
        Args:
            auto_connect: Report on_connected as soon as connect() is called
        """
        super().__init__()
        self.auto_connect = auto_connect
        self.connections: Dict[str, Tuple[str, Optional[Dict[str, Any]]]] = {}
        self.sent: List[Tuple[str, bytes]] = []
        self.closed: List[str] = []
        self.fail_sends = False

    def connect(self, session_id: str, endpoint: str, subscription: Optional[Dict[str, Any]] = None) -> None:
        self.connections[session_id] = (endpoint, subscription)
        log.debug(f"[LOCAL] connect {session_id[:8]}... -> {endpoint}")
        if self.auto_connect:
            self.listener.on_connected(session_id)

    def send(self, session_id: str, data: bytes) -> None:
        if session_id not in self.connections:
            raise TransportError(f"Session {session_id[:8]}... is not connected")
        if self.fail_sends:
            raise TransportError("Send failed")
        self.sent.append((session_id, data))

    def close(self, session_id: str) -> None:
        if self.connections.pop(session_id, None) is not None:
            self.closed.append(session_id)

    def close_all(self) -> None:
        for session_id in list(self.connections):
            self.close(session_id)

    # ---------------------------
    # Simulating the relay side
    # ---------------------------
    def complete_connect(self, session_id: str) -> None:
        self.listener.on_connected(session_id)

    def deliver(self, session_id: str, data: bytes) -> None:
        self.listener.on_message(session_id, data)

    def drop(self, session_id: str, reason: str = "connection lost") -> None:
        self.connections.pop(session_id, None)
        self.listener.on_error(session_id, reason)

    def sent_to(self, session_id: str) -> List[bytes]:
        return [data for sid, data in self.sent if sid == session_id]
