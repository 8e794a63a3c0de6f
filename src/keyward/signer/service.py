"""
RemoteSigner: owns pairing sessions and the approval queue.

Transport callbacks arrive on the transport's I/O thread and are only
placed on a thread-safe inbox. All session state changes happen on the
owner thread inside process_inbox().
"""

import queue
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from ..config import HANDSHAKE_TIMEOUT_SECONDS
from ..errors import DuplicateSession, UnknownSession
from ..identity.identity import Identity
from ..logger import get_logger
from ..transport.base import BaseTransport, TransportListener
from ..utils.time import monotonic, unix_now
from .messages import SignerRequest, SignerResponse
from .queue import ApprovalQueue, Decision
from .session import PairingSession
from .uri import parse_pairing_uri

log = get_logger(__name__)

INBOX_CONNECTED = "connected"
INBOX_MESSAGE = "message"
INBOX_ERROR = "error"


@dataclass(frozen=True)
class InboxItem:
    kind: str
    session_id: str
    data: bytes = b""
    reason: str = ""


class RemoteSigner(TransportListener):
    """
    Remote signing service for any number of paired clients.
    """

    def __init__(
        self,
        identity: Identity,
        transport: BaseTransport,
        transport_identity: Optional[Identity] = None,
        handshake_timeout: float = HANDSHAKE_TIMEOUT_SECONDS,
        clock: Callable[[], float] = monotonic,
        wall_clock: Callable[[], int] = unix_now,
    ):
        """
        Initialize signer and bind it to the transport.

        Args:
            identity: Identity that answers and signs requests
            transport: Relay transport shared by all sessions
            transport_identity: Key for relay envelopes (fresh one if omitted)
            handshake_timeout: Seconds allowed for a handshake
            clock: Monotonic clock
            wall_clock: Unix clock
        """
        self.identity = identity
        self.transport = transport
        self.transport_identity = transport_identity or Identity.generate()
        self.handshake_timeout = handshake_timeout
        self._clock = clock
        self._wall_clock = wall_clock

        self._inbox: 'queue.Queue[InboxItem]' = queue.Queue()
        self._sessions: Dict[str, PairingSession] = {}
        self.queue = ApprovalQueue(self._live_session)

        self.transport.bind(self)

    # ==================== Transport callbacks (any thread) ====================

    def on_connected(self, session_id: str) -> None:
        self._inbox.put(InboxItem(INBOX_CONNECTED, session_id))

    def on_message(self, session_id: str, data: bytes) -> None:
        self._inbox.put(InboxItem(INBOX_MESSAGE, session_id, data=data))

    def on_error(self, session_id: str, reason: str) -> None:
        self._inbox.put(InboxItem(INBOX_ERROR, session_id, reason=reason))

    # ==================== Sessions ====================

    def pair(self, uri_text: str) -> PairingSession:
        """
        Pair with a client from its nostrconnect:// URI.

        Args:
            uri_text: Pairing URI

        Returns:
            The new session (CONNECTING, or FAILED if the transport refused)

        Raises:
            InvalidPairingURI: If the URI is malformed; nothing is created
            DuplicateSession: If a live session exists for the same client
        """
        uri = parse_pairing_uri(uri_text)
        session_id = uri.remote_pubkey_hex

        if self._live_session(session_id) is not None:
            raise DuplicateSession(f"Already paired with {session_id[:8]}...")

        session = PairingSession(
            uri=uri,
            identity=self.identity,
            transport_identity=self.transport_identity,
            transport=self.transport,
            queue=self.queue,
            handshake_timeout=self.handshake_timeout,
            clock=self._clock,
            wall_clock=self._wall_clock,
        )
        self._sessions[session_id] = session
        session.begin_connect()
        return session

    def disconnect(self, session_id: str):
        """
        Close a session; pending requests get an error response.

        Raises:
            UnknownSession: If no such session exists
        """
        self.session(session_id).close()

    def session(self, session_id: str) -> PairingSession:
        """
        Raises:
            UnknownSession: If no such session exists
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise UnknownSession(f"Unknown session: {session_id}")
        return session

    def sessions(self) -> List[PairingSession]:
        return list(self._sessions.values())

    def active_sessions(self) -> List[PairingSession]:
        return [s for s in self._sessions.values() if s.is_active]

    def _live_session(self, session_id: str) -> Optional[PairingSession]:
        session = self._sessions.get(session_id)
        if session is None or session.is_terminal:
            return None
        return session

    # ==================== Event processing ====================

    def process_inbox(self, max_items: Optional[int] = None) -> int:
        """
        Apply queued transport events, then run handshake timeouts.

        Args:
            max_items: Stop after this many items (all if None)

        Returns:
            Number of inbox items processed
        """
        processed = 0
        while max_items is None or processed < max_items:
            try:
                item = self._inbox.get_nowait()
            except queue.Empty:
                break
            processed += 1
            self._apply(item)

        now = self._clock()
        for session in list(self._sessions.values()):
            session.check_timeout(now)
        return processed

    def _apply(self, item: InboxItem):
        session = self._live_session(item.session_id)
        if session is None:
            log.debug(f"Inbox {item.kind} for unknown or closed session {item.session_id[:8]}... ignored")
            return

        if item.kind == INBOX_CONNECTED:
            session.handle_transport_connected()
        elif item.kind == INBOX_MESSAGE:
            session.handle_inbound(item.data)
        elif item.kind == INBOX_ERROR:
            session.handle_transport_error(item.reason)

    # ==================== Approval ====================

    def next_pending(self) -> Optional[SignerRequest]:
        return self.queue.next_pending()

    def approve(self, request_id: str, session_id: Optional[str] = None) -> SignerResponse:
        return self.queue.resolve(request_id, Decision.APPROVE, session_id)

    def deny(self, request_id: str, session_id: Optional[str] = None) -> SignerResponse:
        return self.queue.resolve(request_id, Decision.DENY, session_id)

    # ==================== Lifecycle ====================

    def close(self):
        """Close every live session and release the transport."""
        for session in list(self._sessions.values()):
            session.close()
        self.transport.close_all()
        log.info("Remote signer stopped")
