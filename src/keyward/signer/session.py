"""
Pairing session: connection and handshake state machine for one remote client.

The state machine is synchronous. Transport I/O happens elsewhere and is
fed in through handle_transport_connected / handle_inbound /
handle_transport_error by the owning RemoteSigner.
"""

from collections import OrderedDict
from enum import Enum
from typing import Callable, Optional, TYPE_CHECKING

from ..config import (
    APPROVAL_METHODS,
    HANDSHAKE_TIMEOUT_SECONDS,
    IMMEDIATE_METHODS,
    MAX_RESOLVED_HISTORY,
    METHOD_CONNECT,
    NOSTR_CONNECT_KIND,
    STALE_EVENT_WINDOW_SECONDS,
)
from ..errors import (
    HandshakeError,
    MessageError,
    MisroutedMessage,
    SessionError,
    SigningUnavailable,
    TransportError,
)
from ..identity.identity import Identity
from ..logger import get_logger
from ..utils.time import monotonic, unix_now
from .envelope import EnvelopeCipher, unwrap, wrap
from .handlers import respond_immediately
from .messages import (
    SignerRequest,
    SignerResponse,
    make_error,
    make_response,
    new_request_id,
)
from .uri import PairingURI

if TYPE_CHECKING:
    from ..transport.base import BaseTransport
    from .queue import ApprovalQueue

log = get_logger(__name__)

CONNECT_ACK = "ack"


class SessionState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    AWAITING_HANDSHAKE = "awaiting_handshake"
    ACTIVE = "active"
    CLOSED = "closed"
    FAILED = "failed"


TERMINAL_STATES = frozenset([SessionState.CLOSED, SessionState.FAILED])


class PairingSession:
    """
    One remote client paired through a relay.

    The session id is the remote public key (hex).
    """

    def __init__(
        self,
        uri: PairingURI,
        identity: Identity,
        transport_identity: Identity,
        transport: 'BaseTransport',
        queue: 'ApprovalQueue',
        handshake_timeout: float = HANDSHAKE_TIMEOUT_SECONDS,
        clock: Callable[[], float] = monotonic,
        wall_clock: Callable[[], int] = unix_now,
    ):
        """
        Initialize session in IDLE state.

        Args:
            uri: Parsed pairing URI
            identity: Identity used to answer and sign requests
            transport_identity: Our key for envelopes on the relay
            transport: Byte-oriented relay transport
            queue: Approval queue for requests needing confirmation
            handshake_timeout: Seconds allowed in AWAITING_HANDSHAKE
            clock: Monotonic clock for timeouts
            wall_clock: Unix clock for event timestamps
        """
        self.uri = uri
        self.session_id = uri.remote_pubkey_hex
        self.remote_pubkey = uri.remote_pubkey
        self.relay = uri.relay
        self.identity = identity
        self.transport_identity = transport_identity
        self.handshake_timeout = handshake_timeout

        self._transport = transport
        self._queue = queue
        self._clock = clock
        self._wall_clock = wall_clock
        self._cipher = EnvelopeCipher(transport_identity, uri.remote_pubkey)

        self._state = SessionState.IDLE
        self._failure: Optional[SessionError] = None
        self._handshake_id: Optional[str] = None
        self._handshake_started: Optional[float] = None
        self._since: int = 0
        self._answered: 'OrderedDict[str, None]' = OrderedDict()

    # ==================== Queries ====================

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def failure(self) -> Optional[SessionError]:
        """Reason for FAILED, else None."""
        return self._failure

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    @property
    def is_active(self) -> bool:
        return self._state is SessionState.ACTIVE

    @property
    def local_pubkey_hex(self) -> str:
        return self.transport_identity.public_key_hex

    def subscription(self) -> dict:
        """Relay filter for events addressed to this session."""
        return {
            'kinds': [NOSTR_CONNECT_KIND],
            'authors': [self.session_id],
            '#p': [self.local_pubkey_hex],
            'since': self._since,
        }

    def describe(self) -> str:
        name = self.uri.client_name or self.session_id[:16] + ".."
        return f"{name} via {self.relay} ({self._state.value})"

    # ==================== Transitions ====================

    def begin_connect(self):
        """
        IDLE -> CONNECTING; asks the transport to connect.
        A synchronous transport failure moves straight to FAILED.
        """
        if self._state is not SessionState.IDLE:
            raise SessionError(f"Cannot connect from state {self._state.value}")

        self._since = self._wall_clock() - STALE_EVENT_WINDOW_SECONDS
        self._state = SessionState.CONNECTING
        log.info(f"Session {self.session_id[:8]}... connecting to {self.relay}")
        try:
            self._transport.connect(self.session_id, self.relay, self.subscription())
        except TransportError as e:
            self._fail(e)

    def handle_transport_connected(self):
        """
        CONNECTING -> AWAITING_HANDSHAKE; sends our connect request.
        """
        if self._state is not SessionState.CONNECTING:
            log.debug(f"Session {self.session_id[:8]}...: connected event ignored in {self._state.value}")
            return

        self._state = SessionState.AWAITING_HANDSHAKE
        self._handshake_started = self._clock()
        self._handshake_id = new_request_id()

        params = [self.local_pubkey_hex]
        if self.uri.secret:
            params.append(self.uri.secret)
        connect_request = SignerRequest(
            request_id=self._handshake_id,
            method=METHOD_CONNECT,
            params=params,
            session_id=self.session_id,
        )
        self._transmit(connect_request)
        log.info(f"Session {self.session_id[:8]}... awaiting handshake")

    def handle_transport_error(self, reason: str):
        """Fatal transport error: any live state -> FAILED(TransportError)."""
        if self.is_terminal:
            return
        self._fail(TransportError(reason))

    def check_timeout(self, now: Optional[float] = None) -> bool:
        """
        Fail the session if the handshake has taken too long.

        Args:
            now: Monotonic time (clock() if omitted)

        Returns:
            True if the session failed because of the timeout
        """
        if self._state is not SessionState.AWAITING_HANDSHAKE:
            return False
        now = self._clock() if now is None else now
        if now - self._handshake_started > self.handshake_timeout:
            self._fail(HandshakeError(f"No handshake within {self.handshake_timeout:.0f}s"))
            return True
        return False

    def close(self):
        """
        Explicit disconnect: answer pending requests, then CLOSED.
        """
        if self.is_terminal:
            return
        deliverable = self._state is SessionState.ACTIVE
        self._queue.cancel_session(self.session_id, "Session closed by signer", deliver=deliverable)
        self._state = SessionState.CLOSED
        self._shutdown()
        log.info(f"Session {self.session_id[:8]}... closed")

    def _fail(self, error: SessionError):
        self._failure = error
        self._state = SessionState.FAILED
        self._queue.cancel_session(self.session_id, str(error), deliver=False)
        self._shutdown()
        log.warning(f"Session {self.session_id[:8]}... failed: {type(error).__name__}: {error}")

    def _shutdown(self):
        try:
            self._transport.close(self.session_id)
        except TransportError as e:
            log.debug(f"Session {self.session_id[:8]}...: transport close error: {e}")
        self._cipher.wipe()

    # ==================== Inbound ====================

    def handle_inbound(self, data: bytes):
        """
        Process one message from the transport.

        Args:
            data: Event JSON bytes
        """
        if self.is_terminal:
            log.debug(f"Session {self.session_id[:8]}...: message after {self._state.value} ignored")
            return
        if self._state not in (SessionState.AWAITING_HANDSHAKE, SessionState.ACTIVE):
            log.debug(f"Session {self.session_id[:8]}...: message in {self._state.value} ignored")
            return

        try:
            event, message = unwrap(data, self.local_pubkey_hex, self.session_id, self._cipher)
        except MisroutedMessage as e:
            log.debug(f"Session {self.session_id[:8]}...: dropped message for another session: {e}")
            return
        except MessageError as e:
            if self._state is SessionState.AWAITING_HANDSHAKE:
                self._fail(HandshakeError(f"Handshake authentication failed: {e}"))
            else:
                log.warning(f"Session {self.session_id[:8]}...: dropped unauthenticated message: {e}")
            return

        if event.created_at < self._since:
            log.info(f"Session {self.session_id[:8]}...: dropped stale message from {event.created_at}")
            return

        if self._state is SessionState.AWAITING_HANDSHAKE:
            if not self._complete_handshake(message):
                return

        if isinstance(message, SignerResponse):
            log.debug(f"Session {self.session_id[:8]}...: response {message.request_id} ignored")
            return

        self._dispatch(message)

    def _complete_handshake(self, message) -> bool:
        """
        Handle the first authenticated message.

        Returns:
            True if the message should still be dispatched as a request
        """
        if isinstance(message, SignerResponse):
            if message.request_id != self._handshake_id:
                log.debug(f"Session {self.session_id[:8]}...: unrelated response during handshake")
                return False
            if not message.ok:
                self._fail(HandshakeError(f"Client rejected connection: {message.error}"))
                return False
            self._activate()
            return False

        # An authenticated request from the client also proves the pairing
        self._activate()
        return True

    def _activate(self):
        self._state = SessionState.ACTIVE
        log.info(f"Session {self.session_id[:8]}... active")

    def _dispatch(self, request: SignerRequest):
        request.session_id = self.session_id
        request.received_at = self._wall_clock()

        if request.request_id in self._answered or self._queue.contains(self.session_id, request.request_id):
            log.info(f"Session {self.session_id[:8]}...: duplicate request {request.request_id} dropped")
            return

        if request.method == METHOD_CONNECT:
            self.send_response(make_response(request, CONNECT_ACK))
        elif request.method in IMMEDIATE_METHODS:
            self.send_response(respond_immediately(request, self.identity))
        elif request.method in APPROVAL_METHODS:
            if not self.identity.can_sign():
                self.send_response(make_error(request, SigningUnavailable("Secret key is not unlocked")))
            else:
                self._queue.enqueue(request)
        else:
            self.send_response(make_error(request, f"Unsupported method: {request.method}"))

    # ==================== Outbound ====================

    def send_response(self, response: SignerResponse) -> bool:
        """
        Transmit a response, at most once per request id.

        Args:
            response: Response to send

        Returns:
            True if it was handed to the transport
        """
        if self._state is not SessionState.ACTIVE:
            log.info(f"Session {self.session_id[:8]}...: response {response.request_id} not deliverable")
            return False
        if response.request_id in self._answered:
            log.warning(f"Session {self.session_id[:8]}...: request {response.request_id} already answered")
            return False
        self._answered[response.request_id] = None
        while len(self._answered) > MAX_RESOLVED_HISTORY:
            self._answered.popitem(last=False)
        return self._transmit(response)

    def _transmit(self, message) -> bool:
        data = wrap(
            message,
            self.transport_identity,
            self.session_id,
            self._cipher,
            created_at=self._wall_clock(),
        )
        try:
            self._transport.send(self.session_id, data)
        except TransportError as e:
            self._fail(e)
            return False
        return True
