"""
Approval queue for signer requests that need explicit user confirmation.
"""

from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple, TYPE_CHECKING

from ..config import MAX_RESOLVED_HISTORY
from ..errors import AlreadyResolved, UnknownRequest
from ..logger import get_logger
from .handlers import respond_approved, respond_denied
from .messages import SignerRequest, SignerResponse, make_error

if TYPE_CHECKING:
    from .session import PairingSession

log = get_logger(__name__)


class Decision(Enum):
    APPROVE = "approve"
    DENY = "deny"


class Disposition(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    CANCELLED = "cancelled"


@dataclass
class QueueEntry:
    """A queued request and what became of it."""

    request: SignerRequest
    disposition: Disposition = Disposition.PENDING
    response: Optional[SignerResponse] = None
    response_count: int = 0

    @property
    def is_pending(self) -> bool:
        return self.disposition is Disposition.PENDING


class ApprovalQueue:
    """
    FIFO of requests awaiting a user decision, keyed by (session id, request id).
    """

    def __init__(self, session_lookup: Callable[[str], Optional['PairingSession']]):
        """
        Initialize queue.

        Args:
            session_lookup: Returns the live session for a session id, or None
        """
        self._session_lookup = session_lookup
        self._entries: 'OrderedDict[Tuple[str, str], QueueEntry]' = OrderedDict()

    # ==================== Enqueue ====================

    def enqueue(self, request: SignerRequest) -> Tuple[QueueEntry, bool]:
        """
        Add a request, ignoring retransmissions.

        Args:
            request: Request from an active session

        Returns:
            (entry, is_new); for a duplicate, the existing entry and False
        """
        existing = self._entries.get(request.key)
        if existing is not None:
            log.info(
                f"Duplicate request {request.request_id} from session {request.session_id[:8]}... "
                f"ignored ({existing.disposition.value})"
            )
            return existing, False

        entry = QueueEntry(request=request)
        self._entries[request.key] = entry
        log.info(f"Request {request.request_id} ({request.method}) awaiting approval")
        return entry, True

    def contains(self, session_id: str, request_id: str) -> bool:
        return (session_id, request_id) in self._entries

    # ==================== Queries ====================

    def next_pending(self) -> Optional[SignerRequest]:
        """
        Oldest unresolved request, for presentation to the user.

        Returns:
            SignerRequest or None
        """
        for entry in self._entries.values():
            if entry.is_pending:
                return entry.request
        return None

    def pending(self, session_id: Optional[str] = None) -> List[SignerRequest]:
        """All unresolved requests in arrival order, optionally for one session."""
        return [
            e.request for e in self._entries.values()
            if e.is_pending and (session_id is None or e.request.session_id == session_id)
        ]

    def pending_count(self) -> int:
        return sum(1 for e in self._entries.values() if e.is_pending)

    def entries(self) -> List[QueueEntry]:
        return list(self._entries.values())

    def get(self, request_id: str, session_id: Optional[str] = None) -> QueueEntry:
        """
        Find the entry for a request id.

        When no session is given and several sessions used the same id, the
        oldest pending entry wins, otherwise the oldest entry.

        Raises:
            UnknownRequest: If no entry matches
        """
        if session_id is not None:
            entry = self._entries.get((session_id, request_id))
            if entry is None:
                raise UnknownRequest(f"Unknown request: {request_id}")
            return entry

        matches = [e for (_, rid), e in self._entries.items() if rid == request_id]
        if not matches:
            raise UnknownRequest(f"Unknown request: {request_id}")
        for entry in matches:
            if entry.is_pending:
                return entry
        return matches[0]

    # ==================== Resolution ====================

    def resolve(
        self,
        request_id: str,
        decision: Decision,
        session_id: Optional[str] = None,
    ) -> SignerResponse:
        """
        Apply the user's decision and send exactly one response.

        Args:
            request_id: Request to resolve
            decision: APPROVE or DENY
            session_id: Owning session, if known

        Returns:
            The response sent back

        Raises:
            UnknownRequest: If the request was never enqueued
            AlreadyResolved: If the request already has a response
        """
        entry = self.get(request_id, session_id)
        if not entry.is_pending:
            raise AlreadyResolved(
                f"Request {request_id} already resolved ({entry.disposition.value})"
            )

        request = entry.request
        session = self._session_lookup(request.session_id)

        if decision is Decision.APPROVE:
            if session is None:
                response = make_error(request, "Session no longer available")
            else:
                response = respond_approved(request, session.identity)
            disposition = Disposition.APPROVED
        else:
            response = respond_denied(request)
            disposition = Disposition.DENIED

        self._finish(entry, disposition, response)
        if session is not None:
            session.send_response(response)
        log.info(f"Request {request_id} {disposition.value} (ok={response.ok})")
        return response

    def cancel_session(self, session_id: str, reason: str, deliver: bool) -> List[SignerResponse]:
        """
        Resolve every pending request of a session that is going away.

        Args:
            session_id: Session being closed or failed
            reason: Error text for the responses
            deliver: Whether the session can still transmit

        Returns:
            Responses produced (sent only if deliver is True)
        """
        session = self._session_lookup(session_id) if deliver else None
        responses = []
        targets = [
            e for e in self._entries.values()
            if e.is_pending and e.request.session_id == session_id
        ]
        for entry in targets:
            if entry.is_pending:
                response = make_error(entry.request, reason)
                self._finish(entry, Disposition.CANCELLED, response)
                if session is not None:
                    session.send_response(response)
                responses.append(response)
        if responses:
            log.info(
                f"Cancelled {len(responses)} pending request(s) for session "
                f"{session_id[:8]}... (delivered={session is not None})"
            )
        return responses

    def _finish(self, entry: QueueEntry, disposition: Disposition, response: SignerResponse):
        entry.disposition = disposition
        entry.response = response
        entry.response_count += 1
        self._prune()

    def _prune(self):
        resolved = [k for k, e in self._entries.items() if not e.is_pending]
        for key in resolved[:max(0, len(resolved) - MAX_RESOLVED_HISTORY)]:
            del self._entries[key]
