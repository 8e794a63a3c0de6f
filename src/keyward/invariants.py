"""
Runtime custody invariant validation.
These checks ensure core security properties are maintained.
"""

from typing import TYPE_CHECKING

from .errors import InvariantViolationError
from .identity.identity import Identity, LockState

if TYPE_CHECKING:
    from .delegation.builder import DelegationCertificate
    from .signer.queue import ApprovalQueue


def validate_lock_state(identity: Identity):
    """
    Validate that secret material is present exactly when UNLOCKED.

    Args:
        identity: Identity to check

    Raises:
        InvariantViolationError: If state and held material disagree
    """
    state = identity.state
    holds_secret = identity._secret is not None and not identity._secret.wiped

    if holds_secret != (state is LockState.UNLOCKED):
        raise InvariantViolationError(
            f"Identity in state {state.value} {'holds' if holds_secret else 'lacks'} secret material"
        )

    if state is LockState.ABSENT and identity.public_key is not None:
        raise InvariantViolationError("Absent identity still has a public key")

    if state is not LockState.ABSENT and identity.public_key is None:
        raise InvariantViolationError(f"Identity in state {state.value} has no public key")

    if state is LockState.LOCKED_ENCRYPTED:
        if identity.record is None or not identity.record.is_encrypted:
            raise InvariantViolationError("Locked identity has no encrypted record")

    if state is LockState.PUBLIC_ONLY and identity.record is not None:
        raise InvariantViolationError("Public-only identity references an encrypted record")


def validate_delegator_binding(certificate: 'DelegationCertificate', identity: Identity):
    """
    Validate that a certificate was issued by the given identity.

    Args:
        certificate: Delegation certificate
        identity: Identity expected to be the delegator

    Raises:
        InvariantViolationError: If the delegator key differs
    """
    if certificate.delegator != identity.public_key_hex:
        raise InvariantViolationError(
            f"Certificate delegator {certificate.delegator} is not identity {identity.public_key_hex}"
        )


def validate_single_response(queue: 'ApprovalQueue'):
    """
    Validate that no queued request has been answered more than once.

    Args:
        queue: Approval queue to inspect

    Raises:
        InvariantViolationError: If a request has multiple responses
    """
    for entry in queue.entries():
        if entry.response_count > 1:
            raise InvariantViolationError(
                f"Request {entry.request.request_id} answered {entry.response_count} times"
            )
        if entry.is_pending and entry.response_count != 0:
            raise InvariantViolationError(
                f"Pending request {entry.request.request_id} already has a response"
            )


def check_all_invariants(identity: Identity, queue: 'ApprovalQueue' = None):
    """
    Check all invariants that can be checked at rest.

    Args:
        identity: Identity owned by the engine
        queue: Optional approval queue

    Raises:
        InvariantViolationError: If any invariant is violated
    """
    validate_lock_state(identity)
    if queue is not None:
        validate_single_response(queue)
