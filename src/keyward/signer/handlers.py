"""
Request handlers: compute the response for each signer method.
Handlers borrow the identity for a single signing call and keep nothing.
"""

from ..config import (
    SUPPORTED_METHODS,
    METHOD_DESCRIBE,
    METHOD_GET_PUBLIC_KEY,
    METHOD_SIGN_EVENT,
    METHOD_DELEGATE,
    METHOD_DELEGATE_LEGACY,
)
from ..delegation.builder import build_delegation
from ..errors import InputValidationError, MessageError, SigningUnavailable
from ..identity.event import sign_event
from ..identity.identity import Identity
from ..utils.canonical_json import parse
from .messages import SignerRequest, SignerResponse, make_error, make_response


def respond_immediately(request: SignerRequest, identity: Identity) -> SignerResponse:
    """
    Answer a read-only request without user approval.

    Args:
        request: describe or get_public_key request
        identity: Identity owned by the engine

    Returns:
        SignerResponse
    """
    if request.method == METHOD_DESCRIBE:
        return make_response(request, list(SUPPORTED_METHODS))

    if request.method == METHOD_GET_PUBLIC_KEY:
        if identity.public_key is None:
            return make_error(request, SigningUnavailable("No identity loaded"))
        return make_response(request, identity.public_key_hex)

    return make_error(request, f"Unsupported method: {request.method}")


def respond_approved(request: SignerRequest, identity: Identity) -> SignerResponse:
    """
    Perform the signing operation of a request the user approved.

    Args:
        request: sign_event or delegation request
        identity: Identity owned by the engine

    Returns:
        SignerResponse with the signature / certificate, or an error
    """
    if not identity.can_sign():
        return make_error(request, SigningUnavailable("Secret key is not unlocked"))
    try:
        if request.method == METHOD_SIGN_EVENT:
            return make_response(request, _sign_event(request, identity))
        if request.method in (METHOD_DELEGATE, METHOD_DELEGATE_LEGACY):
            return make_response(request, _delegate(request, identity))
    except (SigningUnavailable, InputValidationError, MessageError) as e:
        return make_error(request, e)
    return make_error(request, f"Unsupported method: {request.method}")


def respond_denied(request: SignerRequest) -> SignerResponse:
    """Explicit rejection of a request the user denied."""
    return make_error(request, "Request rejected by user")


def _sign_event(request: SignerRequest, identity: Identity) -> str:
    if not request.params:
        raise MessageError("sign_event requires an event parameter")
    unsigned = request.params[0]
    if isinstance(unsigned, str):
        try:
            unsigned = parse(unsigned)
        except ValueError as e:
            raise MessageError(f"Invalid event parameter: {e}")
    event = sign_event(identity, unsigned)
    return event.sig


def _delegate(request: SignerRequest, identity: Identity) -> dict:
    if not request.params:
        raise MessageError(f"{request.method} requires a delegatee parameter")
    delegatee = request.params[0]
    conditions = request.params[1] if len(request.params) > 1 else None
    if conditions == "":
        conditions = None
    certificate = build_delegation(identity, delegatee, conditions)
    return certificate.to_dict()
