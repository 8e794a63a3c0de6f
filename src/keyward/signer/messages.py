"""
Remote signer messages (NIP-46 requests and responses).
"""

import secrets
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from ..config import (
    METHOD_SIGN_EVENT,
    METHOD_DELEGATE,
    METHOD_DELEGATE_LEGACY,
    PREVIEW_CONTENT_LENGTH,
)
from ..errors import MessageError
from ..utils.canonical_json import canonicalize, parse
from ..utils.time import unix_now


def new_request_id() -> str:
    """Random request identifier."""
    return secrets.token_hex(8)


def shortened_text(text: str, max_len: int = PREVIEW_CONTENT_LENGTH) -> str:
    if len(text) < max_len:
        return text
    return text[:max_len] + ".."


@dataclass
class SignerRequest:
    """
    Request from a paired client.

    Attributes:
        request_id: Identifier echoed verbatim in the response
        method: Method name
        params: Method-specific parameters
        session_id: Session the request arrived on
        received_at: Unix arrival time
    """

    request_id: str
    method: str
    params: List[Any] = field(default_factory=list)
    session_id: str = ""
    received_at: int = field(default_factory=unix_now)

    @property
    def key(self):
        """Queue key: (session id, request id)."""
        return (self.session_id, self.request_id)

    def description(self) -> str:
        """
        Short human-readable summary for the confirmation prompt.

        Returns:
            Description string
        """
        if self.method == METHOD_SIGN_EVENT:
            event = self.params[0] if self.params else None
            content = event.get('content', '') if isinstance(event, dict) else ''
            if not isinstance(content, str):
                content = str(content)
            return f"Signature requested for message: '{shortened_text(content)}'"
        if self.method in (METHOD_DELEGATE, METHOD_DELEGATE_LEGACY):
            delegatee = self.params[0] if self.params and isinstance(self.params[0], str) else "?"
            conditions = self.params[1] if len(self.params) > 1 else ""
            if isinstance(conditions, dict):
                conditions = canonicalize(conditions)
            return f"Delegation requested for {delegatee[:16]}.. ({conditions or 'no conditions'})"
        return f"({self.method}, no action needed)"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to wire dictionary."""
        return {'id': self.request_id, 'method': self.method, 'params': self.params}


@dataclass(frozen=True)
class SignerResponse:
    """
    Response to a request; exactly one of result / error is meaningful.
    """

    request_id: str
    result: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to wire dictionary."""
        return {'id': self.request_id, 'result': self.result, 'error': self.error}


def make_response(request: SignerRequest, result: Any) -> SignerResponse:
    """Successful response to a request."""
    return SignerResponse(request_id=request.request_id, result=result)


def make_error(request: SignerRequest, error: Union[str, Exception]) -> SignerResponse:
    """
    Error response to a request.

    Args:
        request: Request being answered
        error: Message, or an exception whose class name and message are sent

    Returns:
        SignerResponse with result None
    """
    if isinstance(error, Exception):
        message = f"{type(error).__name__}: {error}" if str(error) else type(error).__name__
    else:
        message = error
    return SignerResponse(request_id=request.request_id, error=message)


def encode_message(message: Union[SignerRequest, SignerResponse]) -> str:
    """Serialize a message to JSON text."""
    return canonicalize(message.to_dict())


def parse_message(raw: Union[str, bytes]) -> Union[SignerRequest, SignerResponse]:
    """
    Parse a decrypted message.

    Args:
        raw: JSON text

    Returns:
        SignerRequest or SignerResponse

    Raises:
        MessageError: If the message is malformed
    """
    try:
        data = parse(raw)
    except ValueError as e:
        raise MessageError(str(e))
    if not isinstance(data, dict):
        raise MessageError("Message must be a JSON object")

    request_id = data.get('id')
    if not isinstance(request_id, str) or not request_id:
        raise MessageError("Message id must be a non-empty string")

    if 'method' in data:
        method = data['method']
        params = data.get('params', [])
        if not isinstance(method, str) or not method:
            raise MessageError("Request method must be a non-empty string")
        if not isinstance(params, list):
            raise MessageError("Request params must be a list")
        return SignerRequest(request_id=request_id, method=method, params=params)

    if 'result' in data or 'error' in data:
        error = data.get('error')
        if error is not None and not isinstance(error, str):
            error = str(error)
        return SignerResponse(request_id=request_id, result=data.get('result'), error=error or None)

    raise MessageError("Message is neither request nor response")
