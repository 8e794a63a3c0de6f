"""
Domain-specific exceptions for keyward.
All exceptions are explicit and carry meaningful context.
"""


class KeywardError(Exception):
    """Base exception for all keyward errors."""
    pass


class InputValidationError(KeywardError):
    """Base exception for rejected user or peer input."""
    pass


class InvalidKeyFormat(InputValidationError):
    """Raised when a secret or public key cannot be parsed."""
    pass


class InvalidConditions(InputValidationError):
    """Raised when delegation conditions are malformed or inconsistent."""
    pass


class InvalidPairingURI(InputValidationError):
    """Raised when a pairing URI cannot be parsed."""
    pass


class PasswordMismatch(InputValidationError):
    """Raised when the repeated password does not match the password."""
    pass


class IdentityError(KeywardError):
    """Base exception for identity-related errors."""
    pass


class SigningUnavailable(IdentityError):
    """Raised when a signature is needed but no secret key is unlocked."""
    pass


class VaultError(KeywardError):
    """Base exception for vault-related errors."""
    pass


class KeyNotSet(VaultError):
    """Raised when there is no key to save."""
    pass


class NoChangeToSave(VaultError):
    """Raised when saving a key that is unchanged since it was last saved or loaded."""
    pass


class PasswordRequired(VaultError):
    """Raised when the security setting demands a password and none is given."""
    pass


class WrongPassword(VaultError):
    """
    Raised when a vault cannot be decrypted.
    Deliberately generic: covers bad credentials and tampered ciphertext alike.
    """
    pass


class CorruptRecord(VaultError):
    """Raised when a vault file is structurally invalid."""
    pass


class NotFound(VaultError):
    """Raised when no vault file exists at the configured location."""
    pass


class NoStoredKey(VaultError):
    """Raised when unlocking an identity that has no encrypted key attached."""
    pass


class LoadNotAllowed(VaultError):
    """Raised when loading is requested under a setting that forbids persistence."""
    pass


class SessionError(KeywardError):
    """Base exception for pairing session and request errors."""
    pass


class HandshakeError(SessionError):
    """Raised when the pairing handshake fails or times out."""
    pass


class TransportError(SessionError):
    """Raised when the relay transport fails."""
    pass


class DuplicateSession(SessionError):
    """Raised when a second live session is requested for the same remote pubkey."""
    pass


class UnknownSession(SessionError):
    """Raised when a session id does not exist."""
    pass


class UnknownRequest(SessionError):
    """Raised when resolving a request id that was never enqueued."""
    pass


class AlreadyResolved(SessionError):
    """Raised when resolving a request that already has a response."""
    pass


class MessageError(SessionError):
    """Raised when an inbound message cannot be authenticated or parsed."""
    pass


class MisroutedMessage(MessageError):
    """Raised when an inbound event is not from the paired client or not addressed to us."""
    pass


class InvariantViolationError(KeywardError):
    """Raised when a core custody invariant is violated."""
    pass
