"""
Delegation certificate construction and verification (NIP-26).
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from ..config import DELEGATION_PREFIX, DELEGATION_TAG, NPUB_PREFIX
from ..errors import InvalidKeyFormat, InvalidConditions
from ..identity.identity import Identity
from ..identity.keys import schnorr_verify, validate_public_key
from ..invariants import validate_delegator_binding
from ..logger import get_logger
from ..utils.encoding import bech32_encode, key_bytes_from, parse_hex
from ..utils.hashing import hash_string
from .conditions import DelegationConditions

log = get_logger(__name__)


@dataclass(frozen=True)
class DelegationCertificate:
    """
    A signed statement letting the delegatee publish as the delegator.
    """

    delegator: str
    delegatee: str
    conditions: str
    signature: str

    def delegation_string(self) -> str:
        """The string whose SHA-256 is signed."""
        return delegation_string(self.delegatee, self.conditions)

    def to_tag(self) -> List[str]:
        """
        Event tag carrying this delegation.

        Returns:
            ["delegation", delegator, conditions, signature]
        """
        return [DELEGATION_TAG, self.delegator, self.conditions, self.signature]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the dictionary returned to remote signer clients."""
        return {
            'from': self.delegator,
            'to': self.delegatee,
            'cond': self.conditions,
            'sig': self.signature,
        }

    def to_text(self) -> str:
        """
        Plain-text rendering for manual copy-out.

        Returns:
            Multi-line description with bech32 keys and the tag
        """
        delegator_npub = bech32_encode(NPUB_PREFIX, bytes.fromhex(self.delegator))
        delegatee_npub = bech32_encode(NPUB_PREFIX, bytes.fromhex(self.delegatee))
        return "\n".join([
            f"delegator: {delegator_npub}",
            f"delegatee: {delegatee_npub}",
            f"conditions: {self.conditions}",
            f"signature: {self.signature}",
            f'tag: ["{DELEGATION_TAG}", "{self.delegator}", "{self.conditions}", "{self.signature}"]',
        ])


def delegation_string(delegatee_hex: str, conditions: str) -> str:
    """
    Build the NIP-26 delegation string.

    Args:
        delegatee_hex: Delegatee public key (hex)
        conditions: Canonical conditions string

    Returns:
        "nostr:delegation:<delegatee>:<conditions>"
    """
    return f"{DELEGATION_PREFIX}:{delegatee_hex}:{conditions}"


def build_delegation(
    identity: Identity,
    delegatee_pubkey: Union[bytes, str],
    conditions: Optional[Union[DelegationConditions, Dict[str, Any], str]] = None,
) -> DelegationCertificate:
    """
    Construct and sign a delegation certificate.

    Args:
        identity: Delegator identity; must be UNLOCKED
        delegatee_pubkey: Delegatee key (bytes, hex or npub)
        conditions: DelegationConditions, a kind/since/until dictionary,
            a canonical conditions string, or None for no constraints

    Returns:
        DelegationCertificate

    Raises:
        InvalidKeyFormat: If the delegatee key is malformed
        InvalidConditions: If the conditions are invalid
        SigningUnavailable: If the identity cannot sign
    """
    try:
        delegatee = validate_public_key(key_bytes_from(delegatee_pubkey, NPUB_PREFIX))
    except ValueError as e:
        raise InvalidKeyFormat(f"Invalid delegatee public key: {e}")

    cond = coerce_conditions(conditions)
    conditions_str = cond.to_string()
    delegatee_hex = delegatee.hex()

    digest = hash_string(delegation_string(delegatee_hex, conditions_str))
    # Raises SigningUnavailable unless unlocked
    signature = identity.sign(digest)

    delegator_hex = identity.public_key_hex
    certificate = DelegationCertificate(
        delegator=delegator_hex,
        delegatee=delegatee_hex,
        conditions=conditions_str,
        signature=signature.hex(),
    )
    validate_delegator_binding(certificate, identity)

    log.info(f"Delegation created for {delegatee_hex[:8]}... ({conditions_str or 'no conditions'})")
    return certificate


def coerce_conditions(
    conditions: Optional[Union[DelegationConditions, Dict[str, Any], str]],
) -> DelegationConditions:
    """
    Accept conditions in any supported form.

    Raises:
        InvalidConditions: If the value cannot be interpreted
    """
    if conditions is None:
        return DelegationConditions()
    if isinstance(conditions, DelegationConditions):
        return conditions
    if isinstance(conditions, dict):
        return DelegationConditions.from_dict(conditions)
    if isinstance(conditions, str):
        return DelegationConditions.parse(conditions)
    raise InvalidConditions(f"Unsupported conditions type: {type(conditions).__name__}")


def verify_delegation(certificate: DelegationCertificate) -> bool:
    """
    Verify a delegation certificate's signature against its delegator.

    Args:
        certificate: Certificate to verify

    Returns:
        True if the signature is valid and the conditions are canonical
    """
    try:
        DelegationConditions.parse(certificate.conditions)
        delegator = parse_hex(certificate.delegator, 32)
        signature = parse_hex(certificate.signature, 64)
    except (ValueError, InvalidConditions):
        return False
    digest = hash_string(certificate.delegation_string())
    return schnorr_verify(delegator, signature, digest)


def generate_random_delegatee() -> Identity:
    """
    Create a fresh keypair to act as delegatee.

    Returns:
        Identity in UNLOCKED state
    """
    return Identity.generate()
