"""Delegation certificates (NIP-26) for keyward."""

from .conditions import DelegationConditions, validate_conditions
from .builder import (
    DelegationCertificate,
    build_delegation,
    coerce_conditions,
    delegation_string,
    generate_random_delegatee,
    verify_delegation,
)

__all__ = [
    'DelegationConditions',
    'validate_conditions',
    'DelegationCertificate',
    'build_delegation',
    'coerce_conditions',
    'delegation_string',
    'generate_random_delegatee',
    'verify_delegation',
]
