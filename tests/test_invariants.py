"""
Tests for custody invariant validation.
These tests attempt to violate core security invariants.
"""

import pytest

from keyward import EncryptedVault, Identity, SecuritySetting
from keyward.delegation import DelegationCertificate, build_delegation
from keyward.errors import InvariantViolationError
from keyward.identity.keys import SecretKey
from keyward.invariants import *

DELEGATEE = "477318cfb5427b9cfc66a9fa376150c1ddbc62115ae27cef72417eb959691396"


class TestLockState:
    """Test that secret material is present exactly when unlocked."""

    @pytest.mark.parametrize("make", [
        Identity,
        Identity.generate,
        lambda: Identity.from_public(Identity.generate().public_key),
    ])
    def test_consistent_states(self, make):
        # Should not raise
        validate_lock_state(make())

    def test_locked_state_consistent(self, vault_config):
        vault = EncryptedVault(vault_config)
        vault.encrypt_and_store(Identity.generate(), SecuritySetting.PERSIST_OPTIONAL_PASSWORD)

        locked = vault.load_record()

        validate_lock_state(locked)

    def test_secret_in_public_only_state_detected(self):
        """Test that a secret lingering in a public-only identity is caught."""
        identity = Identity.from_public(Identity.generate().public_key)
        identity._secret = SecretKey.generate()

        with pytest.raises(InvariantViolationError):
            validate_lock_state(identity)

    def test_unlocked_without_secret_detected(self):
        identity = Identity.generate()
        identity._secret.wipe()

        with pytest.raises(InvariantViolationError):
            validate_lock_state(identity)

    def test_cleared_identity_consistent(self):
        identity = Identity.generate()
        identity.clear()

        validate_lock_state(identity)


class TestDelegatorBinding:
    """Test that certificates name the identity that signed them."""

    def test_binding_holds(self):
        identity = Identity.generate()
        cert = build_delegation(identity, DELEGATEE, {'kind': 1})

        validate_delegator_binding(cert, identity)

    def test_wrong_delegator_rejected(self):
        identity = Identity.generate()
        cert = build_delegation(identity, DELEGATEE, {'kind': 1})
        other = DelegationCertificate(
            delegator=Identity.generate().public_key_hex,
            delegatee=cert.delegatee,
            conditions=cert.conditions,
            signature=cert.signature,
        )

        with pytest.raises(InvariantViolationError):
            validate_delegator_binding(other, identity)


class TestSingleResponse:
    """Test the one-response-per-request invariant."""

    def test_double_response_detected(self, signer, client):
        client.pair()
        request_id = client.request("sign_event", [{'kind': 1, 'content': 'x'}])
        signer.deny(request_id)

        entry = signer.queue.get(request_id)
        entry.response_count += 1

        with pytest.raises(InvariantViolationError):
            validate_single_response(signer.queue)

    def test_check_all(self, signer, client):
        client.pair()
        client.request("sign_event", [{'kind': 1, 'content': 'x'}])

        check_all_invariants(signer.identity, signer.queue)
