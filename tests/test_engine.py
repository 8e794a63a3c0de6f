"""
Tests for the engine facade: user actions and status messages.
"""

import pytest

from keyward import KeywardEngine, LockState, SecuritySetting
from keyward.errors import InvariantViolationError
from keyward.identity import Identity
from keyward.signer import SessionState
from keyward.transport import LocalTransport

from conftest import RemoteClient


@pytest.fixture
def engine(vault_config):
    with KeywardEngine(vault_config=vault_config, transport=LocalTransport()) as eng:
        yield eng


def latest(engine):
    return engine.status.latest()


class TestKeyActions:
    """Test key management actions."""

    def test_started(self, engine):
        assert latest(engine).text == "Keyward started"
        assert engine.identity.state is LockState.ABSENT

    def test_generate(self, engine):
        npub = engine.generate_keys()

        assert npub == engine.identity.npub
        assert engine.identity.can_sign()
        assert latest(engine).text == "New keypair generated"

    def test_import_invalid_secret_sets_error(self, engine):
        assert engine.import_secret_key("garbage") is None

        assert latest(engine).is_error
        assert engine.identity.state is LockState.ABSENT

    def test_import_public(self, engine):
        npub = Identity.generate().npub

        assert engine.import_public_key(f"  {npub}  ") == npub
        assert engine.identity.state is LockState.PUBLIC_ONLY

    def test_clear(self, engine):
        engine.generate_keys()
        engine.clear_keys()
        engine.confirm()

        assert engine.identity.state is LockState.ABSENT
        assert latest(engine).text == "Keys cleared"

    def test_clear_without_keys(self, engine):
        assert engine.clear_keys()

        assert engine.confirmation is None
        assert latest(engine).text == "Keys cleared"


class TestClearConfirmation:
    """Test that replacing or clearing a set key needs confirmation."""

    def test_clear_generate_confirmation(self, engine):
        """Test the confirm / cancel cycle for clearing keys."""
        assert not engine.identity.is_set()
        assert engine.confirmation is None

        engine.generate_keys()
        assert engine.identity.is_set()
        assert engine.confirmation is None

        # Clear asks first; cancelling keeps the key
        assert not engine.clear_keys()
        assert engine.identity.is_set()
        assert engine.confirmation is not None

        assert engine.cancel()
        assert engine.identity.is_set()
        assert engine.confirmation is None

        # Confirming clears
        engine.clear_keys()
        assert engine.confirmation is not None
        assert engine.confirm()
        assert not engine.identity.is_set()
        assert engine.confirmation is None

        # Nothing set, so no confirmation
        assert engine.clear_keys()
        assert engine.confirmation is None

    def test_generate_over_existing_key(self, engine):
        first = engine.generate_keys()

        assert engine.generate_keys() is None
        assert engine.identity.npub == first

        second = engine.confirm()
        assert second == engine.identity.npub
        assert second != first
        assert latest(engine).text == "New keypair generated"

    def test_load_over_existing_key(self, engine):
        engine.generate_keys()
        engine.save_keys("pw")
        saved = engine.identity.npub
        engine.import_public_key(Identity.generate().npub)

        assert not engine.load_keys()
        assert engine.identity.state is LockState.PUBLIC_ONLY

        assert engine.confirm()
        assert engine.identity.state is LockState.LOCKED_ENCRYPTED
        assert engine.identity.npub == saved

    def test_confirm_and_cancel_without_pending(self, engine):
        assert engine.confirm() is None
        assert not engine.cancel()


class TestVaultActions:
    """Test save / load / unlock through the engine."""

    def test_save_load_unlock(self, engine):
        engine.generate_keys()
        npub = engine.identity.npub

        assert engine.save_keys("pw").persisted
        engine.clear_keys()
        engine.confirm()
        assert engine.load_keys()
        assert engine.identity.state is LockState.LOCKED_ENCRYPTED

        assert not engine.unlock_keys("wrong")
        assert latest(engine).is_error
        assert engine.unlock_keys("pw")
        assert engine.identity.npub == npub
        assert engine.identity.can_sign()

    def test_repeat_password_mismatch(self, engine):
        engine.generate_keys()

        assert engine.save_keys("pw", repeat_password="pw2") is None
        assert latest(engine).text == "Encryption passwords don't match"
        assert not engine.vault.exists()

        assert engine.save_keys("pw", repeat_password="pw").persisted

    def test_no_change_to_save(self, engine):
        engine.generate_keys()
        engine.save_keys()

        assert engine.save_keys() is None
        assert latest(engine).text == "No changes to save"

        # A new password is a change
        assert engine.save_keys("pw").persisted

    def test_loaded_key_has_no_changes(self, engine):
        engine.generate_keys()
        engine.save_keys("pw")
        engine.clear_keys()
        engine.confirm()
        engine.load_keys()

        assert engine.save_keys("other") is None
        assert latest(engine).text == "No changes to save"

    def test_load_missing(self, engine):
        assert not engine.load_keys()
        assert latest(engine).is_error

    def test_never_persist(self, vault_config):
        with KeywardEngine(
            security=SecuritySetting.NEVER_PERSIST,
            vault_config=vault_config,
            transport=LocalTransport(),
        ) as engine:
            engine.generate_keys()

            result = engine.save_keys("pw")

            assert not result.persisted
            assert not engine.vault.exists()

    def test_password_required(self, vault_config):
        with KeywardEngine(
            security=SecuritySetting.PASSWORD_REQUIRED,
            vault_config=vault_config,
            transport=LocalTransport(),
        ) as engine:
            engine.generate_keys()

            assert engine.save_keys() is None
            assert latest(engine).is_error

    def test_lock(self, engine):
        engine.generate_keys()
        assert not engine.lock_keys()

        engine.save_keys()
        assert engine.lock_keys()
        assert engine.identity.state is LockState.LOCKED_ENCRYPTED

    def test_load_on_start(self, vault_config):
        with KeywardEngine(vault_config=vault_config, transport=LocalTransport()) as first:
            first.generate_keys()
            first.save_keys()
            npub = first.identity.npub

        with KeywardEngine(vault_config=vault_config, transport=LocalTransport(), load_on_start=True) as second:
            assert second.identity.state is LockState.LOCKED_ENCRYPTED
            assert second.identity.npub == npub


class TestDelegationActions:
    """Test delegation through the engine."""

    def test_create_delegation(self, engine):
        engine.generate_keys()
        delegatee = engine.generate_delegatee()

        cert = engine.create_delegation(delegatee, kind=1)

        assert cert.conditions == "kind=1"
        assert engine.last_delegation is cert
        assert latest(engine).text == "Delegation created"

    def test_delegation_without_key(self, engine):
        assert engine.create_delegation(Identity.generate().npub, kind=1) is None
        assert latest(engine).is_error


class TestSignerActions:
    """Test remote signer actions."""

    def test_connect_requires_unlocked_key(self, engine):
        client = RemoteClient(engine.signer, engine.signer.transport)

        assert engine.connect_signer(client.uri) is None
        assert latest(engine).text == "Key pair is not loaded or unlocked!"

    def test_invalid_uri(self, engine):
        engine.generate_keys()

        assert engine.connect_signer("nostrconnect://nope") is None
        assert latest(engine).is_error

    def test_process_and_ignore_first(self, engine):
        engine.generate_keys()
        client = RemoteClient(engine.signer, engine.signer.transport)
        client.pair()
        pubkey = engine.identity.public_key_hex
        first = client.request("sign_event", [{'pubkey': pubkey, 'kind': 1, 'content': 'one'}])
        second = client.request("sign_event", [{'pubkey': pubkey, 'kind': 1, 'content': 'two'}])

        assert "one" in engine.first_pending_description()
        assert engine.process_first_request().ok
        assert latest(engine).text.startswith("Processed request")

        assert not engine.ignore_first_request().ok
        assert latest(engine).text.startswith("Removed request")
        assert engine.process_first_request() is None

        assert len(client.responses_to(first)) == 1
        assert len(client.responses_to(second)) == 1

    def test_connect_and_disconnect(self, engine):
        engine.generate_keys()
        client = RemoteClient(engine.signer, engine.signer.transport)

        session = engine.connect_signer(client.uri)
        assert session.state is SessionState.CONNECTING
        assert latest(engine).text == "Signer connecting..."

        assert engine.disconnect_signer() == 1
        assert session.state is SessionState.CLOSED
        assert engine.disconnect_signer() == 0

    def test_disconnect_unknown(self, engine):
        assert engine.disconnect_signer("00" * 32) == 0
        assert latest(engine).is_error


class TestHealth:
    """Test health reporting."""

    def test_health_check(self, engine):
        engine.generate_keys()

        report = engine.health_check()

        assert report['status'] == 'healthy'
        assert report['identity']['state'] == 'unlocked'
        assert report['transport']['transport'] == 'local'

    def test_broken_invariant_reported(self, engine):
        engine.generate_keys()
        engine.identity._secret.wipe()

        with pytest.raises(InvariantViolationError):
            engine.check_invariants()
        assert engine.health_check()['status'] == 'unhealthy'
