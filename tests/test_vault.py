"""
Tests for the encrypted vault: save, load, unlock and file handling.
"""

import json
import os
import stat

import pytest

from keyward import EncryptedVault, Identity, LockState, SecuritySetting
from keyward.errors import (
    CorruptRecord,
    KeyNotSet,
    LoadNotAllowed,
    NoStoredKey,
    NotFound,
    PasswordRequired,
    WrongPassword,
)

OPTIONAL = SecuritySetting.PERSIST_OPTIONAL_PASSWORD
REQUIRED = SecuritySetting.PASSWORD_REQUIRED
NEVER = SecuritySetting.NEVER_PERSIST


@pytest.fixture
def vault(vault_config):
    return EncryptedVault(vault_config)


def read_file(vault):
    with open(vault.path) as f:
        return json.load(f)


def write_file(vault, data):
    with open(vault.path, 'w') as f:
        json.dump(data, f)


class TestSaveAndUnlock:
    """Test the save / load / unlock round trip."""

    def test_round_trip_with_password(self, vault):
        """Test that a saved key unlocks to the same keypair."""
        identity = Identity.generate()
        original_nsec = identity.export_nsec()

        result = vault.encrypt_and_store(identity, REQUIRED, "hunter2")
        assert result.persisted and result.encrypted

        loaded = vault.load_record(REQUIRED)
        assert loaded.state is LockState.LOCKED_ENCRYPTED
        assert loaded.public_key == identity.public_key
        assert not loaded.can_sign()

        vault.unlock(loaded, "hunter2")
        assert loaded.state is LockState.UNLOCKED
        assert loaded.export_nsec() == original_nsec

    def test_round_trip_without_password(self, vault):
        """Test optional-password storage with the fallback secret."""
        identity = Identity.generate()

        vault.encrypt_and_store(identity, OPTIONAL)
        loaded = vault.load_record()
        vault.unlock(loaded)

        assert loaded.public_key == identity.public_key
        assert loaded.can_sign()

    def test_wrong_password(self, vault):
        """Test that a wrong password fails and stays retryable."""
        identity = Identity.generate()
        vault.encrypt_and_store(identity, REQUIRED, "right")
        loaded = vault.load_record()

        with pytest.raises(WrongPassword):
            vault.unlock(loaded, "wrong")
        assert loaded.state is LockState.LOCKED_ENCRYPTED

        vault.unlock(loaded, "right")
        assert loaded.can_sign()

    def test_unlock_requires_password_when_saved_with_one(self, vault):
        vault.encrypt_and_store(Identity.generate(), OPTIONAL, "secret")
        loaded = vault.load_record()

        with pytest.raises(PasswordRequired):
            vault.unlock(loaded)

    def test_unlock_without_stored_key(self, vault):
        with pytest.raises(NoStoredKey):
            vault.unlock(Identity.generate(), "pw")
        with pytest.raises(NoStoredKey):
            vault.unlock(Identity(), "pw")

    def test_file_never_contains_secret(self, vault):
        """Test that neither hex nor nsec forms of the secret are written."""
        identity = Identity.generate()
        secret_hex = identity._secret.export().hex()
        nsec = identity.export_nsec()

        vault.encrypt_and_store(identity, OPTIONAL)

        raw = open(vault.path).read()
        assert secret_hex not in raw
        assert nsec not in raw

    def test_saved_identity_can_be_locked(self, vault):
        """Test that after saving, the in-memory key can be locked and unlocked again."""
        identity = Identity.generate()
        vault.encrypt_and_store(identity, OPTIONAL, "pw")

        assert identity.lock()
        assert identity.state is LockState.LOCKED_ENCRYPTED

        vault.unlock(identity, "pw")
        assert identity.can_sign()


class TestSecuritySettings:
    """Test that the security setting governs persistence."""

    def test_never_persist_writes_nothing(self, vault):
        result = vault.encrypt_and_store(Identity.generate(), NEVER, "pw")

        assert not result.persisted
        assert not vault.exists()

    def test_never_persist_refuses_load(self, vault):
        vault.encrypt_and_store(Identity.generate(), OPTIONAL)

        with pytest.raises(LoadNotAllowed):
            vault.load_record(NEVER)

    def test_password_required_without_password(self, vault):
        with pytest.raises(PasswordRequired):
            vault.encrypt_and_store(Identity.generate(), REQUIRED)
        assert not vault.exists()

    def test_absent_identity(self, vault):
        with pytest.raises(KeyNotSet):
            vault.encrypt_and_store(Identity(), OPTIONAL)

    def test_public_only_record(self, vault):
        """Test that a public-only identity saves without ciphertext."""
        identity = Identity.from_public(Identity.generate().public_key)

        result = vault.encrypt_and_store(identity, REQUIRED)

        assert result.persisted and not result.encrypted
        assert 'ciphertext' not in read_file(vault)
        assert vault.load_record().state is LockState.PUBLIC_ONLY

    def test_locked_identity_resaves_record(self, vault):
        """Test that saving a locked identity rewrites the stored record unchanged."""
        vault.encrypt_and_store(Identity.generate(), OPTIONAL, "pw")
        before = read_file(vault)

        loaded = vault.load_record()
        vault.encrypt_and_store(loaded, REQUIRED)

        assert read_file(vault) == before

    def test_locked_passwordless_record_refused_under_password_required(self, vault):
        """Test that a key stored without a password cannot be re-saved where one is required."""
        vault.encrypt_and_store(Identity.generate(), OPTIONAL)
        before = read_file(vault)

        loaded = vault.load_record()
        with pytest.raises(PasswordRequired):
            vault.encrypt_and_store(loaded, REQUIRED)

        assert read_file(vault) == before
        assert before['password_required'] is False


class TestFileHandling:
    """Test vault file integrity and atomic writes."""

    def test_not_found(self, vault):
        with pytest.raises(NotFound):
            vault.load_record()

    def test_file_permissions(self, vault):
        vault.encrypt_and_store(Identity.generate(), OPTIONAL)

        mode = stat.S_IMODE(os.stat(vault.path).st_mode)
        assert mode == 0o600

    def test_resave_replaces_file(self, vault):
        """Test that a second save replaces the first without leftovers."""
        first = Identity.generate()
        second = Identity.generate()

        vault.encrypt_and_store(first, OPTIONAL)
        vault.encrypt_and_store(second, OPTIONAL)

        assert vault.load_record().public_key == second.public_key
        assert os.listdir(vault.path.parent) == [vault.path.name]

    def test_invalid_json(self, vault):
        vault.path.parent.mkdir(parents=True, exist_ok=True)
        vault.path.write_text("{not json")

        with pytest.raises(CorruptRecord):
            vault.load_record()

    @pytest.mark.parametrize("field", ["nonce", "tag", "kdf", "password_required"])
    def test_missing_field(self, vault, field):
        vault.encrypt_and_store(Identity.generate(), OPTIONAL)
        data = read_file(vault)
        del data[field]
        write_file(vault, data)

        with pytest.raises(CorruptRecord):
            vault.load_record()

    @pytest.mark.parametrize("field, value", [
        ("r", 0),
        ("p", 0),
        ("n", 2 ** 40),
        ("n", 3),
        ("salt", ""),
    ])
    def test_invalid_kdf_parameters(self, vault, field, value):
        """Test that unusable scrypt parameters are rejected when loading."""
        vault.encrypt_and_store(Identity.generate(), OPTIONAL)
        data = read_file(vault)
        data['kdf'][field] = value
        write_file(vault, data)

        with pytest.raises(CorruptRecord):
            vault.load_record()

    def test_invalid_nonce_length(self, vault):
        vault.encrypt_and_store(Identity.generate(), OPTIONAL)
        data = read_file(vault)
        data['nonce'] = "AAAA"
        write_file(vault, data)

        with pytest.raises(CorruptRecord):
            vault.load_record()

    def test_unknown_version(self, vault):
        vault.encrypt_and_store(Identity.generate(), OPTIONAL)
        data = read_file(vault)
        data['version'] = 99
        write_file(vault, data)

        with pytest.raises(CorruptRecord):
            vault.load_record()

    def test_tampered_password_flag(self, vault):
        """Test that clearing the password flag in the header breaks unlock."""
        vault.encrypt_and_store(Identity.generate(), OPTIONAL, "pw")
        data = read_file(vault)
        data['password_required'] = False
        write_file(vault, data)

        loaded = vault.load_record()
        with pytest.raises(WrongPassword):
            vault.unlock(loaded)

    def test_tampered_public_key(self, vault):
        """Test that swapping the stored public key breaks unlock."""
        vault.encrypt_and_store(Identity.generate(), OPTIONAL)
        data = read_file(vault)
        data['pubkey'] = Identity.generate().public_key_hex
        write_file(vault, data)

        loaded = vault.load_record()
        with pytest.raises(WrongPassword):
            vault.unlock(loaded)

    def test_delete(self, vault):
        vault.encrypt_and_store(Identity.generate(), OPTIONAL)

        assert vault.delete()
        assert not vault.exists()
        assert not vault.delete()
