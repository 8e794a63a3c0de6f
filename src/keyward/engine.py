"""
Keyward Public API - Key Custody & Remote Signer

This is the main entry point for the keyward system.
Every user action goes through this engine and leaves a status message.
"""

from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List, Optional, TypeVar

from .config import SecuritySetting, VaultConfig
from .delegation import DelegationCertificate, build_delegation, generate_random_delegatee
from .errors import KeywardError, NoChangeToSave, PasswordMismatch
from .identity import Identity, LockState
from .invariants import check_all_invariants
from .logger import get_logger
from .signer import PairingSession, RemoteSigner, SignerRequest, SignerResponse
from .transport import BaseTransport, transport_factory
from .utils.time import format_unix, unix_now
from .vault import EncryptedVault, StoreResult

log = get_logger(__name__)

T = TypeVar('T')

MAX_STATUS_HISTORY = 50


@dataclass(frozen=True)
class StatusMessage:
    text: str
    is_error: bool
    timestamp: int

    def __str__(self) -> str:
        prefix = "ERROR: " if self.is_error else ""
        return f"[{format_unix(self.timestamp)}] {prefix}{self.text}"


@dataclass(frozen=True)
class PendingConfirmation:
    """A key-replacing action waiting for the user to confirm clearing the current keys."""

    action: str
    then: Optional[Callable[[], Any]] = None


class StatusMessages:
    """
    Recent user-facing status lines, newest last.
    """

    def __init__(self, max_history: int = MAX_STATUS_HISTORY):
        self._messages: Deque[StatusMessage] = deque(maxlen=max_history)

    def set(self, text: str):
        self._messages.append(StatusMessage(text, False, unix_now()))
        log.info(text)

    def set_error(self, text: str):
        self._messages.append(StatusMessage(text, True, unix_now()))
        log.warning(text)

    def latest(self) -> Optional[StatusMessage]:
        return self._messages[-1] if self._messages else None

    def history(self) -> List[StatusMessage]:
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)


class KeywardEngine:
    """
    Main engine for key custody and remote signing.

    This is the primary interface for:
    - Generating, importing and clearing keys
    - Saving, loading and unlocking the encrypted vault
    - Creating delegation certificates
    - Pairing with remote clients and approving their requests
    """

    def __init__(
        self,
        security: SecuritySetting = SecuritySetting.PERSIST_OPTIONAL_PASSWORD,
        vault_config: Optional[VaultConfig] = None,
        transport: Optional[BaseTransport] = None,
        load_on_start: bool = False,
    ):
        """
        Initialize keyward engine.

        Args:
            security: Security setting for every vault operation
            vault_config: Vault location and cost (per-user default if omitted)
            transport: Relay transport for the signer (WebSocket relay if omitted)
            load_on_start: Try to load the stored key when persisting is allowed
        """
        self.security = security
        self.identity = Identity()
        self.vault = EncryptedVault(vault_config)
        self.signer = RemoteSigner(self.identity, transport or transport_factory("relay"))
        self.status = StatusMessages()
        self.confirmation: Optional[PendingConfirmation] = None
        self._unsaved_changes = False

        self.last_delegation: Optional[DelegationCertificate] = None
        self.delegatee: Optional[Identity] = None

        self.status.set("Keyward started")
        if load_on_start and self.security.allows_persist() and self.vault.exists():
            self.load_keys()

    def close(self):
        """Disconnect all sessions and wipe the in-memory key."""
        self.signer.close()
        self.identity.clear()
        if self.delegatee is not None:
            self.delegatee.clear()

    def _attempt(self, action: Callable[[], T], success: Optional[str] = None) -> Optional[T]:
        try:
            result = action()
        except KeywardError as e:
            self.status.set_error(str(e))
            return None
        if success:
            self.status.set(success)
        return result

    # ==================== Confirmation ====================

    def _confirm_clear_first(self, action: str, then: Optional[Callable[[], Any]] = None):
        self.confirmation = PendingConfirmation(action, then)
        self.status.set(f"Current keys will be cleared before {action}, confirm to continue")

    def confirm(self) -> Optional[Any]:
        """
        Clear the current keys, then run the action that asked for confirmation.

        Returns:
            The action's result, True for a plain clear, or None if nothing was pending
        """
        pending = self.confirmation
        if pending is None:
            return None
        self.confirmation = None
        self._clear()
        if pending.then is None:
            return True
        return pending.then()

    def cancel(self) -> bool:
        """Drop the pending confirmation, leaving the keys unchanged."""
        if self.confirmation is None:
            return False
        self.confirmation = None
        self.status.set("Action cancelled")
        return True

    # ==================== Keys ====================

    def generate_keys(self) -> Optional[str]:
        """
        Generate a fresh keypair.

        Asks for confirmation first when a key is already set.

        Returns:
            npub of the new key, or None while confirmation is pending
        """
        if self.identity.is_set():
            self._confirm_clear_first("generating a new keypair", self._generate)
            return None
        return self._generate()

    def _generate(self) -> str:
        self.identity.regenerate()
        self._unsaved_changes = True
        self.status.set("New keypair generated")
        return self.identity.npub

    def import_secret_key(self, secret: str) -> Optional[str]:
        """
        Import a secret key (hex or nsec).

        Returns:
            npub of the imported key, or None on invalid input
        """
        def action():
            self.identity.import_secret(secret.strip())
            self._unsaved_changes = True
            return self.identity.npub
        return self._attempt(action, "Secret key imported")

    def import_public_key(self, public_key: str) -> Optional[str]:
        """
        Import a public key only (hex or npub).

        Returns:
            npub of the imported key, or None on invalid input
        """
        def action():
            self.identity.import_public(public_key.strip())
            self._unsaved_changes = True
            return self.identity.npub
        return self._attempt(action, "Public key imported")

    def clear_keys(self) -> bool:
        """
        Zero the in-memory key. The vault file is left alone.

        Returns:
            True if cleared, False while confirmation is pending
        """
        if self.identity.is_set():
            self._confirm_clear_first("clearing")
            return False
        self._clear()
        return True

    def _clear(self):
        self.identity.clear()
        self._unsaved_changes = False
        self.status.set("Keys cleared")

    def export_secret_key(self) -> Optional[str]:
        """Copy out the unlocked secret key as nsec."""
        return self._attempt(self.identity.export_nsec)

    # ==================== Vault ====================

    def save_keys(
        self,
        password: Optional[str] = None,
        repeat_password: Optional[str] = None,
    ) -> Optional[StoreResult]:
        """
        Save the current key according to the security setting.

        Args:
            password: Optional password
            repeat_password: Password typed a second time; checked when given

        Returns:
            StoreResult, or None on error
        """
        def action():
            if repeat_password is not None and (password or "") != repeat_password:
                raise PasswordMismatch("Encryption passwords don't match")
            # A locked key is rewritten unchanged, so a password changes nothing
            unchanged = not self._unsaved_changes and (
                not password or self.identity.state is LockState.LOCKED_ENCRYPTED
            )
            if self.identity.is_set() and unchanged and self.vault.exists():
                raise NoChangeToSave("No changes to save")
            return self.vault.encrypt_and_store(self.identity, self.security, password)

        result = self._attempt(action)
        if result is None:
            return None
        if not result.persisted:
            self.status.set("Keys not saved: security setting forbids persisting")
            return result
        self._unsaved_changes = False
        if result.encrypted:
            self.status.set(f"Keys saved encrypted to {result.path}")
        else:
            self.status.set(f"Public key saved to {result.path}")
        return result

    def load_keys(self) -> bool:
        """
        Load the stored key without decrypting it.

        Asks for confirmation first when a key is already set.

        Returns:
            True if a key was loaded
        """
        if self.identity.is_set():
            self._confirm_clear_first("loading the saved keys", self._load)
            return False
        return self._load()

    def _load(self) -> bool:
        loaded = self._attempt(lambda: self.vault.load_record(self.security))
        if loaded is None:
            return False

        if loaded.record is not None:
            self.identity.attach_record(loaded.record)
            self.status.set("Keys loaded, secret key is locked")
        else:
            self.identity.import_public(loaded.public_key)
            self.status.set("Public key loaded")
        self._unsaved_changes = False
        return True

    def unlock_keys(self, password: Optional[str] = None) -> bool:
        """
        Decrypt the loaded secret key.

        Returns:
            True if the key is now unlocked
        """
        def action():
            self.vault.unlock(self.identity, password)
            return True
        return bool(self._attempt(action, "Secret key unlocked"))

    def lock_keys(self) -> bool:
        """
        Drop the decrypted key, keeping it encrypted in memory.

        Returns:
            True if the key was locked
        """
        if self.identity.lock():
            self.status.set("Secret key locked")
            return True
        self.status.set_error("Key cannot be locked: it has not been saved encrypted")
        return False

    def delete_saved_keys(self) -> bool:
        """Remove the vault file."""
        removed = self._attempt(self.vault.delete)
        if removed:
            self.status.set("Saved keys deleted")
        return bool(removed)

    # ==================== Delegation ====================

    def create_delegation(
        self,
        delegatee: str,
        kind: Optional[int] = None,
        since: Optional[int] = None,
        until: Optional[int] = None,
    ) -> Optional[DelegationCertificate]:
        """
        Create a delegation certificate signed by the current key.

        Args:
            delegatee: Delegatee public key (hex or npub)
            kind: Optional event kind restriction
            since: Optional lower time bound
            until: Optional upper time bound

        Returns:
            DelegationCertificate, or None on error
        """
        conditions = {'kind': kind, 'since': since, 'until': until}
        certificate = self._attempt(
            lambda: build_delegation(self.identity, delegatee, conditions),
            "Delegation created",
        )
        if certificate is not None:
            self.last_delegation = certificate
        return certificate

    def generate_delegatee(self) -> str:
        """
        Generate a throwaway delegatee keypair.

        Returns:
            npub of the delegatee
        """
        if self.delegatee is not None:
            self.delegatee.clear()
        self.delegatee = generate_random_delegatee()
        self.status.set("Random delegatee generated")
        return self.delegatee.npub

    # ==================== Remote signer ====================

    def connect_signer(self, uri: str) -> Optional[PairingSession]:
        """
        Pair with a remote client.

        Args:
            uri: nostrconnect:// pairing URI

        Returns:
            The new session, or None on error
        """
        if not self.identity.can_sign():
            self.status.set_error("Key pair is not loaded or unlocked!")
            return None

        session = self._attempt(lambda: self.signer.pair(uri.strip()))
        if session is None:
            return None
        if session.failure is not None:
            self.status.set_error(f"Could not connect to relay: {session.failure}")
        else:
            self.status.set("Signer connecting...")
        return session

    def disconnect_signer(self, session_id: Optional[str] = None) -> int:
        """
        Disconnect one session, or every live session.

        Returns:
            Number of sessions disconnected
        """
        if session_id is not None:
            def action():
                self.signer.disconnect(session_id)
                return 1
            return self._attempt(action, "Signer disconnected") or 0

        live = [s for s in self.signer.sessions() if not s.is_terminal]
        for session in live:
            session.close()
        if live:
            self.status.set("Signer disconnected")
        return len(live)

    def process_signer_events(self) -> int:
        """
        Apply pending relay events. Call regularly from the owner thread.

        Returns:
            Number of events processed
        """
        return self.signer.process_inbox()

    def sessions(self) -> List[Dict[str, Any]]:
        return [
            {
                'session_id': s.session_id,
                'state': s.state.value,
                'description': s.describe(),
                'failure': str(s.failure) if s.failure else None,
            }
            for s in self.signer.sessions()
        ]

    def pending_requests(self) -> List[SignerRequest]:
        return self.signer.queue.pending()

    def first_pending_description(self) -> Optional[str]:
        request = self.signer.next_pending()
        return request.description() if request else None

    def process_first_request(self) -> Optional[SignerResponse]:
        """
        Approve the oldest pending request.

        Returns:
            The response sent, or None if nothing was pending
        """
        request = self.signer.next_pending()
        if request is None:
            return None
        description = request.description()
        response = self._attempt(lambda: self.signer.approve(request.request_id, request.session_id))
        if response is not None:
            self.status.set(f"Processed request '{description}'")
        return response

    def ignore_first_request(self) -> Optional[SignerResponse]:
        """
        Reject the oldest pending request.

        Returns:
            The response sent, or None if nothing was pending
        """
        request = self.signer.next_pending()
        if request is None:
            return None
        description = request.description()
        response = self._attempt(lambda: self.signer.deny(request.request_id, request.session_id))
        if response is not None:
            self.status.set(f"Removed request '{description}'")
        return response

    # ==================== Utilities ====================

    def check_invariants(self):
        """
        Raises:
            InvariantViolationError: If a custody invariant does not hold
        """
        check_all_invariants(self.identity, self.signer.queue)

    def health_check(self) -> Dict[str, Any]:
        """
        Perform system health check.

        Returns:
            Health status dictionary
        """
        try:
            self.check_invariants()
            invariants_ok = True
            error = None
        except KeywardError as e:
            invariants_ok = False
            error = str(e)

        report = {
            'status': 'healthy' if invariants_ok else 'unhealthy',
            'identity': self.identity.to_dict(),
            'security': self.security.value,
            'vault_exists': self.vault.exists(),
            'sessions': len(self.signer.sessions()),
            'active_sessions': len(self.signer.active_sessions()),
            'pending_requests': self.signer.queue.pending_count(),
            'confirmation_pending': self.confirmation is not None,
            'transport': self.signer.transport.healthz(),
        }
        if error:
            report['error'] = error
        return report

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
