"""
Tests for the approval queue and remote signing requests.
"""

import json

import pytest

from keyward.errors import AlreadyResolved, UnknownRequest
from keyward.identity import Identity, NostrEvent
from keyward.identity.keys import schnorr_verify
from keyward.invariants import check_all_invariants
from keyward.signer import Decision, Disposition, SessionState
from keyward.delegation import DelegationCertificate, verify_delegation

from conftest import RemoteClient


def unsigned_note(pubkey: str, content: str = "hello nostr") -> dict:
    return {'pubkey': pubkey, 'created_at': 1700000000, 'kind': 1, 'tags': [], 'content': content}


class TestSignEventFlow:
    """Test sign_event requests from enqueue to response."""

    def test_sign_event_waits_for_approval(self, signer, client):
        """Test that sign_event is queued and nothing is sent before approval."""
        client.pair()

        request_id = client.request("sign_event", [unsigned_note(signer.identity.public_key_hex)])

        assert client.responses_to(request_id) == []
        pending = signer.next_pending()
        assert pending.request_id == request_id
        assert "hello nostr" in pending.description()

    def test_approve_returns_valid_signature(self, signer, client):
        client.pair()
        note = unsigned_note(signer.identity.public_key_hex)
        request_id = client.request("sign_event", [note])

        response = signer.approve(request_id)

        assert response.ok
        assert client.responses_to(request_id) == [response]
        event = NostrEvent(**note)
        assert schnorr_verify(
            signer.identity.public_key,
            bytes.fromhex(response.result),
            bytes.fromhex(event.id),
        )

    def test_event_as_json_string(self, signer, client):
        client.pair()
        note = unsigned_note(signer.identity.public_key_hex)

        request_id = client.request("sign_event", [json.dumps(note)])
        response = signer.approve(request_id)

        assert response.ok

    def test_deny_then_resolve_again(self, signer, client):
        """Test that a denied request gets one rejection and cannot be resolved again."""
        client.pair()
        request_id = client.request("sign_event", [unsigned_note(signer.identity.public_key_hex)])

        response = signer.deny(request_id)

        assert not response.ok
        assert "rejected" in response.error
        with pytest.raises(AlreadyResolved):
            signer.approve(request_id)
        assert len(client.responses_to(request_id)) == 1

    def test_unknown_request(self, signer):
        with pytest.raises(UnknownRequest):
            signer.approve("never-seen")

    def test_duplicate_enqueue_is_idempotent(self, signer, client):
        client.pair()
        note = unsigned_note(signer.identity.public_key_hex)

        client.request("sign_event", [note], request_id="dup")
        client.request("sign_event", [note], request_id="dup")

        assert signer.queue.pending_count() == 1
        signer.approve("dup")
        assert len(client.responses_to("dup")) == 1

    def test_fifo_order(self, signer, client):
        """Test that a second sign_event waits behind the first."""
        client.pair()
        pubkey = signer.identity.public_key_hex
        first = client.request("sign_event", [unsigned_note(pubkey, "first")])
        second = client.request("sign_event", [unsigned_note(pubkey, "second")])

        assert [r.request_id for r in signer.queue.pending()] == [first, second]
        signer.deny(first)
        assert signer.next_pending().request_id == second

    def test_foreign_pubkey_gives_error(self, signer, client):
        client.pair()
        request_id = client.request("sign_event", [unsigned_note(Identity.generate().public_key_hex)])

        response = signer.approve(request_id)

        assert not response.ok
        assert signer.queue.get(request_id).disposition is Disposition.APPROVED

    def test_locked_identity_declines_immediately(self, signer, client):
        """Test that signing requests are declined while the key is not unlocked."""
        client.pair()
        signer.identity.import_public(Identity.generate().public_key)

        request_id = client.request("sign_event", [unsigned_note(signer.identity.public_key_hex)])

        response = client.responses_to(request_id)[0]
        assert "SigningUnavailable" in response.error
        assert signer.queue.pending_count() == 0

    def test_key_locked_after_enqueue(self, signer, client):
        """Test that approval after the key disappears yields an error response."""
        client.pair()
        request_id = client.request("sign_event", [unsigned_note(signer.identity.public_key_hex)])
        signer.identity.clear()

        response = signer.approve(request_id)

        assert "SigningUnavailable" in response.error
        assert len(client.responses_to(request_id)) == 1


class TestDelegationRequests:
    """Test nip26_delegate requests."""

    def test_delegate_approved(self, signer, client):
        client.pair()
        delegatee = Identity.generate().public_key_hex

        request_id = client.request("nip26_delegate", [delegatee, "kind=1"])
        response = signer.approve(request_id)

        assert response.ok
        result = response.result
        cert = DelegationCertificate(
            delegator=result['from'],
            delegatee=result['to'],
            conditions=result['cond'],
            signature=result['sig'],
        )
        assert cert.delegator == signer.identity.public_key_hex
        assert verify_delegation(cert)

    def test_delegate_invalid_conditions(self, signer, client):
        client.pair()
        delegatee = Identity.generate().public_key_hex

        request_id = client.request("nip26_delegate", [delegatee, "kind=x"])
        response = signer.approve(request_id)

        assert "InvalidConditions" in response.error


class TestSessionIsolation:
    """Test that sessions do not see each other's requests."""

    def test_responses_go_to_originating_session(self, signer, transport):
        alice = RemoteClient(signer, transport)
        bob = RemoteClient(signer, transport)
        alice.pair()
        bob.pair()
        pubkey = signer.identity.public_key_hex

        alice.request("sign_event", [unsigned_note(pubkey, "from alice")], request_id="r1")
        bob.request("sign_event", [unsigned_note(pubkey, "from bob")], request_id="r1")

        assert signer.queue.pending_count() == 2
        signer.approve("r1", session_id=bob.session_id)

        assert len(bob.responses_to("r1")) == 1
        assert alice.responses_to("r1") == []
        assert signer.queue.pending(alice.session_id)[0].request_id == "r1"

    def test_disconnect_answers_pending(self, signer, transport):
        """Test that disconnecting one session cancels only its requests."""
        alice = RemoteClient(signer, transport)
        bob = RemoteClient(signer, transport)
        alice.pair()
        bob.pair()
        pubkey = signer.identity.public_key_hex
        alice_req = alice.request("sign_event", [unsigned_note(pubkey)])
        bob_req = bob.request("sign_event", [unsigned_note(pubkey)])

        signer.disconnect(alice.session_id)

        assert signer.session(alice.session_id).state is SessionState.CLOSED
        response = alice.responses_to(alice_req)[0]
        assert not response.ok
        assert signer.queue.get(alice_req).disposition is Disposition.CANCELLED
        assert signer.queue.next_pending().request_id == bob_req
        assert signer.session(bob.session_id).is_active
        with pytest.raises(AlreadyResolved):
            signer.approve(alice_req)

    def test_failure_discards_pending(self, signer, client, transport):
        client.pair()
        request_id = client.request("sign_event", [unsigned_note(signer.identity.public_key_hex)])
        sent_before = len(transport.sent_to(client.session_id))

        transport.drop(client.session_id)
        signer.process_inbox()

        assert signer.queue.get(request_id).disposition is Disposition.CANCELLED
        assert len(transport.sent_to(client.session_id)) == sent_before


class TestQueueInvariants:
    """Test the single-response invariant over a busy queue."""

    def test_single_response_invariant(self, signer, client):
        client.pair()
        pubkey = signer.identity.public_key_hex
        ids = [client.request("sign_event", [unsigned_note(pubkey, str(i))]) for i in range(4)]

        signer.approve(ids[0])
        signer.deny(ids[1])
        signer.queue.resolve(ids[2], Decision.APPROVE)

        check_all_invariants(signer.identity, signer.queue)
        for request_id in ids[:3]:
            assert len(client.responses_to(request_id)) == 1
        assert signer.queue.pending_count() == 1
