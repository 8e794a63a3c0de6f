"""
Shared fixtures: a client application speaking to the signer through the
in-process transport.
"""

import tempfile

import pytest

from keyward.config import VaultConfig
from keyward.identity import Identity
from keyward.signer import EnvelopeCipher, RemoteSigner, SignerRequest, SignerResponse, unwrap, wrap
from keyward.signer.messages import new_request_id
from keyward.transport import LocalTransport
from keyward.utils.time import unix_now

RELAY_URL = "wss://relay.example.com"

# Cheap scrypt cost for tests
TEST_SCRYPT_N = 2 ** 10


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def advance(self, seconds: float):
        self.now += seconds

    def __call__(self) -> float:
        return self.now


class RemoteClient:
    """
    The client application side of a pairing.
    """

    def __init__(self, signer: RemoteSigner, transport: LocalTransport, metadata: str = ""):
        self.identity = Identity.generate()
        self.signer = signer
        self.transport = transport
        self.metadata = metadata
        self._read = 0
        self._cipher = None

    @property
    def session_id(self) -> str:
        return self.identity.public_key_hex

    @property
    def uri(self) -> str:
        uri = f"nostrconnect://{self.session_id}?relay={RELAY_URL}"
        if self.metadata:
            uri += f"&metadata={self.metadata}"
        return uri

    @property
    def signer_hex(self) -> str:
        return self.signer.transport_identity.public_key_hex

    @property
    def cipher(self) -> EnvelopeCipher:
        if self._cipher is None:
            self._cipher = EnvelopeCipher(self.identity, self.signer.transport_identity.public_key)
        return self._cipher

    def envelope(self, message, created_at=None, sender=None) -> bytes:
        sender = sender or self.identity
        cipher = self.cipher if sender is self.identity else EnvelopeCipher(
            sender, self.signer.transport_identity.public_key
        )
        return wrap(message, sender, self.signer_hex, cipher, created_at=created_at)

    def deliver(self, data: bytes, process: bool = True):
        self.transport.deliver(self.session_id, data)
        if process:
            self.signer.process_inbox()

    def request(self, method: str, params=None, request_id=None, created_at=None) -> str:
        request_id = request_id or new_request_id()
        message = SignerRequest(request_id=request_id, method=method, params=params or [])
        self.deliver(self.envelope(message, created_at=created_at))
        return request_id

    def received(self):
        """All messages the signer has sent to this client so far."""
        messages = []
        for data in self.transport.sent_to(self.session_id):
            _, message = unwrap(data, self.session_id, self.signer_hex, self.cipher)
            messages.append(message)
        return messages

    def new_messages(self):
        messages = self.received()
        fresh = messages[self._read:]
        self._read = len(messages)
        return fresh

    def responses_to(self, request_id: str):
        return [
            m for m in self.received()
            if isinstance(m, SignerResponse) and m.request_id == request_id
        ]

    def pair(self):
        """Pair and complete the handshake; returns the ACTIVE session."""
        session = self.signer.pair(self.uri)
        self.transport.complete_connect(self.session_id)
        self.signer.process_inbox()
        connect_request = self.new_messages()[0]
        self.deliver(self.envelope(SignerResponse(request_id=connect_request.request_id, result="ack")))
        return session


@pytest.fixture
def vault_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def vault_config(vault_dir):
    return VaultConfig.in_directory(vault_dir, scrypt_n=TEST_SCRYPT_N)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport():
    return LocalTransport()


@pytest.fixture
def signer_identity():
    return Identity.generate()


@pytest.fixture
def signer(signer_identity, transport, clock):
    remote_signer = RemoteSigner(signer_identity, transport, clock=clock)
    yield remote_signer
    remote_signer.close()


@pytest.fixture
def client(signer, transport):
    return RemoteClient(signer, transport)


@pytest.fixture
def now():
    return unix_now()
