import tempfile

from keyward import KeywardEngine, Identity, VaultConfig
from keyward.signer import EnvelopeCipher, SignerRequest, SignerResponse, wrap, unwrap
from keyward.transport import LocalTransport

print("--- Keyward Live Demo ---")

vault_dir = tempfile.mkdtemp(prefix="keyward-demo-")
transport = LocalTransport()

# 1. Initialize Engine
engine = KeywardEngine(vault_config=VaultConfig.in_directory(vault_dir), transport=transport)
print(f"[+] Engine initialized with vault in {vault_dir}")

# 2. Create and store a key
npub = engine.generate_keys()
print(f"[+] Generated key: {npub[:20]}...")
engine.save_keys("correct horse", repeat_password="correct horse")
engine.lock_keys()
engine.unlock_keys("correct horse")
print(f"[+] Saved, locked and unlocked: {engine.status.latest()}")

# 3. Delegate
delegatee = engine.generate_delegatee()
cert = engine.create_delegation(delegatee, kind=1)
print(f"[+] Delegation: {cert.conditions} sig={cert.signature[:16]}...")

# 4. Pair a client application through the local transport
client = Identity.generate()
session = engine.connect_signer(f"nostrconnect://{client.public_key_hex}?relay=wss://relay.example.com")
transport.complete_connect(session.session_id)
engine.process_signer_events()

signer_key = engine.signer.transport_identity
cipher = EnvelopeCipher(client, signer_key.public_key)


def client_send(message):
    transport.deliver(session.session_id, wrap(message, client, signer_key.public_key_hex, cipher))
    engine.process_signer_events()


_, connect = unwrap(transport.sent_to(session.session_id)[0], client.public_key_hex, signer_key.public_key_hex, cipher)
client_send(SignerResponse(request_id=connect.request_id, result="ack"))
print(f"[+] Session: {session.describe()}")

# 5. Remote signing request, approved by the user
client_send(SignerRequest(request_id="req-1", method="sign_event", params=[{'kind': 1, 'content': "Hello from the demo"}]))
print(f"[*] Pending: {engine.first_pending_description()}")
response = engine.process_first_request()
print(f"[+] Signature: {response.result[:32]}...")

engine.close()
print("--- Demo Complete ---")
