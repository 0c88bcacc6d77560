import json
from typing import Callable, List, Tuple

import pytest
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from eth_utils import to_checksum_address

from vault_secrets import config as config_module
from vault_secrets.config import VaultSettings
from vault_secrets.encryption import derive_threshold_key, encode_owner_label

OWNER = to_checksum_address("0x" + "ab" * 20)
REGISTRY = to_checksum_address("0x" + "12" * 20)
GATEWAY_URL = "https://gateway.example/vault"
TX_HASH = "0x" + "aa" * 32


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Reset VAULT_* env and disable dotenv loading for isolation."""
    for key in (
        "VAULT_GATEWAY_URL",
        "VAULT_GATEWAY_TIMEOUT",
        "VAULT_RPC_URL",
        "VAULT_REGISTRY_ADDRESS",
        "VAULT_REGISTRY_CHAIN_NAME",
        "VAULT_OWNER_ADDRESS",
        "VAULT_OWNER_TYPE",
        "VAULT_ETH_PRIVATE_KEY",
        "VAULT_MASTER_PWD",
        "VAULT_BUNDLE_DIR",
        "VAULT_SKIP_OWNER_LINK_CHECK",
    ):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(config_module, "load_dotenv", lambda *args, **kwargs: None)


class FakeRegistry:
    """In-memory stand-in for the workflow registry contract."""

    def __init__(self, linked: bool = True):
        self.allowlisted = set()
        self.linked = linked
        self.checks: List[Tuple[str, bytes]] = []
        self.allowlist_calls: List[Tuple[bytes, object]] = []
        self.packed: List[bytes] = []

    def is_request_allowlisted(self, owner, digest):
        self.checks.append((owner, digest))
        return digest in self.allowlisted

    def allowlist_request(self, digest, duration):
        self.allowlist_calls.append((digest, duration))
        self.allowlisted.add(digest)
        return TX_HASH

    def pack_allowlist_request_tx_data(self, digest, duration):
        self.packed.append(digest)
        return "a1b2c3d4" + digest.hex()

    def is_owner_linked(self, owner):
        return self.linked


class FakeGateway:
    """Records posted bodies and answers through ``responder``."""

    def __init__(self, responder: Callable[[bytes], Tuple[bytes, int]]):
        self.responder = responder
        self.bodies: List[bytes] = []
        self.closed = False

    def post(self, body):
        self.bodies.append(body)
        return self.responder(body)

    def close(self):
        self.closed = True

    def methods(self):
        return [json.loads(body)["method"] for body in self.bodies]


@pytest.fixture
def vault_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def vault_public_key_hex(vault_key):
    return vault_key.public_key().public_bytes(Encoding.X962, PublicFormat.UncompressedPoint).hex()


def decrypt_vault_ciphertext(private_key, cipher_hex: str, owner: str) -> str:
    raw = bytes.fromhex(cipher_hex)
    point, nonce, sealed = raw[:65], raw[65:77], raw[77:]
    ephemeral = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), point)
    shared = private_key.exchange(ec.ECDH(), ephemeral)
    key = derive_threshold_key(shared, point)
    return AESGCM(key).decrypt(nonce, sealed, encode_owner_label(owner)).decode("utf-8")


def rpc_body(request_id, method, result=None, error=None) -> bytes:
    envelope = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if error is not None:
        envelope["error"] = error
    else:
        envelope["result"] = result
    return json.dumps(envelope).encode("utf-8")


def payload_body(payload) -> bytes:
    return rpc_body("resp-1", "", result={"payload": payload})


class VaultResponder:
    """Answers like the vault: a public key, then per-item success for every request."""

    def __init__(self, public_key_hex: str):
        self.public_key_hex = public_key_hex

    def __call__(self, body):
        request = json.loads(body)
        method = request["method"]
        params = request["params"]
        if method == "vault_publicKey_get":
            return rpc_body(request["id"], method, result={"publicKey": self.public_key_hex}), 200
        if method in ("vault_secretsCreate", "vault_secretsUpdate"):
            responses = [{"id": item["id"], "success": True} for item in params["encrypted_secrets"]]
            return payload_body({"responses": responses}), 200
        if method == "vault_secretsDelete":
            responses = [{"id": item, "success": True} for item in params["ids"]]
            return payload_body({"responses": responses}), 200
        if method == "vault_secretsList":
            identifiers = [{"key": "k1", "owner": params["owner"], "namespace": params["namespace"]}]
            return payload_body({"identifiers": identifiers, "success": True}), 200
        return rpc_body(request["id"], method, error={"code": -32601, "message": "method not found"}), 200


@pytest.fixture
def registry():
    return FakeRegistry()


@pytest.fixture
def gateway(vault_public_key_hex):
    return FakeGateway(VaultResponder(vault_public_key_hex))


@pytest.fixture
def make_settings():
    def _make(**overrides):
        values = {
            "gateway_url": GATEWAY_URL,
            "rpc_url": "https://rpc.example",
            "registry_address": REGISTRY,
            "registry_chain_name": "ethereum-testnet-sepolia",
            "owner_address": OWNER,
            "owner_type": "EOA",
        }
        values.update(overrides)
        return VaultSettings(**values)

    return _make
