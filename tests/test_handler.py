import hashlib
import json
import uuid
from datetime import timedelta

import pytest

from conftest import OWNER, FakeGateway, FakeRegistry, VaultResponder, decrypt_vault_ciphertext, payload_body, rpc_body
from vault_secrets.bundle import load_bundle
from vault_secrets.constants import VaultMethod
from vault_secrets.digest import canonical_json
from vault_secrets.exceptions import (
    BundleError,
    ConfigurationError,
    EncryptionError,
    GatewayError,
    GatewayRPCError,
    RequestNotFinalizedError,
    ResponseDecodeError,
    ValidationError,
)
from vault_secrets.handler import SecretsHandler
from vault_secrets.models import SecretItem

DURATION = timedelta(days=2)
ITEMS = [SecretItem(id="k1", value="first-value"), SecretItem(id="k2", value="second-value")]


def _handler(make_settings, gateway, registry, tmp_path, **settings):
    return SecretsHandler(make_settings(**settings), gateway, registry, bundle_dir=tmp_path)


def _parked_bundle_path(registry, tmp_path, index=-1):
    return tmp_path / (registry.packed[index].hex() + ".json")


def test_eoa_create_encrypts_allowlists_and_submits(make_settings, gateway, registry, vault_key, tmp_path, capsys):
    handler = _handler(make_settings, gateway, registry, tmp_path)

    parsed = handler.execute_upsert(ITEMS, VaultMethod.SECRETS_CREATE, DURATION)

    assert gateway.methods() == ["vault_publicKey_get", "vault_secretsCreate"]
    posted = json.loads(gateway.bodies[1])
    assert posted["params"]["request_id"] == posted["id"]
    secrets = posted["params"]["encrypted_secrets"]
    assert [s["id"] for s in secrets] == [
        {"key": "k1", "namespace": "main", "owner": OWNER},
        {"key": "k2", "namespace": "main", "owner": OWNER},
    ]
    values = [decrypt_vault_ciphertext(vault_key, s["encrypted_value"], OWNER) for s in secrets]
    assert values == ["first-value", "second-value"]

    frame = {k: posted[k] for k in ("jsonrpc", "id", "method", "params")}
    expected_digest = hashlib.sha256(canonical_json(frame)).digest()
    assert [call[0] for call in registry.allowlist_calls] == [expected_digest]
    assert registry.allowlist_calls[0][1] == DURATION

    assert [r.success for r in parsed.results] == [True, True]
    out = capsys.readouterr().out
    assert "Verifying ownership..." in out
    assert f"Secret created: secret_id=k1, owner={OWNER}, namespace=main" in out


def test_update_posts_update_method(make_settings, gateway, registry, tmp_path):
    handler = _handler(make_settings, gateway, registry, tmp_path)

    handler.execute_upsert(ITEMS[:1], VaultMethod.SECRETS_UPDATE, DURATION)

    assert gateway.methods() == ["vault_publicKey_get", "vault_secretsUpdate"]


def test_upsert_rejects_other_methods(make_settings, gateway, registry, tmp_path):
    handler = _handler(make_settings, gateway, registry, tmp_path)

    with pytest.raises(ValidationError, match="unsupported method"):
        handler.execute_upsert(ITEMS, VaultMethod.SECRETS_LIST, DURATION)


def test_handler_requires_owner_address(make_settings, gateway, registry):
    with pytest.raises(ConfigurationError, match="VAULT_OWNER_ADDRESS"):
        SecretsHandler(make_settings(owner_address=None), gateway, registry)


def _public_key_gateway(status=200, **overrides):
    def respond(body):
        request = json.loads(body)
        envelope = {
            "jsonrpc": "2.0",
            "id": request["id"],
            "method": request["method"],
            "result": {"publicKey": "04" + "11" * 64},
        }
        envelope.update(overrides)
        return json.dumps(envelope).encode("utf-8"), status

    return FakeGateway(respond)


@pytest.mark.parametrize(
    "overrides,error,message",
    [
        ({"id": "someone-else"}, ResponseDecodeError, "jsonrpc id mismatch"),
        ({"jsonrpc": "1.0"}, ResponseDecodeError, "jsonrpc version mismatch"),
        ({"method": "vault_secretsList"}, ResponseDecodeError, "jsonrpc method mismatch"),
        ({"result": {"publicKey": ""}}, EncryptionError, "empty public key"),
        ({"error": {"code": -32603, "message": "no key"}}, GatewayRPCError, "vault public key fetch error: no key"),
    ],
)
def test_public_key_response_is_validated(make_settings, registry, tmp_path, overrides, error, message):
    handler = _handler(make_settings, _public_key_gateway(**overrides), registry, tmp_path)

    with pytest.raises(error, match=message):
        handler.fetch_public_key()


def test_public_key_accepts_snake_case_field(make_settings, registry, tmp_path):
    gw = _public_key_gateway(result={"public_key": "04abcd"})
    handler = _handler(make_settings, gw, registry, tmp_path)

    assert handler.fetch_public_key() == "04abcd"


def test_public_key_non_200_is_fatal(make_settings, registry, tmp_path):
    handler = _handler(make_settings, _public_key_gateway(status=503), registry, tmp_path)

    with pytest.raises(GatewayError, match="non-200 status code: 503"):
        handler.fetch_public_key()


def test_encryption_failure_aborts_batch(make_settings, gateway, registry, tmp_path):
    class FailingEncryptor:
        def __init__(self):
            self.calls = 0

        def encrypt(self, value, public_key_hex, owner):
            self.calls += 1
            if self.calls == 2:
                raise EncryptionError("boom")
            return "00"

    handler = SecretsHandler(make_settings(), gateway, registry, encryptor=FailingEncryptor(), bundle_dir=tmp_path)

    with pytest.raises(EncryptionError, match="failed to encrypt secret 'k2': boom"):
        handler.execute_upsert(ITEMS, VaultMethod.SECRETS_CREATE, DURATION)
    assert gateway.methods() == ["vault_publicKey_get"]
    assert registry.checks == []


def test_msig_list_parks_without_gateway_call(make_settings, gateway, registry, tmp_path, capsys):
    handler = _handler(make_settings, gateway, registry, tmp_path, owner_type="MSIG")

    assert handler.execute_list("main", DURATION) is None

    assert gateway.bodies == []
    assert registry.allowlist_calls == []
    bundle = load_bundle(_parked_bundle_path(registry, tmp_path))
    assert bundle.method == "vault_secretsList"
    assert json.loads(bundle.request_body)["params"]["owner"] == OWNER
    out = capsys.readouterr().out
    assert "MSIG transaction prepared!" in out
    assert "a1b2c3d4" + registry.packed[0].hex() in out


def test_msig_create_only_fetches_public_key(make_settings, gateway, registry, tmp_path):
    handler = _handler(make_settings, gateway, registry, tmp_path, owner_type="MSIG")

    assert handler.execute_upsert(ITEMS, VaultMethod.SECRETS_CREATE, DURATION) is None

    assert gateway.methods() == ["vault_publicKey_get"]
    assert _parked_bundle_path(registry, tmp_path).exists()


@pytest.mark.parametrize("owner_type", ["EOA", "MSIG"])
def test_reuse_of_unfinalized_request_fails(make_settings, gateway, registry, tmp_path, owner_type):
    handler = _handler(make_settings, gateway, registry, tmp_path, owner_type=owner_type)

    with pytest.raises(RequestNotFinalizedError, match="is not finalized/allowlisted yet"):
        handler.execute_list("main", DURATION, request_id=str(uuid.uuid4()))

    assert gateway.bodies == []
    assert registry.allowlist_calls == []
    assert registry.packed == []


def test_reuse_after_approval_submits_same_request(make_settings, gateway, registry, tmp_path):
    handler = _handler(make_settings, gateway, registry, tmp_path, owner_type="MSIG")
    handler.execute_list("main", DURATION)
    bundle = load_bundle(_parked_bundle_path(registry, tmp_path))
    registry.allowlisted.add(registry.packed[0])

    parsed = handler.execute_list("main", DURATION, request_id=bundle.request_id)

    assert gateway.bodies == [bundle.request_body]
    assert parsed.identifiers[0].key == "k1"


def test_create_reuse_replays_saved_bundle(make_settings, gateway, registry, tmp_path):
    handler = _handler(make_settings, gateway, registry, tmp_path, owner_type="MSIG")
    handler.execute_upsert(ITEMS, VaultMethod.SECRETS_CREATE, DURATION)
    bundle = load_bundle(_parked_bundle_path(registry, tmp_path))
    registry.allowlisted.add(registry.packed[0])

    parsed = handler.execute_upsert(ITEMS, VaultMethod.SECRETS_CREATE, DURATION, request_id=bundle.request_id)

    assert gateway.methods() == ["vault_publicKey_get", "vault_secretsCreate"]
    assert gateway.bodies[-1] == bundle.request_body
    assert [r.success for r in parsed.results] == [True, True]


def test_create_reuse_without_saved_bundle(make_settings, gateway, registry, tmp_path):
    handler = _handler(make_settings, gateway, registry, tmp_path, owner_type="MSIG")

    with pytest.raises(BundleError, match="no saved bundle for request id"):
        handler.execute_upsert(ITEMS, VaultMethod.SECRETS_CREATE, DURATION, request_id=str(uuid.uuid4()))
    assert gateway.bodies == []


def test_update_reuse_rejects_create_bundle(make_settings, gateway, registry, tmp_path):
    handler = _handler(make_settings, gateway, registry, tmp_path, owner_type="MSIG")
    handler.execute_upsert(ITEMS, VaultMethod.SECRETS_CREATE, DURATION)
    bundle = load_bundle(_parked_bundle_path(registry, tmp_path))

    with pytest.raises(ValidationError, match="not vault_secretsUpdate"):
        handler.execute_upsert(ITEMS, VaultMethod.SECRETS_UPDATE, DURATION, request_id=bundle.request_id)


def test_execute_bundle_submits_exact_bytes(make_settings, gateway, registry, tmp_path, capsys):
    handler = _handler(make_settings, gateway, registry, tmp_path, owner_type="MSIG")
    handler.execute_delete(["k1", "k2"], DURATION)
    path = _parked_bundle_path(registry, tmp_path)
    registry.allowlisted.add(registry.packed[0])

    parsed = handler.execute_bundle(path)

    assert gateway.bodies == [load_bundle(path).request_body]
    assert parsed.method == "vault_secretsDelete"
    assert f"Secret deleted: secret_id=k2, owner={OWNER}, namespace=main" in capsys.readouterr().out


def test_execute_bundle_requires_finalized_digest(make_settings, gateway, registry, tmp_path):
    handler = _handler(make_settings, gateway, registry, tmp_path, owner_type="MSIG")
    handler.execute_list("main", DURATION)

    with pytest.raises(RequestNotFinalizedError):
        handler.execute_bundle(_parked_bundle_path(registry, tmp_path))
    assert gateway.bodies == []


def test_execute_bundle_requires_msig(make_settings, gateway, registry, tmp_path):
    handler = _handler(make_settings, gateway, registry, tmp_path)

    with pytest.raises(ValidationError, match="only supported for MSIG owners"):
        handler.execute_bundle(tmp_path / "bundle.json")


def test_execute_bundle_requires_json_file(make_settings, gateway, registry, tmp_path):
    handler = _handler(make_settings, gateway, registry, tmp_path, owner_type="MSIG")

    with pytest.raises(ValidationError, match="expected a bundle .json file"):
        handler.execute_bundle(tmp_path / "secrets.yaml")


def test_execute_bundle_rejects_unknown_method(make_settings, gateway, registry, tmp_path):
    path = tmp_path / "bundle.json"
    path.write_text(
        json.dumps(
            {
                "request_id": "r-1",
                "method": "vault_publicKey_get",
                "digest_hex": "0x" + "ab" * 32,
                "request_body": {"jsonrpc": "2.0"},
            }
        )
    )
    handler = _handler(make_settings, gateway, registry, tmp_path, owner_type="MSIG")

    with pytest.raises(ValidationError, match="unsupported method in bundle"):
        handler.execute_bundle(path)


def test_delete_digest_does_not_depend_on_request_id(make_settings, gateway, registry, tmp_path):
    handler = _handler(make_settings, gateway, registry, tmp_path, owner_type="MSIG")

    handler.execute_delete(["k1"], DURATION)
    handler.execute_delete(["k1"], DURATION)

    assert len(registry.packed) == 2
    assert registry.packed[0] == registry.packed[1]
    assert len(list(tmp_path.glob("*.json"))) == 1


def test_delete_reuse_with_fresh_id_matches_approved_digest(make_settings, gateway, registry, tmp_path):
    handler = _handler(make_settings, gateway, registry, tmp_path, owner_type="MSIG")
    handler.execute_delete(["k1"], DURATION)
    registry.allowlisted.add(registry.packed[0])
    request_id = str(uuid.uuid4())

    handler.execute_delete(["k1"], DURATION, request_id=request_id)

    assert json.loads(gateway.bodies[-1])["id"] == request_id


def test_list_digest_depends_on_request_id(make_settings, gateway, registry, tmp_path):
    handler = _handler(make_settings, gateway, registry, tmp_path, owner_type="MSIG")

    handler.execute_list("main", DURATION)
    handler.execute_list("main", DURATION)

    assert registry.packed[0] != registry.packed[1]


def test_unlinked_owner_is_rejected(make_settings, gateway, tmp_path, capsys):
    registry = FakeRegistry(linked=False)
    handler = _handler(make_settings, gateway, registry, tmp_path)

    with pytest.raises(ValidationError, match="not linked"):
        handler.execute_list("main", DURATION)
    assert gateway.bodies == []
    assert f"Workflow owner link status: owner={OWNER}, linked=False" in capsys.readouterr().out


def test_owner_link_check_can_be_skipped(make_settings, gateway, tmp_path):
    registry = FakeRegistry(linked=False)
    handler = _handler(make_settings, gateway, registry, tmp_path, skip_owner_link_check=True)

    parsed = handler.execute_list("main", DURATION)

    assert parsed.success is True


def test_non_200_on_submit_is_fatal(make_settings, registry, tmp_path, vault_public_key_hex):
    responder = VaultResponder(vault_public_key_hex)

    def respond(body):
        if json.loads(body)["method"] == "vault_secretsCreate":
            return b"upstream unavailable", 502
        return responder(body)

    handler = _handler(make_settings, FakeGateway(respond), registry, tmp_path)

    with pytest.raises(GatewayError, match="non-200 status code: 502"):
        handler.execute_upsert(ITEMS, VaultMethod.SECRETS_CREATE, DURATION)


def test_per_item_failures_do_not_raise(make_settings, registry, tmp_path, vault_public_key_hex, capsys):
    responder = VaultResponder(vault_public_key_hex)

    def respond(body):
        request = json.loads(body)
        if request["method"] == "vault_secretsCreate":
            failed = [
                {"id": s["id"], "success": False, "error": "secret already exists"}
                for s in request["params"]["encrypted_secrets"]
            ]
            return payload_body({"responses": failed}), 200
        return responder(body)

    handler = _handler(make_settings, FakeGateway(respond), registry, tmp_path)

    parsed = handler.execute_upsert(ITEMS[:1], VaultMethod.SECRETS_CREATE, DURATION)

    assert parsed.results[0].success is False
    assert "Secret create failed: secret_id=k1" in capsys.readouterr().out


def test_gateway_rpc_error_on_submit_is_fatal(make_settings, registry, tmp_path):
    gw = FakeGateway(lambda body: (rpc_body("x", "vault_secretsList", error={"code": 1, "message": "denied"}), 200))
    handler = _handler(make_settings, gw, registry, tmp_path)

    with pytest.raises(GatewayRPCError, match="denied"):
        handler.execute_list("main", DURATION)


def test_plugged_encryptor_output_is_submitted(make_settings, gateway, registry, vault_public_key_hex, tmp_path):
    class RecordingEncryptor:
        def __init__(self):
            self.seen = []

        def encrypt(self, value, public_key_hex, owner):
            self.seen.append((value, public_key_hex, owner))
            return "tdh2:" + value

    encryptor = RecordingEncryptor()
    handler = SecretsHandler(make_settings(), gateway, registry, encryptor=encryptor, bundle_dir=tmp_path)

    handler.execute_upsert(ITEMS[:1], VaultMethod.SECRETS_CREATE, DURATION)

    assert encryptor.seen == [("first-value", vault_public_key_hex, OWNER)]
    posted = json.loads(gateway.bodies[-1])
    assert posted["params"]["encrypted_secrets"][0]["encrypted_value"] == "tdh2:first-value"
