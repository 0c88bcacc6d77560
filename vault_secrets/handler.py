"""
Operation orchestration for vault secrets.

Each operation runs the same pipeline: build params, fingerprint the request,
get the digest allowlisted (or park it for a multisig), post it to the gateway
and report the per-secret outcome.
"""

import logging
import uuid
from datetime import timedelta
from pathlib import Path
from typing import List, Optional, Union

from pydantic import BaseModel, ValidationError as PydanticValidationError

from .allowlist import AllowlistCoordinator
from .bundle import UnsignedBundle, find_bundle_by_request_id, load_bundle
from .config import VaultSettings
from .constants import BUNDLE_METHODS, DEFAULT_NAMESPACE, JSONRPC_VERSION, VaultMethod
from .digest import calculate_digest, hex_to_bytes32
from .encryption import HybridThresholdEncryptor, ThresholdEncryptor
from .exceptions import (
    BundleError,
    EncryptionError,
    GatewayError,
    GatewayRPCError,
    ResponseDecodeError,
    ValidationError,
)
from .gateway import GatewayClient
from .models import (
    DeleteSecretsParams,
    EncryptedSecret,
    JsonRpcRequest,
    ListSecretIdentifiersParams,
    PublicKeyGetParams,
    PublicKeyGetResult,
    SecretIdentifier,
    SecretItem,
    UpsertSecretsParams,
)
from .response import ParsedResponse, decode_envelope, parse_vault_gateway_response

logger = logging.getLogger(__name__)

_UPSERT_METHODS = (VaultMethod.SECRETS_CREATE, VaultMethod.SECRETS_UPDATE)


class SecretsHandler:
    """Runs vault secrets operations for one owner."""

    def __init__(
        self,
        settings: VaultSettings,
        gateway: GatewayClient,
        registry,
        encryptor: Optional[ThresholdEncryptor] = None,
        bundle_dir: Union[str, Path, None] = None,
    ):
        settings.require("owner_address")
        self.settings = settings
        self.gateway = gateway
        self.registry = registry
        self.encryptor = encryptor or HybridThresholdEncryptor()
        self.owner_address = settings.owner_address
        self.coordinator = AllowlistCoordinator(
            registry,
            owner_address=settings.owner_address,
            owner_type=settings.owner_type,
            bundle_dir=bundle_dir or settings.bundle_dir or Path.cwd(),
            chain_name=settings.registry_chain_name,
            registry_address=settings.registry_address or "",
        )

    def close(self) -> None:
        self.gateway.close()

    @property
    def bundle_dir(self) -> Path:
        return self.coordinator.bundle_dir

    def ensure_owner_linked(self) -> None:
        if self.settings.skip_owner_link_check:
            logger.debug("Owner link check disabled by configuration")
            return
        linked = self.registry.is_owner_linked(self.owner_address)
        print(f"Workflow owner link status: owner={self.owner_address}, linked={linked}")
        if not linked:
            raise ValidationError(
                f"owner {self.owner_address} not linked; link the owner key on the workflow registry first"
            )

    # ---------------- Encryption ----------------
    def fetch_public_key(self) -> str:
        """Ask the gateway for the vault's current threshold public key."""
        request_id = str(uuid.uuid4())
        request = JsonRpcRequest(
            id=request_id,
            method=VaultMethod.PUBLIC_KEY_GET.value,
            params=PublicKeyGetParams(),
        )
        body, status = self.gateway.post(request.to_body())
        if status != 200:
            raise GatewayError(f"gateway returned a non-200 status code: {status}")

        envelope = decode_envelope(body)
        if envelope.error is not None:
            raise GatewayRPCError(
                f"vault public key fetch error: {envelope.error.message} (code {envelope.error.code})"
            )
        if envelope.jsonrpc != JSONRPC_VERSION:
            raise ResponseDecodeError(f"jsonrpc version mismatch: got {envelope.jsonrpc!r}")
        if envelope.id != request_id:
            raise ResponseDecodeError(f"jsonrpc id mismatch: got {envelope.id!r} want {request_id!r}")
        if envelope.method != VaultMethod.PUBLIC_KEY_GET.value:
            raise ResponseDecodeError(f"jsonrpc method mismatch: got {envelope.method!r}")

        try:
            result = PublicKeyGetResult.model_validate(envelope.result or {})
        except PydanticValidationError as exc:
            raise ResponseDecodeError(f"failed to decode public key result: {exc}") from exc
        if not result.public_key:
            raise EncryptionError("vault returned an empty public key")
        return result.public_key

    def encrypt_secrets(self, items: List[SecretItem]) -> List[EncryptedSecret]:
        """Encrypt every item; any single failure aborts the whole batch."""
        public_key = self.fetch_public_key()
        encrypted: List[EncryptedSecret] = []
        for item in items:
            try:
                value = self.encryptor.encrypt(item.value, public_key, self.owner_address)
            except EncryptionError as exc:
                raise EncryptionError(f"failed to encrypt secret {item.id!r}: {exc}") from exc
            encrypted.append(
                EncryptedSecret(
                    id=SecretIdentifier(key=item.id, namespace=item.namespace, owner=self.owner_address),
                    encrypted_value=value,
                )
            )
        return encrypted

    # ---------------- Operations ----------------
    def execute(
        self,
        method: VaultMethod,
        params: BaseModel,
        duration: timedelta,
        *,
        request_id: Optional[str] = None,
        include_id: bool = True,
    ) -> Optional[ParsedResponse]:
        """
        Fingerprint, authorize and submit one request.

        Returns None when the request was parked for multisig approval.
        """
        reuse = request_id is not None
        req_id = request_id or str(uuid.uuid4())
        request = JsonRpcRequest(
            id=req_id,
            method=method.value,
            params=params.model_copy(update={"request_id": req_id}),
        )
        digest = calculate_digest(request, include_id=include_id)
        body = request.to_body()

        decision = self.coordinator.authorize(
            digest,
            duration,
            reuse=reuse,
            bundle=UnsignedBundle.new(req_id, method.value, digest, body),
        )
        if not decision.may_submit:
            return None
        return self.submit(method.value, body)

    def execute_upsert(
        self,
        items: List[SecretItem],
        method: VaultMethod,
        duration: timedelta,
        request_id: Optional[str] = None,
    ) -> Optional[ParsedResponse]:
        """Create or update secrets. With ``request_id`` the saved bundle is replayed and ``items`` is unused."""
        if method not in _UPSERT_METHODS:
            raise ValidationError(f"unsupported method {method.value!r} for create/update")
        print("Verifying ownership...")
        self.ensure_owner_linked()
        if request_id is not None:
            return self._resume_saved_request(method, request_id)
        encrypted = self.encrypt_secrets(items)
        return self.execute(method, UpsertSecretsParams(encrypted_secrets=encrypted), duration)

    def execute_delete(
        self,
        secret_ids: List[str],
        duration: timedelta,
        request_id: Optional[str] = None,
        namespace: str = DEFAULT_NAMESPACE,
    ) -> Optional[ParsedResponse]:
        self.ensure_owner_linked()
        ids = [SecretIdentifier(key=key, namespace=namespace, owner=self.owner_address) for key in secret_ids]
        # the delete digest is keyed on params only, independent of the request id
        return self.execute(
            VaultMethod.SECRETS_DELETE,
            DeleteSecretsParams(ids=ids),
            duration,
            request_id=request_id,
            include_id=False,
        )

    def execute_list(
        self,
        namespace: str,
        duration: timedelta,
        request_id: Optional[str] = None,
    ) -> Optional[ParsedResponse]:
        self.ensure_owner_linked()
        params = ListSecretIdentifiersParams(owner=self.owner_address, namespace=namespace or DEFAULT_NAMESPACE)
        return self.execute(VaultMethod.SECRETS_LIST, params, duration, request_id=request_id)

    def execute_bundle(self, bundle_path: Union[str, Path]) -> ParsedResponse:
        """Replay a parked request once its digest is allowlisted."""
        path = Path(bundle_path)
        if path.suffix.lower() != ".json":
            raise ValidationError("expected a bundle .json file")
        if not self.settings.is_msig:
            raise ValidationError("secrets execute is only supported for MSIG owners; rerun with --unsigned")

        bundle = load_bundle(path)
        return self._replay(bundle)

    def _resume_saved_request(self, method: VaultMethod, request_id: str) -> ParsedResponse:
        # encrypted bodies are randomized, so the fingerprinted body is read back from its bundle
        path = find_bundle_by_request_id(self.bundle_dir, request_id)
        if path is None:
            raise BundleError(
                f"no saved bundle for request id {request_id} in {self.bundle_dir}; "
                "use `secrets execute <bundle.json>` with the bundle from the first run"
            )
        bundle = load_bundle(path)
        if bundle.method != method.value:
            raise ValidationError(f"bundle {path} holds a {bundle.method} request, not {method.value}")
        return self._replay(bundle)

    def _replay(self, bundle: UnsignedBundle) -> ParsedResponse:
        method = VaultMethod.from_wire(bundle.method)
        if method not in BUNDLE_METHODS:
            raise ValidationError(f"unsupported method in bundle: {bundle.method!r}")
        digest = hex_to_bytes32(bundle.digest_hex)
        self.coordinator.ensure_allowlisted(digest)
        logger.info("Replaying bundled %s request %s", bundle.method, bundle.request_id)
        return self.submit(bundle.method, bundle.request_body)

    def submit(self, method: str, body: bytes) -> ParsedResponse:
        """POST a request body verbatim and report the gateway's answer."""
        response_body, status = self.gateway.post(body)
        if status != 200:
            raise GatewayError(f"gateway returned a non-200 status code: {status}")
        return parse_vault_gateway_response(method, response_body)
