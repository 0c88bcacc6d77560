"""
Pydantic models for vault secrets requests, responses and local inputs.

Request params use the snake_case names the gateway expects on the wire.
Response payloads are protobuf-JSON, so the response models accept the
lowerCamelCase names as well as the original field names.
"""

from typing import Any, Generic, List, Optional, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .constants import DEFAULT_NAMESPACE, JSONRPC_VERSION

P = TypeVar("P")


class SecretItem(BaseModel):
    """A single secret as resolved from the input file and environment."""

    id: str = Field(min_length=1)
    value: str = Field(min_length=1, repr=False)
    namespace: str = Field(default=DEFAULT_NAMESPACE, min_length=1)


class SecretIdentifier(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str = ""
    namespace: str = ""
    owner: str = ""


class EncryptedSecret(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: SecretIdentifier
    encrypted_value: str


class UpsertSecretsParams(BaseModel):
    """Params for vault_secretsCreate and vault_secretsUpdate."""

    request_id: str = ""
    encrypted_secrets: List[EncryptedSecret] = Field(default_factory=list)


class DeleteSecretsParams(BaseModel):
    request_id: str = ""
    ids: List[SecretIdentifier] = Field(default_factory=list)


class ListSecretIdentifiersParams(BaseModel):
    request_id: str = ""
    owner: str
    namespace: str = DEFAULT_NAMESPACE


class PublicKeyGetParams(BaseModel):
    pass


class JsonRpcRequest(BaseModel, Generic[P]):
    """JSON-RPC 2.0 request frame carrying method specific params."""

    jsonrpc: str = JSONRPC_VERSION
    id: str
    method: str
    params: P

    def to_body(self) -> bytes:
        return self.model_dump_json().encode("utf-8")


class JsonRpcError(BaseModel):
    code: int = 0
    message: str = ""
    data: Optional[Any] = None


class JsonRpcResponse(BaseModel):
    jsonrpc: str = ""
    id: Optional[Any] = None
    method: Optional[str] = None
    result: Optional[Any] = None
    error: Optional[JsonRpcError] = None


class _ProtoJsonModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class SecretResult(_ProtoJsonModel):
    id: Optional[SecretIdentifier] = None
    success: bool = False
    error: str = ""


class SecretsResponse(_ProtoJsonModel):
    """Create, update and delete responses share this shape."""

    responses: List[SecretResult] = Field(default_factory=list)


class ListSecretIdentifiersResponse(_ProtoJsonModel):
    identifiers: List[Optional[SecretIdentifier]] = Field(default_factory=list)
    success: bool = False
    error: str = ""


class PublicKeyGetResult(BaseModel):
    public_key: str = Field(default="", validation_alias=AliasChoices("publicKey", "public_key"))
