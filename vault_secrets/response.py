"""
Decoding of vault gateway responses.

The gateway wraps every secrets answer in a JSON-RPC envelope whose
``result.payload`` holds the protobuf-JSON encoding of a signed OCR report.
Each known method has its own payload type; unknown methods are reported and
skipped so newer gateways do not break older clients.
"""

import base64
import binascii
import json
import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from .constants import VaultMethod
from .exceptions import GatewayRPCError, ResponseDecodeError
from .models import (
    JsonRpcResponse,
    ListSecretIdentifiersResponse,
    SecretIdentifier,
    SecretResult,
    SecretsResponse,
)

logger = logging.getLogger(__name__)

_VERBS = {
    VaultMethod.SECRETS_CREATE: ("created", "create"),
    VaultMethod.SECRETS_UPDATE: ("updated", "update"),
    VaultMethod.SECRETS_DELETE: ("deleted", "delete"),
}


class ParsedResponse(BaseModel):
    """Outcome of a gateway response, one entry per reported secret."""

    method: str
    results: List[SecretResult] = Field(default_factory=list)
    identifiers: List[Optional[SecretIdentifier]] = Field(default_factory=list)
    success: Optional[bool] = None
    error: str = ""
    recognized: bool = True


def decode_envelope(raw_body: bytes) -> JsonRpcResponse:
    try:
        return JsonRpcResponse.model_validate_json(raw_body)
    except PydanticValidationError as exc:
        raise ResponseDecodeError(f"failed to unmarshal JSON-RPC response: {exc}") from exc


def _payload_json(result: Any) -> Dict[str, Any]:
    payload = result.get("payload") if isinstance(result, dict) else None
    if payload is None or payload == "" or payload == {}:
        raise ResponseDecodeError("empty SignedOCRResponse payload")

    if isinstance(payload, dict):
        return payload
    if isinstance(payload, str):
        # bytes fields arrive base64 encoded, raw JSON strings are accepted too
        try:
            decoded = json.loads(base64.b64decode(payload, validate=True))
        except (binascii.Error, ValueError):
            try:
                decoded = json.loads(payload)
            except ValueError as exc:
                raise ResponseDecodeError(f"failed to decode SignedOCRResponse payload: {exc}") from exc
        if isinstance(decoded, dict):
            return decoded
    raise ResponseDecodeError("failed to decode SignedOCRResponse payload: expected a JSON object")


def _id_fields(identifier: Optional[SecretIdentifier]):
    if identifier is None:
        return "", "", ""
    return identifier.key, identifier.owner, identifier.namespace


def _report_items(method: VaultMethod, payload: Dict[str, Any]) -> ParsedResponse:
    done, verb = _VERBS[method]
    try:
        decoded = SecretsResponse.model_validate(payload)
    except PydanticValidationError as exc:
        raise ResponseDecodeError(f"failed to decode {verb} payload: {exc}") from exc

    for r in decoded.responses:
        key, owner, ns = _id_fields(r.id)
        if r.success:
            print(f"Secret {done}: secret_id={key}, owner={owner}, namespace={ns}")
        else:
            print(f"Secret {verb} failed: secret_id={key} owner={owner} namespace={ns} success=false error={r.error}")
    return ParsedResponse(method=method.value, results=decoded.responses)


def _report_list(payload: Dict[str, Any]) -> ParsedResponse:
    try:
        decoded = ListSecretIdentifiersResponse.model_validate(payload)
    except PydanticValidationError as exc:
        raise ResponseDecodeError(f"failed to decode list payload: {exc}") from exc

    parsed = ParsedResponse(
        method=VaultMethod.SECRETS_LIST.value,
        identifiers=decoded.identifiers,
        success=decoded.success,
        error=decoded.error,
    )
    if not decoded.success:
        print(f"secret list failed: success=false error={decoded.error}")
        return parsed
    if not decoded.identifiers:
        print("No secrets found")
        return parsed
    for identifier in decoded.identifiers:
        key, owner, ns = _id_fields(identifier)
        print(f"Secret identifier: secret_id={key}, owner={owner}, namespace={ns}")
    return parsed


def parse_vault_gateway_response(method: str, raw_body: bytes) -> ParsedResponse:
    """
    Decode a gateway response and print one line per reported secret.

    Per-item failures reported by the vault are printed but do not raise.

    Raises:
        GatewayRPCError: the envelope carries a JSON-RPC error.
        ResponseDecodeError: the envelope or payload cannot be decoded.
    """
    envelope = decode_envelope(raw_body)
    if envelope.error is not None:
        detail = json.dumps(envelope.error.model_dump(exclude_none=True), separators=(",", ":"))
        raise GatewayRPCError(f"gateway returned JSON-RPC error: {detail}")

    payload = _payload_json(envelope.result)

    known = VaultMethod.from_wire(method)
    if known in _VERBS:
        return _report_items(known, payload)
    if known is VaultMethod.SECRETS_LIST:
        return _report_list(payload)

    logger.warning("received response for unsupported method %s; skipping payload decode", method)
    return ParsedResponse(method=method, recognized=False)
