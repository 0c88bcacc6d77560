"""
Request fingerprinting.

The digest of a request is the key under which it is allowlisted on-chain,
so the canonical form must never change between releases.
"""

import hashlib
import json
from typing import Any, Dict

from pydantic import BaseModel

from .exceptions import DigestError
from .models import JsonRpcRequest

DIGEST_SIZE = 32


def canonical_json(value: Any) -> bytes:
    """Serialize ``value`` as sorted, compact UTF-8 JSON."""
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    try:
        return json.dumps(
            value,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        ).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise DigestError(f"failed to marshal json request params: {exc}") from exc


def _params_dict(request: JsonRpcRequest) -> Dict[str, Any]:
    params = request.params
    if isinstance(params, BaseModel):
        return params.model_dump(mode="json")
    if isinstance(params, dict):
        return dict(params)
    raise DigestError(f"failed to marshal json request params: unsupported params type {type(params).__name__}")


def calculate_digest(request: JsonRpcRequest, include_id: bool = True) -> bytes:
    """
    Compute the 32-byte SHA-256 digest of a request.

    Args:
        request: The JSON-RPC request to fingerprint.
        include_id: When True the whole frame (version, id, method, params) is
            hashed. When False only the params are hashed, with any
            ``request_id`` blanked, so the digest does not depend on the id.

    Returns:
        bytes: The 32-byte digest.
    """
    params = _params_dict(request)
    if include_id:
        payload = {
            "jsonrpc": request.jsonrpc,
            "id": request.id,
            "method": request.method,
            "params": params,
        }
    else:
        if "request_id" in params:
            params["request_id"] = ""
        payload = params
    return hashlib.sha256(canonical_json(payload)).digest()


def hex_to_bytes32(value: str) -> bytes:
    """Decode a 32-byte hex string with an optional 0x prefix."""
    h = value[2:] if value.startswith(("0x", "0X")) else value
    try:
        raw = bytes.fromhex(h)
    except ValueError as exc:
        raise DigestError(f"invalid hex for digest: {exc}") from exc
    if len(raw) != DIGEST_SIZE:
        raise DigestError(f"digest must be 32 bytes, got {len(raw)}")
    return raw


def digest_hex(digest: bytes) -> str:
    return "0x" + digest.hex()
