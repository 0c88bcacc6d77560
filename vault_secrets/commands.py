"""Per-command entry points behind the `secrets` CLI."""

import base64
import binascii
import sys
import uuid
from datetime import timedelta
from pathlib import Path
from typing import Callable, Optional, Union

from .constants import DEFAULT_NAMESPACE, ENCRYPTION_KEY_SECRET_NAME, VaultMethod
from .encryption import aes_gcm_decrypt, derive_encryption_key
from .exceptions import EncryptionError, ValidationError
from .handler import SecretsHandler
from .inputs import load_delete_inputs, load_upsert_inputs
from .models import SecretItem
from .registry import validate_duration
from .response import ParsedResponse

DECRYPT_ENCODINGS = ("base64", "hex", "raw")

# Handlers are built lazily so local validation runs before any network access
HandlerFactory = Callable[[], SecretsHandler]


def validate_request_id(request_id: Optional[str]) -> Optional[str]:
    if request_id is None:
        return None
    try:
        return str(uuid.UUID(request_id))
    except ValueError as exc:
        raise ValidationError(f"invalid --request-id: {request_id!r} is not a UUID") from exc


def _upsert(
    connect: HandlerFactory,
    method: VaultMethod,
    secrets_file: Union[str, Path],
    duration: timedelta,
    request_id: Optional[str],
) -> Optional[ParsedResponse]:
    validate_duration(duration)
    request_id = validate_request_id(request_id)
    # resumed requests replay their saved bundle; the YAML and its env vars are not read
    items = [] if request_id is not None else load_upsert_inputs(secrets_file)
    return connect().execute_upsert(items, method, duration, request_id)


def create(
    connect: HandlerFactory,
    secrets_file: Union[str, Path],
    duration: timedelta,
    request_id: Optional[str] = None,
) -> Optional[ParsedResponse]:
    return _upsert(connect, VaultMethod.SECRETS_CREATE, secrets_file, duration, request_id)


def update(
    connect: HandlerFactory,
    secrets_file: Union[str, Path],
    duration: timedelta,
    request_id: Optional[str] = None,
) -> Optional[ParsedResponse]:
    return _upsert(connect, VaultMethod.SECRETS_UPDATE, secrets_file, duration, request_id)


def delete(
    connect: HandlerFactory,
    secrets_file: Union[str, Path],
    duration: timedelta,
    request_id: Optional[str] = None,
) -> Optional[ParsedResponse]:
    validate_duration(duration)
    request_id = validate_request_id(request_id)
    secret_ids = load_delete_inputs(secrets_file)
    return connect().execute_delete(secret_ids, duration, request_id)


def list_secrets(
    connect: HandlerFactory,
    duration: timedelta,
    namespace: str = DEFAULT_NAMESPACE,
    request_id: Optional[str] = None,
) -> Optional[ParsedResponse]:
    validate_duration(duration)
    request_id = validate_request_id(request_id)
    return connect().execute_list(namespace, duration, request_id)


def execute(connect: HandlerFactory, bundle_path: Union[str, Path]) -> ParsedResponse:
    return connect().execute_bundle(bundle_path)


def store_encryption_key(
    connect: HandlerFactory,
    passphrase: str,
    duration: timedelta,
    request_id: Optional[str] = None,
) -> Optional[ParsedResponse]:
    """Store the passphrase-derived response key in the vault as a secret."""
    if not passphrase:
        raise ValidationError("--passphrase is required and must not be empty")
    validate_duration(duration)
    request_id = validate_request_id(request_id)
    try:
        key = derive_encryption_key(passphrase)
    except EncryptionError as exc:
        raise EncryptionError(f"failed to derive encryption key: {exc}") from exc
    items = [SecretItem(id=ENCRYPTION_KEY_SECRET_NAME, value=key.hex(), namespace=DEFAULT_NAMESPACE)]
    return connect().execute_upsert(items, VaultMethod.SECRETS_CREATE, duration, request_id)


def read_ciphertext(source: str) -> bytes:
    if source == "-":
        return sys.stdin.buffer.read()
    try:
        return Path(source).read_bytes()
    except OSError as exc:
        raise ValidationError(f"failed to read file {source!r}: {exc}") from exc


def decode_ciphertext(raw: bytes, encoding: str) -> bytes:
    if encoding == "base64":
        text = raw.strip()
        try:
            return base64.b64decode(text, validate=True)
        except binascii.Error:
            try:
                return base64.b64decode(text + b"=" * (-len(text) % 4), validate=True)
            except binascii.Error as exc:
                raise ValidationError(f"base64 decode failed: {exc}") from exc
    if encoding == "hex":
        try:
            return bytes.fromhex(raw.strip().decode("ascii"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise ValidationError(f"hex decode failed: {exc}") from exc
    if encoding == "raw":
        return raw
    raise ValidationError(f"unsupported encoding {encoding!r}: use base64, hex, or raw")


def decrypt_output(passphrase: str, source: str, encoding: str = "base64") -> bytes:
    """Decrypt confidential workflow output sealed with the stored response key."""
    if not passphrase:
        raise ValidationError("--passphrase is required and must not be empty")
    if not source:
        raise ValidationError("--input is required")
    ciphertext = decode_ciphertext(read_ciphertext(source), encoding)
    key = derive_encryption_key(passphrase)
    try:
        return aes_gcm_decrypt(ciphertext, key)
    except EncryptionError as exc:
        raise EncryptionError(f"decryption failed: {exc}") from exc
