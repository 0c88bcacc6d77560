"""
Resolution of the EOA signing key used for allowlist transactions.

The key may be given in plaintext hex or encrypted as
``ENC:v1:<base64(salt||iv||ciphertext)>``, in which case the master password
is read from ``VAULT_MASTER_PWD`` (or prompted for).
"""

import base64
import getpass
import os
import re
from typing import Optional, Tuple

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .exceptions import ConfigurationError

ENCRYPTED_PREFIX = "ENC:v1:"
MASTER_PASSWORD_ENV = "VAULT_MASTER_PWD"
_SALT_BYTES = 16
_IV_BYTES = 12
_KDF_ITERATIONS = 200_000


def _derive_key(password: str, salt: bytes) -> bytes:
    """Derive a symmetric key from the password using PBKDF2-HMAC-SHA256."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=_KDF_ITERATIONS,
    )
    return kdf.derive(password.encode("utf-8"))


def _split_payload(payload: bytes) -> Tuple[bytes, bytes, bytes]:
    if len(payload) < _SALT_BYTES + _IV_BYTES + 16:
        raise ValueError("Encrypted payload is malformed or truncated.")
    salt = payload[:_SALT_BYTES]
    iv = payload[_SALT_BYTES : _SALT_BYTES + _IV_BYTES]
    ciphertext = payload[_SALT_BYTES + _IV_BYTES :]
    return salt, iv, ciphertext


def decrypt_private_key(enc_value: str, password: str) -> str:
    """
    Decrypt an ``ENC:v1:`` private key.

    Args:
        enc_value: Value with ENC:v1 prefix.
        password: Password used to derive the key.

    Returns:
        str: Decrypted private key.
    """
    if not enc_value.startswith(ENCRYPTED_PREFIX):
        raise ConfigurationError("Encrypted value must start with ENC:v1:")
    if not password:
        raise ConfigurationError("Password is required to decrypt the private key.")

    try:
        payload = base64.urlsafe_b64decode(enc_value[len(ENCRYPTED_PREFIX) :])
        salt, iv, ciphertext = _split_payload(payload)
        plaintext = AESGCM(_derive_key(password, salt)).decrypt(iv, ciphertext, None)
        return plaintext.decode("utf-8")
    except Exception as exc:
        raise ConfigurationError("Failed to decrypt private key; verify the password.") from exc


def _normalize_private_key(value: str) -> str:
    key = value.strip()
    return key if key.startswith("0x") else f"0x{key}"


def _looks_like_hex_key(value: str) -> bool:
    return bool(re.fullmatch(r"(0x)?[a-fA-F0-9]{64}", value.strip()))


def resolve_private_key(raw: Optional[str], password: Optional[str] = None) -> Optional[str]:
    """Return a normalized 0x-prefixed key, decrypting ``ENC:v1:`` values."""
    if not raw:
        return None
    value = raw.strip()
    if value.startswith(ENCRYPTED_PREFIX):
        pwd = password or os.getenv(MASTER_PASSWORD_ENV)
        if not pwd:
            pwd = getpass.getpass("Enter master password to decrypt VAULT_ETH_PRIVATE_KEY: ")
        value = decrypt_private_key(value, pwd)
    if not _looks_like_hex_key(value):
        raise ConfigurationError("VAULT_ETH_PRIVATE_KEY must be a 32-byte hex private key")
    return _normalize_private_key(value)
