"""
Encryption helpers for vault secrets.

Two independent primitives live here:

* a passphrase-derived AES-256-GCM key used to read confidential workflow
  output (``nonce || ciphertext || tag`` wire format), and
* threshold encryption of secret values under the vault's published public
  key, so that only the vault key holders can read them.
"""

import base64
import json
import logging
import os
from typing import Protocol

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from eth_utils import to_canonical_address

from .exceptions import EncryptionError

logger = logging.getLogger(__name__)

HKDF_INFO = b"confidential-http-encryption-key-v1"
THRESHOLD_KEY_INFO = b"vault-secret-encryption-v1"
KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16
_POINT_SIZE = 65


def derive_encryption_key(passphrase: str) -> bytes:
    """Derive the 32-byte AES-GCM key for a passphrase with HKDF-SHA256."""
    if not passphrase:
        raise EncryptionError("passphrase must not be empty")
    hkdf = HKDF(algorithm=hashes.SHA256(), length=KEY_SIZE, salt=None, info=HKDF_INFO)
    return hkdf.derive(passphrase.encode("utf-8"))


def _check_key(key: bytes) -> None:
    if len(key) != KEY_SIZE:
        raise EncryptionError(f"AES-256-GCM key must be {KEY_SIZE} bytes, got {len(key)}")


def aes_gcm_encrypt(plaintext: bytes, key: bytes) -> bytes:
    """Seal ``plaintext`` and return ``nonce || ciphertext || tag``."""
    _check_key(key)
    nonce = os.urandom(NONCE_SIZE)
    return nonce + AESGCM(key).encrypt(nonce, plaintext, None)


def aes_gcm_decrypt(data: bytes, key: bytes) -> bytes:
    """Open a ``nonce || ciphertext || tag`` payload."""
    _check_key(key)
    if len(data) < NONCE_SIZE + TAG_SIZE:
        raise EncryptionError(
            f"ciphertext too short: need at least {NONCE_SIZE + TAG_SIZE} bytes, got {len(data)}"
        )
    nonce, sealed = data[:NONCE_SIZE], data[NONCE_SIZE:]
    try:
        return AESGCM(key).decrypt(nonce, sealed, None)
    except InvalidTag as exc:
        raise EncryptionError("failed to decrypt: authentication tag mismatch") from exc


def encode_owner_label(owner: str) -> bytes:
    """Left-pad the 20-byte owner address to a 32-byte label."""
    try:
        address = to_canonical_address(owner)
    except (TypeError, ValueError) as exc:
        raise EncryptionError(f"invalid owner address for label: {owner!r}") from exc
    return bytes(12) + address


def load_vault_public_key(public_key_hex: str) -> ec.EllipticCurvePublicKey:
    """
    Parse the vault public key as published by ``vault_publicKey_get``.

    Accepts the hex of a SEC1 P-256 point, or the hex of the vault's JSON key
    document, in which case the master point is read from its ``H`` field.
    """
    h = public_key_hex.strip()
    if h.startswith(("0x", "0X")):
        h = h[2:]
    try:
        raw = bytes.fromhex(h)
    except ValueError as exc:
        raise EncryptionError(f"failed to decode master public key: {exc}") from exc

    if raw[:1] == b"{":
        try:
            document = json.loads(raw)
            group = document.get("Group", "P256")
            if group != "P256":
                raise EncryptionError(f"unsupported public key group: {group}")
            raw = base64.b64decode(document["H"])
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise EncryptionError(f"failed to unmarshal master public key: {exc}") from exc

    try:
        return ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), raw)
    except ValueError as exc:
        raise EncryptionError(f"failed to unmarshal master public key: {exc}") from exc


class ThresholdEncryptor(Protocol):
    def encrypt(self, value: str, public_key_hex: str, owner: str) -> str:
        ...


class HybridThresholdEncryptor:
    """
    Encrypts secret values for the vault with ephemeral ECDH over P-256.

    The ciphertext is ``ephemeral_point(65) || nonce(12) || ciphertext || tag``
    and the owner label is bound as associated data, so a ciphertext cannot be
    replayed under another owner.

    This is not the vault DON's TDH2 wire format: a production vault cannot
    decrypt these values. Pass a TDH2 ``ThresholdEncryptor`` to
    ``SecretsHandler`` when talking to a real vault.
    """

    def encrypt(self, value: str, public_key_hex: str, owner: str) -> str:
        public_key = load_vault_public_key(public_key_hex)
        label = encode_owner_label(owner)

        ephemeral = ec.generate_private_key(ec.SECP256R1())
        shared = ephemeral.exchange(ec.ECDH(), public_key)
        ephemeral_point = ephemeral.public_key().public_bytes(Encoding.X962, PublicFormat.UncompressedPoint)

        key = derive_threshold_key(shared, ephemeral_point)
        nonce = os.urandom(NONCE_SIZE)
        try:
            sealed = AESGCM(key).encrypt(nonce, value.encode("utf-8"), label)
        except (TypeError, ValueError, OverflowError) as exc:
            raise EncryptionError(f"failed to encrypt secret: {exc}") from exc
        logger.debug("Encrypted secret value for owner %s", owner)
        return (ephemeral_point + nonce + sealed).hex()


def derive_threshold_key(shared_secret: bytes, ephemeral_point: bytes) -> bytes:
    if len(ephemeral_point) != _POINT_SIZE:
        raise EncryptionError("ephemeral point must be an uncompressed P-256 point")
    hkdf = HKDF(algorithm=hashes.SHA256(), length=KEY_SIZE, salt=ephemeral_point, info=THRESHOLD_KEY_INFO)
    return hkdf.derive(shared_secret)
