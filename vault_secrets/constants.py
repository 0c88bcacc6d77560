"""Protocol constants shared across the vault secrets modules."""

from datetime import timedelta
from enum import Enum
from typing import Optional

JSONRPC_VERSION = "2.0"

DEFAULT_NAMESPACE = "main"
MAX_SECRET_ITEMS_PER_PAYLOAD = 10

DEFAULT_ALLOWLIST_DURATION = timedelta(days=2)
MAX_ALLOWLIST_DURATION = timedelta(days=7)

DEFAULT_GATEWAY_TIMEOUT = 10.0

# Secret under which the derived AES-GCM response key is stored in the vault
ENCRYPTION_KEY_SECRET_NAME = "san_marino_aes_gcm_encryption_key"

OWNER_TYPE_EOA = "EOA"
OWNER_TYPE_MSIG = "MSIG"


class VaultMethod(str, Enum):
    """JSON-RPC methods understood by the vault gateway."""

    SECRETS_CREATE = "vault_secretsCreate"
    SECRETS_UPDATE = "vault_secretsUpdate"
    SECRETS_DELETE = "vault_secretsDelete"
    SECRETS_LIST = "vault_secretsList"
    PUBLIC_KEY_GET = "vault_publicKey_get"

    @classmethod
    def from_wire(cls, value: str) -> Optional["VaultMethod"]:
        for member in cls:
            if member.value == value:
                return member
        return None


# Methods that may be parked in a bundle and replayed by `secrets execute`
BUNDLE_METHODS = (
    VaultMethod.SECRETS_CREATE,
    VaultMethod.SECRETS_UPDATE,
    VaultMethod.SECRETS_DELETE,
    VaultMethod.SECRETS_LIST,
)
