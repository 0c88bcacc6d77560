class VaultSecretsError(Exception):
    """Base exception for vault secrets operations"""
    pass


class ValidationError(VaultSecretsError):
    """Raised for malformed local input (files, env vars, flags)"""
    pass


class ConfigurationError(VaultSecretsError):
    """Raised when required settings are missing or invalid"""
    pass


class DigestError(VaultSecretsError):
    """Raised when a request cannot be canonically fingerprinted"""
    pass


class EncryptionError(VaultSecretsError):
    """Raised for key derivation, cipher or public key failures"""
    pass


class ChainError(VaultSecretsError):
    """Raised when a registry read or transaction fails"""
    pass


class RequestNotFinalizedError(VaultSecretsError):
    """Raised when a digest is expected on the allowlist but is not there yet"""

    def __init__(self, owner: str, digest_hex: str):
        self.owner = owner
        self.digest_hex = digest_hex
        super().__init__(
            f"request {digest_hex} for owner {owner} is not finalized/allowlisted yet; "
            "do not call the vault DON until the allowlist transaction is executed"
        )


class BundleError(VaultSecretsError):
    """Raised when a bundle file cannot be written, read or validated"""
    pass


class GatewayError(VaultSecretsError):
    """Raised for gateway transport failures and non-200 responses"""
    pass


class GatewayRPCError(GatewayError):
    """Raised when the gateway answers with a JSON-RPC error object"""
    pass


class ResponseDecodeError(VaultSecretsError):
    """Raised when a gateway response has an unexpected shape"""
    pass
