from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from eth_utils import is_address, to_checksum_address
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator

from .constants import DEFAULT_GATEWAY_TIMEOUT, OWNER_TYPE_EOA, OWNER_TYPE_MSIG
from .exceptions import ConfigurationError
from .signer import resolve_private_key

_TRUTHY = {"1", "true", "yes", "on"}


class VaultSettings(BaseModel):
    """Resolved configuration for talking to the vault gateway and registry."""

    gateway_url: Optional[str] = Field(default=None)
    gateway_timeout: float = Field(default=DEFAULT_GATEWAY_TIMEOUT, gt=0)

    rpc_url: Optional[str] = Field(default=None)
    registry_address: Optional[str] = Field(default=None)
    registry_chain_name: str = Field(default="ethereum-testnet-sepolia")

    owner_address: Optional[str] = Field(default=None)
    owner_type: str = Field(default=OWNER_TYPE_EOA)
    private_key: Optional[str] = Field(default=None, repr=False)

    bundle_dir: Optional[Path] = Field(default=None)
    skip_owner_link_check: bool = Field(default=False)

    @field_validator("gateway_url", "rpc_url")
    @classmethod
    def _ensure_http_scheme(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        if not value.startswith(("http://", "https://")):
            raise ConfigurationError(f"URL must start with http:// or https://: {value}")
        return value.rstrip("/")

    @field_validator("owner_address", "registry_address")
    @classmethod
    def _ensure_checksum(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        if not is_address(value):
            raise ConfigurationError(f"invalid address: {value!r}")
        return to_checksum_address(value)

    @field_validator("owner_type")
    @classmethod
    def _ensure_owner_type(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in (OWNER_TYPE_EOA, OWNER_TYPE_MSIG):
            raise ConfigurationError(f"owner type must be {OWNER_TYPE_EOA} or {OWNER_TYPE_MSIG}, got {value!r}")
        return normalized

    @property
    def is_msig(self) -> bool:
        return self.owner_type == OWNER_TYPE_MSIG

    def require(self, *names: str) -> None:
        """Fail fast when settings needed by a command are missing."""
        missing = [name for name in names if not getattr(self, name)]
        if missing:
            env_names = ", ".join(_ENV_NAMES.get(name, name) for name in missing)
            raise ConfigurationError(f"Missing configuration: {env_names}")

    @classmethod
    def load(cls, env_file: Optional[str] = None, **overrides) -> "VaultSettings":
        """Load settings from the environment with .env fallbacks."""
        load_dotenv(env_file)

        timeout_env = os.getenv("VAULT_GATEWAY_TIMEOUT")
        try:
            gateway_timeout = float(timeout_env) if timeout_env else DEFAULT_GATEWAY_TIMEOUT
        except ValueError as exc:
            raise ConfigurationError(f"VAULT_GATEWAY_TIMEOUT must be a number of seconds: {timeout_env!r}") from exc

        bundle_dir = os.getenv("VAULT_BUNDLE_DIR")
        values = {
            "gateway_url": os.getenv("VAULT_GATEWAY_URL"),
            "gateway_timeout": gateway_timeout,
            "rpc_url": os.getenv("VAULT_RPC_URL"),
            "registry_address": os.getenv("VAULT_REGISTRY_ADDRESS"),
            "registry_chain_name": os.getenv("VAULT_REGISTRY_CHAIN_NAME", cls.model_fields["registry_chain_name"].default),
            "owner_address": os.getenv("VAULT_OWNER_ADDRESS"),
            "owner_type": os.getenv("VAULT_OWNER_TYPE", OWNER_TYPE_EOA),
            "private_key": os.getenv("VAULT_ETH_PRIVATE_KEY"),
            "bundle_dir": Path(bundle_dir) if bundle_dir else None,
            "skip_owner_link_check": (os.getenv("VAULT_SKIP_OWNER_LINK_CHECK") or "").strip().lower() in _TRUTHY,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})

        if values["private_key"] and values["owner_type"].strip().upper() == OWNER_TYPE_EOA:
            values["private_key"] = resolve_private_key(values["private_key"])
        else:
            values["private_key"] = None
        try:
            return cls(**values)
        except PydanticValidationError as exc:
            raise ConfigurationError(f"invalid vault settings: {exc}") from exc


_ENV_NAMES = {
    "gateway_url": "VAULT_GATEWAY_URL",
    "rpc_url": "VAULT_RPC_URL",
    "registry_address": "VAULT_REGISTRY_ADDRESS",
    "owner_address": "VAULT_OWNER_ADDRESS",
    "private_key": "VAULT_ETH_PRIVATE_KEY",
}
