from importlib.metadata import PackageNotFoundError, version as _dist_version


def _resolve_version() -> str:
    # Prefer installed distribution metadata when available
    try:
        return _dist_version("vault-secrets")
    except PackageNotFoundError:
        return "0.0.0"


__version__: str = _resolve_version()

from .config import VaultSettings  # noqa: E402
from .exceptions import VaultSecretsError  # noqa: E402
from .handler import SecretsHandler  # noqa: E402

__all__ = ["__version__", "SecretsHandler", "VaultSecretsError", "VaultSettings"]
