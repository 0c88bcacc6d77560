"""
Allowlist coordination for vault requests.

Every request digest must be allowlisted on the workflow registry for the
owner before the gateway will accept it. EOA owners allowlist synchronously
with a transaction. Multisig owners cannot sign here, so the request is parked
in a bundle together with the unsigned call data, and resumed once the
multisig has executed the transaction.
"""

import logging
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Optional, Protocol, Union

from pydantic import BaseModel

from .bundle import UnsignedBundle, bundle_filename, save_bundle
from .constants import OWNER_TYPE_MSIG
from .digest import digest_hex
from .exceptions import BundleError, RequestNotFinalizedError
from .registry import validate_duration

logger = logging.getLogger(__name__)


class AllowlistRegistry(Protocol):
    def is_request_allowlisted(self, owner: str, digest: bytes) -> bool:
        ...

    def allowlist_request(self, digest: bytes, duration: timedelta) -> str:
        ...

    def pack_allowlist_request_tx_data(self, digest: bytes, duration: timedelta) -> str:
        ...


class AllowlistStatus(str, Enum):
    ALREADY_ALLOWLISTED = "already_allowlisted"
    ALLOWLISTED = "allowlisted"
    PARKED = "parked"


class AllowlistDecision(BaseModel):
    status: AllowlistStatus
    digest_hex: str
    tx_hash: Optional[str] = None
    tx_data: Optional[str] = None
    bundle_path: Optional[Path] = None

    @property
    def may_submit(self) -> bool:
        return self.status is not AllowlistStatus.PARKED


class AllowlistCoordinator:
    def __init__(
        self,
        registry: AllowlistRegistry,
        owner_address: str,
        owner_type: str,
        bundle_dir: Union[str, Path, None] = None,
        chain_name: str = "",
        registry_address: str = "",
    ):
        self.registry = registry
        self.owner_address = owner_address
        self.owner_type = owner_type
        self.bundle_dir = Path(bundle_dir) if bundle_dir is not None else Path.cwd()
        self.chain_name = chain_name
        self.registry_address = registry_address

    def ensure_allowlisted(self, digest: bytes) -> None:
        """Fail unless ``digest`` is already allowlisted for the owner."""
        if not self.registry.is_request_allowlisted(self.owner_address, digest):
            raise RequestNotFinalizedError(self.owner_address, digest_hex(digest))

    def authorize(
        self,
        digest: bytes,
        duration: timedelta,
        *,
        reuse: bool = False,
        bundle: Optional[UnsignedBundle] = None,
    ) -> AllowlistDecision:
        """
        Bring ``digest`` onto the allowlist, or park it for a multisig.

        Args:
            digest: Request digest to authorize.
            duration: How long the allowlist entry stays valid.
            reuse: True when resuming a request whose approval was prepared
                earlier; the digest must then already be allowlisted.
            bundle: Prepared request to persist when a multisig has to approve.

        Returns:
            AllowlistDecision: ``may_submit`` tells whether the gateway may be called.
        """
        validate_duration(duration)
        hex_digest = digest_hex(digest)

        if self.registry.is_request_allowlisted(self.owner_address, digest):
            logger.info("Request %s already allowlisted for %s; skipping allowlist transaction", hex_digest, self.owner_address)
            return AllowlistDecision(status=AllowlistStatus.ALREADY_ALLOWLISTED, digest_hex=hex_digest)

        if reuse:
            raise RequestNotFinalizedError(self.owner_address, hex_digest)

        if self.owner_type == OWNER_TYPE_MSIG:
            if bundle is None:
                raise BundleError("a prepared request is required to park a multisig allowlist request")
            tx_data = self.registry.pack_allowlist_request_tx_data(digest, duration)
            path = save_bundle(self.bundle_dir / bundle_filename(digest), bundle)
            self.print_msig_next_steps(tx_data, hex_digest, path)
            return AllowlistDecision(
                status=AllowlistStatus.PARKED,
                digest_hex=hex_digest,
                tx_data=tx_data,
                bundle_path=path,
            )

        tx_hash = self.registry.allowlist_request(digest, duration)
        print(f"Digest allowlisted; proceeding to gateway POST: owner={self.owner_address}, digest={hex_digest}")
        return AllowlistDecision(status=AllowlistStatus.ALLOWLISTED, digest_hex=hex_digest, tx_hash=tx_hash)

    def print_msig_next_steps(self, tx_data: str, hex_digest: str, bundle_path: Path) -> None:
        print("")
        print("MSIG transaction prepared!")
        print("")
        print("Next steps:")
        print("")
        print("   1. Submit the following transaction on the target chain:")
        print(f"      Chain:            {self.chain_name}")
        print(f"      Contract Address: {self.registry_address}")
        print("")
        print("   2. Use the following transaction data:")
        print("")
        print(f"      {tx_data}")
        print("")
        print("   3. Save this bundle file; you will need it on the second run:")
        print(f"      Bundle Path: {bundle_path}")
        print(f"      Digest:      {hex_digest}")
        print("")
        print("   4. After the transaction is finalized on-chain, run:")
        print("")
        print(f"      vault-secrets secrets execute {bundle_path} --unsigned")
        print("")
