"""
Workflow registry client.
Handles the on-chain allowlist reads and writes for vault requests.
"""

import logging
import time
from datetime import timedelta
from typing import Any, Dict, Optional

from eth_abi import encode as abi_encode
from eth_account import Account
from eth_utils import function_signature_to_4byte_selector, to_checksum_address
from web3 import Web3
from web3.contract import Contract
from web3.exceptions import Web3Exception

from ..constants import MAX_ALLOWLIST_DURATION
from ..digest import digest_hex
from ..exceptions import ChainError, ValidationError
from .abi import ALLOWLIST_REQUEST_SIGNATURE, get_abi

logger = logging.getLogger(__name__)

_UINT32_MAX = 2**32 - 1
_CHAIN_ERRORS = (Web3Exception, ValueError, OSError)


def validate_duration(duration: timedelta) -> timedelta:
    """Ensure an allowlist duration is positive and at most seven days."""
    if duration <= timedelta(0) or duration > MAX_ALLOWLIST_DURATION:
        max_hours = int(MAX_ALLOWLIST_DURATION.total_seconds() // 3600)
        max_days = MAX_ALLOWLIST_DURATION.days
        raise ValidationError(
            f"invalid --timeout: must be greater than 0 and less than {max_hours}h ({max_days}d)"
        )
    return duration


def compute_deadline(duration: timedelta, now: Optional[float] = None) -> int:
    """Return the uint32 unix expiry for an allowlist entry."""
    current = time.time() if now is None else now
    deadline = int(current + duration.total_seconds())
    if deadline > _UINT32_MAX:
        raise ValidationError(f"allowlist deadline {deadline} does not fit in uint32")
    return deadline


class WorkflowRegistryClient:
    """Client for the workflow registry allowlist"""

    def __init__(
        self,
        rpc_url: Optional[str],
        registry_address: str,
        private_key: Optional[str] = None,
        w3: Optional[Web3] = None,
    ):
        if w3 is None:
            if not rpc_url:
                raise ChainError("an RPC URL is required to reach the workflow registry")
            w3 = Web3(Web3.HTTPProvider(rpc_url))
            if not w3.is_connected():
                raise ChainError(f"Failed to connect to RPC: {rpc_url}")
        self.w3 = w3

        if private_key:
            self.account = Account.from_key(private_key)
        else:
            self.account = None

        self.registry_address = to_checksum_address(registry_address)
        self.registry = self._load_contract(self.registry_address, "WorkflowRegistry")

    def _load_contract(self, address: str, contract_name: str) -> Contract:
        abi = get_abi(contract_name)
        if not abi:
            raise ValueError(f"No ABI found for {contract_name}")
        return self.w3.eth.contract(address=address, abi=abi)

    def is_request_allowlisted(self, owner: str, digest: bytes) -> bool:
        try:
            allowlisted = self.registry.functions.isRequestAllowlisted(
                to_checksum_address(owner), digest
            ).call()
        except _CHAIN_ERRORS as exc:
            raise ChainError(f"isRequestAllowlisted call failed: {exc}") from exc
        logger.info(
            "isRequestAllowlisted call succeeded: owner=%s digest=%s allowlisted=%s",
            owner,
            digest_hex(digest),
            allowlisted,
        )
        return bool(allowlisted)

    def is_owner_linked(self, owner: str) -> bool:
        try:
            linked = self.registry.functions.isOwnerLinked(to_checksum_address(owner)).call()
        except _CHAIN_ERRORS as exc:
            raise ChainError(f"isOwnerLinked call failed: {exc}") from exc
        logger.debug("isOwnerLinked call succeeded: owner=%s linked=%s", owner, linked)
        return bool(linked)

    def allowlist_request(self, digest: bytes, duration: timedelta) -> str:
        """Submit an allowlistRequest transaction and return its hash."""
        if not self.account:
            raise ChainError("Private key required for allowlistRequest")
        deadline = compute_deadline(duration)
        try:
            tx = self.registry.functions.allowlistRequest(digest, deadline).build_transaction(self._tx_params())
            receipt = self._send_tx(tx)
        except _CHAIN_ERRORS as exc:
            raise ChainError(f"allowlistRequest transaction failed: {exc}") from exc
        tx_hash = Web3.to_hex(receipt["transactionHash"])
        logger.info(
            "allowlistRequest transaction mined: digest=%s deadline=%d tx=%s",
            digest_hex(digest),
            deadline,
            tx_hash,
        )
        return tx_hash

    def pack_allowlist_request_tx_data(self, digest: bytes, duration: timedelta) -> str:
        """ABI-encode allowlistRequest call data for out-of-band submission."""
        deadline = compute_deadline(duration)
        selector = function_signature_to_4byte_selector(ALLOWLIST_REQUEST_SIGNATURE)
        data = selector + abi_encode(["bytes32", "uint32"], [digest, deadline])
        return data.hex()

    # ---------------- Helpers ----------------
    def _tx_params(self) -> Dict:
        gas_price = self.w3.eth.gas_price
        return {
            "from": self.account.address,
            "nonce": self.w3.eth.get_transaction_count(self.account.address),
            "gas": 300000,
            "maxFeePerGas": gas_price,
            "maxPriorityFeePerGas": gas_price // 2,
        }

    def _send_tx(self, tx: Dict) -> Any:
        signed = self.account.sign_transaction(tx)
        tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=120)
        if receipt["status"] != 1:
            raise ChainError(f"Transaction failed: {Web3.to_hex(tx_hash)}")
        return receipt
