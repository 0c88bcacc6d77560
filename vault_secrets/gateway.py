import logging
from typing import Optional, Protocol, Tuple

import httpx

from .constants import DEFAULT_GATEWAY_TIMEOUT
from .exceptions import GatewayError

logger = logging.getLogger(__name__)

JSONRPC_HEADERS = {
    "Content-Type": "application/jsonrpc",
    "Accept": "application/json",
}


class GatewayClient(Protocol):
    def post(self, body: bytes) -> Tuple[bytes, int]:
        ...

    def close(self) -> None:
        ...


class HTTPGatewayClient:
    """Posts JSON-RPC frames to the vault gateway. Failures are never retried."""

    def __init__(self, url: str, timeout: float = DEFAULT_GATEWAY_TIMEOUT, http_client: Optional[httpx.Client] = None):
        if not url:
            raise GatewayError("Missing vault gateway URL")
        self.url = url
        self.http_client = http_client or httpx.Client(
            timeout=httpx.Timeout(connect=timeout, read=timeout, write=timeout, pool=None),
        )

    def post(self, body: bytes) -> Tuple[bytes, int]:
        try:
            response = self.http_client.post(self.url, content=body, headers=JSONRPC_HEADERS)
        except httpx.RequestError as e:
            raise GatewayError(f"failed to call vault gateway: {e}") from e
        logger.debug("Vault gateway responded with status %d (%d bytes)", response.status_code, len(response.content))
        return response.content, response.status_code

    def close(self) -> None:
        self.http_client.close()
