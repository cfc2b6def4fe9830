"""
IPFS Gateway
============

Blob gateway for a Kubo node through its HTTP RPC API.

Every RPC is a POST under `/api/v0`. Connect errors and timeouts are
retried; anything else is reported as StorageError straight away.

Version: 0.1.0
"""

import time
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from credvault.config import IPFSSettings
from credvault.errors import StorageError
from credvault.logging import get_logger
from credvault.storage.gateway import BlobGateway


logger = get_logger(__name__)

_NOT_FOUND_MESSAGES = ("not found", "could not find")


def _is_not_found(response: httpx.Response) -> bool:
    try:
        body = response.json()
    except ValueError:
        body = None
    message = str(body.get("Message", "")) if isinstance(body, dict) else response.text
    message = message.lower()
    return any(text in message for text in _NOT_FOUND_MESSAGES)


class IPFSGateway(BlobGateway):
    """
    Kubo HTTP RPC client.

    Usage:
        gateway = IPFSGateway.from_settings(settings.ipfs)
        cid = await gateway.upload(envelope)
        envelope = await gateway.fetch(cid)
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_backoff: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the gateway.

        Args:
            base_url: RPC root, e.g. http://localhost:5001/api/v0
            timeout: Request timeout in seconds
            max_retries: Attempts per request on connect errors and timeouts
            retry_backoff: Exponential backoff multiplier in seconds
            transport: Optional transport override (tests)
        """
        self._base_url = base_url.rstrip("/")
        self._max_retries = max_retries
        self._retry_backoff = retry_backoff

        # HTTP client for RPC calls
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

        logger.debug("ipfs_gateway_initialized", base_url=self._base_url)

    @classmethod
    def from_settings(
        cls,
        ipfs_settings: IPFSSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "IPFSGateway":
        return cls(
            base_url=ipfs_settings.base_url,
            timeout=ipfs_settings.timeout_seconds,
            max_retries=ipfs_settings.max_retries,
            retry_backoff=ipfs_settings.retry_backoff_seconds,
            transport=transport,
        )

    @property
    def name(self) -> str:
        return "ipfs"

    async def _post(self, path: str, **kwargs: Any) -> httpx.Response:
        """POST to an RPC endpoint with retries on transient transport errors."""
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type((httpx.ConnectError, httpx.TimeoutException)),
            stop=stop_after_attempt(self._max_retries),
            wait=wait_exponential(multiplier=self._retry_backoff, max=30),
            before_sleep=lambda retry_state: logger.warning(
                "ipfs_retry",
                path=path,
                attempt=retry_state.attempt_number,
            ),
            reraise=True,
        ):
            with attempt:
                return await self._client.post(path, **kwargs)
        raise StorageError(f"IPFS request to {path} was not attempted")

    async def _call(self, operation: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._post(path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "ipfs_request_failed",
                operation=operation,
                status_code=e.response.status_code,
                body=e.response.text[:200],
            )
            raise StorageError(
                f"IPFS {operation} failed with status {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            logger.error("ipfs_unreachable", operation=operation, error=str(e))
            raise StorageError(f"IPFS {operation} failed: {e}") from e
        return response

    async def upload(self, ciphertext: str) -> str:
        response = await self._call(
            "upload",
            "/add",
            params={"pin": "false", "cid-version": "0"},
            files={"file": ("credential", ciphertext.encode("utf-8"), "application/octet-stream")},
        )
        try:
            blob_hash = response.json()["Hash"]
        except (ValueError, KeyError) as e:
            raise StorageError("IPFS add returned no content hash") from e

        logger.info("ipfs_blob_uploaded", blob_hash=blob_hash, size=len(ciphertext))
        return blob_hash

    async def fetch(self, blob_hash: str) -> str:
        response = await self._call("fetch", "/cat", params={"arg": blob_hash})
        if not response.content:
            raise StorageError(f"IPFS returned an empty blob for {blob_hash}")
        try:
            return response.content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise StorageError(f"IPFS blob {blob_hash} is not an envelope") from e

    async def exists(self, blob_hash: str) -> bool:
        try:
            response = await self._post(
                "/block/stat",
                params={"arg": blob_hash, "offline": "true"},
            )
        except httpx.HTTPError as e:
            logger.error("ipfs_unreachable", operation="exists", error=str(e))
            raise StorageError(f"IPFS exists check failed: {e}") from e

        if response.is_success:
            return True
        # Kubo answers 500 with a "not found" message when the block is not held locally
        if response.status_code == 500 and _is_not_found(response):
            return False

        logger.error("ipfs_request_failed", operation="exists", status=response.status_code)
        raise StorageError(f"IPFS exists check failed with status {response.status_code}")

    async def pin(self, blob_hash: str) -> None:
        await self._call("pin", "/pin/add", params={"arg": blob_hash})
        logger.info("ipfs_blob_pinned", blob_hash=blob_hash)

    async def unpin(self, blob_hash: str) -> None:
        await self._call("unpin", "/pin/rm", params={"arg": blob_hash})
        logger.info("ipfs_blob_unpinned", blob_hash=blob_hash)

    async def health_check(self) -> dict[str, Any]:
        """Check IPFS node health."""
        try:
            start = time.perf_counter()
            response = await self._call("health_check", "/version")
            latency_ms = (time.perf_counter() - start) * 1000

            return {
                "status": "healthy",
                "backend": self.name,
                "version": response.json().get("Version"),
                "latency_ms": round(latency_ms, 2),
            }
        except StorageError as e:
            logger.error("ipfs_health_check_failed", error=str(e))
            return {
                "status": "unhealthy",
                "backend": self.name,
                "error": str(e),
            }

    async def close(self) -> None:
        await self._client.aclose()
