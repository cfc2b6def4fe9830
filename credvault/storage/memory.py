"""
In-Memory Blob Store
====================

Blob gateway for development and testing.

Content addresses are derived from the blob bytes the way a real
content-addressed store would, so identical blobs share a hash.

Version: 0.1.0
"""

import hashlib
from typing import Any

from credvault.errors import StorageError
from credvault.logging import get_logger
from credvault.storage.gateway import BlobGateway

logger = get_logger(__name__)


class InMemoryBlobStore(BlobGateway):
    """
    In-memory mock blob store.

    Data is stored in memory and lost on restart.
    """

    def __init__(self) -> None:
        self._blobs: dict[str, str] = {}
        self._pins: set[str] = set()
        self._available = True
        self._failing_uploads = False
        self._failing_fetches = False

    @property
    def name(self) -> str:
        return "memory"

    @staticmethod
    def content_hash(ciphertext: str) -> str:
        return "Qm" + hashlib.sha256(ciphertext.encode("utf-8")).hexdigest()[:44]

    def _check_available(self, operation: str) -> None:
        if not self._available:
            raise StorageError(f"Blob store unavailable during {operation}")

    async def upload(self, ciphertext: str) -> str:
        self._check_available("upload")
        if self._failing_uploads:
            raise StorageError("Blob store rejected the upload")

        blob_hash = self.content_hash(ciphertext)
        self._blobs[blob_hash] = ciphertext
        logger.debug("memory_blob_uploaded", blob_hash=blob_hash, size=len(ciphertext))
        return blob_hash

    async def fetch(self, blob_hash: str) -> str:
        self._check_available("fetch")
        if self._failing_fetches:
            raise StorageError("Blob store fetch failed")

        blob = self._blobs.get(blob_hash)
        if not blob:
            raise StorageError(f"Blob {blob_hash} not found")
        return blob

    async def exists(self, blob_hash: str) -> bool:
        self._check_available("exists")
        return blob_hash in self._blobs

    async def pin(self, blob_hash: str) -> None:
        self._check_available("pin")
        if blob_hash not in self._blobs:
            raise StorageError(f"Cannot pin unknown blob {blob_hash}")
        self._pins.add(blob_hash)

    async def unpin(self, blob_hash: str) -> None:
        self._check_available("unpin")
        self._pins.discard(blob_hash)

    async def health_check(self) -> dict[str, Any]:
        return {
            "status": "healthy" if self._available else "unhealthy",
            "backend": self.name,
            "blobs": len(self._blobs),
            "pinned": len(self._pins),
        }

    # =========================================================================
    # Test Utilities
    # =========================================================================

    def is_pinned(self, blob_hash: str) -> bool:
        return blob_hash in self._pins

    def set_available(self, available: bool) -> None:
        """Simulate the whole store going down or coming back."""
        self._available = available

    def fail_uploads(self, failing: bool = True) -> None:
        self._failing_uploads = failing

    def fail_fetches(self, failing: bool = True) -> None:
        self._failing_fetches = failing

    def delete(self, blob_hash: str) -> None:
        """Simulate a blob being garbage collected."""
        self._blobs.pop(blob_hash, None)
        self._pins.discard(blob_hash)

    def overwrite(self, blob_hash: str, ciphertext: str) -> None:
        """Simulate a store serving different bytes under a hash."""
        self._blobs[blob_hash] = ciphertext

    def clear_all(self) -> None:
        """Clear all mock data (for testing)."""
        self._blobs.clear()
        self._pins.clear()
        self._available = True
        self._failing_uploads = False
        self._failing_fetches = False

    def get_stats(self) -> dict[str, int]:
        return {"blobs": len(self._blobs), "pinned": len(self._pins)}
