"""
Blob Gateway Interface
======================

Abstract base class for content-addressed blob stores.

The store computes content addresses; the gateway treats them as opaque.
Failures surface as StorageError and empty data is never returned in
place of a blob.

Version: 0.1.0
"""

from abc import ABC, abstractmethod
from typing import Any


class BlobGateway(ABC):
    """
    Abstract base class for blob stores.

    Implements the Strategy pattern for different store backends.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the backend name."""
        ...

    @abstractmethod
    async def upload(self, ciphertext: str) -> str:
        """
        Store a blob.

        Args:
            ciphertext: Encryption envelope to store

        Returns:
            Content hash assigned by the store

        Raises:
            StorageError: If the store is unreachable or refuses the blob
        """
        ...

    @abstractmethod
    async def fetch(self, blob_hash: str) -> str:
        """
        Read a blob back.

        Args:
            blob_hash: Content hash returned by `upload`

        Returns:
            The stored ciphertext

        Raises:
            StorageError: If the blob cannot be read or is empty
        """
        ...

    @abstractmethod
    async def exists(self, blob_hash: str) -> bool:
        """
        Check whether the store holds a blob.

        Raises:
            StorageError: If the store is unreachable
        """
        ...

    @abstractmethod
    async def pin(self, blob_hash: str) -> None:
        """Keep a blob from being garbage collected."""
        ...

    @abstractmethod
    async def unpin(self, blob_hash: str) -> None:
        """Allow a blob to be garbage collected."""
        ...

    @abstractmethod
    async def health_check(self) -> dict[str, Any]:
        """Check store health."""
        ...

    async def close(self) -> None:
        """Release network resources."""
        return None
