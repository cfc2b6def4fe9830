"""
Storage Module
==============

Content-addressed blob stores for encrypted credentials.

Supports:
- IPFS (Kubo HTTP RPC)
- In-memory (development/testing)

Usage:
    from credvault.storage import create_blob_gateway

    gateway = create_blob_gateway(settings.ipfs)
    blob_hash = await gateway.upload(envelope)
    await gateway.pin(blob_hash)
"""

from credvault.config import BlobStoreMode, IPFSSettings
from credvault.logging import get_logger
from credvault.storage.gateway import BlobGateway
from credvault.storage.ipfs import IPFSGateway
from credvault.storage.memory import InMemoryBlobStore

logger = get_logger(__name__)


def create_blob_gateway(ipfs_settings: IPFSSettings) -> BlobGateway:
    """
    Build the blob gateway for the configured mode.

    Args:
        ipfs_settings: Blob store settings

    Returns:
        BlobGateway instance based on settings
    """
    if ipfs_settings.mode == BlobStoreMode.MOCK:
        gateway: BlobGateway = InMemoryBlobStore()
    elif ipfs_settings.mode == BlobStoreMode.HTTP:
        gateway = IPFSGateway.from_settings(ipfs_settings)
    else:
        raise ValueError(f"Unknown blob store mode: {ipfs_settings.mode}")

    logger.info("blob_gateway_initialized", backend=gateway.name)
    return gateway


__all__ = [
    "BlobGateway",
    "IPFSGateway",
    "InMemoryBlobStore",
    "create_blob_gateway",
]
