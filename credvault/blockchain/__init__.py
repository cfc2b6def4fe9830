"""
Blockchain Module
=================

Ledger access for credential anchoring.

Supports:
- Mock (development/testing)
- Testnet (Westend)
- Mainnet (Kusama)

Features:
- Payload anchoring in remark chunks, batches or a single remark
- Reference anchoring of blob and credential hashes
- Block range scanning for retrieval
- Transaction finality monitoring

Usage:
    from credvault.blockchain import (
        ChainAnchorService,
        NonceSequencer,
        TransactionMonitor,
        create_ledger_client,
    )

    ledger = create_ledger_client(settings.blockchain)
    await ledger.connect()

    monitor = TransactionMonitor(ledger, settings.monitor)
    anchor = ChainAnchorService(ledger, envelope, NonceSequencer(ledger), settings.anchor, monitor)

    reference = await anchor.anchor_reference(user_address, blob_hash, credential_hash)
"""

from credvault.blockchain.anchor import ChainAnchorService
from credvault.blockchain.client import (
    BatchCall,
    ChainEvent,
    LedgerClient,
    RemarkCall,
    create_ledger_client,
)
from credvault.blockchain.markers import (
    ChunkMarker,
    MarkerKind,
    reassemble_chunks,
    split_into_chunks,
)
from credvault.blockchain.mock import MockLedgerClient
from credvault.blockchain.monitor import TransactionMonitor
from credvault.blockchain.nonce import NonceSequencer
from credvault.blockchain.scanner import ScannedEvent, scan_range

__all__ = [
    # Client
    "LedgerClient",
    "create_ledger_client",
    "RemarkCall",
    "BatchCall",
    "ChainEvent",
    # Anchoring
    "ChainAnchorService",
    "NonceSequencer",
    "TransactionMonitor",
    # Scanning
    "ScannedEvent",
    "scan_range",
    # Markers
    "ChunkMarker",
    "MarkerKind",
    "reassemble_chunks",
    "split_into_chunks",
    # Implementations
    "MockLedgerClient",
]
