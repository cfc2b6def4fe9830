"""
Chain Models
============

Models for ledger anchoring, transaction tracking and cost estimation.

Version: 0.1.0
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class AnchorStrategy(str, Enum):
    """How a payload is written onto the ledger."""

    REMARK = "remark"  # One remark per chunk, sequential
    BATCH = "batch"  # All chunk remarks in one utility.batch_all
    CUSTOM_PALLET = "custom_pallet"  # Whole payload in a single remark

    @property
    def is_chunked(self) -> bool:
        return self is not AnchorStrategy.CUSTOM_PALLET


class TxStatus(str, Enum):
    """Extrinsic lifecycle. Everything but pending is terminal."""

    PENDING = "pending"
    FINALIZED = "finalized"
    FAILED = "failed"
    INVALID = "invalid"

    @property
    def is_terminal(self) -> bool:
        return self is not TxStatus.PENDING


class ChainReference(BaseModel):
    """Anchored proof that a credential's ciphertext existed at a block."""

    user_address: str
    blob_hash: str
    credential_hash: str
    timestamp: int = Field(..., description="Milliseconds since epoch at anchoring")
    block_hash: str | None = None
    extrinsic_hash: str
    block_number: int | None = None


class TransactionStatus(BaseModel):
    """In-memory view of one extrinsic, scoped to a monitoring session."""

    hash: str
    status: TxStatus = TxStatus.PENDING
    block_hash: str | None = None
    block_number: int | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    events: list[dict[str, Any]] | None = None
    error: str | None = None


class AnchoredPayload(BaseModel):
    """Result of writing a ciphertext payload onto the ledger."""

    user_address: str
    data_hash: str
    integrity_hash: str | None = None
    strategy: AnchorStrategy
    extrinsic_hashes: list[str] = Field(default_factory=list)
    chunk_count: int
    timestamp: int

    @property
    def secure(self) -> bool:
        return self.integrity_hash is not None


class CostEstimate(BaseModel):
    """Projected ledger fees for a payload of a given size."""

    strategy: AnchorStrategy
    transaction_count: int
    estimated_cost: float
    currency: str = "KSM"

    @property
    def formatted(self) -> str:
        return f"{self.estimated_cost:.6f} {self.currency}"
