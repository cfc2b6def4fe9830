"""
Ledger Client Interface
=======================

Abstract base class and models for the ledger capabilities the credential
engine relies on: signed remark submission, nonce lookup, and block and
event queries.

Version: 0.1.0
"""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from credvault.config import BlockchainMode, BlockchainSettings
from credvault.logging import get_logger

logger = get_logger(__name__)


class RemarkCall(BaseModel):
    """`system.remark` call carrying an arbitrary string."""

    remark: str


class BatchCall(BaseModel):
    """`utility.batch_all` of remark calls, dispatched atomically."""

    calls: list[RemarkCall] = Field(default_factory=list)


LedgerCall = RemarkCall | BatchCall


class ChainEvent(BaseModel):
    """
    One event emitted in a block.

    `extrinsic_index` is the position of the emitting extrinsic in the block
    (None for initialization and finalization events). For `System.Remarked`
    events the remark text is decoded into `remark`.
    """

    section: str
    method: str
    data: dict[str, Any] = Field(default_factory=dict)
    extrinsic_index: int | None = None
    remark: str | None = None

    @property
    def is_remark(self) -> bool:
        return self.section.lower() == "system" and self.method == "Remarked"


class LedgerClient(ABC):
    """
    Abstract base class for ledger clients.

    Implements the Strategy pattern for different ledger modes.
    """

    @property
    @abstractmethod
    def mode(self) -> BlockchainMode:
        """Get the ledger mode."""
        ...

    @property
    @abstractmethod
    def account_address(self) -> str:
        """Address of the configured signing account."""
        ...

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the ledger network."""
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Disconnect from the ledger network."""
        ...

    @abstractmethod
    async def health_check(self) -> dict[str, Any]:
        """Check ledger health."""
        ...

    # =========================================================================
    # Submission
    # =========================================================================

    @abstractmethod
    async def sign_and_send(
        self,
        call: LedgerCall,
        account: str,
        nonce: int,
    ) -> str:
        """
        Sign a call with the account's key and submit it.

        Args:
            call: Remark or batch call
            account: Signing account address
            nonce: Account nonce to sign with

        Returns:
            Extrinsic hash

        Raises:
            ChainError: On RPC failure or if the ledger refuses the nonce
        """
        ...

    @abstractmethod
    async def next_nonce(self, account: str) -> int:
        """
        Get the next usable nonce for an account, pending pool included.

        Args:
            account: Account address

        Returns:
            Next nonce
        """
        ...

    # =========================================================================
    # Queries
    # =========================================================================

    @abstractmethod
    async def get_latest_block_number(self) -> int:
        """Get the number of the chain head."""
        ...

    @abstractmethod
    async def get_block_hash(self, number: int) -> str | None:
        """
        Get the hash of a block.

        Args:
            number: Block number

        Returns:
            Block hash or None if the block does not exist
        """
        ...

    @abstractmethod
    async def get_block_extrinsics(self, block_hash: str) -> list[str]:
        """
        Get the extrinsic hashes of a block, in block order.

        Args:
            block_hash: Block hash

        Returns:
            Extrinsic hashes; the list index is the extrinsic index
        """
        ...

    @abstractmethod
    async def query_events_at(self, block_hash: str) -> list[ChainEvent]:
        """
        Get the events emitted in a block.

        Args:
            block_hash: Block hash

        Returns:
            Events in emission order
        """
        ...

    @abstractmethod
    async def get_rejection(self, extrinsic_hash: str) -> str | None:
        """
        Get the reason the ledger rejected an extrinsic, if it did.

        Args:
            extrinsic_hash: Extrinsic hash

        Returns:
            Rejection reason or None if not known to be rejected
        """
        ...


def create_ledger_client(blockchain_settings: BlockchainSettings) -> LedgerClient:
    """
    Build the ledger client for the configured mode.

    Args:
        blockchain_settings: Ledger connection settings

    Returns:
        LedgerClient instance based on settings
    """
    mode = blockchain_settings.mode

    if mode == BlockchainMode.MOCK:
        from credvault.blockchain.mock import MockLedgerClient

        client: LedgerClient = MockLedgerClient()
    elif mode in (BlockchainMode.TESTNET, BlockchainMode.MAINNET):
        from credvault.blockchain.substrate import SubstrateLedgerClient

        client = SubstrateLedgerClient(
            url=blockchain_settings.rpc_url,
            seed=blockchain_settings.account_seed.get_secret_value(),
            crypto_type=blockchain_settings.account_type,
            ss58_format=blockchain_settings.ss58_format,
            mode=mode,
        )
    else:
        raise ValueError(f"Unknown blockchain mode: {mode}")

    logger.info(
        "ledger_client_initialized",
        mode=mode.value,
    )
    return client
