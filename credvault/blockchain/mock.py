"""
Mock Ledger Client
==================

In-memory ledger for development and testing.

Each accepted submission is sealed into its own block (or held in a
pending pool until `produce_block` is called) and emits the same events a
Substrate runtime would: one `System.Remarked` per remark, then
`System.ExtrinsicSuccess` or `System.ExtrinsicFailed`.

Version: 0.1.0
"""

import hashlib
import uuid
from dataclasses import dataclass, field
from typing import Any

from credvault.blockchain.client import (
    BatchCall,
    ChainEvent,
    LedgerCall,
    LedgerClient,
    RemarkCall,
)
from credvault.config import BlockchainMode
from credvault.errors import ChainError
from credvault.logging import get_logger

logger = get_logger(__name__)

MOCK_ACCOUNT = "5MockSigner1111111111111111111111111111111111111"


@dataclass
class _MockBlock:
    number: int
    hash: str
    extrinsics: list[str] = field(default_factory=list)
    events: list[ChainEvent] = field(default_factory=list)


@dataclass
class _PendingExtrinsic:
    hash: str
    account: str
    call: LedgerCall
    dispatch_error: str | None = None


class MockLedgerClient(LedgerClient):
    """
    In-memory mock ledger client.

    Simulates remark submission and block queries without requiring a
    node. Nonces are enforced strictly: a submission must carry exactly the
    account's next nonce.

    Data is stored in memory and lost on restart.
    """

    def __init__(
        self,
        account_address: str = MOCK_ACCOUNT,
        auto_seal: bool = True,
        genesis_block: int = 1000,
    ) -> None:
        """Initialize mock client with in-memory storage."""
        self._connected = False
        self._account_address = account_address
        self._auto_seal = auto_seal
        self._genesis_block = genesis_block

        # In-memory chain
        self._blocks: dict[int, _MockBlock] = {}
        self._blocks_by_hash: dict[str, _MockBlock] = {}
        self._pending: list[_PendingExtrinsic] = []
        self._nonces: dict[str, int] = {}
        self._rejections: dict[str, str] = {}

        # Fault injection
        self._failing_submissions = 0
        self._submission_error = "RPC connection lost"
        self._dispatch_error_next: str | None = None
        self._broken_blocks: set[int] = set()

        self._seal_block([])
        logger.debug("mock_ledger_initialized", genesis_block=genesis_block)

    @property
    def mode(self) -> BlockchainMode:
        return BlockchainMode.MOCK

    @property
    def account_address(self) -> str:
        return self._account_address

    async def connect(self) -> None:
        """Simulate connection."""
        self._connected = True
        logger.info("mock_ledger_connected")

    async def disconnect(self) -> None:
        """Simulate disconnection."""
        self._connected = False
        logger.info("mock_ledger_disconnected")

    async def health_check(self) -> dict[str, Any]:
        """Check mock ledger health."""
        return {
            "status": "healthy",
            "mode": self.mode.value,
            "connected": self._connected,
            "block_number": self._head,
            "pending_extrinsics": len(self._pending),
        }

    @property
    def _head(self) -> int:
        return max(self._blocks)

    def _generate_hash(self) -> str:
        """Generate a mock block or extrinsic hash."""
        return "0x" + hashlib.sha256(uuid.uuid4().bytes).hexdigest()

    def _seal_block(self, extrinsics: list[_PendingExtrinsic]) -> _MockBlock:
        number = self._head + 1 if self._blocks else self._genesis_block
        block = _MockBlock(number=number, hash=self._generate_hash())

        for index, ext in enumerate(extrinsics):
            block.extrinsics.append(ext.hash)

            if ext.dispatch_error is not None:
                block.events.append(
                    ChainEvent(
                        section="System",
                        method="ExtrinsicFailed",
                        data={"dispatch_error": ext.dispatch_error},
                        extrinsic_index=index,
                    )
                )
                continue

            remarks = [ext.call] if isinstance(ext.call, RemarkCall) else ext.call.calls
            for call in remarks:
                block.events.append(
                    ChainEvent(
                        section="System",
                        method="Remarked",
                        data={
                            "sender": ext.account,
                            "hash": "0x" + hashlib.sha256(call.remark.encode("utf-8")).hexdigest(),
                        },
                        extrinsic_index=index,
                        remark=call.remark,
                    )
                )
            if isinstance(ext.call, BatchCall):
                block.events.append(
                    ChainEvent(section="Utility", method="BatchCompleted", extrinsic_index=index)
                )
            block.events.append(
                ChainEvent(
                    section="System",
                    method="ExtrinsicSuccess",
                    data={"dispatch_info": {"class": "Normal", "pays_fee": "Yes"}},
                    extrinsic_index=index,
                )
            )

        self._blocks[number] = block
        self._blocks_by_hash[block.hash] = block
        return block

    # =========================================================================
    # Submission
    # =========================================================================

    async def sign_and_send(
        self,
        call: LedgerCall,
        account: str,
        nonce: int,
    ) -> str:
        """Accept a call if its nonce is the account's next one."""
        if self._failing_submissions > 0:
            self._failing_submissions -= 1
            raise ChainError(self._submission_error)

        expected = self._nonces.get(account, 0)
        if nonce != expected:
            raise ChainError(
                f"Invalid transaction: nonce {nonce} for {account}, expected {expected}"
            )
        self._nonces[account] = expected + 1

        ext = _PendingExtrinsic(
            hash=self._generate_hash(),
            account=account,
            call=call,
            dispatch_error=self._dispatch_error_next,
        )
        self._dispatch_error_next = None
        self._pending.append(ext)

        if self._auto_seal:
            self.produce_block()

        logger.debug(
            "mock_extrinsic_submitted",
            extrinsic_hash=ext.hash,
            account=account,
            nonce=nonce,
            remarks=1 if isinstance(call, RemarkCall) else len(call.calls),
        )
        return ext.hash

    async def next_nonce(self, account: str) -> int:
        """Get the next nonce for an account."""
        return self._nonces.get(account, 0)

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_latest_block_number(self) -> int:
        return self._head

    async def get_block_hash(self, number: int) -> str | None:
        if number in self._broken_blocks:
            raise ChainError(f"RPC error fetching block {number}")
        block = self._blocks.get(number)
        return block.hash if block else None

    async def get_block_extrinsics(self, block_hash: str) -> list[str]:
        block = self._blocks_by_hash.get(block_hash)
        return list(block.extrinsics) if block else []

    async def query_events_at(self, block_hash: str) -> list[ChainEvent]:
        block = self._blocks_by_hash.get(block_hash)
        return list(block.events) if block else []

    async def get_rejection(self, extrinsic_hash: str) -> str | None:
        return self._rejections.get(extrinsic_hash)

    # =========================================================================
    # Test Utilities
    # =========================================================================

    def produce_block(self) -> int:
        """Seal all pending extrinsics into a new block and return its number."""
        pending, self._pending = self._pending, []
        return self._seal_block(pending).number

    def advance_blocks(self, count: int) -> int:
        """Append empty blocks and return the new head."""
        for _ in range(count):
            self._seal_block([])
        return self._head

    def fail_next_submissions(self, count: int, error: str = "RPC connection lost") -> None:
        """Make the next `count` submissions raise ChainError."""
        self._failing_submissions = count
        self._submission_error = error

    def fail_next_dispatch(self, error: str = "Module: BadOrigin") -> None:
        """Make the next accepted extrinsic emit ExtrinsicFailed."""
        self._dispatch_error_next = error

    def break_block(self, number: int) -> None:
        """Make queries for a block number raise ChainError."""
        self._broken_blocks.add(number)

    def reject(self, extrinsic_hash: str, reason: str = "Transaction is outdated") -> None:
        """Drop a pending extrinsic and report it as rejected."""
        self._pending = [ext for ext in self._pending if ext.hash != extrinsic_hash]
        self._rejections[extrinsic_hash] = reason

    def submitted_remarks(self) -> list[str]:
        """All remark strings sealed so far, in chain order."""
        return [
            event.remark
            for number in sorted(self._blocks)
            for event in self._blocks[number].events
            if event.is_remark and event.remark is not None
        ]

    def clear_all(self) -> None:
        """Clear all mock data (for testing)."""
        self._blocks.clear()
        self._blocks_by_hash.clear()
        self._pending.clear()
        self._nonces.clear()
        self._rejections.clear()
        self._failing_submissions = 0
        self._dispatch_error_next = None
        self._broken_blocks.clear()
        self._seal_block([])
        logger.debug("mock_ledger_cleared")

    def get_stats(self) -> dict[str, int]:
        """Get chain statistics."""
        return {
            "blocks": len(self._blocks),
            "block_number": self._head,
            "extrinsics": sum(len(b.extrinsics) for b in self._blocks.values()),
            "remarks": len(self.submitted_remarks()),
            "pending": len(self._pending),
        }
