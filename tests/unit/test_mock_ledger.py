"""
Unit tests for the mock ledger client.
"""

import pytest

from credvault.blockchain import BatchCall, MockLedgerClient, RemarkCall, create_ledger_client
from credvault.config import BlockchainMode, BlockchainSettings
from credvault.errors import ChainError


class TestMockLedgerClient:
    """Tests for MockLedgerClient."""

    def test_client_mode(self, ledger: MockLedgerClient) -> None:
        """Test that client reports mock mode."""
        assert ledger.mode == BlockchainMode.MOCK

    def test_factory_builds_mock(self) -> None:
        client = create_ledger_client(BlockchainSettings(mode=BlockchainMode.MOCK))
        assert isinstance(client, MockLedgerClient)

    @pytest.mark.asyncio
    async def test_remark_sealed_with_events(self, ledger: MockLedgerClient) -> None:
        """Test that a remark lands in its own block with Remarked and ExtrinsicSuccess."""
        account = ledger.account_address
        head = await ledger.get_latest_block_number()

        tx_hash = await ledger.sign_and_send(RemarkCall(remark="hello"), account, 0)

        assert await ledger.get_latest_block_number() == head + 1
        block_hash = await ledger.get_block_hash(head + 1)
        assert block_hash is not None
        assert await ledger.get_block_extrinsics(block_hash) == [tx_hash]

        events = await ledger.query_events_at(block_hash)
        assert [(e.section, e.method) for e in events] == [
            ("System", "Remarked"),
            ("System", "ExtrinsicSuccess"),
        ]
        assert events[0].remark == "hello"
        assert all(e.extrinsic_index == 0 for e in events)

    @pytest.mark.asyncio
    async def test_batch_events(self, ledger: MockLedgerClient) -> None:
        """Test that a batch emits one Remarked per call then BatchCompleted."""
        call = BatchCall(calls=[RemarkCall(remark=f"r{i}") for i in range(3)])
        await ledger.sign_and_send(call, ledger.account_address, 0)

        block_hash = await ledger.get_block_hash(await ledger.get_latest_block_number())
        events = await ledger.query_events_at(block_hash)

        assert [e.method for e in events] == [
            "Remarked",
            "Remarked",
            "Remarked",
            "BatchCompleted",
            "ExtrinsicSuccess",
        ]
        assert ledger.submitted_remarks() == ["r0", "r1", "r2"]

    @pytest.mark.asyncio
    async def test_strict_nonces(self, ledger: MockLedgerClient) -> None:
        """Test that only the account's next nonce is accepted."""
        account = ledger.account_address

        await ledger.sign_and_send(RemarkCall(remark="a"), account, 0)
        assert await ledger.next_nonce(account) == 1

        with pytest.raises(ChainError, match="nonce"):
            await ledger.sign_and_send(RemarkCall(remark="b"), account, 0)
        with pytest.raises(ChainError, match="nonce"):
            await ledger.sign_and_send(RemarkCall(remark="b"), account, 5)

        await ledger.sign_and_send(RemarkCall(remark="b"), account, 1)
        assert ledger.submitted_remarks() == ["a", "b"]

    @pytest.mark.asyncio
    async def test_failed_dispatch(self, ledger: MockLedgerClient) -> None:
        """Test that a failed dispatch emits ExtrinsicFailed and no remark."""
        ledger.fail_next_dispatch("Module: BadOrigin")
        await ledger.sign_and_send(RemarkCall(remark="x"), ledger.account_address, 0)

        block_hash = await ledger.get_block_hash(await ledger.get_latest_block_number())
        events = await ledger.query_events_at(block_hash)

        assert [e.method for e in events] == ["ExtrinsicFailed"]
        assert events[0].data["dispatch_error"] == "Module: BadOrigin"
        assert ledger.submitted_remarks() == []

    @pytest.mark.asyncio
    async def test_pending_pool(self) -> None:
        """Test that extrinsics wait for produce_block when auto sealing is off."""
        ledger = MockLedgerClient(auto_seal=False)
        head = await ledger.get_latest_block_number()

        await ledger.sign_and_send(RemarkCall(remark="a"), ledger.account_address, 0)
        await ledger.sign_and_send(RemarkCall(remark="b"), ledger.account_address, 1)

        assert ledger.get_stats()["pending"] == 2
        assert await ledger.get_latest_block_number() == head

        number = ledger.produce_block()
        block_hash = await ledger.get_block_hash(number)
        assert len(await ledger.get_block_extrinsics(block_hash)) == 2

    @pytest.mark.asyncio
    async def test_fault_injection(self, ledger: MockLedgerClient) -> None:
        ledger.fail_next_submissions(1)
        with pytest.raises(ChainError, match="RPC connection lost"):
            await ledger.sign_and_send(RemarkCall(remark="a"), ledger.account_address, 0)

        # A failed submission does not consume the nonce
        await ledger.sign_and_send(RemarkCall(remark="a"), ledger.account_address, 0)

        number = await ledger.get_latest_block_number()
        ledger.break_block(number)
        with pytest.raises(ChainError):
            await ledger.get_block_hash(number)

    @pytest.mark.asyncio
    async def test_rejection(self) -> None:
        ledger = MockLedgerClient(auto_seal=False)
        tx_hash = await ledger.sign_and_send(RemarkCall(remark="a"), ledger.account_address, 0)

        ledger.reject(tx_hash)

        assert await ledger.get_rejection(tx_hash) == "Transaction is outdated"
        assert ledger.get_stats()["pending"] == 0

    @pytest.mark.asyncio
    async def test_health_and_clear(self, ledger: MockLedgerClient) -> None:
        await ledger.connect()
        await ledger.sign_and_send(RemarkCall(remark="a"), ledger.account_address, 0)

        health = await ledger.health_check()
        assert health["status"] == "healthy"
        assert health["connected"] is True

        ledger.clear_all()
        stats = ledger.get_stats()
        assert stats["remarks"] == 0
        assert stats["blocks"] == 1
        assert await ledger.next_nonce(ledger.account_address) == 0
