"""
Nonce Sequencer
===============

Serializes submissions per signing account.

Version: 0.1.0
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from credvault.blockchain.client import LedgerClient
from credvault.logging import get_logger

logger = get_logger(__name__)


class NonceSequencer:
    """
    Per-account submission queue.

    Holding `account(address)` is the only way to obtain a nonce; the lock
    stays held for the whole submission so nonces are consumed in order.
    The local counter covers nodes whose reported next index lags behind
    extrinsics that were just submitted.
    """

    def __init__(self, ledger: LedgerClient) -> None:
        self._ledger = ledger
        self._locks: dict[str, asyncio.Lock] = {}
        self._next: dict[str, int] = {}

    def _lock_for(self, account: str) -> asyncio.Lock:
        lock = self._locks.get(account)
        if lock is None:
            lock = self._locks[account] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def account(self, account: str) -> AsyncIterator["AccountSequence"]:
        """Hold the account's queue for a sequence of submissions."""
        async with self._lock_for(account):
            yield AccountSequence(self, account)

    async def _reserve(self, account: str) -> int:
        chain_nonce = await self._ledger.next_nonce(account)
        return max(chain_nonce, self._next.get(account, 0))

    def _commit(self, account: str, nonce: int) -> None:
        self._next[account] = nonce + 1

    def resync(self, account: str) -> None:
        """Forget the local counter and trust the ledger on the next reserve."""
        self._next.pop(account, None)
        logger.debug("nonce_resync", account=account)


class AccountSequence:
    """Nonce access for one account while its queue is held."""

    def __init__(self, sequencer: NonceSequencer, account: str) -> None:
        self._sequencer = sequencer
        self.address = account

    async def next(self) -> int:
        return await self._sequencer._reserve(self.address)

    def commit(self, nonce: int) -> None:
        """Record that `nonce` was accepted by the ledger."""
        self._sequencer._commit(self.address, nonce)

    def resync(self) -> None:
        self._sequencer.resync(self.address)
