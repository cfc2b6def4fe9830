"""
Expiry Sweeper
==============

Background task that periodically expires credentials, shares,
verifications and issuance requests past their expiry.

Version: 0.1.0
"""

import asyncio
import contextlib

from credvault.credentials.store import CredentialStore
from credvault.logging import bind_context, get_logger
from credvault.models.credential import ExpirySweepResult


logger = get_logger(__name__)


class ExpirySweeper:
    """
    Runs `CredentialStore.cleanup_expired` every `interval_seconds`.

    Usage:
        sweeper = ExpirySweeper(store, settings.credentials.sweep_interval_seconds)
        sweeper.start()
        ...
        await sweeper.stop()
    """

    def __init__(self, store: CredentialStore, interval_seconds: float) -> None:
        self._store = store
        self._interval = interval_seconds
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the sweep loop. Calling it while running does nothing."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="credvault-expiry-sweeper")
        logger.info("expiry_sweeper_started", interval_seconds=self._interval)

    async def stop(self) -> None:
        """Cancel the sweep loop and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("expiry_sweeper_stopped")

    async def sweep_once(self) -> ExpirySweepResult:
        return await self._store.cleanup_expired()

    async def _run(self) -> None:
        # Runs in its own task context
        bind_context(task="expiry_sweep")
        while True:
            try:
                await self.sweep_once()
            except Exception as e:
                logger.error("expiry_sweep_failed", error=str(e))

            await asyncio.sleep(self._interval)
