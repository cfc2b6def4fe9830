"""
Transaction Monitor
===================

Tracks submitted extrinsics until they reach a terminal status.

Every monitoring session is bounded twice: by a number of polls and by a
wall-clock timeout. Sessions run as tasks owned by the monitor so they
can be stopped individually or all at once. Callers that monitor a hash
already being watched join the running session; each caller's callback
hears every distinct status once.

Version: 0.1.0
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from contextlib import aclosing
from typing import Any

from credvault.blockchain.client import ChainEvent, LedgerClient
from credvault.blockchain.scanner import scan_range
from credvault.config import MonitorSettings
from credvault.logging import get_logger
from credvault.models.chain import TransactionStatus, TxStatus

logger = get_logger(__name__)

StatusCallback = Callable[[TransactionStatus], Awaitable[None] | None]

_OUTCOME_METHODS = {"ExtrinsicSuccess", "ExtrinsicFailed"}

RETRIES_EXCEEDED = "Maximum retries exceeded"
MONITOR_TIMEOUT = "Transaction monitoring timeout"
MONITOR_STOPPED = "Monitoring stopped"


def _is_outcome(event: ChainEvent) -> bool:
    return event.section.lower() == "system" and event.method in _OUTCOME_METHODS


class _Session:
    """One polling task and the callbacks of everyone waiting on it."""

    def __init__(self) -> None:
        self.task: asyncio.Task[TransactionStatus] | None = None
        self.callbacks: list[StatusCallback] = []
        self.reported: list[TransactionStatus] = []


class TransactionMonitor:
    """
    Polls the ledger for the outcome of submitted extrinsics.

    Usage:
        monitor = TransactionMonitor(ledger, settings.monitor)
        status = await monitor.monitor(tx_hash, on_update=print)
    """

    def __init__(self, ledger: LedgerClient, settings: MonitorSettings) -> None:
        self._ledger = ledger
        self._settings = settings
        self._sessions: dict[str, _Session] = {}

    def active_monitors(self) -> list[str]:
        """Hashes currently being monitored."""
        return [
            h
            for h, session in self._sessions.items()
            if session.task is not None and not session.task.done()
        ]

    async def monitor(
        self,
        tx_hash: str,
        on_update: StatusCallback | None = None,
    ) -> TransactionStatus:
        """
        Wait for an extrinsic to reach a terminal status.

        A caller that is cancelled while waiting leaves the session running
        for the other callers. Only `stop_monitoring`, `stop_all_monitoring`
        and `shutdown` end a session early.

        Args:
            tx_hash: Extrinsic hash
            on_update: Called once per distinct status observed

        Returns:
            Final status; `failed` when polls or time run out, `pending`
            with error "Monitoring stopped" when the session was stopped
        """
        session = self._sessions.get(tx_hash)
        catch_up: list[TransactionStatus] = []
        if session is None or session.task is None or session.task.done():
            session = _Session()
            session.task = asyncio.create_task(
                self._watch(tx_hash, session),
                name=f"monitor:{tx_hash}",
            )
            self._sessions[tx_hash] = session
            session.task.add_done_callback(lambda t, h=tx_hash, s=session: self._forget(h, s))
            logger.debug("transaction_monitor_started", tx_hash=tx_hash)
        else:
            catch_up = list(session.reported)
            logger.debug("transaction_monitor_joined", tx_hash=tx_hash)

        if on_update is not None:
            session.callbacks.append(on_update)
            # Statuses reported before this caller joined
            for status in catch_up:
                await self._notify(on_update, status)

        task = session.task
        await asyncio.wait({task})

        if task.cancelled():
            logger.info("transaction_monitor_stopped", tx_hash=tx_hash)
            return TransactionStatus(
                hash=tx_hash,
                status=TxStatus.PENDING,
                error=MONITOR_STOPPED,
            )
        return task.result()

    def _forget(self, tx_hash: str, session: _Session) -> None:
        if self._sessions.get(tx_hash) is session:
            del self._sessions[tx_hash]

    def _cancel(self, tx_hash: str) -> asyncio.Task[TransactionStatus] | None:
        session = self._sessions.pop(tx_hash, None)
        if session is None or session.task is None or session.task.done():
            return None
        session.task.cancel()
        return session.task

    def stop_monitoring(self, tx_hash: str) -> bool:
        """
        Stop monitoring one extrinsic.

        Returns:
            True if a session was running
        """
        return self._cancel(tx_hash) is not None

    def stop_all_monitoring(self) -> int:
        """Stop every running session and return how many were stopped."""
        stopped = 0
        for tx_hash in list(self._sessions):
            if self.stop_monitoring(tx_hash):
                stopped += 1
        if stopped:
            logger.info("transaction_monitors_stopped", count=stopped)
        return stopped

    async def shutdown(self) -> int:
        """
        Stop every running session and wait for the tasks to finish.

        Returns:
            Number of sessions stopped
        """
        tasks = [task for h in list(self._sessions) if (task := self._cancel(h)) is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("transaction_monitors_stopped", count=len(tasks))
        return len(tasks)

    async def _notify(
        self,
        on_update: StatusCallback,
        status: TransactionStatus,
    ) -> None:
        try:
            result = on_update(status)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(
                "transaction_callback_failed",
                tx_hash=status.hash,
                status=status.status.value,
                error=str(e),
            )

    async def _watch(self, tx_hash: str, session: _Session) -> TransactionStatus:
        max_retries = self._settings.max_retries

        async def report(status: TransactionStatus) -> None:
            if any(seen.status == status.status for seen in session.reported):
                return
            session.reported.append(status)
            for callback in list(session.callbacks):
                await self._notify(callback, status)

        try:
            async with asyncio.timeout(self._settings.timeout_seconds):
                for attempt in range(1, max_retries + 1):
                    try:
                        status = await self.get_transaction_status(tx_hash)
                    except Exception as e:
                        logger.warning(
                            "transaction_status_poll_failed",
                            tx_hash=tx_hash,
                            attempt=attempt,
                            error=str(e),
                        )
                    else:
                        await report(status)
                        if status.status.is_terminal:
                            logger.info(
                                "transaction_resolved",
                                tx_hash=tx_hash,
                                status=status.status.value,
                                block_number=status.block_number,
                                attempts=attempt,
                            )
                            return status

                    if attempt < max_retries:
                        await asyncio.sleep(self._settings.retry_interval_seconds)

                error = RETRIES_EXCEEDED
        except TimeoutError:
            error = MONITOR_TIMEOUT

        logger.warning("transaction_monitor_exhausted", tx_hash=tx_hash, error=error)
        final = TransactionStatus(hash=tx_hash, status=TxStatus.FAILED, error=error)
        await report(final)
        return final

    async def get_transaction_status(self, tx_hash: str) -> TransactionStatus:
        """
        Look up an extrinsic's current status once.

        Scans the most recent `lookback_blocks` blocks for the extrinsic's
        outcome event.
        """
        rejection = await self._ledger.get_rejection(tx_hash)
        if rejection is not None:
            return TransactionStatus(hash=tx_hash, status=TxStatus.INVALID, error=rejection)

        head = await self._ledger.get_latest_block_number()
        start = head - self._settings.lookback_blocks + 1

        scan = scan_range(self._ledger, start, head, predicate=_is_outcome)
        async with aclosing(scan) as matches:
            async for match in matches:
                if match.extrinsic_hash != tx_hash:
                    continue

                event = match.event
                events: list[dict[str, Any]] = [
                    {"section": event.section, "method": event.method, "data": event.data}
                ]
                if event.method == "ExtrinsicFailed":
                    return TransactionStatus(
                        hash=tx_hash,
                        status=TxStatus.FAILED,
                        block_hash=match.block_hash,
                        block_number=match.block_number,
                        events=events,
                        error=str(event.data.get("dispatch_error", "Dispatch failed")),
                    )
                return TransactionStatus(
                    hash=tx_hash,
                    status=TxStatus.FINALIZED,
                    block_hash=match.block_hash,
                    block_number=match.block_number,
                    events=events,
                )

        return TransactionStatus(hash=tx_hash, status=TxStatus.PENDING)
