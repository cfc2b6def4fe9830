"""
Block Range Scanner
===================

The ledger has no query-by-key, so lookups are scans over a bounded range
of blocks. Event fetches for a window of blocks run concurrently; results
are yielded in scan order.

Version: 0.1.0
"""

import asyncio
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass

from credvault.blockchain.client import ChainEvent, LedgerClient
from credvault.logging import get_logger

logger = get_logger(__name__)

EventPredicate = Callable[[ChainEvent], bool]


@dataclass(frozen=True)
class ScannedEvent:
    """An event located in a block."""

    block_number: int
    block_hash: str
    extrinsic_hash: str | None
    event: ChainEvent


def is_remark(event: ChainEvent) -> bool:
    return event.is_remark and event.remark is not None


async def _fetch_block(
    ledger: LedgerClient,
    number: int,
    predicate: EventPredicate,
    newest_first: bool,
) -> list[ScannedEvent]:
    block_hash = await ledger.get_block_hash(number)
    if block_hash is None:
        return []

    events = [e for e in await ledger.query_events_at(block_hash) if predicate(e)]
    if not events:
        return []

    extrinsics = await ledger.get_block_extrinsics(block_hash)
    if newest_first:
        events.reverse()

    matches = []
    for event in events:
        index = event.extrinsic_index
        extrinsic_hash = extrinsics[index] if index is not None and index < len(extrinsics) else None
        matches.append(
            ScannedEvent(
                block_number=number,
                block_hash=block_hash,
                extrinsic_hash=extrinsic_hash,
                event=event,
            )
        )
    return matches


async def scan_range(
    ledger: LedgerClient,
    start: int,
    end: int,
    predicate: EventPredicate = is_remark,
    newest_first: bool = True,
    concurrency: int = 8,
) -> AsyncIterator[ScannedEvent]:
    """
    Yield matching events from blocks `start` through `end` inclusive.

    A block that cannot be fetched is logged and skipped. Consumers may stop
    iterating early; no further blocks are fetched after they do.

    Args:
        ledger: Ledger to read from
        start: First block number
        end: Last block number
        predicate: Event filter
        newest_first: Scan from `end` down to `start`
        concurrency: Blocks fetched at once
    """
    start = max(0, start)
    if end < start:
        return

    numbers = list(range(start, end + 1))
    if newest_first:
        numbers.reverse()

    for offset in range(0, len(numbers), max(1, concurrency)):
        window = numbers[offset : offset + concurrency]
        results = await asyncio.gather(
            *(_fetch_block(ledger, n, predicate, newest_first) for n in window),
            return_exceptions=True,
        )
        for number, result in zip(window, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                logger.warning("block_scan_failed", block_number=number, error=str(result))
                continue
            for match in result:
                yield match
