"""
Chain Anchor Service
====================

Writes credential payloads and references onto the ledger as remarks and
finds them again by scanning recent blocks.

Strategies:
- remark: one remark extrinsic per chunk, submitted sequentially
- batch: all chunk remarks in one utility.batch_all extrinsic
- custom_pallet: the whole payload in a single remark

Retrieval only looks at the last `scan_window_blocks` blocks unless the
caller gives a starting block. Anchors older than that are not found.

Version: 0.1.0
"""

import asyncio
import time
from contextlib import aclosing
from typing import Any

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from credvault.blockchain.client import BatchCall, LedgerCall, LedgerClient, RemarkCall
from credvault.blockchain.markers import (
    MarkerKind,
    ScanAssembler,
    chunk_count_for,
    encode_chunk_marker,
    encode_pallet_marker,
    encode_reference_marker,
    parse_chunk_marker,
    parse_pallet_marker,
    parse_reference_marker,
    split_into_chunks,
)
from credvault.blockchain.monitor import (
    MONITOR_TIMEOUT,
    RETRIES_EXCEEDED,
    TransactionMonitor,
)
from credvault.blockchain.nonce import AccountSequence, NonceSequencer
from credvault.blockchain.scanner import scan_range
from credvault.config import AnchorSettings
from credvault.crypto import EncryptionEnvelope, canonical_json, sha256_hex
from credvault.errors import (
    ChainError,
    IntegrityError,
    MonitorTimeoutError,
    ValidationError,
)
from credvault.logging import get_logger
from credvault.models.chain import (
    AnchoredPayload,
    AnchorStrategy,
    ChainReference,
    CostEstimate,
    TxStatus,
)

logger = get_logger(__name__)

_COST_MULTIPLIERS = {
    AnchorStrategy.REMARK: 1.0,
    AnchorStrategy.BATCH: 0.8,
    AnchorStrategy.CUSTOM_PALLET: 0.5,
}


def _now_ms() -> int:
    return int(time.time() * 1000)


class ChainAnchorService:
    """
    Ledger anchoring for credential payloads and references.

    All submissions from the signing account go through the nonce
    sequencer, one at a time.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        envelope: EncryptionEnvelope,
        sequencer: NonceSequencer,
        settings: AnchorSettings,
        monitor: TransactionMonitor | None = None,
        await_finality: bool = True,
    ) -> None:
        self._ledger = ledger
        self._envelope = envelope
        self._sequencer = sequencer
        self._settings = settings
        self._monitor = monitor
        self._await_finality = await_finality

    # =========================================================================
    # Submission
    # =========================================================================

    async def _submit(self, call: LedgerCall, seq: AccountSequence) -> str:
        """Sign and send one call with bounded retries and a per-attempt timeout."""
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(ChainError),
            stop=stop_after_attempt(self._settings.max_retries),
            wait=wait_exponential(multiplier=self._settings.retry_backoff_seconds, max=30),
            before_sleep=lambda retry_state: logger.warning(
                "chain_submit_retry",
                attempt=retry_state.attempt_number,
                error=str(retry_state.outcome.exception()) if retry_state.outcome else None,
            ),
            reraise=True,
        ):
            with attempt:
                nonce = await seq.next()
                try:
                    tx_hash = await asyncio.wait_for(
                        self._ledger.sign_and_send(call, seq.address, nonce),
                        timeout=self._settings.submit_timeout_seconds,
                    )
                except TimeoutError as e:
                    seq.resync()
                    raise ChainError(
                        f"Submission timed out after {self._settings.submit_timeout_seconds}s"
                    ) from e
                except ChainError:
                    seq.resync()
                    raise
                seq.commit(nonce)
        return tx_hash

    def _check_payload(self, ciphertext: str) -> None:
        if not ciphertext:
            raise ValidationError("Cannot anchor an empty payload")

    async def store_in_remarks(
        self,
        user_address: str,
        ciphertext: str,
        data_hash: str,
        secure: bool = False,
    ) -> AnchoredPayload:
        """
        Anchor a payload as one remark extrinsic per chunk.

        Args:
            user_address: Holder address
            ciphertext: Encryption envelope to anchor
            data_hash: Hash identifying the payload
            secure: Add an integrity hash of the ciphertext to each marker

        Returns:
            AnchoredPayload with one extrinsic hash per chunk
        """
        self._check_payload(ciphertext)
        kind = MarkerKind.for_strategy(AnchorStrategy.REMARK, secure)
        integrity_hash = sha256_hex(ciphertext) if secure else None
        chunks = split_into_chunks(ciphertext, self._settings.chunk_size)

        extrinsic_hashes: list[str] = []
        async with self._sequencer.account(self._ledger.account_address) as seq:
            for index, chunk in enumerate(chunks):
                remark = encode_chunk_marker(
                    kind,
                    user_address,
                    data_hash,
                    index,
                    len(chunks),
                    chunk,
                    integrity_hash=integrity_hash,
                )
                try:
                    extrinsic_hashes.append(await self._submit(RemarkCall(remark=remark), seq))
                except ChainError:
                    logger.error(
                        "chain_remark_chunk_failed",
                        data_hash=data_hash,
                        chunk_index=index,
                        chunks_submitted=len(extrinsic_hashes),
                        chunk_count=len(chunks),
                    )
                    raise

        logger.info(
            "chain_payload_anchored",
            strategy=AnchorStrategy.REMARK.value,
            user_address=user_address,
            data_hash=data_hash,
            chunk_count=len(chunks),
            secure=secure,
        )
        return AnchoredPayload(
            user_address=user_address,
            data_hash=data_hash,
            integrity_hash=integrity_hash,
            strategy=AnchorStrategy.REMARK,
            extrinsic_hashes=extrinsic_hashes,
            chunk_count=len(chunks),
            timestamp=_now_ms(),
        )

    async def store_in_batch(
        self,
        user_address: str,
        ciphertext: str,
        data_hash: str,
        secure: bool = False,
    ) -> AnchoredPayload:
        """Anchor a payload as chunk remarks inside one atomic batch extrinsic."""
        self._check_payload(ciphertext)
        kind = MarkerKind.for_strategy(AnchorStrategy.BATCH, secure)
        integrity_hash = sha256_hex(ciphertext) if secure else None
        chunks = split_into_chunks(ciphertext, self._settings.chunk_size)

        call = BatchCall(
            calls=[
                RemarkCall(
                    remark=encode_chunk_marker(
                        kind,
                        user_address,
                        data_hash,
                        index,
                        len(chunks),
                        chunk,
                        integrity_hash=integrity_hash,
                    )
                )
                for index, chunk in enumerate(chunks)
            ]
        )

        async with self._sequencer.account(self._ledger.account_address) as seq:
            tx_hash = await self._submit(call, seq)

        logger.info(
            "chain_payload_anchored",
            strategy=AnchorStrategy.BATCH.value,
            user_address=user_address,
            data_hash=data_hash,
            chunk_count=len(chunks),
            secure=secure,
            extrinsic_hash=tx_hash,
        )
        return AnchoredPayload(
            user_address=user_address,
            data_hash=data_hash,
            integrity_hash=integrity_hash,
            strategy=AnchorStrategy.BATCH,
            extrinsic_hashes=[tx_hash],
            chunk_count=len(chunks),
            timestamp=_now_ms(),
        )

    async def store_in_custom_marker(
        self,
        user_address: str,
        ciphertext: str,
        data_hash: str,
    ) -> AnchoredPayload:
        """
        Anchor a payload in a single remark.

        Raises:
            ValidationError: If the remark would exceed `max_remark_bytes`
        """
        self._check_payload(ciphertext)
        remark = encode_pallet_marker(user_address, data_hash, ciphertext)
        size = len(remark.encode("utf-8"))
        if size > self._settings.max_remark_bytes:
            raise ValidationError(
                f"Payload of {size} bytes exceeds the single remark limit of "
                f"{self._settings.max_remark_bytes} bytes"
            )

        async with self._sequencer.account(self._ledger.account_address) as seq:
            tx_hash = await self._submit(RemarkCall(remark=remark), seq)

        logger.info(
            "chain_payload_anchored",
            strategy=AnchorStrategy.CUSTOM_PALLET.value,
            user_address=user_address,
            data_hash=data_hash,
            extrinsic_hash=tx_hash,
        )
        return AnchoredPayload(
            user_address=user_address,
            data_hash=data_hash,
            strategy=AnchorStrategy.CUSTOM_PALLET,
            extrinsic_hashes=[tx_hash],
            chunk_count=1,
            timestamp=_now_ms(),
        )

    async def store(
        self,
        user_address: str,
        ciphertext: str,
        data_hash: str,
        strategy: AnchorStrategy = AnchorStrategy.REMARK,
        secure: bool = False,
    ) -> AnchoredPayload:
        """Anchor a payload with the given strategy."""
        if strategy == AnchorStrategy.REMARK:
            return await self.store_in_remarks(user_address, ciphertext, data_hash, secure)
        if strategy == AnchorStrategy.BATCH:
            return await self.store_in_batch(user_address, ciphertext, data_hash, secure)
        if secure:
            raise ValidationError("Secure anchoring requires the remark or batch strategy")
        return await self.store_in_custom_marker(user_address, ciphertext, data_hash)

    async def store_credential(
        self,
        user_address: str,
        credential_data: dict[str, Any],
        strategy: AnchorStrategy = AnchorStrategy.REMARK,
        secure: bool = False,
    ) -> AnchoredPayload:
        """Encrypt a plaintext credential and anchor the envelope."""
        data_hash = sha256_hex(canonical_json(credential_data))
        ciphertext = self._envelope.encrypt_json(credential_data)
        return await self.store(user_address, ciphertext, data_hash, strategy, secure)

    # =========================================================================
    # Retrieval
    # =========================================================================

    async def _scan_bounds(self, from_block: int | None) -> tuple[int, int]:
        head = await self._ledger.get_latest_block_number()
        if from_block is not None:
            return from_block, head
        return head - self._settings.scan_window_blocks + 1, head

    async def retrieve(
        self,
        user_address: str,
        data_hash: str,
        strategy: AnchorStrategy = AnchorStrategy.REMARK,
        secure: bool = False,
        from_block: int | None = None,
    ) -> str | None:
        """
        Find an anchored payload by scanning recent blocks.

        Args:
            user_address: Holder address
            data_hash: Hash the payload was anchored under
            strategy: Strategy it was anchored with
            secure: Whether it was anchored with an integrity hash
            from_block: Scan from this block instead of the default window

        Returns:
            The ciphertext, or None if no complete payload is in range

        Raises:
            IntegrityError: If a secure payload does not match its integrity hash
        """
        start, end = await self._scan_bounds(from_block)
        scan = scan_range(
            self._ledger,
            start,
            end,
            newest_first=self._settings.newest_first,
            concurrency=self._settings.scan_concurrency,
        )

        payload: str | None = None
        integrity_hash: str | None = None

        if strategy.is_chunked:
            kind = MarkerKind.for_strategy(strategy, secure)
            prefix = f"{kind.value}:"
            assembler = ScanAssembler(newest_first=self._settings.newest_first)
            async with aclosing(scan) as events:
                async for match in events:
                    remark = match.event.remark or ""
                    if not remark.startswith(prefix):
                        continue
                    marker = parse_chunk_marker(remark)
                    if marker is None:
                        continue
                    if marker.user_address != user_address or marker.data_hash != data_hash:
                        continue
                    payload = assembler.add(marker)
                    if payload is not None:
                        integrity_hash = assembler.integrity_hash
                        break
        else:
            if secure:
                raise ValidationError("Secure anchoring requires the remark or batch strategy")
            async with aclosing(scan) as events:
                async for match in events:
                    parsed = parse_pallet_marker(match.event.remark or "")
                    if parsed and parsed[0] == user_address and parsed[1] == data_hash:
                        payload = parsed[2]
                        break

        if payload is None:
            logger.warning(
                "chain_payload_not_found",
                user_address=user_address,
                data_hash=data_hash,
                strategy=strategy.value,
                from_block=start,
                to_block=end,
            )
            return None

        if secure and sha256_hex(payload) != integrity_hash:
            logger.error("chain_payload_integrity_mismatch", data_hash=data_hash)
            raise IntegrityError(f"Anchored payload {data_hash} failed its integrity check")

        logger.info(
            "chain_payload_retrieved",
            user_address=user_address,
            data_hash=data_hash,
            strategy=strategy.value,
        )
        return payload

    async def retrieve_credential(
        self,
        user_address: str,
        data_hash: str,
        strategy: AnchorStrategy = AnchorStrategy.REMARK,
        secure: bool = False,
        from_block: int | None = None,
    ) -> dict[str, Any] | None:
        """
        Find an anchored payload, decrypt it and check it against its hash.

        Raises:
            IntegrityError: If the plaintext does not hash to `data_hash`
        """
        ciphertext = await self.retrieve(user_address, data_hash, strategy, secure, from_block)
        if ciphertext is None:
            return None

        data = self._envelope.decrypt_json(ciphertext)
        if sha256_hex(canonical_json(data)) != data_hash:
            raise IntegrityError(f"Anchored credential does not match hash {data_hash}")
        return data

    # =========================================================================
    # References
    # =========================================================================

    async def anchor_reference(
        self,
        user_address: str,
        blob_hash: str,
        credential_hash: str,
    ) -> ChainReference:
        """
        Anchor a `{user, blob hash, credential hash}` reference.

        Waits for the extrinsic to finalize when finality is awaited.

        Raises:
            ChainError: If submission fails or the extrinsic fails or is rejected
            MonitorTimeoutError: If finality was not observed in time
        """
        timestamp = _now_ms()
        remark = encode_reference_marker(user_address, blob_hash, credential_hash, timestamp)

        async with self._sequencer.account(self._ledger.account_address) as seq:
            tx_hash = await self._submit(RemarkCall(remark=remark), seq)

        reference = ChainReference(
            user_address=user_address,
            blob_hash=blob_hash,
            credential_hash=credential_hash,
            timestamp=timestamp,
            extrinsic_hash=tx_hash,
        )

        if self._monitor is not None:
            if self._await_finality:
                status = await self._monitor.monitor(
                    tx_hash,
                    on_update=lambda s: logger.debug(
                        "chain_reference_status",
                        tx_hash=s.hash,
                        status=s.status.value,
                    ),
                )
            else:
                status = await self._monitor.get_transaction_status(tx_hash)

            if status.status == TxStatus.FINALIZED:
                reference.block_hash = status.block_hash
                reference.block_number = status.block_number
            elif status.status == TxStatus.FAILED and status.error in (
                RETRIES_EXCEEDED,
                MONITOR_TIMEOUT,
            ):
                raise MonitorTimeoutError(f"Reference {tx_hash} not finalized: {status.error}")
            elif status.status in (TxStatus.FAILED, TxStatus.INVALID):
                raise ChainError(f"Reference {tx_hash} {status.status.value}: {status.error}")
            elif self._await_finality:
                raise ChainError(f"Reference {tx_hash} monitoring stopped before finality")

        logger.info(
            "chain_reference_anchored",
            user_address=user_address,
            blob_hash=blob_hash,
            extrinsic_hash=tx_hash,
            block_hash=reference.block_hash,
        )
        return reference

    async def find_references(
        self,
        user_address: str,
        from_block: int | None = None,
    ) -> list[ChainReference]:
        """List reference anchors for a holder within the scan range, in scan order."""
        start, end = await self._scan_bounds(from_block)
        references = []
        async for match in scan_range(
            self._ledger,
            start,
            end,
            newest_first=self._settings.newest_first,
            concurrency=self._settings.scan_concurrency,
        ):
            reference = parse_reference_marker(
                match.event.remark or "",
                block_hash=match.block_hash,
                extrinsic_hash=match.extrinsic_hash or "",
                block_number=match.block_number,
            )
            if reference is not None and reference.user_address == user_address:
                references.append(reference)
        return references

    async def find_reference(
        self,
        blob_hash: str,
        credential_hash: str,
        from_block: int | None = None,
    ) -> ChainReference | None:
        """Find the reference anchor for a blob hash and credential hash pair."""
        start, end = await self._scan_bounds(from_block)
        scan = scan_range(
            self._ledger,
            start,
            end,
            newest_first=self._settings.newest_first,
            concurrency=self._settings.scan_concurrency,
        )
        async with aclosing(scan) as events:
            async for match in events:
                reference = parse_reference_marker(
                    match.event.remark or "",
                    block_hash=match.block_hash,
                    extrinsic_hash=match.extrinsic_hash or "",
                    block_number=match.block_number,
                )
                if (
                    reference is not None
                    and reference.blob_hash == blob_hash
                    and reference.credential_hash == credential_hash
                ):
                    return reference
        return None

    async def verify_reference(
        self,
        blob_hash: str,
        credential_hash: str,
        from_block: int | None = None,
    ) -> bool:
        """Check that a matching reference anchor is in the scan range."""
        return await self.find_reference(blob_hash, credential_hash, from_block) is not None

    # =========================================================================
    # Cost
    # =========================================================================

    def estimate_cost(self, size: int, strategy: AnchorStrategy) -> CostEstimate:
        """
        Estimate the fees for anchoring `size` characters of ciphertext.

        Chunked strategies pay per chunk; the single remark pays once.
        """
        if size < 0:
            raise ValidationError("size must not be negative")
        if strategy.is_chunked:
            transaction_count = chunk_count_for(size, self._settings.chunk_size)
        else:
            transaction_count = 1

        cost = self._settings.base_cost * transaction_count * _COST_MULTIPLIERS[strategy]
        return CostEstimate(
            strategy=strategy,
            transaction_count=transaction_count,
            estimated_cost=round(cost, 6),
            currency=self._settings.currency,
        )
