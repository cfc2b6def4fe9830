"""
Substrate Ledger Client
=======================

Ledger client for Substrate chains (Kusama, Westend) built on
substrate-interface.

substrate-interface is synchronous; every RPC runs in a worker thread so
the event loop is never blocked. Install with the `substrate` extra.

Version: 0.1.0
"""

import asyncio
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

# Substrings of node errors that mean the pool refused the extrinsic
_REJECTION_MARKERS = ("Invalid Transaction", "Priority is too low", "outdated", "Stale")


def _decode_remark(value: Any) -> str | None:
    """Remark arguments come back as text, or hex when not valid UTF-8."""
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    text = str(value)
    if text.startswith("0x"):
        try:
            return bytes.fromhex(text[2:]).decode("utf-8")
        except ValueError:
            return text
    return text


def _remarks_of_call(call: dict[str, Any]) -> list[str]:
    """Flatten the remark texts carried by a decoded call, batches included."""
    module = call.get("call_module")
    function = call.get("call_function")
    args = {a.get("name"): a.get("value") for a in call.get("call_args", [])}

    if module == "System" and function in ("remark", "remark_with_event"):
        remark = _decode_remark(args.get("remark"))
        return [remark] if remark is not None else []
    if module == "Utility" and function in ("batch", "batch_all", "force_batch"):
        remarks: list[str] = []
        for inner in args.get("calls") or []:
            remarks.extend(_remarks_of_call(inner))
        return remarks
    return []


class SubstrateLedgerClient(LedgerClient):
    """
    Ledger client for a Substrate node over WebSocket RPC.

    Remarks are submitted with `System.remark_with_event` so they surface
    as `System.Remarked` events that block scans can match.
    """

    def __init__(
        self,
        url: str,
        seed: str,
        crypto_type: str = "sr25519",
        ss58_format: int = 2,
        mode: BlockchainMode = BlockchainMode.TESTNET,
    ) -> None:
        self._url = url
        self._seed = seed
        self._crypto_type = crypto_type
        self._ss58_format = ss58_format
        self._mode = mode

        self._substrate: Any = None
        self._keypair: Any = None
        self._rejections: dict[str, str] = {}

    @property
    def mode(self) -> BlockchainMode:
        return self._mode

    @property
    def account_address(self) -> str:
        if self._keypair is None:
            raise ChainError("Ledger client is not connected")
        return self._keypair.ss58_address

    @property
    def substrate(self) -> Any:
        if self._substrate is None:
            raise ChainError("Ledger client is not connected")
        return self._substrate

    async def connect(self) -> None:
        """Open the RPC connection and load the signing keypair."""
        try:
            from substrateinterface import Keypair, KeypairType, SubstrateInterface
        except ImportError as e:
            raise ChainError(
                "substrate-interface is not installed; install credvault[substrate]"
            ) from e

        if not self._seed:
            raise ChainError("BLOCKCHAIN_ACCOUNT_SEED is required outside mock mode")

        crypto_type = getattr(KeypairType, self._crypto_type.upper())

        try:
            self._substrate = await asyncio.to_thread(
                SubstrateInterface,
                url=self._url,
                ss58_format=self._ss58_format,
            )
            self._keypair = Keypair.create_from_uri(
                self._seed,
                crypto_type=crypto_type,
                ss58_format=self._ss58_format,
            )
        except Exception as e:
            logger.error("substrate_connect_failed", url=self._url, error=str(e))
            raise ChainError(f"Ledger connection failed: {e}") from e

        logger.info(
            "substrate_connected",
            url=self._url,
            chain=self._substrate.chain,
            account=self._keypair.ss58_address,
        )

    async def disconnect(self) -> None:
        if self._substrate is not None:
            await asyncio.to_thread(self._substrate.close)
            self._substrate = None
            logger.info("substrate_disconnected", url=self._url)

    async def health_check(self) -> dict[str, Any]:
        try:
            head = await self.get_latest_block_number()
            return {
                "status": "healthy",
                "mode": self.mode.value,
                "url": self._url,
                "block_number": head,
            }
        except Exception as e:
            logger.error("substrate_health_check_failed", error=str(e))
            return {
                "status": "unhealthy",
                "mode": self.mode.value,
                "error": str(e),
            }

    async def _rpc(self, fn: Any, *args: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except ChainError:
            raise
        except Exception as e:
            raise ChainError(f"Ledger RPC failed: {e}") from e

    # =========================================================================
    # Submission
    # =========================================================================

    def _compose(self, call: LedgerCall) -> Any:
        if isinstance(call, RemarkCall):
            return self.substrate.compose_call(
                call_module="System",
                call_function="remark_with_event",
                call_params={"remark": call.remark},
            )
        if isinstance(call, BatchCall):
            return self.substrate.compose_call(
                call_module="Utility",
                call_function="batch_all",
                call_params={"calls": [self._compose(c) for c in call.calls]},
            )
        raise ChainError(f"Unsupported call: {type(call).__name__}")

    def _sign_and_submit(self, call: LedgerCall, account: str, nonce: int) -> str:
        if account != self._keypair.ss58_address:
            raise ChainError(f"No signing key for account {account}")

        extrinsic = self.substrate.create_signed_extrinsic(
            call=self._compose(call),
            keypair=self._keypair,
            nonce=nonce,
        )
        extrinsic_hash = "0x" + extrinsic.extrinsic_hash.hex()
        try:
            self.substrate.submit_extrinsic(extrinsic, wait_for_inclusion=False)
        except Exception as e:
            message = str(e)
            if any(marker in message for marker in _REJECTION_MARKERS):
                self._rejections[extrinsic_hash] = message
            raise
        return extrinsic_hash

    async def sign_and_send(
        self,
        call: LedgerCall,
        account: str,
        nonce: int,
    ) -> str:
        extrinsic_hash = await self._rpc(self._sign_and_submit, call, account, nonce)
        logger.debug(
            "substrate_extrinsic_submitted",
            extrinsic_hash=extrinsic_hash,
            nonce=nonce,
        )
        return extrinsic_hash

    async def next_nonce(self, account: str) -> int:
        # accountNextIndex includes extrinsics still in the pool
        response = await self._rpc(
            self.substrate.rpc_request, "system_accountNextIndex", [account]
        )
        return int(response["result"])

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_latest_block_number(self) -> int:
        header = await self._rpc(self.substrate.get_block_header)
        return int(header["header"]["number"])

    async def get_block_hash(self, number: int) -> str | None:
        return await self._rpc(self.substrate.get_block_hash, number)

    async def get_block_extrinsics(self, block_hash: str) -> list[str]:
        block = await self._rpc(self.substrate.get_block, block_hash=block_hash)
        if not block:
            return []
        hashes = []
        for extrinsic in block["extrinsics"]:
            value = extrinsic.value or {}
            hashes.append(value.get("extrinsic_hash") or "")
        return hashes

    async def query_events_at(self, block_hash: str) -> list[ChainEvent]:
        records = await self._rpc(self.substrate.get_events, block_hash)

        # Remarked events only carry the remark hash, so pair them with the
        # remark texts decoded from their extrinsic, in call order
        remarks_by_index: dict[int, list[str]] = {}
        if any((r.value.get("event") or {}).get("event_id") == "Remarked" for r in records):
            block = await self._rpc(self.substrate.get_block, block_hash=block_hash)
            for index, extrinsic in enumerate(block["extrinsics"] if block else []):
                remarks_by_index[index] = _remarks_of_call((extrinsic.value or {}).get("call") or {})

        events = []
        cursor: dict[int, int] = {}
        for record in records:
            value = record.value
            event = value.get("event") or {}
            index = value.get("extrinsic_idx")
            chain_event = ChainEvent(
                section=event.get("module_id", ""),
                method=event.get("event_id", ""),
                data=event.get("attributes") if isinstance(event.get("attributes"), dict) else {},
                extrinsic_index=index,
            )
            if chain_event.is_remark and index is not None:
                position = cursor.get(index, 0)
                texts = remarks_by_index.get(index, [])
                if position < len(texts):
                    chain_event.remark = texts[position]
                cursor[index] = position + 1
            events.append(chain_event)
        return events

    async def get_rejection(self, extrinsic_hash: str) -> str | None:
        return self._rejections.get(extrinsic_hash)
