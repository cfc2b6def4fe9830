"""
CredVault Runtime
=================

Builds and owns every component of the credential engine.

Usage:
    from credvault.runtime import CredentialVault

    vault = CredentialVault.from_settings(settings)
    await vault.start()
    try:
        credential = await vault.credentials.create_credential(issuer, holder, request)
    finally:
        await vault.close()

Version: 0.1.0
"""

from typing import Any

from credvault import __version__
from credvault.blockchain import (
    ChainAnchorService,
    LedgerClient,
    NonceSequencer,
    TransactionMonitor,
    create_ledger_client,
)
from credvault.config import Settings, get_settings
from credvault.credentials import (
    CredentialStore,
    ExpirySweeper,
    HybridCredentialService,
    IntegrityVerifier,
)
from credvault.crypto import EncryptionEnvelope
from credvault.database import DatabaseClient
from credvault.logging import get_logger, setup_logging
from credvault.models.common import HealthResponse
from credvault.models.credential import StorageType
from credvault.storage import BlobGateway, create_blob_gateway


logger = get_logger(__name__)


class CredentialVault:
    """Wiring of store, blob gateway, ledger, monitor and orchestrator."""

    def __init__(
        self,
        settings: Settings,
        db: DatabaseClient,
        envelope: EncryptionEnvelope,
        blob_gateway: BlobGateway,
        ledger: LedgerClient,
    ) -> None:
        self.settings = settings
        self.db = db
        self.envelope = envelope
        self.blob_gateway = blob_gateway
        self.ledger = ledger

        self.store = CredentialStore(db, envelope, settings.credentials)
        self.sequencer = NonceSequencer(ledger)
        self.monitor = TransactionMonitor(ledger, settings.monitor)
        self.anchor = ChainAnchorService(
            ledger,
            envelope,
            self.sequencer,
            settings.anchor,
            monitor=self.monitor,
            await_finality=settings.monitor.await_finality,
        )
        self.verifier = IntegrityVerifier(self.store, blob_gateway, self.anchor)
        self.credentials = HybridCredentialService(
            self.store,
            blob_gateway,
            self.anchor,
            verifier=self.verifier,
            default_storage=StorageType(settings.credentials.default_storage),
        )
        self.sweeper = ExpirySweeper(self.store, settings.credentials.sweep_interval_seconds)

        self._started = False
        self._sweeping = False

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "CredentialVault":
        """Build every component from configuration."""
        settings = settings or get_settings()
        return cls(
            settings=settings,
            db=DatabaseClient.from_settings(settings.database),
            envelope=EncryptionEnvelope.from_settings(settings.encryption),
            blob_gateway=create_blob_gateway(settings.ipfs),
            ledger=create_ledger_client(settings.blockchain),
        )

    @property
    def started(self) -> bool:
        return self._started

    async def start(self, run_sweeper: bool = True) -> None:
        """Connect the database and ledger, create tables, start the sweeper."""
        if self._started:
            return

        setup_logging(self.settings.log_level.value, self.settings.json_logs)
        await self.db.connect()
        await self.db.create_all()
        await self.ledger.connect()
        if run_sweeper:
            self.sweeper.start()
        self._sweeping = run_sweeper

        self._started = True
        logger.info(
            "credvault_started",
            environment=self.settings.environment.value,
            ledger=self.ledger.mode.value,
            blob_store=self.blob_gateway.name,
        )

    async def close(self) -> None:
        """Stop background work and release every connection."""
        await self.sweeper.stop()
        stopped = await self.monitor.shutdown()
        await self.ledger.disconnect()
        await self.blob_gateway.close()
        await self.db.close()

        self._started = False
        self._sweeping = False
        logger.info("credvault_stopped", monitors_stopped=stopped)

    async def health_check(self) -> HealthResponse:
        components: dict[str, dict[str, Any]] = {
            "database": await self.db.health_check(),
            "blob_store": await self.blob_gateway.health_check(),
            "ledger": await self.ledger.health_check(),
            "monitor": {
                "status": "healthy",
                "active_monitors": len(self.monitor.active_monitors()),
            },
            "sweeper": {
                "status": "degraded" if self._sweeping and not self.sweeper.running else "healthy",
                "running": self.sweeper.running,
            },
        }

        all_healthy = all(c.get("status") == "healthy" for c in components.values())
        return HealthResponse(
            status="healthy" if all_healthy else "degraded",
            version=__version__,
            components=components,
        )
