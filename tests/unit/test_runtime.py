"""
Unit tests for the CredentialVault runtime wiring.
"""

import asyncio
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio

from credvault.blockchain import MockLedgerClient
from credvault.blockchain.monitor import MONITOR_STOPPED
from credvault.config import (
    AnchorSettings,
    CredentialSettings,
    DatabaseSettings,
    EncryptionSettings,
    MonitorSettings,
    Settings,
)
from credvault.models.chain import TxStatus
from credvault.models.credential import (
    CreateCredentialTypeRequest,
    HybridCredentialRequest,
    StorageType,
)
from credvault.runtime import CredentialVault
from credvault.storage import InMemoryBlobStore

ISSUER = "5IssuerAddress000000000000000000000000000000000"
HOLDER = "5HolderAddress000000000000000000000000000000000"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database=DatabaseSettings(url="sqlite+aiosqlite:///:memory:"),
        encryption=EncryptionSettings(key="00" * 32),
        anchor=AnchorSettings(retry_backoff_seconds=0),
        monitor=MonitorSettings(retry_interval_seconds=0.01, timeout_seconds=5.0),
    )


@pytest_asyncio.fixture
async def vault(settings: Settings) -> AsyncGenerator[CredentialVault, None]:
    vault = CredentialVault.from_settings(settings)
    await vault.start()
    yield vault
    await vault.close()


class TestCredentialVault:
    """Tests for building, starting and stopping the engine."""

    def test_from_settings_uses_mock_backends(self, settings: Settings) -> None:
        vault = CredentialVault.from_settings(settings)

        assert isinstance(vault.ledger, MockLedgerClient)
        assert isinstance(vault.blob_gateway, InMemoryBlobStore)
        assert not vault.started

    @pytest.mark.asyncio
    async def test_health_check(self, vault: CredentialVault) -> None:
        health = await vault.health_check()

        assert vault.started
        assert health.status == "healthy"
        assert health.is_healthy
        assert set(health.components) == {"database", "blob_store", "ledger", "monitor", "sweeper"}
        assert health.components["sweeper"]["running"] is True

    @pytest.mark.asyncio
    async def test_degraded_blob_store(self, vault: CredentialVault) -> None:
        vault.blob_gateway.set_available(False)

        health = await vault.health_check()

        assert health.status == "degraded"
        assert health.components["blob_store"]["status"] == "unhealthy"

    @pytest.mark.asyncio
    async def test_end_to_end(self, vault: CredentialVault) -> None:
        """Test issuing, reading and verifying through the wired engine."""
        credential_type = await vault.store.create_credential_type(
            CreateCredentialTypeRequest(name="Membership", required_fields=["member_id"]),
            created_by=ISSUER,
        )
        data = {"member_id": "M-1042", "tier": "gold"}

        credential = await vault.credentials.create_credential(
            ISSUER,
            HOLDER,
            HybridCredentialRequest(
                credential_type_id=credential_type.id,
                credential_data=data,
                storage_preference=StorageType.HYBRID,
                store_on_chain=True,
            ),
        )

        assert credential.is_anchored
        assert await vault.credentials.get_credential_data(credential.id) == data
        assert (await vault.credentials.verify_credential_integrity(credential.id)).valid

    @pytest.mark.asyncio
    async def test_close_stops_sweeper(self, settings: Settings) -> None:
        vault = CredentialVault.from_settings(settings)
        await vault.start()
        assert vault.sweeper.running

        await vault.close()

        assert not vault.started
        assert not vault.sweeper.running

    @pytest.mark.asyncio
    async def test_start_without_sweeper(self, settings: Settings) -> None:
        vault = CredentialVault.from_settings(settings)
        await vault.start(run_sweeper=False)
        try:
            health = await vault.health_check()
            assert not vault.sweeper.running
            assert health.components["sweeper"]["status"] == "healthy"
        finally:
            await vault.close()

    @pytest.mark.asyncio
    async def test_close_waits_for_monitors(self, settings: Settings) -> None:
        """Test that close ends monitoring sessions before the ledger disconnects."""
        settings = settings.model_copy(
            update={"monitor": MonitorSettings(max_retries=1000, retry_interval_seconds=0.05)}
        )
        vault = CredentialVault.from_settings(settings)
        await vault.start(run_sweeper=False)
        waiter = asyncio.create_task(vault.monitor.monitor("0x" + "ab" * 32))
        await asyncio.sleep(0.02)
        assert len(vault.monitor.active_monitors()) == 1

        await vault.close()

        assert vault.monitor.active_monitors() == []
        status = await asyncio.wait_for(waiter, timeout=2)
        assert status.status == TxStatus.PENDING
        assert status.error == MONITOR_STOPPED

    @pytest.mark.asyncio
    async def test_default_storage_from_settings(self, settings: Settings) -> None:
        settings = settings.model_copy(
            update={"credentials": CredentialSettings(default_storage="local")}
        )
        vault = CredentialVault.from_settings(settings)
        await vault.start(run_sweeper=False)
        try:
            credential_type = await vault.store.create_credential_type(
                CreateCredentialTypeRequest(name="Membership", required_fields=["member_id"]),
                created_by=ISSUER,
            )
            credential = await vault.credentials.create_credential(
                ISSUER,
                HOLDER,
                HybridCredentialRequest(
                    credential_type_id=credential_type.id,
                    credential_data={"member_id": "M-7"},
                ),
            )

            assert credential.storage_type == StorageType.LOCAL
            assert vault.blob_gateway.get_stats()["blobs"] == 0
        finally:
            await vault.close()
