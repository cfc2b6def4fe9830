"""
Test Configuration
==================

Pytest fixtures for CredVault tests.
"""

import os
from collections.abc import AsyncGenerator
from typing import Any

import pytest
import pytest_asyncio

# Set test environment
os.environ["ENVIRONMENT"] = "testing"
os.environ["BLOCKCHAIN_MODE"] = "mock"
os.environ["IPFS_MODE"] = "mock"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

from credvault.blockchain import (  # noqa: E402
    ChainAnchorService,
    MockLedgerClient,
    NonceSequencer,
    TransactionMonitor,
)
from credvault.config import AnchorSettings, CredentialSettings, MonitorSettings  # noqa: E402
from credvault.credentials import CredentialStore, HybridCredentialService  # noqa: E402
from credvault.crypto import EncryptionEnvelope  # noqa: E402
from credvault.database import DatabaseClient  # noqa: E402
from credvault.models.credential import (  # noqa: E402
    CreateCredentialTypeRequest,
    CredentialType,
)
from credvault.storage import InMemoryBlobStore  # noqa: E402

TEST_KEY = bytes.fromhex("000102030405060708090a0b0c0d0e0f101112131415161718191a1b1c1d1e1f")
ISSUER = "5IssuerAddress000000000000000000000000000000000"
HOLDER = "5HolderAddress000000000000000000000000000000000"


@pytest.fixture
def envelope() -> EncryptionEnvelope:
    """Envelope with a fixed test key."""
    return EncryptionEnvelope(TEST_KEY, key_id="v1")


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[DatabaseClient, None]:
    """Fresh in-memory SQLite database per test."""
    client = DatabaseClient("sqlite+aiosqlite:///:memory:")
    await client.create_all()
    yield client
    await client.close()


@pytest.fixture
def credential_settings() -> CredentialSettings:
    return CredentialSettings(max_payload_bytes=4096)


@pytest.fixture
def store(
    db: DatabaseClient,
    envelope: EncryptionEnvelope,
    credential_settings: CredentialSettings,
) -> CredentialStore:
    return CredentialStore(db, envelope, credential_settings)


@pytest_asyncio.fixture
async def credential_type(store: CredentialStore) -> CredentialType:
    """A degree credential type requiring `degree` and `institution`."""
    return await store.create_credential_type(
        CreateCredentialTypeRequest(
            name="UniversityDegree",
            description="Academic degree",
            required_fields=["degree", "institution"],
            optional_fields=["gpa"],
        ),
        created_by=ISSUER,
    )


@pytest.fixture
def ledger() -> MockLedgerClient:
    """Create a fresh mock ledger for each test."""
    client = MockLedgerClient()
    client.clear_all()
    return client


@pytest.fixture
def blob_store() -> InMemoryBlobStore:
    store = InMemoryBlobStore()
    store.clear_all()
    return store


@pytest.fixture
def monitor_settings() -> MonitorSettings:
    """Fast polling so tests never wait on block time."""
    return MonitorSettings(
        max_retries=5,
        retry_interval_seconds=0.01,
        timeout_seconds=5.0,
        lookback_blocks=10,
    )


@pytest.fixture
def anchor_settings() -> AnchorSettings:
    return AnchorSettings(
        chunk_size=1000,
        scan_window_blocks=50,
        max_retries=3,
        retry_backoff_seconds=0,
        submit_timeout_seconds=5.0,
    )


@pytest.fixture
def monitor(ledger: MockLedgerClient, monitor_settings: MonitorSettings) -> TransactionMonitor:
    return TransactionMonitor(ledger, monitor_settings)


@pytest.fixture
def anchor(
    ledger: MockLedgerClient,
    envelope: EncryptionEnvelope,
    anchor_settings: AnchorSettings,
    monitor: TransactionMonitor,
) -> ChainAnchorService:
    return ChainAnchorService(
        ledger,
        envelope,
        NonceSequencer(ledger),
        anchor_settings,
        monitor=monitor,
    )


@pytest.fixture
def service(
    store: CredentialStore,
    blob_store: InMemoryBlobStore,
    anchor: ChainAnchorService,
) -> HybridCredentialService:
    return HybridCredentialService(store, blob_store, anchor)


@pytest.fixture
def degree_data() -> dict[str, Any]:
    """Sample credential payload."""
    return {
        "degree": "BSc Computer Science",
        "institution": "Example University",
        "gpa": 3.8,
        "honours": ["cum laude"],
    }
