"""
CredVault
=========

Hybrid credential storage and integrity engine.

Credentials are encrypted once and kept in a local relational store, a
content-addressed blob store, or both, with an optional tamper-evident
reference anchored on a Substrate ledger.

Modules:
    - config: Configuration management with Pydantic Settings
    - logging: Structured logging with structlog
    - crypto: AES-GCM encryption envelope
    - database: SQLAlchemy async store
    - storage: Blob gateway (IPFS / in-memory)
    - blockchain: Ledger client, chain anchoring and transaction monitoring
    - credentials: Credential store, hybrid orchestrator and integrity verifier
    - models: Shared Pydantic models

Version: 0.1.0
"""

__version__ = "0.1.0"
__author__ = "CredVault Team"

from credvault.config import settings
from credvault.logging import get_logger, setup_logging

__all__ = [
    "settings",
    "get_logger",
    "setup_logging",
    "__version__",
]
