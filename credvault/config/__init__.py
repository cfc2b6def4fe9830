"""
Configuration Module
====================

Centralized configuration management using Pydantic Settings.
Loads from environment variables with type validation and defaults.

Usage:
    from credvault.config import settings

    print(settings.environment)
    print(settings.anchor.chunk_size)
"""

from credvault.config.settings import (
    AnchorSettings,
    BlobStoreMode,
    BlockchainMode,
    BlockchainSettings,
    CredentialSettings,
    DatabaseSettings,
    EncryptionSettings,
    Environment,
    IPFSSettings,
    LogLevel,
    MonitorSettings,
    Settings,
    get_settings,
)


# Global settings instance (singleton)
settings = get_settings()

__all__ = [
    "Settings",
    "get_settings",
    "settings",
    "Environment",
    "LogLevel",
    "BlockchainMode",
    "BlobStoreMode",
    "DatabaseSettings",
    "EncryptionSettings",
    "IPFSSettings",
    "BlockchainSettings",
    "AnchorSettings",
    "MonitorSettings",
    "CredentialSettings",
]
