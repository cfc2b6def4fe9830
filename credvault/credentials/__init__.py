"""
Credentials Module
==================

Credential lifecycle, tiered storage and integrity checks.

Usage:
    from credvault.credentials import CredentialStore, HybridCredentialService

    store = CredentialStore(db, envelope, settings.credentials)
    service = HybridCredentialService(store, blob_gateway, anchor)
"""

from credvault.credentials.hybrid import HybridCredentialService
from credvault.credentials.integrity import IntegrityVerifier
from credvault.credentials.store import CredentialStore
from credvault.credentials.sweeper import ExpirySweeper

__all__ = [
    "CredentialStore",
    "HybridCredentialService",
    "IntegrityVerifier",
    "ExpirySweeper",
]
