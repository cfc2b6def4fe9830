"""
Error Taxonomy
==============

Exceptions raised by the credential storage engine.

Tier-local failures during writes are degraded by the orchestrator; only
ValidationError on write input and exhaustion of every tier on read reach
the caller.

Version: 0.1.0
"""


class CredVaultError(Exception):
    """Base class for all credential engine errors."""


class ValidationError(CredVaultError):
    """Malformed, oversized or forbidden request payload."""


class NotFoundError(ValidationError):
    """Referenced record does not exist."""


class EncryptionError(CredVaultError):
    """Envelope could not be produced or opened."""


class IntegrityError(CredVaultError):
    """Hash or reference mismatch between what was issued and what was read."""


class EnvelopeIntegrityError(EncryptionError, IntegrityError):
    """Envelope is forged, truncated or was sealed under another key."""


class StorageError(CredVaultError):
    """A storage tier is unreachable or rejected the operation."""


class ChainError(CredVaultError):
    """Ledger RPC failure, nonce conflict or dispatch error."""


class MonitorTimeoutError(CredVaultError, TimeoutError):
    """Transaction monitoring exhausted its retries or wall-clock budget."""
