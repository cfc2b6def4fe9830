"""
Crypto Module
=============

Encryption envelope and hashing helpers for credential payloads.

Usage:
    from credvault.crypto import EncryptionEnvelope, canonical_json, sha256_hex

    envelope = EncryptionEnvelope.from_settings(settings.encryption)
    sealed = envelope.encrypt_json({"degree": "BSc"})
    data = envelope.decrypt_json(sealed)
"""

from credvault.crypto.envelope import (
    EncryptionEnvelope,
    canonical_json,
    load_key,
    sha256_hex,
)

__all__ = [
    "EncryptionEnvelope",
    "canonical_json",
    "load_key",
    "sha256_hex",
]
