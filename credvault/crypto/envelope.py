"""
Encryption Envelope
===================

AES-256-GCM sealing of credential payloads into transportable strings.

Envelope layout:

    <key_id>.<base64(iv || tag || ciphertext)>

The key id prefix selects the key used to open the envelope. Envelopes
without a prefix are read as legacy envelopes sealed with the primary key.
The base64 alphabet and the prefix never contain ":" so envelopes can be
embedded in colon-delimited remark markers.

Version: 0.1.0
"""

import base64
import binascii
import hashlib
import json
import os
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from credvault.errors import EncryptionError, EnvelopeIntegrityError
from credvault.logging import get_logger


logger = get_logger(__name__)

KEY_LENGTH = 32  # 256 bits
IV_LENGTH = 12  # 96 bits for GCM
TAG_LENGTH = 16
KEY_ID_SEPARATOR = "."


def load_key(material: str) -> bytes:
    """
    Turn configured key material into a 256-bit key.

    Accepts 64 hex characters, base64 of exactly 32 bytes, or a passphrase
    of at least 32 characters (hashed with SHA-256).

    Raises:
        EncryptionError: If the material is too weak to use
    """
    material = material.strip()
    if len(material) == 2 * KEY_LENGTH:
        try:
            return bytes.fromhex(material)
        except ValueError:
            pass
    try:
        decoded = base64.b64decode(material, validate=True)
        if len(decoded) == KEY_LENGTH:
            return decoded
    except (binascii.Error, ValueError):
        pass
    if len(material) < KEY_LENGTH:
        raise EncryptionError(f"Encryption key must be at least {KEY_LENGTH} characters long")
    return hashlib.sha256(material.encode("utf-8")).digest()


def canonical_json(data: Any) -> str:
    """Serialize a payload the same way every time it is hashed or sealed."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def sha256_hex(data: str) -> str:
    """SHA-256 hex digest of a UTF-8 string."""
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


class EncryptionEnvelope:
    """
    Authenticated symmetric encryption of arbitrary payloads.

    One instance holds the process-wide key ring. The primary key seals new
    envelopes; additional keys registered with `add_key` can still open
    envelopes sealed before a rotation.
    """

    def __init__(
        self,
        key: bytes,
        key_id: str = "v1",
        associated_data: str | None = "credvault",
    ) -> None:
        if len(key) != KEY_LENGTH:
            raise EncryptionError(f"Encryption key must be {KEY_LENGTH} bytes")
        if not key_id or KEY_ID_SEPARATOR in key_id or ":" in key_id:
            raise EncryptionError(f"Invalid key id: {key_id!r}")

        self._primary_key_id = key_id
        self._keys: dict[str, AESGCM] = {key_id: AESGCM(key)}
        self._aad = associated_data.encode("utf-8") if associated_data else None

    @classmethod
    def from_settings(cls, encryption_settings: Any) -> "EncryptionEnvelope":
        """Build an envelope from `EncryptionSettings`."""
        return cls(
            key=load_key(encryption_settings.key.get_secret_value()),
            key_id=encryption_settings.key_id,
            associated_data=encryption_settings.associated_data,
        )

    @property
    def key_id(self) -> str:
        return self._primary_key_id

    def add_key(self, key_id: str, key: bytes) -> None:
        """Register a decryption-only key under its id."""
        if len(key) != KEY_LENGTH:
            raise EncryptionError(f"Encryption key must be {KEY_LENGTH} bytes")
        self._keys[key_id] = AESGCM(key)

    def encrypt(self, plaintext: str) -> str:
        """
        Seal a string.

        Args:
            plaintext: Data to encrypt

        Returns:
            Envelope string with key id prefix
        """
        iv = os.urandom(IV_LENGTH)
        try:
            sealed = self._keys[self._primary_key_id].encrypt(
                iv, plaintext.encode("utf-8"), self._aad
            )
        except Exception as e:
            raise EncryptionError(f"Encryption failed: {e}") from e

        # AESGCM returns ciphertext || tag
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        body = base64.b64encode(iv + tag + ciphertext).decode("ascii")
        return f"{self._primary_key_id}{KEY_ID_SEPARATOR}{body}"

    def decrypt(self, envelope: str) -> str:
        """
        Open an envelope.

        Args:
            envelope: String produced by `encrypt`

        Returns:
            The original plaintext

        Raises:
            EnvelopeIntegrityError: If the envelope is malformed, truncated,
                tampered with or sealed under an unknown key
        """
        if not isinstance(envelope, str) or not envelope:
            raise EnvelopeIntegrityError("Envelope is empty")

        key_id, sep, body = envelope.partition(KEY_ID_SEPARATOR)
        if not sep:
            key_id, body = self._primary_key_id, envelope

        cipher = self._keys.get(key_id)
        if cipher is None:
            raise EnvelopeIntegrityError(f"Unknown envelope key id: {key_id!r}")

        try:
            raw = base64.b64decode(body, validate=True)
        except (binascii.Error, ValueError) as e:
            raise EnvelopeIntegrityError("Envelope is not valid base64") from e

        if len(raw) < IV_LENGTH + TAG_LENGTH:
            raise EnvelopeIntegrityError("Envelope is truncated")

        iv = raw[:IV_LENGTH]
        tag = raw[IV_LENGTH : IV_LENGTH + TAG_LENGTH]
        ciphertext = raw[IV_LENGTH + TAG_LENGTH :]

        try:
            plaintext = cipher.decrypt(iv, ciphertext + tag, self._aad)
        except InvalidTag as e:
            logger.warning("envelope_authentication_failed", key_id=key_id)
            raise EnvelopeIntegrityError("Envelope authentication failed") from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise EnvelopeIntegrityError("Envelope payload is not UTF-8") from e

    def encrypt_json(self, data: Any) -> str:
        """Seal a JSON-serializable payload in canonical form."""
        return self.encrypt(canonical_json(data))

    def decrypt_json(self, envelope: str) -> Any:
        """Open an envelope and parse its JSON payload."""
        plaintext = self.decrypt(envelope)
        try:
            return json.loads(plaintext)
        except json.JSONDecodeError as e:
            raise EncryptionError("Envelope payload is not valid JSON") from e
