"""
Unit tests for structured logging setup.
"""

import structlog

from credvault.crypto import EncryptionEnvelope
from credvault.logging import (
    bind_context,
    bound_context,
    clear_context,
    get_logger,
    setup_logging,
)
from credvault.logging.logger import _censor_secrets, _shorten_opaque_values


class TestProcessors:
    """Tests for the custom structlog processors."""

    def test_sensitive_keys_redacted(self) -> None:
        event = _censor_secrets(
            None,  # type: ignore[arg-type]
            "info",
            {
                "event": "credential_created",
                "credential_id": "abc",
                "credential_data": "v1.ciphertext",
                "settings": {"encryption_key": "00" * 32, "endpoint": "wss://node"},
                "accounts": [{"account_seed": "//Alice", "address": "5Alice"}],
            },
        )

        assert event["credential_id"] == "abc"
        assert event["credential_data"] == "***REDACTED***"
        assert event["settings"]["encryption_key"] == "***REDACTED***"
        assert event["settings"]["endpoint"] == "wss://node"
        assert event["accounts"] == [{"account_seed": "***REDACTED***", "address": "5Alice"}]

    def test_envelopes_and_markers_shortened(self, envelope: EncryptionEnvelope) -> None:
        sealed = envelope.encrypt_json({"degree": "BSc", "institution": "Example University"})
        marker = "CREDENTIAL_DATA:5Holder:" + "ab" * 32 + ":0:1:" + "x" * 200

        event = _shorten_opaque_values(
            None,  # type: ignore[arg-type]
            "info",
            {"event": "chain_remark", "envelope": sealed, "remark": marker, "note": "short"},
        )

        assert event["envelope"].startswith(sealed[:48])
        assert event["envelope"].endswith(f"({len(sealed)} chars)")
        assert event["remark"].endswith(f"({len(marker)} chars)")
        assert event["note"] == "short"


class TestContext:
    """Tests for context binding."""

    def test_bind_and_clear(self) -> None:
        clear_context()
        bind_context(credential_id="abc", user_address="5Holder")

        assert structlog.contextvars.get_contextvars() == {
            "credential_id": "abc",
            "user_address": "5Holder",
        }

        clear_context()
        assert structlog.contextvars.get_contextvars() == {}

    def test_bound_context_is_scoped(self) -> None:
        clear_context()

        with bound_context(tx_hash="0xabc"):
            assert structlog.contextvars.get_contextvars() == {"tx_hash": "0xabc"}

        assert structlog.contextvars.get_contextvars() == {}

    def test_setup_and_log(self) -> None:
        setup_logging("DEBUG", json_logs=True)
        logger = get_logger("credvault.test")

        logger.info("credential_created", credential_id="abc", seed="//Alice")
