"""
Unit tests for the credential store.
"""

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from sqlalchemy import select

from credvault.credentials import CredentialStore, ExpirySweeper
from credvault.crypto import EncryptionEnvelope, canonical_json, sha256_hex
from credvault.database import CredentialModel, DatabaseClient
from credvault.errors import IntegrityError, NotFoundError, StorageError, ValidationError
from credvault.models.credential import (
    AccessLevel,
    CreateCredentialRequest,
    CreateCredentialTypeRequest,
    CreateIssuanceRequest,
    CredentialStatus,
    CredentialType,
    IssuanceStatus,
    ShareCredentialRequest,
    StorageType,
    VerificationStatus,
    VerificationType,
    VerifyCredentialRequest,
)

ISSUER = "5IssuerAddress000000000000000000000000000000000"
HOLDER = "5HolderAddress000000000000000000000000000000000"
VERIFIER = "5VerifierAddress00000000000000000000000000000000"

PAST = datetime.now(UTC) - timedelta(days=1)
FUTURE = datetime.now(UTC) + timedelta(days=30)


def _request(
    credential_type: CredentialType,
    data: dict[str, Any],
    **kwargs: Any,
) -> CreateCredentialRequest:
    return CreateCredentialRequest(
        credential_type_id=credential_type.id,
        credential_data=data,
        issuer_name="Example University",
        **kwargs,
    )


class TestCredentialTypes:
    """Tests for credential type management."""

    @pytest.mark.asyncio
    async def test_create_and_list(
        self,
        store: CredentialStore,
        credential_type: CredentialType,
    ) -> None:
        fetched = await store.get_credential_type(credential_type.id)

        assert fetched is not None
        assert fetched.name == "UniversityDegree"
        assert fetched.required_fields == ["degree", "institution"]
        assert [t.id for t in await store.list_credential_types()] == [credential_type.id]

    @pytest.mark.asyncio
    async def test_deactivate(self, store: CredentialStore, credential_type: CredentialType) -> None:
        retired = await store.deactivate_credential_type(credential_type.id)

        assert retired.is_active is False
        assert await store.get_credential_type(credential_type.id) is None
        assert await store.get_credential_type(credential_type.id, include_inactive=True)
        assert await store.list_credential_types() == []
        assert len(await store.list_credential_types(include_inactive=True)) == 1

    @pytest.mark.asyncio
    async def test_invalid_issuer_pattern(self, store: CredentialStore) -> None:
        with pytest.raises(ValidationError, match="issuer pattern"):
            await store.create_credential_type(
                CreateCredentialTypeRequest(name="Broken", issuer_pattern="([unclosed")
            )

    @pytest.mark.asyncio
    async def test_deactivate_unknown(self, store: CredentialStore) -> None:
        with pytest.raises(NotFoundError):
            await store.deactivate_credential_type("missing")


class TestCredentials:
    """Tests for issuing and reading credentials."""

    @pytest.mark.asyncio
    async def test_create_encrypts_and_hashes(
        self,
        store: CredentialStore,
        credential_type: CredentialType,
        degree_data: dict[str, Any],
    ) -> None:
        """Test that only the envelope is stored and the hash covers the plaintext."""
        credential = await store.create_credential(
            ISSUER, HOLDER, _request(credential_type, degree_data)
        )

        assert credential.status == CredentialStatus.ACTIVE
        assert credential.storage_type == StorageType.LOCAL
        assert credential.has_local_copy
        stored = await store.get_envelope(credential.id)
        assert stored is not None
        assert stored.startswith("v1.")
        assert "Example University" not in stored
        assert stored not in credential.model_dump_json()
        assert credential.credential_hash == sha256_hex(canonical_json(degree_data))
        assert credential.issued_at.tzinfo is not None

        assert await store.get_credential_data(credential.id) == degree_data

    @pytest.mark.asyncio
    async def test_get_user_credentials(
        self,
        store: CredentialStore,
        credential_type: CredentialType,
        degree_data: dict[str, Any],
    ) -> None:
        first = await store.create_credential(ISSUER, HOLDER, _request(credential_type, degree_data))
        second = await store.create_credential(
            ISSUER, HOLDER, _request(credential_type, {**degree_data, "degree": "MSc"})
        )
        await store.create_credential(ISSUER, "5SomeoneElse", _request(credential_type, degree_data))

        credentials = await store.get_user_credentials(HOLDER)

        assert {c.id for c in credentials} == {first.id, second.id}
        await store.revoke_credential(first.id, ISSUER)
        active = await store.get_user_credentials(HOLDER, status=CredentialStatus.ACTIVE)
        assert [c.id for c in active] == [second.id]

    @pytest.mark.asyncio
    async def test_unknown_credential(self, store: CredentialStore) -> None:
        assert await store.get_credential("missing") is None
        assert await store.get_credential_data("missing") is None
        with pytest.raises(NotFoundError):
            await store.get_envelope("missing")

    @pytest.mark.asyncio
    async def test_tampered_ciphertext_detected(
        self,
        store: CredentialStore,
        db: DatabaseClient,
        envelope: EncryptionEnvelope,
        credential_type: CredentialType,
        degree_data: dict[str, Any],
    ) -> None:
        """Test that a swapped envelope fails the issuance hash check."""
        credential = await store.create_credential(
            ISSUER, HOLDER, _request(credential_type, degree_data)
        )
        async with db.session() as session:
            row = await session.get(CredentialModel, credential.id)
            row.credential_data = envelope.encrypt_json({**degree_data, "gpa": 4.0})

        with pytest.raises(IntegrityError):
            await store.get_credential_data(credential.id)

    @pytest.mark.asyncio
    async def test_blob_only_credential_has_no_local_data(
        self,
        store: CredentialStore,
        credential_type: CredentialType,
        degree_data: dict[str, Any],
    ) -> None:
        envelope, credential_hash = store.seal(degree_data)
        credential = await store.insert_credential(
            ISSUER,
            HOLDER,
            _request(credential_type, degree_data),
            credential_hash=credential_hash,
            envelope=None,
            storage_type=StorageType.IPFS,
            blob_hash="QmBlob",
        )

        assert not credential.has_local_copy
        assert await store.get_envelope(credential.id) is None
        with pytest.raises(StorageError):
            await store.get_credential_data(credential.id)

    @pytest.mark.asyncio
    async def test_insert_requires_blob_hash(
        self,
        store: CredentialStore,
        credential_type: CredentialType,
        degree_data: dict[str, Any],
    ) -> None:
        envelope, credential_hash = store.seal(degree_data)

        with pytest.raises(ValidationError):
            await store.insert_credential(
                ISSUER,
                HOLDER,
                _request(credential_type, degree_data),
                credential_hash=credential_hash,
                envelope=envelope,
                storage_type=StorageType.HYBRID,
            )


class TestValidation:
    """Tests for request validation against credential types."""

    @pytest.mark.asyncio
    async def test_missing_required_field(
        self,
        store: CredentialStore,
        credential_type: CredentialType,
    ) -> None:
        with pytest.raises(ValidationError, match="institution"):
            await store.create_credential(
                ISSUER, HOLDER, _request(credential_type, {"degree": "BSc"})
            )

    @pytest.mark.asyncio
    async def test_unknown_type(self, store: CredentialStore) -> None:
        request = CreateCredentialRequest(credential_type_id="missing", credential_data={})

        with pytest.raises(NotFoundError):
            await store.create_credential(ISSUER, HOLDER, request)

    @pytest.mark.asyncio
    async def test_retired_type(
        self,
        store: CredentialStore,
        credential_type: CredentialType,
        degree_data: dict[str, Any],
    ) -> None:
        await store.deactivate_credential_type(credential_type.id)

        with pytest.raises(ValidationError, match="retired"):
            await store.create_credential(ISSUER, HOLDER, _request(credential_type, degree_data))

    @pytest.mark.asyncio
    async def test_issuer_pattern(self, store: CredentialStore) -> None:
        restricted = await store.create_credential_type(
            CreateCredentialTypeRequest(name="GovID", issuer_pattern=r"5Gov\w+")
        )
        request = _request(restricted, {"id": "123"})

        with pytest.raises(ValidationError, match="may not issue"):
            await store.create_credential(ISSUER, HOLDER, request)

        credential = await store.create_credential("5GovAuthority", HOLDER, request)
        assert credential.issuer_address == "5GovAuthority"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "value",
        ["<script>alert(1)</script>", "javascript:void(0)", "eval (payload)"],
    )
    async def test_forbidden_content(
        self,
        store: CredentialStore,
        credential_type: CredentialType,
        value: str,
    ) -> None:
        data = {"degree": value, "institution": "Example University"}

        with pytest.raises(ValidationError, match="forbidden"):
            await store.create_credential(ISSUER, HOLDER, _request(credential_type, data))

    @pytest.mark.asyncio
    async def test_payload_size_limit(
        self,
        store: CredentialStore,
        credential_type: CredentialType,
    ) -> None:
        data = {"degree": "x" * 5000, "institution": "Example University"}

        with pytest.raises(ValidationError, match="limit"):
            await store.create_credential(ISSUER, HOLDER, _request(credential_type, data))


class TestRevocation:
    """Tests for credential revocation."""

    @pytest.mark.asyncio
    async def test_revoke_active_credential(
        self,
        store: CredentialStore,
        credential_type: CredentialType,
        degree_data: dict[str, Any],
    ) -> None:
        """Test that revoking flips the status and records the revocation."""
        credential = await store.create_credential(
            ISSUER, HOLDER, _request(credential_type, degree_data)
        )

        revocation = await store.revoke_credential(
            credential.id, ISSUER, reason="Issued in error", signature="0xsig"
        )

        assert revocation.credential_id == credential.id
        assert revocation.revocation_reason == "Issued in error"
        revoked = await store.get_credential(credential.id)
        assert revoked is not None
        assert revoked.status == CredentialStatus.REVOKED
        assert revoked.is_active is False
        assert len(await store.get_credential_revocations(credential.id)) == 1

        # Data stays readable, consumers see the status
        assert await store.get_credential_data(credential.id) == degree_data

    @pytest.mark.asyncio
    async def test_revoked_is_terminal(
        self,
        store: CredentialStore,
        credential_type: CredentialType,
        degree_data: dict[str, Any],
    ) -> None:
        credential = await store.create_credential(
            ISSUER, HOLDER, _request(credential_type, degree_data)
        )
        await store.revoke_credential(credential.id, ISSUER)

        with pytest.raises(ValidationError, match="revoked"):
            await store.revoke_credential(credential.id, ISSUER)
        assert len(await store.get_credential_revocations(credential.id)) == 1

    @pytest.mark.asyncio
    async def test_revoke_unknown(self, store: CredentialStore) -> None:
        with pytest.raises(NotFoundError):
            await store.revoke_credential("missing", ISSUER)


class TestSharesAndVerifications:
    """Tests for shares and verification records."""

    @pytest.mark.asyncio
    async def test_share_lifecycle(
        self,
        store: CredentialStore,
        credential_type: CredentialType,
        degree_data: dict[str, Any],
    ) -> None:
        credential = await store.create_credential(
            ISSUER, HOLDER, _request(credential_type, degree_data)
        )

        share = await store.share_credential(
            HOLDER,
            ShareCredentialRequest(
                credential_id=credential.id,
                shared_with_address=VERIFIER,
                access_level=AccessLevel.READ,
            ),
        )

        assert share.permissions == ["read"]
        assert [s.id for s in await store.get_shared_credentials(VERIFIER)] == [share.id]

        assert await store.revoke_share(share.id, owner_address="5NotTheOwner") is False
        assert await store.revoke_share(share.id, owner_address=HOLDER) is True
        assert await store.revoke_share(share.id) is False
        assert await store.get_shared_credentials(VERIFIER) == []

    @pytest.mark.asyncio
    async def test_only_holder_can_share(
        self,
        store: CredentialStore,
        credential_type: CredentialType,
        degree_data: dict[str, Any],
    ) -> None:
        credential = await store.create_credential(
            ISSUER, HOLDER, _request(credential_type, degree_data)
        )

        with pytest.raises(ValidationError):
            await store.share_credential(
                VERIFIER,
                ShareCredentialRequest(credential_id=credential.id, shared_with_address=VERIFIER),
            )

    @pytest.mark.asyncio
    async def test_verification_history(
        self,
        store: CredentialStore,
        credential_type: CredentialType,
        degree_data: dict[str, Any],
    ) -> None:
        credential = await store.create_credential(
            ISSUER, HOLDER, _request(credential_type, degree_data)
        )

        first = await store.verify_credential(
            VERIFIER,
            VerifyCredentialRequest(
                credential_id=credential.id,
                verification_type=VerificationType.SIGNATURE,
                verification_signature="0xsig",
            ),
        )
        await store.verify_credential(
            VERIFIER,
            VerifyCredentialRequest(
                credential_id=credential.id,
                verification_type=VerificationType.MANUAL,
                status=VerificationStatus.FAILED,
                notes="Signature key unknown",
            ),
        )

        history = await store.get_credential_verifications(credential.id)
        assert len(history) == 2
        assert first.status == VerificationStatus.VERIFIED
        assert {v.verification_type for v in history} == {
            VerificationType.SIGNATURE,
            VerificationType.MANUAL,
        }

        with pytest.raises(NotFoundError):
            await store.verify_credential(
                VERIFIER,
                VerifyCredentialRequest(
                    credential_id="missing", verification_type=VerificationType.PROOF
                ),
            )


class TestIssuanceRequests:
    """Tests for the issuance request workflow."""

    @pytest.mark.asyncio
    async def test_approve(self, store: CredentialStore, credential_type: CredentialType) -> None:
        request = await store.create_issuance_request(
            HOLDER,
            CreateIssuanceRequest(
                issuer_address=ISSUER,
                credential_type_id=credential_type.id,
                request_data={"degree": "BSc"},
            ),
        )

        assert request.status == IssuanceStatus.PENDING
        assert [r.id for r in await store.get_pending_issuance_requests(ISSUER)] == [request.id]

        approved = await store.approve_issuance_request(request.id, ISSUER, "credential-1")

        assert approved.status == IssuanceStatus.ISSUED
        assert approved.issued_credential_id == "credential-1"
        assert approved.approved_at is not None
        assert await store.get_pending_issuance_requests(ISSUER) == []

        with pytest.raises(ValidationError, match="not pending"):
            await store.reject_issuance_request(request.id, ISSUER, "too late")

    @pytest.mark.asyncio
    async def test_reject(self, store: CredentialStore, credential_type: CredentialType) -> None:
        request = await store.create_issuance_request(
            HOLDER,
            CreateIssuanceRequest(issuer_address=ISSUER, credential_type_id=credential_type.id),
        )

        with pytest.raises(ValidationError, match="addressed issuer"):
            await store.reject_issuance_request(request.id, VERIFIER, "not mine")

        rejected = await store.reject_issuance_request(request.id, ISSUER, "Insufficient evidence")
        assert rejected.status == IssuanceStatus.REJECTED
        assert rejected.rejection_reason == "Insufficient evidence"

    @pytest.mark.asyncio
    async def test_unknown_request(self, store: CredentialStore) -> None:
        with pytest.raises(NotFoundError):
            await store.approve_issuance_request("missing", ISSUER)

    @pytest.mark.asyncio
    async def test_unknown_type(self, store: CredentialStore) -> None:
        with pytest.raises(NotFoundError):
            await store.create_issuance_request(
                HOLDER,
                CreateIssuanceRequest(issuer_address=ISSUER, credential_type_id="missing"),
            )


class TestExpirySweep:
    """Tests for cleanup_expired and the background sweeper."""

    async def _seed_expired(
        self,
        store: CredentialStore,
        credential_type: CredentialType,
        degree_data: dict[str, Any],
    ) -> str:
        expired = await store.create_credential(
            ISSUER, HOLDER, _request(credential_type, degree_data, expires_at=PAST)
        )
        await store.create_credential(
            ISSUER, HOLDER, _request(credential_type, degree_data, expires_at=FUTURE)
        )
        await store.share_credential(
            HOLDER,
            ShareCredentialRequest(
                credential_id=expired.id, shared_with_address=VERIFIER, expires_at=PAST
            ),
        )
        await store.verify_credential(
            VERIFIER,
            VerifyCredentialRequest(
                credential_id=expired.id,
                verification_type=VerificationType.AUTOMATED,
                expires_at=PAST,
            ),
        )
        await store.create_issuance_request(
            HOLDER,
            CreateIssuanceRequest(
                issuer_address=ISSUER, credential_type_id=credential_type.id, expires_at=PAST
            ),
        )
        return expired.id

    @pytest.mark.asyncio
    async def test_sweep_expires_everything_past_due(
        self,
        store: CredentialStore,
        credential_type: CredentialType,
        degree_data: dict[str, Any],
    ) -> None:
        expired_id = await self._seed_expired(store, credential_type, degree_data)

        result = await store.cleanup_expired()

        assert result.credentials == 1
        assert result.shares == 1
        assert result.verifications == 1
        assert result.issuance_requests == 1
        assert result.total == 4

        credential = await store.get_credential(expired_id)
        assert credential is not None
        assert credential.status == CredentialStatus.EXPIRED
        history = await store.get_credential_verifications(expired_id)
        assert history[0].status == VerificationStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_sweep_is_idempotent(
        self,
        store: CredentialStore,
        db: DatabaseClient,
        credential_type: CredentialType,
        degree_data: dict[str, Any],
    ) -> None:
        """Test that a second sweep changes nothing."""
        await self._seed_expired(store, credential_type, degree_data)

        await store.cleanup_expired()
        async with db.session() as session:
            after_first = [
                (row.id, row.status)
                for row in (await session.execute(select(CredentialModel))).scalars()
            ]

        second = await store.cleanup_expired()
        async with db.session() as session:
            after_second = [
                (row.id, row.status)
                for row in (await session.execute(select(CredentialModel))).scalars()
            ]

        assert second.total == 0
        assert sorted(after_first) == sorted(after_second)

    @pytest.mark.asyncio
    async def test_revoked_not_expired(
        self,
        store: CredentialStore,
        credential_type: CredentialType,
        degree_data: dict[str, Any],
    ) -> None:
        credential = await store.create_credential(
            ISSUER, HOLDER, _request(credential_type, degree_data, expires_at=PAST)
        )
        await store.revoke_credential(credential.id, ISSUER)

        await store.cleanup_expired()

        revoked = await store.get_credential(credential.id)
        assert revoked is not None
        assert revoked.status == CredentialStatus.REVOKED

    @pytest.mark.asyncio
    async def test_sweeper_task(
        self,
        store: CredentialStore,
        credential_type: CredentialType,
        degree_data: dict[str, Any],
    ) -> None:
        credential = await store.create_credential(
            ISSUER, HOLDER, _request(credential_type, degree_data, expires_at=PAST)
        )
        sweeper = ExpirySweeper(store, interval_seconds=3600)

        sweeper.start()
        assert sweeper.running
        for _ in range(50):
            current = await store.get_credential(credential.id)
            if current is not None and current.status == CredentialStatus.EXPIRED:
                break
            await asyncio.sleep(0.01)
        await sweeper.stop()

        assert not sweeper.running
        current = await store.get_credential(credential.id)
        assert current is not None
        assert current.status == CredentialStatus.EXPIRED


class TestStorageStats:
    """Tests for storage statistics."""

    @pytest.mark.asyncio
    async def test_counts(
        self,
        store: CredentialStore,
        credential_type: CredentialType,
        degree_data: dict[str, Any],
    ) -> None:
        await store.create_credential(ISSUER, HOLDER, _request(credential_type, degree_data))
        envelope, credential_hash = store.seal(degree_data)
        hybrid = await store.insert_credential(
            ISSUER,
            HOLDER,
            _request(credential_type, degree_data),
            credential_hash=credential_hash,
            envelope=envelope,
            storage_type=StorageType.HYBRID,
            blob_hash="QmBlob",
        )
        await store.set_chain_reference(hybrid.id, "0xblock", "0xextrinsic")

        stats = await store.get_storage_stats()

        assert stats.total == 2
        assert stats.local == 1
        assert stats.hybrid == 1
        assert stats.ipfs == 0
        assert stats.chain_anchored == 1
