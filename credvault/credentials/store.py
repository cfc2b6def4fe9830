"""
Credential Store
================

Lifecycle of credential types, credentials, shares, verifications,
revocations and issuance requests in the local relational store.

Credential payloads are canonicalised, hashed and encrypted before they
are persisted. Decryption happens only in `get_credential_data`.

Version: 0.1.0
"""

import re
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, select, update

from credvault.config import CredentialSettings
from credvault.crypto import EncryptionEnvelope, canonical_json, sha256_hex
from credvault.database import (
    CredentialModel,
    CredentialRevocationModel,
    CredentialShareModel,
    CredentialTypeModel,
    CredentialVerificationModel,
    DatabaseClient,
    IssuanceRequestModel,
)
from credvault.errors import IntegrityError, NotFoundError, StorageError, ValidationError
from credvault.logging import get_logger
from credvault.models.credential import (
    CreateCredentialRequest,
    CreateCredentialTypeRequest,
    CreateIssuanceRequest,
    Credential,
    CredentialRevocation,
    CredentialShare,
    CredentialStatus,
    CredentialType,
    CredentialVerification,
    ExpirySweepResult,
    IssuanceRequest,
    IssuanceStatus,
    ShareCredentialRequest,
    StorageStats,
    StorageType,
    VerificationStatus,
    VerifyCredentialRequest,
)

logger = get_logger(__name__)

FORBIDDEN_PATTERNS = [
    re.compile(r"<script", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"eval\s*\(", re.IGNORECASE),
]


def _utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class CredentialStore:
    """
    Local credential persistence.

    Usage:
        store = CredentialStore(db, envelope, settings.credentials)
        credential = await store.create_credential(issuer, holder, request)
        data = await store.get_credential_data(credential.id)
    """

    def __init__(
        self,
        db: DatabaseClient,
        envelope: EncryptionEnvelope,
        settings: CredentialSettings,
    ) -> None:
        self._db = db
        self._envelope = envelope
        self._settings = settings

    # =========================================================================
    # Credential Types
    # =========================================================================

    async def create_credential_type(
        self,
        request: CreateCredentialTypeRequest,
        created_by: str | None = None,
    ) -> CredentialType:
        """Register a credential type."""
        if request.issuer_pattern:
            try:
                re.compile(request.issuer_pattern)
            except re.error as e:
                raise ValidationError(f"Invalid issuer pattern: {e}") from e

        async with self._db.session() as session:
            row = CredentialTypeModel(
                name=request.name,
                description=request.description,
                schema_version=request.schema_version,
                schema_definition=request.schema_definition,
                issuer_pattern=request.issuer_pattern,
                required_fields=request.required_fields,
                optional_fields=request.optional_fields,
                validation_rules=request.validation_rules,
                is_active=True,
                created_by=created_by,
            )
            session.add(row)
            await session.flush()
            credential_type = CredentialType.model_validate(row.to_dict())

        logger.info(
            "credential_type_created",
            credential_type_id=credential_type.id,
            name=credential_type.name,
        )
        return credential_type

    async def get_credential_type(
        self,
        type_id: str,
        include_inactive: bool = False,
    ) -> CredentialType | None:
        """Get a credential type; retired types only when asked for."""
        async with self._db.session() as session:
            row = await session.get(CredentialTypeModel, type_id)
        if row is None or (not row.is_active and not include_inactive):
            return None
        return CredentialType.model_validate(row.to_dict())

    async def list_credential_types(self, include_inactive: bool = False) -> list[CredentialType]:
        """List credential types ordered by name."""
        stmt = select(CredentialTypeModel).order_by(CredentialTypeModel.name)
        if not include_inactive:
            stmt = stmt.where(CredentialTypeModel.is_active.is_(True))
        async with self._db.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [CredentialType.model_validate(r.to_dict()) for r in rows]

    async def deactivate_credential_type(self, type_id: str) -> CredentialType:
        """
        Retire a credential type. Existing credentials are unaffected.

        Raises:
            NotFoundError: If the type does not exist
        """
        async with self._db.session() as session:
            row = await session.get(CredentialTypeModel, type_id)
            if row is None:
                raise NotFoundError(f"Credential type {type_id} not found")
            row.is_active = False
            row.updated_at = datetime.now(UTC)
            await session.flush()
            credential_type = CredentialType.model_validate(row.to_dict())

        logger.info("credential_type_deactivated", credential_type_id=type_id)
        return credential_type

    # =========================================================================
    # Credentials
    # =========================================================================

    async def validate_request(
        self,
        issuer_address: str,
        request: CreateCredentialRequest,
    ) -> CredentialType:
        """
        Check a credential request against its type and content rules.

        Raises:
            NotFoundError: If the credential type does not exist
            ValidationError: If the type is retired, the issuer does not
                match the type's pattern, required fields are missing, or
                the payload is oversized or carries forbidden content
        """
        credential_type = await self.get_credential_type(
            request.credential_type_id,
            include_inactive=True,
        )
        if credential_type is None:
            raise NotFoundError(f"Credential type {request.credential_type_id} not found")
        if not credential_type.is_active:
            raise ValidationError(f"Credential type {credential_type.name} is retired")

        if credential_type.issuer_pattern and not re.fullmatch(
            credential_type.issuer_pattern, issuer_address
        ):
            raise ValidationError(
                f"Issuer {issuer_address} may not issue {credential_type.name} credentials"
            )

        missing = [f for f in credential_type.required_fields if f not in request.credential_data]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        serialized = canonical_json(request.credential_data)
        size = len(serialized.encode("utf-8"))
        if size > self._settings.max_payload_bytes:
            raise ValidationError(
                f"Credential data is {size} bytes, limit is {self._settings.max_payload_bytes}"
            )
        if any(pattern.search(serialized) for pattern in FORBIDDEN_PATTERNS):
            raise ValidationError("Credential data contains forbidden content")

        return credential_type

    def seal(self, credential_data: dict[str, Any]) -> tuple[str, str]:
        """Encrypt a payload and hash its canonical form: (envelope, hash)."""
        return (
            self._envelope.encrypt_json(credential_data),
            sha256_hex(canonical_json(credential_data)),
        )

    def open(self, envelope: str, credential_hash: str) -> dict[str, Any]:
        """
        Decrypt an envelope and check it against the issuance hash.

        Raises:
            EnvelopeIntegrityError: If the envelope does not authenticate
            IntegrityError: If the plaintext hashes differently
        """
        data = self._envelope.decrypt_json(envelope)
        if sha256_hex(canonical_json(data)) != credential_hash:
            raise IntegrityError("Decrypted credential does not match its issuance hash")
        return data

    async def insert_credential(
        self,
        issuer_address: str,
        user_address: str,
        request: CreateCredentialRequest,
        *,
        credential_hash: str,
        envelope: str | None,
        storage_type: StorageType = StorageType.LOCAL,
        blob_hash: str | None = None,
    ) -> Credential:
        """Persist an already sealed credential."""
        if storage_type.uses_blob and not blob_hash:
            raise ValidationError(f"{storage_type.value} credentials need a blob hash")
        if envelope is None and not storage_type.uses_blob:
            raise ValidationError("Local credentials need their ciphertext")

        now = datetime.now(UTC)
        async with self._db.session() as session:
            row = CredentialModel(
                user_address=user_address,
                credential_type_id=request.credential_type_id,
                issuer_address=issuer_address,
                issuer_name=request.issuer_name,
                credential_data=envelope,
                credential_hash=credential_hash,
                proof_signature=request.proof_signature,
                proof_type=request.proof_type,
                status=CredentialStatus.ACTIVE,
                issued_at=now,
                expires_at=_utc(request.expires_at),
                storage_type=storage_type,
                blob_hash=blob_hash,
                metadata_=request.metadata,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            await session.flush()
            credential = Credential.model_validate(row.to_dict())

        logger.info(
            "credential_created",
            credential_id=credential.id,
            credential_type_id=credential.credential_type_id,
            storage_type=credential.storage_type.value,
        )
        return credential

    async def create_credential(
        self,
        issuer_address: str,
        user_address: str,
        request: CreateCredentialRequest,
    ) -> Credential:
        """
        Issue a credential into the local store.

        Args:
            issuer_address: Issuing address
            user_address: Holder address
            request: Credential type, plaintext data and proof

        Returns:
            The stored credential with its hash
        """
        await self.validate_request(issuer_address, request)
        envelope, credential_hash = self.seal(request.credential_data)
        return await self.insert_credential(
            issuer_address,
            user_address,
            request,
            credential_hash=credential_hash,
            envelope=envelope,
        )

    async def get_credential(self, credential_id: str) -> Credential | None:
        async with self._db.session() as session:
            row = await session.get(CredentialModel, credential_id)
        return Credential.model_validate(row.to_dict()) if row else None

    async def get_user_credentials(
        self,
        user_address: str,
        status: CredentialStatus | None = None,
    ) -> list[Credential]:
        """List a holder's credentials, newest first."""
        stmt = (
            select(CredentialModel)
            .where(CredentialModel.user_address == user_address)
            .order_by(CredentialModel.created_at.desc())
        )
        if status is not None:
            stmt = stmt.where(CredentialModel.status == status)
        async with self._db.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [Credential.model_validate(r.to_dict()) for r in rows]

    async def get_envelope(self, credential_id: str) -> str | None:
        """
        Read a credential's locally held encryption envelope.

        Returns:
            The envelope, or None if the ciphertext is not held locally

        Raises:
            NotFoundError: If the credential does not exist
        """
        async with self._db.session() as session:
            row = await session.get(CredentialModel, credential_id)
        if row is None:
            raise NotFoundError(f"Credential {credential_id} not found")
        return row.credential_data

    async def get_credential_data(self, credential_id: str) -> dict[str, Any] | None:
        """
        Decrypt a credential from its local ciphertext.

        Returns:
            Plaintext data, or None if the credential does not exist

        Raises:
            StorageError: If the ciphertext is not held locally
            IntegrityError: If the ciphertext fails authentication or hashing
        """
        async with self._db.session() as session:
            row = await session.get(CredentialModel, credential_id)
        if row is None:
            return None
        if row.credential_data is None:
            raise StorageError(f"Credential {credential_id} has no local ciphertext")
        return self.open(row.credential_data, row.credential_hash)

    async def update_storage(
        self,
        credential_id: str,
        storage_type: StorageType,
        blob_hash: str | None,
    ) -> Credential:
        """Move a credential to another storage tier, keeping its local ciphertext."""
        async with self._db.session() as session:
            row = await session.get(CredentialModel, credential_id)
            if row is None:
                raise NotFoundError(f"Credential {credential_id} not found")
            row.storage_type = storage_type
            row.blob_hash = blob_hash
            row.updated_at = datetime.now(UTC)
            await session.flush()
            return Credential.model_validate(row.to_dict())

    async def set_chain_reference(
        self,
        credential_id: str,
        block_ref: str | None,
        extrinsic_ref: str,
    ) -> Credential:
        """Record where a credential's reference was anchored."""
        async with self._db.session() as session:
            row = await session.get(CredentialModel, credential_id)
            if row is None:
                raise NotFoundError(f"Credential {credential_id} not found")
            row.chain_block_ref = block_ref
            row.chain_extrinsic_ref = extrinsic_ref
            row.updated_at = datetime.now(UTC)
            await session.flush()
            return Credential.model_validate(row.to_dict())

    # =========================================================================
    # Shares
    # =========================================================================

    async def share_credential(
        self,
        owner_address: str,
        request: ShareCredentialRequest,
    ) -> CredentialShare:
        """
        Grant another address access to a credential.

        Raises:
            NotFoundError: If the credential does not exist
            ValidationError: If the owner is not the holder
        """
        async with self._db.session() as session:
            credential = await session.get(CredentialModel, request.credential_id)
            if credential is None:
                raise NotFoundError(f"Credential {request.credential_id} not found")
            if credential.user_address != owner_address:
                raise ValidationError("Only the holder can share a credential")

            row = CredentialShareModel(
                credential_id=request.credential_id,
                owner_address=owner_address,
                shared_with_address=request.shared_with_address,
                shared_with_client_id=request.shared_with_client_id,
                permissions=request.permissions,
                access_level=request.access_level,
                expires_at=_utc(request.expires_at),
                created_by=owner_address,
                is_active=True,
            )
            session.add(row)
            await session.flush()
            share = CredentialShare.model_validate(row.to_dict())

        logger.info(
            "credential_shared",
            credential_id=share.credential_id,
            share_id=share.id,
            access_level=share.access_level.value,
        )
        return share

    async def get_shared_credentials(self, shared_with_address: str) -> list[CredentialShare]:
        """Active, unexpired shares granted to an address, newest first."""
        now = datetime.now(UTC)
        stmt = (
            select(CredentialShareModel)
            .where(
                CredentialShareModel.shared_with_address == shared_with_address,
                CredentialShareModel.is_active.is_(True),
                (CredentialShareModel.expires_at.is_(None))
                | (CredentialShareModel.expires_at > now),
            )
            .order_by(CredentialShareModel.created_at.desc())
        )
        async with self._db.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [CredentialShare.model_validate(r.to_dict()) for r in rows]

    async def revoke_share(self, share_id: str, owner_address: str | None = None) -> bool:
        """
        Deactivate a share.

        Returns:
            True if an active share was deactivated
        """
        stmt = update(CredentialShareModel).where(
            CredentialShareModel.id == share_id,
            CredentialShareModel.is_active.is_(True),
        )
        if owner_address is not None:
            stmt = stmt.where(CredentialShareModel.owner_address == owner_address)

        async with self._db.session() as session:
            result = await session.execute(
                stmt.values(is_active=False).execution_options(synchronize_session=False)
            )
        revoked = result.rowcount > 0
        if revoked:
            logger.info("credential_share_revoked", share_id=share_id)
        return revoked

    # =========================================================================
    # Verifications
    # =========================================================================

    async def verify_credential(
        self,
        verifier_address: str,
        request: VerifyCredentialRequest,
    ) -> CredentialVerification:
        """Record a verifier's attestation on a credential."""
        now = datetime.now(UTC)
        async with self._db.session() as session:
            if await session.get(CredentialModel, request.credential_id) is None:
                raise NotFoundError(f"Credential {request.credential_id} not found")

            row = CredentialVerificationModel(
                credential_id=request.credential_id,
                verifier_address=verifier_address,
                verification_type=request.verification_type,
                verification_data=request.verification_data,
                verification_signature=request.verification_signature,
                status=request.status,
                verified_at=now,
                expires_at=_utc(request.expires_at),
                created_at=now,
                notes=request.notes,
            )
            session.add(row)
            await session.flush()
            verification = CredentialVerification.model_validate(row.to_dict())

        logger.info(
            "credential_verification_recorded",
            credential_id=verification.credential_id,
            verification_type=verification.verification_type.value,
            status=verification.status.value,
        )
        return verification

    async def get_credential_verifications(self, credential_id: str) -> list[CredentialVerification]:
        """Verification history of a credential, newest first."""
        stmt = (
            select(CredentialVerificationModel)
            .where(CredentialVerificationModel.credential_id == credential_id)
            .order_by(CredentialVerificationModel.created_at.desc())
        )
        async with self._db.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [CredentialVerification.model_validate(r.to_dict()) for r in rows]

    # =========================================================================
    # Revocations
    # =========================================================================

    async def revoke_credential(
        self,
        credential_id: str,
        revoked_by_address: str,
        reason: str | None = None,
        signature: str | None = None,
    ) -> CredentialRevocation:
        """
        Revoke an active credential and record the revocation.

        Raises:
            NotFoundError: If the credential does not exist
            ValidationError: If the credential is not active
        """
        now = datetime.now(UTC)
        async with self._db.session() as session:
            result = await session.execute(
                update(CredentialModel)
                .where(
                    CredentialModel.id == credential_id,
                    CredentialModel.status == CredentialStatus.ACTIVE,
                )
                .values(status=CredentialStatus.REVOKED, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                row = await session.get(CredentialModel, credential_id)
                if row is None:
                    raise NotFoundError(f"Credential {credential_id} not found")
                raise ValidationError(
                    f"Credential {credential_id} is {row.status.value} and cannot be revoked"
                )

            revocation_row = CredentialRevocationModel(
                credential_id=credential_id,
                revoked_by_address=revoked_by_address,
                revocation_reason=reason,
                revocation_signature=signature,
                revoked_at=now,
                created_at=now,
            )
            session.add(revocation_row)
            await session.flush()
            revocation = CredentialRevocation.model_validate(revocation_row.to_dict())

        logger.info("credential_revoked", credential_id=credential_id, reason=reason)
        return revocation

    async def get_credential_revocations(self, credential_id: str) -> list[CredentialRevocation]:
        stmt = select(CredentialRevocationModel).where(
            CredentialRevocationModel.credential_id == credential_id
        )
        async with self._db.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [CredentialRevocation.model_validate(r.to_dict()) for r in rows]

    # =========================================================================
    # Issuance Requests
    # =========================================================================

    async def create_issuance_request(
        self,
        requester_address: str,
        request: CreateIssuanceRequest,
    ) -> IssuanceRequest:
        """Ask an issuer for a credential of an active type."""
        if await self.get_credential_type(request.credential_type_id) is None:
            raise NotFoundError(f"Credential type {request.credential_type_id} not found")

        async with self._db.session() as session:
            row = IssuanceRequestModel(
                requester_address=requester_address,
                issuer_address=request.issuer_address,
                credential_type_id=request.credential_type_id,
                template_id=request.template_id,
                request_data=request.request_data,
                status=IssuanceStatus.PENDING,
                expires_at=_utc(request.expires_at),
            )
            session.add(row)
            await session.flush()
            issuance = IssuanceRequest.model_validate(row.to_dict())

        logger.info(
            "issuance_request_created",
            request_id=issuance.id,
            credential_type_id=issuance.credential_type_id,
        )
        return issuance

    async def get_issuance_request(self, request_id: str) -> IssuanceRequest | None:
        async with self._db.session() as session:
            row = await session.get(IssuanceRequestModel, request_id)
        return IssuanceRequest.model_validate(row.to_dict()) if row else None

    async def get_pending_issuance_requests(self, issuer_address: str) -> list[IssuanceRequest]:
        """Pending, unexpired requests addressed to an issuer, oldest first."""
        now = datetime.now(UTC)
        stmt = (
            select(IssuanceRequestModel)
            .where(
                IssuanceRequestModel.issuer_address == issuer_address,
                IssuanceRequestModel.status == IssuanceStatus.PENDING,
                (IssuanceRequestModel.expires_at.is_(None))
                | (IssuanceRequestModel.expires_at > now),
            )
            .order_by(IssuanceRequestModel.created_at.asc())
        )
        async with self._db.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [IssuanceRequest.model_validate(r.to_dict()) for r in rows]

    async def _decide_issuance(
        self,
        request_id: str,
        issuer_address: str,
        values: dict[str, Any],
    ) -> IssuanceRequest:
        async with self._db.session() as session:
            result = await session.execute(
                update(IssuanceRequestModel)
                .where(
                    IssuanceRequestModel.id == request_id,
                    IssuanceRequestModel.issuer_address == issuer_address,
                    IssuanceRequestModel.status == IssuanceStatus.PENDING,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            row = await session.get(IssuanceRequestModel, request_id, populate_existing=True)
            if row is None:
                raise NotFoundError(f"Issuance request {request_id} not found")
            if result.rowcount == 0:
                if row.issuer_address != issuer_address:
                    raise ValidationError("Only the addressed issuer can decide this request")
                raise ValidationError(
                    f"Issuance request {request_id} is {row.status.value}, not pending"
                )
            return IssuanceRequest.model_validate(row.to_dict())

    async def approve_issuance_request(
        self,
        request_id: str,
        issuer_address: str,
        issued_credential_id: str | None = None,
    ) -> IssuanceRequest:
        """
        Mark a pending request as issued.

        Raises:
            NotFoundError: If the request does not exist
            ValidationError: If it is not pending or addressed to another issuer
        """
        now = datetime.now(UTC)
        issuance = await self._decide_issuance(
            request_id,
            issuer_address,
            {
                "status": IssuanceStatus.ISSUED,
                "approved_at": now,
                "issued_credential_id": issued_credential_id,
                "updated_at": now,
            },
        )
        logger.info(
            "issuance_request_approved",
            request_id=request_id,
            issued_credential_id=issued_credential_id,
        )
        return issuance

    async def reject_issuance_request(
        self,
        request_id: str,
        issuer_address: str,
        reason: str,
    ) -> IssuanceRequest:
        """Mark a pending request as rejected with a reason."""
        now = datetime.now(UTC)
        issuance = await self._decide_issuance(
            request_id,
            issuer_address,
            {
                "status": IssuanceStatus.REJECTED,
                "rejected_at": now,
                "rejection_reason": reason,
                "updated_at": now,
            },
        )
        logger.info("issuance_request_rejected", request_id=request_id, reason=reason)
        return issuance

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def cleanup_expired(self) -> ExpirySweepResult:
        """
        Expire everything past its expiry in one transaction.

        Active credentials become expired, active shares are deactivated,
        verified attestations and pending issuance requests become expired.
        Running it again right away changes nothing.
        """
        now = datetime.now(UTC)
        async with self._db.session() as session:
            credentials = await session.execute(
                update(CredentialModel)
                .where(
                    CredentialModel.expires_at.is_not(None),
                    CredentialModel.expires_at < now,
                    CredentialModel.status == CredentialStatus.ACTIVE,
                )
                .values(status=CredentialStatus.EXPIRED, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            shares = await session.execute(
                update(CredentialShareModel)
                .where(
                    CredentialShareModel.expires_at.is_not(None),
                    CredentialShareModel.expires_at < now,
                    CredentialShareModel.is_active.is_(True),
                )
                .values(is_active=False)
                .execution_options(synchronize_session=False)
            )
            verifications = await session.execute(
                update(CredentialVerificationModel)
                .where(
                    CredentialVerificationModel.expires_at.is_not(None),
                    CredentialVerificationModel.expires_at < now,
                    CredentialVerificationModel.status == VerificationStatus.VERIFIED,
                )
                .values(status=VerificationStatus.EXPIRED)
                .execution_options(synchronize_session=False)
            )
            requests = await session.execute(
                update(IssuanceRequestModel)
                .where(
                    IssuanceRequestModel.expires_at.is_not(None),
                    IssuanceRequestModel.expires_at < now,
                    IssuanceRequestModel.status == IssuanceStatus.PENDING,
                )
                .values(status=IssuanceStatus.EXPIRED, updated_at=now)
                .execution_options(synchronize_session=False)
            )

        result = ExpirySweepResult(
            credentials=credentials.rowcount,
            shares=shares.rowcount,
            verifications=verifications.rowcount,
            issuance_requests=requests.rowcount,
        )
        if result.total:
            logger.info("expired_records_swept", **result.model_dump())
        return result

    async def get_storage_stats(self) -> StorageStats:
        """Count credentials per storage tier and chain-anchored."""
        async with self._db.session() as session:
            by_type = (
                await session.execute(
                    select(CredentialModel.storage_type, func.count()).group_by(
                        CredentialModel.storage_type
                    )
                )
            ).all()
            anchored = (
                await session.execute(
                    select(func.count())
                    .select_from(CredentialModel)
                    .where(CredentialModel.chain_extrinsic_ref.is_not(None))
                )
            ).scalar_one()

        stats = StorageStats(chain_anchored=anchored)
        for storage_type, count in by_type:
            setattr(stats, StorageType(storage_type).value, count)
            stats.total += count
        return stats
