"""
Credential Database Tables
==========================

SQLAlchemy ORM models for the local credential store.

Column types stay portable so the same schema runs on PostgreSQL and on
SQLite in tests.

Version: 0.1.0
"""

from datetime import UTC, datetime
from typing import Any
import uuid

from sqlalchemy import (
    Column,
    String,
    Text,
    Boolean,
    DateTime,
    Enum as SQLEnum,
    JSON,
    ForeignKey,
    Index,
)

from credvault.database.engine import Base
from credvault.models.credential import (
    AccessLevel,
    CredentialStatus,
    IssuanceStatus,
    StorageType,
    VerificationStatus,
    VerificationType,
)


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_id() -> str:
    return str(uuid.uuid4())


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to timestamps read back without a zone (SQLite)."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _enum(enum_cls: type) -> SQLEnum:
    # Persist values, not member names, and skip native enum types
    return SQLEnum(
        enum_cls,
        native_enum=False,
        length=20,
        values_callable=lambda members: [m.value for m in members],
    )


class CredentialTypeModel(Base):
    """Registered credential schema."""

    __tablename__ = "credential_types"
    __table_args__ = (
        Index("ix_credential_types_name", "name"),
        Index("ix_credential_types_active", "is_active"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    schema_version = Column(String(50), nullable=False, default="1.0.0")
    schema_definition = Column(JSON, nullable=False, default=dict)
    issuer_pattern = Column(String(500))
    required_fields = Column(JSON, nullable=False, default=list)
    optional_fields = Column(JSON, nullable=False, default=list)
    validation_rules = Column(JSON, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(String(255))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<CredentialType {self.id}: {self.name}>"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "schema_version": self.schema_version,
            "schema_definition": self.schema_definition or {},
            "issuer_pattern": self.issuer_pattern,
            "required_fields": self.required_fields or [],
            "optional_fields": self.optional_fields or [],
            "validation_rules": self.validation_rules or {},
            "is_active": self.is_active,
            "created_by": self.created_by,
            "created_at": as_utc(self.created_at),
            "updated_at": as_utc(self.updated_at),
        }


class CredentialModel(Base):
    """
    Issued credential.

    `credential_data` holds the encryption envelope; it is NULL when the
    ciphertext was off-loaded to the blob store only.
    """

    __tablename__ = "credentials"
    __table_args__ = (
        Index("ix_credentials_user", "user_address"),
        Index("ix_credentials_issuer", "issuer_address"),
        Index("ix_credentials_status", "status"),
        Index("ix_credentials_expiry", "expires_at"),
        Index("ix_credentials_storage", "storage_type"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    user_address = Column(String(255), nullable=False)
    credential_type_id = Column(
        String(36),
        ForeignKey("credential_types.id"),
        nullable=False,
    )
    issuer_address = Column(String(255), nullable=False)
    issuer_name = Column(String(255))

    # Envelope and plaintext digest
    credential_data = Column(Text)
    credential_hash = Column(String(64), nullable=False)

    # Proof
    proof_signature = Column(Text)
    proof_type = Column(String(100))

    # Lifecycle
    status = Column(_enum(CredentialStatus), nullable=False, default=CredentialStatus.ACTIVE)
    issued_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = Column(DateTime(timezone=True))

    # Storage tiers
    storage_type = Column(_enum(StorageType), nullable=False, default=StorageType.LOCAL)
    blob_hash = Column(String(255))
    chain_block_ref = Column(String(255))
    chain_extrinsic_ref = Column(String(255))

    # Metadata ("metadata" is reserved on declarative classes)
    metadata_ = Column("metadata", JSON)

    # Audit fields
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<Credential {self.id}: {self.storage_type.value} ({self.status.value})>"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "user_address": self.user_address,
            "credential_type_id": self.credential_type_id,
            "issuer_address": self.issuer_address,
            "issuer_name": self.issuer_name,
            "has_local_copy": self.credential_data is not None,
            "credential_hash": self.credential_hash,
            "proof_signature": self.proof_signature,
            "proof_type": self.proof_type,
            "status": self.status,
            "issued_at": as_utc(self.issued_at),
            "expires_at": as_utc(self.expires_at),
            "created_at": as_utc(self.created_at),
            "updated_at": as_utc(self.updated_at),
            "metadata": self.metadata_,
            "storage_type": self.storage_type,
            "blob_hash": self.blob_hash,
            "chain_block_ref": self.chain_block_ref,
            "chain_extrinsic_ref": self.chain_extrinsic_ref,
        }


class CredentialShareModel(Base):
    """Access grant on a credential."""

    __tablename__ = "credential_shares"
    __table_args__ = (
        Index("ix_credential_shares_credential", "credential_id"),
        Index("ix_credential_shares_grantee", "shared_with_address"),
        Index("ix_credential_shares_active", "is_active"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    credential_id = Column(
        String(36),
        ForeignKey("credentials.id", ondelete="CASCADE"),
        nullable=False,
    )
    owner_address = Column(String(255), nullable=False)
    shared_with_address = Column(String(255), nullable=False)
    shared_with_client_id = Column(String(255))
    permissions = Column(JSON, nullable=False, default=list)
    access_level = Column(_enum(AccessLevel), nullable=False, default=AccessLevel.READ)
    expires_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_by = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<CredentialShare {self.id}: {self.credential_id} -> {self.shared_with_address}>"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "credential_id": self.credential_id,
            "owner_address": self.owner_address,
            "shared_with_address": self.shared_with_address,
            "shared_with_client_id": self.shared_with_client_id,
            "permissions": self.permissions or [],
            "access_level": self.access_level,
            "expires_at": as_utc(self.expires_at),
            "created_at": as_utc(self.created_at),
            "created_by": self.created_by,
            "is_active": self.is_active,
        }


class CredentialVerificationModel(Base):
    """Verifier attestation. Rows are never updated except by the expiry sweep."""

    __tablename__ = "credential_verifications"
    __table_args__ = (
        Index("ix_credential_verifications_credential", "credential_id"),
        Index("ix_credential_verifications_status", "status"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    credential_id = Column(
        String(36),
        ForeignKey("credentials.id", ondelete="CASCADE"),
        nullable=False,
    )
    verifier_address = Column(String(255), nullable=False)
    verification_type = Column(_enum(VerificationType), nullable=False)
    verification_data = Column(JSON)
    verification_signature = Column(Text)
    status = Column(_enum(VerificationStatus), nullable=False, default=VerificationStatus.PENDING)
    verified_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    notes = Column(Text)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "credential_id": self.credential_id,
            "verifier_address": self.verifier_address,
            "verification_type": self.verification_type,
            "verification_data": self.verification_data,
            "verification_signature": self.verification_signature,
            "status": self.status,
            "verified_at": as_utc(self.verified_at),
            "expires_at": as_utc(self.expires_at),
            "created_at": as_utc(self.created_at),
            "notes": self.notes,
        }


class CredentialRevocationModel(Base):
    """Revocation event, one per revoked credential."""

    __tablename__ = "credential_revocations"
    __table_args__ = (
        Index("ix_credential_revocations_credential", "credential_id", unique=True),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    credential_id = Column(
        String(36),
        ForeignKey("credentials.id", ondelete="CASCADE"),
        nullable=False,
    )
    revoked_by_address = Column(String(255), nullable=False)
    revocation_reason = Column(Text)
    revocation_signature = Column(Text)
    revoked_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "credential_id": self.credential_id,
            "revoked_by_address": self.revoked_by_address,
            "revocation_reason": self.revocation_reason,
            "revocation_signature": self.revocation_signature,
            "revoked_at": as_utc(self.revoked_at),
            "created_at": as_utc(self.created_at),
        }


class IssuanceRequestModel(Base):
    """Holder request awaiting an issuer decision."""

    __tablename__ = "issuance_requests"
    __table_args__ = (
        Index("ix_issuance_requests_issuer", "issuer_address"),
        Index("ix_issuance_requests_requester", "requester_address"),
        Index("ix_issuance_requests_status", "status"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    requester_address = Column(String(255), nullable=False)
    issuer_address = Column(String(255), nullable=False)
    credential_type_id = Column(
        String(36),
        ForeignKey("credential_types.id"),
        nullable=False,
    )
    template_id = Column(String(36))
    request_data = Column(JSON, nullable=False, default=dict)
    status = Column(_enum(IssuanceStatus), nullable=False, default=IssuanceStatus.PENDING)
    approved_at = Column(DateTime(timezone=True))
    rejected_at = Column(DateTime(timezone=True))
    rejection_reason = Column(Text)
    issued_credential_id = Column(String(36), ForeignKey("credentials.id"))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    expires_at = Column(DateTime(timezone=True))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "requester_address": self.requester_address,
            "issuer_address": self.issuer_address,
            "credential_type_id": self.credential_type_id,
            "template_id": self.template_id,
            "request_data": self.request_data or {},
            "status": self.status,
            "approved_at": as_utc(self.approved_at),
            "rejected_at": as_utc(self.rejected_at),
            "rejection_reason": self.rejection_reason,
            "issued_credential_id": self.issued_credential_id,
            "created_at": as_utc(self.created_at),
            "updated_at": as_utc(self.updated_at),
            "expires_at": as_utc(self.expires_at),
        }
