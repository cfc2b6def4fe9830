"""
Credential Models
=================

Models for credential types, issued credentials, shares, verifications,
revocations and issuance requests.

Version: 0.1.0
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class CredentialStatus(str, Enum):
    """Credential lifecycle status. Both non-active states are terminal."""

    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


class StorageType(str, Enum):
    """Tier holding a credential's ciphertext."""

    LOCAL = "local"
    IPFS = "ipfs"
    HYBRID = "hybrid"

    # Content-addressed blob tier, spelled "ipfs" on the wire
    BLOB = "ipfs"

    @property
    def uses_blob(self) -> bool:
        return self in (StorageType.IPFS, StorageType.HYBRID)


class AccessLevel(str, Enum):
    """Access granted by a credential share."""

    READ = "read"
    WRITE = "write"
    ADMIN = "admin"


class VerificationType(str, Enum):
    """How a verifier checked a credential."""

    PROOF = "proof"
    SIGNATURE = "signature"
    MANUAL = "manual"
    AUTOMATED = "automated"


class VerificationStatus(str, Enum):
    """Outcome of a verification attestation."""

    VERIFIED = "verified"
    FAILED = "failed"
    PENDING = "pending"
    EXPIRED = "expired"


class IssuanceStatus(str, Enum):
    """Issuance request lifecycle. Everything but pending is terminal."""

    PENDING = "pending"
    ISSUED = "issued"
    REJECTED = "rejected"
    EXPIRED = "expired"


# =============================================================================
# Records
# =============================================================================


class CredentialType(BaseModel):
    """Schema and issuance rules for a family of credentials."""

    model_config = {"from_attributes": True}

    id: str
    name: str
    description: str | None = None
    schema_version: str = "1.0.0"
    schema_definition: dict[str, Any] = Field(default_factory=dict)
    issuer_pattern: str | None = None
    required_fields: list[str] = Field(default_factory=list)
    optional_fields: list[str] = Field(default_factory=list)
    validation_rules: dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True
    created_by: str | None = None
    created_at: datetime
    updated_at: datetime


class Credential(BaseModel):
    """
    An issued credential.

    Carries no payload in any form. `has_local_copy` tells whether the
    encryption envelope is held in the local store; plaintext is only
    available through `get_credential_data`.
    """

    model_config = {"from_attributes": True}

    id: str
    user_address: str
    credential_type_id: str
    issuer_address: str
    issuer_name: str | None = None
    credential_hash: str
    has_local_copy: bool = False
    proof_signature: str | None = None
    proof_type: str | None = None
    status: CredentialStatus = CredentialStatus.ACTIVE
    issued_at: datetime
    expires_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    metadata: dict[str, Any] | None = None

    # Storage tiers
    storage_type: StorageType = StorageType.LOCAL
    blob_hash: str | None = None
    chain_block_ref: str | None = None
    chain_extrinsic_ref: str | None = None

    # Degradations that happened while writing, not persisted
    warnings: list[str] = Field(default_factory=list, exclude=True)

    @property
    def is_anchored(self) -> bool:
        return self.chain_extrinsic_ref is not None

    @property
    def is_active(self) -> bool:
        if self.status != CredentialStatus.ACTIVE:
            return False
        if self.expires_at and datetime.now(UTC) > self.expires_at:
            return False
        return True


class CredentialShare(BaseModel):
    """Grant of access to one credential for another address."""

    model_config = {"from_attributes": True}

    id: str
    credential_id: str
    owner_address: str
    shared_with_address: str
    shared_with_client_id: str | None = None
    permissions: list[str] = Field(default_factory=list)
    access_level: AccessLevel = AccessLevel.READ
    expires_at: datetime | None = None
    created_at: datetime
    created_by: str
    is_active: bool = True


class CredentialVerification(BaseModel):
    """Append-only attestation made by a verifier."""

    model_config = {"from_attributes": True}

    id: str
    credential_id: str
    verifier_address: str
    verification_type: VerificationType
    verification_data: dict[str, Any] | None = None
    verification_signature: str | None = None
    status: VerificationStatus
    verified_at: datetime
    expires_at: datetime | None = None
    created_at: datetime
    notes: str | None = None


class CredentialRevocation(BaseModel):
    """Record of a credential's transition to revoked."""

    model_config = {"from_attributes": True}

    id: str
    credential_id: str
    revoked_by_address: str
    revocation_reason: str | None = None
    revocation_signature: str | None = None
    revoked_at: datetime
    created_at: datetime


class IssuanceRequest(BaseModel):
    """Holder-initiated request for an issuer to issue a credential."""

    model_config = {"from_attributes": True}

    id: str
    requester_address: str
    issuer_address: str
    credential_type_id: str
    template_id: str | None = None
    request_data: dict[str, Any] = Field(default_factory=dict)
    status: IssuanceStatus = IssuanceStatus.PENDING
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None
    issued_credential_id: str | None = None
    created_at: datetime
    updated_at: datetime
    expires_at: datetime | None = None


# =============================================================================
# Requests
# =============================================================================


class CreateCredentialTypeRequest(BaseModel):
    """Request model for registering a credential type."""

    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    schema_version: str = "1.0.0"
    schema_definition: dict[str, Any] = Field(default_factory=dict)
    issuer_pattern: str | None = Field(
        default=None,
        description="Regular expression issuer addresses must match",
    )
    required_fields: list[str] = Field(default_factory=list)
    optional_fields: list[str] = Field(default_factory=list)
    validation_rules: dict[str, Any] = Field(default_factory=dict)


class CreateCredentialRequest(BaseModel):
    """Request model for issuing a credential into the local store."""

    credential_type_id: str = Field(..., min_length=1)
    credential_data: dict[str, Any]
    expires_at: datetime | None = None
    metadata: dict[str, Any] | None = None
    issuer_name: str | None = None
    proof_signature: str | None = None
    proof_type: str | None = None

    @field_validator("expires_at")
    @classmethod
    def ensure_timezone(cls, v: datetime | None) -> datetime | None:
        """Treat naive expiry timestamps as UTC."""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v


class HybridCredentialRequest(CreateCredentialRequest):
    """Request model for issuing a credential across storage tiers."""

    # None uses the service default
    storage_preference: StorageType | None = None
    pin_to_ipfs: bool = True
    store_on_chain: bool = False


class ShareCredentialRequest(BaseModel):
    """Request model for sharing a credential."""

    credential_id: str
    shared_with_address: str = Field(..., min_length=1, max_length=255)
    shared_with_client_id: str | None = None
    permissions: list[str] = Field(default_factory=lambda: ["read"])
    access_level: AccessLevel = AccessLevel.READ
    expires_at: datetime | None = None


class VerifyCredentialRequest(BaseModel):
    """Request model for recording a verification."""

    credential_id: str
    verification_type: VerificationType
    verification_data: dict[str, Any] | None = None
    verification_signature: str | None = None
    status: VerificationStatus = VerificationStatus.VERIFIED
    expires_at: datetime | None = None
    notes: str | None = None


class CreateIssuanceRequest(BaseModel):
    """Request model for asking an issuer for a credential."""

    issuer_address: str = Field(..., min_length=1, max_length=255)
    credential_type_id: str
    template_id: str | None = None
    request_data: dict[str, Any] = Field(default_factory=dict)
    expires_at: datetime | None = None


# =============================================================================
# Results
# =============================================================================


class StorageStats(BaseModel):
    """Credential counts per storage tier."""

    total: int = 0
    local: int = 0
    ipfs: int = 0
    hybrid: int = 0
    chain_anchored: int = 0


class IntegrityReport(BaseModel):
    """Cross-tier integrity verdict for one credential."""

    credential_id: str
    valid: bool
    local_valid: bool = True
    blob_valid: bool = True
    chain_valid: bool = True
    errors: list[str] = Field(default_factory=list)
    checked_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ExpirySweepResult(BaseModel):
    """Rows moved to an expired or inactive state by one sweep."""

    credentials: int = 0
    shares: int = 0
    verifications: int = 0
    issuance_requests: int = 0

    @property
    def total(self) -> int:
        return self.credentials + self.shares + self.verifications + self.issuance_requests
