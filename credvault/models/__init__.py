"""
Shared Models
=============

Pydantic models shared across the credential engine.

Models:
- Credential models (CredentialType, Credential, CredentialShare, ...)
- Request models (CreateCredentialRequest, HybridCredentialRequest, ...)
- Chain models (ChainReference, TransactionStatus, AnchoredPayload, CostEstimate)
- Health models (HealthResponse)
"""

from credvault.models.chain import (
    AnchoredPayload,
    AnchorStrategy,
    ChainReference,
    CostEstimate,
    TransactionStatus,
    TxStatus,
)
from credvault.models.common import HealthResponse
from credvault.models.credential import (
    AccessLevel,
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
    HybridCredentialRequest,
    IntegrityReport,
    IssuanceRequest,
    IssuanceStatus,
    ShareCredentialRequest,
    StorageStats,
    StorageType,
    VerificationStatus,
    VerificationType,
    VerifyCredentialRequest,
)

__all__ = [
    # Credential
    "AccessLevel",
    "Credential",
    "CredentialRevocation",
    "CredentialShare",
    "CredentialStatus",
    "CredentialType",
    "CredentialVerification",
    "IssuanceRequest",
    "IssuanceStatus",
    "StorageType",
    "VerificationStatus",
    "VerificationType",
    # Requests
    "CreateCredentialRequest",
    "CreateCredentialTypeRequest",
    "CreateIssuanceRequest",
    "HybridCredentialRequest",
    "ShareCredentialRequest",
    "VerifyCredentialRequest",
    # Results
    "ExpirySweepResult",
    "IntegrityReport",
    "StorageStats",
    # Chain
    "AnchoredPayload",
    "AnchorStrategy",
    "ChainReference",
    "CostEstimate",
    "TransactionStatus",
    "TxStatus",
    # Health
    "HealthResponse",
]
