"""
Hybrid Credential Service
=========================

Issues and reads credentials across three storage tiers:

1. Local store: credential row, optionally with its envelope
2. Blob store: the same envelope, content-addressed (IPFS)
3. Ledger: a reference anchor `{user, blob hash, credential hash}`

Write path: validate -> encrypt and hash -> blob upload -> row -> anchor.
A blob failure degrades the credential to local storage, an anchoring
failure leaves it un-anchored. Both are reported in `Credential.warnings`.

Read path: blob first, then the local envelope. The plaintext must hash
to the issuance hash whichever tier it came from.

Version: 0.1.0
"""

from typing import Any

from credvault.blockchain.anchor import ChainAnchorService
from credvault.credentials.integrity import IntegrityVerifier
from credvault.credentials.store import CredentialStore
from credvault.errors import (
    CredVaultError,
    EncryptionError,
    IntegrityError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from credvault.logging import bound_context, get_logger
from credvault.models.credential import (
    Credential,
    CredentialStatus,
    HybridCredentialRequest,
    IntegrityReport,
    IssuanceStatus,
    StorageStats,
    StorageType,
)
from credvault.storage.gateway import BlobGateway


logger = get_logger(__name__)


class HybridCredentialService:
    """
    Storage orchestrator for credentials.

    Usage:
        service = HybridCredentialService(store, blob_gateway, anchor)
        credential = await service.create_credential(issuer, holder, request)
        data = await service.get_credential_data(credential.id)
    """

    def __init__(
        self,
        store: CredentialStore,
        blob_gateway: BlobGateway,
        anchor: ChainAnchorService | None = None,
        verifier: IntegrityVerifier | None = None,
        default_storage: StorageType = StorageType.HYBRID,
    ) -> None:
        self._store = store
        self._default_storage = default_storage
        self._blob = blob_gateway
        self._anchor = anchor
        self._verifier = verifier or IntegrityVerifier(store, blob_gateway, anchor)

    @property
    def store(self) -> CredentialStore:
        return self._store

    # =========================================================================
    # Write Path
    # =========================================================================

    async def _upload(self, envelope: str, pin: bool) -> str:
        blob_hash = await self._blob.upload(envelope)
        if pin:
            await self._blob.pin(blob_hash)
        return blob_hash

    async def create_credential(
        self,
        issuer_address: str,
        user_address: str,
        request: HybridCredentialRequest,
    ) -> Credential:
        """
        Issue a credential into the requested storage tiers.

        Args:
            issuer_address: Issuing address
            user_address: Holder address
            request: Payload, storage preference, pinning and anchoring flags

        Returns:
            The stored credential; `warnings` lists tiers that were skipped

        Raises:
            NotFoundError: If the credential type does not exist
            ValidationError: If the request fails type or content checks
        """
        with bound_context(
            user_address=user_address,
            credential_type_id=request.credential_type_id,
        ):
            return await self._create(issuer_address, user_address, request)

    async def _create(
        self,
        issuer_address: str,
        user_address: str,
        request: HybridCredentialRequest,
    ) -> Credential:
        await self._store.validate_request(issuer_address, request)
        envelope, credential_hash = self._store.seal(request.credential_data)

        warnings: list[str] = []
        storage_type = StorageType(request.storage_preference or self._default_storage)
        blob_hash: str | None = None

        if storage_type.uses_blob:
            try:
                blob_hash = await self._upload(envelope, request.pin_to_ipfs)
            except StorageError as e:
                logger.warning(
                    "blob_upload_degraded",
                    requested=storage_type.value,
                    error=str(e),
                )
                warnings.append(f"Blob storage unavailable, stored locally: {e}")
                storage_type = StorageType.LOCAL

        credential = await self._store.insert_credential(
            issuer_address,
            user_address,
            request,
            credential_hash=credential_hash,
            # ipfs-only credentials keep no local ciphertext
            envelope=None if storage_type == StorageType.IPFS else envelope,
            storage_type=storage_type,
            blob_hash=blob_hash,
        )

        if request.store_on_chain:
            credential = await self._anchor_credential(credential, warnings)

        credential.warnings = warnings
        return credential

    async def _anchor_credential(self, credential: Credential, warnings: list[str]) -> Credential:
        if credential.blob_hash is None:
            warnings.append("Chain anchoring skipped, credential has no blob hash")
            return credential
        if self._anchor is None:
            warnings.append("Chain anchoring skipped, no ledger configured")
            return credential

        try:
            reference = await self._anchor.anchor_reference(
                credential.user_address,
                credential.blob_hash,
                credential.credential_hash,
            )
        except CredVaultError as e:
            logger.warning(
                "chain_anchor_degraded",
                credential_id=credential.id,
                error=str(e),
            )
            warnings.append(f"Chain anchoring failed: {e}")
            return credential

        return await self._store.set_chain_reference(
            credential.id,
            reference.block_hash,
            reference.extrinsic_hash or "",
        )

    async def migrate_to_ipfs(self, credential_id: str, pin: bool = True) -> Credential:
        """
        Copy a local credential's envelope to the blob store.

        The credential becomes hybrid and keeps its local envelope.

        Raises:
            NotFoundError: If the credential does not exist
            ValidationError: If the credential is not stored locally only
            StorageError: If the upload fails
        """
        credential = await self._store.get_credential(credential_id)
        if credential is None:
            raise NotFoundError(f"Credential {credential_id} not found")
        if credential.storage_type != StorageType.LOCAL:
            raise ValidationError(
                f"Credential {credential_id} is already {credential.storage_type.value}"
            )
        envelope = await self._store.get_envelope(credential_id)
        if envelope is None:
            raise ValidationError(f"Credential {credential_id} has no local ciphertext")

        blob_hash = await self._upload(envelope, pin)
        migrated = await self._store.update_storage(credential_id, StorageType.HYBRID, blob_hash)

        logger.info("credential_migrated", credential_id=credential_id, blob_hash=blob_hash)
        return migrated

    async def issue_from_request(
        self,
        request_id: str,
        issuer_address: str,
        request: HybridCredentialRequest,
    ) -> Credential:
        """
        Issue a credential for a pending issuance request and mark it issued.

        The credential goes to the request's requester.

        Raises:
            NotFoundError: If the issuance request does not exist
            ValidationError: If it is not pending, is addressed to another
                issuer, or asks for a different credential type
        """
        issuance = await self._store.get_issuance_request(request_id)
        if issuance is None:
            raise NotFoundError(f"Issuance request {request_id} not found")
        if issuance.status != IssuanceStatus.PENDING:
            raise ValidationError(f"Issuance request {request_id} is {issuance.status.value}")
        if issuance.issuer_address != issuer_address:
            raise ValidationError("Only the addressed issuer can fulfil this request")
        if issuance.credential_type_id != request.credential_type_id:
            raise ValidationError(
                f"Issuance request {request_id} asks for type {issuance.credential_type_id}"
            )

        credential = await self.create_credential(
            issuer_address,
            issuance.requester_address,
            request,
        )

        try:
            await self._store.approve_issuance_request(request_id, issuer_address, credential.id)
        except ValidationError:
            # Decided concurrently; the new credential must not outlive that
            await self._store.revoke_credential(
                credential.id,
                issuer_address,
                reason="Issuance request already decided",
            )
            raise

        return credential

    # =========================================================================
    # Read Path
    # =========================================================================

    async def get_credential(self, credential_id: str) -> Credential | None:
        return await self._store.get_credential(credential_id)

    async def get_user_credentials(
        self,
        user_address: str,
        status: CredentialStatus | None = None,
    ) -> list[Credential]:
        return await self._store.get_user_credentials(user_address, status)

    async def get_credential_data(self, credential_id: str) -> dict[str, Any] | None:
        """
        Decrypt a credential from the first tier that yields a valid payload.

        Returns:
            Plaintext data, or None if the credential does not exist

        Raises:
            StorageError: If no tier produced a payload matching the issuance hash
        """
        credential = await self._store.get_credential(credential_id)
        if credential is None:
            return None

        failures: list[str] = []

        if credential.storage_type.uses_blob and credential.blob_hash:
            try:
                envelope = await self._blob.fetch(credential.blob_hash)
                return self._store.open(envelope, credential.credential_hash)
            except (StorageError, EncryptionError, IntegrityError) as e:
                logger.warning(
                    "blob_read_failed",
                    credential_id=credential_id,
                    blob_hash=credential.blob_hash,
                    error=str(e),
                )
                failures.append(f"blob: {e}")

        if credential.has_local_copy:
            try:
                envelope = await self._store.get_envelope(credential_id)
                if envelope is not None:
                    return self._store.open(envelope, credential.credential_hash)
            except (EncryptionError, IntegrityError) as e:
                logger.error("local_read_failed", credential_id=credential_id, error=str(e))
                failures.append(f"local: {e}")

        raise StorageError(
            f"Credential {credential_id} unreadable from every tier: {'; '.join(failures)}"
        )

    async def verify_credential_integrity(self, credential_id: str) -> IntegrityReport:
        return await self._verifier.verify(credential_id)

    async def get_storage_stats(self) -> StorageStats:
        return await self._store.get_storage_stats()
