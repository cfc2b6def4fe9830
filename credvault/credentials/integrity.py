"""
Integrity Verifier
==================

Cross-checks one credential across every tier that holds it:

- local: the stored envelope decrypts and hashes to `credential_hash`
- blob: the content-addressed blob is still held by the gateway
- chain: a matching reference anchor is found in the scanned blocks

Version: 0.1.0
"""

from credvault.blockchain.anchor import ChainAnchorService
from credvault.credentials.store import CredentialStore
from credvault.logging import get_logger
from credvault.models.credential import Credential, IntegrityReport
from credvault.storage.gateway import BlobGateway


logger = get_logger(__name__)


class IntegrityVerifier:
    """
    Produces an IntegrityReport per credential.

    Checks that do not apply to a credential pass. Every failing check
    adds one error, and `valid` holds only if all checks pass. Tier
    errors end up in the report, never in an exception.
    """

    def __init__(
        self,
        store: CredentialStore,
        blob_gateway: BlobGateway | None = None,
        anchor: ChainAnchorService | None = None,
    ) -> None:
        self._store = store
        self._blob = blob_gateway
        self._anchor = anchor

    async def verify(self, credential_id: str) -> IntegrityReport:
        try:
            credential = await self._store.get_credential(credential_id)
        except Exception as e:
            logger.error("integrity_lookup_failed", credential_id=credential_id, error=str(e))
            return IntegrityReport(
                credential_id=credential_id,
                valid=False,
                local_valid=False,
                errors=[f"Credential lookup failed: {e}"],
            )

        if credential is None:
            return IntegrityReport(
                credential_id=credential_id,
                valid=False,
                local_valid=False,
                errors=[f"Credential {credential_id} not found"],
            )

        errors: list[str] = []
        local_valid = await self._check_local(credential, errors)
        blob_valid = await self._check_blob(credential, errors)
        chain_valid = await self._check_chain(credential, errors)

        report = IntegrityReport(
            credential_id=credential_id,
            valid=local_valid and blob_valid and chain_valid,
            local_valid=local_valid,
            blob_valid=blob_valid,
            chain_valid=chain_valid,
            errors=errors,
        )

        if report.valid:
            logger.debug("integrity_verified", credential_id=credential_id)
        else:
            logger.warning(
                "integrity_check_failed",
                credential_id=credential_id,
                errors=report.errors,
            )
        return report

    async def _check_local(self, credential: Credential, errors: list[str]) -> bool:
        if not credential.has_local_copy:
            return True
        try:
            envelope = await self._store.get_envelope(credential.id)
            if envelope is None:
                return True
            self._store.open(envelope, credential.credential_hash)
        except Exception as e:
            errors.append(f"Local ciphertext invalid: {e}")
            return False
        return True

    async def _check_blob(self, credential: Credential, errors: list[str]) -> bool:
        if not (credential.storage_type.uses_blob and credential.blob_hash):
            return True
        if self._blob is None:
            errors.append("No blob gateway configured")
            return False
        try:
            found = await self._blob.exists(credential.blob_hash)
        except Exception as e:
            errors.append(f"Blob check failed: {e}")
            return False
        if not found:
            errors.append(f"Blob {credential.blob_hash} not found")
        return found

    async def _check_chain(self, credential: Credential, errors: list[str]) -> bool:
        if not credential.is_anchored:
            return True
        if self._anchor is None:
            errors.append("No ledger configured")
            return False
        if not credential.blob_hash:
            errors.append("Anchored credential has no blob hash")
            return False
        try:
            found = await self._anchor.verify_reference(
                credential.blob_hash,
                credential.credential_hash,
            )
        except Exception as e:
            errors.append(f"Chain check failed: {e}")
            return False
        if not found:
            errors.append("Chain reference not found in scanned blocks")
        return found
