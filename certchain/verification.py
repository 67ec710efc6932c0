"""Verification orchestrator.

Per request, with no persisted state:

1. normalise the fingerprint to lower case;
2. ask the ledger, and fetch the ledger copy when it reports the credential;
3. when the ledger is unreachable or does not know the fingerprint, fall back
   to the local record store and tag the result ``LOCAL_ONLY``;
4. apply the local revocation record last, overriding either source.

The revocation check must stay last. The ledger has no revoke operation, so
it is the only thing stopping a revoked credential from verifying as valid.
"""
import structlog

from .blockchain import with_timeout
from .errors import LedgerError, LedgerRecordMissing
from .models import CredentialRecord, NotFound, Revoked, Source, Valid, normalize_fingerprint

logger = structlog.get_logger("certchain.verification")


class VerificationOrchestrator:
    def __init__(self, store, ledger, revocations, ledger_timeout=30.0):
        self.store = store
        self.ledger = ledger
        self.revocations = revocations
        self.ledger_timeout = ledger_timeout

    async def _from_ledger(self, key, local):
        """Ledger-confirmed record, or None when the ledger cannot vouch for it."""
        try:
            if not await with_timeout(self.ledger.verify(key), self.ledger_timeout, "verify"):
                return None
            fields = await with_timeout(self.ledger.fetch(key), self.ledger_timeout, "fetch")
        except LedgerRecordMissing:
            return None
        except LedgerError as exc:
            logger.warning("ledger_unavailable_fallback", fingerprint=key, error=str(exc))
            return None
        return CredentialRecord.from_ledger(key, "", fields, local=local)

    async def verify(self, fingerprint):
        key = normalize_fingerprint(fingerprint or "")
        if not key:
            return NotFound(fingerprint=key)

        local = self.store.get_credential(key)
        record = await self._from_ledger(key, local)
        source = Source.LEDGER
        if record is None and local is not None:
            record, source = local, Source.LOCAL_ONLY

        revocation = self.revocations.get_revocation_info(key)
        if revocation is not None:
            logger.info("verification_revoked", fingerprint=key)
            return Revoked(
                reason=revocation.reason,
                revoked_at=revocation.revoked_at,
                revoked_by=revocation.revoked_by,
                record=record,
            )

        if record is None:
            logger.info("verification_not_found", fingerprint=key)
            return NotFound(fingerprint=key)

        logger.info("verification_valid", fingerprint=key, source=source.value)
        return Valid(source=source, record=record)
