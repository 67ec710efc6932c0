import structlog

from .errors import MissingReason, ValidationError
from .models import RevocationRecord, normalize_fingerprint, utcnow

logger = structlog.get_logger("certchain.revocation")


class RevocationManager:
    """Local revocation bookkeeping. The ledger has no revoke operation.

    Revocations are permanent; the store rejects a second revocation for the
    same fingerprint, so ``revoke`` is exactly-once without caller checks.
    """

    def __init__(self, store):
        self.store = store

    def revoke(self, fingerprint, reason, revoked_by) -> RevocationRecord:
        if not reason or not reason.strip():
            raise MissingReason("a reason is required to revoke a certificate")
        if not fingerprint or not fingerprint.strip():
            raise ValidationError("fingerprint is required")

        record = self.store.add_revocation(RevocationRecord(
            fingerprint=normalize_fingerprint(fingerprint),
            reason=reason.strip(),
            revoked_by=(revoked_by or "unknown").strip(),
            revoked_at=utcnow(),
        ))
        logger.info("certificate_revoked", fingerprint=record.fingerprint, revoked_by=record.revoked_by)
        return record

    def is_revoked(self, fingerprint) -> bool:
        return self.store.get_revocation(fingerprint) is not None

    def get_revocation_info(self, fingerprint):
        return self.store.get_revocation(fingerprint)

    def list_revocations(self):
        return self.store.list_revocations()
