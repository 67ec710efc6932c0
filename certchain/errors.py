"""Typed failures raised by the certificate engine.

Every error carries an HTTP status so the Flask layer can render it without
a lookup table. ``NotFound`` is deliberately absent: an unknown fingerprint is
a verification verdict, not a failure.
"""


class CertChainError(Exception):
    status_code = 400

    def __init__(self, message=""):
        super().__init__(message)
        self.message = message

    @property
    def kind(self):
        return type(self).__name__

    def to_dict(self):
        return {"error": self.kind, "message": self.message}


# ---------- INPUT / PRECONDITIONS ----------
class ValidationError(CertChainError):
    """Missing or malformed input, rejected before any external call."""


class UnregisteredHolder(CertChainError):
    status_code = 404


class DuplicateHolder(CertChainError):
    status_code = 409


class Unauthorized(CertChainError):
    status_code = 401


# ---------- LEDGER ----------
class LedgerError(CertChainError):
    status_code = 502


class LedgerRejected(LedgerError):
    """The ledger declined the transaction. Retrying will not help."""

    status_code = 422


class LedgerUnreachable(LedgerError):
    """Network failure or timeout. The caller may try again."""

    status_code = 503


class LedgerRecordMissing(LedgerError):
    status_code = 404


# ---------- LOCAL STORE ----------
class StoreUnavailable(CertChainError):
    status_code = 500


class PartialIssuance(CertChainError):
    """The ledger confirmed the credential but the local mirror write failed.

    The credential is valid on the ledger and invisible locally until
    ``IssuanceCoordinator.reconcile`` backfills it.
    """

    status_code = 500

    def __init__(self, fingerprint, tx_ref, cause=None):
        super().__init__(
            f"credential {fingerprint} confirmed in {tx_ref} but not stored locally"
        )
        self.fingerprint = fingerprint
        self.tx_ref = tx_ref
        self.cause = cause

    def to_dict(self):
        data = super().to_dict()
        data.update(fingerprint=self.fingerprint, tx_ref=self.tx_ref)
        return data


# ---------- REVOCATION ----------
class MissingReason(CertChainError):
    pass


class AlreadyRevoked(CertChainError):
    status_code = 409


class UnknownCredential(CertChainError):
    status_code = 404
