"""Issuance coordinator.

Issuing a credential is a strictly ordered sequence: holder precondition,
fingerprint, ledger write and confirmation, then the local mirror write.
Nothing is stored locally unless the ledger confirmed the transaction. If
the mirror write fails after confirmation the caller gets ``PartialIssuance``
and ``reconcile`` can backfill the record from the ledger later.
"""
import asyncio
import time

import structlog

from .blockchain import with_timeout
from .crypto_utils import generate_fingerprint, secrets_match
from .errors import (
    DuplicateHolder,
    PartialIssuance,
    StoreUnavailable,
    UnregisteredHolder,
    ValidationError,
)
from .models import (
    Attachment,
    CredentialRecord,
    IssueResult,
    StudentRecord,
    normalize_fingerprint,
    utcnow,
)

logger = structlog.get_logger("certchain.issuance")

REQUIRED_FIELDS = ("enrollment_id", "holder_name", "program", "institution", "issue_year")
ATTACHMENT_KINDS = ("photo", "document")


def _require_text(fields, name):
    value = fields.get(name)
    if value is None or not str(value).strip():
        raise ValidationError(f"{name} is required")
    return str(value).strip()


def validate_credential_fields(fields):
    """Return cleaned credential fields or raise ``ValidationError``."""
    if not isinstance(fields, dict):
        raise ValidationError("credential fields must be an object")
    missing = [
        name for name in REQUIRED_FIELDS
        if fields.get(name) is None or not str(fields.get(name)).strip()
    ]
    if missing:
        raise ValidationError(f"missing required fields: {', '.join(missing)}")

    try:
        issue_year = int(str(fields["issue_year"]).strip())
    except ValueError as exc:
        raise ValidationError("issue_year must be an integer") from exc
    if issue_year < 1900 or issue_year > utcnow().year + 1:
        raise ValidationError(f"issue_year {issue_year} is out of range")

    return {
        "enrollment_id": _require_text(fields, "enrollment_id"),
        "holder_name": _require_text(fields, "holder_name"),
        "program": _require_text(fields, "program"),
        "institution": _require_text(fields, "institution"),
        "issue_year": issue_year,
    }


def validate_attachments(attachments):
    attachments = attachments or {}
    unknown = set(attachments) - set(ATTACHMENT_KINDS)
    if unknown:
        raise ValidationError(f"unknown attachment kinds: {', '.join(sorted(unknown))}")
    for kind, value in attachments.items():
        if value is not None and not isinstance(value, Attachment):
            raise ValidationError(f"{kind} must be an Attachment")
    return attachments


class IssuanceCoordinator:
    def __init__(self, store, ledger, notifier=None, ledger_timeout=30.0,
                 notify_timeout=10.0, clock=time.time_ns):
        self.store = store
        self.ledger = ledger
        self.notifier = notifier
        self.ledger_timeout = ledger_timeout
        self.notify_timeout = notify_timeout
        self.clock = clock

    # ---------------- HOLDERS ----------------
    def register_student(self, enrollment_id, name, program, secret, email=None) -> StudentRecord:
        fields = {"enrollment_id": enrollment_id, "name": name, "program": program, "secret": secret}
        enrollment_id, name, program, secret = (
            _require_text(fields, key) for key in ("enrollment_id", "name", "program", "secret")
        )
        email = email.strip() if email and email.strip() else None

        if self.store.get_student(enrollment_id) is not None:
            raise DuplicateHolder(f"enrollment {enrollment_id} is already registered")

        student = self.store.put_student(StudentRecord(
            enrollment_id=enrollment_id,
            name=name,
            email=email,
            program=program,
            secret=secret,
            registered_at=utcnow(),
        ))
        logger.info("student_registered", enrollment_id=enrollment_id)
        return student

    def verify_student_login(self, enrollment_id, secret) -> bool:
        student = self.store.get_student(enrollment_id or "")
        if student is None or not secret:
            return False
        return secrets_match(student.secret, secret)

    # ---------------- ISSUE ----------------
    async def issue(self, credential_fields, attachments=None) -> IssueResult:
        fields = validate_credential_fields(credential_fields)
        attachments = validate_attachments(attachments)

        student = self.store.get_student(fields["enrollment_id"])
        if student is None:
            raise UnregisteredHolder(
                f"enrollment {fields['enrollment_id']} has no registered student"
            )
        fields["enrollment_id"] = student.enrollment_id

        fingerprint = generate_fingerprint(
            fields["holder_name"],
            fields["enrollment_id"],
            fields["program"],
            fields["institution"],
            fields["issue_year"],
            clock=self.clock,
        )
        log = logger.bind(fingerprint=fingerprint, enrollment_id=fields["enrollment_id"])

        # ledger confirmation strictly precedes the local mirror write
        tx_ref = await with_timeout(
            self.ledger.issue(
                fingerprint,
                fields["enrollment_id"],
                fields["holder_name"],
                fields["program"],
                fields["institution"],
                fields["issue_year"],
            ),
            self.ledger_timeout,
            "issue",
        )
        log.info("ledger_issue_confirmed", tx_ref=tx_ref)

        record = CredentialRecord(
            fingerprint=fingerprint,
            tx_ref=tx_ref,
            holder_name=fields["holder_name"],
            enrollment_id=fields["enrollment_id"],
            program=fields["program"],
            institution=fields["institution"],
            issue_year=fields["issue_year"],
            issued_at=utcnow(),
            photo=attachments.get("photo"),
            document=attachments.get("document"),
        )
        try:
            record = self.store.put_credential(record)
        except StoreUnavailable as exc:
            log.error("partial_issuance", tx_ref=tx_ref, error=str(exc))
            raise PartialIssuance(fingerprint, tx_ref, cause=exc) from exc

        warnings = []
        warning = await self._notify(record, student)
        if warning:
            warnings.append(warning)
        return IssueResult(fingerprint=fingerprint, tx_ref=tx_ref, record=record,
                           warnings=tuple(warnings))

    async def _notify(self, record, student):
        if self.notifier is None or not student.email:
            return None
        try:
            await asyncio.wait_for(
                self.notifier.notify(record, student.email), timeout=self.notify_timeout
            )
        except Exception as exc:
            logger.warning("notification_failed", fingerprint=record.fingerprint, error=str(exc))
            return "Certificate issued but email notification failed."
        return None

    # ---------------- RECONCILE ----------------
    async def reconcile(self, fingerprint, tx_ref=None) -> CredentialRecord:
        """Backfill a ledger-confirmed credential missing from the local store.

        Idempotent: an existing local record is returned untouched. Attachments
        are not on the ledger and cannot be recovered.
        """
        key = normalize_fingerprint(fingerprint)
        existing = self.store.get_credential(key)
        if existing is not None:
            return existing

        ledger_fields = await with_timeout(self.ledger.fetch(key), self.ledger_timeout, "fetch")
        record = CredentialRecord.from_ledger(key, tx_ref or "reconciled", ledger_fields)
        record = self.store.put_credential(record)
        logger.info("credential_reconciled", fingerprint=key)
        return record
