"""Plain record types passed between the engine components.

The ORM rows in ``database`` never leave the record store; everything the
issuance, revocation and verification paths exchange is one of these.
"""
import base64
import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Tuple, Union


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_fingerprint(fingerprint: str) -> str:
    return fingerprint.strip().lower()


@dataclass(frozen=True)
class Attachment:
    content: bytes
    content_type: str = "application/octet-stream"

    def to_dict(self):
        return {
            "content_type": self.content_type,
            "content": base64.b64encode(self.content).decode("ascii"),
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            content=base64.b64decode(data["content"]),
            content_type=data.get("content_type") or "application/octet-stream",
        )


@dataclass(frozen=True)
class CredentialFields:
    """The subset of a credential the ledger itself knows about."""

    holder_name: str
    enrollment_id: str
    program: str
    institution: str
    issue_year: int
    issued_at: Optional[datetime] = None
    issuer_address: str = ""


@dataclass(frozen=True)
class CredentialRecord:
    fingerprint: str
    tx_ref: str
    holder_name: str
    enrollment_id: str
    program: str
    institution: str
    issue_year: int
    issued_at: datetime
    photo: Optional[Attachment] = None
    document: Optional[Attachment] = None

    @classmethod
    def from_ledger(cls, fingerprint, tx_ref, fields: CredentialFields, local=None):
        """Build a record from ledger fields, keeping local-only attachments."""
        return cls(
            fingerprint=fingerprint,
            tx_ref=local.tx_ref if local else tx_ref,
            holder_name=fields.holder_name,
            enrollment_id=fields.enrollment_id,
            program=fields.program,
            institution=fields.institution,
            issue_year=fields.issue_year,
            issued_at=fields.issued_at or (local.issued_at if local else utcnow()),
            photo=local.photo if local else None,
            document=local.document if local else None,
        )

    def to_dict(self, include_attachments=False):
        data = {
            "fingerprint": self.fingerprint,
            "tx_ref": self.tx_ref,
            "holder_name": self.holder_name,
            "enrollment_id": self.enrollment_id,
            "program": self.program,
            "institution": self.institution,
            "issue_year": self.issue_year,
            "issued_at": self.issued_at.isoformat(),
            "has_photo": self.photo is not None,
            "has_document": self.document is not None,
        }
        if include_attachments:
            data["photo"] = self.photo.to_dict() if self.photo else None
            data["document"] = self.document.to_dict() if self.document else None
        return data


@dataclass(frozen=True)
class StudentRecord:
    enrollment_id: str
    name: str
    program: str
    secret: str
    email: Optional[str] = None
    registered_at: datetime = field(default_factory=utcnow)

    def to_dict(self):
        # the login secret never leaves the engine
        return {
            "enrollment_id": self.enrollment_id,
            "name": self.name,
            "email": self.email,
            "program": self.program,
            "registered_at": self.registered_at.isoformat(),
        }


@dataclass(frozen=True)
class RevocationRecord:
    fingerprint: str
    reason: str
    revoked_by: str
    revoked_at: datetime = field(default_factory=utcnow)

    def to_dict(self):
        return {
            "fingerprint": self.fingerprint,
            "reason": self.reason,
            "revoked_by": self.revoked_by,
            "revoked_at": self.revoked_at.isoformat(),
        }


@dataclass(frozen=True)
class IssueResult:
    fingerprint: str
    tx_ref: str
    record: Optional[CredentialRecord] = None
    warnings: Tuple[str, ...] = ()

    def to_dict(self):
        return {
            "fingerprint": self.fingerprint,
            "tx_ref": self.tx_ref,
            "warnings": list(self.warnings),
        }


# ---------------- VERDICTS ----------------
class Source(str, enum.Enum):
    LEDGER = "ledger"
    LOCAL_ONLY = "local_only"


@dataclass(frozen=True)
class Valid:
    source: Source
    record: CredentialRecord
    status = "valid"

    def to_dict(self):
        return {
            "status": self.status,
            "source": self.source.value,
            "certificate": self.record.to_dict(),
        }


@dataclass(frozen=True)
class Revoked:
    reason: str
    revoked_at: datetime
    revoked_by: str
    record: Optional[CredentialRecord] = None
    status = "revoked"

    def to_dict(self):
        return {
            "status": self.status,
            "reason": self.reason,
            "revoked_at": self.revoked_at.isoformat(),
            "revoked_by": self.revoked_by,
            "certificate": self.record.to_dict() if self.record else None,
        }


@dataclass(frozen=True)
class NotFound:
    fingerprint: str
    status = "not_found"

    def to_dict(self):
        return {"status": self.status, "fingerprint": self.fingerprint}


Verdict = Union[Valid, Revoked, NotFound]
