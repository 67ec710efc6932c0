"""Local record store: credentials, students and revocations.

Three independent namespaces over one SQLAlchemy session. Every write commits
before returning; a failed commit is rolled back and surfaces as
``StoreUnavailable`` so callers never assume a write that did not happen.
"""
import threading
from datetime import timezone

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .crypto_utils import decrypt, encrypt
from .database import Certificate, Revocation, Student, db
from .errors import AlreadyRevoked, StoreUnavailable, UnknownCredential
from .models import (
    Attachment,
    CredentialRecord,
    RevocationRecord,
    StudentRecord,
    normalize_fingerprint,
)

logger = structlog.get_logger("certchain.store")


def _to_db(value):
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _from_db(value):
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def _attachment(content, content_type):
    if content is None:
        return None
    return Attachment(content=content, content_type=content_type or "application/octet-stream")


class RecordStore:
    def __init__(self, session, cipher):
        self.session = session
        self.cipher = cipher
        # one writer at a time; records are immutable once issued
        self._write_lock = threading.RLock()

    # ---------------- LIFECYCLE ----------------
    def init_schema(self):
        db.metadata.create_all(bind=self.session.get_bind())

    def close(self):
        remove = getattr(self.session, "remove", None)
        if remove is not None:
            remove()
        else:
            self.session.close()

    def _commit(self, namespace, key):
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error("store_write_failed", namespace=namespace, key=key, error=str(exc))
            raise StoreUnavailable(f"could not persist {namespace} record {key}") from exc

    # ---------------- CREDENTIALS ----------------
    def put_credential(self, record: CredentialRecord) -> CredentialRecord:
        key = normalize_fingerprint(record.fingerprint)
        row = Certificate(
            fingerprint=key,
            tx_ref=record.tx_ref,
            holder_name=record.holder_name,
            enrollment_id=record.enrollment_id,
            program=record.program,
            institution=record.institution,
            issue_year=record.issue_year,
            issued_at=_to_db(record.issued_at),
            photo=record.photo.content if record.photo else None,
            photo_type=record.photo.content_type if record.photo else None,
            document=record.document.content if record.document else None,
            document_type=record.document.content_type if record.document else None,
        )
        with self._write_lock:
            try:
                self.session.merge(row)
            except SQLAlchemyError as exc:
                self.session.rollback()
                raise StoreUnavailable(f"could not persist credential {key}") from exc
            self._commit("credentials", key)
        logger.debug("credential_stored", fingerprint=key)
        return self.get_credential(key)

    def get_credential(self, fingerprint):
        row = self.session.get(Certificate, normalize_fingerprint(fingerprint))
        return self._credential(row) if row is not None else None

    def list_credentials(self):
        rows = self.session.execute(
            db.select(Certificate).order_by(Certificate.issued_at)
        ).scalars()
        return [self._credential(row) for row in rows]

    def find_credentials(self, predicate):
        return [record for record in self.list_credentials() if predicate(record)]

    def credentials_for(self, enrollment_id):
        rows = self.session.execute(
            db.select(Certificate)
            .where(db.func.lower(Certificate.enrollment_id) == enrollment_id.strip().lower())
            .order_by(Certificate.issued_at)
        ).scalars()
        return [self._credential(row) for row in rows]

    @staticmethod
    def _credential(row):
        return CredentialRecord(
            fingerprint=row.fingerprint,
            tx_ref=row.tx_ref,
            holder_name=row.holder_name,
            enrollment_id=row.enrollment_id,
            program=row.program,
            institution=row.institution,
            issue_year=row.issue_year,
            issued_at=_from_db(row.issued_at),
            photo=_attachment(row.photo, row.photo_type),
            document=_attachment(row.document, row.document_type),
        )

    # ---------------- STUDENTS ----------------
    def put_student(self, record: StudentRecord) -> StudentRecord:
        key = record.enrollment_id.strip()
        row = Student(
            enrollment_id=key,
            name=record.name,
            email=record.email,
            program=record.program,
            encrypted_secret=encrypt(record.secret, self.cipher),
            registered_at=_to_db(record.registered_at),
        )
        with self._write_lock:
            try:
                self.session.merge(row)
            except SQLAlchemyError as exc:
                self.session.rollback()
                raise StoreUnavailable(f"could not persist student {key}") from exc
            self._commit("students", key)
        return self.get_student(key)

    def get_student(self, enrollment_id):
        row = self.session.execute(
            db.select(Student).where(
                db.func.lower(Student.enrollment_id) == enrollment_id.strip().lower()
            )
        ).scalar_one_or_none()
        return self._student(row) if row is not None else None

    def list_students(self):
        rows = self.session.execute(
            db.select(Student).order_by(Student.registered_at)
        ).scalars()
        return [self._student(row) for row in rows]

    def find_students(self, predicate):
        return [record for record in self.list_students() if predicate(record)]

    def _student(self, row):
        return StudentRecord(
            enrollment_id=row.enrollment_id,
            name=row.name,
            email=row.email,
            program=row.program,
            secret=decrypt(row.encrypted_secret, self.cipher),
            registered_at=_from_db(row.registered_at),
        )

    # ---------------- REVOCATIONS ----------------
    def add_revocation(self, record: RevocationRecord) -> RevocationRecord:
        """Insert-only: a second revocation for the same fingerprint is rejected."""
        key = normalize_fingerprint(record.fingerprint)
        with self._write_lock:
            if self.session.get(Certificate, key) is None:
                raise UnknownCredential(f"no local credential with fingerprint {key}")
            if self.session.get(Revocation, key) is not None:
                raise AlreadyRevoked(f"credential {key} is already revoked")

            self.session.add(Revocation(
                fingerprint=key,
                reason=record.reason,
                revoked_by=record.revoked_by,
                revoked_at=_to_db(record.revoked_at),
            ))
            try:
                self.session.commit()
            except IntegrityError as exc:
                self.session.rollback()
                raise AlreadyRevoked(f"credential {key} is already revoked") from exc
            except SQLAlchemyError as exc:
                self.session.rollback()
                logger.error("store_write_failed", namespace="revocations", key=key, error=str(exc))
                raise StoreUnavailable(f"could not persist revocation {key}") from exc
        return self.get_revocation(key)

    def get_revocation(self, fingerprint):
        row = self.session.get(Revocation, normalize_fingerprint(fingerprint))
        return self._revocation(row) if row is not None else None

    def list_revocations(self):
        rows = self.session.execute(
            db.select(Revocation).order_by(Revocation.revoked_at)
        ).scalars()
        return [self._revocation(row) for row in rows]

    def find_revocations(self, predicate):
        return [record for record in self.list_revocations() if predicate(record)]

    @staticmethod
    def _revocation(row):
        return RevocationRecord(
            fingerprint=row.fingerprint,
            reason=row.reason,
            revoked_by=row.revoked_by,
            revoked_at=_from_db(row.revoked_at),
        )

    # ---------------- STATS ----------------
    def counts(self):
        def count(model):
            return self.session.execute(
                db.select(db.func.count()).select_from(model)
            ).scalar_one()

        return {
            "students": count(Student),
            "certificates": count(Certificate),
            "revocations": count(Revocation),
        }
