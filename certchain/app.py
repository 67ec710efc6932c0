import asyncio

from flask import Flask, current_app, jsonify, request, send_file
from flask_cors import CORS
import structlog

from .auth import IssuerDirectory
from .blockchain import InMemoryLedger, Web3Ledger
from .config import Config
from .crypto_utils import get_cipher
from .database import db
from .documents import certificate_pdf, qr_png
from .errors import CertChainError, UnknownCredential, UnregisteredHolder, ValidationError
from .issuance import ATTACHMENT_KINDS, IssuanceCoordinator
from .logging import setup_logging
from .models import Attachment
from .notifier import LogNotifier, ResendNotifier
from .revocation import RevocationManager
from .store import RecordStore
from .verification import VerificationOrchestrator

logger = structlog.get_logger("certchain.app")


def build_ledger(config):
    if config.LEDGER is not None:
        return config.LEDGER
    if config.LEDGER_BACKEND == "web3":
        return Web3Ledger(
            config.LEDGER_RPC_URL,
            config.LEDGER_CONTRACT_ADDRESS,
            private_key=config.LEDGER_PRIVATE_KEY,
            admin_address=config.LEDGER_ADMIN_ADDRESS,
            receipt_timeout=config.LEDGER_CONFIRMATIONS_TIMEOUT,
        )
    return InMemoryLedger()


def build_notifier(config):
    if config.NOTIFIER is not None:
        return config.NOTIFIER
    if config.NOTIFIER_BACKEND == "resend":
        return ResendNotifier(config.RESEND_API_KEY, config.NOTIFY_FROM, config.PUBLIC_VERIFY_URL)
    return LogNotifier()


class CertChain:
    """The engine components wired to one store handle."""

    def __init__(self, config, session):
        cipher = get_cipher(config.MASTER_KEY.encode())
        self.config = config
        self.store = RecordStore(session, cipher)
        self.directory = IssuerDirectory(session, cipher)
        self.ledger = build_ledger(config)
        self.notifier = build_notifier(config)
        self.revocations = RevocationManager(self.store)
        self.issuance = IssuanceCoordinator(
            self.store, self.ledger, self.notifier, ledger_timeout=config.LEDGER_TIMEOUT
        )
        self.verification = VerificationOrchestrator(
            self.store, self.ledger, self.revocations, ledger_timeout=config.LEDGER_TIMEOUT
        )

    async def aclose(self):
        """Release the ledger and notifier connections on shutdown."""
        await self.ledger.close()
        await self.notifier.close()


def _engine() -> CertChain:
    return current_app.extensions["certchain"]


def _payload():
    if request.is_json:
        data = request.get_json(silent=True)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValidationError("request body must be a JSON object")
        return data
    return request.form.to_dict()


def _principal():
    return _engine().directory.authenticate(request.headers.get("X-Issuer-Key", "").strip())


def _attachments(data):
    attachments = {}
    for kind in ATTACHMENT_KINDS:
        upload = request.files.get(kind)
        if upload is not None and upload.filename:
            attachments[kind] = Attachment(
                content=upload.read(),
                content_type=upload.mimetype or "application/octet-stream",
            )
        elif data.get(kind) is not None:
            value = data[kind]
            if (
                not isinstance(value, dict)
                or not isinstance(value.get("content"), str)
                or not isinstance(value.get("content_type") or "", str)
            ):
                raise ValidationError(f"{kind} must carry base64 content")
            try:
                attachments[kind] = Attachment.from_dict(value)
            except ValueError as exc:
                raise ValidationError(f"{kind} must carry base64 content") from exc
    return attachments


def create_app(config=None):
    config = config or Config()
    config.validate()
    setup_logging(config.LOG_LEVEL, config.LOG_FORMAT)

    app = Flask(__name__)
    CORS(app)
    app.config["SQLALCHEMY_DATABASE_URI"] = config.DATABASE_URI
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["TESTING"] = config.TESTING

    db.init_app(app)

    with app.app_context():
        engine = CertChain(config, db.session)
        engine.store.init_schema()
        engine.directory.ensure_issuer_exists(config.ISSUER_NAME, config.ISSUER_SECRET)
    app.extensions["certchain"] = engine

    @app.teardown_appcontext
    def release_store(exc):
        engine.store.close()

    register_routes(app)
    logger.info("app_started", ledger=type(engine.ledger).__name__, database=config.DATABASE_URI)
    return app


def register_routes(app):
    @app.errorhandler(CertChainError)
    def handle_error(exc):
        return jsonify(exc.to_dict()), exc.status_code

    @app.get("/health")
    def health():
        return {"ok": True}, 200

    # ---------------- STUDENTS ----------------
    @app.post("/students")
    def register_student():
        _principal()
        data = _payload()
        student = _engine().issuance.register_student(
            data.get("enrollment_id", ""),
            data.get("name", ""),
            data.get("program", ""),
            data.get("secret", ""),
            email=data.get("email"),
        )
        return jsonify(student.to_dict()), 201

    @app.get("/students/<enrollment_id>")
    def get_student(enrollment_id):
        student = _engine().store.get_student(enrollment_id)
        if student is None:
            raise UnregisteredHolder(f"enrollment {enrollment_id} is not registered")
        return jsonify(student.to_dict())

    @app.get("/students/<enrollment_id>/certificates")
    def student_certificates(enrollment_id):
        engine = _engine()
        records = engine.store.credentials_for(enrollment_id)
        return jsonify([
            dict(record.to_dict(), revoked=engine.revocations.is_revoked(record.fingerprint))
            for record in records
        ])

    @app.post("/students/<enrollment_id>/login")
    def student_login(enrollment_id):
        data = _payload()
        ok = _engine().issuance.verify_student_login(enrollment_id, data.get("secret", ""))
        return jsonify({"authenticated": ok}), 200 if ok else 401

    # ---------------- ISSUE ----------------
    @app.post("/certificates")
    async def issue():
        _principal()
        data = _payload()
        result = await _engine().issuance.issue(data, _attachments(data))
        return jsonify(result.to_dict()), 201

    @app.get("/certificates/<fingerprint>")
    def certificate_view(fingerprint):
        record = _engine().store.get_credential(fingerprint)
        if record is None:
            raise UnknownCredential(f"certificate {fingerprint} not found")
        return jsonify(record.to_dict(include_attachments=True))

    @app.post("/certificates/<fingerprint>/reconcile")
    async def reconcile(fingerprint):
        _principal()
        data = _payload()
        record = await _engine().issuance.reconcile(fingerprint, tx_ref=data.get("tx_ref"))
        return jsonify(record.to_dict())

    # ---------------- VERIFY ----------------
    @app.get("/verify/<fingerprint>")
    async def verify(fingerprint):
        verdict = await _engine().verification.verify(fingerprint)
        return jsonify(verdict.to_dict())

    # ---------------- REVOKE ----------------
    @app.post("/certificates/<fingerprint>/revoke")
    def revoke(fingerprint):
        principal = _principal()
        data = _payload()
        record = _engine().revocations.revoke(
            fingerprint, data.get("reason", ""), data.get("revoked_by") or principal
        )
        return jsonify(record.to_dict()), 201

    @app.get("/revocations")
    def revocations():
        return jsonify([record.to_dict() for record in _engine().revocations.list_revocations()])

    # ---------------- QR / PDF ----------------
    @app.get("/qr/<fingerprint>")
    def qr_code(fingerprint):
        engine = _engine()
        record = engine.store.get_credential(fingerprint)
        if record is None:
            raise UnknownCredential(f"certificate {fingerprint} not found")
        return send_file(qr_png(engine.config.PUBLIC_VERIFY_URL, record.fingerprint),
                         mimetype="image/png")

    @app.get("/download/<fingerprint>")
    def download_certificate(fingerprint):
        engine = _engine()
        record = engine.store.get_credential(fingerprint)
        if record is None:
            raise UnknownCredential(f"certificate {fingerprint} not found")
        status = "REVOKED" if engine.revocations.is_revoked(record.fingerprint) else "ACTIVE"
        buffer = certificate_pdf(
            record, engine.directory.issuer_name(), status, engine.config.PUBLIC_VERIFY_URL
        )
        return send_file(buffer, as_attachment=True,
                         download_name=f"{record.fingerprint}.pdf",
                         mimetype="application/pdf")

    @app.get("/stats")
    def stats():
        return jsonify(_engine().store.counts())


def main():
    app = create_app()
    try:
        app.run(port=8080, debug=False)
    finally:
        asyncio.run(app.extensions["certchain"].aclose())


if __name__ == "__main__":
    main()
