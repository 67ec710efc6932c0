from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


class Issuer(db.Model):
    __tablename__ = "issuers"

    id = db.Column(db.Integer, primary_key=True)
    encrypted_name = db.Column(db.LargeBinary, nullable=False)
    secret_hash = db.Column(db.String(64), nullable=False)


class Student(db.Model):
    __tablename__ = "students"

    enrollment_id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    email = db.Column(db.String(254))
    program = db.Column(db.String(150), nullable=False)
    encrypted_secret = db.Column(db.LargeBinary, nullable=False)
    registered_at = db.Column(db.DateTime, nullable=False)


class Certificate(db.Model):
    __tablename__ = "certificates"

    # "0x" + 64 hex chars, always stored lower-case
    fingerprint = db.Column(db.String(66), primary_key=True)
    tx_ref = db.Column(db.String(128), nullable=False)

    holder_name = db.Column(db.String(150), nullable=False)
    enrollment_id = db.Column(db.String(64), nullable=False, index=True)
    program = db.Column(db.String(150), nullable=False)
    institution = db.Column(db.String(200), nullable=False)
    issue_year = db.Column(db.Integer, nullable=False)
    issued_at = db.Column(db.DateTime, nullable=False)

    photo = db.Column(db.LargeBinary)
    photo_type = db.Column(db.String(100))
    document = db.Column(db.LargeBinary)
    document_type = db.Column(db.String(100))


class Revocation(db.Model):
    __tablename__ = "revocations"

    # primary key doubles as the at-most-one-revocation constraint
    fingerprint = db.Column(
        db.String(66), db.ForeignKey("certificates.fingerprint"), primary_key=True
    )
    reason = db.Column(db.Text, nullable=False)
    revoked_by = db.Column(db.String(150), nullable=False)
    revoked_at = db.Column(db.DateTime, nullable=False)
