"""Issuer role directory.

A single issuer account guards every state-changing operation. Its display
name is stored Fernet-encrypted and its shared secret only as a SHA-256 hash.
"""
from .crypto_utils import decrypt, encrypt, sha256_hash, verify_secret_hash
from .database import Issuer, db
from .errors import Unauthorized


class IssuerDirectory:
    def __init__(self, session, cipher):
        self.session = session
        self.cipher = cipher

    def ensure_issuer_exists(self, name, secret):
        issuer = self.session.execute(db.select(Issuer)).scalars().first()
        if not issuer:
            issuer = Issuer(
                encrypted_name=encrypt(name, self.cipher),
                secret_hash=sha256_hash(secret),
            )
            self.session.add(issuer)
            self.session.commit()
        return issuer

    def _issuer(self):
        issuer = self.session.execute(db.select(Issuer)).scalars().first()
        if issuer is None:
            raise Unauthorized("no issuer configured")
        return issuer

    def issuer_name(self):
        return decrypt(self._issuer().encrypted_name, self.cipher)

    def authenticate(self, issuer_key):
        """Return the issuer's name as the acting principal, or raise ``Unauthorized``."""
        issuer = self._issuer()
        if not issuer_key or not verify_secret_hash(issuer_key, issuer.secret_hash):
            raise Unauthorized("Unauthorized Issuer")
        return decrypt(issuer.encrypted_name, self.cipher)
