"""Academic certificate issuance, revocation and ledger-backed verification."""

__version__ = "0.1.0"
