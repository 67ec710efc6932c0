import os

from dotenv import load_dotenv


def _float(name, default):
    return float(os.getenv(name, default))


class Config:
    """Service settings read from the environment (``.env`` honoured).

    Keyword arguments override the environment, which is how tests inject an
    in-memory database and ledger.
    """

    def __init__(self, **overrides):
        load_dotenv()
        self.DATABASE_URI = os.getenv("CERTCHAIN_DATABASE_URI", "sqlite:///certchain.db")
        self.MASTER_KEY = os.getenv("MASTER_KEY", "")
        self.ISSUER_SECRET = os.getenv("ISSUER_SECRET", "")
        self.ISSUER_NAME = os.getenv("ISSUER_NAME", "Certificate Authority")

        self.LEDGER_BACKEND = os.getenv("LEDGER_BACKEND", "memory")
        self.LEDGER_RPC_URL = os.getenv("LEDGER_RPC_URL", "http://127.0.0.1:7545")
        self.LEDGER_CONTRACT_ADDRESS = os.getenv("LEDGER_CONTRACT_ADDRESS", "")
        self.LEDGER_PRIVATE_KEY = os.getenv("LEDGER_PRIVATE_KEY", "")
        self.LEDGER_ADMIN_ADDRESS = os.getenv("LEDGER_ADMIN_ADDRESS", "")
        self.LEDGER_TIMEOUT = _float("LEDGER_TIMEOUT", "30")
        self.LEDGER_CONFIRMATIONS_TIMEOUT = _float("LEDGER_CONFIRMATIONS_TIMEOUT", "120")

        self.NOTIFIER_BACKEND = os.getenv("NOTIFIER_BACKEND", "log")
        self.RESEND_API_KEY = os.getenv("RESEND_API_KEY", "")
        self.NOTIFY_FROM = os.getenv("NOTIFY_FROM", "CertChain <onboarding@resend.dev>")
        self.PUBLIC_VERIFY_URL = os.getenv("PUBLIC_VERIFY_URL", "http://localhost:8080")

        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
        self.LOG_FORMAT = os.getenv("LOG_FORMAT", "console")
        self.TESTING = False

        # injected collaborators, built from the settings above when None
        self.LEDGER = None
        self.NOTIFIER = None

        for key, value in overrides.items():
            setattr(self, key.upper(), value)

    def validate(self):
        missing = [name for name in ("MASTER_KEY", "ISSUER_SECRET") if not getattr(self, name)]
        if missing:
            raise RuntimeError(f"missing required settings: {', '.join(missing)}")
        if self.LEDGER_BACKEND == "web3" and not self.LEDGER_CONTRACT_ADDRESS:
            raise RuntimeError("LEDGER_CONTRACT_ADDRESS is required for the web3 ledger")
