from __future__ import annotations

import asyncio

import pytest

from certchain.app import create_app
from certchain.blockchain import InMemoryLedger
from certchain.config import Config
from certchain.database import db
from tests.factories import ISSUER_KEY, RecordingNotifier


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def app(ledger, notifier):
    config = Config(
        DATABASE_URI="sqlite:///:memory:",
        MASTER_KEY="test-master-key",
        ISSUER_SECRET=ISSUER_KEY,
        ISSUER_NAME="NIT Registrar",
        LEDGER=ledger,
        NOTIFIER=notifier,
        LEDGER_TIMEOUT=1.0,
        LEDGER_BACKEND="memory",
        NOTIFIER_BACKEND="log",
        TESTING=True,
    )
    app = create_app(config)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()
    asyncio.run(app.extensions["certchain"].aclose())


@pytest.fixture
def engine(app):
    return app.extensions["certchain"]


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def student(engine):
    return engine.issuance.register_student(
        "E100", "Asha Rao", "B.Sc", "0777", email="asha@example.edu"
    )

