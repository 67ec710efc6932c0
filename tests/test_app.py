"""HTTP surface tests."""

from __future__ import annotations

import asyncio
import base64
from unittest.mock import AsyncMock

import pytest

from tests.factories import ISSUER_KEY, credential_fields

AUTH = {"X-Issuer-Key": ISSUER_KEY}


def register(client, enrollment_id="E100", email="asha@example.edu"):
    return client.post("/students", headers=AUTH, json={
        "enrollment_id": enrollment_id,
        "name": "Asha Rao",
        "email": email,
        "program": "B.Sc",
        "secret": "0777",
    })


def issue(client, **overrides):
    return client.post("/certificates", headers=AUTH, json=credential_fields(**overrides))


class TestAuthorization:
    @pytest.mark.parametrize("path", ["/students", "/certificates", "/certificates/0xab/revoke"])
    def test_mutations_require_issuer_key(self, client, path):
        response = client.post(path, json={}, headers={"X-Issuer-Key": "wrong"})
        assert response.status_code == 401
        assert response.get_json()["error"] == "Unauthorized"

    def test_missing_key(self, client):
        assert client.post("/certificates", json=credential_fields()).status_code == 401


class TestStudents:
    def test_register_and_fetch(self, client):
        response = register(client)
        assert response.status_code == 201
        assert "secret" not in response.get_json()

        fetched = client.get("/students/E100").get_json()
        assert fetched["name"] == "Asha Rao"

    def test_duplicate_registration(self, client):
        register(client)
        response = register(client)
        assert response.status_code == 409
        assert response.get_json()["error"] == "DuplicateHolder"

    def test_unknown_student(self, client):
        assert client.get("/students/E404").status_code == 404

    def test_login(self, client):
        register(client)
        assert client.post("/students/E100/login", json={"secret": "0777"}).get_json() == {"authenticated": True}
        assert client.post("/students/E100/login", json={"secret": "nope"}).status_code == 401


class TestIssueAndVerify:
    def test_lifecycle(self, client):
        register(client)
        response = issue(client)
        assert response.status_code == 201
        fingerprint = response.get_json()["fingerprint"]

        verdict = client.get(f"/verify/{fingerprint}").get_json()
        assert verdict["status"] == "valid"
        assert verdict["source"] == "ledger"
        assert verdict["certificate"]["holder_name"] == "Asha Rao"

        revoked = client.post(f"/certificates/{fingerprint}/revoke", headers=AUTH,
                              json={"reason": "duplicate submission", "revoked_by": "admin-1"})
        assert revoked.status_code == 201

        verdict = client.get(f"/verify/{fingerprint}").get_json()
        assert verdict["status"] == "revoked"
        assert verdict["reason"] == "duplicate submission"
        assert verdict["revoked_by"] == "admin-1"

        assert client.get("/verify/0xdeadbeef").get_json()["status"] == "not_found"

    def test_unregistered_holder(self, client, ledger):
        response = issue(client, enrollment_id="E404")
        assert response.status_code == 404
        assert response.get_json()["error"] == "UnregisteredHolder"
        assert ledger.issue_calls == 0

    def test_validation_error(self, client):
        register(client)
        response = issue(client, institution="")
        assert response.status_code == 400
        assert response.get_json()["error"] == "ValidationError"

    @pytest.mark.parametrize("body", [[1, 2], "E100", 42])
    def test_non_object_body(self, client, ledger, body):
        response = client.post("/certificates", headers=AUTH, json=body)
        assert response.status_code == 400
        assert response.get_json()["error"] == "ValidationError"
        assert ledger.issue_calls == 0

    @pytest.mark.parametrize("photo", [
        {"content": 123, "content_type": "image/png"},
        {"content": "aGk=", "content_type": 7},
        "aGk=",
        ["aGk="],
    ])
    def test_malformed_attachment(self, client, ledger, photo):
        register(client)
        response = issue(client, photo=photo)
        assert response.status_code == 400
        assert response.get_json()["error"] == "ValidationError"
        assert ledger.issue_calls == 0

    def test_ledger_unreachable(self, client, ledger):
        register(client)
        ledger.online = False
        response = issue(client)
        assert response.status_code == 503
        assert response.get_json()["error"] == "LedgerUnreachable"

    def test_ledger_rejected(self, client, ledger):
        register(client)
        ledger.signer = "intruder"
        response = issue(client)
        assert response.status_code == 422
        assert response.get_json()["error"] == "LedgerRejected"

    def test_revoke_requires_reason(self, client):
        register(client)
        fingerprint = issue(client).get_json()["fingerprint"]
        response = client.post(f"/certificates/{fingerprint}/revoke", headers=AUTH, json={"reason": ""})
        assert response.status_code == 400
        assert response.get_json()["error"] == "MissingReason"
        assert client.get("/revocations").get_json() == []

    def test_revoked_by_defaults_to_issuer(self, client):
        register(client)
        fingerprint = issue(client).get_json()["fingerprint"]
        client.post(f"/certificates/{fingerprint}/revoke", headers=AUTH, json={"reason": "typo"})
        assert client.get("/revocations").get_json()[0]["revoked_by"] == "NIT Registrar"

    def test_json_attachments_round_trip(self, client):
        register(client)
        photo = base64.b64encode(b"jpeg-bytes").decode()
        response = client.post("/certificates", headers=AUTH, json=dict(
            credential_fields(), photo={"content": photo, "content_type": "image/jpeg"},
        ))
        fingerprint = response.get_json()["fingerprint"]

        body = client.get(f"/certificates/{fingerprint}").get_json()
        assert body["photo"] == {"content": photo, "content_type": "image/jpeg"}
        assert body["document"] is None

    def test_student_certificates(self, client):
        register(client)
        first = issue(client).get_json()["fingerprint"]
        second = issue(client).get_json()["fingerprint"]
        client.post(f"/certificates/{first}/revoke", headers=AUTH, json={"reason": "typo"})

        listing = client.get("/students/E100/certificates").get_json()
        assert {item["fingerprint"]: item["revoked"] for item in listing} == {first: True, second: False}


class TestDocuments:
    def test_qr_code_png(self, client):
        register(client)
        fingerprint = issue(client).get_json()["fingerprint"]
        response = client.get(f"/qr/{fingerprint}")
        assert response.status_code == 200
        assert response.mimetype == "image/png"
        assert response.data.startswith(b"\x89PNG")

    def test_pdf_download(self, client):
        register(client)
        fingerprint = issue(client).get_json()["fingerprint"]
        response = client.get(f"/download/{fingerprint}")
        assert response.status_code == 200
        assert response.mimetype == "application/pdf"
        assert response.data.startswith(b"%PDF")

    def test_unknown_certificate_documents(self, client):
        assert client.get("/qr/0xdeadbeef").status_code == 404
        assert client.get("/download/0xdeadbeef").status_code == 404


def test_stats(client):
    register(client)
    issue(client)
    assert client.get("/stats").get_json() == {"students": 1, "certificates": 1, "revocations": 0}


def test_health(client):
    assert client.get("/health").get_json() == {"ok": True}


class TestLifecycle:
    def test_app_context_teardown_releases_store(self, app, engine, monkeypatch):
        closed = []
        monkeypatch.setattr(engine.store, "close", lambda: closed.append(True))
        with app.app_context():
            pass
        assert closed == [True]

    def test_aclose_releases_ledger_and_notifier(self, engine, ledger, notifier):
        ledger.close = AsyncMock()
        notifier.close = AsyncMock()

        asyncio.run(engine.aclose())

        ledger.close.assert_awaited_once()
        notifier.close.assert_awaited_once()
