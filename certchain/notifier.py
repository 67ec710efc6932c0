"""Outbound issuance notifications.

Dispatch is fire-and-forget from the engine's point of view: a failure is
logged and reported as a warning on the issuance, never raised.
"""
import html
import re

import httpx
import structlog

logger = structlog.get_logger("certchain.notifier")

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
RESEND_URL = "https://api.resend.com/emails"


class NotificationError(Exception):
    pass


def verify_url(base_url, fingerprint):
    return f"{base_url.rstrip('/')}/verify?hash={fingerprint}"


class Notifier:
    async def notify(self, record, email):
        raise NotImplementedError

    async def close(self):
        pass


class LogNotifier(Notifier):
    """Records the notification in the log only."""

    async def notify(self, record, email):
        logger.info("certificate_notification", fingerprint=record.fingerprint, email=email)


class ResendNotifier(Notifier):
    """Sends through the Resend HTTP API.

    A client is opened per dispatch: each Flask async view runs on its own
    event loop, so pooled connections cannot outlive a request.
    """

    def __init__(self, api_key, sender, public_verify_url, timeout=10.0, transport=None):
        self.api_key = api_key
        self.sender = sender
        self.public_verify_url = public_verify_url
        self.timeout = timeout
        self.transport = transport

    def _body(self, record, email):
        link = html.escape(verify_url(self.public_verify_url, record.fingerprint))
        body = (
            f"<h2>Congratulations, {html.escape(record.holder_name)}!</h2>"
            f"<p>Your certificate for <strong>{html.escape(record.program)}</strong> from "
            f"{html.escape(record.institution)} ({record.issue_year}) has been issued and "
            f"recorded on the blockchain.</p>"
            f"<p>Enrollment: {html.escape(record.enrollment_id)}<br>"
            f"Certificate hash: <code>{record.fingerprint}</code><br>"
            f"Transaction: <code>{record.tx_ref}</code></p>"
            f'<p><a href="{link}">Verify your certificate</a></p>'
        )
        return {
            "from": self.sender,
            "to": [email],
            "subject": f"Your Certificate Has Been Issued - {record.program}",
            "html": body,
        }

    async def notify(self, record, email):
        if not email or not EMAIL_RE.match(email):
            raise NotificationError(f'Invalid email format: "{email}"')
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    RESEND_URL,
                    json=self._body(record, email),
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise NotificationError(f"email dispatch failed: {exc}") from exc
        logger.info("certificate_email_sent", fingerprint=record.fingerprint, email=email)
