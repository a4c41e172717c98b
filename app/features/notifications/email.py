"""
Outbound email.

Delivery is delegated to an HTTP email API when ``EMAIL_API_URL`` is set;
otherwise messages are only logged, which keeps local development and tests
free of network calls.
"""
import html
from typing import Optional

import httpx

from app.core import config
from app.utils import get_logger


log = get_logger(__name__)


class EmailDeliveryError(Exception):
    pass


class EmailSender:
    async def send(self, to: str, subject: str, html_body: str) -> None:
        raise NotImplementedError


class LogEmailSender(EmailSender):
    """Writes the message to the log instead of sending it."""

    async def send(self, to: str, subject: str, html_body: str) -> None:
        log.info("Email delivery disabled; would send %r to %s", subject, to)


class HttpEmailSender(EmailSender):
    def __init__(self, api_url: str, api_key: Optional[str], sender: str, timeout: float = 10.0):
        self.api_url = api_url
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout

    async def send(self, to: str, subject: str, html_body: str) -> None:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        payload = {"from": self.sender, "to": to, "subject": subject, "html": html_body}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.api_url, json=payload, headers=headers)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise EmailDeliveryError(f"Email API request failed: {e}") from e
        log.info("Sent %r to %s", subject, to)


def get_email_sender() -> EmailSender:
    """FastAPI dependency; tests override it with a recording sender."""
    if config.EMAIL_API_URL:
        return HttpEmailSender(config.EMAIL_API_URL, config.EMAIL_API_KEY, config.EMAIL_FROM)
    return LogEmailSender()


def invitation_email(name: str, organization_name: str, invite_link: str, role: str) -> tuple[str, str]:
    """Subject and HTML body of the invitation message."""
    subject = f"You're invited to join {organization_name}"
    role_label = role.replace("_", " ")
    body = (
        f"<p>Hi {html.escape(name)},</p>"
        f"<p>You have been invited to join <strong>{html.escape(organization_name)}</strong> "
        f"as a {html.escape(role_label)}.</p>"
        f'<p><a href="{html.escape(invite_link, quote=True)}">Accept your invitation</a></p>'
        f"<p>This link expires in {config.INVITATION_TTL_DAYS} days.</p>"
    )
    return subject, body
