"""
Outgoing e-mail through a SendGrid-compatible HTTP API.
"""

import base64
import logging
from dataclasses import dataclass, field
from functools import lru_cache

import httpx

from refdesk.config import settings
from refdesk.core.exceptions import MailerError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Attachment:
    filename: str
    content: bytes
    mime_type: str = "application/pdf"

    def to_wire(self) -> dict:
        return {
            "content": base64.b64encode(self.content).decode("ascii"),
            "filename": self.filename,
            "type": self.mime_type,
            "disposition": "attachment",
        }


@dataclass(frozen=True)
class EmailMessage:
    to: list[str]
    subject: str
    html: str
    text: str
    attachments: list[Attachment] = field(default_factory=list)


class Mailer:
    def __init__(
        self,
        url: str,
        api_key: str,
        from_email: str,
        from_name: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name
        self.timeout = timeout
        self.transport = transport

    def build_request_body(self, message: EmailMessage) -> dict:
        body = {
            "personalizations": [{"to": [{"email": email} for email in message.to]}],
            "from": {"email": self.from_email, "name": self.from_name},
            "subject": message.subject,
            "content": [
                {"type": "text/plain", "value": message.text},
                {"type": "text/html", "value": message.html},
            ],
        }
        if message.attachments:
            body["attachments"] = [a.to_wire() for a in message.attachments]
        return body

    async def send(self, message: EmailMessage) -> None:
        """
        Send one message to all of its recipients.

        Raises:
            MailerError: if the API is not configured, unreachable, or rejects the message
        """
        if not message.to:
            raise MailerError("Message has no recipients")
        if not self.api_key:
            raise MailerError("Email service is not configured.")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.post(
                    self.url, json=self.build_request_body(message), headers=headers
                )
        except httpx.HTTPError as exc:
            raise MailerError(f"Email API unreachable: {exc}") from exc

        if response.status_code >= 400:
            logger.error(
                f"Email API error {response.status_code}: {response.text[:500]}"
            )
            raise MailerError(
                f"Failed to send email ({response.status_code}): {response.text[:200]}"
            )
        logger.info(f"Sent '{message.subject}' to {len(message.to)} recipient(s)")


@lru_cache(maxsize=None)
def get_mailer() -> Mailer:
    return Mailer(
        url=settings.mailer_url,
        api_key=settings.mailer_api_key,
        from_email=settings.mailer_from_email,
        from_name=settings.mailer_from_name,
        timeout=settings.mailer_timeout_seconds,
    )
