"""
Outbound email delivery for agenda digests.

Two providers sit behind the MailSender protocol:
- ResendMailSender: Resend HTTP API over httpx
- SmtpMailSender: STARTTLS SMTP

Both enforce a per-call timeout and raise MailSendError on any failure so
the dispatcher can record the error against that recipient and move on.
"""

from __future__ import annotations

import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formatdate, make_msgid
from typing import Any, Protocol

import httpx

from docketq.config import DigestConfig
from docketq.errors import ConfigurationError, MailSendError
from docketq.observability.logging import get_logger
from docketq.utils.redaction import mask_email

logger = get_logger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


@dataclass(frozen=True)
class OutboundEmail:
    to: str
    subject: str
    html: str
    text: str | None = None


class MailSender(Protocol):
    """Anything that can deliver one message and return its provider id."""

    def send(self, message: OutboundEmail) -> str: ...


class ResendMailSender:
    """Send through the Resend REST API."""

    def __init__(
        self,
        api_key: str,
        from_address: str,
        timeout: float,
        client: httpx.Client | None = None,
    ) -> None:
        self.api_key = api_key
        self.from_address = from_address
        self.timeout = timeout
        self._client = client or httpx.Client(timeout=timeout)

    def send(self, message: OutboundEmail) -> str:
        """
        Deliver one message.

        Returns:
            Resend message id

        Raises:
            MailSendError: on timeout, transport error, or non-2xx response

        Side Effects:
            Makes API calls
        """
        payload: dict[str, Any] = {
            "from": self.from_address,
            "to": [message.to],
            "subject": message.subject,
            "html": message.html,
        }
        if message.text:
            payload["text"] = message.text

        try:
            response = self._client.post(
                RESEND_API_URL,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except httpx.TimeoutException:
            logger.warning("Resend request timed out for %s", mask_email(message.to))
            raise MailSendError(f"Mail provider timed out after {self.timeout:.0f}s") from None
        except httpx.RequestError as e:
            logger.error("Resend request failed for %s: %s", mask_email(message.to), e)
            raise MailSendError(f"Mail provider request failed: {e}") from e

        if response.status_code >= 400:
            raise MailSendError(f"Mail provider error {response.status_code}: {response.text}")

        try:
            body = response.json()
        except ValueError:
            body = {}
        return str(body.get("id", ""))

    def close(self) -> None:
        self._client.close()


class SmtpMailSender:
    """Send through an SMTP relay with STARTTLS."""

    def __init__(
        self,
        host: str,
        port: int,
        user: str,
        password: str,
        from_address: str,
        timeout: float,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.from_address = from_address
        self.timeout = timeout

    def _build(self, message: OutboundEmail, message_id: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = self.from_address
        msg["To"] = message.to
        msg["Date"] = formatdate(localtime=False)
        msg["Message-ID"] = message_id
        if message.text:
            msg.attach(MIMEText(message.text, "plain", "utf-8"))
        msg.attach(MIMEText(message.html, "html", "utf-8"))
        return msg

    def send(self, message: OutboundEmail) -> str:
        """
        Deliver one message.

        Returns:
            The Message-ID header assigned to the message

        Raises:
            MailSendError: on timeout or any SMTP failure
        """
        message_id = make_msgid(domain=self.host)
        msg = self._build(message, message_id)

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.starttls()
                server.login(self.user, self.password)
                server.send_message(msg)
        except TimeoutError:
            logger.warning("SMTP send timed out for %s", mask_email(message.to))
            raise MailSendError(f"SMTP server timed out after {self.timeout:.0f}s") from None
        except (smtplib.SMTPException, OSError) as e:
            logger.error("SMTP send failed for %s: %s", mask_email(message.to), e)
            raise MailSendError(f"SMTP send failed: {e}") from e

        return message_id


def build_mail_sender(config: DigestConfig) -> MailSender:
    """
    Create the sender selected by config.mail_provider.

    Raises:
        ConfigurationError: if the provider's credentials are missing
    """
    if config.mail_provider == "resend":
        if not config.resend_api_key:
            raise ConfigurationError("RESEND_API_KEY is required for the resend mail provider")
        return ResendMailSender(
            api_key=config.resend_api_key,
            from_address=config.sender_address,
            timeout=config.mail_timeout_seconds,
        )
    if config.mail_provider == "smtp":
        if not (config.smtp_host and config.smtp_user and config.smtp_password):
            raise ConfigurationError("SMTP_HOST, SMTP_USER and SMTP_PASSWORD are required for smtp")
        return SmtpMailSender(
            host=config.smtp_host,
            port=config.smtp_port,
            user=config.smtp_user,
            password=config.smtp_password,
            from_address=config.sender_address,
            timeout=config.mail_timeout_seconds,
        )
    raise ConfigurationError(f"Unknown mail provider {config.mail_provider!r}")
