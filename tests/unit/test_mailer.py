"""Unit tests for mail providers

Resend is exercised through httpx.MockTransport; SMTP through a
monkeypatched smtplib.SMTP.
"""

from __future__ import annotations

import json
import smtplib

import httpx
import pytest

from docketq.config import DigestConfig
from docketq.delivery.mailer import (
    RESEND_API_URL,
    OutboundEmail,
    ResendMailSender,
    SmtpMailSender,
    build_mail_sender,
)
from docketq.errors import ConfigurationError, MailSendError

MESSAGE = OutboundEmail(
    to="ana@example.com",
    subject="Agenda",
    html="<p>hi</p>",
    text="hi",
)


def resend_with(handler) -> ResendMailSender:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return ResendMailSender("re_key", "DocketQ <agenda@example.com>", timeout=3.0, client=client)


class TestResend:
    def test_posts_payload_and_returns_id(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "msg_123"})

        email_id = resend_with(handler).send(MESSAGE)

        assert email_id == "msg_123"
        assert seen["url"] == RESEND_API_URL
        assert seen["auth"] == "Bearer re_key"
        assert seen["body"] == {
            "from": "DocketQ <agenda@example.com>",
            "to": ["ana@example.com"],
            "subject": "Agenda",
            "html": "<p>hi</p>",
            "text": "hi",
        }

    def test_error_status_raises_with_body(self):
        def handler(request):
            return httpx.Response(422, text='{"message":"Invalid `to` field"}')

        with pytest.raises(MailSendError, match="Mail provider error 422"):
            resend_with(handler).send(MESSAGE)

    def test_timeout_raises(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(MailSendError, match="timed out after 3s"):
            resend_with(handler).send(MESSAGE)

    def test_connection_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(MailSendError, match="request failed"):
            resend_with(handler).send(MESSAGE)


class FakeSMTP:
    instances: list[FakeSMTP] = []
    fail_with: Exception | None = None

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.actions: list[str] = []
        self.messages = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        self.actions.append("starttls")

    def login(self, user, password):
        self.actions.append(f"login:{user}")

    def send_message(self, msg):
        if FakeSMTP.fail_with is not None:
            raise FakeSMTP.fail_with
        self.messages.append(msg)


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    FakeSMTP.fail_with = None
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


def smtp_sender() -> SmtpMailSender:
    return SmtpMailSender(
        host="smtp.example.com",
        port=587,
        user="mailer",
        password="pw",
        from_address="DocketQ <agenda@example.com>",
        timeout=7.0,
    )


class TestSmtp:
    def test_sends_multipart_message(self, fake_smtp):
        message_id = smtp_sender().send(MESSAGE)

        server = fake_smtp.instances[0]
        assert server.timeout == 7.0
        assert server.actions == ["starttls", "login:mailer"]
        sent = server.messages[0]
        assert sent["To"] == "ana@example.com"
        assert sent["Message-ID"] == message_id
        assert [part.get_content_type() for part in sent.get_payload()] == [
            "text/plain",
            "text/html",
        ]

    def test_timeout_raises(self, fake_smtp):
        fake_smtp.fail_with = TimeoutError("timed out")
        with pytest.raises(MailSendError, match="timed out after 7s"):
            smtp_sender().send(MESSAGE)

    def test_smtp_error_raises(self, fake_smtp):
        fake_smtp.fail_with = smtplib.SMTPRecipientsRefused({"ana@example.com": (550, b"no")})
        with pytest.raises(MailSendError, match="SMTP send failed"):
            smtp_sender().send(MESSAGE)


def test_build_mail_sender_selects_provider():
    resend = build_mail_sender(
        DigestConfig(resend_api_key="re_key", from_email="agenda@example.com")
    )
    assert isinstance(resend, ResendMailSender)

    smtp = build_mail_sender(
        DigestConfig(
            mail_provider="smtp",
            smtp_host="smtp.example.com",
            smtp_user="u",
            smtp_password="p",
            from_email="agenda@example.com",
        )
    )
    assert isinstance(smtp, SmtpMailSender)


def test_build_mail_sender_requires_credentials():
    with pytest.raises(ConfigurationError):
        build_mail_sender(DigestConfig(mail_provider="smtp", from_email="a@example.com"))
    with pytest.raises(ConfigurationError):
        build_mail_sender(DigestConfig(mail_provider="carrier-pigeon"))
