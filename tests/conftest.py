"""
Pytest configuration for the agenda digest tests

Provides in-memory fakes for the two external collaborators (agenda store
and mail sender), a validated config, and a fixed clock.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

import pytest

from docketq.agenda.models import Commitment, NotificationSettings, Profile, UserAccount
from docketq.config import DigestConfig
from docketq.delivery.mailer import OutboundEmail
from docketq.errors import DataStoreError
from docketq.observability.telemetry import reset_counters, reset_latencies

# 11:30 UTC == 08:30 in America/Sao_Paulo (UTC-3, no DST)
NOW = datetime(2026, 3, 10, 11, 30, tzinfo=UTC)


class FakeAgendaStore:
    """In-memory AgendaStore that records every call."""

    def __init__(self) -> None:
        self.commitments: list[Commitment] = []
        self.profiles: dict[str, Profile] = {}
        self.settings: dict[str, NotificationSettings] = {}
        self.accounts: dict[str, UserAccount] = {}
        self.calls: list[str] = []
        self.fail_on: set[str] = set()

    def add_user(
        self,
        user_id: str,
        email: str | None = None,
        full_name: str = "",
        opted_in: bool = True,
        timezone: str | None = None,
        send_time: str | None = "08:00",
        agenda_timezone: str | None = None,
    ) -> None:
        self.accounts[user_id] = UserAccount(id=user_id, email=email)
        self.profiles[user_id] = Profile(
            user_id=user_id,
            full_name=full_name,
            receive_agenda_notifications=opted_in,
            timezone=timezone,
        )
        if send_time is not None or agenda_timezone is not None:
            self.settings[user_id] = NotificationSettings(
                user_id=user_id,
                agenda_email_time=send_time or "",
                agenda_timezone=agenda_timezone,
            )

    def add_commitment(self, user_id: str, title: str, hours_from_now: float, **fields) -> None:
        self.commitments.append(
            Commitment(
                user_id=user_id,
                title=title,
                commitment_date=NOW + timedelta(hours=hours_from_now),
                **fields,
            )
        )

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail_on:
            raise DataStoreError(f"{name} failed: connection refused")

    def fetch_pending_commitments(self, start: datetime, end: datetime) -> list[Commitment]:
        self._record("fetch_pending_commitments")
        return [
            c
            for c in self.commitments
            if c.status == "pending" and start <= c.commitment_date < end
        ]

    def fetch_profiles(self, user_ids: Sequence[str]) -> list[Profile]:
        self._record("fetch_profiles")
        return [self.profiles[uid] for uid in user_ids if uid in self.profiles]

    def fetch_notification_settings(self, user_ids: Sequence[str]) -> list[NotificationSettings]:
        self._record("fetch_notification_settings")
        return [self.settings[uid] for uid in user_ids if uid in self.settings]

    def get_user_email(self, user_id: str) -> str | None:
        self._record("get_user_email")
        account = self.accounts.get(user_id)
        return account.email if account else None

    def find_user_by_email(self, email: str) -> UserAccount | None:
        self._record("find_user_by_email")
        for account in self.accounts.values():
            if account.email and account.email.lower() == email.lower():
                return account
        return None


class FakeMailSender:
    """Thread-safe MailSender that records messages and can fail per address."""

    def __init__(self) -> None:
        self.sent: list[OutboundEmail] = []
        self.fail_for: dict[str, Exception] = {}
        self._lock = threading.Lock()

    def send(self, message: OutboundEmail) -> str:
        if message.to in self.fail_for:
            raise self.fail_for[message.to]
        with self._lock:
            self.sent.append(message)
            return f"email-{len(self.sent)}"

    @property
    def recipients(self) -> set[str]:
        return {m.to for m in self.sent}


@pytest.fixture(autouse=True)
def _reset_telemetry():
    reset_counters()
    reset_latencies()
    yield


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def config() -> DigestConfig:
    return DigestConfig(
        agenda_secret="s3cret",
        mail_provider="resend",
        resend_api_key="re_test_key",
        from_email="agenda@example.com",
        from_name="DocketQ",
        max_workers=4,
        mail_timeout_seconds=5.0,
        dispatch_timeout_seconds=10.0,
    ).validate()


@pytest.fixture
def store() -> FakeAgendaStore:
    return FakeAgendaStore()


@pytest.fixture
def sender() -> FakeMailSender:
    return FakeMailSender()
