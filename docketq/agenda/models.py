"""
Module: models
Purpose: Domain types read by the agenda digest and the per-run report.
Dependencies: stdlib only

Commitments, profiles, settings and accounts are owned by the main
application; the digest treats them as read-only snapshots.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


def parse_instant(value: str | datetime) -> datetime:
    """Parse an ISO-8601 instant; naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


# ---------------------------------------------------------------------------
# Store snapshots
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Commitment:
    """A scheduled legal obligation (hearing, filing deadline) owned by a user."""

    user_id: str
    title: str
    commitment_date: datetime
    location: str | None = None
    process_number: str | None = None
    client_name: str | None = None
    status: str = "pending"

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Commitment:
        return cls(
            user_id=str(row["user_id"]),
            title=row["title"],
            commitment_date=parse_instant(row["commitment_date"]),
            location=row.get("location") or None,
            process_number=row.get("process_number") or None,
            client_name=row.get("client_name") or None,
            status=row.get("status", "pending"),
        )


@dataclass(frozen=True)
class Profile:
    user_id: str
    full_name: str = ""
    receive_agenda_notifications: bool = False
    timezone: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Profile:
        return cls(
            user_id=str(row["user_id"]),
            full_name=row.get("full_name") or "",
            receive_agenda_notifications=bool(row.get("receive_agenda_notifications")),
            timezone=row.get("timezone") or None,
        )


@dataclass(frozen=True)
class NotificationSettings:
    user_id: str
    agenda_email_time: str
    agenda_timezone: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> NotificationSettings:
        return cls(
            user_id=str(row["user_id"]),
            agenda_email_time=row.get("agenda_email_time") or "",
            agenda_timezone=row.get("agenda_timezone") or None,
        )


@dataclass(frozen=True)
class UserAccount:
    """Auth account: the only place a recipient address lives."""

    id: str
    email: str | None


# ---------------------------------------------------------------------------
# Per-run report
# ---------------------------------------------------------------------------


class DispatchStatus(str, Enum):
    """Outcome of one recipient's dispatch.

    Extends str so JSON serialization produces the raw value ("sent").
    """

    SENT = "sent"
    ERROR = "error"


@dataclass
class DispatchResult:
    """Outcome for a single recipient within one run."""

    status: DispatchStatus
    timezone: str
    email_id: str | None = None
    preferred_time: str | None = None
    error: str | None = None
    test_mode: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"status": self.status.value, "timezone": self.timezone}
        if self.email_id is not None:
            data["email_id"] = self.email_id
        if self.preferred_time is not None:
            data["preferred_time"] = self.preferred_time
        if self.error is not None:
            data["error"] = self.error
        if self.test_mode:
            data["test_mode"] = True
        return data


@dataclass
class RunSummary:
    """Aggregate report returned to the scheduler for one invocation."""

    message: str
    results: dict[str, DispatchResult] = field(default_factory=dict)
    processed_users: int = 0
    test_mode: bool = False

    @property
    def sent(self) -> int:
        return sum(1 for r in self.results.values() if r.status is DispatchStatus.SENT)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results.values() if r.status is DispatchStatus.ERROR)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "message": self.message,
            "sent": self.sent,
            "processed_users": self.processed_users,
            "results": {user_id: r.to_dict() for user_id, r in self.results.items()},
        }
        if self.test_mode:
            data["test_mode"] = True
        return data
