"""
Agenda store - read access to commitments, profiles, settings and accounts.

AgendaStore is the seam the dispatcher depends on. SqliteAgendaStore is the
bundled implementation over the pooled SQLite database; any sqlite3 error
is re-raised as DataStoreError so the dispatcher can abort the run.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime
from functools import wraps
from pathlib import Path
from typing import Any, Protocol, TypeVar

from docketq.agenda.models import Commitment, NotificationSettings, Profile, UserAccount
from docketq.config import DIGEST_PENDING_STATUS
from docketq.errors import DataStoreError
from docketq.infrastructure.database import db_transaction, get_db_connection, retry_on_db_lock
from docketq.observability.logging import get_logger

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


class AgendaStore(Protocol):
    """Read-only view of the tables the digest depends on."""

    def fetch_pending_commitments(self, start: datetime, end: datetime) -> list[Commitment]: ...

    def fetch_profiles(self, user_ids: Sequence[str]) -> list[Profile]: ...

    def fetch_notification_settings(self, user_ids: Sequence[str]) -> list[NotificationSettings]: ...

    def get_user_email(self, user_id: str) -> str | None: ...

    def find_user_by_email(self, email: str) -> UserAccount | None: ...


def to_db_instant(value: datetime) -> str:
    """Normalize an instant to the stored ISO-8601 UTC text form."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="seconds")


def _store_errors(func: F) -> F:
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except (sqlite3.Error, FileNotFoundError, RuntimeError) as e:
            logger.error("Agenda store read failed in %s: %s", func.__name__, e)
            raise DataStoreError(str(e)) from e

    return wrapper  # type: ignore[return-value]


def _placeholders(values: Sequence[Any]) -> str:
    return ", ".join("?" for _ in values)


class SqliteAgendaStore:
    """
    AgendaStore over the pooled SQLite database.

    All reads use connection pooling and retry on lock contention.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = db_path

    def _query(self, query: str, params: Iterable[Any] = ()) -> list[dict[str, Any]]:
        with get_db_connection(self.db_path) as conn:
            cursor = conn.execute(query, tuple(params))
            return [dict(row) for row in cursor.fetchall()]

    @_store_errors
    @retry_on_db_lock()
    def fetch_pending_commitments(self, start: datetime, end: datetime) -> list[Commitment]:
        """
        Pending commitments with commitment_date in [start, end), soonest first.
        """
        rows = self._query(
            """
            SELECT user_id, title, commitment_date, location, process_number,
                   client_name, status
            FROM legal_commitments
            WHERE commitment_date >= ? AND commitment_date < ? AND status = ?
            ORDER BY commitment_date ASC, id ASC
            """,
            (to_db_instant(start), to_db_instant(end), DIGEST_PENDING_STATUS),
        )
        return [Commitment.from_row(row) for row in rows]

    @_store_errors
    @retry_on_db_lock()
    def fetch_profiles(self, user_ids: Sequence[str]) -> list[Profile]:
        if not user_ids:
            return []
        rows = self._query(
            f"""
            SELECT user_id, full_name, receive_agenda_notifications, timezone
            FROM profiles
            WHERE user_id IN ({_placeholders(user_ids)})
            """,  # noqa: S608 - placeholders only
            user_ids,
        )
        return [Profile.from_row(row) for row in rows]

    @_store_errors
    @retry_on_db_lock()
    def fetch_notification_settings(self, user_ids: Sequence[str]) -> list[NotificationSettings]:
        if not user_ids:
            return []
        rows = self._query(
            f"""
            SELECT user_id, agenda_email_time, agenda_timezone
            FROM notification_settings
            WHERE user_id IN ({_placeholders(user_ids)})
            """,  # noqa: S608 - placeholders only
            user_ids,
        )
        return [NotificationSettings.from_row(row) for row in rows]

    @_store_errors
    @retry_on_db_lock()
    def get_user_email(self, user_id: str) -> str | None:
        rows = self._query("SELECT email FROM users WHERE id = ?", (user_id,))
        return rows[0]["email"] if rows else None

    @_store_errors
    @retry_on_db_lock()
    def find_user_by_email(self, email: str) -> UserAccount | None:
        rows = self._query(
            "SELECT id, email FROM users WHERE lower(email) = lower(?)",
            (email.strip(),),
        )
        if not rows:
            return None
        return UserAccount(id=str(rows[0]["id"]), email=rows[0]["email"])

    # ------------------------------------------------------------------
    # Writers - used for seeding local databases, never by the dispatcher
    # ------------------------------------------------------------------

    @retry_on_db_lock()
    def add_user(self, user_id: str, email: str | None) -> None:
        with db_transaction(self.db_path) as conn:
            conn.execute(
                "INSERT OR REPLACE INTO users (id, email) VALUES (?, ?)",
                (user_id, email),
            )

    @retry_on_db_lock()
    def upsert_profile(self, profile: Profile) -> None:
        with db_transaction(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO profiles (user_id, full_name, receive_agenda_notifications, timezone)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    full_name = excluded.full_name,
                    receive_agenda_notifications = excluded.receive_agenda_notifications,
                    timezone = excluded.timezone
                """,
                (
                    profile.user_id,
                    profile.full_name,
                    int(profile.receive_agenda_notifications),
                    profile.timezone,
                ),
            )

    @retry_on_db_lock()
    def upsert_notification_settings(self, settings: NotificationSettings) -> None:
        with db_transaction(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO notification_settings (user_id, agenda_email_time, agenda_timezone)
                VALUES (?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    agenda_email_time = excluded.agenda_email_time,
                    agenda_timezone = excluded.agenda_timezone
                """,
                (settings.user_id, settings.agenda_email_time, settings.agenda_timezone),
            )

    @retry_on_db_lock()
    def add_commitment(self, commitment: Commitment) -> int:
        with db_transaction(self.db_path) as conn:
            cursor = conn.execute(
                """
                INSERT INTO legal_commitments (
                    user_id, title, commitment_date, location, process_number,
                    client_name, status
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    commitment.user_id,
                    commitment.title,
                    to_db_instant(commitment.commitment_date),
                    commitment.location,
                    commitment.process_number,
                    commitment.client_name,
                    commitment.status,
                ),
            )
            return int(cursor.lastrowid or 0)
