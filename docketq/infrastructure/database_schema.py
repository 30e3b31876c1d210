"""
Database schema for the agenda tables.

The digest service only reads these tables. They are owned by the main
application; this schema mirrors the columns the digest depends on so the
service can run against a local SQLite copy.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

from docketq.observability.logging import get_logger

logger = get_logger(__name__)

REQUIRED_TABLES = ("users", "profiles", "notification_settings", "legal_commitments")


def init_database(db_path: Path) -> None:
    """
    Initialize database with schema (idempotent)

    Side Effects:
        - Creates the parent directory and database file if needed
        - Creates tables and indexes that don't exist yet
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                email TEXT UNIQUE,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS profiles (
                user_id TEXT PRIMARY KEY REFERENCES users(id),
                full_name TEXT,
                receive_agenda_notifications INTEGER NOT NULL DEFAULT 0,
                timezone TEXT
            );

            CREATE TABLE IF NOT EXISTS notification_settings (
                user_id TEXT PRIMARY KEY REFERENCES users(id),
                agenda_email_time TEXT NOT NULL DEFAULT '08:00',
                agenda_timezone TEXT
            );

            CREATE TABLE IF NOT EXISTS legal_commitments (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL REFERENCES users(id),
                title TEXT NOT NULL,
                commitment_date TEXT NOT NULL,
                location TEXT,
                process_number TEXT,
                client_name TEXT,
                status TEXT NOT NULL DEFAULT 'pending'
            );

            CREATE INDEX IF NOT EXISTS idx_legal_commitments_status_date
            ON legal_commitments(status, commitment_date);

            CREATE INDEX IF NOT EXISTS idx_legal_commitments_user
            ON legal_commitments(user_id);
        """)
        conn.commit()
    finally:
        conn.close()

    logger.info("Agenda schema initialized at %s", db_path)


def validate_schema(conn: sqlite3.Connection) -> bool:
    """
    Check that every table the digest reads exists

    Raises:
        ValueError: listing the missing tables
    """
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    present = {row[0] for row in rows}
    missing = [table for table in REQUIRED_TABLES if table not in present]
    if missing:
        raise ValueError(f"Missing tables: {', '.join(missing)}")
    return True
