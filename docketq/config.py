"""Centralized configuration for the DocketQ digest service.

Typed module constants carry tuning knobs with safe defaults. Everything the
dispatcher needs at runtime (secrets, provider credentials, defaults for
timezone and send time) lives on ``DigestConfig``, which is built once at
startup, validated, and passed explicitly into the dispatcher and the API.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

from docketq.errors import ConfigurationError
from docketq.observability.logging import get_logger

logger = get_logger(__name__)

# --- App ---
APP_VERSION: str = "1.0.0"
SERVICE_NAME: str = "DocketQ Agenda Digest"

# --- Database ---
DB_POOL_SIZE: int = int(os.getenv("DOCKETQ_DB_POOL_SIZE", "5"))
DB_POOL_TIMEOUT: float = float(os.getenv("DOCKETQ_DB_POOL_TIMEOUT", "5.0"))
DB_CONNECT_TIMEOUT: float = float(os.getenv("DOCKETQ_DB_CONNECT_TIMEOUT", "30.0"))
DB_TEMP_CONN_MAX: int = int(os.getenv("DOCKETQ_DB_TEMP_CONN_MAX", "10"))
DB_RETRY_MAX: int = int(os.getenv("DOCKETQ_DB_RETRY_MAX", "5"))
DB_RETRY_BASE_DELAY: float = float(os.getenv("DOCKETQ_DB_RETRY_BASE_DELAY", "0.1"))
DB_RETRY_MAX_DELAY: float = float(os.getenv("DOCKETQ_DB_RETRY_MAX_DELAY", "2.0"))
DB_RETRY_JITTER: float = float(os.getenv("DOCKETQ_DB_RETRY_JITTER", "0.1"))

# --- Digest ---
DIGEST_WINDOW_HOURS: int = 24
DIGEST_ELIGIBILITY_MINUTES: int = 60
DIGEST_DEFAULT_TIMEZONE: str = "America/Sao_Paulo"
DIGEST_DEFAULT_SEND_TIME: str = "08:00"
DIGEST_PENDING_STATUS: str = "pending"

# --- Dispatch ---
DISPATCH_MAX_WORKERS: int = int(os.getenv("DOCKETQ_DISPATCH_MAX_WORKERS", "4"))
MAIL_TIMEOUT_SECONDS: float = float(os.getenv("DOCKETQ_MAIL_TIMEOUT", "15.0"))
DISPATCH_TIMEOUT_SECONDS: float = float(os.getenv("DOCKETQ_DISPATCH_TIMEOUT", "120.0"))

# --- Authorization ---
SECRET_HEADER: str = "x-agenda-secret"
TRUSTED_SCHEDULER_SOURCES: tuple[str, ...] = ("scheduled", "scheduled-hourly", "pg_cron")
MANUAL_TEST_SOURCE: str = "manual_test"

MAIL_PROVIDERS: tuple[str, ...] = ("resend", "smtp")

_SEND_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


@dataclass(frozen=True)
class DigestConfig:
    """Runtime configuration for one dispatcher/API instance."""

    agenda_secret: str | None = None
    mail_provider: str = "resend"
    resend_api_key: str | None = None
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    from_email: str | None = None
    from_name: str = "DocketQ"
    default_timezone: str = DIGEST_DEFAULT_TIMEZONE
    default_send_time: str = DIGEST_DEFAULT_SEND_TIME
    window_hours: int = DIGEST_WINDOW_HOURS
    eligibility_minutes: int = DIGEST_ELIGIBILITY_MINUTES
    max_workers: int = DISPATCH_MAX_WORKERS
    mail_timeout_seconds: float = MAIL_TIMEOUT_SECONDS
    dispatch_timeout_seconds: float = DISPATCH_TIMEOUT_SECONDS
    trusted_sources: tuple[str, ...] = field(default=TRUSTED_SCHEDULER_SOURCES)
    manual_test_source: str = MANUAL_TEST_SOURCE
    environment: str = "development"

    @classmethod
    def from_env(cls) -> DigestConfig:
        """
        Build configuration from environment variables (loads .env first).

        Side Effects:
            - Loads .env into the process environment via python-dotenv
        """
        load_dotenv()
        trusted = os.getenv("DOCKETQ_TRUSTED_SOURCES")
        return cls(
            agenda_secret=os.getenv("DAILY_AGENDA_SECRET") or None,
            mail_provider=os.getenv("DOCKETQ_MAIL_PROVIDER", "resend").lower(),
            resend_api_key=os.getenv("RESEND_API_KEY") or None,
            smtp_host=os.getenv("SMTP_HOST") or None,
            smtp_port=int(os.getenv("SMTP_PORT", "587")),
            smtp_user=os.getenv("SMTP_USER") or None,
            smtp_password=os.getenv("SMTP_PASSWORD") or None,
            from_email=os.getenv("DOCKETQ_FROM_EMAIL") or None,
            from_name=os.getenv("DOCKETQ_FROM_NAME", "DocketQ"),
            default_timezone=os.getenv("DOCKETQ_DEFAULT_TIMEZONE", DIGEST_DEFAULT_TIMEZONE),
            default_send_time=os.getenv("DOCKETQ_DEFAULT_SEND_TIME", DIGEST_DEFAULT_SEND_TIME),
            max_workers=DISPATCH_MAX_WORKERS,
            mail_timeout_seconds=MAIL_TIMEOUT_SECONDS,
            dispatch_timeout_seconds=DISPATCH_TIMEOUT_SECONDS,
            trusted_sources=(
                tuple(s.strip() for s in trusted.split(",") if s.strip())
                if trusted
                else TRUSTED_SCHEDULER_SOURCES
            ),
            environment=os.getenv("DOCKETQ_ENV", "development"),
        )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def sender_address(self) -> str:
        return f"{self.from_name} <{self.from_email}>"

    def validate(self) -> DigestConfig:
        """
        Fail fast on missing or malformed settings.

        Returns self so callers can chain ``DigestConfig.from_env().validate()``.

        Raises:
            ConfigurationError: with every problem found, one per line
        """
        problems: list[str] = []

        if self.mail_provider not in MAIL_PROVIDERS:
            problems.append(
                f"Unknown mail provider {self.mail_provider!r} (expected one of {MAIL_PROVIDERS})"
            )
        elif self.mail_provider == "resend" and not self.resend_api_key:
            problems.append("RESEND_API_KEY is required for the resend mail provider")
        elif self.mail_provider == "smtp" and not all(
            [self.smtp_host, self.smtp_user, self.smtp_password]
        ):
            problems.append("SMTP_HOST, SMTP_USER and SMTP_PASSWORD are required for smtp")

        if not self.from_email:
            problems.append("DOCKETQ_FROM_EMAIL is required")

        try:
            ZoneInfo(self.default_timezone)
        except (ZoneInfoNotFoundError, ValueError, OSError):
            problems.append(f"Default timezone {self.default_timezone!r} is not an IANA zone")

        if not is_valid_send_time(self.default_send_time):
            problems.append(f"Default send time {self.default_send_time!r} is not HH:MM")

        if self.eligibility_minutes <= 0 or self.eligibility_minutes > 1440:
            problems.append("Eligibility window must be between 1 and 1440 minutes")

        if self.max_workers < 1:
            problems.append("DOCKETQ_DISPATCH_MAX_WORKERS must be at least 1")

        if not self.agenda_secret:
            if self.is_production:
                problems.append(
                    "DAILY_AGENDA_SECRET is not set in production; refusing to start "
                    "without secret-based authorization"
                )
            else:
                logger.warning(
                    "DAILY_AGENDA_SECRET not set - only trusted scheduler sources can "
                    "trigger the digest (acceptable in development only)"
                )

        if problems:
            for problem in problems:
                logger.critical("Configuration error: %s", problem)
            raise ConfigurationError("\n".join(problems))

        return self


def is_valid_send_time(value: str | None) -> bool:
    return bool(value) and bool(_SEND_TIME_RE.match(value or ""))
