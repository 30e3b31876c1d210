"""Health endpoint for the agenda digest service."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Request

from docketq.config import APP_VERSION, SERVICE_NAME
from docketq.observability.telemetry import get_counter, get_latency_stats

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request) -> dict[str, Any]:
    """Service status, configuration readiness and in-process counters.

    Reports whether secrets are configured, never their values.
    """
    config = request.app.state.config
    authorizer = request.app.state.authorizer

    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": APP_VERSION,
        "timestamp": datetime.now(UTC).isoformat(),
        "environment": config.environment,
        "mail": {"provider": config.mail_provider, "from": config.from_email},
        "authorization": authorizer.describe(),
        "digest": {
            "default_timezone": config.default_timezone,
            "default_send_time": config.default_send_time,
            "eligibility_minutes": config.eligibility_minutes,
            "emails_sent": get_counter("agenda.email.sent"),
            "email_errors": get_counter("agenda.email.errors"),
            "run_latency": get_latency_stats("agenda.run.latency"),
        },
    }
