"""
Redaction helpers for log lines and telemetry.

Recipient addresses and user ids are hashed or masked before they reach a
log record; the scheduler response is the only place they appear in clear.
"""

from __future__ import annotations

from hashlib import sha256


def redact(value: str | None) -> str:
    """
    Return a stable hash representation of a sensitive string.
    """
    if not value:
        return "hash:missing"
    digest = sha256(value.encode("utf-8")).hexdigest()[:12]
    return f"hash:{digest}"


def mask_email(address: str | None) -> str:
    """
    Mask the local part of an email address, keeping the domain.

    Example:
        "maria.silva@example.com" -> "m***@example.com"
    """
    if not address:
        return "(none)"
    local, sep, domain = address.partition("@")
    if not sep:
        return redact(address)
    head = local[:1] if local else ""
    return f"{head}***@{domain}"
