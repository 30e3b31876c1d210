"""Pydantic request models for the agenda digest API."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, field_validator

MAX_FIELD_LENGTH = 320


class AgendaDigestRequest(BaseModel):
    """JSON body of a digest invocation. Every field is optional."""

    model_config = ConfigDict(extra="ignore")

    secret: str | None = None
    source: str | None = None
    test_email: str | None = None
    template: str | None = None

    @field_validator("secret", "source", "test_email", "template")
    @classmethod
    def validate_length(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        if len(v) > MAX_FIELD_LENGTH:
            raise ValueError(f"Value too long: {len(v)} > {MAX_FIELD_LENGTH}")
        return v or None

    @field_validator("test_email")
    @classmethod
    def validate_test_email(cls, v: str | None) -> str | None:
        if v is None:
            return None
        local, sep, domain = v.partition("@")
        if not sep or not local or "." not in domain:
            raise ValueError("test_email must be an email address")
        return v
