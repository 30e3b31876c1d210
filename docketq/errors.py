"""Exception hierarchy for the agenda digest service."""

from __future__ import annotations


class DigestError(Exception):
    """Base class for all digest errors."""


class ConfigurationError(DigestError):
    """Required configuration is missing or invalid (raised at startup)."""


class AuthorizationError(DigestError):
    """Caller presented neither a valid secret nor a trusted source tag."""


class DataStoreError(DigestError):
    """A read against the commitments/profiles/settings store failed.

    Aborts the whole run; nothing is sent.
    """


class MailSendError(DigestError):
    """The mail provider rejected or failed to accept a message.

    Recovered per recipient; recorded in that recipient's result entry.
    """


class TemplateError(DigestError):
    """Requested template name is not registered."""
