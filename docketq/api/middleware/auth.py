"""Authorization gate for the agenda digest function

The caller is a machine scheduler, not an end user, so this is a capability
check: a request is authorized when it carries the configured shared secret,
or when its source tag is a trusted scheduler tag or the manual-test tag.
"""

from __future__ import annotations

import secrets

from docketq.config import DigestConfig
from docketq.errors import AuthorizationError
from docketq.observability.logging import get_logger
from docketq.observability.telemetry import counter, log_event

logger = get_logger(__name__)


class AgendaAuthorizer:
    """
    Shared-secret / source-tag authorization.

    The secret is read from DigestConfig at construction. Without a configured
    secret only the source tags can authorize a request.
    """

    def __init__(self, config: DigestConfig) -> None:
        self.secret = config.agenda_secret
        self.trusted_sources = frozenset(config.trusted_sources)
        self.manual_test_source = config.manual_test_source

    @staticmethod
    def extract_secret(*candidates: str | None) -> str | None:
        """
        First non-empty secret among candidates.

        Callers pass them in precedence order: header, body, query string.
        """
        return next((c for c in candidates if c), None)

    def is_authorized(self, provided_secret: str | None, source: str | None) -> bool:
        # Timing-safe comparison (secrets.compare_digest)
        if self.secret and provided_secret:
            if secrets.compare_digest(provided_secret.encode(), self.secret.encode()):
                return True
        if source and (source in self.trusted_sources or source == self.manual_test_source):
            return True
        return False

    def require(self, provided_secret: str | None, source: str | None) -> None:
        """
        Raises:
            AuthorizationError: if the request is not authorized
        """
        if not self.is_authorized(provided_secret, source):
            counter("api.unauthorized")
            log_event("api.unauthorized", source=source, secret_present=bool(provided_secret))
            raise AuthorizationError("Unauthorized")

    def describe(self) -> dict[str, object]:
        return {
            "secret_configured": bool(self.secret),
            "trusted_sources": sorted(self.trusted_sources),
            "manual_test_source": self.manual_test_source,
        }
