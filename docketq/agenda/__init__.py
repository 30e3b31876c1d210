"""Agenda digest - daily email summary of upcoming legal commitments"""

from __future__ import annotations

from docketq.agenda.dispatcher import AgendaDigestDispatcher
from docketq.agenda.models import (
    Commitment,
    DispatchResult,
    DispatchStatus,
    NotificationSettings,
    Profile,
    RunSummary,
    UserAccount,
)

__all__ = [
    "AgendaDigestDispatcher",
    "Commitment",
    "DispatchResult",
    "DispatchStatus",
    "NotificationSettings",
    "Profile",
    "RunSummary",
    "UserAccount",
]
