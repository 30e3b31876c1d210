"""Group commitments by owner in a single ordered pass."""

from __future__ import annotations

from collections.abc import Iterable

from docketq.agenda.models import Commitment


def group_by_user(commitments: Iterable[Commitment]) -> dict[str, list[Commitment]]:
    """
    Map user_id -> that user's commitments.

    Users appear in first-seen order and each list keeps the store's order.
    """
    grouped: dict[str, list[Commitment]] = {}
    for commitment in commitments:
        grouped.setdefault(commitment.user_id, []).append(commitment)
    return grouped
