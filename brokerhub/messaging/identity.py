"""Deterministic identifiers for two-party conversations.

All storage and subscription keys derive from :func:`resolve_conversation_id`,
so it must produce the same value whatever the argument order.
"""

from __future__ import annotations

from typing import Any

from ..core.config import get_messaging_settings
from .errors import InvalidParticipants

SEPARATOR = "_"


def _canonical(participant_id: Any) -> str:
    if participant_id is None:
        raise InvalidParticipants("Both participant identifiers are required")
    value = str(participant_id).strip()
    if not value:
        raise InvalidParticipants("Both participant identifiers are required")
    return value


def resolve_conversation_id(
    first: Any, second: Any, *, prefix: str | None = None
) -> str:
    """Return ``<prefix>_<lower>_<higher>`` for the two participants.

    Raises:
        InvalidParticipants: If either identifier is missing or blank.
    """

    lower, higher = sorted((_canonical(first), _canonical(second)))
    prefix = prefix or get_messaging_settings().conversation_prefix
    return SEPARATOR.join((prefix, lower, higher))


def is_participant(
    conversation_id: str, participant_id: Any, *, prefix: str | None = None
) -> bool:
    """Return whether ``participant_id`` is one of the two ends of ``conversation_id``.

    Only checks that the identifier sits at one of the two boundaries of the
    key; it does not try to split ids that themselves contain the separator.
    """

    try:
        member = _canonical(participant_id)
    except InvalidParticipants:
        return False
    prefix = prefix or get_messaging_settings().conversation_prefix
    head = f"{prefix}{SEPARATOR}"
    if not conversation_id or not conversation_id.startswith(head):
        return False
    body = conversation_id[len(head):]
    if body.startswith(f"{member}{SEPARATOR}") and len(body) > len(member) + 1:
        return True
    return body.endswith(f"{SEPARATOR}{member}") and len(body) > len(member) + 1


__all__ = ["SEPARATOR", "is_participant", "resolve_conversation_id"]
