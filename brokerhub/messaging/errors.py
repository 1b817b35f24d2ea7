"""Error types raised by the messaging core.

Every error carries the HTTP status the routers translate it to, so the
mapping lives next to the error rather than in each endpoint.
"""

from __future__ import annotations


class MessagingError(RuntimeError):
    """Base class for failures surfaced to messaging callers."""

    status_code = 500


class InvalidParticipants(MessagingError):
    """A conversation identifier was requested for missing or empty participants."""

    status_code = 400


class MessageValidationError(MessagingError):
    """A message is missing required fields or breaks a storage invariant."""

    status_code = 422


class NotAuthenticated(MessagingError):
    status_code = 401


class Forbidden(MessagingError):
    """The caller is authenticated but not allowed to touch the conversation."""

    status_code = 403


class NotFound(MessagingError):
    status_code = 404


class AdminNotFound(NotFound):
    """No admin participant exists; a configuration-level failure."""

    def __init__(self, message: str = "Admin not found") -> None:
        super().__init__(message)


class ChannelPublishFailure(MessagingError):
    """Realtime push could not be delivered to one or more subscribers.

    Always logged and swallowed by callers; the message is already stored.
    """

    status_code = 502


__all__ = [
    "AdminNotFound",
    "ChannelPublishFailure",
    "Forbidden",
    "InvalidParticipants",
    "MessageValidationError",
    "MessagingError",
    "NotAuthenticated",
    "NotFound",
]
