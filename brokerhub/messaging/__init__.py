"""Two-party messaging between users and the admin party."""

from . import schemas
from .errors import (
    AdminNotFound,
    ChannelPublishFailure,
    Forbidden,
    InvalidParticipants,
    MessageValidationError,
    MessagingError,
    NotAuthenticated,
    NotFound,
)
from .identity import is_participant, resolve_conversation_id
from .realtime import RealtimeChannel
from .service import ConversationService

__all__ = [
    "AdminNotFound",
    "ChannelPublishFailure",
    "ConversationService",
    "Forbidden",
    "InvalidParticipants",
    "MessageValidationError",
    "MessagingError",
    "NotAuthenticated",
    "NotFound",
    "RealtimeChannel",
    "is_participant",
    "resolve_conversation_id",
    "schemas",
]
