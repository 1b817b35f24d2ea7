"""Authentication dependencies for the HTTP and realtime surfaces."""

from .auth import (
    get_current_participant,
    get_current_token_payload,
    get_db_session,
    require_admin,
    resolve_participant,
)

__all__ = [
    "get_current_participant",
    "get_current_token_payload",
    "get_db_session",
    "require_admin",
    "resolve_participant",
]
