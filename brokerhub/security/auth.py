"""JWT-backed authentication dependencies for FastAPI routers."""

from __future__ import annotations

from collections.abc import Iterator

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from brokerhub.core.auth import AccessTokenPayload, get_token_context
from brokerhub.messaging.directory import Participant, SqlAlchemyParticipantDirectory


def get_db_session(request: Request) -> Iterator[Session]:
    """Yield a SQLAlchemy session from the application's session factory."""

    session = request.app.state.session_factory()
    try:
        yield session
    finally:
        session.close()


async def get_current_token_payload(request: Request) -> AccessTokenPayload:
    """Decode and validate the bearer token from ``request``."""

    return await get_token_context(request)


def resolve_participant(session: Session, payload: AccessTokenPayload) -> Participant:
    """Map a verified token to an active participant.

    Raises:
        HTTPException: ``401`` when the account is unknown or deactivated.
    """

    participant = SqlAlchemyParticipantDirectory(session).get_participant(
        payload["user_id"]
    )
    if participant is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token. User not found.",
        )
    if not participant.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account is deactivated.",
        )
    return participant


async def get_current_participant(
    payload: AccessTokenPayload = Depends(get_current_token_payload),
    session: Session = Depends(get_db_session),
) -> Participant:
    """Resolve the authenticated :class:`Participant` from the token payload."""

    return resolve_participant(session, payload)


async def require_admin(
    participant: Participant = Depends(get_current_participant),
) -> Participant:
    """Dependency ensuring the caller is an admin."""

    if not participant.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied. Admin privileges required.",
        )
    return participant


__all__ = [
    "get_current_participant",
    "get_current_token_payload",
    "get_db_session",
    "require_admin",
    "resolve_participant",
]
