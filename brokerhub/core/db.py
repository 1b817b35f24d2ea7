"""Session-scoped construction of the conversation service."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.orm import Session, sessionmaker

from ..messaging.directory import SqlAlchemyParticipantDirectory
from ..messaging.realtime import RealtimeChannel
from ..messaging.repository import SqlAlchemyMessageRepository
from ..messaging.service import ConversationService

logger = logging.getLogger(__name__)


@contextmanager
def conversation_service_scope(
    session_factory: sessionmaker[Session],
    channel: RealtimeChannel | None = None,
) -> Iterator[ConversationService]:
    """Yield a :class:`ConversationService` bound to a fresh session.

    The store commits each write itself; the scope only rolls back whatever
    is left open when an error escapes and always closes the session.
    """

    session = session_factory()
    service = ConversationService(
        SqlAlchemyMessageRepository(session),
        SqlAlchemyParticipantDirectory(session),
        channel,
    )
    try:
        yield service
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


__all__ = ["conversation_service_scope"]
