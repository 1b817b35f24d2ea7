"""Durable message store.

Two implementations share one contract: :class:`SqlAlchemyMessageRepository`
for deployments and :class:`InMemoryMessageRepository` for tests and local
sandboxes. Every write is committed on its own; no operation spans several
rows atomically.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Collection, Iterable
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.orm import Session

from ..core.config import MessagingSettings, get_messaging_settings
from ..models import MessageRecord
from . import schemas
from .errors import MessageValidationError
from .identity import resolve_conversation_id

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageRepository(Protocol):
    """Persistence and query surface for messages."""

    def append(self, message: schemas.MessageCreate) -> schemas.Message: ...

    def find_by_conversation(self, conversation_id: str) -> List[schemas.Message]: ...

    def exists(self, conversation_id: str) -> bool: ...

    def last_message(self, conversation_id: str) -> Optional[schemas.Message]: ...

    def mark_read(self, conversation_id: str, receiver_id: str) -> int: ...

    def count_unread(self, conversation_id: str, receiver_id: str) -> int: ...

    def list_conversations_for_admin(
        self, admin_ids: Collection[str]
    ) -> List[schemas.ConversationGroup]: ...


def prepare_message(
    message: schemas.MessageCreate, settings: MessagingSettings | None = None
) -> schemas.MessageCreate:
    """Validate ``message`` and fill in its conversation id.

    Raises:
        MessageValidationError: When content is empty or too long, a required
            participant is missing, or the conversation id does not match the
            two participants.
    """

    settings = settings or get_messaging_settings()
    content = (message.content or "").strip()
    if not content:
        raise MessageValidationError("Message content is required")
    if len(content) > settings.max_message_length:
        raise MessageValidationError(
            f"Message content exceeds {settings.max_message_length} characters"
        )
    if len(message.attachments) > settings.max_attachments:
        raise MessageValidationError(
            f"A message can carry at most {settings.max_attachments} attachments"
        )
    if not message.is_system and not (message.sender_id and message.receiver_id):
        raise MessageValidationError("Sender and receiver are required")

    conversation_id = message.conversation_id
    if message.sender_id and message.receiver_id:
        expected = resolve_conversation_id(
            message.sender_id, message.receiver_id, prefix=settings.conversation_prefix
        )
        if conversation_id is None:
            conversation_id = expected
        elif conversation_id != expected:
            raise MessageValidationError(
                "Conversation id does not match the message participants"
            )
    if not conversation_id:
        raise MessageValidationError("Conversation id is required")

    return message.model_copy(
        update={"content": content, "conversation_id": conversation_id}
    )


def _pick_participant(
    conversation_id: str,
    newest_first: Iterable[tuple[Optional[str], Optional[str]]],
    admin_ids: Collection[str],
) -> Optional[str]:
    """Return the non-admin party of a conversation group.

    ``newest_first`` yields ``(sender_id, receiver_id)`` pairs. A two-party
    conversation has at most one non-admin party; more than one is a
    data-integrity violation, which is logged and resolved in favour of the
    party of the most recent message.
    """

    parties: List[str] = []
    for pair in newest_first:
        for candidate in pair:
            if candidate and candidate not in admin_ids and candidate not in parties:
                parties.append(candidate)
    if len(parties) > 1:
        logger.error(
            "Conversation %s references several non-admin participants: %s",
            conversation_id,
            ", ".join(parties),
        )
    return parties[0] if parties else None


def _is_unread_for_admin(message: schemas.Message, admin_ids: Collection[str]) -> bool:
    if message.is_read:
        return False
    return message.receiver_id is None or message.receiver_id in admin_ids


# ---------------------------------------------------------------------------
# SQLAlchemy repository


class SqlAlchemyMessageRepository:
    """SQLAlchemy implementation of :class:`MessageRepository`."""

    def __init__(
        self, session: Session, *, settings: MessagingSettings | None = None
    ) -> None:
        self._session = session
        self._settings = settings or get_messaging_settings()

    def append(self, message: schemas.MessageCreate) -> schemas.Message:
        prepared = prepare_message(message, self._settings)
        now = _utcnow()
        record = MessageRecord(
            sender_id=prepared.sender_id,
            receiver_id=prepared.receiver_id,
            content=prepared.content,
            origin=prepared.origin.value,
            conversation_id=prepared.conversation_id,
            interest_id=prepared.interest_id,
            attachments=[a.model_dump() for a in prepared.attachments],
            created_at=now,
            updated_at=now,
        )
        self._session.add(record)
        try:
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info(
            "Stored %s message %s in %s",
            record.origin,
            record.id,
            record.conversation_id,
        )
        return self._to_schema(record)

    def find_by_conversation(self, conversation_id: str) -> List[schemas.Message]:
        stmt = (
            select(MessageRecord)
            .where(MessageRecord.conversation_id == conversation_id)
            .order_by(MessageRecord.created_at.asc(), MessageRecord.seq.asc())
        )
        return [self._to_schema(row) for row in self._session.scalars(stmt)]

    def exists(self, conversation_id: str) -> bool:
        stmt = (
            select(MessageRecord.id)
            .where(MessageRecord.conversation_id == conversation_id)
            .limit(1)
        )
        return self._session.scalar(stmt) is not None

    def last_message(self, conversation_id: str) -> Optional[schemas.Message]:
        stmt = (
            select(MessageRecord)
            .where(MessageRecord.conversation_id == conversation_id)
            .order_by(MessageRecord.created_at.desc(), MessageRecord.seq.desc())
            .limit(1)
        )
        row = self._session.scalars(stmt).first()
        return self._to_schema(row) if row is not None else None

    def mark_read(self, conversation_id: str, receiver_id: str) -> int:
        stmt = (
            update(MessageRecord)
            .where(MessageRecord.conversation_id == conversation_id)
            .where(MessageRecord.receiver_id == receiver_id)
            .where(MessageRecord.is_read.is_(False))
            .values(is_read=True, updated_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        try:
            result = self._session.execute(stmt)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        # Rows already loaded in this session still carry the old flag.
        self._session.expire_all()
        updated = int(getattr(result, "rowcount", 0) or 0)
        logger.debug(
            "Marked %d message(s) read in %s for %s", updated, conversation_id, receiver_id
        )
        return updated

    def count_unread(self, conversation_id: str, receiver_id: str) -> int:
        stmt = (
            select(func.count())
            .select_from(MessageRecord)
            .where(MessageRecord.conversation_id == conversation_id)
            .where(MessageRecord.receiver_id == receiver_id)
            .where(MessageRecord.is_read.is_(False))
        )
        return int(self._session.scalar(stmt) or 0)

    def list_conversations_for_admin(
        self, admin_ids: Collection[str]
    ) -> List[schemas.ConversationGroup]:
        admin_ids = list(admin_ids)
        addressed_to_admin = MessageRecord.receiver_id.is_(None)
        if admin_ids:
            addressed_to_admin = or_(
                addressed_to_admin, MessageRecord.receiver_id.in_(admin_ids)
            )
        unread_stmt = select(
            MessageRecord.conversation_id,
            func.sum(
                case(
                    (MessageRecord.is_read.is_(False) & addressed_to_admin, 1),
                    else_=0,
                )
            ),
        ).group_by(MessageRecord.conversation_id)
        unread = {
            conversation_id: int(total or 0)
            for conversation_id, total in self._session.execute(unread_stmt)
        }

        ranked = select(
            MessageRecord.seq,
            func.row_number()
            .over(
                partition_by=MessageRecord.conversation_id,
                order_by=(MessageRecord.created_at.desc(), MessageRecord.seq.desc()),
            )
            .label("position"),
        ).subquery()
        latest_stmt = (
            select(MessageRecord)
            .join(ranked, ranked.c.seq == MessageRecord.seq)
            .where(ranked.c.position == 1)
            .order_by(MessageRecord.created_at.desc(), MessageRecord.seq.desc())
        )
        latest = [self._to_schema(row) for row in self._session.scalars(latest_stmt)]

        parties_stmt = select(
            MessageRecord.conversation_id,
            MessageRecord.sender_id,
            MessageRecord.receiver_id,
        ).order_by(MessageRecord.created_at.desc(), MessageRecord.seq.desc())
        by_conversation: Dict[str, List[tuple[Optional[str], Optional[str]]]] = {}
        for conversation_id, sender_id, receiver_id in self._session.execute(parties_stmt):
            by_conversation.setdefault(conversation_id, []).append((sender_id, receiver_id))

        return [
            schemas.ConversationGroup(
                conversation_id=message.conversation_id,
                last_message=message,
                unread_count=unread.get(message.conversation_id, 0),
                participant_id=_pick_participant(
                    message.conversation_id,
                    by_conversation.get(message.conversation_id, []),
                    admin_ids,
                ),
            )
            for message in latest
        ]

    # Helpers ------------------------------------------------------------------
    @staticmethod
    def _to_schema(record: MessageRecord) -> schemas.Message:
        return schemas.Message(
            id=record.id,
            sender_id=record.sender_id,
            receiver_id=record.receiver_id,
            content=record.content,
            is_read=record.is_read,
            origin=schemas.MessageOrigin(record.origin),
            conversation_id=record.conversation_id,
            interest_id=record.interest_id,
            attachments=[schemas.Attachment(**a) for a in record.attachments or []],
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


# ---------------------------------------------------------------------------
# In-memory repository (useful for testing and sandbox environments)


class InMemoryMessageRepository:
    def __init__(self, *, settings: MessagingSettings | None = None) -> None:
        self._settings = settings or get_messaging_settings()
        self._messages: Dict[str, schemas.Message] = {}
        self._order: Dict[str, int] = {}
        self._seq = 0
        self._lock = threading.Lock()

    def append(self, message: schemas.MessageCreate) -> schemas.Message:
        prepared = prepare_message(message, self._settings)
        now = _utcnow()
        stored = schemas.Message(
            id=uuid.uuid4().hex,
            sender_id=prepared.sender_id,
            receiver_id=prepared.receiver_id,
            content=prepared.content,
            origin=prepared.origin,
            conversation_id=prepared.conversation_id or "",
            interest_id=prepared.interest_id,
            attachments=list(prepared.attachments),
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._seq += 1
            self._order[stored.id] = self._seq
            self._messages[stored.id] = stored
        return stored.model_copy()

    def find_by_conversation(self, conversation_id: str) -> List[schemas.Message]:
        with self._lock:
            matches = [
                m.model_copy()
                for m in self._messages.values()
                if m.conversation_id == conversation_id
            ]
        matches.sort(key=self._sort_key)
        return matches

    def exists(self, conversation_id: str) -> bool:
        with self._lock:
            return any(
                m.conversation_id == conversation_id for m in self._messages.values()
            )

    def last_message(self, conversation_id: str) -> Optional[schemas.Message]:
        messages = self.find_by_conversation(conversation_id)
        return messages[-1] if messages else None

    def mark_read(self, conversation_id: str, receiver_id: str) -> int:
        updated = 0
        now = _utcnow()
        with self._lock:
            for message in self._messages.values():
                if (
                    message.conversation_id == conversation_id
                    and message.receiver_id == receiver_id
                    and not message.is_read
                ):
                    message.is_read = True
                    message.updated_at = now
                    updated += 1
        return updated

    def count_unread(self, conversation_id: str, receiver_id: str) -> int:
        with self._lock:
            return sum(
                1
                for m in self._messages.values()
                if m.conversation_id == conversation_id
                and m.receiver_id == receiver_id
                and not m.is_read
            )

    def list_conversations_for_admin(
        self, admin_ids: Collection[str]
    ) -> List[schemas.ConversationGroup]:
        with self._lock:
            snapshot = [m.model_copy() for m in self._messages.values()]
        snapshot.sort(key=self._sort_key, reverse=True)
        grouped: Dict[str, List[schemas.Message]] = {}
        for message in snapshot:
            grouped.setdefault(message.conversation_id, []).append(message)
        return [
            schemas.ConversationGroup(
                conversation_id=conversation_id,
                last_message=messages[0],
                unread_count=sum(1 for m in messages if _is_unread_for_admin(m, admin_ids)),
                participant_id=_pick_participant(
                    conversation_id,
                    ((m.sender_id, m.receiver_id) for m in messages),
                    admin_ids,
                ),
            )
            for conversation_id, messages in grouped.items()
        ]

    def _sort_key(self, message: schemas.Message) -> tuple[datetime, int]:
        return message.created_at, self._order.get(message.id, 0)


__all__ = [
    "InMemoryMessageRepository",
    "MessageRepository",
    "SqlAlchemyMessageRepository",
    "prepare_message",
]
