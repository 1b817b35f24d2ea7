"""Persisted conversation messages.

Conversations are not stored on their own; they are the grouping of rows
sharing ``conversation_id``.
"""

from __future__ import annotations

import datetime as dt
import uuid
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String, Text, false
from sqlalchemy.orm import Mapped, mapped_column

from . import Base


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class MessageRecord(Base):
    """A single message row.

    ``sender_id`` and ``receiver_id`` are nullable only for system messages;
    the store enforces that rule before inserting. ``seq`` follows insertion
    order and breaks ties between equal ``created_at`` values.
    """

    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_sender_receiver", "sender_id", "receiver_id"),
        Index("ix_messages_conversation_created", "conversation_id", "created_at", "seq"),
        Index("ix_messages_origin_read", "origin", "is_read"),
        Index("ix_messages_interest", "interest_id"),
    )

    seq: Mapped[int] = mapped_column(Integer(), primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(
        String(length=64), nullable=False, unique=True, default=_new_id
    )
    sender_id: Mapped[str | None] = mapped_column(String(length=64), nullable=True)
    receiver_id: Mapped[str | None] = mapped_column(String(length=64), nullable=True)
    content: Mapped[str] = mapped_column(Text(), nullable=False)
    is_read: Mapped[bool] = mapped_column(
        Boolean(), nullable=False, default=False, server_default=false()
    )
    origin: Mapped[str] = mapped_column(String(length=32), nullable=False)
    conversation_id: Mapped[str] = mapped_column(String(length=255), nullable=False)
    interest_id: Mapped[str | None] = mapped_column(String(length=64), nullable=True)
    attachments: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON(), nullable=False, default=list
    )
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )
