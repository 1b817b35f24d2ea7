"""Participant accounts as seen by the messaging core.

Account management lives elsewhere; the messaging layer only reads these rows
to resolve the admin participant and to project public profile fields.
"""

from __future__ import annotations

import datetime as dt
import uuid

from sqlalchemy import DateTime, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column

from . import Base

ADMIN_ROLE = "admin"
USER_ROLE = "user"


def _utcnow() -> dt.datetime:
    """Return the current UTC timestamp with timezone awareness."""

    return dt.datetime.now(dt.timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class User(Base):
    """A registered participant.

    Attributes:
        id: Opaque identifier; the messaging core only compares and sorts it.
        email: Unique e-mail address.
        first_name: Given name shown in conversation listings.
        last_name: Family name shown in conversation listings.
        role: ``user`` or ``admin``.
        is_active: Deactivated accounts cannot authenticate.
    """

    __tablename__ = "users"
    __table_args__ = (
        Index("ix_users_email_unique", "email", unique=True),
        Index("ix_users_role", "role"),
    )

    id: Mapped[str] = mapped_column(String(length=64), primary_key=True, default=_new_id)
    email: Mapped[str] = mapped_column(String(length=320), nullable=False)
    first_name: Mapped[str] = mapped_column(String(length=255), nullable=False, default="")
    last_name: Mapped[str] = mapped_column(String(length=255), nullable=False, default="")
    role: Mapped[str] = mapped_column(
        String(length=32),
        nullable=False,
        default=USER_ROLE,
        server_default=text("'user'"),
    )
    is_active: Mapped[bool] = mapped_column(
        nullable=False,
        default=True,
        server_default=text("true"),
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

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE
