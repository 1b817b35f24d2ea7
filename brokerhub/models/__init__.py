"""SQLAlchemy declarative base and persisted models.

A single declarative ``Base`` is shared by every model so tables can be
created in one call (``Base.metadata.create_all``) by the application
lifespan and by tests.
"""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy declarative models."""


# Re-export models so callers can write ``from brokerhub.models import Message``.
from .message import MessageRecord
from .user import User


__all__ = [
    "Base",
    "MessageRecord",
    "User",
]
