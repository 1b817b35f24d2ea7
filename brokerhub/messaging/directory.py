"""Participant lookups consumed by the messaging core.

Accounts are owned by the user-management collaborator; the messaging layer
only needs to find "the admin", tell admins apart from regular users and
project public profile fields into responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import User
from ..models.user import ADMIN_ROLE, USER_ROLE
from .schemas import ParticipantProfile


@dataclass(frozen=True)
class Participant:
    """Authenticated identity plus role."""

    id: str
    role: str = USER_ROLE
    is_active: bool = True

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


class ParticipantDirectory(Protocol):
    def get_participant(self, participant_id: str) -> Optional[Participant]: ...

    def resolve_admin_participant(self) -> Optional[Participant]: ...

    def list_admin_ids(self) -> List[str]: ...

    def resolve_participant_profile(
        self, participant_id: str
    ) -> Optional[ParticipantProfile]: ...


class SqlAlchemyParticipantDirectory:
    """Reads participants from the ``users`` table."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get_participant(self, participant_id: str) -> Optional[Participant]:
        user = self._session.get(User, str(participant_id))
        if user is None:
            return None
        return Participant(id=user.id, role=user.role, is_active=user.is_active)

    def resolve_admin_participant(self) -> Optional[Participant]:
        stmt = (
            select(User)
            .where(User.role == ADMIN_ROLE)
            .where(User.is_active.is_(True))
            .order_by(User.created_at.asc(), User.id.asc())
            .limit(1)
        )
        user = self._session.scalars(stmt).first()
        if user is None:
            return None
        return Participant(id=user.id, role=user.role, is_active=user.is_active)

    def list_admin_ids(self) -> List[str]:
        stmt = select(User.id).where(User.role == ADMIN_ROLE)
        return list(self._session.scalars(stmt))

    def resolve_participant_profile(
        self, participant_id: str
    ) -> Optional[ParticipantProfile]:
        user = self._session.get(User, str(participant_id))
        if user is None:
            return None
        return ParticipantProfile(
            id=user.id,
            first_name=user.first_name,
            last_name=user.last_name,
            email=user.email,
            is_admin=user.is_admin,
        )


class InMemoryParticipantDirectory:
    """Dictionary-backed directory for tests and sandboxes."""

    def __init__(self) -> None:
        self._profiles: Dict[str, ParticipantProfile] = {}
        self._participants: Dict[str, Participant] = {}

    def add(
        self,
        participant_id: str,
        *,
        role: str = USER_ROLE,
        first_name: str = "",
        last_name: str = "",
        email: str | None = None,
        is_active: bool = True,
    ) -> Participant:
        participant = Participant(id=participant_id, role=role, is_active=is_active)
        self._participants[participant_id] = participant
        self._profiles[participant_id] = ParticipantProfile(
            id=participant_id,
            first_name=first_name,
            last_name=last_name,
            email=email or f"{participant_id}@example.com",
            is_admin=participant.is_admin,
        )
        return participant

    def get_participant(self, participant_id: str) -> Optional[Participant]:
        return self._participants.get(str(participant_id))

    def resolve_admin_participant(self) -> Optional[Participant]:
        for participant in self._participants.values():
            if participant.is_admin and participant.is_active:
                return participant
        return None

    def list_admin_ids(self) -> List[str]:
        return [p.id for p in self._participants.values() if p.is_admin]

    def resolve_participant_profile(
        self, participant_id: str
    ) -> Optional[ParticipantProfile]:
        profile = self._profiles.get(str(participant_id))
        return profile.model_copy() if profile else None


__all__ = [
    "InMemoryParticipantDirectory",
    "Participant",
    "ParticipantDirectory",
    "SqlAlchemyParticipantDirectory",
]
