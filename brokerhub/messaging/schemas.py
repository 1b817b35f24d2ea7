"""Pydantic schemas for messages, conversations and realtime envelopes."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field


class MessageOrigin(str, Enum):
    USER = "user"
    ADMIN_REPLY = "admin_reply"
    SYSTEM = "system"


class Attachment(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    url: str
    file_type: str | None = None
    file_name: str | None = None


class ParticipantProfile(BaseModel):
    """Public profile fields of a participant."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    is_admin: bool = False


class MessageCreate(BaseModel):
    """Unvalidated message as handed to the store."""

    sender_id: str | None = None
    receiver_id: str | None = None
    content: str
    origin: MessageOrigin = MessageOrigin.USER
    conversation_id: str | None = None
    interest_id: str | None = None
    attachments: list[Attachment] = Field(default_factory=list)

    @property
    def is_system(self) -> bool:
        return self.origin is MessageOrigin.SYSTEM


class Message(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    sender_id: str | None = None
    receiver_id: str | None = None
    content: str
    is_read: bool = False
    origin: MessageOrigin
    conversation_id: str
    interest_id: str | None = None
    attachments: list[Attachment] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    sender: ParticipantProfile | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def url(self) -> str:
        return f"/messages/{self.id}"


class ConversationGroup(BaseModel):
    """Store-level aggregate of one conversation for the admin listing."""

    conversation_id: str
    last_message: Message
    unread_count: int
    participant_id: str | None = None


class ConversationSummary(BaseModel):
    id: str
    last_message: Message | None = None
    unread_count: int = 0
    participant: ParticipantProfile | None = None


# HTTP payloads -----------------------------------------------------------------


class SendMessageRequest(BaseModel):
    content: str
    attachments: list[Attachment] = Field(default_factory=list)
    receiver_id: str | None = None


class AdminReplyRequest(BaseModel):
    conversation_id: str
    receiver_id: str
    content: str
    attachments: list[Attachment] = Field(default_factory=list)


class InterestSubmittedRequest(BaseModel):
    interest_type: str
    transaction_type: str


# Realtime envelopes ------------------------------------------------------------


class ClientEnvelope(BaseModel):
    """Client -> server: ``join_conversation`` | ``leave_conversation`` | ``ping``."""

    type: str
    data: dict[str, Any] = Field(default_factory=dict)


class ServerEnvelope(BaseModel):
    """Server -> client: ``new_message`` | ``new_interest`` | ``joined`` | ``left`` | ``pong`` | ``error``."""

    type: str
    data: dict[str, Any] = Field(default_factory=dict)
