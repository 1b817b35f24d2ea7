"""Conversation orchestration between a user and the admin party."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import List, Optional

from ..core.config import MessagingSettings, get_messaging_settings
from . import schemas
from .directory import Participant, ParticipantDirectory
from .errors import (
    AdminNotFound,
    ChannelPublishFailure,
    Forbidden,
    MessageValidationError,
    NotAuthenticated,
    NotFound,
)
from .identity import is_participant, resolve_conversation_id
from .realtime import RealtimeChannel
from .repository import MessageRepository

logger = logging.getLogger(__name__)


class ConversationService:
    """Coordinates the message store, participant lookups and realtime push.

    Store and directory calls are blocking; they run in worker threads so the
    event loop keeps serving sockets while a query is in flight.
    """

    def __init__(
        self,
        repository: MessageRepository,
        directory: ParticipantDirectory,
        channel: RealtimeChannel | None = None,
        *,
        settings: MessagingSettings | None = None,
    ) -> None:
        self._repository = repository
        self._directory = directory
        self._channel = channel
        self._settings = settings or get_messaging_settings()

    # ------------------------------------------------------------------
    # Sending

    async def send_message(
        self,
        sender_id: str,
        receiver_id: Optional[str],
        content: str,
        attachments: Sequence[schemas.Attachment] | None = None,
    ) -> schemas.Message:
        """Store and push a message from ``sender_id``.

        Regular users always write to the admin party; ``receiver_id`` may be
        omitted for them. Admins must name the receiver.
        """

        sender = await self._require_participant(sender_id)
        if sender.is_admin:
            if not receiver_id:
                raise MessageValidationError("Receiver is required for admin messages")
            receiver = await self._lookup(receiver_id)
            if receiver is None:
                raise NotFound(f"Participant {receiver_id} not found")
        else:
            admin = await self._require_admin()
            if receiver_id and str(receiver_id) != admin.id:
                receiver = await self._lookup(receiver_id)
                if receiver is None or not receiver.is_admin:
                    raise Forbidden("You can only message admins")
            else:
                receiver = admin

        origin = (
            schemas.MessageOrigin.ADMIN_REPLY
            if sender.is_admin
            else schemas.MessageOrigin.USER
        )
        return await self._append_and_publish(
            schemas.MessageCreate(
                sender_id=sender.id,
                receiver_id=receiver.id,
                content=content,
                origin=origin,
                conversation_id=self._conversation_id(sender.id, receiver.id),
                attachments=list(attachments or []),
            )
        )

    async def admin_reply(
        self,
        admin_id: str,
        conversation_id: str,
        receiver_id: str,
        content: str,
        attachments: Sequence[schemas.Attachment] | None = None,
    ) -> schemas.Message:
        """Reply inside an existing conversation on behalf of an admin."""

        admin = await self._require_participant(admin_id)
        if not admin.is_admin:
            raise Forbidden("Admin privileges required")
        if not await asyncio.to_thread(self._repository.exists, conversation_id):
            raise NotFound("Conversation not found")
        if self._conversation_id(admin.id, receiver_id) != conversation_id:
            raise Forbidden("Receiver is not a participant of this conversation")
        return await self._append_and_publish(
            schemas.MessageCreate(
                sender_id=admin.id,
                receiver_id=str(receiver_id),
                content=content,
                origin=schemas.MessageOrigin.ADMIN_REPLY,
                conversation_id=conversation_id,
                attachments=list(attachments or []),
            )
        )

    async def record_system_message(
        self,
        submitter_id: str,
        content: str,
        *,
        interest_id: Optional[str] = None,
    ) -> schemas.Message:
        """Store and push a system message in the submitter's admin conversation."""

        admin = await self._require_admin()
        return await self._append_and_publish(
            schemas.MessageCreate(
                sender_id=str(submitter_id),
                receiver_id=admin.id,
                content=content,
                origin=schemas.MessageOrigin.SYSTEM,
                conversation_id=self._conversation_id(submitter_id, admin.id),
                interest_id=interest_id,
            )
        )

    # ------------------------------------------------------------------
    # Reading

    async def get_or_create_conversation(
        self, current_user_id: str, other_user_id: str
    ) -> List[schemas.Message]:
        """Return the conversation with ``other_user_id``, opening it if needed.

        A conversation without history gets a single welcome message so that
        clients never see an empty conversation. The welcome always comes from
        the admin side, but its origin records who opened the conversation.
        """

        current = await self._require_participant(current_user_id)
        other = await self._lookup(other_user_id)
        if not current.is_admin:
            await self._require_admin()
            if other is None or not other.is_admin:
                raise Forbidden("You can only message admins")
        elif other is None:
            raise NotFound(f"Participant {other_user_id} not found")

        conversation_id = self._conversation_id(current.id, other.id)
        if await asyncio.to_thread(self._repository.exists, conversation_id):
            messages = await asyncio.to_thread(
                self._repository.find_by_conversation, conversation_id
            )
            return await self._with_senders(messages)

        admin_side, user_side = (current, other) if current.is_admin else (other, current)
        welcome = await asyncio.to_thread(
            self._repository.append,
            schemas.MessageCreate(
                sender_id=admin_side.id,
                receiver_id=user_side.id,
                content=(
                    self._settings.admin_welcome_text
                    if current.is_admin
                    else self._settings.user_welcome_text
                ),
                origin=(
                    schemas.MessageOrigin.ADMIN_REPLY
                    if current.is_admin
                    else schemas.MessageOrigin.USER
                ),
                conversation_id=conversation_id,
            ),
        )
        logger.info("Opened conversation %s with a welcome message", conversation_id)
        return await self._with_senders([welcome])

    async def get_conversations(
        self, requester_id: str, requester_is_admin: bool
    ) -> List[schemas.ConversationSummary]:
        if requester_is_admin:
            return await self._admin_conversations()

        admin = await self._require_admin()
        conversation_id = self._conversation_id(requester_id, admin.id)
        last_message = await asyncio.to_thread(
            self._repository.last_message, conversation_id
        )
        unread = await asyncio.to_thread(
            self._repository.count_unread, conversation_id, str(requester_id)
        )
        profile = await asyncio.to_thread(
            self._directory.resolve_participant_profile, admin.id
        )
        if last_message is not None:
            (last_message,) = await self._with_senders([last_message])
        return [
            schemas.ConversationSummary(
                id=conversation_id,
                last_message=last_message,
                unread_count=unread,
                participant=profile,
            )
        ]

    async def get_messages(
        self, conversation_id: str, requester_id: str, requester_is_admin: bool
    ) -> List[schemas.Message]:
        """Return the ordered messages of a conversation and mark them read.

        Only messages addressed to the requester are flipped to read.
        """

        if not requester_is_admin and not is_participant(
            conversation_id, requester_id, prefix=self._settings.conversation_prefix
        ):
            raise Forbidden("Not authorized to view this conversation")

        await asyncio.to_thread(
            self._repository.mark_read, conversation_id, str(requester_id)
        )
        messages = await asyncio.to_thread(
            self._repository.find_by_conversation, conversation_id
        )
        return await self._with_senders(messages)

    # ------------------------------------------------------------------
    # Helpers

    async def _admin_conversations(self) -> List[schemas.ConversationSummary]:
        admin_ids = await asyncio.to_thread(self._directory.list_admin_ids)
        groups = await asyncio.to_thread(
            self._repository.list_conversations_for_admin, admin_ids
        )
        summaries: List[schemas.ConversationSummary] = []
        for group in groups:
            profile = None
            if group.participant_id:
                profile = await asyncio.to_thread(
                    self._directory.resolve_participant_profile, group.participant_id
                )
            (last_message,) = await self._with_senders([group.last_message])
            summaries.append(
                schemas.ConversationSummary(
                    id=group.conversation_id,
                    last_message=last_message,
                    unread_count=group.unread_count,
                    participant=profile,
                )
            )
        return summaries

    async def _append_and_publish(
        self, message: schemas.MessageCreate
    ) -> schemas.Message:
        stored = await asyncio.to_thread(self._repository.append, message)
        (stored,) = await self._with_senders([stored])
        await self.publish_safely(stored)
        return stored

    async def publish_safely(self, message: schemas.Message) -> None:
        """Push ``message`` to its conversation; failures are logged only."""

        if self._channel is None:
            return
        try:
            await self._channel.publish_message(message.conversation_id, message)
        except ChannelPublishFailure as exc:
            logger.warning(
                "Realtime push failed for message %s: %s", message.id, exc
            )
        except Exception:
            logger.exception("Unexpected realtime failure for message %s", message.id)

    async def _with_senders(
        self, messages: List[schemas.Message]
    ) -> List[schemas.Message]:
        cache: dict[str, Optional[schemas.ParticipantProfile]] = {}
        for message in messages:
            if not message.sender_id:
                continue
            if message.sender_id not in cache:
                cache[message.sender_id] = await asyncio.to_thread(
                    self._directory.resolve_participant_profile, message.sender_id
                )
            message.sender = cache[message.sender_id]
        return messages

    async def _lookup(self, participant_id: Optional[str]) -> Optional[Participant]:
        if not participant_id:
            return None
        return await asyncio.to_thread(
            self._directory.get_participant, str(participant_id)
        )

    async def _require_participant(self, participant_id: Optional[str]) -> Participant:
        participant = await self._lookup(participant_id)
        if participant is None or not participant.is_active:
            raise NotAuthenticated("Sender could not be resolved")
        return participant

    async def _require_admin(self) -> Participant:
        admin = await asyncio.to_thread(self._directory.resolve_admin_participant)
        if admin is None:
            raise AdminNotFound()
        return admin

    def _conversation_id(self, first: str, second: str) -> str:
        return resolve_conversation_id(
            first, second, prefix=self._settings.conversation_prefix
        )


__all__ = ["ConversationService"]
