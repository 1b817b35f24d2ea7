"""Messaging API routes."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ..core.db import conversation_service_scope
from ..core.ratelimit import limiter, message_send_limit
from ..messaging import schemas
from ..messaging.directory import Participant
from ..messaging.errors import MessagingError
from ..messaging.service import ConversationService
from ..security.auth import get_current_participant, require_admin

router = APIRouter(prefix="/api/messages", tags=["messages"])

logger = logging.getLogger(__name__)

CurrentParticipant = Annotated[Participant, Depends(get_current_participant)]
AdminParticipant = Annotated[Participant, Depends(require_admin)]


@contextmanager
def _service_context(request: Request) -> Iterator[ConversationService]:
    state = request.app.state
    try:
        with conversation_service_scope(state.session_factory, state.realtime) as service:
            yield service
    except MessagingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc
    except HTTPException:
        raise
    except Exception as exc:  # pragma: no cover - unexpected failure
        logger.exception("Messaging request failed")
        raise HTTPException(status_code=500, detail="Server error") from exc


@router.post(
    "",
    response_model=schemas.Message,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(message_send_limit)
async def send_message(
    request: Request,
    payload: schemas.SendMessageRequest,
    participant: CurrentParticipant,
) -> schemas.Message:
    """Send a message; regular users always write to the admin."""
    with _service_context(request) as service:
        return await service.send_message(
            participant.id,
            payload.receiver_id,
            payload.content,
            payload.attachments,
        )


@router.get("/conversations", response_model=list[schemas.ConversationSummary])
async def list_conversations(
    request: Request, participant: CurrentParticipant
) -> list[schemas.ConversationSummary]:
    """List the caller's conversations (all of them for admins)."""
    with _service_context(request) as service:
        return await service.get_conversations(participant.id, participant.is_admin)


@router.get("/conversation/{user_id}", response_model=list[schemas.Message])
async def get_or_create_conversation(
    user_id: str, request: Request, participant: CurrentParticipant
) -> list[schemas.Message]:
    """Open the conversation with ``user_id``, creating a welcome message if new."""
    with _service_context(request) as service:
        return await service.get_or_create_conversation(participant.id, user_id)


@router.post(
    "/admin/reply",
    response_model=schemas.Message,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(message_send_limit)
async def admin_reply(
    request: Request,
    payload: schemas.AdminReplyRequest,
    admin: AdminParticipant,
) -> schemas.Message:
    with _service_context(request) as service:
        return await service.admin_reply(
            admin.id,
            payload.conversation_id,
            payload.receiver_id,
            payload.content,
            payload.attachments,
        )


@router.get("/{conversation_id}", response_model=list[schemas.Message])
async def get_messages(
    conversation_id: str, request: Request, participant: CurrentParticipant
) -> list[schemas.Message]:
    """Return the conversation's messages and mark those addressed to the caller read."""
    with _service_context(request) as service:
        return await service.get_messages(
            conversation_id, participant.id, participant.is_admin
        )
