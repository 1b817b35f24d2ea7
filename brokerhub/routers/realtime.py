"""WebSocket endpoint backing the realtime fan-out channel.

Protocol (JSON envelopes ``{"type": ..., "data": {...}}``):

- client -> server: ``join_conversation`` / ``leave_conversation`` with
  ``data.conversation_id``, and ``ping``;
- server -> client: ``new_message``, ``new_interest``, ``joined``, ``left``,
  ``pong`` and ``error``.

The bearer credential is checked before the socket is accepted; a missing or
invalid one closes the handshake with code 1008.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError

from ..core.auth import (
    TokenConfigurationError,
    TokenValidationError,
    decode_access_token,
    extract_bearer_token,
)
from ..core.config import get_messaging_settings
from ..messaging.directory import Participant
from ..messaging.identity import is_participant
from ..messaging.realtime import Connection, RealtimeChannel
from ..messaging.schemas import ClientEnvelope, ServerEnvelope
from ..security.auth import resolve_participant

router = APIRouter(tags=["realtime"])

logger = logging.getLogger(__name__)

JOIN_EVENT = "join_conversation"
LEAVE_EVENT = "leave_conversation"
PING_EVENT = "ping"


def _authenticate(websocket: WebSocket) -> Participant | None:
    token = websocket.query_params.get("token") or extract_bearer_token(
        websocket.headers.get("Authorization")
    )
    try:
        payload = decode_access_token(token or "")
    except TokenValidationError:
        return None
    except TokenConfigurationError:
        logger.error("Realtime handshake rejected: token verification not configured")
        return None

    session = websocket.app.state.session_factory()
    try:
        return resolve_participant(session, payload)
    except HTTPException:
        return None
    finally:
        session.close()


async def _send(websocket: WebSocket, event: str, **data: object) -> None:
    await websocket.send_json(ServerEnvelope(type=event, data=data).model_dump(mode="json"))


async def _handle(
    websocket: WebSocket,
    channel: RealtimeChannel,
    connection: Connection,
    envelope: ClientEnvelope,
) -> None:
    if envelope.type == PING_EVENT:
        await _send(websocket, "pong")
        return
    if envelope.type not in (JOIN_EVENT, LEAVE_EVENT):
        await _send(websocket, "error", detail=f"Unknown event: {envelope.type}")
        return

    conversation_id = str(envelope.data.get("conversation_id") or "").strip()
    if not conversation_id:
        await _send(websocket, "error", detail="conversation_id is required")
        return

    if envelope.type == LEAVE_EVENT:
        channel.leave(connection, conversation_id)
        logger.info(
            "Participant %s left conversation %s", connection.participant_id, conversation_id
        )
        await _send(websocket, "left", conversation_id=conversation_id)
        return

    prefix = get_messaging_settings().conversation_prefix
    if not connection.is_admin and not is_participant(
        conversation_id, connection.participant_id, prefix=prefix
    ):
        await _send(
            websocket,
            "error",
            detail="Not authorized to join this conversation",
            conversation_id=conversation_id,
        )
        return
    channel.join(connection, conversation_id)
    logger.info(
        "Participant %s joined conversation %s", connection.participant_id, conversation_id
    )
    await _send(websocket, "joined", conversation_id=conversation_id)


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket) -> None:
    participant = _authenticate(websocket)
    if participant is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    channel: RealtimeChannel = websocket.app.state.realtime
    connection = channel.connect(websocket, participant.id, is_admin=participant.is_admin)
    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", 1000), frame.get("reason"))
            raw = frame.get("text")
            if raw is None:
                await _send(websocket, "error", detail="Binary frames are not supported")
                continue
            try:
                envelope = ClientEnvelope.model_validate_json(raw)
            except ValidationError:
                await _send(websocket, "error", detail="Malformed event")
                continue
            await _handle(websocket, channel, connection, envelope)
    except WebSocketDisconnect as exc:
        logger.info("Realtime client %s closed (code %s)", connection.id, exc.code)
    finally:
        channel.disconnect(connection)
