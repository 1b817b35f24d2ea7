"""In-process realtime fan-out for conversation events.

One :class:`RealtimeChannel` is created per worker during application
startup and handed to everything that publishes or subscribes. Rooms are:

- ``<conversation id>`` for subscribers of a conversation,
- ``user_<participant id>`` joined automatically on connect,
- the implicit global room made of every live connection.

Delivery is best effort and at most once per publish: a client that is not
connected, or joins late, catches up by fetching the conversation again.
Subscriptions are not shared between workers, so a push only reaches sockets
held by the publishing process.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Protocol

from .errors import ChannelPublishFailure
from .schemas import Message, ServerEnvelope

logger = logging.getLogger(__name__)

NEW_MESSAGE_EVENT = "new_message"
NEW_INTEREST_EVENT = "new_interest"


class Subscriber(Protocol):
    """Anything that can receive a JSON payload, e.g. a FastAPI ``WebSocket``."""

    async def send_json(self, data: Any) -> None: ...


@dataclass(eq=False)
class Connection:
    subscriber: Subscriber
    participant_id: str
    is_admin: bool = False
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    rooms: set[str] = field(default_factory=set)


def user_room(participant_id: str) -> str:
    return f"user_{participant_id}"


class RealtimeChannel:
    """Subscription registry plus publish helpers."""

    def __init__(self) -> None:
        self._connections: Dict[str, Connection] = {}
        self._rooms: Dict[str, Dict[str, Connection]] = {}

    # Lifecycle ---------------------------------------------------------------
    def connect(
        self, subscriber: Subscriber, participant_id: str, *, is_admin: bool = False
    ) -> Connection:
        connection = Connection(
            subscriber=subscriber, participant_id=str(participant_id), is_admin=is_admin
        )
        self._connections[connection.id] = connection
        self.join(connection, user_room(connection.participant_id))
        logger.info(
            "Realtime client %s connected (participant %s)",
            connection.id,
            connection.participant_id,
        )
        return connection

    def disconnect(self, connection: Connection) -> None:
        for room in list(connection.rooms):
            self.leave(connection, room)
        self._connections.pop(connection.id, None)
        logger.info("Realtime client %s disconnected", connection.id)

    def join(self, connection: Connection, room: str) -> None:
        """Subscribe ``connection`` to ``room``; joining twice is a no-op."""

        self._rooms.setdefault(room, {})[connection.id] = connection
        connection.rooms.add(room)

    def leave(self, connection: Connection, room: str) -> None:
        members = self._rooms.get(room)
        if members is not None:
            members.pop(connection.id, None)
            if not members:
                del self._rooms[room]
        connection.rooms.discard(room)

    # Introspection -------------------------------------------------------------
    def subscribers(self, room: str) -> List[Connection]:
        return list(self._rooms.get(room, {}).values())

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    # Publishing ----------------------------------------------------------------
    async def publish_message(self, conversation_id: str, message: Message) -> int:
        """Push ``message`` to subscribers of its conversation.

        Returns the number of connections the payload was delivered to.

        Raises:
            ChannelPublishFailure: If delivery failed for at least one subscriber.
        """

        envelope = ServerEnvelope(
            type=NEW_MESSAGE_EVENT, data=message.model_dump(mode="json")
        )
        return await self._deliver(self.subscribers(conversation_id), envelope)

    async def publish_global_event(self, event_name: str, payload: dict[str, Any]) -> int:
        """Push an event to every live connection regardless of room."""

        envelope = ServerEnvelope(type=event_name, data=payload)
        return await self._deliver(list(self._connections.values()), envelope)

    async def _deliver(
        self, connections: Iterable[Connection], envelope: ServerEnvelope
    ) -> int:
        targets = list(connections)
        if not targets:
            return 0
        body = envelope.model_dump(mode="json")
        results = await asyncio.gather(
            *(target.subscriber.send_json(body) for target in targets),
            return_exceptions=True,
        )
        failed = [
            (target, result)
            for target, result in zip(targets, results)
            if isinstance(result, BaseException)
        ]
        if failed:
            for target, error in failed:
                logger.warning(
                    "Failed to push %s to client %s: %s", envelope.type, target.id, error
                )
            raise ChannelPublishFailure(
                f"{envelope.type} not delivered to {len(failed)} of {len(targets)} client(s)"
            )
        return len(targets)


__all__ = [
    "Connection",
    "NEW_INTEREST_EVENT",
    "NEW_MESSAGE_EVENT",
    "RealtimeChannel",
    "Subscriber",
    "user_room",
]
