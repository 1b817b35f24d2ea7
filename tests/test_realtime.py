import asyncio
from datetime import datetime, timezone

import pytest

from brokerhub.messaging.errors import ChannelPublishFailure
from brokerhub.messaging.realtime import RealtimeChannel, user_room
from brokerhub.messaging.schemas import Message, MessageOrigin
from conftest import RecordingSubscriber

A1_U1 = "conversation_a1_u1"


def _message(conversation_id: str = A1_U1) -> Message:
    now = datetime.now(timezone.utc)
    return Message(
        id="m1",
        sender_id="u1",
        receiver_id="a1",
        content="hi",
        origin=MessageOrigin.USER,
        conversation_id=conversation_id,
        created_at=now,
        updated_at=now,
    )


def test_connect_joins_personal_room():
    channel = RealtimeChannel()
    connection = channel.connect(RecordingSubscriber(), "u1")

    assert connection.rooms == {user_room("u1")}
    assert channel.subscribers("user_u1") == [connection]
    assert channel.connection_count == 1


def test_join_is_idempotent_and_leave_cleans_up():
    channel = RealtimeChannel()
    connection = channel.connect(RecordingSubscriber(), "u1")

    channel.join(connection, A1_U1)
    channel.join(connection, A1_U1)
    assert channel.subscribers(A1_U1) == [connection]

    channel.leave(connection, A1_U1)
    channel.leave(connection, A1_U1)
    assert channel.subscribers(A1_U1) == []
    assert A1_U1 not in connection.rooms


def test_publish_message_reaches_only_room_subscribers():
    channel = RealtimeChannel()
    inside, outside = RecordingSubscriber(), RecordingSubscriber()
    channel.join(channel.connect(inside, "a1", is_admin=True), A1_U1)
    channel.connect(outside, "u2")

    delivered = asyncio.run(channel.publish_message(A1_U1, _message()))

    assert delivered == 1
    assert inside.types() == ["new_message"]
    assert inside.payloads[0]["data"]["conversation_id"] == A1_U1
    assert outside.payloads == []


def test_publish_to_empty_room_is_not_an_error():
    channel = RealtimeChannel()

    assert asyncio.run(channel.publish_message(A1_U1, _message())) == 0


def test_global_event_reaches_every_connection():
    channel = RealtimeChannel()
    subscribers = [RecordingSubscriber() for _ in range(3)]
    for index, subscriber in enumerate(subscribers):
        channel.connect(subscriber, f"u{index}")

    delivered = asyncio.run(channel.publish_global_event("new_interest", {"interest_id": "i1"}))

    assert delivered == 3
    for subscriber in subscribers:
        assert subscriber.payloads == [{"type": "new_interest", "data": {"interest_id": "i1"}}]


def test_failed_delivery_raises_after_reaching_healthy_subscribers():
    channel = RealtimeChannel()
    healthy, broken = RecordingSubscriber(), RecordingSubscriber(fail=True)
    channel.join(channel.connect(healthy, "a1", is_admin=True), A1_U1)
    channel.join(channel.connect(broken, "u1"), A1_U1)

    with pytest.raises(ChannelPublishFailure):
        asyncio.run(channel.publish_message(A1_U1, _message()))

    assert healthy.types() == ["new_message"]


def test_disconnect_leaves_every_room():
    channel = RealtimeChannel()
    subscriber = RecordingSubscriber()
    connection = channel.connect(subscriber, "u1")
    channel.join(connection, A1_U1)

    channel.disconnect(connection)

    assert channel.connection_count == 0
    assert channel.subscribers(A1_U1) == []
    assert channel.subscribers("user_u1") == []
    assert asyncio.run(channel.publish_global_event("new_interest", {})) == 0
