"""Tests for the message store implementations."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import pytest

from brokerhub.core.config import MessagingSettings
from brokerhub.messaging import repository as repository_module
from brokerhub.messaging.errors import MessageValidationError
from brokerhub.messaging.repository import (
    InMemoryMessageRepository,
    SqlAlchemyMessageRepository,
    prepare_message,
)
from brokerhub.messaging.schemas import Attachment, MessageCreate, MessageOrigin

ADMIN_IDS = ["a1"]
A1_U1 = "conversation_a1_u1"
A1_U2 = "conversation_a1_u2"


@pytest.fixture(params=["sqlalchemy", "memory"])
def repository(request):
    if request.param == "memory":
        yield InMemoryMessageRepository()
        return
    db = request.getfixturevalue("db")
    session = db.session_factory()
    try:
        yield SqlAlchemyMessageRepository(session)
    finally:
        session.close()


def _message(sender: str | None, receiver: str | None, content: str = "hello", **kwargs) -> MessageCreate:
    return MessageCreate(sender_id=sender, receiver_id=receiver, content=content, **kwargs)


def test_append_fills_conversation_id_and_defaults(repository):
    stored = repository.append(
        _message(
            "u1",
            "a1",
            "  Is the flat still available?  ",
            attachments=[Attachment(url="https://cdn.example/plan.pdf", file_type="pdf")],
        )
    )

    assert stored.conversation_id == A1_U1
    assert stored.content == "Is the flat still available?"
    assert stored.is_read is False
    assert stored.origin is MessageOrigin.USER
    assert stored.url == f"/messages/{stored.id}"
    assert stored.attachments[0].file_type == "pdf"
    assert stored.created_at is not None


def test_find_returns_messages_in_creation_order(repository):
    for index in range(5):
        repository.append(_message("u1" if index % 2 else "a1", "a1" if index % 2 else "u1", f"m{index}"))
    repository.append(_message("u2", "a1", "elsewhere"))

    messages = repository.find_by_conversation(A1_U1)

    assert [m.content for m in messages] == ["m0", "m1", "m2", "m3", "m4"]
    assert repository.last_message(A1_U1).content == "m4"
    assert repository.find_by_conversation("conversation_a1_zz") == []
    assert repository.last_message("conversation_a1_zz") is None


def test_equal_timestamps_keep_insertion_order(repository, monkeypatch):
    frozen = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    monkeypatch.setattr(repository_module, "_utcnow", lambda: frozen)
    for index in range(12):
        repository.append(_message("u1", "a1", f"m{index}"))
    repository.append(_message("u2", "a1", "other conversation"))

    messages = repository.find_by_conversation(A1_U1)

    assert [m.content for m in messages] == [f"m{index}" for index in range(12)]
    assert {m.created_at.replace(tzinfo=None) for m in messages} == {frozen.replace(tzinfo=None)}
    assert repository.last_message(A1_U1).content == "m11"
    groups = repository.list_conversations_for_admin(ADMIN_IDS)
    assert [g.conversation_id for g in groups] == [A1_U2, A1_U1]
    assert groups[1].last_message.content == "m11"


def test_exists(repository):
    assert not repository.exists(A1_U1)
    repository.append(_message("u1", "a1"))
    assert repository.exists(A1_U1)


def test_mark_read_only_touches_receiver_and_is_idempotent(repository):
    repository.append(_message("u1", "a1", "to admin"))
    repository.append(_message("a1", "u1", "to user"))
    repository.append(_message("a1", "u1", "to user again"))

    assert repository.mark_read(A1_U1, "u1") == 2
    assert repository.mark_read(A1_U1, "u1") == 0

    by_content = {m.content: m for m in repository.find_by_conversation(A1_U1)}
    assert by_content["to user"].is_read is True
    assert by_content["to user again"].is_read is True
    assert by_content["to admin"].is_read is False
    assert repository.count_unread(A1_U1, "a1") == 1
    assert repository.count_unread(A1_U1, "u1") == 0


def test_mark_read_on_unknown_conversation_is_a_noop(repository):
    assert repository.mark_read("conversation_x_y", "x") == 0


@pytest.mark.parametrize(
    "message",
    [
        _message("u1", "a1", "   "),
        _message("u1", None),
        _message(None, "a1"),
        _message("u1", "a1", conversation_id="conversation_a1_u2"),
    ],
)
def test_append_rejects_invalid_messages(repository, message):
    with pytest.raises(MessageValidationError):
        repository.append(message)
    assert not repository.exists(A1_U1)


def test_system_message_may_omit_participants(repository):
    stored = repository.append(
        _message(None, None, "New interest submitted: Apartment (sale)", origin=MessageOrigin.SYSTEM, conversation_id=A1_U1)
    )

    assert stored.origin is MessageOrigin.SYSTEM
    assert stored.sender_id is None
    assert repository.exists(A1_U1)


def test_system_message_still_needs_a_conversation(repository):
    with pytest.raises(MessageValidationError):
        repository.append(_message(None, None, "orphan", origin=MessageOrigin.SYSTEM))


def test_prepare_message_enforces_limits():
    settings = MessagingSettings(max_message_length=5, max_attachments=1)

    with pytest.raises(MessageValidationError):
        prepare_message(_message("u1", "a1", "too long"), settings)
    with pytest.raises(MessageValidationError):
        prepare_message(
            _message(
                "u1",
                "a1",
                "ok",
                attachments=[Attachment(url="a"), Attachment(url="b")],
            ),
            settings,
        )
    assert prepare_message(_message("u1", "a1", "ok"), settings).conversation_id == A1_U1


def test_admin_listing_groups_by_conversation(repository):
    repository.append(_message("u1", "a1", "first from u1"))
    repository.append(_message("a1", "u1", "reply to u1"))
    repository.append(_message("u2", "a1", "hello from u2"))
    repository.append(_message("u2", "a1", "still there?"))

    groups = repository.list_conversations_for_admin(ADMIN_IDS)

    assert [g.conversation_id for g in groups] == [A1_U2, A1_U1]
    u2_group, u1_group = groups
    assert u2_group.last_message.content == "still there?"
    assert u2_group.unread_count == 2
    assert u2_group.participant_id == "u2"
    assert u1_group.last_message.content == "reply to u1"
    assert u1_group.unread_count == 1
    assert u1_group.participant_id == "u1"


def test_admin_listing_unread_drops_after_admin_reads(repository):
    repository.append(_message("u1", "a1", "ping"))
    repository.mark_read(A1_U1, "a1")

    (group,) = repository.list_conversations_for_admin(ADMIN_IDS)

    assert group.unread_count == 0


def test_admin_listing_counts_unaddressed_system_messages(repository):
    repository.append(_message(None, None, "system note", origin=MessageOrigin.SYSTEM, conversation_id=A1_U1))

    (group,) = repository.list_conversations_for_admin(ADMIN_IDS)

    assert group.unread_count == 1
    assert group.participant_id is None


def test_admin_listing_logs_conflicting_participants(repository, caplog):
    repository.append(_message("u1", "a1", "regular"))
    repository.append(
        _message("u2", None, "misfiled", origin=MessageOrigin.SYSTEM, conversation_id=A1_U1)
    )

    with caplog.at_level(logging.ERROR, logger="brokerhub.messaging.repository"):
        (group,) = repository.list_conversations_for_admin(ADMIN_IDS)

    assert group.participant_id == "u2"
    assert any("several non-admin participants" in r.getMessage() for r in caplog.records)


def test_admin_listing_empty_store(repository):
    assert repository.list_conversations_for_admin(ADMIN_IDS) == []
