"""Turns interest submissions into admin-facing system messages."""

from __future__ import annotations

import logging
from contextlib import AbstractContextManager
from typing import Callable

from ..messaging.errors import ChannelPublishFailure
from ..messaging.realtime import NEW_INTEREST_EVENT, RealtimeChannel
from ..messaging.service import ConversationService
from .bus import EventBus, InterestSubmitted

logger = logging.getLogger(__name__)

ServiceScope = Callable[[], AbstractContextManager[ConversationService]]


def describe_interest(event: InterestSubmitted) -> str:
    return f"New interest submitted: {event.interest_type} ({event.transaction_type})"


class InterestNotificationBridge:
    """Subscriber for :class:`InterestSubmitted`.

    Each event opens its own service scope, since it runs after the request
    that emitted it has finished. Nothing raised here reaches the emitter.
    """

    def __init__(self, service_scope: ServiceScope, channel: RealtimeChannel) -> None:
        self._service_scope = service_scope
        self._channel = channel

    def register(self, bus: EventBus) -> None:
        bus.subscribe(InterestSubmitted, self.handle_interest_submitted)

    async def handle_interest_submitted(self, event: InterestSubmitted) -> None:
        try:
            with self._service_scope() as service:
                message = await service.record_system_message(
                    event.submitter_id,
                    describe_interest(event),
                    interest_id=event.interest_id,
                )
        except Exception:
            logger.exception(
                "Error sending admin notification for interest %s", event.interest_id
            )
            return

        try:
            await self._channel.publish_global_event(NEW_INTEREST_EVENT, event.to_dict())
        except ChannelPublishFailure as exc:
            logger.warning(
                "new_interest push failed for interest %s: %s", event.interest_id, exc
            )
        except Exception:
            logger.exception(
                "Unexpected realtime failure for interest %s", event.interest_id
            )
        else:
            logger.info(
                "Admin notification sent for interest %s in %s",
                event.interest_id,
                message.conversation_id,
            )


def on_interest_submitted(
    bus: EventBus,
    interest_id: str,
    submitter_id: str,
    *,
    interest_type: str,
    transaction_type: str,
) -> int:
    """Hook called by the interest collaborator once an interest is stored."""

    return bus.publish(
        InterestSubmitted(
            interest_id=str(interest_id),
            submitter_id=str(submitter_id),
            interest_type=interest_type,
            transaction_type=transaction_type,
        )
    )


__all__ = [
    "InterestNotificationBridge",
    "describe_interest",
    "on_interest_submitted",
]
