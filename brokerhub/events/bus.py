"""In-process domain event bus.

Publishing never waits for subscribers: each handler runs as its own
``asyncio`` task and any exception it raises is logged and dropped, so a
failing subscriber cannot affect the action that emitted the event.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Dict, List

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[None]]


@dataclass(frozen=True)
class InterestSubmitted:
    """Emitted by the interest collaborator after an interest is persisted."""

    interest_id: str
    submitter_id: str
    interest_type: str
    transaction_type: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class EventBus:
    def __init__(self) -> None:
        self._handlers: Dict[type, List[Handler]] = defaultdict(list)
        self._pending: set[asyncio.Task[None]] = set()

    def subscribe(self, event_type: type, handler: Handler) -> None:
        self._handlers[event_type].append(handler)

    def publish(self, event: Any) -> int:
        """Schedule every handler registered for ``type(event)``.

        Must be called from a running event loop. Returns the number of
        handlers scheduled.
        """

        handlers = list(self._handlers.get(type(event), ()))
        if not handlers:
            logger.debug("No handler for event type: %s", type(event).__name__)
            return 0
        loop = asyncio.get_running_loop()
        for handler in handlers:
            task = loop.create_task(self._run(handler, event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        return len(handlers)

    async def drain(self) -> None:
        """Wait for every scheduled handler to finish."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @staticmethod
    async def _run(handler: Handler, event: Any) -> None:
        try:
            await handler(event)
        except Exception:
            logger.exception(
                "Handler %s failed for %s",
                getattr(handler, "__qualname__", repr(handler)),
                type(event).__name__,
            )


__all__ = ["EventBus", "Handler", "InterestSubmitted"]
