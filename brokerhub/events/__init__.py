"""Domain events and their messaging subscribers."""

from .bus import EventBus, InterestSubmitted
from .interest_bridge import InterestNotificationBridge, on_interest_submitted

__all__ = [
    "EventBus",
    "InterestNotificationBridge",
    "InterestSubmitted",
    "on_interest_submitted",
]
