"""Runtime settings for the messaging layer."""

from __future__ import annotations

import dataclasses
import os
from functools import lru_cache


@dataclasses.dataclass(frozen=True)
class MessagingSettings:
    """Tunables read from the environment once per process."""

    conversation_prefix: str = "conversation"
    admin_welcome_text: str = "How can I help you today?"
    user_welcome_text: str = "Hello! How can we assist you?"
    max_message_length: int = 5000
    max_attachments: int = 10
    send_rate_limit: str = "30/minute"


@lru_cache(maxsize=1)
def get_messaging_settings() -> MessagingSettings:
    """Load settings from the environment with development defaults."""

    defaults = MessagingSettings()
    prefix = os.getenv("CONVERSATION_PREFIX", defaults.conversation_prefix).strip()
    if not prefix:
        raise RuntimeError("CONVERSATION_PREFIX cannot be empty.")
    return MessagingSettings(
        conversation_prefix=prefix,
        admin_welcome_text=os.getenv("ADMIN_WELCOME_TEXT", defaults.admin_welcome_text),
        user_welcome_text=os.getenv("USER_WELCOME_TEXT", defaults.user_welcome_text),
        max_message_length=int(
            os.getenv("CHAT_MAX_MESSAGE_LENGTH", str(defaults.max_message_length))
        ),
        max_attachments=int(
            os.getenv("MESSAGE_MAX_ATTACHMENTS", str(defaults.max_attachments))
        ),
        send_rate_limit=os.getenv("MESSAGE_SEND_RATE_LIMIT", defaults.send_rate_limit),
    )


def reset_messaging_settings_cache() -> None:
    """Clear cached settings; useful in tests when env vars change."""

    get_messaging_settings.cache_clear()


__all__ = [
    "MessagingSettings",
    "get_messaging_settings",
    "reset_messaging_settings_cache",
]
