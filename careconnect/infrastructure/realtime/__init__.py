"""
Realtime Infrastructure Package

In-process fan-out of new conversation messages.
"""

from careconnect.infrastructure.realtime.change_feed import (
    ConversationChangeFeed,
    MessageSubscription,
    Subscription,
    get_change_feed,
)


__all__ = [
    "ConversationChangeFeed",
    "MessageSubscription",
    "Subscription",
    "get_change_feed",
]
