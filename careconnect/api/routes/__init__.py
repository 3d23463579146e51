# API Routes Module
from careconnect.api.routes import (
    admin,
    conversations,
    subscriptions,
    webhooks,
)

__all__ = [
    "admin",
    "conversations",
    "subscriptions",
    "webhooks",
]
