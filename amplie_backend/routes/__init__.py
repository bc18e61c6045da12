"""
Routes package for the WhatsApp session backend.

Each router handles a specific domain of the API.
"""

from .chats_routes import router as chats_router
from .instances_routes import router as instances_router
from .messages_routes import router as messages_router
from .webhooks_routes import router as webhooks_router

__all__ = [
    "chats_router",
    "instances_router",
    "messages_router",
    "webhooks_router",
]
