"""Modelos Pydantic da API de sessões WhatsApp.

Este módulo re-exporta todos os modelos para facilitar importações.
"""
from .chats import (
    GroupCreate,
    GroupMembersUpdate,
    MarkReadRequest,
    NumbersCheckRequest,
    PresenceRequest,
    ProfileUpdate,
    ReactionRequest,
)
from .instances import (
    InstanceCreate,
    PairingRequest,
    WebhookSettings,
)
from .messages import SendMessagePayload
from .webhooks import WebhookCreate, WebhookUpdate

__all__ = [
    "GroupCreate",
    "GroupMembersUpdate",
    "MarkReadRequest",
    "NumbersCheckRequest",
    "PresenceRequest",
    "ProfileUpdate",
    "ReactionRequest",
    "InstanceCreate",
    "PairingRequest",
    "WebhookSettings",
    "SendMessagePayload",
    "WebhookCreate",
    "WebhookUpdate",
]
