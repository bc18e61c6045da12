"""Modelos relacionados a instâncias do WhatsApp."""
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional

from ..whatsapp.models import WebhookRequest


class WebhookSettings(BaseModel):
    url: Optional[str] = None
    events: Optional[List[str]] = None
    enabled: bool = True

    def to_request(self) -> WebhookRequest:
        return WebhookRequest(
            url=(self.url or "").strip() or None,
            events=tuple(self.events) if self.events is not None else None,
            enabled=self.enabled,
        )


class InstanceCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")
    instance_name: str = Field(alias="instanceName")
    description: Optional[str] = None
    number: Optional[str] = None
    webhook: Optional[WebhookSettings] = None
    start_polling: bool = Field(default=True, alias="startPolling")


class PairingRequest(BaseModel):
    number: Optional[str] = None
