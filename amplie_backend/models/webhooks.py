"""Modelos de configuração de webhook por instância."""
from pydantic import BaseModel
from typing import List, Optional


class WebhookCreate(BaseModel):
    url: Optional[str] = None
    events: Optional[List[str]] = None
    enabled: bool = True


class WebhookUpdate(BaseModel):
    url: Optional[str] = None
    events: Optional[List[str]] = None
    enabled: Optional[bool] = None
