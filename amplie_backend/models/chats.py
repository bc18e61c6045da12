"""Modelos de chat, perfil e grupos."""
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Literal, Optional


class PresenceRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")
    phone: str
    presence: Literal["composing", "recording", "paused", "available", "unavailable"] = "composing"
    delay_ms: int = Field(default=1200, alias="delayMs", ge=0)


class NumbersCheckRequest(BaseModel):
    numbers: List[str] = Field(min_length=1)


class MarkReadRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")
    phone: str
    message_ids: List[str] = Field(alias="messageIds", min_length=1)


class ReactionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")
    phone: str
    message_id: str = Field(alias="messageId")
    emoji: str
    from_me: bool = Field(default=False, alias="fromMe")


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    status: Optional[str] = None


class GroupCreate(BaseModel):
    subject: str = Field(min_length=1)
    participants: List[str] = Field(min_length=1)
    description: Optional[str] = None


class GroupMembersUpdate(BaseModel):
    action: Literal["add", "remove", "promote", "demote"]
    participants: List[str] = Field(min_length=1)
