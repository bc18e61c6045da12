"""Outbound message variants.

A request carries exactly one variant; the dispatcher matches on its type.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Union


@dataclass(frozen=True)
class Attachment:
    content: bytes
    filename: str
    content_type: Optional[str] = None


@dataclass(frozen=True)
class TextMessage:
    text: str
    link_preview: Optional[bool] = None
    delay: Optional[int] = None


@dataclass(frozen=True)
class _MediaMessage:
    url: Optional[str] = None
    attachment: Optional[Attachment] = None
    caption: Optional[str] = None
    filename: Optional[str] = None
    mimetype: Optional[str] = None

    media_type = "document"

    def __post_init__(self) -> None:
        if bool(self.url) == bool(self.attachment):
            raise ValueError("media message needs exactly one of url or attachment")


@dataclass(frozen=True)
class ImageMessage(_MediaMessage):
    media_type = "image"


@dataclass(frozen=True)
class DocumentMessage(_MediaMessage):
    media_type = "document"


@dataclass(frozen=True)
class AudioMessage(_MediaMessage):
    media_type = "audio"


@dataclass(frozen=True)
class VideoMessage(_MediaMessage):
    media_type = "video"


@dataclass(frozen=True)
class LocationMessage:
    latitude: float
    longitude: float
    name: Optional[str] = None
    address: Optional[str] = None


@dataclass(frozen=True)
class ContactMessage:
    contact_name: str
    contact_phone: str


@dataclass(frozen=True)
class ButtonsMessage:
    text: str
    buttons: tuple[dict[str, Any], ...]
    title: Optional[str] = None
    footer: Optional[str] = None


@dataclass(frozen=True)
class ListMessage:
    title: str
    description: str
    button_text: str
    sections: tuple[dict[str, Any], ...]
    footer: Optional[str] = None


@dataclass(frozen=True)
class PollMessage:
    name: str
    values: tuple[str, ...]
    selectable_count: int = 1


MediaMessage = Union[ImageMessage, DocumentMessage, AudioMessage, VideoMessage]

OutboundMessage = Union[
    TextMessage,
    ImageMessage,
    DocumentMessage,
    AudioMessage,
    VideoMessage,
    LocationMessage,
    ContactMessage,
    ButtonsMessage,
    ListMessage,
    PollMessage,
]

MEDIA_VARIANTS = {
    "image": ImageMessage,
    "document": DocumentMessage,
    "audio": AudioMessage,
    "video": VideoMessage,
}

MEDIA_MESSAGE_TYPES = tuple(MEDIA_VARIANTS.values())


@dataclass(frozen=True)
class OutboundMessageRequest:
    phone: str
    message: OutboundMessage
    correlation_id: Optional[str] = None


@dataclass(frozen=True)
class DispatchError:
    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DispatchResult:
    success: bool
    message_id: Optional[str] = None
    correlation_id: Optional[str] = None
    error: Optional[DispatchError] = None

    def to_api(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "success": self.success,
            "messageId": self.message_id,
            "correlationId": self.correlation_id,
        }
        if self.error:
            out["error"] = {"code": self.error.code, "message": self.error.message, "details": self.error.details}
        return out
