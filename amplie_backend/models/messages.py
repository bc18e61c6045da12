"""Modelos de envio de mensagens."""
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional

from ..whatsapp.messages import (
    MEDIA_VARIANTS,
    ButtonsMessage,
    ContactMessage,
    ListMessage,
    LocationMessage,
    OutboundMessage,
    OutboundMessageRequest,
    PollMessage,
    TextMessage,
)

MESSAGE_TYPES = ("text", "image", "document", "audio", "video", "location", "contact", "buttons", "list", "poll")


class SendMessagePayload(BaseModel):
    """Corpo plano de envio; ``to_message`` copia só os campos do tipo escolhido."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")
    phone: str
    type: str = "text"
    correlation_id: Optional[str] = Field(default=None, alias="correlationId")

    # text
    text: Optional[str] = None
    link_preview: Optional[bool] = Field(default=None, alias="linkPreview")
    delay: Optional[int] = None

    # image / document / audio / video
    media_url: Optional[str] = Field(default=None, alias="mediaUrl")
    caption: Optional[str] = None
    filename: Optional[str] = Field(default=None, alias="fileName")
    mimetype: Optional[str] = None

    # location
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    location_name: Optional[str] = Field(default=None, alias="locationName")
    address: Optional[str] = None

    # contact
    contact_name: Optional[str] = Field(default=None, alias="contactName")
    contact_phone: Optional[str] = Field(default=None, alias="contactPhone")

    # buttons / list
    title: Optional[str] = None
    footer: Optional[str] = None
    buttons: Optional[List[dict]] = None
    description: Optional[str] = None
    button_text: Optional[str] = Field(default=None, alias="buttonText")
    sections: Optional[List[dict]] = None

    # poll
    poll_name: Optional[str] = Field(default=None, alias="pollName")
    values: Optional[List[str]] = None
    selectable_count: int = Field(default=1, alias="selectableCount")

    def to_message(self) -> OutboundMessage:
        kind = (self.type or "").strip().lower()
        if kind == "text":
            if not self.text:
                raise ValueError("Campo 'text' é obrigatório para mensagens de texto.")
            return TextMessage(text=self.text, link_preview=self.link_preview, delay=self.delay)
        if kind in MEDIA_VARIANTS:
            if not self.media_url:
                raise ValueError("Campo 'mediaUrl' é obrigatório para mensagens de mídia.")
            return MEDIA_VARIANTS[kind](
                url=self.media_url,
                caption=self.caption,
                filename=self.filename,
                mimetype=self.mimetype,
            )
        if kind == "location":
            if self.latitude is None or self.longitude is None:
                raise ValueError("Campos 'latitude' e 'longitude' são obrigatórios.")
            return LocationMessage(
                latitude=self.latitude,
                longitude=self.longitude,
                name=self.location_name,
                address=self.address,
            )
        if kind == "contact":
            if not self.contact_name or not self.contact_phone:
                raise ValueError("Campos 'contactName' e 'contactPhone' são obrigatórios.")
            return ContactMessage(contact_name=self.contact_name, contact_phone=self.contact_phone)
        if kind == "buttons":
            if not self.text or not self.buttons:
                raise ValueError("Campos 'text' e 'buttons' são obrigatórios.")
            return ButtonsMessage(text=self.text, buttons=tuple(self.buttons), title=self.title, footer=self.footer)
        if kind == "list":
            if not self.title or not self.button_text or not self.sections:
                raise ValueError("Campos 'title', 'buttonText' e 'sections' são obrigatórios.")
            return ListMessage(
                title=self.title,
                description=self.description or "",
                button_text=self.button_text,
                sections=tuple(self.sections),
                footer=self.footer,
            )
        if kind == "poll":
            if not self.poll_name or not self.values or len(self.values) < 2:
                raise ValueError("Enquete precisa de 'pollName' e ao menos duas opções.")
            return PollMessage(name=self.poll_name, values=tuple(self.values), selectable_count=self.selectable_count)
        raise ValueError(f"Tipo de mensagem inválido: {self.type}")

    def to_request(self) -> OutboundMessageRequest:
        return OutboundMessageRequest(phone=self.phone, message=self.to_message(), correlation_id=self.correlation_id)
