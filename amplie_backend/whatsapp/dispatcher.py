from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable, Optional

from ..utils.phone_utils import normalize_phone_number
from .client import EvolutionClient, extract_message_id
from .errors import (
    AttachmentUploadError,
    InstanceNotFoundError,
    InvalidPhoneNumberError,
    PersistenceError,
    WhatsAppError,
)
from .messages import (
    MEDIA_MESSAGE_TYPES,
    ButtonsMessage,
    ContactMessage,
    DispatchError,
    DispatchResult,
    ListMessage,
    LocationMessage,
    OutboundMessage,
    OutboundMessageRequest,
    PollMessage,
    TextMessage,
)
from .models import MessagingInstance
from .observability import LogContext, Observability
from .registry import SessionRegistry
from .storage import AttachmentStore


class OutboundDispatcher:
    """Sends one outbound message through a tenant's instance.

    Domain failures never escape ``dispatch``: they come back as a failed
    ``DispatchResult`` carrying the error code.
    """

    def __init__(
        self,
        *,
        tenant_id: str,
        client_factory: Callable[[], EvolutionClient],
        registry: SessionRegistry,
        obs: Observability,
        store: Optional[AttachmentStore] = None,
    ):
        self.tenant_id = tenant_id
        self._client_factory = client_factory
        self._registry = registry
        self._obs = obs
        self._store = store

    async def dispatch(self, instance_name: str, request: OutboundMessageRequest) -> DispatchResult:
        kind = type(request.message).__name__
        ctx = LogContext(
            tenant_id=self.tenant_id,
            instance_name=instance_name,
            operation="dispatch",
            correlation_id=request.correlation_id,
        )
        try:
            if self._lookup_instance(instance_name) is None:
                raise InstanceNotFoundError(instance_name)
            phone = normalize_phone_number(request.phone)
            if not phone:
                raise InvalidPhoneNumberError(str(request.phone or ""))
            client = self._build_client()
            message = self._resolve_attachment(request.message, ctx)
            body = await self._send(client, instance_name, phone, message)
        except WhatsAppError as e:
            self._obs.failure("whatsapp.message.send_failed", e, ctx=ctx, kind=kind)
            return DispatchResult(
                success=False,
                correlation_id=request.correlation_id,
                error=DispatchError(code=e.code, message=e.message, details=dict(e.details or {})),
            )

        message_id = extract_message_id(body)
        self._obs.info("whatsapp.message.sent", ctx=ctx, kind=kind, message_id=message_id)
        return DispatchResult(success=True, message_id=message_id, correlation_id=request.correlation_id)

    def _lookup_instance(self, instance_name: str) -> Optional[MessagingInstance]:
        try:
            return self._registry.get_instance(self.tenant_id, instance_name)
        except WhatsAppError:
            raise
        except Exception as e:
            raise PersistenceError(details={"operation": "get_instance", "error": str(e)}) from e

    def _build_client(self) -> EvolutionClient:
        # credentials come from the database on first use
        try:
            return self._client_factory()
        except WhatsAppError:
            raise
        except Exception as e:
            raise PersistenceError(details={"operation": "load_credentials", "error": str(e)}) from e

    def _resolve_attachment(self, message: OutboundMessage, ctx: LogContext) -> OutboundMessage:
        if not isinstance(message, MEDIA_MESSAGE_TYPES) or message.attachment is None:
            return message
        if self._store is None:
            raise AttachmentUploadError("Armazenamento de anexos indisponível.")
        att = message.attachment
        stored = self._store.upload(att, hinted_kind=message.media_type)
        self._obs.debug("whatsapp.attachment.uploaded", ctx=ctx, path=stored.path, size=stored.size)
        return replace(
            message,
            url=stored.url,
            attachment=None,
            filename=message.filename or att.filename,
            mimetype=message.mimetype or stored.mime_type,
        )

    async def _send(self, client: EvolutionClient, name: str, phone: str, message: OutboundMessage) -> Any:
        if isinstance(message, TextMessage):
            return await client.send_text(name, phone, message.text, delay=message.delay, link_preview=message.link_preview)
        if isinstance(message, MEDIA_MESSAGE_TYPES):
            return await client.send_media(
                name,
                phone,
                message.media_type,
                message.url or "",
                caption=message.caption,
                filename=message.filename,
                mimetype=message.mimetype,
            )
        if isinstance(message, ButtonsMessage):
            return await client.send_buttons(
                name, phone, message.text, list(message.buttons), title=message.title, footer=message.footer
            )
        if isinstance(message, ListMessage):
            return await client.send_list(
                name,
                phone,
                message.title,
                message.description,
                message.button_text,
                list(message.sections),
                footer=message.footer,
            )
        if isinstance(message, LocationMessage):
            return await client.send_location(
                name, phone, message.latitude, message.longitude, name=message.name, address=message.address
            )
        if isinstance(message, ContactMessage):
            return await client.send_contact(name, phone, message.contact_name, message.contact_phone)
        if isinstance(message, PollMessage):
            return await client.send_poll(name, phone, message.name, message.values, selectable_count=message.selectable_count)
        raise TypeError(f"unsupported message variant: {type(message).__name__}")
