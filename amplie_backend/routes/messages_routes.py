"""
Outbound message routes.

- POST /instances/{name}/messages - Send a message (JSON body, one type per request)
- POST /instances/{name}/messages/media - Upload a file and send it
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from ..media_detection import detect_media_kind
from ..models import SendMessagePayload
from ..utils.auth_helpers import verify_token
from ..whatsapp.messages import MEDIA_VARIANTS, Attachment, DispatchResult, OutboundMessageRequest
from .helpers import get_tenant_session, http_status_for

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/instances", tags=["Messages"])


def _result_or_error(result: DispatchResult) -> dict:
    if result.success or result.error is None:
        return result.to_api()
    status = http_status_for(result.error.code, result.error.details)
    raise HTTPException(status_code=status, detail=result.error.message)


@router.post("/{instance_name}/messages")
async def send_message(
    instance_name: str,
    data: SendMessagePayload,
    tenant_id: Optional[str] = None,
    payload: dict = Depends(verify_token),
):
    """Send a text, media, location, contact, buttons, list or poll message."""
    try:
        request = data.to_request()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    session = get_tenant_session(payload, tenant_id)
    result = await session.dispatcher.dispatch(instance_name, request)
    return _result_or_error(result)


@router.post("/{instance_name}/messages/media")
async def send_media_message(
    instance_name: str,
    file: UploadFile = File(...),
    phone: str = Form(...),
    media_type: str = Form(default="auto"),
    caption: str = Form(default=""),
    correlation_id: Optional[str] = Form(default=None),
    tenant_id: Optional[str] = None,
    payload: dict = Depends(verify_token),
):
    """Upload a file to storage and send it as image, video, audio or document."""
    content = await file.read()
    filename = file.filename or "file"

    kind = (media_type or "").strip().lower()
    if kind == "auto":
        kind = detect_media_kind(
            declared_mime_type=file.content_type,
            filename=filename,
            head_bytes=content[:96],
        ).kind
    variant = MEDIA_VARIANTS.get(kind)
    if variant is None:
        raise HTTPException(status_code=400, detail=f"Tipo de mídia inválido: {media_type}")

    message = variant(
        attachment=Attachment(content=content, filename=filename, content_type=file.content_type),
        caption=caption or None,
        filename=filename,
    )
    session = get_tenant_session(payload, tenant_id)
    result = await session.dispatcher.dispatch(
        instance_name,
        OutboundMessageRequest(phone=phone, message=message, correlation_id=correlation_id),
    )
    return _result_or_error(result)
