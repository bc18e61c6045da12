"""
Inbound provider webhook routes.

- POST /webhooks/evolution/{instance_name} - Evolution API callback (no auth)

Only connection events are handled here: CONNECTION_UPDATE and
QRCODE_UPDATED. Chat events are acknowledged and ignored.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Request

from ..whatsapp.client import extract_pairing_artifact
from ..whatsapp.container import get_whatsapp_container
from ..whatsapp.errors import WhatsAppError
from ..whatsapp.observability import LogContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])

HANDLED_EVENTS = {"CONNECTION_UPDATE", "QRCODE_UPDATED"}


def normalize_event_name(value: Any) -> str:
    """'connection.update' and 'CONNECTION_UPDATE' are the same event."""
    return str(value or "").strip().upper().replace(".", "_").replace("-", "_")


def _extract_phone(body: Dict[str, Any], data: Dict[str, Any]) -> Optional[str]:
    for value in (data.get("wuid"), data.get("ownerJid"), body.get("sender")):
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


@router.post("/evolution/{instance_name}")
async def evolution_webhook(instance_name: str, request: Request):
    """Receive connection events from the Evolution API."""
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Payload inválido")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Payload inválido")

    event = normalize_event_name(body.get("event"))
    if event not in HANDLED_EVENTS:
        return {"received": True, "handled": False, "event": event}

    container = get_whatsapp_container()
    inst = container.registry.find_instance(instance_name)
    if inst is None:
        logger.info(f"Webhook for unknown instance ignored: {instance_name} ({event})")
        return {"received": True, "handled": False, "reason": "instance_not_found"}

    data = body.get("data") if isinstance(body.get("data"), dict) else {}
    ctx = LogContext(tenant_id=inst.tenant_id, instance_name=instance_name, operation="webhook_ingest")
    orchestrator = container.session_for(inst.tenant_id).orchestrator
    try:
        if event == "CONNECTION_UPDATE":
            state = str(data.get("state") or data.get("status") or "").strip().lower()
            updated = await orchestrator.apply_connection_update(
                instance_name,
                state,
                phone=_extract_phone(body, data) if state == "open" else None,
            )
        else:
            updated = await orchestrator.apply_pairing_artifact(instance_name, extract_pairing_artifact(data))
    except WhatsAppError as e:
        container.obs.failure("whatsapp.webhook.ingest_failed", e, ctx=ctx, event_name=event)
        return {"received": True, "handled": False, "reason": e.code}

    container.obs.info(
        "whatsapp.webhook.ingested",
        ctx=ctx,
        event_name=event,
        status=updated.status.value if updated else None,
    )
    return {"received": True, "handled": True, "status": updated.status.value if updated else None}
