"""
Instance routes.

WhatsApp instance lifecycle and per-instance webhook configuration:
- GET /instances - List instances
- POST /instances - Create instance (returns the first pairing artifact)
- GET /instances/{name} - Get instance (clients poll this while pairing)
- POST /instances/{name}/wait - Block until the running pairing poll finishes
- POST /instances/{name}/connect - Request a new QR code / pairing code
- POST /instances/{name}/status - Query the provider connection state
- POST /instances/{name}/disconnect - Logout
- POST /instances/{name}/restart - Restart
- DELETE /instances/{name} - Delete instance
- GET|POST|PUT|DELETE /instances/{name}/webhook - Webhook configuration
- POST /instances/{name}/webhook/check - Verify webhook on the provider
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from ..models import InstanceCreate, PairingRequest, WebhookCreate, WebhookUpdate
from ..utils.auth_helpers import require_admin, verify_token
from ..whatsapp.errors import WhatsAppError
from ..whatsapp.models import WebhookRequest
from .helpers import get_tenant_session, resolve_webhook_url, whatsapp_http_error

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix="/instances", tags=["Instances"])


# ==================== INSTANCES ====================


@router.get("")
async def list_instances(tenant_id: Optional[str] = None, payload: dict = Depends(verify_token)):
    """List instances for the caller's tenant."""
    session = get_tenant_session(payload, tenant_id)
    try:
        instances = session.orchestrator.list_instances()
    except WhatsAppError as e:
        raise whatsapp_http_error(e)
    return [i.to_api() for i in instances]


@router.post("", status_code=201)
async def create_instance(
    data: InstanceCreate,
    request: Request,
    tenant_id: Optional[str] = None,
    payload: dict = Depends(verify_token),
):
    """Create an instance on the provider and return its first pairing artifact."""
    require_admin(payload)
    session = get_tenant_session(payload, tenant_id)

    webhook: Optional[WebhookRequest] = None
    if data.webhook is not None:
        webhook = data.webhook.to_request()
        if not webhook.url:
            url = resolve_webhook_url(request, data.instance_name.strip())
            webhook = WebhookRequest(url=url or None, events=webhook.events, enabled=webhook.enabled)

    try:
        inst = await session.orchestrator.create_instance(
            data.instance_name,
            description=data.description,
            webhook=webhook,
            number=data.number,
            start_polling=data.start_polling,
        )
    except WhatsAppError as e:
        raise whatsapp_http_error(e)
    return inst.to_api()


@router.get("/{instance_name}")
async def get_instance(instance_name: str, tenant_id: Optional[str] = None, payload: dict = Depends(verify_token)):
    session = get_tenant_session(payload, tenant_id)
    try:
        orchestrator = session.orchestrator
        inst = orchestrator.get_instance(instance_name)
    except WhatsAppError as e:
        raise whatsapp_http_error(e)
    out = inst.to_api()
    out["polling"] = orchestrator.is_polling(instance_name)
    out["pairingError"] = orchestrator.pairing_error(instance_name)
    return out


@router.post("/{instance_name}/wait")
async def wait_for_pairing(instance_name: str, tenant_id: Optional[str] = None, payload: dict = Depends(verify_token)):
    """Wait for the pairing poll; 504 when it gives up."""
    session = get_tenant_session(payload, tenant_id)
    try:
        inst = await session.orchestrator.wait_for_pairing(instance_name)
    except WhatsAppError as e:
        raise whatsapp_http_error(e)
    if inst is None:
        raise HTTPException(status_code=404, detail="Instância não encontrada")
    return inst.to_api()


@router.post("/{instance_name}/connect")
async def connect_instance(
    instance_name: str,
    data: Optional[PairingRequest] = None,
    tenant_id: Optional[str] = None,
    payload: dict = Depends(verify_token),
):
    """Request a new pairing artifact; replaces the stored one."""
    require_admin(payload)
    session = get_tenant_session(payload, tenant_id)
    try:
        inst = await session.orchestrator.request_pairing(instance_name, number=data.number if data else None)
    except WhatsAppError as e:
        raise whatsapp_http_error(e)
    return inst.to_api()


@router.post("/{instance_name}/status")
async def check_status(instance_name: str, tenant_id: Optional[str] = None, payload: dict = Depends(verify_token)):
    session = get_tenant_session(payload, tenant_id)
    try:
        inst = await session.orchestrator.check_status(instance_name)
    except WhatsAppError as e:
        raise whatsapp_http_error(e)
    return inst.to_api()


@router.post("/{instance_name}/disconnect")
async def disconnect_instance(instance_name: str, tenant_id: Optional[str] = None, payload: dict = Depends(verify_token)):
    require_admin(payload)
    session = get_tenant_session(payload, tenant_id)
    try:
        inst = await session.orchestrator.disconnect(instance_name)
    except WhatsAppError as e:
        raise whatsapp_http_error(e)
    return inst.to_api()


@router.post("/{instance_name}/restart")
async def restart_instance(instance_name: str, tenant_id: Optional[str] = None, payload: dict = Depends(verify_token)):
    require_admin(payload)
    session = get_tenant_session(payload, tenant_id)
    try:
        inst = await session.orchestrator.restart(instance_name)
    except WhatsAppError as e:
        raise whatsapp_http_error(e)
    return inst.to_api()


@router.delete("/{instance_name}")
async def delete_instance(instance_name: str, tenant_id: Optional[str] = None, payload: dict = Depends(verify_token)):
    """Delete an instance. Deleting an unknown instance is not an error."""
    require_admin(payload)
    session = get_tenant_session(payload, tenant_id)
    try:
        deleted = await session.orchestrator.delete_instance(instance_name)
    except WhatsAppError as e:
        raise whatsapp_http_error(e)
    logger.info(f"Instance delete requested: {instance_name} (deleted={deleted})")
    return {"success": True, "deleted": deleted}


# ==================== WEBHOOK CONFIGURATION ====================


@router.get("/{instance_name}/webhook")
async def get_webhook(instance_name: str, tenant_id: Optional[str] = None, payload: dict = Depends(verify_token)):
    session = get_tenant_session(payload, tenant_id)
    try:
        cfg = session.webhooks.get(instance_name)
    except WhatsAppError as e:
        raise whatsapp_http_error(e)
    if cfg is None:
        raise HTTPException(status_code=404, detail="Nenhum webhook configurado para a instância")
    return cfg.to_api()


@router.post("/{instance_name}/webhook", status_code=201)
async def configure_webhook(
    instance_name: str,
    data: WebhookCreate,
    request: Request,
    tenant_id: Optional[str] = None,
    payload: dict = Depends(verify_token),
):
    require_admin(payload)
    session = get_tenant_session(payload, tenant_id)
    url = (data.url or "").strip() or resolve_webhook_url(request, instance_name) or None
    try:
        cfg = await session.webhooks.configure(instance_name, url=url, events=data.events, enabled=data.enabled)
    except WhatsAppError as e:
        raise whatsapp_http_error(e)
    return cfg.to_api()


@router.put("/{instance_name}/webhook")
async def update_webhook(
    instance_name: str,
    data: WebhookUpdate,
    tenant_id: Optional[str] = None,
    payload: dict = Depends(verify_token),
):
    require_admin(payload)
    session = get_tenant_session(payload, tenant_id)
    try:
        cfg = await session.webhooks.update(instance_name, url=data.url, events=data.events, enabled=data.enabled)
    except WhatsAppError as e:
        raise whatsapp_http_error(e)
    return cfg.to_api()


@router.delete("/{instance_name}/webhook")
async def delete_webhook(instance_name: str, tenant_id: Optional[str] = None, payload: dict = Depends(verify_token)):
    require_admin(payload)
    session = get_tenant_session(payload, tenant_id)
    try:
        removed = await session.webhooks.remove(instance_name)
    except WhatsAppError as e:
        raise whatsapp_http_error(e)
    return {"success": True, "deleted": removed}


@router.post("/{instance_name}/webhook/check")
async def check_webhook(instance_name: str, tenant_id: Optional[str] = None, payload: dict = Depends(verify_token)):
    session = get_tenant_session(payload, tenant_id)
    try:
        cfg = await session.webhooks.check(instance_name)
    except WhatsAppError as e:
        raise whatsapp_http_error(e)
    return cfg.to_api()
