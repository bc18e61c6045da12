"""
Shared helpers for the WhatsApp session routes.
"""

import logging
import os
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request

from ..utils.auth_helpers import get_user_tenant_id
from ..whatsapp.container import TenantSession, get_whatsapp_container
from ..whatsapp.errors import ProviderRejectedError, WhatsAppError

logger = logging.getLogger(__name__)

_STATUS_BY_CODE: Dict[str, int] = {
    "configuration_missing": 412,
    "config_error": 412,
    "auth_error": 412,
    "instance_not_found": 404,
    "webhook_not_found": 404,
    "duplicate_instance": 409,
    "duplicate_webhook": 409,
    "invalid_instance_name": 400,
    "invalid_webhook_events": 400,
    "invalid_phone": 400,
    "pairing_timed_out": 504,
    "transport_failure": 502,
    "provider_rejected": 502,
    "attachment_upload_failed": 502,
    "persistence_failure": 503,
}


def http_status_for(code: str, details: Optional[Dict[str, Any]] = None) -> int:
    """HTTP status for a domain error code; provider 4xx answers surface as 422."""
    if code == "provider_rejected":
        provider_status = (details or {}).get("status_code")
        if isinstance(provider_status, int) and 400 <= provider_status < 500:
            return 422
    return _STATUS_BY_CODE.get(code, 500)


def whatsapp_http_error(e: WhatsAppError) -> HTTPException:
    """Convert a session-layer exception to an HTTP exception."""
    details = dict(e.details or {})
    if isinstance(e, ProviderRejectedError) and e.status_code is not None:
        details.setdefault("status_code", e.status_code)
    status = http_status_for(e.code, details)
    if status >= 500:
        logger.warning(f"WhatsApp session error ({e.code}): {e.message}")
    return HTTPException(status_code=status, detail=e.message)


def get_tenant_session(payload: dict, tenant_id: Optional[str] = None) -> TenantSession:
    resolved = get_user_tenant_id(payload, tenant_id)
    return get_whatsapp_container().session_for(resolved)


def resolve_public_base_url(request: Optional[Request] = None) -> str:
    """Resolve the public base URL for provider callbacks."""
    public_url = get_whatsapp_container().settings.public_base_url or os.getenv("PUBLIC_BACKEND_URL", "").strip()
    if public_url:
        return public_url.rstrip("/")
    if request:
        proto = (request.headers.get("x-forwarded-proto") or request.url.scheme or "http").strip().lower()
        host = request.headers.get("x-forwarded-host") or request.url.netloc
        return f"{proto}://{host}"
    return ""


def resolve_webhook_url(request: Request, instance_name: str) -> str:
    base = resolve_public_base_url(request)
    if not base:
        return ""
    return f"{base}/api/webhooks/evolution/{instance_name}"
