"""
Authentication helper utilities.

JWT bearer tokens are issued by the CRM backend; this service only
verifies them and reads the ``role`` / ``tenant_id`` claims.
"""

import os
import logging
from datetime import datetime, timezone
from typing import Optional

import jwt
from fastapi import HTTPException, Request, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

logger = logging.getLogger(__name__)

# ==================== CONFIGURATION ====================
JWT_SECRET = (
    os.getenv("JWT_SECRET")
    or os.getenv("APP_JWT_SECRET")
    or "whatsapp-crm-secret-key-2025"
).strip()

ADMIN_ROLES = {"admin", "superadmin"}

# Security bearer for FastAPI
security = HTTPBearer(auto_error=False)


# ==================== TOKEN FUNCTIONS ====================
def create_token(user_id: str, email: str, role: str, tenant_id: Optional[str] = None, *, ttl_s: int = 86400 * 7) -> str:
    """
    Create a JWT token for a user (used by the smoke tester and the test suite).

    Args:
        user_id: The user's ID
        email: The user's email
        role: The user's role
        tenant_id: Optional tenant ID
        ttl_s: Lifetime in seconds

    Returns:
        JWT token string
    """
    payload = {
        "user_id": user_id,
        "email": email,
        "role": role,
        "exp": datetime.now(timezone.utc).timestamp() + ttl_s,
    }
    if tenant_id:
        payload["tenant_id"] = tenant_id
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


def verify_token(http_request: Request, credentials: HTTPAuthorizationCredentials = Depends(security)) -> dict:
    """
    Verify a JWT token from the request.

    Raises:
        HTTPException: If token is missing, expired, or invalid
    """
    token = credentials.credentials if credentials else None
    if not token:
        token = http_request.cookies.get("access_token")
    if not token:
        raise HTTPException(status_code=401, detail="Token não fornecido")
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=["HS256"])
        return payload
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expirado")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Token inválido")


def get_user_tenant_id(payload: dict, requested_tenant_id: Optional[str] = None) -> str:
    """
    Resolve the tenant a request acts on.

    Regular users are bound to their ``tenant_id`` claim; a superadmin
    must name the tenant explicitly.
    """
    role = str(payload.get("role") or "").strip().lower()
    requested = (requested_tenant_id or "").strip()
    if role == "superadmin":
        tenant_id = requested or str(payload.get("tenant_id") or "").strip()
        if not tenant_id:
            raise HTTPException(status_code=400, detail="tenant_id é obrigatório para superadmin")
        return tenant_id

    token_tenant_id = str(payload.get("tenant_id") or "").strip()
    if not token_tenant_id:
        raise HTTPException(status_code=403, detail="Tenant não identificado")
    if requested and requested != token_tenant_id:
        raise HTTPException(status_code=403, detail="Acesso negado")
    return token_tenant_id


def require_admin(payload: dict) -> None:
    if str(payload.get("role") or "").strip().lower() not in ADMIN_ROLES:
        raise HTTPException(status_code=403, detail="Acesso negado")
