from supabase import create_client, Client
import os
import logging
from functools import lru_cache
from typing import Optional, cast, Any, Dict
import base64
import json

logger = logging.getLogger(__name__)

_SUPABASE_NOT_CONFIGURED_ERROR = (
    "Supabase não configurado (SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY)."
)
_SUPABASE_NOT_CONFIGURED_WARNING = (
    "Supabase não configurado: defina SUPABASE_URL e "
    "SUPABASE_SERVICE_ROLE_KEY."
)


def _get_first_env(*names: str) -> Optional[str]:
    for name in names:
        value = (os.getenv(name) or "").strip()
        if value:
            return value
    return None


def _decode_jwt_payload_unverified(token: str) -> Dict[str, Any]:
    parts = (token or "").split(".")
    if len(parts) < 2:
        return {}
    payload_b64 = parts[1]
    padding = "=" * (-len(payload_b64) % 4)
    try:
        raw = base64.urlsafe_b64decode(payload_b64 + padding)
        obj = json.loads(raw.decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return {}
    return obj if isinstance(obj, dict) else {}


def is_service_role_key(key: Optional[str]) -> bool:
    if not key:
        return False
    payload = _decode_jwt_payload_unverified(key)
    role = str(payload.get("role") or "").strip().lower()
    return role == "service_role"


class SupabaseNotConfigured:
    def table(self, *_args, **_kwargs):
        raise RuntimeError(_SUPABASE_NOT_CONFIGURED_ERROR)

    def rpc(self, *_args, **_kwargs):
        raise RuntimeError(_SUPABASE_NOT_CONFIGURED_ERROR)

    @property
    def storage(self):
        raise RuntimeError(_SUPABASE_NOT_CONFIGURED_ERROR)


@lru_cache(maxsize=1)
def get_supabase_client() -> Client:
    """Service-role client for the backend; a stub that fails on use when unset."""
    url = _get_first_env("SUPABASE_URL", "REACT_APP_SUPABASE_URL") or ""
    candidate = _get_first_env("SUPABASE_SERVICE_ROLE_KEY", "SUPABASE_SERVICE_KEY", "SUPABASE_KEY")
    key = candidate if is_service_role_key(candidate) else None

    if url and key:
        return create_client(url, key)
    logger.warning(_SUPABASE_NOT_CONFIGURED_WARNING)
    return cast(Client, SupabaseNotConfigured())
