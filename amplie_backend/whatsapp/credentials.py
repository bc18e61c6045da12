from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Optional

from ..utils.db_helpers import db_call_with_retry, is_supabase_not_configured_error
from .errors import ConfigurationMissingError

logger = logging.getLogger(__name__)

GLOBAL_CONFIG_TABLE = "evolution_api_global_config"


@dataclass(frozen=True)
class ProviderCredentials:
    server_url: str
    api_key: str
    source: str = "database"


def _get_first_env(*names: str) -> Optional[str]:
    for name in names:
        value = (os.getenv(name) or "").strip()
        if value:
            return value
    return None


def _from_database(db: Any) -> Optional[ProviderCredentials]:
    try:
        result = db_call_with_retry(
            "whatsapp.credentials.load",
            lambda: db.table(GLOBAL_CONFIG_TABLE).select('*').eq('ativo', True).limit(1).execute(),
        )
    except Exception as e:
        if is_supabase_not_configured_error(e):
            return None
        raise
    rows = result.data or []
    if not rows:
        return None
    row = rows[0]
    server_url = str(row.get('server_url') or '').strip().rstrip('/')
    api_key = str(row.get('api_key') or '').strip()
    if not server_url or not api_key:
        return None
    return ProviderCredentials(server_url=server_url, api_key=api_key, source="database")


def load_provider_credentials(db: Any) -> ProviderCredentials:
    """Resolve the account-level Evolution API credentials.

    The active row of ``evolution_api_global_config`` wins; otherwise
    ``EVOLUTION_API_BASE_URL`` / ``EVOLUTION_API_KEY`` are used.
    """
    creds = _from_database(db)
    if creds:
        return creds

    base_url = _get_first_env("EVOLUTION_API_BASE_URL", "EVOLUTION_BASE_URL", "EVOLUTION_URL")
    api_key = _get_first_env("EVOLUTION_API_KEY", "EVOLUTION_KEY", "EVOLUTION_API_TOKEN")
    if base_url and api_key:
        return ProviderCredentials(server_url=base_url.rstrip('/'), api_key=api_key, source="env")

    logger.warning("Evolution API credentials not configured (table %s or EVOLUTION_API_* env)", GLOBAL_CONFIG_TABLE)
    raise ConfigurationMissingError()
