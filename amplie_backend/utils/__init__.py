"""
Utils package for the WhatsApp session backend.
"""

# Database helpers
from .db_helpers import (
    is_transient_db_error,
    is_unique_violation_error,
    is_supabase_not_configured_error,
    db_call_with_retry,
)

# Auth helpers
from .auth_helpers import (
    JWT_SECRET,
    create_token,
    verify_token,
    get_user_tenant_id,
    require_admin,
    security,
)

# Phone utilities
from .phone_utils import (
    normalize_phone_number,
    extract_phone_from_jid,
    phone_to_jid,
)

__all__ = [
    # DB helpers
    "is_transient_db_error",
    "is_unique_violation_error",
    "is_supabase_not_configured_error",
    "db_call_with_retry",
    # Auth helpers
    "JWT_SECRET",
    "create_token",
    "verify_token",
    "get_user_tenant_id",
    "require_admin",
    "security",
    # Phone utils
    "normalize_phone_number",
    "extract_phone_from_jid",
    "phone_to_jid",
]
