"""
Database helper utilities.

Supabase calls are synchronous; these helpers add retry logic and
error classification around them.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


# ==================== ERROR DETECTION ====================
def is_transient_db_error(exc: Exception) -> bool:
    """Check if an exception is a transient database error that may be retried."""
    s = str(exc or "").lower()
    transient_markers = [
        "timeout",
        "timed out",
        "temporarily unavailable",
        "connection refused",
        "connection reset",
        "connection error",
        "network",
        "dns",
        "name or service not known",
        "failed to establish a new connection",
        "server disconnected",
        "502",
        "503",
        "504",
        "bad gateway",
        "gateway timeout",
        "service unavailable",
    ]
    return any(m in s for m in transient_markers)


def is_unique_violation_error(exc: Exception) -> bool:
    """Check if an exception is a Postgres unique constraint violation (23505)."""
    s = str(exc or "").lower()
    return "23505" in s or "duplicate key" in s or "unique constraint" in s


def is_supabase_not_configured_error(exc: Exception) -> bool:
    """Check if an exception indicates Supabase is not configured."""
    s = str(exc or "").lower()
    return "supabase não configurado" in s or "supabase nao configurado" in s


# ==================== RETRY LOGIC ====================
def db_call_with_retry(op_name: str, fn: Callable[[], Any], max_attempts: int = 4) -> Any:
    """
    Execute a database call with retry logic for transient errors.

    Inside a running event loop only one attempt is made, so the loop is
    never blocked by the backoff sleep.

    Args:
        op_name: Name of the operation (for logging)
        fn: Function to execute
        max_attempts: Maximum number of retry attempts

    Returns:
        Result of the function call
    """
    try:
        asyncio.get_running_loop()
        in_event_loop = True
    except RuntimeError:
        in_event_loop = False

    if in_event_loop:
        max_attempts = 1

    last_exc: Optional[Exception] = None
    for attempt in range(1, max_attempts + 1):
        try:
            return fn()
        except Exception as e:
            last_exc = e
            if attempt >= max_attempts or not is_transient_db_error(e):
                raise
            sleep_s = min(2.0, 0.15 * (2 ** (attempt - 1)))
            logger.warning(f"{op_name} falhou (tentativa {attempt}/{max_attempts}): {e}")
            time.sleep(sleep_s)
    raise last_exc or Exception(f"{op_name} falhou")
