from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from .auth import AuthStrategy, StaticHeadersAuth
from .errors import ProviderRejectedError, TransportError


@dataclass(frozen=True)
class HttpClientConfig:
    base_url: str
    timeout_s: float = 30.0
    headers: Optional[dict[str, str]] = None


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_delay_s: float = 0.5
    max_delay_s: float = 4.0
    jitter_s: float = 0.2


class HttpClient:
    """JSON-over-HTTPS transport for the messaging provider.

    Only requests flagged ``idempotent`` are retried, and only on transport
    failures or 5xx answers. Sends and creates go out exactly once.
    """

    def __init__(
        self,
        *,
        config: HttpClientConfig,
        auth: Optional[AuthStrategy] = None,
        retry: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._config = config
        self._auth = auth or StaticHeadersAuth(headers={})
        self._retry = retry or RetryPolicy()
        self._transport = transport

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Any] = None,
        idempotent: bool = False,
    ) -> Any:
        attempts = self._retry.max_attempts if idempotent else 1
        delay = self._retry.initial_delay_s
        for attempt in range(1, max(1, attempts) + 1):
            try:
                return await self._send(method, path, json=json)
            except (TransportError, ProviderRejectedError) as e:
                if not e.transient or attempt >= attempts:
                    raise
            await asyncio.sleep(_with_jitter(delay, self._retry.jitter_s))
            delay = min(delay * 2, self._retry.max_delay_s)
        raise TransportError("Falha de comunicação com provedor.", details={"path": path})

    async def _send(self, method: str, path: str, *, json: Optional[Any] = None) -> Any:
        base = (self._config.base_url or "").rstrip("/")
        if not base:
            raise TransportError("Base URL não configurada.", transient=False)
        url = f"{base}{path}"
        method = str(method or "").upper()
        base_headers = {"Content-Type": "application/json", **(self._config.headers or {})}
        auth_headers = await self._auth.get_headers()
        headers = {**base_headers, **auth_headers}

        try:
            async with httpx.AsyncClient(timeout=self._config.timeout_s, transport=self._transport) as client:
                resp = await client.request(method, url, headers=headers, json=json)
        except httpx.HTTPError as e:
            raise TransportError(
                "Falha de comunicação com provedor.",
                transient=True,
                details={"error": str(e), "method": method, "path": path},
            )

        if resp.status_code >= 400:
            body = _safe_json(resp)
            raise ProviderRejectedError(
                extract_provider_message(body) or "Erro retornado pelo provedor.",
                status_code=resp.status_code,
                transient=resp.status_code >= 500,
                details={
                    "body": body if body is not None else _safe_text(resp),
                    "method": method,
                    "path": path,
                },
            )

        body = _safe_json(resp)
        if body is None:
            raise TransportError(
                "Resposta inválida do provedor (JSON esperado).",
                transient=False,
                details={"status_code": resp.status_code, "body": _safe_text(resp), "method": method, "path": path},
            )
        return body


def extract_provider_message(body: Any) -> str:
    """Best-effort human message out of an Evolution error body."""
    if isinstance(body, str):
        return body[:500]
    if not isinstance(body, dict):
        return ""
    response = body.get("response")
    if isinstance(response, dict):
        msg = response.get("message")
        if isinstance(msg, list):
            flat = [str(m) for m in msg if m]
            if flat:
                return "; ".join(flat)[:500]
        if isinstance(msg, str) and msg.strip():
            return msg.strip()[:500]
    for key in ("message", "error"):
        value = body.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()[:500]
    return ""


def _with_jitter(delay_s: float, jitter_s: float) -> float:
    if jitter_s <= 0:
        return delay_s
    return max(0.0, delay_s + (jitter_s * 0.5))


def _safe_json(resp: httpx.Response) -> Any:
    if not resp.content:
        return None
    try:
        return resp.json()
    except ValueError:
        return None


def _safe_text(resp: httpx.Response, limit: int = 4000) -> str:
    try:
        return (resp.text or "")[:limit]
    except Exception:
        return ""
