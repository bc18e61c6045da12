from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Optional, Sequence

from .client import EvolutionClient
from .config import SessionSettings
from .errors import ConfigError, DuplicateWebhookError, InstanceNotFoundError, WebhookNotFoundError, WhatsAppError
from .models import MessagingInstance, WebhookConfiguration, default_webhook_url, validate_webhook_events
from .observability import LogContext, Observability
from .registry import SessionRegistry


class WebhookService:
    """Keeps the provider's webhook for an instance in sync with the stored configuration."""

    def __init__(
        self,
        *,
        tenant_id: str,
        client_factory: Callable[[], EvolutionClient],
        registry: SessionRegistry,
        settings: SessionSettings,
        obs: Observability,
    ):
        self.tenant_id = tenant_id
        self._client_factory = client_factory
        self._registry = registry
        self._settings = settings
        self._obs = obs

    @property
    def _client(self) -> EvolutionClient:
        return self._client_factory()

    def get(self, instance_name: str) -> Optional[WebhookConfiguration]:
        inst = self._require(instance_name)
        return self._registry.get_webhook(inst.id or "")

    async def configure(
        self,
        instance_name: str,
        *,
        url: Optional[str] = None,
        events: Optional[Sequence[str]] = None,
        enabled: bool = True,
    ) -> WebhookConfiguration:
        inst = self._require(instance_name)
        if self._registry.get_webhook(inst.id or "") is not None:
            raise DuplicateWebhookError(instance_name)
        evs = validate_webhook_events(self._settings.default_webhook_events if events is None else events)
        hook_url = self._resolve_url(instance_name, url)

        await self._client.set_webhook(instance_name, hook_url, evs, enabled=enabled)
        cfg = self._registry.create_webhook(
            WebhookConfiguration(
                instance_id=inst.id or "",
                tenant_id=self.tenant_id,
                url=hook_url,
                events=evs,
                enabled=enabled,
            )
        )
        self._obs.info("whatsapp.webhook.configured", ctx=self._ctx(instance_name, "configure"), events=len(evs))
        return cfg

    async def update(
        self,
        instance_name: str,
        *,
        url: Optional[str] = None,
        events: Optional[Sequence[str]] = None,
        enabled: Optional[bool] = None,
    ) -> WebhookConfiguration:
        inst, current = self._require_webhook(instance_name)
        evs = validate_webhook_events(events) if events is not None else current.events
        hook_url = (url or "").strip() or current.url
        is_enabled = current.enabled if enabled is None else enabled

        await self._client.set_webhook(instance_name, hook_url, evs, enabled=is_enabled)
        cfg = self._registry.update_webhook(inst.id or "", url=hook_url, events=evs, enabled=is_enabled)
        self._obs.info("whatsapp.webhook.updated", ctx=self._ctx(instance_name, "update"), enabled=is_enabled)
        return cfg

    async def check(self, instance_name: str) -> WebhookConfiguration:
        """Compare the provider's webhook with the stored one and record the outcome."""
        inst, current = self._require_webhook(instance_name)
        ctx = self._ctx(instance_name, "check")
        try:
            remote = _unwrap_webhook(await self._client.find_webhook(instance_name))
        except WhatsAppError as e:
            self._obs.failure("whatsapp.webhook.check_failed", e, ctx=ctx)
            ok, detail = False, e.message
        else:
            remote_url = str(remote.get("url") or "").strip()
            remote_enabled = bool(remote.get("enabled"))
            if not remote_url:
                ok, detail = False, "Webhook não encontrado no provedor."
            elif remote_url != current.url:
                ok, detail = False, f"URL divergente no provedor: {remote_url}"
            elif not remote_enabled:
                ok, detail = False, "Webhook desativado no provedor."
            else:
                ok, detail = True, "Webhook ativo."

        return self._registry.update_webhook(
            inst.id or "",
            last_checked_at=datetime.now(timezone.utc).isoformat(),
            last_check_ok=ok,
            last_check_detail=detail,
        )

    async def remove(self, instance_name: str) -> bool:
        inst = self._require(instance_name)
        current = self._registry.get_webhook(inst.id or "")
        if current is None:
            return False
        try:
            await self._client.set_webhook(instance_name, current.url, current.events, enabled=False)
        except WhatsAppError as e:
            self._obs.failure("whatsapp.webhook.remote_disable_failed", e, ctx=self._ctx(instance_name, "remove"))
        return self._registry.delete_webhook(inst.id or "")

    def _resolve_url(self, instance_name: str, url: Optional[str]) -> str:
        hook_url = (url or "").strip() or default_webhook_url(self._settings.public_base_url, instance_name)
        if not hook_url:
            raise ConfigError("PUBLIC_BACKEND_URL não configurada; informe a URL do webhook.")
        return hook_url

    def _require(self, instance_name: str) -> MessagingInstance:
        inst = self._registry.get_instance(self.tenant_id, instance_name)
        if inst is None:
            raise InstanceNotFoundError(instance_name)
        return inst

    def _require_webhook(self, instance_name: str) -> tuple[MessagingInstance, WebhookConfiguration]:
        inst = self._require(instance_name)
        current = self._registry.get_webhook(inst.id or "")
        if current is None:
            raise WebhookNotFoundError(instance_name)
        return inst, current

    def _ctx(self, instance_name: str, operation: str) -> LogContext:
        return LogContext(tenant_id=self.tenant_id, instance_name=instance_name, operation=operation)


def _unwrap_webhook(body: Any) -> dict[str, Any]:
    if not isinstance(body, dict):
        return {}
    nested = body.get("webhook")
    if isinstance(nested, dict):
        return nested
    return body
