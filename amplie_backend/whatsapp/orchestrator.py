from __future__ import annotations

import asyncio
import time
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, NoReturn, Optional

from ..utils.phone_utils import extract_phone_from_jid
from .client import EvolutionClient, extract_connection_state, extract_pairing_artifact
from .config import SessionSettings
from .errors import (
    ConfigError,
    DuplicateInstanceError,
    InstanceNotFoundError,
    PairingTimedOutError,
    ProviderRejectedError,
    WhatsAppError,
)
from .models import (
    InstanceStatus,
    MessagingInstance,
    PairingArtifact,
    WebhookConfiguration,
    WebhookRequest,
    default_webhook_url,
    validate_instance_name,
    validate_webhook_events,
)
from .observability import LogContext, Observability
from .polling import KeyedLock, PairingPollers
from .registry import SessionRegistry

Listener = Callable[[MessagingInstance], None]

_PROVIDER_OPEN = "open"
_PROVIDER_CLOSE = "close"


class ConnectionOrchestrator:
    """Drives one tenant's instances through the pairing lifecycle.

    absent -> creating -> awaiting_pairing -> paired -> disconnected, and
    deleted from any of them. Mutations for the same instance are serialized
    by ``locks``; ``pollers`` holds at most one pairing poll per instance.
    """

    def __init__(
        self,
        *,
        tenant_id: str,
        client_factory: Callable[[], EvolutionClient],
        registry: SessionRegistry,
        settings: SessionSettings,
        obs: Observability,
        locks: KeyedLock,
        pollers: PairingPollers,
        listener: Optional[Listener] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.tenant_id = tenant_id
        self._client_factory = client_factory
        self._registry = registry
        self._settings = settings
        self._obs = obs
        self._locks = locks
        self._pollers = pollers
        self._listener = listener
        self._sleep = sleep
        self._clock = clock

    @property
    def _client(self) -> EvolutionClient:
        return self._client_factory()

    # ==================== QUERIES ====================

    def list_instances(self) -> list[MessagingInstance]:
        return self._registry.list_instances(self.tenant_id)

    def get_instance(self, instance_name: str) -> MessagingInstance:
        return self._require(instance_name)

    def is_polling(self, instance_name: str) -> bool:
        return self._pollers.is_running(self._key(instance_name))

    def pairing_error(self, instance_name: str) -> Optional[str]:
        """Error code of the last pairing poll, if it gave up."""
        task = self._pollers.get(self._key(instance_name))
        if task is None or not task.done() or task.cancelled():
            return None
        err = task.exception()
        return err.code if isinstance(err, WhatsAppError) else None

    # ==================== LIFECYCLE ====================

    async def create_instance(
        self,
        instance_name: str,
        *,
        description: Optional[str] = None,
        webhook: Optional[WebhookRequest] = None,
        number: Optional[str] = None,
        start_polling: bool = True,
    ) -> MessagingInstance:
        name = validate_instance_name(instance_name)
        ctx = self._ctx(name, "create_instance")

        hook_url = ""
        hook_events: tuple[str, ...] = ()
        if webhook is not None:
            hook_events = validate_webhook_events(
                self._settings.default_webhook_events if webhook.events is None else webhook.events
            )
            hook_url = (webhook.url or "").strip() or default_webhook_url(self._settings.public_base_url, name)
            if not hook_url:
                raise ConfigError("PUBLIC_BACKEND_URL não configurada; informe a URL do webhook.")

        async with self._locks.hold(self._key(name)):
            if self._registry.get_instance(self.tenant_id, name) is not None:
                raise DuplicateInstanceError(name)

            inst = self._registry.create_instance(
                MessagingInstance(
                    tenant_id=self.tenant_id,
                    instance_name=name,
                    status=InstanceStatus.CREATING,
                    description=description,
                )
            )
            self._notify(inst)
            self._obs.info("whatsapp.instance.creating", ctx=ctx, webhook=bool(hook_url))

            try:
                body = await self._client.create_instance(
                    name,
                    webhook_url=hook_url or None,
                    events=hook_events,
                    number=number,
                )
            except WhatsAppError as e:
                self._obs.failure("whatsapp.instance.create_failed", e, ctx=ctx)
                self._registry.delete_instance(self.tenant_id, name)
                raise

            if hook_url and inst.id:
                self._registry.create_webhook(
                    WebhookConfiguration(
                        instance_id=inst.id,
                        tenant_id=self.tenant_id,
                        url=hook_url,
                        events=hook_events,
                        enabled=webhook.enabled if webhook is not None else True,
                    )
                )

            artifact = extract_pairing_artifact(body)
            if not artifact:
                try:
                    artifact = await self._fetch_artifact(name, number=number) or PairingArtifact()
                except WhatsAppError as e:
                    self._obs.failure("whatsapp.pairing.artifact_failed", e, ctx=ctx)
                    artifact = PairingArtifact()
            if not artifact:
                raise ProviderRejectedError(
                    "A Evolution API não retornou QR Code para a instância.",
                    details={"instance": name},
                )

            inst = self._store_artifact(name, artifact)
            if start_polling:
                self._start_poll(name)
            return inst

    async def request_pairing(self, instance_name: str, *, number: Optional[str] = None) -> MessagingInstance:
        """Fetch a fresh pairing artifact, replacing the stored one, and restart the poll."""
        name = validate_instance_name(instance_name)
        ctx = self._ctx(name, "request_pairing")
        async with self._locks.hold(self._key(name)):
            inst = self._require(name)
            if inst.status == InstanceStatus.PAIRED:
                return inst
            self._pollers.cancel(self._key(name))

            artifact = await self._fetch_artifact(name, number=number)
            if artifact is None:
                # o provedor respondeu "open": já está pareado
                return await self._mark_paired(name)
            if not artifact:
                raise ProviderRejectedError(
                    "A Evolution API não retornou QR Code para a instância.",
                    details={"instance": name},
                )
            inst = self._store_artifact(name, artifact)
            self._obs.info("whatsapp.pairing.requested", ctx=ctx, has_pairing_code=bool(artifact.pairing_code))
            self._start_poll(name)
            return inst

    async def check_status(self, instance_name: str) -> MessagingInstance:
        name = validate_instance_name(instance_name)
        async with self._locks.hold(self._key(name)):
            inst = self._require(name)
            state = extract_connection_state(await self._client.get_connection_state(name))
            self._obs.debug("whatsapp.instance.state", ctx=self._ctx(name, "check_status"), state=state)
            return await self._apply_state(inst, state)

    async def wait_for_pairing(self, instance_name: str) -> Optional[MessagingInstance]:
        """Await the running poll. Raises PairingTimedOutError when it gives up."""
        name = validate_instance_name(instance_name)
        key = self._key(name)
        task = self._pollers.get(key)
        if task is None:
            inst = self._require(name)
            if inst.status != InstanceStatus.AWAITING_PAIRING:
                return inst
            task = self._start_poll(name)
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                return self._registry.get_instance(self.tenant_id, name)
            raise

    async def disconnect(self, instance_name: str) -> MessagingInstance:
        name = validate_instance_name(instance_name)
        ctx = self._ctx(name, "disconnect")
        async with self._locks.hold(self._key(name)):
            self._require(name)
            self._pollers.cancel(self._key(name))
            try:
                await self._client.logout_instance(name)
            except ProviderRejectedError as e:
                # 400/404: a sessão já estava encerrada no provedor
                if e.status_code not in (400, 404):
                    raise
                self._obs.failure("whatsapp.instance.logout_ignored", e, ctx=ctx)
            inst = self._update(
                name,
                status=InstanceStatus.DISCONNECTED,
                pairing_code=None,
                pairing_code_expires_at=None,
            )
            self._obs.info("whatsapp.instance.disconnected", ctx=ctx)
            return inst

    async def restart(self, instance_name: str) -> MessagingInstance:
        name = validate_instance_name(instance_name)
        ctx = self._ctx(name, "restart")
        async with self._locks.hold(self._key(name)):
            inst = self._require(name)
            await self._client.restart_instance(name)
            self._obs.info("whatsapp.instance.restarted", ctx=ctx)
            try:
                state = extract_connection_state(await self._client.get_connection_state(name))
            except WhatsAppError as e:
                self._obs.failure("whatsapp.instance.state_failed", e, ctx=ctx)
                return inst
            return await self._apply_state(inst, state)

    async def delete_instance(self, instance_name: str) -> bool:
        """Remove the instance locally and (best effort) on the provider.

        Returns False when there was nothing to delete.
        """
        name = validate_instance_name(instance_name)
        key = self._key(name)
        ctx = self._ctx(name, "delete_instance")
        self._pollers.cancel(key)
        async with self._locks.hold(key):
            inst = self._registry.get_instance(self.tenant_id, name)
            if inst is None:
                return False
            self._pollers.cancel(key)

            if inst.status == InstanceStatus.PAIRED:
                try:
                    await self._client.logout_instance(name)
                except WhatsAppError as e:
                    self._obs.failure("whatsapp.instance.remote_logout_failed", e, ctx=ctx)
            try:
                await self._client.delete_instance(name)
            except WhatsAppError as e:
                self._obs.failure("whatsapp.instance.remote_delete_failed", e, ctx=ctx)

            self._registry.delete_instance(self.tenant_id, name)
            self._notify(replace(inst, status=InstanceStatus.DELETED, pairing_code=None))
            self._obs.info("whatsapp.instance.deleted", ctx=ctx)
        return True

    # ==================== PROVIDER EVENTS ====================

    async def apply_connection_update(
        self,
        instance_name: str,
        state: str,
        *,
        phone: Optional[str] = None,
    ) -> Optional[MessagingInstance]:
        """Apply a CONNECTION_UPDATE pushed by the provider. Unknown instances are ignored."""
        name = validate_instance_name(instance_name)
        async with self._locks.hold(self._key(name)):
            inst = self._registry.get_instance(self.tenant_id, name)
            if inst is None:
                return None
            return await self._apply_state(inst, str(state or "").strip().lower(), phone=phone)

    async def apply_pairing_artifact(self, instance_name: str, artifact: PairingArtifact) -> Optional[MessagingInstance]:
        """Apply a QRCODE_UPDATED pushed by the provider."""
        name = validate_instance_name(instance_name)
        if not artifact:
            return None
        async with self._locks.hold(self._key(name)):
            inst = self._registry.get_instance(self.tenant_id, name)
            if inst is None or inst.status not in (InstanceStatus.CREATING, InstanceStatus.AWAITING_PAIRING):
                return inst
            return self._store_artifact(name, artifact)

    # ==================== PAIRING POLL ====================

    def _start_poll(self, name: str) -> asyncio.Task:
        return self._pollers.start(self._key(name), lambda: self._poll_until_paired(name))

    async def _poll_until_paired(self, name: str) -> Optional[MessagingInstance]:
        """Poll the provider until the instance pairs or the budget runs out.

        The budget is ``pairing_timeout_s`` when set, else
        ``poll_interval_s * max_poll_attempts``. Each provider call is bounded
        so the poll never overruns the budget by more than one interval.
        """
        ctx = self._ctx(name, "pairing_poll")
        interval = self._settings.poll_interval_s
        max_attempts = self._settings.max_poll_attempts
        budget = self._settings.pairing_timeout_s
        if budget is None:
            budget = interval * max_attempts
        started = self._clock()
        attempts = 0

        while True:
            await self._sleep(max(0.0, min(interval, budget - (self._clock() - started))))

            current = self._registry.get_instance(self.tenant_id, name)
            if current is None or current.status not in (InstanceStatus.CREATING, InstanceStatus.AWAITING_PAIRING):
                return current

            remaining = budget + interval - (self._clock() - started)
            if remaining <= 0:
                await self._give_up(name, ctx, attempts, self._clock() - started)
            attempts += 1

            try:
                body = await asyncio.wait_for(self._client.get_connection_state(name), timeout=min(interval, remaining))
                state = extract_connection_state(body)
            except WhatsAppError as e:
                self._obs.failure("whatsapp.pairing.poll_error", e, ctx=ctx, attempt=attempts)
                state = ""
            except asyncio.TimeoutError:
                self._obs.warning("whatsapp.pairing.poll_slow", ctx=ctx, attempt=attempts, bound_s=round(min(interval, remaining), 2))
                state = ""

            if state == _PROVIDER_OPEN:
                async with self._locks.hold(self._key(name)):
                    inst = await self._mark_paired(name)
                self._obs.info("whatsapp.pairing.paired", ctx=ctx, attempts=attempts)
                return inst

            if state == _PROVIDER_CLOSE:
                remaining = budget + interval - (self._clock() - started)
                try:
                    await asyncio.wait_for(self._refresh_artifact_locked(name), timeout=max(0.0, min(interval, remaining)))
                except WhatsAppError as e:
                    self._obs.failure("whatsapp.pairing.refresh_failed", e, ctx=ctx, attempt=attempts)
                except asyncio.TimeoutError:
                    self._obs.warning("whatsapp.pairing.refresh_slow", ctx=ctx, attempt=attempts)

            elapsed = self._clock() - started
            if attempts >= max_attempts or elapsed >= budget:
                await self._give_up(name, ctx, attempts, elapsed)

    async def _give_up(self, name: str, ctx: LogContext, attempts: int, elapsed: float) -> NoReturn:
        async with self._locks.hold(self._key(name)):
            current = self._registry.get_instance(self.tenant_id, name)
            if current is not None and current.status == InstanceStatus.AWAITING_PAIRING:
                self._update(
                    name,
                    status=InstanceStatus.DISCONNECTED,
                    pairing_code=None,
                    pairing_code_expires_at=None,
                )
        self._obs.warning("whatsapp.pairing.timed_out", ctx=ctx, attempts=attempts, elapsed_s=round(elapsed, 2))
        raise PairingTimedOutError(name, attempts=attempts, elapsed_s=elapsed)

    async def _refresh_artifact_locked(self, name: str) -> None:
        async with self._locks.hold(self._key(name)):
            await self._refresh_artifact(name)

    async def _refresh_artifact(self, name: str) -> None:
        """Caller holds the instance lock."""
        current = self._registry.get_instance(self.tenant_id, name)
        if current is None or current.status != InstanceStatus.AWAITING_PAIRING:
            return
        artifact = await self._fetch_artifact(name)
        if artifact:
            self._store_artifact(name, artifact)

    # ==================== INTERNALS ====================

    async def _fetch_artifact(self, name: str, *, number: Optional[str] = None) -> Optional[PairingArtifact]:
        """None means the provider reports the session as already open."""
        body = await self._client.connect_instance(name, number=number)
        artifact = extract_pairing_artifact(body)
        if not artifact and extract_connection_state(body) == _PROVIDER_OPEN:
            return None
        return artifact

    def _store_artifact(self, name: str, artifact: PairingArtifact) -> MessagingInstance:
        return self._update(
            name,
            status=InstanceStatus.AWAITING_PAIRING,
            pairing_code=artifact.value,
            pairing_code_expires_at=self._artifact_expiry(),
        )

    async def _mark_paired(self, name: str) -> MessagingInstance:
        phone = await self._lookup_phone(name)
        return self._update(
            name,
            status=InstanceStatus.PAIRED,
            pairing_code=None,
            pairing_code_expires_at=None,
            **({"phone_number": phone} if phone else {}),
        )

    async def _apply_state(self, inst: MessagingInstance, state: str, *, phone: Optional[str] = None) -> MessagingInstance:
        name = inst.instance_name
        if state == _PROVIDER_OPEN and inst.status != InstanceStatus.PAIRED:
            self._pollers.cancel(self._key(name))
            if phone:
                return self._update(
                    name,
                    status=InstanceStatus.PAIRED,
                    pairing_code=None,
                    pairing_code_expires_at=None,
                    phone_number=extract_phone_from_jid(phone) or phone,
                )
            return await self._mark_paired(name)
        if state == _PROVIDER_CLOSE and inst.status == InstanceStatus.PAIRED:
            return self._update(name, status=InstanceStatus.DISCONNECTED)
        return inst

    async def _lookup_phone(self, name: str) -> Optional[str]:
        try:
            rows = await self._client.fetch_instances()
        except WhatsAppError as e:
            self._obs.failure("whatsapp.instance.phone_lookup_failed", e, ctx=self._ctx(name, "lookup_phone"))
            return None
        for row in rows:
            if not isinstance(row, dict):
                continue
            data = row.get("instance") if isinstance(row.get("instance"), dict) else row
            if (data.get("name") or data.get("instanceName")) != name:
                continue
            jid = data.get("ownerJid") or data.get("owner") or data.get("number")
            return extract_phone_from_jid(str(jid or "")) or None
        return None

    def _update(self, name: str, **fields: Any) -> MessagingInstance:
        inst = self._registry.update_instance(self.tenant_id, name, **fields)
        self._notify(inst)
        return inst

    def _notify(self, inst: MessagingInstance) -> None:
        if self._listener is None:
            return
        try:
            self._listener(inst)
        except Exception:
            self._obs.exception("whatsapp.listener.failed", ctx=self._ctx(inst.instance_name, "notify"), status=inst.status.value)

    def _artifact_expiry(self) -> str:
        window = self._settings.pairing_timeout_s or self._settings.poll_interval_s * self._settings.max_poll_attempts
        return (datetime.now(timezone.utc) + timedelta(seconds=window)).isoformat()

    def _require(self, name: str) -> MessagingInstance:
        inst = self._registry.get_instance(self.tenant_id, name)
        if inst is None:
            raise InstanceNotFoundError(name)
        return inst

    def _key(self, name: str) -> tuple[str, str]:
        return (self.tenant_id, name)

    def _ctx(self, name: str, operation: str) -> LogContext:
        return LogContext(tenant_id=self.tenant_id, instance_name=name, operation=operation)
