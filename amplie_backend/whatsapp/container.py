from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Callable, Optional

import httpx

from ..supabase_client import get_supabase_client
from .client import EvolutionClient
from .config import SessionSettings, load_session_settings
from .credentials import ProviderCredentials, load_provider_credentials
from .dispatcher import OutboundDispatcher
from .observability import Observability
from .orchestrator import ConnectionOrchestrator, Listener
from .polling import KeyedLock, PairingPollers
from .registry import InMemorySessionRegistry, SessionRegistry, SupabaseSessionRegistry
from .storage import AttachmentStore
from .webhooks import WebhookService


@lru_cache(maxsize=1)
def get_whatsapp_container() -> "WhatsAppContainer":
    return WhatsAppContainer.build()


class TenantSession:
    """Per-request view of the session layer for one tenant."""

    def __init__(self, *, container: "WhatsAppContainer", tenant_id: str):
        self._container = container
        self.tenant_id = tenant_id
        self._client: Optional[EvolutionClient] = None

    @property
    def client(self) -> EvolutionClient:
        if self._client is None:
            self._client = self._container.build_client()
        return self._client

    @property
    def orchestrator(self) -> ConnectionOrchestrator:
        c = self._container
        return ConnectionOrchestrator(
            tenant_id=self.tenant_id,
            client_factory=lambda: self.client,
            registry=c.registry,
            settings=c.settings,
            obs=c.obs,
            locks=c.locks,
            pollers=c.pollers,
            listener=c.listener,
        )

    @property
    def dispatcher(self) -> OutboundDispatcher:
        c = self._container
        return OutboundDispatcher(
            tenant_id=self.tenant_id,
            client_factory=lambda: self.client,
            registry=c.registry,
            obs=c.obs,
            store=c.store,
        )

    @property
    def webhooks(self) -> WebhookService:
        c = self._container
        return WebhookService(
            tenant_id=self.tenant_id,
            client_factory=lambda: self.client,
            registry=c.registry,
            settings=c.settings,
            obs=c.obs,
        )


class WhatsAppContainer:
    def __init__(
        self,
        *,
        registry: SessionRegistry,
        obs: Observability,
        settings: SessionSettings,
        credentials_loader: Callable[[], ProviderCredentials],
        store: Optional[AttachmentStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        listener: Optional[Listener] = None,
    ):
        self.registry = registry
        self.obs = obs
        self.settings = settings
        self.store = store
        self.listener = listener
        self.locks = KeyedLock()
        self.pollers = PairingPollers(obs=obs)
        self._credentials_loader = credentials_loader
        self._transport = transport

    @staticmethod
    def build() -> "WhatsAppContainer":
        logger = logging.getLogger("whatsapp")
        obs = Observability(logger)
        settings = load_session_settings()
        db: Any = get_supabase_client()

        registry: SessionRegistry
        if settings.dev_sandbox_enabled:
            logger.warning("WHATSAPP_DEV_SANDBOX ativo: instâncias mantidas apenas em memória.")
            registry = InMemorySessionRegistry()
        else:
            registry = SupabaseSessionRegistry(db)

        return WhatsAppContainer(
            registry=registry,
            obs=obs,
            settings=settings,
            credentials_loader=lambda: load_provider_credentials(db),
            store=AttachmentStore(db, bucket=settings.attachments_bucket, prefix=settings.attachments_prefix),
        )

    def credentials(self) -> ProviderCredentials:
        return self._credentials_loader()

    def build_client(self) -> EvolutionClient:
        creds = self.credentials()
        return EvolutionClient(
            creds.server_url,
            creds.api_key,
            timeout_s=self.settings.http_timeout_s,
            transport=self._transport,
        )

    def session_for(self, tenant_id: str) -> TenantSession:
        return TenantSession(container=self, tenant_id=tenant_id)

    async def shutdown(self) -> None:
        await self.pollers.cancel_all()
