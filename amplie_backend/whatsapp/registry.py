from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from ..utils.db_helpers import db_call_with_retry, is_unique_violation_error
from .errors import DuplicateInstanceError, DuplicateWebhookError, InstanceNotFoundError, WebhookNotFoundError
from .models import InstanceStatus, MessagingInstance, WebhookConfiguration

INSTANCES_TABLE = "whatsapp_instances"
WEBHOOKS_TABLE = "whatsapp_webhooks"


class SessionRegistry(Protocol):
    def list_instances(self, tenant_id: str) -> list[MessagingInstance]:
        ...

    def get_instance(self, tenant_id: str, instance_name: str) -> Optional[MessagingInstance]:
        ...

    def find_instance(self, instance_name: str) -> Optional[MessagingInstance]:
        ...

    def create_instance(self, instance: MessagingInstance) -> MessagingInstance:
        ...

    def update_instance(self, tenant_id: str, instance_name: str, **fields: Any) -> MessagingInstance:
        ...

    def delete_instance(self, tenant_id: str, instance_name: str) -> bool:
        ...

    def get_webhook(self, instance_id: str) -> Optional[WebhookConfiguration]:
        ...

    def create_webhook(self, cfg: WebhookConfiguration) -> WebhookConfiguration:
        ...

    def update_webhook(self, instance_id: str, **fields: Any) -> WebhookConfiguration:
        ...

    def delete_webhook(self, instance_id: str) -> bool:
        ...


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_db_fields(fields: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in fields.items():
        if isinstance(v, InstanceStatus):
            v = v.value
        elif isinstance(v, tuple):
            v = list(v)
        out[k] = v
    return out


class InMemorySessionRegistry:
    """Process-local registry used by the dev sandbox and by tests."""

    def __init__(self) -> None:
        self._instances: dict[tuple[str, str], MessagingInstance] = {}
        self._webhooks: dict[str, WebhookConfiguration] = {}

    def list_instances(self, tenant_id: str) -> list[MessagingInstance]:
        rows = [i for (t, _), i in self._instances.items() if t == tenant_id]
        return sorted(rows, key=lambda i: i.created_at or "")

    def get_instance(self, tenant_id: str, instance_name: str) -> Optional[MessagingInstance]:
        return self._instances.get((tenant_id, instance_name))

    def find_instance(self, instance_name: str) -> Optional[MessagingInstance]:
        for (_, name), inst in self._instances.items():
            if name == instance_name:
                return inst
        return None

    def create_instance(self, instance: MessagingInstance) -> MessagingInstance:
        key = (instance.tenant_id, instance.instance_name)
        if key in self._instances:
            raise DuplicateInstanceError(instance.instance_name)
        now = _now()
        stored = replace(instance, id=instance.id or str(uuid.uuid4()), created_at=now, updated_at=now)
        self._instances[key] = stored
        return stored

    def update_instance(self, tenant_id: str, instance_name: str, **fields: Any) -> MessagingInstance:
        key = (tenant_id, instance_name)
        current = self._instances.get(key)
        if current is None:
            raise InstanceNotFoundError(instance_name)
        updated = replace(current, updated_at=_now(), **fields)
        self._instances[key] = updated
        return updated

    def delete_instance(self, tenant_id: str, instance_name: str) -> bool:
        current = self._instances.pop((tenant_id, instance_name), None)
        if current is None:
            return False
        if current.id:
            self._webhooks.pop(current.id, None)
        return True

    def get_webhook(self, instance_id: str) -> Optional[WebhookConfiguration]:
        return self._webhooks.get(instance_id)

    def create_webhook(self, cfg: WebhookConfiguration) -> WebhookConfiguration:
        if cfg.instance_id in self._webhooks:
            raise DuplicateWebhookError(cfg.instance_id)
        now = _now()
        stored = replace(cfg, id=cfg.id or str(uuid.uuid4()), created_at=now, updated_at=now)
        self._webhooks[cfg.instance_id] = stored
        return stored

    def update_webhook(self, instance_id: str, **fields: Any) -> WebhookConfiguration:
        current = self._webhooks.get(instance_id)
        if current is None:
            raise WebhookNotFoundError(instance_id)
        updated = replace(current, updated_at=_now(), **fields)
        self._webhooks[instance_id] = updated
        return updated

    def delete_webhook(self, instance_id: str) -> bool:
        return self._webhooks.pop(instance_id, None) is not None


class SupabaseSessionRegistry:
    """Registry backed by the ``whatsapp_instances`` / ``whatsapp_webhooks`` tables."""

    def __init__(self, client: Any):
        self._db = client

    def list_instances(self, tenant_id: str) -> list[MessagingInstance]:
        result = db_call_with_retry(
            "whatsapp.registry.list_instances",
            lambda: self._db.table(INSTANCES_TABLE).select('*').eq('tenant_id', tenant_id).order('created_at').execute(),
        )
        return [MessagingInstance.from_row(r) for r in (result.data or [])]

    def get_instance(self, tenant_id: str, instance_name: str) -> Optional[MessagingInstance]:
        result = db_call_with_retry(
            "whatsapp.registry.get_instance",
            lambda: self._db.table(INSTANCES_TABLE)
            .select('*')
            .eq('tenant_id', tenant_id)
            .eq('instance_name', instance_name)
            .limit(1)
            .execute(),
        )
        rows = result.data or []
        return MessagingInstance.from_row(rows[0]) if rows else None

    def find_instance(self, instance_name: str) -> Optional[MessagingInstance]:
        """Lookup by provider name alone; used by inbound webhooks."""
        result = db_call_with_retry(
            "whatsapp.registry.find_instance",
            lambda: self._db.table(INSTANCES_TABLE).select('*').eq('instance_name', instance_name).limit(1).execute(),
        )
        rows = result.data or []
        return MessagingInstance.from_row(rows[0]) if rows else None

    def create_instance(self, instance: MessagingInstance) -> MessagingInstance:
        if self.get_instance(instance.tenant_id, instance.instance_name) is not None:
            raise DuplicateInstanceError(instance.instance_name)
        row = instance.to_row()
        row.setdefault('id', str(uuid.uuid4()))
        row['created_at'] = row['updated_at'] = _now()
        try:
            result = self._db.table(INSTANCES_TABLE).insert(row).execute()
        except Exception as e:
            if is_unique_violation_error(e):
                raise DuplicateInstanceError(instance.instance_name)
            raise
        rows = result.data or [row]
        return MessagingInstance.from_row(rows[0])

    def update_instance(self, tenant_id: str, instance_name: str, **fields: Any) -> MessagingInstance:
        data = _to_db_fields(fields)
        data['updated_at'] = _now()
        result = (
            self._db.table(INSTANCES_TABLE)
            .update(data)
            .eq('tenant_id', tenant_id)
            .eq('instance_name', instance_name)
            .execute()
        )
        rows = result.data or []
        if not rows:
            raise InstanceNotFoundError(instance_name)
        return MessagingInstance.from_row(rows[0])

    def delete_instance(self, tenant_id: str, instance_name: str) -> bool:
        current = self.get_instance(tenant_id, instance_name)
        if current is None:
            return False
        if current.id:
            self.delete_webhook(current.id)
        self._db.table(INSTANCES_TABLE).delete().eq('tenant_id', tenant_id).eq('instance_name', instance_name).execute()
        return True

    def get_webhook(self, instance_id: str) -> Optional[WebhookConfiguration]:
        result = db_call_with_retry(
            "whatsapp.registry.get_webhook",
            lambda: self._db.table(WEBHOOKS_TABLE).select('*').eq('instance_id', instance_id).limit(1).execute(),
        )
        rows = result.data or []
        return WebhookConfiguration.from_row(rows[0]) if rows else None

    def create_webhook(self, cfg: WebhookConfiguration) -> WebhookConfiguration:
        if self.get_webhook(cfg.instance_id) is not None:
            raise DuplicateWebhookError(cfg.instance_id)
        row = cfg.to_row()
        row.setdefault('id', str(uuid.uuid4()))
        row['created_at'] = row['updated_at'] = _now()
        try:
            result = self._db.table(WEBHOOKS_TABLE).insert(row).execute()
        except Exception as e:
            if is_unique_violation_error(e):
                raise DuplicateWebhookError(cfg.instance_id)
            raise
        rows = result.data or [row]
        return WebhookConfiguration.from_row(rows[0])

    def update_webhook(self, instance_id: str, **fields: Any) -> WebhookConfiguration:
        data = _to_db_fields(fields)
        data['updated_at'] = _now()
        result = self._db.table(WEBHOOKS_TABLE).update(data).eq('instance_id', instance_id).execute()
        rows = result.data or []
        if not rows:
            raise WebhookNotFoundError(instance_id)
        return WebhookConfiguration.from_row(rows[0])

    def delete_webhook(self, instance_id: str) -> bool:
        result = self._db.table(WEBHOOKS_TABLE).delete().eq('instance_id', instance_id).execute()
        return bool(result.data)
