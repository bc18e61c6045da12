from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional

from .errors import InvalidInstanceNameError, InvalidWebhookEventsError


class InstanceStatus(str, Enum):
    ABSENT = "absent"
    CREATING = "creating"
    AWAITING_PAIRING = "awaiting_pairing"
    PAIRED = "paired"
    DISCONNECTED = "disconnected"
    DELETED = "deleted"


# Evolution API v2 event vocabulary (plus MESSAGE_STATUS_UPDATE, still accepted by older servers)
WEBHOOK_EVENTS = frozenset(
    {
        "APPLICATION_STARTUP",
        "QRCODE_UPDATED",
        "MESSAGES_SET",
        "MESSAGES_UPSERT",
        "MESSAGES_UPDATE",
        "MESSAGES_DELETE",
        "MESSAGE_STATUS_UPDATE",
        "SEND_MESSAGE",
        "CONTACTS_SET",
        "CONTACTS_UPSERT",
        "CONTACTS_UPDATE",
        "PRESENCE_UPDATE",
        "CHATS_SET",
        "CHATS_UPSERT",
        "CHATS_UPDATE",
        "CHATS_DELETE",
        "GROUPS_UPSERT",
        "GROUP_UPDATE",
        "GROUP_PARTICIPANTS_UPDATE",
        "CONNECTION_UPDATE",
        "LABELS_EDIT",
        "LABELS_ASSOCIATION",
        "CALL",
        "TYPEBOT_START",
        "TYPEBOT_CHANGE_STATUS",
    }
)

DEFAULT_WEBHOOK_EVENTS = (
    "APPLICATION_STARTUP",
    "MESSAGES_UPSERT",
    "MESSAGE_STATUS_UPDATE",
    "CONNECTION_UPDATE",
    "QRCODE_UPDATED",
)

_INSTANCE_NAME_MAX = 80
_INSTANCE_NAME_RE = re.compile(r"^[A-Za-z0-9_.\-]+$")


def validate_instance_name(name: Any) -> str:
    value = str(name or "").strip()
    if not value or len(value) > _INSTANCE_NAME_MAX or not _INSTANCE_NAME_RE.match(value):
        raise InvalidInstanceNameError(value)
    return value


def validate_webhook_events(events: Optional[Iterable[str]]) -> tuple[str, ...]:
    """Normalize an event set; must be a non-empty subset of WEBHOOK_EVENTS."""
    seen: list[str] = []
    for raw in events or ():
        ev = str(raw or "").strip().upper()
        if ev and ev not in seen:
            seen.append(ev)
    if not seen:
        raise InvalidWebhookEventsError("Selecione ao menos um evento para o webhook.")
    unknown = [ev for ev in seen if ev not in WEBHOOK_EVENTS]
    if unknown:
        raise InvalidWebhookEventsError("Eventos de webhook desconhecidos.", details={"events": unknown})
    return tuple(seen)


@dataclass(frozen=True)
class PairingArtifact:
    qrcode: Optional[str] = None
    pairing_code: Optional[str] = None

    @property
    def value(self) -> Optional[str]:
        return self.qrcode or self.pairing_code

    def __bool__(self) -> bool:
        return bool(self.value)


@dataclass
class MessagingInstance:
    tenant_id: str
    instance_name: str
    status: InstanceStatus = InstanceStatus.ABSENT
    id: Optional[str] = None
    phone_number: Optional[str] = None
    pairing_code: Optional[str] = None
    pairing_code_expires_at: Optional[str] = None
    description: Optional[str] = None
    is_active: bool = True
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "MessagingInstance":
        return cls(
            id=str(row["id"]) if row.get("id") is not None else None,
            tenant_id=str(row.get("tenant_id") or ""),
            instance_name=str(row.get("instance_name") or ""),
            status=InstanceStatus(row.get("status") or InstanceStatus.ABSENT.value),
            phone_number=row.get("phone_number") or None,
            pairing_code=row.get("pairing_code") or None,
            pairing_code_expires_at=row.get("pairing_code_expires_at"),
            description=row.get("description"),
            is_active=bool(row.get("is_active", True)),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def to_row(self) -> dict[str, Any]:
        row: dict[str, Any] = {
            "tenant_id": self.tenant_id,
            "instance_name": self.instance_name,
            "status": self.status.value,
            "phone_number": self.phone_number,
            "pairing_code": self.pairing_code,
            "pairing_code_expires_at": self.pairing_code_expires_at,
            "description": self.description,
            "is_active": self.is_active,
        }
        if self.id:
            row["id"] = self.id
        return row

    def to_api(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tenantId": self.tenant_id,
            "instanceName": self.instance_name,
            "status": self.status.value,
            "phoneNumber": self.phone_number,
            "pairingCode": self.pairing_code,
            "pairingCodeExpiresAt": self.pairing_code_expires_at,
            "description": self.description,
            "isActive": self.is_active,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass
class WebhookConfiguration:
    instance_id: str
    tenant_id: str
    url: str
    events: tuple[str, ...] = field(default_factory=lambda: tuple(DEFAULT_WEBHOOK_EVENTS))
    enabled: bool = True
    id: Optional[str] = None
    last_checked_at: Optional[str] = None
    last_check_ok: Optional[bool] = None
    last_check_detail: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "WebhookConfiguration":
        return cls(
            id=str(row["id"]) if row.get("id") is not None else None,
            instance_id=str(row.get("instance_id") or ""),
            tenant_id=str(row.get("tenant_id") or ""),
            url=str(row.get("url") or ""),
            events=tuple(row.get("events") or ()),
            enabled=bool(row.get("enabled", True)),
            last_checked_at=row.get("last_checked_at"),
            last_check_ok=row.get("last_check_ok"),
            last_check_detail=row.get("last_check_detail"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def to_row(self) -> dict[str, Any]:
        row: dict[str, Any] = {
            "instance_id": self.instance_id,
            "tenant_id": self.tenant_id,
            "url": self.url,
            "events": list(self.events),
            "enabled": self.enabled,
            "last_checked_at": self.last_checked_at,
            "last_check_ok": self.last_check_ok,
            "last_check_detail": self.last_check_detail,
        }
        if self.id:
            row["id"] = self.id
        return row

    def to_api(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "instanceId": self.instance_id,
            "url": self.url,
            "events": list(self.events),
            "enabled": self.enabled,
            "lastCheckedAt": self.last_checked_at,
            "lastCheckOk": self.last_check_ok,
            "lastCheckDetail": self.last_check_detail,
            "createdAt": self.created_at,
        }


@dataclass(frozen=True)
class WebhookRequest:
    url: Optional[str] = None
    events: Optional[tuple[str, ...]] = None
    enabled: bool = True


def default_webhook_url(public_base_url: str, instance_name: str) -> str:
    base = (public_base_url or "").rstrip("/")
    if not base:
        return ""
    return f"{base}/api/webhooks/evolution/{instance_name}"
