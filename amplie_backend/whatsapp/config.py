from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields, replace
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from typing import Protocol

    class StrictYAMLError(Exception):
        pass

    class _YamlDoc(Protocol):
        data: Any

    def load_yaml(_text: str) -> _YamlDoc:
        raise NotImplementedError
else:
    from strictyaml import StrictYAMLError, load as load_yaml

from .errors import ConfigError, InvalidWebhookEventsError
from .models import DEFAULT_WEBHOOK_EVENTS, validate_webhook_events


@dataclass(frozen=True)
class SessionSettings:
    poll_interval_s: float = 5.0
    max_poll_attempts: int = 24
    pairing_timeout_s: Optional[float] = None
    http_timeout_s: float = 30.0
    attachments_bucket: str = "attachments"
    attachments_prefix: str = "whatsapp-attachments"
    public_base_url: str = ""
    default_webhook_events: tuple[str, ...] = field(default_factory=lambda: tuple(DEFAULT_WEBHOOK_EVENTS))
    dev_sandbox_enabled: bool = False


_ENV_OVERRIDES = {
    "WHATSAPP_POLL_INTERVAL_S": "poll_interval_s",
    "WHATSAPP_MAX_POLL_ATTEMPTS": "max_poll_attempts",
    "WHATSAPP_PAIRING_TIMEOUT_S": "pairing_timeout_s",
    "WHATSAPP_HTTP_TIMEOUT_S": "http_timeout_s",
    "WHATSAPP_ATTACHMENTS_BUCKET": "attachments_bucket",
    "PUBLIC_BACKEND_URL": "public_base_url",
    "WHATSAPP_DEV_SANDBOX": "dev_sandbox_enabled",
}


def load_session_settings() -> SessionSettings:
    inline = (os.getenv("WHATSAPP_SESSION_CONFIG_INLINE") or "").strip()
    path = (os.getenv("WHATSAPP_SESSION_CONFIG") or "").strip()

    if inline:
        data = _parse_text(inline)
    elif path:
        data = _parse_file(path)
    else:
        data = {}

    for env_name, key in _ENV_OVERRIDES.items():
        raw = (os.getenv(env_name) or "").strip()
        if raw:
            data[key] = raw

    return build_settings(data)


def build_settings(data: dict[str, Any]) -> SessionSettings:
    known = {f.name for f in fields(SessionSettings)}
    unknown = sorted(k for k in data if k not in known)
    if unknown:
        raise ConfigError("Chaves desconhecidas em configuração.", details={"keys": unknown})

    settings = SessionSettings()
    values: dict[str, Any] = {}
    for key, raw in data.items():
        values[key] = _coerce(key, raw)
    settings = replace(settings, **values)

    if settings.poll_interval_s <= 0:
        raise ConfigError("poll_interval_s deve ser positivo.", details={"value": settings.poll_interval_s})
    if settings.max_poll_attempts < 1:
        raise ConfigError("max_poll_attempts deve ser >= 1.", details={"value": settings.max_poll_attempts})
    if settings.pairing_timeout_s is not None and settings.pairing_timeout_s <= 0:
        raise ConfigError("pairing_timeout_s deve ser positivo.", details={"value": settings.pairing_timeout_s})
    try:
        validate_webhook_events(settings.default_webhook_events)
    except InvalidWebhookEventsError as e:
        raise ConfigError("default_webhook_events inválido.", details={"error": str(e)})
    return replace(settings, public_base_url=settings.public_base_url.rstrip("/"))


def _coerce(key: str, raw: Any) -> Any:
    try:
        if key in {"poll_interval_s", "http_timeout_s"}:
            return float(raw)
        if key == "pairing_timeout_s":
            if raw is None or str(raw).strip() == "":
                return None
            return float(raw)
        if key == "max_poll_attempts":
            return int(raw)
        if key == "dev_sandbox_enabled":
            if isinstance(raw, bool):
                return raw
            return str(raw).strip().lower() in {"1", "true", "yes", "y"}
        if key == "default_webhook_events":
            if isinstance(raw, str):
                raw = [p for p in raw.split(",")]
            return tuple(str(e).strip().upper() for e in raw if str(e).strip())
        return str(raw or "").strip()
    except (TypeError, ValueError) as e:
        raise ConfigError("Valor inválido em configuração.", details={"key": key, "value": str(raw), "error": str(e)})


def _parse_file(path: str) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
    except OSError as e:
        raise ConfigError("Falha ao ler arquivo de configuração.", details={"path": path, "error": str(e)})
    return _parse_text(text, source=path)


def _parse_text(text: str, source: str = "inline") -> dict[str, Any]:
    raw = (text or "").lstrip()
    if not raw:
        return {}
    if raw.startswith("{"):
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise ConfigError("JSON inválido em configuração.", details={"source": source, "error": str(e)})
    else:
        try:
            data = load_yaml(raw).data
        except StrictYAMLError as e:
            raise ConfigError("YAML inválido em configuração.", details={"source": source, "error": str(e)})
    if not isinstance(data, dict):
        raise ConfigError("Configuração deve ser um mapa.", details={"source": source, "type": str(type(data))})
    # aceita tanto o mapa na raiz quanto aninhado em "whatsapp"
    nested = data.get("whatsapp")
    if isinstance(nested, dict):
        return dict(nested)
    return dict(data)
