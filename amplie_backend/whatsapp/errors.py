from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class WhatsAppError(Exception):
    message: str
    code: str = "whatsapp_error"
    transient: bool = False
    details: Optional[dict[str, Any]] = None

    def __str__(self) -> str:
        return self.message


class ConfigError(WhatsAppError):
    def __init__(self, message: str, *, details: Optional[dict[str, Any]] = None):
        super().__init__(message=message, code="config_error", transient=False, details=details)


class ConfigurationMissingError(WhatsAppError):
    def __init__(self, message: str = "Configuração da Evolution API não encontrada. Conclua a configuração antes de continuar.", *, details: Optional[dict[str, Any]] = None):
        super().__init__(message=message, code="configuration_missing", transient=False, details=details)


class AuthError(WhatsAppError):
    def __init__(self, message: str, *, transient: bool = False, details: Optional[dict[str, Any]] = None):
        super().__init__(message=message, code="auth_error", transient=transient, details=details)


class TransportError(WhatsAppError):
    def __init__(self, message: str, *, transient: bool = True, details: Optional[dict[str, Any]] = None):
        super().__init__(message=message, code="transport_failure", transient=transient, details=details)


class ProviderRejectedError(WhatsAppError):
    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        transient: bool = False,
        details: Optional[dict[str, Any]] = None,
    ):
        merged_details: dict[str, Any] = {}
        if status_code is not None:
            merged_details["status_code"] = status_code
        if details:
            merged_details.update(details)
        super().__init__(message=message, code="provider_rejected", transient=transient, details=merged_details)
        self.status_code = status_code


class PairingTimedOutError(WhatsAppError):
    def __init__(self, instance_name: str, *, attempts: int, elapsed_s: float):
        super().__init__(
            message=f"Tempo esgotado aguardando leitura do QR Code: {instance_name}",
            code="pairing_timed_out",
            transient=False,
            details={"instance": instance_name, "attempts": attempts, "elapsed_s": round(elapsed_s, 2)},
        )


class AttachmentUploadError(WhatsAppError):
    def __init__(self, message: str = "Falha no upload do arquivo.", *, details: Optional[dict[str, Any]] = None):
        super().__init__(message=message, code="attachment_upload_failed", transient=True, details=details)


class InstanceNotFoundError(WhatsAppError):
    def __init__(self, instance_name: str):
        super().__init__(
            message=f"Instância não encontrada: {instance_name}",
            code="instance_not_found",
            transient=False,
            details={"instance": instance_name},
        )


class DuplicateInstanceError(WhatsAppError):
    def __init__(self, instance_name: str):
        super().__init__(
            message=f"Já existe uma instância com este nome: {instance_name}",
            code="duplicate_instance",
            transient=False,
            details={"instance": instance_name},
        )


class DuplicateWebhookError(WhatsAppError):
    def __init__(self, instance_name: str):
        super().__init__(
            message=f"A instância já possui um webhook configurado: {instance_name}",
            code="duplicate_webhook",
            transient=False,
            details={"instance": instance_name},
        )


class InvalidWebhookEventsError(WhatsAppError):
    def __init__(self, message: str, *, details: Optional[dict[str, Any]] = None):
        super().__init__(message=message, code="invalid_webhook_events", transient=False, details=details)


class InvalidInstanceNameError(WhatsAppError):
    def __init__(self, instance_name: str):
        super().__init__(
            message="instanceName inválido.",
            code="invalid_instance_name",
            transient=False,
            details={"instance": instance_name},
        )


class WebhookNotFoundError(WhatsAppError):
    def __init__(self, instance_name: str):
        super().__init__(
            message=f"Nenhum webhook configurado para a instância: {instance_name}",
            code="webhook_not_found",
            transient=False,
            details={"instance": instance_name},
        )


class InvalidPhoneNumberError(WhatsAppError):
    def __init__(self, phone: str):
        super().__init__(
            message="Número de telefone inválido.",
            code="invalid_phone",
            transient=False,
            details={"phone": phone},
        )


class PersistenceError(WhatsAppError):
    def __init__(self, message: str = "Falha ao acessar o banco de dados.", *, details: Optional[dict[str, Any]] = None):
        super().__init__(message=message, code="persistence_failure", transient=True, details=details)
