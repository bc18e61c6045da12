from .container import TenantSession, WhatsAppContainer, get_whatsapp_container
from .errors import WhatsAppError
from .models import InstanceStatus, MessagingInstance, WebhookConfiguration

__all__ = [
    "InstanceStatus",
    "MessagingInstance",
    "TenantSession",
    "WebhookConfiguration",
    "WhatsAppContainer",
    "WhatsAppError",
    "get_whatsapp_container",
]
