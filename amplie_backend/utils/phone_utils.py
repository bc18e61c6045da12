"""
Phone number utilities shared by the dispatcher and the provider client.

The provider receives digits only; country-code validation is left to it.
"""

from typing import Any


def normalize_phone_number(value: Any) -> str:
    """
    Strip every non-digit character, keeping the digits in order.

    Args:
        value: The phone number in any format (e.g. "+55 (11) 91234-5678")

    Returns:
        Digit-only phone string (e.g. "5511912345678"), or "" when there are none
    """
    s = str(value or '').strip()
    if not s:
        return ''
    return ''.join(ch for ch in s if '0' <= ch <= '9')


def extract_phone_from_jid(jid: str) -> str:
    """
    Extract phone number from WhatsApp JID.

    Args:
        jid: WhatsApp JID (e.g., "5511999999999@s.whatsapp.net")

    Returns:
        Phone number string
    """
    if not jid:
        return ""

    # Remove @s.whatsapp.net or similar suffixes, and the ":device" part
    phone = str(jid).split("@")[0].split(":")[0]
    return normalize_phone_number(phone)


def phone_to_jid(phone: str) -> str:
    """Convert phone number to WhatsApp JID."""
    normalized = normalize_phone_number(phone)
    if not normalized:
        return ""
    return f"{normalized}@s.whatsapp.net"

