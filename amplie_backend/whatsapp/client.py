"""Evolution API v2 client used by the session layer."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

import httpx

from ..utils.phone_utils import normalize_phone_number, phone_to_jid
from .auth import ApiKeyHeaderAuth
from .errors import ProviderRejectedError
from .http import HttpClient, HttpClientConfig, RetryPolicy, extract_provider_message
from .models import PairingArtifact

logger = logging.getLogger(__name__)


class EvolutionClient:
    """One method per provider endpoint.

    Holds only the account credentials; every call is a single HTTP request.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout_s: float = 30.0,
        retry: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self._http = HttpClient(
            config=HttpClientConfig(base_url=self.base_url, timeout_s=timeout_s),
            auth=ApiKeyHeaderAuth(api_key=api_key),
            retry=retry,
            transport=transport,
        )

    async def _call(self, method: str, path: str, data: Optional[Any] = None, *, idempotent: bool = False) -> Any:
        body = await self._http.request(method, path, json=data, idempotent=idempotent)
        # o provedor às vezes responde 200 com corpo de erro
        if isinstance(body, dict) and body.get("error") and not body.get("key"):
            status = body.get("status")
            raise ProviderRejectedError(
                extract_provider_message(body) or "Erro retornado pelo provedor.",
                status_code=status if isinstance(status, int) else None,
                details={"body": body, "method": method, "path": path},
            )
        return body

    # ==================== INSTANCE MANAGEMENT ====================

    async def create_instance(
        self,
        instance_name: str,
        *,
        webhook_url: Optional[str] = None,
        events: Optional[Sequence[str]] = None,
        number: Optional[str] = None,
    ) -> dict:
        data: Dict[str, Any] = {
            'instanceName': instance_name,
            'integration': 'WHATSAPP-BAILEYS',
            'qrcode': True,
            'rejectCall': False,
            'groupsIgnore': True,
            'alwaysOnline': False,
            'readMessages': False,
            'readStatus': False,
            'syncFullHistory': False,
        }
        if number:
            data['number'] = normalize_phone_number(number)
        if webhook_url:
            data['webhook'] = {
                'enabled': True,
                'url': webhook_url,
                'byEvents': False,
                'base64': True,
                'headers': {},
                'events': list(events or ()),
            }
        return await self._call('POST', '/instance/create', data)

    async def fetch_instances(self) -> list:
        result = await self._call('GET', '/instance/fetchInstances', idempotent=True)
        return result if isinstance(result, list) else []

    async def connect_instance(self, instance_name: str, *, number: Optional[str] = None) -> dict:
        """Request a fresh pairing artifact (QR code and/or pairing code)."""
        path = f'/instance/connect/{_seg(instance_name)}'
        if number:
            path += f'?number={normalize_phone_number(number)}'
        return await self._call('GET', path)

    async def get_connection_state(self, instance_name: str) -> dict:
        return await self._call('GET', f'/instance/connectionState/{_seg(instance_name)}', idempotent=True)

    async def restart_instance(self, instance_name: str) -> dict:
        return await self._call('PUT', f'/instance/restart/{_seg(instance_name)}')

    async def logout_instance(self, instance_name: str) -> dict:
        return await self._call('DELETE', f'/instance/logout/{_seg(instance_name)}')

    async def delete_instance(self, instance_name: str) -> dict:
        return await self._call('DELETE', f'/instance/delete/{_seg(instance_name)}')

    # ==================== WEBHOOK ====================

    async def set_webhook(self, instance_name: str, webhook_url: str, events: Sequence[str], *, enabled: bool = True) -> dict:
        data = {
            'webhook': {
                'enabled': enabled,
                'url': webhook_url,
                'byEvents': False,
                'base64': True,
                'events': list(events),
            }
        }
        return await self._call('POST', f'/webhook/set/{_seg(instance_name)}', data)

    async def find_webhook(self, instance_name: str) -> dict:
        result = await self._call('GET', f'/webhook/find/{_seg(instance_name)}', idempotent=True)
        return result if isinstance(result, dict) else {}

    # ==================== MESSAGING ====================

    async def send_text(self, instance_name: str, phone: str, text: str, *, delay: Optional[int] = None, link_preview: Optional[bool] = None) -> dict:
        data: Dict[str, Any] = {'number': normalize_phone_number(phone), 'text': text}
        if delay:
            data['delay'] = delay
        if link_preview is not None:
            data['linkPreview'] = link_preview
        return await self._call('POST', f'/message/sendText/{_seg(instance_name)}', data)

    async def send_media(
        self,
        instance_name: str,
        phone: str,
        media_type: str,
        media: str,
        *,
        caption: Optional[str] = None,
        filename: Optional[str] = None,
        mimetype: Optional[str] = None,
    ) -> dict:
        """Send image, video, audio or document by URL (or base64)."""
        data: Dict[str, Any] = {
            'number': normalize_phone_number(phone),
            'mediatype': media_type,
            'media': media,
            'caption': caption or '',
        }
        if filename:
            data['fileName'] = filename
        if mimetype:
            data['mimetype'] = mimetype
        return await self._call('POST', f'/message/sendMedia/{_seg(instance_name)}', data)

    async def send_buttons(
        self,
        instance_name: str,
        phone: str,
        text: str,
        buttons: List[Dict[str, Any]],
        *,
        title: Optional[str] = None,
        footer: Optional[str] = None,
    ) -> dict:
        data = {
            'number': normalize_phone_number(phone),
            'title': title or '',
            'description': text,
            'footer': footer or '',
            'buttons': buttons,
        }
        return await self._call('POST', f'/message/sendButtons/{_seg(instance_name)}', data)

    async def send_list(
        self,
        instance_name: str,
        phone: str,
        title: str,
        description: str,
        button_text: str,
        sections: List[Dict[str, Any]],
        *,
        footer: Optional[str] = None,
    ) -> dict:
        data = {
            'number': normalize_phone_number(phone),
            'title': title,
            'description': description,
            'buttonText': button_text,
            'footerText': footer or '',
            'sections': sections,
        }
        return await self._call('POST', f'/message/sendList/{_seg(instance_name)}', data)

    async def send_location(
        self,
        instance_name: str,
        phone: str,
        latitude: float,
        longitude: float,
        *,
        name: Optional[str] = None,
        address: Optional[str] = None,
    ) -> dict:
        data = {
            'number': normalize_phone_number(phone),
            'latitude': latitude,
            'longitude': longitude,
            'name': name or 'Localização',
            'address': address or '',
        }
        return await self._call('POST', f'/message/sendLocation/{_seg(instance_name)}', data)

    async def send_contact(self, instance_name: str, phone: str, contact_name: str, contact_phone: str) -> dict:
        contact_digits = normalize_phone_number(contact_phone)
        data = {
            'number': normalize_phone_number(phone),
            'contact': [{
                'fullName': contact_name,
                'wuid': contact_digits,
                'phoneNumber': contact_digits,
            }],
        }
        return await self._call('POST', f'/message/sendContact/{_seg(instance_name)}', data)

    async def send_poll(self, instance_name: str, phone: str, name: str, values: Sequence[str], *, selectable_count: int = 1) -> dict:
        data = {
            'number': normalize_phone_number(phone),
            'name': name,
            'selectableCount': selectable_count,
            'values': list(values),
        }
        return await self._call('POST', f'/message/sendPoll/{_seg(instance_name)}', data)

    async def send_reaction(self, instance_name: str, phone: str, message_id: str, emoji: str, *, from_me: bool = False) -> dict:
        data = {
            'key': {
                'remoteJid': phone_to_jid(phone),
                'fromMe': from_me,
                'id': message_id,
            },
            'reaction': emoji,
        }
        return await self._call('POST', f'/message/sendReaction/{_seg(instance_name)}', data)

    async def send_presence(self, instance_name: str, phone: str, presence: str = 'composing', *, delay_ms: int = 1200) -> dict:
        data = {
            'number': normalize_phone_number(phone),
            'presence': presence,  # 'composing', 'recording', 'paused'
            'delay': delay_ms,
        }
        return await self._call('POST', f'/chat/sendPresence/{_seg(instance_name)}', data)

    # ==================== CHAT ====================

    async def check_whatsapp_numbers(self, instance_name: str, phones: Sequence[str]) -> list:
        data = {'numbers': [normalize_phone_number(p) for p in phones]}
        result = await self._call('POST', f'/chat/whatsappNumbers/{_seg(instance_name)}', data)
        return result if isinstance(result, list) else []

    async def mark_as_read(self, instance_name: str, phone: str, message_ids: Sequence[str]) -> dict:
        jid = phone_to_jid(phone)
        data = {
            'readMessages': [{'remoteJid': jid, 'fromMe': False, 'id': mid} for mid in message_ids],
        }
        return await self._call('POST', f'/chat/markMessageAsRead/{_seg(instance_name)}', data)

    async def fetch_profile_picture(self, instance_name: str, phone: str) -> dict:
        data = {'number': normalize_phone_number(phone)}
        return await self._call('POST', f'/chat/fetchProfilePictureUrl/{_seg(instance_name)}', data)

    # ==================== PROFILE ====================

    async def fetch_profile(self, instance_name: str, phone: str) -> dict:
        data = {'number': normalize_phone_number(phone)}
        return await self._call('POST', f'/chat/fetchProfile/{_seg(instance_name)}', data)

    async def update_profile_name(self, instance_name: str, name: str) -> dict:
        return await self._call('POST', f'/chat/updateProfileName/{_seg(instance_name)}', {'name': name})

    async def update_profile_status(self, instance_name: str, status: str) -> dict:
        return await self._call('POST', f'/chat/updateProfileStatus/{_seg(instance_name)}', {'status': status})

    # ==================== GROUPS ====================

    async def create_group(self, instance_name: str, subject: str, participants: Sequence[str], *, description: Optional[str] = None) -> dict:
        data: Dict[str, Any] = {
            'subject': subject,
            'participants': [normalize_phone_number(p) for p in participants],
        }
        if description:
            data['description'] = description
        return await self._call('POST', f'/group/create/{_seg(instance_name)}', data)

    async def fetch_all_groups(self, instance_name: str, *, get_participants: bool = False) -> list:
        flag = 'true' if get_participants else 'false'
        result = await self._call('GET', f'/group/fetchAllGroups/{_seg(instance_name)}?getParticipants={flag}', idempotent=True)
        return result if isinstance(result, list) else []

    async def find_group_members(self, instance_name: str, group_jid: str) -> dict:
        return await self._call('GET', f'/group/participants/{_seg(instance_name)}?groupJid={quote(group_jid, safe="")}', idempotent=True)

    async def update_group_members(self, instance_name: str, group_jid: str, action: str, participants: Sequence[str]) -> dict:
        if action not in {'add', 'remove', 'promote', 'demote'}:
            raise ValueError(f"invalid group action: {action}")
        data = {'action': action, 'participants': [normalize_phone_number(p) for p in participants]}
        return await self._call('POST', f'/group/updateParticipant/{_seg(instance_name)}?groupJid={quote(group_jid, safe="")}', data)

    async def fetch_invite_code(self, instance_name: str, group_jid: str) -> dict:
        return await self._call('GET', f'/group/inviteCode/{_seg(instance_name)}?groupJid={quote(group_jid, safe="")}', idempotent=True)


# ==================== RESPONSE HELPERS ====================

def extract_pairing_artifact(body: Any) -> PairingArtifact:
    """Pull the QR code / pairing code out of a create or connect response."""
    if not isinstance(body, dict):
        return PairingArtifact()
    candidates = [body]
    nested = body.get('qrcode')
    if isinstance(nested, dict):
        candidates.insert(0, nested)

    qrcode = None
    pairing_code = None
    for obj in candidates:
        if not qrcode:
            b64 = obj.get('base64')
            if isinstance(b64, str) and b64.strip():
                qrcode = b64.strip()
        if not pairing_code:
            pc = obj.get('pairingCode')
            if isinstance(pc, str) and pc.strip():
                pairing_code = pc.strip()
    if not qrcode:
        for obj in candidates:
            code = obj.get('code')
            if isinstance(code, str) and code.strip():
                qrcode = code.strip()
                break
    return PairingArtifact(qrcode=qrcode, pairing_code=pairing_code)


def extract_connection_state(body: Any) -> str:
    """Return the provider connection state in lower case ('open', 'close', 'connecting', ...)."""
    if not isinstance(body, dict):
        return ''
    instance = body.get('instance')
    if isinstance(instance, dict):
        state = instance.get('state') or instance.get('status')
        if state:
            return str(state).strip().lower()
    state = body.get('state') or body.get('status')
    return str(state or '').strip().lower()


def extract_message_id(body: Any) -> Optional[str]:
    if not isinstance(body, dict):
        return None
    key = body.get('key')
    if isinstance(key, dict) and key.get('id'):
        return str(key['id'])
    for k in ('messageId', 'id'):
        if body.get(k):
            return str(body[k])
    return None


def _seg(value: str) -> str:
    return quote(str(value or ''), safe='')
