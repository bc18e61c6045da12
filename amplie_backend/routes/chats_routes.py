"""
Chat, profile and group routes.

Thin pass-throughs to the Evolution API for a paired instance:
- POST /instances/{name}/chat/presence - Show "typing..." / "recording..."
- POST /instances/{name}/chat/numbers - Check which numbers have WhatsApp
- POST /instances/{name}/chat/read - Mark messages as read
- POST /instances/{name}/chat/reaction - React to a message
- GET /instances/{name}/contacts/{phone}/profile - Contact profile and picture
- PUT /instances/{name}/profile - Update the instance's own name / status
- GET|POST /instances/{name}/groups - List / create groups
- GET|POST /instances/{name}/groups/{group_jid}/members - List / change members
- GET /instances/{name}/groups/{group_jid}/invite-code - Group invite link
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from ..models import (
    GroupCreate,
    GroupMembersUpdate,
    MarkReadRequest,
    NumbersCheckRequest,
    PresenceRequest,
    ProfileUpdate,
    ReactionRequest,
)
from ..utils.auth_helpers import require_admin, verify_token
from ..whatsapp.client import EvolutionClient
from ..whatsapp.errors import WhatsAppError
from .helpers import get_tenant_session, whatsapp_http_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/instances", tags=["Chats"])


def _instance_client(payload: dict, tenant_id: Optional[str], instance_name: str) -> EvolutionClient:
    """Client for an instance the caller's tenant owns."""
    session = get_tenant_session(payload, tenant_id)
    try:
        session.orchestrator.get_instance(instance_name)
        return session.client
    except WhatsAppError as e:
        raise whatsapp_http_error(e)


# ==================== CHAT ====================

@router.post("/{instance_name}/chat/presence")
async def send_presence(
    instance_name: str,
    data: PresenceRequest,
    tenant_id: Optional[str] = None,
    payload: dict = Depends(verify_token),
):
    client = _instance_client(payload, tenant_id, instance_name)
    try:
        await client.send_presence(instance_name, data.phone, data.presence, delay_ms=data.delay_ms)
    except WhatsAppError as e:
        raise whatsapp_http_error(e)
    return {"success": True}


@router.post("/{instance_name}/chat/numbers")
async def check_numbers(
    instance_name: str,
    data: NumbersCheckRequest,
    tenant_id: Optional[str] = None,
    payload: dict = Depends(verify_token),
):
    """Check which numbers are registered on WhatsApp."""
    client = _instance_client(payload, tenant_id, instance_name)
    try:
        rows = await client.check_whatsapp_numbers(instance_name, data.numbers)
    except WhatsAppError as e:
        raise whatsapp_http_error(e)
    return {
        "numbers": [
            {"number": r.get("number"), "exists": bool(r.get("exists")), "jid": r.get("jid")}
            for r in rows
            if isinstance(r, dict)
        ]
    }


@router.post("/{instance_name}/chat/read")
async def mark_as_read(
    instance_name: str,
    data: MarkReadRequest,
    tenant_id: Optional[str] = None,
    payload: dict = Depends(verify_token),
):
    client = _instance_client(payload, tenant_id, instance_name)
    try:
        await client.mark_as_read(instance_name, data.phone, data.message_ids)
    except WhatsAppError as e:
        raise whatsapp_http_error(e)
    return {"success": True, "count": len(data.message_ids)}


@router.post("/{instance_name}/chat/reaction")
async def send_reaction(
    instance_name: str,
    data: ReactionRequest,
    tenant_id: Optional[str] = None,
    payload: dict = Depends(verify_token),
):
    client = _instance_client(payload, tenant_id, instance_name)
    try:
        await client.send_reaction(instance_name, data.phone, data.message_id, data.emoji, from_me=data.from_me)
    except WhatsAppError as e:
        raise whatsapp_http_error(e)
    return {"success": True}


# ==================== PROFILE ====================

@router.get("/{instance_name}/contacts/{phone}/profile")
async def get_contact_profile(
    instance_name: str,
    phone: str,
    tenant_id: Optional[str] = None,
    payload: dict = Depends(verify_token),
):
    """Contact profile; the picture is optional (privacy settings may hide it)."""
    client = _instance_client(payload, tenant_id, instance_name)
    try:
        profile = await client.fetch_profile(instance_name, phone)
    except WhatsAppError as e:
        raise whatsapp_http_error(e)

    picture_url = None
    try:
        picture = await client.fetch_profile_picture(instance_name, phone)
        picture_url = picture.get("profilePictureUrl") if isinstance(picture, dict) else None
    except WhatsAppError as e:
        logger.info(f"Profile picture unavailable for {instance_name}: {e.code}")

    profile = profile if isinstance(profile, dict) else {}
    return {
        "name": profile.get("name"),
        "status": profile.get("status"),
        "wuid": profile.get("wuid"),
        "isBusiness": bool(profile.get("isBusiness")),
        "pictureUrl": picture_url or profile.get("picture"),
    }


@router.put("/{instance_name}/profile")
async def update_profile(
    instance_name: str,
    data: ProfileUpdate,
    tenant_id: Optional[str] = None,
    payload: dict = Depends(verify_token),
):
    """Update the WhatsApp display name and/or status text of the instance."""
    require_admin(payload)
    name = (data.name or "").strip()
    status = (data.status or "").strip()
    if not name and not status:
        raise HTTPException(status_code=400, detail="Informe name ou status")

    client = _instance_client(payload, tenant_id, instance_name)
    try:
        if name:
            await client.update_profile_name(instance_name, name)
        if status:
            await client.update_profile_status(instance_name, status)
    except WhatsAppError as e:
        raise whatsapp_http_error(e)
    return {"success": True, "name": name or None, "status": status or None}


# ==================== GROUPS ====================

@router.get("/{instance_name}/groups")
async def list_groups(
    instance_name: str,
    participants: bool = False,
    tenant_id: Optional[str] = None,
    payload: dict = Depends(verify_token),
):
    client = _instance_client(payload, tenant_id, instance_name)
    try:
        return await client.fetch_all_groups(instance_name, get_participants=participants)
    except WhatsAppError as e:
        raise whatsapp_http_error(e)


@router.post("/{instance_name}/groups", status_code=201)
async def create_group(
    instance_name: str,
    data: GroupCreate,
    tenant_id: Optional[str] = None,
    payload: dict = Depends(verify_token),
):
    require_admin(payload)
    client = _instance_client(payload, tenant_id, instance_name)
    try:
        return await client.create_group(instance_name, data.subject, data.participants, description=data.description)
    except WhatsAppError as e:
        raise whatsapp_http_error(e)


@router.get("/{instance_name}/groups/{group_jid}/members")
async def list_group_members(
    instance_name: str,
    group_jid: str,
    tenant_id: Optional[str] = None,
    payload: dict = Depends(verify_token),
):
    client = _instance_client(payload, tenant_id, instance_name)
    try:
        body = await client.find_group_members(instance_name, group_jid)
    except WhatsAppError as e:
        raise whatsapp_http_error(e)
    members = body.get("participants") if isinstance(body, dict) else None
    return {"groupJid": group_jid, "participants": members if isinstance(members, list) else []}


@router.post("/{instance_name}/groups/{group_jid}/members")
async def update_group_members(
    instance_name: str,
    group_jid: str,
    data: GroupMembersUpdate,
    tenant_id: Optional[str] = None,
    payload: dict = Depends(verify_token),
):
    require_admin(payload)
    client = _instance_client(payload, tenant_id, instance_name)
    try:
        await client.update_group_members(instance_name, group_jid, data.action, data.participants)
    except WhatsAppError as e:
        raise whatsapp_http_error(e)
    return {"success": True, "action": data.action, "count": len(data.participants)}


@router.get("/{instance_name}/groups/{group_jid}/invite-code")
async def get_invite_code(
    instance_name: str,
    group_jid: str,
    tenant_id: Optional[str] = None,
    payload: dict = Depends(verify_token),
):
    client = _instance_client(payload, tenant_id, instance_name)
    try:
        body = await client.fetch_invite_code(instance_name, group_jid)
    except WhatsAppError as e:
        raise whatsapp_http_error(e)
    body = body if isinstance(body, dict) else {}
    return {"inviteCode": body.get("inviteCode"), "inviteUrl": body.get("inviteUrl")}
