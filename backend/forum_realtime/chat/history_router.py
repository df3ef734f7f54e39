"""HTTP read endpoints for chat history and the conversation list.

Endpoints:
    - GET /chat/global/history: paginated global room history
    - GET /chat/global/online-count: number of users flagged online
    - GET /chat/private/{peer_id}/history: paginated history with one peer
    - GET /chat/conversations: the caller's conversations, newest first

All endpoints require ``Authorization: Bearer <token>``. Reads never
create conversations.
"""
import logging
import math
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request

from .errors import PersistenceFailure
from .services import ChatServices

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])

FILE_PLACEHOLDER = "[File]"


def get_services(request: Request) -> ChatServices:
    return request.app.state.chat


def current_user(
    authorization: Optional[str] = Header(None),
    services: ChatServices = Depends(get_services),
) -> str:
    """Resolve the caller from the bearer token or reject with 401."""
    token = services.authenticator.extract_token({}, {"authorization": authorization or ""})
    result = services.authenticator.verify(token)
    if not result.authenticated:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return result.user_id


def _page_limit(services: ChatServices, limit: Optional[int]) -> int:
    chat = services.config.chat
    if limit is None:
        return chat.default_page_size
    return min(limit, chat.max_page_size)


@router.get("/global/history")
async def global_history(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    user_id: str = Depends(current_user),
    services: ChatServices = Depends(get_services),
) -> dict:
    """Return one page of global messages.

    Pages count from the newest message backwards; each page is returned
    oldest-first.
    """
    limit = _page_limit(services, limit)
    try:
        messages, total = await services.store.global_history(page, limit)
        payload = await services.presenter.present_many(messages)
    except PersistenceFailure:
        raise HTTPException(status_code=500, detail="Failed to load global history")

    total_pages = math.ceil(total / limit) if total else 0
    return {
        "messages": payload,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": total_pages,
            "hasMore": page < total_pages,
        },
    }


@router.get("/global/online-count")
async def online_count(
    user_id: str = Depends(current_user),
    services: ChatServices = Depends(get_services),
) -> dict:
    try:
        count = await services.users.count_online()
    except PersistenceFailure:
        raise HTTPException(status_code=500, detail="Failed to count online users")
    return {"count": count}


@router.get("/private/{peer_id}/history")
async def private_history(
    peer_id: str,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    user_id: str = Depends(current_user),
    services: ChatServices = Depends(get_services),
) -> dict:
    """Return one page of the caller's conversation with ``peer_id``."""
    limit = _page_limit(services, limit)
    try:
        conversation, messages, has_more = await services.store.private_history(
            (user_id, peer_id), page, limit
        )
        payload = await services.presenter.present_many(messages)
    except PersistenceFailure:
        raise HTTPException(status_code=500, detail="Failed to load private history")

    return {
        "conversationId": conversation.id if conversation else None,
        "messages": payload,
        "page": page,
        "limit": limit,
        "hasMore": has_more,
    }


@router.get("/conversations")
async def list_conversations(
    user_id: str = Depends(current_user),
    services: ChatServices = Depends(get_services),
) -> dict:
    """List the caller's conversations with peer details and unread counts."""
    try:
        summaries = await services.store.list_conversations(
            user_id, services.config.chat.conversation_list_limit
        )
        conversations = []
        for summary in summaries:
            peer = await services.users.get_user(summary.peerId)
            presence = await services.users.get_presence(summary.peerId)
            conversations.append({
                "conversationId": summary.conversation.id,
                "peer": {
                    "id": summary.peerId,
                    "username": peer.username if peer else "Unknown",
                    "displayName": (peer.displayName or peer.username) if peer else "Unknown User",
                    "avatarUrl": peer.avatarUrl if peer else None,
                    "isOnline": presence.isOnline if presence else False,
                    "lastSeen": (
                        presence.lastSeen.isoformat()
                        if presence and presence.lastSeen else None
                    ),
                },
                "lastMessage": _preview(summary.lastMessage),
                "lastMessageAt": summary.conversation.lastMessageAt.isoformat(),
                "unreadCount": summary.unreadCount,
            })
    except PersistenceFailure:
        raise HTTPException(status_code=500, detail="Failed to load conversations")
    return {"conversations": conversations}


def _preview(message) -> Optional[str]:
    if message is None:
        return None
    return message.text or FILE_PLACEHOLDER
