"""
HTTP side of the conversation system: conversation lists, unread badges and
deletes. Deletes are announced to the affected room through the event bus.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from typing import List
import logging

from dealership.chat.identity import ConversationKey
from dealership.events import event_bus
from dealership.events.bus import CONVERSATION_DELETED, MESSAGE_DELETED
from dealership.models.models import User, Role
from dealership.models.schemas import ConversationSummary
from dealership.utils.dependencies import get_current_user, require_admin, require_buyer
from dealership.websocket import store

logger = logging.getLogger(__name__)

router = APIRouter()


def _parse_key_or_400(conversation_key: str) -> ConversationKey:
    key = ConversationKey.try_parse(conversation_key)
    if key is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid conversation key"
        )
    return key


async def _delete_conversation(conversation_key: str) -> dict:
    """Idempotent: deleting an already empty conversation succeeds with nothing to announce."""
    deleted = store.delete_conversation(conversation_key)
    if deleted:
        await event_bus.emit(CONVERSATION_DELETED, conversation_key)
        logger.info(f"Deleted conversation {conversation_key} ({deleted} message(s))")
    return {"status": "success", "message": "Conversation deleted", "deleted": deleted}


@router.get("/conversations", response_model=List[ConversationSummary])
def list_admin_conversations(current_user: User = Depends(require_admin)):
    """Conversations held by the current admin, most recent first."""
    return store.conversations_for(current_user.id, Role.ADMIN)


@router.get("/user-conversations", response_model=List[ConversationSummary])
def list_user_conversations(current_user: User = Depends(require_buyer)):
    return store.conversations_for(current_user.id, Role.USER)


@router.get("/notifications/unread-count")
def admin_unread_count(current_user: User = Depends(require_admin)):
    """Number of conversations with at least one message the admin has not read."""
    return {"unreadCount": store.unread_conversation_count(current_user.id, Role.ADMIN)}


@router.get("/user-notifications/unread-count")
def user_unread_count(current_user: User = Depends(require_buyer)):
    return {"unreadCount": store.unread_conversation_count(current_user.id, Role.USER)}


@router.delete("/messages/{message_id}")
async def delete_message(message_id: int, current_user: User = Depends(get_current_user)):
    """Delete one message. Allowed for its sender and for the conversation's admin."""
    message = store.get(message_id)
    if message is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Message not found"
        )

    key = ConversationKey.try_parse(message.conversation_key)
    is_owning_admin = current_user.role == Role.ADMIN and key is not None and key.admin_id == current_user.id
    if message.sender_id != current_user.id and not is_owning_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not allowed to delete this message"
        )

    deleted = store.delete_message(message_id)
    if deleted is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Message not found"
        )
    await event_bus.emit(MESSAGE_DELETED, deleted)
    return {"status": "success", "message": "Message deleted"}


@router.delete("/conversations/{conversation_key}")
async def delete_admin_conversation(conversation_key: str, current_user: User = Depends(require_admin)):
    key = _parse_key_or_400(conversation_key)
    if key.admin_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not allowed to delete this conversation"
        )
    return await _delete_conversation(conversation_key)


@router.delete("/user/conversations/{conversation_key}")
async def delete_user_conversation(conversation_key: str, current_user: User = Depends(require_buyer)):
    """A buyer may delete only conversations carrying its own id."""
    key = _parse_key_or_400(conversation_key)
    if key.buyer_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not allowed to delete this conversation"
        )
    return await _delete_conversation(conversation_key)
