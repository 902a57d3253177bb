from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from typing import Any, Awaitable, Callable, Dict, Optional
import json
import logging

from dealership.chat.guard import Identity, authorize_clear, authorize_send
from dealership.chat.identity import ConversationKey
from dealership.chat.rooms import Connection, RoomRouter
from dealership.chat.store import MessageStore, MessageStoreError
from dealership.events import event_bus
from dealership.events.bus import MESSAGE_CREATED, NOTIFICATIONS_CLEARED
from dealership.models.models import Role
from dealership.models.schemas import (
    AdminClearedNotifications,
    JoinRoom,
    LeaveRoom,
    MessageClaim,
    UserClearedNotifications,
)
from dealership.utils.auth import decode_token

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("dealership.security")

store = MessageStore()
rooms = RoomRouter(store)

EventHandler = Callable[[Connection, Any], Awaitable[None]]


class DroppedEvent(Exception):
    """A client event that is discarded without any reply."""


def _conversation_key(key: str) -> str:
    if ConversationKey.try_parse(key) is None:
        raise DroppedEvent(f"malformed conversation key {key!r}")
    return key


async def on_join_room(connection: Connection, data: Any):
    request = JoinRoom.model_validate(data)
    key = _conversation_key(request.conversation_key)

    token_data = decode_token(request.token)
    if token_data is None:
        audit_logger.warning(f"Join with invalid or expired token: connection={connection.id} key={key}")
        return

    await rooms.join(connection, key, Identity.from_token(token_data))


async def on_leave_room(connection: Connection, data: Any):
    request = LeaveRoom.model_validate(data)
    rooms.leave(connection, request.conversation_key)


async def on_send_message(connection: Connection, data: Any):
    claim = MessageClaim.model_validate(data)
    _conversation_key(claim.conversation_key)

    if not authorize_send(connection, claim):
        return

    stored = store.append(claim, connection.identity.role)
    await event_bus.emit(MESSAGE_CREATED, stored)


async def _clear_notifications(connection: Connection, subject_id: int, role: Role, key: Optional[str]):
    if not authorize_clear(connection, subject_id, role):
        return
    updated = store.mark_read(subject_id, role, key)
    logger.info(f"{role.value} {subject_id} cleared {updated} notification(s) in {key or 'all conversations'}")
    await event_bus.emit(NOTIFICATIONS_CLEARED, {
        'connection': connection,
        'subject_id': subject_id,
        'role': role,
        'conversation_key': key,
    })


async def on_admin_cleared_notifications(connection: Connection, data: Any):
    request = AdminClearedNotifications.model_validate(data)
    await _clear_notifications(connection, request.admin_id, Role.ADMIN, request.conversation_key)


async def on_user_cleared_notifications(connection: Connection, data: Any):
    request = UserClearedNotifications.model_validate(data)
    await _clear_notifications(connection, request.user_id, Role.USER, request.conversation_key)


EVENT_HANDLERS: Dict[str, EventHandler] = {
    'join_room': on_join_room,
    'leave_room': on_leave_room,
    'send_message': on_send_message,
    'admin_cleared_notifications': on_admin_cleared_notifications,
    'user_cleared_notifications': on_user_cleared_notifications,
}


async def dispatch(connection: Connection, raw: str):
    """
    Route one client frame to its handler.

    Nothing is ever sent back on failure: bad frames, validation errors,
    denials and store errors all end as a log line.
    """
    try:
        frame = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Dropping non-JSON frame from connection {connection.id}")
        return
    if not isinstance(frame, dict) or not isinstance(frame.get("type"), str):
        logger.warning(f"Dropping frame without an event type from connection {connection.id}")
        return

    event = frame["type"]
    handler = EVENT_HANDLERS.get(event)
    if handler is None:
        logger.debug(f"Ignoring unknown event '{event}' from connection {connection.id}")
        return

    try:
        await handler(connection, frame.get("data"))
    except ValidationError as e:
        logger.warning(f"Dropping invalid '{event}' from connection {connection.id}: {e.error_count()} error(s)")
    except DroppedEvent as e:
        logger.warning(f"Dropping '{event}' from connection {connection.id}: {e}")
    except MessageStoreError:
        # Already logged by the store; the sender has to re-send
        pass


async def handle_websocket(websocket: WebSocket, token: Optional[str] = None):
    """
    Serve one realtime connection until it disconnects.

    ``token`` is optional: with it the connection is indexed right away and
    receives notification pushes before joining any room.
    """
    identity = None
    if token is not None:
        token_data = decode_token(token)
        if token_data is None:
            await websocket.close(code=1008, reason="Invalid token")
            return
        identity = Identity.from_token(token_data)

    await websocket.accept()
    connection = Connection(websocket)
    rooms.register(connection)
    if identity is not None:
        rooms.identify(connection, identity)
    logger.info(f"Realtime connection opened: {connection!r}")

    try:
        while True:
            raw = await websocket.receive_text()
            await dispatch(connection, raw)
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"Realtime connection {connection.id} failed: {e}", exc_info=True)
    finally:
        rooms.disconnect(connection)
        logger.info(f"Realtime connection closed: {connection!r}")
