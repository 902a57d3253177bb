"""
Notification fan-out.

Pushes new-message and read-state signals to the counterpart's open
connections so clients never have to poll. Admins get the message itself
(their conversation list previews it); buyers only get a badge refresh.
"""
import logging

from dealership.events.bus import (
    event_bus,
    MESSAGE_CREATED,
    MESSAGE_DELETED,
    CONVERSATION_DELETED,
    CONVERSATIONS_CHANGED,
    NOTIFICATIONS_CLEARED,
)
from dealership.models.models import Role
from dealership.models.schemas import StoredMessage

logger = logging.getLogger(__name__)

RESET_ACKS = {
    Role.ADMIN: 'notifications_were_reset',
    Role.USER: 'user_notifications_were_reset',
}


def _rooms():
    # Import here to avoid circular imports
    from dealership.websocket import rooms
    return rooms


@event_bus.on(MESSAGE_CREATED)
async def broadcast_message_to_room(message: StoredMessage):
    delivered = await _rooms().broadcast(message.conversation_key, 'receive_message', message.to_wire())
    logger.debug(f"Broadcasted message {message.id} to {delivered} connection(s) in {message.conversation_key}")


@event_bus.on(MESSAGE_CREATED)
async def notify_receiver(message: StoredMessage):
    """Push to every open connection of the receiver, in the receiver's role."""
    rooms = _rooms()
    receiver_role = message.receiver_role

    if receiver_role == Role.ADMIN:
        delivered = await rooms.send_to_subject(
            message.receiver_id, Role.ADMIN, 'admin_new_unread_message',
            {'conversationKey': message.conversation_key, 'message': message.to_wire()},
        )
    else:
        delivered = await rooms.send_to_subject(
            message.receiver_id, Role.USER, 'update_notification_count',
        )
    logger.debug(f"Notified {delivered} connection(s) of {receiver_role.value} {message.receiver_id}")


@event_bus.on(MESSAGE_CREATED)
async def refresh_after_new_message(message: StoredMessage):
    await event_bus.emit(CONVERSATIONS_CHANGED, message.conversation_key)


@event_bus.on(CONVERSATIONS_CHANGED)
async def refresh_admin_conversation_lists(data=None):
    """Every admin connection reloads its list, whether or not it is in a room."""
    await _rooms().broadcast_to_role(Role.ADMIN, 'admin_refresh_conversations')


@event_bus.on(NOTIFICATIONS_CLEARED)
async def acknowledge_reset(data: dict):
    """Ack only the connection that asked for the reset."""
    connection = data['connection']
    await connection.send_event(RESET_ACKS[Role(data['role'])])


@event_bus.on(MESSAGE_DELETED)
async def broadcast_message_deleted(message: StoredMessage):
    await _rooms().broadcast(message.conversation_key, 'message_deleted', {'messageId': message.id})
    await event_bus.emit(CONVERSATIONS_CHANGED, message.conversation_key)


@event_bus.on(CONVERSATION_DELETED)
async def broadcast_conversation_deleted(key: str):
    await _rooms().broadcast(key, 'conversation_deleted', key)
    await event_bus.emit(CONVERSATIONS_CHANGED, key)


# This module is imported at startup to register the handlers
logger.info("Chat fan-out handlers registered")
