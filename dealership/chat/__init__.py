"""
Real-time buyer/admin conversations: key scheme, access guard, message
store, room routing and retention.
"""
from dealership.chat.identity import ConversationKey, InvalidIdentity, derive_key, parse_admin_id, parse_buyer_id
from dealership.chat.guard import Decision, Identity, authorize_join, authorize_send
from dealership.chat.store import MessageStore, MessageStoreError
from dealership.chat.rooms import Connection, RoomRouter

__all__ = [
    "ConversationKey",
    "InvalidIdentity",
    "derive_key",
    "parse_admin_id",
    "parse_buyer_id",
    "Decision",
    "Identity",
    "authorize_join",
    "authorize_send",
    "MessageStore",
    "MessageStoreError",
    "Connection",
    "RoomRouter",
]
