"""
Access guard for realtime conversation events.

Every decision is a plain value. A denial is never raised and never echoed
to the client: the offending event is dropped and an audit entry is written
to the ``dealership.security`` logger. Only ids and roles are logged, never
payload content.
"""
import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from dealership.chat.identity import parse_admin_id, parse_buyer_id
from dealership.models.models import Role
from dealership.models.schemas import MessageClaim, TokenData

if TYPE_CHECKING:
    from dealership.chat.rooms import Connection

audit_logger = logging.getLogger("dealership.security")


class Decision(enum.Enum):
    ALLOWED = "allowed"
    DENIED = "denied"

    def __bool__(self) -> bool:
        return self is Decision.ALLOWED


@dataclass(frozen=True)
class Identity:
    """Verified (subject, role) pair attached to a connection."""
    subject_id: int
    role: Role
    display_name: Optional[str] = None

    @classmethod
    def from_token(cls, token_data: TokenData) -> "Identity":
        return cls(
            subject_id=token_data.subject_id,
            role=token_data.role,
            display_name=token_data.display_name,
        )


def _deny(reason: str, **fields) -> Decision:
    details = " ".join(f"{k}={v}" for k, v in fields.items())
    audit_logger.warning(f"Denied {reason}: {details}")
    return Decision.DENIED


def _owns_side(identity: Identity, key: str) -> bool:
    if identity.role == Role.ADMIN:
        return identity.subject_id == parse_admin_id(key)
    if identity.role == Role.USER:
        return identity.subject_id == parse_buyer_id(key)
    return False


def authorize_join(identity: Optional[Identity], key: str) -> Decision:
    """Admins may join their own admin side, buyers their own user side."""
    if identity is None:
        return _deny("join", subject=None, key=key)
    if not _owns_side(identity, key):
        return _deny(
            "join",
            subject=identity.subject_id,
            role=identity.role.value,
            key=key,
            key_buyer=parse_buyer_id(key),
            key_admin=parse_admin_id(key),
        )
    return Decision.ALLOWED


def authorize_send(connection: "Connection", claim: MessageClaim) -> Decision:
    """
    Re-check a send against the connection's verified state.

    The identity and room are the ones recorded at join time, so the check
    holds even if the client changed its mind between join and send.
    """
    identity = connection.identity
    key = claim.conversation_key
    if identity is None:
        return _deny("send from unidentified connection", connection=connection.id, key=key)
    if claim.sender_id != identity.subject_id:
        return _deny(
            "send as another subject",
            connection=connection.id,
            subject=identity.subject_id,
            claimed_sender=claim.sender_id,
        )
    if connection.room != key:
        return _deny(
            "send outside the joined room",
            subject=identity.subject_id,
            room=connection.room,
            key=key,
        )
    if not authorize_join(identity, key):
        return Decision.DENIED

    counterpart = parse_buyer_id(key) if identity.role == Role.ADMIN else parse_admin_id(key)
    if claim.receiver_id != counterpart:
        return _deny(
            "send to a receiver outside the conversation",
            subject=identity.subject_id,
            receiver=claim.receiver_id,
            key=key,
        )
    return Decision.ALLOWED


def authorize_clear(connection: "Connection", subject_id: int, role: Role) -> Decision:
    """A connection may only clear its own notifications."""
    identity = connection.identity
    if identity is None or identity.subject_id != subject_id or identity.role != role:
        return _deny(
            "notification reset for another subject",
            connection=connection.id,
            subject=identity.subject_id if identity else None,
            target=subject_id,
            target_role=role.value,
        )
    return Decision.ALLOWED
