"""
Message store: the only writer of the ``messages`` table.

Every operation runs in its own short session and commits at most once.
Bodies are encrypted at rest and decrypted on the way out; callers only
ever see ``StoredMessage`` values.
"""
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Dict, Iterator, List, Optional
import logging

from sqlalchemy import distinct, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from dealership.chat.identity import ConversationKey
from dealership.database import SessionLocal
from dealership.models.models import Message, Role, User, Vehicle, utcnow
from dealership.models.schemas import ConversationSummary, MessageClaim, StoredMessage
from dealership.utils.encryption import decrypt_message, encrypt_message

logger = logging.getLogger(__name__)


class MessageStoreError(Exception):
    """A persistence failure. The triggering action is lost; no retry."""


def _read_flag(role: Role):
    return Message.read_by_admin if role == Role.ADMIN else Message.read_by_user


def _like_escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("_", "\\_").replace("%", "\\%")


def to_stored(message: Message) -> StoredMessage:
    return StoredMessage(
        id=message.id,
        conversation_key=message.conversation_key,
        sender_id=message.sender_id,
        sender_name=message.sender.name if message.sender else None,
        sender_role=message.sender_role,
        receiver_id=message.receiver_id,
        listing_id=message.listing_id,
        body=decrypt_message(message.body),
        created_at=message.created_at,
        read_by_admin=message.read_by_admin,
        read_by_user=message.read_by_user,
    )


class MessageStore:
    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self._session_factory = session_factory

    @contextmanager
    def _session(self, action: str) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Message store failed to {action}: {e}", exc_info=True)
            raise MessageStoreError(f"Failed to {action}") from e
        finally:
            db.close()

    def append(self, claim: MessageClaim, sender_role: Role) -> StoredMessage:
        """
        Persist a validated send.

        The sender's own side starts read, the counterpart's side unread.
        The timestamp is taken from the server clock.
        """
        sender_role = Role(sender_role)
        listing_id = claim.listing_id
        if listing_id is None:
            key = ConversationKey.try_parse(claim.conversation_key)
            listing_id = key.listing_id if key else None

        with self._session("append message") as db:
            message = Message(
                conversation_key=claim.conversation_key,
                sender_id=claim.sender_id,
                receiver_id=claim.receiver_id,
                listing_id=listing_id,
                sender_role=sender_role,
                body=encrypt_message(claim.body),
                created_at=utcnow(),
                read_by_admin=sender_role == Role.ADMIN,
                read_by_user=sender_role == Role.USER,
            )
            db.add(message)
            db.commit()
            db.refresh(message)
            stored = to_stored(message)

        logger.debug(f"Stored message {stored.id} in {stored.conversation_key}")
        return stored

    def history(self, key: str) -> List[StoredMessage]:
        """Full history of one conversation, oldest first."""
        with self._session("load history") as db:
            messages = (
                db.query(Message)
                .options(selectinload(Message.sender))
                .filter(Message.conversation_key == key)
                .order_by(Message.created_at.asc(), Message.id.asc())
                .all()
            )
            return [to_stored(m) for m in messages]

    def get(self, message_id: int) -> Optional[StoredMessage]:
        with self._session("load message") as db:
            message = db.get(Message, message_id)
            return to_stored(message) if message else None

    def mark_read(self, subject_id: int, role: Role, key: Optional[str] = None) -> int:
        """Set the role's read flag on unread rows addressed to the subject."""
        flag = _read_flag(Role(role))
        with self._session("mark messages read") as db:
            query = db.query(Message).filter(
                Message.receiver_id == subject_id,
                flag.is_(False),
            )
            if key is not None:
                query = query.filter(Message.conversation_key == key)
            updated = query.update({flag: True}, synchronize_session=False)
            db.commit()
        logger.debug(f"Marked {updated} message(s) read for {role} {subject_id} in {key or 'all conversations'}")
        return updated

    def purge_older_than(self, horizon: datetime) -> int:
        """Hard-delete rows created strictly before the horizon."""
        with self._session("purge old messages") as db:
            deleted = (
                db.query(Message)
                .filter(Message.created_at < horizon)
                .delete(synchronize_session=False)
            )
            db.commit()
        return deleted

    def unread_conversation_count(self, subject_id: int, role: Role) -> int:
        """Number of distinct conversations with an unread row for the subject."""
        flag = _read_flag(Role(role))
        with self._session("count unread conversations") as db:
            count = (
                db.query(func.count(distinct(Message.conversation_key)))
                .filter(Message.receiver_id == subject_id, flag.is_(False))
                .scalar()
            )
        return count or 0

    def delete_message(self, message_id: int) -> Optional[StoredMessage]:
        """Delete one row and return what it was, or None if it did not exist."""
        with self._session("delete message") as db:
            message = db.get(Message, message_id)
            if message is None:
                return None
            stored = to_stored(message)
            db.delete(message)
            db.commit()
        return stored

    def delete_conversation(self, key: str) -> int:
        with self._session("delete conversation") as db:
            deleted = (
                db.query(Message)
                .filter(Message.conversation_key == key)
                .delete(synchronize_session=False)
            )
            db.commit()
        return deleted

    def delete_listing_conversations(self, listing_id: int) -> List[str]:
        """
        Delete every conversation held about a listing; returns their keys.

        Rows are matched by the key as well as by ``listing_id``, which may
        already be NULL for rows whose vehicle went away earlier.
        """
        pattern = f"%{_like_escape(f'_vehicle_{listing_id}_admin_')}%"
        with self._session("delete listing conversations") as db:
            scope = db.query(Message).filter(
                or_(
                    Message.listing_id == listing_id,
                    Message.conversation_key.like(pattern, escape="\\"),
                )
            )
            keys = sorted({key for (key,) in scope.with_entities(Message.conversation_key).distinct()})
            if not keys:
                return []
            deleted = (
                db.query(Message)
                .filter(Message.conversation_key.in_(keys))
                .delete(synchronize_session=False)
            )
            db.commit()
        logger.info(f"Deleted {deleted} message(s) in {len(keys)} conversation(s) about listing {listing_id}")
        return keys

    def conversations_for(self, subject_id: int, role: Role) -> List[ConversationSummary]:
        """
        Derived view of the subject's conversations, most recent first.

        Conversations are never stored; each one is the group of rows that
        share a key on the subject's side.
        """
        role = Role(role)
        if role == Role.ADMIN:
            pattern = f"%{_like_escape(f'_admin_{subject_id}')}"
        else:
            pattern = f"{_like_escape(f'user_{subject_id}_')}%"
        flag = _read_flag(role)

        with self._session("list conversations") as db:
            rows = (
                db.query(Message)
                .filter(Message.conversation_key.like(pattern, escape="\\"))
                .order_by(Message.created_at.asc(), Message.id.asc())
                .all()
            )

            latest: Dict[str, Message] = {}
            unread: Dict[str, int] = {}
            keys: Dict[str, ConversationKey] = {}
            for row in rows:
                key = ConversationKey.try_parse(row.conversation_key)
                if key is None:
                    continue
                owner = key.admin_id if role == Role.ADMIN else key.buyer_id
                if owner != subject_id:
                    continue
                keys[row.conversation_key] = key
                latest[row.conversation_key] = row
                if row.receiver_id == subject_id and not getattr(row, flag.key):
                    unread[row.conversation_key] = unread.get(row.conversation_key, 0) + 1

            if not latest:
                return []

            counterpart_ids = {
                (k.buyer_id if role == Role.ADMIN else k.admin_id) for k in keys.values()
            }
            counterparts = {
                u.id: u
                for u in db.query(User).filter(
                    User.id.in_(counterpart_ids), User.role == role.counterpart
                )
            }
            listing_ids = {m.listing_id for m in latest.values() if m.listing_id is not None}
            vehicles = {
                v.id: v for v in db.query(Vehicle).filter(Vehicle.id.in_(listing_ids))
            } if listing_ids else {}

            summaries = []
            for key_str, message in latest.items():
                key = keys[key_str]
                counterpart_id = key.buyer_id if role == Role.ADMIN else key.admin_id
                counterpart = counterparts.get(counterpart_id)
                if counterpart is None:
                    continue
                vehicle = vehicles.get(message.listing_id) if message.listing_id else None
                summaries.append(ConversationSummary(
                    conversation_key=key_str,
                    last_message=decrypt_message(message.body),
                    last_message_at=message.created_at,
                    listing_id=message.listing_id,
                    vehicle_brand=vehicle.brand if vehicle else None,
                    vehicle_model=vehicle.model if vehicle else None,
                    counterpart_id=counterpart_id,
                    counterpart_name=counterpart.name,
                    unread_count=unread.get(key_str, 0),
                ))

        summaries.sort(key=lambda s: s.last_message_at, reverse=True)
        return summaries
