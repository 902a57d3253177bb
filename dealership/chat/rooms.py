"""
Room router: live connections, their single active room, and the
(subject, role) index used to reach a counterpart's open tabs.

State machine per connection:

    Unattached --join (authorized)--> Attached(key) --leave/disconnect--> Unattached

An unauthorized join leaves the connection exactly as it was.
"""
from typing import Any, Dict, Iterable, Optional, Set, Tuple
import json
import logging
import uuid

from fastapi import WebSocket

from dealership.chat.guard import Identity, authorize_join
from dealership.chat.store import MessageStore
from dealership.models.models import Role

logger = logging.getLogger(__name__)


class Connection:
    """One live realtime link. Never persisted."""

    def __init__(self, websocket: WebSocket):
        self.id = uuid.uuid4().hex
        self.websocket = websocket
        self.identity: Optional[Identity] = None
        self.room: Optional[str] = None

    async def send_event(self, event: str, data: Any = None) -> bool:
        """Send one ``{"type", "data"}`` frame; a dead socket just returns False."""
        try:
            await self.websocket.send_text(json.dumps({"type": event, "data": data}))
            return True
        except Exception as e:
            logger.debug(f"Dropping '{event}' for connection {self.id}: {e}")
            return False

    def __repr__(self) -> str:
        who = f"{self.identity.role.value}:{self.identity.subject_id}" if self.identity else "anonymous"
        return f"<Connection {self.id[:8]} {who} room={self.room}>"


class RoomRouter:
    def __init__(self, store: MessageStore):
        self.store = store
        self.connections: Set[Connection] = set()
        # Store members by room: {conversation_key: {connection, ...}}
        self.rooms: Dict[str, Set[Connection]] = {}
        # Open connections per verified subject: {(subject_id, role): {connection, ...}}
        self.subjects: Dict[Tuple[int, Role], Set[Connection]] = {}

    def register(self, connection: Connection):
        self.connections.add(connection)

    def identify(self, connection: Connection, identity: Identity):
        """Attach a verified identity and (re)index the connection under it."""
        if connection.identity == identity:
            return
        self._unindex(connection)
        connection.identity = identity
        self.subjects.setdefault((identity.subject_id, identity.role), set()).add(connection)

    def _unindex(self, connection: Connection):
        if connection.identity is None:
            return
        slot = (connection.identity.subject_id, connection.identity.role)
        members = self.subjects.get(slot)
        if members is not None:
            members.discard(connection)
            if not members:
                del self.subjects[slot]

    def _detach(self, connection: Connection):
        key = connection.room
        if key is None:
            return
        members = self.rooms.get(key)
        if members is not None:
            members.discard(connection)
            # Clean up empty rooms
            if not members:
                del self.rooms[key]
        connection.room = None
        logger.debug(f"{connection!r} left {key}")

    async def join(self, connection: Connection, key: str, identity: Identity) -> bool:
        """
        Attach the connection to ``key`` and replay its history to it alone.

        Returns False, with no state changed, if the identity may not join.
        A failed history read raises ``MessageStoreError``, also before any
        state has changed.
        """
        if not authorize_join(identity, key):
            return False

        history = self.store.history(key)

        self.identify(connection, identity)
        if connection.room != key:
            self._detach(connection)
            self.rooms.setdefault(key, set()).add(connection)
            connection.room = key
        logger.info(f"{connection!r} joined {key}")

        await connection.send_event("load_messages", [m.to_wire() for m in history])
        return True

    def leave(self, connection: Connection, key: str):
        """Idempotent; leaving a room the connection is not in does nothing."""
        if connection.room == key:
            self._detach(connection)

    def disconnect(self, connection: Connection):
        """Drop every trace of the connection, whether or not it ever joined."""
        self._detach(connection)
        self._unindex(connection)
        self.connections.discard(connection)

    def members(self, key: str) -> Set[Connection]:
        return set(self.rooms.get(key, ()))

    def connections_for(self, subject_id: int, role: Role) -> Set[Connection]:
        return set(self.subjects.get((subject_id, Role(role)), ()))

    def connections_with_role(self, role: Role) -> Set[Connection]:
        found: Set[Connection] = set()
        for (_, slot_role), members in self.subjects.items():
            if slot_role == role:
                found |= members
        return found

    async def _deliver(self, targets: Iterable[Connection], event: str, data: Any) -> int:
        delivered = 0
        for connection in list(targets):
            if await connection.send_event(event, data):
                delivered += 1
        return delivered

    async def broadcast(self, key: str, event: str, data: Any = None) -> int:
        """Deliver to every member of room ``key`` and to no one else."""
        return await self._deliver(self.members(key), event, data)

    async def send_to_subject(self, subject_id: int, role: Role, event: str, data: Any = None) -> int:
        return await self._deliver(self.connections_for(subject_id, role), event, data)

    async def broadcast_to_role(self, role: Role, event: str, data: Any = None) -> int:
        return await self._deliver(self.connections_with_role(role), event, data)
