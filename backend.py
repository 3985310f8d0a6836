import json
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from exceptions import (
    AlreadyInRoomError,
    ConnectionClosedError,
    DuplicateUserError,
    RoomAlreadyExistsError,
    RoomNotFoundError,
)
from logging_config import get_logger
from transport import Transport

logger = get_logger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class Connection:
    """One live client session and its room binding."""

    def __init__(self, connection_id: str, transport: Transport):
        self.connection_id = connection_id
        self.transport = transport
        self.room_id: Optional[str] = None
        self.user_id: Optional[str] = None
        self.connected_at = now_ms()

    @property
    def is_open(self) -> bool:
        return self.transport.is_open

    @property
    def is_bound(self) -> bool:
        return self.room_id is not None

    def bind(self, room_id: str, user_id: str) -> None:
        self.room_id = room_id
        self.user_id = user_id

    def unbind(self) -> None:
        self.room_id = None
        self.user_id = None

    def send(self, payload: dict) -> bool:
        """Queue one envelope for the client. Returns False if it cannot be delivered."""
        try:
            return self.transport.send_text(json.dumps(payload))
        except Exception as e:
            logger.warning(f"Send to connection {self.connection_id} failed: {e}")
            return False

    def __repr__(self) -> str:
        return f"Connection({self.connection_id!r}, room={self.room_id!r}, user={self.user_id!r})"


class ConnectionRegistry:
    def __init__(self):
        self._connections: Dict[str, Connection] = {}
        self._lock = threading.Lock()

    def register(self, transport: Transport) -> Connection:
        connection = Connection(uuid.uuid4().hex, transport)
        with self._lock:
            self._connections[connection.connection_id] = connection
            total = len(self._connections)
        logger.debug(f"Registered connection {connection.connection_id} (total: {total})")
        return connection

    def unregister(self, connection_id: str) -> Optional[Connection]:
        with self._lock:
            connection = self._connections.pop(connection_id, None)
        if connection is not None:
            logger.debug(f"Unregistered connection {connection_id}")
        return connection

    def get(self, connection_id: str) -> Optional[Connection]:
        with self._lock:
            return self._connections.get(connection_id)

    def all(self) -> List[Connection]:
        with self._lock:
            return list(self._connections.values())

    def count(self) -> int:
        with self._lock:
            return len(self._connections)

    def reap_closed(self) -> List[Connection]:
        """Connections whose transport closed without a close event reaching us."""
        with self._lock:
            return [c for c in self._connections.values() if not c.is_open]


@dataclass
class Member:
    connection_id: str
    user_id: str
    joined_at: int = field(default_factory=now_ms)


@dataclass
class Room:
    room_id: str
    created_at: int = field(default_factory=now_ms)
    # user_id -> Member, kept in join order
    members: Dict[str, Member] = field(default_factory=dict)


@dataclass
class RoomSnapshot:
    room_id: str
    users: List[str]

    @property
    def user_count(self) -> int:
        return len(self.users)

    def as_dict(self) -> dict:
        return {"roomId": self.room_id, "userCount": self.user_count, "users": list(self.users)}


@dataclass
class LeaveResult:
    room_id: str
    user_id: str
    remaining: List[str]


class RoomStore:
    """In-memory rooms and the delivery paths that go through them.

    Members hold connection ids only and are resolved through the registry on every
    delivery. Any member found with a closed (or vanished) connection is evicted on
    the spot, its room is deleted once empty, and the remaining members get a
    ``userLeft`` notice.
    """

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry
        self._rooms: Dict[str, Room] = {}
        # Re-entrant: eviction can run while a delivery already holds the lock
        self._lock = threading.RLock()

    def create_room(self, room_id: str) -> Room:
        with self._lock:
            if room_id in self._rooms:
                raise RoomAlreadyExistsError(room_id)
            room = Room(room_id)
            self._rooms[room_id] = room
        logger.info(f"Room {room_id} created")
        return room

    def join_room(self, room_id: str, connection: Connection, user_id: str) -> List[str]:
        """Add the connection to the room as ``user_id`` and return the users already there."""
        with self._lock:
            if not connection.is_open:
                raise ConnectionClosedError(connection.connection_id)
            if connection.is_bound:
                raise AlreadyInRoomError(connection.room_id)
            room = self._rooms.get(room_id)
            if room is None:
                raise RoomNotFoundError(room_id)
            stale = room.members.get(user_id)
            if stale is not None and self._is_live(stale) is None:
                # Same user reconnecting before the old socket was reaped
                self._evict(room_id, stale)
                room = self._rooms.get(room_id)
                if room is None:
                    room = self._rooms[room_id] = Room(room_id)
            if user_id in room.members:
                raise DuplicateUserError(room_id, user_id)
            existing = list(room.members)
            room.members[user_id] = Member(connection.connection_id, user_id)
            connection.bind(room_id, user_id)
            count = len(room.members)
        logger.info(f"User {user_id} joined room {room_id} ({count} users)")
        return existing

    def leave_room(self, connection: Connection) -> Optional[LeaveResult]:
        with self._lock:
            room_id, user_id = connection.room_id, connection.user_id
            if room_id is None:
                return None
            connection.unbind()
            room = self._rooms.get(room_id)
            if room is None:
                return LeaveResult(room_id, user_id, [])
            member = room.members.get(user_id)
            if member is not None and member.connection_id == connection.connection_id:
                del room.members[user_id]
            remaining = list(room.members)
            if not remaining:
                self._delete_room(room_id)
        logger.info(f"User {user_id} left room {room_id} ({len(remaining)} remaining)")
        return LeaveResult(room_id, user_id, remaining)

    def forward(self, room_id: str, from_user_id: str, target_user_id: str, payload: dict) -> bool:
        """Deliver ``payload`` to one member, tagged with the sender's user id."""
        with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                logger.debug(f"Forward to {target_user_id} failed: room {room_id} not found")
                return False
            member = room.members.get(target_user_id)
            if member is None:
                logger.debug(f"Forward failed: {target_user_id} not in room {room_id}")
                return False
            return self._deliver(room_id, member, dict(payload, **{"from": from_user_id}))

    def broadcast_to_others(self, room_id: str, exclude_connection_id: Optional[str], payload: dict) -> int:
        """Send ``payload`` to every member except the given connection. Returns deliveries made."""
        delivered = 0
        with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                return 0
            for member in list(room.members.values()):
                if member.connection_id == exclude_connection_id:
                    continue
                # An earlier eviction in this loop may have removed the member or the room
                if room.members.get(member.user_id) is not member:
                    continue
                if self._deliver(room_id, member, payload):
                    delivered += 1
        return delivered

    def snapshot(self) -> List[RoomSnapshot]:
        with self._lock:
            self._evict_closed()
            return [RoomSnapshot(room.room_id, list(room.members)) for room in self._rooms.values()]

    def get_room(self, room_id: str) -> Optional[RoomSnapshot]:
        with self._lock:
            self._evict_closed(room_id)
            room = self._rooms.get(room_id)
            if room is None:
                return None
            return RoomSnapshot(room.room_id, list(room.members))

    def count(self) -> int:
        with self._lock:
            return len(self._rooms)

    def sweep(self, empty_room_max_age: Optional[float] = None) -> int:
        """Evict every member whose connection is closed or unregistered. Returns evictions.

        Rooms that were created but never joined are dropped once they are older than
        ``empty_room_max_age`` seconds.
        """
        with self._lock:
            evicted = self._evict_closed()
            if empty_room_max_age is not None:
                cutoff = now_ms() - int(empty_room_max_age * 1000)
                for room in list(self._rooms.values()):
                    if not room.members and room.created_at <= cutoff:
                        self._delete_room(room.room_id)
            return evicted

    # Helpers below expect self._lock to be held

    def _is_live(self, member: Member) -> Optional[Connection]:
        connection = self.registry.get(member.connection_id)
        if connection is None or not connection.is_open:
            return None
        return connection

    def _deliver(self, room_id: str, member: Member, payload: dict) -> bool:
        connection = self._is_live(member)
        if connection is not None and connection.send(payload):
            return True
        self._evict(room_id, member)
        return False

    def _evict_closed(self, room_id: Optional[str] = None) -> int:
        room_ids = [room_id] if room_id is not None else list(self._rooms)
        evicted = 0
        for rid in room_ids:
            room = self._rooms.get(rid)
            if room is None:
                continue
            for member in list(room.members.values()):
                if room.members.get(member.user_id) is member and self._is_live(member) is None:
                    self._evict(rid, member)
                    evicted += 1
        return evicted

    def _evict(self, room_id: str, member: Member) -> None:
        room = self._rooms.get(room_id)
        if room is None or room.members.get(member.user_id) is not member:
            return
        del room.members[member.user_id]
        connection = self.registry.get(member.connection_id)
        if connection is not None and connection.room_id == room_id:
            connection.unbind()
        logger.info(f"Evicted {member.user_id} from room {room_id} (connection {member.connection_id} closed)")

        if not room.members:
            self._delete_room(room_id)
            return
        notice = {"type": "userLeft", "userId": member.user_id, "roomId": room_id}
        for other in list(room.members.values()):
            if room.members.get(other.user_id) is other:
                self._deliver(room_id, other, notice)

    def _delete_room(self, room_id: str) -> None:
        if self._rooms.pop(room_id, None) is not None:
            logger.info(f"Room {room_id} is empty, deleted")
