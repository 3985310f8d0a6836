from typing import Callable, Dict, Optional, Union

from backend import Connection, ConnectionRegistry, RoomStore, now_ms
from exceptions import (
    DeliveryFailureError,
    RoomAlreadyExistsError,
    SignalingError,
    UserNotInRoomError,
)
from logging_config import get_logger
from schemas.envelopes import (
    Answer,
    ChatMessage,
    CreateRoom,
    GetRoomInfo,
    IceCandidate,
    InboundType,
    JoinRoom,
    LeaveRoom,
    Offer,
    OutboundType,
    UserStatusUpdate,
    decode_envelope,
)

logger = get_logger(__name__)


def error_envelope(error: SignalingError) -> dict:
    return {"type": OutboundType.ERROR.value, "message": error.message, "code": error.code}


class SignalingRelay:
    """Routes decoded envelopes from one connection to the room store.

    Every handler is synchronous and only touches the two stores plus outbound sends.
    Failures never escape ``handle_message``: they become an ``error`` envelope for the
    sender, except for ICE candidates whose failures are only logged.
    """

    def __init__(self, registry: ConnectionRegistry, rooms: RoomStore):
        self.registry = registry
        self.rooms = rooms
        self._handlers: Dict[InboundType, Callable] = {
            InboundType.CREATE_ROOM: self.handle_create_room,
            InboundType.JOIN_ROOM: self.handle_join_room,
            InboundType.LEAVE_ROOM: self.handle_leave_room,
            InboundType.OFFER: self.handle_session_description,
            InboundType.ANSWER: self.handle_session_description,
            InboundType.ICE_CANDIDATE: self.handle_ice_candidate,
            InboundType.GET_ROOM_INFO: self.handle_get_room_info,
            InboundType.MESSAGE: self.handle_chat_message,
            InboundType.USER_STATUS_UPDATE: self.handle_user_status_update,
        }

    def handle_message(self, connection_id: str, data: Union[str, bytes]) -> None:
        connection = self.registry.get(connection_id)
        if connection is None:
            logger.warning(f"Dropping message for unknown connection {connection_id}")
            return

        message_type = None
        try:
            envelope = decode_envelope(data)
            message_type = envelope.type
            logger.debug(f"Received {message_type} from connection {connection_id}")
            self._handlers[InboundType(message_type)](connection, envelope)
        except SignalingError as e:
            message_type = message_type or getattr(e, "message_type", None)
            if message_type == InboundType.ICE_CANDIDATE.value:
                logger.info(f"Dropped ICE candidate from {connection.user_id}: {e.message}")
                return
            logger.warning(f"Rejected message from connection {connection_id}: {e.message}")
            connection.send(error_envelope(e))
        except Exception as e:
            logger.error(f"Error handling message from connection {connection_id}: {e}", exc_info=True)
            if message_type != InboundType.ICE_CANDIDATE.value:
                connection.send({"type": OutboundType.ERROR.value, "message": "Internal server error", "code": "INTERNAL_ERROR"})

    def handle_create_room(self, connection: Connection, envelope: CreateRoom) -> None:
        try:
            self.rooms.create_room(envelope.room_id)
        except RoomAlreadyExistsError as e:
            logger.info(f"Room {envelope.room_id} already exists, requested by {connection.connection_id}")
            connection.send({"type": OutboundType.ROOM_EXISTS.value, "roomId": envelope.room_id, "message": e.message})
            return
        connection.send({"type": OutboundType.ROOM_CREATED.value, "roomId": envelope.room_id})

    def handle_join_room(self, connection: Connection, envelope: JoinRoom) -> None:
        room_id, user_id = envelope.room_id, envelope.user_id
        existing = self.rooms.join_room(room_id, connection, user_id)

        connection.send({"type": OutboundType.JOINED.value, "roomId": room_id, "userId": user_id})
        if existing:
            connection.send({"type": OutboundType.EXISTING_USERS.value, "roomId": room_id, "users": existing})
        self.rooms.broadcast_to_others(
            room_id,
            connection.connection_id,
            {"type": OutboundType.USER_JOINED.value, "roomId": room_id, "userId": user_id},
        )

    def handle_leave_room(self, connection: Connection, envelope: Optional[LeaveRoom] = None) -> None:
        result = self.rooms.leave_room(connection)
        if result is None:
            raise UserNotInRoomError()
        connection.send({"type": OutboundType.LEFT.value, "roomId": result.room_id, "userId": result.user_id})
        if result.remaining:
            self.rooms.broadcast_to_others(
                result.room_id,
                connection.connection_id,
                {"type": OutboundType.USER_LEFT.value, "roomId": result.room_id, "userId": result.user_id},
            )

    def handle_session_description(self, connection: Connection, envelope: Union[Offer, Answer]) -> None:
        self._require_room(connection)
        payload = {"type": envelope.type, "sdp": envelope.sdp}
        if not self.rooms.forward(connection.room_id, connection.user_id, envelope.target_user_id, payload):
            raise DeliveryFailureError(envelope.target_user_id, connection.room_id)
        logger.debug(f"Forwarded {envelope.type} {connection.user_id} -> {envelope.target_user_id}")

    def handle_ice_candidate(self, connection: Connection, envelope: IceCandidate) -> None:
        self._require_room(connection)
        payload = {
            "type": OutboundType.ICE_CANDIDATE.value,
            "candidate": envelope.candidate,
            "sdpMid": envelope.sdp_mid,
            "sdpMLineIndex": envelope.sdp_m_line_index,
        }
        if not self.rooms.forward(connection.room_id, connection.user_id, envelope.target_user_id, payload):
            raise DeliveryFailureError(envelope.target_user_id, connection.room_id)

    def handle_get_room_info(self, connection: Connection, envelope: Optional[GetRoomInfo] = None) -> None:
        rooms = [room.as_dict() for room in self.rooms.snapshot()]
        connection.send({"type": OutboundType.ROOM_INFO.value, "rooms": rooms, "totalRooms": len(rooms)})

    def handle_chat_message(self, connection: Connection, envelope: ChatMessage) -> None:
        self._require_room(connection)
        self.rooms.broadcast_to_others(
            connection.room_id,
            connection.connection_id,
            {
                "type": OutboundType.MESSAGE.value,
                "text": envelope.text,
                "from": connection.user_id,
                "roomId": connection.room_id,
                "timestamp": now_ms(),
            },
        )

    def handle_user_status_update(self, connection: Connection, envelope: UserStatusUpdate) -> None:
        self._require_room(connection)
        self.rooms.broadcast_to_others(
            connection.room_id,
            connection.connection_id,
            {
                "type": OutboundType.USER_STATUS_UPDATE.value,
                "status": envelope.status,
                "from": connection.user_id,
                "roomId": connection.room_id,
                "timestamp": now_ms(),
            },
        )

    @staticmethod
    def _require_room(connection: Connection) -> None:
        if not connection.is_bound:
            raise UserNotInRoomError("Join a room before sending signaling messages")
