"""Errors raised while handling signaling envelopes.

Every error carries a stable ``code`` and a human readable message. The relay turns
them into ``error`` envelopes for the sender; none of them is fatal to the connection.
"""
from typing import Iterable, Optional


class SignalingError(Exception):
    code = "SIGNALING_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class MalformedMessageError(SignalingError):
    code = "MALFORMED_MESSAGE"


class UnknownMessageTypeError(SignalingError):
    code = "UNKNOWN_MESSAGE_TYPE"

    def __init__(self, message_type: str):
        super().__init__(f"Unknown message type: {message_type}")
        self.message_type = message_type


class EnvelopeValidationError(SignalingError):
    code = "VALIDATION_ERROR"

    def __init__(self, message_type: str, fields: Optional[Iterable[str]] = None):
        self.message_type = message_type
        self.fields = sorted(set(fields or []))
        if self.fields:
            message = f"Invalid or missing fields for {message_type}: {', '.join(self.fields)}"
        else:
            message = f"Invalid {message_type} message"
        super().__init__(message)


class RoomNotFoundError(SignalingError):
    code = "ROOM_NOT_FOUND"

    def __init__(self, room_id: str):
        super().__init__(f"Room {room_id} does not exist")
        self.room_id = room_id


class RoomAlreadyExistsError(SignalingError):
    code = "ROOM_EXISTS"

    def __init__(self, room_id: str):
        super().__init__(f"Room {room_id} already exists")
        self.room_id = room_id


class DuplicateUserError(SignalingError):
    code = "DUPLICATE_USER"

    def __init__(self, room_id: str, user_id: str):
        super().__init__(f"User {user_id} is already in room {room_id}")
        self.room_id = room_id
        self.user_id = user_id


class UserNotInRoomError(SignalingError):
    code = "USER_NOT_IN_ROOM"

    def __init__(self, message: str = "Not in a room"):
        super().__init__(message)


class AlreadyInRoomError(SignalingError):
    code = "ALREADY_IN_ROOM"

    def __init__(self, room_id: str):
        super().__init__(f"Already in room {room_id}, leave it before joining another")
        self.room_id = room_id


class DeliveryFailureError(SignalingError):
    code = "DELIVERY_FAILED"

    def __init__(self, target_user_id: str, room_id: str):
        super().__init__(f"User {target_user_id} is not reachable in room {room_id}")
        self.target_user_id = target_user_id
        self.room_id = room_id


class ConnectionClosedError(SignalingError):
    code = "CONNECTION_CLOSED"

    def __init__(self, connection_id: str):
        super().__init__(f"Connection {connection_id} is closed")
        self.connection_id = connection_id
