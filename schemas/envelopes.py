"""Wire envelopes exchanged over the signaling WebSocket.

Inbound envelopes form a closed set keyed by ``type``. ``decode_envelope`` is the single
place where raw frames are parsed and checked; handlers receive validated models only.
"""
import json
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from exceptions import EnvelopeValidationError, MalformedMessageError, UnknownMessageTypeError


class InboundType(str, Enum):
    CREATE_ROOM = "createRoom"
    JOIN_ROOM = "joinRoom"
    LEAVE_ROOM = "leaveRoom"
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "iceCandidate"
    GET_ROOM_INFO = "getRoomInfo"
    MESSAGE = "message"
    USER_STATUS_UPDATE = "userStatusUpdate"


class OutboundType(str, Enum):
    CONNECTED = "connected"
    ROOM_CREATED = "roomCreated"
    ROOM_EXISTS = "roomExists"
    JOINED = "joined"
    EXISTING_USERS = "existingUsers"
    USER_JOINED = "userJoined"
    LEFT = "left"
    USER_LEFT = "userLeft"
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "iceCandidate"
    ROOM_INFO = "roomInfo"
    MESSAGE = "message"
    USER_STATUS_UPDATE = "userStatusUpdate"
    ERROR = "error"
    SERVER_SHUTDOWN = "serverShutdown"


NonEmptyStr = Annotated[str, Field(min_length=1)]
# SDP and ICE candidates are opaque; browsers send either the raw string or the init object
Opaque = Union[str, Dict[str, Any]]


class Envelope(BaseModel):
    # Unknown keys (e.g. a stale roomId on an offer) are ignored
    model_config = ConfigDict(extra="ignore")


class CreateRoom(Envelope):
    type: Literal["createRoom"]
    room_id: NonEmptyStr = Field(alias="roomId")


class JoinRoom(Envelope):
    type: Literal["joinRoom"]
    room_id: NonEmptyStr = Field(alias="roomId")
    user_id: NonEmptyStr = Field(alias="userId")


class LeaveRoom(Envelope):
    type: Literal["leaveRoom"]


class Offer(Envelope):
    type: Literal["offer"]
    target_user_id: NonEmptyStr = Field(alias="targetUserId")
    sdp: Opaque


class Answer(Envelope):
    type: Literal["answer"]
    target_user_id: NonEmptyStr = Field(alias="targetUserId")
    sdp: Opaque


class IceCandidate(Envelope):
    type: Literal["iceCandidate"]
    target_user_id: NonEmptyStr = Field(alias="targetUserId")
    candidate: Opaque
    # Required keys, but browsers legitimately send null for either
    sdp_mid: Optional[str] = Field(alias="sdpMid")
    sdp_m_line_index: Optional[int] = Field(alias="sdpMLineIndex")


class GetRoomInfo(Envelope):
    type: Literal["getRoomInfo"]


class ChatMessage(Envelope):
    type: Literal["message"]
    text: str


class UserStatusUpdate(Envelope):
    type: Literal["userStatusUpdate"]
    status: Dict[str, Any]


InboundEnvelope = Annotated[
    Union[
        CreateRoom,
        JoinRoom,
        LeaveRoom,
        Offer,
        Answer,
        IceCandidate,
        GetRoomInfo,
        ChatMessage,
        UserStatusUpdate,
    ],
    Field(discriminator="type"),
]

_inbound_adapter = TypeAdapter(InboundEnvelope)
_INBOUND_TYPES = {t.value for t in InboundType}


def decode_envelope(data: Union[str, bytes]) -> InboundEnvelope:
    """Parse and validate one inbound frame.

    Raises MalformedMessageError, UnknownMessageTypeError or EnvelopeValidationError.
    """
    try:
        raw = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedMessageError(f"Malformed message: {e}") from e

    if not isinstance(raw, dict):
        raise MalformedMessageError("Malformed message: expected a JSON object")
    message_type = raw.get("type")
    if not isinstance(message_type, str) or not message_type:
        raise MalformedMessageError("Malformed message: missing type")
    if message_type not in _INBOUND_TYPES:
        raise UnknownMessageTypeError(message_type)

    try:
        return _inbound_adapter.validate_python(raw)
    except ValidationError as e:
        fields = [str(err["loc"][1]) for err in e.errors() if len(err["loc"]) > 1]
        raise EnvelopeValidationError(message_type, fields) from e
