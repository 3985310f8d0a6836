from pydantic import BaseModel, ConfigDict, Field
from typing import List


class RoomInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    room_id: str = Field(alias="roomId")
    user_count: int = Field(alias="userCount")
    users: List[str]


class RoomsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    rooms: List[RoomInfo]
    total_rooms: int = Field(alias="totalRooms")


class HealthResponse(BaseModel):
    status: str
    connections: int
    rooms: int
