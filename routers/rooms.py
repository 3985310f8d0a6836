from fastapi import APIRouter, HTTPException, Request

from backend import ConnectionRegistry, RoomStore
from logging_config import get_logger
from schemas.rooms import HealthResponse, RoomInfo, RoomsResponse

logger = get_logger(__name__)

rooms_router = APIRouter(tags=["rooms"])


def _room_info(snapshot) -> RoomInfo:
    return RoomInfo(room_id=snapshot.room_id, user_count=snapshot.user_count, users=snapshot.users)


@rooms_router.get("/rooms", response_model=RoomsResponse)
async def list_rooms(request: Request):
    """All live rooms with their members. Same data as the ``roomInfo`` envelope."""
    rooms: RoomStore = request.app.state.rooms
    snapshot = rooms.snapshot()
    logger.debug(f"Room list requested: {len(snapshot)} rooms")
    return RoomsResponse(rooms=[_room_info(s) for s in snapshot], total_rooms=len(snapshot))


@rooms_router.get("/rooms/{room_id}", response_model=RoomInfo)
async def get_room_details(room_id: str, request: Request):
    rooms: RoomStore = request.app.state.rooms
    snapshot = rooms.get_room(room_id)
    if snapshot is None:
        logger.info(f"Room details failed: Room {room_id} not found")
        raise HTTPException(status_code=404, detail="Room not found")
    return _room_info(snapshot)


@rooms_router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    registry: ConnectionRegistry = request.app.state.registry
    rooms: RoomStore = request.app.state.rooms
    status = "shutting_down" if request.app.state.shutdown.draining else "ok"
    return HealthResponse(status=status, connections=registry.count(), rooms=rooms.count())
