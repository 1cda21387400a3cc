from typing import Optional

import redis
from fastapi import APIRouter, HTTPException, Query, Request

import room_service
from backend import redis_backend
from errors import ChatError
from logging_config import get_logger
from schemas.rooms import (
    CloseRoomRequest,
    CloseRoomResponse,
    CreateRoomRequest,
    CreateRoomResponse,
    JoinRoomRequest,
    JoinRoomResponse,
)

logger = get_logger(__name__)

rooms_router = APIRouter(tags=["rooms"])


def _client_host(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@rooms_router.post("/create-room", response_model=CreateRoomResponse)
async def create_room(room: CreateRoomRequest, request: Request):
    # { "userId": "u1", "latitude": 40.7128, "longitude": -74.006, "roadName": "Broadway", "roomType": "public", "maxParticipants": 20 }
    # Response 200: { "roomId": "...", "roomInfo": { ...room record } }
    logger.info(f"Room creation request from {_client_host(request)}, user: {room.user_id}, road: {room.road_name}")
    try:
        new_room = room_service.create_room(room)
    except redis.RedisError as e:
        logger.error(f"Error creating room: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to create room: {e}")
    return CreateRoomResponse(room_id=new_room["id"], room_info=new_room)


@rooms_router.get("/search-rooms")
async def search_rooms(
    latitude: Optional[float] = Query(None),
    longitude: Optional[float] = Query(None),
    room_type: Optional[str] = Query(None, alias="roomType"),
    road_name: Optional[str] = Query(None, alias="roadName"),
):
    """
    Active rooms with a free seat whose radius covers (latitude, longitude).

    roadName is accepted for client compatibility; clients match road names
    themselves, so it does not narrow the result.
    """
    if latitude is None or longitude is None:
        logger.warning("Search rooms failed: missing coordinates")
        raise HTTPException(status_code=400, detail="Missing coordinates")

    try:
        rooms = room_service.search_rooms(latitude, longitude, room_type=room_type)
    except redis.RedisError as e:
        logger.error(f"Error searching rooms: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to search rooms: {e}")

    logger.info(f"Search at ({latitude}, {longitude}) type={room_type} road={road_name}: {len(rooms)} rooms")
    return rooms


@rooms_router.post("/join-room", response_model=JoinRoomResponse)
async def join_room(join_room_request: JoinRoomRequest, request: Request):
    # POST /join-room Body: { "roomId": "...", "userId": "u2" }
    # Response 200: { "success": true, "roomInfo": {...}, "creatorId": "u1" }
    room_id = join_room_request.room_id
    logger.info(f"Join room request for {room_id} from {_client_host(request)}, user: {join_room_request.user_id}")
    try:
        room = room_service.join_room(room_id, join_room_request.user_id)
    except ChatError as e:
        logger.warning(f"Join room failed for {room_id}: {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except redis.RedisError as e:
        logger.error(f"Error joining room {room_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to join room: {e}")
    return JoinRoomResponse(room_info=room, creator_id=room["creator"])


@rooms_router.post("/close-room", response_model=CloseRoomResponse)
async def close_room(close_room_request: CloseRoomRequest, request: Request):
    # POST /close-room Body: { "roomId": "...", "userId": "u1" }
    # - Only the creator may close; everyone connected gets {"type": "room-closed"}
    room_id = close_room_request.room_id
    logger.info(f"Close room request for {room_id} from {_client_host(request)}, user: {close_room_request.user_id}")
    try:
        await room_service.close_room(room_id, close_room_request.user_id)
    except ChatError as e:
        logger.warning(f"Close room failed for {room_id}: {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except redis.RedisError as e:
        logger.error(f"Error closing room {room_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to close room: {e}")
    return CloseRoomResponse()


@rooms_router.get("/rooms/{room_id}")
async def get_room_details(room_id: str):
    """Current room record, active or closed."""
    try:
        return room_service.get_room(room_id)
    except ChatError as e:
        logger.warning(f"Room details failed for {room_id}: {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except redis.RedisError as e:
        logger.error(f"Error loading room {room_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to load room: {e}")


@rooms_router.get("/health")
async def health():
    try:
        redis_backend.ping()
    except redis.RedisError as e:
        logger.error(f"Health check failed: {e}")
        raise HTTPException(status_code=500, detail=f"Store unavailable: {e}")
    return {"status": "ok"}
