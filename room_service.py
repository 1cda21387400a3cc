import time
import uuid
from datetime import datetime, timezone
from typing import Any, List, Optional

import redis

from backend import redis_backend
from constants import CHAT_ROOM_RADIUS, MESSAGE_TTL_SECONDS
from dispatcher import send_to_room
from errors import ChatError, RoomInactive, RoomNotFound
from geo import distance
from logging_config import get_logger
from room_state import (
    ACTIVE,
    add_participant,
    clamp_max_participants,
    close,
    has_capacity,
    is_active,
    now_ms,
    remove_participant,
    touch,
    within_radius,
)
from schemas.rooms import CreateRoomRequest, Location, Room

logger = get_logger(__name__)

ROOM_CLOSED_EVENT = {"type": "room-closed"}


def create_room(request: CreateRoomRequest) -> dict:
    room = Room(
        id=str(uuid.uuid4()),
        location=Location(latitude=request.latitude, longitude=request.longitude),
        radius=CHAT_ROOM_RADIUS,
        road_name=request.road_name,
        creator=request.user_id,
        participants=[request.user_id],
        max_participants=clamp_max_participants(request.max_participants),
        last_activity=now_ms(),
        status=ACTIVE,
        room_type=request.room_type or "public",
    ).model_dump(by_alias=True)
    redis_backend.put_room(room)
    logger.info(f"Room {room['id']} created by {room['creator']} on {room['roadName']!r}, max {room['maxParticipants']}")
    return room


def search_rooms(latitude: float, longitude: float, room_type: Optional[str] = None) -> List[dict]:
    """Active rooms with a free seat whose radius covers the given point, nearest first."""
    def matches(room: dict) -> bool:
        if not is_active(room):
            return False
        if room_type and room.get("roomType") != room_type:
            return False
        return has_capacity(room) and within_radius(room, latitude, longitude)

    rooms = redis_backend.scan_rooms(matches)
    rooms.sort(key=lambda r: distance(latitude, longitude, r["location"]["latitude"], r["location"]["longitude"]))
    return rooms


def get_room(room_id: str) -> dict:
    room = redis_backend.get_room(room_id)
    if not room:
        raise RoomNotFound()
    return room


def join_room(room_id: str, user_id: str) -> dict:
    """Admit ``user_id``; rejoining is a no-op. Raises RoomInactive or RoomFull."""
    room, changed = redis_backend.update_room(room_id, add_participant(user_id, now_ms()))
    if room is None:
        raise RoomInactive()
    if changed:
        logger.info(f"User {user_id} joined room {room_id} ({len(room['participants'])}/{room['maxParticipants']})")
    else:
        logger.debug(f"User {user_id} already in room {room_id}")
    return room


def leave_rooms(user_id: str) -> List[dict]:
    """Remove ``user_id`` from every active room listing it. Returns the rooms actually changed."""
    rooms = redis_backend.scan_rooms(lambda r: is_active(r) and user_id in r.get("participants", []))
    left = []
    for room in rooms:
        try:
            updated, changed = redis_backend.update_room(room["id"], remove_participant(user_id, now_ms()))
        except (ChatError, redis.RedisError) as e:
            # keep going so the rooms already left still get their user-left
            logger.error(f"Failed to remove user {user_id} from room {room['id']}: {e}", exc_info=True)
            continue
        if changed:
            logger.info(f"User {user_id} left room {room['id']}")
            left.append(updated)
    return left


async def post_message(
    room_id: str,
    message_id: str,
    text: str,
    user_id: str,
    user_name: Optional[str] = None,
    user_icon: Any = None,
    user_color: Optional[str] = None,
) -> bool:
    """Store and broadcast a message once. A repeated ``message_id`` returns False and sends nothing."""
    room = redis_backend.get_room(room_id)
    if not room or not is_active(room):
        raise RoomInactive()

    created_at = datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    message = {
        "id": message_id,
        "text": text,
        "createdAt": created_at,
        "userId": user_id,
        "userName": user_name,
        "userIcon": user_icon,
        "userColor": user_color,
    }
    stored = redis_backend.put_message({
        "roomId": room_id,
        "messageId": message_id,
        **message,
        "expiresAt": int(time.time()) + MESSAGE_TTL_SECONDS,
    })
    if not stored:
        logger.info(f"Duplicate message {message_id} in room {room_id} ignored")
        return False

    try:
        updated, _ = redis_backend.update_room(room_id, touch(now_ms()))
        if updated is None:
            raise RoomInactive()
    except (ChatError, redis.RedisError):
        # undo the write so a retry with the same message_id is not taken for a duplicate
        redis_backend.delete_message(room_id, message_id)
        raise

    await send_to_room(room_id, {"type": "new-message", **message})
    return True


async def close_room(room_id: str, user_id: str) -> bool:
    """Creator-only close. Broadcasts ``room-closed`` on the transition; closing again is a no-op."""
    room, changed = redis_backend.update_room(room_id, close(by_user_id=user_id))
    if room is None:
        raise RoomNotFound()
    if changed:
        logger.info(f"Room {room_id} closed by creator {user_id}")
        await send_to_room(room_id, ROOM_CLOSED_EVENT, include_closed=True)
    else:
        logger.debug(f"Room {room_id} was already closed")
    return changed
