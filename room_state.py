"""Room records and the transitions allowed on them.

Every transition is a mutation for ``RedisBackend.update_room``: it receives
the current stored record and returns the new one, or None when nothing
should change. The checks therefore run inside the store's compare-and-swap
and hold under concurrent writers.

    active --[creator close | reaper]--> closed   (terminal, record frozen)
    active --[join, below capacity]----> active   (participant appended)
    active --[leave]-------------------> active   (participant removed)
"""
import time
from typing import Optional

from constants import CHAT_ROOM_RADIUS, MAX_PARTICIPANTS
from errors import NotRoomCreator, RoomFull, RoomInactive
from geo import distance

ACTIVE = "active"
CLOSED = "closed"


def now_ms() -> int:
    return int(time.time() * 1000)


def clamp_max_participants(value: Optional[int]) -> int:
    if value is None:
        return MAX_PARTICIPANTS
    return max(1, min(int(value), MAX_PARTICIPANTS))


def is_active(room: dict) -> bool:
    return room.get("status") == ACTIVE


def has_capacity(room: dict) -> bool:
    return len(room["participants"]) < room["maxParticipants"]


def within_radius(room: dict, latitude: float, longitude: float) -> bool:
    location = room["location"]
    radius = room.get("radius", CHAT_ROOM_RADIUS)
    return distance(latitude, longitude, location["latitude"], location["longitude"]) <= radius


def add_participant(user_id: str, now: int):
    def mutate(room: dict) -> Optional[dict]:
        if not is_active(room):
            raise RoomInactive()
        if user_id in room["participants"]:
            return None
        if not has_capacity(room):
            raise RoomFull()
        return {**room, "participants": room["participants"] + [user_id], "lastActivity": now}
    return mutate


def remove_participant(user_id: str, now: int):
    def mutate(room: dict) -> Optional[dict]:
        # the creator stays in an active room for its whole lifetime
        if not is_active(room) or user_id == room["creator"]:
            return None
        if user_id not in room["participants"]:
            return None
        participants = [p for p in room["participants"] if p != user_id]
        return {**room, "participants": participants, "lastActivity": now}
    return mutate


def touch(now: int):
    def mutate(room: dict) -> Optional[dict]:
        if not is_active(room):
            raise RoomInactive()
        return {**room, "lastActivity": now}
    return mutate


def close(by_user_id: Optional[str] = None):
    """Close a room; with ``by_user_id`` only the creator may do it."""
    def mutate(room: dict) -> Optional[dict]:
        if by_user_id is not None and room["creator"] != by_user_id:
            raise NotRoomCreator()
        if room["status"] == CLOSED:
            return None
        return {**room, "status": CLOSED}
    return mutate


def close_if_idle(cutoff: int):
    def mutate(room: dict) -> Optional[dict]:
        if not is_active(room) or room["lastActivity"] >= cutoff:
            return None
        return {**room, "status": CLOSED}
    return mutate
