import json
import uuid
from typing import Optional

import redis
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

import room_service
from backend import redis_backend
from constants import INSTANCE_ID
from dispatcher import send_to_room
from errors import ChatError
from logging_config import get_logger
from room_state import now_ms
from schemas.events import CloseRoomFrame, JoinRoomFrame, RoomInfoFrame, SendMessageFrame, UserTypingFrame
from transport import connection_gateway

logger = get_logger(__name__)

realtime_router = APIRouter(tags=["realtime"])


def _response(status_code: int, error: Optional[str] = None) -> dict:
    response = {"statusCode": status_code}
    if error:
        response["error"] = error
    return response


OK = _response(200)


async def handle_join_room(body: dict, connection: dict) -> dict:
    frame = JoinRoomFrame.model_validate(body)
    user_id = connection["userId"]
    room = room_service.join_room(frame.room_id, user_id)
    redis_backend.set_connection_room(connection["connectionId"], frame.room_id)
    await send_to_room(frame.room_id, {
        "type": "user-joined",
        "userId": user_id,
        "userName": frame.user_name,
        "userIcon": frame.user_icon,
        "userColor": frame.user_color,
        "creatorId": room["creator"],
        "roomInfo": room,
    })
    return OK


async def handle_send_message(body: dict, connection: dict) -> dict:
    frame = SendMessageFrame.model_validate(body)
    await room_service.post_message(
        frame.room_id,
        frame.message_id,
        frame.message,
        connection["userId"],
        user_name=frame.user_name,
        user_icon=frame.user_icon,
        user_color=frame.user_color,
    )
    return OK


async def handle_user_typing(body: dict, connection: dict) -> Optional[dict]:
    # Typing indicators are best effort: bad frames are dropped without a reply
    try:
        frame = UserTypingFrame.model_validate(body)
    except ValidationError:
        logger.debug(f"Dropping malformed typing frame from connection {connection['connectionId']}")
        return None
    await send_to_room(frame.room_id, {
        "type": "user-typing",
        "userId": connection["userId"],
        "userName": frame.user_name,
    })
    return None


async def handle_room_info(body: dict, connection: dict) -> dict:
    frame = RoomInfoFrame.model_validate(body)
    room = room_service.get_room(frame.room_id)
    await send_to_room(frame.room_id, {"type": "room-info", **room})
    return OK


async def handle_close_room(body: dict, connection: dict) -> dict:
    frame = CloseRoomFrame.model_validate(body)
    await room_service.close_room(frame.room_id, connection["userId"])
    return OK


ACTION_HANDLERS = {
    "join-room": handle_join_room,
    "send-message": handle_send_message,
    "user-typing": handle_user_typing,
    "room-info": handle_room_info,
    "close-room": handle_close_room,
}


async def on_connect(websocket: WebSocket, connection_id: str, user_id: str) -> bool:
    # accept first so the socket can take frames as soon as its record is visible
    await websocket.accept()
    try:
        redis_backend.put_connection({
            "connectionId": connection_id,
            "userId": user_id,
            "instanceId": INSTANCE_ID,
            "connectedAt": now_ms(),
        })
    except redis.RedisError as e:
        logger.error(f"Failed to store connection {connection_id} for user {user_id}: {e}", exc_info=True)
        await websocket.close(code=1011, reason="Failed to connect")
        return False
    connection_gateway.register(connection_id, websocket)
    logger.info(f"Connection {connection_id} opened for user {user_id}")
    return True


async def on_disconnect(connection_id: str):
    """Drop the user from their active rooms, delete the connection, then tell the rooms."""
    try:
        connection = redis_backend.get_connection(connection_id)
        if not connection:
            logger.info(f"Connection {connection_id} not found during disconnect")
            return
        user_id = connection["userId"]
        # Membership is per user, so this applies even if another device is still connected.
        # The creator is kept in their active rooms; see room_state.remove_participant.
        left_rooms = room_service.leave_rooms(user_id)
        redis_backend.delete_connection(connection_id)
    except (redis.RedisError, ChatError) as e:
        logger.error(f"Disconnect cleanup failed for connection {connection_id}: {e}", exc_info=True)
        return

    logger.info(f"Connection {connection_id} closed for user {user_id}, left {len(left_rooms)} rooms")
    for room in left_rooms:
        await send_to_room(room["id"], {
            "type": "user-left",
            "userId": user_id,
            "roomId": room["id"],
            "roomInfo": room,
        })


async def on_message(connection_id: str, data: str) -> Optional[dict]:
    """Run one client frame. Returns a response for the sender, or None when nothing is owed."""
    try:
        body = json.loads(data)
    except json.JSONDecodeError:
        logger.warning(f"Dropping malformed frame from connection {connection_id}")
        return None
    if not isinstance(body, dict):
        logger.warning(f"Dropping non-object frame from connection {connection_id}")
        return None

    action = body.get("action")
    handler = ACTION_HANDLERS.get(action)
    if handler is None:
        logger.warning(f"Invalid action {action!r} from connection {connection_id}")
        return _response(400, "Invalid action")

    try:
        connection = redis_backend.get_connection(connection_id)
        if not connection:
            return _response(404, "Connection not found")
        logger.debug(f"Handling {action} from connection {connection_id} (user {connection['userId']})")
        return await handler(body, connection)
    except ValidationError:
        return _response(400, "Missing parameters")
    except ChatError as e:
        logger.warning(f"{action} failed for connection {connection_id}: {e.message}")
        return _response(e.status_code, e.message)
    except redis.RedisError as e:
        logger.error(f"{action} failed for connection {connection_id}: {e}", exc_info=True)
        return _response(500, f"Internal server error: {e}")


@realtime_router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, user_id: Optional[str] = Query(None, alias="userId")):
    """WebSocket endpoint; ``userId`` identifies the client for the life of the connection."""
    if not user_id:
        logger.info("WebSocket connection rejected: missing userId")
        await websocket.close(code=1008, reason="Missing userId")
        return

    connection_id = str(uuid.uuid4())
    if not await on_connect(websocket, connection_id, user_id):
        return

    try:
        while True:
            data = await websocket.receive_text()
            response = await on_message(connection_id, data)
            if response and response["statusCode"] != 200:
                await websocket.send_text(json.dumps({"type": "error", **response}))
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected normally for connection {connection_id}")
    except Exception as e:
        logger.error(f"WebSocket error for connection {connection_id}: {e}", exc_info=True)
    finally:
        connection_gateway.unregister(connection_id)
        await on_disconnect(connection_id)
