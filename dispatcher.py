import asyncio

from backend import redis_backend
from logging_config import get_logger
from room_state import is_active
from transport import ConnectionGone, connection_gateway

logger = get_logger(__name__)


async def send_to_room(room_id: str, payload: dict, include_closed: bool = False) -> int:
    """Deliver ``payload`` to every live connection of every participant of a room.

    Participants and their connections are read from the store at send time.
    Connections found to be gone are deleted; any other send failure is logged
    and skipped. Never raises. Returns the number of connections reached.

    Closed rooms are skipped unless ``include_closed`` is set, which is only
    used for the ``room-closed`` broadcast right after the room closes.
    """
    try:
        room = redis_backend.get_room(room_id)
        if not room or (not is_active(room) and not include_closed):
            logger.warning(f"Room {room_id} not active or not found, nothing sent")
            return 0

        connections = {}
        for user_id in room["participants"]:
            for connection in redis_backend.connections_by_user(user_id):
                connections[connection["connectionId"]] = connection

        results = await asyncio.gather(*(_deliver(c, payload) for c in connections.values()))
        delivered = sum(results)
        logger.debug(f"Sent {payload.get('type')} to {delivered}/{len(connections)} connections in room {room_id}")
        return delivered
    except Exception as e:
        logger.error(f"Error broadcasting to room {room_id}: {e}", exc_info=True)
        return 0


async def _deliver(connection: dict, payload: dict) -> bool:
    connection_id = connection["connectionId"]
    try:
        await connection_gateway.post_to_connection(connection, payload)
        return True
    except ConnectionGone:
        logger.info(f"Deleting stale connection {connection_id}")
        try:
            redis_backend.delete_connection(connection_id)
        except Exception as e:
            logger.error(f"Error deleting stale connection {connection_id}: {e}")
    except Exception as e:
        logger.warning(f"Error sending to connection {connection_id}: {e!r}")
    return False
