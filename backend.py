import json
from typing import Callable, Dict, List, Optional, Tuple

import redis

from constants import (
    MESSAGE_TTL_SECONDS,
    REDIS_DB,
    REDIS_HOST,
    REDIS_PASSWORD,
    REDIS_PORT,
    ROOM_UPDATE_MAX_RETRIES,
    SCAN_PAGE_SIZE,
)
from errors import RoomUpdateConflict
from logging_config import get_logger
from redis_keys import (
    REDIS_CONN_KEY,
    REDIS_INSTANCE_CHANNEL,
    REDIS_MESSAGE_KEY,
    REDIS_META_KEY,
    REDIS_USER_CONNS_KEY,
)

logger = get_logger(__name__)

# redis-py connects lazily; the app pings on startup
redis_client = redis.Redis(
    host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, db=REDIS_DB, decode_responses=True
)

RoomMutation = Callable[[dict], Optional[dict]]


class RedisBackend:
    def __init__(self, client: Optional[redis.Redis] = None):
        self.redis_client = client if client is not None else redis_client
        logger.info(f"Initializing RedisBackend with connection to {REDIS_HOST}:{REDIS_PORT}")

    def ping(self) -> bool:
        return bool(self.redis_client.ping())

    # Rooms

    def get_room(self, room_id: str) -> Optional[dict]:
        logger.debug(f"Fetching room {room_id}")
        raw = self.redis_client.get(REDIS_META_KEY.format(slug=room_id))
        if raw is None:
            logger.debug(f"Room {room_id} not found in Redis")
            return None
        return json.loads(raw)

    def put_room(self, room: dict) -> str:
        logger.info(f"Storing room {room['id']}")
        self.redis_client.set(REDIS_META_KEY.format(slug=room["id"]), json.dumps(room))
        return room["id"]

    def update_room(self, room_id: str, mutation: RoomMutation) -> Tuple[Optional[dict], bool]:
        """Atomically apply ``mutation`` to a stored room.

        The room key is WATCHed while the mutation runs against the current
        record; if anyone else writes the key before EXEC the whole
        read-check-write is retried, up to ROOM_UPDATE_MAX_RETRIES times.

        ``mutation`` returns the new record, or None to leave the room as is.
        Exceptions raised by the mutation abort the update and propagate.

        Returns ``(room, changed)``; ``room`` is None if the room does not exist.
        """
        key = REDIS_META_KEY.format(slug=room_id)
        for attempt in range(1, ROOM_UPDATE_MAX_RETRIES + 1):
            with self.redis_client.pipeline() as pipe:
                try:
                    pipe.watch(key)
                    raw = pipe.get(key)
                    if raw is None:
                        logger.debug(f"Update skipped: room {room_id} not found")
                        return None, False
                    current = json.loads(raw)
                    updated = mutation(current)
                    if updated is None:
                        return current, False
                    pipe.multi()
                    pipe.set(key, json.dumps(updated))
                    pipe.execute()
                    logger.debug(f"Room {room_id} updated on attempt {attempt}")
                    return updated, True
                except redis.WatchError:
                    logger.debug(f"Concurrent write on room {room_id}, retrying (attempt {attempt})")
        logger.warning(f"Giving up on room {room_id} after {ROOM_UPDATE_MAX_RETRIES} conflicting attempts")
        raise RoomUpdateConflict()

    def scan_rooms(self, predicate: Optional[Callable[[dict], bool]] = None, limit: Optional[int] = None) -> List[dict]:
        """Return stored rooms matching ``predicate``, reading SCAN_PAGE_SIZE keys at a time."""
        matched = []
        seen = set()
        page = []

        def flush():
            values = self.redis_client.mget(page)
            for raw in values:
                if raw is None:
                    continue
                room = json.loads(raw)
                if predicate is None or predicate(room):
                    matched.append(room)
            page.clear()

        for key in self.redis_client.scan_iter(match=REDIS_META_KEY.format(slug="*"), count=SCAN_PAGE_SIZE):
            # SCAN may hand back a key more than once
            if key in seen:
                continue
            seen.add(key)
            page.append(key)
            if len(page) >= SCAN_PAGE_SIZE:
                flush()
                if limit is not None and len(matched) >= limit:
                    break
        if page:
            flush()

        logger.debug(f"Room scan read {len(seen)} keys, matched {len(matched)}")
        return matched[:limit] if limit is not None else matched

    # Connections

    def put_connection(self, connection: dict):
        connection_id = connection["connectionId"]
        logger.debug(f"Storing connection {connection_id} for user {connection['userId']}")
        mapping = {k: str(v) for k, v in connection.items() if v is not None}
        with self.redis_client.pipeline() as pipe:
            pipe.hset(REDIS_CONN_KEY.format(connection_id=connection_id), mapping=mapping)
            pipe.sadd(REDIS_USER_CONNS_KEY.format(user_id=connection["userId"]), connection_id)
            pipe.execute()
        return True

    def get_connection(self, connection_id: str) -> Optional[dict]:
        data = self.redis_client.hgetall(REDIS_CONN_KEY.format(connection_id=connection_id))
        if not data:
            return None
        return self._decode_connection(data)

    def set_connection_room(self, connection_id: str, room_id: str) -> bool:
        key = REDIS_CONN_KEY.format(connection_id=connection_id)
        if not self.redis_client.exists(key):
            logger.debug(f"Connection {connection_id} vanished before joining room {room_id}")
            return False
        self.redis_client.hset(key, "roomId", room_id)
        return True

    def delete_connection(self, connection_id: str) -> bool:
        connection = self.get_connection(connection_id)
        with self.redis_client.pipeline() as pipe:
            pipe.delete(REDIS_CONN_KEY.format(connection_id=connection_id))
            if connection:
                pipe.srem(REDIS_USER_CONNS_KEY.format(user_id=connection["userId"]), connection_id)
            deleted, *_ = pipe.execute()
        logger.debug(f"Connection {connection_id} deleted: {bool(deleted)}")
        return bool(deleted)

    def connections_by_user(self, user_id: str) -> List[dict]:
        index_key = REDIS_USER_CONNS_KEY.format(user_id=user_id)
        connection_ids = sorted(self.redis_client.smembers(index_key))
        if not connection_ids:
            return []

        with self.redis_client.pipeline(transaction=False) as pipe:
            for connection_id in connection_ids:
                pipe.hgetall(REDIS_CONN_KEY.format(connection_id=connection_id))
            records = pipe.execute()

        connections = []
        dangling = []
        for connection_id, data in zip(connection_ids, records):
            if data:
                connections.append(self._decode_connection(data))
            else:
                dangling.append(connection_id)
        if dangling:
            logger.debug(f"Dropping {len(dangling)} dangling index entries for user {user_id}")
            self.redis_client.srem(index_key, *dangling)
        return connections

    @staticmethod
    def _decode_connection(data: Dict[str, str]) -> dict:
        connection = dict(data)
        if "connectedAt" in connection:
            connection["connectedAt"] = int(connection["connectedAt"])
        return connection

    # Messages

    def put_message(self, message: dict, ttl: int = MESSAGE_TTL_SECONDS) -> bool:
        """Persist a message once per (roomId, messageId). Returns False for a duplicate."""
        key = REDIS_MESSAGE_KEY.format(slug=message["roomId"], message_id=message["messageId"])
        created = self.redis_client.set(key, json.dumps(message), nx=True, ex=ttl)
        if not created:
            logger.debug(f"Message {message['messageId']} already stored for room {message['roomId']}")
        return bool(created)

    def delete_message(self, room_id: str, message_id: str) -> bool:
        return bool(self.redis_client.delete(REDIS_MESSAGE_KEY.format(slug=room_id, message_id=message_id)))

    def get_message(self, room_id: str, message_id: str) -> Optional[dict]:
        raw = self.redis_client.get(REDIS_MESSAGE_KEY.format(slug=room_id, message_id=message_id))
        return json.loads(raw) if raw is not None else None

    # Pub/sub between server instances

    def get_instance_channel_name(self, instance_id: str) -> str:
        return REDIS_INSTANCE_CHANNEL.format(instance_id=instance_id)

    def publish_to_instance(self, instance_id: str, envelope: dict) -> int:
        """Publish to an instance channel. Returns the number of subscribers that received it."""
        channel = self.get_instance_channel_name(instance_id)
        receivers = self.redis_client.publish(channel, json.dumps(envelope))
        logger.debug(f"Published to {channel}, {receivers} subscribers")
        return receivers

    def subscribe_to_instance(self, instance_id: str):
        channel = self.get_instance_channel_name(instance_id)
        logger.debug(f"Subscribing to Redis channel {channel}")
        pubsub = self.redis_client.pubsub()
        pubsub.subscribe(channel)
        return pubsub


redis_backend = RedisBackend()
