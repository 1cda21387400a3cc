import asyncio
import json
from typing import Dict

from fastapi import WebSocket, WebSocketDisconnect

from backend import redis_backend
from constants import INSTANCE_ID, SEND_TIMEOUT_SECONDS
from logging_config import get_logger

logger = get_logger(__name__)


class ConnectionGone(Exception):
    """The transport peer behind a connection id no longer exists."""

    def __init__(self, connection_id: str):
        super().__init__(f"Connection {connection_id} is gone")
        self.connection_id = connection_id


class ConnectionGateway:
    """Delivers frames to a connection id wherever its socket lives.

    Each instance only holds its own WebSockets. A frame for a socket held by
    another instance is published on that instance's Redis channel, and its
    ``listen`` task forwards it to the local socket.
    """

    def __init__(self, instance_id: str = INSTANCE_ID):
        self.instance_id = instance_id
        # Format: {connection_id: websocket}
        self.local_connections: Dict[str, WebSocket] = {}

    def register(self, connection_id: str, websocket: WebSocket):
        self.local_connections[connection_id] = websocket
        logger.debug(f"Registered connection {connection_id} (local connections: {len(self.local_connections)})")

    def unregister(self, connection_id: str):
        if self.local_connections.pop(connection_id, None) is not None:
            logger.debug(f"Unregistered connection {connection_id} (local connections: {len(self.local_connections)})")

    async def post_to_connection(self, connection: dict, payload: dict):
        connection_id = connection["connectionId"]
        instance_id = connection.get("instanceId") or self.instance_id
        if instance_id != self.instance_id:
            envelope = {"connectionId": connection_id, "payload": payload}
            if redis_backend.publish_to_instance(instance_id, envelope) == 0:
                # nobody listens on that channel any more, so its sockets died with it
                raise ConnectionGone(connection_id)
            return
        await self.send_local(connection_id, payload)

    async def send_local(self, connection_id: str, payload: dict):
        websocket = self.local_connections.get(connection_id)
        if websocket is None:
            raise ConnectionGone(connection_id)
        try:
            await asyncio.wait_for(websocket.send_text(json.dumps(payload)), timeout=SEND_TIMEOUT_SECONDS)
        except (WebSocketDisconnect, RuntimeError) as e:
            # RuntimeError is Starlette refusing to send on a closed socket
            self.unregister(connection_id)
            raise ConnectionGone(connection_id) from e

    async def listen(self):
        """Background task forwarding frames published for this instance to local sockets."""
        logger.info(f"Starting Redis pub/sub listener for instance {self.instance_id}")
        pubsub = None
        try:
            pubsub = redis_backend.subscribe_to_instance(self.instance_id)
            loop = asyncio.get_running_loop()

            def get_message():
                """Blocking call to get next message from Redis pub/sub with timeout."""
                try:
                    return pubsub.get_message(timeout=1.0, ignore_subscribe_messages=True)
                except Exception as e:
                    logger.error(f"Error in pubsub.get_message() for instance {self.instance_id}: {e}", exc_info=True)
                    return None

            while True:
                message = await loop.run_in_executor(None, get_message)
                if message is None or message.get("type") != "message":
                    continue
                try:
                    envelope = json.loads(message["data"])
                except json.JSONDecodeError as e:
                    logger.error(f"Error parsing instance message: {e}")
                    continue
                await self._forward(envelope)
        except asyncio.CancelledError:
            logger.info(f"Redis listener task cancelled for instance {self.instance_id}")
        finally:
            if pubsub:
                try:
                    pubsub.close()
                except Exception as e:
                    logger.error(f"Error closing pub/sub for instance {self.instance_id}: {e}")

    async def _forward(self, envelope: dict):
        connection_id = envelope.get("connectionId")
        try:
            await self.send_local(connection_id, envelope.get("payload"))
        except ConnectionGone:
            logger.info(f"Deleting stale connection {connection_id}")
            redis_backend.delete_connection(connection_id)
        except Exception as e:
            logger.error(f"Error forwarding to connection {connection_id}: {e}", exc_info=True)


connection_gateway = ConnectionGateway()
