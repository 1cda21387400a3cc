import asyncio
import json

import pytest
from fastapi import WebSocketDisconnect

from backend import redis_backend
from constants import INSTANCE_ID
from dispatcher import send_to_room
from transport import ConnectionGone, connection_gateway


class FakeWebSocket:
    def __init__(self, error=None, delay=0):
        self.sent = []
        self.error = error
        self.delay = delay

    async def send_text(self, data):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        self.sent.append(json.loads(data))


def connect(connection_id, user_id, websocket=None, instance_id=INSTANCE_ID):
    redis_backend.put_connection({
        "connectionId": connection_id,
        "userId": user_id,
        "instanceId": instance_id,
        "connectedAt": 1,
    })
    if websocket is not None:
        connection_gateway.register(connection_id, websocket)


def test_fans_out_to_every_connection_of_every_participant(make_room):
    room = make_room(participants=["u1", "u2"])
    phone, tablet, other = FakeWebSocket(), FakeWebSocket(), FakeWebSocket()
    connect("c1", "u1", phone)
    connect("c2", "u1", tablet)
    connect("c3", "u2", other)
    connect("c4", "stranger", FakeWebSocket())

    delivered = asyncio.run(send_to_room(room["id"], {"type": "user-typing", "userId": "u1"}))

    assert delivered == 3
    for ws in (phone, tablet, other):
        assert ws.sent == [{"type": "user-typing", "userId": "u1"}]


def test_stale_connection_is_pruned(make_room):
    room = make_room(participants=["u1", "u2"])
    live = FakeWebSocket()
    connect("c1", "u1", live)
    connect("c2", "u2")  # record left behind by a dropped socket
    connect("c3", "u2", FakeWebSocket(error=WebSocketDisconnect(1006)))

    delivered = asyncio.run(send_to_room(room["id"], {"type": "new-message", "id": "m1"}))

    assert delivered == 1
    assert live.sent == [{"type": "new-message", "id": "m1"}]
    assert redis_backend.get_connection("c2") is None
    assert redis_backend.get_connection("c3") is None
    assert redis_backend.connections_by_user("u2") == []
    assert "c3" not in connection_gateway.local_connections


def test_transient_failure_is_skipped_not_pruned(make_room, monkeypatch):
    monkeypatch.setattr("transport.SEND_TIMEOUT_SECONDS", 0.01)
    room = make_room(participants=["u1", "u2"])
    live = FakeWebSocket()
    connect("c1", "u1", live)
    connect("c2", "u2", FakeWebSocket(delay=1))

    delivered = asyncio.run(send_to_room(room["id"], {"type": "room-info"}))

    assert delivered == 1
    assert live.sent == [{"type": "room-info"}]
    assert redis_backend.get_connection("c2") is not None


def test_closed_or_missing_room_sends_nothing(make_room):
    room = make_room(status="closed")
    ws = FakeWebSocket()
    connect("c1", "u1", ws)

    assert asyncio.run(send_to_room("missing", {"type": "x"})) == 0
    assert asyncio.run(send_to_room(room["id"], {"type": "x"})) == 0
    assert asyncio.run(send_to_room(room["id"], {"type": "room-closed"}, include_closed=True)) == 1
    assert ws.sent == [{"type": "room-closed"}]


def test_store_failure_never_reaches_caller(make_room, monkeypatch):
    room = make_room()

    def broken(room_id):
        raise RuntimeError("store down")

    monkeypatch.setattr(redis_backend, "get_room", broken)
    assert asyncio.run(send_to_room(room["id"], {"type": "x"})) == 0


def test_remote_connection_on_dead_instance_is_gone(fake_redis):
    with pytest.raises(ConnectionGone):
        asyncio.run(connection_gateway.post_to_connection(
            {"connectionId": "c9", "instanceId": "another-instance"}, {"type": "x"}
        ))


def test_remote_connection_is_published_to_its_instance(fake_redis):
    pubsub = redis_backend.subscribe_to_instance("another-instance")
    pubsub.get_message(timeout=0.1)  # subscribe confirmation

    asyncio.run(connection_gateway.post_to_connection(
        {"connectionId": "c9", "instanceId": "another-instance"}, {"type": "x"}
    ))

    message = pubsub.get_message(timeout=1.0, ignore_subscribe_messages=True)
    assert json.loads(message["data"]) == {"connectionId": "c9", "payload": {"type": "x"}}
    pubsub.close()


def test_forwarded_frame_reaches_local_socket_or_prunes(fake_redis):
    ws = FakeWebSocket()
    connect("c1", "u1", ws)
    connect("c2", "u2")

    asyncio.run(connection_gateway._forward({"connectionId": "c1", "payload": {"type": "x"}}))
    asyncio.run(connection_gateway._forward({"connectionId": "c2", "payload": {"type": "x"}}))

    assert ws.sent == [{"type": "x"}]
    assert redis_backend.get_connection("c2") is None
