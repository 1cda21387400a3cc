import os

# Tests drive the reaper and pub/sub by hand
os.environ.setdefault("BACKGROUND_TASKS_ENABLED", "false")

import fakeredis
import pytest
from fastapi.testclient import TestClient

from backend import redis_backend
from room_state import ACTIVE, now_ms
from transport import connection_gateway


@pytest.fixture
def fake_redis(monkeypatch):
    client = fakeredis.FakeRedis(decode_responses=True)
    monkeypatch.setattr(redis_backend, "redis_client", client)
    yield client
    client.flushall()
    connection_gateway.local_connections.clear()


@pytest.fixture
def client(fake_redis):
    from app import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_room(fake_redis):
    def _make_room(room_id="room-1", creator="u1", participants=None, max_participants=20,
                   latitude=40.7128, longitude=-74.0060, last_activity=None, status=ACTIVE, room_type="public"):
        room = {
            "id": room_id,
            "location": {"latitude": latitude, "longitude": longitude},
            "radius": 500,
            "roadName": "Broadway",
            "creator": creator,
            "participants": participants if participants is not None else [creator],
            "maxParticipants": max_participants,
            "lastActivity": last_activity if last_activity is not None else now_ms(),
            "status": status,
            "roomType": room_type,
        }
        redis_backend.put_room(room)
        return room
    return _make_room
