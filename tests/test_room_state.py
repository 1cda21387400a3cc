import pytest

from errors import NotRoomCreator, RoomFull, RoomInactive
from room_state import (
    CLOSED,
    add_participant,
    clamp_max_participants,
    close,
    close_if_idle,
    remove_participant,
    touch,
    within_radius,
)


def room(**overrides):
    base = {
        "id": "r1",
        "location": {"latitude": 40.7128, "longitude": -74.0060},
        "radius": 500,
        "creator": "u1",
        "participants": ["u1"],
        "maxParticipants": 3,
        "lastActivity": 1000,
        "status": "active",
        "roomType": "public",
    }
    base.update(overrides)
    return base


def test_add_participant_appends_and_bumps_activity():
    updated = add_participant("u2", 5000)(room())
    assert updated["participants"] == ["u1", "u2"]
    assert updated["lastActivity"] == 5000


def test_add_existing_participant_is_noop():
    assert add_participant("u1", 5000)(room()) is None


def test_add_participant_to_full_room():
    with pytest.raises(RoomFull):
        add_participant("u4", 5000)(room(participants=["u1", "u2", "u3"]))


def test_existing_member_can_rejoin_full_room():
    assert add_participant("u2", 5000)(room(participants=["u1", "u2", "u3"])) is None


def test_add_participant_to_closed_room():
    with pytest.raises(RoomInactive):
        add_participant("u2", 5000)(room(status=CLOSED))


def test_remove_participant():
    updated = remove_participant("u2", 5000)(room(participants=["u1", "u2"]))
    assert updated["participants"] == ["u1"]
    assert updated["lastActivity"] == 5000


def test_creator_is_never_removed():
    assert remove_participant("u1", 5000)(room(participants=["u1", "u2"])) is None


def test_remove_from_closed_room_is_noop():
    assert remove_participant("u2", 5000)(room(participants=["u1", "u2"], status=CLOSED)) is None


def test_touch_closed_room():
    with pytest.raises(RoomInactive):
        touch(5000)(room(status=CLOSED))


def test_close_by_creator_and_again():
    closed = close(by_user_id="u1")(room())
    assert closed["status"] == CLOSED
    assert close(by_user_id="u1")(closed) is None


def test_close_by_someone_else():
    with pytest.raises(NotRoomCreator):
        close(by_user_id="u2")(room())


def test_close_if_idle_respects_cutoff():
    assert close_if_idle(1000)(room(lastActivity=1000)) is None
    assert close_if_idle(1001)(room(lastActivity=1000))["status"] == CLOSED


@pytest.mark.parametrize("value, expected", [(None, 20), (5, 5), (50, 20), (0, 1), (-3, 1)])
def test_clamp_max_participants(value, expected):
    assert clamp_max_participants(value) == expected


def test_within_radius():
    assert within_radius(room(), 40.7130, -74.0061)
    assert not within_radius(room(), 40.7500, -74.0060)
