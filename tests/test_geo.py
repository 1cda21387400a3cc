import math

import pytest

from geo import EARTH_RADIUS_METERS, distance


def test_same_point_is_zero():
    assert distance(40.7128, -74.0060, 40.7128, -74.0060) == 0


def test_nearby_point_within_room_radius():
    d = distance(40.7128, -74.0060, 40.7130, -74.0061)
    assert 20 < d < 30


def test_point_a_few_kilometers_away():
    d = distance(40.7128, -74.0060, 40.7500, -74.0060)
    assert d == pytest.approx(4136, rel=0.01)


def test_symmetric():
    assert distance(51.5, -0.12, 48.85, 2.35) == pytest.approx(distance(48.85, 2.35, 51.5, -0.12))


def test_antipodal_points():
    assert distance(0, 0, 0, 180) == pytest.approx(math.pi * EARTH_RADIUS_METERS)
    assert distance(90, 0, -90, 0) == pytest.approx(math.pi * EARTH_RADIUS_METERS)
