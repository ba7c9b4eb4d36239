"""Tests for distance and geofence primitives."""

from __future__ import annotations

import math

import pytest

from techtruth.geo import distance_between, distance_feet, offset_coordinate, point_in_polygon, within_radius
from techtruth.models import Coordinate
from techtruth.settings import EARTH_RADIUS_FEET
from tests.factories import OFFICE


class TestDistanceFeet:
    """Haversine distance in feet"""

    def test_same_point_is_zero(self):
        assert distance_feet(36.0, -79.0, 36.0, -79.0) == 0.0

    def test_one_degree_of_latitude(self):
        expected = EARTH_RADIUS_FEET * math.pi / 180.0
        assert distance_feet(0.0, 0.0, 1.0, 0.0) == pytest.approx(expected, rel=1e-9)

    def test_symmetric(self):
        a = OFFICE
        b = Coordinate(36.1, -79.7)
        assert distance_between(a, b) == pytest.approx(distance_between(b, a))

    def test_custom_radius_scales_result(self):
        d1 = distance_feet(0.0, 0.0, 1.0, 0.0, radius_feet=1000.0)
        d2 = distance_feet(0.0, 0.0, 1.0, 0.0, radius_feet=2000.0)
        assert d2 == pytest.approx(2 * d1)

    def test_nan_propagates(self):
        assert math.isnan(distance_feet(float("nan"), 0.0, 1.0, 0.0))


class TestOffsetCoordinate:
    """Planar offsets used by sample data"""

    def test_north_offset_matches_distance(self):
        moved = offset_coordinate(OFFICE, north_feet=1000.0)
        assert distance_between(OFFICE, moved) == pytest.approx(1000.0, abs=0.01)

    def test_east_offset_is_close(self):
        moved = offset_coordinate(OFFICE, east_feet=1000.0)
        assert distance_between(OFFICE, moved) == pytest.approx(1000.0, abs=1.0)


class TestWithinRadius:
    """Inclusive radius checks"""

    def test_inside_and_outside(self):
        assert within_radius(OFFICE, offset_coordinate(OFFICE, north_feet=299.0), 300.0)
        assert not within_radius(OFFICE, offset_coordinate(OFFICE, north_feet=301.0), 300.0)

    def test_same_point_with_zero_radius(self):
        assert within_radius(OFFICE, OFFICE, 0.0)


class TestPointInPolygon:
    """Ray-casting containment"""

    square = (
        Coordinate(36.0, -80.0),
        Coordinate(36.0, -79.9),
        Coordinate(36.1, -79.9),
        Coordinate(36.1, -80.0),
    )

    def test_center_is_inside(self):
        assert point_in_polygon(Coordinate(36.05, -79.95), self.square)

    def test_outside(self):
        assert not point_in_polygon(Coordinate(36.2, -79.95), self.square)
        assert not point_in_polygon(Coordinate(36.05, -79.8), self.square)

    def test_degenerate_polygon_contains_nothing(self):
        assert not point_in_polygon(Coordinate(36.05, -79.95), self.square[:2])
        assert not point_in_polygon(Coordinate(36.05, -79.95), ())
