"""Geospatial utilities (no external dependencies)."""

from __future__ import annotations

import math
from typing import Sequence

from techtruth.models import Coordinate
from techtruth.settings import EARTH_RADIUS_FEET


def distance_feet(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
    *,
    radius_feet: float = EARTH_RADIUS_FEET,
) -> float:
    """Compute Haversine distance in feet between two lat/lon points.

    Args:
        lat1: Latitude 1 in degrees.
        lon1: Longitude 1 in degrees.
        lat2: Latitude 2 in degrees.
        lon2: Longitude 2 in degrees.
        radius_feet: Sphere radius. Defaults to the mean Earth radius.

    Returns:
        Distance in feet. Non-finite input propagates as NaN.
    """

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2.0) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return radius_feet * c


def distance_between(a: Coordinate, b: Coordinate, *, radius_feet: float = EARTH_RADIUS_FEET) -> float:
    return distance_feet(a.latitude, a.longitude, b.latitude, b.longitude, radius_feet=radius_feet)


def within_radius(
    a: Coordinate,
    b: Coordinate,
    radius_feet: float,
    *,
    earth_radius_feet: float = EARTH_RADIUS_FEET,
) -> bool:
    """Check whether two points are within (or exactly at) radius_feet of each other."""

    return distance_between(a, b, radius_feet=earth_radius_feet) <= radius_feet


def point_in_polygon(point: Coordinate, polygon: Sequence[Coordinate]) -> bool:
    """Ray-casting point-in-polygon test on raw lat/lon.

    Polygons with fewer than three vertices contain nothing. Accurate enough for
    building-sized geofences; not meant for shapes spanning the antimeridian.
    """

    if len(polygon) < 3:
        return False

    x = point.longitude
    y = point.latitude
    inside = False
    j = len(polygon) - 1
    for i in range(len(polygon)):
        xi, yi = polygon[i].longitude, polygon[i].latitude
        xj, yj = polygon[j].longitude, polygon[j].latitude
        if (yi > y) != (yj > y) and x < (xj - xi) * (y - yi) / (yj - yi) + xi:
            inside = not inside
        j = i
    return inside


def offset_coordinate(
    origin: Coordinate,
    *,
    north_feet: float = 0.0,
    east_feet: float = 0.0,
    earth_radius_feet: float = EARTH_RADIUS_FEET,
) -> Coordinate:
    """Move a coordinate by a small planar offset.

    Pure north/south offsets are exact under ``distance_feet``; east/west offsets
    are exact only along the parallel, which is fine for the short spans used by
    sample data.
    """

    d_lat = math.degrees(north_feet / earth_radius_feet)
    d_lon = math.degrees(east_feet / (earth_radius_feet * math.cos(math.radians(origin.latitude))))
    return Coordinate(origin.latitude + d_lat, origin.longitude + d_lon)
