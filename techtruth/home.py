"""Suggest a technician's home from where the truck starts each day."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import date
from typing import Final, Sequence

from techtruth.geo import within_radius
from techtruth.models import Coordinate
from techtruth.settings import DEFAULT_SETTINGS, TimelineSettings

MIN_DAYS: Final[int] = 5
MIN_NON_OFFICE_STARTS: Final[int] = 3
CLUSTER_RADIUS_FEET: Final[float] = 500.0


@dataclass(frozen=True, slots=True)
class DailyStart:
    """Where the first trip of a day began."""

    day: date
    location: Coordinate
    address: str | None = None


@dataclass(frozen=True, slots=True)
class HomeSuggestion:
    location: Coordinate
    address: str
    confidence: str
    days_detected: int
    total_days_analyzed: int


def detect_home_location(
    starts: Sequence[DailyStart],
    *,
    office: Coordinate,
    settings: TimelineSettings = DEFAULT_SETTINGS,
) -> HomeSuggestion | None:
    """Cluster daily start points and report the dominant one.

    Args:
        starts: One entry per day.
        office: Starts near the office are not home candidates.
        settings: Office radius and Earth radius.

    Returns:
        HomeSuggestion, or None when there is too little consistent data
        (fewer than 5 days, fewer than 3 non-office starts, or no cluster of 3).

    Notes:
        Clustering is greedy in input order: a start joins the first cluster
        whose seed is within 500 ft. Confidence is "high" for a cluster holding
        at least 80% of non-office starts over 10+ days, "medium" for 50% over
        5+ days, "low" for any cluster of 3+.
    """

    if len(starts) < MIN_DAYS:
        return None

    earth = settings.earth_radius_feet
    candidates = [
        s
        for s in starts
        if not within_radius(s.location, office, settings.office_radius_feet, earth_radius_feet=earth)
    ]
    if len(candidates) < MIN_NON_OFFICE_STARTS:
        return None

    clusters: list[list[DailyStart]] = []
    for start in candidates:
        for members in clusters:
            if within_radius(start.location, members[0].location, CLUSTER_RADIUS_FEET, earth_radius_feet=earth):
                members.append(start)
                break
        else:
            clusters.append([start])

    largest = clusters[0]
    for members in clusters[1:]:
        if len(members) > len(largest):
            largest = members

    detected = len(largest)
    ratio = detected / len(candidates)
    if ratio >= 0.8 and detected >= 10:
        confidence = "high"
    elif ratio >= 0.5 and detected >= 5:
        confidence = "medium"
    elif detected >= 3:
        confidence = "low"
    else:
        return None

    lat = sum(m.location.latitude for m in largest) / detected
    lon = sum(m.location.longitude for m in largest) / detected
    addresses = Counter(m.address for m in largest if m.address)
    if addresses:
        # Counter.most_common keeps first-seen order among ties.
        address = addresses.most_common(1)[0][0]
    else:
        address = largest[0].address or "Unknown Address"

    return HomeSuggestion(
        location=Coordinate(lat, lon),
        address=address,
        confidence=confidence,
        days_detected=detected,
        total_days_analyzed=len(starts),
    )
