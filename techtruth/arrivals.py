"""Arrival detection against vehicle breadcrumbs and trip segments."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Sequence

from techtruth.geo import distance_between
from techtruth.models import (
    ArrivalStatus,
    ClosestApproach,
    Coordinate,
    GpsPoint,
    JobOutcome,
    JobVisit,
    VehicleSegment,
)
from techtruth.settings import DEFAULT_SETTINGS, EARTH_RADIUS_FEET, TimelineSettings
from techtruth.timeutils import minutes_between


@dataclass(frozen=True, slots=True)
class Arrival:
    """First position found inside the arrival radius."""

    arrival_time: datetime
    point: GpsPoint
    distance_feet: float


def segment_stops(segments: Iterable[VehicleSegment]) -> list[GpsPoint]:
    """Turn each finished segment into a point at its end (where the vehicle parked)."""

    stops: list[GpsPoint] = []
    for seg in segments:
        if seg.end_time is None or seg.end_location is None:
            continue
        stops.append(GpsPoint(timestamp=seg.end_time, location=seg.end_location, address=seg.end_address))
    return stops


def find_arrival(
    points: Iterable[GpsPoint],
    target: Coordinate,
    window_start: datetime,
    radius_feet: float = DEFAULT_SETTINGS.arrival_radius_feet,
    *,
    window_end: datetime | None = None,
    earth_radius_feet: float = EARTH_RADIUS_FEET,
) -> Arrival | None:
    """Find the first point within radius_feet of target at or after window_start.

    This is a first-match search: arrival is the first moment of proximity, not
    the moment of closest approach.

    Args:
        points: Breadcrumbs in any order.
        target: Location to arrive at.
        window_start: Points strictly before this are ignored.
        radius_feet: Proximity threshold.
        window_end: Optional inclusive upper bound; the scan stops after it.
        earth_radius_feet: Sphere radius for distances.

    Returns:
        Arrival, or None when no point qualifies (a normal negative result).
    """

    for pt in sorted(points, key=lambda p: p.timestamp):
        if pt.timestamp < window_start:
            continue
        if window_end is not None and pt.timestamp > window_end:
            break
        dist = distance_between(pt.location, target, radius_feet=earth_radius_feet)
        if dist <= radius_feet:
            return Arrival(arrival_time=pt.timestamp, point=pt, distance_feet=dist)
    return None


def find_arrival_from_segments(
    segments: Iterable[VehicleSegment],
    target: Coordinate,
    window_start: datetime,
    radius_feet: float = DEFAULT_SETTINGS.arrival_radius_feet,
    *,
    window_end: datetime | None = None,
    earth_radius_feet: float = EARTH_RADIUS_FEET,
) -> Arrival | None:
    """Same as find_arrival, using the segments' parked end positions."""

    return find_arrival(
        segment_stops(segments),
        target,
        window_start,
        radius_feet,
        window_end=window_end,
        earth_radius_feet=earth_radius_feet,
    )


def closest_approach(
    points: Iterable[GpsPoint],
    target: Coordinate,
    *,
    earth_radius_feet: float = EARTH_RADIUS_FEET,
) -> ClosestApproach | None:
    """Diagnostic: the point nearest to target. Ties keep the earliest point."""

    best: ClosestApproach | None = None
    for pt in sorted(points, key=lambda p: p.timestamp):
        dist = distance_between(pt.location, target, radius_feet=earth_radius_feet)
        if best is None or dist < best.distance_feet:
            best = ClosestApproach(timestamp=pt.timestamp, distance_feet=dist, location=pt.location)
    return best


def arrival_window(job: JobVisit, settings: TimelineSettings) -> tuple[datetime, datetime]:
    start = job.scheduled_start - timedelta(minutes=settings.arrival_window_before_minutes)
    end = job.scheduled_start + timedelta(minutes=settings.arrival_window_after_minutes)
    return start, end


def verify_job_arrival(
    job: JobVisit,
    *,
    segments: Sequence[VehicleSegment],
    breadcrumbs: Sequence[GpsPoint],
    now: datetime,
    grace_minutes: int,
    settings: TimelineSettings = DEFAULT_SETTINGS,
    is_first_job: bool = True,
) -> JobOutcome:
    """Correlate a scheduled job with vehicle data.

    Segment stops are tried first (the vehicle parked there), then raw
    breadcrumbs. Both are limited to the arrival window around the scheduled
    start.

    Args:
        job: The job to verify.
        segments: The vehicle's trips for the day.
        breadcrumbs: The vehicle's GPS points for the day.
        now: Injected current time; windows still open at ``now`` stay SCHEDULED.
        grace_minutes: Variance above this is late.
        settings: Radii and window sizes.
        is_first_job: Stored on the outcome.

    Returns:
        JobOutcome. Jobs lacking coordinates or GPS coverage are UNVERIFIED,
        never on time or late.
    """

    if job.location is None:
        return JobOutcome(
            job=job,
            status=ArrivalStatus.UNVERIFIED,
            is_first_job=is_first_job,
            unverified_reason="no_job_coordinates",
        )

    window_start, window_end = arrival_window(job, settings)
    earth = settings.earth_radius_feet
    source = "segment"
    arrival = find_arrival_from_segments(
        segments,
        job.location,
        window_start,
        settings.arrival_radius_feet,
        window_end=window_end,
        earth_radius_feet=earth,
    )
    if arrival is None:
        source = "breadcrumb"
        arrival = find_arrival(
            breadcrumbs,
            job.location,
            window_start,
            settings.arrival_radius_feet,
            window_end=window_end,
            earth_radius_feet=earth,
        )

    if arrival is not None:
        return outcome_for_arrival(
            job,
            arrival.arrival_time,
            source=source,
            grace_minutes=grace_minutes,
            is_first_job=is_first_job,
        )

    if now < window_end:
        return JobOutcome(job=job, status=ArrivalStatus.SCHEDULED, is_first_job=is_first_job)

    if not segments and not breadcrumbs:
        return JobOutcome(
            job=job,
            status=ArrivalStatus.UNVERIFIED,
            is_first_job=is_first_job,
            unverified_reason="no_gps",
        )
    # A day with only an open trip still knows where that trip began.
    all_points = [*segment_stops(segments), *breadcrumbs] or [
        GpsPoint(timestamp=s.start_time, location=s.start_location, address=s.start_address) for s in segments
    ]
    return JobOutcome(
        job=job,
        status=ArrivalStatus.UNVERIFIED,
        is_first_job=is_first_job,
        closest_approach=closest_approach(all_points, job.location, earth_radius_feet=earth),
        unverified_reason="no_arrival_detected",
    )


def outcome_for_arrival(
    job: JobVisit,
    arrival_time: datetime,
    *,
    source: str,
    grace_minutes: int,
    is_first_job: bool,
) -> JobOutcome:
    variance = minutes_between(job.scheduled_start, arrival_time)
    is_late = variance > grace_minutes
    return JobOutcome(
        job=job,
        status=ArrivalStatus.LATE if is_late else ArrivalStatus.ON_TIME,
        is_first_job=is_first_job,
        actual_arrival=arrival_time,
        variance_minutes=variance,
        is_late=is_late,
        arrival_source=source,
    )
