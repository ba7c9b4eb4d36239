"""Office visit detection and classification."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Sequence

from techtruth.classifier import LocationContext, classify
from techtruth.models import Coordinate, LocationKind, OfficeVisit, OfficeVisitType, VehicleSegment
from techtruth.settings import DEFAULT_SETTINGS, TimelineSettings
from techtruth.timeutils import tzinfo_from_name


@dataclass(frozen=True, slots=True)
class DayAnchors:
    """Job-related instants an office visit is judged against.

    Attributes:
        first_job_start: Scheduled start of the first job.
        first_job_departure: When the vehicle first left a job site.
        last_job_arrival: When the vehicle last arrived at a job site.
        started_from_home: The day's first trip began at the technician's home.
    """

    first_job_start: datetime | None = None
    first_job_departure: datetime | None = None
    last_job_arrival: datetime | None = None
    started_from_home: bool = False


def is_unnecessary_office_arrival(
    arrival: datetime,
    anchors: DayAnchors,
    *,
    takes_truck_home: bool,
    exempt: bool,
) -> bool:
    """Whether a take-home-truck technician had no reason to be at the office.

    Two cases count: a mid-day visit strictly between the first job departure
    and the last job arrival, and a stop at the office before the first job
    after the truck started the day at home.
    """

    if not takes_truck_home or exempt:
        return False
    if (
        anchors.first_job_departure is not None
        and anchors.last_job_arrival is not None
        and anchors.first_job_departure < arrival < anchors.last_job_arrival
    ):
        return True
    return bool(
        anchors.started_from_home
        and anchors.first_job_start is not None
        and arrival < anchors.first_job_start
    )


@dataclass(slots=True)
class _RawVisit:
    arrival: datetime
    departure: datetime | None
    day_start_at_office: bool = False


def _is_office(point: Coordinate, context: LocationContext, settings: TimelineSettings) -> bool:
    return classify(point, context, settings).kind is LocationKind.OFFICE


def detect_office_visits(
    segments: Sequence[VehicleSegment],
    *,
    context: LocationContext,
    anchors: DayAnchors,
    takes_truck_home: bool = False,
    exempt: bool = False,
    excused: bool = False,
    settings: TimelineSettings = DEFAULT_SETTINGS,
) -> list[OfficeVisit]:
    """Detect and classify office visits from the day's trips.

    Args:
        segments: Trips sorted by start (see tracking.normalize_segments).
        context: Classification candidates.
        anchors: Job-related instants for the day.
        takes_truck_home: Technician policy.
        exempt: Technician is excluded from office-visit checks.
        excused: An excused-visit record exists for this day.
        settings: Merge window and end-of-day hour.

    Returns:
        Consolidated visits in time order.

    Notes:
        Visits starting within ``office_visit_merge_minutes`` of the previous
        departure are merged (a quick move across the parking lot is one visit).
        A day that starts at the office yields a morning departure with no
        arrival time, since the arrival happened the evening before.
    """

    if not segments:
        return []

    raw: list[_RawVisit] = []
    first = segments[0]
    starts_at_office = _is_office(first.start_location, context, settings)
    if starts_at_office:
        raw.append(_RawVisit(arrival=first.start_time, departure=first.start_time, day_start_at_office=True))

    for i, seg in enumerate(segments):
        if seg.end_time is None or seg.end_location is None:
            continue
        if not _is_office(seg.end_location, context, settings):
            continue
        departure = segments[i + 1].start_time if i + 1 < len(segments) else None
        raw.append(_RawVisit(arrival=seg.end_time, departure=departure))

    merge_window = timedelta(minutes=settings.office_visit_merge_minutes)
    merged: list[_RawVisit] = []
    for visit in raw:
        if merged:
            last = merged[-1]
            last_departure = last.departure or last.arrival
            if visit.arrival - last_departure <= merge_window:
                last.departure = visit.departure
                continue
        merged.append(_RawVisit(visit.arrival, visit.departure, visit.day_start_at_office))

    tz = tzinfo_from_name(settings.tz_name)
    visits: list[OfficeVisit] = []
    for i, visit in enumerate(merged):
        unnecessary = False
        if visit.day_start_at_office:
            visit_type = OfficeVisitType.MORNING_DEPARTURE
        elif anchors.first_job_start is not None and visit.arrival < anchors.first_job_start:
            if takes_truck_home and anchors.started_from_home:
                visit_type = OfficeVisitType.MID_DAY_VISIT
            else:
                visit_type = OfficeVisitType.MORNING_DEPARTURE
        elif visit.arrival.astimezone(tz).hour >= settings.end_of_day_hour:
            visit_type = OfficeVisitType.END_OF_DAY
        elif i == len(merged) - 1 and visit.departure is None:
            visit_type = OfficeVisitType.END_OF_DAY
        else:
            visit_type = OfficeVisitType.MID_DAY_VISIT

        if not visit.day_start_at_office:
            unnecessary = is_unnecessary_office_arrival(
                visit.arrival, anchors, takes_truck_home=takes_truck_home, exempt=exempt
            )
        _append_visit(
            visits=visits,
            visit=visit,
            visit_type=visit_type,
            unnecessary=unnecessary and not excused,
            excused=unnecessary and excused,
        )
    return visits


def _append_visit(
    *,
    visits: list[OfficeVisit],
    visit: _RawVisit,
    visit_type: OfficeVisitType,
    unnecessary: bool,
    excused: bool,
) -> None:
    duration: int | None = None
    if visit.departure is not None:
        duration = int(round((visit.departure - visit.arrival).total_seconds() / 60.0))
    visits.append(
        OfficeVisit(
            arrival_time=None if visit.day_start_at_office else visit.arrival,
            departure_time=visit.departure,
            visit_type=visit_type,
            duration_minutes=duration,
            is_unnecessary=unnecessary,
            is_excused=excused,
        )
    )
