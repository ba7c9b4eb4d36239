"""Day timeline reconstruction for one technician.

The builder is a pure function of its inputs: events are collected unordered,
sorted once, then derived fields that depend on neighbours are filled in.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import Any, Final, Iterable, Sequence

from techtruth.arrivals import outcome_for_arrival, verify_job_arrival
from techtruth.classifier import LocationContext, classify
from techtruth.geo import within_radius
from techtruth.models import (
    ArrivalStatus,
    Coordinate,
    CustomLocation,
    DaySummary,
    DayTimeline,
    EventType,
    ExcusedVisit,
    GpsPoint,
    JobOutcome,
    JobVisit,
    LocationClass,
    LocationKind,
    ManualJobAssociation,
    MaterialEvent,
    MaterialKind,
    ProposalStatus,
    ProposedPunch,
    PunchType,
    RawPunch,
    Technician,
    TimelineEvent,
    VehicleSegment,
)
from techtruth.punches import Reconciliation, reconcile_punches
from techtruth.settings import DEFAULT_SETTINGS, TimelineSettings
from techtruth.timeutils import local_day_bounds, minutes_between, minutes_float
from techtruth.tracking import VehicleTrack, build_track, covered_seconds
from techtruth.visits import DayAnchors, detect_office_visits, is_unnecessary_office_arrival


class TimelineInputError(ValueError):
    """Raised when a caller omits the day or the technician."""


ARRIVED_EVENT: Final[dict[LocationKind, EventType]] = {
    LocationKind.HOME: EventType.ARRIVED_HOME,
    LocationKind.OFFICE: EventType.ARRIVED_OFFICE,
    LocationKind.JOB: EventType.ARRIVED_JOB,
    LocationKind.CUSTOM: EventType.ARRIVED_CUSTOM,
    LocationKind.UNKNOWN: EventType.ARRIVED_UNKNOWN,
    LocationKind.NO_GPS: EventType.ARRIVED_UNKNOWN,
}
LEFT_EVENT: Final[dict[LocationKind, EventType]] = {
    LocationKind.HOME: EventType.LEFT_HOME,
    LocationKind.OFFICE: EventType.LEFT_OFFICE,
    LocationKind.JOB: EventType.LEFT_JOB,
    LocationKind.CUSTOM: EventType.LEFT_CUSTOM,
    LocationKind.UNKNOWN: EventType.LEFT_UNKNOWN,
    LocationKind.NO_GPS: EventType.LEFT_UNKNOWN,
}
PUNCH_EVENT: Final[dict[PunchType, EventType]] = {
    PunchType.CLOCK_IN: EventType.CLOCK_IN,
    PunchType.CLOCK_OUT: EventType.CLOCK_OUT,
    PunchType.MEAL_START: EventType.MEAL_START,
    PunchType.MEAL_END: EventType.MEAL_END,
}
MATERIAL_EVENT: Final[dict[MaterialKind, EventType]] = {
    MaterialKind.CHECKOUT: EventType.MATERIAL_CHECKOUT,
    MaterialKind.DELIVERY: EventType.MATERIAL_DELIVERY,
    MaterialKind.PICKUP: EventType.MATERIAL_PICKUP,
}

# Tie-break for identical timestamps: clock events, then arrivals, then departures.
SOURCE_PRIORITY: Final[dict[EventType, int]] = {
    EventType.CLOCK_IN: 0,
    EventType.CLOCK_OUT: 0,
    EventType.MEAL_START: 0,
    EventType.MEAL_END: 0,
    EventType.PROPOSED_PUNCH: 1,
    EventType.ARRIVED_HOME: 2,
    EventType.ARRIVED_OFFICE: 2,
    EventType.ARRIVED_JOB: 2,
    EventType.ARRIVED_CUSTOM: 2,
    EventType.ARRIVED_UNKNOWN: 2,
    EventType.LEFT_HOME: 3,
    EventType.LEFT_OFFICE: 3,
    EventType.LEFT_JOB: 3,
    EventType.LEFT_CUSTOM: 3,
    EventType.LEFT_UNKNOWN: 3,
    EventType.MATERIAL_CHECKOUT: 4,
    EventType.MATERIAL_DELIVERY: 4,
    EventType.MATERIAL_PICKUP: 4,
    EventType.OVERNIGHT_AT_OFFICE: 5,
    EventType.MISSING_CLOCK_OUT: 6,
}


def _add(a: float | None, b: float | None) -> float | None:
    if a is None:
        return b
    if b is None:
        return a
    return a + b


def _segment_travel(seg: VehicleSegment) -> tuple[int | None, float]:
    if seg.end_time is None:
        return None, seg.distance_miles
    return minutes_between(seg.start_time, seg.end_time), seg.distance_miles


def _match_association(
    at: datetime,
    associations: Sequence[ManualJobAssociation],
    window: timedelta,
) -> int | None:
    best: int | None = None
    best_delta: timedelta | None = None
    for idx, assoc in enumerate(associations):
        delta = abs(assoc.timestamp - at)
        if delta <= window and (best_delta is None or delta < best_delta):
            best, best_delta = idx, delta
    return best


def _job_class(job_id: str, jobs_by_id: dict[str, JobVisit]) -> LocationClass:
    job = jobs_by_id.get(job_id)
    name = (job.customer_name or job.job_number) if job is not None else None
    return LocationClass(LocationKind.JOB, location_id=job_id, name=name)


def _location_event(
    event_type: EventType,
    timestamp: datetime,
    location: Coordinate | None,
    loc_class: LocationClass,
    jobs_by_id: dict[str, JobVisit],
    **fields: Any,
) -> TimelineEvent:
    job_id = loc_class.location_id if loc_class.kind is LocationKind.JOB else None
    job = jobs_by_id.get(job_id) if job_id else None
    return TimelineEvent(
        event_id="",
        type=event_type,
        timestamp=timestamp,
        location=location,
        location_class=loc_class,
        job_id=job_id,
        label=loc_class.name,
        is_follow_up=bool(job and job.is_follow_up),
        **fields,
    )


def location_events(
    track: VehicleTrack,
    context: LocationContext,
    *,
    associations: Sequence[ManualJobAssociation] = (),
    jobs_by_id: dict[str, JobVisit] | None = None,
    settings: TimelineSettings = DEFAULT_SETTINGS,
) -> tuple[list[TimelineEvent], set[int]]:
    """Turn trips into classified left/arrived events.

    Each trip start is a departure carrying the trip's drive time and distance;
    each trip end is an arrival carrying the dwell until the next departure.
    Unknown stops shorter than ``min_unknown_stop_minutes`` are treated as
    traffic: both sides are dropped and the next trip's travel is folded into
    the open departure. A manual job association within ``manual_match_seconds``
    of an arrival relabels that stop as the associated job.

    Returns:
        (events, indices of associations that matched a stop)
    """

    jobs = jobs_by_id or {}
    events: list[TimelineEvent] = []
    used: set[int] = set()
    segs = track.segments
    if not segs:
        return events, used

    window = timedelta(seconds=settings.manual_match_seconds)
    first = segs[0]
    minutes, miles = _segment_travel(first)
    start_class = classify(first.start_location, context, settings)
    events.append(
        _location_event(
            LEFT_EVENT[start_class.kind],
            first.start_time,
            first.start_location,
            start_class,
            jobs,
            address=first.start_address,
            travel_minutes=minutes,
            travel_miles=miles,
        )
    )
    open_departure = 0

    for i, seg in enumerate(segs):
        if seg.end_time is None or seg.end_location is None:
            continue
        nxt = segs[i + 1] if i + 1 < len(segs) else None

        loc_class = classify(seg.end_location, context, settings)
        manual = False
        match = _match_association(seg.end_time, associations, window)
        if match is not None:
            used.add(match)
            loc_class = _job_class(associations[match].job_id, jobs)
            manual = True

        dwell = minutes_float(seg.end_time, nxt.start_time) if nxt is not None else None
        if (
            nxt is not None
            and loc_class.kind is LocationKind.UNKNOWN
            and dwell is not None
            and dwell < settings.min_unknown_stop_minutes
        ):
            n_minutes, n_miles = _segment_travel(nxt)
            prev = events[open_departure]
            events[open_departure] = replace(
                prev,
                travel_minutes=_add(prev.travel_minutes, n_minutes),
                travel_miles=_add(prev.travel_miles, n_miles),
            )
            continue

        events.append(
            _location_event(
                ARRIVED_EVENT[loc_class.kind],
                seg.end_time,
                seg.end_location,
                loc_class,
                jobs,
                address=seg.end_address,
                duration_minutes=None if dwell is None else int(round(dwell)),
                is_manual=manual,
            )
        )
        if nxt is None:
            continue

        if within_radius(
            seg.end_location,
            nxt.start_location,
            settings.arrival_radius_feet,
            earth_radius_feet=settings.earth_radius_feet,
        ):
            dep_class = loc_class
        else:
            dep_class = classify(nxt.start_location, context, settings)
            manual = False
        n_minutes, n_miles = _segment_travel(nxt)
        events.append(
            _location_event(
                LEFT_EVENT[dep_class.kind],
                nxt.start_time,
                nxt.start_location,
                dep_class,
                jobs,
                address=nxt.start_address,
                travel_minutes=n_minutes,
                travel_miles=n_miles,
                is_manual=manual,
            )
        )
        open_departure = len(events) - 1

    return events, used


def pick_first_job(jobs: Sequence[JobVisit]) -> JobVisit | None:
    """The job flagged first-of-day, else the earliest job that is not a follow-up."""

    for job in jobs:
        if job.is_first_of_day:
            return job
    for job in jobs:
        if not job.is_follow_up:
            return job
    return None


def _job_outcomes(
    jobs: Sequence[JobVisit],
    first_job: JobVisit | None,
    events: Sequence[TimelineEvent],
    *,
    track: VehicleTrack,
    associations: Sequence[ManualJobAssociation],
    now: datetime,
    grace_minutes: int,
    settings: TimelineSettings,
) -> list[JobOutcome]:
    manual_by_job: dict[str, ManualJobAssociation] = {}
    for assoc in sorted(associations, key=lambda a: a.timestamp):
        manual_by_job.setdefault(assoc.job_id, assoc)
    seen_arrival: dict[str, datetime] = {}
    for ev in events:
        if ev.type is EventType.ARRIVED_JOB and ev.job_id is not None:
            if ev.job_id not in seen_arrival or ev.timestamp < seen_arrival[ev.job_id]:
                seen_arrival[ev.job_id] = ev.timestamp

    outcomes: list[JobOutcome] = []
    for job in jobs:
        manual = manual_by_job.get(job.job_id)
        if first_job is not None and job.job_id == first_job.job_id:
            if manual is not None:
                outcome = outcome_for_arrival(
                    job, manual.timestamp, source="manual", grace_minutes=grace_minutes, is_first_job=True
                )
            else:
                outcome = verify_job_arrival(
                    job,
                    segments=track.segments,
                    breadcrumbs=track.breadcrumbs,
                    now=now,
                    grace_minutes=grace_minutes,
                    settings=settings,
                )
        else:
            arrival = manual.timestamp if manual is not None else seen_arrival.get(job.job_id)
            source = "manual" if manual is not None else ("segment" if arrival is not None else None)
            outcome = JobOutcome(
                job=job,
                status=ArrivalStatus.NOT_CHECKED,
                actual_arrival=arrival,
                variance_minutes=None if arrival is None else minutes_between(job.scheduled_start, arrival),
                arrival_source=source,
            )
        outcomes.append(outcome)
    return outcomes


def _attach_first_job(
    events: list[TimelineEvent],
    outcome: JobOutcome,
    jobs_by_id: dict[str, JobVisit],
) -> None:
    if outcome.actual_arrival is None:
        return
    job = outcome.job
    fields: dict[str, Any] = {
        "is_first_job": True,
        "is_late": outcome.is_late,
        "variance_minutes": outcome.variance_minutes,
    }
    manual = outcome.arrival_source == "manual"
    for idx, ev in enumerate(events):
        if ev.type is not EventType.ARRIVED_JOB or ev.job_id != job.job_id:
            continue
        if ev.timestamp == outcome.actual_arrival or (manual and ev.is_manual):
            events[idx] = replace(ev, **fields)
            return
    events.append(
        _location_event(
            EventType.ARRIVED_JOB,
            outcome.actual_arrival,
            job.location,
            _job_class(job.job_id, jobs_by_id),
            jobs_by_id,
            address=job.address,
            is_manual=manual,
            **fields,
        )
    )


def _punch_events(reconciliation: Reconciliation) -> list[TimelineEvent]:
    events: list[TimelineEvent] = []
    for p in reconciliation.punches:
        events.append(
            TimelineEvent(
                event_id="",
                type=PUNCH_EVENT[p.punch_type],
                timestamp=p.punch_time,
                location=p.location,
                location_class=p.location_class,
                label=p.origin,
                is_violation=p.is_violation,
                violation_reason=p.violation_reason,
                can_be_excused=p.can_be_excused,
                is_excused=p.is_excused,
                is_synthesized=p.is_synthesized,
                is_manual=p.is_manual,
            )
        )
    return events


def _proposal_events(proposals: Iterable[ProposedPunch]) -> list[TimelineEvent]:
    events: list[TimelineEvent] = []
    for prop in sorted(proposals, key=lambda p: (p.proposed_time, p.proposal_id)):
        if prop.status in (ProposalStatus.APPLIED, ProposalStatus.REJECTED):
            continue
        events.append(
            TimelineEvent(
                event_id="",
                type=EventType.PROPOSED_PUNCH,
                timestamp=prop.proposed_time,
                label=f"Proposed {prop.punch_type.value}" + (f": {prop.note}" if prop.note else ""),
                is_manual=True,
                proposal_status=prop.status,
            )
        )
    return events


def _material_events(materials: Iterable[MaterialEvent]) -> list[TimelineEvent]:
    return [
        TimelineEvent(
            event_id="",
            type=MATERIAL_EVENT[m.kind],
            timestamp=m.timestamp,
            location=m.location,
            label=f"{m.total_items} items" + (f" (PO {m.po_number})" if m.po_number else ""),
        )
        for m in sorted(materials, key=lambda m: (m.timestamp, m.group_id))
    ]


def _fill_gaps(events: list[TimelineEvent], track: VehicleTrack, settings: TimelineSettings) -> None:
    threshold = settings.untracked_gap_minutes
    for idx in range(1, len(events)):
        prev, cur = events[idx - 1], events[idx]
        elapsed = minutes_between(prev.timestamp, cur.timestamp)
        gap_s = (cur.timestamp - prev.timestamp).total_seconds()
        untracked = int(max(0.0, gap_s - covered_seconds(track, prev.timestamp, cur.timestamp)) / 60.0)
        events[idx] = replace(
            cur,
            elapsed_minutes=elapsed,
            has_untracked_time=untracked > threshold,
            untracked_minutes=untracked if untracked > 0 else None,
        )


def build_day_timeline(
    day: date | None,
    technician: Technician | None,
    *,
    now: datetime,
    segments: Iterable[VehicleSegment] = (),
    breadcrumbs: Iterable[GpsPoint] = (),
    jobs: Iterable[JobVisit] = (),
    punches: Iterable[RawPunch] = (),
    custom_locations: Iterable[CustomLocation] = (),
    excused_visits: Iterable[ExcusedVisit] = (),
    manual_associations: Iterable[ManualJobAssociation] = (),
    proposed_punches: Iterable[ProposedPunch] = (),
    materials: Iterable[MaterialEvent] = (),
    settings: TimelineSettings = DEFAULT_SETTINGS,
) -> DayTimeline:
    """Rebuild one technician's day from raw inputs.

    Args:
        day: Local business date.
        technician: Policy configuration; must carry a technician id.
        now: Injected current time. Decides whether windows are still open,
            whether a missing clock-out is final, and whether the truck stayed
            at the office overnight.
        segments: Vehicle trips (any order).
        breadcrumbs: Vehicle GPS points (any order).
        jobs: Scheduled jobs; canceled ones are ignored.
        punches: Payroll rows.
        custom_locations: User-labeled geofences.
        excused_visits: Office-visit approvals; only this technician/day count.
        manual_associations: Operator stop-to-job assignments.
        proposed_punches: Operator punch corrections.
        materials: Material checkout / delivery / pickup events.
        settings: Thresholds.

    Returns:
        DayTimeline. Identical inputs (including ``now``) give identical output.

    Raises:
        TimelineInputError: If day or technician id is missing.
    """

    if day is None or isinstance(day, datetime) or not isinstance(day, date):
        raise TimelineInputError(f"day must be a date, got {day!r}")
    if technician is None or not technician.technician_id:
        raise TimelineInputError("technician with a technician_id is required")

    day_start, day_end = local_day_bounds(day, settings.tz_name)
    day_over = now >= day_end
    grace = technician.late_grace_minutes if technician.late_grace_minutes is not None else settings.late_grace_minutes
    excused = any(ev.technician_id == technician.technician_id and ev.visit_date == day for ev in excused_visits)
    exempt = technician.exclude_from_office_visits

    active_jobs = sorted((j for j in jobs if not j.is_canceled), key=lambda j: (j.scheduled_start, j.job_id))
    jobs_by_id = {j.job_id: j for j in active_jobs}
    context = LocationContext.for_technician(technician, custom_locations=custom_locations, jobs=active_jobs)
    track = build_track(segments, breadcrumbs, day_start=day_start, day_end=day_end, settings=settings)
    associations = sorted(manual_associations, key=lambda a: (a.timestamp, a.job_id))
    proposals = list(proposed_punches)

    # 1. vehicle movement
    events, used = location_events(
        track, context, associations=associations, jobs_by_id=jobs_by_id, settings=settings
    )
    for idx, assoc in enumerate(associations):
        if idx in used:
            continue
        job = jobs_by_id.get(assoc.job_id)
        events.append(
            _location_event(
                EventType.ARRIVED_JOB,
                assoc.timestamp,
                assoc.location or (job.location if job else None),
                _job_class(assoc.job_id, jobs_by_id),
                jobs_by_id,
                address=job.address if job else None,
                is_manual=True,
            )
        )

    # 2. first job verification
    first_job = pick_first_job(active_jobs)
    outcomes = _job_outcomes(
        active_jobs,
        first_job,
        events,
        track=track,
        associations=associations,
        now=now,
        grace_minutes=grace,
        settings=settings,
    )
    first_outcome = next((o for o in outcomes if o.is_first_job), None)
    if first_outcome is not None:
        _attach_first_job(events, first_outcome, jobs_by_id)

    # 3-4. punches, proposals, materials
    reconciliation = reconcile_punches(
        punches,
        technician=technician,
        track=track,
        context=context,
        office_visit_excused=excused,
        proposals=proposals,
        settings=settings,
    )
    events.extend(_punch_events(reconciliation))
    events.extend(_proposal_events(proposals))
    events.extend(_material_events(materials))

    last_seg = track.segments[-1] if track.segments else None
    overnight_at_office = bool(
        day_over
        and technician.takes_truck_home
        and last_seg is not None
        and last_seg.end_time is not None
        and last_seg.end_location is not None
        and classify(last_seg.end_location, context, settings).kind is LocationKind.OFFICE
    )
    if overnight_at_office and last_seg is not None and last_seg.end_time is not None:
        events.append(
            TimelineEvent(
                event_id="",
                type=EventType.OVERNIGHT_AT_OFFICE,
                timestamp=last_seg.end_time,
                location=last_seg.end_location,
                location_class=LocationClass(LocationKind.OFFICE),
                label="Vehicle parked at office overnight",
            )
        )

    has_missing_clock_out = day_over and reconciliation.has_open_session
    if has_missing_clock_out:
        events.append(
            TimelineEvent(
                event_id="",
                type=EventType.MISSING_CLOCK_OUT,
                timestamp=max(ev.timestamp for ev in events),
                label="No clock-out recorded",
            )
        )

    # 5. single deterministic sort
    order = sorted(range(len(events)), key=lambda i: (events[i].timestamp, SOURCE_PRIORITY[events[i].type], i))
    events = [events[i] for i in order]

    # 6. gaps
    _fill_gaps(events, track, settings)

    # 7. unnecessary office visits
    anchors = DayAnchors(
        first_job_start=first_job.scheduled_start if first_job is not None else None,
        first_job_departure=next((e.timestamp for e in events if e.type is EventType.LEFT_JOB), None),
        last_job_arrival=next((e.timestamp for e in reversed(events) if e.type is EventType.ARRIVED_JOB), None),
        started_from_home=bool(
            track.segments
            and classify(track.segments[0].start_location, context, settings).kind is LocationKind.HOME
        ),
    )
    for idx, ev in enumerate(events):
        if ev.type is not EventType.ARRIVED_OFFICE:
            continue
        flagged = is_unnecessary_office_arrival(
            ev.timestamp, anchors, takes_truck_home=technician.takes_truck_home, exempt=exempt
        )
        if flagged:
            events[idx] = replace(ev, is_unnecessary=not excused, is_excused=excused)

    office_visits = detect_office_visits(
        track.segments,
        context=context,
        anchors=anchors,
        takes_truck_home=technician.takes_truck_home,
        exempt=exempt,
        excused=excused,
        settings=settings,
    )

    prefix = f"{technician.technician_id}-{day:%Y%m%d}"
    events = [replace(ev, event_id=f"{prefix}-{i:03d}") for i, ev in enumerate(events)]

    # 8. summary
    summary = _summarize(
        events,
        outcomes,
        reconciliation,
        track=track,
        has_missing_clock_out=has_missing_clock_out,
        overnight_at_office=overnight_at_office,
    )
    return DayTimeline(
        day=day,
        technician_id=technician.technician_id,
        technician_name=technician.name,
        events=tuple(events),
        jobs=tuple(outcomes),
        punches=reconciliation.punches,
        office_visits=tuple(office_visits),
        summary=summary,
    )


def _summarize(
    events: Sequence[TimelineEvent],
    outcomes: Sequence[JobOutcome],
    reconciliation: Reconciliation,
    *,
    track: VehicleTrack,
    has_missing_clock_out: bool,
    overnight_at_office: bool,
) -> DaySummary:
    drive_minutes = 0
    drive_miles = 0.0
    for seg in track.segments:
        if seg.end_time is not None:
            drive_minutes += minutes_between(seg.start_time, seg.end_time)
        drive_miles += seg.distance_miles

    first = next((o for o in outcomes if o.is_first_job), None)
    punches = reconciliation.punches
    return DaySummary(
        total_jobs=len(outcomes),
        jobs_with_arrival=sum(1 for o in outcomes if o.actual_arrival is not None),
        total_office_visits=sum(1 for e in events if e.type is EventType.ARRIVED_OFFICE),
        unnecessary_office_visits=sum(1 for e in events if e.type is EventType.ARRIVED_OFFICE and e.is_unnecessary),
        total_drive_minutes=drive_minutes,
        total_drive_miles=round(drive_miles, 2),
        unknown_stops=sum(1 for e in events if e.type is EventType.ARRIVED_UNKNOWN),
        first_job_id=first.job.job_id if first is not None else None,
        first_job_status=first.status if first is not None else None,
        first_job_on_time=None if first is None or first.is_late is None else not first.is_late,
        first_job_variance=first.variance_minutes if first is not None else None,
        has_missing_clock_out=has_missing_clock_out,
        overnight_at_office=overnight_at_office,
        clock_in_violations=sum(1 for p in punches if p.is_first_of_day and p.is_violation),
        clock_out_violations=sum(1 for p in punches if p.is_last_of_day and p.is_violation),
        active_violations=sum(1 for p in punches if p.is_active_violation),
        excused_violations=sum(1 for p in punches if p.is_violation and p.is_excused),
        untracked_minutes=sum(e.untracked_minutes or 0 for e in events if e.has_untracked_time),
    )
