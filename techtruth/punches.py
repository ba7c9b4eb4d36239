"""Punch reconciliation: split, pair, locate and policy-check clock punches."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Final, Iterable, Sequence, assert_never

from techtruth.classifier import LocationContext, classify
from techtruth.models import (
    Coordinate,
    LocationClass,
    LocationKind,
    ProposalStatus,
    ProposedPunch,
    PunchRecord,
    PunchType,
    RawPunch,
    Technician,
)
from techtruth.settings import DEFAULT_SETTINGS, TimelineSettings
from techtruth.timeutils import ensure_aware, minutes_between, parse_local_timestamp
from techtruth.tracking import VehicleTrack, position_at

logger = logging.getLogger(__name__)


PAIRED_ROW_TYPES: Final[dict[str, tuple[PunchType, PunchType]]] = {
    "work": (PunchType.CLOCK_IN, PunchType.CLOCK_OUT),
    "meal": (PunchType.MEAL_START, PunchType.MEAL_END),
}
OPENING_TO_CLOSING: Final[dict[PunchType, PunchType]] = {
    PunchType.CLOCK_IN: PunchType.CLOCK_OUT,
    PunchType.MEAL_START: PunchType.MEAL_END,
}
CLOSING_TO_OPENING: Final[dict[PunchType, PunchType]] = {v: k for k, v in OPENING_TO_CLOSING.items()}
# Same-instant ordering: a session closes before the next one opens.
PUNCH_ORDER: Final[dict[PunchType, int]] = {
    PunchType.CLOCK_OUT: 0,
    PunchType.MEAL_END: 1,
    PunchType.MEAL_START: 2,
    PunchType.CLOCK_IN: 3,
}


@dataclass(frozen=True, slots=True)
class DiscretePunch:
    """One side of a punch session before it is located."""

    employee_id: str
    punch_type: PunchType
    punch_time: datetime
    paired_time: datetime | None = None
    origin: str | None = None
    punch_id: str | None = None
    is_synthesized: bool = False
    is_manual: bool = False


@dataclass(frozen=True, slots=True)
class Verdict:
    is_violation: bool = False
    reason: str | None = None
    can_be_excused: bool = False
    is_excused: bool = False
    expected: LocationKind | None = None


@dataclass(frozen=True, slots=True)
class Reconciliation:
    """Reconciler output for one technician-day."""

    punches: tuple[PunchRecord, ...]
    dropped: int
    synthesized: int

    @property
    def has_open_session(self) -> bool:
        """True when the last clock-in has no later clock-out."""

        last_in = max((p.punch_time for p in self.punches if p.punch_type is PunchType.CLOCK_IN), default=None)
        if last_in is None:
            return False
        last_out = max((p.punch_time for p in self.punches if p.punch_type is PunchType.CLOCK_OUT), default=None)
        return last_out is None or last_out < last_in


def _coerce_time(value: datetime | str | None, tz_name: str) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_aware(value, tz_name)
    if not str(value).strip():
        return None
    return parse_local_timestamp(str(value), tz_name)


def _punch_type(text: str) -> PunchType | tuple[PunchType, PunchType]:
    key = text.strip()
    if key.lower() in PAIRED_ROW_TYPES:
        return PAIRED_ROW_TYPES[key.lower()]
    for pt in PunchType:
        if pt.value.lower() == key.lower():
            return pt
    raise ValueError(f"unknown punch type {text!r}")


def split_raw_punches(
    raw_punches: Iterable[RawPunch],
    tz_name: str = DEFAULT_SETTINGS.tz_name,
) -> tuple[list[DiscretePunch], int]:
    """Split feed rows into discrete punches.

    A paired row ("work"/"meal") yields an opening and a closing punch for the
    sides it has. A discrete row yields one punch whose paired time is the
    other side. Rows without a usable time are dropped and logged.

    Returns:
        (punches, dropped_count)
    """

    out: list[DiscretePunch] = []
    dropped = 0
    for raw in raw_punches:
        try:
            kind = _punch_type(raw.punch_type)
            start = _coerce_time(raw.clock_in_time, tz_name)
            end = _coerce_time(raw.clock_out_time, tz_name)
        except (ValueError, TypeError) as exc:
            logger.warning("Dropping punch %s for employee %s: %s", raw.punch_id, raw.employee_id, exc)
            dropped += 1
            continue

        base = {"employee_id": raw.employee_id, "origin": raw.origin, "punch_id": raw.punch_id}
        if isinstance(kind, tuple):
            opening, closing = kind
            if start is None and end is None:
                logger.warning("Dropping punch %s for employee %s: no times", raw.punch_id, raw.employee_id)
                dropped += 1
                continue
            if start is not None:
                out.append(DiscretePunch(punch_type=opening, punch_time=start, paired_time=end, **base))
            if end is not None:
                out.append(DiscretePunch(punch_type=closing, punch_time=end, paired_time=start, **base))
            continue

        if kind in OPENING_TO_CLOSING:
            own, other = start, end
        else:
            own, other = end, start
        if own is None:
            logger.warning("Dropping %s punch %s for employee %s: no time", kind, raw.punch_id, raw.employee_id)
            dropped += 1
            continue
        out.append(DiscretePunch(punch_type=kind, punch_time=own, paired_time=other, **base))
    return out, dropped


def _has_counterpart(punch: DiscretePunch, wanted: PunchType, punches: Sequence[DiscretePunch]) -> bool:
    for other in punches:
        if other.employee_id != punch.employee_id or other.punch_type is not wanted:
            continue
        if other.punch_time == punch.paired_time or other.paired_time == punch.punch_time:
            return True
    return False


def synthesize_missing(punches: Sequence[DiscretePunch]) -> list[DiscretePunch]:
    """Add the missing side of sessions whose other side carries the paired time.

    Only known times are used; nothing is invented. Synthesized punches are
    flagged so they can be told apart from feed-reported ones.
    """

    added: list[DiscretePunch] = []
    for p in punches:
        if p.paired_time is None:
            continue
        if p.punch_type in OPENING_TO_CLOSING:
            wanted = OPENING_TO_CLOSING[p.punch_type]
        else:
            wanted = CLOSING_TO_OPENING[p.punch_type]
        if _has_counterpart(p, wanted, punches) or _has_counterpart(p, wanted, added):
            continue
        added.append(
            DiscretePunch(
                employee_id=p.employee_id,
                punch_type=wanted,
                punch_time=p.paired_time,
                paired_time=p.punch_time,
                origin=p.origin,
                punch_id=p.punch_id,
                is_synthesized=True,
            )
        )
    return [*punches, *added]


def dedupe_punches(punches: Iterable[DiscretePunch]) -> list[DiscretePunch]:
    seen: set[tuple[str, PunchType, datetime]] = set()
    out: list[DiscretePunch] = []
    for p in punches:
        key = (p.employee_id, p.punch_type, p.punch_time)
        if key in seen:
            continue
        seen.add(key)
        out.append(p)
    return out


def apply_proposals(
    punches: Sequence[DiscretePunch],
    proposals: Iterable[ProposedPunch],
    *,
    employee_id: str,
    match_window: timedelta,
) -> list[DiscretePunch]:
    """Fold applied operator corrections into the punch list.

    An applied proposal replaces the closest same-type punch within
    match_window; otherwise it fills the slot as a new manual punch.
    """

    result = list(punches)
    for proposal in sorted(proposals, key=lambda p: (p.proposed_time, p.proposal_id)):
        if proposal.status is not ProposalStatus.APPLIED:
            continue
        best_idx: int | None = None
        best_delta: timedelta | None = None
        for idx, p in enumerate(result):
            if p.punch_type is not proposal.punch_type or p.is_manual:
                continue
            delta = abs(p.punch_time - proposal.proposed_time)
            if delta <= match_window and (best_delta is None or delta < best_delta):
                best_idx, best_delta = idx, delta
        manual = DiscretePunch(
            employee_id=employee_id,
            punch_type=proposal.punch_type,
            punch_time=proposal.proposed_time,
            origin="proposal",
            punch_id=proposal.proposal_id,
            is_manual=True,
        )
        if best_idx is None:
            result.append(manual)
        else:
            result[best_idx] = replace(manual, employee_id=result[best_idx].employee_id)
    return result


def clock_in_verdict(kind: LocationKind, *, takes_truck_home: bool, office_visit_excused: bool) -> Verdict:
    """Policy for the first clock-in of the day."""

    if kind is LocationKind.NO_GPS:
        return Verdict()

    if not takes_truck_home:
        if kind is LocationKind.OFFICE:
            return Verdict(expected=LocationKind.OFFICE)
        return Verdict(
            is_violation=True,
            reason=f"Clocked in at {kind.value.upper()} instead of office",
            expected=LocationKind.OFFICE,
        )

    if kind is LocationKind.HOME:
        return Verdict(is_violation=True, reason="Clocked in at HOME instead of job site", expected=LocationKind.JOB)
    if kind is LocationKind.OFFICE:
        return Verdict(
            is_violation=True,
            reason="Clocked in at OFFICE - should go direct to job",
            can_be_excused=True,
            is_excused=office_visit_excused,
            expected=LocationKind.JOB,
        )
    if kind is LocationKind.UNKNOWN:
        return Verdict(
            is_violation=True,
            reason="Clocked in at UNKNOWN location - not at expected job site",
            expected=LocationKind.JOB,
        )
    if kind is LocationKind.JOB or kind is LocationKind.CUSTOM:
        return Verdict(expected=LocationKind.JOB)
    assert_never(kind)


def clock_out_verdict(
    kind: LocationKind,
    *,
    takes_truck_home: bool,
    minutes_after_last_job: int | None,
    tolerance_minutes: int,
) -> Verdict:
    """Policy for the last clock-out of the day.

    Args:
        kind: Where the clock-out happened.
        takes_truck_home: Technician policy.
        minutes_after_last_job: Minutes between leaving the last job site and
            the clock-out, when known.
        tolerance_minutes: Allowed drift after leaving the last job.
    """

    if kind is LocationKind.NO_GPS:
        return Verdict()

    if not takes_truck_home:
        if kind is LocationKind.OFFICE:
            return Verdict(expected=LocationKind.OFFICE)
        return Verdict(
            is_violation=True,
            reason=f"Clocked out at {kind.value.upper()} instead of office",
            expected=LocationKind.OFFICE,
        )

    if kind is LocationKind.HOME:
        return Verdict(
            is_violation=True,
            reason="Clocked out at HOME - should clock out when leaving last job",
            expected=LocationKind.JOB,
        )
    if kind is LocationKind.OFFICE or kind is LocationKind.JOB:
        return Verdict(expected=LocationKind.JOB)
    if kind is LocationKind.CUSTOM or kind is LocationKind.UNKNOWN:
        if minutes_after_last_job is not None and minutes_after_last_job > tolerance_minutes:
            return Verdict(
                is_violation=True,
                reason=f"Clocked out {minutes_after_last_job}m after leaving last job",
                expected=LocationKind.JOB,
            )
        return Verdict(expected=LocationKind.JOB)
    assert_never(kind)


def _last_job_departure(
    track: VehicleTrack,
    context: LocationContext,
    before: datetime,
    settings: TimelineSettings,
) -> datetime | None:
    departure: datetime | None = None
    for seg in track.segments:
        if seg.start_time > before:
            break
        if classify(seg.start_location, context, settings).kind is LocationKind.JOB:
            departure = seg.start_time
    return departure


def _locate(
    instant: datetime,
    track: VehicleTrack,
    context: LocationContext,
    settings: TimelineSettings,
) -> tuple[Coordinate | None, LocationClass]:
    sample = position_at(track, instant, timedelta(minutes=settings.punch_tolerance_minutes))
    if sample is None:
        return None, classify(None, context, settings)
    return sample.location, classify(sample.location, context, settings)


def reconcile_punches(
    raw_punches: Iterable[RawPunch],
    *,
    technician: Technician,
    track: VehicleTrack,
    context: LocationContext,
    office_visit_excused: bool = False,
    proposals: Iterable[ProposedPunch] = (),
    settings: TimelineSettings = DEFAULT_SETTINGS,
) -> Reconciliation:
    """Reconcile one technician's punches for one day.

    Steps:
        1. Split feed rows into discrete punches (bad rows dropped and logged).
        2. Synthesize missing sides of sessions from known paired times.
        3. Fold in applied operator corrections.
        4. Per employee, mark the first clock-in and last clock-out.
        5. Locate every punch on the vehicle track and classify it.
        6. Policy-check only the first clock-in and last clock-out.

    Args:
        raw_punches: Feed rows for the technician and day.
        technician: Policy configuration.
        track: The vehicle's normalized data for the day.
        context: Classification candidates.
        office_visit_excused: An excused-visit record exists for this day.
        proposals: Operator-proposed corrections; only applied ones are used.
        settings: Thresholds.

    Returns:
        Reconciliation with punches ordered by time.
    """

    discrete, dropped = split_raw_punches(raw_punches, settings.tz_name)
    feed_count = len(dedupe_punches(discrete))
    discrete = dedupe_punches(synthesize_missing(discrete))
    synthesized = len(discrete) - feed_count
    discrete = apply_proposals(
        discrete,
        proposals,
        employee_id=technician.employee_id or technician.technician_id,
        match_window=timedelta(seconds=settings.manual_match_seconds),
    )
    discrete.sort(key=lambda p: (p.punch_time, PUNCH_ORDER[p.punch_type], p.employee_id))

    first_in: dict[str, datetime] = {}
    last_out: dict[str, datetime] = {}
    for p in discrete:
        if p.punch_type is PunchType.CLOCK_IN and p.employee_id not in first_in:
            first_in[p.employee_id] = p.punch_time
        if p.punch_type is PunchType.CLOCK_OUT:
            last_out[p.employee_id] = p.punch_time

    records: list[PunchRecord] = []
    for p in discrete:
        location, loc_class = _locate(p.punch_time, track, context, settings)
        is_first = p.punch_type is PunchType.CLOCK_IN and first_in.get(p.employee_id) == p.punch_time
        is_last = p.punch_type is PunchType.CLOCK_OUT and last_out.get(p.employee_id) == p.punch_time

        verdict = Verdict()
        if is_first:
            verdict = clock_in_verdict(
                loc_class.kind,
                takes_truck_home=technician.takes_truck_home,
                office_visit_excused=office_visit_excused,
            )
        elif is_last:
            departure = _last_job_departure(track, context, p.punch_time, settings)
            verdict = clock_out_verdict(
                loc_class.kind,
                takes_truck_home=technician.takes_truck_home,
                minutes_after_last_job=None if departure is None else minutes_between(departure, p.punch_time),
                tolerance_minutes=settings.clock_out_tolerance_minutes,
            )

        records.append(
            PunchRecord(
                technician_id=technician.technician_id,
                employee_id=p.employee_id,
                punch_type=p.punch_type,
                punch_time=p.punch_time,
                paired_time=p.paired_time,
                location=location,
                location_class=loc_class,
                origin=p.origin,
                punch_id=p.punch_id,
                is_first_of_day=is_first,
                is_last_of_day=is_last,
                expected_kind=verdict.expected,
                is_violation=verdict.is_violation,
                violation_reason=verdict.reason,
                can_be_excused=verdict.can_be_excused,
                is_excused=verdict.is_excused,
                is_synthesized=p.is_synthesized,
                is_manual=p.is_manual,
            )
        )

    if dropped:
        logger.warning("Dropped %s unparseable punch rows for %s", dropped, technician.technician_id)
    return Reconciliation(punches=tuple(records), dropped=dropped, synthesized=synthesized)
