"""Period reporting over day timelines."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Final, Iterable, Sequence

from techtruth.models import ArrivalStatus, DayTimeline, JobOutcome, LocationKind, PunchType
from techtruth.settings import DEFAULT_SETTINGS, TimelineSettings

DAY_NAMES: Final[tuple[str, ...]] = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


@dataclass(frozen=True, slots=True)
class TechnicianRow:
    technician_id: str
    name: str
    total_first_jobs: int
    verified: int
    unverified: int
    late: int
    on_time: int
    on_time_percentage: int | None
    avg_late_minutes: int
    trend: str


@dataclass(frozen=True, slots=True)
class DayOfWeekRow:
    day_name: str
    total: int
    verified: int
    late: int
    on_time_percentage: int | None


@dataclass(frozen=True, slots=True)
class DailyTrendRow:
    day: date
    verified: int
    total_late: int
    avg_variance: int


@dataclass(frozen=True, slots=True)
class ViolationRow:
    technician_id: str
    technician_name: str
    day: date
    punch_type: PunchType
    punch_time: datetime
    location_kind: LocationKind
    reason: str | None
    can_be_excused: bool
    is_excused: bool


@dataclass(frozen=True, slots=True)
class ViolationSummary:
    total: int = 0
    active: int = 0
    excused: int = 0
    clock_in: int = 0
    clock_out: int = 0


@dataclass(frozen=True, slots=True)
class Discrepancy:
    """A late first job."""

    technician_id: str
    technician_name: str
    day: date
    job_id: str
    job_number: str | None
    scheduled_start: datetime
    actual_arrival: datetime
    variance_minutes: int


@dataclass(frozen=True, slots=True)
class PeriodReport:
    start: date | None
    end: date | None
    total_days: int
    total_first_jobs: int
    verified_first_jobs: int
    unverified_first_jobs: int
    scheduled_first_jobs: int
    late_first_jobs: int
    on_time_first_jobs: int
    # Over verified first jobs only; None when nothing could be verified.
    on_time_percentage: int | None
    avg_late_minutes: int
    max_late_minutes: int
    by_technician: tuple[TechnicianRow, ...] = ()
    by_day_of_week: tuple[DayOfWeekRow, ...] = ()
    daily_trend: tuple[DailyTrendRow, ...] = ()
    violation_summary: ViolationSummary = field(default_factory=ViolationSummary)
    violations: tuple[ViolationRow, ...] = ()
    discrepancies: tuple[Discrepancy, ...] = ()


def _pct(part: int, whole: int) -> int | None:
    if whole <= 0:
        return None
    return round(100.0 * part / whole)


def _avg(values: Sequence[int]) -> int:
    if not values:
        return 0
    return round(sum(values) / len(values))


def _late_minutes(outcome: JobOutcome) -> int:
    return outcome.variance_minutes or 0


def technician_trend(outcomes: Sequence[tuple[date, JobOutcome]], threshold_points: float) -> str:
    """Compare on-time % between the first and second half of a period.

    Args:
        outcomes: Verified first-job outcomes with their day, any order.
        threshold_points: Minimum percentage-point change that counts.

    Returns:
        "improving", "declining" or "stable" (also for fewer than 2 days).
    """

    ordered = sorted(outcomes, key=lambda item: item[0])
    if len(ordered) < 2:
        return "stable"
    mid = len(ordered) // 2
    halves = (ordered[:mid], ordered[mid:])
    first, second = (100.0 * sum(1 for _, o in h if not o.is_late) / len(h) for h in halves)
    if second - first >= threshold_points:
        return "improving"
    if first - second >= threshold_points:
        return "declining"
    return "stable"


def summarize_period(
    timelines: Iterable[DayTimeline],
    settings: TimelineSettings = DEFAULT_SETTINGS,
) -> PeriodReport:
    """Aggregate first-job punctuality and punch violations over many days.

    Args:
        timelines: Day timelines, any order, any mix of technicians.
        settings: Only ``trend_threshold_points`` is used.

    Returns:
        PeriodReport.

    Notes:
        Unverified and scheduled first jobs are counted but never treated as
        on time: percentages are computed over verified jobs only. Per-technician
        rows are sorted by late count (descending), then name; day-of-week rows
        run Monday to Sunday; discrepancies are sorted by variance, largest first.
    """

    days = sorted(timelines, key=lambda t: (t.day, t.technician_id))

    verified: list[tuple[DayTimeline, JobOutcome]] = []
    late: list[tuple[DayTimeline, JobOutcome]] = []
    total = unverified = scheduled = 0
    per_tech: dict[str, list[tuple[DayTimeline, JobOutcome]]] = defaultdict(list)
    tech_names: dict[str, str] = {}
    dow_total: dict[int, int] = defaultdict(int)
    dow_verified: dict[int, int] = defaultdict(int)
    dow_late: dict[int, int] = defaultdict(int)

    violations: list[ViolationRow] = []
    for tl in days:
        tech_names.setdefault(tl.technician_id, tl.technician_name)
        for p in tl.punches:
            if not p.is_violation:
                continue
            violations.append(
                ViolationRow(
                    technician_id=tl.technician_id,
                    technician_name=tl.technician_name,
                    day=tl.day,
                    punch_type=p.punch_type,
                    punch_time=p.punch_time,
                    location_kind=p.location_class.kind,
                    reason=p.violation_reason,
                    can_be_excused=p.can_be_excused,
                    is_excused=p.is_excused,
                )
            )

        outcome = tl.first_job
        if outcome is None:
            continue
        total += 1
        weekday = tl.day.weekday()
        dow_total[weekday] += 1
        per_tech[tl.technician_id].append((tl, outcome))
        if outcome.status is ArrivalStatus.SCHEDULED:
            scheduled += 1
            continue
        if not outcome.is_verified:
            unverified += 1
            continue
        verified.append((tl, outcome))
        dow_verified[weekday] += 1
        if outcome.is_late:
            late.append((tl, outcome))
            dow_late[weekday] += 1

    late_values = [_late_minutes(o) for _, o in late]

    tech_rows: list[TechnicianRow] = []
    for tech_id, items in per_tech.items():
        t_verified = [(tl.day, o) for tl, o in items if o.is_verified]
        t_late = [o for _, o in t_verified if o.is_late]
        tech_rows.append(
            TechnicianRow(
                technician_id=tech_id,
                name=tech_names[tech_id],
                total_first_jobs=len(items),
                verified=len(t_verified),
                unverified=sum(1 for _, o in items if o.status is ArrivalStatus.UNVERIFIED),
                late=len(t_late),
                on_time=len(t_verified) - len(t_late),
                on_time_percentage=_pct(len(t_verified) - len(t_late), len(t_verified)),
                avg_late_minutes=_avg([_late_minutes(o) for o in t_late]),
                trend=technician_trend(t_verified, settings.trend_threshold_points),
            )
        )
    tech_rows.sort(key=lambda r: (-r.late, r.name, r.technician_id))

    dow_rows = tuple(
        DayOfWeekRow(
            day_name=name,
            total=dow_total[i],
            verified=dow_verified[i],
            late=dow_late[i],
            on_time_percentage=_pct(dow_verified[i] - dow_late[i], dow_verified[i]),
        )
        for i, name in enumerate(DAY_NAMES)
    )

    by_day: dict[date, list[JobOutcome]] = defaultdict(list)
    for tl, o in verified:
        by_day[tl.day].append(o)
    trend_rows = tuple(
        DailyTrendRow(
            day=d,
            verified=len(outs),
            total_late=sum(1 for o in outs if o.is_late),
            avg_variance=_avg([_late_minutes(o) for o in outs if o.is_late]),
        )
        for d, outs in sorted(by_day.items())
    )

    discrepancies = [
        Discrepancy(
            technician_id=tl.technician_id,
            technician_name=tl.technician_name,
            day=tl.day,
            job_id=o.job.job_id,
            job_number=o.job.job_number,
            scheduled_start=o.job.scheduled_start,
            actual_arrival=o.actual_arrival,
            variance_minutes=_late_minutes(o),
        )
        for tl, o in late
        if o.actual_arrival is not None
    ]
    discrepancies.sort(key=lambda d: (-d.variance_minutes, d.day, d.technician_id))

    active = sum(1 for v in violations if not v.is_excused)
    violation_summary = ViolationSummary(
        total=len(violations),
        active=active,
        excused=len(violations) - active,
        clock_in=sum(1 for v in violations if v.punch_type is PunchType.CLOCK_IN),
        clock_out=sum(1 for v in violations if v.punch_type is PunchType.CLOCK_OUT),
    )

    start = days[0].day if days else None
    end = days[-1].day if days else None
    return PeriodReport(
        start=start,
        end=end,
        total_days=(end - start).days + 1 if start is not None and end is not None else 0,
        total_first_jobs=total,
        verified_first_jobs=len(verified),
        unverified_first_jobs=unverified,
        scheduled_first_jobs=scheduled,
        late_first_jobs=len(late),
        on_time_first_jobs=len(verified) - len(late),
        on_time_percentage=_pct(len(verified) - len(late), len(verified)),
        avg_late_minutes=_avg(late_values),
        max_late_minutes=max(late_values, default=0),
        by_technician=tuple(tech_rows),
        by_day_of_week=dow_rows,
        daily_trend=trend_rows,
        violation_summary=violation_summary,
        violations=tuple(violations),
        discrepancies=tuple(discrepancies),
    )
