"""Tests for period reporting."""

from __future__ import annotations

from datetime import date, timedelta

from techtruth.models import (
    ArrivalStatus,
    DayTimeline,
    JobOutcome,
    LocationClass,
    LocationKind,
    PunchRecord,
    PunchType,
)
from techtruth.report import summarize_period, technician_trend
from tests.factories import DAY, JOB_A, at, job

MONDAY = DAY


def _outcome(day: date, variance: int | None, status: ArrivalStatus | None = None, grace: int = 10) -> JobOutcome:
    scheduled = at(8, day=day)
    j = job(f"J-{day:%m%d}", scheduled, JOB_A, is_first_of_day=True)
    if variance is None:
        return JobOutcome(job=j, status=status or ArrivalStatus.UNVERIFIED, is_first_job=True)
    late = variance > grace
    return JobOutcome(
        job=j,
        status=ArrivalStatus.LATE if late else ArrivalStatus.ON_TIME,
        is_first_job=True,
        actual_arrival=scheduled + timedelta(minutes=variance),
        variance_minutes=variance,
        is_late=late,
        arrival_source="segment",
    )


def _violation(day: date, punch_type: PunchType = PunchType.CLOCK_IN, *, excused: bool = False) -> PunchRecord:
    return PunchRecord(
        technician_id="T1",
        employee_id="E1",
        punch_type=punch_type,
        punch_time=at(7, 20, day=day),
        paired_time=None,
        location=None,
        location_class=LocationClass(LocationKind.OFFICE if excused else LocationKind.HOME),
        is_first_of_day=punch_type is PunchType.CLOCK_IN,
        is_last_of_day=punch_type is PunchType.CLOCK_OUT,
        is_violation=True,
        violation_reason="x",
        can_be_excused=excused,
        is_excused=excused,
    )


def _timeline(day, tech_id="T1", name="Tech One", outcome=None, punches=()):
    return DayTimeline(
        day=day,
        technician_id=tech_id,
        technician_name=name,
        jobs=(outcome,) if outcome is not None else (),
        punches=tuple(punches),
    )


class TestTechnicianTrend:
    """First half versus second half of the period"""

    def test_improving(self):
        outcomes = [(MONDAY + timedelta(days=i), _outcome(MONDAY + timedelta(days=i), v)) for i, v in enumerate([20, 30, 0, 1])]
        assert technician_trend(outcomes, 10.0) == "improving"

    def test_declining(self):
        outcomes = [(MONDAY + timedelta(days=i), _outcome(MONDAY + timedelta(days=i), v)) for i, v in enumerate([0, 1, 20, 30])]
        assert technician_trend(outcomes, 10.0) == "declining"

    def test_stable_and_short(self):
        one = [(MONDAY, _outcome(MONDAY, 20))]
        assert technician_trend(one, 10.0) == "stable"
        same = [(MONDAY + timedelta(days=i), _outcome(MONDAY + timedelta(days=i), 0)) for i in range(4)]
        assert technician_trend(same, 10.0) == "stable"

    def test_order_independent(self):
        outcomes = [(MONDAY + timedelta(days=i), _outcome(MONDAY + timedelta(days=i), v)) for i, v in enumerate([20, 30, 0, 1])]
        assert technician_trend(list(reversed(outcomes)), 10.0) == "improving"


class TestSummarizePeriod:
    """Aggregation over technicians and days"""

    def _timelines(self):
        tue = MONDAY + timedelta(days=1)
        wed = MONDAY + timedelta(days=2)
        return [
            _timeline(MONDAY, outcome=_outcome(MONDAY, 5), punches=[_violation(MONDAY)]),
            _timeline(tue, outcome=_outcome(tue, 25)),
            _timeline(wed, outcome=_outcome(wed, None)),
            _timeline(MONDAY, "T2", "Tech Two", outcome=_outcome(MONDAY, 15), punches=[_violation(MONDAY, excused=True)]),
            _timeline(tue, "T2", "Tech Two", outcome=_outcome(tue, None, ArrivalStatus.SCHEDULED)),
            _timeline(wed, "T2", "Tech Two"),
        ]

    def test_headline_counts(self):
        report = summarize_period(self._timelines())
        assert report.start == MONDAY
        assert report.end == MONDAY + timedelta(days=2)
        assert report.total_days == 3
        assert report.total_first_jobs == 5
        assert report.verified_first_jobs == 3
        assert report.unverified_first_jobs == 1
        assert report.scheduled_first_jobs == 1
        assert report.late_first_jobs == 2
        assert report.on_time_first_jobs == 1
        assert report.on_time_percentage == 33
        assert report.avg_late_minutes == 20
        assert report.max_late_minutes == 25

    def test_unverified_never_counts_as_on_time(self):
        report = summarize_period([_timeline(MONDAY, outcome=_outcome(MONDAY, None))])
        assert report.on_time_percentage is None
        assert report.on_time_first_jobs == 0
        assert report.by_technician[0].on_time_percentage is None

    def test_by_technician(self):
        report = summarize_period(self._timelines())
        rows = {r.technician_id: r for r in report.by_technician}
        assert rows["T1"].total_first_jobs == 3
        assert rows["T1"].verified == 2
        assert rows["T1"].unverified == 1
        assert rows["T1"].late == 1
        assert rows["T1"].on_time_percentage == 50
        assert rows["T1"].avg_late_minutes == 25
        assert rows["T2"].total_first_jobs == 2
        assert rows["T2"].unverified == 0
        assert rows["T2"].late == 1

    def test_technicians_sorted_by_late_then_name(self):
        report = summarize_period(self._timelines())
        assert [r.name for r in report.by_technician] == ["Tech One", "Tech Two"]

    def test_day_of_week(self):
        report = summarize_period(self._timelines())
        names = [r.day_name for r in report.by_day_of_week]
        assert names[0] == "monday" and names[-1] == "sunday"
        monday = report.by_day_of_week[0]
        assert (monday.total, monday.verified, monday.late) == (2, 2, 1)
        assert monday.on_time_percentage == 50
        assert report.by_day_of_week[5].on_time_percentage is None

    def test_daily_trend(self):
        report = summarize_period(self._timelines())
        assert [r.day for r in report.daily_trend] == [MONDAY, MONDAY + timedelta(days=1)]
        assert report.daily_trend[0].total_late == 1
        assert report.daily_trend[0].avg_variance == 15

    def test_discrepancies_largest_first(self):
        report = summarize_period(self._timelines())
        assert [d.variance_minutes for d in report.discrepancies] == [25, 15]
        assert report.discrepancies[0].technician_id == "T1"

    def test_violations(self):
        report = summarize_period(self._timelines())
        v = report.violation_summary
        assert (v.total, v.active, v.excused, v.clock_in, v.clock_out) == (2, 1, 1, 2, 0)
        assert [r.technician_name for r in report.violations] == ["Tech One", "Tech Two"]

    def test_empty(self):
        report = summarize_period([])
        assert report.start is None
        assert report.total_days == 0
        assert report.total_first_jobs == 0
        assert report.on_time_percentage is None
