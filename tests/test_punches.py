"""Tests for punch splitting, synthesis, location and policy checks."""

from __future__ import annotations

from techtruth.classifier import LocationContext
from techtruth.models import LocationKind, ProposalStatus, ProposedPunch, PunchType, RawPunch
from techtruth.punches import (
    clock_in_verdict,
    clock_out_verdict,
    reconcile_punches,
    split_raw_punches,
    synthesize_missing,
)
from techtruth.timeutils import local_day_bounds
from techtruth.tracking import build_track
from tests.factories import (
    DAY,
    HOME,
    JOB_A,
    NOWHERE,
    OFFICE,
    TZ_NAME,
    at,
    seg,
    standard_day_jobs,
    standard_day_segments,
    work,
)


def _reconcile(technician, punches, settings, *, segments=None, excused=False, proposals=()):
    start, end = local_day_bounds(DAY, TZ_NAME)
    segs = standard_day_segments() if segments is None else segments
    track = build_track(segs, (), day_start=start, day_end=end, settings=settings)
    context = LocationContext.for_technician(technician, jobs=standard_day_jobs())
    return reconcile_punches(
        punches,
        technician=technician,
        track=track,
        context=context,
        office_visit_excused=excused,
        proposals=proposals,
        settings=settings,
    )


def _by_type(result, punch_type):
    return [p for p in result.punches if p.punch_type is punch_type]


class TestSplitRawPunches:
    """Feed rows to discrete punches"""

    def test_paired_row_yields_both_sides(self):
        punches, dropped = split_raw_punches([work("2025-01-06T08:09:00", "2025-01-06T12:01:00")], TZ_NAME)
        assert dropped == 0
        assert [p.punch_type for p in punches] == [PunchType.CLOCK_IN, PunchType.CLOCK_OUT]
        assert punches[0].punch_time == at(8, 9)
        assert punches[0].paired_time == at(12, 1)

    def test_discrete_row_keeps_paired_time(self):
        raw = RawPunch("E1", "ClockOut", clock_in_time=at(8, 9), clock_out_time=at(12, 1))
        punches, _ = split_raw_punches([raw], TZ_NAME)
        assert len(punches) == 1
        assert punches[0].punch_type is PunchType.CLOCK_OUT
        assert punches[0].punch_time == at(12, 1)
        assert punches[0].paired_time == at(8, 9)

    def test_bad_rows_dropped(self, caplog):
        rows = [
            RawPunch("E1", "work", clock_in_time="garbage"),
            RawPunch("E1", "Lunch", clock_in_time=at(9)),
            RawPunch("E1", "work"),
            work(at(8, 9), at(12, 1)),
        ]
        punches, dropped = split_raw_punches(rows, TZ_NAME)
        assert dropped == 3
        assert len(punches) == 2
        assert "Dropping" in caplog.text
        assert {r.levelname for r in caplog.records} == {"WARNING"}

    def test_open_session_has_one_side(self):
        punches, _ = split_raw_punches([work(at(8, 9), None)], TZ_NAME)
        assert [p.punch_type for p in punches] == [PunchType.CLOCK_IN]


class TestSynthesizeMissing:
    """Completing sessions from known paired times"""

    def test_missing_clock_out_synthesized(self):
        punches, _ = split_raw_punches([RawPunch("E1", "ClockIn", at(8, 9), at(12, 1))], TZ_NAME)
        completed = synthesize_missing(punches)
        outs = [p for p in completed if p.punch_type is PunchType.CLOCK_OUT]
        assert len(outs) == 1
        assert outs[0].punch_time == at(12, 1)
        assert outs[0].is_synthesized

    def test_complete_session_untouched(self):
        punches, _ = split_raw_punches([work(at(8, 9), at(12, 1))], TZ_NAME)
        assert synthesize_missing(punches) == punches

    def test_every_session_side_present(self):
        rows = [
            RawPunch("E1", "ClockIn", at(7, 0), at(11, 0)),
            RawPunch("E1", "MealEnd", at(11, 30), at(12, 0)),
            RawPunch("E1", "ClockOut", at(12, 30), at(16, 0)),
        ]
        punches, _ = split_raw_punches(rows, TZ_NAME)
        completed = synthesize_missing(punches)
        keys = {(p.punch_type, p.punch_time) for p in completed}
        for p in completed:
            if p.paired_time is None:
                continue
            partner = {
                PunchType.CLOCK_IN: PunchType.CLOCK_OUT,
                PunchType.CLOCK_OUT: PunchType.CLOCK_IN,
                PunchType.MEAL_START: PunchType.MEAL_END,
                PunchType.MEAL_END: PunchType.MEAL_START,
            }[p.punch_type]
            assert (partner, p.paired_time) in keys


class TestVerdicts:
    """Location policy tables"""

    def test_clock_in_take_home(self):
        assert clock_in_verdict(LocationKind.JOB, takes_truck_home=True, office_visit_excused=False).is_violation is False
        assert clock_in_verdict(LocationKind.CUSTOM, takes_truck_home=True, office_visit_excused=False).is_violation is False
        home = clock_in_verdict(LocationKind.HOME, takes_truck_home=True, office_visit_excused=False)
        assert home.is_violation and not home.can_be_excused
        office = clock_in_verdict(LocationKind.OFFICE, takes_truck_home=True, office_visit_excused=False)
        assert office.is_violation and office.can_be_excused and not office.is_excused
        unknown = clock_in_verdict(LocationKind.UNKNOWN, takes_truck_home=True, office_visit_excused=False)
        assert unknown.is_violation and not unknown.can_be_excused

    def test_clock_in_office_reporter(self):
        assert clock_in_verdict(LocationKind.OFFICE, takes_truck_home=False, office_visit_excused=False).is_violation is False
        job = clock_in_verdict(LocationKind.JOB, takes_truck_home=False, office_visit_excused=False)
        assert job.is_violation
        assert job.reason == "Clocked in at JOB instead of office"

    def test_no_gps_never_violates(self):
        for takes_home in (True, False):
            assert not clock_in_verdict(LocationKind.NO_GPS, takes_truck_home=takes_home, office_visit_excused=False).is_violation
            assert not clock_out_verdict(
                LocationKind.NO_GPS, takes_truck_home=takes_home, minutes_after_last_job=90, tolerance_minutes=5
            ).is_violation

    def test_clock_out_take_home(self):
        home = clock_out_verdict(LocationKind.HOME, takes_truck_home=True, minutes_after_last_job=30, tolerance_minutes=5)
        assert home.is_violation
        assert home.reason == "Clocked out at HOME - should clock out when leaving last job"
        for kind in (LocationKind.JOB, LocationKind.OFFICE):
            assert not clock_out_verdict(kind, takes_truck_home=True, minutes_after_last_job=30, tolerance_minutes=5).is_violation
        within = clock_out_verdict(LocationKind.CUSTOM, takes_truck_home=True, minutes_after_last_job=5, tolerance_minutes=5)
        assert not within.is_violation
        late = clock_out_verdict(LocationKind.UNKNOWN, takes_truck_home=True, minutes_after_last_job=6, tolerance_minutes=5)
        assert late.is_violation
        assert late.reason == "Clocked out 6m after leaving last job"

    def test_clock_out_office_reporter(self):
        assert not clock_out_verdict(LocationKind.OFFICE, takes_truck_home=False, minutes_after_last_job=None, tolerance_minutes=5).is_violation
        assert clock_out_verdict(LocationKind.JOB, takes_truck_home=False, minutes_after_last_job=None, tolerance_minutes=5).is_violation


class TestReconcilePunches:
    """End-to-end punch reconciliation on a vehicle track"""

    def test_clock_in_at_home_before_first_trip(self, tech, settings):
        result = _reconcile(tech, [work("2025-01-06T07:20:00", "2025-01-06T12:01:00")], settings)
        clock_in = _by_type(result, PunchType.CLOCK_IN)[0]
        assert clock_in.location_class.kind is LocationKind.HOME
        assert clock_in.location == HOME
        assert clock_in.is_first_of_day
        assert clock_in.is_violation
        assert clock_in.violation_reason == "Clocked in at HOME instead of job site"
        assert not clock_in.can_be_excused

    def test_clean_day_at_job_sites(self, tech, settings):
        result = _reconcile(tech, [work(at(8, 9), at(12, 1))], settings)
        clock_in = _by_type(result, PunchType.CLOCK_IN)[0]
        clock_out = _by_type(result, PunchType.CLOCK_OUT)[0]
        assert clock_in.location_class.kind is LocationKind.JOB
        assert clock_out.location_class.kind is LocationKind.JOB
        assert clock_out.is_last_of_day
        assert not any(p.is_violation for p in result.punches)
        assert not result.has_open_session

    def test_office_clock_in_excused(self, tech, settings):
        segments = [seg(at(7, 30), HOME, at(7, 50), OFFICE), seg(at(8, 10), OFFICE, at(8, 40), JOB_A)]
        result = _reconcile(tech, [work(at(7, 55), None)], settings, segments=segments, excused=True)
        clock_in = result.punches[0]
        assert clock_in.location_class.kind is LocationKind.OFFICE
        assert clock_in.violation_reason == "Clocked in at OFFICE - should go direct to job"
        assert clock_in.is_violation and clock_in.can_be_excused and clock_in.is_excused
        assert not clock_in.is_active_violation

    def test_office_clock_in_not_excused(self, tech, settings):
        segments = [seg(at(7, 30), HOME, at(7, 50), OFFICE), seg(at(8, 10), OFFICE, at(8, 40), JOB_A)]
        result = _reconcile(tech, [work(at(7, 55), None)], settings, segments=segments)
        assert result.punches[0].is_active_violation

    def test_office_reporter_clocking_in_at_job(self, office_tech, settings):
        result = _reconcile(office_tech, [work(at(8, 9), None)], settings)
        clock_in = result.punches[0]
        assert clock_in.is_violation
        assert clock_in.expected_kind is LocationKind.OFFICE

    def test_no_gps_is_not_a_violation(self, tech, settings):
        result = _reconcile(tech, [work(at(8, 9), at(17, 0))], settings, segments=[])
        assert all(p.location_class.kind is LocationKind.NO_GPS for p in result.punches)
        assert all(p.location is None for p in result.punches)
        assert not any(p.is_violation for p in result.punches)

    def test_clock_out_at_home(self, tech, settings):
        result = _reconcile(tech, [work(at(8, 9), at(13, 0))], settings)
        clock_out = _by_type(result, PunchType.CLOCK_OUT)[0]
        assert clock_out.location_class.kind is LocationKind.HOME
        assert clock_out.is_violation
        assert not clock_out.can_be_excused

    def test_clock_out_long_after_last_job(self, tech, settings):
        segments = [seg(at(7, 30), HOME, at(8), JOB_A), seg(at(10), JOB_A, at(10, 30), NOWHERE)]
        result = _reconcile(tech, [work(at(8, 5), at(10, 40))], settings, segments=segments)
        clock_out = _by_type(result, PunchType.CLOCK_OUT)[0]
        assert clock_out.location_class.kind is LocationKind.UNKNOWN
        assert clock_out.violation_reason == "Clocked out 40m after leaving last job"

    def test_synthesized_punch_is_located_and_checked(self, tech, settings):
        raw = RawPunch("E1", "ClockIn", at(8, 9), at(13, 0))
        result = _reconcile(tech, [raw], settings)
        assert result.synthesized == 1
        clock_out = _by_type(result, PunchType.CLOCK_OUT)[0]
        assert clock_out.is_synthesized
        assert clock_out.is_last_of_day
        assert clock_out.location_class.kind is LocationKind.HOME
        assert clock_out.is_violation

    def test_duplicates_collapse(self, tech, settings):
        result = _reconcile(tech, [work(at(8, 9), at(12, 1)), work(at(8, 9), at(12, 1))], settings)
        assert len(result.punches) == 2

    def test_only_first_and_last_are_checked(self, tech, settings):
        rows = [work(at(7, 20), at(9, 0)), work(at(9, 30), at(12, 1))]
        result = _reconcile(tech, rows, settings)
        flagged = [p for p in result.punches if p.is_first_of_day or p.is_last_of_day]
        assert [p.punch_time for p in flagged] == [at(7, 20), at(12, 1)]
        middle = [p for p in result.punches if not (p.is_first_of_day or p.is_last_of_day)]
        assert all(not p.is_violation for p in middle)

    def test_dropped_rows_are_counted(self, tech, settings):
        result = _reconcile(tech, [RawPunch("E1", "work", clock_in_time="nope"), work(at(8, 9), at(12, 1))], settings)
        assert result.dropped == 1
        assert len(result.punches) == 2

    def test_applied_proposal_replaces_feed_punch(self, tech, settings):
        proposal = ProposedPunch("P1", PunchType.CLOCK_OUT, at(12, 1, 30), status=ProposalStatus.APPLIED)
        result = _reconcile(tech, [work(at(8, 9), at(12, 1))], settings, proposals=[proposal])
        outs = _by_type(result, PunchType.CLOCK_OUT)
        assert len(outs) == 1
        assert outs[0].is_manual
        assert outs[0].punch_time == at(12, 1, 30)

    def test_applied_proposal_fills_missing_clock_out(self, tech, settings):
        proposal = ProposedPunch("P1", PunchType.CLOCK_OUT, at(12, 5), status=ProposalStatus.APPLIED)
        without = _reconcile(tech, [work(at(8, 9), None)], settings)
        with_fix = _reconcile(tech, [work(at(8, 9), None)], settings, proposals=[proposal])
        assert without.has_open_session
        assert not with_fix.has_open_session

    def test_pending_proposal_ignored(self, tech, settings):
        proposal = ProposedPunch("P1", PunchType.CLOCK_OUT, at(12, 5), status=ProposalStatus.PENDING)
        result = _reconcile(tech, [work(at(8, 9), None)], settings, proposals=[proposal])
        assert result.has_open_session
