"""Tests for vehicle track normalization, positions and coverage."""

from __future__ import annotations

from datetime import timedelta

from techtruth.timeutils import local_day_bounds
from techtruth.tracking import build_track, covered_seconds, merge_intervals, normalize_segments, position_at
from tests.factories import DAY, HOME, JOB_A, JOB_B, NOWHERE, TZ_NAME, at, crumb, seg, standard_day_segments


def _track(segments, breadcrumbs=(), settings=None):
    start, end = local_day_bounds(DAY, TZ_NAME)
    kwargs = {"settings": settings} if settings is not None else {}
    return build_track(segments, breadcrumbs, day_start=start, day_end=end, **kwargs)


class TestNormalizeSegments:
    """Ordering and rejection of impossible trips"""

    def test_sorted_by_start(self):
        segs = standard_day_segments()
        assert normalize_segments(reversed(segs)) == segs

    def test_inverted_segment_skipped(self, caplog):
        bad = seg(at(9), JOB_A, at(8), JOB_B)
        assert normalize_segments([bad]) == []
        assert "ending before it starts" in caplog.text

    def test_overlapping_segment_skipped(self):
        first = seg(at(8), HOME, at(9), JOB_A)
        overlap = seg(at(8, 30), JOB_A, at(9, 30), JOB_B)
        assert normalize_segments([overlap, first]) == [first]

    def test_stale_open_segment_dropped_for_later_trips(self, caplog):
        stale = seg(at(6), HOME, None, None)
        later = standard_day_segments()
        assert normalize_segments([stale, *later]) == later
        assert "Dropping open segment" in caplog.text

    def test_open_final_segment_kept(self):
        segs = [*standard_day_segments(), seg(at(18), HOME, None, None)]
        assert normalize_segments(segs) == segs


class TestPositionAt:
    """Best known location at an instant"""

    def test_before_first_trip_is_start_location(self, settings):
        track = _track(standard_day_segments(), settings=settings)
        sample = position_at(track, at(6, 0), timedelta(minutes=10))
        assert sample is not None
        assert sample.location == HOME

    def test_parked_between_trips(self, settings):
        track = _track(standard_day_segments(), settings=settings)
        sample = position_at(track, at(9, 0), timedelta(minutes=10))
        assert sample is not None
        assert sample.location == JOB_A

    def test_after_last_trip(self, settings):
        track = _track(standard_day_segments(), settings=settings)
        sample = position_at(track, at(20, 0), timedelta(minutes=10))
        assert sample is not None
        assert sample.location == HOME

    def test_mid_drive_uses_nearby_endpoint(self, settings):
        track = _track(standard_day_segments(), settings=settings)
        sample = position_at(track, at(12, 5), timedelta(minutes=10))
        assert sample is not None
        assert sample.location == JOB_B

    def test_mid_drive_outside_tolerance(self, settings):
        track = _track([seg(at(8), HOME, at(9), JOB_A)], settings=settings)
        assert position_at(track, at(8, 30), timedelta(minutes=10)) is None

    def test_breadcrumb_within_tolerance(self, settings):
        track = _track([seg(at(8), HOME, at(9), JOB_A)], [crumb(at(8, 28), NOWHERE)], settings=settings)
        sample = position_at(track, at(8, 30), timedelta(minutes=10))
        assert sample is not None
        assert sample.location == NOWHERE

    def test_no_data(self, settings):
        track = _track([], settings=settings)
        assert not track.has_gps
        assert position_at(track, at(8), timedelta(minutes=10)) is None


class TestCoverage:
    """Tracked time"""

    def test_full_day_covered_for_consistent_trips(self, settings):
        track = _track(standard_day_segments(), settings=settings)
        start, end = local_day_bounds(DAY, TZ_NAME)
        assert covered_seconds(track, start, end) == (end - start).total_seconds()

    def test_jump_between_trips_is_uncovered(self, settings):
        segs = [seg(at(7), HOME, at(7, 30), JOB_A), seg(at(10), NOWHERE, at(10, 30), HOME)]
        track = _track(segs, settings=settings)
        assert covered_seconds(track, at(7, 30), at(10)) == 0.0

    def test_close_breadcrumbs_cover_gap(self, settings):
        segs = [seg(at(7), HOME, at(7, 30), JOB_A), seg(at(10), NOWHERE, at(10, 30), HOME)]
        crumbs = [crumb(at(7, 30) + timedelta(minutes=20 * i), NOWHERE) for i in range(9)]
        track = _track(segs, crumbs, settings=settings)
        assert covered_seconds(track, at(7, 30), at(10)) == 150 * 60

    def test_merge_intervals(self):
        merged = merge_intervals([(at(9), at(10)), (at(8), at(9, 30)), (at(11), at(12)), (at(12), at(12))])
        assert merged == [(at(8), at(10)), (at(11), at(12))]
