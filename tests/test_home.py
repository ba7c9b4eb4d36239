"""Tests for home location suggestion."""

from __future__ import annotations

from datetime import timedelta

from techtruth.geo import distance_between
from techtruth.home import DailyStart, detect_home_location
from tests.factories import DAY, HOME, NOWHERE, OFFICE, near


def _starts(locations, address=None):
    return [DailyStart(DAY + timedelta(days=i), loc, address) for i, loc in enumerate(locations)]


class TestDetectHomeLocation:
    """Clustering of daily start points"""

    def test_too_few_days(self, settings):
        assert detect_home_location(_starts([HOME] * 4), office=OFFICE, settings=settings) is None

    def test_office_starts_ignored(self, settings):
        starts = _starts([OFFICE] * 4 + [HOME] * 2)
        assert detect_home_location(starts, office=OFFICE, settings=settings) is None

    def test_consistent_home_is_high_confidence(self, settings):
        locations = [near(HOME, north_feet=20 * i) for i in range(10)]
        result = detect_home_location(_starts(locations, "12 Oak St"), office=OFFICE, settings=settings)
        assert result is not None
        assert result.confidence == "high"
        assert result.days_detected == 10
        assert result.total_days_analyzed == 10
        assert result.address == "12 Oak St"
        assert distance_between(result.location, HOME) < 200

    def test_mixed_starts_medium_confidence(self, settings):
        result = detect_home_location(_starts([HOME] * 5 + [NOWHERE] * 2), office=OFFICE, settings=settings)
        assert result is not None
        assert result.confidence == "medium"
        assert result.days_detected == 5

    def test_small_cluster_low_confidence(self, settings):
        result = detect_home_location(_starts([HOME] * 3 + [NOWHERE] * 3), office=OFFICE, settings=settings)
        assert result is not None
        assert result.confidence == "low"
        assert distance_between(result.location, HOME) < 1

    def test_scattered_starts(self, settings):
        locations = [near(NOWHERE, north_feet=5_000 * i) for i in range(6)]
        assert detect_home_location(_starts(locations), office=OFFICE, settings=settings) is None

    def test_missing_address(self, settings):
        result = detect_home_location(_starts([HOME] * 5), office=OFFICE, settings=settings)
        assert result is not None
        assert result.address == "Unknown Address"

    def test_most_common_address_wins(self, settings):
        starts = [
            DailyStart(DAY + timedelta(days=i), HOME, addr)
            for i, addr in enumerate(["1 A St", "2 B St", "2 B St", None, "1 A St", "2 B St"])
        ]
        result = detect_home_location(starts, office=OFFICE, settings=settings)
        assert result is not None
        assert result.address == "2 B St"
