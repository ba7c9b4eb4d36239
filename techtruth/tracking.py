"""Where the vehicle was, and when we actually know it."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Sequence

from techtruth.geo import within_radius
from techtruth.models import Coordinate, GpsPoint, VehicleSegment
from techtruth.settings import DEFAULT_SETTINGS, TimelineSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ParkedInterval:
    """The vehicle sat at ``location`` over [start, end)."""

    start: datetime
    end: datetime
    location: Coordinate


@dataclass(frozen=True, slots=True)
class VehicleTrack:
    """Normalized vehicle data for one day.

    Attributes:
        segments: Trips sorted by start, overlapping trips removed.
        breadcrumbs: GPS points sorted by time.
        parked: Stationary intervals whose position is known.
        covered: Merged intervals during which the vehicle state is known.
    """

    segments: tuple[VehicleSegment, ...]
    breadcrumbs: tuple[GpsPoint, ...]
    parked: tuple[ParkedInterval, ...]
    covered: tuple[tuple[datetime, datetime], ...]

    @property
    def has_gps(self) -> bool:
        return bool(self.segments or self.breadcrumbs)


def normalize_segments(segments: Iterable[VehicleSegment]) -> list[VehicleSegment]:
    """Sort trips and drop ones that cannot be placed on a single timeline.

    A trip ending before it starts, or starting before the previous trip ended,
    is skipped with a warning. An open trip (no end) can only be the last one;
    when a later trip starts after it, the open trip is dropped instead.
    """

    ordered = sorted(
        segments,
        key=lambda s: (s.start_time, s.end_time is None, s.end_time or s.start_time),
    )
    kept: list[VehicleSegment] = []
    for seg in ordered:
        if seg.end_time is not None and seg.end_time < seg.start_time:
            logger.warning("Skipping segment ending before it starts: %s > %s", seg.start_time, seg.end_time)
            continue
        if kept and kept[-1].end_time is None and seg.start_time > kept[-1].start_time:
            stale = kept.pop()
            logger.warning("Dropping open segment at %s: a later trip starts at %s", stale.start_time, seg.start_time)
        if kept:
            prev = kept[-1]
            if prev.end_time is None or seg.start_time < prev.end_time:
                logger.warning("Skipping segment at %s overlapping the previous trip", seg.start_time)
                continue
        kept.append(seg)
    return kept


def _parked_intervals(
    segments: Sequence[VehicleSegment],
    *,
    day_start: datetime,
    day_end: datetime,
    settings: TimelineSettings,
) -> list[ParkedInterval]:
    if not segments:
        return []
    parked: list[ParkedInterval] = []
    first = segments[0]
    if day_start < first.start_time:
        parked.append(ParkedInterval(day_start, first.start_time, first.start_location))

    for cur, nxt in zip(segments, segments[1:]):
        if cur.end_time is None or cur.end_location is None:
            continue
        # Moving without reporting between trips means the position is unknown.
        if not within_radius(
            cur.end_location,
            nxt.start_location,
            settings.arrival_radius_feet,
            earth_radius_feet=settings.earth_radius_feet,
        ):
            continue
        if cur.end_time < nxt.start_time:
            parked.append(ParkedInterval(cur.end_time, nxt.start_time, cur.end_location))

    last = segments[-1]
    if last.end_time is not None and last.end_location is not None and last.end_time < day_end:
        parked.append(ParkedInterval(last.end_time, day_end, last.end_location))
    return parked


def merge_intervals(intervals: Iterable[tuple[datetime, datetime]]) -> list[tuple[datetime, datetime]]:
    merged: list[tuple[datetime, datetime]] = []
    for start, end in sorted(intervals):
        if end <= start:
            continue
        if merged and start <= merged[-1][1]:
            if end > merged[-1][1]:
                merged[-1] = (merged[-1][0], end)
            continue
        merged.append((start, end))
    return merged


def build_track(
    segments: Iterable[VehicleSegment],
    breadcrumbs: Iterable[GpsPoint] = (),
    *,
    day_start: datetime,
    day_end: datetime,
    settings: TimelineSettings = DEFAULT_SETTINGS,
) -> VehicleTrack:
    """Assemble a VehicleTrack for [day_start, day_end).

    Breadcrumbs closer together than the untracked-gap threshold count as
    coverage for the time between them.
    """

    segs = normalize_segments(segments)
    crumbs = sorted(breadcrumbs, key=lambda p: p.timestamp)
    parked = _parked_intervals(segs, day_start=day_start, day_end=day_end, settings=settings)

    spans: list[tuple[datetime, datetime]] = []
    for seg in segs:
        spans.append((seg.start_time, seg.end_time if seg.end_time is not None else day_end))
    spans.extend((p.start, p.end) for p in parked)
    max_gap = timedelta(minutes=settings.untracked_gap_minutes)
    for prev, cur in zip(crumbs, crumbs[1:]):
        if cur.timestamp - prev.timestamp <= max_gap:
            spans.append((prev.timestamp, cur.timestamp))

    return VehicleTrack(
        segments=tuple(segs),
        breadcrumbs=tuple(crumbs),
        parked=tuple(parked),
        covered=tuple(merge_intervals(spans)),
    )


def position_at(
    track: VehicleTrack,
    instant: datetime,
    tolerance: timedelta,
) -> GpsPoint | None:
    """Best known vehicle position at instant.

    A parked interval containing the instant wins. Otherwise the nearest
    breadcrumb or trip endpoint within tolerance is used; ties keep the
    earlier sample.

    Returns:
        The sample used, or None when nothing is close enough in time.
    """

    for p in track.parked:
        if p.start <= instant < p.end:
            return GpsPoint(timestamp=p.start, location=p.location)

    candidates: list[GpsPoint] = list(track.breadcrumbs)
    for seg in track.segments:
        candidates.append(GpsPoint(timestamp=seg.start_time, location=seg.start_location, address=seg.start_address))
        if seg.end_time is not None and seg.end_location is not None:
            candidates.append(GpsPoint(timestamp=seg.end_time, location=seg.end_location, address=seg.end_address))

    best: GpsPoint | None = None
    best_delta: timedelta | None = None
    for pt in sorted(candidates, key=lambda c: c.timestamp):
        delta = abs(pt.timestamp - instant)
        if delta > tolerance:
            continue
        if best_delta is None or delta < best_delta:
            best = pt
            best_delta = delta
    return best


def covered_seconds(track: VehicleTrack, start: datetime, end: datetime) -> float:
    """Seconds of [start, end) during which the vehicle state is known."""

    total = 0.0
    for lo, hi in track.covered:
        if hi <= start:
            continue
        if lo >= end:
            break
        total += (min(hi, end) - max(lo, start)).total_seconds()
    return total
