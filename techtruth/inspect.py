"""Inspect a day bundle before building its timeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime

from techtruth.bundle_io import DayBundle, LoadSummary
from techtruth.timeutils import DeltaStats, delta_stats


@dataclass(frozen=True, slots=True)
class InspectResult:
    """High-level bundle inspection result."""

    technician_id: str
    day: date
    counts: dict[str, int]
    skipped: dict[str, int] = field(default_factory=dict)
    gps_start: datetime | None = None
    gps_end: datetime | None = None
    delta: DeltaStats | None = None
    min_lat: float | None = None
    max_lat: float | None = None
    min_lon: float | None = None
    max_lon: float | None = None
    duplicate_timestamps: int = 0
    open_segments: int = 0


def inspect_bundle(bundle: DayBundle, summary: LoadSummary | None = None) -> InspectResult:
    """Summarize what a bundle holds.

    The sampling interval stats are over breadcrumbs only; segment endpoints
    are counted toward the time range and bounds.
    """

    counts = {
        "segments": len(bundle.segments),
        "breadcrumbs": len(bundle.breadcrumbs),
        "jobs": len(bundle.jobs),
        "punches": len(bundle.punches),
        "custom_locations": len(bundle.custom_locations),
        "excused_visits": len(bundle.excused_visits),
        "manual_associations": len(bundle.manual_associations),
        "proposed_punches": len(bundle.proposed_punches),
        "materials": len(bundle.materials),
    }
    skipped = dict(summary.skipped) if summary is not None else {}

    times = sorted(p.timestamp for p in bundle.breadcrumbs)
    dupe = 0
    for i in range(1, len(times)):
        if times[i] == times[i - 1]:
            dupe += 1

    all_times = list(times)
    coords = [p.location for p in bundle.breadcrumbs]
    open_segments = 0
    for seg in bundle.segments:
        all_times.append(seg.start_time)
        coords.append(seg.start_location)
        if seg.end_time is None:
            open_segments += 1
        else:
            all_times.append(seg.end_time)
        if seg.end_location is not None:
            coords.append(seg.end_location)

    if not all_times:
        return InspectResult(
            technician_id=bundle.technician.technician_id,
            day=bundle.day,
            counts=counts,
            skipped=skipped,
        )

    lats = [c.latitude for c in coords]
    lons = [c.longitude for c in coords]
    return InspectResult(
        technician_id=bundle.technician.technician_id,
        day=bundle.day,
        counts=counts,
        skipped=skipped,
        gps_start=min(all_times),
        gps_end=max(all_times),
        delta=delta_stats(times),
        min_lat=min(lats),
        max_lat=max(lats),
        min_lon=min(lons),
        max_lon=max(lons),
        duplicate_timestamps=dupe,
        open_segments=open_segments,
    )
