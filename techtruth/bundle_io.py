"""JSON day-bundle and breadcrumb CSV input, JSON-ready output."""

from __future__ import annotations

import csv
import dataclasses
import json
import logging
import math
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Final, Mapping, Sequence, TypeVar

from techtruth.materials import group_material_rows
from techtruth.models import (
    CUSTOM_CATEGORIES,
    Coordinate,
    CustomLocation,
    DayTimeline,
    ExcusedVisit,
    GpsPoint,
    JobVisit,
    ManualJobAssociation,
    MaterialEvent,
    ProposalStatus,
    ProposedPunch,
    PunchType,
    RawPunch,
    Technician,
    VehicleSegment,
)
from techtruth.settings import DEFAULT_SETTINGS, TimelineSettings, settings_from_mapping
from techtruth.timeline import build_day_timeline
from techtruth.timeutils import has_zone_marker, parse_gps_timestamp, parse_local_timestamp

logger = logging.getLogger(__name__)

T = TypeVar("T")

BREADCRUMB_COLUMNS: Final[tuple[str, ...]] = ("timestamp", "latitude", "longitude")


@dataclass(frozen=True, slots=True)
class LoadSummary:
    """Parsed / skipped record counts per record kind."""

    parsed: dict[str, int] = field(default_factory=dict)
    skipped: dict[str, int] = field(default_factory=dict)

    @property
    def total_skipped(self) -> int:
        return sum(self.skipped.values())


@dataclass(frozen=True, slots=True)
class CsvSummary:
    """Quick summary of CSV parsing."""

    rows_total: int
    rows_parsed: int
    rows_skipped: int
    fieldnames: Sequence[str]


@dataclass(frozen=True, slots=True)
class DayBundle:
    """Every input for one technician-day, typed."""

    day: date
    technician: Technician
    settings: TimelineSettings = DEFAULT_SETTINGS
    now: datetime | None = None
    segments: tuple[VehicleSegment, ...] = ()
    breadcrumbs: tuple[GpsPoint, ...] = ()
    jobs: tuple[JobVisit, ...] = ()
    punches: tuple[RawPunch, ...] = ()
    custom_locations: tuple[CustomLocation, ...] = ()
    excused_visits: tuple[ExcusedVisit, ...] = ()
    manual_associations: tuple[ManualJobAssociation, ...] = ()
    proposed_punches: tuple[ProposedPunch, ...] = ()
    materials: tuple[MaterialEvent, ...] = ()


def _opt_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    return float(value)


def _opt_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _coordinate(lat: Any, lon: Any) -> Coordinate:
    latitude, longitude = float(lat), float(lon)
    if not (math.isfinite(latitude) and math.isfinite(longitude)):
        raise ValueError(f"coordinate is not finite: {lat}, {lon}")
    if abs(latitude) > 90.0 or abs(longitude) > 180.0:
        raise ValueError(f"coordinate out of range: {lat}, {lon}")
    return Coordinate(latitude, longitude)


def _opt_coordinate(row: Mapping[str, Any], lat_key: str = "latitude", lon_key: str = "longitude") -> Coordinate | None:
    if row.get(lat_key) is None or row.get(lon_key) is None:
        return None
    return _coordinate(row[lat_key], row[lon_key])


def _nested_coordinate(value: Any) -> Coordinate | None:
    if value is None:
        return None
    return _coordinate(value["latitude"], value["longitude"])


def _opt_time(value: Any, parse: Callable[[str], datetime]) -> datetime | None:
    if value is None or str(value).strip() == "":
        return None
    return parse(str(value))


def _schedule_parser(tz_name: str) -> Callable[[str], datetime]:
    """Dispatch-side times: offsets win, bare values are business wall-clock time."""

    def parse(text: str) -> datetime:
        if has_zone_marker(text):
            return parse_gps_timestamp(text)
        return parse_local_timestamp(text, tz_name)

    return parse


def parse_technician(raw: Mapping[str, Any]) -> Technician:
    grace = raw.get("late_grace_minutes")
    return Technician(
        technician_id=str(raw["technician_id"]),
        name=str(raw.get("name") or raw["technician_id"]),
        office=_coordinate(raw["office"]["latitude"], raw["office"]["longitude"]),
        employee_id=_opt_str(raw.get("employee_id")),
        takes_truck_home=bool(raw.get("takes_truck_home", False)),
        home=_nested_coordinate(raw.get("home")),
        exclude_from_office_visits=bool(raw.get("exclude_from_office_visits", False)),
        late_grace_minutes=None if grace is None else int(grace),
    )


def parse_segment(row: Mapping[str, Any]) -> VehicleSegment:
    return VehicleSegment(
        start_time=parse_gps_timestamp(str(row["start_time"])),
        start_location=_coordinate(row["start_latitude"], row["start_longitude"]),
        end_time=_opt_time(row.get("end_time"), parse_gps_timestamp),
        end_location=_opt_coordinate(row, "end_latitude", "end_longitude"),
        is_complete=bool(row.get("is_complete", True)),
        distance_miles=float(row.get("distance_miles") or 0.0),
        max_speed_mph=_opt_float(row.get("max_speed_mph")),
        idle_minutes=_opt_float(row.get("idle_minutes")),
        start_address=_opt_str(row.get("start_address")),
        end_address=_opt_str(row.get("end_address")),
    )


def parse_breadcrumb(row: Mapping[str, Any]) -> GpsPoint:
    return GpsPoint(
        timestamp=parse_gps_timestamp(str(row["timestamp"])),
        location=_coordinate(row["latitude"], row["longitude"]),
        speed_mph=_opt_float(row.get("speed_mph")),
        address=_opt_str(row.get("address")),
    )


def parse_job(row: Mapping[str, Any], tz_name: str) -> JobVisit:
    parse = _schedule_parser(tz_name)
    return JobVisit(
        job_id=str(row["job_id"]),
        scheduled_start=parse(str(row["scheduled_start"])),
        location=_opt_coordinate(row),
        scheduled_end=_opt_time(row.get("scheduled_end"), parse),
        is_first_of_day=bool(row.get("is_first_of_day", False)),
        is_follow_up=bool(row.get("is_follow_up", False)),
        status=str(row.get("status") or "Scheduled"),
        job_number=_opt_str(row.get("job_number")),
        customer_name=_opt_str(row.get("customer_name")),
        address=_opt_str(row.get("address")),
    )


def parse_punch(row: Mapping[str, Any]) -> RawPunch:
    # Times stay as feed text; the reconciler resolves them in the business zone.
    return RawPunch(
        employee_id=str(row["employee_id"]),
        punch_type=str(row["punch_type"]),
        clock_in_time=row.get("clock_in_time"),
        clock_out_time=row.get("clock_out_time"),
        origin=_opt_str(row.get("origin")),
        punch_id=_opt_str(row.get("punch_id")),
    )


def _category(value: Any) -> str:
    category = str(value or "other").strip().lower()
    if category not in CUSTOM_CATEGORIES:
        raise ValueError(f"unknown custom location category {value!r}")
    return category


def parse_custom_location(row: Mapping[str, Any]) -> CustomLocation:
    polygon = tuple(_coordinate(lat, lon) for lat, lon in row.get("polygon") or ())
    return CustomLocation(
        location_id=str(row["location_id"]),
        name=str(row["name"]),
        center=_coordinate(row["latitude"], row["longitude"]),
        category=_category(row.get("category")),
        radius_feet=_opt_float(row.get("radius_feet")),
        polygon=polygon,
        logo_url=_opt_str(row.get("logo_url")),
    )


def parse_excused_visit(row: Mapping[str, Any]) -> ExcusedVisit:
    return ExcusedVisit(
        technician_id=str(row["technician_id"]),
        visit_date=date.fromisoformat(str(row["visit_date"])),
        reason=str(row["reason"]),
        notes=_opt_str(row.get("notes")),
    )


def parse_association(row: Mapping[str, Any], tz_name: str) -> ManualJobAssociation:
    return ManualJobAssociation(
        job_id=str(row["job_id"]),
        timestamp=_schedule_parser(tz_name)(str(row["timestamp"])),
        location=_opt_coordinate(row),
        notes=_opt_str(row.get("notes")),
    )


def parse_proposal(row: Mapping[str, Any], tz_name: str) -> ProposedPunch:
    return ProposedPunch(
        proposal_id=str(row["proposal_id"]),
        punch_type=PunchType(str(row["punch_type"])),
        proposed_time=_schedule_parser(tz_name)(str(row["proposed_time"])),
        status=ProposalStatus(str(row.get("status") or "pending").lower()),
        note=_opt_str(row.get("note")),
    )


def _parse_records(
    kind: str,
    rows: Any,
    parse: Callable[[Mapping[str, Any]], T],
    parsed: dict[str, int],
    skipped: dict[str, int],
) -> tuple[T, ...]:
    if rows is None:
        rows = []
    if not isinstance(rows, list):
        raise ValueError(f"Bundle field {kind!r} must be a list, got {type(rows).__name__}")
    out: list[T] = []
    for idx, row in enumerate(rows):
        try:
            if not isinstance(row, Mapping):
                raise TypeError(f"expected an object, got {type(row).__name__}")
            out.append(parse(row))
        except (KeyError, ValueError, TypeError) as exc:
            logger.warning("Dropping %s record #%s: %s", kind, idx, exc)
            continue
    parsed[kind] = len(out)
    skipped[kind] = len(rows) - len(out)
    return tuple(out)


def parse_day_bundle(
    data: Mapping[str, Any],
    base: TimelineSettings = DEFAULT_SETTINGS,
    overrides: Mapping[str, Any] | None = None,
) -> tuple[DayBundle, LoadSummary]:
    """Turn a decoded bundle object into typed inputs.

    Args:
        data: Decoded JSON object.
        base: Settings the bundle's "settings" block is applied on top of.
        overrides: TimelineSettings fields that win over the bundle's block.
            They are applied before any time is parsed, so a ``tz_name``
            override also sets the zone of bare schedule and punch times.

    Returns:
        (bundle, summary)

    Raises:
        ValueError: If the date or technician is missing or malformed. Those are
            required for the whole day, so they are not skipped like records.
    """

    if not isinstance(data, Mapping):
        raise ValueError("Day bundle must be a JSON object")
    if not isinstance(data.get("technician"), Mapping):
        raise ValueError("Day bundle needs a 'technician' object")
    try:
        day = date.fromisoformat(str(data["date"]))
        technician = parse_technician(data["technician"])
    except (KeyError, TypeError) as exc:
        raise ValueError(f"Day bundle needs 'date' and 'technician': missing or malformed {exc}") from exc

    settings = settings_from_mapping(data.get("settings"), base)
    if overrides:
        settings = dataclasses.replace(settings, **overrides)
    tz = settings.tz_name
    now = _opt_time(data.get("now"), parse_gps_timestamp)

    parsed: dict[str, int] = {}
    skipped: dict[str, int] = {}
    segments = _parse_records("segments", data.get("segments"), parse_segment, parsed, skipped)
    breadcrumbs = _parse_records("breadcrumbs", data.get("breadcrumbs"), parse_breadcrumb, parsed, skipped)
    jobs = _parse_records("jobs", data.get("jobs"), lambda r: parse_job(r, tz), parsed, skipped)
    punches = _parse_records("punches", data.get("punches"), parse_punch, parsed, skipped)
    custom = _parse_records(
        "custom_locations", data.get("custom_locations"), parse_custom_location, parsed, skipped
    )
    excused = _parse_records("excused_visits", data.get("excused_visits"), parse_excused_visit, parsed, skipped)
    associations = _parse_records(
        "manual_associations", data.get("manual_associations"), lambda r: parse_association(r, tz), parsed, skipped
    )
    proposals = _parse_records(
        "proposed_punches", data.get("proposed_punches"), lambda r: parse_proposal(r, tz), parsed, skipped
    )

    material_rows = data.get("materials") or []
    if not isinstance(material_rows, list):
        raise ValueError("Bundle field 'materials' must be a list")
    material_dicts = [r for r in material_rows if isinstance(r, Mapping)]
    grouped, bad_materials = group_material_rows(material_dicts)
    materials = tuple(grouped)
    # Counted in rows, not in the events they group into.
    parsed["materials"] = len(material_dicts) - bad_materials
    skipped["materials"] = len(material_rows) - parsed["materials"]

    summary = LoadSummary(parsed=parsed, skipped=skipped)
    if summary.total_skipped > 0:
        logger.warning("Bundle for %s on %s: %s records skipped", technician.technician_id, day, summary.total_skipped)
    bundle = DayBundle(
        day=day,
        technician=technician,
        settings=settings,
        now=now,
        segments=segments,
        breadcrumbs=breadcrumbs,
        jobs=jobs,
        punches=punches,
        custom_locations=custom,
        excused_visits=excused,
        manual_associations=associations,
        proposed_punches=proposals,
        materials=materials,
    )
    return bundle, summary


def load_day_bundle(
    path: str | Path,
    base: TimelineSettings = DEFAULT_SETTINGS,
    overrides: Mapping[str, Any] | None = None,
) -> tuple[DayBundle, LoadSummary]:
    """Load a JSON day bundle from disk (see parse_day_bundle for overrides).

    Raises:
        OSError: If the file cannot be read.
        ValueError: If it is not valid JSON or lacks the date / technician.
    """

    p = Path(path)
    with p.open("r", encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as exc:
            raise ValueError(f"{p}: not valid JSON ({exc})") from exc
    return parse_day_bundle(data, base, overrides)


def load_breadcrumbs_csv(csv_path: str | Path) -> tuple[list[GpsPoint], CsvSummary]:
    """Load a breadcrumb export.

    Args:
        csv_path: CSV with timestamp, latitude, longitude and optional
            speed_mph / address columns.

    Returns:
        (points, summary)

    Raises:
        ValueError: If a required column is missing from the header.
    """

    p = Path(csv_path)
    rows_total = 0
    parsed: list[GpsPoint] = []

    with p.open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        fieldnames: Sequence[str] = reader.fieldnames or ()
        missing = [c for c in BREADCRUMB_COLUMNS if c not in fieldnames]
        if missing:
            raise ValueError(f"CSV is missing required columns {missing}. Found: {list(fieldnames)}")
        for row in reader:
            rows_total += 1
            try:
                parsed.append(parse_breadcrumb(row))
            except (KeyError, ValueError, TypeError):
                continue

    summary = CsvSummary(
        rows_total=rows_total,
        rows_parsed=len(parsed),
        rows_skipped=rows_total - len(parsed),
        fieldnames=fieldnames,
    )
    if summary.rows_skipped > 0:
        logger.warning("%s: skipped %s unparseable breadcrumb rows", p, summary.rows_skipped)
    return parsed, summary


def timeline_from_bundle(
    bundle: DayBundle,
    *,
    now: datetime | None = None,
    settings: TimelineSettings | None = None,
) -> DayTimeline:
    """Build the bundle's day timeline.

    ``now`` falls back to the bundle's own "now", then to the wall clock.
    """

    effective_now = now or bundle.now or datetime.now(UTC)
    return build_day_timeline(
        bundle.day,
        bundle.technician,
        now=effective_now,
        segments=bundle.segments,
        breadcrumbs=bundle.breadcrumbs,
        jobs=bundle.jobs,
        punches=bundle.punches,
        custom_locations=bundle.custom_locations,
        excused_visits=bundle.excused_visits,
        manual_associations=bundle.manual_associations,
        proposed_punches=bundle.proposed_punches,
        materials=bundle.materials,
        settings=settings or bundle.settings,
    )


def to_jsonable(value: Any) -> Any:
    """Convert dataclasses, enums and datetimes into plain JSON data."""

    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(v) for v in value]
    return value
