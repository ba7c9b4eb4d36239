"""Data models for vehicle telemetry, schedules, punches and day timelines."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import StrEnum
from typing import Final


DEFAULT_TZ: Final[str] = "America/New_York"


@dataclass(frozen=True, slots=True)
class Coordinate:
    """A WGS84 position in decimal degrees."""

    latitude: float
    longitude: float


class LocationKind(StrEnum):
    """Semantic place a coordinate was classified as.

    NO_GPS means there was no position to classify; UNKNOWN means there was one
    and it matched nothing.
    """

    HOME = "home"
    OFFICE = "office"
    JOB = "job"
    CUSTOM = "custom"
    UNKNOWN = "unknown"
    NO_GPS = "no_gps"


@dataclass(frozen=True, slots=True)
class LocationClass:
    """Classifier result.

    Attributes:
        kind: Place category.
        location_id: Custom geofence id for CUSTOM, job id for JOB.
        name: Display name for CUSTOM / JOB results.
    """

    kind: LocationKind
    location_id: str | None = None
    name: str | None = None


NO_GPS: Final[LocationClass] = LocationClass(LocationKind.NO_GPS)
UNKNOWN: Final[LocationClass] = LocationClass(LocationKind.UNKNOWN)


CUSTOM_CATEGORIES: Final[frozenset[str]] = frozenset(
    {"gas_station", "supply_house", "restaurant", "parts_store", "other"}
)


@dataclass(frozen=True, slots=True)
class CustomLocation:
    """A user-labeled geofence (circle or polygon).

    A polygon with at least three vertices takes precedence over the radius.
    """

    location_id: str
    name: str
    center: Coordinate
    category: str = "other"
    radius_feet: float | None = None
    polygon: tuple[Coordinate, ...] = ()
    logo_url: str | None = None


@dataclass(frozen=True, slots=True)
class Technician:
    """Per-technician policy configuration."""

    technician_id: str
    name: str
    office: Coordinate
    employee_id: str | None = None
    takes_truck_home: bool = False
    home: Coordinate | None = None
    exclude_from_office_visits: bool = False
    # Overrides TimelineSettings.late_grace_minutes when set.
    late_grace_minutes: int | None = None


@dataclass(frozen=True, slots=True)
class VehicleSegment:
    """One trip of the vehicle: ignition on at start, parked at end.

    Open-ended segments (still moving at query time) have no end.
    """

    start_time: datetime
    start_location: Coordinate
    end_time: datetime | None = None
    end_location: Coordinate | None = None
    is_complete: bool = True
    distance_miles: float = 0.0
    max_speed_mph: float | None = None
    idle_minutes: float | None = None
    start_address: str | None = None
    end_address: str | None = None

    @property
    def has_end(self) -> bool:
        return self.end_time is not None and self.end_location is not None


@dataclass(frozen=True, slots=True)
class GpsPoint:
    """A single GPS breadcrumb."""

    timestamp: datetime
    location: Coordinate
    speed_mph: float | None = None
    address: str | None = None


@dataclass(frozen=True, slots=True)
class JobVisit:
    """A scheduled appointment as delivered by the dispatch feed."""

    job_id: str
    scheduled_start: datetime
    location: Coordinate | None = None
    scheduled_end: datetime | None = None
    is_first_of_day: bool = False
    is_follow_up: bool = False
    status: str = "Scheduled"
    job_number: str | None = None
    customer_name: str | None = None
    address: str | None = None

    @property
    def is_canceled(self) -> bool:
        return self.status.strip().lower() in {"canceled", "cancelled"}


class PunchType(StrEnum):
    CLOCK_IN = "ClockIn"
    CLOCK_OUT = "ClockOut"
    MEAL_START = "MealStart"
    MEAL_END = "MealEnd"


@dataclass(frozen=True, slots=True)
class RawPunch:
    """A punch row as the payroll feed reports it.

    Attributes:
        employee_id: Payroll employee id.
        punch_type: "work" / "meal" for paired rows, or a PunchType value for a
            discrete row.
        clock_in_time: Start side (datetime or feed text).
        clock_out_time: End side (datetime or feed text).
        origin: Device/source reported by the feed.
        punch_id: Feed identifier, if any.
    """

    employee_id: str
    punch_type: str
    clock_in_time: datetime | str | None = None
    clock_out_time: datetime | str | None = None
    origin: str | None = None
    punch_id: str | None = None


@dataclass(frozen=True, slots=True)
class PunchRecord:
    """A discrete, located and policy-checked punch."""

    technician_id: str
    employee_id: str
    punch_type: PunchType
    punch_time: datetime
    paired_time: datetime | None
    location: Coordinate | None
    location_class: LocationClass
    origin: str | None = None
    punch_id: str | None = None
    is_first_of_day: bool = False
    is_last_of_day: bool = False
    expected_kind: LocationKind | None = None
    is_violation: bool = False
    violation_reason: str | None = None
    can_be_excused: bool = False
    is_excused: bool = False
    is_synthesized: bool = False
    is_manual: bool = False

    @property
    def is_active_violation(self) -> bool:
        return self.is_violation and not self.is_excused


@dataclass(frozen=True, slots=True)
class ExcusedVisit:
    """Manager approval for an office visit on a given day."""

    technician_id: str
    visit_date: date
    reason: str
    notes: str | None = None


@dataclass(frozen=True, slots=True)
class ManualJobAssociation:
    """Operator assignment of a GPS stop to a job."""

    job_id: str
    timestamp: datetime
    location: Coordinate | None = None
    notes: str | None = None


class ProposalStatus(StrEnum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    APPLIED = "applied"
    REJECTED = "rejected"


@dataclass(frozen=True, slots=True)
class ProposedPunch:
    """An operator-proposed punch correction."""

    proposal_id: str
    punch_type: PunchType
    proposed_time: datetime
    status: ProposalStatus = ProposalStatus.PENDING
    note: str | None = None


class MaterialKind(StrEnum):
    CHECKOUT = "checkout"
    DELIVERY = "delivery"
    PICKUP = "pickup"


@dataclass(frozen=True, slots=True)
class MaterialItem:
    part_id: str
    part_number: str
    description: str
    quantity: int = 1


@dataclass(frozen=True, slots=True)
class MaterialEvent:
    """A material transaction group (checkout at the warehouse, delivery or pickup)."""

    group_id: str
    kind: MaterialKind
    timestamp: datetime
    total_items: int = 0
    total_quantity: int = 0
    po_number: str | None = None
    location: Coordinate | None = None
    items: tuple[MaterialItem, ...] = ()


class EventType(StrEnum):
    LEFT_HOME = "left_home"
    ARRIVED_HOME = "arrived_home"
    LEFT_OFFICE = "left_office"
    ARRIVED_OFFICE = "arrived_office"
    ARRIVED_JOB = "arrived_job"
    LEFT_JOB = "left_job"
    ARRIVED_CUSTOM = "arrived_custom"
    LEFT_CUSTOM = "left_custom"
    ARRIVED_UNKNOWN = "arrived_unknown"
    LEFT_UNKNOWN = "left_unknown"
    CLOCK_IN = "clock_in"
    CLOCK_OUT = "clock_out"
    MEAL_START = "meal_start"
    MEAL_END = "meal_end"
    MISSING_CLOCK_OUT = "missing_clock_out"
    OVERNIGHT_AT_OFFICE = "overnight_at_office"
    PROPOSED_PUNCH = "proposed_punch"
    MATERIAL_CHECKOUT = "material_checkout"
    MATERIAL_DELIVERY = "material_delivery"
    MATERIAL_PICKUP = "material_pickup"


@dataclass(frozen=True, slots=True)
class TimelineEvent:
    """One entry of a day timeline.

    Only the fields relevant to the event type are set; the rest keep their
    defaults.
    """

    event_id: str
    type: EventType
    timestamp: datetime
    location: Coordinate | None = None
    location_class: LocationClass | None = None
    job_id: str | None = None
    label: str | None = None
    address: str | None = None
    # travel
    travel_minutes: int | None = None
    travel_miles: float | None = None
    duration_minutes: int | None = None
    # gaps
    elapsed_minutes: int | None = None
    has_untracked_time: bool = False
    untracked_minutes: int | None = None
    # jobs
    is_first_job: bool = False
    is_follow_up: bool = False
    is_late: bool | None = None
    variance_minutes: int | None = None
    # office visits
    is_unnecessary: bool = False
    # punches
    is_violation: bool = False
    violation_reason: str | None = None
    can_be_excused: bool = False
    is_excused: bool = False
    is_synthesized: bool = False
    # overrides
    is_manual: bool = False
    proposal_status: ProposalStatus | None = None


class ArrivalStatus(StrEnum):
    ON_TIME = "on_time"
    LATE = "late"
    UNVERIFIED = "unverified"
    SCHEDULED = "scheduled"
    # Only the first job of the day is held to its scheduled start.
    NOT_CHECKED = "not_checked"


@dataclass(frozen=True, slots=True)
class ClosestApproach:
    """Diagnostic: nearest the vehicle came to a job when no arrival was found."""

    timestamp: datetime
    distance_feet: float
    location: Coordinate


@dataclass(frozen=True, slots=True)
class JobOutcome:
    """A job after GPS correlation."""

    job: JobVisit
    status: ArrivalStatus
    is_first_job: bool = False
    actual_arrival: datetime | None = None
    variance_minutes: int | None = None
    is_late: bool | None = None
    arrival_source: str | None = None
    closest_approach: ClosestApproach | None = None
    unverified_reason: str | None = None

    @property
    def is_verified(self) -> bool:
        return self.status in (ArrivalStatus.ON_TIME, ArrivalStatus.LATE)


class OfficeVisitType(StrEnum):
    MORNING_DEPARTURE = "morning_departure"
    MID_DAY_VISIT = "mid_day_visit"
    END_OF_DAY = "end_of_day"


@dataclass(frozen=True, slots=True)
class OfficeVisit:
    """A consolidated stay at the office.

    ``arrival_time`` is None when the day simply started at the office.
    """

    arrival_time: datetime | None
    departure_time: datetime | None
    visit_type: OfficeVisitType
    duration_minutes: int | None = None
    is_unnecessary: bool = False
    is_excused: bool = False


@dataclass(frozen=True, slots=True)
class DaySummary:
    total_jobs: int = 0
    jobs_with_arrival: int = 0
    total_office_visits: int = 0
    unnecessary_office_visits: int = 0
    total_drive_minutes: int = 0
    total_drive_miles: float = 0.0
    unknown_stops: int = 0
    first_job_id: str | None = None
    first_job_status: ArrivalStatus | None = None
    first_job_on_time: bool | None = None
    first_job_variance: int | None = None
    has_missing_clock_out: bool = False
    overnight_at_office: bool = False
    clock_in_violations: int = 0
    clock_out_violations: int = 0
    active_violations: int = 0
    excused_violations: int = 0
    untracked_minutes: int = 0


@dataclass(frozen=True, slots=True)
class DayTimeline:
    """Everything derived for one technician on one day."""

    day: date
    technician_id: str
    technician_name: str
    events: tuple[TimelineEvent, ...] = ()
    jobs: tuple[JobOutcome, ...] = ()
    punches: tuple[PunchRecord, ...] = ()
    office_visits: tuple[OfficeVisit, ...] = ()
    summary: DaySummary = field(default_factory=DaySummary)

    @property
    def first_job(self) -> JobOutcome | None:
        for outcome in self.jobs:
            if outcome.is_first_job:
                return outcome
        return None
