"""Tunable thresholds shared by the timeline engine."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Any, Final, Mapping

from techtruth.models import DEFAULT_TZ, Coordinate

logger = logging.getLogger(__name__)


EARTH_RADIUS_FEET: Final[float] = 20_902_231.0

# Greensboro, NC shop used by the sample data generator.
REFERENCE_OFFICE: Final[Coordinate] = Coordinate(36.06693377330104, -79.86402542389432)


@dataclass(frozen=True, slots=True)
class TimelineSettings:
    """Parameters controlling classification, arrival detection and flagging."""

    # Mean Earth radius; GPS hardware accuracy is the bigger error source anyway.
    earth_radius_feet: float = EARTH_RADIUS_FEET
    arrival_radius_feet: float = 300.0
    home_radius_feet: float = 500.0
    office_radius_feet: float = 500.0
    # Used when a custom geofence has neither a radius nor a usable polygon.
    custom_radius_feet: float = 300.0
    # Max distance in time between a punch and the breadcrumb used to locate it.
    punch_tolerance_minutes: float = 10.0
    late_grace_minutes: int = 10
    arrival_window_before_minutes: int = 30
    arrival_window_after_minutes: int = 120
    # Gaps longer than this with no vehicle coverage are flagged as untracked.
    untracked_gap_minutes: int = 30
    # Unknown stops shorter than this are traffic, not stops.
    min_unknown_stop_minutes: float = 2.0
    office_visit_merge_minutes: int = 15
    end_of_day_hour: int = 17
    clock_out_tolerance_minutes: int = 5
    # Manual overrides replace automatic values this close in time.
    manual_match_seconds: int = 60
    # Percentage-point change between period halves that counts as a trend.
    trend_threshold_points: float = 10.0
    tz_name: str = DEFAULT_TZ


DEFAULT_SETTINGS: Final[TimelineSettings] = TimelineSettings()


def settings_from_mapping(
    values: Mapping[str, Any] | None,
    base: TimelineSettings = DEFAULT_SETTINGS,
) -> TimelineSettings:
    """Overlay known keys from a mapping (e.g. a bundle's "settings" block).

    Args:
        values: Key/value overrides. Unknown keys are logged and ignored.
        base: Settings to start from.

    Returns:
        New settings instance.

    Raises:
        ValueError: If a known key carries a value of the wrong type.
    """

    if not values:
        return base
    known = {f.name: f for f in dataclasses.fields(TimelineSettings)}
    changes: dict[str, Any] = {}
    for key, raw in values.items():
        fld = known.get(key)
        if fld is None:
            logger.warning("Ignoring unknown setting %r", key)
            continue
        current = getattr(base, key)
        try:
            if isinstance(current, str):
                changes[key] = str(raw)
            elif isinstance(current, int):
                changes[key] = int(raw)
            else:
                changes[key] = float(raw)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid value for setting {key!r}: {raw!r}") from exc
    return dataclasses.replace(base, **changes)
