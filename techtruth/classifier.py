"""Location classification: which known place is this coordinate?"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from techtruth.geo import point_in_polygon, within_radius
from techtruth.models import (
    NO_GPS,
    UNKNOWN,
    Coordinate,
    CustomLocation,
    JobVisit,
    LocationClass,
    LocationKind,
    Technician,
)
from techtruth.settings import DEFAULT_SETTINGS, TimelineSettings


@dataclass(frozen=True, slots=True)
class KnownJobSite:
    job_id: str
    location: Coordinate
    name: str | None = None


@dataclass(frozen=True, slots=True)
class LocationContext:
    """Places a technician's positions are classified against for one day."""

    office: Coordinate
    home: Coordinate | None = None
    custom_locations: tuple[CustomLocation, ...] = ()
    job_sites: tuple[KnownJobSite, ...] = ()

    @classmethod
    def for_technician(
        cls,
        technician: Technician,
        *,
        custom_locations: Iterable[CustomLocation] = (),
        jobs: Iterable[JobVisit] = (),
    ) -> LocationContext:
        """Build a context from a technician's config and the day's jobs.

        Jobs without coordinates and canceled jobs are not candidate sites; job
        order is preserved, so earlier jobs win when sites overlap.
        """

        sites = tuple(
            KnownJobSite(
                job_id=j.job_id,
                location=j.location,
                name=j.customer_name or j.job_number,
            )
            for j in jobs
            if j.location is not None and not j.is_canceled
        )
        return cls(
            office=technician.office,
            home=technician.home,
            custom_locations=tuple(custom_locations),
            job_sites=sites,
        )


def in_custom_location(point: Coordinate, loc: CustomLocation, settings: TimelineSettings) -> bool:
    if len(loc.polygon) >= 3:
        return point_in_polygon(point, loc.polygon)
    radius = loc.radius_feet if loc.radius_feet is not None else settings.custom_radius_feet
    return within_radius(point, loc.center, radius, earth_radius_feet=settings.earth_radius_feet)


def classify(
    point: Coordinate | None,
    context: LocationContext,
    settings: TimelineSettings = DEFAULT_SETTINGS,
) -> LocationClass:
    """Classify a coordinate into a semantic place.

    Categories are checked in fixed priority order: home, office, custom
    geofences, then the day's job sites. The first category that matches wins
    even when a lower-priority place is physically closer (a gas station two
    blocks from the office is still the office).

    Args:
        point: Position to classify; None means no GPS data was available.
        context: Candidate places.
        settings: Radii and Earth radius.

    Returns:
        LocationClass; NO_GPS for a missing point, UNKNOWN when nothing matches.
    """

    if point is None:
        return NO_GPS

    earth = settings.earth_radius_feet
    if context.home is not None and within_radius(
        point, context.home, settings.home_radius_feet, earth_radius_feet=earth
    ):
        return LocationClass(LocationKind.HOME)

    if within_radius(point, context.office, settings.office_radius_feet, earth_radius_feet=earth):
        return LocationClass(LocationKind.OFFICE)

    for loc in context.custom_locations:
        if in_custom_location(point, loc, settings):
            return LocationClass(LocationKind.CUSTOM, location_id=loc.location_id, name=loc.name)

    for site in context.job_sites:
        if within_radius(point, site.location, settings.arrival_radius_feet, earth_radius_feet=earth):
            return LocationClass(LocationKind.JOB, location_id=site.job_id, name=site.name)

    return UNKNOWN
