from __future__ import annotations

import argparse
import json
import random
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from pathlib import Path
from typing import Any, Final

from zoneinfo import ZoneInfo

from techtruth.geo import offset_coordinate
from techtruth.models import DEFAULT_TZ, Coordinate
from techtruth.settings import REFERENCE_OFFICE

TZ: Final[str] = DEFAULT_TZ


@dataclass(frozen=True, slots=True)
class Profile:
    technician_id: str
    name: str
    employee_id: str
    takes_truck_home: bool
    home: Coordinate
    # Typical first-job lateness range in minutes (negative = early).
    lateness: tuple[int, int]


def _iso_utc(dt: datetime) -> str:
    return dt.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def _local_text(dt: datetime) -> str:
    return dt.astimezone(ZoneInfo(TZ)).strftime("%Y-%m-%dT%H:%M:%S")


def _coord(c: Coordinate) -> dict[str, float]:
    return {"latitude": round(c.latitude, 7), "longitude": round(c.longitude, 7)}


def _drive(
    rng: random.Random,
    start: datetime,
    origin: Coordinate,
    dest: Coordinate,
    minutes: float,
    segments: list[dict[str, Any]],
    crumbs: list[dict[str, Any]],
) -> datetime:
    end = start + timedelta(minutes=minutes)
    segments.append(
        {
            "start_time": _iso_utc(start),
            "start_latitude": origin.latitude,
            "start_longitude": origin.longitude,
            "end_time": _iso_utc(end),
            "end_latitude": dest.latitude,
            "end_longitude": dest.longitude,
            "distance_miles": round(minutes * rng.uniform(0.45, 0.7), 2),
            "max_speed_mph": round(rng.uniform(40, 65), 1),
        }
    )
    steps = max(1, int(minutes // 2))
    for i in range(steps + 1):
        f = i / steps
        crumbs.append(
            {
                "timestamp": _iso_utc(start + (end - start) * f),
                "latitude": round(origin.latitude + (dest.latitude - origin.latitude) * f, 7),
                "longitude": round(origin.longitude + (dest.longitude - origin.longitude) * f, 7),
                "speed_mph": 0.0 if i in (0, steps) else round(rng.uniform(20, 55), 1),
            }
        )
    return end


def generate_day(profile: Profile, day: date, seed: int) -> dict[str, Any]:
    """Build one privacy-safe day bundle around the reference office."""

    rng = random.Random(f"{seed}-{profile.technician_id}-{day.isoformat()}")
    tz = ZoneInfo(TZ)
    office = REFERENCE_OFFICE

    job_sites = [
        offset_coordinate(office, north_feet=rng.uniform(-40_000, 40_000), east_feet=rng.uniform(-40_000, 40_000))
        for _ in range(3)
    ]
    supply = offset_coordinate(office, north_feet=6_000, east_feet=-3_500)
    first_start = datetime.combine(day, time(8, 0), tzinfo=tz)

    jobs: list[dict[str, Any]] = []
    for i, site in enumerate(job_sites):
        scheduled = first_start + timedelta(hours=3 * i)
        jobs.append(
            {
                "job_id": f"{profile.technician_id}-{day:%Y%m%d}-J{i + 1}",
                "job_number": f"{rng.randint(100000, 999999)}",
                "customer_name": f"Customer {rng.randint(1, 400)}",
                "scheduled_start": _local_text(scheduled),
                "scheduled_end": _local_text(scheduled + timedelta(hours=2)),
                "is_first_of_day": i == 0,
                **_coord(site),
            }
        )

    segments: list[dict[str, Any]] = []
    crumbs: list[dict[str, Any]] = []
    lateness = rng.randint(*profile.lateness)
    origin = profile.home if profile.takes_truck_home else office
    drive_min = rng.uniform(18, 35)
    arrival = first_start + timedelta(minutes=lateness)
    leave = arrival - timedelta(minutes=drive_min)

    clock_in = leave - timedelta(minutes=rng.uniform(1, 4)) if not profile.takes_truck_home else arrival + timedelta(minutes=1)
    cur = _drive(rng, leave, origin, job_sites[0], drive_min, segments, crumbs)

    here = job_sites[0]
    for i, site in enumerate(job_sites[1:], start=1):
        cur += timedelta(minutes=rng.uniform(80, 140))
        if i == 1 and rng.random() < 0.5:
            cur = _drive(rng, cur, here, supply, rng.uniform(8, 15), segments, crumbs)
            cur += timedelta(minutes=rng.uniform(10, 20))
            here = supply
        cur = _drive(rng, cur, here, site, rng.uniform(15, 30), segments, crumbs)
        here = site
    cur += timedelta(minutes=rng.uniform(60, 100))
    last_departure = cur
    end_place = profile.home if profile.takes_truck_home else office
    _drive(rng, cur, here, end_place, rng.uniform(20, 35), segments, crumbs)

    clock_out = last_departure + timedelta(minutes=rng.uniform(0, 4))
    if not profile.takes_truck_home:
        clock_out = datetime.fromisoformat(segments[-1]["end_time"].replace("Z", "+00:00")) + timedelta(minutes=5)

    punches = [
        {
            "employee_id": profile.employee_id,
            "punch_type": "work",
            "clock_in_time": _local_text(clock_in),
            "clock_out_time": _local_text(clock_out),
            "origin": "Mobile",
        }
    ]

    return {
        "date": day.isoformat(),
        "now": _iso_utc(datetime.combine(day + timedelta(days=1), time(12, 0), tzinfo=tz)),
        "technician": {
            "technician_id": profile.technician_id,
            "name": profile.name,
            "employee_id": profile.employee_id,
            "takes_truck_home": profile.takes_truck_home,
            "office": _coord(office),
            "home": _coord(profile.home) if profile.takes_truck_home else None,
        },
        "settings": {"tz_name": TZ},
        "segments": segments,
        "breadcrumbs": crumbs,
        "jobs": jobs,
        "punches": punches,
        "custom_locations": [
            {
                "location_id": "supply-1",
                "name": "Supply House",
                "category": "supply_house",
                "radius_feet": 400,
                **_coord(supply),
            }
        ],
    }


def main() -> int:
    p = argparse.ArgumentParser(description="Generate fake day bundles for demo/testing (privacy-safe).")
    p.add_argument("--out", type=str, default="sample_data/bundles", help="Output directory")
    p.add_argument("--start", type=str, default="2025-01-06", help="First business date (YYYY-MM-DD)")
    p.add_argument("--days", type=int, default=10, help="Number of weekdays to generate")
    p.add_argument("--seed", type=int, default=42, help="Random seed (reproducible)")
    args = p.parse_args()

    office = REFERENCE_OFFICE
    profiles = [
        Profile("T-100", "Sample Tech A", "E100", True, offset_coordinate(office, north_feet=18_000, east_feet=9_000), (-12, 8)),
        Profile("T-200", "Sample Tech B", "E200", True, offset_coordinate(office, north_feet=-15_000, east_feet=21_000), (-5, 25)),
        Profile("T-300", "Sample Tech C", "E300", False, office, (-15, 12)),
    ]

    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)
    day = date.fromisoformat(args.start)
    written = 0
    generated_days = 0
    while generated_days < args.days:
        if day.weekday() < 5:
            for prof in profiles:
                bundle = generate_day(prof, day, args.seed)
                path = out_dir / f"{prof.technician_id}_{day:%Y%m%d}.json"
                path.write_text(json.dumps(bundle, indent=2) + "\n", encoding="utf-8")
                written += 1
            generated_days += 1
        day += timedelta(days=1)

    print(f"Generated: {out_dir} (bundles={written}, seed={args.seed})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
