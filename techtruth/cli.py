"""Command-line interface for techtruth.

Run:
    python -m techtruth timeline --bundle day.json --now 2025-01-07T12:00:00Z
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from time import perf_counter
from typing import Any, Sequence

from techtruth.bundle_io import DayBundle, load_day_bundle, timeline_from_bundle, to_jsonable
from techtruth.home import DailyStart, detect_home_location
from techtruth.inspect import inspect_bundle
from techtruth.models import DayTimeline
from techtruth.report import summarize_period
from techtruth.settings import DEFAULT_SETTINGS
from techtruth.timeutils import parse_gps_timestamp, tzinfo_from_name

logger = logging.getLogger(__name__)

# CLI flag -> TimelineSettings field
SETTING_FLAGS: dict[str, str] = {
    "tz": "tz_name",
    "grace_minutes": "late_grace_minutes",
    "arrival_radius_feet": "arrival_radius_feet",
    "punch_tolerance_minutes": "punch_tolerance_minutes",
    "untracked_gap_minutes": "untracked_gap_minutes",
}


def _setting_overrides(args: argparse.Namespace) -> dict[str, Any]:
    return {field: getattr(args, flag) for flag, field in SETTING_FLAGS.items() if getattr(args, flag, None) is not None}


def _load(path: str | Path, overrides: dict[str, Any]) -> DayBundle:
    bundle, _ = load_day_bundle(path, overrides=overrides)
    return bundle


def _parse_now(text: str | None) -> datetime | None:
    return parse_gps_timestamp(text) if text else None


def _expand_bundle_paths(paths: Sequence[str]) -> list[Path]:
    out: list[Path] = []
    for raw in paths:
        p = Path(raw)
        if p.is_dir():
            out.extend(sorted(p.glob("*.json")))
        else:
            out.append(p)
    return out


def _write_json(payload: Any, out: str | None) -> None:
    text = json.dumps(to_jsonable(payload), ensure_ascii=False, indent=2)
    if out:
        Path(out).write_text(text + "\n", encoding="utf-8")
        print(f"Wrote {out}")
    else:
        print(text)


def _cmd_inspect(args: argparse.Namespace) -> int:
    bundle, summary = load_day_bundle(args.bundle)
    res = inspect_bundle(bundle, summary)
    tz = tzinfo_from_name(args.tz or bundle.settings.tz_name)

    print("### Bundle")
    print(f"technician={res.technician_id}, date={res.day.isoformat()}")
    print()

    print("### Records")
    print(", ".join(f"{k}={v}" for k, v in res.counts.items()))
    if summary.total_skipped:
        print("skipped: " + ", ".join(f"{k}={v}" for k, v in summary.skipped.items() if v))
    print()

    if res.gps_start is not None and res.gps_end is not None:
        print("### GPS time range (local)")
        print(f"start={res.gps_start.astimezone(tz).isoformat(sep=' ')}, end={res.gps_end.astimezone(tz).isoformat(sep=' ')}")
        print(f"open_segments={res.open_segments}")
        print()

    if res.delta is not None:
        print("### Breadcrumb interval (seconds)")
        print(
            f"count={res.delta.count}, min={res.delta.min_s:.3f}, median={res.delta.median_s:.3f}, "
            f"p95={res.delta.p95_s:.3f}, max={res.delta.max_s:.3f}"
        )
        print()

    print("### Coordinate bounds")
    print(f"lat=[{res.min_lat}, {res.max_lat}], lon=[{res.min_lon}, {res.max_lon}]")
    print()

    print("### Duplicate breadcrumb timestamps")
    print(res.duplicate_timestamps)
    print()

    if args.json:
        _write_json(res, None)
    return 0


def _print_timeline(timeline: DayTimeline, tz_name: str) -> None:
    tz = tzinfo_from_name(tz_name)
    s = timeline.summary
    print(f"### {timeline.technician_name} ({timeline.technician_id}) {timeline.day.isoformat()}")
    for ev in timeline.events:
        flags = []
        if ev.is_first_job:
            flags.append("LATE" if ev.is_late else "on time")
        if ev.is_unnecessary:
            flags.append("unnecessary")
        if ev.is_violation:
            flags.append("excused" if ev.is_excused else "VIOLATION")
        if ev.has_untracked_time:
            flags.append(f"untracked {ev.untracked_minutes}m")
        if ev.is_manual:
            flags.append("manual")
        if ev.is_synthesized:
            flags.append("synthesized")
        where = ev.label or ev.address or ""
        print(
            f"{ev.timestamp.astimezone(tz):%H:%M:%S}  {ev.type.value:<20} {where}"
            + (f"  [{', '.join(flags)}]" if flags else "")
        )
    print()
    print("### Summary")
    print(
        f"first_job={s.first_job_id} status={s.first_job_status} variance={s.first_job_variance}, "
        f"jobs={s.total_jobs} (with arrival {s.jobs_with_arrival})"
    )
    print(
        f"drive={s.total_drive_minutes}m / {s.total_drive_miles}mi, office_visits={s.total_office_visits} "
        f"(unnecessary {s.unnecessary_office_visits}), unknown_stops={s.unknown_stops}"
    )
    print(
        f"violations: active={s.active_violations} excused={s.excused_violations}, "
        f"missing_clock_out={s.has_missing_clock_out}, overnight_at_office={s.overnight_at_office}, "
        f"untracked={s.untracked_minutes}m"
    )


def _cmd_timeline(args: argparse.Namespace) -> int:
    bundle = _load(args.bundle, _setting_overrides(args))
    timeline = timeline_from_bundle(bundle, now=_parse_now(args.now))
    if args.out or args.json:
        _write_json(timeline, args.out)
    if not args.json:
        _print_timeline(timeline, bundle.settings.tz_name)
    return 0


def _build_many(
    paths: Sequence[Path],
    overrides: dict[str, Any],
    now: datetime | None,
    workers: int,
) -> list[DayTimeline]:
    """Build independent day timelines on a thread pool, keeping input order."""

    def _one(path: Path) -> DayTimeline:
        return timeline_from_bundle(_load(path, overrides), now=now)

    results: list[DayTimeline | None] = [None] * len(paths)
    started = perf_counter()
    with ThreadPoolExecutor(max_workers=max(1, workers)) as executor:
        futures = {executor.submit(_one, p): i for i, p in enumerate(paths)}
        for done, fut in enumerate(as_completed(futures), start=1):
            results[futures[fut]] = fut.result()
            print(
                f"\rBuilt {done}/{len(paths)} timelines ({perf_counter() - started:5.1f}s)",
                end="",
                file=sys.stderr,
                flush=True,
            )
    if paths:
        print(file=sys.stderr)
    return [r for r in results if r is not None]


def _cmd_report(args: argparse.Namespace) -> int:
    paths = _expand_bundle_paths(args.bundles)
    if not paths:
        raise ValueError("No bundle files found")
    overrides = _setting_overrides(args)
    timelines = _build_many(paths, overrides, _parse_now(args.now), args.workers)
    settings = replace(DEFAULT_SETTINGS, **overrides) if overrides else DEFAULT_SETTINGS
    if args.trend_threshold is not None:
        settings = replace(settings, trend_threshold_points=args.trend_threshold)
    report = summarize_period(timelines, settings)

    if args.out or args.json:
        _write_json(report, args.out)
    if args.json:
        return 0

    pct = "n/a" if report.on_time_percentage is None else f"{report.on_time_percentage}%"
    print("### Period")
    print(f"{report.start} .. {report.end} ({report.total_days} days)")
    print()
    print("### First jobs")
    print(
        f"total={report.total_first_jobs}, verified={report.verified_first_jobs}, "
        f"unverified={report.unverified_first_jobs}, scheduled={report.scheduled_first_jobs}"
    )
    print(
        f"late={report.late_first_jobs}, on_time={report.on_time_first_jobs}, on_time%={pct}, "
        f"avg_late={report.avg_late_minutes}m, max_late={report.max_late_minutes}m"
    )
    print()
    print("### By technician")
    for row in report.by_technician:
        row_pct = "n/a" if row.on_time_percentage is None else f"{row.on_time_percentage}%"
        print(
            f"{row.name:<24} first_jobs={row.total_first_jobs} late={row.late} "
            f"unverified={row.unverified} on_time%={row_pct} trend={row.trend}"
        )
    print()
    v = report.violation_summary
    print("### Punch violations")
    print(f"total={v.total}, active={v.active}, excused={v.excused}, clock_in={v.clock_in}, clock_out={v.clock_out}")
    return 0


def _cmd_detect_home(args: argparse.Namespace) -> int:
    starts: dict[str, list[DailyStart]] = defaultdict(list)
    bundles: dict[str, DayBundle] = {}
    for path in _expand_bundle_paths(args.bundles):
        bundle, _ = load_day_bundle(path)
        tech_id = bundle.technician.technician_id
        bundles.setdefault(tech_id, bundle)
        if not bundle.segments:
            continue
        first = min(bundle.segments, key=lambda s: s.start_time)
        starts[tech_id].append(DailyStart(day=bundle.day, location=first.start_location, address=first.start_address))

    results: dict[str, Any] = {}
    for tech_id, bundle in sorted(bundles.items()):
        days = sorted(starts.get(tech_id, []), key=lambda s: s.day)
        suggestion = detect_home_location(days, office=bundle.technician.office, settings=bundle.settings)
        results[tech_id] = suggestion
        if suggestion is None:
            print(f"{bundle.technician.name}: not enough consistent data ({len(days)} days)")
        else:
            print(
                f"{bundle.technician.name}: {suggestion.address} "
                f"({suggestion.location.latitude:.6f}, {suggestion.location.longitude:.6f}) "
                f"confidence={suggestion.confidence} days={suggestion.days_detected}/{suggestion.total_days_analyzed}"
            )
    if args.json:
        _write_json(results, None)
    return 0


def _add_setting_flags(p: argparse.ArgumentParser) -> None:
    p.add_argument("--tz", type=str, default=None, help=f"Business time zone (IANA); replaces the bundle's own zone (default {DEFAULT_SETTINGS.tz_name})")
    p.add_argument("--grace-minutes", type=int, default=None, help="Late grace period for the first job")
    p.add_argument("--arrival-radius-feet", type=float, default=None, help="Arrival radius around a job")
    p.add_argument(
        "--punch-tolerance-minutes",
        type=float,
        default=None,
        help="Max time between a punch and the GPS sample used to locate it",
    )
    p.add_argument("--untracked-gap-minutes", type=int, default=None, help="Untracked time threshold")


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser."""

    p = argparse.ArgumentParser(prog="techtruth")
    p.add_argument(
        "--log-level",
        type=str,
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level for data-quality messages",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    p_ins = sub.add_parser("inspect", help="Summarize the records and GPS coverage of a day bundle")
    p_ins.add_argument("--bundle", type=str, required=True, help="Day bundle JSON")
    p_ins.add_argument("--tz", type=str, default=None, help="Time zone for display")
    p_ins.add_argument("--json", action="store_true", help="Also print JSON")
    p_ins.set_defaults(func=_cmd_inspect)

    p_tl = sub.add_parser("timeline", help="Build one technician-day timeline")
    p_tl.add_argument("--bundle", type=str, required=True, help="Day bundle JSON")
    p_tl.add_argument("--now", type=str, default=None, help="Current time (ISO 8601); default: bundle 'now', then wall clock")
    p_tl.add_argument("--out", type=str, default=None, help="Write the timeline as JSON here")
    p_tl.add_argument("--json", action="store_true", help="Print JSON instead of the table")
    _add_setting_flags(p_tl)
    p_tl.set_defaults(func=_cmd_timeline)

    p_rep = sub.add_parser("report", help="Punctuality and violation report over many bundles")
    p_rep.add_argument("--bundles", nargs="+", required=True, help="Bundle files or directories of *.json")
    p_rep.add_argument("--workers", type=int, default=4, help="Threads used to build day timelines")
    p_rep.add_argument("--now", type=str, default=None, help="Current time (ISO 8601)")
    p_rep.add_argument("--trend-threshold", type=float, default=None, help="Percentage points that count as a trend")
    p_rep.add_argument("--out", type=str, default=None, help="Write the report as JSON here")
    p_rep.add_argument("--json", action="store_true", help="Print JSON instead of the text summary")
    _add_setting_flags(p_rep)
    p_rep.set_defaults(func=_cmd_report)

    p_home = sub.add_parser("detect-home", help="Suggest home locations from daily first-trip starts")
    p_home.add_argument("--bundles", nargs="+", required=True, help="Bundle files or directories of *.json")
    p_home.add_argument("--json", action="store_true", help="Also print JSON")
    p_home.set_defaults(func=_cmd_detect_home)

    return p


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint."""

    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(levelname)s %(name)s: %(message)s")
    try:
        return int(args.func(args))
    except (ValueError, OSError) as exc:
        logger.debug("Command failed", exc_info=True)
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
