from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime
from pathlib import Path

import streamlit as st

from techtruth.bundle_io import DayBundle, load_day_bundle, timeline_from_bundle
from techtruth.models import DayTimeline
from techtruth.report import summarize_period
from techtruth.settings import DEFAULT_SETTINGS, TimelineSettings
from techtruth.timeutils import parse_gps_timestamp, tzinfo_from_name


def _hhmm(minutes: int | None) -> str:
    if minutes is None:
        return "-"
    m = max(0, int(minutes))
    return f"{m // 60:d}:{m % 60:02d}"


def _pct(value: int | None) -> str:
    return "n/a" if value is None else f"{value}%"


@st.cache_data(show_spinner=False)
def _load_bundles(paths: tuple[str, ...], mtimes: tuple[float, ...], tz_override: str) -> list[DayBundle]:
    _ = mtimes  # part of cache key so updated files reload automatically
    # The zone has to be known while parsing: bare schedule and punch times are local.
    overrides = {"tz_name": tz_override} if tz_override else None
    return [load_day_bundle(p, overrides=overrides)[0] for p in paths]


def _settings_for(bundle: DayBundle, overrides: dict[str, object]) -> TimelineSettings:
    return replace(bundle.settings, **overrides)


def _event_rows(timeline: DayTimeline, tz_name: str) -> list[dict[str, object]]:
    tz = tzinfo_from_name(tz_name)
    rows: list[dict[str, object]] = []
    for ev in timeline.events:
        rows.append(
            {
                "time": ev.timestamp.astimezone(tz).strftime("%H:%M:%S"),
                "event": ev.type.value,
                "place": ev.location_class.kind.value if ev.location_class else "",
                "label": ev.label or ev.address or "",
                "travel_min": ev.travel_minutes,
                "miles": ev.travel_miles,
                "dwell_min": ev.duration_minutes,
                "elapsed_min": ev.elapsed_minutes,
                "untracked_min": ev.untracked_minutes if ev.has_untracked_time else None,
                "first_job": ev.is_first_job,
                "late": ev.is_late,
                "variance_min": ev.variance_minutes,
                "unnecessary": ev.is_unnecessary,
                "violation": ev.violation_reason if ev.is_violation else "",
                "excused": ev.is_excused,
                "manual": ev.is_manual,
                "synthesized": ev.is_synthesized,
            }
        )
    return rows


def main() -> None:
    st.set_page_config(page_title="Technician punctuality review", layout="wide")
    st.title("Technician punctuality review")

    with st.sidebar:
        st.subheader("Data")
        bundle_dir = st.text_input("Bundle directory", value="bundles")
        tz_override = st.text_input("Time zone override (IANA, empty = each bundle's own)", value="").strip()
        now_text = st.text_input("Current time (ISO, empty = now)", value="")

        st.subheader("Thresholds")
        grace = st.number_input("Late grace (minutes)", value=DEFAULT_SETTINGS.late_grace_minutes, step=1)
        radius = st.number_input(
            "Arrival radius (feet)", value=DEFAULT_SETTINGS.arrival_radius_feet, step=25.0
        )
        gap = st.number_input(
            "Untracked gap (minutes)", value=DEFAULT_SETTINGS.untracked_gap_minutes, step=5
        )

        view = st.radio("View", ["Day timeline", "Period report", "Violations"])

    d = Path(bundle_dir)
    if not d.is_dir():
        st.error(f"Bundle directory not found: {bundle_dir!r}")
        return
    paths = sorted(d.glob("*.json"))
    if not paths:
        st.warning(f"No *.json bundles in {bundle_dir!r}")
        return

    try:
        if tz_override:
            tzinfo_from_name(tz_override)
        now = parse_gps_timestamp(now_text) if now_text.strip() else datetime.now(UTC)
        bundles = _load_bundles(
            tuple(str(p) for p in paths), tuple(p.stat().st_mtime for p in paths), tz_override
        )
    except (ValueError, OSError) as exc:
        st.error(str(exc))
        return

    overrides: dict[str, object] = {
        "late_grace_minutes": int(grace),
        "arrival_radius_feet": float(radius),
        "untracked_gap_minutes": int(gap),
    }
    timelines = [timeline_from_bundle(b, now=now, settings=_settings_for(b, overrides)) for b in bundles]

    if view == "Day timeline":
        labels = [f"{t.day.isoformat()}  {t.technician_name}" for t in timelines]
        idx = st.selectbox("Technician day", range(len(labels)), format_func=lambda i: labels[i])
        tl = timelines[idx]
        tz_name = bundles[idx].settings.tz_name
        s = tl.summary

        c1, c2, c3, c4 = st.columns(4)
        c1.metric("First job", s.first_job_status.value if s.first_job_status else "none")
        c2.metric("Variance (min)", "-" if s.first_job_variance is None else str(s.first_job_variance))
        c3.metric("Drive time", _hhmm(s.total_drive_minutes))
        c4.metric("Active violations", str(s.active_violations))

        c5, c6, c7, c8 = st.columns(4)
        c5.metric("Office visits", f"{s.total_office_visits} ({s.unnecessary_office_visits} unnecessary)")
        c6.metric("Unknown stops", str(s.unknown_stops))
        c7.metric("Untracked", _hhmm(s.untracked_minutes))
        c8.metric("Missing clock-out", "yes" if s.has_missing_clock_out else "no")

        st.subheader("Events")
        st.dataframe(_event_rows(tl, tz_name), use_container_width=True, height=520)

        with st.expander("Jobs", expanded=False):
            job_rows = [
                {
                    "job": o.job.job_number or o.job.job_id,
                    "customer": o.job.customer_name,
                    "scheduled": o.job.scheduled_start.astimezone(tzinfo_from_name(tz_name)).strftime("%H:%M"),
                    "status": o.status.value,
                    "arrival_source": o.arrival_source,
                    "variance_min": o.variance_minutes,
                    "unverified_reason": o.unverified_reason,
                    "closest_ft": round(o.closest_approach.distance_feet) if o.closest_approach else None,
                }
                for o in tl.jobs
            ]
            st.dataframe(job_rows, use_container_width=True, height=240)

        with st.expander("Office visits", expanded=False):
            visit_rows = [
                {
                    "type": v.visit_type.value,
                    "arrival": v.arrival_time.isoformat(sep=" ") if v.arrival_time else "",
                    "departure": v.departure_time.isoformat(sep=" ") if v.departure_time else "",
                    "minutes": v.duration_minutes,
                    "unnecessary": v.is_unnecessary,
                    "excused": v.is_excused,
                }
                for v in tl.office_visits
            ]
            st.dataframe(visit_rows, use_container_width=True, height=200)

    elif view == "Period report":
        report = summarize_period(timelines, _settings_for(bundles[0], overrides))
        c1, c2, c3, c4 = st.columns(4)
        c1.metric("First jobs", str(report.total_first_jobs))
        c2.metric("Verified", str(report.verified_first_jobs))
        c3.metric("Late", str(report.late_first_jobs))
        c4.metric("On time (verified)", _pct(report.on_time_percentage))

        c5, c6, c7 = st.columns(3)
        c5.metric("Unverified", str(report.unverified_first_jobs))
        c6.metric("Avg late (min)", str(report.avg_late_minutes))
        c7.metric("Max late (min)", str(report.max_late_minutes))

        st.subheader("By technician")
        st.dataframe(
            [
                {
                    "technician": r.name,
                    "first_jobs": r.total_first_jobs,
                    "verified": r.verified,
                    "late": r.late,
                    "unverified": r.unverified,
                    "on_time": _pct(r.on_time_percentage),
                    "avg_late_min": r.avg_late_minutes,
                    "trend": r.trend,
                }
                for r in report.by_technician
            ],
            use_container_width=True,
            height=320,
        )
        with st.expander("By day of week", expanded=False):
            st.dataframe(
                [
                    {"day": r.day_name, "total": r.total, "verified": r.verified, "late": r.late, "on_time": _pct(r.on_time_percentage)}
                    for r in report.by_day_of_week
                ],
                use_container_width=True,
                height=300,
            )
        with st.expander("Late first jobs", expanded=False):
            st.dataframe(
                [
                    {
                        "date": x.day.isoformat(),
                        "technician": x.technician_name,
                        "job": x.job_number or x.job_id,
                        "variance_min": x.variance_minutes,
                    }
                    for x in report.discrepancies
                ],
                use_container_width=True,
                height=360,
            )

    else:
        report = summarize_period(timelines, _settings_for(bundles[0], overrides))
        zones = {(b.technician.technician_id, b.day): tzinfo_from_name(b.settings.tz_name) for b in bundles}
        v = report.violation_summary
        c1, c2, c3 = st.columns(3)
        c1.metric("Violations", str(v.total))
        c2.metric("Active", str(v.active))
        c3.metric("Excused", str(v.excused))
        st.dataframe(
            [
                {
                    "date": r.day.isoformat(),
                    "technician": r.technician_name,
                    "punch": r.punch_type.value,
                    "time": r.punch_time.astimezone(zones[(r.technician_id, r.day)]).strftime("%H:%M"),
                    "location": r.location_kind.value,
                    "reason": r.reason,
                    "excusable": r.can_be_excused,
                    "excused": r.is_excused,
                }
                for r in report.violations
            ],
            use_container_width=True,
            height=520,
        )

    st.caption(
        "Read-only view of day bundles. First-job punctuality counts verified arrivals only; "
        "jobs without GPS evidence are listed as unverified, never as on time."
    )


if __name__ == "__main__":
    main()
