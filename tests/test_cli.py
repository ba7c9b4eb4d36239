"""Tests for the command-line interface."""

from __future__ import annotations

import json

from techtruth.cli import build_parser, main
from tests.factories import bundle_dict


def _write(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def _second_technician():
    data = bundle_dict()
    data["technician"] = {**data["technician"], "technician_id": "T2", "name": "Tech Two", "employee_id": "E2"}
    return data


class TestParser:
    """Argument parsing"""

    def test_setting_flags(self):
        args = build_parser().parse_args(["timeline", "--bundle", "x.json", "--grace-minutes", "5", "--tz", "UTC"])
        assert args.grace_minutes == 5
        assert args.tz == "UTC"
        assert args.now is None

    def test_log_level_before_subcommand(self):
        args = build_parser().parse_args(["--log-level", "DEBUG", "report", "--bundles", "a.json", "b.json"])
        assert args.log_level == "DEBUG"
        assert args.bundles == ["a.json", "b.json"]
        assert args.workers == 4


class TestTimelineCommand:
    """techtruth timeline"""

    def test_text_output(self, bundle_path, capsys):
        assert main(["timeline", "--bundle", str(bundle_path)]) == 0
        out = capsys.readouterr().out
        assert "### Tech One (T1) 2025-01-06" in out
        assert "arrived_job" in out
        assert "on time" in out
        assert "### Summary" in out

    def test_json_output(self, bundle_path, capsys):
        assert main(["timeline", "--bundle", str(bundle_path), "--json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["technician_id"] == "T1"
        assert data["summary"]["first_job_status"] == "on_time"

    def test_setting_override(self, bundle_path, capsys):
        assert main(["timeline", "--bundle", str(bundle_path), "--json", "--grace-minutes", "5"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["summary"]["first_job_status"] == "late"

    def test_zone_flag_replaces_bundle_zone(self, tmp_path, capsys):
        path = tmp_path / "chicago.json"
        path.write_text(json.dumps(bundle_dict(settings={"tz_name": "America/Chicago"})), encoding="utf-8")
        assert main(["timeline", "--bundle", str(path), "--json", "--tz", "America/New_York"]) == 0
        data = json.loads(capsys.readouterr().out)
        clock_in = next(p for p in data["punches"] if p["punch_type"] == "clock_in")
        assert data["jobs"][0]["job"]["scheduled_start"] == "2025-01-06T08:00:00-05:00"
        assert clock_in["punch_time"] == "2025-01-06T08:09:00-05:00"
        assert data["summary"]["first_job_status"] == "on_time"

    def test_out_file(self, bundle_path, tmp_path, capsys):
        out = tmp_path / "timeline.json"
        assert main(["timeline", "--bundle", str(bundle_path), "--out", str(out)]) == 0
        assert f"Wrote {out}" in capsys.readouterr().out
        assert json.loads(out.read_text(encoding="utf-8"))["day"] == "2025-01-06"

    def test_missing_file(self, tmp_path, capsys):
        assert main(["timeline", "--bundle", str(tmp_path / "nope.json")]) == 2
        assert "error:" in capsys.readouterr().err

    def test_invalid_bundle(self, tmp_path, capsys):
        path = _write(tmp_path / "bad.json", {"date": "2025-01-06"})
        assert main(["timeline", "--bundle", str(path)]) == 2
        assert "technician" in capsys.readouterr().err


class TestReportCommand:
    """techtruth report"""

    def test_directory_of_bundles(self, tmp_path, capsys):
        _write(tmp_path / "T1_20250106.json", bundle_dict())
        _write(tmp_path / "T2_20250106.json", _second_technician())
        assert main(["report", "--bundles", str(tmp_path), "--json", "--workers", "2"]) == 0
        captured = capsys.readouterr()
        data = json.loads(captured.out)
        assert data["total_first_jobs"] == 2
        assert data["on_time_percentage"] == 100
        assert [r["technician_id"] for r in data["by_technician"]] == ["T1", "T2"]
        assert "Built 2/2 timelines" in captured.err

    def test_text_summary(self, bundle_path, capsys):
        assert main(["report", "--bundles", str(bundle_path)]) == 0
        out = capsys.readouterr().out
        assert "### First jobs" in out
        assert "on_time%=100%" in out

    def test_no_bundles(self, tmp_path, capsys):
        assert main(["report", "--bundles", str(tmp_path)]) == 2
        assert "No bundle files found" in capsys.readouterr().err


class TestInspectCommand:
    """techtruth inspect"""

    def test_sections(self, bundle_path, capsys):
        assert main(["inspect", "--bundle", str(bundle_path)]) == 0
        out = capsys.readouterr().out
        assert "### Records" in out
        assert "segments=3" in out
        assert "### GPS time range (local)" in out


class TestDetectHomeCommand:
    """techtruth detect-home"""

    def test_suggestion(self, tmp_path, capsys):
        for d in range(6, 11):
            _write(tmp_path / f"T1_202501{d:02d}.json", bundle_dict(date=f"2025-01-{d:02d}"))
        assert main(["detect-home", "--bundles", str(tmp_path)]) == 0
        out = capsys.readouterr().out
        assert "Tech One:" in out
        assert "confidence=medium days=5/5" in out

    def test_not_enough_days(self, bundle_path, capsys):
        assert main(["detect-home", "--bundles", str(bundle_path)]) == 0
        assert "not enough consistent data (1 days)" in capsys.readouterr().out
