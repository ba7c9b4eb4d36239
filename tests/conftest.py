"""Shared fixtures for techtruth tests."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from techtruth.classifier import LocationContext
from techtruth.models import Technician
from techtruth.settings import TimelineSettings
from tests.factories import TZ_NAME, bundle_dict, office_technician, standard_day_jobs, technician


@pytest.fixture
def settings() -> TimelineSettings:
    return TimelineSettings(tz_name=TZ_NAME)


@pytest.fixture
def tech() -> Technician:
    """Take-home-truck technician."""
    return technician()


@pytest.fixture
def office_tech() -> Technician:
    """Technician who reports to the office each morning."""
    return office_technician()


@pytest.fixture
def context(tech: Technician) -> LocationContext:
    return LocationContext.for_technician(tech, jobs=standard_day_jobs())


@pytest.fixture
def bundle_path(tmp_path: Path) -> Path:
    path = tmp_path / "T1_20250106.json"
    path.write_text(json.dumps(bundle_dict()), encoding="utf-8")
    return path
