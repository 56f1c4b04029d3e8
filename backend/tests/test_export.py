"""
Tests for the JSON export.
"""

import json

import numpy as np
import pytest

from ridelog.filters.chain import SmoothLevel
from ridelog.models.ride import SegmentType
from ridelog.services.export import build_export, downsample, to_jsonable, write_export
from ridelog.services.pipeline import process_session_log
from ridelog.utils.sample_data import generate_ride_session


@pytest.fixture(scope="module")
def session(tmp_path_factory):
    path = generate_ride_session(
        tmp_path_factory.mktemp("export") / "ride.csv", stationary_s=5.0, ride_s=30.0, stop_s=15.0
    )
    return process_session_log(path)


class TestDownsample:
    def test_keeps_short_series(self):
        assert downsample([1, 2, 3], 10) == [1, 2, 3]

    def test_keeps_both_ends(self):
        items = list(range(1001))

        picked = downsample(items, 11)

        assert picked == list(range(0, 1001, 100))

    def test_never_exceeds_limit(self):
        assert len(downsample(list(range(12345)), 1000)) <= 1000


class TestToJsonable:
    def test_non_finite_to_none(self):
        cleaned = to_jsonable({"a": float("nan"), "b": [float("inf"), 1.5], "c": np.float64(-np.inf)})

        assert cleaned == {"a": None, "b": [None, 1.5], "c": None}

    def test_enums_and_numpy(self):
        cleaned = to_jsonable({"type": SegmentType.STOP, "count": np.int64(3), "pair": (1, 2)})

        assert cleaned == {"type": "STOP", "count": 3, "pair": [1, 2]}
        assert type(cleaned["count"]) is int


class TestBuildExport:
    """Tests for build_export and write_export."""

    def test_sections(self, session):
        export = build_export(session)

        assert set(export) == {
            "ride_info", "summary_stats", "time_series", "segments", "events", "errors", "data_quality",
        }
        assert export["ride_info"]["id"] == session.info.id
        assert export["summary_stats"]["segment_count"] == len(session.segments)
        assert [s["type"] for s in export["segments"]] == [s.segment_type.value for s in session.segments]

    def test_max_points_respected(self, session):
        export = build_export(session, max_points=100)

        for name, series in export["time_series"].items():
            assert 0 < len(series) <= 100, name
        assert len(session.derived.lean_angles) > 100

    def test_strict_json(self, session):
        """The export serializes without NaN or Infinity tokens."""
        text = json.dumps(build_export(session), allow_nan=False)

        assert "NaN" not in text

    def test_smoothing_keeps_shape(self, session):
        plain = build_export(session, max_points=200)
        smooth = build_export(session, max_points=200, smoothing=SmoothLevel.AGGRESSIVE)

        for name in ("gps", "lean_angles", "g_forces"):
            assert [p["timestamp"] for p in smooth["time_series"][name]] == [
                p["timestamp"] for p in plain["time_series"][name]
            ]
        assert smooth["time_series"]["speeds"] == plain["time_series"]["speeds"]
        json.dumps(smooth, allow_nan=False)

    def test_smoothing_reduces_variation(self, session):
        """A display EMA never adds total variation to the lean series."""
        count = len(session.derived.lean_angles)
        plain = build_export(session, max_points=count)
        smooth = build_export(session, max_points=count, smoothing=SmoothLevel.MINIMAL)

        def variation(export):
            rolls = np.array([p["roll"] for p in export["time_series"]["lean_angles"]])
            return np.abs(np.diff(rolls)).sum()

        assert variation(smooth) < variation(plain)
        assert smooth["time_series"]["lean_angles"][0] == plain["time_series"]["lean_angles"][0]

    def test_write_export(self, session, tmp_path):
        path = write_export(session, tmp_path / "ride.json", max_points=200)

        data = json.loads(path.read_text())
        assert data["ride_info"]["file_name"] == "ride.csv"
        assert len(data["time_series"]["g_forces"]) <= 200
