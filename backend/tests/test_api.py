"""
Tests for API endpoints.
"""

import pytest
from fastapi.testclient import TestClient

from ridelog.main import app
from ridelog.services import repository
from ridelog.services.pipeline import session_id_for
from ridelog.services.repository import init_repository
from ridelog.utils.sample_data import generate_ride_session


@pytest.fixture(autouse=True)
def reset_repository():
    repository._repository = None
    yield
    repository._repository = None


@pytest.fixture
def test_data_folder(tmp_path):
    """Create a test data folder with two short rides."""
    data_folder = tmp_path / "sessions"
    data_folder.mkdir()

    generate_ride_session(data_folder / "ride_001.csv", stationary_s=5.0, ride_s=30.0, stop_s=15.0)
    generate_ride_session(data_folder / "ride_002.csv", stationary_s=5.0, ride_s=30.0, stop_s=15.0, seed=7)

    return data_folder


@pytest.fixture
def client_with_data(test_data_folder):
    """Create test client with initialized repository."""
    init_repository(test_data_folder)

    client = TestClient(app)
    yield client


@pytest.fixture
def client():
    """Create test client without initialized repository."""
    return TestClient(app)


@pytest.fixture
def session_id(test_data_folder):
    return session_id_for(test_data_folder / "ride_001.csv")


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    def test_root_endpoint(self, client):
        """Root endpoint should return basic info."""
        response = client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "Ride Telemetry"
        assert data["status"] == "running"

    def test_health_endpoint(self, client_with_data):
        """Health endpoint should report the indexed sessions."""
        response = client_with_data.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["session_count"] == 2

    def test_config_endpoint(self, client):
        response = client.get("/config")

        assert response.status_code == 200
        data = response.json()
        assert data["segments"]["window_ms"] == 5000
        assert data["calibration"]["auto_calibrate"] is False
        assert data["pipeline"]["processing_timeout_s"] is None


class TestFolderEndpoints:
    """Tests for folder management endpoints."""

    def test_get_folder_info_empty(self, client):
        """Should return empty info when no folder set."""
        response = client.get("/folder")

        assert response.status_code == 200
        data = response.json()
        assert data["path"] is None
        assert data["session_count"] == 0

    def test_set_folder(self, client, test_data_folder):
        """Should set folder and scan for session logs."""
        response = client.post("/folder", json={"path": str(test_data_folder)})

        assert response.status_code == 200
        data = response.json()
        assert data["path"] == str(test_data_folder)
        assert data["session_count"] == 2

    def test_set_nonexistent_folder(self, client, tmp_path):
        """Should return error for nonexistent folder."""
        response = client.post("/folder", json={"path": str(tmp_path / "nonexistent")})

        assert response.status_code == 400

    def test_set_file_as_folder(self, client, tmp_path):
        target = tmp_path / "file.csv"
        target.write_text("")

        response = client.post("/folder", json={"path": str(target)})

        assert response.status_code == 400

    def test_rescan_folder(self, client_with_data, test_data_folder):
        """Should pick up logs added after the first scan."""
        generate_ride_session(test_data_folder / "ride_003.csv", stationary_s=5.0, ride_s=20.0, stop_s=10.0)

        response = client_with_data.post("/folder/rescan")

        assert response.status_code == 200
        assert response.json()["session_count"] == 3

    def test_rescan_without_folder(self, client):
        response = client.post("/folder/rescan")

        assert response.status_code == 400


class TestSessionEndpoints:
    """Tests for session endpoints."""

    def test_list_sessions(self, client_with_data):
        response = client_with_data.get("/sessions")

        assert response.status_code == 200
        data = response.json()
        assert len(data) == 2
        assert {s["file_name"] for s in data} == {"ride_001.csv", "ride_002.csv"}
        assert all(s["is_calibrated"] and s["has_gps"] and s["has_imu"] for s in data)

    def test_list_skips_unprocessable(self, client_with_data, test_data_folder):
        (test_data_folder / "broken.csv").write_text("")
        client_with_data.post("/folder/rescan")

        response = client_with_data.get("/sessions")

        assert response.status_code == 200
        assert len(response.json()) == 2

    def test_get_session(self, client_with_data, session_id):
        response = client_with_data.get(f"/sessions/{session_id}")

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == session_id
        assert data["device"] == "Synthetic Rig"
        assert data["calibration"]["quality"] == "EXCELLENT"
        assert len(data["calibration"]["rotation_matrix"]) == 9
        assert data["statistics"]["max_speed"] > 10.0
        assert data["data_quality"]["sample_counts"]["IMU"] > 0

    def test_get_nonexistent_session(self, client_with_data):
        response = client_with_data.get("/sessions/does-not-exist")

        assert response.status_code == 404

    def test_unprocessable_session(self, client_with_data, test_data_folder):
        broken = test_data_folder / "broken.csv"
        broken.write_text("")
        client_with_data.post("/folder/rescan")

        response = client_with_data.get(f"/sessions/{session_id_for(broken)}")

        assert response.status_code == 422
        assert "broken.csv" in response.json()["detail"]

    def test_get_segments(self, client_with_data, session_id):
        response = client_with_data.get(f"/sessions/{session_id}/segments")

        assert response.status_code == 200
        segments = response.json()
        assert segments
        assert segments[-1]["segment_type"] == "STOP"
        for previous, current in zip(segments, segments[1:]):
            assert previous["end_time"] == current["start_time"]

    def test_get_events(self, client_with_data, session_id):
        response = client_with_data.get(f"/sessions/{session_id}/events")

        assert response.status_code == 200
        timestamps = [event["timestamp"] for event in response.json()]
        assert timestamps == sorted(timestamps)

    def test_get_errors(self, client_with_data, session_id):
        response = client_with_data.get(f"/sessions/{session_id}/errors")

        assert response.status_code == 200
        assert response.json() == []

    def test_export(self, client_with_data, session_id):
        response = client_with_data.get(f"/sessions/{session_id}/export", params={"max_points": 50})

        assert response.status_code == 200
        data = response.json()
        assert data["ride_info"]["id"] == session_id
        assert len(data["time_series"]["lean_angles"]) <= 50
        assert set(data) >= {"ride_info", "summary_stats", "time_series", "segments", "events"}

    def test_export_smoothing(self, client_with_data, session_id):
        response = client_with_data.get(
            f"/sessions/{session_id}/export", params={"max_points": 50, "smoothing": "MODERATE"}
        )

        assert response.status_code == 200
        assert len(response.json()["time_series"]["g_forces"]) <= 50

    def test_export_rejects_unknown_smoothing(self, client_with_data, session_id):
        response = client_with_data.get(f"/sessions/{session_id}/export", params={"smoothing": "SILKY"})

        assert response.status_code == 422

    def test_export_rejects_bad_max_points(self, client_with_data, session_id):
        response = client_with_data.get(f"/sessions/{session_id}/export", params={"max_points": 1})

        assert response.status_code == 422

    def test_reprocess(self, client_with_data, session_id):
        first = client_with_data.get(f"/sessions/{session_id}").json()

        response = client_with_data.post(f"/sessions/{session_id}/reprocess")

        assert response.status_code == 200
        assert response.json()["statistics"] == first["statistics"]

    def test_reprocess_unknown(self, client_with_data):
        assert client_with_data.post("/sessions/unknown/reprocess").status_code == 404
