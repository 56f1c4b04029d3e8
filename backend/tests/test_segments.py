"""
Tests for ride segment detection.
"""

import pytest

from ridelog.models.config import SegmentSettings
from ridelog.models.events import GpsEvent, ImuEvent, SensorType, empty_streams
from ridelog.models.metrics import DerivedMetrics
from ridelog.models.ride import SegmentType
from ridelog.services.segments import ActivityWindow, RideSegmentDetector
from ridelog.utils.series import SessionArrays


def _gps_streams(speeds_by_second, start: int = 0, lat_step: float = 0.0):
    streams = empty_streams()
    streams[SensorType.GPS] = [
        GpsEvent(start + i * 1000, 45.0 + i * lat_step, 7.0, speed=speed, accuracy=4.0)
        for i, speed in enumerate(speeds_by_second)
    ]
    return streams


def _assert_covers(segments, start, end):
    assert segments[0].start_time == start
    assert segments[-1].end_time == end
    for previous, current in zip(segments, segments[1:]):
        assert previous.end_time == current.start_time
        assert previous.start_time < previous.end_time


@pytest.fixture
def detector():
    return RideSegmentDetector(SegmentSettings())


class TestSegmentDetection:
    """Tests for RideSegmentDetector.detect."""

    def test_ride_then_stop(self, detector):
        """60 s moving then 40 s stopped gives exactly one ride and one stop."""
        speeds = [5.0] * 60 + [0.0] * 40
        streams = _gps_streams(speeds, lat_step=0.00004)

        segments = detector.detect(streams, DerivedMetrics(), 0, 99000)

        assert [s.segment_type for s in segments] == [SegmentType.ACTIVE_RIDING, SegmentType.STOP]
        assert segments[0].duration_ms == pytest.approx(60000, abs=5000)
        assert segments[1].duration_ms == pytest.approx(40000, abs=5000)
        _assert_covers(segments, 0, 99000)

    def test_segment_statistics(self, detector):
        speeds = [5.0] * 60 + [0.0] * 40
        streams = _gps_streams(speeds, lat_step=0.00004)

        ride, stop = detector.detect(streams, DerivedMetrics(), 0, 99000)

        assert ride.statistics.max_speed == 5.0
        assert ride.statistics.avg_speed == 5.0
        assert ride.statistics.distance > 200.0
        assert ride.statistics.sample_counts[SensorType.GPS] == 60
        assert stop.statistics.max_speed == 0.0
        assert stop.statistics.sample_counts[SensorType.GPS] == 40

    def test_stationary_session_is_one_stop(self, detector):
        segments = detector.detect(_gps_streams([0.0] * 60), DerivedMetrics(), 0, 59000)

        assert len(segments) == 1
        assert segments[0].segment_type is SegmentType.STOP
        _assert_covers(segments, 0, 59000)

    def test_short_burst_merged(self, detector):
        """A 5 s blip of movement inside a long stop does not become its own segment."""
        speeds = [0.0] * 40 + [3.0] * 5 + [0.0] * 40
        segments = detector.detect(_gps_streams(speeds), DerivedMetrics(), 0, 84000)

        assert all(s.duration_ms >= 10000 for s in segments)
        _assert_covers(segments, 0, 84000)

    def test_imu_motion_counts_without_gps(self, detector):
        """Strong accelerometer activity marks windows as moving when GPS is absent."""
        streams = empty_streams()
        streams[SensorType.IMU] = [
            ImuEvent(i * 20, 0.0, 0.0, 9.81 + (4.0 if i % 2 else -4.0), 0.0, 0.0, 0.0)
            for i in range(3000)
        ]

        segments = detector.detect(streams, DerivedMetrics(), 0, 59980)

        assert [s.segment_type for s in segments] == [SegmentType.ACTIVE_RIDING]

    def test_empty_session(self, detector):
        assert detector.detect(empty_streams(), DerivedMetrics(), 1000, 1000) == []


class TestWindowClassification:
    """Tests for the neighbourhood rule on activity windows."""

    def _windows(self, moving, activity):
        return [
            ActivityWindow(i * 5000, (i + 1) * 5000, activity[i], moving[i])
            for i in range(len(moving))
        ]

    def test_majority_moving_is_riding(self, detector):
        windows = self._windows([True] * 5, [20.0] * 5)

        assert detector.classify_windows(windows) == [SegmentType.ACTIVE_RIDING] * 5

    def test_quiet_is_stop(self, detector):
        windows = self._windows([False] * 5, [0.0] * 5)

        assert detector.classify_windows(windows) == [SegmentType.STOP] * 5

    def test_mixed_is_pause(self, detector):
        """Half-moving neighbourhoods are neither riding nor stopped."""
        windows = self._windows([True, False, True, False], [5.0, 0.5, 5.0, 0.5])

        types = detector.classify_windows(windows)

        assert SegmentType.PAUSE in types

    def test_activity_capped(self, detector):
        streams = _gps_streams([500.0] * 10)
        windows = detector.build_windows(SessionArrays.from_streams(streams, DerivedMetrics()), 0, 9000)

        assert all(w.activity <= 100.0 for w in windows)
