"""
Ride statistics and maneuver event detection.
"""

import logging
from enum import Enum
from typing import Callable, Optional

import numpy as np

from ridelog.models.config import EventThresholds
from ridelog.models.events import SensorStreams
from ridelog.models.metrics import DerivedMetrics, VelocitySource
from ridelog.models.ride import (
    DetectedEvent,
    EventType,
    GeoPoint,
    RideSegment,
    RideStatistics,
    SegmentType,
)
from ridelog.utils.series import SessionArrays


logger = logging.getLogger(__name__)


class MachineState(Enum):
    IDLE = "IDLE"
    IN_EVENT = "IN_EVENT"


class ThresholdEventMachine:
    """
    Threshold + minimum duration detector for one signal.

    IDLE -> IN_EVENT when a sample qualifies; the peak absolute value is
    tracked while in the event. The first non-qualifying sample closes the
    event and it is emitted only if it lasted at least ``min_duration_ms``.
    """

    def __init__(
        self,
        event_type: EventType,
        min_duration_ms: int,
        describe: Callable[[float, int], str],
    ):
        self.event_type = event_type
        self.min_duration_ms = min_duration_ms
        self._describe = describe
        self.state = MachineState.IDLE
        self._start = 0
        self._last = 0
        self._peak = 0.0
        self.events: list[DetectedEvent] = []

    def update(self, timestamp: int, value: float, qualifies: bool) -> None:
        if qualifies:
            if self.state is MachineState.IDLE:
                self.state = MachineState.IN_EVENT
                self._start = timestamp
                self._peak = abs(value)
            else:
                self._peak = max(self._peak, abs(value))
            self._last = timestamp
        elif self.state is MachineState.IN_EVENT:
            self._close(timestamp)

    def finish(self) -> list[DetectedEvent]:
        """Close an event still open at the end of the stream, at its last qualifying sample."""
        if self.state is MachineState.IN_EVENT:
            self._close(self._last)
        return self.events

    def _close(self, end_time: int) -> None:
        duration = end_time - self._start
        if duration >= self.min_duration_ms:
            self.events.append(DetectedEvent(
                timestamp=self._start,
                event_type=self.event_type,
                magnitude=self._peak,
                duration_ms=duration,
                description=self._describe(self._peak, duration),
            ))
        self.state = MachineState.IDLE


class EventDetector:
    """Runs one state machine per maneuver over the derived streams."""

    def __init__(self, thresholds: Optional[EventThresholds] = None):
        self.thresholds = thresholds or EventThresholds()

    def detect(self, derived: DerivedMetrics) -> list[DetectedEvent]:
        """
        Run one threshold machine per maneuver over the derived streams.

        Returns:
            Detected events sorted by timestamp
        """
        t = self.thresholds
        min_ms = t.min_event_duration_ms

        acceleration = ThresholdEventMachine(
            EventType.HARD_ACCELERATION, min_ms,
            lambda peak, ms: f"Hard acceleration {peak:.1f} m/s² for {ms / 1000:.1f}s",
        )
        braking = ThresholdEventMachine(
            EventType.HARD_BRAKING, min_ms,
            lambda peak, ms: f"Hard braking {peak:.1f} m/s² for {ms / 1000:.1f}s",
        )
        for sample in derived.velocities:
            if sample.source is VelocitySource.IMU_ONLY:
                continue
            acceleration.update(sample.timestamp, sample.acceleration, sample.acceleration > t.hard_acceleration)
            braking.update(sample.timestamp, sample.acceleration, sample.acceleration < t.hard_braking)

        turn = ThresholdEventMachine(
            EventType.SHARP_TURN, min_ms,
            lambda peak, ms: f"Sharp turn, {peak:.0f}° lean",
        )
        wheelie = ThresholdEventMachine(
            EventType.WHEELIE, int(min_ms * t.wheelie_duration_factor),
            lambda peak, ms: f"Wheelie candidate, {peak:.0f}° pitch for {ms / 1000:.1f}s",
        )
        for sample in derived.lean_angles:
            turn.update(
                sample.timestamp,
                sample.roll,
                abs(sample.roll) > t.sharp_turn_lean and sample.confidence > t.sharp_turn_confidence,
            )
            wheelie.update(
                sample.timestamp,
                sample.pitch,
                sample.pitch > t.wheelie_pitch and sample.confidence > t.wheelie_confidence,
            )

        high_g = ThresholdEventMachine(
            EventType.HIGH_G, min_ms,
            lambda peak, ms: f"High g-force {peak:.2f} g",
        )
        for sample in derived.g_forces:
            high_g.update(sample.timestamp, sample.total, sample.total > t.high_g)

        events = []
        for machine in (acceleration, braking, turn, high_g, wheelie):
            events.extend(machine.finish())
        events.sort(key=lambda event: event.timestamp)
        return events


class RideStatisticsGenerator:
    """Aggregates segments and derived streams into whole-ride statistics."""

    def __init__(self, thresholds: Optional[EventThresholds] = None, gps_accuracy_ceiling: float = 20.0):
        self.thresholds = thresholds or EventThresholds()
        self.gps_accuracy_ceiling = gps_accuracy_ceiling
        self.detector = EventDetector(self.thresholds)

    def generate(
        self,
        events: SensorStreams,
        derived: DerivedMetrics,
        segments: list[RideSegment],
        start_time: int,
        end_time: int,
        arrays: Optional[SessionArrays] = None,
    ) -> RideStatistics:
        """
        Aggregate whole-ride statistics and run event detection.

        Args:
            events: Sensor events per sensor type
            derived: Derived metrics of the same session
            segments: Segments from RideSegmentDetector
            start_time: Session start, ms
            end_time: Session end, ms
            arrays: Column arrays already built from events and derived

        Returns:
            RideStatistics; distance and riding time come from ACTIVE_RIDING
            segments only
        """
        arrays = arrays or SessionArrays.from_streams(events, derived)

        riding = [s for s in segments if s.segment_type is SegmentType.ACTIVE_RIDING]
        accurate = arrays.accuracy < self.gps_accuracy_ceiling
        speeds = arrays.speed[accurate]

        accelerations = np.array(
            [s.acceleration for s in derived.velocities if s.source is not VelocitySource.IMU_ONLY],
            dtype=np.float64,
        )

        gain, loss = self.elevation_changes(arrays)
        start_location, end_location = self._endpoints(arrays, accurate)

        statistics = RideStatistics(
            total_distance=sum(s.statistics.distance for s in riding),
            total_duration_ms=end_time - start_time,
            riding_duration_ms=sum(s.duration_ms for s in riding),
            max_speed=float(speeds.max()) if len(speeds) else 0.0,
            avg_speed=float(speeds.mean()) if len(speeds) else 0.0,
            max_lean_angle=float(np.abs(arrays.lean_roll).max()) if len(arrays.lean_roll) else 0.0,
            max_g_force=float(arrays.g_total.max()) if len(arrays.g_total) else 0.0,
            max_acceleration=max(float(accelerations.max()), 0.0) if len(accelerations) else 0.0,
            max_deceleration=max(-float(accelerations.min()), 0.0) if len(accelerations) else 0.0,
            elevation_gain=gain,
            elevation_loss=loss,
            segment_count=len(segments),
            events=self.detector.detect(derived),
            start_location=start_location,
            end_location=end_location,
        )
        logger.info(
            f"Ride statistics: {statistics.total_distance / 1000:.2f} km riding, "
            f"max speed {statistics.max_speed:.1f} m/s, {len(statistics.events)} events"
        )
        return statistics

    def elevation_changes(self, arrays: SessionArrays) -> tuple[float, float]:
        """
        Gain and loss from GPS altitude.

        Only fixes better than the elevation accuracy ceiling are used; the
        series is smoothed with a 3-point moving average and steps of
        ``min_elevation_delta`` or less are treated as noise.
        """
        mask = arrays.accuracy < self.thresholds.elevation_accuracy_ceiling
        altitudes = arrays.altitude[mask]
        if len(altitudes) < 3:
            return 0.0, 0.0

        smoothed = altitudes.copy()
        smoothed[1:-1] = (altitudes[:-2] + altitudes[1:-1] + altitudes[2:]) / 3.0

        gain = loss = 0.0
        reference = smoothed[0]
        for altitude in smoothed[1:]:
            delta = altitude - reference
            if abs(delta) > self.thresholds.min_elevation_delta:
                if delta > 0:
                    gain += delta
                else:
                    loss -= delta
                reference = altitude
        return float(gain), float(loss)

    def _endpoints(self, arrays: SessionArrays, accurate) -> tuple[Optional[GeoPoint], Optional[GeoPoint]]:
        indices = np.flatnonzero(accurate)
        if len(indices) == 0:
            return None, None
        first, last = indices[0], indices[-1]
        return (
            GeoPoint(float(arrays.latitude[first]), float(arrays.longitude[first]), float(arrays.altitude[first])),
            GeoPoint(float(arrays.latitude[last]), float(arrays.longitude[last]), float(arrays.altitude[last])),
        )
