"""
Ride-level results: segments, maneuver events, statistics and the processed
session bundle returned by the pipeline.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from ridelog.models.calibration import CalibrationRecord
from ridelog.models.errors import ProcessingError
from ridelog.models.events import GpsEvent, SensorType
from ridelog.models.metrics import DerivedMetrics


class SegmentType(Enum):
    ACTIVE_RIDING = "ACTIVE_RIDING"
    PAUSE = "PAUSE"
    STOP = "STOP"


class EventType(Enum):
    HARD_ACCELERATION = "HARD_ACCELERATION"
    HARD_BRAKING = "HARD_BRAKING"
    SHARP_TURN = "SHARP_TURN"
    HIGH_G = "HIGH_G"
    WHEELIE = "WHEELIE"


@dataclass(frozen=True)
class SegmentStatistics:
    distance: float = 0.0          # meters
    max_speed: float = 0.0         # m/s
    avg_speed: float = 0.0         # m/s
    max_lean_angle: float = 0.0    # degrees, absolute
    max_g_force: float = 0.0       # g
    elevation_change: float = 0.0  # meters, last minus first
    sample_counts: dict[SensorType, int] = field(default_factory=dict)


@dataclass(frozen=True)
class RideSegment:
    start_time: int  # ms
    end_time: int    # ms
    segment_type: SegmentType
    statistics: SegmentStatistics = field(default_factory=SegmentStatistics)

    @property
    def duration_ms(self) -> int:
        return self.end_time - self.start_time


@dataclass(frozen=True)
class DetectedEvent:
    timestamp: int      # ms, event start
    event_type: EventType
    magnitude: float    # peak absolute value in the signal's unit
    duration_ms: int
    description: str


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float
    altitude: float = 0.0


@dataclass
class RideStatistics:
    """Whole-session aggregate."""

    total_distance: float = 0.0      # meters, ACTIVE_RIDING segments
    total_duration_ms: int = 0       # session span
    riding_duration_ms: int = 0      # ACTIVE_RIDING segments
    max_speed: float = 0.0           # m/s
    avg_speed: float = 0.0           # m/s
    max_lean_angle: float = 0.0      # degrees
    max_g_force: float = 0.0         # g
    max_acceleration: float = 0.0    # m/s^2
    max_deceleration: float = 0.0    # m/s^2, positive number
    elevation_gain: float = 0.0      # meters
    elevation_loss: float = 0.0      # meters
    segment_count: int = 0
    events: list[DetectedEvent] = field(default_factory=list)
    start_location: Optional[GeoPoint] = None
    end_location: Optional[GeoPoint] = None


@dataclass(frozen=True)
class SensorDropout:
    sensor_type: SensorType
    start_time: int  # last sample before the gap
    end_time: int    # first sample after the gap

    @property
    def gap_ms(self) -> int:
        return self.end_time - self.start_time


@dataclass
class DataQuality:
    """Coverage and plausibility summary of a session's raw data."""

    sample_counts: dict[SensorType, int] = field(default_factory=dict)
    sample_rates_hz: dict[SensorType, float] = field(default_factory=dict)
    accurate_gps_ratio: float = 0.0
    dropouts: list[SensorDropout] = field(default_factory=list)
    issues: list[str] = field(default_factory=list)
    score: float = 0.0  # 0-100

    @property
    def has_large_gaps(self) -> bool:
        return bool(self.dropouts)


@dataclass
class SessionInfo:
    id: str
    file_name: str
    source_file: Path
    file_size: int
    start_time: int
    end_time: int
    device: Optional[str] = None
    format_version: Optional[str] = None
    recorded_at: Optional[str] = None
    is_calibrated: bool = False
    calibration_quality: Optional[str] = None

    @property
    def duration_ms(self) -> int:
        return self.end_time - self.start_time


@dataclass
class ProcessedSession:
    """Complete output of one pipeline run."""

    info: SessionInfo
    calibration: Optional[CalibrationRecord]
    derived: DerivedMetrics
    segments: list[RideSegment]
    statistics: RideStatistics
    data_quality: DataQuality
    sample_counts: dict[SensorType, int]
    gps_track: list[GpsEvent] = field(default_factory=list)
    errors: list[ProcessingError] = field(default_factory=list)
    processing_time_ms: float = 0.0

    @property
    def events(self) -> list[DetectedEvent]:
        return self.statistics.events

    @property
    def has_gps(self) -> bool:
        return self.sample_counts.get(SensorType.GPS, 0) > 0

    @property
    def has_imu(self) -> bool:
        return self.sample_counts.get(SensorType.IMU, 0) > 0
