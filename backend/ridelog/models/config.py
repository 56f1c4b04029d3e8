"""
Processing configuration.

One immutable ``ProcessingConfig`` is handed to the pipeline for each job.
Defaults match what the logger's thresholds were tuned for; any value can be
overridden from the environment through ``ProcessingConfig.from_env``.
"""

import os
from dataclasses import dataclass, field, fields, replace
from typing import Mapping, Optional


ENV_PREFIX = "RIDELOG_"

GRAVITY = 9.81  # m/s^2


@dataclass(frozen=True)
class CalibrationSettings:
    duration_ms: int = 2000
    min_samples: int = 50
    stability_threshold: float = 2.0       # max accel std per axis, m/s^2
    gyro_stability_threshold: float = 0.5  # max gyro std per axis, rad/s
    auto_calibrate: bool = False           # calibrate uncalibrated logs from their first window


@dataclass(frozen=True)
class FilterSettings:
    enabled: bool = True
    imu_outlier_sigma: float = 0.0  # 0 disables outlier rejection
    imu_outlier_history: int = 5
    imu_median_window: int = 5
    imu_cutoff_hz: float = 20.0
    imu_ema_alpha: float = 0.15
    gyro_cutoff_hz: float = 30.0
    gyro_ema_alpha: float = 0.25
    mag_median_window: int = 5
    mag_ema_alpha: float = 0.3
    baro_ema_alpha: float = 0.3
    display_ema_alpha: float = 0.5
    gps_median_window: int = 3
    gps_ema_alpha: float = 0.4


@dataclass(frozen=True)
class MetricsSettings:
    complementary_alpha: float = 0.98
    max_integration_dt: float = 0.1    # s, larger gaps fall back to accel-only angles
    confidence_deviation: float = 0.5  # fraction of 1 g at which confidence hits 0
    gps_accuracy_ceiling: float = 20.0  # m
    max_velocity_dt: float = 10.0      # s
    velocity_gap_fill_s: float = 2.0   # GPS gap that triggers IMU dead reckoning
    gap_fill_interval_ms: int = 200
    gyro_noise_threshold: float = 0.1  # rad/s


@dataclass(frozen=True)
class SegmentSettings:
    window_ms: int = 5000
    neighborhood: int = 2               # windows either side
    min_segment_ms: int = 10000
    moving_speed_threshold: float = 1.0  # m/s
    gps_accuracy_ceiling: float = 20.0   # m
    imu_motion_threshold: float = 1.5    # m/s^2 deviation from gravity
    riding_ratio: float = 0.6
    stop_ratio: float = 0.4
    min_riding_activity: float = 1.0
    stop_activity: float = 1.0
    max_activity: float = 100.0


@dataclass(frozen=True)
class EventThresholds:
    hard_acceleration: float = 4.0   # m/s^2
    hard_braking: float = -6.0       # m/s^2
    sharp_turn_lean: float = 45.0    # degrees
    sharp_turn_confidence: float = 0.7
    high_g: float = 1.5              # g
    wheelie_pitch: float = 30.0      # degrees
    wheelie_confidence: float = 0.6
    min_event_duration_ms: int = 500
    wheelie_duration_factor: float = 2.0
    elevation_accuracy_ceiling: float = 15.0  # m
    min_elevation_delta: float = 1.0          # m


@dataclass(frozen=True)
class PipelineSettings:
    yield_interval: int = 2000         # samples between checkpoints
    parse_chunk_lines: int = 5000
    dropout_gap_ms: int = 10000
    processing_timeout_s: Optional[float] = None
    max_recorded_errors: int = 500
    export_max_points: int = 1000


@dataclass(frozen=True)
class ProcessingConfig:
    calibration: CalibrationSettings = field(default_factory=CalibrationSettings)
    filters: FilterSettings = field(default_factory=FilterSettings)
    metrics: MetricsSettings = field(default_factory=MetricsSettings)
    segments: SegmentSettings = field(default_factory=SegmentSettings)
    events: EventThresholds = field(default_factory=EventThresholds)
    pipeline: PipelineSettings = field(default_factory=PipelineSettings)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ProcessingConfig":
        """
        Build a config with overrides from ``RIDELOG_<SECTION>_<FIELD>`` variables.

        Example: ``RIDELOG_SEGMENTS_WINDOW_MS=4000`` or
        ``RIDELOG_CALIBRATION_AUTO_CALIBRATE=1``.
        """
        env = os.environ if environ is None else environ
        config = cls()
        sections = {}
        for section in fields(cls):
            current = getattr(config, section.name)
            overrides = {}
            for setting in fields(current):
                key = f"{ENV_PREFIX}{section.name}_{setting.name}".upper()
                raw = env.get(key)
                if raw is None:
                    continue
                default = getattr(current, setting.name)
                overrides[setting.name] = _coerce(raw, default, key)
            if overrides:
                sections[section.name] = replace(current, **overrides)
        return replace(config, **sections) if sections else config


def _coerce(raw: str, default, key: str):
    if isinstance(default, bool):
        return raw.strip() not in ("0", "false", "False", "no", "")
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float) or default is None:
        return float(raw)
    raise ValueError(f"Unsupported override for {key}")
