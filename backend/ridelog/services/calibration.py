"""
Calibration engine.

Turns a stationary capture window of accelerometer/gyroscope (and optionally
magnetometer) samples into a ``CalibrationRecord``, and converts records to
and from the comment block written at the top of a session log.

The engine is all-or-nothing: a window that is too short or not stationary
produces ``None``, never a partially filled record.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional, Sequence

import numpy as np
from numpy.typing import NDArray

from ridelog.models.calibration import CalibrationQuality, CalibrationRecord
from ridelog.models.config import GRAVITY, CalibrationSettings
from ridelog.models.events import ImuEvent, MagEvent
from ridelog.utils.rotation import (
    gravity_angles,
    heading_from_magnetometer,
    leveling_matrix,
    matrix_to_quaternion,
    quaternion_to_matrix,
)


logger = logging.getLogger(__name__)

HEADER_FORMAT_VERSION = "2.0"
MAG_FIELD_RANGE = (25.0, 65.0)  # microtesla, plausible Earth field strength
GRAVITY_TOLERANCE = 2.0         # m/s^2 deviation at which the gravity score hits 0
MAG_STEADINESS_LIMIT = 0.1      # relative field-strength std at which the steadiness score hits 0

_KEY_VALUE = re.compile(r"(\w+)\s*=\s*(\[[^\]]*\]|[^,]*)")


class CalibrationEngine:
    """Scores a stationary window and derives the reference orientation."""

    def __init__(self, settings: Optional[CalibrationSettings] = None):
        self.settings = settings or CalibrationSettings()

    def calibrate(
        self,
        imu_events: Sequence[ImuEvent],
        mag_events: Optional[Sequence[MagEvent]] = None,
    ) -> Optional[CalibrationRecord]:
        if not imu_events:
            logger.warning("Calibration skipped: no IMU samples")
            return None

        accel = np.array([event.accel for event in imu_events], dtype=np.float64)
        gyro = np.array([event.gyro for event in imu_events], dtype=np.float64)
        mag = None
        if mag_events:
            mag = np.array([event.field for event in mag_events], dtype=np.float64)

        start = imu_events[0].timestamp
        return self.calibrate_arrays(
            accel,
            gyro,
            mag,
            timestamp=start,
            duration_ms=imu_events[-1].timestamp - start,
        )

    def calibrate_arrays(
        self,
        accel: NDArray[np.float64],
        gyro: NDArray[np.float64],
        mag: Optional[NDArray[np.float64]] = None,
        timestamp: int = 0,
        duration_ms: int = 0,
    ) -> Optional[CalibrationRecord]:
        """
        Calibrate from (n, 3) arrays of accelerometer and gyroscope readings.

        Returns None when there are fewer than ``min_samples`` samples or the
        device moved during the window.
        """
        n_samples = len(accel)
        if n_samples < self.settings.min_samples:
            logger.warning(
                f"Calibration rejected: {n_samples} samples, need {self.settings.min_samples}"
            )
            return None

        accel_std = accel.std(axis=0)
        gyro_std = gyro.std(axis=0)
        if np.any(accel_std >= self.settings.stability_threshold) or np.any(
            gyro_std >= self.settings.gyro_stability_threshold
        ):
            logger.warning(
                f"Calibration rejected: device not stationary "
                f"(accel std {accel_std.max():.3f}, gyro std {gyro_std.max():.3f})"
            )
            return None

        gravity = accel.mean(axis=0)
        if not np.all(np.isfinite(gravity)) or np.linalg.norm(gravity) == 0.0:
            logger.warning("Calibration rejected: no usable gravity vector")
            return None

        roll, pitch = gravity_angles(*gravity)
        matrix = leveling_matrix(pitch, roll)

        scores = [self._gravity_score(gravity), self._stability_score(accel_std)]
        azimuth = None
        if mag is not None and len(mag) > 0:
            scores.append(self._magnetic_score(mag))
            azimuth = heading_from_magnetometer(mag.mean(axis=0), pitch, roll)
        score = float(np.mean(scores))

        record = CalibrationRecord(
            quality=CalibrationQuality.from_score(score),
            reference_pitch=pitch,
            reference_roll=roll,
            rotation_matrix=tuple(float(v) for v in matrix.ravel()),
            gyro_bias=tuple(float(v) for v in gyro.mean(axis=0)),
            timestamp=int(timestamp),
            duration_ms=int(duration_ms),
            sample_count=n_samples,
            score=score,
            reference_azimuth=azimuth,
            reference_quaternion=matrix_to_quaternion(matrix),
        )
        logger.info(
            f"Calibration {record.quality.value} (score {score:.1f}): "
            f"pitch={pitch:.2f} roll={roll:.2f} from {n_samples} samples"
        )
        return record

    def _gravity_score(self, gravity: NDArray[np.float64]) -> float:
        deviation = abs(float(np.linalg.norm(gravity)) - GRAVITY)
        return 100.0 * (1.0 - min(deviation / GRAVITY_TOLERANCE, 1.0))

    def _stability_score(self, accel_std: NDArray[np.float64]) -> float:
        ratio = float(accel_std.mean()) / self.settings.stability_threshold
        return 100.0 * float(np.clip(1.0 - ratio, 0.0, 1.0))

    def _magnetic_score(self, mag: NDArray[np.float64]) -> float:
        strengths = np.linalg.norm(mag, axis=1)
        mean_strength = float(strengths.mean())
        low, high = MAG_FIELD_RANGE
        if low <= mean_strength <= high:
            strength_score = 100.0
        else:
            distance = low - mean_strength if mean_strength < low else mean_strength - high
            strength_score = 100.0 * max(0.0, 1.0 - distance / low)

        if mean_strength == 0.0:
            return 0.0
        relative_std = float(strengths.std()) / mean_strength
        steadiness_score = 100.0 * max(0.0, 1.0 - relative_std / MAG_STEADINESS_LIMIT)
        return (strength_score + steadiness_score) / 2.0


def select_calibration_window(
    imu_events: Sequence[ImuEvent],
    mag_events: Sequence[MagEvent],
    duration_ms: int,
) -> tuple[list[ImuEvent], list[MagEvent]]:
    """Samples from the first ``duration_ms`` of a session."""
    if not imu_events:
        return [], []
    end = imu_events[0].timestamp + duration_ms
    imu = [event for event in imu_events if event.timestamp <= end]
    mag = [event for event in mag_events if imu_events[0].timestamp <= event.timestamp <= end]
    return imu, mag


# ============================================================================
# Log header block
# ============================================================================

def format_calibration_header(record: Optional[CalibrationRecord], device: str = "unknown") -> str:
    """Render the ``# Calibration: {...}`` comment block for a session log."""
    if record is None:
        payload: dict[str, Any] = {
            "status": "uncalibrated",
            "warning": "No calibration performed. Sensor data is in device coordinates.",
        }
    else:
        payload = {
            "format_version": HEADER_FORMAT_VERSION,
            "timestamp": record.timestamp,
            "device": device,
            "reference": {
                "quaternion": list(record.reference_quaternion or matrix_to_quaternion(record.matrix)),
                "rotation_matrix": list(record.rotation_matrix),
                "euler_angles": {
                    "pitch": round(record.reference_pitch, 4),
                    "roll": round(record.reference_roll, 4),
                    "azimuth": record.reference_azimuth,
                },
                "gyro_bias": list(record.gyro_bias),
            },
            "quality": {
                "level": record.quality.value,
                "score": record.score,
                "samples": record.sample_count,
                "duration_ms": record.duration_ms,
            },
        }

    lines = json.dumps(payload, indent=2).splitlines()
    return "\n".join([f"# Calibration: {lines[0]}"] + [f"# {line}" for line in lines[1:]])


def calibration_from_header(text: str) -> Optional[CalibrationRecord]:
    """
    Parse the body of a calibration comment block.

    Accepts the JSON-like block or the single-line ``key=value`` form.
    Returns None for an explicit "uncalibrated" marker. Raises ValueError
    when the block is present but incomplete.
    """
    body = text.strip()
    if body.startswith("{"):
        return _from_json(json.loads(body))
    return _from_key_values(body)


def _from_json(data: dict) -> Optional[CalibrationRecord]:
    if not isinstance(data, dict):
        raise ValueError(f"calibration block must be an object, got {type(data).__name__}")
    if str(data.get("status", "")).lower() == "uncalibrated":
        return None

    try:
        reference = data["reference"]
        angles = reference["euler_angles"]
        pitch = float(angles["pitch"])
        roll = float(angles["roll"])
    except KeyError as e:
        raise ValueError(f"missing {e}") from e

    quaternion = reference.get("quaternion")
    if reference.get("rotation_matrix") is not None:
        matrix = [float(v) for v in reference["rotation_matrix"]]
    elif quaternion:
        matrix = [float(v) for v in quaternion_to_matrix(quaternion).ravel()]
    else:
        matrix = [float(v) for v in leveling_matrix(pitch, roll).ravel()]

    quality_block = data.get("quality") or {}
    if isinstance(quality_block, str):
        # Flat form: "quality": "GOOD"
        quality_block = {"level": quality_block}
    elif not isinstance(quality_block, dict):
        raise ValueError(f"quality must be an object or a level name, got {quality_block!r}")

    score = quality_block.get("score")
    score = float(score) if score is not None else None
    level = quality_block.get("level")
    if level is not None and not isinstance(level, str):
        raise ValueError(f"quality level must be a name, got {level!r}")
    quality = CalibrationQuality.parse(level) if level else CalibrationQuality.from_score(score)

    azimuth = angles.get("azimuth")
    return CalibrationRecord(
        quality=quality,
        reference_pitch=pitch,
        reference_roll=roll,
        rotation_matrix=tuple(matrix),
        gyro_bias=tuple(float(v) for v in reference.get("gyro_bias") or (0.0, 0.0, 0.0)),
        timestamp=int(data.get("timestamp") or 0),
        duration_ms=int(quality_block.get("duration_ms") or 0),
        sample_count=int(quality_block.get("samples") or 0),
        score=score,
        reference_azimuth=float(azimuth) if azimuth is not None else None,
        reference_quaternion=tuple(float(v) for v in quaternion) if quaternion else None,
    )


def _from_key_values(body: str) -> Optional[CalibrationRecord]:
    if body.lower() in ("uncalibrated", "none"):
        return None
    values = {key.lower(): value.strip() for key, value in _KEY_VALUE.findall(body)}
    if values.get("status", "").lower() == "uncalibrated":
        return None

    try:
        pitch = float(values["pitch"])
        roll = float(values["roll"])
    except KeyError as e:
        raise ValueError(f"missing {e}") from e

    if "matrix" in values:
        matrix = [float(v) for v in values["matrix"].strip("[]").split(",") if v.strip()]
    else:
        matrix = [float(v) for v in leveling_matrix(pitch, roll).ravel()]

    score = float(values["score"]) if "score" in values else None
    if "quality" in values:
        quality = CalibrationQuality.parse(values["quality"])
    else:
        quality = CalibrationQuality.from_score(score)

    return CalibrationRecord(
        quality=quality,
        reference_pitch=pitch,
        reference_roll=roll,
        rotation_matrix=tuple(matrix),
        timestamp=int(float(values.get("timestamp") or 0)),
        score=score,
    )


def describe_calibration(record: Optional[CalibrationRecord]) -> str:
    if record is None:
        return "uncalibrated"
    return (
        f"{record.quality.value} pitch={record.reference_pitch:.1f} "
        f"roll={record.reference_roll:.1f}"
    )
