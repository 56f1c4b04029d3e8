"""
Calibration reference captured while the device was stationary on the bike.

A session is either wholly calibrated (one complete ``CalibrationRecord``) or
wholly uncalibrated (``None``). The record validates itself on construction so
a half-filled calibration cannot exist.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np
from numpy.typing import NDArray


IDENTITY_MATRIX = (1.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0, 1.0)


class CalibrationQuality(Enum):
    """Quality level of a calibration capture."""

    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    POOR = "POOR"
    BAD = "BAD"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_score(cls, score: Optional[float]) -> "CalibrationQuality":
        if score is None or not math.isfinite(score):
            return cls.UNKNOWN
        if score >= 90.0:
            return cls.EXCELLENT
        if score >= 75.0:
            return cls.GOOD
        if score >= 60.0:
            return cls.POOR
        return cls.BAD

    @classmethod
    def parse(cls, token: str) -> "CalibrationQuality":
        try:
            return cls(token.strip().upper())
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class CalibrationRecord:
    """Reference orientation of the device relative to the vehicle."""

    quality: CalibrationQuality
    reference_pitch: float                 # degrees
    reference_roll: float                  # degrees
    rotation_matrix: tuple[float, ...]     # 3x3, row-major
    gyro_bias: tuple[float, float, float] = (0.0, 0.0, 0.0)  # rad/s
    timestamp: int = 0                     # capture time, ms
    duration_ms: int = 0
    sample_count: int = 0
    score: Optional[float] = None          # 0-100
    reference_azimuth: Optional[float] = None  # degrees
    reference_quaternion: Optional[tuple[float, float, float, float]] = None  # w, x, y, z

    def __post_init__(self):
        if not isinstance(self.quality, CalibrationQuality):
            raise ValueError(f"Invalid calibration quality: {self.quality!r}")
        for name in ("reference_pitch", "reference_roll"):
            value = getattr(self, name)
            if value is None or not math.isfinite(value):
                raise ValueError(f"Calibration {name} must be a finite number")
        if len(self.rotation_matrix) != 9:
            raise ValueError(
                f"Rotation matrix needs 9 values, got {len(self.rotation_matrix)}"
            )
        if not all(math.isfinite(v) for v in self.rotation_matrix):
            raise ValueError("Rotation matrix contains non-finite values")
        if len(self.gyro_bias) != 3:
            raise ValueError("Gyro bias needs 3 values")

    @property
    def matrix(self) -> NDArray[np.float64]:
        """Rotation matrix as a 3x3 array."""
        return np.asarray(self.rotation_matrix, dtype=np.float64).reshape(3, 3)
