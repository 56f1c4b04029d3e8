"""
Derived motion samples produced by the metrics calculator.
"""

from dataclasses import dataclass, field
from enum import Enum


class VelocitySource(Enum):
    """Where a velocity sample came from."""

    GPS_ONLY = "GPS_ONLY"
    IMU_ONLY = "IMU_ONLY"
    FUSED = "FUSED"


@dataclass(frozen=True)
class LeanAngleSample:
    timestamp: int
    roll: float        # degrees, positive = right lean
    pitch: float       # degrees, positive = nose up
    confidence: float  # 0-1


@dataclass(frozen=True)
class GForceSample:
    timestamp: int
    longitudinal: float  # g
    lateral: float       # g
    vertical: float      # g, gravity removed
    total: float         # g


@dataclass(frozen=True)
class AccelerationSample:
    timestamp: int
    x: float  # m/s^2, world/vehicle frame
    y: float
    z: float
    magnitude: float


@dataclass(frozen=True)
class VelocitySample:
    timestamp: int
    speed: float         # m/s
    bearing: float       # degrees
    acceleration: float  # m/s^2 along track
    source: VelocitySource = VelocitySource.GPS_ONLY


@dataclass(frozen=True)
class OrientationSample:
    timestamp: int
    roll: float   # degrees
    pitch: float  # degrees
    yaw: float    # degrees
    quaternion: tuple[float, float, float, float]  # w, x, y, z


@dataclass
class DerivedMetrics:
    """The five derived time series of one session."""

    lean_angles: list[LeanAngleSample] = field(default_factory=list)
    g_forces: list[GForceSample] = field(default_factory=list)
    accelerations: list[AccelerationSample] = field(default_factory=list)
    velocities: list[VelocitySample] = field(default_factory=list)
    orientations: list[OrientationSample] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (
            self.lean_angles
            or self.g_forces
            or self.accelerations
            or self.velocities
            or self.orientations
        )
