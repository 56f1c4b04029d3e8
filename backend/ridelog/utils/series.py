"""
Column arrays of a session's streams, for time-bounded aggregation.
"""

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from ridelog.models.events import SensorStreams, SensorType
from ridelog.models.metrics import DerivedMetrics


def _column(items, name: str, dtype=np.float64) -> NDArray:
    return np.fromiter((getattr(item, name) for item in items), dtype=dtype, count=len(items))


@dataclass
class SessionArrays:
    """Timestamps and the few value columns the aggregations need."""

    sensor_timestamps: dict[SensorType, NDArray[np.int64]]

    gps_time: NDArray[np.int64]
    latitude: NDArray[np.float64]
    longitude: NDArray[np.float64]
    altitude: NDArray[np.float64]
    speed: NDArray[np.float64]
    accuracy: NDArray[np.float64]

    imu_time: NDArray[np.int64]
    accel_magnitude: NDArray[np.float64]  # m/s^2
    gyro_magnitude: NDArray[np.float64]   # rad/s

    lean_time: NDArray[np.int64]
    lean_roll: NDArray[np.float64]
    g_time: NDArray[np.int64]
    g_total: NDArray[np.float64]

    @classmethod
    def from_streams(cls, events: SensorStreams, derived: DerivedMetrics) -> "SessionArrays":
        gps = events.get(SensorType.GPS) or []
        imu = events.get(SensorType.IMU) or []

        accel = np.array([event.accel for event in imu], dtype=np.float64).reshape(-1, 3)
        gyro = np.array([event.gyro for event in imu], dtype=np.float64).reshape(-1, 3)

        return cls(
            sensor_timestamps={
                sensor_type: _column(events.get(sensor_type) or [], "timestamp", np.int64)
                for sensor_type in SensorType
            },
            gps_time=_column(gps, "timestamp", np.int64),
            latitude=_column(gps, "latitude"),
            longitude=_column(gps, "longitude"),
            altitude=_column(gps, "altitude"),
            speed=_column(gps, "speed"),
            accuracy=_column(gps, "accuracy"),
            imu_time=_column(imu, "timestamp", np.int64),
            accel_magnitude=np.linalg.norm(accel, axis=1),
            gyro_magnitude=np.linalg.norm(gyro, axis=1),
            lean_time=_column(derived.lean_angles, "timestamp", np.int64),
            lean_roll=_column(derived.lean_angles, "roll"),
            g_time=_column(derived.g_forces, "timestamp", np.int64),
            g_total=_column(derived.g_forces, "total"),
        )


def time_slice(timestamps: NDArray[np.int64], start: int, end: int, inclusive_end: bool = False) -> slice:
    """Index range of sorted ``timestamps`` within [start, end) or [start, end]."""
    lo = int(np.searchsorted(timestamps, start, side="left"))
    hi = int(np.searchsorted(timestamps, end, side="right" if inclusive_end else "left"))
    return slice(lo, hi)
