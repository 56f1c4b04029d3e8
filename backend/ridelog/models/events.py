"""
Typed sensor events parsed from a session log.

Each sensor type is its own immutable record carrying the device timestamp
(milliseconds) and only the fields that sensor produces. The union
``SensorEvent`` is the tagged variant consumers switch on via ``sensor_type``.
"""

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Union


class SensorType(Enum):
    """Sensor tag as written in the ``sensor_type`` column."""

    GPS = "GPS"
    IMU = "IMU"
    BARO = "BARO"
    MAG = "MAG"


@dataclass(frozen=True)
class GpsEvent:
    """GPS fix."""

    sensor_type: ClassVar[SensorType] = SensorType.GPS

    timestamp: int          # ms, device clock
    latitude: float         # degrees
    longitude: float        # degrees
    altitude: float = 0.0   # meters
    speed: float = 0.0      # m/s
    bearing: float = 0.0    # degrees
    accuracy: float = float("inf")  # meters, inf when not reported


@dataclass(frozen=True)
class ImuEvent:
    """Combined accelerometer + gyroscope sample."""

    sensor_type: ClassVar[SensorType] = SensorType.IMU

    timestamp: int
    accel_x: float  # m/s^2
    accel_y: float
    accel_z: float
    gyro_x: float   # rad/s
    gyro_y: float
    gyro_z: float

    @property
    def accel(self) -> tuple[float, float, float]:
        return (self.accel_x, self.accel_y, self.accel_z)

    @property
    def gyro(self) -> tuple[float, float, float]:
        return (self.gyro_x, self.gyro_y, self.gyro_z)


@dataclass(frozen=True)
class BaroEvent:
    """Barometer sample."""

    sensor_type: ClassVar[SensorType] = SensorType.BARO

    timestamp: int
    altitude: float  # meters
    pressure: float  # hPa


@dataclass(frozen=True)
class MagEvent:
    """Magnetometer sample."""

    sensor_type: ClassVar[SensorType] = SensorType.MAG

    timestamp: int
    mag_x: float  # microtesla
    mag_y: float
    mag_z: float

    @property
    def field(self) -> tuple[float, float, float]:
        return (self.mag_x, self.mag_y, self.mag_z)


SensorEvent = Union[GpsEvent, ImuEvent, BaroEvent, MagEvent]

# Event class per tag, and the data columns each one reads (in column order)
EVENT_TYPES: dict[SensorType, type] = {
    SensorType.GPS: GpsEvent,
    SensorType.IMU: ImuEvent,
    SensorType.BARO: BaroEvent,
    SensorType.MAG: MagEvent,
}

EVENT_FIELDS: dict[SensorType, tuple[str, ...]] = {
    SensorType.GPS: ("latitude", "longitude", "altitude", "speed", "bearing", "accuracy"),
    SensorType.IMU: ("accel_x", "accel_y", "accel_z", "gyro_x", "gyro_y", "gyro_z"),
    SensorType.BARO: ("altitude", "pressure"),
    SensorType.MAG: ("mag_x", "mag_y", "mag_z"),
}

# Columns that must be present for a row to be accepted
REQUIRED_FIELD_COUNT: dict[SensorType, int] = {
    SensorType.GPS: 2,
    SensorType.IMU: 6,
    SensorType.BARO: 2,
    SensorType.MAG: 3,
}


SensorStreams = dict[SensorType, list]


def empty_streams() -> SensorStreams:
    """One empty list per sensor type."""
    return {sensor_type: [] for sensor_type in SensorType}
