"""
Sample data generator for testing.

Writes synthetic session logs in the logger's sparse CSV format: a
stationary start, a ride with lean oscillations and a closing stop.
"""

import math
from pathlib import Path
from typing import Iterable, Optional, Sequence

import numpy as np

from ridelog.models.calibration import IDENTITY_MATRIX, CalibrationQuality, CalibrationRecord
from ridelog.models.config import GRAVITY
from ridelog.services.calibration import format_calibration_header
from ridelog.services.log_parser import HEADER_LINE
from ridelog.utils.geo import offset_position


Row = tuple  # (timestamp, sensor tag, *values)


def format_session_log(
    rows: Iterable[Row],
    calibration: Optional[CalibrationRecord] = None,
    device: str = "Synthetic Rig",
    recorded_at: str = "2024-06-01 10:00:00",
    version: str = "1.1",
    calibration_block: bool = True,
) -> str:
    """Render rows as a complete session log, sorted by timestamp."""
    lines = [
        f"# Moto Sensor Log v{version}",
        f"# Device: {device}",
        f"# Date: {recorded_at}",
    ]
    if calibration_block:
        lines.append(format_calibration_header(calibration, device))
    lines.append(HEADER_LINE)
    for row in sorted(rows, key=lambda r: r[0]):
        timestamp, tag, *values = row
        lines.append(",".join([str(int(timestamp)), tag] + [_format_value(v) for v in values]))
    return "\n".join(lines) + "\n"


def _format_value(value) -> str:
    if isinstance(value, str):
        return value
    return f"{value:.7f}".rstrip("0").rstrip(".")


def level_calibration(timestamp: int = 0) -> CalibrationRecord:
    """Calibration of a device mounted flat and level."""
    return CalibrationRecord(
        quality=CalibrationQuality.EXCELLENT,
        reference_pitch=0.0,
        reference_roll=0.0,
        rotation_matrix=IDENTITY_MATRIX,
        timestamp=timestamp,
        duration_ms=2000,
        sample_count=100,
        score=96.0,
    )


def stationary_imu_rows(
    start_ms: int,
    duration_ms: int,
    rate_hz: float = 50.0,
    noise: float = 0.02,
    rng: Optional[np.random.Generator] = None,
) -> list[Row]:
    """Flat, motionless device: gravity on +z plus a little noise."""
    rng = rng or np.random.default_rng(0)
    step = int(round(1000.0 / rate_hz))
    rows = []
    for t in range(start_ms, start_ms + duration_ms, step):
        ax, ay, az = rng.normal(0.0, noise, 3) + (0.0, 0.0, GRAVITY)
        gx, gy, gz = rng.normal(0.0, noise / 10.0, 3)
        rows.append((t, "IMU", ax, ay, az, gx, gy, gz))
    return rows


def gps_rows(
    timestamps: Sequence[int],
    speeds: Sequence[float],
    start_lat: float = 45.0,
    start_lon: float = 7.0,
    bearing: float = 0.0,
    accuracy: float = 4.0,
    altitude: Optional[Sequence[float]] = None,
) -> list[Row]:
    """Fixes along a straight track, integrating ``speeds`` between fixes."""
    rows = []
    distance = 0.0
    previous_t = None
    heading = math.radians(bearing)
    for i, (t, speed) in enumerate(zip(timestamps, speeds)):
        if previous_t is not None:
            distance += speed * (t - previous_t) / 1000.0
        previous_t = t
        lat, lon = offset_position(start_lat, start_lon, distance * math.cos(heading), distance * math.sin(heading))
        alt = altitude[i] if altitude is not None else 200.0
        rows.append((t, "GPS", float(lat), float(lon), alt, speed, bearing, accuracy))
    return rows


def generate_ride_session(
    output_path: Path,
    stationary_s: float = 10.0,
    ride_s: float = 60.0,
    stop_s: float = 30.0,
    start_ms: int = 1000,
    imu_rate_hz: float = 50.0,
    cruise_speed: float = 15.0,
    lean_amplitude_deg: float = 25.0,
    calibrated: bool = True,
    seed: int = 42,
) -> Path:
    """
    Generate a stationary start, a ride and a final stop.

    The ride accelerates to ``cruise_speed`` over 10 s, weaves with a 20 s
    lean period and brakes to a halt over its last 10 s. GPS at 1 Hz,
    barometer and magnetometer at 10 Hz.
    """
    rng = np.random.default_rng(seed)
    ride_start = start_ms + int(stationary_s * 1000)
    ride_end = ride_start + int(ride_s * 1000)
    end = ride_end + int(stop_s * 1000)

    def speed_at(t: int) -> float:
        if t < ride_start or t >= ride_end:
            return 0.0
        elapsed = (t - ride_start) / 1000.0
        remaining = (ride_end - t) / 1000.0
        return cruise_speed * min(1.0, elapsed / 10.0, remaining / 10.0)

    rows: list[Row] = []
    rows += stationary_imu_rows(start_ms, ride_start - start_ms, imu_rate_hz, rng=rng)

    step = int(round(1000.0 / imu_rate_hz))
    omega = 2.0 * math.pi / 20.0
    lean_amplitude = math.radians(lean_amplitude_deg)
    for t in range(ride_start, ride_end, step):
        elapsed = (t - ride_start) / 1000.0
        lean = lean_amplitude * math.sin(omega * elapsed)
        lean_rate = lean_amplitude * omega * math.cos(omega * elapsed)
        longitudinal = (speed_at(t + step) - speed_at(t)) / (step / 1000.0)
        vibration = rng.normal(0.0, 0.4, 3)
        rows.append((
            t, "IMU",
            longitudinal + vibration[0],
            GRAVITY * math.sin(lean) + vibration[1],
            GRAVITY * math.cos(lean) + vibration[2],
            lean_rate + rng.normal(0.0, 0.02),
            rng.normal(0.0, 0.02),
            rng.normal(0.0, 0.05),
        ))

    rows += stationary_imu_rows(ride_end, end - ride_end, imu_rate_hz, rng=rng)

    gps_times = list(range(start_ms, end, 1000))
    climb = [200.0 + 0.2 * max(0, t - ride_start) / 1000.0 for t in gps_times]
    rows += gps_rows(gps_times, [speed_at(t) for t in gps_times], altitude=climb)

    for t in range(start_ms, end, 100):
        altitude = 200.0 + 0.2 * max(0, t - ride_start) / 1000.0
        pressure = 1013.25 * (1.0 - 2.25577e-5 * altitude) ** 5.25588
        rows.append((t, "BARO", altitude + rng.normal(0.0, 0.1), pressure))
        mx, my, mz = rng.normal(0.0, 0.3, 3) + (20.0, 0.0, -40.0)
        rows.append((t, "MAG", mx, my, mz))

    calibration = level_calibration(start_ms) if calibrated else None
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(format_session_log(rows, calibration))
    return output_path
