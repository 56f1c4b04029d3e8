"""
Derived metrics: lean angle, g-force, acceleration, velocity and orientation.

Every stream is computed independently from the (filtered) sensor events; a
missing sensor just yields an empty stream. When the session carries a
calibration the reference pitch/roll and rotation matrix map device-frame
readings into the vehicle frame, otherwise the identity is used.
"""

from __future__ import annotations

import logging
import math
from typing import Optional, Sequence

import numpy as np
from numpy.typing import NDArray

from ridelog.models.calibration import CalibrationRecord
from ridelog.models.config import GRAVITY, MetricsSettings
from ridelog.models.events import GpsEvent, ImuEvent, SensorStreams, SensorType
from ridelog.models.metrics import (
    AccelerationSample,
    DerivedMetrics,
    GForceSample,
    LeanAngleSample,
    OrientationSample,
    VelocitySample,
    VelocitySource,
)
from ridelog.services.progress import ProcessingContext, ProcessingStage
from ridelog.utils.rotation import gravity_angles, quaternion_to_euler


logger = logging.getLogger(__name__)


class DerivedMetricsCalculator:
    """Fuses IMU and GPS events into the five derived time series."""

    def __init__(
        self,
        settings: Optional[MetricsSettings] = None,
        calibration: Optional[CalibrationRecord] = None,
        yield_interval: int = 2000,
    ):
        self.settings = settings or MetricsSettings()
        self.calibration = calibration
        self.yield_interval = yield_interval
        self._rotation = calibration.matrix if calibration is not None else np.eye(3)

    def calculate(self, events: SensorStreams, context: Optional[ProcessingContext] = None) -> DerivedMetrics:
        """
        Compute every derived stream for a session.

        Args:
            events: Filtered sensor events per sensor type
            context: Progress and cancellation for the running pipeline, if any

        Returns:
            DerivedMetrics with lean angle, g-force, acceleration, velocity and
            orientation series; a stream whose sensor is missing is empty
        """
        imu = events.get(SensorType.IMU) or []
        gps = events.get(SensorType.GPS) or []

        metrics = DerivedMetrics(
            lean_angles=self.calculate_lean_angles(imu, context),
            g_forces=self.calculate_g_forces(imu),
            accelerations=self.calculate_accelerations(imu),
            velocities=self.calculate_velocities(gps, imu),
            orientations=self.calculate_orientations(imu, context),
        )
        logger.debug(
            f"Derived {len(metrics.lean_angles)} lean, {len(metrics.velocities)} velocity, "
            f"{len(metrics.orientations)} orientation samples"
        )
        return metrics

    # ------------------------------------------------------------------
    # Lean angle
    # ------------------------------------------------------------------

    def calculate_lean_angles(
        self,
        imu: Sequence[ImuEvent],
        context: Optional[ProcessingContext] = None,
    ) -> list[LeanAngleSample]:
        """
        Complementary filter over gyro integration and accelerometer angles.

        The gyro is only integrated across plausible sample gaps; after a
        gap the estimate restarts from the accelerometer angles.
        """
        alpha = self.settings.complementary_alpha
        max_dt = self.settings.max_integration_dt
        reference_roll = self.calibration.reference_roll if self.calibration else 0.0
        reference_pitch = self.calibration.reference_pitch if self.calibration else 0.0

        samples = []
        roll = pitch = 0.0
        previous_timestamp = None
        total = len(imu)

        for index, event in enumerate(imu):
            accel_roll, accel_pitch = gravity_angles(event.accel_x, event.accel_y, event.accel_z)
            dt = 0.0
            if previous_timestamp is not None:
                dt = (event.timestamp - previous_timestamp) / 1000.0

            if 0.0 < dt <= max_dt:
                roll = alpha * (roll + math.degrees(event.gyro_x) * dt) + (1.0 - alpha) * accel_roll
                pitch = alpha * (pitch + math.degrees(event.gyro_y) * dt) + (1.0 - alpha) * accel_pitch
            else:
                roll, pitch = accel_roll, accel_pitch
            previous_timestamp = event.timestamp

            magnitude = math.sqrt(event.accel_x ** 2 + event.accel_y ** 2 + event.accel_z ** 2)
            samples.append(LeanAngleSample(
                timestamp=event.timestamp,
                roll=roll - reference_roll,
                pitch=pitch - reference_pitch,
                confidence=self.lean_confidence(magnitude),
            ))

            if context is not None and index % self.yield_interval == 0:
                context.report(ProcessingStage.METRICS, 0.5 * index / total, "Lean angles")

        return samples

    def lean_confidence(self, accel_magnitude: float) -> float:
        """1.0 at exactly 1 g, falling linearly to 0 at the deviation bound."""
        deviation = abs(accel_magnitude - GRAVITY) / GRAVITY
        return float(min(max(1.0 - deviation / self.settings.confidence_deviation, 0.0), 1.0))

    # ------------------------------------------------------------------
    # G-force and acceleration
    # ------------------------------------------------------------------

    def _world_acceleration(self, imu: Sequence[ImuEvent]) -> tuple[NDArray[np.int64], NDArray[np.float64]]:
        timestamps = np.fromiter((event.timestamp for event in imu), dtype=np.int64, count=len(imu))
        accel = np.array([event.accel for event in imu], dtype=np.float64).reshape(-1, 3)
        return timestamps, accel @ self._rotation.T

    def calculate_g_forces(self, imu: Sequence[ImuEvent]) -> list[GForceSample]:
        if not imu:
            return []
        timestamps, world = self._world_acceleration(imu)
        g = world / GRAVITY
        g[:, 2] -= 1.0
        total = np.linalg.norm(g, axis=1)
        return list(map(
            GForceSample,
            timestamps.tolist(),
            g[:, 0].tolist(),
            g[:, 1].tolist(),
            g[:, 2].tolist(),
            total.tolist(),
        ))

    def calculate_accelerations(self, imu: Sequence[ImuEvent]) -> list[AccelerationSample]:
        if not imu:
            return []
        timestamps, world = self._world_acceleration(imu)
        magnitude = np.linalg.norm(world, axis=1)
        return list(map(
            AccelerationSample,
            timestamps.tolist(),
            world[:, 0].tolist(),
            world[:, 1].tolist(),
            world[:, 2].tolist(),
            magnitude.tolist(),
        ))

    # ------------------------------------------------------------------
    # Velocity
    # ------------------------------------------------------------------

    def calculate_velocities(
        self,
        gps: Sequence[GpsEvent],
        imu: Sequence[ImuEvent] = (),
    ) -> list[VelocitySample]:
        """GPS speed with finite-difference acceleration, IMU dead reckoning across GPS gaps."""
        max_dt = self.settings.max_velocity_dt
        samples = []
        previous = None
        for fix in gps:
            if not fix.accuracy < self.settings.gps_accuracy_ceiling:
                continue
            acceleration = 0.0
            if previous is not None:
                dt = (fix.timestamp - previous.timestamp) / 1000.0
                if 0.0 < dt < max_dt:
                    acceleration = (fix.speed - previous.speed) / dt
            samples.append(VelocitySample(
                timestamp=fix.timestamp,
                speed=fix.speed,
                bearing=fix.bearing,
                acceleration=acceleration,
                source=VelocitySource.GPS_ONLY,
            ))
            previous = fix

        if samples and imu:
            samples = self._fill_gps_gaps(samples, imu)
        return samples

    def _fill_gps_gaps(self, gps_samples: list[VelocitySample], imu: Sequence[ImuEvent]) -> list[VelocitySample]:
        gap_ms = self.settings.velocity_gap_fill_s * 1000.0
        interval = self.settings.gap_fill_interval_ms
        max_dt = self.settings.max_integration_dt

        imu_timestamps, world = self._world_acceleration(imu)
        longitudinal = world[:, 0]

        filled = []
        for index, anchor in enumerate(gps_samples):
            filled.append(anchor)
            if index + 1 < len(gps_samples):
                gap_end = gps_samples[index + 1].timestamp
            else:
                gap_end = int(imu_timestamps[-1]) + 1
            if gap_end - anchor.timestamp <= gap_ms:
                continue

            lo = int(np.searchsorted(imu_timestamps, anchor.timestamp, side="right"))
            hi = int(np.searchsorted(imu_timestamps, gap_end, side="left"))
            speed = anchor.speed
            last_time = anchor.timestamp
            next_emit = anchor.timestamp + interval
            for k in range(lo, hi):
                timestamp = int(imu_timestamps[k])
                dt = (timestamp - last_time) / 1000.0
                if 0.0 < dt <= max_dt:
                    speed = max(0.0, speed + float(longitudinal[k]) * dt)
                last_time = timestamp
                if timestamp >= next_emit:
                    filled.append(VelocitySample(
                        timestamp=timestamp,
                        speed=speed,
                        bearing=anchor.bearing,
                        acceleration=float(longitudinal[k]),
                        source=VelocitySource.IMU_ONLY,
                    ))
                    next_emit = timestamp + interval
        return filled

    # ------------------------------------------------------------------
    # Orientation
    # ------------------------------------------------------------------

    def calculate_orientations(
        self,
        imu: Sequence[ImuEvent],
        context: Optional[ProcessingContext] = None,
    ) -> list[OrientationSample]:
        """
        Gyro-only attitude via first-order quaternion integration.

        q += 0.5 * q * (0, w) * dt, renormalized every step. The first-order
        update drifts over long sessions; event thresholds were tuned against
        it, so it is kept as is.
        """
        noise = self.settings.gyro_noise_threshold
        max_dt = self.settings.max_integration_dt
        qw, qx, qy, qz = 1.0, 0.0, 0.0, 0.0

        if not imu:
            return []

        quaternions = []
        previous_timestamp = None
        total = len(imu)

        for index, event in enumerate(imu):
            dt = 0.0
            if previous_timestamp is not None:
                dt = (event.timestamp - previous_timestamp) / 1000.0
            previous_timestamp = event.timestamp

            wx = event.gyro_x if abs(event.gyro_x) >= noise else 0.0
            wy = event.gyro_y if abs(event.gyro_y) >= noise else 0.0
            wz = event.gyro_z if abs(event.gyro_z) >= noise else 0.0

            if 0.0 < dt <= max_dt and (wx or wy or wz):
                half_dt = 0.5 * dt
                dw = (-qx * wx - qy * wy - qz * wz) * half_dt
                dx = (qw * wx + qy * wz - qz * wy) * half_dt
                dy = (qw * wy - qx * wz + qz * wx) * half_dt
                dz = (qw * wz + qx * wy - qy * wx) * half_dt
                qw, qx, qy, qz = qw + dw, qx + dx, qy + dy, qz + dz
                norm = math.sqrt(qw * qw + qx * qx + qy * qy + qz * qz)
                qw, qx, qy, qz = qw / norm, qx / norm, qy / norm, qz / norm

            quaternions.append((qw, qx, qy, qz))

            if context is not None and index % self.yield_interval == 0:
                context.report(ProcessingStage.METRICS, 0.5 + 0.5 * index / total, "Orientation")

        angles = quaternion_to_euler(quaternions)
        return [
            OrientationSample(
                timestamp=event.timestamp,
                roll=float(roll),
                pitch=float(pitch),
                yaw=float(yaw),
                quaternion=quaternion,
            )
            for event, quaternion, (roll, pitch, yaw) in zip(imu, quaternions, angles)
        ]
