"""
Rotation helpers shared by calibration and orientation tracking.

Quaternions are (w, x, y, z). Angles are in degrees unless a name says rad.
Conversions go through ``scipy.spatial.transform.Rotation`` with
``scalar_first=True`` so the scalar part stays in front.
"""

import math
from typing import Sequence

import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy.spatial.transform import Rotation


def gravity_angles(ax: float, ay: float, az: float) -> tuple[float, float]:
    """Roll and pitch (degrees) of the gravity vector seen by the accelerometer."""
    roll = math.degrees(math.atan2(ay, az))
    pitch = math.degrees(math.atan2(-ax, math.sqrt(ay * ay + az * az)))
    return roll, pitch


def leveling_matrix(pitch_deg: float, roll_deg: float) -> NDArray[np.float64]:
    """
    Rotation that maps a device reading onto a gravity-aligned frame.

    ``Ry(pitch) @ Rx(roll)``: for a gravity reading whose angles are
    (pitch, roll) the product points the reading along +Z.
    """
    return Rotation.from_euler("xy", [roll_deg, pitch_deg], degrees=True).as_matrix()


def quaternion_to_matrix(q: Sequence[float]) -> NDArray[np.float64]:
    q = np.asarray(q, dtype=np.float64)
    if not np.any(q):
        return np.eye(3)
    return Rotation.from_quat(q, scalar_first=True).as_matrix()


def matrix_to_quaternion(m: ArrayLike) -> tuple[float, float, float, float]:
    w, x, y, z = Rotation.from_matrix(np.asarray(m, dtype=np.float64)).as_quat(scalar_first=True)
    return (float(w), float(x), float(y), float(z))


def quaternion_to_euler(q: ArrayLike) -> NDArray[np.float64]:
    """
    Roll, pitch, yaw in degrees.

    Takes one quaternion or an (n, 4) stack and returns (3,) or (n, 3).
    """
    return Rotation.from_quat(np.asarray(q, dtype=np.float64), scalar_first=True).as_euler("xyz", degrees=True)


def heading_from_magnetometer(mag: Sequence[float], pitch_deg: float, roll_deg: float) -> float:
    """Tilt-compensated compass heading in degrees [0, 360)."""
    level = leveling_matrix(pitch_deg, roll_deg) @ np.asarray(mag, dtype=np.float64)
    heading = math.degrees(math.atan2(-level[1], level[0]))
    return heading % 360.0
