"""
Tests for geodesic and rotation utilities.
"""

import math

import numpy as np
import pytest
from numpy.testing import assert_allclose

from ridelog.utils.geo import haversine_distance, offset_position, path_length
from ridelog.utils.rotation import (
    heading_from_magnetometer,
    leveling_matrix,
    matrix_to_quaternion,
    quaternion_to_euler,
    quaternion_to_matrix,
)


class TestHaversine:
    """Tests for great-circle distance."""

    def test_same_point(self):
        assert haversine_distance(32.0, -89.0, 32.0, -89.0) == 0.0

    def test_one_degree_latitude(self):
        """One degree of latitude is roughly 111 km."""
        assert_allclose(haversine_distance(32.0, -89.0, 33.0, -89.0), 111195.0, rtol=0.001)

    def test_vectorized(self):
        lat = np.array([32.0, 32.001, 32.002])
        lon = np.array([-89.0, -89.0, -89.0])

        distances = haversine_distance(lat[:-1], lon[:-1], lat[1:], lon[1:])

        assert distances.shape == (2,)
        assert_allclose(distances, 111.2, rtol=0.01)


class TestPathLength:
    def test_short_paths(self):
        assert path_length(np.array([]), np.array([])) == 0.0
        assert path_length(np.array([45.0]), np.array([7.0])) == 0.0

    def test_sum_of_steps(self):
        lat = np.array([45.0, 45.001, 45.002])
        lon = np.array([7.0, 7.0, 7.0])

        assert path_length(lat, lon) == pytest.approx(2 * haversine_distance(45.0, 7.0, 45.001, 7.0))


class TestOffsetPosition:
    def test_north_then_distance(self):
        lat, lon = offset_position(45.0, 7.0, 100.0, 0.0)

        assert lat > 45.0
        assert lon == 7.0
        assert_allclose(haversine_distance(45.0, 7.0, lat, lon), 100.0, rtol=1e-6)

    def test_east(self):
        lat, lon = offset_position(45.0, 7.0, 0.0, 250.0)

        assert lon > 7.0
        assert_allclose(haversine_distance(45.0, 7.0, lat, lon), 250.0, rtol=1e-3)


class TestRotation:
    """Tests for rotation helpers."""

    def test_leveling_matrix_is_rotation(self):
        m = leveling_matrix(12.0, -7.5)

        assert_allclose(m @ m.T, np.eye(3), atol=1e-12)
        assert_allclose(np.linalg.det(m), 1.0)

    def test_quaternion_matrix_round_trip(self):
        m = leveling_matrix(20.0, 35.0)

        assert_allclose(quaternion_to_matrix(matrix_to_quaternion(m)), m, atol=1e-12)

    def test_zero_quaternion_is_identity(self):
        assert_allclose(quaternion_to_matrix((0.0, 0.0, 0.0, 0.0)), np.eye(3))

    def test_euler_of_yaw(self):
        half = math.radians(45.0)
        roll, pitch, yaw = quaternion_to_euler((math.cos(half), 0.0, 0.0, math.sin(half)))

        assert_allclose((roll, pitch, yaw), (0.0, 0.0, 90.0), atol=1e-9)

    def test_euler_of_stack(self):
        half = math.radians(15.0)
        angles = quaternion_to_euler([
            (1.0, 0.0, 0.0, 0.0),
            (math.cos(half), math.sin(half), 0.0, 0.0),
            (math.cos(half), 0.0, math.sin(half), 0.0),
        ])

        assert angles.shape == (3, 3)
        assert_allclose(angles, [[0.0, 0.0, 0.0], [30.0, 0.0, 0.0], [0.0, 30.0, 0.0]], atol=1e-9)

    def test_leveling_matrix_points_gravity_up(self):
        gravity = np.array([1.5, -2.0, 9.4])
        roll = math.degrees(math.atan2(gravity[1], gravity[2]))
        pitch = math.degrees(math.atan2(-gravity[0], math.hypot(gravity[1], gravity[2])))

        leveled = leveling_matrix(pitch, roll) @ gravity

        assert_allclose(leveled, [0.0, 0.0, np.linalg.norm(gravity)], atol=1e-9)

    def test_heading_north(self):
        assert heading_from_magnetometer((20.0, 0.0, -40.0), 0.0, 0.0) == pytest.approx(0.0)

    def test_heading_east(self):
        """Field pointing to -Y in the device frame means the nose points east."""
        assert heading_from_magnetometer((0.0, -20.0, -40.0), 0.0, 0.0) == pytest.approx(90.0)
