"""
Geodesic helpers for GPS fixes.
"""

import numpy as np
from numpy.typing import NDArray


EARTH_RADIUS_M = 6371000.0  # mean radius


def haversine_distance(lat1, lon1, lat2, lon2):
    """
    Calculate great-circle distance between two points.

    Works on scalars or equally shaped numpy arrays.

    Args:
        lat1, lon1: First point coordinates in degrees
        lat2, lon2: Second point coordinates in degrees

    Returns:
        Distance in meters
    """
    lat1_rad = np.radians(lat1)
    lat2_rad = np.radians(lat2)
    dlat = np.radians(np.subtract(lat2, lat1))
    dlon = np.radians(np.subtract(lon2, lon1))

    a = np.sin(dlat / 2) ** 2 + np.cos(lat1_rad) * np.cos(lat2_rad) * np.sin(dlon / 2) ** 2
    a = np.clip(a, 0.0, 1.0)
    c = 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def path_length(lat: NDArray[np.float64], lon: NDArray[np.float64]) -> float:
    """Sum of haversine distances between consecutive points, in meters."""
    if len(lat) < 2:
        return 0.0
    steps = haversine_distance(lat[:-1], lon[:-1], lat[1:], lon[1:])
    return float(np.nansum(steps))


def offset_position(lat: float, lon: float, north_m: float, east_m: float) -> tuple[float, float]:
    """Move a point by a small north/east offset in meters."""
    dlat = north_m / EARTH_RADIUS_M
    dlon = east_m / (EARTH_RADIUS_M * np.cos(np.radians(lat)))
    return lat + float(np.degrees(dlat)), lon + float(np.degrees(dlon))
