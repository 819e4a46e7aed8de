"""
ZoneSentinel Geodesy Helpers

Great-circle distances on a spherical Earth and straight-line route sampling.
The pairwise variant is used by the corridor analyzer to compare every route
sample against every segment waypoint in one vectorised pass.
"""

from __future__ import annotations

import math
from typing import List, Sequence, Tuple

import numpy as np


EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Distance in kilometers between two (lat, lon) points."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_phi / 2) ** 2 +
        math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def pairwise_haversine_km(
    points: np.ndarray,
    others: np.ndarray,
) -> np.ndarray:
    """
    Distance matrix between two sets of points.

    Args:
        points: array of shape (n, 2) holding (lat, lon) in degrees
        others: array of shape (m, 2) holding (lat, lon) in degrees

    Returns:
        Array of shape (n, m) with distances in kilometers
    """
    p = np.radians(np.asarray(points, dtype=float).reshape(-1, 2))
    o = np.radians(np.asarray(others, dtype=float).reshape(-1, 2))

    lat1 = p[:, 0][:, np.newaxis]
    lon1 = p[:, 1][:, np.newaxis]
    lat2 = o[:, 0][np.newaxis, :]
    lon2 = o[:, 1][np.newaxis, :]

    a = (
        np.sin((lat2 - lat1) / 2) ** 2 +
        np.cos(lat1) * np.cos(lat2) * np.sin((lon2 - lon1) / 2) ** 2
    )
    # Rounding can push a marginally above 1 for antipodal points
    a = np.clip(a, 0.0, 1.0)

    return EARTH_RADIUS_KM * 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a))


def interpolate_points(
    origin: Tuple[float, float],
    destination: Tuple[float, float],
    intermediate: int = 10,
) -> List[Tuple[float, float]]:
    """
    Sample a straight line in coordinate space.

    Returns the origin, `intermediate` evenly spaced interior points and the
    destination, in travel order. Degenerate routes (origin == destination)
    yield repeated points, which is harmless for proximity tests.
    """
    if intermediate < 0:
        raise ValueError("intermediate point count must be non-negative")

    steps = intermediate + 1
    lat1, lon1 = origin
    lat2, lon2 = destination

    return [
        (lat1 + (lat2 - lat1) * i / steps, lon1 + (lon2 - lon1) * i / steps)
        for i in range(steps + 1)
    ]


def lonlat_to_latlon(waypoints: Sequence[Tuple[float, float]]) -> np.ndarray:
    """Convert (lon, lat) waypoint pairs into an (m, 2) lat/lon array."""
    if not waypoints:
        return np.empty((0, 2), dtype=float)
    arr = np.asarray(waypoints, dtype=float)
    return arr[:, ::-1].copy()
