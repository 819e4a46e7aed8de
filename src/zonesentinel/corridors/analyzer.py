"""
ZoneSentinel Route Corridor Risk Analyzer

Flags routes that pass near known high-risk highway segments.

Algorithm:
    1. Sample the straight line origin -> destination: both endpoints plus
       N evenly spaced interior points (default N=10).
    2. A segment is crossed when any sample lies within the proximity
       threshold (default 15 km, haversine) of any of its waypoints.
    3. Overall risk is the maximum level across crossed segments.
    4. Crossed segments are ordered by descending severity (registry order
       within a level); their recommendations are merged, deduplicated,
       until the cap (default 5) is reached.

Straight-line sampling approximates the road network on purpose: the
question is proximity to a known risk corridor, not exact path overlap.

The analyzer is a pure function of the registry and the two points. It
holds no mutable state and performs no I/O, so one instance can be shared
across any number of concurrent callers.
"""

from __future__ import annotations

import math
from typing import Optional, List, Tuple, Union, Mapping, Any
import logging

import numpy as np

from ..config import CorridorConfig
from ..models import (
    CorridorRiskAnalysis,
    CrossedSegment,
    GeoPoint,
)
from ..geo.geodesy import interpolate_points, lonlat_to_latlon, pairwise_haversine_km
from .registry import CorridorRegistry, get_default_registry


logger = logging.getLogger(__name__)

PointLike = Union[GeoPoint, Tuple[float, float], Mapping[str, Any], None]


def _coerce_point(point: PointLike) -> Optional[Tuple[float, float]]:
    """
    Normalize an endpoint into (lat, lon), or None when it is unusable.

    Accepts GeoPoint, a (lat, lon) tuple, or a mapping with lat/lng
    (or latitude/longitude) keys. Zero on either axis counts as unset,
    as do missing and non-finite values.
    """
    if point is None:
        return None

    try:
        if isinstance(point, GeoPoint):
            lat, lon = point.latitude, point.longitude
        elif isinstance(point, Mapping):
            lat = point.get("lat", point.get("latitude"))
            lon = point.get("lng", point.get("lon", point.get("longitude")))
        else:
            lat, lon = point
        if lat is None or lon is None:
            return None
        lat, lon = float(lat), float(lon)
    except (TypeError, ValueError):
        return None

    if not (math.isfinite(lat) and math.isfinite(lon)):
        return None
    if lat == 0 or lon == 0:
        return None
    if not (-90 <= lat <= 90 and -180 <= lon <= 180):
        return None
    return lat, lon


class RouteCorridorAnalyzer:
    """
    Classifies route risk against the static corridor registry.

    Example:
        analyzer = RouteCorridorAnalyzer()
        analysis = analyzer.analyze_route(
            GeoPoint(latitude=19.43, longitude=-99.13),
            GeoPoint(latitude=19.04, longitude=-98.20),
        )
        if analysis.is_analyzed:
            print(analysis.overall_risk_level, analysis.recommendations)
    """

    def __init__(
        self,
        registry: Optional[CorridorRegistry] = None,
        config: Optional[CorridorConfig] = None,
    ):
        self._config = config or CorridorConfig()
        if registry is None:
            registry = (
                CorridorRegistry.load(self._config.data_path)
                if self._config.data_path
                else get_default_registry()
            )
        self._registry = registry

        if self._config.proximity_km <= 0:
            raise ValueError("proximity_km must be positive")
        if self._config.interpolation_points < 0:
            raise ValueError("interpolation_points must be non-negative")
        if self._config.max_recommendations < 0:
            raise ValueError("max_recommendations must be non-negative")

        # Waypoints flattened once into a single (lat, lon) array; each
        # segment owns a contiguous slice of it.
        self._segments = self._registry.segments
        arrays = [lonlat_to_latlon(s.waypoints) for s in self._segments]
        self._waypoints = np.vstack(arrays) if arrays else np.empty((0, 2))
        self._owners = np.concatenate(
            [np.full(len(a), i, dtype=int) for i, a in enumerate(arrays)]
        ) if arrays else np.empty(0, dtype=int)

    @property
    def registry(self) -> CorridorRegistry:
        return self._registry

    def analyze_route(
        self,
        origin: PointLike,
        destination: PointLike,
    ) -> CorridorRiskAnalysis:
        """
        Determine which corridor segments a route passes near.

        Missing or unset endpoints yield a not-analyzed result with
        input_valid=False; this is a normal outcome, not an error.
        A route that crosses nothing yields is_analyzed=False with
        input_valid=True.
        """
        start = _coerce_point(origin)
        end = _coerce_point(destination)
        if start is None or end is None:
            logger.debug("Route analysis skipped: endpoint missing or unset")
            return CorridorRiskAnalysis.not_analyzed(input_valid=False)

        crossed = self._find_crossed_segments(start, end)
        if not crossed:
            return CorridorRiskAnalysis.not_analyzed(input_valid=True)

        # Stable sort keeps registry order within a risk level
        crossed.sort(key=lambda c: c.risk_level.rank, reverse=True)
        overall = crossed[0].risk_level

        analysis = CorridorRiskAnalysis(
            is_analyzed=True,
            input_valid=True,
            overall_risk_level=overall,
            crossed_segments=tuple(crossed),
            recommendations=tuple(self._collect_recommendations(crossed)),
        )

        logger.debug(
            f"Route {start} -> {end}: {len(crossed)} segments crossed, "
            f"overall risk {overall.value}"
        )
        return analysis

    def _find_crossed_segments(
        self,
        start: Tuple[float, float],
        end: Tuple[float, float],
    ) -> List[CrossedSegment]:
        if not len(self._segments):
            return []

        samples = np.asarray(
            interpolate_points(start, end, self._config.interpolation_points)
        )
        # Closest sample for every waypoint, then closest waypoint per segment
        nearest = pairwise_haversine_km(samples, self._waypoints).min(axis=0)
        per_segment = np.full(len(self._segments), np.inf)
        np.minimum.at(per_segment, self._owners, nearest)

        crossed = []
        for index in np.flatnonzero(per_segment <= self._config.proximity_km):
            segment = self._segments[index]
            crossed.append(CrossedSegment(
                segment_id=segment.id,
                corridor_id=segment.corridor_id,
                name=segment.name,
                risk_level=segment.risk_level,
                recommendations=segment.recommendations,
                min_distance_km=round(float(per_segment[index]), 3),
            ))
        return crossed

    def _collect_recommendations(self, crossed: List[CrossedSegment]) -> List[str]:
        limit = self._config.max_recommendations
        seen = set()
        collected: List[str] = []

        for segment in crossed:
            for recommendation in segment.recommendations:
                if len(collected) >= limit:
                    return collected
                if recommendation in seen:
                    continue
                seen.add(recommendation)
                collected.append(recommendation)

        return collected


def analyze_route(
    origin: PointLike,
    destination: PointLike,
    registry: Optional[CorridorRegistry] = None,
) -> CorridorRiskAnalysis:
    """Module-level shortcut using the packaged registry and default settings."""
    return RouteCorridorAnalyzer(registry=registry).analyze_route(origin, destination)
