"""
ZoneSentinel Geo - cell identifiers, geodesy and the geocoding adapter.

The adapter lives in zonesentinel.geo.geocoding and is not re-exported here
because it depends on the data models, which themselves validate cells.
"""

from .h3_index import (
    validate_cell,
    is_valid_cell,
    get_resolution,
    cell_to_parent,
    MAX_RESOLUTION,
)
from .geodesy import haversine_km, pairwise_haversine_km, interpolate_points

__all__ = [
    "validate_cell",
    "is_valid_cell",
    "get_resolution",
    "cell_to_parent",
    "MAX_RESOLUTION",
    "haversine_km",
    "pairwise_haversine_km",
    "interpolate_points",
]
