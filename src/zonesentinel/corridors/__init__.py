"""
ZoneSentinel Corridors - static highway risk catalog and route analysis.
"""

from .registry import CorridorRegistry, CorridorRegistryError, get_default_registry
from .analyzer import RouteCorridorAnalyzer, analyze_route

__all__ = [
    "CorridorRegistry",
    "CorridorRegistryError",
    "get_default_registry",
    "RouteCorridorAnalyzer",
    "analyze_route",
]
