"""
ZoneSentinel Corridor Registry

Immutable in-memory catalog of highway corridors and their segments, loaded
once from a JSON data asset. Updating the catalog is a data change; the
analysis algorithm never branches on specific corridors.

Data file layout:
    {
        "version": "...",
        "corridors": [{id, name, risk_level, description, kilometers,
                       avg_events_per_cell, waypoints: [[lon, lat], ...]}],
        "segments":  [{id, corridor_id, name, km_start, km_end, risk_level,
                       avg_monthly_events, critical_hours,
                       common_incident_type, recommendations: [...],
                       waypoints: [[lon, lat], ...]}]
    }
"""

from __future__ import annotations

import json
from importlib import resources
from pathlib import Path
from types import MappingProxyType
from typing import Optional, List, Dict, Any, Tuple, Mapping, Union
import logging

from pydantic import ValidationError

from ..exceptions import InvalidInputError
from ..models import Corridor, CorridorSegment, RiskLevel


logger = logging.getLogger(__name__)

DEFAULT_DATA_PACKAGE = "zonesentinel.corridors.data"
DEFAULT_DATA_FILE = "corridors.json"


class CorridorRegistryError(InvalidInputError):
    """The corridor data asset is malformed."""


class CorridorRegistry:
    """
    Read-only catalog of corridors and segments, indexed by id.

    Segment iteration order is the data file order; the analyzer relies on
    it to break severity ties deterministically.

    Example:
        registry = CorridorRegistry.load()
        segment = registry.get_segment("mex-pue-1")
        extreme = registry.segments_by_risk_level(RiskLevel.EXTREME)
    """

    def __init__(
        self,
        corridors: List[Corridor],
        segments: List[CorridorSegment],
        version: str = "",
    ):
        self._version = version
        self._corridors: Tuple[Corridor, ...] = tuple(corridors)
        self._segments: Tuple[CorridorSegment, ...] = tuple(segments)
        self._corridor_index: Mapping[str, Corridor] = MappingProxyType(
            self._build_index(self._corridors, "corridor")
        )
        self._segment_index: Mapping[str, CorridorSegment] = MappingProxyType(
            self._build_index(self._segments, "segment")
        )

        by_corridor: Dict[str, List[CorridorSegment]] = {}
        for segment in self._segments:
            by_corridor.setdefault(segment.corridor_id, []).append(segment)
        self._segments_by_corridor: Mapping[str, Tuple[CorridorSegment, ...]] = MappingProxyType(
            {k: tuple(v) for k, v in by_corridor.items()}
        )

        unknown = set(self._segments_by_corridor) - set(self._corridor_index)
        if unknown:
            raise CorridorRegistryError(
                f"Segments reference unknown corridors: {sorted(unknown)}"
            )

    @staticmethod
    def _build_index(items, kind: str) -> Dict[str, Any]:
        index: Dict[str, Any] = {}
        for item in items:
            if item.id in index:
                raise CorridorRegistryError(f"Duplicate {kind} id '{item.id}'")
            index[item.id] = item
        return index

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CorridorRegistry":
        """Build a registry from the decoded data file."""
        if not isinstance(data, dict):
            raise CorridorRegistryError("Corridor data must be a JSON object")

        try:
            corridors = [Corridor(**c) for c in data.get("corridors", [])]
            segments = [CorridorSegment(**s) for s in data.get("segments", [])]
        except (ValidationError, TypeError) as e:
            raise CorridorRegistryError(f"Invalid corridor data: {e}") from e

        return cls(corridors, segments, version=str(data.get("version", "")))

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None) -> "CorridorRegistry":
        """
        Load the registry from a JSON file.

        Args:
            path: Data file override; the packaged catalog is used when omitted
        """
        try:
            if path is None:
                raw = resources.files(DEFAULT_DATA_PACKAGE).joinpath(DEFAULT_DATA_FILE).read_text(
                    encoding="utf-8"
                )
                source = f"{DEFAULT_DATA_PACKAGE}/{DEFAULT_DATA_FILE}"
            else:
                raw = Path(path).read_text(encoding="utf-8")
                source = str(path)
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError) as e:
            raise CorridorRegistryError(f"Unable to read corridor data: {e}") from e

        registry = cls.from_dict(data)
        logger.info(
            f"Loaded corridor registry {registry.version or '(unversioned)'} from {source}: "
            f"{len(registry.corridors)} corridors, {len(registry.segments)} segments"
        )
        return registry

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @property
    def version(self) -> str:
        return self._version

    @property
    def corridors(self) -> Tuple[Corridor, ...]:
        return self._corridors

    @property
    def segments(self) -> Tuple[CorridorSegment, ...]:
        return self._segments

    def __len__(self) -> int:
        return len(self._segments)

    def get_corridor(self, corridor_id: str) -> Optional[Corridor]:
        return self._corridor_index.get(corridor_id)

    def get_segment(self, segment_id: str) -> Optional[CorridorSegment]:
        return self._segment_index.get(segment_id)

    def segments_for_corridor(self, corridor_id: str) -> Tuple[CorridorSegment, ...]:
        return self._segments_by_corridor.get(corridor_id, ())

    def segments_by_risk_level(self, level: RiskLevel) -> Tuple[CorridorSegment, ...]:
        level = RiskLevel(level)
        return tuple(s for s in self._segments if s.risk_level == level)

    def corridors_by_risk_level(self, level: RiskLevel) -> Tuple[Corridor, ...]:
        level = RiskLevel(level)
        return tuple(c for c in self._corridors if c.risk_level == level)

    def risk_distribution(self) -> Dict[str, Dict[str, int]]:
        """
        Segment count and whole-number percentage per risk level.

        Percentages are rounded independently and may not sum to 100.
        """
        total = len(self._segments)
        distribution = {
            level.value: {"count": 0, "percentage": 0}
            for level in sorted(RiskLevel, key=lambda l: l.rank, reverse=True)
        }
        for segment in self._segments:
            distribution[segment.risk_level.value]["count"] += 1

        if total:
            for entry in distribution.values():
                # Half-up, not banker's rounding
                entry["percentage"] = int(entry["count"] * 100 / total + 0.5)
        return distribution

    def kilometers_by_risk_level(self) -> Dict[str, float]:
        """Published corridor length (Corridor.kilometers) per corridor risk level."""
        totals = {level.value: 0.0 for level in RiskLevel}
        for corridor in self._corridors:
            totals[corridor.risk_level.value] += corridor.kilometers
        return totals

    def segment_kilometers_by_risk_level(self) -> Dict[str, float]:
        """Measured segment polyline length per segment risk level."""
        totals = {level.value: 0.0 for level in RiskLevel}
        for segment in self._segments:
            totals[segment.risk_level.value] += segment.length_km
        return totals


_default_registry: Optional[CorridorRegistry] = None


def get_default_registry() -> CorridorRegistry:
    """Packaged registry, loaded on first use."""
    global _default_registry
    if _default_registry is None:
        _default_registry = CorridorRegistry.load()
    return _default_registry
