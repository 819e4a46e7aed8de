"""
ZoneSentinel - Service Facade

Wires the subsystems together behind one object:
    - Store access (Redis)
    - Risk zone score engine and batch recalculation
    - Route corridor analyzer over the static corridor registry
    - Geo-index adapter over the geocoding collaborator
    - Security posture aggregator

Score flow:
    cellIds -> BatchRecalculationService -> RiskZoneScoreEngine -> store

Route flow:
    endpoints (or addresses -> GeoIndexAdapter) -> RouteCorridorAnalyzer
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, List, Dict, Any, Callable, Tuple
import logging

from .config import ZoneSentinelConfig, get_config
from .core.batch import BatchRecalculationService
from .core.scoring import RiskZoneScoreEngine
from .core.store import RiskZoneStore, RedisRiskZoneStore
from .corridors.analyzer import RouteCorridorAnalyzer, PointLike
from .corridors.registry import CorridorRegistry
from .geo.geocoding import GeoIndexAdapter, GeocodingClient, HttpGeocodingClient
from .geo.h3_index import validate_cell
from .logging_config import setup_logging
from .models import (
    BatchResult,
    CorridorRiskAnalysis,
    RiskZoneAdjustment,
    RiskZoneHistory,
    RiskZoneScore,
    SecurityEvent,
    SecurityPostureSummary,
)
from .posture import SecurityPostureAggregator


logger = logging.getLogger(__name__)


class ZoneSentinel:
    """
    Entry point for the risk zone subsystem.

    Example:
        sentinel = ZoneSentinel()
        await sentinel.initialize()

        response = await sentinel.handle_recalculate_request(
            {"cellIds": ["862a1072fffffff"]}
        )
        analysis = sentinel.analyze_route(
            {"lat": 19.43, "lng": -99.13}, {"lat": 19.04, "lng": -98.20}
        )
    """

    def __init__(
        self,
        config: Optional[ZoneSentinelConfig] = None,
        store: Optional[RiskZoneStore] = None,
        geocoder: Optional[GeocodingClient] = None,
        registry: Optional[CorridorRegistry] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize ZoneSentinel.

        Args:
            config: Full configuration (global config if not provided)
            store: Store implementation (Redis from config if not provided)
            geocoder: Geocoding collaborator (HTTP client from config if not provided)
            registry: Corridor catalog (packaged catalog if not provided)
            clock: Current-time source shared by engine and aggregator
        """
        self._config = config or get_config()

        self._store = store or RedisRiskZoneStore(config=self._config.redis)
        self._engine = RiskZoneScoreEngine(self._store, self._config.scoring, clock=clock)
        self._batch = BatchRecalculationService(self._engine, self._config.batch)
        self._analyzer = RouteCorridorAnalyzer(registry=registry, config=self._config.corridor)
        self._posture = SecurityPostureAggregator(self._store, clock=clock)

        geo = self._config.geocoding
        self._geo = GeoIndexAdapter(
            geocoder or HttpGeocodingClient(geo.base_url, geo.api_key, geo.timeout_seconds),
            resolution=geo.resolution,
        )

        self._initialized = False

    @property
    def engine(self) -> RiskZoneScoreEngine:
        return self._engine

    @property
    def analyzer(self) -> RouteCorridorAnalyzer:
        return self._analyzer

    @property
    def geo(self) -> GeoIndexAdapter:
        return self._geo

    async def initialize(self, configure_logging: bool = True) -> None:
        """
        Configure logging and verify store connectivity.

        Args:
            configure_logging: Install the structured logging handlers from
                config. Pass False when the host process owns logging.
        """
        if configure_logging:
            setup_logging(self._config.logging)
        if isinstance(self._store, RedisRiskZoneStore):
            await self._store.ping()
        self._initialized = True
        logger.info(
            f"ZoneSentinel initialized ({self._config.environment.value}, "
            f"{len(self._analyzer.registry)} corridor segments)"
        )

    async def close(self) -> None:
        """Clean up resources."""
        await self._geo.close()
        await self._store.close()
        self._initialized = False

    # Scores -----------------------------------------------------------------

    async def recalculate_zone(self, cell_id: str) -> RiskZoneScore:
        return await self._engine.recalculate_zone(cell_id)

    async def recalculate_many(self, cell_ids: List[str]) -> BatchResult:
        return await self._batch.recalculate_many(cell_ids)

    async def handle_recalculate_request(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Batch trigger boundary: {"cellIds": [...]} in, counts and details out."""
        return await self._batch.handle_recalculate_request(payload)

    async def record_event(self, event: SecurityEvent) -> RiskZoneScore:
        return await self._engine.record_event(event)

    async def add_adjustment(
        self,
        cell_id: str,
        adjustment_value: float,
        justification: str,
        created_by: str,
        valid_from: Optional[datetime] = None,
        valid_until: Optional[datetime] = None,
    ) -> Tuple[RiskZoneAdjustment, RiskZoneScore]:
        return await self._engine.add_adjustment(
            cell_id, adjustment_value, justification, created_by, valid_from, valid_until
        )

    async def revoke_adjustment(
        self, cell_id: str, adjustment_id: str, revoked_by: str, reason: Optional[str] = None
    ) -> RiskZoneScore:
        return await self._engine.revoke_adjustment(cell_id, adjustment_id, revoked_by, reason)

    async def get_score(self, cell_id: str) -> Optional[RiskZoneScore]:
        return await self._store.get_score(validate_cell(cell_id))

    async def get_history(self, cell_id: str, limit: Optional[int] = None) -> List[RiskZoneHistory]:
        return await self._engine.get_history(cell_id, limit=limit)

    async def posture_summary(self, window_days: int = 30, top_n: int = 10) -> SecurityPostureSummary:
        return await self._posture.summary(window_days=window_days, top_n=top_n)

    # Routes -----------------------------------------------------------------

    def analyze_route(self, origin: PointLike, destination: PointLike) -> CorridorRiskAnalysis:
        return self._analyzer.analyze_route(origin, destination)

    async def analyze_address_route(
        self, origin_address: str, destination_address: str
    ) -> CorridorRiskAnalysis:
        """
        Geocode both addresses, then analyze the route between them.

        Raises:
            InvalidInputError: an address is empty
            GeocodingError: the collaborator failed for either address
        """
        origin = await self._geo.geocode(origin_address)
        destination = await self._geo.geocode(destination_address)
        return self._analyzer.analyze_route(origin.point, destination.point)
