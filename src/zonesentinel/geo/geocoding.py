"""
ZoneSentinel Geo-Index Adapter

Geocoding is an external collaborator. This module defines the client
interface, an HTTP implementation, an in-memory mock for tests and local
development, and the adapter that validates the collaborator's output and
normalizes every cell to the configured aggregation resolution.

Example:
    adapter = GeoIndexAdapter(MockGeocodingClient(), resolution=6)
    result = await adapter.geocode("Av. Reforma 222, CDMX")
    result.cell_id  # resolution-6 H3 index
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, Tuple
import logging

import httpx
from pydantic import ValidationError

from ..exceptions import GeocodingError, InvalidCellError, InvalidInputError
from ..models import GeocodeResult
from .h3_index import cell_to_parent, get_resolution, MAX_RESOLUTION


logger = logging.getLogger(__name__)


def _check_coordinates(latitude: float, longitude: float) -> None:
    if latitude is None or longitude is None:
        raise InvalidInputError("Coordinates are required")
    if not (math.isfinite(latitude) and math.isfinite(longitude)):
        raise InvalidInputError(
            "Coordinates must be finite",
            details={"latitude": latitude, "longitude": longitude},
        )
    if not (-90 <= latitude <= 90 and -180 <= longitude <= 180):
        raise InvalidInputError(
            f"Coordinates out of range: ({latitude}, {longitude})",
            details={"latitude": latitude, "longitude": longitude},
        )


class GeocodingClient(ABC):
    """
    Abstract base class for geocoding collaborators.

    Implementations return raw results; validation and resolution
    handling live in GeoIndexAdapter.
    """

    @abstractmethod
    async def geocode(self, address: str) -> Dict[str, Any]:
        """
        Resolve a free-text address.

        Returns:
            Mapping with lat, lng, cellId and resolution
        """
        pass

    @abstractmethod
    async def geocode_from_coordinates(
        self,
        latitude: float,
        longitude: float,
        resolution: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Resolve the cell containing a coordinate pair.

        Returns:
            Mapping with cellId and resolution
        """
        pass

    async def close(self) -> None:
        """Release transport resources, if any."""
        return None


class MockGeocodingClient(GeocodingClient):
    """
    In-memory geocoder for tests and local development.

    Addresses and coordinates are registered up front; lookups for
    anything unregistered fail the way a real geocoder reports no match.
    """

    def __init__(self):
        self._addresses: Dict[str, Dict[str, Any]] = {}
        self._coordinates: Dict[Tuple[float, float, int], Dict[str, Any]] = {}
        self.calls: list = []

    @staticmethod
    def _address_key(address: str) -> str:
        return " ".join(address.lower().split())

    def add_address(
        self,
        address: str,
        latitude: float,
        longitude: float,
        cell_id: str,
        resolution: int,
    ) -> None:
        """Register a mock address result."""
        self._addresses[self._address_key(address)] = {
            "lat": latitude,
            "lng": longitude,
            "cellId": cell_id,
            "resolution": resolution,
            "formattedAddress": address,
        }

    def add_coordinates(
        self,
        latitude: float,
        longitude: float,
        cell_id: str,
        resolution: int,
    ) -> None:
        """Register a mock reverse lookup at one resolution."""
        key = (round(latitude, 6), round(longitude, 6), resolution)
        self._coordinates[key] = {"cellId": cell_id, "resolution": resolution}

    async def geocode(self, address: str) -> Dict[str, Any]:
        self.calls.append(("geocode", address))
        result = self._addresses.get(self._address_key(address))
        if result is None:
            raise LookupError(f"No match for address '{address}'")
        return dict(result)

    async def geocode_from_coordinates(
        self,
        latitude: float,
        longitude: float,
        resolution: Optional[int] = None,
    ) -> Dict[str, Any]:
        self.calls.append(("geocode_from_coordinates", latitude, longitude, resolution))
        lat, lng = round(latitude, 6), round(longitude, 6)

        if resolution is not None:
            result = self._coordinates.get((lat, lng, resolution))
        else:
            matches = [v for (a, b, _), v in self._coordinates.items() if (a, b) == (lat, lng)]
            result = matches[0] if matches else None

        if result is None:
            raise LookupError(f"No cell registered for ({latitude}, {longitude})")
        return dict(result)


class HttpGeocodingClient(GeocodingClient):
    """
    Geocoding collaborator reached over HTTP.

    Endpoints:
        GET /geocode?address=...           -> {lat, lng, cellId, resolution}
        GET /reverse?lat=..&lng=..&res=..  -> {cellId, resolution}
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout_seconds: float = 5.0,
    ):
        """
        Initialize the HTTP geocoder.

        Args:
            base_url: Service root URL
            api_key: Sent as the X-API-Key header when non-empty
            timeout_seconds: Request timeout
        """
        self._base_url = base_url
        self._api_key = api_key
        self._timeout = timeout_seconds
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {"X-API-Key": self._api_key} if self._api_key else {}
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                headers=headers,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def geocode(self, address: str) -> Dict[str, Any]:
        client = await self._get_client()
        response = await client.get("/geocode", params={"address": address})
        response.raise_for_status()
        return response.json()

    async def geocode_from_coordinates(
        self,
        latitude: float,
        longitude: float,
        resolution: Optional[int] = None,
    ) -> Dict[str, Any]:
        client = await self._get_client()
        params: Dict[str, Any] = {"lat": latitude, "lng": longitude}
        if resolution is not None:
            params["res"] = resolution
        response = await client.get("/reverse", params=params)
        response.raise_for_status()
        return response.json()


class GeoIndexAdapter:
    """
    Validates geocoder output and normalizes resolution.

    Resolution handling:
        - same resolution: returned as-is
        - collaborator finer than target: parent cell computed locally
        - collaborator coarser than target: re-query by coordinates at the
          target resolution (a coarse cell cannot be refined without them)
    """

    def __init__(self, client: GeocodingClient, resolution: int = 6):
        if not 0 <= resolution <= MAX_RESOLUTION:
            raise InvalidInputError(f"H3 resolution must be within [0, {MAX_RESOLUTION}]")
        self._client = client
        self._resolution = resolution

    @property
    def resolution(self) -> int:
        return self._resolution

    async def close(self) -> None:
        await self._client.close()

    async def geocode(self, address: str) -> GeocodeResult:
        """
        Resolve an address into coordinates and a target-resolution cell.

        Raises:
            InvalidInputError: address is empty
            GeocodingError: collaborator failed or returned unusable data
        """
        if not address or not address.strip():
            raise InvalidInputError("Address is required")

        raw = await self._call(self._client.geocode(address), query=address)
        result = self._parse(raw, query=address)
        if result.latitude is None or result.longitude is None:
            raise GeocodingError("response is missing coordinates", query=address)

        return await self._normalize(result, query=address)

    async def geocode_from_coordinates(
        self, latitude: float, longitude: float
    ) -> GeocodeResult:
        """
        Resolve the target-resolution cell containing a coordinate pair.

        Raises:
            InvalidInputError: coordinates missing, non-finite or out of range
            GeocodingError: collaborator failed or returned unusable data
        """
        _check_coordinates(latitude, longitude)
        query = f"{latitude},{longitude}"

        raw = await self._call(
            self._client.geocode_from_coordinates(latitude, longitude, self._resolution),
            query=query,
        )
        raw = {"lat": latitude, "lng": longitude, **raw}
        result = self._parse(raw, query=query)

        return await self._normalize(result, query=query)

    async def _call(self, awaitable, query: str) -> Dict[str, Any]:
        try:
            raw = await awaitable
        except GeocodingError:
            raise
        except httpx.HTTPError as e:
            logger.error(f"Geocoding transport error for '{query}': {e}")
            raise GeocodingError(str(e), query=query) from e
        except (LookupError, ValueError) as e:
            raise GeocodingError(str(e), query=query) from e

        if not isinstance(raw, dict):
            raise GeocodingError("unexpected response shape", query=query)
        return raw

    def _parse(self, raw: Dict[str, Any], query: str) -> GeocodeResult:
        cell_id = raw.get("cellId") or raw.get("cell_id") or raw.get("h3Index")
        if not cell_id:
            raise GeocodingError("response is missing a cell identifier", query=query)

        try:
            resolution = raw.get("resolution")
            if resolution is None:
                resolution = get_resolution(cell_id)
            return GeocodeResult(
                latitude=raw.get("lat", raw.get("latitude")),
                longitude=raw.get("lng", raw.get("longitude")),
                cell_id=cell_id,
                resolution=int(resolution),
                formatted_address=raw.get("formattedAddress"),
            )
        except (InvalidCellError, ValidationError, TypeError, ValueError) as e:
            raise GeocodingError(f"invalid response: {e}", query=query) from e

    async def _normalize(self, result: GeocodeResult, query: str) -> GeocodeResult:
        actual = get_resolution(result.cell_id)
        if actual != result.resolution:
            raise GeocodingError(
                f"reported resolution {result.resolution} does not match cell resolution {actual}",
                query=query,
            )

        if actual == self._resolution:
            return result

        if actual > self._resolution:
            return result.model_copy(update={
                "cell_id": cell_to_parent(result.cell_id, self._resolution),
                "resolution": self._resolution,
            })

        if result.latitude is None or result.longitude is None:
            raise GeocodingError(
                f"cannot refine resolution {actual} cell without coordinates",
                query=query,
            )

        logger.debug(
            f"Re-querying '{query}' at resolution {self._resolution} (collaborator returned {actual})"
        )
        raw = await self._call(
            self._client.geocode_from_coordinates(
                result.latitude, result.longitude, self._resolution
            ),
            query=query,
        )
        refined = self._parse(
            {"lat": result.latitude, "lng": result.longitude, **raw}, query=query
        )
        if get_resolution(refined.cell_id) != self._resolution:
            raise GeocodingError(
                f"collaborator did not return a resolution {self._resolution} cell",
                query=query,
            )
        return refined.model_copy(update={"formatted_address": result.formatted_address})
