"""
ZoneSentinel Geo Tests
======================

Validates the Geo-Index layer:
- H3 cell identifier validation and resolution handling
- Haversine distance and straight-line route sampling
- Geocoding adapter normalization and error wrapping

Tech Stack: pytest, pytest-asyncio, httpx.MockTransport
"""

import math

import httpx
import numpy as np
import pytest

from zonesentinel.exceptions import GeocodingError, InvalidCellError, InvalidInputError
from zonesentinel.geo.geocoding import (
    GeoIndexAdapter,
    HttpGeocodingClient,
    MockGeocodingClient,
)
from zonesentinel.geo.geodesy import (
    haversine_km,
    interpolate_points,
    lonlat_to_latlon,
    pairwise_haversine_km,
)
from zonesentinel.geo.h3_index import (
    cell_to_parent,
    get_resolution,
    is_valid_cell,
    validate_cell,
)


RES6_CELL = "862a1072fffffff"
RES10_CELL = "8a2a1072b59ffff"
RES5_CELL = "85283473fffffff"
RES9_CELL = "8928308280fffff"
RES0_CELL = "8001fffffffffff"


# =============================================================================
# H3 CELL IDENTIFIERS
# =============================================================================

class TestCellValidation:
    """H3 cell validation."""

    @pytest.mark.parametrize("cell", [RES6_CELL, RES10_CELL, RES5_CELL, RES9_CELL, RES0_CELL])
    def test_valid_cells_pass(self, cell):
        assert validate_cell(cell) == cell
        assert is_valid_cell(cell)

    def test_normalizes_case_and_whitespace(self):
        assert validate_cell("  862A1072FFFFFFF ") == RES6_CELL

    def test_accepts_sixteen_digit_form(self):
        assert validate_cell("0" + RES6_CELL) == RES6_CELL

    @pytest.mark.parametrize("bad", [
        "",
        "   ",
        "not-a-cell",
        "862a1072fffff",           # too short
        "862a1072ffffffff0",       # too long
        "862a1072fffffzz",         # not hex
    ])
    def test_malformed_identifiers_rejected(self, bad):
        with pytest.raises(InvalidCellError):
            validate_cell(bad)
        assert not is_valid_cell(bad)

    def test_non_string_rejected(self):
        with pytest.raises(InvalidCellError):
            validate_cell(None)
        with pytest.raises(InvalidCellError):
            validate_cell(0x862A1072FFFFFFF)

    @pytest.mark.parametrize("bad", [
        "162a1072fffffff",         # not in cell mode
        "862a1072bffffff",         # digit past the resolution is not 7
        "862a107ffffffff",         # digit within the resolution is 7
        "86fe1072fffffff",         # base cell 127
        "81087ffffffffff",         # pentagon base cell 4, deleted k-axis digit
    ])
    def test_structurally_invalid_cells_rejected(self, bad):
        with pytest.raises(InvalidCellError, match="not a valid H3 cell"):
            validate_cell(bad)
        assert not is_valid_cell(bad)

    @pytest.mark.parametrize("cell", ["8009fffffffffff", "81083ffffffffff"])
    def test_pentagon_cells_accepted(self, cell):
        assert validate_cell(cell) == cell

    def test_invalid_cell_error_is_input_error(self):
        with pytest.raises(InvalidInputError):
            validate_cell("")
        with pytest.raises(ValueError):
            validate_cell("")


class TestResolution:
    """Resolution extraction and coarsening."""

    @pytest.mark.parametrize("cell,resolution", [
        (RES0_CELL, 0),
        (RES5_CELL, 5),
        (RES6_CELL, 6),
        (RES9_CELL, 9),
        (RES10_CELL, 10),
    ])
    def test_get_resolution(self, cell, resolution):
        assert get_resolution(cell) == resolution

    def test_parent_of_fine_cell(self):
        parent = cell_to_parent(RES10_CELL, 6)
        assert parent == RES6_CELL
        assert get_resolution(parent) == 6
        assert is_valid_cell(parent)

    def test_parent_at_same_resolution_is_identity(self):
        assert cell_to_parent(RES6_CELL, 6) == RES6_CELL

    def test_cannot_refine(self):
        with pytest.raises(InvalidCellError, match="without coordinates"):
            cell_to_parent(RES6_CELL, 9)

    def test_resolution_out_of_range(self):
        with pytest.raises(InvalidCellError):
            cell_to_parent(RES6_CELL, -1)


# =============================================================================
# GEODESY
# =============================================================================

class TestGeodesy:
    """Distance and sampling helpers."""

    def test_zero_distance(self):
        assert haversine_km(19.43, -99.13, 19.43, -99.13) == 0.0

    def test_known_distance_cdmx_puebla(self):
        # Zocalo CDMX to Puebla centro, roughly 105 km great-circle
        d = haversine_km(19.4326, -99.1332, 19.0414, -98.2063)
        assert 100 < d < 110

    def test_one_degree_latitude(self):
        assert haversine_km(0, 10, 1, 10) == pytest.approx(111.19, abs=0.1)

    def test_pairwise_matches_scalar(self):
        points = np.array([[19.43, -99.13], [19.04, -98.20]])
        others = np.array([[19.406, -99.0872], [19.39, -98.98], [20.0, -100.0]])

        matrix = pairwise_haversine_km(points, others)

        assert matrix.shape == (2, 3)
        for i, (lat1, lon1) in enumerate(points):
            for j, (lat2, lon2) in enumerate(others):
                assert matrix[i, j] == pytest.approx(haversine_km(lat1, lon1, lat2, lon2))

    def test_interpolate_includes_endpoints(self):
        samples = interpolate_points((10.0, 20.0), (21.0, 31.0), intermediate=10)

        assert len(samples) == 12
        assert samples[0] == (10.0, 20.0)
        assert samples[-1] == (21.0, 31.0)
        assert samples[1] == pytest.approx((11.0, 21.0))

    def test_interpolate_degenerate_route(self):
        samples = interpolate_points((19.43, -99.13), (19.43, -99.13))
        assert all(s == (19.43, -99.13) for s in samples)

    def test_interpolate_rejects_negative_count(self):
        with pytest.raises(ValueError):
            interpolate_points((1.0, 1.0), (2.0, 2.0), intermediate=-1)

    def test_lonlat_conversion(self):
        arr = lonlat_to_latlon([(-99.0872, 19.406)])
        assert arr.tolist() == [[19.406, -99.0872]]
        assert lonlat_to_latlon([]).shape == (0, 2)


# =============================================================================
# GEOCODING ADAPTER
# =============================================================================

@pytest.fixture
def geocoder():
    client = MockGeocodingClient()
    client.add_address("Av. Reforma 222, CDMX", 19.4270, -99.1677, RES6_CELL, 6)
    client.add_address("Fine Street 1", 19.4270, -99.1677, RES10_CELL, 10)
    client.add_address("Coarse Street 1", 37.77, -122.42, RES5_CELL, 5)
    client.add_coordinates(37.77, -122.42, "862834707ffffff", 6)
    return client


class TestGeoIndexAdapter:
    """Validation and resolution normalization around the collaborator."""

    @pytest.mark.asyncio
    async def test_geocode_same_resolution(self, geocoder):
        adapter = GeoIndexAdapter(geocoder, resolution=6)

        result = await adapter.geocode("av. reforma 222,  cdmx")

        assert result.cell_id == RES6_CELL
        assert result.resolution == 6
        assert result.point.latitude == pytest.approx(19.4270)

    @pytest.mark.asyncio
    async def test_finer_result_is_coarsened_locally(self, geocoder):
        adapter = GeoIndexAdapter(geocoder, resolution=6)

        result = await adapter.geocode("Fine Street 1")

        assert result.cell_id == RES6_CELL
        assert result.resolution == 6
        # No reverse lookup needed
        assert [c[0] for c in geocoder.calls] == ["geocode"]

    @pytest.mark.asyncio
    async def test_coarser_result_is_requeried(self, geocoder):
        adapter = GeoIndexAdapter(geocoder, resolution=6)

        result = await adapter.geocode("Coarse Street 1")

        assert result.cell_id == "862834707ffffff"
        assert result.resolution == 6
        assert result.formatted_address == "Coarse Street 1"
        assert geocoder.calls[-1] == ("geocode_from_coordinates", 37.77, -122.42, 6)

    @pytest.mark.asyncio
    async def test_geocode_from_coordinates(self, geocoder):
        adapter = GeoIndexAdapter(geocoder, resolution=6)

        result = await adapter.geocode_from_coordinates(37.77, -122.42)

        assert result.cell_id == "862834707ffffff"
        assert result.latitude == 37.77

    @pytest.mark.asyncio
    async def test_unknown_address_wrapped(self, geocoder):
        adapter = GeoIndexAdapter(geocoder, resolution=6)

        with pytest.raises(GeocodingError, match="Geocoding failed") as exc_info:
            await adapter.geocode("Nowhere 404")
        assert exc_info.value.query == "Nowhere 404"

    @pytest.mark.asyncio
    async def test_empty_address_is_input_error(self, geocoder):
        adapter = GeoIndexAdapter(geocoder, resolution=6)

        with pytest.raises(InvalidInputError):
            await adapter.geocode("   ")
        assert geocoder.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("lat,lng", [(91.0, 0.0), (0.0, 181.0), (math.nan, 1.0), (None, 1.0)])
    async def test_bad_coordinates_rejected(self, geocoder, lat, lng):
        adapter = GeoIndexAdapter(geocoder, resolution=6)

        with pytest.raises(InvalidInputError):
            await adapter.geocode_from_coordinates(lat, lng)

    @pytest.mark.asyncio
    async def test_invalid_cell_from_collaborator(self):
        client = MockGeocodingClient()
        client.add_address("Broken", 19.0, -99.0, "zzz", 6)
        adapter = GeoIndexAdapter(client, resolution=6)

        with pytest.raises(GeocodingError, match="invalid response"):
            await adapter.geocode("Broken")

    @pytest.mark.asyncio
    async def test_mismatched_resolution_rejected(self):
        client = MockGeocodingClient()
        client.add_address("Liar", 19.0, -99.0, RES6_CELL, 9)
        adapter = GeoIndexAdapter(client, resolution=6)

        with pytest.raises(GeocodingError, match="does not match"):
            await adapter.geocode("Liar")

    def test_adapter_rejects_bad_resolution(self, geocoder):
        with pytest.raises(InvalidInputError):
            GeoIndexAdapter(geocoder, resolution=16)


class TestHttpGeocodingClient:
    """HTTP collaborator over a mocked transport."""

    @staticmethod
    def _client_with(handler) -> HttpGeocodingClient:
        client = HttpGeocodingClient("http://geo.test", api_key="secret")
        client._client = httpx.AsyncClient(
            base_url="http://geo.test",
            transport=httpx.MockTransport(handler),
            headers={"X-API-Key": "secret"},
        )
        return client

    @pytest.mark.asyncio
    async def test_geocode_request_shape(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["address"] = request.url.params["address"]
            seen["key"] = request.headers.get("X-API-Key")
            return httpx.Response(200, json={
                "lat": 19.427, "lng": -99.1677, "cellId": RES6_CELL, "resolution": 6,
            })

        client = self._client_with(handler)
        adapter = GeoIndexAdapter(client, resolution=6)

        result = await adapter.geocode("Av. Reforma 222")
        await adapter.close()

        assert seen == {"path": "/geocode", "address": "Av. Reforma 222", "key": "secret"}
        assert result.cell_id == RES6_CELL

    @pytest.mark.asyncio
    async def test_reverse_passes_resolution(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(dict(request.url.params))
            return httpx.Response(200, json={"cellId": RES6_CELL, "resolution": 6})

        adapter = GeoIndexAdapter(self._client_with(handler), resolution=6)

        result = await adapter.geocode_from_coordinates(19.427, -99.1677)

        assert seen["res"] == "6"
        assert result.cell_id == RES6_CELL

    @pytest.mark.asyncio
    async def test_http_error_becomes_geocoding_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, json={"error": "unavailable"})

        adapter = GeoIndexAdapter(self._client_with(handler), resolution=6)

        with pytest.raises(GeocodingError):
            await adapter.geocode("Anywhere")
