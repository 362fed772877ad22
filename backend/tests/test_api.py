"""Tests for the HTTP layer: request mapping and error codes."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from routegeo.api import bus, cache, routes
from routegeo.core.exceptions import OptionNotFound, ProviderError, ShapeNotFound
from routegeo.core.geo import GeoPoint
from routegeo.core.providers import ItineraryLeg, ItineraryOption, ProviderRoute
from routegeo.core.resolver import RouteResolver
from routegeo.core.route_cache import RouteCache

BODY = {"origin_lat": -33.4372, "origin_lon": -70.6506, "dest_lat": -33.4489, "dest_lon": -70.6693}


class StaticProvider:
    name = "osrm-driving"
    source = "engine"

    def __init__(self, fail: bool = False):
        self.fail = fail

    async def get_route(self, origin, dest):
        if self.fail:
            raise ProviderError("HTTP 502")
        return ProviderRoute(polyline=[origin, GeoPoint(-33.4400, -70.6650), dest], distance_m=2350.0, duration_s=480)


class StopsOnly:
    async def get_shape_id_for_route(self, route_number):
        raise ShapeNotFound(route_number)

    async def get_shape_points(self, shape_id):
        raise ShapeNotFound(shape_id)

    async def get_stop_coordinates(self, stop_code):
        if stop_code == "A":
            return GeoPoint(-33.4372, -70.6506)
        raise ShapeNotFound(f"Stop {stop_code} not found")


class OneOption:
    name = "itinerary"

    async def list_options(self, origin, dest):
        return [ItineraryOption(index=0, route_numbers=["506"], total_duration_minutes=12)]

    async def get_legs(self, origin, dest, index):
        if index != 0:
            raise OptionNotFound(f"Itinerary option {index} not found")
        return [ItineraryLeg(mode="walk", start=origin, end=dest, geometry=[origin, dest], duration_s=700)]


@pytest.fixture
def client(monkeypatch):
    route_cache = RouteCache()
    resolver = RouteResolver(route_cache, [StaticProvider()], shape_store=StopsOnly(), itinerary=OneOption())
    monkeypatch.setattr(routes, "resolver", resolver)
    monkeypatch.setattr(bus, "resolver", resolver)
    monkeypatch.setattr(cache, "cache", route_cache)

    app = FastAPI()
    app.include_router(routes.router)
    app.include_router(bus.router)
    app.include_router(cache.router)
    return TestClient(app)


def test_resolve_returns_lon_lat_geometry(client):
    resp = client.post("/api/routes/resolve", json=BODY)
    assert resp.status_code == 200
    data = resp.json()
    assert data["geometry"][0] == [-70.6506, -33.4372]
    assert data["source"] == "engine"
    assert data["cache_hit"] is False
    assert data["distance_meters"] == 2350.0

    assert client.post("/api/routes/resolve", json=BODY).json()["cache_hit"] is True


def test_resolve_invalid_coordinates(client):
    resp = client.post("/api/routes/resolve", json={**BODY, "origin_lat": 123.0})
    assert resp.status_code == 400


def test_resolve_all_providers_down(client, monkeypatch):
    monkeypatch.setattr(routes.resolver, "providers", [StaticProvider(fail=True)])
    resp = client.post("/api/routes/resolve", json=BODY)
    assert resp.status_code == 503
    assert resp.json()["detail"]["attempted"] == ["osrm-driving"]


def test_options_and_detail(client):
    options = client.post("/api/routes/options", json=BODY).json()
    assert options[0]["route_numbers"] == ["506"]

    detail = client.post("/api/routes/options/detail", json={**BODY, "selected_option_index": 0})
    assert detail.status_code == 200
    assert detail.json()["source"] == "itinerary"
    assert detail.json()["legs"][0]["mode"] == "walk"


def test_detail_unknown_option(client):
    resp = client.post("/api/routes/options/detail", json={**BODY, "selected_option_index": 3})
    assert resp.status_code == 404


def test_bus_segment_unknown_stop(client):
    resp = client.post(
        "/api/bus/geometry/segment",
        json={"route_number": "10", "from_stop_code": "A", "to_stop_code": "Z"},
    )
    assert resp.status_code == 404


def test_cache_stats_and_clear(client):
    client.post("/api/routes/resolve", json=BODY)
    client.post("/api/routes/resolve", json=BODY)

    stats = client.get("/api/cache/stats").json()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["hit_rate"] == 50.0
    assert stats["cached_count"] == 1
    assert stats["ttl_seconds"] == 1800

    assert client.delete("/api/cache").json() == {"cleared": 1}
    assert client.get("/api/cache/stats").json()["cached_count"] == 0


def test_uninitialized_resolver(monkeypatch):
    monkeypatch.setattr(routes, "resolver", None)
    app = FastAPI()
    app.include_router(routes.router)
    resp = TestClient(app).post("/api/routes/resolve", json=BODY)
    assert resp.status_code == 503
