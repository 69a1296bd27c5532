import pytest
import requests

from coopbus.services.route_service import RouteService, haversine_km

QUITO = (-0.2295, -78.5243)
AMBATO = (-1.2491, -78.6168)


class FakeResponse:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.exceptions.HTTPError(f"{self.status} error")

    def json(self):
        return self.payload


@pytest.fixture
def graphhopper(monkeypatch):
    monkeypatch.setenv("GRAPHHOPPER_API_KEY", "test-key")
    return RouteService(settings={"routing": {"provider_url": "https://graphhopper.test/api/1/route"}})


def test_haversine_distance():
    assert haversine_km(*QUITO, *QUITO) == 0
    assert 110 < haversine_km(*QUITO, *AMBATO) < 118


def test_calcular_endpoint_uses_estimate_without_provider(client):
    resp = client.post(
        "/api/rutas/calcular",
        json={"origen": {"lat": QUITO[0], "lng": QUITO[1]}, "destino": {"lat": AMBATO[0], "lng": AMBATO[1]}},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["provider"] == "HAVERSINE"
    assert 140 < body["distanciaKm"] < 155
    # 60 km/h average
    assert abs(body["duracionMinutos"] - body["distanciaKm"]) <= 1

    fuera = {"origen": {"lat": 95, "lng": 0}, "destino": {"lat": 0, "lng": 0}}
    assert client.post("/api/rutas/calcular", json=fuera).status_code == 422


def test_graphhopper_route(graphhopper, monkeypatch):
    llamadas = []

    def fake_get(url, params=None, timeout=None):
        llamadas.append(params)
        return FakeResponse({"paths": [{"distance": 136400.0, "time": 8820000}]})

    monkeypatch.setattr(graphhopper.session, "get", fake_get)
    ruta = graphhopper.calcular(QUITO, AMBATO)
    assert ruta == {"distancia_km": 136.4, "duracion_minutos": 147, "provider": "GraphHopper"}
    assert ("key", "test-key") in llamadas[0]

    # cached per coordinate pair
    graphhopper.calcular(QUITO, AMBATO)
    assert len(llamadas) == 1
    assert graphhopper.get_cache_stats()["cache_size"] == 1


def test_graphhopper_failure_falls_back(graphhopper, monkeypatch):
    def fake_get(url, params=None, timeout=None):
        raise requests.exceptions.ConnectionError("unreachable")

    monkeypatch.setattr(graphhopper.session, "get", fake_get)
    assert graphhopper.calcular(QUITO, AMBATO)["provider"] == "HAVERSINE"


def test_graphhopper_empty_or_error_payload(graphhopper, monkeypatch):
    monkeypatch.setattr(graphhopper.session, "get", lambda *a, **kw: FakeResponse({"paths": []}))
    assert graphhopper.calcular(QUITO, AMBATO)["provider"] == "HAVERSINE"

    graphhopper.clear_cache()
    monkeypatch.setattr(graphhopper.session, "get", lambda *a, **kw: FakeResponse({"message": "limit"}, status=429))
    assert graphhopper.calcular(QUITO, AMBATO)["provider"] == "HAVERSINE"


def test_without_api_key_no_request(monkeypatch):
    monkeypatch.delenv("GRAPHHOPPER_API_KEY", raising=False)
    servicio = RouteService(settings={"routing": {"provider_url": "https://graphhopper.test/api/1/route"}})

    def fake_get(*args, **kwargs):
        raise AssertionError("no request expected")

    monkeypatch.setattr(servicio.session, "get", fake_get)
    assert servicio.calcular(QUITO, AMBATO)["provider"] == "HAVERSINE"


def test_route_cache_admin(client):
    client.post("/api/rutas/calcular", json={"origen": {"lat": 0, "lng": 0}, "destino": {"lat": 0.1, "lng": 0.1}})
    assert client.get("/api/admin/rutas/cache-stats").json()["cache_size"] == 1
    assert client.post("/api/admin/rutas/clear-cache").status_code == 200
    assert client.get("/api/admin/rutas/cache-stats").json()["cache_size"] == 0
