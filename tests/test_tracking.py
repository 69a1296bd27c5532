from datetime import datetime, timedelta

import pytest


@pytest.fixture
def en_ruta(client, seed, viaje):
    assert client.post(f"/api/viajes/{viaje.id}/iniciar").status_code == 200
    return viaje


def reportar(client, viaje, timestamp, lat=-0.5, lng=-78.56, **extra):
    body = {"latitud": lat, "longitud": lng, "timestamp": timestamp.isoformat(), **extra}
    return client.post(f"/api/viajes/{viaje.id}/posicion", json=body)


def test_position_requires_en_ruta(client, viaje):
    assert reportar(client, viaje, datetime.now()).status_code == 400
    assert client.get(f"/api/viajes/{viaje.id}/posicion").status_code == 404


def test_position_validation(client, en_ruta):
    assert reportar(client, en_ruta, datetime.now(), lat=95).status_code == 400
    assert reportar(client, en_ruta, datetime.now(), lng=-181).status_code == 400
    assert reportar(client, en_ruta, datetime.now(), velocidadKmh=-5).status_code == 400


def test_current_position_and_history(client, en_ruta):
    t0 = datetime.now().replace(microsecond=0)
    primera = reportar(client, en_ruta, t0, lat=-0.40, velocidadKmh=62.5, provider="gps")
    assert primera.status_code == 200
    assert primera.json()["provider"] == "GPS"
    reportar(client, en_ruta, t0 + timedelta(seconds=30), lat=-0.45)

    actual = client.get(f"/api/viajes/{en_ruta.id}/posicion").json()
    assert actual["latitud"] == -0.45

    historial = client.get(f"/api/viajes/{en_ruta.id}/historial").json()
    assert [p["latitud"] for p in historial] == [-0.40, -0.45]

    recientes = client.get(
        f"/api/viajes/{en_ruta.id}/historial", params={"desde": (t0 + timedelta(seconds=10)).isoformat()}
    ).json()
    assert [p["latitud"] for p in recientes] == [-0.45]


def test_out_of_order_report_keeps_newer_position(client, en_ruta):
    t0 = datetime.now().replace(microsecond=0)
    reportar(client, en_ruta, t0 + timedelta(minutes=1), lat=-0.60)
    respuesta = reportar(client, en_ruta, t0, lat=-0.55).json()
    assert respuesta["latitud"] == -0.60

    # the same answer once the cache is gone
    assert client.post(f"/api/admin/tracking/clear-cache?viaje_id={en_ruta.id}").status_code == 200
    assert client.get(f"/api/viajes/{en_ruta.id}/posicion").json()["latitud"] == -0.60

    historial = client.get(f"/api/viajes/{en_ruta.id}/historial").json()
    assert [p["latitud"] for p in historial] == [-0.55, -0.60]


def test_panel_lists_active_viajes(client, seed, en_ruta):
    reportar(client, en_ruta, datetime.now(), lat=-0.70)
    panel = client.get("/api/tracking/panel", params={"cooperativa_id": seed.coop.id}).json()
    assert len(panel) == 1
    assert panel[0]["busPlaca"] == "PBA-101"
    assert panel[0]["posicion"]["latitud"] == -0.70

    assert client.get("/api/tracking/panel", params={"cooperativa_id": seed.otra.id}).json() == []

    client.post(f"/api/viajes/{en_ruta.id}/finalizar")
    assert client.get("/api/tracking/panel").json() == []


def test_tracking_cache_stats(client, en_ruta):
    reportar(client, en_ruta, datetime.now())
    assert client.get("/api/admin/tracking/cache-stats").json()["cache_size"] == 1
    client.post("/api/admin/tracking/clear-cache")
    assert client.get("/api/admin/tracking/cache-stats").json()["cache_size"] == 0
