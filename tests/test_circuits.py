from coopbus.constants import TIPO_INTERPROVINCIAL, TIPO_INTRAPROVINCIAL
from coopbus.services import circuit_service


def test_config_defaults_created_on_first_read(client, seed):
    resp = client.get(f"/api/cooperativas/{seed.coop.id}/configuracion-frecuencias")
    assert resp.status_code == 200
    body = resp.json()
    assert body["horaInicioOperacion"] == "05:00"
    assert body["horaFinOperacion"] == "21:00"
    assert body["maxHorasDiariasChofer"] == 8
    assert body["intervaloMinimoFrecuenciasMinutos"] == 30


def test_config_partial_update(client, seed):
    url = f"/api/cooperativas/{seed.coop.id}/configuracion-frecuencias"
    resp = client.put(url, json={"horaFinOperacion": "22:30", "precioDiesel": 2.1})
    assert resp.status_code == 200
    assert resp.json()["horaFinOperacion"] == "22:30"
    assert resp.json()["precioDiesel"] == 2.1
    # untouched fields keep their value
    assert resp.json()["horaInicioOperacion"] == "05:00"


def test_config_rejects_inconsistent_values(client, seed):
    url = f"/api/cooperativas/{seed.coop.id}/configuracion-frecuencias"
    assert client.put(url, json={"horaInicioOperacion": "22:00"}).status_code == 400
    assert client.put(url, json={"maxHorasExcepcionales": 6}).status_code == 400
    assert client.put(url, json={"intervaloMinimoFrecuenciasMinutos": 0}).status_code == 400


def test_config_unknown_cooperativa(client, db):
    assert client.get("/api/cooperativas/999/configuracion-frecuencias").status_code == 404


def test_every_ordered_pair_is_a_circuit(db, seed):
    circuitos = circuit_service.calcular_circuitos(db, seed.coop.id)
    assert len(circuitos) == 12
    pares = {(c["terminal_origen_id"], c["terminal_destino_id"]) for c in circuitos}
    assert len(pares) == 12
    assert all(o != d for o, d in pares)

    nombres = [(c["terminal_origen_nombre"].lower(), c["terminal_destino_nombre"].lower()) for c in circuitos]
    assert nombres == sorted(nombres)


def test_circuit_classification_and_stops(db, seed):
    circuitos = {
        (c["terminal_origen_id"], c["terminal_destino_id"]): c
        for c in circuit_service.calcular_circuitos(db, seed.coop.id)
    }

    quito_ambato = circuitos[(seed.quito.id, seed.ambato.id)]
    assert quito_ambato["tipo_frecuencia"] == TIPO_INTERPROVINCIAL
    assert quito_ambato["descanso_minutos"] == 120
    assert 60 <= quito_ambato["duracion_minutos"] < 240
    assert quito_ambato["max_paradas_permitidas"] == 1

    ambato_banos = circuitos[(seed.ambato.id, seed.banos.id)]
    assert ambato_banos["tipo_frecuencia"] == TIPO_INTRAPROVINCIAL
    assert ambato_banos["descanso_minutos"] == 30
    assert ambato_banos["max_paradas_permitidas"] == 0

    for circuito in circuitos.values():
        assert circuito["precio_sugerido"] >= 0.50


def test_intermediate_stop_lies_on_the_way(db, seed):
    candidatos = [seed.quito, seed.latacunga, seed.ambato, seed.banos]
    paradas = circuit_service.paradas_intermedias(seed.quito, seed.ambato, candidatos, 2, 150)
    assert [p["ciudad"] for p in paradas] == ["Latacunga"]
    assert 0 < paradas[0]["minutos_desde_origen"] < 150

    vuelta = circuit_service.paradas_intermedias(seed.ambato, seed.quito, candidatos, 1, 150)
    assert [p["terminal_id"] for p in vuelta] == [seed.latacunga.id]
    assert circuit_service.paradas_intermedias(seed.quito, seed.ambato, candidatos, 0, 150) == []


def test_price_formula(db, seed):
    config = seed.config
    # 100 km x (0.02 + 0.005 x 1.80) x 1.30
    assert circuit_service.calcular_precio(100, config) == 3.77
    assert circuit_service.calcular_precio(1, config) == 0.50


def test_max_paradas_by_duration():
    assert circuit_service.max_paradas_permitidas(TIPO_INTRAPROVINCIAL, 300) == 0
    assert circuit_service.max_paradas_permitidas(TIPO_INTERPROVINCIAL, 45) == 0
    assert circuit_service.max_paradas_permitidas(TIPO_INTERPROVINCIAL, 180) == 1
    assert circuit_service.max_paradas_permitidas(TIPO_INTERPROVINCIAL, 400) == 2
    assert circuit_service.max_paradas_permitidas(TIPO_INTERPROVINCIAL, 600) == 3


def test_terminal_sync_limits_circuits(client, db, seed):
    url = f"/api/cooperativas/{seed.coop.id}/terminales"
    resp = client.put(url, json={"terminalIds": [seed.quito.id, seed.ambato.id]})
    assert resp.status_code == 200
    assert len(circuit_service.calcular_circuitos(db, seed.coop.id)) == 2

    assert client.put(url, json={"terminalIds": [9999]}).status_code == 404
