from datetime import time

from coopbus import models
from tests.conftest import proximo_lunes


def test_create_and_list_buses(client, seed):
    url = f"/api/cooperativas/{seed.coop.id}/buses"
    resp = client.post(url, json={"numeroInterno": "10", "placa": "pba-110", "capacidadPiso1": 36, "capacidadPiso2": 12})
    assert resp.status_code == 201
    bus = resp.json()
    assert bus["placa"] == "PBA-110"
    assert bus["capacidadAsientos"] == 48
    assert bus["dosPisos"] is True

    assert client.post(url, json={"numeroInterno": "11", "placa": "PBA-110"}).status_code == 400
    assert len(client.get(url).json()) == 5
    assert len(client.get(url, params={"estado": "DISPONIBLE"}).json()) == 5


def test_update_bus_state(client, seed):
    resp = client.put(f"/api/buses/{seed.buses[0].id}", json={"estado": "MANTENIMIENTO"})
    assert resp.status_code == 200
    assert resp.json()["estado"] == "MANTENIMIENTO"
    assert client.put(f"/api/buses/{seed.buses[0].id}", json={"estado": "VOLANDO"}).status_code == 400
    assert client.get("/api/buses/9999").status_code == 404


def test_assign_drivers_rules(client, seed):
    url = f"/api/buses/{seed.buses[0].id}/choferes"
    c = [ch.id for ch in seed.choferes]

    resp = client.put(url, json=[{"choferId": c[0], "tipo": "PRINCIPAL"}, {"choferId": c[1], "tipo": "ALTERNO"}])
    assert resp.status_code == 200
    assert {(d["choferId"], d["tipo"]) for d in resp.json()} == {(c[0], "PRINCIPAL"), (c[1], "ALTERNO")}

    demasiados = [{"choferId": cid, "tipo": "ALTERNO"} for cid in c]
    demasiados[0]["tipo"] = "PRINCIPAL"
    assert client.put(url, json=demasiados).status_code == 400
    dos_principales = [{"choferId": c[0], "tipo": "PRINCIPAL"}, {"choferId": c[1], "tipo": "PRINCIPAL"}]
    assert client.put(url, json=dos_principales).status_code == 400
    sin_principal = [{"choferId": c[0], "tipo": "ALTERNO"}]
    assert client.put(url, json=sin_principal).status_code == 400
    repetido = [{"choferId": c[0], "tipo": "PRINCIPAL"}, {"choferId": c[0], "tipo": "ALTERNO"}]
    assert client.put(url, json=repetido).status_code == 400
    oficinista = [{"choferId": seed.oficinista.id, "tipo": "PRINCIPAL"}]
    assert client.put(url, json=oficinista).status_code == 400

    # failed updates leave the previous assignment in place
    assert len(client.get(url).json()) == 2
    assert client.put(url, json=[]).json() == []


def test_stop_days(client, seed):
    lunes = proximo_lunes()
    body = {"busId": seed.buses[0].id, "fecha": lunes.isoformat(), "motivo": "mantenimiento"}
    resp = client.post("/api/dias-parada", json=body)
    assert resp.status_code == 201
    assert resp.json()["motivo"] == "MANTENIMIENTO"

    assert client.post("/api/dias-parada", json=body).status_code == 400
    assert client.post("/api/dias-parada", json={**body, "fecha": "2030-01-02", "motivo": "VACACIONES"}).status_code == 400

    url = f"/api/cooperativas/{seed.coop.id}/dias-parada"
    assert len(client.get(url, params={"desde": lunes.isoformat(), "hasta": lunes.isoformat()}).json()) == 1

    disponibles = client.get(f"/api/cooperativas/{seed.coop.id}/buses-disponibles", params={"fecha": lunes.isoformat()})
    assert seed.buses[0].id not in {b["id"] for b in disponibles.json()}

    assert client.delete(f"/api/dias-parada/{resp.json()['id']}").status_code == 200
    assert client.get(url).json() == []
    assert client.delete(f"/api/dias-parada/{resp.json()['id']}").status_code == 404


def test_resumen_disponibilidad(client, db, seed):
    lunes = proximo_lunes()
    seed.buses[1].estado = "MANTENIMIENTO"
    seed.buses[2].estado = "EN_SERVICIO"
    db.add(models.DiaParadaBus(bus_id=seed.buses[3].id, fecha=lunes, motivo="EXCESO_CAPACIDAD"))
    db.add(models.Frecuencia(
        cooperativa_id=seed.coop.id, origen_id=seed.quito.id, destino_id=seed.ambato.id,
        hora_salida=time(6, 0), duracion_minutos=150, dias_operacion="LUNES", bus_id=seed.buses[0].id,
        precio=3.5, activa=True,
    ))
    db.commit()

    body = client.get(
        f"/api/cooperativas/{seed.coop.id}/disponibilidad/resumen", params={"fecha": lunes.isoformat()}
    ).json()
    assert body["totalBuses"] == 4
    assert body["busesDisponibles"] == 2
    assert body["busesMantenimiento"] == 1
    assert body["busesEnServicio"] == 1
    assert body["busesParada"] == 1
    assert body["frecuenciasActivas"] == 1
    assert body["excesoBuses"] == 1


def test_panel_disponibilidad(client, seed, viaje):
    client.put(f"/api/buses/{seed.buses[0].id}/choferes", json=[{"choferId": seed.choferes[0].id}])
    body = client.get(
        f"/api/cooperativas/{seed.coop.id}/disponibilidad/panel", params={"fecha": viaje.fecha.isoformat()}
    ).json()

    chofer = next(c for c in body["choferes"] if c["choferId"] == seed.choferes[0].id)
    assert chofer["horasTrabajadasHoy"] == 2.5
    assert chofer["horasDisponiblesHoy"] == 5.5
    assert chofer["viajesHoy"] == 1

    bus = next(b for b in body["buses"] if b["busId"] == seed.buses[0].id)
    assert bus["frecuenciasHoy"] == 1
    assert bus["horasDisponiblesHoy"] == 15.5
    assert bus["choferesAsignados"][0]["tipo"] == "PRINCIPAL"


def test_asignaciones(client, seed):
    frecuencia = client.post(
        f"/api/cooperativas/{seed.coop.id}/frecuencias",
        json={"origenId": seed.quito.id, "destinoId": seed.ambato.id, "horaSalida": "08:00",
              "duracionMinutos": 150, "diasOperacion": ["LUNES"]},
    ).json()
    lunes = proximo_lunes().isoformat()
    body = {"busId": seed.buses[0].id, "frecuenciaId": frecuencia["id"], "fechaInicio": lunes}

    resp = client.post("/api/asignaciones", json=body)
    assert resp.status_code == 201
    assert resp.json()["estado"] == "ACTIVA"
    assert client.post("/api/asignaciones", json=body).status_code == 400

    asignacion_id = resp.json()["id"]
    suspendida = client.put(f"/api/asignaciones/{asignacion_id}/estado", json={"estado": "SUSPENDIDA"})
    assert suspendida.json()["estado"] == "SUSPENDIDA"
    finalizada = client.post(f"/api/asignaciones/{asignacion_id}/finalizar")
    assert finalizada.json()["estado"] == "FINALIZADA"
    assert finalizada.json()["fechaFin"] is not None
    assert client.put(f"/api/asignaciones/{asignacion_id}/estado", json={"estado": "ACTIVA"}).status_code == 400

    assert len(client.get(f"/api/cooperativas/{seed.coop.id}/asignaciones").json()) == 1
