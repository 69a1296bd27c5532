from datetime import time, timedelta

from coopbus import models
from tests.conftest import proximo_lunes


def agregar_viajes(db, seed, chofer, fecha, tramos):
    for salida, llegada in tramos:
        db.add(models.Viaje(
            cooperativa_id=seed.coop.id, bus_id=seed.buses[1].id, chofer_id=chofer.id, fecha=fecha,
            hora_salida=salida, hora_llegada=llegada, origen_id=seed.ambato.id, destino_id=seed.banos.id,
            precio=1.0, estado="PROGRAMADO",
        ))
    db.commit()


def test_list_viajes(client, seed, viaje):
    pagina = client.get("/api/viajes", params={"fecha": viaje.fecha.isoformat()}).json()
    assert pagina["totalElements"] == 1
    assert pagina["content"][0]["horaSalida"] == "08:00"
    assert pagina["content"][0]["choferNombre"] == "Luis Andrade"

    assert client.get("/api/viajes", params={"estado": "EN_RUTA"}).json()["totalElements"] == 0
    assert client.get(f"/api/cooperativas/{seed.otra.id}/viajes").json()["totalElements"] == 0
    assert client.get(f"/api/cooperativas/{seed.coop.id}/viajes").json()["content"][0]["id"] == viaje.id
    assert client.get("/api/viajes/9999").status_code == 404


def test_viaje_del_dia(client, seed, viaje):
    client.post("/api/reservas", json={"viajeId": viaje.id, "asientos": ["1A", "1B"], "clienteNombre": "Rosa Pilco"})
    chofer = seed.choferes[0].id

    body = client.get(f"/api/choferes/{chofer}/viaje-del-dia", params={"fecha": viaje.fecha.isoformat()}).json()
    assert body["id"] == viaje.id
    assert body["horaSalidaProgramada"] == "08:00"
    assert body["capacidadTotal"] == 40
    assert body["totalPasajeros"] == 2
    assert body["pasajeros"][0]["clienteNombre"] == "Rosa Pilco"

    otro_dia = (viaje.fecha + timedelta(days=1)).isoformat()
    assert client.get(f"/api/choferes/{chofer}/viaje-del-dia", params={"fecha": otro_dia}).status_code == 404
    assert client.get("/api/choferes/9999/viaje-del-dia").status_code == 404


def test_start_and_finish(client, db, seed, viaje):
    assert client.post(f"/api/viajes/{viaje.id}/finalizar").status_code == 400
    assert client.post(f"/api/viajes/{viaje.id}/iniciar", json={"choferId": seed.choferes[1].id}).status_code == 400

    iniciado = client.post(f"/api/viajes/{viaje.id}/iniciar", json={"choferId": seed.choferes[0].id})
    assert iniciado.status_code == 200
    assert iniciado.json()["estado"] == "EN_RUTA"
    db.refresh(seed.buses[0])
    assert seed.buses[0].estado == "EN_SERVICIO"
    assert client.post(f"/api/viajes/{viaje.id}/iniciar").status_code == 400

    finalizado = client.post(f"/api/viajes/{viaje.id}/finalizar", json={"observaciones": "Sin novedad"})
    assert finalizado.json()["estado"] == "FINALIZADO"
    assert finalizado.json()["observaciones"] == "Sin novedad"
    db.refresh(seed.buses[0])
    assert seed.buses[0].estado == "DISPONIBLE"

    # finished trips drop off the driver's day
    chofer = seed.choferes[0].id
    assert client.get(f"/api/choferes/{chofer}/viaje-del-dia", params={"fecha": viaje.fecha.isoformat()}).status_code == 404


def test_weekly_hours(client, db, seed):
    chofer = seed.choferes[1]
    lunes = proximo_lunes()
    # 540 min, extended
    agregar_viajes(db, seed, chofer, lunes, [(time(5, 0), time(8, 0)), (time(9, 0), time(12, 0)), (time(13, 0), time(16, 0))])
    # 660 min, above the exceptional limit
    agregar_viajes(db, seed, chofer, lunes + timedelta(days=1),
                   [(time(5, 0), time(7, 45)), (time(8, 0), time(10, 45)), (time(11, 0), time(13, 45)), (time(14, 0), time(16, 45))])
    # 540 min, extended
    agregar_viajes(db, seed, chofer, lunes + timedelta(days=2), [(time(5, 0), time(14, 0))])
    # 120 min
    agregar_viajes(db, seed, chofer, lunes + timedelta(days=3), [(time(5, 0), time(7, 0))])

    body = client.get(f"/api/choferes/{chofer.id}/resumen-horas", params={"fecha": (lunes + timedelta(days=4)).isoformat()}).json()
    assert body["semanaInicio"] == lunes.isoformat()
    assert body["semanaFin"] == (lunes + timedelta(days=6)).isoformat()
    assert body["totalHorasSemana"] == 31
    assert body["totalMinutosSemana"] == 0
    assert body["diasConJornadaExtendida"] == 3
    assert body["diasRestantesJornadaExtendida"] == 0
    assert len(body["alertas"]) == 2

    martes = body["diasSemana"][1]
    assert martes["diaSemana"] == "MARTES"
    assert (martes["horasTrabajadas"], martes["minutosTrabajados"]) == (11, 0)
    assert martes["jornadaExtendida"] is True
