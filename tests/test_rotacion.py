from datetime import time, timedelta

import pytest

from coopbus import models
from tests.conftest import proximo_lunes

CSV = """turno,hora_salida,origen,destino,duracion_minutos
1,06:00,Quito,Ambato,150
1,10:00,Terminal Ambato,Quitumbe,150
2,07:00,Ambato,Baños,40
"""


def base(seed):
    return f"/api/cooperativas/{seed.coop.id}/plantillas-rotacion"


@pytest.fixture
def plantilla_id(client, seed):
    resp = client.post(f"{base(seed)}/importar", json={"contenidoCsv": CSV, "nombrePlantilla": "Sierra centro"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["exitoso"] is True
    return body["plantillaId"]


def rotacion(seed, plantilla_id, dias=3, **extra):
    lunes = proximo_lunes()
    body = {
        "plantillaId": plantilla_id,
        "fechaInicio": lunes.isoformat(),
        "fechaFin": (lunes + timedelta(days=dias - 1)).isoformat(),
        "busIds": [seed.buses[0].id, seed.buses[1].id],
    }
    body.update(extra)
    return body


def test_import_counts_turnos(client, seed, plantilla_id):
    plantillas = client.get(base(seed)).json()
    assert len(plantillas) == 1
    assert plantillas[0]["totalTurnos"] == 2
    assert len(plantillas[0]["turnos"]) == 3
    assert plantillas[0]["turnos"][0]["origen"] == "Quitumbe"


def test_import_rejects_bad_rows(client, db, seed):
    csv = CSV + "3,25:99,Quito,Ambato,150\n4,08:00,Guayaquil,Ambato,300\n5,09:00,Quito,Quito,10\nx,09:00,Quito,Ambato,150\n"
    body = client.post(
        f"{base(seed)}/importar", json={"contenidoCsv": csv, "nombrePlantilla": "Con errores"}
    ).json()
    assert body["exitoso"] is False
    assert body["plantillaId"] is None
    assert len(body["errores"]) == 4
    assert db.query(models.PlantillaRotacion).count() == 0


def test_import_rejects_missing_columns(client, seed):
    body = client.post(
        f"{base(seed)}/importar",
        json={"contenidoCsv": "turno,hora_salida\n1,06:00\n", "nombrePlantilla": "Incompleta"},
    ).json()
    assert body["exitoso"] is False
    assert "origen" in body["errores"][0]


def test_preview_rotates_turnos(client, seed, plantilla_id):
    resp = client.post(f"{base(seed)}/preview", json=rotacion(seed, plantilla_id))
    assert resp.status_code == 200
    body = resp.json()
    assert body["diasTotales"] == 3
    assert body["busesParticipantes"] == 2
    assert body["frecuenciasAGenerar"] == 9
    assert body["conflictos"] == []

    turnos = {(a["fecha"], a["busId"]): a["turno"] for a in body["asignaciones"]}
    lunes = proximo_lunes()
    for d in range(3):
        fecha = (lunes + timedelta(days=d)).isoformat()
        for i, bus in enumerate(seed.buses[:2]):
            assert turnos[(fecha, bus.id)] == (i + d) % 2 + 1


def test_preview_reports_stop_days(client, db, seed, plantilla_id):
    db.add(models.DiaParadaBus(bus_id=seed.buses[1].id, fecha=proximo_lunes(), motivo="MANTENIMIENTO"))
    db.commit()
    body = client.post(f"{base(seed)}/preview", json=rotacion(seed, plantilla_id)).json()
    assert len(body["conflictos"]) == 1
    assert body["frecuenciasAGenerar"] == 8


def test_preview_validation(client, seed, plantilla_id):
    assert client.post(f"{base(seed)}/preview", json=rotacion(seed, plantilla_id, busIds=[])).status_code == 400
    assert client.post(f"{base(seed)}/preview", json=rotacion(seed, 9999)).status_code == 404
    lunes = proximo_lunes()
    body = rotacion(seed, plantilla_id, fechaFin=(lunes - timedelta(days=1)).isoformat())
    assert client.post(f"{base(seed)}/preview", json=body).status_code == 400


def test_generar_creates_viajes(client, db, seed, plantilla_id):
    body = client.post(
        f"{base(seed)}/generar", json=rotacion(seed, plantilla_id, asignarChoferesAutomaticamente=True)
    ).json()
    assert body["frecuenciasCreadas"] == 9
    assert body["frecuenciasConAdvertencias"] == 0
    viajes = db.query(models.Viaje).all()
    assert len(viajes) == 9
    assert all(v.chofer_id is not None for v in viajes)
    assert all(v.precio >= 0.50 for v in viajes)


def test_generar_twice_and_overwrite(client, db, seed, plantilla_id):
    client.post(f"{base(seed)}/generar", json=rotacion(seed, plantilla_id))

    repetida = client.post(f"{base(seed)}/generar", json=rotacion(seed, plantilla_id)).json()
    assert repetida["frecuenciasCreadas"] == 0
    assert repetida["frecuenciasOmitidas"] == 9

    reemplazo = client.post(
        f"{base(seed)}/generar", json=rotacion(seed, plantilla_id, sobreescribirExistentes=True)
    ).json()
    assert reemplazo["frecuenciasCreadas"] == 9
    cancelados = db.query(models.Viaje).filter(models.Viaje.estado == "CANCELADO").count()
    assert cancelados == 9


def test_delete_plantilla(client, seed, plantilla_id):
    assert client.delete(f"{base(seed)}/{plantilla_id}").status_code == 200
    assert client.get(base(seed)).json() == []
    assert client.delete(f"{base(seed)}/{plantilla_id}").status_code == 404


def test_turno_colliding_with_stored_viaje_is_skipped(client, seed, plantilla_id, viaje):
    """The fixture viaje runs Quito -> Ambato at 08:00 on bus PBA-101, in the middle of turno 1."""
    body = client.post(f"{base(seed)}/preview", json=rotacion(seed, plantilla_id, dias=1)).json()
    assert body["frecuenciasAGenerar"] == 1
    assert len(body["conflictos"]) == 1
    assert "PBA-101" in body["conflictos"][0]
    assert [a["busPlaca"] for a in body["asignaciones"]] == ["PBA-102"]


def test_drivers_keep_their_stored_viajes(client, db, seed, plantilla_id):
    for chofer in seed.choferes[1:]:
        chofer.activo = False
    db.add(models.Viaje(
        cooperativa_id=seed.coop.id,
        bus_id=seed.buses[3].id,
        chofer_id=seed.choferes[0].id,
        fecha=proximo_lunes(),
        hora_salida=time(8, 0),
        hora_llegada=time(10, 30),
        origen_id=seed.quito.id,
        destino_id=seed.ambato.id,
        precio=5.00,
        estado="PROGRAMADO",
    ))
    db.commit()

    body = client.post(
        f"{base(seed)}/generar", json=rotacion(seed, plantilla_id, dias=1, asignarChoferesAutomaticamente=True)
    ).json()
    assert body["frecuenciasCreadas"] == 3
    # the only driver is on the 08:00 trip, which blocks every rotation trip that day
    assert body["frecuenciasConAdvertencias"] == 3
