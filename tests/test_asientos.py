import pytest

from coopbus import models


@pytest.fixture
def bus_dos_pisos(db, seed):
    bus = models.Bus(
        cooperativa_id=seed.coop.id, numero_interno="20", placa="PBA-120",
        capacidad_piso_1=40, capacidad_piso_2=20, estado="DISPONIBLE", activo=True,
    )
    db.add(bus)
    db.commit()
    return bus


def layout(client, bus_id, **body):
    return client.post(f"/api/buses/{bus_id}/asientos/generate-layout", json=body)


def test_generate_single_floor(client, seed):
    bus_id = seed.buses[0].id
    resp = layout(client, bus_id, filas=11, columnas=4)
    assert resp.status_code == 201
    assert resp.json() == {"asientosCreados": 44, "capacidadPiso": 40, "asientosExcedentes": 4}

    body = client.get(f"/api/buses/{bus_id}/asientos").json()
    assert body["filas"] == 11
    assert body["columnas"] == 4
    numeros = [a["numeroAsiento"] for a in body["asientos"]]
    assert numeros[:5] == ["1A", "1B", "1C", "1D", "2A"]
    assert numeros[-1] == "11D"
    assert len(set(numeros)) == 44


def test_generate_requires_overwrite(client, seed):
    bus_id = seed.buses[0].id
    layout(client, bus_id, filas=10, columnas=4)
    assert layout(client, bus_id, filas=10, columnas=4).status_code == 400
    assert layout(client, bus_id, filas=9, columnas=4, sobrescribir=True).status_code == 201
    assert len(client.get(f"/api/buses/{bus_id}/asientos").json()["asientos"]) == 36


def test_generate_validates_grid(client, seed):
    bus_id = seed.buses[0].id
    assert layout(client, bus_id, filas=10, columnas=6).status_code == 400
    assert layout(client, bus_id, filas=0, columnas=4).status_code == 400
    assert layout(client, bus_id, filas=5, columnas=4, piso=2).status_code == 400
    assert layout(client, 9999, filas=5, columnas=4).status_code == 404


def test_upper_floor_numbering_follows_lower_floor(client, bus_dos_pisos):
    bus_id = bus_dos_pisos.id
    layout(client, bus_id, filas=10, columnas=4)
    layout(client, bus_id, filas=5, columnas=4, piso=2)

    asientos = client.get(f"/api/buses/{bus_id}/asientos").json()["asientos"]
    superiores = [a for a in asientos if a["piso"] == 2]
    assert superiores[0]["numeroAsiento"] == "11A"
    assert superiores[-1]["numeroAsiento"] == "15D"

    vip = superiores[0]["id"]
    client.put(f"/api/buses/{bus_id}/asientos", json=[{"id": vip, "tipoAsiento": "VIP"}])

    layout(client, bus_id, filas=8, columnas=4, sobrescribir=True)
    asientos = client.get(f"/api/buses/{bus_id}/asientos").json()["asientos"]
    superiores = [a for a in asientos if a["piso"] == 2]
    assert len(superiores) == 20
    assert superiores[0]["numeroAsiento"] == "9A"
    assert superiores[0]["tipoAsiento"] == "VIP"
    assert superiores[-1]["numeroAsiento"] == "13D"


def test_update_and_delete_seats(client, seed):
    bus_id = seed.buses[0].id
    layout(client, bus_id, filas=2, columnas=4)
    asientos = client.get(f"/api/buses/{bus_id}/asientos").json()["asientos"]

    resp = client.put(
        f"/api/buses/{bus_id}/asientos",
        json=[{"id": asientos[0]["id"], "tipoAsiento": "ACONDICIONADO"}, {"id": asientos[1]["id"], "habilitado": False}],
    )
    assert resp.status_code == 200
    actualizados = {a["id"]: a for a in resp.json()["asientos"]}
    assert actualizados[asientos[0]["id"]]["tipoAsiento"] == "ACONDICIONADO"
    assert actualizados[asientos[1]["id"]]["habilitado"] is False

    assert client.put(f"/api/buses/{bus_id}/asientos", json=[{"id": asientos[0]["id"], "tipoAsiento": "CAMA"}]).status_code == 400
    assert client.put(f"/api/buses/{bus_id}/asientos", json=[{"id": 99999}]).status_code == 404

    assert client.delete(f"/api/buses/{bus_id}/asientos").json() == {"count": 8}
    assert client.get(f"/api/buses/{bus_id}/asientos").json()["asientos"] == []
