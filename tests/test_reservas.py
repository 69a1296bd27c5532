import re
from datetime import datetime, time, timedelta

from coopbus import models
from coopbus.services import booking_service
from tests.conftest import cliente_headers, personal_headers


def reservar(client, viaje, asientos, headers=None, **extra):
    body = {"viajeId": viaje.id, "asientos": asientos, "clienteEmail": "maria@correo.ec", **extra}
    return client.post("/api/reservas", json=body, headers=headers)


def estados(client, viaje):
    return {a["numeroAsiento"]: a["estado"] for a in client.get(f"/api/viajes/{viaje.id}/asientos").json()}


def test_seats_of_a_viaje(client, viaje):
    asientos = client.get(f"/api/viajes/{viaje.id}/asientos").json()
    assert len(asientos) == 40
    assert {a["estado"] for a in asientos} == {"DISPONIBLE"}
    assert {a["precio"] for a in asientos} == {5.0}

    disponibilidad = client.get(f"/api/viajes/{viaje.id}/disponibilidad").json()
    assert disponibilidad == {"viajeId": viaje.id, "totalAsientos": 40, "disponibles": 40, "porTipo": {"NORMAL": 40}}

    bus = client.get(f"/api/viajes/{viaje.id}/bus").json()
    assert bus["placa"] == "PBA-101"
    assert bus["capacidadAsientos"] == 40


def test_reserve_holds_seats(client, viaje):
    resp = reservar(client, viaje, ["1a", "1B"])
    assert resp.status_code == 201
    reserva = resp.json()
    assert reserva["estado"] == "PENDIENTE"
    assert reserva["asientos"] == ["1A", "1B"]
    assert reserva["monto"] == 10.0
    assert reserva["origen"] == "Quitumbe"

    ocupados = estados(client, viaje)
    assert ocupados["1A"] == ocupados["1B"] == "RESERVADO"
    assert client.get(f"/api/viajes/{viaje.id}/disponibilidad").json()["disponibles"] == 38


def test_no_double_booking(client, viaje):
    assert reservar(client, viaje, ["2A"]).status_code == 201
    assert reservar(client, viaje, ["2A", "2B"]).status_code == 400
    assert reservar(client, viaje, ["2B", "2B"]).status_code == 400
    assert reservar(client, viaje, ["99Z"]).status_code == 400
    assert reservar(client, viaje, []).status_code == 400
    assert reservar(client, viaje, ["2B"], tipoPasajero="ESTUDIANTE").status_code == 400
    assert estados(client, viaje)["2B"] == "DISPONIBLE"


def test_disabled_seat_cannot_be_booked(client, db, viaje):
    asiento = db.query(models.Asiento).filter_by(bus_id=viaje.bus_id, numero_asiento="3C").one()
    asiento.habilitado = False
    db.commit()
    assert estados(client, viaje)["3C"] == "BLOQUEADO"
    assert reservar(client, viaje, ["3C"]).status_code == 400


def test_vip_surcharge_and_discount(client, db, viaje):
    asiento = db.query(models.Asiento).filter_by(bus_id=viaje.bus_id, numero_asiento="1A").one()
    asiento.tipo_asiento = "VIP"
    db.commit()

    reserva = reservar(client, viaje, ["1A", "1B"], tipoPasajero="TERCERA_EDAD").json()
    # (5.00 x 1.25 + 5.00) x 0.80
    assert reserva["monto"] == 9.0
    assert reserva["tipoPasajero"] == "TERCERA_EDAD"


def test_only_programado_viajes_accept_bookings(client, db, viaje):
    viaje.estado = "EN_RUTA"
    db.commit()
    assert reservar(client, viaje, ["1A"]).status_code == 400
    assert client.post("/api/reservas", json={"viajeId": 9999, "asientos": ["1A"]}).status_code == 404


def test_pending_reservation_expires(client, monkeypatch, viaje):
    reserva = reservar(client, viaje, ["4A"]).json()
    despues = datetime.now() + timedelta(minutes=16)
    monkeypatch.setattr(booking_service, "now", lambda: despues)

    assert client.get(f"/api/reservas/{reserva['id']}").json()["estado"] == "EXPIRADO"
    assert estados(client, viaje)["4A"] == "DISPONIBLE"
    assert reservar(client, viaje, ["4A"]).status_code == 201

    pago = client.post(f"/api/reservas/{reserva['id']}/pago", json={"metodoPago": "TARJETA"}).json()
    assert pago["estado"] == "RECHAZADO"


def test_expiry_sweep(client, monkeypatch, viaje):
    reservar(client, viaje, ["5A"])
    reservar(client, viaje, ["5B"])
    assert client.post("/api/admin/reservas/expirar").json() == {"count": 0}

    despues = datetime.now() + timedelta(minutes=16)
    monkeypatch.setattr(booking_service, "now", lambda: despues)
    assert client.post("/api/admin/reservas/expirar").json() == {"count": 2}


def test_payment_issues_ticket(client, viaje):
    reserva = reservar(client, viaje, ["6A", "6B"]).json()
    pago = client.post(f"/api/reservas/{reserva['id']}/pago", json={"metodoPago": "efectivo", "referencia": "caja 2"})
    assert pago.status_code == 200
    body = pago.json()
    assert body["estado"] == "APROBADO"
    assert re.fullmatch(r"AB-\d{8}-[A-Z0-9]{5}", body["boletoCodigo"])

    assert estados(client, viaje)["6A"] == "VENDIDO"
    assert client.get(f"/api/reservas/{reserva['id']}").json()["metodoPago"] == "EFECTIVO"

    boleto = client.get(f"/api/boletos/{body['boletoCodigo'].lower()}").json()
    assert boleto["reservaId"] == reserva["id"]
    assert boleto["asientos"] == ["6A", "6B"]
    assert boleto["busPlaca"] == "PBA-101"
    assert client.get(f"/api/reservas/{reserva['id']}/boleto").json()["codigo"] == body["boletoCodigo"]

    again = client.post(f"/api/reservas/{reserva['id']}/pago", json={"metodoPago": "EFECTIVO"}).json()
    assert again["estado"] == "RECHAZADO"
    assert client.post(f"/api/reservas/{reserva['id']}/pago", json={"metodoPago": "BITCOIN"}).status_code == 400


def test_cancel_releases_seats_and_voids_ticket(client, viaje):
    reserva = reservar(client, viaje, ["7A"]).json()
    codigo = client.post(f"/api/reservas/{reserva['id']}/pago", json={"metodoPago": "TARJETA"}).json()["boletoCodigo"]

    cancelada = client.post(f"/api/reservas/{reserva['id']}/cancelar")
    assert cancelada.json()["estado"] == "CANCELADO"
    assert estados(client, viaje)["7A"] == "DISPONIBLE"
    assert client.get(f"/api/boletos/{codigo}").json()["estado"] == "ANULADO"
    assert client.post(f"/api/reservas/{reserva['id']}/cancelar").status_code == 400


def test_reservations_of_the_signed_in_client(anon_client, client, viaje):
    maria = cliente_headers("maria@correo.ec")
    # a passenger always books under their own email
    hecha = reservar(anon_client, viaje, ["8A"], clienteEmail="otro@correo.ec", headers=maria).json()
    assert hecha["clienteEmail"] == "maria@correo.ec"
    reservar(client, viaje, ["8B"], clienteEmail="otro@correo.ec")

    mias = anon_client.get("/api/reservas", headers=maria).json()
    assert [r["asientos"] for r in mias] == [["8A"]]
    ajenas = anon_client.get("/api/reservas", params={"clienteEmail": "otro@correo.ec"}, headers=maria).json()
    assert ajenas == mias
    assert anon_client.get("/api/reservas").status_code == 401


def test_client_cannot_touch_other_reservas(anon_client, viaje):
    maria = cliente_headers("maria@correo.ec")
    otro = cliente_headers("otro@correo.ec", user_id=2)
    reserva = reservar(anon_client, viaje, ["9A"], headers=maria).json()

    assert anon_client.get(f"/api/reservas/{reserva['id']}", headers=otro).status_code == 403
    pago = {"metodoPago": "EFECTIVO"}
    assert anon_client.post(f"/api/reservas/{reserva['id']}/pago", json=pago, headers=otro).status_code == 403
    assert anon_client.post(f"/api/reservas/{reserva['id']}/cancelar", headers=otro).status_code == 403

    assert anon_client.post(f"/api/reservas/{reserva['id']}/pago", json=pago, headers=maria).status_code == 200
    assert anon_client.get(f"/api/reservas/{reserva['id']}/boleto", headers=otro).status_code == 403
    assert anon_client.get(f"/api/reservas/{reserva['id']}/boleto", headers=maria).status_code == 200


def test_driver_cannot_book(anon_client, seed, viaje):
    chofer = personal_headers(seed.choferes[0])
    assert reservar(anon_client, viaje, ["9B"], headers=chofer).status_code == 403
    assert reservar(anon_client, viaje, ["9B"]).status_code == 401


def test_search_routes(client, db, seed, viaje):
    def buscar(**params):
        return client.get("/api/rutas/buscar", params=params).json()

    resultado = buscar(origen="quito", destino="ambato", fecha=viaje.fecha.isoformat())
    assert resultado["total"] == 1
    item = resultado["items"][0]
    assert item["tipoViaje"] == "DIRECTO"
    assert item["duracionEstimada"] == "2h 30m"
    assert item["asientosPorTipo"] == {"NORMAL": 40}

    assert buscar(origen="ambato")["total"] == 0
    assert buscar(destino="latacunga")["total"] == 0
    assert buscar(cooperativa="oriente")["total"] == 0

    frecuencia = models.Frecuencia(
        cooperativa_id=seed.coop.id, origen_id=seed.quito.id, destino_id=seed.ambato.id,
        hora_salida=time(8, 0), duracion_minutos=150, dias_operacion="LUNES", bus_id=viaje.bus_id,
        precio=5.0, activa=True,
    )
    frecuencia.paradas = [models.ParadaIntermedia(terminal_id=seed.latacunga.id, ciudad="Latacunga",
                                                  orden_parada=1, minutos_desde_origen=75, precio_adicional=0.0)]
    db.add(frecuencia)
    db.flush()
    viaje.frecuencia_id = frecuencia.id
    db.commit()

    con_parada = buscar(destino="latacunga")
    assert con_parada["total"] == 1
    assert con_parada["items"][0]["tipoViaje"] == "CON_PARADAS"

    seed.coop.activo = False
    db.commit()
    assert buscar(origen="quito")["total"] == 0
