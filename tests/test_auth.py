from coopbus import models
from coopbus.services.auth_service import auth_service
from tests.conftest import bearer, cliente_headers, personal_headers


def registrar(client, email="maria@correo.ec", password="secreta1", **extra):
    body = {"email": email, "password": password, "nombres": "María", "apellidos": "Lema", **extra}
    return client.post("/api/auth/register", json=body)


def test_register_and_profile(anon_client, db):
    respuesta = registrar(anon_client, email="Maria@Correo.ec")
    assert respuesta.status_code == 201
    cuenta = respuesta.json()
    assert cuenta["email"] == "maria@correo.ec"
    assert cuenta["rol"] == "CLIENTE"

    usuario = db.query(models.UsuarioApp).one()
    assert usuario.password_hash != "secreta1"
    assert usuario.password_hash.startswith("$2")

    perfil = anon_client.get("/api/users/me", headers=bearer(cuenta["token"])).json()
    assert perfil["userId"] == usuario.id
    assert perfil["nombres"] == "María"


def test_register_rejects_duplicates_and_short_passwords(anon_client):
    assert registrar(anon_client).status_code == 201
    assert registrar(anon_client, email="MARIA@correo.ec").status_code == 400
    assert registrar(anon_client, email="pedro@correo.ec", password="123").status_code == 400
    assert registrar(anon_client, email="sin-arroba").status_code == 400


def test_login_cliente(anon_client):
    registrar(anon_client)
    ok = anon_client.post("/api/auth/login-cliente", json={"email": "maria@correo.ec", "password": "secreta1"})
    assert ok.status_code == 200
    assert ok.json()["token"]

    mala = anon_client.post("/api/auth/login-cliente", json={"email": "maria@correo.ec", "password": "otra"})
    assert mala.status_code == 401
    assert mala.headers["www-authenticate"] == "Bearer"
    nadie = anon_client.post("/api/auth/login-cliente", json={"email": "nadie@correo.ec", "password": "secreta1"})
    assert nadie.status_code == 401


def test_login_cooperativa(client, anon_client, seed):
    creado = client.post(f"/api/cooperativas/{seed.coop.id}/personal", json={
        "nombres": "Rosa", "apellidos": "Guamán", "email": "rosa@andina.ec",
        "rolCooperativa": "OFICINISTA", "password": "ventanilla",
    })
    assert creado.status_code == 201

    cuenta = anon_client.post(
        "/api/auth/login-cooperativa", json={"email": "ROSA@andina.ec", "password": "ventanilla"}
    ).json()
    assert cuenta["rol"] == "COOPERATIVA"
    assert cuenta["rolCooperativa"] == "OFICINISTA"
    assert cuenta["cooperativaId"] == seed.coop.id
    assert cuenta["cooperativaNombre"] == "Cooperativa Andina"

    # staff created without a password cannot sign in
    sin_clave = anon_client.post("/api/auth/login-cooperativa", json={"email": "ana@andina.ec", "password": "x"})
    assert sin_clave.status_code == 401


def test_short_staff_password_is_rejected(client, seed):
    respuesta = client.post(f"/api/cooperativas/{seed.coop.id}/personal", json={
        "nombres": "Rosa", "apellidos": "Guamán", "email": "rosa@andina.ec",
        "rolCooperativa": "OFICINISTA", "password": "123",
    })
    assert respuesta.status_code == 400


def test_login_admin(anon_client):
    cuenta = anon_client.post("/api/auth/login-admin", json={"email": "admin@coopbus.ec", "password": "admin123"})
    assert cuenta.status_code == 200
    assert cuenta.json()["rol"] == "ADMIN"
    assert anon_client.get("/api/admin/auth/cache-stats", headers=bearer(cuenta.json()["token"])).status_code == 200

    mala = anon_client.post("/api/auth/login-admin", json={"email": "admin@coopbus.ec", "password": "admin"})
    assert mala.status_code == 401


def test_logout_revokes_the_token(anon_client):
    token = registrar(anon_client).json()["token"]
    assert anon_client.post("/api/auth/logout", headers=bearer(token)).status_code == 200
    assert anon_client.get("/api/users/me", headers=bearer(token)).status_code == 401
    assert auth_service.get_cache_stats()["revoked_tokens"] == 1


def test_missing_invalid_or_expired_token(anon_client, seed, monkeypatch):
    url = f"/api/cooperativas/{seed.coop.id}/buses"
    sin_token = anon_client.get(url)
    assert sin_token.status_code == 401
    assert sin_token.headers["www-authenticate"] == "Bearer"
    assert anon_client.get(url, headers=bearer("no-es-un-jwt")).status_code == 401

    monkeypatch.setattr(auth_service, "ttl_minutes", -1)
    vencido = personal_headers(seed.oficinista)
    assert anon_client.get(url, headers=vencido).status_code == 401


def test_public_endpoints_need_no_token(anon_client, viaje):
    assert anon_client.get("/api/cooperativas").status_code == 200
    assert anon_client.get("/api/terminales").status_code == 200
    assert anon_client.get("/api/rutas/buscar", params={"origen": "quito"}).status_code == 200
    assert anon_client.get(f"/api/viajes/{viaje.id}/asientos").status_code == 200


def test_roles_are_enforced(anon_client, seed):
    cliente = cliente_headers("maria@correo.ec")
    oficinista = personal_headers(seed.oficinista)
    chofer = personal_headers(seed.choferes[0])

    buses = f"/api/cooperativas/{seed.coop.id}/buses"
    assert anon_client.get(buses, headers=cliente).status_code == 403
    assert anon_client.get(buses, headers=chofer).status_code == 403
    assert anon_client.get(buses, headers=oficinista).status_code == 200

    nueva = {"nombre": "Nueva", "ruc": "0990012345001"}
    assert anon_client.post("/api/cooperativas", json=nueva, headers=oficinista).status_code == 403
    assert anon_client.post("/api/admin/reservas/expirar", headers=oficinista).status_code == 403


def test_staff_only_reach_their_cooperative(anon_client, db, seed):
    ajeno = models.UsuarioCooperativa(
        cooperativa_id=seed.otra.id, nombres="Pablo", apellidos="Vera",
        email="pablo@oriente.ec", rol_cooperativa="ADMIN", activo=True,
    )
    db.add(ajeno)
    db.commit()
    headers = personal_headers(ajeno)

    assert anon_client.get(f"/api/cooperativas/{seed.otra.id}/buses", headers=headers).status_code == 200
    assert anon_client.get(f"/api/cooperativas/{seed.coop.id}/buses", headers=headers).status_code == 403
    estado = f"/api/cooperativas/{seed.coop.id}/frecuencias/generar-inteligente/estado"
    assert anon_client.get(estado, headers=headers).status_code == 403
    horas = f"/api/choferes/{seed.choferes[0].id}/resumen-horas"
    assert anon_client.get(horas, headers=headers).status_code == 403

    panel = anon_client.get("/api/tracking/panel", headers=headers)
    assert panel.status_code == 200
    ajena = anon_client.get("/api/tracking/panel", params={"cooperativa_id": seed.coop.id}, headers=headers)
    assert ajena.status_code == 403


def test_drivers_only_reach_their_own_viajes(anon_client, seed, viaje):
    propio = personal_headers(seed.choferes[0])
    otro = personal_headers(seed.choferes[1])

    assert anon_client.get(f"/api/choferes/{seed.choferes[0].id}/resumen-horas", headers=propio).status_code == 200
    assert anon_client.get(f"/api/choferes/{seed.choferes[0].id}/resumen-horas", headers=otro).status_code == 403
    oficinista = personal_headers(seed.oficinista)
    assert anon_client.get(f"/api/choferes/{seed.choferes[0].id}/resumen-horas", headers=oficinista).status_code == 200

    assert anon_client.post(f"/api/viajes/{viaje.id}/iniciar", headers=otro).status_code == 403
    iniciado = anon_client.post(f"/api/viajes/{viaje.id}/iniciar", headers=propio)
    assert iniciado.status_code == 200
    assert iniciado.json()["estado"] == "EN_RUTA"

    posicion = {"latitud": -0.5, "longitud": -78.55}
    assert anon_client.post(f"/api/viajes/{viaje.id}/posicion", json=posicion, headers=otro).status_code == 403
    assert anon_client.post(f"/api/viajes/{viaje.id}/posicion", json=posicion, headers=propio).status_code == 200
    # passengers follow the bus without signing in
    assert anon_client.get(f"/api/viajes/{viaje.id}/posicion").status_code == 200
