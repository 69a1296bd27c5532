import os

os.environ["COOPBUS_ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"

from datetime import date, time, timedelta  # noqa: E402
from types import SimpleNamespace  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from coopbus import models  # noqa: E402
from coopbus.constants import ROL_ADMIN_SISTEMA, ROL_CLIENTE, ROL_COOPERATIVA  # noqa: E402
from coopbus.db import Base, get_db  # noqa: E402
from coopbus.main import app  # noqa: E402
from coopbus.services.auth_service import auth_service  # noqa: E402
from coopbus.services.circuit_service import estado_cache, get_config  # noqa: E402
from coopbus.services.route_service import route_service  # noqa: E402
from coopbus.services.tracking_service import tracking_service  # noqa: E402

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def proximo_lunes() -> date:
    hoy = date.today()
    return hoy + timedelta(days=7 - hoy.weekday())


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def admin_headers() -> dict:
    return bearer(auth_service.emitir_token(0, auth_service.admin_email, ROL_ADMIN_SISTEMA))


def personal_headers(usuario) -> dict:
    """Token of a cooperative account (staff or driver)."""
    return bearer(auth_service.emitir_token(
        usuario.id, usuario.email, ROL_COOPERATIVA, usuario.rol_cooperativa, usuario.cooperativa_id
    ))


def cliente_headers(email: str, user_id: int = 1) -> dict:
    return bearer(auth_service.emitir_token(user_id, email, ROL_CLIENTE))


@pytest.fixture(autouse=True)
def clear_caches():
    estado_cache.clear()
    route_service.clear_cache()
    tracking_service.clear_cache()
    auth_service.clear_cache()
    yield
    estado_cache.clear()
    tracking_service.clear_cache()


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def anon_client(db):
    """Client without credentials."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def client(anon_client):
    """Client signed in as the system administrator."""
    return TestClient(app, headers=admin_headers())


@pytest.fixture
def seed(db):
    """
    One cooperative operating Quito, Latacunga, Ambato (Sierra centro) and
    Baños, with four buses and four drivers.
    """
    coop = models.Cooperativa(nombre="Cooperativa Andina", ruc="1790012345001", activo=True)
    otra = models.Cooperativa(nombre="Transportes Oriente", ruc="1890012345001", activo=True)
    db.add_all([coop, otra])
    db.flush()

    quito = models.Terminal(nombre="Quitumbe", ciudad="Quito", provincia="Pichincha",
                            latitud=-0.2295, longitud=-78.5243, activo=True)
    latacunga = models.Terminal(nombre="Terminal Latacunga", ciudad="Latacunga", provincia="Cotopaxi",
                                latitud=-0.9352, longitud=-78.6155, activo=True)
    ambato = models.Terminal(nombre="Terminal Ambato", ciudad="Ambato", provincia="Tungurahua",
                             latitud=-1.2491, longitud=-78.6168, activo=True)
    banos = models.Terminal(nombre="Terminal Baños", ciudad="Baños", provincia="Tungurahua",
                            latitud=-1.3964, longitud=-78.4247, activo=True)
    db.add_all([quito, latacunga, ambato, banos])
    db.flush()
    for terminal in (quito, latacunga, ambato, banos):
        db.add(models.CooperativaTerminal(cooperativa_id=coop.id, terminal_id=terminal.id))

    buses = []
    for n in range(1, 5):
        bus = models.Bus(
            cooperativa_id=coop.id,
            numero_interno=f"{n:02d}",
            placa=f"PBA-10{n}",
            capacidad_piso_1=40,
            capacidad_piso_2=0,
            estado="DISPONIBLE",
            activo=True,
        )
        buses.append(bus)
    db.add_all(buses)

    choferes = []
    for n, (nombres, apellidos) in enumerate(
        [("Luis", "Andrade"), ("Carlos", "Benítez"), ("Jorge", "Cevallos"), ("Mario", "Dávila")], start=1
    ):
        choferes.append(models.UsuarioCooperativa(
            cooperativa_id=coop.id,
            nombres=nombres,
            apellidos=apellidos,
            email=f"chofer{n}@andina.ec",
            rol_cooperativa="CHOFER",
            activo=True,
        ))
    oficinista = models.UsuarioCooperativa(
        cooperativa_id=coop.id, nombres="Ana", apellidos="Espinoza",
        email="ana@andina.ec", rol_cooperativa="OFICINISTA", activo=True,
    )
    db.add_all(choferes + [oficinista])
    db.commit()

    config = get_config(db, coop.id)
    return SimpleNamespace(
        coop=coop,
        otra=otra,
        quito=quito,
        latacunga=latacunga,
        ambato=ambato,
        banos=banos,
        buses=buses,
        choferes=choferes,
        oficinista=oficinista,
        config=config,
    )


@pytest.fixture
def viaje(db, seed):
    """A PROGRAMADO Quito -> Ambato viaje next Monday on a bus with a 10x4 layout."""
    from coopbus.services import seat_service

    bus = seed.buses[0]
    seat_service.generate_layout(db, bus.id, filas=10, columnas=4)
    viaje = models.Viaje(
        cooperativa_id=seed.coop.id,
        bus_id=bus.id,
        chofer_id=seed.choferes[0].id,
        fecha=proximo_lunes(),
        hora_salida=time(8, 0),
        hora_llegada=time(10, 30),
        origen_id=seed.quito.id,
        destino_id=seed.ambato.id,
        precio=5.00,
        estado="PROGRAMADO",
    )
    db.add(viaje)
    db.commit()
    db.refresh(viaje)
    return viaje
