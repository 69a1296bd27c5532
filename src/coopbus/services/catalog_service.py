"""
Catalog Service.

Cooperatives, terminals, buses and cooperative staff, plus the
bus -> driver links the generators prefer when rostering.

Author: Backend Team
"""

import logging
import math
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..constants import (
    MAX_CHOFERES_POR_BUS,
    ROL_CHOFER,
    ROLES_COOPERATIVA,
    TIPOS_CHOFER_BUS,
    BusEstado,
)
from ..models import (
    Bus,
    BusChofer,
    Cooperativa,
    CooperativaTerminal,
    Terminal,
    UsuarioCooperativa,
)
from .auth_service import auth_service, hash_password
from .circuit_service import get_cooperativa, invalidar_estado, terminales_habilitadas

logger = logging.getLogger(__name__)


def paginar(query, page: int = 0, size: int = 20) -> Dict:
    """Spring-style page dict: content, total_elements, total_pages, size, number."""
    if page < 0 or size <= 0:
        raise ValueError("page debe ser >= 0 y size > 0")
    total = query.count()
    content = query.offset(page * size).limit(size).all()
    return {
        "content": content,
        "total_elements": total,
        "total_pages": math.ceil(total / size) if total else 0,
        "size": size,
        "number": page,
    }


# ---------------------------------------------------------------------------
# Cooperativas
# ---------------------------------------------------------------------------

def listar_cooperativas(db: Session, search: Optional[str] = None, page: int = 0, size: int = 20) -> Dict:
    query = db.query(Cooperativa)
    if search:
        pattern = f"%{search.strip().lower()}%"
        query = query.filter(or_(
            func.lower(Cooperativa.nombre).like(pattern),
            func.lower(Cooperativa.ruc).like(pattern),
        ))
    return paginar(query.order_by(Cooperativa.nombre, Cooperativa.id), page, size)


def _ruc_en_uso(db: Session, ruc: str, excluir_id: Optional[int] = None) -> bool:
    query = db.query(Cooperativa).filter(Cooperativa.ruc == ruc)
    if excluir_id is not None:
        query = query.filter(Cooperativa.id != excluir_id)
    return query.first() is not None


def crear_cooperativa(db: Session, data: Dict) -> Cooperativa:
    ruc = (data.get("ruc") or "").strip()
    if not ruc or not (data.get("nombre") or "").strip():
        raise ValueError("nombre y ruc son obligatorios")
    if _ruc_en_uso(db, ruc):
        raise ValueError(f"Ya existe una cooperativa con RUC {ruc}")

    cooperativa = Cooperativa(
        nombre=data["nombre"].strip(),
        ruc=ruc,
        logo_url=data.get("logo_url"),
        activo=True if data.get("activo") is None else data["activo"],
    )
    db.add(cooperativa)
    db.commit()
    db.refresh(cooperativa)
    logger.info(f"Created cooperativa {cooperativa.id} ({cooperativa.nombre})")
    return cooperativa


def actualizar_cooperativa(db: Session, cooperativa_id: int, data: Dict) -> Cooperativa:
    cooperativa = get_cooperativa(db, cooperativa_id)
    if data.get("ruc") and _ruc_en_uso(db, data["ruc"], excluir_id=cooperativa_id):
        raise ValueError(f"Ya existe una cooperativa con RUC {data['ruc']}")
    for field in ("nombre", "ruc", "logo_url", "activo"):
        if data.get(field) is not None:
            setattr(cooperativa, field, data[field])
    db.commit()
    db.refresh(cooperativa)
    logger.info(f"Updated cooperativa {cooperativa_id}")
    return cooperativa


def eliminar_cooperativa(db: Session, cooperativa_id: int) -> Cooperativa:
    cooperativa = get_cooperativa(db, cooperativa_id)
    cooperativa.activo = False
    db.commit()
    logger.info(f"Deactivated cooperativa {cooperativa_id}")
    return cooperativa


# ---------------------------------------------------------------------------
# Terminales
# ---------------------------------------------------------------------------

def listar_terminales(db: Session, search: Optional[str] = None) -> List[Terminal]:
    query = db.query(Terminal)
    if search:
        pattern = f"%{search.strip().lower()}%"
        query = query.filter(or_(
            func.lower(Terminal.nombre).like(pattern),
            func.lower(Terminal.ciudad).like(pattern),
            func.lower(Terminal.provincia).like(pattern),
        ))
    return query.order_by(Terminal.nombre).all()


def crear_terminal(db: Session, data: Dict) -> Terminal:
    for field in ("nombre", "ciudad", "provincia"):
        if not (data.get(field) or "").strip():
            raise ValueError(f"{field} es obligatorio")
    latitud, longitud = data.get("latitud"), data.get("longitud")
    if latitud is None or not -90 <= latitud <= 90:
        raise ValueError("latitud fuera de rango [-90, 90]")
    if longitud is None or not -180 <= longitud <= 180:
        raise ValueError("longitud fuera de rango [-180, 180]")

    terminal = Terminal(
        nombre=data["nombre"].strip(),
        ciudad=data["ciudad"].strip(),
        provincia=data["provincia"].strip(),
        latitud=latitud,
        longitud=longitud,
        activo=True,
    )
    db.add(terminal)
    db.commit()
    db.refresh(terminal)
    logger.info(f"Created terminal {terminal.id} ({terminal.nombre})")
    return terminal


def terminales_de_cooperativa(db: Session, cooperativa_id: int) -> List[Terminal]:
    get_cooperativa(db, cooperativa_id)
    return terminales_habilitadas(db, cooperativa_id)


def sincronizar_terminales(db: Session, cooperativa_id: int, terminal_ids: Iterable[int]) -> List[Terminal]:
    """
    Replace the set of terminals enabled for a cooperative.

    Raises:
        LookupError: unknown cooperative or terminal id
    """
    get_cooperativa(db, cooperativa_id)
    ids = sorted(set(terminal_ids or []))
    encontrados = {t.id for t in db.query(Terminal).filter(Terminal.id.in_(ids)).all()} if ids else set()
    faltantes = [tid for tid in ids if tid not in encontrados]
    if faltantes:
        raise LookupError(f"Terminales no encontrados: {faltantes}")

    db.query(CooperativaTerminal).filter(CooperativaTerminal.cooperativa_id == cooperativa_id).delete()
    for terminal_id in ids:
        db.add(CooperativaTerminal(cooperativa_id=cooperativa_id, terminal_id=terminal_id))
    db.commit()
    invalidar_estado(cooperativa_id)
    logger.info(f"Cooperativa {cooperativa_id} now has {len(ids)} terminals enabled")
    return terminales_habilitadas(db, cooperativa_id)


# ---------------------------------------------------------------------------
# Buses
# ---------------------------------------------------------------------------

def get_bus(db: Session, bus_id: int) -> Bus:
    bus = db.query(Bus).filter(Bus.id == bus_id).first()
    if bus is None:
        raise LookupError(f"Bus {bus_id} no encontrado")
    return bus


def listar_buses(db: Session, cooperativa_id: int, estado: Optional[str] = None) -> List[Bus]:
    get_cooperativa(db, cooperativa_id)
    query = db.query(Bus).filter(Bus.cooperativa_id == cooperativa_id)
    if estado:
        query = query.filter(Bus.estado == estado)
    return query.order_by(Bus.numero_interno, Bus.id).all()


def _validar_bus(db: Session, data: Dict, bus_id: Optional[int] = None):
    if data.get("estado") is not None and data["estado"] not in BusEstado.ALL:
        raise ValueError(f"Estado de bus inválido: {data['estado']}")
    if data.get("capacidad_piso_1") is not None and data["capacidad_piso_1"] <= 0:
        raise ValueError("capacidad_piso_1 debe ser mayor que 0")
    if data.get("capacidad_piso_2") is not None and data["capacidad_piso_2"] < 0:
        raise ValueError("capacidad_piso_2 no puede ser negativa")
    placa = data.get("placa")
    if placa:
        query = db.query(Bus).filter(func.upper(Bus.placa) == placa.strip().upper())
        if bus_id is not None:
            query = query.filter(Bus.id != bus_id)
        if query.first() is not None:
            raise ValueError(f"Ya existe un bus con placa {placa}")


def crear_bus(db: Session, cooperativa_id: int, data: Dict) -> Bus:
    get_cooperativa(db, cooperativa_id)
    if not data.get("placa") or not data.get("numero_interno"):
        raise ValueError("placa y numero_interno son obligatorios")
    _validar_bus(db, data)

    bus = Bus(
        cooperativa_id=cooperativa_id,
        numero_interno=str(data["numero_interno"]).strip(),
        placa=data["placa"].strip().upper(),
        chasis_marca=data.get("chasis_marca"),
        carroceria_marca=data.get("carroceria_marca"),
        foto_url=data.get("foto_url"),
        capacidad_piso_1=data.get("capacidad_piso_1") or 40,
        capacidad_piso_2=data.get("capacidad_piso_2") or 0,
        estado=data.get("estado") or BusEstado.DISPONIBLE,
        activo=True,
    )
    db.add(bus)
    db.commit()
    db.refresh(bus)
    invalidar_estado(cooperativa_id)
    logger.info(f"Created bus {bus.id} ({bus.placa}) for cooperativa {cooperativa_id}")
    return bus


def actualizar_bus(db: Session, bus_id: int, data: Dict) -> Bus:
    bus = get_bus(db, bus_id)
    _validar_bus(db, data, bus_id=bus_id)
    for field in ("numero_interno", "placa", "chasis_marca", "carroceria_marca", "foto_url",
                  "capacidad_piso_1", "capacidad_piso_2", "estado", "activo"):
        if data.get(field) is not None:
            value = data[field]
            setattr(bus, field, value.strip().upper() if field == "placa" else value)
    db.commit()
    db.refresh(bus)
    invalidar_estado(bus.cooperativa_id)
    logger.info(f"Updated bus {bus_id}")
    return bus


def buses_operativos(db: Session, cooperativa_id: int) -> List[Bus]:
    """Active buses not in maintenance, ordered by internal number."""
    return (
        db.query(Bus)
        .filter(
            Bus.cooperativa_id == cooperativa_id,
            Bus.activo.is_(True),
            Bus.estado != BusEstado.MANTENIMIENTO,
        )
        .order_by(Bus.numero_interno, Bus.id)
        .all()
    )


# ---------------------------------------------------------------------------
# Personal / choferes
# ---------------------------------------------------------------------------

def get_usuario(db: Session, usuario_id: int) -> UsuarioCooperativa:
    usuario = db.query(UsuarioCooperativa).filter(UsuarioCooperativa.id == usuario_id).first()
    if usuario is None:
        raise LookupError(f"Usuario {usuario_id} no encontrado")
    return usuario


def listar_personal(db: Session, cooperativa_id: int, rol: Optional[str] = None) -> List[UsuarioCooperativa]:
    get_cooperativa(db, cooperativa_id)
    query = db.query(UsuarioCooperativa).filter(UsuarioCooperativa.cooperativa_id == cooperativa_id)
    if rol:
        query = query.filter(UsuarioCooperativa.rol_cooperativa == rol.upper())
    return query.order_by(UsuarioCooperativa.apellidos, UsuarioCooperativa.nombres).all()


def crear_personal(db: Session, cooperativa_id: int, data: Dict) -> UsuarioCooperativa:
    get_cooperativa(db, cooperativa_id)
    rol = (data.get("rol_cooperativa") or "").upper()
    if rol not in ROLES_COOPERATIVA:
        raise ValueError(f"Rol inválido: {data.get('rol_cooperativa')}")
    email = (data.get("email") or "").strip().lower()
    if not email or not data.get("nombres") or not data.get("apellidos"):
        raise ValueError("nombres, apellidos y email son obligatorios")
    if db.query(UsuarioCooperativa).filter(func.lower(UsuarioCooperativa.email) == email).first():
        raise ValueError(f"El email {email} ya está registrado")
    password = data.get("password")
    if password is not None and len(password) < auth_service.password_min_length:
        raise ValueError(f"La contraseña debe tener al menos {auth_service.password_min_length} caracteres")

    usuario = UsuarioCooperativa(
        cooperativa_id=cooperativa_id,
        nombres=data["nombres"].strip(),
        apellidos=data["apellidos"].strip(),
        cedula=data.get("cedula"),
        email=email,
        telefono=data.get("telefono"),
        rol_cooperativa=rol,
        activo=True,
        password_hash=hash_password(password) if password else None,
    )
    db.add(usuario)
    db.commit()
    db.refresh(usuario)
    invalidar_estado(cooperativa_id)
    logger.info(f"Created {rol} {usuario.id} for cooperativa {cooperativa_id}")
    return usuario


def choferes_activos(db: Session, cooperativa_id: int) -> List[UsuarioCooperativa]:
    return (
        db.query(UsuarioCooperativa)
        .filter(
            UsuarioCooperativa.cooperativa_id == cooperativa_id,
            UsuarioCooperativa.rol_cooperativa == ROL_CHOFER,
            UsuarioCooperativa.activo.is_(True),
        )
        .order_by(UsuarioCooperativa.id)
        .all()
    )


def contar_choferes(db: Session, cooperativa_id: int) -> int:
    return (
        db.query(UsuarioCooperativa)
        .filter(
            UsuarioCooperativa.cooperativa_id == cooperativa_id,
            UsuarioCooperativa.rol_cooperativa == ROL_CHOFER,
        )
        .count()
    )


def listar_choferes_bus(db: Session, bus_id: int) -> List[BusChofer]:
    get_bus(db, bus_id)
    return (
        db.query(BusChofer)
        .filter(BusChofer.bus_id == bus_id)
        .order_by(BusChofer.tipo.desc(), BusChofer.id)
        .all()
    )


def asignar_choferes(db: Session, bus_id: int, asignaciones: List[Dict]) -> List[BusChofer]:
    """
    Replace the drivers attached to a bus.

    Args:
        asignaciones: [{"chofer_id": int, "tipo": "PRINCIPAL" | "ALTERNO"}]

    Raises:
        ValueError: more than MAX_CHOFERES_POR_BUS, not exactly one PRINCIPAL,
            duplicates, or a user who is not an active driver of the bus's cooperative
    """
    bus = get_bus(db, bus_id)
    asignaciones = asignaciones or []

    if len(asignaciones) > MAX_CHOFERES_POR_BUS:
        raise ValueError(f"Un bus admite como máximo {MAX_CHOFERES_POR_BUS} choferes")
    ids = [a["chofer_id"] for a in asignaciones]
    if len(set(ids)) != len(ids):
        raise ValueError("Un chofer no puede asignarse dos veces al mismo bus")
    tipos = [(a.get("tipo") or "PRINCIPAL").upper() for a in asignaciones]
    if any(t not in TIPOS_CHOFER_BUS for t in tipos):
        raise ValueError("Tipo de chofer inválido (PRINCIPAL | ALTERNO)")
    if asignaciones and tipos.count("PRINCIPAL") != 1:
        raise ValueError("Debe haber exactamente un chofer PRINCIPAL")

    for chofer_id in ids:
        chofer = get_usuario(db, chofer_id)
        if chofer.cooperativa_id != bus.cooperativa_id or chofer.rol_cooperativa != ROL_CHOFER:
            raise ValueError(f"El usuario {chofer_id} no es chofer de la cooperativa del bus")
        if not chofer.activo:
            raise ValueError(f"El chofer {chofer_id} está inactivo")

    bus.choferes.clear()
    db.flush()
    for chofer_id, tipo in zip(ids, tipos):
        bus.choferes.append(BusChofer(chofer_id=chofer_id, tipo=tipo))
    db.commit()
    logger.info(f"Bus {bus_id} now has {len(ids)} drivers attached")
    return listar_choferes_bus(db, bus_id)


def choferes_por_bus(db: Session, cooperativa_id: int) -> Dict[int, List[tuple]]:
    """bus_id -> [(chofer_id, tipo)] with PRINCIPAL first."""
    rows = (
        db.query(BusChofer)
        .join(Bus, Bus.id == BusChofer.bus_id)
        .filter(Bus.cooperativa_id == cooperativa_id)
        .all()
    )
    result: Dict[int, List[tuple]] = {}
    for row in rows:
        result.setdefault(row.bus_id, []).append((row.chofer_id, row.tipo))
    for bus_id in result:
        result[bus_id].sort(key=lambda item: (item[1] != "PRINCIPAL", item[0]))
    return result
