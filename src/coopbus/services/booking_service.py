"""
Booking Service.

Seat availability of a viaje, reservations with a time-to-live, payment
confirmation with ticket issuance, cancellations and passenger route
search.

A seat is held by a ReservaAsiento row; the (viaje_id, numero_asiento)
unique constraint makes the database the final arbiter of double booking.

Author: Backend Team
"""

import logging
import secrets
import string
from datetime import date, timedelta
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config_loader import get_settings
from ..constants import (
    BOLETO_PREFIX,
    METODOS_PAGO,
    AsientoEstado,
    ReservaEstado,
    ViajeEstado,
)
from ..models import Asiento, Boleto, Cooperativa, Reserva, ReservaAsiento, Viaje
from .horarios import fmt_duracion, fmt_time, now, to_minutes, today
from .trip_service import get_viaje

logger = logging.getLogger(__name__)

BOLETO_EMITIDO = "EMITIDO"
BOLETO_ANULADO = "ANULADO"
PAGO_APROBADO = "APROBADO"
PAGO_RECHAZADO = "RECHAZADO"
TIPO_PASAJERO_REGULAR = "REGULAR"


def _reservas_cfg() -> Dict:
    return get_settings().get("reservas", {})


def get_reserva(db: Session, reserva_id: int) -> Reserva:
    reserva = db.query(Reserva).filter(Reserva.id == reserva_id).first()
    if reserva is None:
        raise LookupError(f"Reserva {reserva_id} no encontrada")
    if _expirar(reserva):
        db.commit()
    return reserva


def _expirar(reserva: Reserva) -> bool:
    """Mark a pending reservation past its deadline as EXPIRADO and release its seats."""
    if reserva.estado == ReservaEstado.PENDIENTE and reserva.fecha_expira <= now():
        reserva.estado = ReservaEstado.EXPIRADO
        reserva.bloqueos.clear()
        logger.info(f"Reserva {reserva.id} expired")
        return True
    return False


def expirar_reservas(db: Session, viaje_id: Optional[int] = None) -> int:
    """Sweep pending reservations whose TTL has elapsed; returns how many expired."""
    query = db.query(Reserva).filter(
        Reserva.estado == ReservaEstado.PENDIENTE,
        Reserva.fecha_expira <= now(),
    )
    if viaje_id is not None:
        query = query.filter(Reserva.viaje_id == viaje_id)
    expiradas = 0
    for reserva in query.all():
        expiradas += _expirar(reserva)
    if expiradas:
        db.commit()
    return expiradas


# ---------------------------------------------------------------------------
# Seats of a viaje
# ---------------------------------------------------------------------------

def _factor_tipo(tipo_asiento: str) -> float:
    if tipo_asiento == "VIP":
        return float(_reservas_cfg().get("recargo_vip", 1.25))
    return 1.0


def _ocupacion(db: Session, viaje_id: int) -> Dict[str, str]:
    """numero_asiento -> RESERVADO | VENDIDO for every held seat."""
    rows = (
        db.query(ReservaAsiento.numero_asiento, Reserva.estado)
        .join(Reserva, Reserva.id == ReservaAsiento.reserva_id)
        .filter(ReservaAsiento.viaje_id == viaje_id)
        .all()
    )
    return {
        numero: AsientoEstado.VENDIDO if estado == ReservaEstado.PAGADO else AsientoEstado.RESERVADO
        for numero, estado in rows
    }


def _asientos_bus(db: Session, bus_id: int) -> List[Asiento]:
    return (
        db.query(Asiento)
        .filter(Asiento.bus_id == bus_id)
        .order_by(Asiento.piso, Asiento.fila, Asiento.columna)
        .all()
    )


def asientos_viaje(db: Session, viaje_id: int) -> List[Dict]:
    viaje = get_viaje(db, viaje_id)
    expirar_reservas(db, viaje_id)
    ocupacion = _ocupacion(db, viaje_id)

    resultado = []
    for asiento in _asientos_bus(db, viaje.bus_id):
        if not asiento.habilitado:
            estado = AsientoEstado.BLOQUEADO
        else:
            estado = ocupacion.get(asiento.numero_asiento, AsientoEstado.DISPONIBLE)
        resultado.append({
            "id": asiento.id,
            "numero_asiento": asiento.numero_asiento,
            "fila": asiento.fila,
            "columna": asiento.columna,
            "piso": asiento.piso,
            "tipo_asiento": asiento.tipo_asiento,
            "estado": estado,
            "precio": round(viaje.precio * _factor_tipo(asiento.tipo_asiento), 2),
        })
    return resultado


def disponibilidad(db: Session, viaje_id: int) -> Dict:
    asientos = asientos_viaje(db, viaje_id)
    habilitados = [a for a in asientos if a["estado"] != AsientoEstado.BLOQUEADO]
    libres = [a for a in habilitados if a["estado"] == AsientoEstado.DISPONIBLE]
    por_tipo: Dict[str, int] = {}
    for asiento in libres:
        por_tipo[asiento["tipo_asiento"]] = por_tipo.get(asiento["tipo_asiento"], 0) + 1
    return {
        "viaje_id": viaje_id,
        "total_asientos": len(habilitados),
        "disponibles": len(libres),
        "por_tipo": por_tipo,
    }


# ---------------------------------------------------------------------------
# Reservas
# ---------------------------------------------------------------------------

def calcular_monto(precio_base: float, asientos: List[Asiento], tipo_pasajero: str) -> float:
    """Σ price x seat type factor, minus the passenger-type discount."""
    descuentos = _reservas_cfg().get("descuentos", {})
    descuento = float(descuentos.get(tipo_pasajero, 0.0))
    bruto = sum(precio_base * _factor_tipo(a.tipo_asiento) for a in asientos)
    return round(bruto * (1 - descuento), 2)


def crear_reserva(db: Session, datos: Dict) -> Reserva:
    """
    Hold seats on a viaje for the configured TTL.

    Args:
        datos: viaje_id, asientos (seat numbers), cliente_email?,
            cliente_nombre?, tipo_pasajero?

    Raises:
        ValueError: viaje not PROGRAMADO, unknown/disabled/taken seats
    """
    viaje = get_viaje(db, datos["viaje_id"])
    if viaje.estado != ViajeEstado.PROGRAMADO:
        raise ValueError(f"El viaje no admite reservas (estado {viaje.estado})")

    numeros = [str(n).strip().upper() for n in datos.get("asientos") or []]
    if not numeros:
        raise ValueError("Debe seleccionar al menos un asiento")
    if len(set(numeros)) != len(numeros):
        raise ValueError("Hay asientos repetidos en la solicitud")

    tipo_pasajero = (datos.get("tipo_pasajero") or TIPO_PASAJERO_REGULAR).upper()
    descuentos = _reservas_cfg().get("descuentos", {})
    if tipo_pasajero != TIPO_PASAJERO_REGULAR and tipo_pasajero not in descuentos:
        raise ValueError(f"Tipo de pasajero inválido: {tipo_pasajero}")

    expirar_reservas(db, viaje.id)
    asientos = {a.numero_asiento: a for a in _asientos_bus(db, viaje.bus_id)}
    desconocidos = [n for n in numeros if n not in asientos]
    if desconocidos:
        raise ValueError(f"Asientos inexistentes en el bus: {', '.join(desconocidos)}")
    bloqueados = [n for n in numeros if not asientos[n].habilitado]
    if bloqueados:
        raise ValueError(f"Asientos no habilitados: {', '.join(bloqueados)}")
    ocupacion = _ocupacion(db, viaje.id)
    ocupados = [n for n in numeros if n in ocupacion]
    if ocupados:
        raise ValueError(f"Asientos no disponibles: {', '.join(ocupados)}")

    ttl = int(_reservas_cfg().get("ttl_minutos", 15))
    creada = now()
    reserva = Reserva(
        viaje_id=viaje.id,
        cliente_email=(datos.get("cliente_email") or "").strip().lower() or None,
        cliente_nombre=datos.get("cliente_nombre"),
        tipo_pasajero=tipo_pasajero,
        asientos=",".join(numeros),
        monto=calcular_monto(viaje.precio, [asientos[n] for n in numeros], tipo_pasajero),
        estado=ReservaEstado.PENDIENTE,
        creada_en=creada,
        fecha_expira=creada + timedelta(minutes=ttl),
    )
    reserva.bloqueos = [ReservaAsiento(viaje_id=viaje.id, numero_asiento=n) for n in numeros]
    db.add(reserva)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.warning(f"Seat conflict on viaje {viaje.id} for seats {numeros}")
        raise ValueError("Alguno de los asientos acaba de ser reservado por otro cliente")
    db.refresh(reserva)
    logger.info(f"Reserva {reserva.id} created on viaje {viaje.id} ({len(numeros)} seats, {reserva.monto})")
    return reserva


def _generar_codigo(db: Session) -> str:
    alfabeto = string.ascii_uppercase + string.digits
    while True:
        sufijo = "".join(secrets.choice(alfabeto) for _ in range(5))
        codigo = f"{BOLETO_PREFIX}-{today().strftime('%Y%m%d')}-{sufijo}"
        if db.query(Boleto).filter(Boleto.codigo == codigo).first() is None:
            return codigo


def confirmar_pago(db: Session, reserva_id: int, metodo_pago: str, referencia: Optional[str] = None) -> Dict:
    """
    Confirm payment of a pending reservation and issue its ticket.

    Returns:
        {"reserva_id", "estado": APROBADO | RECHAZADO, "mensaje", "boleto_codigo"}
    """
    metodo = (metodo_pago or "").upper()
    if metodo not in METODOS_PAGO:
        raise ValueError(f"Método de pago inválido: {metodo_pago}")

    reserva = get_reserva(db, reserva_id)
    if reserva.estado != ReservaEstado.PENDIENTE:
        logger.warning(f"Payment rejected for reserva {reserva_id} in state {reserva.estado}")
        return {
            "reserva_id": reserva.id,
            "estado": PAGO_RECHAZADO,
            "mensaje": f"La reserva no está pendiente de pago (estado {reserva.estado})",
            "boleto_codigo": None,
        }

    reserva.estado = ReservaEstado.PAGADO
    reserva.metodo_pago = metodo
    reserva.referencia_pago = referencia
    boleto = Boleto(codigo=_generar_codigo(db), reserva_id=reserva.id, estado=BOLETO_EMITIDO, fecha_emision=now())
    db.add(boleto)
    db.commit()
    logger.info(f"Reserva {reserva.id} paid via {metodo}; boleto {boleto.codigo}")
    return {
        "reserva_id": reserva.id,
        "estado": PAGO_APROBADO,
        "mensaje": "Pago confirmado",
        "boleto_codigo": boleto.codigo,
    }


def cancelar_reserva(db: Session, reserva_id: int) -> Reserva:
    reserva = get_reserva(db, reserva_id)
    if reserva.estado not in (ReservaEstado.PENDIENTE, ReservaEstado.PAGADO):
        raise ValueError(f"No se puede cancelar una reserva en estado {reserva.estado}")
    if reserva.viaje.estado != ViajeEstado.PROGRAMADO:
        raise ValueError("Solo se pueden cancelar reservas de viajes programados")

    reserva.estado = ReservaEstado.CANCELADO
    reserva.bloqueos.clear()
    boleto = db.query(Boleto).filter(Boleto.reserva_id == reserva.id).first()
    if boleto is not None:
        boleto.estado = BOLETO_ANULADO
    db.commit()
    db.refresh(reserva)
    logger.info(f"Reserva {reserva_id} cancelled")
    return reserva


def reserva_to_dict(reserva: Reserva) -> Dict:
    viaje = reserva.viaje
    return {
        "id": reserva.id,
        "viaje_id": reserva.viaje_id,
        "cliente_email": reserva.cliente_email,
        "cliente_nombre": reserva.cliente_nombre,
        "tipo_pasajero": reserva.tipo_pasajero,
        "asientos": reserva.lista_asientos,
        "monto": reserva.monto,
        "estado": reserva.estado,
        "metodo_pago": reserva.metodo_pago,
        "creada_en": reserva.creada_en,
        "fecha_expira": reserva.fecha_expira,
        "fecha_viaje": viaje.fecha,
        "hora_salida": fmt_time(viaje.hora_salida),
        "origen": viaje.origen.nombre,
        "destino": viaje.destino.nombre,
        "cooperativa": viaje.cooperativa.nombre,
    }


def mis_reservas(db: Session, cliente_email: str) -> List[Reserva]:
    email = (cliente_email or "").strip().lower()
    if not email:
        raise ValueError("Debe indicar el email del cliente")
    reservas = (
        db.query(Reserva)
        .filter(func.lower(Reserva.cliente_email) == email)
        .order_by(Reserva.creada_en.desc(), Reserva.id.desc())
        .all()
    )
    if any([_expirar(r) for r in reservas]):
        db.commit()
    return reservas


# ---------------------------------------------------------------------------
# Boletos
# ---------------------------------------------------------------------------

def boleto_to_dict(boleto: Boleto) -> Dict:
    reserva = boleto.reserva
    viaje = reserva.viaje
    return {
        "id": boleto.id,
        "codigo": boleto.codigo,
        "estado": boleto.estado,
        "fecha_emision": boleto.fecha_emision,
        "reserva_id": reserva.id,
        "cliente_email": reserva.cliente_email,
        "asientos": reserva.lista_asientos,
        "monto": reserva.monto,
        "viaje_id": viaje.id,
        "fecha_viaje": viaje.fecha,
        "hora_salida": fmt_time(viaje.hora_salida),
        "origen": viaje.origen.nombre,
        "destino": viaje.destino.nombre,
        "bus_placa": viaje.bus.placa,
        "cooperativa": viaje.cooperativa.nombre,
    }


def boleto_por_reserva(db: Session, reserva_id: int) -> Boleto:
    get_reserva(db, reserva_id)
    boleto = db.query(Boleto).filter(Boleto.reserva_id == reserva_id).first()
    if boleto is None:
        raise LookupError(f"La reserva {reserva_id} no tiene boleto emitido")
    return boleto


def boleto_por_codigo(db: Session, codigo: str) -> Boleto:
    boleto = db.query(Boleto).filter(Boleto.codigo == codigo.strip().upper()).first()
    if boleto is None:
        raise LookupError(f"Boleto {codigo} no encontrado")
    return boleto


# ---------------------------------------------------------------------------
# Búsqueda de rutas
# ---------------------------------------------------------------------------

def _coincide(texto: Optional[str], *valores: Optional[str]) -> bool:
    if not texto:
        return True
    clave = texto.strip().lower()
    return any(clave in (v or "").lower() for v in valores)


def buscar_rutas(
    db: Session,
    origen: Optional[str] = None,
    destino: Optional[str] = None,
    fecha: Optional[date] = None,
    cooperativa: Optional[str] = None,
    page: int = 0,
    size: int = 20,
) -> Dict:
    """
    Search bookable viajes.

    The origin must match the viaje's origin terminal; the destination may
    match the final terminal or any intermediate stop. Matching is a
    case-insensitive substring over city or terminal name.
    """
    if page < 0 or size <= 0:
        raise ValueError("page debe ser >= 0 y size > 0")

    query = (
        db.query(Viaje)
        .join(Cooperativa, Cooperativa.id == Viaje.cooperativa_id)
        .filter(Viaje.estado == ViajeEstado.PROGRAMADO, Cooperativa.activo.is_(True))
    )
    if fecha is not None:
        query = query.filter(Viaje.fecha == fecha)
    else:
        query = query.filter(Viaje.fecha >= today())
    viajes = query.order_by(Viaje.fecha, Viaje.hora_salida, Viaje.id).all()

    encontrados = []
    for viaje in viajes:
        paradas = viaje.frecuencia.paradas if viaje.frecuencia else []
        if not _coincide(cooperativa, viaje.cooperativa.nombre):
            continue
        if not _coincide(origen, viaje.origen.ciudad, viaje.origen.nombre):
            continue
        if destino and not (
            _coincide(destino, viaje.destino.ciudad, viaje.destino.nombre)
            or any(_coincide(destino, p.ciudad) for p in paradas)
        ):
            continue
        encontrados.append((viaje, paradas))

    pagina = encontrados[page * size:(page + 1) * size]
    items = []
    for viaje, paradas in pagina:
        duracion = (to_minutes(viaje.hora_llegada) - to_minutes(viaje.hora_salida)) % (24 * 60)
        items.append({
            "viaje_id": viaje.id,
            "frecuencia_id": viaje.frecuencia_id,
            "cooperativa_id": viaje.cooperativa_id,
            "cooperativa": viaje.cooperativa.nombre,
            "origen": viaje.origen.nombre,
            "destino": viaje.destino.nombre,
            "fecha": viaje.fecha,
            "hora_salida": fmt_time(viaje.hora_salida),
            "duracion_estimada": fmt_duracion(duracion),
            "tipo_viaje": "CON_PARADAS" if paradas else "DIRECTO",
            "precio": viaje.precio,
            "asientos_por_tipo": disponibilidad(db, viaje.id)["por_tipo"],
        })
    return {"items": items, "total": len(encontrados), "page": page, "size": size}


def bus_info_viaje(db: Session, viaje_id: int) -> Dict:
    bus = get_viaje(db, viaje_id).bus
    return {
        "bus_id": bus.id,
        "placa": bus.placa,
        "numero_interno": bus.numero_interno,
        "chasis_marca": bus.chasis_marca,
        "carroceria_marca": bus.carroceria_marca,
        "foto_url": bus.foto_url,
        "capacidad_asientos": bus.capacidad_asientos,
        "dos_pisos": bus.dos_pisos,
    }
