"""
Fleet Service.

Bus -> frecuencia assignments, bus stop days and the daily availability
views (summary and per bus / per driver panel).
"""

import logging
from datetime import date
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..constants import MOTIVOS_PARADA, AsignacionEstado, BusEstado, ViajeEstado
from ..models import AsignacionBusFrecuencia, Bus, DiaParadaBus, Frecuencia, Viaje
from .catalog_service import choferes_activos, get_bus, listar_buses
from .circuit_service import get_config, get_cooperativa, invalidar_estado
from .frecuencia_service import get_frecuencia
from .horarios import dia_semana, to_minutes, today

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Asignaciones bus -> frecuencia
# ---------------------------------------------------------------------------

def get_asignacion(db: Session, asignacion_id: int) -> AsignacionBusFrecuencia:
    asignacion = db.query(AsignacionBusFrecuencia).filter(AsignacionBusFrecuencia.id == asignacion_id).first()
    if asignacion is None:
        raise LookupError(f"Asignación {asignacion_id} no encontrada")
    return asignacion


def listar_asignaciones(db: Session, cooperativa_id: int, estado: Optional[str] = None) -> List[AsignacionBusFrecuencia]:
    get_cooperativa(db, cooperativa_id)
    query = (
        db.query(AsignacionBusFrecuencia)
        .join(Bus, Bus.id == AsignacionBusFrecuencia.bus_id)
        .filter(Bus.cooperativa_id == cooperativa_id)
    )
    if estado:
        query = query.filter(AsignacionBusFrecuencia.estado == estado)
    return query.order_by(AsignacionBusFrecuencia.fecha_inicio.desc(), AsignacionBusFrecuencia.id).all()


def _se_solapan(a_inicio: date, a_fin: Optional[date], b_inicio: date, b_fin: Optional[date]) -> bool:
    a_fin = a_fin or date.max
    b_fin = b_fin or date.max
    return a_inicio <= b_fin and b_inicio <= a_fin


def crear_asignacion(db: Session, datos: Dict) -> AsignacionBusFrecuencia:
    """
    Raises:
        ValueError: bus and frecuencia of different cooperatives, bad range,
            or an overlapping ACTIVA assignment of the same pair
    """
    bus = get_bus(db, datos["bus_id"])
    frecuencia = get_frecuencia(db, datos["frecuencia_id"])
    if bus.cooperativa_id != frecuencia.cooperativa_id:
        raise ValueError("El bus y la frecuencia pertenecen a cooperativas distintas")

    fecha_inicio = datos["fecha_inicio"]
    fecha_fin = datos.get("fecha_fin")
    if fecha_fin is not None and fecha_fin < fecha_inicio:
        raise ValueError("La fecha fin no puede ser anterior a la fecha inicio")

    activas = (
        db.query(AsignacionBusFrecuencia)
        .filter(
            AsignacionBusFrecuencia.bus_id == bus.id,
            AsignacionBusFrecuencia.frecuencia_id == frecuencia.id,
            AsignacionBusFrecuencia.estado == AsignacionEstado.ACTIVA,
        )
        .all()
    )
    for otra in activas:
        if _se_solapan(fecha_inicio, fecha_fin, otra.fecha_inicio, otra.fecha_fin):
            raise ValueError(f"El bus ya tiene una asignación activa a esta frecuencia (#{otra.id})")

    asignacion = AsignacionBusFrecuencia(
        bus_id=bus.id,
        frecuencia_id=frecuencia.id,
        fecha_inicio=fecha_inicio,
        fecha_fin=fecha_fin,
        estado=AsignacionEstado.ACTIVA,
        observaciones=datos.get("observaciones"),
    )
    db.add(asignacion)
    db.commit()
    db.refresh(asignacion)
    logger.info(f"Assigned bus {bus.id} to frecuencia {frecuencia.id} (asignación {asignacion.id})")
    return asignacion


def cambiar_estado_asignacion(db: Session, asignacion_id: int, estado: str) -> AsignacionBusFrecuencia:
    asignacion = get_asignacion(db, asignacion_id)
    if estado not in (AsignacionEstado.ACTIVA, AsignacionEstado.SUSPENDIDA, AsignacionEstado.FINALIZADA):
        raise ValueError(f"Estado de asignación inválido: {estado}")
    if asignacion.estado == AsignacionEstado.FINALIZADA:
        raise ValueError("La asignación ya está finalizada")
    if estado == AsignacionEstado.FINALIZADA:
        return finalizar_asignacion(db, asignacion_id)
    asignacion.estado = estado
    db.commit()
    db.refresh(asignacion)
    return asignacion


def finalizar_asignacion(db: Session, asignacion_id: int) -> AsignacionBusFrecuencia:
    asignacion = get_asignacion(db, asignacion_id)
    asignacion.estado = AsignacionEstado.FINALIZADA
    asignacion.fecha_fin = today()
    db.commit()
    db.refresh(asignacion)
    logger.info(f"Finished asignación {asignacion_id}")
    return asignacion


# ---------------------------------------------------------------------------
# Días de parada
# ---------------------------------------------------------------------------

def registrar_dia_parada(db: Session, datos: Dict) -> DiaParadaBus:
    bus = get_bus(db, datos["bus_id"])
    motivo = (datos.get("motivo") or "").upper()
    if motivo not in MOTIVOS_PARADA:
        raise ValueError(f"Motivo inválido: {datos.get('motivo')}")

    parada = DiaParadaBus(
        bus_id=bus.id,
        fecha=datos["fecha"],
        motivo=motivo,
        observaciones=datos.get("observaciones"),
    )
    db.add(parada)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValueError(f"El bus {bus.placa} ya tiene un día de parada el {datos['fecha']}")
    db.refresh(parada)
    invalidar_estado(bus.cooperativa_id)
    logger.info(f"Registered stop day for bus {bus.id} on {parada.fecha} ({motivo})")
    return parada


def listar_dias_parada(db: Session, cooperativa_id: int, desde: Optional[date] = None,
                       hasta: Optional[date] = None) -> List[DiaParadaBus]:
    get_cooperativa(db, cooperativa_id)
    query = (
        db.query(DiaParadaBus)
        .join(Bus, Bus.id == DiaParadaBus.bus_id)
        .filter(Bus.cooperativa_id == cooperativa_id)
    )
    if desde:
        query = query.filter(DiaParadaBus.fecha >= desde)
    if hasta:
        query = query.filter(DiaParadaBus.fecha <= hasta)
    return query.order_by(DiaParadaBus.fecha, DiaParadaBus.bus_id).all()


def eliminar_dia_parada(db: Session, parada_id: int):
    parada = db.query(DiaParadaBus).filter(DiaParadaBus.id == parada_id).first()
    if parada is None:
        raise LookupError(f"Día de parada {parada_id} no encontrado")
    cooperativa_id = parada.bus.cooperativa_id
    db.delete(parada)
    db.commit()
    invalidar_estado(cooperativa_id)


# ---------------------------------------------------------------------------
# Disponibilidad
# ---------------------------------------------------------------------------

def _buses_en_parada(db: Session, cooperativa_id: int, fecha: date) -> set:
    rows = (
        db.query(DiaParadaBus.bus_id)
        .join(Bus, Bus.id == DiaParadaBus.bus_id)
        .filter(Bus.cooperativa_id == cooperativa_id, DiaParadaBus.fecha == fecha)
        .all()
    )
    return {row.bus_id for row in rows}


def _frecuencias_del_dia(db: Session, cooperativa_id: int, fecha: date) -> List[Frecuencia]:
    dia = dia_semana(fecha)
    activas = (
        db.query(Frecuencia)
        .filter(Frecuencia.cooperativa_id == cooperativa_id, Frecuencia.activa.is_(True))
        .all()
    )
    return [
        f for f in activas
        if dia in f.dias
        and (f.fecha_inicio is None or f.fecha_inicio <= fecha)
        and (f.fecha_fin is None or fecha <= f.fecha_fin)
    ]


def buses_disponibles(db: Session, cooperativa_id: int, fecha: date) -> List[Bus]:
    """Active buses, not in maintenance and without a stop day on fecha."""
    en_parada = _buses_en_parada(db, cooperativa_id, fecha)
    return [
        b for b in listar_buses(db, cooperativa_id)
        if b.activo and b.estado != BusEstado.MANTENIMIENTO and b.id not in en_parada
    ]


def resumen_disponibilidad(db: Session, cooperativa_id: int, fecha: date) -> Dict:
    buses = [b for b in listar_buses(db, cooperativa_id) if b.activo]
    en_parada = _buses_en_parada(db, cooperativa_id, fecha)
    disponibles = buses_disponibles(db, cooperativa_id, fecha)
    frecuencias = _frecuencias_del_dia(db, cooperativa_id, fecha)
    necesarios = {f.bus_id for f in frecuencias if f.bus_id}

    return {
        "fecha": fecha,
        "total_buses": len(buses),
        "buses_disponibles": len(disponibles),
        "buses_en_servicio": sum(1 for b in buses if b.estado == BusEstado.EN_SERVICIO),
        "buses_mantenimiento": sum(1 for b in buses if b.estado == BusEstado.MANTENIMIENTO),
        "buses_parada": len(en_parada),
        "frecuencias_activas": len(frecuencias),
        "exceso_buses": max(0, len(disponibles) - len(necesarios)),
    }


def _minutos_viajes(viajes: List[Viaje]) -> int:
    return sum((to_minutes(v.hora_llegada) - to_minutes(v.hora_salida)) % (24 * 60) for v in viajes)


def panel_disponibilidad(db: Session, cooperativa_id: int, fecha: date) -> Dict:
    """
    Per bus and per driver availability on fecha, based on the viajes
    already scheduled that day.
    """
    config = get_config(db, cooperativa_id)
    limite_bus = config.horas_operacion_max_bus * 60
    limite_chofer = config.max_horas_diarias_chofer * 60

    viajes = (
        db.query(Viaje)
        .filter(
            Viaje.cooperativa_id == cooperativa_id,
            Viaje.fecha == fecha,
            Viaje.estado != ViajeEstado.CANCELADO,
        )
        .all()
    )
    por_bus: Dict[int, List[Viaje]] = {}
    por_chofer: Dict[int, List[Viaje]] = {}
    for viaje in viajes:
        por_bus.setdefault(viaje.bus_id, []).append(viaje)
        if viaje.chofer_id:
            por_chofer.setdefault(viaje.chofer_id, []).append(viaje)

    choferes = choferes_activos(db, cooperativa_id)
    resumen_choferes = []
    estado_chofer = {}
    for chofer in choferes:
        minutos = _minutos_viajes(por_chofer.get(chofer.id, []))
        restantes = max(0, limite_chofer - minutos)
        estado_chofer[chofer.id] = (restantes > 0, round(restantes / 60, 2))
        resumen_choferes.append({
            "chofer_id": chofer.id,
            "nombre": chofer.nombre_completo,
            "disponible": restantes > 0,
            "horas_trabajadas_hoy": round(minutos / 60, 2),
            "horas_disponibles_hoy": round(restantes / 60, 2),
            "viajes_hoy": len(por_chofer.get(chofer.id, [])),
        })

    en_parada = _buses_en_parada(db, cooperativa_id, fecha)
    resumen_buses = []
    for bus in listar_buses(db, cooperativa_id):
        if not bus.activo:
            continue
        minutos = _minutos_viajes(por_bus.get(bus.id, []))
        disponible = bus.estado != BusEstado.MANTENIMIENTO and bus.id not in en_parada
        resumen_buses.append({
            "bus_id": bus.id,
            "placa": bus.placa,
            "numero_interno": bus.numero_interno,
            "capacidad_asientos": bus.capacidad_asientos,
            "disponible": disponible,
            "frecuencias_hoy": len(por_bus.get(bus.id, [])),
            "horas_disponibles_hoy": round(max(0, limite_bus - minutos) / 60, 2) if disponible else 0,
            "choferes_asignados": [
                {
                    "chofer_id": enlace.chofer_id,
                    "nombre": enlace.chofer.nombre_completo,
                    "tipo": enlace.tipo,
                    "disponible": estado_chofer.get(enlace.chofer_id, (False, 0))[0],
                    "horas_disponibles_hoy": estado_chofer.get(enlace.chofer_id, (False, 0))[1],
                }
                for enlace in bus.choferes
            ],
        })

    return {"fecha": fecha, "buses": resumen_buses, "choferes": resumen_choferes}
