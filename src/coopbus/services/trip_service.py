"""
Trip Service.

Materializes dated viajes out of recurring frecuencias and runs the driver
side of a trip (viaje del día, iniciar, finalizar, weekly hours summary).

Author: Backend Team
"""

import logging
from datetime import date
from typing import Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from ..constants import BusEstado, ReservaEstado, ViajeEstado
from ..models import DiaParadaBus, Frecuencia, Reserva, Viaje
from .catalog_service import get_usuario, paginar
from .circuit_service import get_config
from .horarios import (
    dia_semana,
    fechas_operativas,
    fmt_time,
    from_minutes,
    now,
    semana_de,
    to_minutes,
)

logger = logging.getLogger(__name__)


def get_viaje(db: Session, viaje_id: int) -> Viaje:
    viaje = db.query(Viaje).filter(Viaje.id == viaje_id).first()
    if viaje is None:
        raise LookupError(f"Viaje {viaje_id} no encontrado")
    return viaje


def tiene_ventas(db: Session, viaje_id: int) -> bool:
    """True when the viaje has at least one paid reservation."""
    return (
        db.query(Reserva)
        .filter(Reserva.viaje_id == viaje_id, Reserva.estado == ReservaEstado.PAGADO)
        .first()
        is not None
    )


def dias_parada(db: Session, bus_ids: Iterable[int], desde: date, hasta: date) -> Set[Tuple[int, date]]:
    bus_ids = list(bus_ids)
    if not bus_ids:
        return set()
    rows = (
        db.query(DiaParadaBus.bus_id, DiaParadaBus.fecha)
        .filter(DiaParadaBus.bus_id.in_(bus_ids), DiaParadaBus.fecha >= desde, DiaParadaBus.fecha <= hasta)
        .all()
    )
    return {(row.bus_id, row.fecha) for row in rows}


def viajes_programados(db: Session, cooperativa_id: int, fecha: date) -> List[Viaje]:
    """Non-cancelled viajes of the cooperative on a date."""
    return (
        db.query(Viaje)
        .filter(
            Viaje.cooperativa_id == cooperativa_id,
            Viaje.fecha == fecha,
            Viaje.estado != ViajeEstado.CANCELADO,
        )
        .order_by(Viaje.hora_salida, Viaje.id)
        .all()
    )


def viaje_existente(db: Session, bus_id: int, fecha: date, hora_salida) -> Optional[Viaje]:
    """Non-cancelled viaje of the bus at that date and departure time."""
    return (
        db.query(Viaje)
        .filter(
            Viaje.bus_id == bus_id,
            Viaje.fecha == fecha,
            Viaje.hora_salida == hora_salida,
            Viaje.estado != ViajeEstado.CANCELADO,
        )
        .first()
    )


def materializar_viajes(
    db: Session,
    cooperativa_id: int,
    desde: date,
    hasta: date,
    frecuencias: Optional[List[Frecuencia]] = None,
    commit: bool = True,
) -> Dict:
    """
    Create the dated viajes of active frecuencias over [desde, hasta].

    Each frecuencia contributes one viaje per date inside its vigencia that
    falls on one of its weekdays. Existing viajes and buses with a stop day
    are skipped.

    Args:
        frecuencias: Restrict to these frecuencias (default: all active ones of the cooperative)
        commit: Commit at the end; callers running a larger transaction pass False

    Returns:
        {"creados": int, "existentes": int, "omitidos_parada": int, "sin_bus": int}
    """
    if hasta < desde:
        raise ValueError("La fecha fin no puede ser anterior a la fecha inicio")

    if frecuencias is None:
        frecuencias = (
            db.query(Frecuencia)
            .filter(Frecuencia.cooperativa_id == cooperativa_id, Frecuencia.activa.is_(True))
            .all()
        )

    paradas = dias_parada(db, {f.bus_id for f in frecuencias if f.bus_id}, desde, hasta)
    resumen = {"creados": 0, "existentes": 0, "omitidos_parada": 0, "sin_bus": 0}

    for frecuencia in frecuencias:
        if frecuencia.bus_id is None:
            resumen["sin_bus"] += 1
            continue
        inicio = max(desde, frecuencia.fecha_inicio) if frecuencia.fecha_inicio else desde
        fin = min(hasta, frecuencia.fecha_fin) if frecuencia.fecha_fin else hasta
        if fin < inicio:
            continue

        llegada = from_minutes(to_minutes(frecuencia.hora_salida) + frecuencia.duracion_minutos)
        for fecha in fechas_operativas(inicio, fin, frecuencia.dias):
            if (frecuencia.bus_id, fecha) in paradas:
                resumen["omitidos_parada"] += 1
                continue
            if viaje_existente(db, frecuencia.bus_id, fecha, frecuencia.hora_salida):
                resumen["existentes"] += 1
                continue
            db.add(Viaje(
                cooperativa_id=frecuencia.cooperativa_id,
                frecuencia_id=frecuencia.id,
                bus_id=frecuencia.bus_id,
                chofer_id=frecuencia.chofer_id,
                fecha=fecha,
                hora_salida=frecuencia.hora_salida,
                hora_llegada=llegada,
                origen_id=frecuencia.origen_id,
                destino_id=frecuencia.destino_id,
                precio=frecuencia.precio,
                estado=ViajeEstado.PROGRAMADO,
            ))
            resumen["creados"] += 1
        # Keep later duplicate checks inside this run visible to the query
        db.flush()

    if commit:
        db.commit()
    if resumen["omitidos_parada"]:
        logger.warning(
            f"Cooperativa {cooperativa_id}: {resumen['omitidos_parada']} viajes skipped because of bus stop days"
        )
    logger.info(f"Cooperativa {cooperativa_id}: materialized {resumen['creados']} viajes from {desde} to {hasta}")
    return resumen


def listar_viajes(
    db: Session,
    fecha: Optional[date] = None,
    cooperativa_id: Optional[int] = None,
    estado: Optional[str] = None,
    page: int = 0,
    size: int = 20,
) -> Dict:
    query = db.query(Viaje)
    if fecha is not None:
        query = query.filter(Viaje.fecha == fecha)
    if cooperativa_id is not None:
        query = query.filter(Viaje.cooperativa_id == cooperativa_id)
    if estado:
        query = query.filter(Viaje.estado == estado)
    return paginar(query.order_by(Viaje.fecha, Viaje.hora_salida, Viaje.id), page, size)


def viaje_to_dict(viaje: Viaje) -> Dict:
    return {
        "id": viaje.id,
        "cooperativa_id": viaje.cooperativa_id,
        "frecuencia_id": viaje.frecuencia_id,
        "bus_id": viaje.bus_id,
        "bus_placa": viaje.bus.placa if viaje.bus else None,
        "chofer_id": viaje.chofer_id,
        "chofer_nombre": viaje.chofer.nombre_completo if viaje.chofer else None,
        "fecha": viaje.fecha,
        "hora_salida": fmt_time(viaje.hora_salida),
        "hora_llegada": fmt_time(viaje.hora_llegada),
        "origen_id": viaje.origen_id,
        "origen": viaje.origen.nombre if viaje.origen else None,
        "destino_id": viaje.destino_id,
        "destino": viaje.destino.nombre if viaje.destino else None,
        "precio": viaje.precio,
        "estado": viaje.estado,
        "observaciones": viaje.observaciones,
    }


# ---------------------------------------------------------------------------
# Driver lifecycle
# ---------------------------------------------------------------------------

def _reservas_activas(db: Session, viaje_id: int) -> List[Reserva]:
    return (
        db.query(Reserva)
        .filter(
            Reserva.viaje_id == viaje_id,
            or_(
                Reserva.estado == ReservaEstado.PAGADO,
                and_(Reserva.estado == ReservaEstado.PENDIENTE, Reserva.fecha_expira > now()),
            ),
        )
        .order_by(Reserva.id)
        .all()
    )


def viaje_del_dia(db: Session, chofer_id: int, fecha: date) -> Optional[Dict]:
    """
    First trip of the driver on the date that is not finished or cancelled,
    with its passenger list.

    Returns:
        Trip dict or None when the driver has nothing left that day
    """
    get_usuario(db, chofer_id)
    viaje = (
        db.query(Viaje)
        .filter(
            Viaje.chofer_id == chofer_id,
            Viaje.fecha == fecha,
            Viaje.estado.in_([ViajeEstado.PROGRAMADO, ViajeEstado.EN_RUTA]),
        )
        .order_by(Viaje.hora_salida)
        .first()
    )
    if viaje is None:
        return None

    pasajeros = [
        {
            "reserva_id": r.id,
            "cliente_email": r.cliente_email,
            "cliente_nombre": r.cliente_nombre,
            "asientos": r.lista_asientos,
            "estado": r.estado,
        }
        for r in _reservas_activas(db, viaje.id)
    ]
    bus = viaje.bus
    return {
        "id": viaje.id,
        "origen": viaje.origen.nombre,
        "destino": viaje.destino.nombre,
        "fecha": viaje.fecha,
        "estado": viaje.estado,
        "hora_salida_programada": fmt_time(viaje.hora_salida),
        "hora_llegada_estimada": fmt_time(viaje.hora_llegada),
        "hora_salida_real": viaje.iniciado_en.strftime("%H:%M") if viaje.iniciado_en else None,
        "hora_llegada_real": viaje.finalizado_en.strftime("%H:%M") if viaje.finalizado_en else None,
        "bus_placa": bus.placa,
        "bus_marca": " ".join(m for m in (bus.chasis_marca, bus.carroceria_marca) if m) or None,
        "capacidad_total": bus.capacidad_asientos,
        "total_pasajeros": sum(len(p["asientos"]) for p in pasajeros),
        "pasajeros": pasajeros,
    }


def iniciar_viaje(db: Session, viaje_id: int, chofer_id: Optional[int] = None) -> Viaje:
    viaje = get_viaje(db, viaje_id)
    if chofer_id is not None and viaje.chofer_id != chofer_id:
        raise ValueError("El viaje no está asignado a este chofer")
    if viaje.estado != ViajeEstado.PROGRAMADO:
        raise ValueError(f"Solo se puede iniciar un viaje PROGRAMADO (estado actual: {viaje.estado})")

    viaje.estado = ViajeEstado.EN_RUTA
    viaje.iniciado_en = now()
    viaje.bus.estado = BusEstado.EN_SERVICIO
    db.commit()
    db.refresh(viaje)
    logger.info(f"Viaje {viaje_id} started (bus {viaje.bus_id})")
    return viaje


def finalizar_viaje(db: Session, viaje_id: int, observaciones: Optional[str] = None,
                    chofer_id: Optional[int] = None) -> Viaje:
    viaje = get_viaje(db, viaje_id)
    if chofer_id is not None and viaje.chofer_id != chofer_id:
        raise ValueError("El viaje no está asignado a este chofer")
    if viaje.estado != ViajeEstado.EN_RUTA:
        raise ValueError(f"Solo se puede finalizar un viaje EN_RUTA (estado actual: {viaje.estado})")

    viaje.estado = ViajeEstado.FINALIZADO
    viaje.finalizado_en = now()
    if observaciones:
        viaje.observaciones = observaciones
    viaje.bus.estado = BusEstado.DISPONIBLE
    db.commit()
    db.refresh(viaje)
    logger.info(f"Viaje {viaje_id} finished")
    return viaje


def resumen_horas(db: Session, chofer_id: int, fecha: date) -> Dict:
    """
    Weekly driving summary (Monday..Sunday) of the week containing fecha.

    A day counts as extended when its minutes exceed the normal daily
    limit. Alerts are raised for days above the exceptional limit and for
    more extended days than the weekly allowance.
    """
    chofer = get_usuario(db, chofer_id)
    config = get_config(db, chofer.cooperativa_id)
    semana = semana_de(fecha)
    normal = config.max_horas_diarias_chofer * 60
    excepcional = config.max_horas_excepcionales * 60

    viajes = (
        db.query(Viaje)
        .filter(
            Viaje.chofer_id == chofer_id,
            Viaje.fecha >= semana[0],
            Viaje.fecha <= semana[-1],
            Viaje.estado != ViajeEstado.CANCELADO,
        )
        .all()
    )
    minutos_por_dia = {d: 0 for d in semana}
    for viaje in viajes:
        duracion = (to_minutes(viaje.hora_llegada) - to_minutes(viaje.hora_salida)) % (24 * 60)
        minutos_por_dia[viaje.fecha] += duracion

    dias = []
    alertas = []
    for d in semana:
        minutos = minutos_por_dia[d]
        extendida = minutos > normal
        dias.append({
            "fecha": d,
            "dia_semana": dia_semana(d),
            "horas_trabajadas": minutos // 60,
            "minutos_trabajados": minutos % 60,
            "jornada_extendida": extendida,
        })
        if minutos > excepcional:
            alertas.append(f"{d.isoformat()}: {minutos / 60:.1f} h supera el máximo de {config.max_horas_excepcionales} h")

    extendidos = sum(1 for d in dias if d["jornada_extendida"])
    if extendidos > config.max_dias_excepcionales_semana:
        alertas.append(
            f"{extendidos} días con jornada extendida; máximo permitido {config.max_dias_excepcionales_semana}"
        )
    total = sum(minutos_por_dia.values())

    return {
        "chofer_id": chofer.id,
        "chofer_nombre": chofer.nombre_completo,
        "semana_inicio": semana[0],
        "semana_fin": semana[-1],
        "total_horas_semana": total // 60,
        "total_minutos_semana": total % 60,
        "dias_con_jornada_extendida": extendidos,
        "dias_restantes_jornada_extendida": max(0, config.max_dias_excepcionales_semana - extendidos),
        "dias_semana": dias,
        "alertas": alertas,
    }
