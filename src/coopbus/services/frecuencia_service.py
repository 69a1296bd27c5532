"""
Frecuencia CRUD and validation.
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, aliased

from ..constants import DIAS_SEMANA
from ..models import Frecuencia, ParadaIntermedia, Terminal
from .catalog_service import get_bus, paginar
from .circuit_service import (
    calcular_precio,
    get_config,
    invalidar_estado,
    terminales_habilitadas,
    tipo_frecuencia,
    tramo_programado,
    ventana_operacion,
)
from .horarios import MINUTOS_DIA, fmt_time, normalizar_dias, parse_time, require_time, to_minutes
from .route_service import route_service

logger = logging.getLogger(__name__)

SEMANA = 7 * MINUTOS_DIA


def get_frecuencia(db: Session, frecuencia_id: int) -> Frecuencia:
    frecuencia = db.query(Frecuencia).filter(Frecuencia.id == frecuencia_id).first()
    if frecuencia is None:
        raise LookupError(f"Frecuencia {frecuencia_id} no encontrada")
    return frecuencia


def listar_frecuencias(
    db: Session,
    cooperativa_id: int,
    search: Optional[str] = None,
    solo_activas: bool = True,
    page: int = 0,
    size: int = 20,
) -> Dict:
    query = db.query(Frecuencia).filter(Frecuencia.cooperativa_id == cooperativa_id)
    if solo_activas:
        query = query.filter(Frecuencia.activa.is_(True))
    if search:
        origen = aliased(Terminal)
        destino = aliased(Terminal)
        pattern = f"%{search.strip().lower()}%"
        query = (
            query.join(origen, origen.id == Frecuencia.origen_id)
            .join(destino, destino.id == Frecuencia.destino_id)
            .filter(or_(
                func.lower(origen.nombre).like(pattern),
                func.lower(origen.ciudad).like(pattern),
                func.lower(destino.nombre).like(pattern),
                func.lower(destino.ciudad).like(pattern),
            ))
        )
    return paginar(query.order_by(Frecuencia.hora_salida, Frecuencia.id), page, size)


def frecuencia_to_dict(frecuencia: Frecuencia) -> Dict:
    return {
        "id": frecuencia.id,
        "cooperativa_id": frecuencia.cooperativa_id,
        "origen_id": frecuencia.origen_id,
        "origen": frecuencia.origen.nombre if frecuencia.origen else None,
        "destino_id": frecuencia.destino_id,
        "destino": frecuencia.destino.nombre if frecuencia.destino else None,
        "hora_salida": fmt_time(frecuencia.hora_salida),
        "duracion_minutos": frecuencia.duracion_minutos,
        "dias_operacion": frecuencia.dias,
        "fecha_inicio": frecuencia.fecha_inicio,
        "fecha_fin": frecuencia.fecha_fin,
        "bus_id": frecuencia.bus_id,
        "bus_placa": frecuencia.bus.placa if frecuencia.bus else None,
        "chofer_id": frecuencia.chofer_id,
        "chofer_nombre": frecuencia.chofer.nombre_completo if frecuencia.chofer else None,
        "tipo_frecuencia": frecuencia.tipo_frecuencia,
        "es_viaje_de": frecuencia.es_viaje_de,
        "precio": frecuencia.precio,
        "activa": frecuencia.activa,
        "paradas": [
            {
                "terminal_id": p.terminal_id,
                "ciudad": p.ciudad,
                "orden_parada": p.orden_parada,
                "minutos_desde_origen": p.minutos_desde_origen,
                "precio_adicional": p.precio_adicional,
            }
            for p in frecuencia.paradas
        ],
    }


def _ocupacion_semanal(dias: List[str], salida: int, minutos: int) -> List[tuple]:
    """[start, end) spans in minutes since Monday 00:00 for each operating weekday."""
    spans = []
    for dia in dias:
        inicio = DIAS_SEMANA.index(dia) * MINUTOS_DIA + salida
        spans.append((inicio, inicio + minutos))
    return spans


def _se_solapan(a: List[tuple], b: List[tuple]) -> bool:
    for inicio, fin in a:
        for otro_inicio, otro_fin in b:
            # Sunday night spills into Monday
            for desfase in (-SEMANA, 0, SEMANA):
                if inicio < otro_fin + desfase and otro_inicio + desfase < fin:
                    return True
    return False


def validar_frecuencia(
    db: Session,
    cooperativa_id: int,
    datos: Dict,
    excluir_id: Optional[int] = None,
) -> Dict:
    """
    Check a candidate frecuencia against the cooperative's rules.

    Args:
        datos: origen_id, destino_id, hora_salida, duracion_minutos,
            dias_operacion, bus_id (optional)
        excluir_id: frecuencia being updated, ignored in overlap checks

    Returns:
        {"valida": bool, "errores": [...], "advertencias": [...]}
    """
    config = get_config(db, cooperativa_id)
    errores: List[str] = []
    advertencias: List[str] = []

    terminales = {t.id: t for t in terminales_habilitadas(db, cooperativa_id)}
    origen = terminales.get(datos.get("origen_id"))
    destino = terminales.get(datos.get("destino_id"))
    if origen is None:
        errores.append("El terminal de origen no está habilitado para la cooperativa")
    if destino is None:
        errores.append("El terminal de destino no está habilitado para la cooperativa")
    if datos.get("origen_id") is not None and datos.get("origen_id") == datos.get("destino_id"):
        errores.append("El origen y el destino deben ser distintos")

    duracion = datos.get("duracion_minutos") or 0
    if duracion <= 0:
        errores.append("La duración debe ser mayor que 0")

    salida = parse_time(datos.get("hora_salida") or "")
    if salida is None:
        errores.append("Hora de salida inválida (formato HH:MM)")
    else:
        inicio, fin = ventana_operacion(config)
        if not inicio <= to_minutes(salida) <= fin:
            errores.append(
                f"La hora de salida debe estar entre {fmt_time(inicio)} y {fmt_time(fin)}"
            )

    try:
        dias = normalizar_dias(datos.get("dias_operacion"))
        if not dias:
            errores.append("Debe seleccionar al menos un día de operación")
    except ValueError as e:
        errores.append(str(e))
        dias = []

    if errores:
        return {"valida": False, "errores": errores, "advertencias": advertencias}

    activas = (
        db.query(Frecuencia)
        .filter(Frecuencia.cooperativa_id == cooperativa_id, Frecuencia.activa.is_(True))
        .all()
    )
    if excluir_id is not None:
        activas = [f for f in activas if f.id != excluir_id]

    salida_min = to_minutes(salida)
    for otra in activas:
        if not set(otra.dias) & set(dias):
            continue
        if otra.origen_id == origen.id and otra.destino_id == destino.id:
            gap = abs(to_minutes(otra.hora_salida) - salida_min)
            if gap < config.intervalo_minimo_frecuencias_minutos:
                advertencias.append(
                    f"Existe otra salida {origen.nombre} → {destino.nombre} a las "
                    f"{fmt_time(otra.hora_salida)} (menos de {config.intervalo_minimo_frecuencias_minutos} min)"
                )

    bus_id = datos.get("bus_id")
    if bus_id:
        # Busy spans on a weekly clock, so a late trip reaches into the next weekday
        vuelta = tramo_programado(origen, destino, salida_min, duracion, config).descanso
        nueva = _ocupacion_semanal(dias, salida_min, duracion + vuelta)
        for otra in activas:
            if otra.bus_id != bus_id:
                continue
            otra_salida = to_minutes(otra.hora_salida)
            otra_vuelta = tramo_programado(
                otra.origen, otra.destino, otra_salida, otra.duracion_minutos, config, otra.tipo_frecuencia
            ).descanso
            if _se_solapan(nueva, _ocupacion_semanal(otra.dias, otra_salida, otra.duracion_minutos + otra_vuelta)):
                errores.append(
                    f"El bus ya opera la frecuencia {otra.id} a las {fmt_time(otra.hora_salida)} en días coincidentes"
                )

    return {"valida": not errores, "errores": errores, "advertencias": advertencias}


def _aplicar(db: Session, frecuencia: Frecuencia, datos: Dict, config):
    origen = db.query(Terminal).filter(Terminal.id == datos["origen_id"]).first()
    destino = db.query(Terminal).filter(Terminal.id == datos["destino_id"]).first()
    distancia = route_service.calcular_terminales(origen, destino)["distancia_km"]

    frecuencia.origen_id = origen.id
    frecuencia.destino_id = destino.id
    frecuencia.hora_salida = require_time(datos["hora_salida"], "hora_salida")
    frecuencia.duracion_minutos = datos["duracion_minutos"]
    frecuencia.dias_operacion = ",".join(normalizar_dias(datos["dias_operacion"]))
    frecuencia.fecha_inicio = datos.get("fecha_inicio")
    frecuencia.fecha_fin = datos.get("fecha_fin")
    frecuencia.bus_id = datos.get("bus_id")
    frecuencia.chofer_id = datos.get("chofer_id")
    frecuencia.tipo_frecuencia = tipo_frecuencia(origen, destino, distancia, config)
    frecuencia.es_viaje_de = datos.get("es_viaje_de")
    if datos.get("precio") is not None:
        frecuencia.precio = datos["precio"]
    elif not frecuencia.precio:
        frecuencia.precio = calcular_precio(distancia, config)
    frecuencia.paradas = [
        ParadaIntermedia(
            terminal_id=p.get("terminal_id"),
            ciudad=p["ciudad"],
            orden_parada=p.get("orden_parada") or i,
            minutos_desde_origen=p.get("minutos_desde_origen") or 0,
            precio_adicional=p.get("precio_adicional") or 0.0,
        )
        for i, p in enumerate(datos.get("paradas") or [], start=1)
    ]


def crear_frecuencia(db: Session, cooperativa_id: int, datos: Dict) -> Frecuencia:
    """
    Raises:
        ValueError: validation errors joined into one message
    """
    if datos.get("bus_id"):
        bus = get_bus(db, datos["bus_id"])
        if bus.cooperativa_id != cooperativa_id:
            raise ValueError("El bus no pertenece a la cooperativa")
    if datos.get("fecha_inicio") and datos.get("fecha_fin") and datos["fecha_fin"] < datos["fecha_inicio"]:
        raise ValueError("La fecha fin no puede ser anterior a la fecha inicio")

    validacion = validar_frecuencia(db, cooperativa_id, datos)
    if not validacion["valida"]:
        raise ValueError("; ".join(validacion["errores"]))

    config = get_config(db, cooperativa_id)
    frecuencia = Frecuencia(cooperativa_id=cooperativa_id, activa=True, precio=0.0)
    _aplicar(db, frecuencia, datos, config)
    db.add(frecuencia)
    db.commit()
    db.refresh(frecuencia)
    invalidar_estado(cooperativa_id)
    logger.info(f"Created frecuencia {frecuencia.id} for cooperativa {cooperativa_id}")
    return frecuencia


def actualizar_frecuencia(db: Session, frecuencia_id: int, datos: Dict) -> Frecuencia:
    frecuencia = get_frecuencia(db, frecuencia_id)
    actual = frecuencia_to_dict(frecuencia)
    merged = {
        "origen_id": actual["origen_id"],
        "destino_id": actual["destino_id"],
        "hora_salida": actual["hora_salida"],
        "duracion_minutos": actual["duracion_minutos"],
        "dias_operacion": actual["dias_operacion"],
        "fecha_inicio": actual["fecha_inicio"],
        "fecha_fin": actual["fecha_fin"],
        "bus_id": actual["bus_id"],
        "chofer_id": actual["chofer_id"],
        "es_viaje_de": actual["es_viaje_de"],
        "precio": actual["precio"],
        "paradas": actual["paradas"],
    }
    merged.update({k: v for k, v in datos.items() if v is not None})

    validacion = validar_frecuencia(db, frecuencia.cooperativa_id, merged, excluir_id=frecuencia_id)
    if not validacion["valida"]:
        raise ValueError("; ".join(validacion["errores"]))

    _aplicar(db, frecuencia, merged, get_config(db, frecuencia.cooperativa_id))
    db.commit()
    db.refresh(frecuencia)
    invalidar_estado(frecuencia.cooperativa_id)
    logger.info(f"Updated frecuencia {frecuencia_id}")
    return frecuencia


def eliminar_frecuencia(db: Session, frecuencia_id: int) -> Frecuencia:
    frecuencia = get_frecuencia(db, frecuencia_id)
    frecuencia.activa = False
    db.commit()
    invalidar_estado(frecuencia.cooperativa_id)
    logger.info(f"Deactivated frecuencia {frecuencia_id}")
    return frecuencia
