"""
Circuit Service.

Per-cooperative frequency configuration and the RutaCircuito catalogue:
every ordered pair of terminals enabled for a cooperative, with distance,
duration, suggested price, frequency type, rest and allowed stops.

Author: Backend Team
"""

import logging
from typing import Dict, Iterable, List, Optional

from cachetools import TTLCache
from sqlalchemy.orm import Session

from ..config_loader import get_settings
from ..constants import (
    MIN_PRECIO,
    PARADA_DETOUR_FACTOR,
    TIPO_INTERPROVINCIAL,
    TIPO_INTRAPROVINCIAL,
)
from ..models import Cooperativa, CooperativaTerminal, FrecuenciaConfig, Terminal
from .horarios import MINUTOS_DIA, fmt_time, require_time, to_minutes
from .planning import Tramo
from .route_service import haversine_km, route_service

logger = logging.getLogger(__name__)

TIME_FIELDS = ("hora_inicio_operacion", "hora_fin_operacion")
INT_FIELDS = (
    "max_horas_diarias_chofer",
    "max_horas_excepcionales",
    "max_dias_excepcionales_semana",
    "tiempo_descanso_entre_viajes_minutos",
    "descanso_interprovincial_minutos",
    "tiempo_minimo_parada_bus_minutos",
    "horas_operacion_max_bus",
    "intervalo_minimo_frecuencias_minutos",
)
FLOAT_FIELDS = (
    "precio_base_por_km",
    "factor_diesel_por_km",
    "precio_diesel",
    "margen_ganancia_porcentaje",
    "umbral_interprovincial_km",
)
# Must be strictly positive; the remaining numeric fields only non-negative
POSITIVE_FIELDS = (
    "max_horas_diarias_chofer",
    "max_horas_excepcionales",
    "horas_operacion_max_bus",
    "intervalo_minimo_frecuencias_minutos",
    "umbral_interprovincial_km",
)
CONFIG_FIELDS = TIME_FIELDS + INT_FIELDS + FLOAT_FIELDS

# Generation state snapshot per cooperative; dropped whenever fleet,
# staff, terminals or frequencies change.
estado_cache = TTLCache(maxsize=256, ttl=60)


def invalidar_estado(cooperativa_id: int):
    for key in [k for k in estado_cache if k[1] == cooperativa_id]:
        estado_cache.pop(key, None)
    logger.debug(f"Generation state cache cleared for cooperativa {cooperativa_id}")


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

def get_cooperativa(db: Session, cooperativa_id: int) -> Cooperativa:
    cooperativa = db.query(Cooperativa).filter(Cooperativa.id == cooperativa_id).first()
    if cooperativa is None:
        raise LookupError(f"Cooperativa {cooperativa_id} no encontrada")
    return cooperativa


def terminales_habilitadas(db: Session, cooperativa_id: int) -> List[Terminal]:
    return (
        db.query(Terminal)
        .join(CooperativaTerminal, CooperativaTerminal.terminal_id == Terminal.id)
        .filter(CooperativaTerminal.cooperativa_id == cooperativa_id, Terminal.activo.is_(True))
        .order_by(Terminal.nombre)
        .all()
    )


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def _defaults() -> Dict:
    defaults = dict(get_settings().get("frecuencias", {}))
    for field in TIME_FIELDS:
        defaults[field] = require_time(defaults[field], field)
    return defaults


def get_config(db: Session, cooperativa_id: int) -> FrecuenciaConfig:
    """
    Frequency configuration of a cooperative; created from the YAML defaults
    on first access.
    """
    get_cooperativa(db, cooperativa_id)
    config = db.query(FrecuenciaConfig).filter(FrecuenciaConfig.cooperativa_id == cooperativa_id).first()
    if config is None:
        config = FrecuenciaConfig(cooperativa_id=cooperativa_id, **_defaults())
        db.add(config)
        db.commit()
        db.refresh(config)
        logger.info(f"Created default frequency configuration for cooperativa {cooperativa_id}")
    return config


def update_config(db: Session, cooperativa_id: int, cambios: Dict) -> FrecuenciaConfig:
    """
    Partial update of the configuration.

    Args:
        cambios: snake_case field -> value; None values are ignored

    Raises:
        ValueError: unknown field, non-positive limits, or an inconsistent window/limit pair
    """
    config = get_config(db, cooperativa_id)
    valores = {field: getattr(config, field) for field in CONFIG_FIELDS}

    for field, value in cambios.items():
        if value is None:
            continue
        if field not in CONFIG_FIELDS:
            raise ValueError(f"Campo de configuración desconocido: {field}")
        if field in TIME_FIELDS:
            value = require_time(value, field)
        elif field in INT_FIELDS:
            value = int(value)
        else:
            value = float(value)
        if field in POSITIVE_FIELDS and value <= 0:
            raise ValueError(f"{field} debe ser mayor que 0")
        if field not in TIME_FIELDS and value < 0:
            raise ValueError(f"{field} no puede ser negativo")
        valores[field] = value

    if valores["hora_inicio_operacion"] >= valores["hora_fin_operacion"]:
        raise ValueError("La hora de inicio de operación debe ser anterior a la hora de fin")
    if valores["max_horas_excepcionales"] < valores["max_horas_diarias_chofer"]:
        raise ValueError("Las horas excepcionales no pueden ser menores que las horas diarias")

    for field, value in valores.items():
        setattr(config, field, value)
    db.commit()
    db.refresh(config)
    invalidar_estado(cooperativa_id)
    logger.info(f"Updated frequency configuration for cooperativa {cooperativa_id}")
    return config


def config_to_dict(config: FrecuenciaConfig) -> Dict:
    data = {"id": config.id, "cooperativa_id": config.cooperativa_id}
    for field in CONFIG_FIELDS:
        value = getattr(config, field)
        data[field] = fmt_time(value) if field in TIME_FIELDS else value
    return data


def ventana_operacion(config: FrecuenciaConfig) -> tuple:
    """(start, end) of the operating window in minutes since midnight."""
    return to_minutes(config.hora_inicio_operacion), to_minutes(config.hora_fin_operacion)


# ---------------------------------------------------------------------------
# Circuit rules
# ---------------------------------------------------------------------------

def tipo_frecuencia(origen: Terminal, destino: Terminal, distancia_km: float, config: FrecuenciaConfig) -> str:
    mismo_provincia = (origen.provincia or "").strip().lower() == (destino.provincia or "").strip().lower()
    if not mismo_provincia or distancia_km > config.umbral_interprovincial_km:
        return TIPO_INTERPROVINCIAL
    return TIPO_INTRAPROVINCIAL


def descanso_minutos(tipo: str, config: FrecuenciaConfig) -> int:
    if tipo == TIPO_INTERPROVINCIAL:
        return config.descanso_interprovincial_minutos
    return config.tiempo_descanso_entre_viajes_minutos


def turnaround_minutos(tipo: str, config: FrecuenciaConfig) -> int:
    """Minimum time a bus stays at a terminal before its next departure."""
    return max(descanso_minutos(tipo, config), config.tiempo_minimo_parada_bus_minutos)


def tramo_programado(
    origen: Terminal,
    destino: Terminal,
    salida: int,
    duracion: int,
    config: FrecuenciaConfig,
    tipo: Optional[str] = None,
) -> Tramo:
    """Stored departure as a planning Tramo, resting according to its own frequency type."""
    if not tipo:
        distancia = route_service.calcular_terminales(origen, destino)["distancia_km"]
        tipo = tipo_frecuencia(origen, destino, distancia, config)
    return Tramo(
        origen_id=origen.id,
        destino_id=destino.id,
        salida=salida,
        llegada=salida + duracion,
        descanso=turnaround_minutos(tipo, config),
        descanso_chofer=descanso_minutos(tipo, config),
    )


def tramo_viaje(viaje, config: FrecuenciaConfig) -> Tramo:
    """Stored viaje as a planning Tramo; its frecuencia, when any, gives the type."""
    salida = to_minutes(viaje.hora_salida)
    duracion = (to_minutes(viaje.hora_llegada) - salida) % MINUTOS_DIA
    tipo = viaje.frecuencia.tipo_frecuencia if viaje.frecuencia is not None else None
    return tramo_programado(viaje.origen, viaje.destino, salida, duracion, config, tipo)


def max_paradas_permitidas(tipo: str, duracion_minutos: int) -> int:
    if tipo != TIPO_INTERPROVINCIAL:
        return 0
    if duracion_minutos < 60:
        return 0
    if duracion_minutos < 4 * 60:
        return 1
    if duracion_minutos <= 8 * 60:
        return 2
    return 3


def calcular_precio(distancia_km: float, config: FrecuenciaConfig) -> float:
    """km x (base + diesel factor x diesel price) x (1 + margin), floored at MIN_PRECIO."""
    costo_km = config.precio_base_por_km + config.factor_diesel_por_km * config.precio_diesel
    precio = distancia_km * costo_km * (1 + config.margen_ganancia_porcentaje / 100)
    return max(MIN_PRECIO, round(precio, 2))


def paradas_intermedias(
    origen: Terminal,
    destino: Terminal,
    candidatos: Iterable[Terminal],
    max_paradas: int,
    duracion_minutos: int,
) -> List[Dict]:
    """
    Terminals that lie on the way from origen to destino.

    A candidate qualifies when d(A,T) + d(T,B) stays within the detour
    factor of d(A,B). Stops are ordered by distance from the origin and the
    arrival offset is proportional to the distance travelled.
    """
    if max_paradas <= 0:
        return []

    directa = haversine_km(origen.latitud, origen.longitud, destino.latitud, destino.longitud)
    if directa <= 0:
        return []

    en_ruta = []
    for terminal in candidatos:
        if terminal.id in (origen.id, destino.id):
            continue
        d_at = haversine_km(origen.latitud, origen.longitud, terminal.latitud, terminal.longitud)
        d_tb = haversine_km(terminal.latitud, terminal.longitud, destino.latitud, destino.longitud)
        if d_at + d_tb <= directa * PARADA_DETOUR_FACTOR:
            en_ruta.append((d_at, d_tb, terminal))

    en_ruta.sort(key=lambda item: (item[0], item[2].id))
    paradas = []
    for orden, (d_at, d_tb, terminal) in enumerate(en_ruta[:max_paradas], start=1):
        minutos = int(round(duracion_minutos * d_at / (d_at + d_tb)))
        paradas.append({
            "terminal_id": terminal.id,
            "ciudad": terminal.ciudad,
            "orden_parada": orden,
            "minutos_desde_origen": min(max(1, minutos), max(1, duracion_minutos - 1)),
            "precio_adicional": 0.0,
        })
    return paradas


def construir_circuito(origen: Terminal, destino: Terminal, config: FrecuenciaConfig) -> Dict:
    ruta = route_service.calcular_terminales(origen, destino)
    distancia = ruta["distancia_km"]
    duracion = ruta["duracion_minutos"]
    tipo = tipo_frecuencia(origen, destino, distancia, config)
    return {
        "terminal_origen_id": origen.id,
        "terminal_origen_nombre": origen.nombre,
        "terminal_destino_id": destino.id,
        "terminal_destino_nombre": destino.nombre,
        "distancia_km": distancia,
        "duracion_minutos": duracion,
        "precio_sugerido": calcular_precio(distancia, config),
        "tipo_frecuencia": tipo,
        "max_paradas_permitidas": max_paradas_permitidas(tipo, duracion),
        "descanso_minutos": descanso_minutos(tipo, config),
    }


def calcular_circuitos(db: Session, cooperativa_id: int, config: Optional[FrecuenciaConfig] = None) -> List[Dict]:
    """
    RutaCircuito for every ordered pair of enabled terminals.

    Sorted by origin then destination name, so for each pair the direction
    whose origin sorts first (the ida) precedes its vuelta.
    """
    config = config or get_config(db, cooperativa_id)
    terminales = terminales_habilitadas(db, cooperativa_id)

    circuitos = []
    for origen in terminales:
        for destino in terminales:
            if origen.id == destino.id:
                continue
            circuitos.append(construir_circuito(origen, destino, config))

    circuitos.sort(key=lambda c: (
        c["terminal_origen_nombre"].lower(),
        c["terminal_destino_nombre"].lower(),
    ))
    logger.debug(f"Computed {len(circuitos)} circuit routes for cooperativa {cooperativa_id}")
    return circuitos
