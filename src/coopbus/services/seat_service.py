"""
Seat Layout Service.

Seats are numbered "<fila><letra>" (1A, 1B, ...). Rows keep counting on
the upper deck, so floor 2 starts right after floor 1's last row.
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from ..constants import SEAT_LETTERS, TIPOS_ASIENTO
from ..models import Asiento
from .catalog_service import get_bus

logger = logging.getLogger(__name__)

MIN_COLUMNAS, MAX_COLUMNAS = 2, 5
MIN_FILAS, MAX_FILAS = 1, 20


def _asientos_piso(db: Session, bus_id: int, piso: int) -> List[Asiento]:
    return (
        db.query(Asiento)
        .filter(Asiento.bus_id == bus_id, Asiento.piso == piso)
        .order_by(Asiento.fila, Asiento.columna)
        .all()
    )


def _numero(fila: int, columna: int) -> str:
    return f"{fila}{SEAT_LETTERS[columna - 1]}"


def _ultima_fila(asientos: List[Asiento]) -> int:
    return max((a.fila for a in asientos), default=0)


def generate_layout(db: Session, bus_id: int, filas: int, columnas: int, piso: int = 1,
                    sobrescribir: bool = False) -> Dict:
    """
    Generate the seat grid of one floor.

    Args:
        filas: 1..20 rows
        columnas: 2..5 seats per row
        piso: 1, or 2 for double-deck buses
        sobrescribir: replace the seats already on that floor

    Returns:
        {"asientos_creados", "capacidad_piso", "asientos_excedentes"}

    Raises:
        ValueError: out-of-range grid, floor 2 on a single-deck bus, or
            existing seats without sobrescribir
    """
    bus = get_bus(db, bus_id)
    if not MIN_COLUMNAS <= columnas <= MAX_COLUMNAS:
        raise ValueError(f"columnas debe estar entre {MIN_COLUMNAS} y {MAX_COLUMNAS}")
    if not MIN_FILAS <= filas <= MAX_FILAS:
        raise ValueError(f"filas debe estar entre {MIN_FILAS} y {MAX_FILAS}")
    if piso not in (1, 2):
        raise ValueError("piso debe ser 1 o 2")
    if piso == 2 and not bus.dos_pisos:
        raise ValueError(f"El bus {bus.placa} no tiene segundo piso")

    existentes = _asientos_piso(db, bus_id, piso)
    if existentes and not sobrescribir:
        raise ValueError(f"El piso {piso} ya tiene {len(existentes)} asientos; use sobrescribir para reemplazarlos")

    for asiento in existentes:
        db.delete(asiento)

    # Upper deck seats are numbered after floor 1; regenerate them when floor 1 changes size
    superiores = []
    if piso == 1:
        for asiento in _asientos_piso(db, bus_id, 2):
            superiores.append((asiento.fila, asiento.columna, asiento.tipo_asiento, asiento.habilitado))
            db.delete(asiento)
        desplazamiento = 0
    else:
        desplazamiento = _ultima_fila(_asientos_piso(db, bus_id, 1))
    db.flush()

    creados = 0
    for fila in range(desplazamiento + 1, desplazamiento + filas + 1):
        for columna in range(1, columnas + 1):
            db.add(Asiento(
                bus_id=bus_id,
                numero_asiento=_numero(fila, columna),
                fila=fila,
                columna=columna,
                piso=piso,
                tipo_asiento="NORMAL",
                habilitado=True,
            ))
            creados += 1

    if superiores:
        primera_superior = min(s[0] for s in superiores)
        for fila_anterior, columna, tipo, habilitado in superiores:
            fila = filas + 1 + (fila_anterior - primera_superior)
            db.add(Asiento(
                bus_id=bus_id,
                numero_asiento=_numero(fila, columna),
                fila=fila,
                columna=columna,
                piso=2,
                tipo_asiento=tipo,
                habilitado=habilitado,
            ))
    db.commit()

    capacidad = bus.capacidad_piso_1 if piso == 1 else bus.capacidad_piso_2
    logger.info(f"Generated {creados} seats on floor {piso} of bus {bus_id}")
    return {
        "asientos_creados": creados,
        "capacidad_piso": capacidad,
        "asientos_excedentes": max(0, creados - (capacidad or 0)),
    }


def get_layout(db: Session, bus_id: int) -> Dict:
    get_bus(db, bus_id)
    asientos = (
        db.query(Asiento)
        .filter(Asiento.bus_id == bus_id)
        .order_by(Asiento.piso, Asiento.fila, Asiento.columna)
        .all()
    )
    return {
        "bus_id": bus_id,
        "filas": _ultima_fila(asientos),
        "columnas": max((a.columna for a in asientos), default=0),
        "asientos": asientos,
    }


def update_asientos(db: Session, bus_id: int, cambios: List[Dict]) -> Dict:
    """
    Bulk update of seat type and/or enabled flag.

    Args:
        cambios: [{"id": int, "tipo_asiento": str?, "habilitado": bool?}]
    """
    get_bus(db, bus_id)
    ids = [c["id"] for c in cambios]
    asientos = {a.id: a for a in db.query(Asiento).filter(Asiento.bus_id == bus_id, Asiento.id.in_(ids)).all()}
    faltantes = [i for i in ids if i not in asientos]
    if faltantes:
        raise LookupError(f"Asientos no encontrados en el bus {bus_id}: {faltantes}")

    for cambio in cambios:
        asiento = asientos[cambio["id"]]
        tipo = cambio.get("tipo_asiento")
        if tipo is not None:
            if tipo not in TIPOS_ASIENTO:
                raise ValueError(f"Tipo de asiento inválido: {tipo}")
            asiento.tipo_asiento = tipo
        if cambio.get("habilitado") is not None:
            asiento.habilitado = cambio["habilitado"]
    db.commit()
    logger.info(f"Updated {len(cambios)} seats of bus {bus_id}")
    return get_layout(db, bus_id)


def delete_layout(db: Session, bus_id: int, piso: Optional[int] = None) -> int:
    get_bus(db, bus_id)
    query = db.query(Asiento).filter(Asiento.bus_id == bus_id)
    if piso is not None:
        query = query.filter(Asiento.piso == piso)
    eliminados = query.delete(synchronize_session=False)
    db.commit()
    logger.info(f"Deleted {eliminados} seats of bus {bus_id}")
    return eliminados
