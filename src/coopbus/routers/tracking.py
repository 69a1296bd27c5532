from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import http_error
from ..schemas import CamelModel
from ..security import chofer_o_personal, personal_cooperativa, solo_admin, verificar_cooperativa, verificar_viaje
from ..services.auth_service import Sesion
from ..services.tracking_service import tracking_service
from ..services.trip_service import get_viaje

router = APIRouter()


class PosicionRequest(CamelModel):
    latitud: float
    longitud: float
    velocidad_kmh: Optional[float] = None
    precision: Optional[float] = None
    timestamp: Optional[datetime] = None
    provider: Optional[str] = None


class PosicionOut(CamelModel):
    viaje_id: int
    latitud: float
    longitud: float
    velocidad_kmh: Optional[float] = None
    precision: Optional[float] = None
    timestamp: datetime
    provider: str


class ViajeActivo(CamelModel):
    viaje_id: int
    cooperativa_id: int
    cooperativa: str
    bus_placa: str
    chofer_nombre: Optional[str] = None
    origen: str
    destino: str
    hora_salida: str
    posicion: Optional[PosicionOut] = None


@router.post("/viajes/{viaje_id}/posicion", response_model=PosicionOut)
def report_posicion(
    viaje_id: int,
    body: PosicionRequest,
    sesion: Sesion = Depends(chofer_o_personal),
    db: Session = Depends(get_db),
):
    """
    Store a GPS report of a viaje EN_RUTA.

    Returns the current position, which stays the newer report when
    this one arrives out of order.
    """
    try:
        verificar_viaje(sesion, get_viaje(db, viaje_id))
        return tracking_service.actualizar_posicion(db, viaje_id, body.model_dump())
    except Exception as e:
        raise http_error(e, "store position")


@router.get("/viajes/{viaje_id}/posicion", response_model=PosicionOut)
def get_posicion(viaje_id: int, db: Session = Depends(get_db)):
    try:
        posicion = tracking_service.posicion_actual(db, viaje_id)
        if posicion is None:
            raise HTTPException(status_code=404, detail=f"El viaje {viaje_id} no tiene posiciones registradas")
        return posicion
    except HTTPException:
        raise
    except Exception as e:
        raise http_error(e, "get position")


@router.get("/viajes/{viaje_id}/historial", response_model=List[PosicionOut])
def get_historial(
    viaje_id: int,
    desde: Optional[datetime] = None,
    sesion: Sesion = Depends(chofer_o_personal),
    db: Session = Depends(get_db),
):
    try:
        verificar_viaje(sesion, get_viaje(db, viaje_id))
        return tracking_service.historial(db, viaje_id, desde)
    except Exception as e:
        raise http_error(e, "get position history")


@router.get("/tracking/panel", response_model=List[ViajeActivo])
def get_panel(
    cooperativa_id: Optional[int] = None,
    sesion: Sesion = Depends(personal_cooperativa),
    db: Session = Depends(get_db),
):
    """
    Viajes EN_RUTA with their latest position. Without cooperativa_id the
    system administrator sees every cooperative and staff see their own.
    """
    try:
        if cooperativa_id is None and not sesion.es_admin:
            cooperativa_id = sesion.cooperativa_id
        if cooperativa_id is not None:
            verificar_cooperativa(sesion, cooperativa_id)
        return tracking_service.panel(db, cooperativa_id)
    except Exception as e:
        raise http_error(e, "get tracking panel")


@router.post("/admin/tracking/clear-cache", dependencies=[Depends(solo_admin)])
def clear_tracking_cache(viaje_id: Optional[int] = None):
    tracking_service.clear_cache(viaje_id)

    if viaje_id:
        return {"message": f"Cache cleared for viaje {viaje_id}"}
    else:
        return {"message": "All position cache cleared"}


@router.get("/admin/tracking/cache-stats", dependencies=[Depends(solo_admin)])
def get_tracking_cache_stats():
    return tracking_service.get_cache_stats()
