from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import http_error
from ..schemas import CamelModel, PageResponse
from ..security import chofer_o_personal, chofer_propio, personal_de_cooperativa, verificar_viaje
from ..services import trip_service
from ..services.auth_service import Sesion
from ..services.horarios import today

router = APIRouter()


class ViajeOut(CamelModel):
    id: int
    cooperativa_id: int
    frecuencia_id: Optional[int] = None
    bus_id: int
    bus_placa: Optional[str] = None
    chofer_id: Optional[int] = None
    chofer_nombre: Optional[str] = None
    fecha: date
    hora_salida: str
    hora_llegada: str
    origen_id: int
    origen: Optional[str] = None
    destino_id: int
    destino: Optional[str] = None
    precio: float
    estado: str
    observaciones: Optional[str] = None


class Pasajero(CamelModel):
    reserva_id: int
    cliente_email: Optional[str] = None
    cliente_nombre: Optional[str] = None
    asientos: List[str]
    estado: str


class ViajeChofer(CamelModel):
    """Trip of the day as seen by the driver"""
    id: int
    origen: str
    destino: str
    fecha: date
    estado: str
    hora_salida_programada: str
    hora_llegada_estimada: str
    hora_salida_real: Optional[str] = None
    hora_llegada_real: Optional[str] = None
    bus_placa: str
    bus_marca: Optional[str] = None
    capacidad_total: int
    total_pasajeros: int
    pasajeros: List[Pasajero]


class IniciarViajeRequest(CamelModel):
    chofer_id: Optional[int] = None


class FinalizarViajeRequest(CamelModel):
    chofer_id: Optional[int] = None
    observaciones: Optional[str] = None


class DiaTrabajo(CamelModel):
    fecha: date
    dia_semana: str
    horas_trabajadas: int
    minutos_trabajados: int
    jornada_extendida: bool


class ResumenHoras(CamelModel):
    chofer_id: int
    chofer_nombre: str
    semana_inicio: date
    semana_fin: date
    total_horas_semana: int
    total_minutos_semana: int
    dias_con_jornada_extendida: int
    dias_restantes_jornada_extendida: int
    dias_semana: List[DiaTrabajo]
    alertas: List[str]


def _pagina_viajes(pagina: dict) -> dict:
    return {**pagina, "content": [trip_service.viaje_to_dict(v) for v in pagina["content"]]}


@router.get("/viajes", response_model=PageResponse[ViajeOut])
def list_viajes(
    fecha: Optional[date] = None,
    estado: Optional[str] = None,
    page: int = Query(0, ge=0),
    size: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
):
    try:
        return _pagina_viajes(trip_service.listar_viajes(db, fecha=fecha, estado=estado, page=page, size=size))
    except Exception as e:
        raise http_error(e, "list viajes")


@router.get(
    "/cooperativas/{cooperativa_id}/viajes",
    response_model=PageResponse[ViajeOut],
    dependencies=[Depends(personal_de_cooperativa)],
)
def list_viajes_cooperativa(
    cooperativa_id: int,
    fecha: Optional[date] = None,
    estado: Optional[str] = None,
    page: int = Query(0, ge=0),
    size: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
):
    try:
        pagina = trip_service.listar_viajes(
            db, fecha=fecha, cooperativa_id=cooperativa_id, estado=estado, page=page, size=size
        )
        return _pagina_viajes(pagina)
    except Exception as e:
        raise http_error(e, "list cooperativa viajes")


@router.get("/viajes/{viaje_id}", response_model=ViajeOut)
def get_viaje(viaje_id: int, db: Session = Depends(get_db)):
    try:
        return trip_service.viaje_to_dict(trip_service.get_viaje(db, viaje_id))
    except Exception as e:
        raise http_error(e, "get viaje")


# ---------------------------------------------------------------------------
# Chofer
# ---------------------------------------------------------------------------

@router.get("/choferes/{chofer_id}/viaje-del-dia", response_model=ViajeChofer, dependencies=[Depends(chofer_propio)])
def get_viaje_del_dia(chofer_id: int, fecha: Optional[date] = None, db: Session = Depends(get_db)):
    """
    Next trip of the driver on the date (today by default) with its passengers.

    Raises:
        HTTPException 404: driver unknown or nothing left to drive that day
    """
    try:
        viaje = trip_service.viaje_del_dia(db, chofer_id, fecha or today())
        if viaje is None:
            raise HTTPException(status_code=404, detail="No tiene viajes pendientes para esta fecha")
        return viaje
    except HTTPException:
        raise
    except Exception as e:
        raise http_error(e, "get driver trip of the day")


@router.post("/viajes/{viaje_id}/iniciar", response_model=ViajeOut)
def start_viaje(
    viaje_id: int,
    body: Optional[IniciarViajeRequest] = None,
    sesion: Sesion = Depends(chofer_o_personal),
    db: Session = Depends(get_db),
):
    try:
        verificar_viaje(sesion, trip_service.get_viaje(db, viaje_id))
        chofer_id = body.chofer_id if body else None
        return trip_service.viaje_to_dict(trip_service.iniciar_viaje(db, viaje_id, chofer_id))
    except Exception as e:
        raise http_error(e, "start viaje")


@router.post("/viajes/{viaje_id}/finalizar", response_model=ViajeOut)
def finish_viaje(
    viaje_id: int,
    body: Optional[FinalizarViajeRequest] = None,
    sesion: Sesion = Depends(chofer_o_personal),
    db: Session = Depends(get_db),
):
    try:
        verificar_viaje(sesion, trip_service.get_viaje(db, viaje_id))
        body = body or FinalizarViajeRequest()
        viaje = trip_service.finalizar_viaje(db, viaje_id, body.observaciones, body.chofer_id)
        return trip_service.viaje_to_dict(viaje)
    except Exception as e:
        raise http_error(e, "finish viaje")


@router.get("/choferes/{chofer_id}/resumen-horas", response_model=ResumenHoras, dependencies=[Depends(chofer_propio)])
def get_resumen_horas(chofer_id: int, fecha: Optional[date] = None, db: Session = Depends(get_db)):
    """
    Weekly hours of a driver (Monday to Sunday of the week containing fecha).
    """
    try:
        return trip_service.resumen_horas(db, chofer_id, fecha or today())
    except Exception as e:
        raise http_error(e, "get driver hours")
