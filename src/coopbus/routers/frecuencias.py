from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import http_error
from ..schemas import CamelModel, PageResponse
from ..security import personal_cooperativa, personal_de_cooperativa
from ..services import frecuencia_service, generation_service, trip_service

router = APIRouter()


class ParadaIn(CamelModel):
    terminal_id: Optional[int] = None
    ciudad: str
    orden_parada: Optional[int] = None
    minutos_desde_origen: Optional[int] = None
    precio_adicional: Optional[float] = None


class ParadaOut(CamelModel):
    terminal_id: Optional[int] = None
    ciudad: str
    orden_parada: int
    minutos_desde_origen: int
    precio_adicional: float


class FrecuenciaIn(CamelModel):
    origen_id: Optional[int] = None
    destino_id: Optional[int] = None
    hora_salida: Optional[str] = None
    duracion_minutos: Optional[int] = None
    dias_operacion: Optional[List[str]] = None
    fecha_inicio: Optional[date] = None
    fecha_fin: Optional[date] = None
    bus_id: Optional[int] = None
    chofer_id: Optional[int] = None
    es_viaje_de: Optional[str] = None
    precio: Optional[float] = None
    paradas: Optional[List[ParadaIn]] = None


class FrecuenciaOut(CamelModel):
    id: int
    cooperativa_id: int
    origen_id: int
    origen: Optional[str] = None
    destino_id: int
    destino: Optional[str] = None
    hora_salida: str
    duracion_minutos: int
    dias_operacion: List[str]
    fecha_inicio: Optional[date] = None
    fecha_fin: Optional[date] = None
    bus_id: Optional[int] = None
    bus_placa: Optional[str] = None
    chofer_id: Optional[int] = None
    chofer_nombre: Optional[str] = None
    tipo_frecuencia: Optional[str] = None
    es_viaje_de: Optional[str] = None
    precio: float
    activa: bool
    paradas: List[ParadaOut]


class ValidacionFrecuencia(CamelModel):
    valida: bool
    errores: List[str]
    advertencias: List[str]


class EliminarTodasResponse(CamelModel):
    count: int
    viajes_cancelados: int


class MaterializarRequest(CamelModel):
    fecha_inicio: date
    fecha_fin: date


class MaterializarResponse(CamelModel):
    creados: int
    existentes: int
    omitidos_parada: int
    sin_bus: int


def _datos(body: FrecuenciaIn) -> dict:
    return body.model_dump(exclude_none=True)


@router.get(
    "/cooperativas/{cooperativa_id}/frecuencias",
    response_model=PageResponse[FrecuenciaOut],
    dependencies=[Depends(personal_de_cooperativa)],
)
def list_frecuencias(
    cooperativa_id: int,
    search: Optional[str] = None,
    solo_activas: bool = Query(True, alias="soloActivas"),
    page: int = Query(0, ge=0),
    size: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
):
    """
    List frecuencias of a cooperative, searching on origin/destination name or city.
    """
    try:
        pagina = frecuencia_service.listar_frecuencias(db, cooperativa_id, search, solo_activas, page, size)
        return {**pagina, "content": [frecuencia_service.frecuencia_to_dict(f) for f in pagina["content"]]}
    except Exception as e:
        raise http_error(e, "list frecuencias")


@router.get("/frecuencias/{frecuencia_id}", response_model=FrecuenciaOut, dependencies=[Depends(personal_cooperativa)])
def get_frecuencia(frecuencia_id: int, db: Session = Depends(get_db)):
    try:
        return frecuencia_service.frecuencia_to_dict(frecuencia_service.get_frecuencia(db, frecuencia_id))
    except Exception as e:
        raise http_error(e, "get frecuencia")


@router.post(
    "/cooperativas/{cooperativa_id}/frecuencias/validar",
    response_model=ValidacionFrecuencia,
    dependencies=[Depends(personal_de_cooperativa)],
)
def validar_frecuencia(
    cooperativa_id: int,
    body: FrecuenciaIn,
    excluir_id: Optional[int] = Query(None, alias="excluirId"),
    db: Session = Depends(get_db),
):
    try:
        return frecuencia_service.validar_frecuencia(db, cooperativa_id, _datos(body), excluir_id=excluir_id)
    except Exception as e:
        raise http_error(e, "validate frecuencia")


@router.post(
    "/cooperativas/{cooperativa_id}/frecuencias",
    response_model=FrecuenciaOut,
    status_code=201,
    dependencies=[Depends(personal_de_cooperativa)],
)
def create_frecuencia(cooperativa_id: int, body: FrecuenciaIn, db: Session = Depends(get_db)):
    try:
        frecuencia = frecuencia_service.crear_frecuencia(db, cooperativa_id, _datos(body))
        return frecuencia_service.frecuencia_to_dict(frecuencia)
    except Exception as e:
        raise http_error(e, "create frecuencia")


@router.put("/frecuencias/{frecuencia_id}", response_model=FrecuenciaOut, dependencies=[Depends(personal_cooperativa)])
def update_frecuencia(frecuencia_id: int, body: FrecuenciaIn, db: Session = Depends(get_db)):
    try:
        frecuencia = frecuencia_service.actualizar_frecuencia(db, frecuencia_id, _datos(body))
        return frecuencia_service.frecuencia_to_dict(frecuencia)
    except Exception as e:
        raise http_error(e, "update frecuencia")


@router.delete(
    "/frecuencias/{frecuencia_id}",
    response_model=FrecuenciaOut,
    dependencies=[Depends(personal_cooperativa)],
)
def delete_frecuencia(frecuencia_id: int, db: Session = Depends(get_db)):
    """Deactivates the frecuencia; its viajes are kept."""
    try:
        return frecuencia_service.frecuencia_to_dict(frecuencia_service.eliminar_frecuencia(db, frecuencia_id))
    except Exception as e:
        raise http_error(e, "delete frecuencia")


@router.delete(
    "/cooperativas/{cooperativa_id}/frecuencias",
    response_model=EliminarTodasResponse,
    dependencies=[Depends(personal_de_cooperativa)],
)
def delete_all_frecuencias(cooperativa_id: int, db: Session = Depends(get_db)):
    """
    Deactivate every active frecuencia of the cooperative.

    Future PROGRAMADO viajes of those frecuencias are cancelled unless they
    already have sold seats.
    """
    try:
        return generation_service.eliminar_todas(db, cooperativa_id)
    except Exception as e:
        raise http_error(e, "delete all frecuencias")


@router.post(
    "/cooperativas/{cooperativa_id}/frecuencias/materializar",
    response_model=MaterializarResponse,
    dependencies=[Depends(personal_de_cooperativa)],
)
def materializar(cooperativa_id: int, body: MaterializarRequest, db: Session = Depends(get_db)):
    try:
        return trip_service.materializar_viajes(db, cooperativa_id, body.fecha_inicio, body.fecha_fin)
    except Exception as e:
        raise http_error(e, "materialize viajes")
