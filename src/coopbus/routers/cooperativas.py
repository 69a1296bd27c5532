from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import http_error
from ..schemas import CamelModel, PageResponse
from ..security import personal_de_cooperativa, solo_admin
from ..services import catalog_service, circuit_service

router = APIRouter()


class CooperativaIn(CamelModel):
    nombre: Optional[str] = None
    ruc: Optional[str] = None
    logo_url: Optional[str] = None
    activo: Optional[bool] = None


class CooperativaOut(CamelModel):
    id: int
    nombre: str
    ruc: str
    logo_url: Optional[str] = None
    activo: bool


class TerminalIn(CamelModel):
    nombre: str
    ciudad: str
    provincia: str
    latitud: float
    longitud: float


class TerminalOut(CamelModel):
    id: int
    nombre: str
    ciudad: str
    provincia: str
    latitud: float
    longitud: float
    activo: bool


class SincronizarTerminalesRequest(CamelModel):
    terminal_ids: List[int]


class ConfiguracionFrecuencias(CamelModel):
    """Per-cooperative generation rules; every field optional on update"""
    id: Optional[int] = None
    cooperativa_id: Optional[int] = None
    precio_base_por_km: Optional[float] = None
    factor_diesel_por_km: Optional[float] = None
    precio_diesel: Optional[float] = None
    margen_ganancia_porcentaje: Optional[float] = None
    max_horas_diarias_chofer: Optional[int] = None
    max_horas_excepcionales: Optional[int] = None
    max_dias_excepcionales_semana: Optional[int] = None
    tiempo_descanso_entre_viajes_minutos: Optional[int] = None
    descanso_interprovincial_minutos: Optional[int] = None
    tiempo_minimo_parada_bus_minutos: Optional[int] = None
    horas_operacion_max_bus: Optional[int] = None
    intervalo_minimo_frecuencias_minutos: Optional[int] = None
    hora_inicio_operacion: Optional[str] = None
    hora_fin_operacion: Optional[str] = None
    umbral_interprovincial_km: Optional[float] = None


class PersonalIn(CamelModel):
    nombres: str
    apellidos: str
    email: str
    cedula: Optional[str] = None
    telefono: Optional[str] = None
    rol_cooperativa: str
    password: Optional[str] = None


class PersonalOut(CamelModel):
    id: int
    cooperativa_id: int
    nombres: str
    apellidos: str
    nombre_completo: str
    cedula: Optional[str] = None
    email: str
    telefono: Optional[str] = None
    rol_cooperativa: str
    activo: bool


# ---------------------------------------------------------------------------
# Cooperativas
# ---------------------------------------------------------------------------

@router.get("/cooperativas", response_model=PageResponse[CooperativaOut])
def list_cooperativas(
    search: Optional[str] = None,
    page: int = Query(0, ge=0),
    size: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
):
    """
    List cooperatives, optionally filtered by name or RUC.
    """
    try:
        return catalog_service.listar_cooperativas(db, search, page, size)
    except Exception as e:
        raise http_error(e, "list cooperativas")


@router.get("/cooperativas/{cooperativa_id}", response_model=CooperativaOut)
def get_cooperativa(cooperativa_id: int, db: Session = Depends(get_db)):
    try:
        return circuit_service.get_cooperativa(db, cooperativa_id)
    except Exception as e:
        raise http_error(e, "get cooperativa")


@router.post("/cooperativas", response_model=CooperativaOut, status_code=201, dependencies=[Depends(solo_admin)])
def create_cooperativa(body: CooperativaIn, db: Session = Depends(get_db)):
    try:
        return catalog_service.crear_cooperativa(db, body.model_dump())
    except Exception as e:
        raise http_error(e, "create cooperativa")


@router.put("/cooperativas/{cooperativa_id}", response_model=CooperativaOut, dependencies=[Depends(solo_admin)])
def update_cooperativa(cooperativa_id: int, body: CooperativaIn, db: Session = Depends(get_db)):
    try:
        return catalog_service.actualizar_cooperativa(db, cooperativa_id, body.model_dump())
    except Exception as e:
        raise http_error(e, "update cooperativa")


@router.delete("/cooperativas/{cooperativa_id}", response_model=CooperativaOut, dependencies=[Depends(solo_admin)])
def delete_cooperativa(cooperativa_id: int, db: Session = Depends(get_db)):
    """Soft delete: the cooperative is deactivated, not removed."""
    try:
        return catalog_service.eliminar_cooperativa(db, cooperativa_id)
    except Exception as e:
        raise http_error(e, "delete cooperativa")


# ---------------------------------------------------------------------------
# Terminales
# ---------------------------------------------------------------------------

@router.get("/terminales", response_model=List[TerminalOut])
def list_terminales(search: Optional[str] = None, db: Session = Depends(get_db)):
    try:
        return catalog_service.listar_terminales(db, search)
    except Exception as e:
        raise http_error(e, "list terminales")


@router.post("/terminales", response_model=TerminalOut, status_code=201, dependencies=[Depends(solo_admin)])
def create_terminal(body: TerminalIn, db: Session = Depends(get_db)):
    try:
        return catalog_service.crear_terminal(db, body.model_dump())
    except Exception as e:
        raise http_error(e, "create terminal")


@router.get("/cooperativas/{cooperativa_id}/terminales", response_model=List[TerminalOut])
def get_terminales_cooperativa(cooperativa_id: int, db: Session = Depends(get_db)):
    try:
        return catalog_service.terminales_de_cooperativa(db, cooperativa_id)
    except Exception as e:
        raise http_error(e, "get cooperativa terminales")


@router.put(
    "/cooperativas/{cooperativa_id}/terminales",
    response_model=List[TerminalOut],
    dependencies=[Depends(personal_de_cooperativa)],
)
def sincronizar_terminales(
    cooperativa_id: int,
    body: SincronizarTerminalesRequest,
    db: Session = Depends(get_db),
):
    """
    Replace the set of terminals the cooperative operates from.

    Args:
        body: {"terminalIds": [1, 2, 3]}

    Returns:
        The enabled terminals after the change
    """
    try:
        return catalog_service.sincronizar_terminales(db, cooperativa_id, body.terminal_ids)
    except Exception as e:
        raise http_error(e, "sync terminales")


# ---------------------------------------------------------------------------
# Configuración de frecuencias
# ---------------------------------------------------------------------------

@router.get(
    "/cooperativas/{cooperativa_id}/configuracion-frecuencias",
    response_model=ConfiguracionFrecuencias,
    dependencies=[Depends(personal_de_cooperativa)],
)
def get_configuracion(cooperativa_id: int, db: Session = Depends(get_db)):
    try:
        config = circuit_service.get_config(db, cooperativa_id)
        return circuit_service.config_to_dict(config)
    except Exception as e:
        raise http_error(e, "get frequency configuration")


@router.put(
    "/cooperativas/{cooperativa_id}/configuracion-frecuencias",
    response_model=ConfiguracionFrecuencias,
    dependencies=[Depends(personal_de_cooperativa)],
)
def update_configuracion(
    cooperativa_id: int,
    body: ConfiguracionFrecuencias,
    db: Session = Depends(get_db),
):
    """
    Partial update; omitted fields keep their value.

    Raises:
        HTTPException 400: start not before end, exceptional hours below daily hours,
            or non-positive limits
    """
    try:
        cambios = body.model_dump(exclude={"id", "cooperativa_id"}, exclude_none=True)
        config = circuit_service.update_config(db, cooperativa_id, cambios)
        return circuit_service.config_to_dict(config)
    except Exception as e:
        raise http_error(e, "update frequency configuration")


# ---------------------------------------------------------------------------
# Personal
# ---------------------------------------------------------------------------

@router.get(
    "/cooperativas/{cooperativa_id}/personal",
    response_model=List[PersonalOut],
    dependencies=[Depends(personal_de_cooperativa)],
)
def list_personal(cooperativa_id: int, rol: Optional[str] = None, db: Session = Depends(get_db)):
    try:
        return catalog_service.listar_personal(db, cooperativa_id, rol)
    except Exception as e:
        raise http_error(e, "list personal")


@router.post(
    "/cooperativas/{cooperativa_id}/personal",
    response_model=PersonalOut,
    status_code=201,
    dependencies=[Depends(personal_de_cooperativa)],
)
def create_personal(cooperativa_id: int, body: PersonalIn, db: Session = Depends(get_db)):
    try:
        return catalog_service.crear_personal(db, cooperativa_id, body.model_dump())
    except Exception as e:
        raise http_error(e, "create personal")
