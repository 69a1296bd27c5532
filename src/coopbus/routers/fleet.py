from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import http_error
from ..schemas import CamelModel, MessageResponse
from ..security import personal_cooperativa, personal_de_cooperativa
from ..services import catalog_service, fleet_service
from ..services.horarios import today

router = APIRouter()


class BusIn(CamelModel):
    numero_interno: Optional[str] = None
    placa: Optional[str] = None
    chasis_marca: Optional[str] = None
    carroceria_marca: Optional[str] = None
    foto_url: Optional[str] = None
    capacidad_piso_1: Optional[int] = None
    capacidad_piso_2: Optional[int] = None
    estado: Optional[str] = None
    activo: Optional[bool] = None


class BusOut(CamelModel):
    id: int
    cooperativa_id: int
    numero_interno: str
    placa: str
    chasis_marca: Optional[str] = None
    carroceria_marca: Optional[str] = None
    foto_url: Optional[str] = None
    capacidad_piso_1: int
    capacidad_piso_2: int
    capacidad_asientos: int
    dos_pisos: bool
    estado: str
    activo: bool


class ChoferBusIn(CamelModel):
    chofer_id: int
    tipo: str = "PRINCIPAL"


class ChoferBusOut(CamelModel):
    id: int
    bus_id: int
    chofer_id: int
    chofer_nombre: str
    tipo: str


class AsignacionIn(CamelModel):
    bus_id: int
    frecuencia_id: int
    fecha_inicio: date
    fecha_fin: Optional[date] = None
    observaciones: Optional[str] = None


class AsignacionOut(CamelModel):
    id: int
    bus_id: int
    frecuencia_id: int
    fecha_inicio: date
    fecha_fin: Optional[date] = None
    estado: str
    observaciones: Optional[str] = None


class EstadoAsignacionRequest(CamelModel):
    estado: str


class DiaParadaIn(CamelModel):
    bus_id: int
    fecha: date
    motivo: str
    observaciones: Optional[str] = None


class DiaParadaOut(CamelModel):
    id: int
    bus_id: int
    fecha: date
    motivo: str
    observaciones: Optional[str] = None


class ResumenDisponibilidad(CamelModel):
    fecha: date
    total_buses: int
    buses_disponibles: int
    buses_en_servicio: int
    buses_mantenimiento: int
    buses_parada: int
    frecuencias_activas: int
    exceso_buses: int


class ChoferAsignadoPanel(CamelModel):
    chofer_id: int
    nombre: str
    tipo: str
    disponible: bool
    horas_disponibles_hoy: float


class BusPanel(CamelModel):
    bus_id: int
    placa: str
    numero_interno: str
    capacidad_asientos: int
    disponible: bool
    frecuencias_hoy: int
    horas_disponibles_hoy: float
    choferes_asignados: List[ChoferAsignadoPanel]


class ChoferPanel(CamelModel):
    chofer_id: int
    nombre: str
    disponible: bool
    horas_trabajadas_hoy: float
    horas_disponibles_hoy: float
    viajes_hoy: int


class PanelDisponibilidad(CamelModel):
    fecha: date
    buses: List[BusPanel]
    choferes: List[ChoferPanel]


def _chofer_bus_out(enlace) -> ChoferBusOut:
    return ChoferBusOut(
        id=enlace.id,
        bus_id=enlace.bus_id,
        chofer_id=enlace.chofer_id,
        chofer_nombre=enlace.chofer.nombre_completo,
        tipo=enlace.tipo,
    )


# ---------------------------------------------------------------------------
# Buses
# ---------------------------------------------------------------------------

@router.get(
    "/cooperativas/{cooperativa_id}/buses",
    response_model=List[BusOut],
    dependencies=[Depends(personal_de_cooperativa)],
)
def list_buses(cooperativa_id: int, estado: Optional[str] = None, db: Session = Depends(get_db)):
    try:
        return catalog_service.listar_buses(db, cooperativa_id, estado)
    except Exception as e:
        raise http_error(e, "list buses")


@router.post(
    "/cooperativas/{cooperativa_id}/buses",
    response_model=BusOut,
    status_code=201,
    dependencies=[Depends(personal_de_cooperativa)],
)
def create_bus(cooperativa_id: int, body: BusIn, db: Session = Depends(get_db)):
    try:
        return catalog_service.crear_bus(db, cooperativa_id, body.model_dump())
    except Exception as e:
        raise http_error(e, "create bus")


@router.get("/buses/{bus_id}", response_model=BusOut, dependencies=[Depends(personal_cooperativa)])
def get_bus(bus_id: int, db: Session = Depends(get_db)):
    try:
        return catalog_service.get_bus(db, bus_id)
    except Exception as e:
        raise http_error(e, "get bus")


@router.put("/buses/{bus_id}", response_model=BusOut, dependencies=[Depends(personal_cooperativa)])
def update_bus(bus_id: int, body: BusIn, db: Session = Depends(get_db)):
    try:
        return catalog_service.actualizar_bus(db, bus_id, body.model_dump())
    except Exception as e:
        raise http_error(e, "update bus")


@router.get("/buses/{bus_id}/choferes", response_model=List[ChoferBusOut], dependencies=[Depends(personal_cooperativa)])
def list_choferes_bus(bus_id: int, db: Session = Depends(get_db)):
    try:
        return [_chofer_bus_out(e) for e in catalog_service.listar_choferes_bus(db, bus_id)]
    except Exception as e:
        raise http_error(e, "list bus drivers")


@router.put("/buses/{bus_id}/choferes", response_model=List[ChoferBusOut], dependencies=[Depends(personal_cooperativa)])
def set_choferes_bus(bus_id: int, body: List[ChoferBusIn], db: Session = Depends(get_db)):
    """
    Replace the drivers of a bus (max 3, exactly one PRINCIPAL).
    """
    try:
        enlaces = catalog_service.asignar_choferes(db, bus_id, [c.model_dump() for c in body])
        return [_chofer_bus_out(e) for e in enlaces]
    except Exception as e:
        raise http_error(e, "assign bus drivers")


# ---------------------------------------------------------------------------
# Asignaciones
# ---------------------------------------------------------------------------

@router.get(
    "/cooperativas/{cooperativa_id}/asignaciones",
    response_model=List[AsignacionOut],
    dependencies=[Depends(personal_de_cooperativa)],
)
def list_asignaciones(cooperativa_id: int, estado: Optional[str] = None, db: Session = Depends(get_db)):
    try:
        return fleet_service.listar_asignaciones(db, cooperativa_id, estado)
    except Exception as e:
        raise http_error(e, "list asignaciones")


@router.post(
    "/asignaciones",
    response_model=AsignacionOut,
    status_code=201,
    dependencies=[Depends(personal_cooperativa)],
)
def create_asignacion(body: AsignacionIn, db: Session = Depends(get_db)):
    try:
        return fleet_service.crear_asignacion(db, body.model_dump())
    except Exception as e:
        raise http_error(e, "create asignacion")


@router.put(
    "/asignaciones/{asignacion_id}/estado",
    response_model=AsignacionOut,
    dependencies=[Depends(personal_cooperativa)],
)
def update_estado_asignacion(asignacion_id: int, body: EstadoAsignacionRequest, db: Session = Depends(get_db)):
    try:
        return fleet_service.cambiar_estado_asignacion(db, asignacion_id, body.estado.upper())
    except Exception as e:
        raise http_error(e, "update asignacion state")


@router.post(
    "/asignaciones/{asignacion_id}/finalizar",
    response_model=AsignacionOut,
    dependencies=[Depends(personal_cooperativa)],
)
def finish_asignacion(asignacion_id: int, db: Session = Depends(get_db)):
    try:
        return fleet_service.finalizar_asignacion(db, asignacion_id)
    except Exception as e:
        raise http_error(e, "finish asignacion")


# ---------------------------------------------------------------------------
# Días de parada
# ---------------------------------------------------------------------------

@router.get(
    "/cooperativas/{cooperativa_id}/dias-parada",
    response_model=List[DiaParadaOut],
    dependencies=[Depends(personal_de_cooperativa)],
)
def list_dias_parada(
    cooperativa_id: int,
    desde: Optional[date] = None,
    hasta: Optional[date] = None,
    db: Session = Depends(get_db),
):
    try:
        return fleet_service.listar_dias_parada(db, cooperativa_id, desde, hasta)
    except Exception as e:
        raise http_error(e, "list stop days")


@router.post("/dias-parada", response_model=DiaParadaOut, status_code=201, dependencies=[Depends(personal_cooperativa)])
def create_dia_parada(body: DiaParadaIn, db: Session = Depends(get_db)):
    try:
        return fleet_service.registrar_dia_parada(db, body.model_dump())
    except Exception as e:
        raise http_error(e, "register stop day")


@router.delete("/dias-parada/{parada_id}", response_model=MessageResponse, dependencies=[Depends(personal_cooperativa)])
def delete_dia_parada(parada_id: int, db: Session = Depends(get_db)):
    try:
        fleet_service.eliminar_dia_parada(db, parada_id)
        return {"message": f"Día de parada {parada_id} eliminado"}
    except Exception as e:
        raise http_error(e, "delete stop day")


# ---------------------------------------------------------------------------
# Disponibilidad
# ---------------------------------------------------------------------------

@router.get(
    "/cooperativas/{cooperativa_id}/buses-disponibles",
    response_model=List[BusOut],
    dependencies=[Depends(personal_de_cooperativa)],
)
def list_buses_disponibles(
    cooperativa_id: int,
    fecha: Optional[date] = Query(None, description="Defaults to today"),
    db: Session = Depends(get_db),
):
    try:
        return fleet_service.buses_disponibles(db, cooperativa_id, fecha or today())
    except Exception as e:
        raise http_error(e, "list available buses")


@router.get(
    "/cooperativas/{cooperativa_id}/disponibilidad/resumen",
    response_model=ResumenDisponibilidad,
    dependencies=[Depends(personal_de_cooperativa)],
)
def get_resumen_disponibilidad(cooperativa_id: int, fecha: Optional[date] = None, db: Session = Depends(get_db)):
    try:
        return fleet_service.resumen_disponibilidad(db, cooperativa_id, fecha or today())
    except Exception as e:
        raise http_error(e, "get availability summary")


@router.get(
    "/cooperativas/{cooperativa_id}/disponibilidad/panel",
    response_model=PanelDisponibilidad,
    dependencies=[Depends(personal_de_cooperativa)],
)
def get_panel_disponibilidad(cooperativa_id: int, fecha: Optional[date] = None, db: Session = Depends(get_db)):
    """
    Per bus and per driver hours left on the given day.
    """
    try:
        return fleet_service.panel_disponibilidad(db, cooperativa_id, fecha or today())
    except Exception as e:
        raise http_error(e, "get availability panel")
