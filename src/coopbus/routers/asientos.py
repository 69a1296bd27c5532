from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import http_error
from ..schemas import CamelModel, CountResponse
from ..security import personal_cooperativa
from ..services import seat_service

router = APIRouter()


class GenerateLayoutRequest(CamelModel):
    filas: int
    columnas: int
    piso: int = 1
    sobrescribir: bool = False


class GenerateLayoutResponse(CamelModel):
    asientos_creados: int
    capacidad_piso: Optional[int] = None
    asientos_excedentes: int


class AsientoOut(CamelModel):
    id: int
    numero_asiento: str
    fila: int
    columna: int
    piso: int
    tipo_asiento: str
    habilitado: bool


class LayoutOut(CamelModel):
    bus_id: int
    filas: int
    columnas: int
    asientos: List[AsientoOut]


class AsientoUpdate(CamelModel):
    id: int
    tipo_asiento: Optional[str] = None
    habilitado: Optional[bool] = None


@router.post(
    "/buses/{bus_id}/asientos/generate-layout",
    response_model=GenerateLayoutResponse,
    status_code=201,
    dependencies=[Depends(personal_cooperativa)],
)
def generate_layout(bus_id: int, body: GenerateLayoutRequest, db: Session = Depends(get_db)):
    """
    Generate the seat grid of one floor of a bus.

    A 400 is returned when the floor already has seats and sobrescribir is false.
    """
    try:
        return seat_service.generate_layout(
            db, bus_id, body.filas, body.columnas, piso=body.piso, sobrescribir=body.sobrescribir
        )
    except Exception as e:
        raise http_error(e, "generate seat layout")


@router.get("/buses/{bus_id}/asientos", response_model=LayoutOut, dependencies=[Depends(personal_cooperativa)])
def get_layout(bus_id: int, db: Session = Depends(get_db)):
    try:
        return seat_service.get_layout(db, bus_id)
    except Exception as e:
        raise http_error(e, "get seat layout")


@router.put("/buses/{bus_id}/asientos", response_model=LayoutOut, dependencies=[Depends(personal_cooperativa)])
def update_asientos(bus_id: int, body: List[AsientoUpdate], db: Session = Depends(get_db)):
    try:
        return seat_service.update_asientos(db, bus_id, [a.model_dump() for a in body])
    except Exception as e:
        raise http_error(e, "update seats")


@router.delete("/buses/{bus_id}/asientos", response_model=CountResponse, dependencies=[Depends(personal_cooperativa)])
def delete_layout(bus_id: int, piso: Optional[int] = None, db: Session = Depends(get_db)):
    try:
        return {"count": seat_service.delete_layout(db, bus_id, piso)}
    except Exception as e:
        raise http_error(e, "delete seat layout")
