from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import http_error
from ..schemas import CamelModel, MessageResponse
from ..security import personal_de_cooperativa
from ..services import rotation_service

router = APIRouter()


class ImportarCsvRequest(CamelModel):
    contenido_csv: str
    nombre_plantilla: str
    descripcion: Optional[str] = None


class ImportarCsvResponse(CamelModel):
    exitoso: bool
    plantilla_id: Optional[int] = None
    turnos_importados: int
    errores: List[str]


class TurnoOut(CamelModel):
    numero_turno: int
    hora_salida: str
    origen: str
    destino: str
    duracion_minutos: int


class PlantillaOut(CamelModel):
    id: int
    nombre: str
    descripcion: Optional[str] = None
    creada_en: datetime
    total_turnos: int
    turnos: List[TurnoOut]


class RotacionRequest(CamelModel):
    plantilla_id: int
    fecha_inicio: date
    fecha_fin: date
    bus_ids: List[int]
    asignar_choferes_automaticamente: bool = False
    sobreescribir_existentes: bool = False


class AsignacionRotacion(CamelModel):
    fecha: date
    bus_id: int
    bus_placa: str
    turno: int
    viajes: int


class PreviewRotacion(CamelModel):
    asignaciones: List[AsignacionRotacion]
    dias_totales: int
    buses_participantes: int
    frecuencias_a_generar: int
    conflictos: List[str]


class ResultadoRotacion(CamelModel):
    frecuencias_creadas: int
    frecuencias_omitidas: int
    frecuencias_con_advertencias: int
    errores: List[str]


@router.post(
    "/cooperativas/{cooperativa_id}/plantillas-rotacion/importar",
    response_model=ImportarCsvResponse,
    dependencies=[Depends(personal_de_cooperativa)],
)
def importar_plantilla(cooperativa_id: int, body: ImportarCsvRequest, db: Session = Depends(get_db)):
    """
    Import a rotation template from CSV text.

    Expected header: turno,hora_salida,origen,destino,duracion_minutos.
    Row problems are returned in `errores` and nothing is stored.
    """
    try:
        return rotation_service.importar_csv(
            db, cooperativa_id, body.contenido_csv, body.nombre_plantilla, body.descripcion
        )
    except Exception as e:
        raise http_error(e, "import rotation template")


@router.get(
    "/cooperativas/{cooperativa_id}/plantillas-rotacion",
    response_model=List[PlantillaOut],
    dependencies=[Depends(personal_de_cooperativa)],
)
def list_plantillas(cooperativa_id: int, db: Session = Depends(get_db)):
    try:
        return [rotation_service.plantilla_to_dict(p) for p in rotation_service.listar_plantillas(db, cooperativa_id)]
    except Exception as e:
        raise http_error(e, "list rotation templates")


@router.delete(
    "/cooperativas/{cooperativa_id}/plantillas-rotacion/{plantilla_id}",
    response_model=MessageResponse,
    dependencies=[Depends(personal_de_cooperativa)],
)
def delete_plantilla(cooperativa_id: int, plantilla_id: int, db: Session = Depends(get_db)):
    try:
        rotation_service.eliminar_plantilla(db, cooperativa_id, plantilla_id)
        return {"message": f"Plantilla {plantilla_id} eliminada"}
    except Exception as e:
        raise http_error(e, "delete rotation template")


@router.post(
    "/cooperativas/{cooperativa_id}/plantillas-rotacion/preview",
    response_model=PreviewRotacion,
    dependencies=[Depends(personal_de_cooperativa)],
)
def preview_rotacion(cooperativa_id: int, body: RotacionRequest, db: Session = Depends(get_db)):
    """
    Day d of the range, bus i runs turno ((i + d) mod nTurnos) + 1.
    """
    try:
        return rotation_service.preview_rotacion(db, cooperativa_id, body.model_dump())
    except Exception as e:
        raise http_error(e, "preview rotation")


@router.post(
    "/cooperativas/{cooperativa_id}/plantillas-rotacion/generar",
    response_model=ResultadoRotacion,
    dependencies=[Depends(personal_de_cooperativa)],
)
def generar_rotacion(cooperativa_id: int, body: RotacionRequest, db: Session = Depends(get_db)):
    try:
        return rotation_service.generar_rotacion(db, cooperativa_id, body.model_dump())
    except Exception as e:
        raise http_error(e, "apply rotation")
