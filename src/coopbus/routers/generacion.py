from datetime import date
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import http_error
from ..schemas import CamelModel
from ..security import personal_de_cooperativa, solo_admin
from ..services import generation_service
from ..services.circuit_service import estado_cache, invalidar_estado

router = APIRouter()


# ---------------------------------------------------------------------------
# Models: intelligent generation
# ---------------------------------------------------------------------------

class RutaCircuito(CamelModel):
    """Ida/vuelta pair of enabled terminals"""
    terminal_origen_id: int
    terminal_origen_nombre: str
    terminal_destino_id: int
    terminal_destino_nombre: str
    distancia_km: float
    duracion_minutos: int
    precio_sugerido: float
    tipo_frecuencia: str
    max_paradas_permitidas: int
    descanso_minutos: int


class ConfiguracionInteligente(CamelModel):
    descanso_intraprovincial_min: int
    descanso_interprovincial_min: int
    max_horas_chofer: int
    max_horas_excepcionales: int
    umbral_interprovincial_km: float
    hora_inicio: str
    hora_fin: str
    intervalo_minimo_frecuencias: int


class EstadoGeneracionInteligente(CamelModel):
    buses_totales: int
    buses_disponibles: int
    choferes_totales: int
    choferes_disponibles: int
    terminales_habilitados: int
    rutas_circuito: List[RutaCircuito]
    capacidad_estimada_diaria: int
    frecuencias_existentes: int
    configuracion: ConfiguracionInteligente


class CircuitoSolicitado(CamelModel):
    terminal_origen_id: int
    terminal_destino_id: int
    terminal_origen_nombre: Optional[str] = None
    terminal_destino_nombre: Optional[str] = None
    distancia_km: Optional[float] = None
    duracion_minutos: Optional[int] = None
    precio_base: Optional[float] = None
    habilitar_paradas: Optional[bool] = None
    max_paradas: Optional[int] = None


class GenerarInteligenteRequest(CamelModel):
    fecha_inicio: Optional[date] = None
    fecha_fin: Optional[date] = None
    dias_operacion: List[str] = []
    rutas_circuito: List[CircuitoSolicitado] = []
    permitir_paradas: bool = True
    max_paradas_personalizado: Optional[int] = None


class ParadaPreview(CamelModel):
    terminal_id: Optional[int] = None
    ciudad: str
    orden_parada: int
    minutos_desde_origen: int
    precio_adicional: float


class FrecuenciaPreviewInteligente(CamelModel):
    fecha: date
    hora_salida: str
    hora_llegada: str
    terminal_origen_id: int
    terminal_origen_nombre: str
    terminal_destino_id: int
    terminal_destino_nombre: str
    bus_id: int
    bus_placa: str
    chofer_id: Optional[int] = None
    chofer_nombre: Optional[str] = None
    duracion_minutos: int
    tipo_frecuencia: str
    es_viaje_de: Optional[str] = None
    precio: float
    paradas: List[ParadaPreview]
    estado: str


class PreviewGeneracionInteligente(CamelModel):
    frecuencias: List[FrecuenciaPreviewInteligente]
    frecuencias_por_dia: int
    dias_operacion: int
    total_frecuencias: int
    frecuencias_por_ruta: Dict[str, int]
    frecuencias_por_bus: Dict[str, int]
    buses_utilizados: int
    buses_disponibles: int
    choferes_utilizados: int
    advertencias: List[str]
    errores: List[str]


class ResultadoGeneracion(CamelModel):
    exito: bool
    frecuencias_creadas: int
    frecuencias_omitidas: int
    viajes_creados: int
    mensajes: List[str]
    advertencias: List[str]
    errores: List[str]


# ---------------------------------------------------------------------------
# Models: automatic generation
# ---------------------------------------------------------------------------

class RutaDisponible(CamelModel):
    terminal_origen_id: int
    terminal_origen_nombre: str
    terminal_destino_id: int
    terminal_destino_nombre: str
    distancia_km: float
    duracion_estimada_minutos: int
    precio_sugerido: float


class ConfiguracionAutomatica(CamelModel):
    hora_inicio: str
    hora_fin: str
    intervalo_minimo_frecuencias: int
    max_horas_chofer: int
    max_horas_excepcionales: int


class EstadoGeneracion(CamelModel):
    buses_totales: int
    buses_disponibles: int
    choferes_totales: int
    choferes_disponibles: int
    rutas_disponibles: List[RutaDisponible]
    configuracion: ConfiguracionAutomatica


class RutaSeleccionada(CamelModel):
    terminal_origen_id: int
    terminal_destino_id: int
    precio_base: Optional[float] = None
    duracion_minutos: Optional[int] = None


class GenerarAutomaticoRequest(CamelModel):
    fecha_inicio: Optional[date] = None
    fecha_fin: Optional[date] = None
    dias_operacion: List[str] = []
    hora_inicio: Optional[str] = None
    hora_fin: Optional[str] = None
    intervalo_minutos: Optional[int] = None
    precio_base: Optional[float] = None
    asignar_choferes_automaticamente: bool = True
    generar_todas_las_rutas: bool = False
    rutas_seleccionadas: List[RutaSeleccionada] = []


class FrecuenciaPreviewAutomatica(CamelModel):
    origen: str
    destino: str
    hora_salida: str
    hora_llegada: str
    bus_placa: Optional[str] = None
    chofer_nombre: Optional[str] = None
    precio: float
    estado: str


class PreviewAutomatico(CamelModel):
    frecuencias: List[FrecuenciaPreviewAutomatica]
    total_frecuencias: int
    buses_necesarios: int
    buses_disponibles: int
    tiene_capacidad_suficiente: bool
    advertencias: List[str]
    errores: List[str]


# ---------------------------------------------------------------------------
# Intelligent generation
# ---------------------------------------------------------------------------

@router.get(
    "/cooperativas/{cooperativa_id}/frecuencias/generar-inteligente/estado",
    response_model=EstadoGeneracionInteligente,
    dependencies=[Depends(personal_de_cooperativa)],
)
def get_estado_inteligente(cooperativa_id: int, db: Session = Depends(get_db)):
    """
    Fleet, staff and circuit snapshot used by the intelligent generator.

    Cached for 60 seconds per cooperative; any change of buses, staff,
    terminals, configuration or frecuencias drops the entry.
    """
    try:
        return generation_service.estado_inteligente(db, cooperativa_id)
    except Exception as e:
        raise http_error(e, "get intelligent generation state")


@router.post(
    "/cooperativas/{cooperativa_id}/frecuencias/generar-inteligente/preview",
    response_model=PreviewGeneracionInteligente,
    dependencies=[Depends(personal_de_cooperativa)],
)
def preview_inteligente(cooperativa_id: int, body: GenerarInteligenteRequest, db: Session = Depends(get_db)):
    """
    Simulate buses shuttling on the requested circuits without writing anything.

    Validation problems come back in `errores` with a 200, as the client
    renders them next to the preview.
    """
    try:
        return generation_service.preview_inteligente(db, cooperativa_id, body.model_dump())
    except Exception as e:
        raise http_error(e, "preview intelligent generation")


@router.post(
    "/cooperativas/{cooperativa_id}/frecuencias/generar-inteligente",
    response_model=ResultadoGeneracion,
    dependencies=[Depends(personal_de_cooperativa)],
)
def generar_inteligente(cooperativa_id: int, body: GenerarInteligenteRequest, db: Session = Depends(get_db)):
    try:
        return generation_service.generar_inteligente(db, cooperativa_id, body.model_dump())
    except Exception as e:
        raise http_error(e, "run intelligent generation")


# ---------------------------------------------------------------------------
# Automatic generation
# ---------------------------------------------------------------------------

@router.get(
    "/cooperativas/{cooperativa_id}/frecuencias/generar-automatico/estado",
    response_model=EstadoGeneracion,
    dependencies=[Depends(personal_de_cooperativa)],
)
def get_estado_automatico(cooperativa_id: int, db: Session = Depends(get_db)):
    try:
        return generation_service.estado_automatico(db, cooperativa_id)
    except Exception as e:
        raise http_error(e, "get automatic generation state")


@router.post(
    "/cooperativas/{cooperativa_id}/frecuencias/generar-automatico/preview",
    response_model=PreviewAutomatico,
    dependencies=[Depends(personal_de_cooperativa)],
)
def preview_automatico(cooperativa_id: int, body: GenerarAutomaticoRequest, db: Session = Depends(get_db)):
    try:
        return generation_service.preview_automatico(db, cooperativa_id, body.model_dump())
    except Exception as e:
        raise http_error(e, "preview automatic generation")


@router.post(
    "/cooperativas/{cooperativa_id}/frecuencias/generar-automatico",
    response_model=ResultadoGeneracion,
    dependencies=[Depends(personal_de_cooperativa)],
)
def generar_automatico(cooperativa_id: int, body: GenerarAutomaticoRequest, db: Session = Depends(get_db)):
    try:
        return generation_service.generar_automatico(db, cooperativa_id, body.model_dump())
    except Exception as e:
        raise http_error(e, "run automatic generation")


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------

@router.post("/admin/generacion/clear-cache", dependencies=[Depends(solo_admin)])
def clear_generation_cache(cooperativa_id: Optional[int] = None):
    """
    Drop cached generation state snapshots.

    Args:
        cooperativa_id: Optional cooperative to clear. If not provided, clears all.
    """
    if cooperativa_id:
        invalidar_estado(cooperativa_id)
        return {"message": f"Cache cleared for cooperativa {cooperativa_id}"}
    else:
        estado_cache.clear()
        return {"message": "All generation state cache cleared"}


@router.get("/admin/generacion/cache-stats", dependencies=[Depends(solo_admin)])
def get_generation_cache_stats():
    return {
        "cache_size": len(estado_cache),
        "max_size": estado_cache.maxsize,
        "ttl_seconds": estado_cache.ttl,
    }
