from fastapi import APIRouter, Depends, HTTPException
from pydantic import Field

from ..schemas import CamelModel
from ..security import personal_cooperativa, solo_admin
from ..services.route_service import route_service

router = APIRouter()


class Coordenada(CamelModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class CalcularRutaRequest(CamelModel):
    origen: Coordenada
    destino: Coordenada


class RutaCalculada(CamelModel):
    distancia_km: float
    duracion_minutos: int
    provider: str


@router.post("/rutas/calcular", response_model=RutaCalculada, dependencies=[Depends(personal_cooperativa)])
def calcular_ruta(body: CalcularRutaRequest):
    """
    Road distance and driving time between two points.

    GraphHopper is used when GRAPHHOPPER_API_KEY is set; otherwise (or when
    the call fails) a haversine estimate is returned with provider HAVERSINE.
    """
    try:
        return route_service.calcular((body.origen.lat, body.origen.lng), (body.destino.lat, body.destino.lng))
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to calculate route: {str(e)}")


@router.post("/admin/rutas/clear-cache", dependencies=[Depends(solo_admin)])
def clear_route_cache():
    route_service.clear_cache()
    return {"message": "Route cache cleared"}


@router.get("/admin/rutas/cache-stats", dependencies=[Depends(solo_admin)])
def get_route_cache_stats():
    return route_service.get_cache_stats()
